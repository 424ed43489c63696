"""User profile lookup and effective tier resolution"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..core.logger import CentralizedLogger
from ..models.profile import UserProfile
from ..models.subscription import SubscriptionTier
from ..models.usage import utcnow


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def resolve_effective_tier(profile: UserProfile, now: Optional[datetime] = None) -> SubscriptionTier:
    """Tier the router should enforce for a profile right now

    A running user trial grants its plan tier (premium when unspecified);
    an expired user or organisation trial falls back to free.

    Args:
        profile: User profile
        now: Evaluation time (defaults to current UTC time)

    Returns:
        Effective subscription tier
    """
    now = _aware(now or utcnow())

    if profile.is_trial:
        if profile.trial_end_date is not None and _aware(profile.trial_end_date) > now:
            return SubscriptionTier.parse(profile.trial_plan_tier or SubscriptionTier.PREMIUM.value)
        return SubscriptionTier.FREE

    if profile.trial_ends_at is not None and _aware(profile.trial_ends_at) <= now:
        return SubscriptionTier.FREE

    return SubscriptionTier.parse(profile.subscription_tier)


class ProfileProvider(ABC):
    """Source of user profiles owned by the surrounding application"""

    @abstractmethod
    async def get_profile(self, user_id: str, tenant_id: Optional[str] = None) -> UserProfile:
        """Fetch the profile for a user"""
        pass

    async def effective_tier(self, user_id: str, tenant_id: Optional[str] = None) -> SubscriptionTier:
        return resolve_effective_tier(await self.get_profile(user_id, tenant_id))


class StaticProfileProvider(ProfileProvider):
    """Profiles seeded from configuration; unknown users are free standalone users"""

    def __init__(self, profiles: Optional[Dict[str, Dict[str, Any]]] = None):
        self.logger = CentralizedLogger("ProfileProvider")
        self._profiles: Dict[str, UserProfile] = {
            user_id: UserProfile(user_id=user_id, **fields)
            for user_id, fields in (profiles or {}).items()
        }

    def upsert(self, profile: UserProfile) -> None:
        self._profiles[profile.user_id] = profile

    async def get_profile(self, user_id: str, tenant_id: Optional[str] = None) -> UserProfile:
        profile = self._profiles.get(user_id)
        if profile is None:
            self.logger.debug(f"No profile for {user_id}; treating as free standalone user")
            return UserProfile(user_id=user_id, tenant_id=tenant_id)
        return profile
