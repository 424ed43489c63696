"""User profile as seen by the routing engine"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class UserProfile(BaseModel):
    """Subscription-relevant slice of a user profile

    Standalone users (parents, independent learners) have no tenant.
    """
    user_id: str
    tenant_id: Optional[str] = Field(None, description="School/organisation id")
    subscription_tier: str = "free"
    is_trial: bool = False
    trial_end_date: Optional[datetime] = Field(None, description="End of a user-level trial")
    trial_plan_tier: Optional[str] = Field(None, description="Tier granted while the user trial is active")
    trial_ends_at: Optional[datetime] = Field(None, description="End of an organisation-level trial")
