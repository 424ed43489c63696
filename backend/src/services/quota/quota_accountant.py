"""Per-user quota enforcement over the usage ledger"""

import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional, List

from ..base_service import BaseService
from ...core.config import RouterConfig, Settings
from ...core.exceptions import StorageError
from ...models.subscription import ServiceType, SubscriptionTier, bucket_for
from ...models.usage import QuotaDecision, QuotaStatus, UsageRecord, utcnow
from ...storage.base_storage import LedgerStore


class QuotaAccountant(BaseService):
    """Checks, reserves and settles quota slots

    A successful check reserves one slot atomically in the store. The
    matching usage record converts the reservation into usage when the
    attempt succeeded, and releases it otherwise. A limit of -1 means
    unlimited and never touches the counter store.
    """

    def __init__(
        self,
        store: LedgerStore,
        config: Optional[RouterConfig] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        """Initialize quota accountant

        Args:
            store: Ledger store holding counters and usage records
            config: Routing configuration with the quota table
            settings: Application settings
            clock: Source of the current time (injectable for tests)
        """
        super().__init__("QuotaAccountant", settings)
        self.store = store
        self.config = config or self.settings.router
        self.clock = clock

    def _rule(self, tier: SubscriptionTier, service_type: ServiceType):
        bucket = bucket_for(ServiceType.parse(service_type))
        return bucket, self.config.quota_rule(SubscriptionTier.parse(tier), bucket)

    async def check_and_reserve(
        self,
        user_id: str,
        tenant_id: Optional[str],
        service_type: ServiceType,
        tier: SubscriptionTier
    ) -> QuotaDecision:
        """Atomically check the user's quota and reserve one slot

        Args:
            user_id: Requesting user
            tenant_id: Organisation of the user, if any
            service_type: Product feature being used
            tier: Effective subscription tier

        Returns:
            QuotaDecision; when allowed and limited it carries a reservation_id
        """
        tier = SubscriptionTier.parse(tier)
        bucket, rule = self._rule(tier, service_type)

        if rule.unlimited:
            return QuotaDecision(allowed=True, remaining=-1, limit=-1, tier_name=tier.value)

        with self.traced_operation(
            "quota.check_and_reserve",
            user_id=user_id,
            tenant_id=tenant_id,
            bucket=bucket.value,
            tier=tier.value,
        ):
            try:
                result = await self.store.reserve(
                    user_id=user_id,
                    bucket=bucket,
                    limit=rule.limit,
                    period_seconds=rule.period.seconds,
                    ttl_seconds=self.config.reservation_ttl_seconds,
                    reservation_id=str(uuid.uuid4()),
                    now=self.clock().timestamp(),
                )
            except StorageError as e:
                if not self.config.allow_on_ledger_outage:
                    raise
                self.logger.error(f"Quota store unavailable for {user_id}, allowing request: {str(e)}")
                return QuotaDecision(
                    allowed=True,
                    remaining=rule.limit,
                    limit=rule.limit,
                    tier_name=tier.value,
                )

        remaining = max(rule.limit - result.used - result.reserved, 0)
        if not result.allowed:
            self.logger.info(
                f"Quota exceeded for {user_id}: {bucket.value} {result.used}/{rule.limit} "
                f"({tier.value})"
            )
        return QuotaDecision(
            allowed=result.allowed,
            remaining=remaining,
            limit=rule.limit,
            tier_name=tier.value,
            reservation_id=result.reservation_id,
        )

    async def append_usage(self, record: UsageRecord) -> None:
        """Write the ledger entry; raises StorageError on failure"""
        await self.store.append_usage(record)

    async def settle(self, record: UsageRecord) -> bool:
        """Convert or release the record's reservation; raises StorageError on failure

        Returns:
            True if the usage counter was incremented
        """
        bucket, rule = self._rule(record.tier, record.service_type)
        if rule.unlimited:
            return False
        if record.reservation_id is None and not record.counts_against_quota:
            return False
        return await self.store.commit(
            user_id=record.user_id,
            bucket=bucket,
            period_seconds=rule.period.seconds,
            reservation_id=record.reservation_id,
            consume=record.counts_against_quota,
            idempotency_key=record.idempotency_key,
            now=self.clock().timestamp(),
        )

    async def record_attempt(self, record: UsageRecord) -> bool:
        """Append the record and settle its reservation, logging failures

        Inline form of what UsageRecorder does in the background.

        Args:
            record: Immutable usage record for one attempt

        Returns:
            True if both the ledger write and the settlement succeeded
        """
        ok = True
        try:
            await self.append_usage(record)
        except StorageError as e:
            # Ledger writes never fail the request
            self.logger.error(f"LedgerWriteFailure appending {record.record_id}: {str(e)}")
            ok = False
        try:
            await self.settle(record)
        except StorageError as e:
            self.logger.error(f"LedgerWriteFailure settling {record.record_id}: {str(e)}")
            ok = False
        return ok

    async def get_quota_status(
        self,
        user_id: str,
        service_type: ServiceType,
        tier: SubscriptionTier
    ) -> QuotaStatus:
        """Read-only quota view for a user and service type

        Raises:
            StorageError: If the counter cannot be read
        """
        tier = SubscriptionTier.parse(tier)
        bucket, rule = self._rule(tier, service_type)
        if rule.unlimited:
            return QuotaStatus(
                allowed=True,
                remaining=-1,
                limit=-1,
                tier_name=tier.value,
                bucket=bucket,
                period=rule.period.value,
            )

        counter = await self.store.get_counter(
            user_id, bucket, rule.period.seconds, self.clock().timestamp()
        )
        remaining = max(rule.limit - counter.used - counter.reserved, 0)
        return QuotaStatus(
            allowed=remaining > 0,
            remaining=remaining,
            limit=rule.limit,
            tier_name=tier.value,
            bucket=bucket,
            period=rule.period.value,
            resets_at=counter.last_reset_at + timedelta(seconds=rule.period.seconds),
        )

    async def recent_usage(self, user_id: str, limit: Optional[int] = None) -> List[UsageRecord]:
        """Newest-first ledger entries for a user"""
        return await self.store.list_usage(user_id, limit or self.config.usage_history_limit)

    async def health_check(self):
        return {"service": self.service_name, **(await self.store.health_check())}
