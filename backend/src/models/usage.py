"""Usage ledger and quota counter models"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Dict, Any

from pydantic import BaseModel, ConfigDict, Field

from .subscription import QuotaBucket, ServiceType, SubscriptionTier


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UsageStatus(str, Enum):
    """Outcome recorded for one attempt"""
    SUCCESS = "success"
    ERROR = "error"
    RATE_LIMITED = "rate_limited"
    QUOTA_EXCEEDED = "quota_exceeded"
    CANCELLED = "cancelled"


class UsageRecord(BaseModel):
    """Immutable ledger entry, one per attempt"""
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    record_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    tenant_id: Optional[str] = None
    service_type: ServiceType
    tier: SubscriptionTier = SubscriptionTier.FREE
    provider: Optional[str] = None
    model: Optional[str] = None
    status: UsageStatus
    tokens_in: int = Field(0, ge=0)
    tokens_out: int = Field(0, ge=0)
    cost: Decimal = Field(Decimal("0"), ge=0)
    latency_ms: int = Field(0, ge=0)
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    reservation_id: Optional[str] = None
    idempotency_key: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def counts_against_quota(self) -> bool:
        return self.status == UsageStatus.SUCCESS


class QuotaCounter(BaseModel):
    """Snapshot of a user's counter for one bucket"""
    user_id: str
    bucket: QuotaBucket
    used: int = Field(0, ge=0)
    reserved: int = Field(0, ge=0)
    total: int = Field(0, ge=0)
    last_reset_at: datetime = Field(default_factory=utcnow)


class QuotaDecision(BaseModel):
    """Result of an atomic check-and-reserve"""
    allowed: bool
    remaining: int
    limit: int
    tier_name: str
    reservation_id: Optional[str] = None

    @property
    def unlimited(self) -> bool:
        return self.limit < 0


class QuotaStatus(BaseModel):
    """Read-only quota view exposed to callers"""
    allowed: bool
    remaining: int
    limit: int
    tier_name: str
    bucket: Optional[QuotaBucket] = None
    period: Optional[str] = None
    resets_at: Optional[datetime] = None
