"""Exception hierarchy for AI request routing"""

from enum import Enum
from typing import Optional, List, NamedTuple


USER_MESSAGE_QUOTA = "quota exceeded, upgrade or wait"
USER_MESSAGE_UNAVAILABLE = "temporarily unavailable, retry shortly"
USER_MESSAGE_TIER = "this feature requires a higher tier"


class AIRouterError(Exception):
    """Base exception for the routing engine"""
    user_message = USER_MESSAGE_UNAVAILABLE


class ConfigurationError(AIRouterError):
    """Invalid routing configuration"""


class ProviderErrorKind(str, Enum):
    """Vendor neutral failure classification"""
    AUTHENTICATION_FAILURE = "authentication_failure"
    RATE_LIMITED = "rate_limited"
    BALANCE_DEPLETED = "balance_depleted"
    MALFORMED_REQUEST = "malformed_request"
    NO_RESPONSE = "no_response"
    TIMEOUT = "timeout"
    PROTOCOL_VIOLATION = "protocol_violation"
    UNKNOWN = "unknown"

    @property
    def retryable_on_same_candidate(self) -> bool:
        return self in (ProviderErrorKind.TIMEOUT, ProviderErrorKind.UNKNOWN)


DEFAULT_RETRY_AFTER = {
    ProviderErrorKind.RATE_LIMITED: 30.0,
    ProviderErrorKind.BALANCE_DEPLETED: 60.0,
    ProviderErrorKind.TIMEOUT: 5.0,
    ProviderErrorKind.UNKNOWN: 5.0,
}


class ProviderError(AIRouterError):
    """Classified failure raised by a provider adapter"""

    def __init__(
        self,
        kind: ProviderErrorKind,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.provider = provider
        self.status_code = status_code
        self.retry_after = retry_after if retry_after is not None else DEFAULT_RETRY_AFTER.get(kind)

    def __repr__(self) -> str:
        return f"ProviderError(kind={self.kind.value}, provider={self.provider}, status={self.status_code})"


class TierCapabilityMismatch(AIRouterError):
    """No model available to the tier satisfies the request"""
    user_message = USER_MESSAGE_TIER


class QuotaExceeded(AIRouterError):
    """User has no remaining quota for the bucket"""
    user_message = USER_MESSAGE_QUOTA

    def __init__(self, message: str, limit: int = 0, remaining: int = 0, tier_name: str = ""):
        super().__init__(message)
        self.limit = limit
        self.remaining = remaining
        self.tier_name = tier_name


class CandidateFailure(NamedTuple):
    provider: str
    model: str
    kind: ProviderErrorKind
    detail: str


class ProviderChainExhausted(AIRouterError):
    """Every candidate in the fallback chain failed"""

    def __init__(self, failures: List[CandidateFailure]):
        summary = ", ".join(f"{f.provider}/{f.model}: {f.kind.value}" for f in failures)
        super().__init__(f"All providers failed ({summary or 'no candidates attempted'})")
        self.failures = failures


class RequestCancelled(AIRouterError):
    """Caller cancelled or the deadline elapsed"""


class LedgerWriteFailure(AIRouterError):
    """Usage ledger or counter write failed; always logged, never surfaced"""


class StorageError(AIRouterError):
    """Base exception for ledger storage operations"""


class StorageConnectionError(StorageError):
    """Failed to reach the ledger backend"""
