"""Base usage ledger store interface"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, List, Optional, Any, NamedTuple

from opentelemetry.trace import Status, StatusCode

from ..core.exceptions import StorageError, StorageConnectionError
from ..core.logger import CentralizedLogger
from ..core.telemetry import get_tracer, span_attributes
from ..models.subscription import QuotaBucket
from ..models.usage import QuotaCounter, UsageRecord

__all__ = [
    "LedgerStore",
    "ReserveResult",
    "StorageError",
    "StorageConnectionError",
]


class ReserveResult(NamedTuple):
    """Outcome of an atomic check-and-reserve"""
    allowed: bool
    used: int
    reserved: int
    reservation_id: Optional[str]
    last_reset_at: datetime


def to_datetime(epoch_seconds: float) -> datetime:
    return datetime.fromtimestamp(float(epoch_seconds), tz=timezone.utc)


class LedgerStore(ABC):
    """Abstract base class for quota counters and the usage ledger

    Implementations must make ``reserve`` a single atomic step: lazy period
    reset, comparison against the limit and the reservation happen together
    so concurrent requests cannot overshoot a limit.
    """

    def __init__(self, storage_type: str):
        """Initialize ledger store

        Args:
            storage_type: Type identifier for the storage backend
        """
        self.storage_type = storage_type
        self.logger = CentralizedLogger(f"Ledger-{storage_type}")
        self.tracer = get_tracer(f"ledger.{storage_type}")

    @abstractmethod
    async def reserve(
        self,
        user_id: str,
        bucket: QuotaBucket,
        limit: int,
        period_seconds: int,
        ttl_seconds: int,
        reservation_id: str,
        now: float
    ) -> ReserveResult:
        """Reset the counter if its period elapsed, then reserve one slot if under limit

        Args:
            user_id: Counter owner
            bucket: Quota bucket
            limit: Maximum consumed + reserved slots
            period_seconds: Reset period
            ttl_seconds: Lifetime of the reservation
            reservation_id: Identifier for the new reservation
            now: Current time as epoch seconds

        Returns:
            ReserveResult; reservation_id is None when denied
        """
        pass

    @abstractmethod
    async def commit(
        self,
        user_id: str,
        bucket: QuotaBucket,
        period_seconds: int,
        reservation_id: Optional[str],
        consume: bool,
        idempotency_key: Optional[str],
        now: float
    ) -> bool:
        """Release a reservation and, when consume is set, count one use

        A given idempotency key is counted at most once.

        Args:
            user_id: Counter owner
            bucket: Quota bucket
            period_seconds: Reset period (applied lazily before counting)
            reservation_id: Reservation to release, if any
            consume: Whether the attempt counts against the quota
            idempotency_key: Deduplication key for the increment
            now: Current time as epoch seconds

        Returns:
            True if the counter was incremented
        """
        pass

    @abstractmethod
    async def get_counter(
        self,
        user_id: str,
        bucket: QuotaBucket,
        period_seconds: int,
        now: float
    ) -> QuotaCounter:
        """Read a counter as it would look after a lazy reset, without writing"""
        pass

    @abstractmethod
    async def append_usage(self, record: UsageRecord) -> None:
        """Append an immutable usage record to the ledger"""
        pass

    @abstractmethod
    async def list_usage(self, user_id: str, limit: int = 100) -> List[UsageRecord]:
        """Most recent usage records for a user, newest first"""
        pass

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """Check storage health status"""
        pass

    async def close(self) -> None:
        """Release backend resources"""

    @contextmanager
    def traced_operation(self, operation_name: str, **attributes):
        """Create a traced operation context with automatic logging

        Args:
            operation_name: Name of the operation
            **attributes: Additional span attributes

        Returns:
            Trace context manager
        """
        with self.tracer.start_as_current_span(
            f"ledger.{self.storage_type}.{operation_name}",
            attributes=span_attributes(**attributes)
        ) as span:
            try:
                self.logger.debug(f"Starting {operation_name} operation")
                yield span
                span.set_status(Status(StatusCode.OK))
            except Exception as e:
                self.logger.error(
                    f"Error in {operation_name} operation: {str(e)}",
                    exc_info=True
                )
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise
