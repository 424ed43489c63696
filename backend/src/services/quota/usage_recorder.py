"""Fire-and-forget usage recording with bounded retry"""

import asyncio
from typing import Set, Awaitable, Callable, Optional

from .quota_accountant import QuotaAccountant
from ...core.logger import CentralizedLogger
from ...models.usage import UsageRecord


class UsageRecorder:
    """Writes usage records in background tasks

    The request path submits a record and moves on. Each write step (ledger
    append, reservation settlement) is retried a bounded number of times and
    then logged as a LedgerWriteFailure. ``flush`` awaits outstanding writes
    for shutdown and tests.
    """

    def __init__(
        self,
        accountant: QuotaAccountant,
        attempts: Optional[int] = None,
        retry_delay_seconds: Optional[float] = None
    ):
        self.accountant = accountant
        self.attempts = attempts or accountant.config.ledger_write_attempts
        self.retry_delay_seconds = (
            retry_delay_seconds
            if retry_delay_seconds is not None
            else accountant.config.ledger_retry_delay_seconds
        )
        self.logger = CentralizedLogger("UsageRecorder")
        self._pending: Set[asyncio.Task] = set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def submit(self, record: UsageRecord, settle: bool = True) -> asyncio.Task:
        """Schedule the write of one record without awaiting it

        Args:
            record: Usage record to append
            settle: Also settle its reservation; False when the caller already released it
        """
        task = asyncio.create_task(self._write(record, settle), name=f"usage-{record.record_id}")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _write(self, record: UsageRecord, settle: bool) -> None:
        await self._with_retry("append", record, self.accountant.append_usage)
        if settle:
            await self._with_retry("settle", record, self.accountant.settle)

    async def release(self, record: UsageRecord) -> None:
        """Settle a record's reservation now, before the caller reserves again"""
        await self._with_retry("settle", record, self.accountant.settle)

    async def _with_retry(
        self,
        step: str,
        record: UsageRecord,
        operation: Callable[[UsageRecord], Awaitable]
    ) -> None:
        for attempt in range(1, self.attempts + 1):
            try:
                await operation(record)
                return
            except Exception as e:
                # Ledger writes never fail the request
                if attempt == self.attempts:
                    self.logger.error(
                        f"LedgerWriteFailure: {step} of {record.record_id} failed "
                        f"after {attempt} attempts: {str(e)}"
                    )
                    return
                self.logger.warning(f"Retrying {step} of {record.record_id}: {str(e)}")
                await asyncio.sleep(self.retry_delay_seconds)

    async def flush(self) -> None:
        """Wait for every outstanding write"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
