"""Filesystem ledger store implementation"""

import asyncio
import json
import weakref
from pathlib import Path
from typing import Dict, List, Optional, Any
from urllib.parse import quote

import aiofiles
import aiofiles.os

from .base_storage import LedgerStore, ReserveResult, StorageError, to_datetime
from ..core.config import get_settings
from ..models.subscription import QuotaBucket
from ..models.usage import QuotaCounter, UsageRecord


class FilesystemStorage(LedgerStore):
    """JSON counter files plus a JSONL usage ledger per user

    Atomicity comes from one asyncio.Lock per (user, bucket) owned by this
    instance, so a single process must own the directory.
    """

    def __init__(self, base_path: Optional[str] = None):
        """Initialize filesystem ledger

        Args:
            base_path: Base directory for counters and ledger files
        """
        super().__init__("filesystem")
        settings = get_settings()
        self.base_path = Path(base_path or settings.storage.filesystem_path)

        self.counters_dir = self.base_path / "counters"
        self.usage_dir = self.base_path / "usage"
        for directory in [self.counters_dir, self.usage_dir]:
            directory.mkdir(parents=True, exist_ok=True)

        # Locks live only while some coroutine holds or awaits them
        self._locks: weakref.WeakValueDictionary = weakref.WeakValueDictionary()

        self.logger.info(f"Initialized filesystem ledger at {self.base_path}")

    @staticmethod
    def _safe_name(value: str) -> str:
        # Prefixed so ids like ".." cannot escape the directory
        return "u_" + quote(value, safe="")

    def _get_counter_path(self, user_id: str, bucket: QuotaBucket) -> Path:
        return self.counters_dir / self._safe_name(user_id) / f"{QuotaBucket(bucket).value}.json"

    def _get_usage_path(self, user_id: str) -> Path:
        return self.usage_dir / f"{self._safe_name(user_id)}.jsonl"

    def _lock_for(self, *key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def _read_counter(self, path: Path, now: float) -> Dict[str, Any]:
        if not await aiofiles.os.path.exists(path):
            return {"used": 0, "total": 0, "last_reset": now, "reservations": {}, "applied_keys": {}}
        async with aiofiles.open(path, "r") as f:
            return json.loads(await f.read())

    async def _write_counter(self, path: Path, state: Dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = path.with_suffix(".tmp")
        async with aiofiles.open(temp_path, "w") as f:
            await f.write(json.dumps(state))
        await aiofiles.os.replace(temp_path, path)

    @staticmethod
    def _apply_reset(state: Dict[str, Any], period_seconds: int, now: float) -> None:
        if now - float(state["last_reset"]) > period_seconds:
            state["used"] = 0
            state["last_reset"] = now

    @staticmethod
    def _prune(state: Dict[str, Any], period_seconds: int, now: float) -> None:
        state["reservations"] = {
            rid: expires for rid, expires in state.get("reservations", {}).items()
            if float(expires) > now
        }
        # Keys older than two periods can no longer double count
        state["applied_keys"] = {
            key: applied_at for key, applied_at in state.get("applied_keys", {}).items()
            if now - float(applied_at) <= 2 * period_seconds
        }

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
        with self.traced_operation("reserve", user_id=user_id, bucket=QuotaBucket(bucket).value):
            path = self._get_counter_path(user_id, bucket)
            try:
                async with self._lock_for(user_id, QuotaBucket(bucket).value):
                    state = await self._read_counter(path, now)
                    self._apply_reset(state, period_seconds, now)
                    self._prune(state, period_seconds, now)

                    used = int(state["used"])
                    reserved = len(state["reservations"])
                    allowed = used + reserved < limit
                    if allowed:
                        state["reservations"][reservation_id] = now + ttl_seconds
                        reserved += 1
                    await self._write_counter(path, state)
            except (OSError, ValueError) as e:
                raise StorageError(f"Filesystem reserve failed: {str(e)}") from e

            return ReserveResult(
                allowed=allowed,
                used=used,
                reserved=reserved,
                reservation_id=reservation_id if allowed else None,
                last_reset_at=to_datetime(state["last_reset"]),
            )

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
        with self.traced_operation("commit", user_id=user_id, bucket=QuotaBucket(bucket).value):
            path = self._get_counter_path(user_id, bucket)
            try:
                async with self._lock_for(user_id, QuotaBucket(bucket).value):
                    state = await self._read_counter(path, now)
                    self._prune(state, period_seconds, now)
                    if reservation_id:
                        state["reservations"].pop(reservation_id, None)

                    counted = False
                    if consume and not (idempotency_key and idempotency_key in state["applied_keys"]):
                        self._apply_reset(state, period_seconds, now)
                        state["used"] = int(state["used"]) + 1
                        state["total"] = int(state["total"]) + 1
                        if idempotency_key:
                            state["applied_keys"][idempotency_key] = now
                        counted = True

                    await self._write_counter(path, state)
            except (OSError, ValueError) as e:
                raise StorageError(f"Filesystem commit failed: {str(e)}") from e
            return counted

    async def get_counter(
        self,
        user_id: str,
        bucket: QuotaBucket,
        period_seconds: int,
        now: float
    ) -> QuotaCounter:
        path = self._get_counter_path(user_id, bucket)
        try:
            async with self._lock_for(user_id, QuotaBucket(bucket).value):
                state = await self._read_counter(path, now)
        except (OSError, ValueError) as e:
            raise StorageError(f"Filesystem read failed: {str(e)}") from e

        self._apply_reset(state, period_seconds, now)
        self._prune(state, period_seconds, now)
        return QuotaCounter(
            user_id=user_id,
            bucket=bucket,
            used=int(state["used"]),
            reserved=len(state["reservations"]),
            total=int(state["total"]),
            last_reset_at=to_datetime(state["last_reset"]),
        )

    async def append_usage(self, record: UsageRecord) -> None:
        with self.traced_operation("append_usage", user_id=record.user_id, status=record.status.value):
            path = self._get_usage_path(record.user_id)
            try:
                async with self._lock_for(record.user_id, "ledger"):
                    async with aiofiles.open(path, "a") as f:
                        await f.write(record.model_dump_json() + "\n")
            except OSError as e:
                raise StorageError(f"Filesystem ledger append failed: {str(e)}") from e

    async def list_usage(self, user_id: str, limit: int = 100) -> List[UsageRecord]:
        path = self._get_usage_path(user_id)
        try:
            if not await aiofiles.os.path.exists(path):
                return []
            async with aiofiles.open(path, "r") as f:
                lines = [line for line in (await f.read()).splitlines() if line.strip()]
            # ValidationError is a ValueError
            return [UsageRecord.model_validate_json(line) for line in reversed(lines[-limit:])]
        except (OSError, ValueError) as e:
            raise StorageError(f"Filesystem ledger read failed: {str(e)}") from e

    async def health_check(self) -> Dict[str, Any]:
        return {
            "status": "healthy" if self.base_path.exists() else "unhealthy",
            "storage_type": self.storage_type,
            "base_path": str(self.base_path),
        }
