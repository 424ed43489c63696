"""Redis ledger store implementation"""

import json
from typing import Dict, List, Optional, Any

import redis.asyncio as redis
from redis.exceptions import RedisError, ConnectionError as RedisConnectionError

from .base_storage import (
    LedgerStore,
    ReserveResult,
    StorageError,
    StorageConnectionError,
    to_datetime,
)
from ..core.config import get_settings
from ..models.subscription import QuotaBucket
from ..models.usage import QuotaCounter, UsageRecord


# KEYS: counter hash, reservation zset
# ARGV: now, period, limit, ttl, reservation_id
RESERVE_SCRIPT = """
local now = tonumber(ARGV[1])
local period = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
local ttl = tonumber(ARGV[4])
local last_reset = tonumber(redis.call('HGET', KEYS[1], 'last_reset'))
if not last_reset then
  last_reset = now
  redis.call('HSET', KEYS[1], 'used', 0, 'total', 0, 'last_reset', ARGV[1])
elseif now - last_reset > period then
  last_reset = now
  redis.call('HSET', KEYS[1], 'used', 0, 'last_reset', ARGV[1])
end
redis.call('ZREMRANGEBYSCORE', KEYS[2], '-inf', now)
local used = tonumber(redis.call('HGET', KEYS[1], 'used') or '0')
local reserved = redis.call('ZCARD', KEYS[2])
if used + reserved >= limit then
  return {0, used, reserved, tostring(last_reset)}
end
redis.call('ZADD', KEYS[2], now + ttl, ARGV[5])
redis.call('EXPIRE', KEYS[2], ttl * 2)
return {1, used, reserved + 1, tostring(last_reset)}
"""

# KEYS: counter hash, reservation zset, idempotency key
# ARGV: now, period, reservation_id, consume, has_idempotency_key, idempotency_ttl
COMMIT_SCRIPT = """
local now = tonumber(ARGV[1])
local period = tonumber(ARGV[2])
if ARGV[3] ~= '' then
  redis.call('ZREM', KEYS[2], ARGV[3])
end
if ARGV[4] ~= '1' then
  return 0
end
if ARGV[5] == '1' then
  local fresh = redis.call('SET', KEYS[3], ARGV[1], 'NX', 'EX', tonumber(ARGV[6]))
  if not fresh then
    return 0
  end
end
local last_reset = tonumber(redis.call('HGET', KEYS[1], 'last_reset'))
if not last_reset or now - last_reset > period then
  redis.call('HSET', KEYS[1], 'used', 0, 'last_reset', ARGV[1])
end
redis.call('HINCRBY', KEYS[1], 'used', 1)
redis.call('HINCRBY', KEYS[1], 'total', 1)
return 1
"""


class RedisStorage(LedgerStore):
    """Redis-backed ledger with Lua scripts for atomic quota updates"""

    def __init__(self, redis_url: Optional[str] = None, key_prefix: Optional[str] = None):
        """Initialize Redis ledger

        Args:
            redis_url: Redis connection URL
            key_prefix: Namespace for all keys
        """
        super().__init__("redis")
        settings = get_settings()
        self.redis_url = redis_url or settings.storage.redis_url
        self.key_prefix = key_prefix or settings.storage.key_prefix
        self.redis_client: Optional[redis.Redis] = None
        self._reserve_script = None
        self._commit_script = None

        self.logger.info(f"Initialized Redis ledger with URL: {self.redis_url}")

    async def _ensure_connected(self):
        """Ensure Redis connection is established and scripts are registered"""
        if not self.redis_client:
            try:
                self.redis_client = redis.from_url(
                    self.redis_url,
                    encoding="utf-8",
                    decode_responses=True
                )
                await self.redis_client.ping()
                self._reserve_script = self.redis_client.register_script(RESERVE_SCRIPT)
                self._commit_script = self.redis_client.register_script(COMMIT_SCRIPT)
                self.logger.info("Connected to Redis successfully")
            except (RedisError, RedisConnectionError, OSError) as e:
                self.redis_client = None
                self.logger.error(f"Failed to connect to Redis: {str(e)}")
                raise StorageConnectionError(f"Redis connection failed: {str(e)}") from e

    def _get_counter_key(self, user_id: str, bucket: QuotaBucket) -> str:
        return f"{self.key_prefix}:quota:{user_id}:{QuotaBucket(bucket).value}"

    def _get_reservations_key(self, user_id: str, bucket: QuotaBucket) -> str:
        return f"{self._get_counter_key(user_id, bucket)}:reservations"

    def _get_idempotency_key(self, user_id: str, bucket: QuotaBucket, key: Optional[str]) -> str:
        return f"{self._get_counter_key(user_id, bucket)}:applied:{key or '-'}"

    def _get_usage_key(self, user_id: str) -> str:
        return f"{self.key_prefix}:usage:{user_id}"

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
            await self._ensure_connected()
            try:
                allowed, used, reserved, last_reset = await self._reserve_script(
                    keys=[
                        self._get_counter_key(user_id, bucket),
                        self._get_reservations_key(user_id, bucket),
                    ],
                    args=[repr(now), period_seconds, limit, ttl_seconds, reservation_id],
                )
            except RedisError as e:
                raise StorageError(f"Redis reserve failed: {str(e)}") from e

            return ReserveResult(
                allowed=bool(int(allowed)),
                used=int(used),
                reserved=int(reserved),
                reservation_id=reservation_id if int(allowed) else None,
                last_reset_at=to_datetime(float(last_reset)),
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
            await self._ensure_connected()
            try:
                counted = await self._commit_script(
                    keys=[
                        self._get_counter_key(user_id, bucket),
                        self._get_reservations_key(user_id, bucket),
                        self._get_idempotency_key(user_id, bucket, idempotency_key),
                    ],
                    args=[
                        repr(now),
                        period_seconds,
                        reservation_id or "",
                        "1" if consume else "0",
                        "1" if idempotency_key else "0",
                        2 * period_seconds,
                    ],
                )
            except RedisError as e:
                raise StorageError(f"Redis commit failed: {str(e)}") from e
            return bool(int(counted))

    async def get_counter(
        self,
        user_id: str,
        bucket: QuotaBucket,
        period_seconds: int,
        now: float
    ) -> QuotaCounter:
        await self._ensure_connected()
        try:
            state = await self.redis_client.hgetall(self._get_counter_key(user_id, bucket))
            reserved = await self.redis_client.zcount(
                self._get_reservations_key(user_id, bucket), f"({now}", "+inf"
            )
        except RedisError as e:
            raise StorageError(f"Redis read failed: {str(e)}") from e

        last_reset = float(state.get("last_reset", now))
        used = int(state.get("used", 0))
        if now - last_reset > period_seconds:
            used, last_reset = 0, now
        return QuotaCounter(
            user_id=user_id,
            bucket=bucket,
            used=used,
            reserved=int(reserved),
            total=int(state.get("total", 0)),
            last_reset_at=to_datetime(last_reset),
        )

    async def append_usage(self, record: UsageRecord) -> None:
        with self.traced_operation("append_usage", user_id=record.user_id, status=record.status.value):
            await self._ensure_connected()
            try:
                await self.redis_client.lpush(self._get_usage_key(record.user_id), record.model_dump_json())
            except RedisError as e:
                raise StorageError(f"Redis ledger append failed: {str(e)}") from e

    async def list_usage(self, user_id: str, limit: int = 100) -> List[UsageRecord]:
        await self._ensure_connected()
        try:
            entries = await self.redis_client.lrange(self._get_usage_key(user_id), 0, limit - 1)
        except RedisError as e:
            raise StorageError(f"Redis ledger read failed: {str(e)}") from e
        return [UsageRecord.model_validate_json(entry) for entry in entries]

    async def health_check(self) -> Dict[str, Any]:
        try:
            await self._ensure_connected()
            await self.redis_client.ping()
            return {"status": "healthy", "storage_type": self.storage_type}
        except (StorageError, RedisError) as e:
            return {"status": "unhealthy", "storage_type": self.storage_type, "error": str(e)}

    async def close(self):
        """Close Redis connection"""
        if self.redis_client:
            await self.redis_client.aclose()
            self.redis_client = None
            self.logger.info("Closed Redis connection")
