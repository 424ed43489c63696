"""Tests for the Redis ledger store (skipped without a local Redis)"""

import asyncio
import uuid

import pytest
import pytest_asyncio

from src.models.subscription import QuotaBucket, ServiceType
from src.models.usage import UsageRecord, UsageStatus
from src.storage.base_storage import StorageConnectionError
from src.storage.redis_storage import RedisStorage


DAY = 86400
NOW = 1_740_830_400.0
REDIS_TEST_URL = "redis://localhost:6379/1"


class TestRedisLedger:
    """Test suite for RedisStorage"""

    @pytest_asyncio.fixture
    async def storage(self, redis_test_client):
        """Create a RedisStorage instance with an isolated key prefix"""
        storage = RedisStorage(redis_url=REDIS_TEST_URL, key_prefix=f"test_{uuid.uuid4().hex[:8]}")
        yield storage
        await storage.close()

    def test_initialization(self):
        storage = RedisStorage(redis_url=REDIS_TEST_URL, key_prefix="dash_test")
        assert storage.storage_type == "redis"
        assert storage.key_prefix == "dash_test"
        assert storage._get_counter_key("u1", QuotaBucket.EXAMS) == "dash_test:quota:u1:exams"

    @pytest.mark.asyncio
    async def test_connection_failure(self):
        """Test handling of connection failure"""
        storage = RedisStorage(redis_url="redis://invalid:9999/0")

        with pytest.raises(StorageConnectionError):
            await storage._ensure_connected()

    @pytest.mark.asyncio
    async def test_concurrent_reservations_never_overshoot(self, storage):
        results = await asyncio.gather(*[
            storage.reserve("u1", QuotaBucket.CHAT_MESSAGES, 5, DAY, 300, f"r{i}", NOW)
            for i in range(20)
        ])
        assert sum(1 for r in results if r.allowed) == 5

    @pytest.mark.asyncio
    async def test_commit_and_idempotency(self, storage):
        result = await storage.reserve("u1", QuotaBucket.EXAMS, 3, DAY, 300, "r1", NOW)
        assert await storage.commit("u1", QuotaBucket.EXAMS, DAY, result.reservation_id, True, "k1", NOW)
        assert not await storage.commit("u1", QuotaBucket.EXAMS, DAY, None, True, "k1", NOW)

        counter = await storage.get_counter("u1", QuotaBucket.EXAMS, DAY, NOW)
        assert counter.used == 1
        assert counter.reserved == 0

    @pytest.mark.asyncio
    async def test_reset_boundary(self, storage):
        await storage.commit("u1", QuotaBucket.EXAMS, DAY, None, True, None, NOW)

        at_boundary = await storage.reserve("u1", QuotaBucket.EXAMS, 3, DAY, 300, "a", NOW + DAY)
        after = await storage.reserve("u1", QuotaBucket.EXAMS, 3, DAY, 300, "b", NOW + DAY + 1)

        assert at_boundary.used == 1
        assert after.used == 0

    @pytest.mark.asyncio
    async def test_usage_list_newest_first(self, storage):
        for i in range(3):
            await storage.append_usage(UsageRecord(
                user_id="u1", service_type=ServiceType.GENERAL, status=UsageStatus.ERROR, tokens_in=i,
            ))

        records = await storage.list_usage("u1", limit=2)
        assert [r.tokens_in for r in records] == [2, 1]
