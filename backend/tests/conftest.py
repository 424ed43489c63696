"""Pytest configuration and shared fixtures"""

import shutil
import tempfile
from pathlib import Path
from typing import Generator

import pytest
import pytest_asyncio

from src.core.config import RouterConfig, Settings, StorageConfig
from src.services.quota.quota_accountant import QuotaAccountant
from src.services.quota.usage_recorder import UsageRecorder
from src.storage.filesystem_storage import FilesystemStorage

from support import FIXED_NOW


REDIS_TEST_URL = "redis://localhost:6379/1"


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for testing"""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    if temp_path.exists():
        shutil.rmtree(temp_path)


@pytest.fixture
def router_config() -> RouterConfig:
    """Default routing configuration"""
    return RouterConfig()


@pytest.fixture
def settings(temp_dir, router_config) -> Settings:
    """Settings pointing the ledger at a temporary directory"""
    return Settings(
        storage=StorageConfig(type="filesystem", filesystem_path=str(temp_dir / "ledger")),
        router=router_config,
    )


@pytest.fixture
def ledger(temp_dir) -> FilesystemStorage:
    """Filesystem ledger store in a temporary directory"""
    return FilesystemStorage(base_path=str(temp_dir / "ledger"))


@pytest.fixture
def clock():
    """Mutable clock for the quota accountant"""
    class Clock:
        now = FIXED_NOW

        def __call__(self):
            return self.now

    return Clock()


@pytest.fixture
def accountant(ledger, router_config, settings, clock) -> QuotaAccountant:
    """Quota accountant over the filesystem ledger"""
    return QuotaAccountant(ledger, router_config, settings, clock=clock)


@pytest.fixture
def recorder(accountant) -> UsageRecorder:
    """Usage recorder without retry delays"""
    return UsageRecorder(accountant, attempts=2, retry_delay_seconds=0)


@pytest_asyncio.fixture
async def redis_test_client():
    """Create a Redis client for testing (if Redis is available)"""
    import redis.asyncio as redis
    from redis.exceptions import ConnectionError as RedisConnectionError

    # Use a different database for testing (db=1)
    client = redis.from_url(REDIS_TEST_URL, encoding="utf-8", decode_responses=True)
    try:
        await client.ping()
    except (RedisConnectionError, OSError):
        await client.aclose()
        pytest.skip("Redis not available for testing")

    yield client
    await client.flushdb()
    await client.aclose()
