"""Usage ledger storage for the Dash AI router"""

from .base_storage import (
    LedgerStore,
    ReserveResult,
    StorageError,
    StorageConnectionError,
)
from .filesystem_storage import FilesystemStorage
from .redis_storage import RedisStorage
from .storage_factory import StorageFactory, StorageType

__all__ = [
    # Base classes and exceptions
    "LedgerStore",
    "ReserveResult",
    "StorageError",
    "StorageConnectionError",

    # Storage implementations
    "FilesystemStorage",
    "RedisStorage",

    # Factory
    "StorageFactory",
    "StorageType",
]
