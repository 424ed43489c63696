"""Storage factory for creating ledger store instances"""

from typing import Type, Dict, Optional
from enum import Enum

from .base_storage import LedgerStore, StorageError
from .redis_storage import RedisStorage
from .filesystem_storage import FilesystemStorage
from ..core.logger import CentralizedLogger
from ..core.config import get_settings


class StorageType(str, Enum):
    """Supported ledger backend types"""
    REDIS = "redis"
    FILESYSTEM = "filesystem"


class StorageFactory:
    """Factory for creating ledger store instances with dependency injection"""

    _storage_classes: Dict[StorageType, Type[LedgerStore]] = {
        StorageType.REDIS: RedisStorage,
        StorageType.FILESYSTEM: FilesystemStorage,
    }

    _instances: Dict[StorageType, LedgerStore] = {}
    _logger = CentralizedLogger("StorageFactory")

    @classmethod
    def register(cls, storage_type: StorageType, storage_class: Type[LedgerStore]):
        """Register a custom ledger store class

        Args:
            storage_type: Type identifier for the storage
            storage_class: Ledger store class to register
        """
        cls._storage_classes[storage_type] = storage_class
        cls._logger.info(f"Registered ledger store: {storage_type}")

    @classmethod
    def create(
        cls,
        storage_type: Optional[StorageType] = None,
        singleton: bool = True,
        **kwargs
    ) -> LedgerStore:
        """Create or get a ledger store instance

        Args:
            storage_type: Type of storage to create (uses config default if None)
            singleton: Whether to use singleton pattern (default: True)
            **kwargs: Additional arguments to pass to storage constructor

        Returns:
            Ledger store instance

        Raises:
            StorageError: If storage type is unknown or creation fails
        """
        settings = get_settings()
        if storage_type is None:
            try:
                storage_type = StorageType(settings.storage.type)
            except ValueError as e:
                raise StorageError(f"Unknown storage type: {settings.storage.type}") from e
            cls._logger.info(f"Using configured storage type: {storage_type.value}")

        if storage_type not in cls._storage_classes:
            raise StorageError(f"Unknown storage type: {storage_type}")

        if singleton and storage_type in cls._instances:
            cls._logger.debug(f"Returning existing {storage_type.value} instance")
            return cls._instances[storage_type]

        if storage_type == StorageType.REDIS and "redis_url" not in kwargs:
            kwargs["redis_url"] = settings.storage.redis_url

        if storage_type == StorageType.FILESYSTEM and "base_path" not in kwargs:
            kwargs["base_path"] = settings.storage.filesystem_path

        try:
            instance = cls._storage_classes[storage_type](**kwargs)
        except OSError as e:
            cls._logger.error(f"Failed to create {storage_type.value} storage: {str(e)}")
            raise StorageError(f"Failed to create storage: {str(e)}") from e

        if singleton:
            cls._instances[storage_type] = instance

        cls._logger.info(
            f"Created {storage_type.value} ledger store "
            f"(singleton: {singleton})"
        )
        return instance

    @classmethod
    def get_default(cls) -> LedgerStore:
        """Get the default ledger store based on configuration"""
        return cls.create()

    @classmethod
    async def close_all(cls):
        """Close and forget all singleton instances"""
        for instance in cls._instances.values():
            await instance.close()
        cls._instances.clear()
        cls._logger.info("Closed all ledger stores")

    @classmethod
    def clear_instances(cls):
        """Forget singleton instances without closing them (mainly for testing)"""
        cls._instances.clear()
