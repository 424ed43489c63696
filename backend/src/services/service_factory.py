"""Service factory wiring the routing engine together"""

from typing import Dict, Any, Optional
from enum import Enum

from .base_service import BaseService
from .llm.providers.base_provider import ProviderAdapter
from .llm.providers.provider_decorators import initialize_providers
from .llm.providers.provider_registry import ProviderRegistry
from .orchestrator.request_orchestrator import RequestOrchestrator
from .profile_service import ProfileProvider, StaticProfileProvider
from .quota.quota_accountant import QuotaAccountant
from .quota.usage_recorder import UsageRecorder
from ..core.config import Settings, get_settings
from ..core.logger import CentralizedLogger
from ..models.subscription import ProviderName
from ..storage.base_storage import LedgerStore
from ..storage.storage_factory import StorageFactory


class ServiceName(str, Enum):
    """Singleton services owned by the factory"""
    QUOTA_ACCOUNTANT = "quota_accountant"
    ORCHESTRATOR = "orchestrator"


class ServiceFactory:
    """Factory for creating service instances with dependency injection"""

    _instances: Dict[ServiceName, BaseService] = {}
    _recorder: Optional[UsageRecorder] = None
    _profiles: Optional[ProfileProvider] = None
    _logger = CentralizedLogger("ServiceFactory")

    @classmethod
    def get_accountant(
        cls,
        store: Optional[LedgerStore] = None,
        settings: Optional[Settings] = None
    ) -> QuotaAccountant:
        """Create or get the quota accountant

        Args:
            store: Ledger store (injects the configured default if None)
            settings: Application settings

        Returns:
            QuotaAccountant instance
        """
        if ServiceName.QUOTA_ACCOUNTANT not in cls._instances:
            settings = settings or get_settings()
            if store is None:
                store = StorageFactory.get_default()
                cls._logger.debug("Injected default ledger store for quota accountant")
            cls._instances[ServiceName.QUOTA_ACCOUNTANT] = QuotaAccountant(store, settings.router, settings)
            cls._logger.info("Created quota_accountant service instance")
        return cls._instances[ServiceName.QUOTA_ACCOUNTANT]

    @classmethod
    def get_recorder(cls) -> UsageRecorder:
        if cls._recorder is None:
            cls._recorder = UsageRecorder(cls.get_accountant())
        return cls._recorder

    @classmethod
    def get_orchestrator(
        cls,
        adapters: Optional[Dict[ProviderName, ProviderAdapter]] = None,
        settings: Optional[Settings] = None
    ) -> RequestOrchestrator:
        """Create or get the request orchestrator

        Args:
            adapters: Provider adapters (built from configured credentials if None)
            settings: Application settings

        Returns:
            RequestOrchestrator instance
        """
        if ServiceName.ORCHESTRATOR not in cls._instances:
            settings = settings or get_settings()
            if adapters is None:
                if not ProviderRegistry.get_available_providers():
                    stats = initialize_providers()
                    cls._logger.info(f"Registered {stats['registered_providers']} provider adapters")
                adapters = ProviderRegistry.build_configured(settings)
            if not adapters:
                cls._logger.warning("No provider adapters configured; every request will fail")
            cls._instances[ServiceName.ORCHESTRATOR] = RequestOrchestrator(
                cls.get_accountant(settings=settings),
                adapters,
                config=settings.router,
                settings=settings,
                recorder=cls.get_recorder(),
            )
            cls._logger.info(
                f"Created orchestrator with providers: {', '.join(p.value for p in adapters) or 'none'}"
            )
        return cls._instances[ServiceName.ORCHESTRATOR]

    @classmethod
    def get_profile_provider(cls, settings: Optional[Settings] = None) -> ProfileProvider:
        if cls._profiles is None:
            cls._profiles = StaticProfileProvider((settings or get_settings()).profiles)
        return cls._profiles

    @classmethod
    def set_profile_provider(cls, provider: ProfileProvider) -> None:
        """Plug in the application's profile source"""
        cls._profiles = provider

    @classmethod
    def get_all_instances(cls) -> Dict[ServiceName, BaseService]:
        return cls._instances.copy()

    @classmethod
    async def shutdown(cls):
        """Drain pending usage writes and release provider/storage resources"""
        if cls._recorder is not None:
            await cls._recorder.flush()
        await ProviderRegistry.shutdown_all()
        await StorageFactory.close_all()
        cls.clear_instances()

    @classmethod
    def clear_instances(cls):
        """Clear all singleton instances (mainly for testing)"""
        cls._instances.clear()
        cls._recorder = None
        cls._profiles = None
        cls._logger.info("Cleared all service instances")

    @classmethod
    async def health_check_all(cls) -> Dict[str, Any]:
        """Run health checks on all active services

        Returns:
            Health status for all services
        """
        health_status = {}

        for service_name, instance in cls._instances.items():
            try:
                health_status[service_name.value] = await instance.health_check()
            except Exception as e:
                health_status[service_name.value] = {
                    "status": "error",
                    "error": str(e)
                }

        return health_status
