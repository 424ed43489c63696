"""Registry for provider adapters with auto-discovery"""

from typing import Dict, Type, Optional, List, Any
from ....core.config import Settings
from ....core.logger import CentralizedLogger
from ....models.subscription import ProviderName
from .base_provider import ProviderAdapter


class ProviderRegistry:
    """Registry for managing provider adapters

    Maps the closed set of provider identifiers onto adapter classes and
    keeps one adapter instance per provider.
    """

    _providers: Dict[ProviderName, Type[ProviderAdapter]] = {}
    _instances: Dict[ProviderName, ProviderAdapter] = {}
    _logger = CentralizedLogger("ProviderRegistry")

    @classmethod
    def register(cls, provider_name: ProviderName, provider_class: Type[ProviderAdapter]):
        """Register an adapter class

        Args:
            provider_name: Provider identifier
            provider_class: Adapter class to register
        """
        if not issubclass(provider_class, ProviderAdapter):
            raise ValueError(f"{provider_class} must inherit from ProviderAdapter")

        cls._providers[ProviderName(provider_name)] = provider_class
        cls._logger.info(f"Registered provider adapter: {ProviderName(provider_name).value}")

    @classmethod
    def create(
        cls,
        provider_name: ProviderName,
        config: Optional[Dict[str, Any]] = None,
        singleton: bool = True
    ) -> ProviderAdapter:
        """Create or get an adapter instance

        Args:
            provider_name: Provider to create
            config: Constructor arguments (api_key, timeout_seconds, ...)
            singleton: If True, reuse existing instances

        Returns:
            Adapter instance

        Raises:
            ValueError: If provider not registered
        """
        provider_name = ProviderName(provider_name)
        if provider_name not in cls._providers:
            available = ", ".join(p.value for p in cls._providers)
            raise ValueError(
                f"Provider '{provider_name.value}' not found. "
                f"Available providers: {available}"
            )

        if singleton and provider_name in cls._instances:
            return cls._instances[provider_name]

        adapter = cls._providers[provider_name](**(config or {}))

        if singleton:
            cls._instances[provider_name] = adapter

        cls._logger.debug(f"Created provider adapter: {provider_name.value}")
        return adapter

    @classmethod
    def build_configured(cls, settings: Settings) -> Dict[ProviderName, ProviderAdapter]:
        """Instantiate adapters for every registered provider that has credentials

        Args:
            settings: Application settings

        Returns:
            Mapping of provider to adapter, missing providers omitted
        """
        adapters: Dict[ProviderName, ProviderAdapter] = {}
        for provider_name in cls._providers:
            api_key = settings.providers.api_key_for(provider_name)
            if not api_key:
                cls._logger.warning(f"No API key for {provider_name.value}; provider disabled")
                continue
            config: Dict[str, Any] = {
                "api_key": api_key,
                "timeout_seconds": settings.router.request_timeout_seconds,
            }
            if provider_name == ProviderName.GLM:
                config["base_url"] = settings.providers.glm_base_url
            adapters[provider_name] = cls.create(provider_name, config)
        return adapters

    @classmethod
    def get_available_providers(cls) -> List[ProviderName]:
        """Get registered provider identifiers"""
        return list(cls._providers.keys())

    @classmethod
    def clear(cls):
        """Clear all registered providers (mainly for testing)"""
        cls._providers.clear()
        cls._instances.clear()
        cls._logger.debug("Cleared all registered providers")

    @classmethod
    async def shutdown_all(cls):
        """Shutdown all adapter instances"""
        for adapter in cls._instances.values():
            await adapter.shutdown()
        cls._instances.clear()
        cls._logger.info("Shutdown all provider adapters")
