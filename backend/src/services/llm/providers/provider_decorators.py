"""Decorator-based registration for provider adapters"""

import importlib
from pathlib import Path
from typing import Type, List, Dict, Any

from ....core.logger import CentralizedLogger
from ....models.subscription import ProviderName
from .base_provider import ProviderAdapter
from .provider_registry import ProviderRegistry


logger = CentralizedLogger("ProviderDiscovery")

# Adapters collected by the decorator before registration
_decorated_providers: Dict[ProviderName, Type[ProviderAdapter]] = {}


def register_provider(provider_name: ProviderName):
    """Decorator to register a provider adapter

    Args:
        provider_name: Provider identifier the adapter serves

    Returns:
        Decorator function
    """
    def decorator(cls: Type[ProviderAdapter]) -> Type[ProviderAdapter]:
        cls.provider_name = ProviderName(provider_name)
        _decorated_providers[cls.provider_name] = cls
        return cls

    return decorator


def auto_register_decorated_providers() -> int:
    """Register every adapter collected by @register_provider

    Returns:
        Number of adapters registered
    """
    for provider_name, provider_class in _decorated_providers.items():
        ProviderRegistry.register(provider_name, provider_class)
    return len(_decorated_providers)


def scan_and_import_providers(
    package_path: str = "src.services.llm.providers.implementations"
) -> List[str]:
    """Import all adapter modules so their decorators run

    Args:
        package_path: Python package path containing adapter modules

    Returns:
        List of imported module names
    """
    imported_modules = []
    base_path = Path(__file__).parent / "implementations"

    for file_path in sorted(base_path.glob("*_providers.py")):
        full_module_path = f"{package_path}.{file_path.stem}"
        try:
            importlib.import_module(full_module_path)
            imported_modules.append(full_module_path)
        except ImportError as e:
            logger.warning(f"Could not import provider module {full_module_path}: {e}")

    return imported_modules


def initialize_providers() -> Dict[str, Any]:
    """Scan for adapter modules and register them

    Returns:
        Dictionary with initialization statistics
    """
    imported_modules = scan_and_import_providers()
    registered_count = auto_register_decorated_providers()

    return {
        "imported_modules": imported_modules,
        "imported_module_count": len(imported_modules),
        "registered_providers": registered_count,
        "total_providers": len(ProviderRegistry.get_available_providers()),
    }
