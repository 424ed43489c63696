"""Provider adapters, model selection and cost calculation"""

from .base_provider import ProviderAdapter, classify_http_status
from .provider_registry import ProviderRegistry
from .provider_decorators import register_provider, initialize_providers
from .model_selector import ModelSelector, FallbackChain, select_chain
from .cost_calculator import calculate_cost

__all__ = [
    'ProviderAdapter',
    'classify_http_status',
    'ProviderRegistry',
    'register_provider',
    'initialize_providers',
    'ModelSelector',
    'FallbackChain',
    'select_chain',
    'calculate_cost',
]
