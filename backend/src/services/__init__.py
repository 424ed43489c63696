"""Services module for the Dash AI router"""

from .base_service import BaseService
from .service_factory import ServiceFactory, ServiceName
from .orchestrator import CancellationToken, RequestOrchestrator
from .quota import QuotaAccountant, UsageRecorder
from .profile_service import ProfileProvider, StaticProfileProvider, resolve_effective_tier

__all__ = [
    # Base classes
    "BaseService",

    # Factory
    "ServiceFactory",
    "ServiceName",

    # Services
    "RequestOrchestrator",
    "QuotaAccountant",
    "UsageRecorder",
    "CancellationToken",

    # Profiles
    "ProfileProvider",
    "StaticProfileProvider",
    "resolve_effective_tier",
]
