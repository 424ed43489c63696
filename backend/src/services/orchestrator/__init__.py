"""Request orchestration state machine"""

from .cancellation import CancellationToken
from .circuit_breaker import ProviderCircuitBreaker
from .request_orchestrator import OrchestratorState, RequestOrchestrator, error_response

__all__ = [
    "CancellationToken",
    "ProviderCircuitBreaker",
    "OrchestratorState",
    "RequestOrchestrator",
    "error_response",
]
