"""API middleware modules"""

from .auth import AuthMiddleware
from .telemetry import TelemetryMiddleware
from .error_handler import ErrorHandlerMiddleware

__all__ = [
    "AuthMiddleware",
    "TelemetryMiddleware",
    "ErrorHandlerMiddleware"
]