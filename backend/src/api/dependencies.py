"""API Dependencies for dependency injection"""

from typing import Optional, Dict, Any
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import APIKeyHeader

from ..core.config import get_settings
from ..services.orchestrator.request_orchestrator import RequestOrchestrator
from ..services.profile_service import ProfileProvider
from ..services.quota.quota_accountant import QuotaAccountant
from ..services.service_factory import ServiceFactory


# API Key security
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def get_current_user(
    request: Request,
    api_key: Optional[str] = Depends(api_key_header)
) -> Dict[str, Any]:
    """Get current user from API key

    Args:
        request: FastAPI request object
        api_key: API key from header

    Returns:
        User information dictionary

    Raises:
        HTTPException: If no user could be established
    """
    settings = get_settings()

    # Get user from request state (set by auth middleware)
    if hasattr(request.state, "user"):
        return request.state.user

    if settings.environment == "development" and (api_key is None or api_key == settings.auth.test_api_key):
        return {
            "user_id": settings.auth.test_user,
            "tenant_id": request.headers.get(settings.auth.tenant_header),
            "api_key": api_key or "development",
            "roles": ["admin"]
        }

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="API key required",
        headers={"WWW-Authenticate": "ApiKey"}
    )


async def get_orchestrator() -> RequestOrchestrator:
    """Get request orchestrator instance"""
    return ServiceFactory.get_orchestrator()


async def get_accountant() -> QuotaAccountant:
    """Get quota accountant instance"""
    return ServiceFactory.get_accountant()


async def get_profile_provider() -> ProfileProvider:
    """Get profile provider instance"""
    return ServiceFactory.get_profile_provider()


async def verify_trace_context(request: Request) -> Dict[str, str]:
    """Extract W3C trace context from request

    Args:
        request: FastAPI request object

    Returns:
        Dictionary with trace_id and span_id
    """
    trace_context = {}

    # Get from request state (set by telemetry middleware)
    if hasattr(request.state, "trace_id"):
        trace_context["trace_id"] = request.state.trace_id
    if hasattr(request.state, "span_id"):
        trace_context["span_id"] = request.state.span_id

    if not trace_context.get("trace_id"):
        traceparent = request.headers.get("traceparent")
        if traceparent:
            parts = traceparent.split("-")
            if len(parts) >= 3:
                trace_context["trace_id"] = parts[1]
                trace_context["span_id"] = parts[2]

    return trace_context
