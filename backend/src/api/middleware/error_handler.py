"""Global error handling middleware"""

import traceback
import uuid
from typing import Any, Dict
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from ...core.exceptions import (
    AIRouterError,
    QuotaExceeded,
    RequestCancelled,
    TierCapabilityMismatch,
)
from ...core.logger import CentralizedLogger
from ...services.orchestrator.request_orchestrator import error_response


logger = CentralizedLogger("ErrorHandler")

# nginx convention for a request the client abandoned
HTTP_CLIENT_CLOSED_REQUEST = 499


def status_for(error: AIRouterError) -> int:
    """HTTP status for a routing error"""
    if isinstance(error, QuotaExceeded):
        return 429
    if isinstance(error, TierCapabilityMismatch):
        return 403
    if isinstance(error, RequestCancelled):
        return 504 if "deadline" in str(error) else HTTP_CLIENT_CLOSED_REQUEST
    return 503


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Middleware for global error handling"""

    async def dispatch(self, request: Request, call_next):
        """Process request with error handling

        Args:
            request: Incoming request
            call_next: Next middleware/handler

        Returns:
            Response or error response
        """
        try:
            response = await call_next(request)
            return response

        except AIRouterError as e:
            status_code = status_for(e)
            logger.warning(f"{type(e).__name__} on {request.url.path} -> {status_code}: {str(e)}")
            content = error_response(e).model_dump(mode="json")
            if isinstance(e, QuotaExceeded):
                content["quota"] = {
                    "allowed": False,
                    "remaining": e.remaining,
                    "limit": e.limit,
                    "tier_name": e.tier_name,
                }
            return self._error_response(
                request,
                status_code=status_code,
                error=type(e).__name__,
                message=e.user_message,
                details=content
            )

        except ValueError as e:
            # Handle validation errors
            logger.warning(f"Validation error: {str(e)}")
            return self._error_response(
                request,
                status_code=400,
                error="Bad Request",
                message=str(e)
            )

        except Exception as e:
            error_id = str(uuid.uuid4())
            logger.error(
                f"Unhandled error [{error_id}]: {str(e)}",
                exc_info=True,
                extra={
                    "error_id": error_id,
                    "path": request.url.path,
                    "method": request.method,
                    "trace_id": getattr(request.state, "trace_id", None)
                }
            )

            # Don't expose internal errors in production
            settings = getattr(request.app.state, "settings", None)
            if settings is not None and settings.environment == "production":
                message = "An internal error occurred"
                details = None
            else:
                message = str(e)
                details = {
                    "type": type(e).__name__,
                    "traceback": traceback.format_exc().split("\n")
                }

            return self._error_response(
                request,
                status_code=500,
                error="Internal Server Error",
                message=message,
                error_id=error_id,
                details=details
            )

    def _error_response(
        self,
        request: Request,
        status_code: int,
        error: str,
        message: str,
        error_id: str = None,
        details: Dict[str, Any] = None
    ) -> JSONResponse:
        """Create standardized error response

        Args:
            request: Request object
            status_code: HTTP status code
            error: Error type
            message: Error message
            error_id: Unique error ID
            details: Additional error details

        Returns:
            JSON error response
        """
        content = {
            "error": error,
            "message": message,
            "path": str(request.url.path),
            "method": request.method
        }

        # Add trace context if available
        if hasattr(request.state, "trace_id"):
            content["trace_id"] = request.state.trace_id
        if hasattr(request.state, "span_id"):
            content["span_id"] = request.state.span_id

        if error_id:
            content["error_id"] = error_id

        if details:
            content["details"] = details

        return JSONResponse(
            status_code=status_code,
            content=content
        )
