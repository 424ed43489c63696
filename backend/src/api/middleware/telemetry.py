"""Telemetry middleware for W3C trace context propagation"""

import uuid
from typing import Tuple

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from ...core.logger import CentralizedLogger


logger = CentralizedLogger("TelemetryMiddleware")
tracer = trace.get_tracer(__name__)


def parse_traceparent(header: str) -> Tuple[str, str]:
    """Split a W3C traceparent (version-trace_id-span_id-flags) into ids

    Raises:
        ValueError: If the header is not a valid traceparent
    """
    parts = header.split("-")
    if len(parts) < 4 or len(parts[1]) != 32 or len(parts[2]) != 16:
        raise ValueError(f"Malformed traceparent: {header}")
    int(parts[1], 16)
    int(parts[2], 16)
    return parts[1], parts[2]


class TelemetryMiddleware(BaseHTTPMiddleware):
    """Wraps each request in a span and echoes trace ids to the caller"""

    async def dispatch(self, request: Request, call_next):
        """Process request with trace context

        Args:
            request: Incoming request
            call_next: Next middleware/handler

        Returns:
            Response with trace headers
        """
        trace_id, span_id = self._extract_trace_context(request)
        request.state.trace_id = trace_id
        request.state.span_id = span_id

        with tracer.start_as_current_span(
            f"{request.method} {request.url.path}",
            attributes={
                "http.method": request.method,
                "http.target": request.url.path,
                "trace.id": trace_id,
            }
        ) as span:
            try:
                if hasattr(request.state, "user"):
                    span.set_attribute("user.id", request.state.user.get("user_id"))

                response = await call_next(request)

                span.set_attribute("http.status_code", response.status_code)
                if response.status_code >= 500:
                    span.set_status(Status(StatusCode.ERROR, f"HTTP {response.status_code}"))
                else:
                    span.set_status(Status(StatusCode.OK))

                response.headers["X-Trace-Id"] = trace_id
                response.headers["X-Span-Id"] = span_id

                span_context = span.get_span_context()
                if span_context.is_valid:
                    response.headers["traceparent"] = (
                        f"00-{format(span_context.trace_id, '032x')}-{format(span_context.span_id, '016x')}-01"
                    )

                logger.debug(
                    f"Request completed: {request.method} {request.url.path} "
                    f"Status: {response.status_code} Trace: {trace_id}"
                )
                return response

            except Exception as e:
                logger.error(f"Request failed: {str(e)}", exc_info=True)
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise

    def _extract_trace_context(self, request: Request) -> Tuple[str, str]:
        """Reuse the caller's trace id when present, always mint a new span id"""
        traceparent = request.headers.get("traceparent")
        if traceparent:
            try:
                trace_id, _ = parse_traceparent(traceparent)
                return trace_id, uuid.uuid4().hex[:16]
            except ValueError as e:
                logger.warning(str(e))

        trace_id = request.headers.get("X-Trace-Id") or uuid.uuid4().hex
        span_id = request.headers.get("X-Span-Id") or uuid.uuid4().hex[:16]
        return trace_id, span_id
