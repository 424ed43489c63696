"""Base provider adapter contract for multi-vendor LLM routing"""

import asyncio
import re
import time
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, Mapping

from ....core.exceptions import ProviderError, ProviderErrorKind
from ....core.logger import CentralizedLogger
from ....core.telemetry import TelemetryManager
from ....models.ai_request import ModelDescriptor, NormalizedRequest, NormalizedResponse
from ....models.subscription import ProviderName


_RETRY_AFTER_PATTERN = re.compile(r"retry after (\d+(?:\.\d+)?)", re.IGNORECASE)

# Substrings vendors use when the account is out of credit rather than throttled
BALANCE_MARKERS = (
    "balance",
    "resource package",
    "insufficient_quota",
    "exceeded your current quota",
    "billing",
    "余额",
)


def parse_retry_after(
    headers: Optional[Mapping[str, str]] = None,
    message: str = ""
) -> Optional[float]:
    """Extract a retry hint in seconds from a retry-after header or the error text

    Args:
        headers: Response headers, if any
        message: Vendor error message

    Returns:
        Seconds to wait, or None when the vendor gave no hint
    """
    if headers:
        value = headers.get("retry-after") or headers.get("Retry-After")
        if value:
            try:
                return max(float(value), 0.0)
            except (TypeError, ValueError):
                pass
    match = _RETRY_AFTER_PATTERN.search(message or "")
    if match:
        return float(match.group(1))
    return None


def is_balance_message(message: str) -> bool:
    lowered = (message or "").lower()
    return any(marker.lower() in lowered for marker in BALANCE_MARKERS)


def classify_http_status(
    provider: str,
    status_code: int,
    message: str,
    headers: Optional[Mapping[str, str]] = None
) -> ProviderError:
    """Map an HTTP failure onto the vendor neutral taxonomy

    Args:
        provider: Provider identifier for the error
        status_code: HTTP status returned by the vendor
        message: Vendor error message
        headers: Response headers (for retry-after)

    Returns:
        Classified ProviderError (not raised)
    """
    retry_after = parse_retry_after(headers, message)

    if status_code in (401, 403):
        kind = ProviderErrorKind.AUTHENTICATION_FAILURE
    elif status_code == 402:
        kind = ProviderErrorKind.BALANCE_DEPLETED
    elif status_code == 429:
        kind = (
            ProviderErrorKind.BALANCE_DEPLETED
            if is_balance_message(message)
            else ProviderErrorKind.RATE_LIMITED
        )
    elif status_code == 400 and is_balance_message(message):
        # Anthropic reports an exhausted prepaid balance as a 400
        kind = ProviderErrorKind.BALANCE_DEPLETED
    elif status_code in (400, 404, 413, 422):
        kind = ProviderErrorKind.MALFORMED_REQUEST
    elif status_code in (408, 504):
        kind = ProviderErrorKind.TIMEOUT
    else:
        kind = ProviderErrorKind.UNKNOWN

    return ProviderError(
        kind,
        f"{provider} returned HTTP {status_code}: {message}",
        provider=provider,
        status_code=status_code,
        retry_after=retry_after,
    )


class ProviderAdapter(ABC):
    """Abstract base class for all provider adapters

    An adapter translates a NormalizedRequest into one vendor's wire format,
    classifies every failure into a ProviderErrorKind and enforces the forced
    tool directive. Adapters never touch the usage ledger or the price table.
    """

    provider_name: ProviderName

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout_seconds: float = 60.0,
        client: Any = None,
        **options
    ):
        """Initialize the adapter

        Args:
            api_key: Vendor credential
            timeout_seconds: Hard per-call timeout
            client: Pre-built vendor client (injected in tests)
            **options: Vendor specific options
        """
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.options = options
        self._client = client
        self.logger = CentralizedLogger(f"Provider-{self.provider_name.value}")
        self.telemetry = TelemetryManager(f"provider.{self.provider_name.value}")

    @property
    def is_configured(self) -> bool:
        return self._client is not None or bool(self.api_key)

    @abstractmethod
    def build_payload(self, request: NormalizedRequest, model: ModelDescriptor) -> Dict[str, Any]:
        """Translate a normalized request into the vendor payload"""
        pass

    @abstractmethod
    async def _invoke(self, request: NormalizedRequest, model: ModelDescriptor) -> NormalizedResponse:
        """Perform the vendor call and normalize its result"""
        pass

    @abstractmethod
    def classify_error(self, error: Exception) -> ProviderError:
        """Classify a raw vendor/transport exception"""
        pass

    async def call(self, request: NormalizedRequest, model: ModelDescriptor) -> NormalizedResponse:
        """Send one request to the vendor

        Args:
            request: Vendor neutral request
            model: Catalog entry to call

        Returns:
            Normalized response with token usage and latency

        Raises:
            ProviderError: Classified failure, including PROTOCOL_VIOLATION
                when a forced tool was not honored
        """
        if model.provider != self.provider_name:
            raise ProviderError(
                ProviderErrorKind.MALFORMED_REQUEST,
                f"Model {model.model_id} belongs to {model.provider.value}, not {self.provider_name.value}",
                provider=self.provider_name.value,
            )

        self.logger.debug(
            f"Calling {model.model_id}: prompt_chars={len(request.prompt)} "
            f"images={len(request.images)} history={len(request.history)} "
            f"forced_tool={request.forced_tool.name if request.forced_tool else None}"
        )

        started = time.perf_counter()
        with self.telemetry.traced_operation(
            f"provider.{self.provider_name.value}.call",
            **{"ai.model": model.model_id, "ai.has_images": request.has_images}
        ):
            try:
                response = await asyncio.wait_for(
                    self._invoke(request, model),
                    timeout=self.timeout_seconds
                )
            except ProviderError:
                raise
            except asyncio.TimeoutError as e:
                raise ProviderError(
                    ProviderErrorKind.TIMEOUT,
                    f"{self.provider_name.value} call to {model.model_id} timed out after {self.timeout_seconds}s",
                    provider=self.provider_name.value,
                ) from e
            except Exception as e:
                raise self.classify_error(e) from e

        latency_ms = int((time.perf_counter() - started) * 1000)
        response = response.model_copy(update={"latency_ms": latency_ms})
        self._enforce_forced_tool(request, response, model)
        return response

    def _enforce_forced_tool(
        self,
        request: NormalizedRequest,
        response: NormalizedResponse,
        model: ModelDescriptor
    ) -> None:
        if request.forced_tool is None:
            return
        if response.tool_name != request.forced_tool.name or response.tool_result is None:
            raise ProviderError(
                ProviderErrorKind.PROTOCOL_VIOLATION,
                f"{model.model_id} did not call forced tool '{request.forced_tool.name}' "
                f"(got {response.tool_name or 'free text'})",
                provider=self.provider_name.value,
            )

    async def health_check(self) -> Dict[str, Any]:
        """Report whether the adapter can make calls"""
        return {
            "provider": self.provider_name.value,
            "status": "configured" if self.is_configured else "no_api_key",
        }

    async def shutdown(self) -> None:
        """Release the vendor client"""
        close = getattr(self._client, "close", None)
        if close is not None:
            result = close()
            if asyncio.iscoroutine(result):
                await result
        self._client = None
