"""Zhipu GLM provider adapter (OpenAI-compatible HTTP API)"""

from typing import Dict, Any, Optional

import httpx

from ..base_provider import ProviderAdapter, classify_http_status
from ..chat_completions import build_payload, parse_completion
from ..provider_decorators import register_provider
from .....core.exceptions import ProviderError, ProviderErrorKind
from .....models.ai_request import ModelDescriptor, NormalizedRequest, NormalizedResponse
from .....models.subscription import ProviderName


DEFAULT_GLM_BASE_URL = "https://open.bigmodel.cn/api/paas/v4"


@register_provider(ProviderName.GLM)
class GLMAdapter(ProviderAdapter):
    """GLM chat completions over plain httpx with Bearer auth"""

    def __init__(self, api_key: Optional[str] = None, timeout_seconds: float = 60.0, client: Any = None, **options):
        super().__init__(api_key=api_key, timeout_seconds=timeout_seconds, client=client, **options)
        self.base_url = options.get("base_url") or DEFAULT_GLM_BASE_URL

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            if not self.api_key:
                raise ProviderError(
                    ProviderErrorKind.AUTHENTICATION_FAILURE,
                    "GLM API key not configured",
                    provider=self.provider_name.value,
                )
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout_seconds,
            )
        return self._client

    def build_payload(self, request: NormalizedRequest, model: ModelDescriptor) -> Dict[str, Any]:
        payload = build_payload(request, model)
        payload["stream"] = False
        return payload

    async def _invoke(self, request: NormalizedRequest, model: ModelDescriptor) -> NormalizedResponse:
        client = self._get_client()
        response = await client.post(
            "/chat/completions",
            json=self.build_payload(request, model),
            headers={"Authorization": f"Bearer {self.api_key}"},
        )

        if response.status_code >= 400:
            raise classify_http_status(
                self.provider_name.value,
                response.status_code,
                self._error_message(response),
                response.headers,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(
                ProviderErrorKind.NO_RESPONSE,
                "GLM returned a non-JSON body",
                provider=self.provider_name.value,
            ) from e

        forced_name = request.forced_tool.name if request.forced_tool else None
        return parse_completion(data, self.provider_name.value, forced_name)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or response.reason_phrase
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict):
            return str(error.get("message") or error.get("code") or response.reason_phrase)
        return str(body)

    def classify_error(self, error: Exception) -> ProviderError:
        provider = self.provider_name.value
        if isinstance(error, httpx.TimeoutException):
            return ProviderError(ProviderErrorKind.TIMEOUT, f"GLM request timed out: {error}", provider=provider)
        if isinstance(error, httpx.HTTPError):
            return ProviderError(ProviderErrorKind.UNKNOWN, f"GLM transport error: {error}", provider=provider)
        return ProviderError(ProviderErrorKind.UNKNOWN, f"GLM error: {type(error).__name__}: {error}", provider=provider)

    async def shutdown(self) -> None:
        if isinstance(self._client, httpx.AsyncClient):
            await self._client.aclose()
        self._client = None
