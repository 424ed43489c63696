"""OpenAI provider adapter"""

from typing import Dict, Any

import openai
from openai import AsyncOpenAI

from ..base_provider import ProviderAdapter, classify_http_status
from ..chat_completions import build_payload, parse_completion
from ..provider_decorators import register_provider
from .....core.exceptions import ProviderError, ProviderErrorKind
from .....models.ai_request import ModelDescriptor, NormalizedRequest, NormalizedResponse
from .....models.subscription import ProviderName


@register_provider(ProviderName.OPENAI)
class OpenAIAdapter(ProviderAdapter):
    """Chat Completions adapter; forced tools map to a named function tool_choice"""

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.api_key:
                raise ProviderError(
                    ProviderErrorKind.AUTHENTICATION_FAILURE,
                    "OpenAI API key not configured",
                    provider=self.provider_name.value,
                )
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                max_retries=0,
                timeout=self.timeout_seconds,
            )
        return self._client

    def build_payload(self, request: NormalizedRequest, model: ModelDescriptor) -> Dict[str, Any]:
        return build_payload(request, model)

    async def _invoke(self, request: NormalizedRequest, model: ModelDescriptor) -> NormalizedResponse:
        client = self._get_client()
        completion = await client.chat.completions.create(**self.build_payload(request, model))
        data = completion.model_dump() if hasattr(completion, "model_dump") else dict(completion)
        forced_name = request.forced_tool.name if request.forced_tool else None
        return parse_completion(data, self.provider_name.value, forced_name)

    def classify_error(self, error: Exception) -> ProviderError:
        provider = self.provider_name.value
        if isinstance(error, openai.APITimeoutError):
            return ProviderError(ProviderErrorKind.TIMEOUT, f"OpenAI request timed out: {error}", provider=provider)
        if isinstance(error, openai.APIStatusError):
            headers = error.response.headers if error.response is not None else None
            return classify_http_status(provider, error.status_code, str(error.message), headers)
        if isinstance(error, openai.APIConnectionError):
            return ProviderError(ProviderErrorKind.UNKNOWN, f"OpenAI connection error: {error}", provider=provider)
        return ProviderError(ProviderErrorKind.UNKNOWN, f"OpenAI error: {type(error).__name__}: {error}", provider=provider)
