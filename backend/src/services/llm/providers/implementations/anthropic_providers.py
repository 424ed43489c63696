"""Anthropic (Claude) provider adapter"""

from typing import Dict, Any, Optional, List

import anthropic
from anthropic import AsyncAnthropic

from ..base_provider import ProviderAdapter, classify_http_status
from ..provider_decorators import register_provider
from .....core.exceptions import ProviderError, ProviderErrorKind
from .....models.ai_request import ModelDescriptor, NormalizedRequest, NormalizedResponse
from .....models.subscription import ProviderName


@register_provider(ProviderName.ANTHROPIC)
class AnthropicAdapter(ProviderAdapter):
    """Claude Messages API adapter

    Forced tools use ``tool_choice={"type": "tool", "name": ...}``.
    """

    def _get_client(self) -> AsyncAnthropic:
        if self._client is None:
            if not self.api_key:
                raise ProviderError(
                    ProviderErrorKind.AUTHENTICATION_FAILURE,
                    "Anthropic API key not configured",
                    provider=self.provider_name.value,
                )
            # Retries are owned by the orchestrator
            self._client = AsyncAnthropic(
                api_key=self.api_key,
                max_retries=0,
                timeout=self.timeout_seconds,
            )
        return self._client

    def build_payload(self, request: NormalizedRequest, model: ModelDescriptor) -> Dict[str, Any]:
        content: List[Dict[str, Any]] = [
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": image.media_type,
                    "data": image.data,
                },
            }
            for image in request.images
        ]
        content.append({"type": "text", "text": request.prompt})

        messages = [
            {"role": turn.role, "content": turn.content}
            for turn in request.history
            if turn.role in ("user", "assistant")
        ]
        messages.append({"role": "user", "content": content})

        payload: Dict[str, Any] = {
            "model": model.model_id,
            "max_tokens": min(request.max_tokens, model.max_output_tokens),
            "temperature": request.temperature,
            "messages": messages,
        }
        if request.system_prompt:
            payload["system"] = request.system_prompt

        tools = request.tool_list()
        if tools:
            payload["tools"] = [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "input_schema": tool.input_schema,
                }
                for tool in tools
            ]
        if request.forced_tool:
            payload["tool_choice"] = {"type": "tool", "name": request.forced_tool.name}
        return payload

    async def _invoke(self, request: NormalizedRequest, model: ModelDescriptor) -> NormalizedResponse:
        client = self._get_client()
        message = await client.messages.create(**self.build_payload(request, model))
        forced_name = request.forced_tool.name if request.forced_tool else None
        return self.parse_response(message, forced_name)

    def parse_response(self, message: Any, forced_name: Optional[str] = None) -> NormalizedResponse:
        """Normalize an Anthropic Message object"""
        blocks = list(getattr(message, "content", None) or [])
        if not blocks:
            raise ProviderError(
                ProviderErrorKind.NO_RESPONSE,
                "Anthropic returned no content blocks",
                provider=self.provider_name.value,
            )

        text_parts = []
        tool_calls = []
        for block in blocks:
            if block.type == "text":
                text_parts.append(block.text)
            elif block.type == "tool_use":
                tool_calls.append((block.name, dict(block.input or {})))

        tool_name, tool_result = None, None
        if tool_calls:
            matching = [call for call in tool_calls if call[0] == forced_name]
            tool_name, tool_result = (matching or tool_calls)[0]

        content = "".join(text_parts) or None
        if content is None and tool_name is None:
            raise ProviderError(
                ProviderErrorKind.NO_RESPONSE,
                "Anthropic returned neither text nor a tool call",
                provider=self.provider_name.value,
            )

        usage = getattr(message, "usage", None)
        return NormalizedResponse(
            content=content,
            tool_name=tool_name,
            tool_result=tool_result,
            tokens_in=getattr(usage, "input_tokens", 0) or 0,
            tokens_out=getattr(usage, "output_tokens", 0) or 0,
            stop_reason=getattr(message, "stop_reason", None),
        )

    def classify_error(self, error: Exception) -> ProviderError:
        provider = self.provider_name.value
        if isinstance(error, anthropic.APITimeoutError):
            return ProviderError(ProviderErrorKind.TIMEOUT, f"Anthropic request timed out: {error}", provider=provider)
        if isinstance(error, anthropic.APIStatusError):
            headers = error.response.headers if error.response is not None else None
            return classify_http_status(provider, error.status_code, str(error.message), headers)
        if isinstance(error, anthropic.APIConnectionError):
            return ProviderError(ProviderErrorKind.UNKNOWN, f"Anthropic connection error: {error}", provider=provider)
        return ProviderError(ProviderErrorKind.UNKNOWN, f"Anthropic error: {type(error).__name__}: {error}", provider=provider)
