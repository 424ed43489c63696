"""Shared wire format for OpenAI-compatible chat completion APIs"""

import json
from typing import Dict, Any, List, Optional, Tuple

from ....core.exceptions import ProviderError, ProviderErrorKind
from ....models.ai_request import ModelDescriptor, NormalizedRequest, NormalizedResponse


def build_messages(request: NormalizedRequest) -> List[Dict[str, Any]]:
    """Build the messages array; images become data-URL image_url parts"""
    messages: List[Dict[str, Any]] = []
    if request.system_prompt:
        messages.append({"role": "system", "content": request.system_prompt})

    # Tool turns need call ids the normalized history does not carry
    messages.extend(
        {"role": turn.role, "content": turn.content}
        for turn in request.history
        if turn.role in ("system", "user", "assistant")
    )

    if request.images:
        content: Any = [{"type": "text", "text": request.prompt}]
        content.extend(
            {
                "type": "image_url",
                "image_url": {"url": f"data:{image.media_type};base64,{image.data}"},
            }
            for image in request.images
        )
    else:
        content = request.prompt
    messages.append({"role": "user", "content": content})
    return messages


def build_payload(request: NormalizedRequest, model: ModelDescriptor) -> Dict[str, Any]:
    """Build a chat completion request body"""
    payload: Dict[str, Any] = {
        "model": model.model_id,
        "messages": build_messages(request),
        "max_tokens": min(request.max_tokens, model.max_output_tokens),
        "temperature": request.temperature,
    }

    tools = request.tool_list()
    if tools:
        payload["tools"] = [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.input_schema,
                },
            }
            for tool in tools
        ]
    if request.forced_tool:
        payload["tool_choice"] = {
            "type": "function",
            "function": {"name": request.forced_tool.name},
        }
    return payload


def _parse_tool_calls(message: Dict[str, Any], provider: str) -> List[Tuple[str, Dict[str, Any]]]:
    calls = []
    for call in message.get("tool_calls") or []:
        function = call.get("function") or {}
        name = function.get("name")
        raw_arguments = function.get("arguments") or "{}"
        try:
            arguments = json.loads(raw_arguments) if isinstance(raw_arguments, str) else raw_arguments
        except json.JSONDecodeError as e:
            raise ProviderError(
                ProviderErrorKind.PROTOCOL_VIOLATION,
                f"{provider} returned invalid JSON arguments for tool '{name}'",
                provider=provider,
            ) from e
        if not isinstance(arguments, dict):
            raise ProviderError(
                ProviderErrorKind.PROTOCOL_VIOLATION,
                f"{provider} returned non-object arguments for tool '{name}'",
                provider=provider,
            )
        calls.append((name, arguments))
    return calls


def parse_completion(
    data: Dict[str, Any],
    provider: str,
    forced_name: Optional[str] = None
) -> NormalizedResponse:
    """Normalize a chat completion response body

    Args:
        data: Decoded JSON response
        provider: Provider identifier for errors
        forced_name: Forced tool name, preferred when several tools were called

    Returns:
        Normalized response

    Raises:
        ProviderError: NO_RESPONSE when there is neither content nor a tool call
    """
    choices = data.get("choices") or []
    if not choices:
        raise ProviderError(
            ProviderErrorKind.NO_RESPONSE,
            f"{provider} returned no choices",
            provider=provider,
        )

    choice = choices[0]
    message = choice.get("message") or {}
    content = message.get("content") or None
    tool_calls = _parse_tool_calls(message, provider)

    if content is None and not tool_calls:
        raise ProviderError(
            ProviderErrorKind.NO_RESPONSE,
            f"{provider} returned an empty message",
            provider=provider,
        )

    tool_name, tool_result = None, None
    if tool_calls:
        matching = [call for call in tool_calls if call[0] == forced_name]
        tool_name, tool_result = (matching or tool_calls)[0]

    usage = data.get("usage") or {}
    return NormalizedResponse(
        content=content,
        tool_name=tool_name,
        tool_result=tool_result,
        tokens_in=usage.get("prompt_tokens") or 0,
        tokens_out=usage.get("completion_tokens") or 0,
        stop_reason=choice.get("finish_reason"),
    )
