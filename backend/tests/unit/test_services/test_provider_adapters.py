"""Tests for provider adapters and error classification"""

import asyncio
import json
from unittest.mock import AsyncMock, Mock

import anthropic
import httpx
import openai
import pytest
from anthropic.types import Message
from openai.types.chat import ChatCompletion

from src.core.exceptions import ProviderError, ProviderErrorKind
from src.models.ai_request import ForcedTool, ImageInput, ModelDescriptor, NormalizedRequest
from src.models.subscription import ProviderName
from src.services.llm.providers.base_provider import classify_http_status, parse_retry_after
from src.services.llm.providers.implementations.anthropic_providers import AnthropicAdapter
from src.services.llm.providers.implementations.glm_providers import GLMAdapter
from src.services.llm.providers.implementations.openai_providers import OpenAIAdapter

from support import descriptor


HAIKU = descriptor("claude-3-haiku-20240307", ProviderName.ANTHROPIC, vision=True)
GPT = descriptor("gpt-4o-mini", ProviderName.OPENAI, vision=True)
GLM = descriptor("glm-4.6", ProviderName.GLM)

GRADE_TOOL = ForcedTool(
    name="record_grade",
    input_schema={"type": "object", "properties": {"score": {"type": "number"}}},
)


def anthropic_message(content, input_tokens=12, output_tokens=7) -> Message:
    return Message.model_validate({
        "id": "msg_test",
        "type": "message",
        "role": "assistant",
        "model": HAIKU.model_id,
        "content": content,
        "stop_reason": "end_turn",
        "stop_sequence": None,
        "usage": {"input_tokens": input_tokens, "output_tokens": output_tokens},
    })


def chat_completion(message, prompt_tokens=20, completion_tokens=10) -> dict:
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "created": 1700000000,
        "model": "test-model",
        "choices": [{"index": 0, "message": message, "finish_reason": "stop", "logprobs": None}],
        "usage": {
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "total_tokens": prompt_tokens + completion_tokens,
        },
    }


def vendor_response(status_code: int, headers=None) -> httpx.Response:
    return httpx.Response(
        status_code,
        headers=headers or {},
        request=httpx.Request("POST", "https://vendor.test/v1/messages"),
    )


class TestErrorClassification:
    """Test the vendor neutral failure taxonomy"""

    @pytest.mark.parametrize("status_code, message, kind", [
        (401, "invalid x-api-key", ProviderErrorKind.AUTHENTICATION_FAILURE),
        (403, "forbidden", ProviderErrorKind.AUTHENTICATION_FAILURE),
        (402, "payment required", ProviderErrorKind.BALANCE_DEPLETED),
        (429, "rate limit reached", ProviderErrorKind.RATE_LIMITED),
        (429, "余额不足或无可用资源包", ProviderErrorKind.BALANCE_DEPLETED),
        (429, "You exceeded your current quota", ProviderErrorKind.BALANCE_DEPLETED),
        (400, "Your credit balance is too low", ProviderErrorKind.BALANCE_DEPLETED),
        (400, "messages: field required", ProviderErrorKind.MALFORMED_REQUEST),
        (413, "request too large", ProviderErrorKind.MALFORMED_REQUEST),
        (504, "gateway timeout", ProviderErrorKind.TIMEOUT),
        (500, "internal error", ProviderErrorKind.UNKNOWN),
        (529, "overloaded", ProviderErrorKind.UNKNOWN),
    ])
    def test_classify_http_status(self, status_code, message, kind):
        error = classify_http_status("anthropic", status_code, message)
        assert error.kind == kind
        assert error.status_code == status_code

    def test_retry_after_from_header(self):
        assert parse_retry_after({"retry-after": "12"}) == 12.0

    def test_retry_after_from_message(self):
        assert parse_retry_after(None, "Rate limited, retry after 3.5 seconds") == 3.5

    def test_default_retry_after_by_kind(self):
        assert classify_http_status("openai", 429, "slow down").retry_after == 30.0
        assert classify_http_status("openai", 401, "nope").retry_after is None

    def test_vendor_retry_hint_wins(self):
        error = classify_http_status("openai", 429, "slow down", {"retry-after": "2"})
        assert error.retry_after == 2.0


class TestAnthropicAdapter:
    """Test the Claude adapter"""

    @pytest.fixture
    def client(self):
        client = Mock()
        client.messages.create = AsyncMock()
        return client

    @pytest.fixture
    def adapter(self, client):
        return AnthropicAdapter(api_key="sk-test", client=client)

    def test_payload_with_images_and_forced_tool(self, adapter):
        request = NormalizedRequest(
            prompt="grade this",
            system_prompt="You are a tutor",
            images=[ImageInput(data="aGVsbG8=", media_type="image/png")],
            forced_tool=GRADE_TOOL,
            max_tokens=100000,
        )
        payload = adapter.build_payload(request, HAIKU)

        content = payload["messages"][-1]["content"]
        assert content[0]["source"] == {"type": "base64", "media_type": "image/png", "data": "aGVsbG8="}
        assert content[-1] == {"type": "text", "text": "grade this"}
        assert payload["system"] == "You are a tutor"
        assert payload["tool_choice"] == {"type": "tool", "name": "record_grade"}
        assert payload["tools"][0]["input_schema"] == GRADE_TOOL.input_schema
        assert payload["max_tokens"] == HAIKU.max_output_tokens

    @pytest.mark.asyncio
    async def test_text_response(self, adapter, client):
        client.messages.create.return_value = anthropic_message([{"type": "text", "text": "Photosynthesis..."}])

        response = await adapter.call(NormalizedRequest(prompt="explain photosynthesis"), HAIKU)

        assert response.content == "Photosynthesis..."
        assert response.tokens_in == 12
        assert response.tokens_out == 7
        assert response.latency_ms >= 0

    @pytest.mark.asyncio
    async def test_forced_tool_honored(self, adapter, client):
        client.messages.create.return_value = anthropic_message([
            {"type": "tool_use", "id": "toolu_1", "name": "record_grade", "input": {"score": 8}},
        ])

        response = await adapter.call(NormalizedRequest(prompt="grade", forced_tool=GRADE_TOOL), HAIKU)

        assert response.tool_name == "record_grade"
        assert response.tool_result == {"score": 8}

    @pytest.mark.asyncio
    async def test_forced_tool_ignored_is_protocol_violation(self, adapter, client):
        client.messages.create.return_value = anthropic_message([{"type": "text", "text": "Score: 8"}])

        with pytest.raises(ProviderError) as exc_info:
            await adapter.call(NormalizedRequest(prompt="grade", forced_tool=GRADE_TOOL), HAIKU)
        assert exc_info.value.kind == ProviderErrorKind.PROTOCOL_VIOLATION

    @pytest.mark.asyncio
    async def test_empty_content_is_no_response(self, adapter, client):
        client.messages.create.return_value = anthropic_message([])

        with pytest.raises(ProviderError) as exc_info:
            await adapter.call(NormalizedRequest(prompt="hi"), HAIKU)
        assert exc_info.value.kind == ProviderErrorKind.NO_RESPONSE

    @pytest.mark.asyncio
    async def test_rate_limit_classified(self, adapter, client):
        client.messages.create.side_effect = anthropic.RateLimitError(
            "rate limited", response=vendor_response(429, {"retry-after": "7"}), body=None,
        )

        with pytest.raises(ProviderError) as exc_info:
            await adapter.call(NormalizedRequest(prompt="hi"), HAIKU)
        assert exc_info.value.kind == ProviderErrorKind.RATE_LIMITED
        assert exc_info.value.retry_after == 7.0

    @pytest.mark.asyncio
    async def test_sdk_timeout_classified(self, adapter, client):
        client.messages.create.side_effect = anthropic.APITimeoutError(
            request=httpx.Request("POST", "https://vendor.test/v1/messages"),
        )

        with pytest.raises(ProviderError) as exc_info:
            await adapter.call(NormalizedRequest(prompt="hi"), HAIKU)
        assert exc_info.value.kind == ProviderErrorKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_hard_timeout(self, client):
        async def slow(**kwargs):
            await asyncio.sleep(5)

        client.messages.create.side_effect = slow
        adapter = AnthropicAdapter(api_key="sk-test", client=client, timeout_seconds=0.01)

        with pytest.raises(ProviderError) as exc_info:
            await adapter.call(NormalizedRequest(prompt="hi"), HAIKU)
        assert exc_info.value.kind == ProviderErrorKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_wrong_provider_model_rejected(self, adapter, client):
        with pytest.raises(ProviderError) as exc_info:
            await adapter.call(NormalizedRequest(prompt="hi"), GPT)
        assert exc_info.value.kind == ProviderErrorKind.MALFORMED_REQUEST
        client.messages.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        adapter = AnthropicAdapter(api_key=None)
        assert not adapter.is_configured

        with pytest.raises(ProviderError) as exc_info:
            await adapter.call(NormalizedRequest(prompt="hi"), HAIKU)
        assert exc_info.value.kind == ProviderErrorKind.AUTHENTICATION_FAILURE


class TestOpenAIAdapter:
    """Test the OpenAI adapter"""

    @pytest.fixture
    def client(self):
        client = Mock()
        client.chat.completions.create = AsyncMock()
        return client

    @pytest.fixture
    def adapter(self, client):
        return OpenAIAdapter(api_key="sk-test", client=client)

    def test_payload_uses_data_urls_and_function_choice(self, adapter):
        request = NormalizedRequest(
            prompt="what is in this picture?",
            images=[ImageInput(data="aGVsbG8=")],
            forced_tool=GRADE_TOOL,
        )
        payload = adapter.build_payload(request, GPT)

        parts = payload["messages"][-1]["content"]
        assert parts[1]["image_url"]["url"] == "data:image/jpeg;base64,aGVsbG8="
        assert payload["tool_choice"] == {"type": "function", "function": {"name": "record_grade"}}
        assert payload["tools"][0]["function"]["parameters"] == GRADE_TOOL.input_schema

    @pytest.mark.asyncio
    async def test_forced_tool_response(self, adapter, client):
        client.chat.completions.create.return_value = ChatCompletion.model_validate(chat_completion({
            "role": "assistant",
            "content": None,
            "tool_calls": [{
                "id": "call_1",
                "type": "function",
                "function": {"name": "record_grade", "arguments": json.dumps({"score": 9})},
            }],
        }))

        response = await adapter.call(NormalizedRequest(prompt="grade", forced_tool=GRADE_TOOL), GPT)

        assert response.tool_result == {"score": 9}
        assert response.tokens_in == 20
        assert response.tokens_out == 10

    @pytest.mark.asyncio
    async def test_invalid_tool_arguments_are_protocol_violation(self, adapter, client):
        client.chat.completions.create.return_value = ChatCompletion.model_validate(chat_completion({
            "role": "assistant",
            "content": None,
            "tool_calls": [{
                "id": "call_1",
                "type": "function",
                "function": {"name": "record_grade", "arguments": "{score: nine"},
            }],
        }))

        with pytest.raises(ProviderError) as exc_info:
            await adapter.call(NormalizedRequest(prompt="grade", forced_tool=GRADE_TOOL), GPT)
        assert exc_info.value.kind == ProviderErrorKind.PROTOCOL_VIOLATION

    @pytest.mark.asyncio
    async def test_insufficient_quota_is_balance(self, adapter, client):
        client.chat.completions.create.side_effect = openai.RateLimitError(
            "You exceeded your current quota, please check your plan and billing details",
            response=vendor_response(429),
            body=None,
        )

        with pytest.raises(ProviderError) as exc_info:
            await adapter.call(NormalizedRequest(prompt="hi"), GPT)
        assert exc_info.value.kind == ProviderErrorKind.BALANCE_DEPLETED

    @pytest.mark.asyncio
    async def test_auth_error(self, adapter, client):
        client.chat.completions.create.side_effect = openai.AuthenticationError(
            "Incorrect API key provided", response=vendor_response(401), body=None,
        )

        with pytest.raises(ProviderError) as exc_info:
            await adapter.call(NormalizedRequest(prompt="hi"), GPT)
        assert exc_info.value.kind == ProviderErrorKind.AUTHENTICATION_FAILURE


class TestGLMAdapter:
    """Test the GLM adapter against a mocked HTTP transport"""

    def make_adapter(self, handler) -> GLMAdapter:
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(handler),
            base_url="https://glm.test/api/paas/v4",
        )
        return GLMAdapter(api_key="glm-key", client=client)

    @pytest.mark.asyncio
    async def test_successful_call(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=chat_completion({"role": "assistant", "content": "你好"}))

        adapter = self.make_adapter(handler)
        response = await adapter.call(NormalizedRequest(prompt="hello", system_prompt="be brief"), GLM)

        assert response.content == "你好"
        assert seen["path"] == "/api/paas/v4/chat/completions"
        assert seen["auth"] == "Bearer glm-key"
        assert seen["body"]["stream"] is False
        assert seen["body"]["messages"][0] == {"role": "system", "content": "be brief"}
        await adapter.shutdown()

    @pytest.mark.asyncio
    async def test_balance_error_from_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, json={"error": {"code": "1113", "message": "余额不足或无可用资源包,请充值。"}})

        adapter = self.make_adapter(handler)
        with pytest.raises(ProviderError) as exc_info:
            await adapter.call(NormalizedRequest(prompt="hello"), GLM)
        assert exc_info.value.kind == ProviderErrorKind.BALANCE_DEPLETED

    @pytest.mark.asyncio
    async def test_no_choices_is_no_response(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"choices": [], "usage": {}})

        adapter = self.make_adapter(handler)
        with pytest.raises(ProviderError) as exc_info:
            await adapter.call(NormalizedRequest(prompt="hello"), GLM)
        assert exc_info.value.kind == ProviderErrorKind.NO_RESPONSE

    @pytest.mark.asyncio
    async def test_transport_error_is_unknown(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        adapter = self.make_adapter(handler)
        with pytest.raises(ProviderError) as exc_info:
            await adapter.call(NormalizedRequest(prompt="hello"), GLM)
        assert exc_info.value.kind == ProviderErrorKind.UNKNOWN
