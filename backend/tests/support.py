"""Test doubles and builders shared across the suite"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from src.core.exceptions import ProviderError, ProviderErrorKind
from src.models.ai_request import ModelDescriptor, NormalizedRequest, NormalizedResponse
from src.models.subscription import ProviderName, SubscriptionTier
from src.services.llm.providers.base_provider import ProviderAdapter


FIXED_NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class ScriptedAdapter(ProviderAdapter):
    """Adapter that replays scripted outcomes instead of calling a vendor

    Each call pops the next outcome: an exception is raised, a coroutine
    function is awaited, a NormalizedResponse is returned. With nothing
    scripted it answers "ok".
    """

    def __init__(self, provider: ProviderName, outcomes: Optional[List] = None, **kwargs):
        self.provider_name = ProviderName(provider)
        super().__init__(api_key="test-key", **kwargs)
        self.outcomes = list(outcomes or [])
        self.calls: List[str] = []
        self.requests: List[NormalizedRequest] = []

    def build_payload(self, request, model):
        return {"model": model.model_id, "prompt": request.prompt}

    async def _invoke(self, request, model):
        self.calls.append(model.model_id)
        self.requests.append(request)
        outcome = self.outcomes.pop(0) if self.outcomes else ok_response()
        if isinstance(outcome, Exception):
            raise outcome
        if callable(outcome):
            return await outcome()
        return outcome

    def classify_error(self, error):
        return ProviderError(ProviderErrorKind.UNKNOWN, str(error), provider=self.provider_name.value)


def ok_response(content: str = "ok", tokens_in: int = 1000, tokens_out: int = 500, **kwargs) -> NormalizedResponse:
    return NormalizedResponse(content=content, tokens_in=tokens_in, tokens_out=tokens_out, **kwargs)


def provider_error(kind: ProviderErrorKind, provider: ProviderName = ProviderName.ANTHROPIC, retry_after=None) -> ProviderError:
    return ProviderError(kind, f"{provider.value} failed with {kind.value}", provider=provider.value, retry_after=retry_after)


def descriptor(
    model_id: str,
    provider: ProviderName = ProviderName.ANTHROPIC,
    quality: float = 0.5,
    min_tier: SubscriptionTier = SubscriptionTier.FREE,
    vision: bool = False,
    price_in: str = "1",
    price_out: str = "2",
    **kwargs
) -> ModelDescriptor:
    return ModelDescriptor(
        provider=provider,
        model_id=model_id,
        quality_score=quality,
        min_tier=min_tier,
        vision=vision,
        input_price_per_million=Decimal(price_in),
        output_price_per_million=Decimal(price_out),
        **kwargs
    )

