"""Request orchestration: selection, quota, fallback and accounting"""

import asyncio
import uuid
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from .cancellation import CancellationToken
from .circuit_breaker import ProviderCircuitBreaker
from ..base_service import BaseService
from ..llm.providers.base_provider import ProviderAdapter
from ..llm.providers.cost_calculator import calculate_cost
from ..llm.providers.model_selector import ModelSelector
from ..pii_redactor import redact_pii
from ..quota.quota_accountant import QuotaAccountant
from ..quota.usage_recorder import UsageRecorder
from ...core.config import RouterConfig, Settings
from ...core.exceptions import (
    AIRouterError,
    CandidateFailure,
    ProviderChainExhausted,
    ProviderError,
    ProviderErrorKind,
    QuotaExceeded,
    RequestCancelled,
    TierCapabilityMismatch,
)
from ...core.logger import bind_log_context
from ...core.telemetry import RouterMetrics
from ...models.ai_request import (
    AIRequest,
    AIResponse,
    AttemptSummary,
    ModelDescriptor,
    NormalizedRequest,
    NormalizedResponse,
)
from ...models.subscription import ProviderName, SubscriptionTier, bucket_for
from ...models.usage import QuotaDecision, UsageRecord, UsageStatus


class OrchestratorState(str, Enum):
    SELECTING = "selecting"
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"


_STATUS_FOR_KIND = {
    ProviderErrorKind.RATE_LIMITED: UsageStatus.RATE_LIMITED,
}


class RequestOrchestrator(BaseService):
    """Drives one AI request through its fallback chain

    SELECTING -> ATTEMPTING(i) -> SUCCEEDED | EXHAUSTED. Every attempt
    reserves quota first and produces exactly one usage record; a failed
    attempt releases its slot before the next one reserves. Auth,
    protocol, malformed-request and empty responses advance to the next
    candidate; rate-limit and balance failures advance immediately;
    timeouts and unknown errors get one retry on the same candidate after
    the backoff hint.
    """

    def __init__(
        self,
        accountant: QuotaAccountant,
        adapters: Dict[ProviderName, ProviderAdapter],
        config: Optional[RouterConfig] = None,
        settings: Optional[Settings] = None,
        recorder: Optional[UsageRecorder] = None,
        breaker: Optional[ProviderCircuitBreaker] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        """Initialize orchestrator

        Args:
            accountant: Quota accountant over the usage ledger
            adapters: Configured provider adapters by provider
            config: Routing configuration
            settings: Application settings
            recorder: Background usage recorder (built from accountant if None)
            breaker: Circuit breaker (built from config if None and enabled)
            sleep: Backoff sleep (injectable for tests)
        """
        super().__init__("RequestOrchestrator", settings)
        self.config = config or self.settings.router
        self.accountant = accountant
        self.adapters = dict(adapters)
        self.selector = ModelSelector(self.config)
        self.recorder = recorder or UsageRecorder(accountant)
        if breaker is None and self.config.circuit_breaker_enabled:
            breaker = ProviderCircuitBreaker(
                self.config.circuit_breaker_threshold,
                self.config.circuit_breaker_cooldown_seconds,
            )
        self.breaker = breaker
        self._sleep = sleep
        self.metrics = RouterMetrics("ai_router.orchestrator")

    async def execute(
        self,
        request: AIRequest,
        tier: SubscriptionTier,
        token: Optional[CancellationToken] = None
    ) -> AIResponse:
        """Run a request to completion

        Args:
            request: Inbound request
            tier: Effective subscription tier of the user
            token: Optional cancellation token

        Returns:
            Successful AIResponse

        Raises:
            TierCapabilityMismatch: No model can serve the request at this tier
            QuotaExceeded: The user is out of quota (no provider was called)
            ProviderChainExhausted: Every candidate failed
            RequestCancelled: Token cancelled or deadline exceeded
        """
        tier = SubscriptionTier.parse(tier)

        with bind_log_context(
            request_id=str(uuid.uuid4())[:8],
            user_id=request.user_id,
            tenant_id=request.tenant_id,
        ), self.traced_operation(
            "orchestrator.execute",
            user_id=request.user_id,
            tenant_id=request.tenant_id,
            service_type=request.service_type,
            tier=tier,
        ):
            self._check_cancelled(token)
            self.logger.info(
                f"{OrchestratorState.SELECTING.value}: service={request.service_type.value} "
                f"tier={tier.value} images={len(request.images)}"
            )
            chain = self.selector.select_chain(
                tier, request.service_type, bool(request.images), request.preferences
            )
            normalized, redactions = self._normalize(request)
            if redactions:
                self.logger.info(f"Redacted {redactions} personal data spans from the prompt")
            request = request.model_copy(
                update={"metadata": {**request.metadata, "redaction_count": redactions}}
            )

            failures: List[CandidateFailure] = []
            attempts: List[AttemptSummary] = []

            for index, model in enumerate(chain):
                with bind_log_context(provider=model.provider.value, model=model.model_id):
                    response = await self._attempt_candidate(
                        index, model, request, normalized, tier, token, failures, attempts
                    )
                if response is not None:
                    return response

            self.logger.warning(f"{OrchestratorState.EXHAUSTED.value}: all candidates failed")
            raise ProviderChainExhausted(failures)

    async def _attempt_candidate(
        self,
        index: int,
        model: ModelDescriptor,
        request: AIRequest,
        normalized: NormalizedRequest,
        tier: SubscriptionTier,
        token: Optional[CancellationToken],
        failures: List[CandidateFailure],
        attempts: List[AttemptSummary]
    ) -> Optional[AIResponse]:
        """Try one candidate, retrying it once for transient failures

        Returns:
            The response on success, None to advance to the next candidate
        """
        provider = model.provider.value
        adapter = self.adapters.get(model.provider)
        if adapter is None:
            self.logger.warning(f"No adapter configured for {provider}; skipping {model.model_id}")
            return None
        if self.breaker is not None and self.breaker.is_open(provider):
            self.logger.warning(f"Circuit open for {provider}; skipping {model.model_id}")
            failures.append(CandidateFailure(provider, model.model_id, ProviderErrorKind.RATE_LIMITED, "circuit open"))
            return None

        retries_left = self.config.retries_per_candidate
        while True:
            self._check_cancelled(token)
            self.logger.info(f"{OrchestratorState.ATTEMPTING.value}({index}): {provider}/{model.model_id}")
            decision = await self._reserve(request, tier)
            if not decision.allowed:
                self._record(request, tier, None, UsageStatus.QUOTA_EXCEEDED)
                self.metrics.record_quota_denial(tier.value, bucket_for(request.service_type).value)
                self.logger.info(f"{OrchestratorState.EXHAUSTED.value}: quota exceeded")
                raise QuotaExceeded(
                    f"Quota exceeded for {request.user_id} ({decision.tier_name})",
                    limit=decision.limit,
                    remaining=decision.remaining,
                    tier_name=decision.tier_name,
                )

            try:
                response = await self._race(adapter.call(normalized, model), token)
            except (RequestCancelled, asyncio.CancelledError):
                self._record(
                    request, tier, model, UsageStatus.CANCELLED,
                    reservation_id=decision.reservation_id,
                    error_message=token.reason if token else "cancelled",
                )
                raise
            except ProviderError as e:
                record = self._record(
                    request, tier, model,
                    _STATUS_FOR_KIND.get(e.kind, UsageStatus.ERROR),
                    reservation_id=decision.reservation_id,
                    error=e,
                    settle=False,
                )
                # The next check must not see this attempt's slot as taken
                await asyncio.shield(self.recorder.release(record))
                attempts.append(AttemptSummary(
                    provider=provider, model=model.model_id, status="error",
                    error_kind=e.kind.value, detail=e.message,
                ))
                if self.breaker is not None:
                    self.breaker.record_failure(provider, e.kind)

                if e.kind.retryable_on_same_candidate and retries_left > 0:
                    retries_left -= 1
                    delay = min(e.retry_after or 0.0, self.config.max_backoff_seconds)
                    self.logger.warning(f"{e.kind.value}; retrying {model.model_id} in {delay}s")
                    await self._race(self._sleep(delay), token)
                    continue

                self.logger.warning(f"{provider}/{model.model_id} failed: {e.kind.value}; advancing")
                failures.append(CandidateFailure(provider, model.model_id, e.kind, e.message))
                return None

            return self._succeed(request, tier, model, decision.reservation_id, response, attempts)

    async def _reserve(self, request: AIRequest, tier: SubscriptionTier) -> QuotaDecision:
        """check_and_reserve that still settles its slot if the caller is cancelled mid-await"""
        reservation = asyncio.ensure_future(self.accountant.check_and_reserve(
            request.user_id, request.tenant_id, request.service_type, tier
        ))
        try:
            return await asyncio.shield(reservation)
        except asyncio.CancelledError:
            reservation.add_done_callback(
                lambda task: self._release_abandoned(request, tier, task)
            )
            raise

    def _release_abandoned(self, request: AIRequest, tier: SubscriptionTier, task: asyncio.Future) -> None:
        if task.cancelled() or task.exception() is not None:
            return
        decision = task.result()
        if decision.reservation_id is not None:
            self._record(
                request, tier, None, UsageStatus.CANCELLED,
                reservation_id=decision.reservation_id,
                error_message="cancelled while reserving quota",
            )

    def _succeed(
        self,
        request: AIRequest,
        tier: SubscriptionTier,
        model: ModelDescriptor,
        reservation_id: Optional[str],
        response: NormalizedResponse,
        attempts: List[AttemptSummary]
    ) -> AIResponse:
        cost = calculate_cost(self.config, model.model_id, response.tokens_in, response.tokens_out)
        self._record(
            request, tier, model, UsageStatus.SUCCESS,
            reservation_id=reservation_id, response=response, cost=cost,
        )
        if self.breaker is not None:
            self.breaker.record_success(model.provider.value)
        self.metrics.record_success(model.provider.value, model.model_id, cost, response.latency_ms)

        attempts.append(AttemptSummary(provider=model.provider.value, model=model.model_id, status="success"))
        self.logger.info(
            f"{OrchestratorState.SUCCEEDED.value}: {model.provider.value}/{model.model_id} "
            f"tokens={response.tokens_in}/{response.tokens_out} cost=${cost} latency={response.latency_ms}ms"
        )
        return AIResponse(
            success=True,
            content=response.content,
            tool_result=response.tool_result,
            provider=model.provider.value,
            model=model.model_id,
            tokens_in=response.tokens_in,
            tokens_out=response.tokens_out,
            cost=cost,
            latency_ms=response.latency_ms,
            forced_tool_honored=request.forced_tool is not None and response.forced_tool_honored,
            attempts=attempts,
        )

    def _normalize(self, request: AIRequest) -> Tuple[NormalizedRequest, int]:
        """Provider-neutral request with defaults applied and personal data masked"""
        prompt, redactions = redact_pii(request.prompt) if self.config.redact_pii else (request.prompt, 0)
        override = self.config.service_overrides.get(request.service_type)
        if override is not None and not override.is_active:
            override = None
        normalized = NormalizedRequest(
            prompt=prompt,
            system_prompt=request.system_prompt,
            images=request.images,
            history=request.history,
            tools=request.tools,
            forced_tool=request.forced_tool,
            max_tokens=(
                request.max_tokens
                or (override.max_tokens if override else None)
                or self.config.default_max_tokens
            ),
            temperature=(
                request.temperature
                if request.temperature is not None
                else (override.temperature if override and override.temperature is not None
                      else self.config.default_temperature)
            ),
        )
        return normalized, redactions

    def _record(
        self,
        request: AIRequest,
        tier: SubscriptionTier,
        model: Optional[ModelDescriptor],
        status: UsageStatus,
        reservation_id: Optional[str] = None,
        response: Optional[NormalizedResponse] = None,
        cost=None,
        error: Optional[ProviderError] = None,
        error_message: Optional[str] = None,
        settle: bool = True
    ) -> UsageRecord:
        record = UsageRecord(
            user_id=request.user_id,
            tenant_id=request.tenant_id,
            service_type=request.service_type,
            tier=tier,
            provider=model.provider.value if model else None,
            model=model.model_id if model else None,
            status=status,
            tokens_in=response.tokens_in if response else 0,
            tokens_out=response.tokens_out if response else 0,
            cost=cost if cost is not None else 0,
            latency_ms=response.latency_ms if response else 0,
            error_kind=error.kind.value if error else None,
            error_message=error.message if error else error_message,
            reservation_id=reservation_id,
            idempotency_key=request.idempotency_key if status == UsageStatus.SUCCESS else None,
            metadata={
                **request.metadata,
                "has_images": bool(request.images),
                "forced_tool": request.forced_tool.name if request.forced_tool else None,
            },
        )
        self.metrics.record_attempt(record.provider, record.model, status.value)
        self.recorder.submit(record, settle=settle)
        return record

    def _check_cancelled(self, token: Optional[CancellationToken]) -> None:
        if token is not None:
            token.raise_if_cancelled()

    async def _race(self, awaitable: Awaitable, token: Optional[CancellationToken]):
        """Await an operation unless the token fires first"""
        if token is None:
            return await awaitable

        operation = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait({operation, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            operation.cancel()
            waiter.cancel()
            raise

        if operation in done:
            waiter.cancel()
            return operation.result()

        operation.cancel()
        raise RequestCancelled(token.reason or "cancelled")

    async def health_check(self):
        return {
            "service": self.service_name,
            "status": "healthy" if self.adapters else "degraded",
            "providers": {
                provider.value: await adapter.health_check()
                for provider, adapter in self.adapters.items()
            },
            "circuits": self.breaker.snapshot() if self.breaker else {},
            "pending_usage_writes": self.recorder.pending_count,
        }


def error_response(error: AIRouterError) -> AIResponse:
    """Outbound failure contract for a routing error; never exposes vendor text"""
    attempts: List[AttemptSummary] = []
    error_kind = None
    if isinstance(error, ProviderChainExhausted):
        attempts = [
            AttemptSummary(provider=f.provider, model=f.model, status="error", error_kind=f.kind.value)
            for f in error.failures
        ]
        error_kind = "provider_chain_exhausted"
    elif isinstance(error, QuotaExceeded):
        error_kind = "quota_exceeded"
    elif isinstance(error, TierCapabilityMismatch):
        error_kind = "tier_capability_mismatch"
    elif isinstance(error, RequestCancelled):
        error_kind = "cancelled"
    elif isinstance(error, ProviderError):
        error_kind = error.kind.value

    return AIResponse(
        success=False,
        error_kind=error_kind,
        error_detail=type(error).__name__,
        user_message=error.user_message,
        attempts=attempts,
    )
