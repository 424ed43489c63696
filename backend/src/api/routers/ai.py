"""AI request routing API endpoints"""

import asyncio
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from opentelemetry import trace
from pydantic import BaseModel, Field

from ...core.config import get_settings
from ...core.logger import CentralizedLogger
from ...models.ai_request import (
    AIRequest,
    AIResponse,
    ForcedTool,
    HistoryMessage,
    ImageInput,
    RequestPreferences,
    ToolDefinition,
)
from ...models.subscription import ServiceType
from ...models.usage import QuotaStatus, UsageRecord
from ...services.orchestrator.cancellation import CancellationToken
from ...services.orchestrator.request_orchestrator import RequestOrchestrator
from ...services.profile_service import ProfileProvider
from ...services.quota.quota_accountant import QuotaAccountant
from ..dependencies import (
    get_accountant,
    get_current_user,
    get_orchestrator,
    get_profile_provider,
    verify_trace_context,
)


router = APIRouter()
logger = CentralizedLogger("AIRouter")
tracer = trace.get_tracer(__name__)

DISCONNECT_POLL_SECONDS = 0.5


class RouteRequestBody(BaseModel):
    """Request model for an AI request; the caller identity comes from auth"""
    service_type: str = Field(ServiceType.DASH_CONVERSATION.value, description="Service type")
    prompt: str = Field(..., min_length=1)
    system_prompt: Optional[str] = None
    images: List[ImageInput] = Field(default_factory=list)
    history: List[HistoryMessage] = Field(default_factory=list)
    tools: List[ToolDefinition] = Field(default_factory=list)
    forced_tool: Optional[ForcedTool] = None
    preferences: RequestPreferences = Field(default_factory=RequestPreferences)
    max_tokens: Optional[int] = Field(None, gt=0)
    temperature: Optional[float] = Field(None, ge=0.0, le=2.0)
    idempotency_key: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


async def _cancel_on_disconnect(request: Request, token: CancellationToken) -> None:
    while not token.cancelled:
        if await request.is_disconnected():
            token.cancel("client disconnected")
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


@router.post("/requests", response_model=AIResponse)
async def route_request(
    body: RouteRequestBody,
    request: Request,
    user: Dict = Depends(get_current_user),
    orchestrator: RequestOrchestrator = Depends(get_orchestrator),
    profiles: ProfileProvider = Depends(get_profile_provider),
    trace_context: Dict = Depends(verify_trace_context)
) -> AIResponse:
    """Route one AI request through quota checks and the provider fallback chain

    Args:
        body: AI request
        request: HTTP request (watched for client disconnects)
        user: Current user
        orchestrator: Request orchestrator
        profiles: Profile provider
        trace_context: Trace context

    Returns:
        Successful AI response; failures are mapped by the error middleware
    """
    with tracer.start_as_current_span("route_ai_request") as span:
        tenant_id = user.get("tenant_id")
        tier = await profiles.effective_tier(user["user_id"], tenant_id)
        span.set_attribute("ai.tier", tier.value)

        ai_request = AIRequest(
            user_id=user["user_id"],
            tenant_id=tenant_id,
            service_type=ServiceType.parse(body.service_type),
            **body.model_dump(exclude={"service_type"}),
        )

        settings = get_settings()
        token = CancellationToken(deadline_seconds=settings.router.request_deadline_seconds)
        watcher = asyncio.create_task(_cancel_on_disconnect(request, token))
        try:
            response = await orchestrator.execute(ai_request, tier, token)
        finally:
            watcher.cancel()

        logger.info(
            f"Routed {ai_request.service_type.value} for {ai_request.user_id} via "
            f"{response.provider}/{response.model} (trace: {trace_context.get('trace_id')})"
        )
        return response


@router.get("/quota", response_model=QuotaStatus)
async def get_quota(
    service_type: str = Query(ServiceType.DASH_CONVERSATION.value, description="Service type to check"),
    user: Dict = Depends(get_current_user),
    accountant: QuotaAccountant = Depends(get_accountant),
    profiles: ProfileProvider = Depends(get_profile_provider)
) -> QuotaStatus:
    """Current quota for the caller without reserving anything"""
    tier = await profiles.effective_tier(user["user_id"], user.get("tenant_id"))
    return await accountant.get_quota_status(user["user_id"], ServiceType.parse(service_type), tier)


@router.get("/usage", response_model=List[UsageRecord])
async def get_usage(
    limit: int = Query(20, ge=1, le=100),
    user: Dict = Depends(get_current_user),
    accountant: QuotaAccountant = Depends(get_accountant)
) -> List[UsageRecord]:
    """Caller's most recent usage ledger entries, newest first"""
    return await accountant.recent_usage(user["user_id"], limit)
