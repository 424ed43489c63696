"""Request, response and model catalog schemas for AI routing"""

from decimal import Decimal
from typing import Optional, Dict, Any, List

from pydantic import BaseModel, ConfigDict, Field

from .subscription import ProviderName, SubscriptionTier, ServiceType


class ModelDescriptor(BaseModel):
    """One routable model in the catalog"""
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    provider: ProviderName = Field(..., description="Upstream vendor")
    model_id: str = Field(..., description="Vendor model identifier, unique in the catalog")
    display_name: Optional[str] = Field(None, description="Human readable name")
    vision: bool = Field(False, description="Accepts image input")
    max_output_tokens: int = Field(4096, gt=0)
    input_price_per_million: Decimal = Field(..., ge=0, description="USD per 1M input tokens")
    output_price_per_million: Decimal = Field(..., ge=0, description="USD per 1M output tokens")
    min_tier: SubscriptionTier = Field(SubscriptionTier.FREE, description="Lowest tier allowed to use this model")
    quality_score: float = Field(0.5, ge=0.0, le=1.0)
    enabled: bool = True

    @property
    def unit_cost(self) -> Decimal:
        return self.input_price_per_million + self.output_price_per_million


class ImageInput(BaseModel):
    """Base64 encoded image attached to a request"""
    data: str = Field(..., description="Base64 payload without data-URL prefix")
    media_type: str = Field("image/jpeg", description="MIME type of the image")


class HistoryMessage(BaseModel):
    """Prior conversation turn"""
    role: str = Field(..., description="user, assistant or system")
    content: str


class ToolDefinition(BaseModel):
    """Tool the model may call, described in vendor neutral form"""
    name: str
    description: str = ""
    input_schema: Dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})


class ForcedTool(BaseModel):
    """Directive that the model must answer through exactly this tool"""
    name: str
    input_schema: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        alias="schema",
    )
    description: str = ""

    model_config = ConfigDict(populate_by_name=True)

    def as_tool(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description or f"Return the result through {self.name}",
            input_schema=self.input_schema,
        )


class NormalizedRequest(BaseModel):
    """Vendor neutral request handed to a provider adapter"""
    prompt: str
    system_prompt: Optional[str] = None
    images: List[ImageInput] = Field(default_factory=list)
    history: List[HistoryMessage] = Field(default_factory=list)
    tools: List[ToolDefinition] = Field(default_factory=list)
    forced_tool: Optional[ForcedTool] = None
    max_tokens: int = Field(4096, gt=0)
    temperature: float = Field(0.7, ge=0.0, le=2.0)

    @property
    def has_images(self) -> bool:
        return bool(self.images)

    def tool_list(self) -> List[ToolDefinition]:
        """Tools to send upstream; the forced tool is always present"""
        tools = list(self.tools)
        if self.forced_tool and not any(t.name == self.forced_tool.name for t in tools):
            tools.append(self.forced_tool.as_tool())
        return tools


class NormalizedResponse(BaseModel):
    """Vendor neutral adapter result"""
    content: Optional[str] = None
    tool_name: Optional[str] = None
    tool_result: Optional[Dict[str, Any]] = None
    tokens_in: int = 0
    tokens_out: int = 0
    latency_ms: int = 0
    stop_reason: Optional[str] = None

    @property
    def forced_tool_honored(self) -> bool:
        return self.tool_name is not None and self.tool_result is not None


class RequestPreferences(BaseModel):
    """Caller routing preferences"""
    prefer_open_alt: bool = Field(False, description="Try the OpenAI model first for text requests")


class AIRequest(BaseModel):
    """Inbound request accepted by the orchestrator"""
    user_id: str
    tenant_id: Optional[str] = None
    service_type: ServiceType = ServiceType.DASH_CONVERSATION
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


class AttemptSummary(BaseModel):
    """Outcome of a single candidate attempt"""
    model_config = ConfigDict(protected_namespaces=())

    provider: str
    model: str
    status: str
    error_kind: Optional[str] = None
    detail: Optional[str] = None


class AIResponse(BaseModel):
    """Outbound response contract"""
    success: bool
    content: Optional[str] = None
    tool_result: Optional[Dict[str, Any]] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    tokens_in: int = 0
    tokens_out: int = 0
    cost: Decimal = Decimal("0")
    latency_ms: int = 0
    forced_tool_honored: bool = False
    error_kind: Optional[str] = None
    error_detail: Optional[str] = None
    user_message: Optional[str] = None
    attempts: List[AttemptSummary] = Field(default_factory=list)
