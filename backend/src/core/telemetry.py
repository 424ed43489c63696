"""OpenTelemetry setup, tracing helpers and routing metrics"""

from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Dict, Optional

from opentelemetry import trace, metrics
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.trace import Status, StatusCode

from .config import get_settings

_initialized = False


def setup_telemetry():
    """Install OTLP trace and metric exporters and instrument outbound clients"""
    global _initialized
    settings = get_settings()

    if not settings.telemetry.enabled or _initialized:
        return

    resource = Resource.create({
        "service.name": settings.telemetry.service_name,
        "service.version": settings.app_version,
        "deployment.environment": settings.environment,
    })

    tracer_provider = TracerProvider(resource=resource)
    tracer_provider.add_span_processor(BatchSpanProcessor(
        OTLPSpanExporter(endpoint=settings.telemetry.otlp_endpoint, insecure=True)
    ))
    trace.set_tracer_provider(tracer_provider)

    metric_reader = PeriodicExportingMetricReader(
        exporter=OTLPMetricExporter(endpoint=settings.telemetry.otlp_endpoint, insecure=True),
        export_interval_millis=10000
    )
    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=[metric_reader]))

    # GLM calls go through httpx, the ledger through redis
    HTTPXClientInstrumentor().instrument()
    RedisInstrumentor().instrument()
    _initialized = True


def span_attributes(**attributes) -> Dict[str, Any]:
    """Drop None values and stringify enums; OTel rejects both"""
    cleaned = {}
    for key, value in attributes.items():
        if value is None:
            continue
        cleaned[key] = getattr(value, "value", value)
    return cleaned


def get_tracer(name: str) -> trace.Tracer:
    """Get a tracer instance"""
    return trace.get_tracer(name)


def get_meter(name: str) -> metrics.Meter:
    """Get a meter instance"""
    return metrics.get_meter(name)


class RouterMetrics:
    """Instruments for provider attempts, spend and quota refusals

    Instruments come from the global meter provider, so they are no-ops
    until setup_telemetry installs an exporter.
    """

    def __init__(self, meter_name: str = "ai_router"):
        meter = get_meter(meter_name)
        self.attempts = meter.create_counter(
            "ai_router.attempts", description="Provider attempts by outcome"
        )
        self.cost = meter.create_histogram(
            "ai_router.cost_usd", unit="USD", description="Cost of successful requests"
        )
        self.latency = meter.create_histogram(
            "ai_router.provider_latency", unit="ms", description="Latency of successful provider calls"
        )
        self.quota_denials = meter.create_counter(
            "ai_router.quota_denials", description="Requests refused for quota"
        )

    def record_attempt(self, provider: Optional[str], model: Optional[str], status: str) -> None:
        self.attempts.add(1, {"provider": provider or "none", "model": model or "none", "status": status})

    def record_success(self, provider: str, model: str, cost: Decimal, latency_ms: int) -> None:
        labels = {"provider": provider, "model": model}
        self.cost.record(float(cost), labels)
        self.latency.record(latency_ms, labels)

    def record_quota_denial(self, tier: str, bucket: str) -> None:
        self.quota_denials.add(1, {"tier": tier, "bucket": bucket})


class TelemetryManager:
    """Tracer bound to one component name"""

    def __init__(self, service_name: Optional[str] = None):
        """Initialize telemetry manager

        Args:
            service_name: Name of the component for tracing
        """
        self.service_name = service_name or "dash-ai-router"
        self.tracer = get_tracer(self.service_name)

    @contextmanager
    def traced_operation(self, operation_name: str, **attributes):
        """Span around an operation; exceptions mark the span failed and propagate

        Args:
            operation_name: Name of the operation
            **attributes: Span attributes (None values are dropped)
        """
        with self.tracer.start_as_current_span(
            operation_name,
            attributes=span_attributes(**attributes)
        ) as span:
            try:
                yield span
                span.set_status(Status(StatusCode.OK))
            except Exception as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise
