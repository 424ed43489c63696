"""FastAPI application with OpenTelemetry integration"""

from contextlib import asynccontextmanager
from typing import Dict, Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from ..core.config import get_settings
from ..core.logger import CentralizedLogger
from ..core.telemetry import setup_telemetry
from ..services.service_factory import ServiceFactory
from .middleware.auth import AuthMiddleware
from .middleware.telemetry import TelemetryMiddleware
from .middleware.error_handler import ErrorHandlerMiddleware
from .routers import ai


# Initialize settings and logger
settings = get_settings()
logger = CentralizedLogger("API")
tracer = trace.get_tracer(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    logger.info(f"Starting {settings.app_name}")

    if settings.telemetry.enabled:
        setup_telemetry()
        FastAPIInstrumentor().instrument_app(app)
        logger.info("OpenTelemetry instrumentation enabled")

        from ..core.uvicorn_config import configure_otel_logging
        configure_otel_logging()

    orchestrator = ServiceFactory.get_orchestrator(settings=settings)
    logger.info(
        f"API running in {settings.environment} mode with providers: "
        f"{', '.join(p.value for p in orchestrator.adapters) or 'none'}"
    )

    yield

    logger.info(f"Shutting down {settings.app_name}")
    await ServiceFactory.shutdown()


app = FastAPI(
    title=settings.app_name,
    description="AI request routing with tier-aware model selection and quota enforcement",
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)
app.state.settings = settings

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Trace-Id", "X-Span-Id"]
)

# Order matters: the last added middleware runs first
app.add_middleware(ErrorHandlerMiddleware)
app.add_middleware(TelemetryMiddleware)
app.add_middleware(AuthMiddleware, settings=settings)

app.include_router(ai.router, prefix="/api/ai", tags=["ai"])


@app.get("/")
async def root() -> Dict[str, str]:
    """Root endpoint"""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "status": "healthy",
        "docs": "/api/docs"
    }


@app.get("/api/health")
async def health_check() -> Dict[str, Any]:
    """Health check with provider availability and circuit state"""
    with tracer.start_as_current_span("health_check"):
        ServiceFactory.get_orchestrator()
        service_health = await ServiceFactory.health_check_all()

        all_healthy = all(
            status.get("status") == "healthy"
            for status in service_health.values()
        )

        return {
            "status": "healthy" if all_healthy else "degraded",
            "services": service_health,
            "environment": settings.environment,
            "telemetry_enabled": settings.telemetry.enabled
        }


@app.exception_handler(404)
async def not_found_handler(request, exc):
    """Handle 404 errors"""
    return JSONResponse(
        status_code=404,
        content={
            "error": "Not Found",
            "message": "The requested resource was not found",
            "path": str(request.url)
        }
    )


if __name__ == "__main__":
    import uvicorn
    from ..core.uvicorn_config import get_uvicorn_log_config

    uvicorn.run(
        "src.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level="info" if settings.debug else "warning",
        log_config=get_uvicorn_log_config()
    )
