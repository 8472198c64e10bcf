"""Main FastAPI application for Trip Assistant."""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from .api.routes import router as api_router
from .chat.circuit_breaker import CircuitBreaker
from .chat.errors import ChatError, ChatErrorCode, create_chat_error
from .chat.feature_flags import is_function_calling_enabled
from .chat.llm import GeminiService
from .chat.send_message import SendMessageUseCase
from .chat.tool_executor import ToolExecutor
from .config import Settings, get_settings
from .database.connection import db_manager
from .database.migrations import create_tables
from .observability.logging import clear_log_context, configure_logging, set_log_context
from .places.client import GooglePlacesClient
from .places.http_client import close_http_client, get_http_client
from .repositories.chat import ChatRepository
from .repositories.projects import ProjectRepository
from .repositories.usage import SqlUsageRepository
from .services.place_validation import PlaceDetailsCache, PlaceValidationService
from .services.prompt_filter import PromptInjectionFilter
from .services.usage_limit import UsageLimitService, UsageLimits

logger = logging.getLogger(__name__)


def wire_services(app: FastAPI, settings: Settings) -> None:
    """Construct the process-wide services and attach them to ``app.state``."""
    places_client = None
    if settings.google_maps_api_key:
        places_client = GooglePlacesClient(
            settings.google_maps_api_key,
            language=settings.places_language,
            http_client=get_http_client(),
        )
    else:
        logger.warning("GOOGLE_MAPS_API_KEY not set; place validation disabled")

    place_validation = PlaceValidationService(
        places_client,
        validation_cache=PlaceDetailsCache(
            settings.place_cache_max_size, settings.place_cache_ttl_seconds, name="place_validation"
        ),
        details_cache=PlaceDetailsCache(
            settings.place_cache_max_size, settings.place_cache_ttl_seconds, name="place_details"
        ),
        nearby_radius_meters=settings.nearby_search_radius_meters,
    )

    usage_service = UsageLimitService(
        SqlUsageRepository(),
        UsageLimits(
            daily=settings.chat_daily_limit,
            minute=settings.chat_minute_limit,
            global_daily=settings.chat_global_daily_limit,
        ),
    )

    llm = GeminiService(
        settings.gemini_api_key,
        model=settings.gemini_model,
        function_calling=is_function_calling_enabled(settings),
        circuit_breaker=CircuitBreaker(
            "gemini",
            failure_threshold=settings.llm_circuit_failure_threshold,
            reset_timeout=settings.llm_circuit_reset_seconds,
        ),
    )

    chat_repository = ChatRepository()
    project_repository = ProjectRepository()

    app.state.place_validation = place_validation
    app.state.usage_service = usage_service
    app.state.chat_repository = chat_repository
    app.state.project_repository = project_repository
    app.state.llm = llm
    app.state.send_message = SendMessageUseCase(
        chat_repository,
        project_repository,
        usage_service,
        llm,
        ToolExecutor(place_validation),
        prompt_filter=PromptInjectionFilter(max_length=settings.chat_max_message_length),
        settings=settings,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    settings = get_settings()

    # Configure structured logging
    configure_logging(
        environment=settings.environment,
        log_level="DEBUG" if settings.debug else "INFO",
    )

    # Initialize database
    db_manager.initialize()

    # Create tables if they don't exist
    await create_tables()

    wire_services(app, settings)

    logger.info("%s v%s started", settings.app_name, settings.app_version)
    logger.info("Environment: %s", settings.environment)
    logger.info("Function calling: %s", "enabled" if app.state.llm.function_calling else "disabled")

    yield

    # Shutdown
    logger.info("Shutting down %s...", settings.app_name)

    app.state.place_validation.validation_cache.clear()
    app.state.place_validation.details_cache.clear()

    # Close database connections
    await db_manager.close()
    logger.info("Database connections closed")

    # Close HTTP client and cleanup connections
    await close_http_client()
    logger.info("HTTP client closed")


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Trip planning chat assistant",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    # CORS middleware, configurable origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def bind_request_context(request: Request, call_next):
        clear_log_context()
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
        set_log_context(request_id=request_id)
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(ChatError)
    async def chat_error_handler(request: Request, exc: ChatError):
        if exc.status_code >= 500:
            logger.error("Chat request failed: %s", exc.code.value)
        return JSONResponse(exc.to_body(), status_code=exc.status_code, headers=exc.headers())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        details = [
            {"field": ".".join(str(p) for p in err["loc"][1:]), "message": err["msg"]}
            for err in exc.errors()
        ]
        return JSONResponse(create_chat_error(ChatErrorCode.INVALID_REQUEST, details), status_code=400)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(create_chat_error(ChatErrorCode.UNKNOWN_ERROR), status_code=500)

    # Include API routes
    app.include_router(api_router, prefix="/api/v1")

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "service": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/health/ready")
    async def health_ready():
        """Readiness check: DB reachable."""
        from sqlalchemy import text
        from .database.connection import get_db_context

        try:
            async with get_db_context() as session:
                await session.execute(text("SELECT 1"))
        except Exception:
            logger.exception("Readiness check failed")
            return Response(
                content='{"status":"not_ready","checks":{"database":"error"}}',
                status_code=503,
                media_type="application/json",
            )
        return {"status": "ready", "checks": {"database": "ok"}}

    # Prometheus metrics endpoint
    if settings.enable_metrics:
        @app.get("/metrics")
        async def metrics_endpoint():
            """Prometheus metrics endpoint."""
            from .observability.metrics import generate_metrics_text
            text = generate_metrics_text()
            if text is None:
                return PlainTextResponse("# prometheus_client not installed\n", status_code=501)
            return PlainTextResponse(text, media_type="text/plain; version=0.0.4; charset=utf-8")

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "trip_assistant.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info"
    )
