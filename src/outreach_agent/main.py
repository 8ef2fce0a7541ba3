"""FastAPI application entry point."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from outreach_agent import __version__
from outreach_agent.api import batches, health, webhooks
from outreach_agent.batch.orchestration import CaseOrchestrator, create_orchestrator
from outreach_agent.batch.registry import BatchProcessorRegistry
from outreach_agent.calls.enrichment import EnrichmentQueue
from outreach_agent.calls.scheduler import CallScheduler, create_scheduler
from outreach_agent.config import Settings, get_settings
from outreach_agent.core.exceptions import OutreachAgentError
from outreach_agent.core.logging import get_logger, setup_logging
from outreach_agent.db.session import close_db, get_session_factory, init_db


def outreach_error_handler(request: Request, exc: OutreachAgentError) -> JSONResponse:
    """Render application errors with their own status code."""
    log = get_logger(__name__)
    log_method = log.error if exc.status_code >= 500 else log.warning
    log_method(
        "Request failed",
        error_code=exc.error_code,
        error=exc.message,
        path=request.url.path,
        method=request.method,
    )

    content = exc.to_dict()
    if not request.app.state.settings.debug:
        content.pop("cause", None)
    return JSONResponse(status_code=exc.status_code, content=content)


def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTP exceptions with structured response.

    Provides consistent error format across all HTTP errors.
    """
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": _status_code_to_error_type(exc.status_code),
            "message": str(exc.detail),
            "status_code": exc.status_code,
        },
    )


def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request validation errors with detailed field information."""
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"] if loc != "body")
        errors.append({
            "field": field or "request",
            "message": error["msg"],
            "type": error["type"],
        })

    return JSONResponse(
        status_code=422,
        content={
            "error": "validation_error",
            "message": "Request validation failed",
            "details": errors,
        },
    )


def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions.

    Logs the error and returns a generic 500 response without exposing
    internal details in production.
    """
    log = get_logger(__name__)
    log.error(
        "Unhandled exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
    )

    detail = str(exc) if request.app.state.settings.debug else "An internal error occurred"

    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_error",
            "message": detail,
        },
    )


def _status_code_to_error_type(status_code: int) -> str:
    """Map HTTP status codes to error type strings."""
    error_types = {
        400: "bad_request",
        401: "unauthorized",
        403: "forbidden",
        404: "not_found",
        405: "method_not_allowed",
        409: "conflict",
        422: "validation_error",
        500: "internal_error",
        502: "bad_gateway",
        503: "service_unavailable",
    }
    return error_types.get(status_code, "error")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Components already placed on ``app.state`` by ``create_app`` are kept;
    the rest are built from settings.
    """
    settings: Settings = app.state.settings
    log = get_logger(__name__)

    setup_logging(
        level=settings.log_level,
        json_output=settings.log_json,
        service_name=settings.service_name,
    )

    log.info(
        "Starting Outreach Agent",
        version=__version__,
        environment=settings.environment,
    )

    # Initialize database
    log.info("Initializing database")
    await init_db(settings)
    app.state.session_factory = get_session_factory()
    log.info("Database initialized successfully")

    if app.state.scheduler is None:
        app.state.scheduler = create_scheduler(settings)

    if app.state.orchestrator is None:
        if settings.orchestration.url:
            app.state.orchestrator = create_orchestrator(settings)
        else:
            log.warning("Orchestration service not configured; batch dispatch disabled")

    enrichment: EnrichmentQueue | None = None
    if settings.enrichment.enabled:
        enrichment = EnrichmentQueue(
            app.state.session_factory,
            maxsize=settings.enrichment.queue_size,
        )
        await enrichment.start()
    app.state.enrichment = enrichment

    yield

    # Shutdown
    log.info("Shutting down Outreach Agent")
    await app.state.batch_registry.shutdown()
    log.info("Batch processing stopped")

    if enrichment is not None:
        await enrichment.stop()

    await app.state.scheduler.close()
    if app.state.orchestrator is not None:
        await app.state.orchestrator.close()

    # Close database connections
    await close_db()
    log.info("Database connections closed")


def create_app(
    settings: Settings | None = None,
    *,
    scheduler: CallScheduler | None = None,
    orchestrator: CaseOrchestrator | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title="Outreach Agent",
        description="Outbound follow-up call scheduling and batch dispatch",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    app.state.settings = settings
    app.state.scheduler = scheduler
    app.state.orchestrator = orchestrator
    app.state.enrichment = None
    app.state.batch_registry = BatchProcessorRegistry()

    # Exception handlers (order matters - most specific first)
    app.add_exception_handler(OutreachAgentError, outreach_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(webhooks.router, tags=["Webhooks"])
    app.include_router(batches.router, tags=["Batches"])

    return app
