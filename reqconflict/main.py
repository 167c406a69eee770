"""FastAPI application entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from reqconflict.api.routes import contradiction, health
from reqconflict.core.config import get_settings
from reqconflict.core.correlation import CORRELATION_HEADER, CorrelationMiddleware, get_correlation_id
from reqconflict.core.exceptions import InternalError, ValidationError
from reqconflict.core.logging import configure_logging

# Configure structured logging on module load
configure_logging()

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler.

    Handles startup and shutdown events.
    """
    from reqconflict.engines.contradiction.scorer import get_inference_scorer
    from reqconflict.engines.contradiction.warmup import ModelWarmer
    from reqconflict.services.analysis_service import get_contradiction_analysis_service

    # Singletons hold loop-bound resources; rebuild them for this loop
    get_inference_scorer.cache_clear()
    get_contradiction_analysis_service.cache_clear()

    logger.info("application_starting", app_name=app.title)

    settings = get_settings()
    if not settings.is_inference_configured:
        logger.warning(
            "inference_not_configured",
            message="HUGGINGFACE_API_KEY not set. Every pair will fail scoring.",
            hint="Set HUGGINGFACE_API_KEY in .env file",
        )
    else:
        logger.info(
            "inference_configured",
            similarity_model=settings.similarity_model,
            nli_model=settings.nli_model,
            nli_endpoint=settings.is_nli_endpoint_configured,
        )

    if settings.comparison_store_backend == "supabase" and not settings.is_supabase_configured:
        logger.warning(
            "supabase_not_configured",
            message="Supabase credentials not set. Background analysis will be unavailable.",
        )

    if settings.model_warming_on_startup and settings.is_inference_configured:
        results = await ModelWarmer(caller=get_inference_scorer().caller).warm_all()
        logger.info(
            "startup_model_warming_complete",
            succeeded=sum(1 for r in results if r.success),
            total=len(results),
        )

    yield

    logger.info("application_shutting_down")

    service = get_contradiction_analysis_service()
    await service.coordinator.shutdown()
    await get_inference_scorer().aclose()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Requirement contradiction analysis API",
        version=settings.api_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )

    # Middleware execution order is LIFO: CORS is added last so it runs first
    app.add_middleware(CorrelationMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[CORRELATION_HEADER],
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        """Handle HTTP exceptions with structured error response."""
        correlation_id = get_correlation_id()

        # If detail is already structured (from AppException), use it
        if isinstance(exc.detail, dict) and "error" in exc.detail:
            error = dict(exc.detail["error"])
            details = dict(error.get("details") or {})
            if correlation_id:
                details["correlationId"] = correlation_id
            error["details"] = details
            content = {"error": error}
        else:
            content = {
                "error": {
                    "code": f"HTTP_{exc.status_code}",
                    "message": str(exc.detail) if exc.detail else "An error occurred",
                    "details": {"correlationId": correlation_id} if correlation_id else {},
                }
            }

        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Handle Pydantic validation errors with field-level details."""
        correlation_id = get_correlation_id()

        field_errors = []
        for error in exc.errors():
            field_path = ".".join(str(loc) for loc in error["loc"])
            field_errors.append({
                "field": field_path,
                "message": error["msg"],
                "type": error["type"],
            })

        content = ValidationError(
            "Request validation failed",
            details={"fields": field_errors},
        ).detail
        if correlation_id:
            content["error"]["details"]["correlationId"] = correlation_id

        logger.warning(
            "validation_error",
            path=str(request.url.path),
            errors=field_errors,
        )

        return JSONResponse(status_code=422, content=content)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Catch-all handler for unhandled exceptions."""
        correlation_id = get_correlation_id()

        logger.exception(
            "unhandled_exception",
            path=str(request.url.path),
            method=request.method,
            error_type=type(exc).__name__,
            error_message=str(exc),
        )

        error = InternalError(correlation_id=correlation_id)
        return JSONResponse(status_code=error.status_code, content=error.detail)

    app.include_router(health.router, prefix="/api")
    app.include_router(contradiction.router, prefix="/api")

    return app


app = create_app()


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint.

    Returns:
        Welcome message with API documentation link.
    """
    payload: dict[str, str] = {
        "message": "Requirement Contradiction Analysis API",
        "health": "/api/health",
    }

    if get_settings().debug:
        payload["docs"] = "/docs"

    return payload
