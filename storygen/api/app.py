"""FastAPI application setup with lifespan and exception handlers."""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from storygen import __version__, validate_dependencies
from storygen.api.routes import router
from storygen.config import settings
from storygen.db import build_engine, build_session_factory, init_database
from storygen.errors import (
    GenerationInProgress,
    PipelineStageError,
    StoreUnavailable,
    ValidationError,
)
from storygen.orchestrator import build_orchestrator

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = 30


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager.

    Startup:
        - Validate system dependencies (ffmpeg)
        - Initialize database schema
        - Build the orchestrator and its collaborators

    Shutdown:
        - Wait for transition jobs abandoned by cancelled requests
        - Close collaborator HTTP clients
        - Close database connections
    """
    logger.info("Starting Storygen API...")
    validate_dependencies()
    engine = build_engine(settings.storage.database_url)
    await init_database(engine)
    app.state.orchestrator = build_orchestrator(settings, build_session_factory(engine))
    logger.info("API startup complete")

    yield

    logger.info("Shutting down Storygen API...")
    await app.state.orchestrator.aclose()
    await engine.dispose()
    logger.info("API shutdown complete")


app = FastAPI(
    title="Storygen API",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(router)

# Final videos; cache entries store URLs under {public_base_url}/videos
app.mount(
    "/videos",
    StaticFiles(directory=settings.storage.data_dir / "videos", check_dir=False),
    name="videos",
)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Missing or mistyped request fields are a 400, like range errors."""
    errors = exc.errors()
    fields = sorted({".".join(str(p) for p in e.get("loc", ())[1:]) for e in errors})
    return JSONResponse(
        status_code=400,
        content={
            "error": "Invalid request",
            "detail": f"Missing or invalid fields: {', '.join(f for f in fields if f)}",
        },
    )


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "detail": str(exc), "field": exc.field},
    )


@app.exception_handler(GenerationInProgress)
async def in_progress_handler(request: Request, exc: GenerationInProgress):
    """Recoverable: clients should back off and retry, not treat this as failure."""
    return JSONResponse(
        status_code=409,
        headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
        content={
            "status": "in_progress",
            "cached": False,
            "message": "Video generation already in progress, retry later",
        },
    )


@app.exception_handler(PipelineStageError)
async def pipeline_error_handler(request: Request, exc: PipelineStageError):
    logger.error(f"Generation failed at {exc.stage}: {type(exc).__name__}: {exc}")
    return JSONResponse(
        status_code=502,
        content={
            "error": "Failed to generate educational video",
            "message": str(exc),
            "stage": exc.stage,
            "index": exc.index,
        },
    )


@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(request: Request, exc: StoreUnavailable):
    logger.error(f"Cache store unavailable: {exc}")
    return JSONResponse(
        status_code=503,
        content={"error": "Cache store unavailable", "detail": str(exc)},
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Catch-all exception handler to prevent stack traces in API responses."""
    logger.error(f"Unhandled exception in {request.method} {request.url.path}: {type(exc).__name__}: {str(exc)}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc),
        }
    )
