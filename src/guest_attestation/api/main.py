"""FastAPI application entry point for Guest Attestation Service."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from guest_attestation.api.dependencies import (
    DBSession,
    get_notifier,
    get_token_service,
    get_workflow,
)
from guest_attestation.api.guest_routes import router as guest_router
from guest_attestation.api.routes import router as staff_router
from guest_attestation.config import settings
from guest_attestation.domain.errors import (
    Forbidden,
    NotFound,
    Unauthorized,
    ValidationError,
)
from guest_attestation.domain.tokens import utcnow
from guest_attestation.domain.workflow import VerificationWorkflow
from guest_attestation.infrastructure.sweeper import run_expiry_sweep, sweep_once
from guest_attestation.logging_config import configure_logging

# Configure logging at module level
configure_logging()

logger = structlog.get_logger()


def _sweep_workflow(session: Session) -> VerificationWorkflow:
    return get_workflow(session, get_token_service(utcnow), get_notifier(), utcnow)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager.

    Handles startup and shutdown:
    - Start the expiry sweep
    - Stop it on shutdown
    """
    logger.info("starting_guest_attestation", environment=settings.environment)

    stop_event = asyncio.Event()
    sweep_task: asyncio.Task | None = None
    if settings.expiry_sweep_enabled:
        sweep_task = asyncio.create_task(
            run_expiry_sweep(
                lambda: sweep_once(_sweep_workflow),
                settings.expiry_sweep_interval_seconds,
                stop_event,
            )
        )
        logger.info("expiry_sweep_started")

    logger.info("guest_attestation_started")

    yield

    # Shutdown
    logger.info("shutting_down_guest_attestation")

    if sweep_task is not None:
        stop_event.set()
        await sweep_task
        logger.info("expiry_sweep_stopped")

    logger.info("guest_attestation_shutdown_complete")


# Create FastAPI app
app = FastAPI(
    title="Guest Attestation Service",
    description="Guest check-in attestation: SMS link, policy consent and code verification",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# Configure CORS for the staff and guest web pages
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.guest_base_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(staff_router)
app.include_router(guest_router)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    logger.info("validation_failed", fields=sorted(exc.errors))
    return JSONResponse(
        status_code=422,
        content={"detail": str(exc), "errors": exc.errors},
    )


@app.exception_handler(Unauthorized)
async def unauthorized_handler(request: Request, exc: Unauthorized) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"detail": "Unauthorized"},
        headers={"WWW-Authenticate": "Bearer"},
    )


@app.exception_handler(Forbidden)
async def forbidden_handler(request: Request, exc: Forbidden) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content={"detail": "Forbidden"})


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error", path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


@app.get("/health")
def health_check(session: DBSession) -> JSONResponse:
    """Health check endpoint.

    Returns:
        200 OK if service is healthy
        503 Service Unavailable if the database is unreachable
    """
    try:
        session.execute(text("SELECT 1"))

        return JSONResponse(
            status_code=200,
            content={
                "status": "healthy",
                "service": settings.service_name,
                "environment": settings.environment,
            },
        )
    except Exception as e:
        logger.error("health_check_failed", error=str(e))
        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "service": settings.service_name,
                "error": str(e),
            },
        )


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": settings.service_name,
        "version": "0.1.0",
        "environment": settings.environment,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "guest_attestation.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info",
    )
