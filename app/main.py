"""Main FastAPI application for the Maintenance Request Orchestrator."""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.approval import router as approval_router
from app.api.health import router as health_router
from app.api.matching import router as matching_router
from app.api.notifications import router as notifications_router
from app.api.triage import router as triage_router
from app.config import settings
from app.core.dependencies import get_delivery_gateway, get_session_store
from app.core.exceptions import BaseAPIException
from app.core.logging import get_correlation_id, get_logger, setup_logging
from app.core.middleware import CorrelationIDMiddleware
from app.services.triage_service import SessionSweeper

# Initialize logging
setup_logging()
logger = get_logger(__name__)

app = FastAPI(
    title=settings.app_name,
    description=(
        "Turns conversational maintenance requests into cases, matches contractors, "
        "collects occupant approval and notifies every party"
    ),
    version=settings.version,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(CorrelationIDMiddleware)

if settings.enable_cors:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(triage_router)
app.include_router(matching_router)
app.include_router(approval_router)
app.include_router(notifications_router)
app.include_router(health_router, prefix="/api/v1", tags=["health"])

session_sweeper = SessionSweeper(
    get_session_store(), interval_seconds=settings.session_sweep_interval_seconds
)


@app.exception_handler(BaseAPIException)
async def api_exception_handler(request: Request, exc: BaseAPIException) -> JSONResponse:
    exc.correlation_id = get_correlation_id() or exc.correlation_id
    logger.warning(
        "Request rejected",
        path=request.url.path,
        status_code=exc.status_code,
        error_code=exc.error_code,
        detail=exc.detail,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=exc.headers,
    )


@app.on_event("startup")
async def startup_event():
    """Initialize application on startup."""
    logger.info(
        "Starting Maintenance Request Orchestrator",
        version=settings.version,
        environment=settings.environment,
    )

    if not get_delivery_gateway().configured:
        logger.warning("Email and SMS delivery disabled, push notifications only")

    await session_sweeper.start()
    logger.info("Service startup complete")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    logger.info("Shutting down Maintenance Request Orchestrator")
    await session_sweeper.stop()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
