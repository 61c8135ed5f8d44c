"""Liveness and readiness probes."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from scmsync.platforms import AVAILABLE_STRATEGIES

router = APIRouter()

SERVICE_NAME = "scmsync"
SERVICE_VERSION = "0.1.0"


@router.get("/health")
async def health_check():
    """Liveness: the process answers and knows which platforms it can scan."""
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "platforms": sorted(str(p) for p in AVAILABLE_STRATEGIES),
    }


@router.get("/health/ready")
async def readiness(request: Request):
    """Readiness: the store answers. Registry size and rate limiting are reported, not required."""
    state = request.app.state
    try:
        async with state.db_session_factory() as session:
            await session.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError as exc:
        database = f"error: {exc}"

    registry = getattr(state, "connection_registry", None)
    service = getattr(state, "scanner_service", None)
    checks = {
        "database": database,
        "connections": str(len(registry.connections)) if registry is not None else "disabled",
        "rate_limit": "enabled" if service is not None and service.settings.rate_limit_enabled else "disabled",
    }
    ready = database == "ok"
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ready" if ready else "not_ready", "checks": checks},
    )
