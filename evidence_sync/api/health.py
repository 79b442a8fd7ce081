"""Health check endpoints."""

from datetime import datetime, timezone

from fastapi import APIRouter, Request

from evidence_sync.core.config import get_settings
from evidence_sync.core.database import database

router = APIRouter()


@router.get("/health")
async def health_check():
    """Basic health check."""
    settings = get_settings()
    return {
        "status": "healthy",
        "service": settings.service_name,
        "environment": settings.environment,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/health/detailed")
async def detailed_health_check(request: Request):
    """Detailed health check with database and token cache connectivity."""
    settings = get_settings()
    health_status = {
        "status": "healthy",
        "service": settings.service_name,
        "environment": settings.environment,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": {"status": "unknown"},
            "token_cache": {"status": "disabled"},
        },
    }

    # Check MongoDB
    try:
        if database.client:
            await database.client.admin.command("ping")
            health_status["checks"]["database"]["status"] = "healthy"
        else:
            health_status["checks"]["database"]["status"] = "disconnected"
            health_status["status"] = "degraded"
    except Exception as e:
        health_status["checks"]["database"]["status"] = "unhealthy"
        health_status["checks"]["database"]["error"] = str(e)
        health_status["status"] = "unhealthy"

    token_cache = getattr(request.app.state, "token_cache", None)
    if token_cache is not None:
        healthy = await token_cache.ping()
        health_status["checks"]["token_cache"]["status"] = "healthy" if healthy else "unhealthy"
        if not healthy and health_status["status"] == "healthy":
            health_status["status"] = "degraded"

    return health_status
