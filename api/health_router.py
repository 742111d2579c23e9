"""
Health and Monitoring Router.

Public, unauthenticated endpoints for uptime checks and probes.

Endpoints Provided:
- `/healthcheck`: lightweight liveness check.
- `/monitoring/ping`: connectivity check.
- `/monitoring/detailed`: component status (database, realtime presence).
  Reports `degraded` instead of failing when a component is unhealthy.
"""

from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Depends

from api.dependencies import get_presence_tracker
from core import config
from core.database import get_database_info
from core.logging_config import get_logger
from services.presence_service import PresenceTracker

logger = get_logger(__name__)

health_router = APIRouter(tags=["Health & Monitoring"])

monitoring_router = APIRouter(prefix="/monitoring", tags=["Health & Monitoring"])


@health_router.get("/healthcheck")
async def health_check() -> Dict[str, Any]:
    """
    Basic health check endpoint (no authentication required)

    Returns:
        Dict with status, timestamp, and version info
    """
    logger.debug("Health check requested")

    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": config.APP_VERSION,
        "service": config.APP_NAME,
    }


@monitoring_router.get("/ping")
async def ping() -> Dict[str, str]:
    return {
        "message": "pong",
        "timestamp": datetime.utcnow().isoformat(),
        "version": config.APP_VERSION,
    }


@monitoring_router.get("/detailed")
async def detailed_health_check(
    tracker: PresenceTracker = Depends(get_presence_tracker),
) -> Dict[str, Any]:
    """Detailed health check with component status"""
    logger.info("Detailed health check requested")

    health_status = {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": config.APP_VERSION,
        "service": config.APP_NAME,
        "environment": config.ENVIRONMENT,
        "components": {},
    }

    db_info = await get_database_info()
    health_status["components"]["database"] = {
        "status": "healthy" if db_info["connection_healthy"] else "unhealthy",
        "info": db_info,
    }
    if not db_info["connection_healthy"]:
        health_status["status"] = "degraded"

    if tracker is None:
        health_status["components"]["realtime"] = {"status": "unavailable"}
        health_status["status"] = "degraded"
    else:
        health_status["components"]["realtime"] = {
            "status": "healthy",
            "stats": tracker.get_stats(),
        }

    return health_status
