from fastapi import APIRouter, Request
import logging

from academy.services.common_cache import order_cache

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health_check(request: Request):
    """Basic liveness check"""
    settings = request.app.state.settings
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment
    }


@router.get("/database")
async def database_health(request: Request):
    """PostgreSQL and Redis connectivity"""
    health_status = {
        "postgresql": False,
        "redis": False,
        "overall": False,
        "details": {}
    }

    pg_status = await request.app.state.database.health_check()
    health_status["postgresql"] = pg_status["status"] == "healthy"
    health_status["details"]["postgresql"] = pg_status["message"]

    health_status["redis"] = await order_cache.ping()
    health_status["details"]["redis"] = "reachable" if health_status["redis"] else "unavailable, caches disabled"

    # checkout keeps working without Redis
    health_status["overall"] = health_status["postgresql"]

    if not health_status["overall"]:
        logger.warning(f"Database health check failed: {health_status['details']}")
    return health_status
