from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from groupchat.config import settings
from groupchat.core.cache import cache
from groupchat.core.logging_config import get_logger
from groupchat.dependencies import get_message_store, get_presence_registry
from groupchat.services.message_store import MessageStore
from groupchat.services.presence import PresenceRegistry

router = APIRouter()
logger = get_logger(__name__)


@router.get("/health")
async def health_check(
    store: MessageStore = Depends(get_message_store),
    presence: PresenceRegistry = Depends(get_presence_registry)
):
    """
    Health check endpoint.

    Verifies:
    - Message store connectivity
    - Redis connectivity (if configured)
    - JWT secret configuration

    Returns 200 if the message store is reachable, 503 otherwise.
    """
    checks = {
        "application": "healthy",
        "message_store": "unknown",
        "redis": "unknown" if settings.REDIS_URL else "not_configured",
        "jwt_hs256": "unknown",
        "groups_api": "healthy (token configured)" if settings.SERVICE_AUTH_TOKEN else "unhealthy: SERVICE_AUTH_TOKEN missing",
    }

    try:
        await store.ping()
        checks["message_store"] = f"healthy ({settings.MESSAGE_STORE_BACKEND})"
    except Exception as e:
        logger.error("health_check_message_store_failed", error=str(e))
        checks["message_store"] = f"unhealthy: {type(e).__name__}"

    if settings.REDIS_URL and cache.enabled:
        try:
            await cache.redis.ping()
            checks["redis"] = "healthy"
        except Exception as e:
            logger.error("health_check_redis_failed", error=str(e))
            checks["redis"] = f"unhealthy: {type(e).__name__}"

    if settings.JWT_SECRET_KEY and len(settings.JWT_SECRET_KEY) >= 32:
        checks["jwt_hs256"] = f"healthy (algorithm: {settings.JWT_ALGORITHM})"
    else:
        checks["jwt_hs256"] = "unhealthy: JWT_SECRET_KEY too short or missing"

    healthy = checks["message_store"].startswith("healthy")

    return JSONResponse(
        content={
            "status": "healthy" if healthy else "degraded",
            "service": "groupchat-core",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "app": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "realtime_connections": presence.connection_count(),
            "checks": checks
        },
        status_code=200 if healthy else 503
    )


@router.get("/")
async def root():
    """Root endpoint."""
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/docs" if settings.ENABLE_DOCS else None,
        "health": "/health",
        "websocket": f"{settings.API_PREFIX}/ws"
    }
