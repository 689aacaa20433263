from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from groupchat.config import settings
from groupchat.core.cache import cache
from groupchat.core.logging_config import setup_logging, get_logger
from groupchat.core.rate_limit import limiter
from groupchat.middleware.access_log import AccessLogMiddleware, RequestContextMiddleware
from groupchat.routes import messages, ops, websocket
from groupchat.services.group_service import GroupService
from groupchat.services.message_store import InMemoryMessageStore, MessageStore
from groupchat.services.presence import PresenceRegistry

# Setup structured logging BEFORE any other imports that might log
setup_logging()
logger = get_logger(__name__)


async def create_message_store() -> MessageStore:
    """Build the backend selected by MESSAGE_STORE_BACKEND."""
    if settings.MESSAGE_STORE_BACKEND == "memory":
        logger.warning("message_store_in_memory", message="Messages are not persisted across restarts")
        return InMemoryMessageStore()

    from groupchat.db.mongodb import init_db
    from groupchat.db.mongo_message_store import MongoMessageStore

    try:
        client = await init_db()
    except Exception as e:
        logger.error(
            "database_initialization_failed",
            error=str(e),
            database=settings.DATABASE_NAME,
            exc_info=True,
        )
        raise
    logger.info("database_initialized", database=settings.DATABASE_NAME)
    return MongoMessageStore(client)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info(
        "application_startup",
        app_name=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        log_level=settings.LOG_LEVEL,
        message_store=settings.MESSAGE_STORE_BACKEND,
    )

    app.state.message_store = await create_message_store()

    # Optional, graceful degradation if Redis unavailable
    await cache.initialize()

    app.state.group_service = GroupService()
    await app.state.group_service.start()

    app.state.presence = PresenceRegistry()

    yield

    logger.info("application_shutdown")

    await app.state.presence.shutdown_all()
    await app.state.group_service.close()
    await app.state.message_store.close()
    await cache.close()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.API_VERSION,
    description="""
**Real-time message distribution core for group chat.**

Persists group messages, keeps read receipts, edits and soft deletes
consistent, and fans every change out to the group's live connections.

## Interfaces
- **HTTP**: `/api/groups/{group_id}/messages` (list, create, edit, delete, mark read)
- **WebSocket**: `/api/ws?token=...` with `joinGroup`, `leaveGroup`, `chat message`,
  `user typing`, `read receipt`; every frame is answered with `ack` or `error`

## Architecture
- **Database**: MongoDB with Beanie ODM (or an in-memory store for development)
- **Groups**: fetched from the Group API, cached in Redis when configured
- **Authentication**: HS256 JWT access tokens (shared JWT_SECRET_KEY)
- **Observability**: Prometheus metrics, structured logging with correlation IDs
    """,
    docs_url="/docs" if settings.ENABLE_DOCS else None,
    redoc_url="/redoc" if settings.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if settings.ENABLE_DOCS else None,
    lifespan=lifespan
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

instrumentator = Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_group_untemplated=True,
    should_instrument_requests_inprogress=True,
    excluded_handlers=["/metrics"],
    inprogress_name="http_requests_inprogress",
    inprogress_labels=True,
)
instrumentator.instrument(app).expose(app, endpoint="/metrics")

# ========== Middleware Stack ==========
# Executed in REVERSE order of registration:
# 1. RequestContextMiddleware (user id for logs and rate limits)
# 2. AccessLogMiddleware (correlation id, request log)
# 3. CORSMiddleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS,
)
app.add_middleware(AccessLogMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(ops.router, tags=["operations"])
app.include_router(messages.router, prefix=settings.API_PREFIX, tags=["messages"])
app.include_router(websocket.router, prefix=settings.API_PREFIX, tags=["websocket"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "groupchat.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
        access_log=False,  # AccessLogMiddleware replaces it
    )
