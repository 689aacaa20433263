"""
Rate limiting configuration for API endpoints.

Uses slowapi (FastAPI-compatible rate limiter) to prevent abuse and ensure fair usage.

Rate limiting strategy:
- Default: RATE_LIMIT_DEFAULT for most endpoints
- Message creation: RATE_LIMIT_CREATE (prevent spam)
- Edits, deletes and read receipts: RATE_LIMIT_MUTATE
- Health check and metrics: exempt

Rate limits are keyed by:
1. User ID (from JWT) for authenticated requests
2. Client IP for unauthenticated requests
"""

from typing import Optional

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from groupchat.config import settings


def get_user_identifier(request: Request) -> str:
    """
    Get unique identifier for rate limiting.

    The user id is set on ``request.state`` by RequestContextMiddleware.
    """
    user_id: Optional[str] = getattr(request.state, "user_id", None)

    if user_id:
        return f"user:{user_id}"

    return f"ip:{get_remote_address(request)}"


limiter = Limiter(
    key_func=get_user_identifier,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
    storage_uri="memory://",
    strategy="fixed-window",
)
