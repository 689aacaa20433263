"""
Access token validation (authentication collaborator boundary).

Tokens are issued elsewhere and signed with the shared HS256 secret; this
module only verifies them and turns the claims into an ``AuthContext``.
The same decoding is used for HTTP (Bearer header) and the real-time
channel (``token`` query parameter).

Claims:
    sub     user id (required)
    type    must be "access"
    role    optional, defaults to "user"
    name    optional display name, denormalized onto sent messages
    avatar  optional avatar URL, denormalized onto sent messages
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from groupchat.config import settings
from groupchat.core.exceptions import UnauthorizedError
from groupchat.core.logging_config import get_logger

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)


@dataclass
class AuthContext:
    """Authenticated identity attached to a request or a live connection."""
    user_id: str
    role: str = "user"
    name: Optional[str] = None
    avatar: Optional[str] = None

    @classmethod
    def from_jwt_payload(cls, payload: dict) -> "AuthContext":
        return cls(
            user_id=str(payload["sub"]),
            role=payload.get("role", "user"),
            name=payload.get("name"),
            avatar=payload.get("avatar"),
        )

    def public(self) -> Dict[str, Any]:
        """Display fields safe to echo to other clients."""
        return {"id": self.user_id, "name": self.name, "avatar": self.avatar}


def decode_token_string(token: str) -> AuthContext:
    """
    Decode and validate a raw JWT string.

    Raises:
        jwt.InvalidTokenError: invalid signature, expired, wrong type or no subject
    """
    payload = jwt.decode(
        token,
        settings.JWT_SECRET_KEY,
        algorithms=[settings.JWT_ALGORITHM],
        options={
            "verify_exp": True,
            "verify_signature": True,
            "verify_aud": False,
            "require": ["sub", "exp"],
        }
    )

    if payload.get("type") != "access":
        logger.warning("invalid_token_type", received_type=payload.get("type"), expected="access")
        raise jwt.InvalidTokenError("Invalid token type")

    return AuthContext.from_jwt_payload(payload)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> AuthContext:
    """
    FastAPI dependency: authenticated caller of an HTTP request.

    Usage:
        @router.get("/groups/{group_id}/messages")
        async def list_messages(user: AuthContext = Depends(get_current_user)):
            ...

    Raises:
        UnauthorizedError: 401 if the token is missing, invalid or expired
    """
    if credentials is None:
        raise UnauthorizedError("Missing bearer token")

    try:
        auth = decode_token_string(credentials.credentials)
    except jwt.ExpiredSignatureError:
        logger.warning("token_expired")
        raise UnauthorizedError("Token has expired")
    except jwt.InvalidTokenError as e:
        logger.warning("token_invalid", error=str(e))
        raise UnauthorizedError("Invalid authentication credentials")

    logger.debug("token_validated", user_id=auth.user_id, role=auth.role)
    return auth
