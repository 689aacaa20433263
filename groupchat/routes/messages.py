import math
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status

from groupchat.config import settings
from groupchat.core.logging_config import get_logger
from groupchat.core.oauth_validator import AuthContext, get_current_user
from groupchat.core.rate_limit import limiter
from groupchat.dependencies import get_chat_service
from groupchat.schemas.message import (
    MessageCreate,
    MessageListResponse,
    MessageResponse,
    MessageUpdate,
    Pagination
)
from groupchat.services.chat_service import ChatService

router = APIRouter()
logger = get_logger(__name__)


def _positive_int(raw: Optional[str], default: int) -> int:
    """Parse a query value; anything but a positive integer means the default."""
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


@router.get(
    "/groups/{group_id}/messages",
    response_model=MessageListResponse,
    status_code=status.HTTP_200_OK
)
async def get_messages(
    request: Request,
    group_id: str,
    page: Optional[str] = Query(None, description="Page number (1-indexed)"),
    limit: Optional[str] = Query(None, description="Messages per page"),
    user: AuthContext = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service)
):
    """
    Get paginated message history for a group, oldest first.

    Invalid ``page``/``limit`` values fall back to the defaults; ``limit``
    is capped at MAX_PAGE_SIZE. Requires group membership.
    """
    page_number = _positive_int(page, 1)
    page_size = min(_positive_int(limit, settings.DEFAULT_PAGE_SIZE), settings.MAX_PAGE_SIZE)

    logger.info(
        "api_get_messages",
        group_id=group_id,
        user_id=user.user_id,
        page=page_number,
        limit=page_size
    )

    messages, total = await chat_service.list_messages(
        group_id=group_id,
        user=user,
        page=page_number,
        limit=page_size
    )

    return MessageListResponse(
        messages=messages,
        pagination=Pagination(
            total=total,
            page=page_number,
            pages=math.ceil(total / page_size),
            limit=page_size
        )
    )


@router.post(
    "/groups/{group_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED
)
@limiter.limit(settings.RATE_LIMIT_CREATE)
async def create_message(
    request: Request,
    group_id: str,
    message_data: MessageCreate,
    user: AuthContext = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service)
):
    """
    Create a new message in a group and broadcast it to the room.

    Requires group membership. The sender is always the authenticated user.
    """
    logger.info("api_create_message", group_id=group_id, user_id=user.user_id, kind=message_data.kind.value)

    return await chat_service.send_message(
        group_id=group_id,
        user=user,
        content=message_data.content,
        kind=message_data.kind,
        media_url=message_data.media_url,
        media_type=message_data.media_type,
        reply_to=message_data.reply_to
    )


@router.put(
    "/groups/{group_id}/messages/{message_id}",
    response_model=MessageResponse,
    status_code=status.HTTP_200_OK
)
@limiter.limit(settings.RATE_LIMIT_MUTATE)
async def update_message(
    request: Request,
    group_id: str,
    message_id: str,
    message_data: MessageUpdate,
    user: AuthContext = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service)
):
    """Edit a message (only by sender)."""
    logger.info("api_update_message", group_id=group_id, message_id=message_id, user_id=user.user_id)

    return await chat_service.edit_message(
        group_id=group_id,
        message_id=message_id,
        user=user,
        content=message_data.content
    )


@router.delete(
    "/groups/{group_id}/messages/{message_id}",
    response_model=MessageResponse,
    status_code=status.HTTP_200_OK
)
@limiter.limit(settings.RATE_LIMIT_MUTATE)
async def delete_message(
    request: Request,
    group_id: str,
    message_id: str,
    user: AuthContext = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service)
):
    """
    Delete a message (soft delete, only by sender).

    Deleting an already-deleted message returns 404.
    """
    logger.info("api_delete_message", group_id=group_id, message_id=message_id, user_id=user.user_id)

    return await chat_service.delete_message(
        group_id=group_id,
        message_id=message_id,
        user=user
    )


@router.post(
    "/groups/{group_id}/messages/{message_id}/read",
    response_model=MessageResponse,
    status_code=status.HTTP_200_OK
)
@limiter.limit(settings.RATE_LIMIT_MUTATE)
async def mark_message_read(
    request: Request,
    group_id: str,
    message_id: str,
    user: AuthContext = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service)
):
    """Record that the caller has read a message. Repeating it is a no-op."""
    logger.debug("api_mark_read", group_id=group_id, message_id=message_id, user_id=user.user_id)

    return await chat_service.mark_read(
        group_id=group_id,
        message_id=message_id,
        user=user
    )
