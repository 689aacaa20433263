"""
ChatService - message operations shared by the HTTP API and the real-time gateway.

Every mutation follows the same path:
1. Validate input
2. Check membership via MembershipOracle
3. Write through the MessageStore
4. Fan the store's result out to the room via PresenceRegistry

Step 4 runs with no ``await`` after step 3 returns, so subscribers see room
events in the order the store completed them. A failed store call raises
before anything is published.

Sender identity always comes from the caller's ``AuthContext``.
"""

import time
from contextlib import contextmanager
from typing import Dict, List, Optional, Tuple

from groupchat.config import settings
from groupchat.core import metrics
from groupchat.core.exceptions import BadRequestError, ForbiddenError, NotFoundError
from groupchat.core.logging_config import get_logger
from groupchat.core.oauth_validator import AuthContext
from groupchat.models.message import Message, MessageKind
from groupchat.schemas.message import MessageResponse
from groupchat.services.membership import MembershipOracle
from groupchat.services.message_store import MessageStore
from groupchat.services.presence import Connection, PresenceRegistry

logger = get_logger(__name__)

NEW_MESSAGE_EVENT = "newMessage"
LEGACY_MESSAGE_EVENT = "chat message"
MESSAGE_EDITED_EVENT = "messageEdited"
MESSAGE_DELETED_EVENT = "messageDeleted"
MESSAGE_READ_EVENT = "messageRead"
TYPING_EVENT = "user typing"

MEDIA_KINDS = (MessageKind.IMAGE, MessageKind.FILE)


@contextmanager
def _tracked(operation: str):
    """Record duration and error metrics for one message operation."""
    start_time = time.time()
    try:
        yield
    except Exception as e:
        metrics.message_operation_errors_total.labels(
            operation=operation,
            error_type=type(e).__name__
        ).inc()
        raise
    finally:
        metrics.message_operation_duration_seconds.labels(
            operation=operation
        ).observe(time.time() - start_time)


def validate_message_fields(
    kind: MessageKind,
    content: str,
    media_url: Optional[str],
    media_type: Optional[str]
) -> None:
    """
    Raises:
        BadRequestError: a client-sent system message, missing content for
            text, missing media for image/file, or a media URL without its
            media type
    """
    if kind == MessageKind.SYSTEM:
        raise BadRequestError("System messages cannot be sent by clients")
    if kind == MessageKind.TEXT and not content:
        raise BadRequestError("Text messages require content")
    if kind in MEDIA_KINDS and not media_url:
        raise BadRequestError(f"{kind.value} messages require media_url")
    if media_url and not media_type:
        raise BadRequestError("media_type is required when media_url is set")


class ChatService:
    """
    Message operations with membership checks and room fan-out.

    Public operations return ``MessageResponse``, the same representation
    that is broadcast to the room.
    """

    def __init__(
        self,
        store: MessageStore,
        oracle: MembershipOracle,
        presence: PresenceRegistry,
        legacy_chat_event: bool = None
    ):
        self.store = store
        self.oracle = oracle
        self.presence = presence
        self.legacy_chat_event = (
            settings.REALTIME_LEGACY_CHAT_EVENT if legacy_chat_event is None else legacy_chat_event
        )

    async def send_message(
        self,
        group_id: str,
        user: AuthContext,
        content: str,
        kind: MessageKind = MessageKind.TEXT,
        media_url: Optional[str] = None,
        media_type: Optional[str] = None,
        reply_to: Optional[str] = None,
        client_message_id: Optional[str] = None
    ) -> MessageResponse:
        """
        Persist a message and broadcast ``newMessage`` to the room.

        Raises:
            BadRequestError: invalid field combination
            NotFoundError: group or reply parent not found
            ForbiddenError: sender is not a member
        """
        with _tracked("create"):
            validate_message_fields(kind, content, media_url, media_type)
            await self.oracle.require_member(group_id, user.user_id)

            # Parent is read before the append so nothing awaits between
            # the store write and the broadcast
            parents = None
            if reply_to:
                parents = await self.store.get_many([reply_to])

            message = await self.store.append(
                group_id=group_id,
                sender_id=user.user_id,
                content=content,
                kind=kind,
                media_url=media_url,
                media_type=media_type,
                reply_to=reply_to,
                sender_name=user.name,
                sender_avatar=user.avatar,
                client_message_id=client_message_id
            )
            response = MessageResponse.from_model(message, parents)
            self._broadcast_new(response)

        metrics.messages_created_total.labels(kind=message.kind.value).inc()
        logger.info(
            "message_created",
            message_id=message.id,
            group_id=group_id,
            sender_id=user.user_id,
            kind=message.kind.value
        )
        return response

    async def list_messages(
        self,
        group_id: str,
        user: AuthContext,
        page: int = 1,
        limit: int = None
    ) -> Tuple[List[MessageResponse], int]:
        """
        Get one page of live messages, oldest first, with reply previews.

        Returns:
            Tuple of (messages, total_count)
        """
        limit = limit or settings.DEFAULT_PAGE_SIZE
        with _tracked("list"):
            await self.oracle.require_member(group_id, user.user_id)
            messages, total = await self.store.list(group_id, page, limit)
            parents = await self._parents_of(messages)

        logger.debug(
            "messages_retrieved",
            group_id=group_id,
            user_id=user.user_id,
            count=len(messages),
            total=total,
            page=page
        )
        return [MessageResponse.from_model(m, parents) for m in messages], total

    async def edit_message(
        self,
        group_id: str,
        message_id: str,
        user: AuthContext,
        content: str
    ) -> MessageResponse:
        """
        Overwrite a message's content and broadcast ``messageEdited``.

        Raises:
            NotFoundError: message absent or deleted
            ForbiddenError: caller is not a member or not the sender
        """
        with _tracked("edit"):
            if not content:
                raise BadRequestError("Content must not be empty")
            await self.oracle.require_member(group_id, user.user_id)
            message = await self.store.edit(message_id, user.user_id, content, group_id=group_id)
            response = MessageResponse.from_model(message)
            self.presence.publish(group_id, MESSAGE_EDITED_EVENT, response.to_event())

        metrics.messages_edited_total.inc()
        logger.info("message_updated", message_id=message_id, group_id=group_id, user_id=user.user_id)
        return await self._with_preview(message)

    async def delete_message(
        self,
        group_id: str,
        message_id: str,
        user: AuthContext
    ) -> MessageResponse:
        """
        Soft-delete a message and broadcast ``messageDeleted``.

        Only the sender may delete; ownership is checked here because the
        store only enforces existence.

        Raises:
            NotFoundError: message absent or already deleted
            ForbiddenError: caller is not a member or not the sender
        """
        with _tracked("delete"):
            await self.oracle.require_member(group_id, user.user_id)

            existing = await self.store.get(message_id)
            if existing is None or existing.deleted or existing.group_id != group_id:
                raise NotFoundError("Message not found")
            if existing.sender_id != user.user_id:
                logger.warning(
                    "message_delete_denied",
                    message_id=message_id,
                    sender_id=existing.sender_id,
                    user_id=user.user_id
                )
                raise ForbiddenError("You can only delete your own messages")

            message = await self.store.soft_delete(message_id, user.user_id, group_id=group_id)
            self.presence.publish(
                group_id,
                MESSAGE_DELETED_EVENT,
                {"messageId": message.id, "deletedBy": user.user_id, "groupId": group_id}
            )

        metrics.messages_deleted_total.inc()
        logger.info("message_deleted", message_id=message_id, group_id=group_id, user_id=user.user_id)
        return MessageResponse.from_model(message)

    async def mark_read(
        self,
        group_id: str,
        message_id: str,
        user: AuthContext
    ) -> MessageResponse:
        """
        Record a read receipt and broadcast ``messageRead`` to the whole room.

        Repeating a receipt is not an error; the reader set is unchanged.

        Raises:
            NotFoundError: message absent or deleted
            ForbiddenError: caller is not a member
        """
        with _tracked("read"):
            await self.oracle.require_member(group_id, user.user_id)
            message = await self.store.mark_read(message_id, user.user_id, group_id=group_id)
            self.presence.publish(
                group_id,
                MESSAGE_READ_EVENT,
                {
                    "messageId": message.id,
                    "userId": user.user_id,
                    "groupId": group_id,
                    "readBy": list(message.read_by)
                }
            )

        metrics.read_receipts_total.inc()
        logger.debug("message_read", message_id=message_id, group_id=group_id, user_id=user.user_id)
        return MessageResponse.from_model(message)

    def typing(self, group_id: str, user: AuthContext, connection: Optional[Connection] = None) -> int:
        """Broadcast a typing indicator to everyone in the room but the typist's connection."""
        return self.presence.publish(
            group_id,
            TYPING_EVENT,
            {"user": user.public(), "groupId": group_id},
            exclude=connection
        )

    def _broadcast_new(self, response: MessageResponse) -> None:
        event = response.to_event()
        self.presence.publish(response.group_id, NEW_MESSAGE_EVENT, event)
        if self.legacy_chat_event:
            self.presence.publish(response.group_id, LEGACY_MESSAGE_EVENT, event)

    async def _parents_of(self, messages: List[Message]) -> Dict[str, Message]:
        reply_ids = {m.reply_to for m in messages if m.reply_to}
        if not reply_ids:
            return {}
        return await self.store.get_many(reply_ids)

    async def _with_preview(self, message: Message) -> MessageResponse:
        return MessageResponse.from_model(message, await self._parents_of([message]))
