"""
Message Store - durable, ordered record of messages per group.

The store owns every read/edit/delete state transition. Its return values
are the only thing the services broadcast, so a failed write can never
produce a live event.

Backends:
- InMemoryMessageStore: single-process store for development and tests
- MongoMessageStore (groupchat.db.mongo_message_store): Beanie/MongoDB

Conditional mutations (edit, soft delete, read receipts) are atomic in
both backends. The in-memory store gets this from the event loop: no
check-then-act sequence below contains an ``await``.
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Tuple

from bson import ObjectId

from groupchat.core.exceptions import ForbiddenError, NotFoundError
from groupchat.models.message import Message, MessageKind, utcnow


class MessageStore(ABC):
    """Interface shared by all message store backends."""

    @abstractmethod
    async def append(
        self,
        group_id: str,
        sender_id: str,
        content: str,
        kind: MessageKind = MessageKind.TEXT,
        media_url: Optional[str] = None,
        media_type: Optional[str] = None,
        reply_to: Optional[str] = None,
        sender_name: Optional[str] = None,
        sender_avatar: Optional[str] = None,
        client_message_id: Optional[str] = None,
    ) -> Message:
        """
        Persist a new message and return it.

        Raises:
            NotFoundError: reply_to is set but names no live message in the group
        """

    @abstractmethod
    async def edit(
        self,
        message_id: str,
        by_user_id: str,
        new_content: str,
        group_id: Optional[str] = None
    ) -> Message:
        """
        Overwrite the content of a live message. Only the sender may edit.

        Raises:
            NotFoundError: message absent, deleted, or outside group_id
            ForbiddenError: by_user_id is not the sender
        """

    @abstractmethod
    async def soft_delete(
        self,
        message_id: str,
        by_user_id: str,
        group_id: Optional[str] = None
    ) -> Message:
        """
        Mark a live message deleted. Authorship is the caller's job.

        Raises:
            NotFoundError: message absent, already deleted, or outside group_id
        """

    @abstractmethod
    async def mark_read(
        self,
        message_id: str,
        by_user_id: str,
        group_id: Optional[str] = None
    ) -> Message:
        """
        Add by_user_id to read_by as an atomic set-insert.

        Raises:
            NotFoundError: message absent, deleted, or outside group_id
        """

    @abstractmethod
    async def list(self, group_id: str, page: int, limit: int) -> Tuple[List[Message], int]:
        """Return one page of live messages (oldest first) and the live total."""

    @abstractmethod
    async def get(self, message_id: str) -> Optional[Message]:
        """Fetch a message by id, deleted or not."""

    @abstractmethod
    async def get_many(self, message_ids: Iterable[str]) -> Dict[str, Message]:
        """Fetch several messages by id, deleted or not, keyed by id."""

    async def ping(self) -> None:
        """Raise if the backend is unreachable."""

    async def close(self) -> None:
        """Release backend resources."""


def new_message_id() -> str:
    return str(ObjectId())


class InMemoryMessageStore(MessageStore):
    """
    Process-local message store.

    Messages are kept per group in insertion order, which doubles as the
    tie-breaker for equal created_at timestamps.
    """

    def __init__(self):
        self._messages: Dict[str, Message] = {}
        self._by_group: Dict[str, List[str]] = {}

    async def append(
        self,
        group_id: str,
        sender_id: str,
        content: str,
        kind: MessageKind = MessageKind.TEXT,
        media_url: Optional[str] = None,
        media_type: Optional[str] = None,
        reply_to: Optional[str] = None,
        sender_name: Optional[str] = None,
        sender_avatar: Optional[str] = None,
        client_message_id: Optional[str] = None,
    ) -> Message:
        if reply_to is not None and self._live(reply_to, group_id) is None:
            raise NotFoundError("Parent message not found")

        now = utcnow()
        message = Message(
            id=new_message_id(),
            group_id=group_id,
            sender_id=sender_id,
            sender_name=sender_name,
            sender_avatar=sender_avatar,
            content=content,
            kind=kind,
            media_url=media_url,
            media_type=media_type,
            reply_to=reply_to,
            client_message_id=client_message_id,
            read_by=[sender_id],
            created_at=now,
            updated_at=now,
        )
        self._messages[message.id] = message
        self._by_group.setdefault(group_id, []).append(message.id)
        return message.model_copy(deep=True)

    async def edit(
        self,
        message_id: str,
        by_user_id: str,
        new_content: str,
        group_id: Optional[str] = None
    ) -> Message:
        message = self._live(message_id, group_id)
        if message is None:
            raise NotFoundError("Message not found")
        if message.sender_id != by_user_id:
            raise ForbiddenError("You can only edit your own messages")

        now = utcnow()
        message.content = new_content
        message.edited = True
        message.edited_at = now
        message.updated_at = now
        return message.model_copy(deep=True)

    async def soft_delete(
        self,
        message_id: str,
        by_user_id: str,
        group_id: Optional[str] = None
    ) -> Message:
        message = self._live(message_id, group_id)
        if message is None:
            raise NotFoundError("Message not found")

        message.deleted = True
        message.deleted_by = by_user_id
        message.updated_at = utcnow()
        return message.model_copy(deep=True)

    async def mark_read(
        self,
        message_id: str,
        by_user_id: str,
        group_id: Optional[str] = None
    ) -> Message:
        message = self._live(message_id, group_id)
        if message is None:
            raise NotFoundError("Message not found")

        if by_user_id not in message.read_by:
            message.read_by.append(by_user_id)
        return message.model_copy(deep=True)

    async def list(self, group_id: str, page: int, limit: int) -> Tuple[List[Message], int]:
        live = [
            self._messages[message_id]
            for message_id in self._by_group.get(group_id, [])
            if not self._messages[message_id].deleted
        ]
        # Stable sort keeps insertion order for equal timestamps
        live.sort(key=lambda m: m.created_at)

        skip = (page - 1) * limit
        return [m.model_copy(deep=True) for m in live[skip:skip + limit]], len(live)

    async def get(self, message_id: str) -> Optional[Message]:
        message = self._messages.get(message_id)
        return message.model_copy(deep=True) if message else None

    async def get_many(self, message_ids: Iterable[str]) -> Dict[str, Message]:
        return {
            message_id: self._messages[message_id].model_copy(deep=True)
            for message_id in set(message_ids)
            if message_id in self._messages
        }

    def _live(self, message_id: str, group_id: Optional[str]) -> Optional[Message]:
        message = self._messages.get(message_id)
        if message is None or message.deleted:
            return None
        if group_id is not None and message.group_id != group_id:
            return None
        return message
