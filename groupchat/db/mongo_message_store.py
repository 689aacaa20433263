"""
MongoDB-backed message store (Beanie ODM).

Every conditional mutation is a single ``find_one(...).update(...)`` with
``UpdateResponse.NEW_DOCUMENT``, i.e. one findAndModify round trip:

- edit:        filter {_id, deleted: false, sender_id}   -> $set content
- soft_delete: filter {_id, deleted: false}              -> $set deleted
- mark_read:   filter {_id, deleted: false}              -> $addToSet read_by

A None result means the filter did not match; only then is the document
re-read to pick the right error (absent/deleted vs. not the sender).
Concurrent read receipts on one message therefore never lose updates.
"""

import asyncio
from typing import Dict, Iterable, List, Optional, Tuple

from beanie import UpdateResponse
from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING
from pymongo.errors import PyMongoError

from groupchat.core import metrics
from groupchat.core.exceptions import ForbiddenError, InternalError, NotFoundError
from groupchat.core.logging_config import get_logger
from groupchat.db.mongodb import close_db
from groupchat.models.message import Message, MessageDocument, MessageKind, utcnow
from groupchat.services.message_store import MessageStore

logger = get_logger(__name__)


def _object_id(message_id: str) -> Optional[ObjectId]:
    if message_id and ObjectId.is_valid(message_id):
        return ObjectId(message_id)
    return None


def _live_filter(oid: ObjectId, group_id: Optional[str]) -> dict:
    query = {"_id": oid, "deleted": False}
    if group_id is not None:
        query["group_id"] = group_id
    return query


class MongoMessageStore(MessageStore):
    """Message store on top of an initialised Beanie connection."""

    def __init__(self, client: AsyncIOMotorClient = None):
        self.client = client

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
        if reply_to is not None:
            parent_oid = _object_id(reply_to)
            parent = None
            if parent_oid is not None:
                async with self._operation("find"):
                    parent = await MessageDocument.find_one(_live_filter(parent_oid, group_id))
            if parent is None:
                raise NotFoundError("Parent message not found")

        async with self._operation("insert"):
            now = utcnow()
            document = MessageDocument(
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
            await document.insert()
            return document.to_message()

    async def edit(
        self,
        message_id: str,
        by_user_id: str,
        new_content: str,
        group_id: Optional[str] = None
    ) -> Message:
        oid = _object_id(message_id)
        if oid is None:
            raise NotFoundError("Message not found")

        async with self._operation("update"):
            now = utcnow()
            query = _live_filter(oid, group_id)
            query["sender_id"] = by_user_id
            updated = await MessageDocument.find_one(query).update(
                {"$set": {
                    "content": new_content,
                    "edited": True,
                    "edited_at": now,
                    "updated_at": now,
                }},
                response_type=UpdateResponse.NEW_DOCUMENT
            )
            if updated is not None:
                return updated.to_message()

            # Filter missed: work out whether the message is gone or not ours
            current = await MessageDocument.find_one(_live_filter(oid, group_id))
            if current is None:
                raise NotFoundError("Message not found")
            raise ForbiddenError("You can only edit your own messages")

    async def soft_delete(
        self,
        message_id: str,
        by_user_id: str,
        group_id: Optional[str] = None
    ) -> Message:
        oid = _object_id(message_id)
        if oid is None:
            raise NotFoundError("Message not found")

        async with self._operation("update"):
            updated = await MessageDocument.find_one(_live_filter(oid, group_id)).update(
                {"$set": {
                    "deleted": True,
                    "deleted_by": by_user_id,
                    "updated_at": utcnow(),
                }},
                response_type=UpdateResponse.NEW_DOCUMENT
            )
            if updated is None:
                raise NotFoundError("Message not found")
            return updated.to_message()

    async def mark_read(
        self,
        message_id: str,
        by_user_id: str,
        group_id: Optional[str] = None
    ) -> Message:
        oid = _object_id(message_id)
        if oid is None:
            raise NotFoundError("Message not found")

        async with self._operation("update"):
            updated = await MessageDocument.find_one(_live_filter(oid, group_id)).update(
                {"$addToSet": {"read_by": by_user_id}},
                response_type=UpdateResponse.NEW_DOCUMENT
            )
            if updated is None:
                raise NotFoundError("Message not found")
            return updated.to_message()

    async def list(self, group_id: str, page: int, limit: int) -> Tuple[List[Message], int]:
        query = {"group_id": group_id, "deleted": False}
        skip = (page - 1) * limit

        async with self._operation("find"):
            documents, total = await asyncio.gather(
                MessageDocument.find(query)
                .sort([("created_at", ASCENDING), ("_id", ASCENDING)])
                .skip(skip)
                .limit(limit)
                .to_list(),
                MessageDocument.find(query).count(),
            )
        return [document.to_message() for document in documents], total

    async def get(self, message_id: str) -> Optional[Message]:
        oid = _object_id(message_id)
        if oid is None:
            return None
        async with self._operation("find"):
            document = await MessageDocument.find_one({"_id": oid})
        return document.to_message() if document else None

    async def get_many(self, message_ids: Iterable[str]) -> Dict[str, Message]:
        oids = [oid for oid in (_object_id(i) for i in set(message_ids)) if oid is not None]
        if not oids:
            return {}
        async with self._operation("find"):
            documents = await MessageDocument.find({"_id": {"$in": oids}}).to_list()
        return {str(document.id): document.to_message() for document in documents}

    async def ping(self) -> None:
        async with self._operation("ping"):
            await MessageDocument.find().limit(1).to_list()

    async def close(self) -> None:
        await close_db(self.client)

    def _operation(self, operation: str) -> "_MongoOperation":
        return _MongoOperation(operation)


class _MongoOperation:
    """Counts a MongoDB call and turns driver failures into InternalError."""

    def __init__(self, operation: str):
        self.operation = operation

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            metrics.mongodb_operations_total.labels(operation=self.operation, status="success").inc()
            return False

        metrics.mongodb_operations_total.labels(operation=self.operation, status="error").inc()
        if issubclass(exc_type, PyMongoError):
            logger.error(
                "mongodb_operation_failed",
                operation=self.operation,
                error_type=exc_type.__name__,
                error=str(exc_val),
            )
            raise InternalError("Message store unavailable") from exc_val
        return False
