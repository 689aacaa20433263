from beanie import Document
from pydantic import BaseModel, Field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional


def utcnow() -> datetime:
    """Current UTC time at millisecond precision, the resolution BSON dates keep."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


class MessageKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    SYSTEM = "system"


class Message(BaseModel):
    """
    A chat message as seen by the services and the wire layers.

    Store backends return this model; ``read_by`` keeps set semantics
    (no duplicates, only grows) even though it is carried as a list.
    """
    id: str
    group_id: str
    sender_id: str
    sender_name: Optional[str] = None
    sender_avatar: Optional[str] = None
    content: str = ""
    kind: MessageKind = MessageKind.TEXT
    media_url: Optional[str] = None
    media_type: Optional[str] = None
    reply_to: Optional[str] = None
    client_message_id: Optional[str] = None
    read_by: List[str] = Field(default_factory=list)
    deleted: bool = False
    deleted_by: Optional[str] = None
    edited: bool = False
    edited_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class MessageDocument(Document):
    """
    MongoDB document for chat messages.

    Indexes:
    - Compound (group_id, deleted, created_at): history reads and counts
    - Single sender_id: per-user history
    """
    group_id: str
    sender_id: str
    sender_name: Optional[str] = None
    sender_avatar: Optional[str] = None
    content: str = Field(default="", max_length=10000)
    kind: MessageKind = MessageKind.TEXT
    media_url: Optional[str] = None
    media_type: Optional[str] = None
    reply_to: Optional[str] = None
    client_message_id: Optional[str] = None
    read_by: List[str] = Field(default_factory=list)

    # Soft delete
    deleted: bool = False
    deleted_by: Optional[str] = None

    edited: bool = False
    edited_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "messages"
        indexes = [
            [("group_id", 1), ("deleted", 1), ("created_at", 1)],
            "sender_id",
        ]

    def to_message(self) -> Message:
        return Message(id=str(self.id), **self.model_dump(exclude={"id", "revision_id"}))
