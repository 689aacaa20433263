from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from datetime import datetime
from typing import Dict, List, Optional
import bleach

from groupchat.models.message import Message, MessageKind


def sanitize_content(value: Optional[str]) -> str:
    """
    Strip all HTML/JS tags while preserving text content.

    Applied to every message body regardless of the client's own sanitizing.
    """
    if value is None:
        return ""
    return bleach.clean(value, tags=set(), strip=True).strip()


class MessageCreate(BaseModel):
    """Schema for creating a new message."""
    model_config = ConfigDict(populate_by_name=True)

    content: str = Field(default="", max_length=10000)
    kind: MessageKind = Field(
        default=MessageKind.TEXT,
        validation_alias=AliasChoices("kind", "type")
    )
    media_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("media_url", "mediaUrl")
    )
    media_type: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("media_type", "mediaType")
    )
    reply_to: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("reply_to", "replyTo")
    )

    @field_validator('content', mode='before')
    @classmethod
    def sanitize(cls, v: Optional[str]) -> str:
        return sanitize_content(v)


class MessageUpdate(BaseModel):
    """Schema for editing a message."""
    content: str = Field(..., min_length=1, max_length=10000)

    @field_validator('content')
    @classmethod
    def sanitize(cls, v: str) -> str:
        v = sanitize_content(v)
        if not v:
            raise ValueError("content must not be empty")
        return v


class ReplyPreview(BaseModel):
    """
    What a reply shows of its parent.

    A parent deleted after the reply was written renders as a tombstone:
    ``deleted=True`` with no content or sender.
    """
    id: str
    deleted: bool = False
    content: Optional[str] = None
    sender_id: Optional[str] = None
    sender_name: Optional[str] = None

    @classmethod
    def from_parent(cls, parent_id: str, parent: Optional[Message]) -> "ReplyPreview":
        if parent is None or parent.deleted:
            return cls(id=parent_id, deleted=True)
        return cls(
            id=parent.id,
            content=parent.content,
            sender_id=parent.sender_id,
            sender_name=parent.sender_name
        )


class MessageResponse(BaseModel):
    """Schema for message response (HTTP bodies and real-time payloads)."""
    id: str
    group_id: str
    sender_id: str
    sender_name: Optional[str] = None
    sender_avatar: Optional[str] = None
    content: str
    kind: MessageKind
    media_url: Optional[str] = None
    media_type: Optional[str] = None
    reply_to: Optional[str] = None
    reply_preview: Optional[ReplyPreview] = None
    client_message_id: Optional[str] = None
    read_by: List[str]
    deleted: bool = False
    deleted_by: Optional[str] = None
    edited: bool = False
    edited_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(
        cls,
        message: Message,
        parents: Optional[Dict[str, Message]] = None
    ) -> "MessageResponse":
        """
        Build the response for a message.

        ``parents`` maps reply_to ids to their (possibly deleted) parent
        messages; when given, ``reply_preview`` is filled in.
        """
        reply_preview = None
        if message.reply_to and parents is not None:
            reply_preview = ReplyPreview.from_parent(message.reply_to, parents.get(message.reply_to))

        return cls(
            **message.model_dump(),
            reply_preview=reply_preview
        )

    def to_event(self) -> dict:
        return self.model_dump(mode="json")


class Pagination(BaseModel):
    total: int
    page: int
    pages: int
    limit: int


class MessageListResponse(BaseModel):
    """Schema for paginated message list."""
    messages: List[MessageResponse]
    pagination: Pagination
