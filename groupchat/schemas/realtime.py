"""
Real-time channel payloads.

Inbound frames look like ``{"event": "chat message", "data": {...}, "id": "c-17"}``.
``id`` is an optional client correlation id echoed back on the matching
``ack`` or ``error`` frame. Payload fields accept both camelCase (as sent by
the existing web client) and snake_case.

Sender identity is never read from payloads; any ``user`` field is ignored.
"""

from typing import Any, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from groupchat.models.message import MessageKind
from groupchat.schemas.message import sanitize_content


class InboundFrame(BaseModel):
    event: str = Field(..., min_length=1)
    data: Any = None
    id: Optional[Union[str, int]] = None


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RoomPayload(_Payload):
    group_id: str = Field(..., min_length=1, validation_alias=AliasChoices("groupId", "group_id"))


class ChatMessagePayload(_Payload):
    group_id: str = Field(..., min_length=1, validation_alias=AliasChoices("groupId", "group_id"))
    content: str = Field(default="", max_length=10000, validation_alias=AliasChoices("text", "content"))
    kind: MessageKind = Field(default=MessageKind.TEXT, validation_alias=AliasChoices("type", "kind"))
    media_url: Optional[str] = Field(default=None, validation_alias=AliasChoices("mediaUrl", "media_url"))
    media_type: Optional[str] = Field(default=None, validation_alias=AliasChoices("mediaType", "media_type"))
    reply_to: Optional[str] = Field(default=None, validation_alias=AliasChoices("replyTo", "reply_to"))
    client_message_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("id", "clientMessageId", "client_message_id")
    )

    @field_validator('content', mode='before')
    @classmethod
    def sanitize(cls, v: Optional[str]) -> str:
        return sanitize_content(v)

    @field_validator('client_message_id', mode='before')
    @classmethod
    def stringify_id(cls, v: Any) -> Optional[str]:
        return None if v is None else str(v)


class TypingPayload(RoomPayload):
    pass


class ReadReceiptPayload(_Payload):
    message_id: str = Field(..., min_length=1, validation_alias=AliasChoices("messageId", "message_id"))
    group_id: str = Field(..., min_length=1, validation_alias=AliasChoices("groupId", "group_id"))
