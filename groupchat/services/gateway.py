"""
Real-Time Gateway - dispatches inbound frames of one live connection.

Every inbound frame is answered on the same connection by exactly one
``ack`` or ``error`` frame carrying the frame's ``id``:

    {"event": "ack", "id": "c-17", "data": {...}}
    {"event": "error", "id": "c-17", "error": {"code": "unauthorized", "message": "...", "status": 403}}

Replies go through the connection's outbound queue, so they are ordered with
the room broadcasts that connection receives.
"""

import json
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import structlog
from pydantic import ValidationError

from groupchat.config import settings
from groupchat.core import metrics
from groupchat.core.exceptions import BadRequestError, ChatError, InternalError
from groupchat.core.logging_config import get_logger
from groupchat.schemas.realtime import (
    ChatMessagePayload,
    InboundFrame,
    ReadReceiptPayload,
    RoomPayload,
    TypingPayload
)
from groupchat.services.chat_service import ChatService
from groupchat.services.membership import MembershipOracle
from groupchat.services.presence import Connection, PresenceRegistry

logger = get_logger(__name__)

Handler = Callable[[Connection, Any], Awaitable[Any]]


def ack_frame(frame_id: Any, data: Any = None) -> Dict[str, Any]:
    return {"event": "ack", "id": frame_id, "data": data}


def error_frame(frame_id: Any, error: ChatError) -> Dict[str, Any]:
    return {
        "event": "error",
        "id": frame_id,
        "error": {"code": error.code, "message": error.detail, "status": error.status_code}
    }


def _validation_message(e: ValidationError) -> str:
    first = e.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first['msg']}" if location else first["msg"]


class RealtimeGateway:

    def __init__(
        self,
        chat_service: ChatService,
        presence: PresenceRegistry,
        oracle: MembershipOracle,
        authorize_join: bool = None
    ):
        self.chat_service = chat_service
        self.presence = presence
        self.oracle = oracle
        self.authorize_join = settings.REALTIME_AUTHORIZE_JOIN if authorize_join is None else authorize_join
        self._handlers: Dict[str, Handler] = {
            "joinGroup": self._join_group,
            "leaveGroup": self._leave_group,
            "chat message": self._chat_message,
            "user typing": self._typing,
            "read receipt": self._read_receipt,
            "ping": self._ping,
        }

    async def handle_text(self, connection: Connection, text: Union[str, bytes]) -> None:
        """Handle one raw text frame from the socket."""
        try:
            payload = json.loads(text)
        except ValueError:
            metrics.realtime_events_received_total.labels(event="invalid", outcome="error").inc()
            connection.enqueue(error_frame(None, BadRequestError("Frame is not valid JSON")))
            return
        await self.handle_frame(connection, payload)

    async def handle_frame(self, connection: Connection, payload: Any) -> None:
        """Dispatch one decoded frame and queue its ack or error reply."""
        frame_id = payload.get("id") if isinstance(payload, dict) else None

        try:
            frame = InboundFrame.model_validate(payload)
        except ValidationError as e:
            metrics.realtime_events_received_total.labels(event="invalid", outcome="error").inc()
            connection.enqueue(error_frame(frame_id, BadRequestError(_validation_message(e))))
            return

        handler = self._handlers.get(frame.event)
        if handler is None:
            metrics.realtime_events_received_total.labels(event="unknown", outcome="error").inc()
            logger.debug("realtime_unknown_event", connection_id=connection.id, event=frame.event)
            connection.enqueue(error_frame(frame.id, BadRequestError(f"Unknown event: {frame.event}")))
            return

        with structlog.contextvars.bound_contextvars(
            correlation_id=str(frame.id) if frame.id is not None else None,
            connection_id=connection.id,
            user_id=connection.user_id,
            event=frame.event
        ):
            reply = await self._dispatch(connection, handler, frame)
        connection.enqueue(reply)

    async def _dispatch(self, connection: Connection, handler: Handler, frame: InboundFrame) -> Dict[str, Any]:
        try:
            data = await handler(connection, frame.data)
        except ChatError as e:
            outcome = e.code
            logger.info("realtime_event_rejected", code=e.code, reason=e.detail)
            reply = error_frame(frame.id, e)
        except ValidationError as e:
            outcome = BadRequestError.code
            reply = error_frame(frame.id, BadRequestError(_validation_message(e)))
        except Exception as e:
            outcome = InternalError.code
            logger.error(
                "realtime_event_failed",
                error_type=type(e).__name__,
                error=str(e),
                exc_info=True
            )
            reply = error_frame(frame.id, InternalError())
        else:
            outcome = "ok"
            reply = ack_frame(frame.id, data)

        metrics.realtime_events_received_total.labels(event=frame.event, outcome=outcome).inc()
        return reply

    @staticmethod
    def _room(data: Any) -> RoomPayload:
        # joinGroup/leaveGroup accept a bare group id as well as {"groupId": ...}
        if isinstance(data, str):
            return RoomPayload(group_id=data)
        return RoomPayload.model_validate(data)

    async def _join_group(self, connection: Connection, data: Any) -> Dict[str, Any]:
        room = self._room(data)
        if self.authorize_join:
            await self.oracle.require_member(room.group_id, connection.user_id)
        joined = self.presence.subscribe(connection, room.group_id)
        return {"groupId": room.group_id, "joined": joined}

    async def _leave_group(self, connection: Connection, data: Any) -> Dict[str, Any]:
        room = self._room(data)
        left = self.presence.unsubscribe(connection, room.group_id)
        return {"groupId": room.group_id, "left": left}

    async def _chat_message(self, connection: Connection, data: Any) -> Dict[str, Any]:
        payload = ChatMessagePayload.model_validate(data)
        message = await self.chat_service.send_message(
            group_id=payload.group_id,
            user=connection.session,
            content=payload.content,
            kind=payload.kind,
            media_url=payload.media_url,
            media_type=payload.media_type,
            reply_to=payload.reply_to,
            client_message_id=payload.client_message_id
        )
        return message.to_event()

    async def _typing(self, connection: Connection, data: Any) -> Dict[str, Any]:
        payload = TypingPayload.model_validate(data)
        delivered = self.chat_service.typing(payload.group_id, connection.session, connection)
        return {"groupId": payload.group_id, "delivered": delivered}

    async def _read_receipt(self, connection: Connection, data: Any) -> Dict[str, Any]:
        payload = ReadReceiptPayload.model_validate(data)
        message = await self.chat_service.mark_read(payload.group_id, payload.message_id, connection.session)
        return {"messageId": message.id, "groupId": message.group_id, "readBy": message.read_by}

    async def _ping(self, connection: Connection, data: Any) -> Optional[Dict[str, Any]]:
        return {"pong": True}
