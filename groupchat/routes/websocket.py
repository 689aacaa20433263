"""
WebSocket endpoint for the real-time channel.

Architecture:
- JWT access token validated on connect (query parameter)
- The authenticated session is attached to the connection and is the only
  source of sender identity for everything sent over it
- Inbound frames are dispatched by RealtimeGateway; outbound events are
  written by the connection's own writer task

Example: ws://localhost:5000/api/ws?token=YOUR_ACCESS_TOKEN
"""

import asyncio
from typing import Optional

import jwt
from fastapi import APIRouter, Depends, Query, WebSocket, status

from groupchat.core.logging_config import get_logger
from groupchat.core.oauth_validator import decode_token_string
from groupchat.dependencies import get_gateway, get_presence_registry
from groupchat.services.gateway import RealtimeGateway
from groupchat.services.presence import Connection, PresenceRegistry, make_event

router = APIRouter()
logger = get_logger(__name__)


async def _read_frames(websocket: WebSocket, connection: Connection, gateway: RealtimeGateway) -> None:
    async for text in websocket.iter_text():
        await gateway.handle_text(connection, text)


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None, description="JWT access token"),
    gateway: RealtimeGateway = Depends(get_gateway),
    presence: PresenceRegistry = Depends(get_presence_registry)
):
    """
    Real-time channel for every group the user joins.

    Client → Server: joinGroup, leaveGroup, chat message, user typing,
    read receipt, ping. Each is answered with an ``ack`` or ``error`` frame.

    Server → Client: connected, newMessage, chat message, messageEdited,
    messageDeleted, messageRead, user typing, server_shutdown.
    """
    if not token:
        logger.warning("websocket_authentication_failed", error="missing token")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    try:
        session = decode_token_string(token)
    except jwt.InvalidTokenError as e:
        logger.warning("websocket_authentication_failed", error=str(e))
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    connection = Connection(websocket, session)
    presence.register(connection)
    connection.enqueue(make_event("connected", {"connectionId": connection.id, "user": session.public()}))

    reader = asyncio.create_task(_read_frames(websocket, connection, gateway))
    writer = asyncio.create_task(connection.run_writer())
    reason = "client_disconnect"

    try:
        done, _ = await asyncio.wait({reader, writer}, return_when=asyncio.FIRST_COMPLETED)

        if reader in done and reader.exception() is not None:
            reason = "error"
            e = reader.exception()
            logger.error(
                "websocket_error",
                error_type=type(e).__name__,
                error=str(e),
                connection_id=connection.id,
                user_id=session.user_id,
                exc_info=e
            )
            await connection.close(code=status.WS_1011_INTERNAL_ERROR)
        elif reader not in done:
            # Writer stopped first: dropped as a slow consumer or the send failed
            reason = "writer_stopped"
            await connection.close(code=status.WS_1013_TRY_AGAIN_LATER)
    finally:
        presence.disconnect(connection, reason=reason)
        for task in (reader, writer):
            task.cancel()
        await asyncio.gather(reader, writer, return_exceptions=True)
