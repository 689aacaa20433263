"""
Presence/Session Registry - which live connections subscribe to which rooms.

Fan-out model:
- ``publish`` enqueues the event into every subscriber's bounded outbound
  queue synchronously (no await), so callers that publish right after a
  store write complete preserve store-completion order per room
- each connection drains its own queue with a single writer task, so a slow
  client never delays the rest of the room
- a connection whose queue overflows is dropped instead of blocking fan-out

The registry is created per application (see ``groupchat.dependencies``)
and injected; a distributed implementation only needs the same methods.
"""

import asyncio
import uuid
from typing import Any, Dict, List, Optional, Set

from fastapi import WebSocket

from groupchat.config import settings
from groupchat.core import metrics
from groupchat.core.logging_config import get_logger
from groupchat.core.oauth_validator import AuthContext

logger = get_logger(__name__)

_STOP = object()


def make_event(event: str, data: Any) -> Dict[str, Any]:
    return {"event": event, "data": data}


class Connection:
    """One live real-time channel and its outbound queue."""

    def __init__(self, websocket: Optional[WebSocket], session: AuthContext, max_queue: int = None):
        self.id = uuid.uuid4().hex
        self.websocket = websocket
        self.session = session
        self.rooms: Set[str] = set()
        self.closed = False
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue or settings.REALTIME_MAX_QUEUE)

    @property
    def user_id(self) -> str:
        return self.session.user_id

    def enqueue(self, event: Dict[str, Any]) -> bool:
        """Queue an event for delivery. False if closed or the queue is full."""
        if self.closed:
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            return False
        return True

    def abort(self) -> None:
        """Stop delivery; the writer exits after its current send."""
        self.closed = True
        try:
            self._queue.put_nowait(_STOP)
        except asyncio.QueueFull:
            pass  # writer checks ``closed`` after every send

    async def run_writer(self) -> None:
        """Deliver queued events in order until aborted or the socket fails."""
        while not self.closed:
            event = await self._queue.get()
            if event is _STOP:
                break
            try:
                await self.websocket.send_json(event)
            except Exception as e:
                logger.warning("realtime_send_failed", connection_id=self.id, error=str(e))
                self.closed = True
                break

    async def close(self, code: int = 1000, notice: Optional[Dict[str, Any]] = None) -> None:
        self.abort()
        if self.websocket is None:
            return
        try:
            if notice is not None:
                await self.websocket.send_json(notice)
            await self.websocket.close(code=code)
        except Exception as e:
            logger.debug("realtime_close_failed", connection_id=self.id, error=str(e))


class PresenceRegistry:
    """Room -> connections index with ordered fan-out."""

    def __init__(self):
        self._connections: Dict[str, Connection] = {}
        self._rooms: Dict[str, Set[Connection]] = {}

    def register(self, connection: Connection) -> None:
        self._connections[connection.id] = connection
        metrics.realtime_connections_active.set(len(self._connections))
        logger.info("realtime_connected", connection_id=connection.id, user_id=connection.user_id)

    def subscribe(self, connection: Connection, group_id: str) -> bool:
        """Add the connection to a room. False if it was already subscribed."""
        if group_id in connection.rooms:
            return False
        connection.rooms.add(group_id)
        self._rooms.setdefault(group_id, set()).add(connection)
        metrics.realtime_room_subscribers.labels(group_id=group_id).set(len(self._rooms[group_id]))
        logger.debug("room_joined", connection_id=connection.id, group_id=group_id)
        return True

    def unsubscribe(self, connection: Connection, group_id: str) -> bool:
        if group_id not in connection.rooms:
            return False
        connection.rooms.discard(group_id)
        room = self._rooms.get(group_id)
        if room is not None:
            room.discard(connection)
            if room:
                metrics.realtime_room_subscribers.labels(group_id=group_id).set(len(room))
            else:
                del self._rooms[group_id]
                metrics.realtime_room_subscribers.remove(group_id)
        logger.debug("room_left", connection_id=connection.id, group_id=group_id)
        return True

    def disconnect(self, connection: Connection, reason: str = "normal") -> None:
        """Release every subscription of the connection."""
        for group_id in list(connection.rooms):
            self.unsubscribe(connection, group_id)
        connection.abort()
        if self._connections.pop(connection.id, None) is None:
            return

        metrics.realtime_connections_active.set(len(self._connections))
        metrics.realtime_disconnections_total.labels(reason=reason).inc()
        logger.info(
            "realtime_disconnected",
            connection_id=connection.id,
            user_id=connection.user_id,
            reason=reason
        )

    def publish(
        self,
        group_id: str,
        event: str,
        data: Any,
        exclude: Optional[Connection] = None
    ) -> int:
        """
        Fan an event out to every subscriber of the room.

        Returns the number of connections the event was queued for.
        """
        envelope = make_event(event, data)
        delivered = 0
        overflowed: List[Connection] = []

        for connection in list(self._rooms.get(group_id, ())):
            if connection is exclude:
                continue
            if connection.enqueue(envelope):
                delivered += 1
            elif not connection.closed:
                overflowed.append(connection)

        for connection in overflowed:
            logger.warning(
                "realtime_slow_consumer_dropped",
                connection_id=connection.id,
                user_id=connection.user_id,
                group_id=group_id
            )
            metrics.realtime_dropped_connections_total.inc()
            self.disconnect(connection, reason="queue_overflow")

        metrics.realtime_events_broadcast_total.labels(event=event).inc()
        return delivered

    def room_size(self, group_id: str) -> int:
        return len(self._rooms.get(group_id, ()))

    def connection_count(self) -> int:
        return len(self._connections)

    async def shutdown_all(self) -> None:
        """Notify and close every connection (application shutdown)."""
        connections = list(self._connections.values())
        if not connections:
            logger.info("realtime_shutdown", message="No active connections to close")
            return

        logger.info("realtime_shutdown_started", connection_count=len(connections))
        notice = make_event(
            "server_shutdown",
            {"message": "Server is restarting. Please reconnect in a few seconds."}
        )
        await asyncio.gather(
            *[connection.close(code=1001, notice=notice) for connection in connections],
            return_exceptions=True
        )
        for connection in connections:
            self.disconnect(connection, reason="shutdown")
        logger.info("realtime_shutdown_completed", connections_closed=len(connections))
