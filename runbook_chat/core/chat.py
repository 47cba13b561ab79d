"""
In-process WebSocket connection registry and channel broadcast.

Features:
- One live connection per authenticated user (last authentication wins)
- Channel subscriptions tracked per connection
- Bounded per-connection outbox drained by a single writer task, so frames
  reach each client in the order they were published
- Best-effort fan-out: a dead or slow consumer never blocks or fails a publish

All registry mutations are synchronous methods. They run to completion on the
event loop without suspending, so two mutations can never interleave.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Optional

import structlog
from fastapi import WebSocket

from runbook_chat.models import User

log = structlog.get_logger()

OUTBOX_MAX = 1000
CLOSE_NORMAL = 1000
CLOSE_SESSION_REPLACED = 4000


class Transport:
    """A WebSocket plus its outbound queue."""

    def __init__(self, websocket: WebSocket, max_outbox: int = OUTBOX_MAX):
        self.websocket = websocket
        self._outbox: asyncio.Queue[Optional[str]] = asyncio.Queue(maxsize=max_outbox)
        self._closing = False
        self._close_code = CLOSE_NORMAL
        self._close_reason: Optional[str] = None
        self.last_seen = time.monotonic()

    @property
    def is_open(self) -> bool:
        return not self._closing

    def touch(self) -> None:
        self.last_seen = time.monotonic()

    def send(self, payload: dict[str, Any]) -> bool:
        """Queue a frame. Never blocks and never raises; False if not queued."""
        if self._closing:
            return False
        try:
            text = json.dumps(payload)
        except (TypeError, ValueError) as exc:
            log.error("chat.unserializable_frame", error=str(exc), frame_type=payload.get("type"))
            return False
        try:
            self._outbox.put_nowait(text)
        except asyncio.QueueFull:
            log.warning("chat.outbox_overflow", max_size=self._outbox.maxsize)
            self.close(reason="outbox overflow")
            return False
        return True

    def close(self, code: int = CLOSE_NORMAL, reason: Optional[str] = None) -> None:
        """Stop accepting frames; the writer flushes what is queued, then closes."""
        if self._closing:
            return
        self._closing = True
        self._close_code = code
        self._close_reason = reason
        if self._outbox.full():
            # Overflowed consumer: drop the backlog so the sentinel fits.
            while not self._outbox.empty():
                self._outbox.get_nowait()
        self._outbox.put_nowait(None)

    async def run_writer(self) -> None:
        """Drain the outbox until closed or a write fails."""
        while True:
            text = await self._outbox.get()
            if text is None:
                break
            try:
                await self.websocket.send_text(text)
            except Exception as exc:
                log.info("chat.write_failed", error=str(exc))
                self._closing = True
                return
        try:
            await self.websocket.close(code=self._close_code, reason=self._close_reason)
        except Exception:
            # Peer already gone.
            pass


class Connection:
    """Tracks a single authenticated connection's metadata."""

    __slots__ = ("user", "transport", "channels")

    def __init__(self, user: User, transport: Transport):
        self.user = user
        self.transport = transport
        self.channels: set[str] = set()

    @property
    def user_id(self) -> str:
        return self.user.id

    @property
    def last_seen(self) -> float:
        return self.transport.last_seen


class ConnectionRegistry:
    """Maps user id -> live Connection."""

    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._connections

    def get(self, user_id: str) -> Optional[Connection]:
        return self._connections.get(user_id)

    def register(
        self, user: User, transport: Transport
    ) -> tuple[Connection, Optional[Connection]]:
        """
        Record ``transport`` as the live connection for ``user``.

        Returns ``(connection, displaced)`` where ``displaced`` is the previous
        connection of the same user on a different transport, if any.
        """
        previous = self._connections.get(user.id)
        connection = Connection(user, transport)
        self._connections[user.id] = connection
        displaced = previous if previous is not None and previous.transport is not transport else None
        log.info("chat.registered", user_id=user.id, total=len(self._connections))
        return connection, displaced

    def subscribe(self, user_id: str, channel_id: str) -> bool:
        connection = self._connections.get(user_id)
        if connection is None:
            return False
        connection.channels.add(channel_id)
        return True

    def subscribe_many(self, user_id: str, channel_ids: list[str]) -> bool:
        connection = self._connections.get(user_id)
        if connection is None:
            return False
        connection.channels.update(channel_ids)
        return True

    def unsubscribe(self, user_id: str, channel_id: str) -> bool:
        connection = self._connections.get(user_id)
        if connection is None:
            return False
        connection.channels.discard(channel_id)
        return True

    def evict(self, transport: Transport) -> Optional[Connection]:
        """Remove the connection owning ``transport``, if it is still registered."""
        for user_id, connection in self._connections.items():
            if connection.transport is transport:
                del self._connections[user_id]
                log.info("chat.evicted", user_id=user_id, total=len(self._connections))
                return connection
        return None

    def connections_for(
        self, channel_id: str, exclude_user_id: Optional[str] = None
    ) -> list[Connection]:
        return [
            connection
            for user_id, connection in self._connections.items()
            if user_id != exclude_user_id and channel_id in connection.channels
        ]


class Broadcaster:
    """Fan-out of events to every connection subscribed to a channel."""

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry

    def publish(
        self,
        channel_id: str,
        payload: dict[str, Any],
        exclude_user_id: Optional[str] = None,
    ) -> int:
        """Queue ``payload`` for each subscriber. Returns the number queued."""
        delivered = 0
        for connection in self.registry.connections_for(channel_id, exclude_user_id):
            try:
                if connection.transport.send(payload):
                    delivered += 1
            except Exception:
                log.exception("chat.publish_failed", user_id=connection.user_id, channel_id=channel_id)
        return delivered
