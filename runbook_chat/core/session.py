"""
Per-connection chat session.

Lifecycle: UNAUTHENTICATED -> AUTHENTICATED -> CLOSED. Channel subscriptions
live on the registry connection and are orthogonal to the state.

Each session runs three tasks:
- receiver: reads frames, decodes them and dispatches one at a time
- writer: drains the transport outbox (see ``Transport.run_writer``)
- prober: sends ``ping`` on an interval and closes silent transports

Application errors become ``error`` / ``auth_error`` frames and never close
the connection. Only transport failures, the liveness timeout, an overflowing
outbox or being replaced by a newer session end it.
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

import structlog
from fastapi import WebSocket

from runbook_chat.core.auth import authenticate_token
from runbook_chat.core.chat import CLOSE_SESSION_REPLACED, Connection, Transport
from runbook_chat.core.errors import ChatError, InternalError, NotAuthenticated, SessionReplaced
from runbook_chat.core.protocol import (
    Authenticate,
    Command,
    JoinChannel,
    LeaveChannel,
    Ping,
    Pong,
    SendMessage,
    TypingStart,
    TypingStop,
    authenticated_event,
    channels_updated_event,
    joined_channel_event,
    left_channel_event,
    parse_command,
    ping_event,
    pong_event,
    user_typing_event,
)

if TYPE_CHECKING:
    from runbook_chat.core.runtime import Runtime
    from runbook_chat.models import User

log = structlog.get_logger()


class SessionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


class ChannelSession:
    def __init__(self, websocket: WebSocket, runtime: Runtime):
        self.runtime = runtime
        self.settings = runtime.settings
        self.transport = Transport(websocket, self.settings.outbox_max_size)
        self.state = SessionState.UNAUTHENTICATED
        self.connection: Optional[Connection] = None
        self.handlers: dict[type[Command], Callable[[Command], Awaitable[None]]] = {
            Authenticate: self._on_authenticate,
            JoinChannel: self._on_join_channel,
            LeaveChannel: self._on_leave_channel,
            SendMessage: self._on_send_message,
            TypingStart: self._on_typing_start,
            TypingStop: self._on_typing_stop,
            Ping: self._on_ping,
            Pong: self._on_pong,
        }

    @property
    def user(self) -> Optional[User]:
        return self.connection.user if self.connection is not None else None

    @property
    def user_id(self) -> Optional[str]:
        return self.connection.user_id if self.connection is not None else None

    def _is_current(self) -> bool:
        """True while this session is still the registered one for its user."""
        if self.connection is None:
            return False
        return self.runtime.registry.get(self.connection.user_id) is self.connection

    def send(self, payload: dict) -> bool:
        return self.transport.send(payload)

    # --- Lifecycle ---

    async def run(self) -> None:
        """Serve an accepted WebSocket until it closes."""
        receiver = asyncio.create_task(self._receive_loop())
        writer = asyncio.create_task(self.transport.run_writer())
        prober = asyncio.create_task(self._probe_loop())
        try:
            await asyncio.wait({receiver, writer}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (receiver, writer, prober):
                task.cancel()
            await asyncio.gather(receiver, writer, prober, return_exceptions=True)
            self.close()

    def close(self) -> None:
        if self.state is SessionState.CLOSED:
            return
        self.transport.close()
        self.runtime.registry.evict(self.transport)
        self.state = SessionState.CLOSED
        log.info("chat.session_closed", user_id=self.user_id)

    async def _receive_loop(self) -> None:
        websocket = self.transport.websocket
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                log.info("chat.disconnected", user_id=self.user_id, code=message.get("code"))
                return
            self.transport.touch()
            text = message.get("text")
            await self.handle_frame(text if text is not None else message.get("bytes"))

    async def _probe_loop(self) -> None:
        interval = self.settings.liveness_probe_interval_seconds
        timeout = self.settings.liveness_timeout_seconds
        while self.transport.is_open:
            await asyncio.sleep(interval)
            idle = time.monotonic() - self.transport.last_seen
            if idle > timeout:
                log.info("chat.liveness_timeout", user_id=self.user_id, idle_seconds=round(idle, 1))
                self.transport.close(reason="liveness timeout")
                return
            if not self.send(ping_event()):
                log.info("chat.probe_failed", user_id=self.user_id)
                self.transport.close()
                return

    # --- Dispatch ---

    async def handle_frame(self, raw) -> None:
        try:
            command = parse_command(raw)
        except ChatError as exc:
            log.info("chat.bad_frame", user_id=self.user_id, code=exc.code)
            self.send(exc.to_event())
            return
        await self.dispatch(command)

    async def dispatch(self, command: Command) -> None:
        handler = self.handlers[type(command)]
        try:
            await handler(command)
        except ChatError as exc:
            self.send(exc.to_event())
        except Exception:
            log.exception(
                "chat.handler_failed",
                user_id=self.user_id,
                command=type(command).__name__,
            )
            self.send(InternalError().to_event())

    def _require_user(self) -> User:
        if self.state is not SessionState.AUTHENTICATED or not self._is_current():
            raise NotAuthenticated()
        return self.connection.user

    # --- Handlers ---

    async def _on_authenticate(self, command: Authenticate) -> None:
        runtime = self.runtime
        user, claims = await authenticate_token(command.token, runtime.codec, runtime.directory)
        visible = await runtime.access.accessible_channels(user)

        # Same transport authenticating again: start from a clean slate.
        runtime.registry.evict(self.transport)
        connection, displaced = runtime.registry.register(user, self.transport)
        runtime.registry.subscribe_many(user.id, [channel.id for channel, _ in visible])
        self.connection = connection
        self.state = SessionState.AUTHENTICATED

        self.send(authenticated_event(user))
        self.send(channels_updated_event(visible))
        log.info(
            "chat.authenticated",
            user_id=user.id,
            session_id=claims.session_id,
            channels=len(visible),
        )

        if displaced is not None:
            log.info("chat.session_replaced", user_id=user.id)
            displaced.transport.send(SessionReplaced().to_event())
            if self.settings.close_replaced_sessions:
                displaced.transport.close(CLOSE_SESSION_REPLACED, "session replaced")

    async def _on_join_channel(self, command: JoinChannel) -> None:
        user = self._require_user()
        channel = await self.runtime.access.require(user, command.channel_id)
        if not self._is_current():
            return
        self.runtime.registry.subscribe(user.id, channel.id)
        self.send(joined_channel_event(channel.id))

    async def _on_leave_channel(self, command: LeaveChannel) -> None:
        if self.state is not SessionState.AUTHENTICATED or not self._is_current():
            return
        self.runtime.registry.unsubscribe(self.user_id, command.channel_id)
        self.send(left_channel_event(command.channel_id))

    async def _on_send_message(self, command: SendMessage) -> None:
        user = self._require_user()
        await self.runtime.channels.post_message(
            user,
            command.channel_id,
            command.content,
            message_type=command.message_type,
            reply_to_id=command.reply_to_id,
            mentions=command.mentions,
            exclude_sender=True,
        )

    async def _publish_typing(self, channel_id: str, typing: bool) -> None:
        if self.state is not SessionState.AUTHENTICATED or not self._is_current():
            return
        self.runtime.broadcaster.publish(
            channel_id,
            user_typing_event(channel_id, self.user_id, typing),
            exclude_user_id=self.user_id,
        )

    async def _on_typing_start(self, command: TypingStart) -> None:
        await self._publish_typing(command.channel_id, True)

    async def _on_typing_stop(self, command: TypingStop) -> None:
        await self._publish_typing(command.channel_id, False)

    async def _on_ping(self, command: Ping) -> None:
        self.send(pong_event())

    async def _on_pong(self, command: Pong) -> None:
        # Liveness is refreshed for every inbound frame in the receive loop.
        pass
