"""
Connection registry, transport outbox and broadcast tests.
"""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest

from runbook_chat.core.chat import (
    CLOSE_SESSION_REPLACED,
    Broadcaster,
    ConnectionRegistry,
    Transport,
)
from runbook_chat.models import User

from tests.conftest import FakeWebSocket, settle


def _user(user_id: str) -> User:
    return User(id=user_id, email=f"{user_id}@x.test")


def _transport(max_outbox: int = 1000) -> Transport:
    return Transport(FakeWebSocket(), max_outbox=max_outbox)


class TestTransport:
    async def test_writer_preserves_order_and_closes(self):
        transport = _transport()
        for i in range(5):
            assert transport.send({"type": "n", "i": i}) is True
        transport.close(CLOSE_SESSION_REPLACED, "session replaced")

        await transport.run_writer()

        assert [frame["i"] for frame in transport.websocket.sent] == [0, 1, 2, 3, 4]
        assert transport.websocket.closed_with == (CLOSE_SESSION_REPLACED, "session replaced")
        assert transport.send({"type": "late"}) is False

    async def test_overflow_marks_transport_closed(self):
        transport = _transport(max_outbox=2)
        assert transport.send({"type": "a"})
        assert transport.send({"type": "b"})
        assert transport.send({"type": "c"}) is False
        assert transport.is_open is False

        # Backlog is dropped; the writer exits straight away.
        await asyncio.wait_for(transport.run_writer(), timeout=1)
        assert transport.websocket.sent == []

    async def test_write_failure_stops_writer(self):
        transport = _transport()
        transport.websocket.fail_sends = True
        transport.send({"type": "a"})

        await asyncio.wait_for(transport.run_writer(), timeout=1)
        assert transport.is_open is False

    def test_unserializable_payload_is_not_queued(self):
        transport = _transport()
        assert transport.send({"type": "x", "bad": object()}) is False
        assert transport.is_open is True


class TestConnectionRegistry:
    @pytest.fixture
    def registry(self):
        return ConnectionRegistry()

    def test_register_returns_displaced_connection(self, registry):
        first, second = _transport(), _transport()
        conn_1, displaced = registry.register(_user("u1"), first)
        assert displaced is None

        conn_2, displaced = registry.register(_user("u1"), second)
        assert displaced is conn_1
        assert registry.get("u1") is conn_2
        assert len(registry) == 1

    def test_register_same_transport_is_not_displacement(self, registry):
        transport = _transport()
        registry.register(_user("u1"), transport)
        _, displaced = registry.register(_user("u1"), transport)
        assert displaced is None

    def test_subscribe_without_connection_is_noop(self, registry):
        assert registry.subscribe("ghost", "c1") is False
        assert registry.unsubscribe("ghost", "c1") is False
        assert registry.connections_for("c1") == []

    def test_subscribe_and_unsubscribe(self, registry):
        registry.register(_user("u1"), _transport())
        registry.subscribe("u1", "c1")
        registry.subscribe_many("u1", ["c2", "c3"])
        registry.unsubscribe("u1", "c2")
        assert registry.get("u1").channels == {"c1", "c3"}

    def test_evict_by_transport(self, registry):
        transport = _transport()
        registry.register(_user("u1"), transport)
        registry.register(_user("u2"), _transport())

        evicted = registry.evict(transport)
        assert evicted.user_id == "u1"
        assert "u1" not in registry
        assert "u2" in registry
        assert registry.evict(transport) is None

    def test_evicting_displaced_transport_keeps_new_connection(self, registry):
        old, new = _transport(), _transport()
        registry.register(_user("u1"), old)
        registry.register(_user("u1"), new)

        assert registry.evict(old) is None
        assert registry.get("u1").transport is new

    def test_connections_for_excludes_user(self, registry):
        for uid in ("u1", "u2", "u3"):
            registry.register(_user(uid), _transport())
            registry.subscribe(uid, "c1")
        registry.unsubscribe("u3", "c1")

        users = {c.user_id for c in registry.connections_for("c1", exclude_user_id="u1")}
        assert users == {"u2"}


class TestBroadcaster:
    @pytest.fixture
    def registry(self):
        return ConnectionRegistry()

    async def test_publish_excludes_sender(self, registry):
        transports = {uid: _transport() for uid in ("u1", "u2", "u3")}
        for uid, transport in transports.items():
            registry.register(_user(uid), transport)
            registry.subscribe(uid, "c1")

        delivered = Broadcaster(registry).publish("c1", {"type": "new_message"}, exclude_user_id="u1")
        assert delivered == 2

        for transport in transports.values():
            transport.close()
            await transport.run_writer()
        assert transports["u1"].websocket.sent == []
        assert transports["u2"].websocket.sent == [{"type": "new_message"}]
        assert transports["u3"].websocket.sent == [{"type": "new_message"}]

    async def test_publish_only_reaches_subscribers(self, registry):
        subscribed, other = _transport(), _transport()
        registry.register(_user("u1"), subscribed)
        registry.register(_user("u2"), other)
        registry.subscribe("u1", "c1")
        registry.subscribe("u2", "c2")

        assert Broadcaster(registry).publish("c1", {"type": "x"}) == 1

    def test_failing_connection_does_not_abort_fanout(self, registry):
        broken = _transport()
        broken.send = MagicMock(side_effect=RuntimeError("boom"))
        closed, healthy = _transport(), _transport()
        closed.close()
        for uid, transport in (("u1", broken), ("u2", closed), ("u3", healthy)):
            registry.register(_user(uid), transport)
            registry.subscribe(uid, "c1")

        assert Broadcaster(registry).publish("c1", {"type": "x"}) == 1

    async def test_per_connection_order_matches_publish_order(self, registry):
        transport = _transport()
        registry.register(_user("u1"), transport)
        registry.subscribe("u1", "c1")
        writer = asyncio.create_task(transport.run_writer())

        broadcaster = Broadcaster(registry)
        for i in range(50):
            broadcaster.publish("c1", {"type": "n", "i": i})
            if i % 7 == 0:
                await settle(1)
        await settle()
        transport.close()
        await writer

        assert [frame["i"] for frame in transport.websocket.sent] == list(range(50))
