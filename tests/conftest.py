"""
Shared fixtures: a seeded data directory, the app, and fake WebSockets.

Seeded directory:

- users: an org admin, an org rep, two "acme" users, one "globex" user
- channels: a public channel, one private channel per tenant, an archived
  public channel and a channel of an unmodeled kind
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

from runbook_chat.core.config import Settings
from runbook_chat.core.runtime import build_runtime
from runbook_chat.core.tokens import TransparentTokenCodec
from runbook_chat.main import create_app

ADMIN_ID = "u-admin"
REP_ID = "u-rep"
AMY_ID = "u-amy"
ALICE_ID = "u-alice"
BOB_ID = "u-bob"

GENERAL_ID = "c-general"
ACME_PRIVATE_ID = "c-acme-private"
GLOBEX_PRIVATE_ID = "c-globex-private"
ARCHIVED_ID = "c-archived"
LEGACY_ID = "c-legacy"

USERS = [
    {"id": ADMIN_ID, "email": "admin@runbook.test", "role": "org_admin", "client_id": None,
     "first_name": "Ada", "last_name": "Admin"},
    {"id": REP_ID, "email": "rep@runbook.test", "role": "org_rep", "client_id": None,
     "first_name": "Rey", "last_name": "Rep"},
    {"id": AMY_ID, "email": "amy@acme.test", "role": "client_admin", "client_id": "acme",
     "first_name": "Amy", "last_name": "Acme"},
    {"id": ALICE_ID, "email": "alice@acme.test", "role": "client_member", "client_id": "acme",
     "first_name": "Alice", "last_name": "Acme"},
    {"id": BOB_ID, "email": "bob@globex.test", "role": "client_member", "client_id": "globex",
     "first_name": "Bob", "last_name": "Globex"},
]

CHANNELS = [
    {"id": GENERAL_ID, "name": "general", "type": "public", "client_id": None,
     "created_by": ADMIN_ID, "created_at": "2024-01-01T00:00:00.000Z", "archived": False},
    {"id": ACME_PRIVATE_ID, "name": "acme-ops", "type": "private", "client_id": "acme",
     "created_by": AMY_ID, "created_at": "2024-01-01T00:00:00.000Z", "archived": False},
    {"id": GLOBEX_PRIVATE_ID, "name": "globex-ops", "type": "private", "client_id": "globex",
     "created_by": BOB_ID, "created_at": "2024-01-01T00:00:00.000Z", "archived": False},
    {"id": ARCHIVED_ID, "name": "old-news", "type": "public", "client_id": None,
     "created_by": ADMIN_ID, "created_at": "2024-01-01T00:00:00.000Z", "archived": True},
    {"id": LEGACY_ID, "name": "announcements", "type": "broadcast", "client_id": None,
     "created_by": ADMIN_ID, "created_at": "2024-01-01T00:00:00.000Z", "archived": False},
]

MEMBERSHIPS = [
    {"id": "m-1", "channel_id": ACME_PRIVATE_ID, "user_id": AMY_ID, "role": "admin",
     "joined_at": "2024-01-01T00:00:00.000Z"},
    {"id": "m-2", "channel_id": ACME_PRIVATE_ID, "user_id": ALICE_ID, "role": "member",
     "joined_at": "2024-01-01T00:00:00.000Z"},
    {"id": "m-3", "channel_id": GLOBEX_PRIVATE_ID, "user_id": BOB_ID, "role": "admin",
     "joined_at": "2024-01-01T00:00:00.000Z"},
]


def write_table(data_dir: Path, table: str, rows: list[dict]) -> None:
    (data_dir / f"{table}.json").write_text(json.dumps(rows, indent=2))


def read_table(data_dir: Path, table: str) -> list[dict]:
    path = data_dir / f"{table}.json"
    if not path.exists():
        return []
    return json.loads(path.read_text())


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    write_table(tmp_path, "profiles", USERS)
    write_table(tmp_path, "chat_channels", CHANNELS)
    write_table(tmp_path, "channel_memberships", MEMBERSHIPS)
    return tmp_path


@pytest.fixture
def settings(data_dir: Path) -> Settings:
    return Settings(
        data_dir=str(data_dir),
        liveness_probe_interval_seconds=60.0,
        liveness_timeout_seconds=120.0,
    )


@pytest.fixture
def runtime(settings: Settings):
    return build_runtime(settings)


@pytest.fixture
def codec(settings: Settings) -> TransparentTokenCodec:
    return TransparentTokenCodec(settings.token_ttl_ms)


@pytest.fixture
def token_for(codec):
    """Build a valid bearer token for a seeded user email."""

    def _token(email: str) -> str:
        return codec.issue(email)

    return _token


@pytest.fixture
def app(settings: Settings):
    return create_app(settings)


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def auth_headers(token_for):
    def _headers(email: str) -> dict:
        return {"Authorization": f"Bearer {token_for(email)}"}

    return _headers


class FakeWebSocket:
    """Stands in for a Starlette WebSocket: records sent frames, feeds received ones."""

    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.closed_with: tuple[int, str | None] | None = None
        self.fail_sends = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send_text(self, text: str) -> None:
        if self.fail_sends:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(text))

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.closed_with = (code, reason)

    async def receive(self) -> dict:
        return await self._inbox.get()

    def feed(self, frame: dict | str) -> None:
        text = frame if isinstance(frame, str) else json.dumps(frame)
        self._inbox.put_nowait({"type": "websocket.receive", "text": text})

    def disconnect(self, code: int = 1000) -> None:
        self._inbox.put_nowait({"type": "websocket.disconnect", "code": code})

    def of_type(self, frame_type: str) -> list[dict]:
        return [frame for frame in self.sent if frame.get("type") == frame_type]


@pytest.fixture
def fake_ws_factory():
    return FakeWebSocket


async def settle(rounds: int = 5) -> None:
    """Let writer tasks drain their outboxes."""
    for _ in range(rounds):
        await asyncio.sleep(0)
