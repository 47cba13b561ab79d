"""
Process-wide runtime wiring.

One ``Runtime`` is built per application and stored on ``app.state``. It owns
the single connection registry of the process together with the services
that read and write the document store.
"""

from __future__ import annotations

from dataclasses import dataclass

from starlette.requests import HTTPConnection

from runbook_chat.core.access import AccessController
from runbook_chat.core.chat import Broadcaster, ConnectionRegistry
from runbook_chat.core.config import Settings
from runbook_chat.core.documents import DocumentStore
from runbook_chat.core.tokens import TokenCodec, build_token_codec
from runbook_chat.services.channels import ChannelService
from runbook_chat.services.directory import Directory


@dataclass
class Runtime:
    settings: Settings
    store: DocumentStore
    directory: Directory
    codec: TokenCodec
    access: AccessController
    registry: ConnectionRegistry
    broadcaster: Broadcaster
    channels: ChannelService


def build_runtime(settings: Settings) -> Runtime:
    store = DocumentStore(settings.data_dir)
    directory = Directory(store)
    access = AccessController(
        directory,
        admin_role=settings.admin_role,
        tenant_bypass_roles=settings.tenant_bypass_roles,
    )
    registry = ConnectionRegistry()
    broadcaster = Broadcaster(registry)
    return Runtime(
        settings=settings,
        store=store,
        directory=directory,
        codec=build_token_codec(settings),
        access=access,
        registry=registry,
        broadcaster=broadcaster,
        channels=ChannelService(
            directory, access, registry, broadcaster, admin_role=settings.admin_role
        ),
    )


def get_runtime(conn: HTTPConnection) -> Runtime:
    """FastAPI dependency; works for both HTTP requests and WebSockets."""
    return conn.app.state.runtime
