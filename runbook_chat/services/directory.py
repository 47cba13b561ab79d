"""
Directory accessor: users, channels, memberships, messages and credentials.

Thin typed layer over the JSON document store. Every read-modify-write goes
through ``DocumentStore.transaction`` so concurrent coroutines never produce
duplicate memberships or lose updates.
"""

from __future__ import annotations

from typing import Any, Optional

import structlog

from runbook_chat.core.documents import DocumentStore
from runbook_chat.models import Channel, Membership, Message, User, utcnow_iso

log = structlog.get_logger()

PROFILES = "profiles"
CREDENTIALS = "credentials"
CHANNELS = "chat_channels"
MEMBERSHIPS = "channel_memberships"
MESSAGES = "chat_messages"


def _same_email(a: Optional[str], b: str) -> bool:
    return bool(a) and a.strip().lower() == b.strip().lower()


class Directory:
    def __init__(self, store: DocumentStore):
        self.store = store

    # -----------------------------------------------------------------------
    # Users
    # -----------------------------------------------------------------------

    async def list_users(self) -> list[User]:
        return [User.model_validate(row) for row in await self.store.read(PROFILES)]

    async def get_user(self, user_id: str) -> Optional[User]:
        for row in await self.store.read(PROFILES):
            if row.get("id") == user_id:
                return User.model_validate(row)
        return None

    async def find_user_by_email(self, email: str) -> Optional[User]:
        for row in await self.store.read(PROFILES):
            if _same_email(row.get("email"), email):
                return User.model_validate(row)
        return None

    async def users_by_id(self, user_ids: set[str]) -> dict[str, User]:
        return {
            row["id"]: User.model_validate(row)
            for row in await self.store.read(PROFILES)
            if row.get("id") in user_ids
        }

    async def upsert_user(self, user: User) -> User:
        """Insert a profile, or update the existing one with the same email."""
        async with self.store.transaction(PROFILES) as tables:
            rows = tables[PROFILES]
            for i, row in enumerate(rows):
                if _same_email(row.get("email"), user.email):
                    patch = user.model_dump(mode="json", exclude_none=True, exclude={"id", "created_at"})
                    merged = {**row, **patch}
                    rows[i] = merged
                    return User.model_validate(merged)
            rows.append(user.to_row())
            return user

    # -----------------------------------------------------------------------
    # Credentials
    # -----------------------------------------------------------------------

    async def get_password_hash(self, email: str) -> Optional[str]:
        for row in await self.store.read(CREDENTIALS):
            if _same_email(row.get("email"), email):
                return row.get("password_hash")
        return None

    async def set_password_hash(self, email: str, password_hash: str) -> None:
        async with self.store.transaction(CREDENTIALS) as tables:
            rows = tables[CREDENTIALS]
            for row in rows:
                if _same_email(row.get("email"), email):
                    row["password_hash"] = password_hash
                    row["updated_at"] = utcnow_iso()
                    return
            rows.append({
                "email": email,
                "password_hash": password_hash,
                "updated_at": utcnow_iso(),
            })

    # -----------------------------------------------------------------------
    # Channels
    # -----------------------------------------------------------------------

    async def list_channels(self) -> list[Channel]:
        return [Channel.model_validate(row) for row in await self.store.read(CHANNELS)]

    async def get_channel(self, channel_id: str) -> Optional[Channel]:
        for row in await self.store.read(CHANNELS):
            if row.get("id") == channel_id:
                return Channel.model_validate(row)
        return None

    async def create_channel(
        self, channel: Channel, memberships: list[Membership]
    ) -> Channel:
        """Persist a channel together with its initial memberships."""
        async with self.store.transaction(CHANNELS, MEMBERSHIPS) as tables:
            tables[CHANNELS].append(channel.to_row())
            seen: set[str] = set()
            for membership in memberships:
                if membership.user_id in seen:
                    continue
                seen.add(membership.user_id)
                tables[MEMBERSHIPS].append(membership.to_row())
        log.info("channel.created", channel_id=channel.id, members=len(seen))
        return channel

    async def update_channel(self, channel_id: str, patch: dict[str, Any]) -> Optional[Channel]:
        async with self.store.transaction(CHANNELS) as tables:
            for row in tables[CHANNELS]:
                if row.get("id") == channel_id:
                    row.update(patch)
                    return Channel.model_validate(row)
        return None

    async def touch_channel_activity(self, channel_id: str, at: Optional[str] = None) -> None:
        await self.update_channel(channel_id, {"last_message_at": at or utcnow_iso()})

    # -----------------------------------------------------------------------
    # Memberships
    # -----------------------------------------------------------------------

    async def list_memberships(
        self, channel_id: Optional[str] = None, user_id: Optional[str] = None
    ) -> list[Membership]:
        return [
            Membership.model_validate(row)
            for row in await self.store.read(MEMBERSHIPS)
            if (channel_id is None or row.get("channel_id") == channel_id)
            and (user_id is None or row.get("user_id") == user_id)
        ]

    async def get_membership(self, channel_id: str, user_id: str) -> Optional[Membership]:
        for row in await self.store.read(MEMBERSHIPS):
            if row.get("channel_id") == channel_id and row.get("user_id") == user_id:
                return Membership.model_validate(row)
        return None

    async def ensure_membership(
        self, channel_id: str, user_id: str, role: str = "member"
    ) -> tuple[Membership, bool]:
        """
        Upsert a membership for (channel_id, user_id).

        Returns ``(membership, created)``. When the pair already exists the
        stored record is returned unchanged.
        """
        async with self.store.transaction(MEMBERSHIPS) as tables:
            rows = tables[MEMBERSHIPS]
            for row in rows:
                if row.get("channel_id") == channel_id and row.get("user_id") == user_id:
                    return Membership.model_validate(row), False
            membership = Membership(channel_id=channel_id, user_id=user_id, role=role)
            rows.append(membership.to_row())
        return membership, True

    async def insert_membership(self, membership: Membership) -> Membership:
        stored, _ = await self.ensure_membership(
            membership.channel_id, membership.user_id, membership.role
        )
        return stored

    async def remove_membership(self, channel_id: str, user_id: str) -> bool:
        async with self.store.transaction(MEMBERSHIPS) as tables:
            rows = tables[MEMBERSHIPS]
            kept = [
                row for row in rows
                if not (row.get("channel_id") == channel_id and row.get("user_id") == user_id)
            ]
            removed = len(kept) != len(rows)
            rows[:] = kept
        return removed

    async def _patch_membership(
        self, channel_id: str, user_id: str, patch: dict[str, Any]
    ) -> Optional[Membership]:
        async with self.store.transaction(MEMBERSHIPS) as tables:
            for row in tables[MEMBERSHIPS]:
                if row.get("channel_id") == channel_id and row.get("user_id") == user_id:
                    row.update(patch)
                    return Membership.model_validate(row)
        return None

    async def set_membership_role(
        self, channel_id: str, user_id: str, role: str
    ) -> Optional[Membership]:
        return await self._patch_membership(channel_id, user_id, {"role": role})

    async def mark_read(self, channel_id: str, user_id: str) -> Optional[Membership]:
        return await self._patch_membership(channel_id, user_id, {"last_read_at": utcnow_iso()})

    # -----------------------------------------------------------------------
    # Messages
    # -----------------------------------------------------------------------

    async def append_message(self, message: Message) -> Message:
        async with self.store.transaction(MESSAGES) as tables:
            tables[MESSAGES].append(message.to_row())
        return message

    async def list_messages(
        self, channel_id: str, *, include_deleted: bool = False
    ) -> list[Message]:
        """Messages of a channel in chronological order (created_at, then id)."""
        messages = [
            Message.model_validate(row)
            for row in await self.store.read(MESSAGES)
            if row.get("channel_id") == channel_id
            and (include_deleted or not row.get("deleted"))
        ]
        messages.sort(key=lambda m: m.sort_key)
        return messages

    async def get_message(self, message_id: str) -> Optional[Message]:
        for row in await self.store.read(MESSAGES):
            if row.get("id") == message_id:
                return Message.model_validate(row)
        return None

    async def soft_delete_message(self, message_id: str) -> Optional[Message]:
        async with self.store.transaction(MESSAGES) as tables:
            for row in tables[MESSAGES]:
                if row.get("id") == message_id:
                    row["deleted"] = True
                    return Message.model_validate(row)
        return None
