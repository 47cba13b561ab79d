"""
Channel service: business logic behind the chat REST routes.

Message posting is shared with the WebSocket ``send_message`` handler so both
paths persist, stamp channel activity and broadcast identically. Membership
changes made here are mirrored onto the affected users' live connections.
"""

from __future__ import annotations

from typing import Optional

import structlog

from runbook_chat.core.access import AccessController
from runbook_chat.core.chat import Broadcaster, ConnectionRegistry
from runbook_chat.core.errors import (
    AccessDenied,
    AlreadyMember,
    CreatorProtected,
    NotFound,
)
from runbook_chat.core.protocol import (
    channel_updated_event,
    member_removed_event,
    member_role_changed_event,
    members_added_event,
    message_payload,
    new_message_event,
)
from runbook_chat.models import Channel, Membership, Message, User
from runbook_chat.schemas.channels import ChannelCreateRequest, ChannelUpdateRequest
from runbook_chat.schemas.common import ChannelType, MembershipRole, UserRole
from runbook_chat.services.directory import Directory

log = structlog.get_logger()


def _with_membership(channel: Channel, membership: Optional[Membership]) -> dict:
    return {
        **channel.to_row(),
        "membership": membership.to_row() if membership is not None else None,
    }


class ChannelService:
    def __init__(
        self,
        directory: Directory,
        access: AccessController,
        registry: ConnectionRegistry,
        broadcaster: Broadcaster,
        *,
        admin_role: str = UserRole.ORG_ADMIN.value,
        rep_role: str = UserRole.ORG_REP.value,
    ):
        self.directory = directory
        self.access = access
        self.registry = registry
        self.broadcaster = broadcaster
        self.admin_role = admin_role
        self.rep_role = rep_role

    # --- Helpers ---

    async def _get_channel(self, channel_id: str) -> Channel:
        channel = await self.directory.get_channel(channel_id)
        if channel is None:
            raise NotFound("Channel not found")
        return channel

    async def _require_channel_admin(
        self, user: User, channel_id: str, action: str
    ) -> tuple[Channel, Membership]:
        """Channel access under the shared rules, then an ``admin`` membership."""
        channel = await self.access.require(user, channel_id)
        membership = await self.directory.get_membership(channel_id, user.id)
        if membership is None or membership.role != MembershipRole.ADMIN.value:
            raise AccessDenied(f"Only channel admins can {action}")
        return channel, membership

    def can_add_member(self, actor: User, candidate: User) -> bool:
        """Who ``actor`` may place into a channel."""
        if actor.role == self.admin_role:
            return True
        if actor.client_id and candidate.client_id == actor.client_id:
            return True
        return candidate.role == self.rep_role

    # --- Channels ---

    async def list_channels(self, user: User) -> list[dict]:
        return [
            _with_membership(channel, membership)
            for channel, membership in await self.access.accessible_channels(user)
        ]

    async def create_channel(self, user: User, req: ChannelCreateRequest) -> dict:
        channel = Channel(
            name=req.name,
            description=req.description or "",
            type=req.type.value,
            icon=req.icon or "hash",
            client_id=req.client_id or user.client_id,
            created_by=user.id,
        )
        creator = Membership(
            channel_id=channel.id, user_id=user.id, role=MembershipRole.ADMIN.value
        )
        memberships = [creator]

        if req.type == ChannelType.PRIVATE and req.members:
            candidates = await self.directory.users_by_id(set(req.members))
            for member_id in req.members:
                candidate = candidates.get(member_id)
                if candidate is None or member_id == user.id:
                    continue
                if self.can_add_member(user, candidate):
                    memberships.append(Membership(channel_id=channel.id, user_id=member_id))

        await self.directory.create_channel(channel, memberships)
        for membership in memberships:
            self.registry.subscribe(membership.user_id, channel.id)
        return _with_membership(channel, creator)

    async def update_channel(
        self, user: User, channel_id: str, req: ChannelUpdateRequest
    ) -> dict:
        _, membership = await self._require_channel_admin(
            user, channel_id, "update channel settings"
        )
        patch = req.model_dump(exclude_unset=True)
        channel = await self.directory.update_channel(channel_id, patch)
        if channel is None:
            raise NotFound("Channel not found")
        log.info("channel.updated", channel_id=channel_id, fields=sorted(patch))
        self.broadcaster.publish(channel_id, channel_updated_event(channel, membership))
        return _with_membership(channel, membership)

    async def join_channel(self, user: User, channel_id: str) -> Membership:
        channel = await self._get_channel(channel_id)
        membership = await self.directory.get_membership(channel_id, user.id)
        if membership is not None:
            raise AlreadyMember()
        if not self.access.evaluate(user, channel, None).granted:
            raise AccessDenied("Access denied to channel")
        membership, created = await self.directory.ensure_membership(channel_id, user.id)
        if not created:
            raise AlreadyMember()
        self.registry.subscribe(user.id, channel_id)
        log.info("channel.joined", channel_id=channel_id, user_id=user.id)
        return membership

    async def mark_read(self, user: User, channel_id: str) -> Optional[Membership]:
        await self.access.require(user, channel_id)
        return await self.directory.mark_read(channel_id, user.id)

    # --- Messages ---

    async def list_messages(
        self,
        user: User,
        channel_id: str,
        *,
        limit: int,
        before: Optional[str] = None,
    ) -> dict:
        """
        One page of history, newest window first, returned oldest to newest.

        ``before`` is the id of a message; the page holds the ``limit``
        messages immediately older than it.
        """
        await self.access.require(user, channel_id)
        messages = await self.directory.list_messages(channel_id)
        messages.reverse()

        if before is not None:
            index = next((i for i, m in enumerate(messages) if m.id == before), None)
            if index is None:
                raise NotFound("Cursor message not found")
            messages = messages[index + 1:]

        page = messages[:limit]
        has_more = len(messages) > limit
        authors = await self.directory.users_by_id({m.user_id for m in page})
        data = [message_payload(m, authors.get(m.user_id)) for m in reversed(page)]
        return {
            "data": data,
            "pagination": {
                "next_cursor": page[-1].id if has_more and page else None,
                "has_more": has_more,
                "limit": limit,
            },
        }

    async def post_message(
        self,
        user: User,
        channel_id: str,
        content: str,
        *,
        message_type: str = "text",
        reply_to_id: Optional[str] = None,
        mentions: Optional[list[str]] = None,
        exclude_sender: bool = False,
    ) -> dict:
        """Persist a message, stamp channel activity and broadcast it."""
        await self.access.require(user, channel_id)
        message = Message(
            channel_id=channel_id,
            user_id=user.id,
            content=content,
            message_type=message_type,
            reply_to_id=reply_to_id,
            mentions=mentions or [],
        )
        await self.directory.append_message(message)
        await self.directory.touch_channel_activity(channel_id, message.created_at)

        delivered = self.broadcaster.publish(
            channel_id,
            new_message_event(message, user),
            exclude_user_id=user.id if exclude_sender else None,
        )
        log.info(
            "chat.message_sent",
            channel_id=channel_id,
            user_id=user.id,
            message_id=message.id,
            delivered=delivered,
        )
        return message_payload(message, user)

    async def delete_message(self, user: User, channel_id: str, message_id: str) -> dict:
        await self.access.require(user, channel_id)
        message = await self.directory.get_message(message_id)
        if message is None or message.channel_id != channel_id or message.deleted:
            raise NotFound("Message not found")
        if message.user_id != user.id:
            membership = await self.directory.get_membership(channel_id, user.id)
            if membership is None or membership.role != MembershipRole.ADMIN.value:
                raise AccessDenied("Only the author or a channel admin can delete a message")
        deleted = await self.directory.soft_delete_message(message_id)
        if deleted is None:
            raise NotFound("Message not found")
        log.info("chat.message_deleted", channel_id=channel_id, message_id=message_id, user_id=user.id)
        return deleted.to_row()

    # --- Members ---

    async def list_members(self, user: User, channel_id: str) -> list[dict]:
        await self.access.require(user, channel_id)
        memberships = await self.directory.list_memberships(channel_id=channel_id)
        profiles = await self.directory.users_by_id({m.user_id for m in memberships})
        return [
            {**profiles[m.user_id].to_row(), "membership": m.to_row()}
            for m in memberships
            if m.user_id in profiles
        ]

    async def add_members(self, user: User, channel_id: str, user_ids: list[str]) -> dict:
        await self._require_channel_admin(user, channel_id, "add members")
        candidates = await self.directory.users_by_id(set(user_ids))

        added: list[Membership] = []
        for user_id in dict.fromkeys(user_ids):
            candidate = candidates.get(user_id)
            if candidate is None or not self.can_add_member(user, candidate):
                continue
            membership, created = await self.directory.ensure_membership(channel_id, user_id)
            if created:
                added.append(membership)
                self.registry.subscribe(user_id, channel_id)

        log.info("channel.members_added", channel_id=channel_id, added=len(added))
        self.broadcaster.publish(
            channel_id, members_added_event(channel_id, [m.to_row() for m in added])
        )
        return {"added": len(added)}

    async def remove_member(self, user: User, channel_id: str, member_id: str) -> dict:
        channel, _ = await self._require_channel_admin(user, channel_id, "remove members")
        if member_id == channel.created_by:
            raise CreatorProtected("Cannot remove the channel creator")
        if not await self.directory.remove_membership(channel_id, member_id):
            raise NotFound("Member not found in this channel")

        log.info("channel.member_removed", channel_id=channel_id, user_id=member_id)
        self.broadcaster.publish(channel_id, member_removed_event(channel_id, member_id))
        # The removed user still receives the removal event above.
        self.registry.unsubscribe(member_id, channel_id)
        return {"message": "Member removed successfully"}

    async def change_member_role(
        self, user: User, channel_id: str, member_id: str, role: MembershipRole
    ) -> dict:
        channel, _ = await self._require_channel_admin(user, channel_id, "change member roles")
        if member_id == channel.created_by:
            raise CreatorProtected("Cannot change the role of the channel creator")
        membership = await self.directory.set_membership_role(channel_id, member_id, role.value)
        if membership is None:
            raise NotFound("Member not found in this channel")

        log.info("channel.member_role_changed", channel_id=channel_id, user_id=member_id, role=role.value)
        self.broadcaster.publish(
            channel_id, member_role_changed_event(channel_id, member_id, role.value)
        )
        return {"message": "Member role updated successfully", "membership": membership.to_row()}

    # --- Users ---

    async def mentionable_users(self, user: User, *, for_private_channel: bool = False) -> list[dict]:
        profiles = await self.directory.list_users()
        if for_private_channel or user.role == self.admin_role or not user.client_id:
            visible = profiles
        else:
            visible = [
                p for p in profiles
                if p.client_id == user.client_id or p.role == self.rep_role
            ]
        return [p.display_fields() for p in visible if p.id != user.id]
