"""
Channel access control.

``evaluate_access`` is a pure decision over already-loaded records; it never
touches storage. ``AccessController`` composes it with the one side effect the
rules allow: creating the implicit membership when a user first reaches a
public channel. The REST routes and the socket session both go through the
controller, so the two paths cannot drift apart.

Rules, first match wins:

1. archived channel -> denied (for everyone, admins included)
2. privileged admin role -> granted
3. public channel -> granted; membership is created lazily
4. private channel -> denied across tenants (unless the role is whitelisted),
   otherwise granted iff a membership exists
5. any other kind -> granted
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

import structlog

from runbook_chat.core.errors import AccessDenied, NotFound
from runbook_chat.models import Channel, Membership, User
from runbook_chat.schemas.common import ChannelType
from runbook_chat.services.directory import Directory

log = structlog.get_logger()


class Decision(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"


@dataclass(frozen=True)
class AccessResult:
    decision: Decision
    reason: str
    needs_membership: bool = False

    @property
    def granted(self) -> bool:
        return self.decision is Decision.GRANTED


def evaluate_access(
    user: User,
    channel: Channel,
    membership: Optional[Membership],
    *,
    admin_role: str,
    tenant_bypass_roles: Iterable[str] = (),
) -> AccessResult:
    if channel.archived:
        return AccessResult(Decision.DENIED, "archived")

    if user.role == admin_role:
        return AccessResult(Decision.GRANTED, "admin")

    if channel.type == ChannelType.PUBLIC.value:
        return AccessResult(Decision.GRANTED, "public", needs_membership=membership is None)

    if channel.type == ChannelType.PRIVATE.value:
        if (
            channel.client_id
            and channel.client_id != user.client_id
            and user.role not in tenant_bypass_roles
        ):
            return AccessResult(Decision.DENIED, "tenant_mismatch")
        if membership is None:
            return AccessResult(Decision.DENIED, "not_a_member")
        return AccessResult(Decision.GRANTED, "member")

    return AccessResult(Decision.GRANTED, "unmodeled_kind")


class AccessController:
    """Loads directory state, evaluates access and applies auto-join."""

    def __init__(
        self,
        directory: Directory,
        *,
        admin_role: str = "org_admin",
        tenant_bypass_roles: Iterable[str] = (),
    ):
        self.directory = directory
        self.admin_role = admin_role
        self.tenant_bypass_roles = frozenset(tenant_bypass_roles)

    def evaluate(
        self, user: User, channel: Channel, membership: Optional[Membership]
    ) -> AccessResult:
        return evaluate_access(
            user,
            channel,
            membership,
            admin_role=self.admin_role,
            tenant_bypass_roles=self.tenant_bypass_roles,
        )

    async def can_access(self, user: User, channel: Channel) -> AccessResult:
        """Evaluate access and create the implicit public-channel membership."""
        membership = await self.directory.get_membership(channel.id, user.id)
        result = self.evaluate(user, channel, membership)
        if result.granted and result.needs_membership:
            await self.ensure_membership(user, channel)
        return result

    async def ensure_membership(self, user: User, channel: Channel) -> Membership:
        membership, created = await self.directory.ensure_membership(channel.id, user.id)
        if created:
            log.info("access.auto_joined", user_id=user.id, channel_id=channel.id)
        return membership

    async def require(self, user: User, channel_id: str) -> Channel:
        """Return the channel if ``user`` may access it, else raise."""
        channel = await self.directory.get_channel(channel_id)
        if channel is None:
            raise NotFound("Channel not found")
        result = await self.can_access(user, channel)
        if not result.granted:
            log.info(
                "access.denied",
                user_id=user.id,
                channel_id=channel_id,
                reason=result.reason,
            )
            raise AccessDenied("Access denied to channel")
        return channel

    async def accessible_channels(
        self, user: User
    ) -> list[tuple[Channel, Optional[Membership]]]:
        """Every channel ``user`` may see, with its membership. Never auto-joins."""
        channels = await self.directory.list_channels()
        memberships = {
            m.channel_id: m for m in await self.directory.list_memberships(user_id=user.id)
        }
        visible = []
        for channel in channels:
            membership = memberships.get(channel.id)
            if self.evaluate(user, channel, membership).granted:
                visible.append((channel, membership))
        return visible
