"""
Chat channel endpoints.

- GET /: Channels visible to the caller, each with its membership
- POST /: Create a channel (creator becomes channel admin)
- PATCH /{channel_id}: Update name/description/icon (channel admins)
- GET /{channel_id}/messages: Cursor-based paginated history
- POST /{channel_id}/messages: Post a message (REST, triggers WS broadcast)
- DELETE /{channel_id}/messages/{message_id}: Soft-delete a message
- POST /{channel_id}/join: Join a channel
- GET /{channel_id}/members: Members with profiles
- POST /{channel_id}/members: Add members (channel admins)
- DELETE /{channel_id}/members/{user_id}: Remove a member (channel admins)
- PATCH /{channel_id}/members/{user_id}/role: Change a member's role (channel admins)
- POST /{channel_id}/read: Update the caller's read marker
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from runbook_chat.core.auth import get_authenticated_user
from runbook_chat.core.runtime import Runtime, get_runtime
from runbook_chat.models import User
from runbook_chat.schemas.channels import (
    AddMembersRequest,
    ChangeRoleRequest,
    ChannelCreateRequest,
    ChannelUpdateRequest,
    PostMessageRequest,
)

router = APIRouter()


# --- Channels ---


@router.get("")
async def list_channels(
    user: User = Depends(get_authenticated_user),
    runtime: Runtime = Depends(get_runtime),
):
    return await runtime.channels.list_channels(user)


@router.post("", status_code=201)
async def create_channel(
    body: ChannelCreateRequest,
    user: User = Depends(get_authenticated_user),
    runtime: Runtime = Depends(get_runtime),
):
    return await runtime.channels.create_channel(user, body)


@router.patch("/{channel_id}")
async def update_channel(
    channel_id: str,
    body: ChannelUpdateRequest,
    user: User = Depends(get_authenticated_user),
    runtime: Runtime = Depends(get_runtime),
):
    return await runtime.channels.update_channel(user, channel_id, body)


# --- Messages ---


@router.get("/{channel_id}/messages")
async def list_messages(
    channel_id: str,
    limit: Optional[int] = Query(None, ge=1),
    before: Optional[str] = Query(None, description="Message id cursor"),
    user: User = Depends(get_authenticated_user),
    runtime: Runtime = Depends(get_runtime),
):
    """
    Paginated message history for a channel.

    Returns the newest ``limit`` messages older than ``before`` in
    chronological order. ``pagination.next_cursor`` feeds the next call.
    """
    settings = runtime.settings
    page_size = min(limit or settings.message_page_size, settings.message_page_max)
    return await runtime.channels.list_messages(user, channel_id, limit=page_size, before=before)


@router.post("/{channel_id}/messages", status_code=201)
async def post_message(
    channel_id: str,
    body: PostMessageRequest,
    user: User = Depends(get_authenticated_user),
    runtime: Runtime = Depends(get_runtime),
):
    """Post a message via REST. Broadcast to every subscriber, sender included."""
    return await runtime.channels.post_message(
        user,
        channel_id,
        body.content,
        message_type=body.message_type,
        reply_to_id=body.reply_to_id,
        mentions=body.mentions,
    )


@router.delete("/{channel_id}/messages/{message_id}")
async def delete_message(
    channel_id: str,
    message_id: str,
    user: User = Depends(get_authenticated_user),
    runtime: Runtime = Depends(get_runtime),
):
    return await runtime.channels.delete_message(user, channel_id, message_id)


# --- Membership ---


@router.post("/{channel_id}/join", status_code=201)
async def join_channel(
    channel_id: str,
    user: User = Depends(get_authenticated_user),
    runtime: Runtime = Depends(get_runtime),
):
    membership = await runtime.channels.join_channel(user, channel_id)
    return membership.to_row()


@router.get("/{channel_id}/members")
async def list_members(
    channel_id: str,
    user: User = Depends(get_authenticated_user),
    runtime: Runtime = Depends(get_runtime),
):
    return await runtime.channels.list_members(user, channel_id)


@router.post("/{channel_id}/members", status_code=201)
async def add_members(
    channel_id: str,
    body: AddMembersRequest,
    user: User = Depends(get_authenticated_user),
    runtime: Runtime = Depends(get_runtime),
):
    return await runtime.channels.add_members(user, channel_id, body.user_ids)


@router.delete("/{channel_id}/members/{member_id}")
async def remove_member(
    channel_id: str,
    member_id: str,
    user: User = Depends(get_authenticated_user),
    runtime: Runtime = Depends(get_runtime),
):
    return await runtime.channels.remove_member(user, channel_id, member_id)


@router.patch("/{channel_id}/members/{member_id}/role")
async def change_member_role(
    channel_id: str,
    member_id: str,
    body: ChangeRoleRequest,
    user: User = Depends(get_authenticated_user),
    runtime: Runtime = Depends(get_runtime),
):
    return await runtime.channels.change_member_role(user, channel_id, member_id, body.role)


@router.post("/{channel_id}/read")
async def mark_read(
    channel_id: str,
    user: User = Depends(get_authenticated_user),
    runtime: Runtime = Depends(get_runtime),
):
    await runtime.channels.mark_read(user, channel_id)
    return {"message": "Read status updated"}
