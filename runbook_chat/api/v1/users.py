"""Mention candidates for the chat composer."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from runbook_chat.core.auth import get_authenticated_user
from runbook_chat.core.runtime import Runtime, get_runtime
from runbook_chat.models import User

router = APIRouter()


@router.get("")
async def list_mentionable_users(
    for_private_channel: bool = Query(False),
    user: User = Depends(get_authenticated_user),
    runtime: Runtime = Depends(get_runtime),
):
    """Users the caller may mention, excluding the caller."""
    return await runtime.channels.mentionable_users(user, for_private_channel=for_private_channel)
