"""Channel, membership and message request schemas."""

from __future__ import annotations

from typing import Optional, List

from pydantic import BaseModel, Field

from .common import ChannelType, MembershipRole


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------

class ChannelCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    type: ChannelType = ChannelType.PUBLIC
    description: Optional[str] = None
    icon: Optional[str] = None
    client_id: Optional[str] = None
    members: List[str] = []


class ChannelUpdateRequest(BaseModel):
    """Only the presentation fields of a channel are editable."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    icon: Optional[str] = None


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

class PostMessageRequest(BaseModel):
    content: str = Field(min_length=1)
    message_type: str = "text"
    reply_to_id: Optional[str] = None
    mentions: List[str] = []


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------

class AddMembersRequest(BaseModel):
    user_ids: List[str] = Field(min_length=1)


class ChangeRoleRequest(BaseModel):
    role: MembershipRole
