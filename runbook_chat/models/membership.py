"""Channel membership record (``channel_memberships`` collection)."""

from typing import Optional

from pydantic import Field

from .base import Record, new_id, utcnow_iso


class Membership(Record):
    id: str = Field(default_factory=new_id)
    channel_id: str
    user_id: str
    role: str = "member"
    joined_at: str = Field(default_factory=utcnow_iso)
    last_read_at: Optional[str] = None
