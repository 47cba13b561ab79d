"""Chat channel record (``chat_channels`` collection)."""

from typing import Optional

from pydantic import Field

from .base import Record, new_id, utcnow_iso


class Channel(Record):
    id: str = Field(default_factory=new_id)
    name: str
    description: Optional[str] = None
    # "public" | "private"; other kinds are tolerated and stored as-is
    type: str = "public"
    icon: str = "hash"
    client_id: Optional[str] = None
    created_by: Optional[str] = None
    created_at: str = Field(default_factory=utcnow_iso)
    archived: bool = False
    last_message_at: Optional[str] = None
