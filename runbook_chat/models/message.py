"""Chat message record (``chat_messages`` collection)."""

from typing import List, Optional

from pydantic import Field

from .base import Record, new_id, utcnow_iso


class Message(Record):
    id: str = Field(default_factory=new_id)
    channel_id: str
    user_id: str
    content: str
    message_type: str = "text"
    reply_to_id: Optional[str] = None
    mentions: List[str] = Field(default_factory=list)
    created_at: str = Field(default_factory=utcnow_iso)
    deleted: bool = False
    edited: bool = False

    @property
    def sort_key(self) -> tuple[str, str]:
        return (self.created_at, self.id)
