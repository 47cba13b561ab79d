"""User profile record (``profiles`` collection)."""

from typing import Optional

from pydantic import Field

from .base import Record, new_id, utcnow_iso


class User(Record):
    id: str = Field(default_factory=new_id)
    email: str
    role: str = "client_member"
    client_id: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    created_at: str = Field(default_factory=utcnow_iso)

    def display_fields(self) -> dict:
        """Author fields attached to outgoing messages and auth replies."""
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
        }
