"""Base class and helpers shared by the stored record types."""

from datetime import datetime, timezone
import uuid

from pydantic import BaseModel, ConfigDict


def utcnow_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_id() -> str:
    return str(uuid.uuid4())


class Record(BaseModel):
    """A row of a JSON collection. Unknown fields survive a read/write cycle."""

    model_config = ConfigDict(extra="allow")

    def to_row(self) -> dict:
        return self.model_dump(mode="json")
