# Record types stored in the JSON document collections.
from .base import Record, new_id, utcnow_iso  # noqa: F401
from .user import User  # noqa: F401
from .channel import Channel  # noqa: F401
from .membership import Membership  # noqa: F401
from .message import Message  # noqa: F401
