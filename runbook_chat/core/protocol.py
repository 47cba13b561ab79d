"""
WebSocket wire protocol.

Inbound frames are JSON objects tagged by ``type`` and decode into one of the
closed set of command models in ``COMMANDS``. Outbound event frames are plain
dicts built by the ``*_event`` helpers below.
"""

from __future__ import annotations

import json
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from runbook_chat.core.errors import MalformedFrame, UnknownCommand
from runbook_chat.models import Channel, Membership, Message, User


# --- Commands (client -> server) ---


class Command(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class Authenticate(Command):
    type: Literal["authenticate"]
    token: str


class JoinChannel(Command):
    type: Literal["join_channel"]
    channel_id: str


class LeaveChannel(Command):
    type: Literal["leave_channel"]
    channel_id: str


class SendMessage(Command):
    type: Literal["send_message"]
    channel_id: str
    content: str = Field(min_length=1)
    message_type: str = "text"
    reply_to_id: Optional[str] = None
    mentions: list[str] = []


class TypingStart(Command):
    type: Literal["typing_start"]
    channel_id: str


class TypingStop(Command):
    type: Literal["typing_stop"]
    channel_id: str


class Ping(Command):
    type: Literal["ping"]


class Pong(Command):
    type: Literal["pong"]


AnyCommand = Union[
    Authenticate, JoinChannel, LeaveChannel, SendMessage, TypingStart, TypingStop, Ping, Pong
]

COMMANDS: dict[str, type[Command]] = {
    "authenticate": Authenticate,
    "join_channel": JoinChannel,
    "leave_channel": LeaveChannel,
    "send_message": SendMessage,
    "typing_start": TypingStart,
    "typing_stop": TypingStop,
    "ping": Ping,
    "pong": Pong,
}


def parse_command(raw: Union[str, bytes, None]) -> AnyCommand:
    """
    Decode one inbound frame.

    Raises MalformedFrame for binary or non-JSON frames and for known commands
    with invalid fields; UnknownCommand when ``type`` is missing or unknown.
    """
    if raw is None or isinstance(raw, (bytes, bytearray)):
        raise MalformedFrame("Binary frames are not supported")
    try:
        data = json.loads(raw)
    except ValueError:
        raise MalformedFrame("Invalid JSON")
    if not isinstance(data, dict):
        raise MalformedFrame("Frame must be a JSON object")

    kind = data.get("type")
    command_cls = COMMANDS.get(kind) if isinstance(kind, str) else None
    if command_cls is None:
        raise UnknownCommand()
    try:
        return command_cls.model_validate(data)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or kind
        raise MalformedFrame(f"Invalid {kind} frame: {field}: {first['msg']}")


# --- Events (server -> client) ---


def authenticated_event(user: User) -> dict:
    return {"type": "authenticated", "user": user.display_fields()}


def channels_updated_event(channels: list[tuple[Channel, Optional[Membership]]]) -> dict:
    return {
        "type": "channels_updated",
        "channels": [
            {
                **channel.to_row(),
                "membership": membership.to_row() if membership is not None else None,
            }
            for channel, membership in channels
        ],
    }


def joined_channel_event(channel_id: str) -> dict:
    return {"type": "joined_channel", "channel_id": channel_id}


def left_channel_event(channel_id: str) -> dict:
    return {"type": "left_channel", "channel_id": channel_id}


def message_payload(message: Message, author: Optional[User]) -> dict:
    """A stored message decorated with its author's display fields."""
    return {
        **message.to_row(),
        "user": author.display_fields() if author is not None else None,
    }


def new_message_event(message: Message, author: Optional[User]) -> dict:
    return {"type": "new_message", "message": message_payload(message, author)}


def user_typing_event(channel_id: str, user_id: str, typing: bool) -> dict:
    return {
        "type": "user_typing",
        "channel_id": channel_id,
        "user_id": user_id,
        "typing": typing,
    }


def channel_updated_event(channel: Channel, membership: Optional[Membership] = None) -> dict:
    return {
        "type": "channel_updated",
        "channel": {
            **channel.to_row(),
            "membership": membership.to_row() if membership is not None else None,
        },
    }


def members_added_event(channel_id: str, new_members: list[dict]) -> dict:
    return {"type": "members_added", "channel_id": channel_id, "new_members": new_members}


def member_removed_event(channel_id: str, removed_user_id: str) -> dict:
    return {"type": "member_removed", "channel_id": channel_id, "removed_user_id": removed_user_id}


def member_role_changed_event(channel_id: str, user_id: str, new_role: str) -> dict:
    return {
        "type": "member_role_changed",
        "channel_id": channel_id,
        "user_id": user_id,
        "new_role": new_role,
    }


def ping_event() -> dict:
    return {"type": "ping"}


def pong_event() -> dict:
    return {"type": "pong"}
