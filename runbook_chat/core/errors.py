"""
Error taxonomy shared by the REST surface and the socket protocol.

Every application error carries a stable ``code``, a human readable
``message`` and the HTTP status it maps to. REST handlers render them as
``{"error": {"code", "message", "status"}}``; the socket session turns them
into ``error`` / ``auth_error`` event frames and keeps the connection open.
"""

from __future__ import annotations

from typing import Any


class ChatError(Exception):
    """Base class for all application errors."""

    code = "CHAT_ERROR"
    status_code = 400
    event_type = "error"
    default_message = "Request failed"

    def __init__(self, message: str | None = None, *, code: str | None = None):
        self.message = message or self.default_message
        if code is not None:
            self.code = code
        super().__init__(self.message)

    def to_envelope(self) -> dict[str, Any]:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "status": self.status_code,
            }
        }

    def to_event(self) -> dict[str, Any]:
        return {"type": self.event_type, "code": self.code, "message": self.message}


# ---------------------------------------------------------------------------
# Authentication (401, ``auth_error`` on the socket)
# ---------------------------------------------------------------------------


class AuthenticationError(ChatError):
    code = "AUTHENTICATION_FAILED"
    status_code = 401
    event_type = "auth_error"
    default_message = "Authentication failed"


class MalformedToken(AuthenticationError):
    code = "MALFORMED_TOKEN"
    default_message = "Invalid token structure"


class TokenExpired(AuthenticationError):
    code = "TOKEN_EXPIRED"
    default_message = "Token expired"


class UnknownUser(AuthenticationError):
    code = "UNKNOWN_USER"
    default_message = "User not found"


class MissingCredentials(AuthenticationError):
    code = "MISSING_CREDENTIALS"
    default_message = "Authentication required"


class InvalidCredentials(AuthenticationError):
    code = "INVALID_CREDENTIALS"
    default_message = "Invalid email or password"


# ---------------------------------------------------------------------------
# Authorization / lookup
# ---------------------------------------------------------------------------


class AccessDenied(ChatError):
    code = "ACCESS_DENIED"
    status_code = 403
    default_message = "Access denied"


class NotFound(ChatError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Not found"


# ---------------------------------------------------------------------------
# Malformed input (400)
# ---------------------------------------------------------------------------


class InvalidRequest(ChatError):
    code = "INVALID_REQUEST"
    status_code = 400
    default_message = "Invalid request"


class UnknownCommand(InvalidRequest):
    code = "UNKNOWN_COMMAND"
    default_message = "Unknown message type"


class MalformedFrame(UnknownCommand):
    """Undecodable frame, or a known command whose fields do not fit."""

    code = "MALFORMED_FRAME"
    default_message = "Malformed frame"


class NotAuthenticated(InvalidRequest):
    code = "NOT_AUTHENTICATED"
    default_message = "Not authenticated"


class AlreadyMember(InvalidRequest):
    code = "ALREADY_MEMBER"
    default_message = "Already a member of this channel"


class CreatorProtected(InvalidRequest):
    code = "CREATOR_PROTECTED"
    default_message = "The channel creator cannot be removed or demoted"


# ---------------------------------------------------------------------------
# Persistence (500)
# ---------------------------------------------------------------------------


class PersistenceFailure(ChatError):
    code = "PERSISTENCE_FAILURE"
    status_code = 500
    default_message = "Failed to persist changes"


# ---------------------------------------------------------------------------
# Session lifecycle (socket only)
# ---------------------------------------------------------------------------


class SessionReplaced(ChatError):
    code = "SESSION_REPLACED"
    status_code = 409
    default_message = "Signed in from another connection"


class InternalError(ChatError):
    code = "INTERNAL_ERROR"
    status_code = 500
    default_message = "Internal server error"
