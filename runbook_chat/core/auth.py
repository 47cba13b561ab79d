"""
Authentication for the REST surface and the WebSocket handshake.

Supports:
- Email/password login against bcrypt hashes in the ``credentials`` table
- Bearer session tokens (see ``core.tokens``) for REST requests
- The same token check for the socket ``authenticate`` command
"""

from __future__ import annotations

import bcrypt
import structlog
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from runbook_chat.core.errors import InvalidCredentials, MissingCredentials, UnknownUser
from runbook_chat.core.runtime import Runtime, get_runtime
from runbook_chat.core.tokens import SessionClaims, TokenCodec
from runbook_chat.models import User
from runbook_chat.services.directory import Directory

log = structlog.get_logger()

bearer_scheme = HTTPBearer(auto_error=False)

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

def hash_password(password: str) -> str:
    """Hash a password using bcrypt with cost factor 12."""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=12)).decode()


def verify_password(password: str, hashed: str) -> bool:
    """Verify a password against a bcrypt hash."""
    try:
        return bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        # Stored value is not a bcrypt hash.
        return False


# ---------------------------------------------------------------------------
# Token / credential checks
# ---------------------------------------------------------------------------

async def authenticate_token(
    token: str, codec: TokenCodec, directory: Directory
) -> tuple[User, SessionClaims]:
    """
    Resolve a bearer token to its user.

    Raises MalformedToken, TokenExpired or UnknownUser.
    """
    claims = codec.validate(token)
    user = await directory.find_user_by_email(claims.email)
    if user is None:
        raise UnknownUser("Invalid token")
    return user, claims


async def authenticate_password(email: str, password: str, directory: Directory) -> User:
    user = await directory.find_user_by_email(email)
    if user is None:
        raise InvalidCredentials()
    hashed = await directory.get_password_hash(email)
    if not hashed or not verify_password(password, hashed):
        log.info("auth.login_failed", user_id=user.id)
        raise InvalidCredentials()
    return user


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

async def get_bearer_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str:
    if credentials is None or not credentials.credentials:
        raise MissingCredentials()
    return credentials.credentials


async def get_authenticated_user(
    token: str = Depends(get_bearer_token),
    runtime: Runtime = Depends(get_runtime),
) -> User:
    """FastAPI dependency: the user behind the request's bearer token."""
    user, _ = await authenticate_token(token, runtime.codec, runtime.directory)
    return user
