"""
Authentication endpoints.

- POST /login: email/password login, returns a session token
- POST /refresh: re-issue the bearer token (same session id)
- POST /logout: stateless, always succeeds
- GET /me: the authenticated user
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel, EmailStr, Field

from runbook_chat.core.auth import (
    authenticate_password,
    authenticate_token,
    get_authenticated_user,
    get_bearer_token,
)
from runbook_chat.core.runtime import Runtime, get_runtime
from runbook_chat.models import User

log = structlog.get_logger()
router = APIRouter()


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


def _auth_response(user: User, token: str) -> dict:
    return {
        "user": {**user.display_fields(), "role": user.role},
        "session": {"access_token": token},
    }


@router.post("/login")
async def login(body: LoginRequest, runtime: Runtime = Depends(get_runtime)):
    """Authenticate with email/password."""
    user = await authenticate_password(body.email, body.password, runtime.directory)
    token = runtime.codec.issue(user.email, user.id)
    log.info("auth.login", user_id=user.id)
    return _auth_response(user, token)


@router.post("/refresh")
async def refresh(
    token: str = Depends(get_bearer_token),
    runtime: Runtime = Depends(get_runtime),
):
    """Fresh timestamp, same session id."""
    user, _ = await authenticate_token(token, runtime.codec, runtime.directory)
    return _auth_response(user, runtime.codec.refresh(token))


@router.post("/logout")
async def logout():
    return {"success": True}


@router.get("/me")
async def me(user: User = Depends(get_authenticated_user)):
    return user.to_row()
