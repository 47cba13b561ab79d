"""
Session token codec.

Two credential formats are supported:

- ``transparent`` (default): base64 of ``{"email", "timestamp", "sessionId",
  "userId"}``. It is self-describing and carries no signature, so anyone able
  to build the JSON can mint a token. Kept as the default for compatibility
  with existing clients.
- ``jwt``: the same claims signed with PyJWT. Expiry is still checked by
  ``is_expired`` so both formats share one millisecond-exact TTL rule.
"""

from __future__ import annotations

import base64
import binascii
import json
import math
import time
import uuid
from dataclasses import dataclass

import jwt

from runbook_chat.core.config import Settings
from runbook_chat.core.errors import MalformedToken, TokenExpired


def now_ms() -> int:
    return int(time.time() * 1000)


def is_expired(issued_at: int, now: int, ttl: int) -> bool:
    """A token is valid while ``now - issued_at <= ttl`` (all in ms)."""
    return now - issued_at > ttl


@dataclass(frozen=True)
class SessionClaims:
    email: str
    issued_at: int
    session_id: str
    user_id: str | None = None

    def to_payload(self) -> dict:
        payload = {
            "email": self.email,
            "timestamp": self.issued_at,
            "sessionId": self.session_id,
        }
        if self.user_id is not None:
            payload["userId"] = self.user_id
        return payload

    @classmethod
    def from_payload(cls, payload: object) -> SessionClaims:
        if not isinstance(payload, dict):
            raise MalformedToken()
        email = payload.get("email")
        timestamp = payload.get("timestamp")
        session_id = payload.get("sessionId")
        if not email or not isinstance(email, str) or not session_id:
            raise MalformedToken()
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            raise MalformedToken()
        if not math.isfinite(timestamp):
            raise MalformedToken()
        user_id = payload.get("userId")
        return cls(
            email=email,
            issued_at=int(timestamp),
            session_id=str(session_id),
            user_id=str(user_id) if user_id is not None else None,
        )


class TokenCodec:
    """Base codec: subclasses implement ``_encode`` / ``_decode``."""

    def __init__(self, ttl_ms: int):
        self.ttl_ms = ttl_ms

    def _encode(self, claims: SessionClaims) -> str:
        raise NotImplementedError

    def _decode(self, token: str) -> SessionClaims:
        raise NotImplementedError

    def issue(
        self,
        email: str,
        user_id: str | None = None,
        *,
        session_id: str | None = None,
        issued_at: int | None = None,
    ) -> str:
        claims = SessionClaims(
            email=email,
            issued_at=issued_at if issued_at is not None else now_ms(),
            session_id=session_id or str(uuid.uuid4()),
            user_id=user_id,
        )
        return self._encode(claims)

    def decode(self, token: str) -> SessionClaims:
        """Parse a token without checking expiry. Raises MalformedToken."""
        if not token or not isinstance(token, str):
            raise MalformedToken()
        return self._decode(token)

    def validate(self, token: str, now: int | None = None) -> SessionClaims:
        """Decode and reject expired tokens."""
        claims = self.decode(token)
        if is_expired(claims.issued_at, now if now is not None else now_ms(), self.ttl_ms):
            raise TokenExpired()
        return claims

    def refresh(self, token: str) -> str:
        """Re-issue a valid token with a fresh timestamp and the same session id."""
        claims = self.validate(token)
        return self.issue(claims.email, claims.user_id, session_id=claims.session_id)


class TransparentTokenCodec(TokenCodec):
    format = "transparent"

    def _encode(self, claims: SessionClaims) -> str:
        raw = json.dumps(claims.to_payload(), separators=(",", ":")).encode()
        return base64.b64encode(raw).decode()

    def _decode(self, token: str) -> SessionClaims:
        try:
            raw = base64.b64decode(token, validate=True)
            payload = json.loads(raw)
        except (binascii.Error, ValueError):
            raise MalformedToken()
        return SessionClaims.from_payload(payload)


class SignedTokenCodec(TokenCodec):
    format = "jwt"

    def __init__(self, ttl_ms: int, secret_key: str, algorithm: str = "HS256"):
        super().__init__(ttl_ms)
        self._secret_key = secret_key
        self._algorithm = algorithm

    def _encode(self, claims: SessionClaims) -> str:
        return jwt.encode(claims.to_payload(), self._secret_key, algorithm=self._algorithm)

    def _decode(self, token: str) -> SessionClaims:
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except jwt.PyJWTError:
            raise MalformedToken("Invalid token signature")
        return SessionClaims.from_payload(payload)


def build_token_codec(settings: Settings) -> TokenCodec:
    if settings.token_format == "jwt":
        return SignedTokenCodec(settings.token_ttl_ms, settings.secret_key, settings.jwt_algorithm)
    return TransparentTokenCodec(settings.token_ttl_ms)
