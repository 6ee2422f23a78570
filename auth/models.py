"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Dataclasses own
domain shape; stores, the codec and the service do the work.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class SessionState(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


@dataclass
class User:
    """An identity that can log in.

    email is the login name and is stored lower-cased. hashed_password is a
    bcrypt hash and is never empty once the user exists; the plaintext is
    discarded as soon as it has been hashed.
    """

    name: str
    email: str
    hashed_password: str
    is_admin: bool = False
    id: int | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class Claims:
    """Identity recovered from a verified access token. Never persisted."""

    user_id: int
    is_admin: bool
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class AccessToken:
    """A freshly signed access token together with the claims it carries."""

    value: str
    claims: Claims


@dataclass
class Session:
    """One issued refresh credential, i.e. one successful login.

    refresh_token holds the HMAC fingerprint of the opaque token handed to the
    client, never the token itself. The row is created once and afterwards
    only ever flips is_revoked from False to True.
    """

    id: str
    user_email: str
    refresh_token: str
    created_at: datetime
    expires_at: datetime
    is_revoked: bool = False

    def state(self, now: datetime) -> SessionState:
        # Revocation is terminal and wins over expiry.
        if self.is_revoked:
            return SessionState.REVOKED
        if now > self.expires_at:
            return SessionState.EXPIRED
        return SessionState.ACTIVE


@dataclass(frozen=True)
class LoginResult:
    access_token: str
    access_expires_at: datetime
    session_id: str
    refresh_token: str
    refresh_expires_at: datetime
    user: User


@dataclass(frozen=True)
class RenewResult:
    access_token: str
    expires_at: datetime
