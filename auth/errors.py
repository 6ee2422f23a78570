"""
auth/errors.py -- Exception taxonomy for the authentication core.

Every failure the core can report is a subclass of AuthError except
PersistenceError, which belongs to the storage kernel (core/db.py) and is
re-exported here so callers can import the whole taxonomy from one place.

Each class carries a stable machine-readable `code`. The API layer logs the
specific class and decides how much of it the client may see: token and
credential failures collapse into a generic "unauthorized" response.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from core.db import PersistenceError

__all__ = [
    "AuthError",
    "ExpiredToken",
    "Forbidden",
    "InvalidCredentials",
    "InvalidSignature",
    "MalformedHeader",
    "MalformedToken",
    "MissingHeader",
    "PersistenceError",
    "SessionError",
    "SessionExpired",
    "SessionNotFound",
    "SessionRevoked",
    "TokenError",
]


class AuthError(Exception):
    """Base class for authentication and authorization failures."""

    code = "unauthorized"

    def __init__(self, message: str = "Authentication failed") -> None:
        super().__init__(message)


class InvalidCredentials(AuthError):
    """Login failed. Deliberately silent about whether the email or the password was wrong."""

    code = "bad_credentials"

    def __init__(self, message: str = "Invalid email or password") -> None:
        super().__init__(message)


# ---------------------------------------------------------------------------
# Access token verification
# ---------------------------------------------------------------------------


class TokenError(AuthError):
    """Base class for bearer token failures. Clients only ever see 'unauthorized'."""


class MissingHeader(TokenError):
    code = "missing_header"

    def __init__(self, message: str = "Authorization header is missing") -> None:
        super().__init__(message)


class MalformedHeader(TokenError):
    code = "malformed_header"

    def __init__(self, message: str = "Authorization header must be 'Bearer <token>'") -> None:
        super().__init__(message)


class InvalidSignature(TokenError):
    code = "invalid_signature"

    def __init__(self, message: str = "Token signature does not match") -> None:
        super().__init__(message)


class ExpiredToken(TokenError):
    code = "expired_token"

    def __init__(self, message: str = "Token has expired") -> None:
        super().__init__(message)


class MalformedToken(TokenError):
    code = "malformed_token"

    def __init__(self, message: str = "Token could not be decoded") -> None:
        super().__init__(message)


# ---------------------------------------------------------------------------
# Refresh session lifecycle
# ---------------------------------------------------------------------------


class SessionError(AuthError):
    """Base class for refresh session failures."""


class SessionNotFound(SessionError):
    code = "not_found"

    def __init__(self, message: str = "Session not found") -> None:
        super().__init__(message)


class SessionRevoked(SessionError):
    code = "session_revoked"

    def __init__(self, message: str = "Session has been revoked") -> None:
        super().__init__(message)


class SessionExpired(SessionError):
    code = "session_expired"

    def __init__(self, message: str = "Session has expired") -> None:
        super().__init__(message)


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


class Forbidden(AuthError):
    code = "forbidden"

    def __init__(self, message: str = "Admin access required") -> None:
        super().__init__(message)
