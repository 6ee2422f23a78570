"""
auth/interfaces.py -- Storage capabilities the Auth Service depends on.

AuthService is written against these protocols, not against the SQL stores.
The production implementations live in auth/store.py (UserStore) and
auth/sessions.py (SessionStore); tests substitute in-memory fakes.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Protocol

from auth.models import Session, User


class UserLookup(Protocol):
    """Read-only access to identities. None means "no such user"."""

    async def get_by_email(self, email: str) -> User | None: ...

    async def get_by_id(self, user_id: int) -> User | None: ...


class SessionRepository(Protocol):
    """Persistent refresh sessions. Every method is one atomic storage call."""

    async def create(self, user_email: str, refresh_token: str, ttl: timedelta) -> Session: ...

    async def get(self, session_id: str) -> Session: ...

    async def revoke(self, session_id: str) -> None: ...

    async def delete(self, session_id: str) -> None: ...

    async def is_blacklisted(self, refresh_token: str) -> bool: ...

    async def delete_expired(self, before: datetime) -> int: ...
