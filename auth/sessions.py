"""
auth/sessions.py -- SQLAlchemy Core persistence for refresh sessions.

Pattern: Repository + Data Mapper (same as auth/store.py).
SessionStore is the production implementation of
auth.interfaces.SessionRepository.

Row lifecycle:
  create()  -- inserts a row with is_revoked=0. The only write that sets
               fields other than is_revoked.
  revoke()  -- sets is_revoked=1. Nothing ever sets it back to 0.
  delete()  -- logout. Removes the row.
  Expiry never deletes a row on the request path; it is compared on read.
  delete_expired() exists for the optional background sweep only.

Indexes:
  id            -- primary key, so get/revoke/delete are point lookups.
  refresh_token -- UNIQUE, so is_blacklisted() is a point lookup.
  user_email    -- plain index for delete_sessions_for(), which UserStore
                   runs when an identity is deleted.

Timestamps are stored as ISO 8601 strings with an explicit UTC offset, so
they round-trip to timezone-aware datetimes on every backend.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import Column, Index, Integer, String, Table, select
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from auth.errors import SessionNotFound
from auth.models import Session
from core.clock import Clock, utc_now
from core.db import DEFAULT_TIMEOUT_SECONDS, SqlStore, metadata

logger = logging.getLogger("aggapi.auth.sessions")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_sessions = Table(
    "sessions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_email", String(255), nullable=False),
    Column("refresh_token", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("is_revoked", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Index("ix_sessions_user_email", "user_email"),
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class SessionStore(SqlStore):
    """Repository for refresh sessions.

    Usage:
        sessions = SessionStore(engine, timeout=3.0)
        session = await sessions.create("alice@example.com", fingerprint, timedelta(days=1))
        await sessions.revoke(session.id)
    """

    def __init__(self, engine: AsyncEngine, timeout: float = DEFAULT_TIMEOUT_SECONDS, *, clock: Clock = utc_now) -> None:
        super().__init__(engine, timeout)
        self._clock = clock

    async def create(self, user_email: str, refresh_token: str, ttl: timedelta) -> Session:
        """Persist a new ACTIVE session and return it.

        The id is a random uuid4 (128 bits) generated here, never by the
        caller. Raises ValueError for a non-positive ttl, PersistenceError on
        storage failure.
        """
        if ttl <= timedelta(0):
            raise ValueError("Session TTL must be positive.")
        created_at = self._clock().astimezone(timezone.utc)
        session = Session(
            id=str(uuid.uuid4()),
            user_email=user_email,
            refresh_token=refresh_token,
            created_at=created_at,
            expires_at=created_at + ttl,
        )

        async def _op(conn: AsyncConnection) -> None:
            await conn.execute(
                _sessions.insert().values(
                    id=session.id,
                    user_email=session.user_email,
                    refresh_token=session.refresh_token,
                    is_revoked=0,
                    created_at=_to_iso(session.created_at),
                    expires_at=_to_iso(session.expires_at),
                )
            )

        await self._transact(_op)
        return session

    async def get(self, session_id: str) -> Session:
        """Return the session with this id. Raises SessionNotFound if absent."""

        async def _op(conn: AsyncConnection):
            return (await conn.execute(_sessions.select().where(_sessions.c.id == session_id))).fetchone()

        row = await self._transact(_op)
        if row is None:
            raise SessionNotFound()
        return _row_to_session(row)

    async def revoke(self, session_id: str) -> None:
        """Mark the session revoked. Idempotent.

        Raises SessionNotFound only if no row with this id exists. Re-revoking
        matches the row again, so rowcount stays 1.
        """

        async def _op(conn: AsyncConnection) -> int:
            result = await conn.execute(_sessions.update().where(_sessions.c.id == session_id).values(is_revoked=1))
            return result.rowcount

        if await self._transact(_op) == 0:
            raise SessionNotFound()

    async def delete(self, session_id: str) -> None:
        """Remove the session row entirely (logout). Raises SessionNotFound if absent."""

        async def _op(conn: AsyncConnection) -> int:
            return (await conn.execute(_sessions.delete().where(_sessions.c.id == session_id))).rowcount

        if await self._transact(_op) == 0:
            raise SessionNotFound()

    async def is_blacklisted(self, refresh_token: str) -> bool:
        """Return True unless refresh_token belongs to a known, unrevoked session.

        Fail-closed: an unknown token is untrusted, so it counts as
        blacklisted rather than raising.
        """

        async def _op(conn: AsyncConnection):
            return (
                await conn.execute(
                    select(_sessions.c.is_revoked).where(_sessions.c.refresh_token == refresh_token)
                )
            ).fetchone()

        row = await self._transact(_op)
        if row is None:
            return True
        return bool(row.is_revoked)

    async def delete_expired(self, before: datetime) -> int:
        """Delete sessions that expired before the given instant. Returns the row count.

        Stored timestamps are fixed-width UTC ISO strings, which sort
        chronologically, so the comparison can run in SQL.
        """
        cutoff = _to_iso(before)

        async def _op(conn: AsyncConnection) -> int:
            return (await conn.execute(_sessions.delete().where(_sessions.c.expires_at < cutoff))).rowcount

        removed = await self._transact(_op)
        if removed:
            logger.info("Removed %d expired sessions", removed)
        return removed


async def delete_sessions_for(conn: AsyncConnection, user_email: str) -> int:
    """Delete every session of user_email on the caller's connection.

    Runs inside the caller's transaction so an identity and its sessions are
    removed together. Uses ix_sessions_user_email.
    """
    return (await conn.execute(_sessions.delete().where(_sessions.c.user_email == user_email))).rowcount


def _to_iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_email=row.user_email,
        refresh_token=row.refresh_token,
        is_revoked=bool(row.is_revoked),
        created_at=datetime.fromisoformat(row.created_at),
        expires_at=datetime.fromisoformat(row.expires_at),
    )
