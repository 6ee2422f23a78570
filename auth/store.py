"""
auth/store.py -- SQLAlchemy Core persistence for user identities.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper. Route, dependency
and service code never touches SQL directly.

UserStore is the production implementation of auth.interfaces.UserLookup
(get_by_email / get_by_id) and also carries the management operations the
admin routes need.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Emails are normalized to lower case on write and on lookup, so
  "Alice@Example.com" and "alice@example.com" are the same login and the
  UNIQUE constraint cannot be sidestepped with case variants.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from sqlalchemy import Column, Integer, String, Table, Text, func, select
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from auth.models import User
from auth.sessions import delete_sessions_for
from core.clock import Clock, utc_now
from core.db import DEFAULT_TIMEOUT_SECONDS, SqlStore, metadata

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("is_admin", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    # SQLite AUTOINCREMENT: ids of deleted users are never reused.
    sqlite_autoincrement=True,
)


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore(SqlStore):
    """Repository for User entities.

    Usage:
        store = UserStore(engine)
        uid = await store.create_user(User(name="Admin", email="admin@example.com",
                                           hashed_password=hash_password("secret"), is_admin=True))
        user = await store.get_by_email("admin@example.com")
    """

    def __init__(self, engine: AsyncEngine, timeout: float = DEFAULT_TIMEOUT_SECONDS, *, clock: Clock = utc_now) -> None:
        super().__init__(engine, timeout)
        self._clock = clock

    async def has_users(self) -> bool:
        """Return True if at least one user record exists.

        Used at startup and by POST /setup to detect first-run state.
        """

        async def _op(conn: AsyncConnection) -> int:
            return (await conn.execute(select(func.count()).select_from(_users))).scalar() or 0

        return await self._transact(_op) > 0

    async def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises ValueError if hashed_password is empty: an identity without a
        credential hash must never exist.
        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers (e.g. POST /setup) should catch IntegrityError as a signal
        that a concurrent request already created the record.
        """
        if not user.hashed_password:
            raise ValueError("User must have a password hash.")
        now = self._clock().isoformat()

        async def _op(conn: AsyncConnection) -> int:
            result = await conn.execute(
                _users.insert().values(
                    name=user.name,
                    email=normalize_email(user.email),
                    hashed_password=user.hashed_password,
                    is_admin=1 if user.is_admin else 0,
                    created_at=now,
                    updated_at=now,
                )
            )
            return result.inserted_primary_key[0]

        return await self._transact(_op)

    async def get_by_email(self, email: str) -> User | None:
        """Look up a user by email (case-insensitive). Returns None if not found."""

        async def _op(conn: AsyncConnection):
            return (await conn.execute(_users.select().where(_users.c.email == normalize_email(email)))).fetchone()

        row = await self._transact(_op)
        return _row_to_user(row) if row is not None else None

    async def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""

        async def _op(conn: AsyncConnection):
            return (await conn.execute(_users.select().where(_users.c.id == user_id))).fetchone()

        row = await self._transact(_op)
        return _row_to_user(row) if row is not None else None

    async def list_users(self) -> list[User]:
        """Return all users ordered by email. Admin-only operation."""

        async def _op(conn: AsyncConnection):
            return (await conn.execute(_users.select().order_by(_users.c.email))).fetchall()

        return [_row_to_user(r) for r in await self._transact(_op)]

    async def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user record. Returns True if deleted, False if not found.

        Every session of the user is deleted in the same transaction. A later
        account registered under the same email must not inherit them.
        """

        async def _op(conn: AsyncConnection) -> bool:
            row = (await conn.execute(select(_users.c.email).where(_users.c.id == user_id))).fetchone()
            if row is None:
                return False
            await delete_sessions_for(conn, row.email)
            await conn.execute(_users.delete().where(_users.c.id == user_id))
            return True

        return await self._transact(_op)


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        hashed_password=row.hashed_password,
        is_admin=bool(row.is_admin),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
