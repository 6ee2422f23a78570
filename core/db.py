"""
core/db.py -- Async SQLAlchemy engine factory and the shared store base class.

Pattern: every repository (auth/store.py, auth/sessions.py) subclasses
SqlStore and funnels each public operation through _transact(). That gives
every storage call the same three guarantees:

  Atomicity: one call = one transaction (engine.begin()). Either every
      statement in the call commits or none does.

  Bounded latency: the call is wrapped in asyncio.wait_for() with the
      configured deadline. A slow or locked database surfaces as
      PersistenceError instead of a hung request.

  Cancellation: the call runs inside the caller's task. If the request task
      is cancelled (client disconnect, shutdown), CancelledError propagates
      into the driver and engine.begin() rolls the transaction back.

No retries happen here. Retry policy belongs to the caller.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy import MetaData, event, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

logger = logging.getLogger("aggapi.db")

T = TypeVar("T")

DEFAULT_TIMEOUT_SECONDS = 3.0

# Single MetaData shared by every table so create_schema() builds them all.
metadata = MetaData()


class PersistenceError(Exception):
    """Raised when the storage backend fails or misses its deadline.

    Never retried inside the core. The API layer maps it to 503.
    """

    def __init__(self, message: str = "Storage backend unavailable") -> None:
        super().__init__(message)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def create_engine(database_url: str, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> AsyncEngine:
    """Build the AsyncEngine for database_url.

    SQLite gets a busy timeout equal to the storage deadline so lock waits
    end before the deadline does. Other backends get a matching pool
    checkout timeout.
    """
    if database_url.startswith("sqlite"):
        engine = create_async_engine(database_url, connect_args={"timeout": timeout})
        event.listen(engine.sync_engine, "connect", _set_sqlite_pragmas)
        return engine
    return create_async_engine(database_url, pool_timeout=timeout, pool_pre_ping=True)


async def create_schema(engine: AsyncEngine) -> None:
    """Create every table registered on the shared metadata. Idempotent."""
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)


# ---------------------------------------------------------------------------
# Store base
# ---------------------------------------------------------------------------


class SqlStore:
    """Base class for repositories backed by an AsyncEngine."""

    def __init__(self, engine: AsyncEngine, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self.engine = engine
        self._timeout = timeout

    async def _transact(self, op: Callable[[AsyncConnection], Awaitable[T]]) -> T:
        """Run op inside one transaction, bounded by the storage deadline.

        IntegrityError is re-raised untouched so callers can turn unique
        constraint violations into domain errors (e.g. HTTP 409). Every other
        SQLAlchemy failure becomes PersistenceError.
        """

        async def _run() -> T:
            async with self.engine.begin() as conn:
                return await op(conn)

        try:
            return await asyncio.wait_for(_run(), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            logger.error("Storage call exceeded %.1fs deadline in %s", self._timeout, type(self).__name__)
            raise PersistenceError("Storage call timed out") from exc
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            logger.error("Storage failure in %s: %s", type(self).__name__, exc.__class__.__name__)
            raise PersistenceError("Storage backend error") from exc

    async def ping(self) -> bool:
        """Return True if the database answers a trivial query in time."""

        async def _op(conn: AsyncConnection) -> None:
            await conn.execute(text("SELECT 1"))

        try:
            await self._transact(_op)
        except PersistenceError:
            return False
        return True
