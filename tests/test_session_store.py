"""
tests/test_session_store.py -- Integration tests for auth/sessions.py against SQLite.

Each test gets a fresh file-backed database from the `engine` fixture in
conftest.py. Timestamps come from a FrozenClock so expiry is deterministic.

Covers:
  - create/get round trip; unique ids across many creates
  - get/revoke/delete on an unknown id -> SessionNotFound
  - revoke is idempotent and leaves every other field untouched
  - is_blacklisted: active False, revoked True, unknown True (fail-closed)
  - delete_expired removes only rows past the cutoff
  - storage deadline -> PersistenceError; driver errors -> PersistenceError
  - cancelling a call rolls back its transaction
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import text

from auth.errors import PersistenceError, SessionNotFound
from auth.models import SessionState
from auth.sessions import SessionStore, _sessions

TTL = timedelta(hours=24)


@pytest.fixture
def store(engine, clock) -> SessionStore:
    return SessionStore(engine, timeout=3.0, clock=clock)


@pytest.mark.asyncio
async def test_create_then_get_round_trips(store, clock):
    created = await store.create("alice@example.com", "f" * 64, TTL)
    loaded = await store.get(created.id)
    assert loaded == created
    assert loaded.is_revoked is False
    assert loaded.created_at == clock.now
    assert loaded.expires_at == clock.now + TTL
    assert loaded.state(clock.now) is SessionState.ACTIVE


@pytest.mark.asyncio
async def test_session_ids_are_unique(store):
    ids = {(await store.create("a@example.com", f"{i:064x}", TTL)).id for i in range(50)}
    assert len(ids) == 50


@pytest.mark.asyncio
async def test_non_positive_ttl_is_refused(store):
    with pytest.raises(ValueError):
        await store.create("a@example.com", "f" * 64, timedelta(0))


@pytest.mark.asyncio
async def test_get_unknown_id_raises_not_found(store):
    with pytest.raises(SessionNotFound):
        await store.get("00000000-0000-0000-0000-000000000000")


@pytest.mark.asyncio
async def test_revoke_unknown_id_raises_not_found(store):
    with pytest.raises(SessionNotFound):
        await store.revoke("no-such-session")


@pytest.mark.asyncio
async def test_delete_unknown_id_raises_not_found(store):
    with pytest.raises(SessionNotFound):
        await store.delete("no-such-session")


@pytest.mark.asyncio
async def test_revoke_is_idempotent_and_only_touches_flag(store):
    created = await store.create("bob@example.com", "a" * 64, TTL)
    await store.revoke(created.id)
    first = await store.get(created.id)
    await store.revoke(created.id)
    second = await store.get(created.id)

    assert first == second
    assert second.is_revoked is True
    assert (second.user_email, second.refresh_token, second.created_at, second.expires_at) == (
        created.user_email,
        created.refresh_token,
        created.created_at,
        created.expires_at,
    )


@pytest.mark.asyncio
async def test_delete_removes_row(store):
    created = await store.create("carol@example.com", "b" * 64, TTL)
    await store.delete(created.id)
    with pytest.raises(SessionNotFound):
        await store.get(created.id)
    with pytest.raises(SessionNotFound):
        await store.delete(created.id)


@pytest.mark.asyncio
async def test_is_blacklisted_tracks_revocation(store):
    created = await store.create("dave@example.com", "c" * 64, TTL)
    assert await store.is_blacklisted("c" * 64) is False
    await store.revoke(created.id)
    assert await store.is_blacklisted("c" * 64) is True


@pytest.mark.asyncio
async def test_unknown_refresh_token_is_blacklisted(store):
    assert await store.is_blacklisted("never-issued") is True


@pytest.mark.asyncio
async def test_expired_session_is_still_readable(store, clock):
    created = await store.create("erin@example.com", "d" * 64, timedelta(minutes=1))
    clock.advance(minutes=5)
    loaded = await store.get(created.id)
    assert loaded.state(clock.now) is SessionState.EXPIRED


@pytest.mark.asyncio
async def test_delete_expired_removes_only_past_rows(store, clock):
    short = await store.create("frank@example.com", "e" * 64, timedelta(minutes=1))
    long = await store.create("frank@example.com", "9" * 64, timedelta(hours=1))
    clock.advance(minutes=10)

    assert await store.delete_expired(clock.now) == 1
    with pytest.raises(SessionNotFound):
        await store.get(short.id)
    assert (await store.get(long.id)).id == long.id
    assert await store.delete_expired(clock.now) == 0


@pytest.mark.asyncio
async def test_call_past_deadline_raises_persistence_error(engine, clock):
    store = SessionStore(engine, timeout=0.05, clock=clock)

    async def _stall(conn):
        await asyncio.sleep(1)

    with pytest.raises(PersistenceError):
        await store._transact(_stall)


@pytest.mark.asyncio
async def test_driver_error_raises_persistence_error(store):
    async def _broken(conn):
        await conn.execute(text("SELECT * FROM no_such_table"))

    with pytest.raises(PersistenceError):
        await store._transact(_broken)


@pytest.mark.asyncio
async def test_cancelled_call_rolls_back(store, clock):
    started = asyncio.Event()

    async def _insert_then_stall(conn):
        await conn.execute(
            _sessions.insert().values(
                id="cancelled-session",
                user_email="gina@example.com",
                refresh_token="7" * 64,
                is_revoked=0,
                created_at=clock.now.isoformat(),
                expires_at=(clock.now + TTL).isoformat(),
            )
        )
        started.set()
        await asyncio.sleep(10)

    task = asyncio.create_task(store._transact(_insert_then_stall))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    with pytest.raises(SessionNotFound):
        await store.get("cancelled-session")


@pytest.mark.asyncio
async def test_ping_reports_reachable_database(store):
    assert await store.ping() is True
