"""
auth/service.py -- Login, logout, token renewal and session revocation.

AuthService orchestrates the three leaf components:

  passwords  -- bcrypt verification of the submitted plaintext
  TokenCodec -- short-lived, stateless access tokens
  SessionRepository -- long-lived, revocable refresh sessions

Session state machine (derived on every read, never cached):

  ACTIVE --(clock passes expires_at)--> EXPIRED   detected lazily on renew
  ACTIVE/EXPIRED --(revoke)-----------> REVOKED   terminal
  any --(logout)----------------------> row deleted

Expired rows are not deleted on the request path. The optional sweep task in
api/main.py calls sweep_expired() to reclaim them; correctness never depends
on it because renew re-checks expiry every time.

Enumeration resistance: login answers unknown-email and wrong-password with
the same InvalidCredentials, and runs bcrypt in both cases (against
DUMMY_HASH when the email is unknown) so timing does not leak either.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from auth.errors import InvalidCredentials, SessionExpired, SessionNotFound, SessionRevoked
from auth.interfaces import SessionRepository, UserLookup
from auth.models import LoginResult, RenewResult, SessionState, User
from auth.passwords import DUMMY_HASH, verify_password
from auth.tokens import TokenCodec, generate_refresh_token
from core.clock import Clock, utc_now

logger = logging.getLogger("aggapi.auth")


class AuthService:
    """Stateless orchestrator over the user lookup, session store and codec.

    Holds no per-request state, so one instance serves every concurrent
    request. All mutable state lives in the stores.
    """

    def __init__(
        self,
        users: UserLookup,
        sessions: SessionRepository,
        codec: TokenCodec,
        *,
        access_ttl: timedelta,
        refresh_ttl: timedelta,
        clock: Clock = utc_now,
    ) -> None:
        if access_ttl <= timedelta(0) or refresh_ttl <= timedelta(0):
            raise ValueError("Token TTLs must be positive.")
        self._users = users
        self._sessions = sessions
        self._codec = codec
        self._access_ttl = access_ttl
        self._refresh_ttl = refresh_ttl
        self._clock = clock

    async def authenticate(self, email: str, password: str) -> User:
        """Return the user for a valid email/password pair, else raise InvalidCredentials.

        bcrypt is CPU-bound, so it runs in a worker thread to keep the event
        loop serving other requests.
        """
        user = await self._users.get_by_email(email)
        if user is None:
            # Equalize timing -- do NOT return early before running bcrypt
            await asyncio.to_thread(verify_password, password, DUMMY_HASH)
            logger.info("Login rejected: unknown identity")
            raise InvalidCredentials()
        if not await asyncio.to_thread(verify_password, password, user.hashed_password):
            logger.info("Login rejected: password mismatch for user_id=%s", user.id)
            raise InvalidCredentials()
        return user

    async def login(self, email: str, password: str) -> LoginResult:
        """Authenticate and open a refresh session.

        Returns the access token, the session id, the raw refresh token (shown
        to the client once; only its fingerprint is stored) and both expiries.
        """
        user = await self.authenticate(email, password)
        refresh_token = generate_refresh_token()
        session = await self._sessions.create(user.email, self._codec.fingerprint(refresh_token), self._refresh_ttl)
        access = self._codec.issue(user.id, user.is_admin, self._access_ttl)
        logger.info("Login succeeded for user_id=%s session=%s", user.id, session.id)
        return LoginResult(
            access_token=access.value,
            access_expires_at=access.claims.expires_at,
            session_id=session.id,
            refresh_token=refresh_token,
            refresh_expires_at=session.expires_at,
            user=user,
        )

    async def logout(self, session_id: str, *, user_id: int | None = None) -> None:
        """Delete the session. Terminal and non-recoverable.

        When user_id is given the session must belong to that identity;
        someone else's session is reported as SessionNotFound so its
        existence is not revealed.
        """
        if user_id is not None:
            session = await self._sessions.get(session_id)
            owner = await self._users.get_by_email(session.user_email)
            if owner is None or owner.id != user_id:
                logger.warning("Logout refused: session=%s not owned by user_id=%s", session_id, user_id)
                raise SessionNotFound()
        await self._sessions.delete(session_id)
        logger.info("Logged out session=%s", session_id)

    async def renew_access_token(self, session_id: str) -> RenewResult:
        """Issue a fresh access token from a live refresh session.

        Raises SessionNotFound, SessionRevoked or SessionExpired, checked in
        that order. The session row is never modified here. The new token
        carries the identity's current admin flag. A session whose identity no
        longer resolves fails with InvalidCredentials.
        """
        session = await self._sessions.get(session_id)
        state = session.state(self._clock())
        if state is SessionState.REVOKED:
            logger.info("Renew refused: session=%s is revoked", session_id)
            raise SessionRevoked()
        if state is SessionState.EXPIRED:
            logger.info("Renew refused: session=%s expired at %s", session_id, session.expires_at.isoformat())
            raise SessionExpired()

        user = await self._users.get_by_email(session.user_email)
        if user is None:
            logger.warning("Renew refused: identity for session=%s no longer exists", session_id)
            raise InvalidCredentials()

        access = self._codec.issue(user.id, user.is_admin, self._access_ttl)
        return RenewResult(access_token=access.value, expires_at=access.claims.expires_at)

    async def revoke_session(self, session_id: str) -> None:
        """Mark the session REVOKED. Idempotent; SessionNotFound if it never existed."""
        await self._sessions.revoke(session_id)
        logger.info("Revoked session=%s", session_id)

    async def is_refresh_token_blacklisted(self, refresh_token: str) -> bool:
        """Return True if refresh_token is revoked or unknown (fail-closed)."""
        return await self._sessions.is_blacklisted(self._codec.fingerprint(refresh_token))

    async def sweep_expired(self) -> int:
        """Delete sessions whose expiry has passed. Returns how many were removed."""
        return await self._sessions.delete_expired(self._clock())
