"""
auth/tokens.py -- Access token codec and refresh token helpers.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry the user id (`sub`), the admin
       flag (`adm`), issued-at and expiry. The codec is constructed once at
       startup with an immutable secret; there is no module-level key, so
       tests can build codecs with alternate keys and clocks freely.

  Verification is split into three failure kinds so the API layer can log
       precisely while still answering every one of them with a bare 401:
         MalformedToken   -- not three non-empty dot-separated segments, or a
                             correctly signed token whose claims have the
                             wrong shape
         InvalidSignature -- three segments that do not verify under our key,
                             whichever segment was altered (header included)
         ExpiredToken     -- authentic, but the clock is past `exp`
       Signature is checked before expiry, so a tampered expired token reports
       InvalidSignature.

  Expiry is checked against the injected clock rather than python-jose's
       internal time.time() so expiry is testable with a simulated clock.

  Refresh tokens: secrets.token_urlsafe(32) gives 256 bits of entropy. The
       session row stores HMAC-SHA256(SECRET_KEY, token) so a leaked sessions
       table cannot be replayed without also knowing SECRET_KEY. The hash is
       deterministic, enabling O(1) lookup by fingerprint.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from jose.exceptions import JWTClaimsError

from auth.errors import ExpiredToken, InvalidSignature, MalformedToken
from auth.models import AccessToken, Claims
from core.clock import Clock, utc_now
from core.config import MIN_SECRET_KEY_BYTES

_ALGORITHM = "HS256"

# python-jose would otherwise enforce exp itself using the wall clock.
_DECODE_OPTIONS = {"verify_exp": False}


class TokenCodec:
    """Issues and verifies signed, time-bounded access tokens.

    Holds a single symmetric key for the life of the process. Instances are
    immutable after construction and safe to share across concurrent requests.

    Usage:
        codec = TokenCodec(settings.secret_key)
        issued = codec.issue(user_id=7, is_admin=False, ttl=timedelta(minutes=15))
        claims = codec.verify(issued.value)
    """

    def __init__(self, secret_key: str, *, clock: Clock = utc_now) -> None:
        if len(secret_key.encode("utf-8")) < MIN_SECRET_KEY_BYTES:
            raise ValueError(f"Signing key must be at least {MIN_SECRET_KEY_BYTES} bytes.")
        self._secret_key = secret_key
        self._clock = clock

    def issue(self, user_id: int, is_admin: bool, ttl: timedelta) -> AccessToken:
        """Sign a token for user_id that expires ttl from now.

        issued_at is truncated to whole seconds because JWT NumericDate has
        second resolution; expires_at is then exactly issued_at + ttl.
        """
        if ttl <= timedelta(0):
            raise ValueError("Token TTL must be positive.")
        issued_at = self._clock().astimezone(timezone.utc).replace(microsecond=0)
        expires_at = issued_at + ttl
        payload = {
            "sub": str(user_id),
            "adm": bool(is_admin),
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        token = jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)
        claims = Claims(user_id=user_id, is_admin=bool(is_admin), issued_at=issued_at, expires_at=expires_at)
        return AccessToken(value=token, claims=claims)

    def verify(self, token: str) -> Claims:
        """Verify a token and return its Claims. Pure: no I/O, no mutation.

        Raises MalformedToken, InvalidSignature or ExpiredToken.
        """
        segments = token.split(".")
        if len(segments) != 3 or not all(segments):
            raise MalformedToken()

        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM], options=_DECODE_OPTIONS)
        except JWTClaimsError as exc:
            raise MalformedToken() from exc
        except JWTError as exc:
            raise InvalidSignature() from exc

        claims = _claims_from_payload(payload)
        if self._clock() > claims.expires_at:
            raise ExpiredToken()
        return claims

    def fingerprint(self, refresh_token: str) -> str:
        """Return HMAC-SHA256(SECRET_KEY, refresh_token) as a hex string."""
        return hmac.new(
            self._secret_key.encode("utf-8"),
            refresh_token.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()


def _claims_from_payload(payload: dict) -> Claims:
    sub = payload.get("sub")
    adm = payload.get("adm")
    iat = payload.get("iat")
    exp = payload.get("exp")
    if not isinstance(sub, str) or not sub.isdigit():
        raise MalformedToken("Token subject is missing or not a user id")
    if not isinstance(adm, bool):
        raise MalformedToken("Token admin flag is missing")
    # bool is an int subclass; a boolean timestamp is still malformed.
    if not all(isinstance(v, int) and not isinstance(v, bool) for v in (iat, exp)):
        raise MalformedToken("Token timestamps are missing")
    return Claims(
        user_id=int(sub),
        is_admin=adm,
        issued_at=datetime.fromtimestamp(iat, tz=timezone.utc),
        expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
    )


def generate_refresh_token() -> str:
    """Generate an opaque refresh token with 256 bits of entropy."""
    return secrets.token_urlsafe(32)
