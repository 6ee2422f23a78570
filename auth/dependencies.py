"""
auth/dependencies.py -- FastAPI Depends() helpers for access control.

In FastAPI the "wrap the next handler" middleware shape is a dependency: it
runs before the route body, and raising stops the chain before the handler
is reached. BearerAuth is that wrapper:

  1. Read the Authorization header (MissingHeader if absent).
  2. Require exactly "Bearer <token>" (MalformedHeader otherwise).
  3. Verify the token with the app's TokenCodec (InvalidSignature,
     ExpiredToken, MalformedToken).
  4. admin=True only: reject non-admin claims with Forbidden.
  5. Attach the Claims to request.state.claims and return them, so handlers
     receive identity as an explicit parameter.

Failures are raised as auth.errors exceptions; api/main.py turns them into a
generic 401 / 403 and logs the specific kind.

The session store is never consulted here. Access tokens are verified
statelessly on every request; revocable state lives in refresh sessions and
only matters at renew/revoke time.

Layer rule: auth/dependencies.py may import from fastapi because this module
is part of the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import Forbidden, MalformedHeader, MissingHeader
from auth.models import Claims
from auth.tokens import TokenCodec

_SCHEME = "bearer"


def bearer_token(header: str | None) -> str:
    """Extract the token from an Authorization header value.

    The scheme is matched case-insensitively (RFC 7235); anything other than
    two whitespace-separated parts is malformed.
    """
    if header is None or not header.strip():
        raise MissingHeader()
    parts = header.split()
    if len(parts) != 2 or parts[0].lower() != _SCHEME:
        raise MalformedHeader()
    return parts[1]


class BearerAuth:
    """Dependency that authenticates the request from its bearer token.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(claims: Claims = Depends(require_user)): ...

        @router.post("/admin-only")
        async def route(claims: Claims = Depends(require_admin)): ...
    """

    def __init__(self, *, admin: bool = False) -> None:
        self.admin = admin

    def __call__(self, request: Request) -> Claims:
        codec: TokenCodec = request.app.state.token_codec
        claims = codec.verify(bearer_token(request.headers.get("Authorization")))
        if self.admin and not claims.is_admin:
            raise Forbidden()
        request.state.claims = claims
        return claims


require_user = BearerAuth()
require_admin = BearerAuth(admin=True)
