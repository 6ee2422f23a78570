"""
api/routes/v1/auth.py -- Session lifecycle REST endpoints.

Routes:
  POST /api/v1/auth/login                        -- password login; opens a refresh session
  POST /api/v1/auth/logout                       -- deletes one of the caller's sessions
  POST /api/v1/auth/tokens/renew                 -- new access token from a refresh session
  POST /api/v1/auth/tokens/revoke/{session_id}   -- revoke any session (admin only)
  GET  /api/v1/auth/me                           -- claims of the current access token

Security:
  POST /login is rate-limited per client IP (LOGIN_RATE_LIMIT).
  AuthService.login() provides timing equalization -- use it, never inline
  a lookup + verify_password() here.
  Cache-Control: no-store on every response that carries a credential.
  Errors are raised as auth.errors exceptions and rendered by the handlers in
  api/main.py, which never echo the specific verification failure.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import LoginRequest, LoginResponse, MeResponse, RenewResponse, SessionRequest, UserResponse
from auth.dependencies import require_admin, require_user
from auth.models import Claims, User
from auth.service import AuthService
from core.config import get_settings

# Auth policy:
# - POST /api/v1/auth/login:                      public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/logout:                     requires auth (require_user); own sessions only
# - POST /api/v1/auth/tokens/renew:               public -- the session id is the credential
# - POST /api/v1/auth/tokens/revoke/{session_id}: requires admin (require_admin)
# - GET  /api/v1/auth/me:                         requires auth (require_user)
router = APIRouter()


def _login_rate_limit() -> str:
    # Resolved per request so LOGIN_RATE_LIMIT follows the current settings.
    return get_settings().login_rate_limit


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(_login_rate_limit)  # brute-force mitigation; must sit BELOW @router so the limited wrapper is registered
async def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Returns the same generic error for unknown email and wrong password
    ("bad_credentials") to avoid leaking which emails have accounts.
    """
    result = await _service(request).login(body.email, body.password)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=result.access_token,
            access_expires_at=result.access_expires_at,
            session_id=result.session_id,
            refresh_token=result.refresh_token,
            refresh_expires_at=result.refresh_expires_at,
            user=user_to_response(result.user),
        ).model_dump(mode="json"),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/tokens/renew", response_model=RenewResponse)
async def renew_access_token(request: Request, body: SessionRequest) -> JSONResponse:
    """Issue a new access token from a live refresh session.

    404 if the session does not exist, 401 session_revoked / session_expired
    if it can no longer be used. The session itself is left untouched.
    """
    result = await _service(request).renew_access_token(body.session_id)
    resp = JSONResponse(
        status_code=200,
        content=RenewResponse(access_token=result.access_token, expires_at=result.expires_at).model_dump(mode="json"),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", status_code=204)
async def logout(
    request: Request,
    body: SessionRequest,
    claims: Claims = Depends(require_user),
) -> Response:
    """Delete one of the caller's refresh sessions [IDOR guard].

    Another identity's session id answers 404, the same as an unknown id.
    """
    await _service(request).logout(body.session_id, user_id=claims.user_id)
    return Response(status_code=204)


@router.post("/auth/tokens/revoke/{session_id}", status_code=204)
async def revoke_session(
    request: Request,
    session_id: str,
    claims: Claims = Depends(require_admin),
) -> Response:
    """Revoke a refresh session. Admin only. Revoking twice is not an error."""
    await _service(request).revoke_session(session_id)
    return Response(status_code=204)


@router.get("/auth/me", response_model=MeResponse)
async def me(claims: Claims = Depends(require_user)) -> MeResponse:
    """Return the verified claims of the current access token."""
    return MeResponse(
        user_id=claims.user_id,
        is_admin=claims.is_admin,
        issued_at=claims.issued_at,
        expires_at=claims.expires_at,
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def user_to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        is_admin=user.is_admin,
        created_at=user.created_at or "",
    )
