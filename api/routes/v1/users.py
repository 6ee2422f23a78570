"""
api/routes/v1/users.py -- First-run setup and user management endpoints.

Routes:
  POST   /api/v1/setup          -- create the first admin (only while no users exist)
  POST   /api/v1/users          -- create user (admin only)
  GET    /api/v1/users          -- list all users (admin only)
  GET    /api/v1/users/{id}     -- get one user (self or admin)
  DELETE /api/v1/users/{id}     -- delete user (admin only, never self)

The plaintext password is hashed immediately on arrival and dropped; only the
bcrypt hash reaches the store.
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.exc import IntegrityError

from api.models import UserCreate, UserResponse
from api.routes.v1.auth import user_to_response
from auth.dependencies import require_admin, require_user
from auth.errors import Forbidden
from auth.models import Claims, User
from auth.passwords import hash_password
from auth.store import UserStore

logger = logging.getLogger("aggapi.api.users")

# Auth policy:
# - POST   /api/v1/setup:       public, but 404 once any user exists
# - POST   /api/v1/users:       requires admin (require_admin)
# - GET    /api/v1/users:       requires admin (require_admin)
# - GET    /api/v1/users/{id}:  requires auth; non-admins may only read themselves
# - DELETE /api/v1/users/{id}:  requires admin (require_admin)
router = APIRouter()


def _user_store(request: Request) -> UserStore:
    return request.app.state.user_store


async def _create(store: UserStore, body: UserCreate, *, is_admin: bool) -> User:
    new_user = User(
        name=body.name,
        email=body.email,
        hashed_password=await asyncio.to_thread(hash_password, body.password),
        is_admin=is_admin,
    )
    try:
        user_id = await store.create_user(new_user)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "A user with that email already exists."},
        ) from exc
    created = await store.get_by_id(user_id)
    if created is None:
        raise HTTPException(
            status_code=500,
            detail={"code": "internal_error", "message": "User not found after write."},
        )
    return created


@router.post("/setup", response_model=UserResponse, status_code=201)
async def setup(request: Request, body: UserCreate) -> UserResponse:
    """Create the first admin account.

    Re-checks has_users() at the DB level even though app.state.setup_required
    is already known, so a second call after setup answers 404. Two concurrent
    first-run calls with the same email are settled by the UNIQUE constraint.
    """
    store = _user_store(request)
    if await store.has_users():
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "Setup already complete."},
        )
    created = await _create(store, body, is_admin=True)
    request.app.state.setup_required = False
    logger.info("Initial admin created user_id=%s", created.id)
    return user_to_response(created)


@router.post("/users", response_model=UserResponse, status_code=201)
async def create_user(
    request: Request,
    body: UserCreate,
    claims: Claims = Depends(require_admin),
) -> UserResponse:
    """Create a new user account. Admin only."""
    created = await _create(_user_store(request), body, is_admin=body.is_admin)
    logger.info("user_id=%s created user_id=%s (admin=%s)", claims.user_id, created.id, created.is_admin)
    return user_to_response(created)


@router.get("/users", response_model=list[UserResponse])
async def list_users(
    request: Request,
    claims: Claims = Depends(require_admin),
) -> list[UserResponse]:
    """List all user accounts. Admin only."""
    return [user_to_response(u) for u in await _user_store(request).list_users()]


@router.get("/users/{user_id}", response_model=UserResponse)
async def get_user(
    request: Request,
    user_id: int,
    claims: Claims = Depends(require_user),
) -> UserResponse:
    """Return one user. Non-admins may only read their own record."""
    if not claims.is_admin and claims.user_id != user_id:
        raise Forbidden()
    user = await _user_store(request).get_by_id(user_id)
    if user is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "User not found."},
        )
    return user_to_response(user)


@router.delete("/users/{user_id}", status_code=204)
async def delete_user(
    request: Request,
    user_id: int,
    claims: Claims = Depends(require_admin),
) -> Response:
    """Delete a user account. Admin only; admins cannot delete themselves."""
    if claims.user_id == user_id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_deletion", "message": "You cannot delete your own account."},
        )
    if not await _user_store(request).delete_user(user_id):
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "User not found."},
        )
    logger.info("user_id=%s deleted user_id=%s", claims.user_id, user_id)
    return Response(status_code=204)
