"""
api/routes/v1/users.py -- User management REST endpoints (admin only).

Routes:
  GET    /api/v1/auth/users         -- list all users with a total count
  POST   /api/v1/auth/users         -- create a user with an explicit role
  PATCH  /api/v1/auth/users/{id}    -- update name/email/role/password/permissions
  DELETE /api/v1/auth/users/{id}    -- delete a user and end their sessions

Security:
  Every route depends on require_admin (401 without a valid access token,
  403 for a non-admin).
  [M4] PATCH blocks self-demotion and demoting the last admin.
  DELETE blocks self-deletion and deleting the last admin.
  A deleted user's server-side sessions are destroyed in the same request.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.exc import IntegrityError

from api.models import UserCreate, UserDetail, UserListResponse, UserPatch
from auth.dependencies import require_admin
from auth.errors import ConflictError, NotFoundError, ValidationError
from auth.models import User
from auth.sessions import SessionRegistry
from auth.store import UserStore
from auth.tokens import hash_password

logger = logging.getLogger("passgate.api.users")

router = APIRouter()


def create_account(
    store: UserStore,
    *,
    email: str,
    password: str,
    name: str,
    role: str = "user",
    permissions: list[str] | None = None,
) -> User:
    """Hash the password and insert the user. Raises ConflictError if the email is taken.

    Shared by registration and admin creation.
    """
    new_user = User(
        id="",
        email=email,
        name=name,
        role=role,
        password_hash=hash_password(password),
        permissions=permissions,
    )
    try:
        return store.create(new_user)
    except IntegrityError as exc:
        raise ConflictError("An account with that email already exists.") from exc


@router.get("/auth/users", response_model=UserListResponse)
async def list_users(
    request: Request,
    current_user: User = Depends(require_admin),
) -> UserListResponse:
    """List all user accounts. Admin only."""
    user_store: UserStore = request.app.state.user_store
    users = user_store.list_all()
    return UserListResponse(users=[UserDetail.from_user(u) for u in users], count=len(users))


@router.post("/auth/users", response_model=UserDetail, status_code=201)
async def create_user(
    request: Request,
    body: UserCreate,
    current_user: User = Depends(require_admin),
) -> UserDetail:
    """Create a new user account with the given role. Admin only."""
    created = create_account(
        request.app.state.user_store,
        email=body.email,
        password=body.password,
        name=body.name,
        role=body.role.value,
        permissions=body.permissions,
    )
    logger.info("User %s created by admin %s (role=%s)", created.id, current_user.id, created.role)
    return UserDetail.from_user(created)


@router.patch("/auth/users/{user_id}", response_model=UserDetail)
async def update_user(
    request: Request,
    user_id: str,
    body: UserPatch,
    current_user: User = Depends(require_admin),
) -> UserDetail:
    """Apply a partial update to a user. Admin only.

    [M4] Prevents:
      - Self-demotion (admin accidentally locking themselves out).
      - Demoting the last admin (no recovery path without DB access).
    """
    user_store: UserStore = request.app.state.user_store

    target = user_store.find_by_id(user_id)
    if target is None:
        raise NotFoundError("User not found.")

    updates: dict = {}
    if body.name is not None:
        updates["name"] = body.name
    if body.email is not None:
        updates["email"] = body.email
    if body.password is not None:
        updates["password_hash"] = hash_password(body.password)
    if body.permissions is not None:
        updates["permissions"] = body.permissions
    if body.role is not None and body.role.value != target.role:
        if target.role == "admin":
            if target.id == current_user.id:
                raise ValidationError("You cannot remove your own admin role.", code="self_demotion")
            if user_store.count_admins() <= 1:
                raise ValidationError("Cannot demote the last admin account.", code="last_admin")
        updates["role"] = body.role.value

    if not updates:
        raise ValidationError("No fields to update.", code="no_changes")

    try:
        updated = user_store.update(user_id, **updates)
    except IntegrityError as exc:
        raise ConflictError("An account with that email already exists.") from exc
    if updated is None:
        raise NotFoundError("User not found.")
    return UserDetail.from_user(updated)


@router.delete("/auth/users/{user_id}", status_code=204)
async def delete_user(
    request: Request,
    user_id: str,
    current_user: User = Depends(require_admin),
) -> Response:
    """Delete a user and destroy all of their sessions. Admin only."""
    user_store: UserStore = request.app.state.user_store
    registry: SessionRegistry = request.app.state.session_registry

    if user_id == current_user.id:
        raise ValidationError("You cannot delete your own account.", code="self_delete")

    target = user_store.find_by_id(user_id)
    if target is None:
        raise NotFoundError("User not found.")
    if target.role == "admin" and user_store.count_admins() <= 1:
        raise ValidationError("Cannot delete the last admin account.", code="last_admin")

    if not user_store.delete(user_id):
        raise NotFoundError("User not found.")
    ended = registry.destroy_user_sessions(user_id)
    logger.info("User %s deleted by admin %s (%d sessions ended)", user_id, current_user.id, ended)
    return Response(status_code=204)
