"""
api/routes/v1/users.py -- User administration endpoints (super admin only).

Routes:
  GET    /api/v1/admin/users        -- paginated list; filters role, status, search
  POST   /api/v1/admin/users        -- create a user
  GET    /api/v1/admin/users/{id}   -- user detail with sessions
  PUT    /api/v1/admin/users/{id}   -- partial update
  DELETE /api/v1/admin/users/{id}   -- delete a user

Every route depends on require_super_admin (strong path + fresh role check).

Guards:
  - A super admin cannot change their own role away from super_admin.
  - A super admin cannot deactivate or delete their own account.
  - A password reset, or moving an account off `active`, revokes all of that
    user's sessions so the change takes effect immediately. Deletion does too.
"""

from __future__ import annotations

import logging
import math
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.exc import IntegrityError

from api.models import MessageResponse, Pagination, SessionRow, UserCreate, UserDetail, UserListResponse, UserUpdate
from auth.dependencies import require_super_admin
from auth.models import User, UserStatus, normalize_role, normalize_status
from auth.passwords import hash_password
from auth.policy import is_self_deactivation, is_self_deletion, is_self_demotion
from auth.sessions import SessionStore
from auth.store import UserStore

logger = logging.getLogger("barcomp.api.users")

router = APIRouter()


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "not_found", "message": "User not found."})


def _bad_request(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=400, detail={"code": code, "message": message})


@router.get("/admin/users", response_model=UserListResponse, response_model_by_alias=True)
def list_users(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    role: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = Query(default=None, max_length=100),
    admin: User = Depends(require_super_admin),
) -> UserListResponse:
    """List users newest first. `role` and `status` accept any casing."""
    user_store: UserStore = request.app.state.user_store
    try:
        role_filter = normalize_role(role) if role else None
        status_filter = normalize_status(status) if status else None
    except ValueError as exc:
        raise _bad_request("invalid_filter", "Unknown role or status filter.") from exc

    users, total = user_store.list_users(page=page, limit=limit, role=role_filter, status=status_filter, search=search)
    return UserListResponse(
        users=[UserDetail.from_user(u) for u in users],
        pagination=Pagination(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit)),
    )


@router.post("/admin/users", response_model=UserDetail, response_model_by_alias=True, status_code=201)
def create_user(
    request: Request,
    body: UserCreate,
    admin: User = Depends(require_super_admin),
) -> UserDetail:
    """Create a user with any role. Email and username must both be unused."""
    user_store: UserStore = request.app.state.user_store
    if user_store.get_by_email(body.email) is not None:
        raise _bad_request("email_taken", "Email already exists.")
    if user_store.get_by_username(body.username) is not None:
        raise _bad_request("username_taken", "Username already exists.")

    new_user = User(
        email=body.email,
        username=body.username,
        full_name=body.full_name,
        avatar=body.avatar,
        hashed_password=hash_password(body.password),
        role=body.role,
        status=body.status,
    )
    try:
        user_id = user_store.create_user(new_user)
    except IntegrityError as exc:
        raise _bad_request("conflict", "Email or username already exists.") from exc

    logger.info("Super admin %s created user %s (%s)", admin.id, user_id, body.role.value)
    created = user_store.get_by_id(user_id)
    if created is None:
        raise HTTPException(
            status_code=500,
            detail={"code": "internal_error", "message": "User not found after write."},
        )
    return UserDetail.from_user(created)


@router.get("/admin/users/{user_id}", response_model=UserDetail, response_model_by_alias=True)
def get_user(
    request: Request,
    user_id: int,
    admin: User = Depends(require_super_admin),
) -> UserDetail:
    user_store: UserStore = request.app.state.user_store
    sessions: SessionStore = request.app.state.session_store
    user = user_store.get_by_id(user_id)
    if user is None:
        raise _not_found()
    rows = [
        SessionRow(
            id=s.id,
            ip_address=s.ip_address,
            user_agent=s.user_agent,
            created_at=s.created_at or "",
            expires_at=s.expires_at.isoformat(),
        )
        for s in sessions.list_for_user(user_id)
        if not s.is_expired()
    ]
    return UserDetail.from_user(user, live_sessions=sessions.count_live(user_id), sessions=rows)


@router.put("/admin/users/{user_id}", response_model=UserDetail, response_model_by_alias=True)
def update_user(
    request: Request,
    user_id: int,
    body: UserUpdate,
    admin: User = Depends(require_super_admin),
) -> UserDetail:
    """Partially update a user. Only fields present in the body are changed."""
    user_store: UserStore = request.app.state.user_store
    sessions: SessionStore = request.app.state.session_store

    target = user_store.get_by_id(user_id)
    if target is None:
        raise _not_found()

    if is_self_demotion(admin.id, target.id, body.role):
        raise _bad_request("self_demotion", "You cannot change your own role.")
    if is_self_deactivation(admin.id, target.id, body.status):
        raise _bad_request("self_deactivation", "You cannot deactivate your own account.")

    if body.email and body.email != target.email and user_store.get_by_email(body.email) is not None:
        raise _bad_request("email_taken", "Email already exists.")
    if body.username and body.username != target.username and user_store.get_by_username(body.username) is not None:
        raise _bad_request("username_taken", "Username already exists.")

    updates: dict = {}
    for field in ("email", "username", "full_name", "avatar", "role", "status", "email_verified"):
        value = getattr(body, field)
        if value is not None:
            updates[field] = value
    if body.password:
        updates["hashed_password"] = hash_password(body.password)

    if not updates:
        raise _bad_request("no_changes", "No fields to update.")

    try:
        user_store.update_user(user_id, **updates)
    except IntegrityError as exc:
        raise _bad_request("conflict", "Email or username already exists.") from exc

    if body.password or (body.status is not None and body.status != UserStatus.ACTIVE):
        revoked = sessions.revoke_all(user_id)
        logger.info("Revoked %d session(s) for user %s after credential/status change", revoked, user_id)

    logger.info("Super admin %s updated user %s (%s)", admin.id, user_id, ", ".join(sorted(updates)))
    updated = user_store.get_by_id(user_id)
    if updated is None:
        raise _not_found()
    return UserDetail.from_user(updated)


@router.delete("/admin/users/{user_id}", response_model=MessageResponse, response_model_by_alias=True)
def delete_user(
    request: Request,
    user_id: int,
    admin: User = Depends(require_super_admin),
) -> MessageResponse:
    user_store: UserStore = request.app.state.user_store
    sessions: SessionStore = request.app.state.session_store

    target = user_store.get_by_id(user_id)
    if target is None:
        raise _not_found()
    if is_self_deletion(admin.id, target.id):
        raise _bad_request("self_deletion", "You cannot delete your own account.")

    sessions.revoke_all(user_id)
    user_store.delete_user(user_id)
    logger.info("Super admin %s deleted user %s", admin.id, user_id)
    return MessageResponse(message="User deleted successfully.")
