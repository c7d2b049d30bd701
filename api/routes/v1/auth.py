"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/login     -- email/password login; sets session cookie
  POST /api/v1/auth/logout    -- revokes the session behind the token; always 200
  GET  /api/v1/auth/me        -- strong-path identity check
  POST /api/v1/auth/register  -- self-registration of a `user`-role account
  PUT  /api/v1/auth/profile   -- edit own name, email, avatar, or password

Security:
  [H2] POST /login and POST /register are rate-limited per IP (LOGIN_RATE_LIMIT).
  [C1] authenticate_user() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on every response that carries a token.
  Login failures are one generic 401 whether the email is unknown, the
  password is wrong, or the account is not active.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.concurrency import run_in_threadpool

from api.limiter import limiter, login_rate_limit
from api.models import (
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    ProfileResponse,
    ProfileUpdate,
    RegisterRequest,
    UserSummary,
)
from auth.dependencies import require_session
from auth.errors import SessionNotLive, StoreUnavailable, TokenError
from auth.gate import AuthGate
from auth.login import close_session, lifetime_for, open_session
from auth.models import Role, TokenClaims, User, UserStatus
from auth.passwords import authenticate_user, hash_password, verify_password
from auth.store import UserStore
from auth.tokens import clear_session_cookie, set_session_cookie

logger = logging.getLogger("barcomp.api.auth")

# Auth policy:
# - POST /api/v1/auth/login:     public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/logout:    public -- idempotent; revokes only what the token proves
# - GET  /api/v1/auth/me:        strong path, answered inline (401 body is part of the contract)
# - POST /api/v1/auth/register:  public, gated by SELF_REGISTRATION_ENABLED
# - PUT  /api/v1/auth/profile:   strong path (require_session), any active role
router = APIRouter()


def client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


def _not_authenticated() -> JSONResponse:
    resp = JSONResponse(status_code=401, content={"authenticated": False})
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Login / logout
# ---------------------------------------------------------------------------


@limiter.limit(login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; open a session and set the cookie.

    rememberMe=true issues the extended (30 day) token, otherwise the short
    (1 day) one. On failure nothing is written: no session row, no cookie.
    """
    state = request.app.state
    user_store: UserStore = state.user_store
    user = authenticate_user(user_store, body.email, body.password)
    if user is None:
        logger.info("Failed login attempt from %s", client_ip(request) or "unknown")
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "invalid_credentials", "message": "Invalid email or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    issued = open_session(
        state.codec,
        state.session_store,
        user_store,
        user,
        lifetime_for(body.remember_me),
        client_ip(request),
        request.headers.get("user-agent"),
    )
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(token=issued.token, user=UserSummary.from_user(user)).model_dump(
            mode="json", by_alias=True
        ),
    )
    set_session_cookie(resp, issued.token, issued.max_age, state.settings)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """Revoke the session behind the bearer token or cookie, and clear the cookie.

    Idempotent: a missing, expired, or already-revoked token still gets 200.
    Only a session-store outage turns this into an error (503), because then
    we cannot promise the token is dead.
    """
    state = request.app.state
    gate: AuthGate = state.gate
    close_session(state.codec, state.session_store, gate.extract_token(request))
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump(by_alias=True))
    clear_session_cookie(resp, state.settings)
    return resp


@router.get("/auth/me", response_model=MeResponse)
async def me(request: Request) -> JSONResponse:
    """Return the current user if the token verifies AND its session is live."""
    state = request.app.state
    gate: AuthGate = state.gate
    token = gate.extract_token(request)
    if not token:
        return _not_authenticated()
    try:
        claims = await gate.verify_strong(token)
    except (TokenError, SessionNotLive):
        return _not_authenticated()
    except StoreUnavailable:
        logger.warning("/auth/me could not verify session: session store unavailable")
        return _not_authenticated()

    user = await run_in_threadpool(state.user_store.get_by_id, claims.user_id)
    if user is None or not user.is_active:
        return _not_authenticated()
    return JSONResponse(
        content=MeResponse(authenticated=True, user=UserSummary.from_user(user)).model_dump(
            mode="json", by_alias=True
        )
    )


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


@limiter.limit(login_rate_limit)  # [H2]
@router.post("/auth/register", response_model=MessageResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a `user`-role account. The role is never taken from the request."""
    state = request.app.state
    if not state.settings.self_registration_enabled:
        raise HTTPException(
            status_code=403,
            detail={"code": "registration_disabled", "message": "Self-registration is disabled."},
        )

    user_store: UserStore = state.user_store
    if user_store.get_by_email(body.email) is not None:
        raise HTTPException(
            status_code=400,
            detail={"code": "email_taken", "message": "Email is already registered."},
        )
    if body.username and user_store.get_by_username(body.username) is not None:
        raise HTTPException(
            status_code=400,
            detail={"code": "username_taken", "message": "Username is already taken."},
        )

    new_user = User(
        email=body.email,
        username=body.username,
        full_name=body.full_name,
        hashed_password=hash_password(body.password),
        role=Role.USER,
        status=UserStatus.ACTIVE,
        # No verification mail is sent; accounts are usable immediately.
        email_verified=True,
    )
    try:
        user_id = user_store.create_user(new_user)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": "conflict", "message": "Email or username is already taken."},
        ) from exc

    logger.info("Registered user %s", user_id)
    return JSONResponse(
        status_code=201,
        content=MessageResponse(message="Registration successful.").model_dump(by_alias=True),
    )


# ---------------------------------------------------------------------------
# Self-service profile
# ---------------------------------------------------------------------------


def _bad_request(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=400, detail={"code": code, "message": message})


@router.put("/auth/profile", response_model=ProfileResponse)
def update_profile(
    request: Request,
    body: ProfileUpdate,
    claims: TokenClaims = Depends(require_session),
) -> JSONResponse:
    """Edit the caller's own name, email, avatar, or password.

    A new password requires the current one. Changing it signs out every
    other session of this user; the session making the change stays live.
    The token's email claim is only refreshed at the next login.
    """
    state = request.app.state
    user_store: UserStore = state.user_store
    user = user_store.get_by_id(claims.user_id)
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )

    if body.email and body.email != user.email and user_store.get_by_email(body.email) is not None:
        raise _bad_request("email_taken", "Email already exists.")

    updates: dict = {}
    for field in ("full_name", "email", "avatar"):
        value = getattr(body, field)
        if value is not None and value != getattr(user, field):
            updates[field] = value

    if body.new_password:
        if not body.current_password:
            raise _bad_request("current_password_required", "Current password is required.")
        if not verify_password(body.current_password, user.hashed_password or ""):
            raise _bad_request("invalid_current_password", "Current password is incorrect.")
        updates["hashed_password"] = hash_password(body.new_password)

    if not updates:
        raise _bad_request("no_changes", "No fields to update.")

    try:
        user_store.update_user(user.id, **updates)
    except IntegrityError as exc:
        raise _bad_request("conflict", "Email already exists.") from exc

    if "hashed_password" in updates:
        gate: AuthGate = state.gate
        revoked = state.session_store.revoke_others(user.id, gate.extract_token(request))
        logger.info("User %s changed their password; signed out %d other session(s)", user.id, revoked)

    logger.info("User %s updated their profile (%s)", user.id, ", ".join(sorted(updates)))
    updated = user_store.get_by_id(user.id)
    return JSONResponse(
        content=ProfileResponse(message="Profile updated.", user=UserSummary.from_user(updated)).model_dump(
            mode="json", by_alias=True
        )
    )
