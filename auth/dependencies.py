"""
auth/dependencies.py -- FastAPI Depends() helpers for the JSON API.

The web admin area is guarded by the AuthGate middleware (fast path). API
endpoints that read or change privileged data use these dependencies
instead, which run the strong path: signature + expiry + live session.

require_session()      -> TokenClaims, or HTTP 401
require_super_admin()  -> fresh User row, or HTTP 401 / 403

require_super_admin() re-reads the user from the store rather than trusting
the token's role claim, so an account demoted or disabled after login loses
access on its next privileged call even though its token still verifies.

Failure mapping:
  no token / bad token / revoked session  -> 401 (re-authenticate)
  store unavailable or timed out          -> 401 "session_unverifiable",
                                             logged separately; never a 403
  valid session, insufficient role        -> 403

Layer rule: no imports from web/. auth/dependencies.py may import from
fastapi because it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, Request
from starlette.concurrency import run_in_threadpool

from auth.errors import SessionNotLive, StoreUnavailable, TokenError
from auth.gate import AuthGate
from auth.models import TokenClaims, User
from auth.policy import ADMIN_SURFACE_ROLE, permits

logger = logging.getLogger("barcomp.auth")


def _unauthorized(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=401, detail={"code": code, "message": message})


async def require_session(request: Request) -> TokenClaims:
    """Require a token whose session is still live. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(claims: TokenClaims = Depends(require_session)): ...
    """
    gate: AuthGate = request.app.state.gate
    token = gate.extract_token(request)
    if not token:
        raise _unauthorized("unauthorized", "Authentication required.")
    try:
        return await gate.verify_strong(token)
    except TokenError as exc:
        raise _unauthorized("invalid_token", "Session token is invalid or expired.") from exc
    except SessionNotLive as exc:
        raise _unauthorized("session_ended", "Session has ended. Please log in again.") from exc
    except StoreUnavailable as exc:
        logger.warning("Strong-path check failed closed for %s: session store unavailable", request.url.path)
        raise _unauthorized("session_unverifiable", "Session could not be verified. Please try again.") from exc


async def require_super_admin(request: Request, claims: TokenClaims = Depends(require_session)) -> User:
    """Require a live session belonging to an active super admin.

    Use as a FastAPI dependency:
        @router.delete("/admin/users/{user_id}")
        async def route(admin: User = Depends(require_super_admin)): ...
    """
    if not permits(claims.role, ADMIN_SURFACE_ROLE):
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Super admin access required."},
        )
    user = await run_in_threadpool(request.app.state.user_store.get_by_id, claims.user_id)
    if user is None or not user.is_active:
        raise _unauthorized("unauthorized", "Authentication required.")
    if not permits(user.role, ADMIN_SURFACE_ROLE):
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Super admin access required."},
        )
    return user
