"""
web/routes.py -- Jinja2 template routes for the admin login flow.

These pages are the fixed surfaces the AuthGate redirects to. They share
app.state with the API routes (same stores, codec, gate) but return HTML.

Routes:
  GET  /admin/login   -- login form (allow-listed by the gate)
  POST /admin/login   -- handle form login, set cookie, redirect to /admin
  POST /admin/logout  -- revoke session, clear cookie, redirect to login
  GET  /admin         -- admin landing page (gate-protected, super admin)
  GET  /unauthorized  -- "signed in, but not allowed" page
"""

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from api.limiter import limiter, login_rate_limit
from auth.errors import StoreUnavailable, TokenError
from auth.gate import AuthGate, identity_from_request
from auth.login import close_session, lifetime_for, open_session
from auth.passwords import authenticate_user
from auth.policy import ADMIN_SURFACE_ROLE, permits
from auth.tokens import clear_session_cookie, set_session_cookie

logger = logging.getLogger("barcomp.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
router = APIRouter()

# Whitelist mapping for ?error= query params on /admin/login [M3].
# The raw query param is NEVER passed to templates -- only the message from
# this dict is. Prevents reflected XSS via crafted error query strings.
_ERROR_MESSAGES: dict[str, str] = {
    "invalid_credentials": "Invalid email or password.",
    "session_unavailable": "We could not start your session. Please try again.",
}

_ADMIN_HOME = "/admin"


def _safe_next(next_url: Optional[str]) -> str:
    """Validate a post-login redirect target. Only accept relative paths. [C2]

    Rejects absolute URLs and protocol-relative ones ("//attacker.com"),
    either of which would bounce the user off-site after login.
    """
    if next_url and next_url.startswith("/") and not next_url.startswith("//"):
        return next_url
    return _ADMIN_HOME


@router.get("/admin/login", response_class=HTMLResponse)
def login_form(request: Request) -> HTMLResponse:
    """Render the login form. Already signed-in super admins go straight to /admin."""
    gate: AuthGate = request.app.state.gate
    token = gate.extract_token(request)
    if token:
        try:
            claims = gate.codec.verify(token)
        except TokenError:
            claims = None
        if claims is not None and permits(claims.role, ADMIN_SURFACE_ROLE):
            return RedirectResponse(_ADMIN_HOME, status_code=302)

    error_msg = _ERROR_MESSAGES.get(request.query_params.get("error", ""))
    return templates.TemplateResponse(
        request,
        "login.html",
        {"error_msg": error_msg, "next": _safe_next(request.query_params.get("next"))},
    )


@limiter.limit(login_rate_limit)  # [H2] shared counter with the API login
@router.post("/admin/login", response_class=HTMLResponse)
def login_post(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    remember_me: bool = Form(False),
    next_url: Optional[str] = Form(None, alias="next"),
) -> RedirectResponse:
    """Handle the login form. Failure never says which half was wrong."""
    state = request.app.state
    user = authenticate_user(state.user_store, email, password)  # [C1] timing equalization
    if user is None:
        return RedirectResponse("/admin/login?error=invalid_credentials", status_code=302)

    try:
        issued = open_session(
            state.codec,
            state.session_store,
            state.user_store,
            user,
            lifetime_for(remember_me),
            request.client.host if request.client else None,
            request.headers.get("user-agent"),
        )
    except StoreUnavailable:
        logger.warning("Web login for user %s failed: session store unavailable", user.id)
        return RedirectResponse("/admin/login?error=session_unavailable", status_code=302)
    resp = RedirectResponse(_safe_next(next_url), status_code=302)  # [C2]
    set_session_cookie(resp, issued.token, issued.max_age, state.settings)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/admin/logout")
def logout(request: Request) -> RedirectResponse:
    """Revoke the current session, clear the cookie, and return to the login page.

    A store outage still signs the browser out locally: the cookie is cleared
    and the session row lapses at its own expiry.
    """
    state = request.app.state
    try:
        close_session(state.codec, state.session_store, state.gate.extract_token(request))
    except StoreUnavailable:
        logger.warning("Web logout could not revoke the session: session store unavailable")
    resp = RedirectResponse(state.settings.login_path, status_code=302)
    clear_session_cookie(resp, state.settings)
    return resp


@router.get("/admin", response_class=HTMLResponse)
def admin_home(request: Request) -> HTMLResponse:
    """Admin landing page. The gate has already verified the caller and attached identity."""
    identity = identity_from_request(request)
    return templates.TemplateResponse(request, "admin.html", {"identity": identity})


@router.get("/unauthorized", response_class=HTMLResponse)
def unauthorized(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(request, "unauthorized.html", {}, status_code=403)
