"""
auth/gate.py -- Request interceptor for the admin surface.

Every request passes through AuthGate.dispatch() (wired as an
@app.middleware("http") hook in api/main.py). For paths under a protected
prefix the gate runs a fixed sequence, stopping at the first failure:

  ExtractToken  cookie, then Authorization: Bearer        -> NO_TOKEN
  VerifyFast    TokenCodec.verify (structure/exp/sig)      -> INVALID_TOKEN
  Authorize     policy.permits(role, required_role)        -> FORBIDDEN
  Allow         attach identity, forward to the handler

Outcomes map to exactly three responses:
  NO_TOKEN       302 -> login path
  INVALID_TOKEN  302 -> login path, session cookie deleted
  FORBIDDEN      302 -> unauthorized path (credential fine, privilege not)

The routing gate deliberately uses the fast path only: no database round
trip stands between a browser and a page render. Privileged mutations go
through verify_strong(), which adds the session-store lookup so a logged-out
token stops working immediately.

Identity propagation: on ALLOW the verified user id, role, and email are
written to request.state.identity and to x-user-id / x-user-role /
x-user-email request headers. Those headers are stripped from EVERY incoming
request first, protected or not, so a client can never forge them.

Fail closed: any unexpected exception while evaluating maps to NO_TOKEN.
Exceptions raised by the downstream handler are not the gate's business
and propagate normally.

The gate holds no per-request state; one instance serves all requests.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from fastapi import Request
from fastapi.responses import RedirectResponse, Response

from auth.errors import Forbidden, NoToken, SessionNotLive, StoreUnavailable, TokenError
from auth.models import Identity, TokenClaims
from auth.policy import is_public, permits, required_role_for
from auth.sessions import SessionStore
from auth.tokens import TokenCodec, clear_session_cookie
from core.config import Settings

logger = logging.getLogger("barcomp.auth.gate")

_IDENTITY_HEADERS = (b"x-user-id", b"x-user-role", b"x-user-email")


class GateOutcome(str, Enum):
    ALLOW = "allow"
    NO_TOKEN = "no_token"
    INVALID_TOKEN = "invalid_token"
    FORBIDDEN = "forbidden"


@dataclass(frozen=True)
class GateDecision:
    outcome: GateOutcome
    claims: TokenClaims | None = None
    reason: str | None = None

    @property
    def allowed(self) -> bool:
        return self.outcome == GateOutcome.ALLOW


class AuthGate:
    """Fast-path request gate plus the strong-path verifier.

    Usage:
        gate = AuthGate(settings, TokenCodec.from_settings(settings), session_store)
        app.state.gate = gate

        @app.middleware("http")
        async def auth_gate(request, call_next):
            return await request.app.state.gate.dispatch(request, call_next)
    """

    def __init__(self, settings: Settings, codec: TokenCodec, sessions: SessionStore) -> None:
        self.settings = settings
        self.codec = codec
        self.sessions = sessions

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def protects(self, path: str) -> bool:
        if is_public(path, self.settings.public_paths):
            return False
        return required_role_for(path, self.settings.protected_prefixes) is not None

    def extract_token(self, request: Request) -> str | None:
        """Read the session token: cookie first (browser), then Bearer header (API clients)."""
        token = request.cookies.get(self.settings.cookie_name)
        if token:
            return token
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            return auth_header[7:].strip() or None
        return None

    def evaluate(self, request: Request, now: datetime | None = None) -> GateDecision:
        """Run the fast-path state machine for one request. Never raises."""
        try:
            return self._evaluate(request, now)
        except Exception:
            logger.exception("Auth gate failed evaluating %s; failing closed", request.url.path)
            return GateDecision(GateOutcome.NO_TOKEN, reason="gate_error")

    def _evaluate(self, request: Request, now: datetime | None) -> GateDecision:
        required = required_role_for(request.url.path, self.settings.protected_prefixes)

        token = self.extract_token(request)
        if not token:
            return GateDecision(GateOutcome.NO_TOKEN, reason=NoToken.code)

        try:
            claims = self.codec.verify(token, now)
        except TokenError as exc:
            return GateDecision(GateOutcome.INVALID_TOKEN, reason=exc.code)

        if not permits(claims.role, required):
            return GateDecision(GateOutcome.FORBIDDEN, claims=claims, reason=Forbidden.code)

        return GateDecision(GateOutcome.ALLOW, claims=claims)

    def respond(self, decision: GateDecision) -> Response:
        """Turn a denying decision into its redirect."""
        if decision.outcome == GateOutcome.FORBIDDEN:
            return RedirectResponse(self.settings.unauthorized_path, status_code=302)
        resp = RedirectResponse(self.settings.login_path, status_code=302)
        if decision.outcome == GateOutcome.INVALID_TOKEN:
            # Stop the browser from resubmitting a dead token on every request.
            clear_session_cookie(resp, self.settings)
        resp.headers["Cache-Control"] = "no-store"
        return resp

    # ------------------------------------------------------------------
    # Middleware entry point
    # ------------------------------------------------------------------

    async def dispatch(self, request: Request, call_next) -> Response:
        _strip_identity_headers(request)
        path = request.url.path
        if not self.protects(path):
            return await call_next(request)

        decision = self.evaluate(request)
        if not decision.allowed:
            logger.info("Gate denied %s %s (%s)", request.method, path, decision.reason)
            return self.respond(decision)

        _attach_identity(request, decision.claims.identity())
        return await call_next(request)

    # ------------------------------------------------------------------
    # Strong path
    # ------------------------------------------------------------------

    async def verify_strong(self, token: str, now: datetime | None = None) -> TokenClaims:
        """Fast path plus a session-store check, for security-sensitive operations.

        Raises:
            TokenError:       the token itself is bad (see TokenCodec.verify).
            SessionNotLive:   signature fine, but the session was revoked or expired.
            StoreUnavailable: the store errored or did not answer within
                              SESSION_LOOKUP_TIMEOUT_SECONDS.
        """
        claims = self.codec.verify(token, now)

        timeout = self.settings.session_lookup_timeout_seconds
        loop = asyncio.get_running_loop()
        lookup = functools.partial(self.sessions.is_live, claims.user_id, token, now)
        try:
            live = await asyncio.wait_for(loop.run_in_executor(None, lookup), timeout=timeout)
        except asyncio.TimeoutError as exc:
            logger.warning("Session lookup timed out after %.2fs for user %s", timeout, claims.user_id)
            raise StoreUnavailable("session lookup timed out") from exc

        if not live:
            raise SessionNotLive("session revoked or expired")
        return claims


# ---------------------------------------------------------------------------
# Identity propagation
# ---------------------------------------------------------------------------


def _strip_identity_headers(request: Request) -> None:
    headers = request.scope.get("headers") or []
    request.scope["headers"] = [(k, v) for k, v in headers if k.lower() not in _IDENTITY_HEADERS]


def _attach_identity(request: Request, identity: Identity) -> None:
    request.state.identity = identity
    request.scope["headers"] = list(request.scope.get("headers") or []) + [
        (b"x-user-id", str(identity.user_id).encode("latin-1")),
        (b"x-user-role", identity.role.value.encode("latin-1")),
        (b"x-user-email", identity.email.encode("utf-8")),
    ]


def identity_from_request(request: Request) -> Identity | None:
    """Return the identity the gate attached to this request, if any."""
    return getattr(request.state, "identity", None)
