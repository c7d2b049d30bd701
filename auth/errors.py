"""
auth/errors.py -- Failure taxonomy for token verification and session checks.

Every failure the auth layer can produce for attacker-controlled input is one
of these classes. The gate and the FastAPI dependencies catch AuthError and
turn it into a redirect or a 401/403; nothing here ever reaches a client as a
stack trace.

  AuthError
    NoToken            -- request carried no session token
    TokenError         -- token present but unusable (fast path)
      MalformedToken   -- not decodable, or claims missing / ill-typed
      InvalidSignature -- signature does not verify against our secret
      TokenExpired     -- embedded expiry is in the past
    Forbidden          -- verified, but the role is not sufficient
    SessionNotLive     -- signature fine, but the session was revoked or expired
    StoreUnavailable   -- the session store could not answer (error or timeout)
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class. `code` is the stable machine-readable name used in logs and API errors."""

    code = "auth_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)


class NoToken(AuthError):
    code = "no_token"


class TokenError(AuthError):
    code = "invalid_token"


class MalformedToken(TokenError):
    code = "malformed"


class InvalidSignature(TokenError):
    code = "invalid_signature"


class TokenExpired(TokenError):
    code = "expired"


class Forbidden(AuthError):
    code = "forbidden"


class SessionNotLive(AuthError):
    code = "session_not_live"


class StoreUnavailable(AuthError):
    code = "store_unavailable"
