"""
auth/tokens.py -- Session token codec, token hashing, and cookie helpers.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry sub (user id), role, email, iat,
       and exp. The codec is constructed with an explicit secret so the
       signing key is never an ambient global -- the app builds one from
       Settings at startup, tests build one from a fixed string.

  Verification order: the payload is parsed and its exp is checked BEFORE
       the signature. An expired token therefore reports TokenExpired whether
       or not its signature is intact; either way it is rejected. Only a
       non-expired token reaches the signature check, where any failure --
       including a damaged signature segment -- is InvalidSignature.

  Failure contract: verify() raises TokenError subclasses and nothing else.
       Whatever an attacker puts in a cookie, the caller only ever has to
       catch TokenError.

  Session token hashing: the session store keeps HMAC-SHA256(SECRET_KEY,
       token), never the token itself. A leaked sessions table cannot be
       replayed without also knowing SECRET_KEY. Deterministic hashing gives
       an indexed lookup; bcrypt's slowness is unnecessary for a 256-bit-plus
       signed value.

Layer rule: no imports from api/ or web/. Import from core/ is allowed only
for the Settings type.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from jose import JWTError, jwt
from jose.exceptions import JWTClaimsError
from jose.utils import base64url_decode

from auth.errors import InvalidSignature, MalformedToken, TokenExpired
from auth.models import TokenClaims, TokenLifetime, normalize_role

if TYPE_CHECKING:
    from auth.models import User
    from core.config import Settings

logger = logging.getLogger("barcomp.auth.tokens")

_ALGORITHM = "HS256"
_REQUIRED_CLAIMS = ("sub", "role", "email", "iat", "exp")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_timestamp(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# ---------------------------------------------------------------------------
# Token codec
# ---------------------------------------------------------------------------


class TokenCodec:
    """Issues and verifies signed session tokens.

    Usage:
        codec = TokenCodec.from_settings(settings)
        token = codec.issue(user, TokenLifetime.EXTENDED)
        claims = codec.verify(token)      # raises TokenError on failure
    """

    def __init__(
        self,
        secret_key: str,
        short_ttl_seconds: int = 24 * 60 * 60,
        extended_ttl_seconds: int = 30 * 24 * 60 * 60,
    ) -> None:
        if not secret_key:
            raise ValueError("TokenCodec requires a non-empty secret key.")
        self._secret_key = secret_key
        self._ttls = {
            TokenLifetime.SHORT: short_ttl_seconds,
            TokenLifetime.EXTENDED: extended_ttl_seconds,
        }

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenCodec:
        return cls(
            secret_key=settings.secret_key,
            short_ttl_seconds=settings.token_short_ttl_seconds,
            extended_ttl_seconds=settings.token_extended_ttl_seconds,
        )

    def ttl_seconds(self, lifetime: TokenLifetime = TokenLifetime.SHORT) -> int:
        return self._ttls[TokenLifetime(lifetime)]

    def expiry_for(self, lifetime: TokenLifetime = TokenLifetime.SHORT, now: datetime | None = None) -> datetime:
        now = now or _utcnow()
        return now.replace(microsecond=0) + timedelta(seconds=self.ttl_seconds(lifetime))

    def issue(self, user: User, lifetime: TokenLifetime = TokenLifetime.SHORT, now: datetime | None = None) -> str:
        """Encode a signed token for user.

        Pure: the result depends only on the user snapshot, the lifetime, the
        secret, and `now`. iat/exp are whole seconds, as JWT requires.
        """
        if user.id is None:
            raise ValueError("Cannot issue a token for a user without an id.")
        now = (now or _utcnow()).replace(microsecond=0)
        expires_at = self.expiry_for(lifetime, now)
        payload = {
            "sub": str(user.id),
            "role": normalize_role(user.role).value,
            "email": user.email,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def verify(self, token: str, now: datetime | None = None) -> TokenClaims:
        """Fast-path verification: structure, expiry, then signature.

        No persistence lookup happens here; see AuthGate.verify_strong() for
        the revocation-aware check.
        """
        now = now or _utcnow()
        payload = self._peek(token)

        if not _is_timestamp(payload.get("exp")):
            raise MalformedToken("exp claim missing or not a timestamp")
        if payload["exp"] <= now.timestamp():
            raise TokenExpired("token expired")

        try:
            # Expiry was already checked above against the injected clock.
            verified = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTClaimsError as exc:
            raise MalformedToken(str(exc)) from exc
        except JWTError as exc:
            raise InvalidSignature(str(exc)) from exc

        return _claims_from_payload(verified)

    @staticmethod
    def _peek(token: str) -> dict:
        """Decode header and payload without checking the signature.

        Only used to classify failures; nothing returned from here is trusted
        until jwt.decode() has verified the signature.
        """
        if not isinstance(token, str) or not token:
            raise MalformedToken("token is empty")
        parts = token.split(".")
        if len(parts) != 3 or not all(parts):
            raise MalformedToken("token must have three non-empty segments")
        try:
            header = json.loads(base64url_decode(parts[0].encode("ascii")))
            payload = json.loads(base64url_decode(parts[1].encode("ascii")))
        except ValueError as exc:
            # binascii.Error, JSONDecodeError and UnicodeError are all ValueErrors.
            raise MalformedToken("token header or payload is not base64url JSON") from exc
        if not isinstance(header, dict) or not isinstance(payload, dict):
            raise MalformedToken("token header and payload must be JSON objects")
        return payload


def _claims_from_payload(payload: dict) -> TokenClaims:
    missing = [name for name in _REQUIRED_CLAIMS if name not in payload]
    if missing:
        raise MalformedToken(f"missing claims: {', '.join(missing)}")

    sub = payload["sub"]
    if not isinstance(sub, str) or not (sub.isascii() and sub.isdigit()):
        raise MalformedToken("sub must be a numeric string")
    try:
        role = normalize_role(payload["role"])
    except ValueError as exc:
        raise MalformedToken("unknown role") from exc
    email = payload["email"]
    if not isinstance(email, str) or not email:
        raise MalformedToken("email claim must be a non-empty string")
    if not _is_timestamp(payload["iat"]):
        raise MalformedToken("iat must be a timestamp")

    return TokenClaims(
        user_id=int(sub),
        role=role,
        email=email,
        issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    )


# ---------------------------------------------------------------------------
# Session token hashing
# ---------------------------------------------------------------------------


def hash_session_token(secret_key: str, token: str) -> str:
    """Return HMAC-SHA256(secret_key, token) as a hex string."""
    return hmac.new(secret_key.encode(), token.encode(), hashlib.sha256).hexdigest()


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, token: str, max_age: int, settings: Settings) -> None:
    """Write the session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="strict": never sent on cross-site requests, including top-level
        navigations -- the admin area has no cross-site entry points.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches the token TTL so cookie and token expire together.
    """
    response.set_cookie(
        settings.cookie_name,
        value=token,
        max_age=max_age,
        path="/",
        httponly=True,
        samesite="strict",
        secure=settings.secure_cookies,
    )


def clear_session_cookie(response, settings: Settings) -> None:
    """Expire the session cookie with the same attributes it was set with."""
    response.delete_cookie(
        settings.cookie_name,
        path="/",
        httponly=True,
        samesite="strict",
        secure=settings.secure_cookies,
    )
