"""
auth/login.py -- Opening and closing login sessions.

Shared by the JSON API (api/routes/v1/auth.py) and the web form login
(web/routes.py) so both surfaces issue identical tokens, cookies, and
session rows.

Login flow:   credentials -> authenticate_user -> TokenCodec.issue
              -> SessionStore.create -> UserStore.record_login
Logout flow:  token -> TokenCodec.verify -> SessionStore.revoke(user_id, token)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from auth.errors import TokenError
from auth.models import TokenLifetime, User
from auth.sessions import SessionStore
from auth.store import UserStore
from auth.tokens import TokenCodec

logger = logging.getLogger("barcomp.auth")


@dataclass(frozen=True)
class IssuedSession:
    token: str
    expires_at: datetime
    max_age: int


def lifetime_for(remember_me: bool | None) -> TokenLifetime:
    return TokenLifetime.EXTENDED if remember_me else TokenLifetime.SHORT


def open_session(
    codec: TokenCodec,
    sessions: SessionStore,
    users: UserStore,
    user: User,
    lifetime: TokenLifetime,
    origin_address: str | None,
    user_agent: str | None,
) -> IssuedSession:
    """Issue a token for an already-authenticated user and persist its session.

    Raises StoreUnavailable if the session row cannot be written; in that case
    no token is handed out.
    """
    now = datetime.now(timezone.utc)
    token = codec.issue(user, lifetime, now=now)
    expires_at = codec.expiry_for(lifetime, now)
    sessions.create(user.id, token, origin_address, user_agent, expires_at)
    users.record_login(user.id, origin_address)
    logger.info("User %s logged in (%s session) from %s", user.id, lifetime.value, origin_address or "unknown")
    return IssuedSession(token=token, expires_at=expires_at, max_age=codec.ttl_seconds(lifetime))


def close_session(codec: TokenCodec, sessions: SessionStore, token: str | None) -> int:
    """Revoke the session behind token. Returns rows removed.

    An absent, malformed, forged, or expired token has no live session to
    revoke, so it is a successful no-op rather than an error.
    """
    if not token:
        return 0
    try:
        claims = codec.verify(token)
    except TokenError:
        return 0
    removed = sessions.revoke(claims.user_id, token)
    logger.info("User %s logged out (%d session row(s) removed)", claims.user_id, removed)
    return removed
