"""
auth/sessions.py -- Persisted, revocable login sessions.

The token codec can only say "we signed this and its own exp has not
passed". Whether the login is still live -- not logged out, not revoked by an
admin -- is answered here, and only here.

Storage:
  token_hash = HMAC-SHA256(SECRET_KEY, token). The raw token is never stored.
  expires_at is a REAL epoch timestamp so "still live" is a single indexed
  numeric comparison.

  token_hash is indexed but NOT unique: two logins by the same user within the
  same second with the same lifetime produce byte-identical tokens, and both
  rows are legitimate.

Revocation is keyed by (user_id, token_hash). Matching on the token alone
would let a caller who somehow guessed a token value revoke a session that
belongs to a different account.

Failure semantics:
  Connection-level database failures surface as StoreUnavailable. They are
  never folded into "not live" -- the caller decides whether to fail closed,
  and logs it as an infrastructure problem rather than a bad credential.

Expiry is lazy: is_live() ignores expired rows. purge_expired() deletes them
and is driven by the API's background purge loop and the purge-sessions CLI.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, Float, Index, Integer, MetaData, String, Table, Text, and_, func, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DisconnectionError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from auth.errors import StoreUnavailable
from auth.models import Session
from auth.store import create_store_engine
from auth.tokens import hash_session_token

logger = logging.getLogger("barcomp.auth.sessions")

_UNAVAILABLE_ERRORS = (OperationalError, InterfaceError, DisconnectionError, PoolTimeoutError)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("token_hash", String(64), nullable=False),
    Column("ip_address", String(64)),
    Column("user_agent", Text),
    Column("expires_at", Float, nullable=False),
    Column("created_at", String(32), nullable=False),
    Index("ix_sessions_user_token", "user_id", "token_hash"),
    Index("ix_sessions_expires_at", "expires_at"),
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore:
    """Repository for Session rows.

    Usage:
        sessions = SessionStore(db_url, secret_key)
        sessions.create(user.id, token, "203.0.113.9", "Mozilla/5.0", expires_at)
        sessions.is_live(user.id, token)   # True
        sessions.revoke(user.id, token)    # 1
    """

    def __init__(self, db_url: str, secret_key: str) -> None:
        self._secret_key = secret_key
        self.engine: Engine = create_store_engine(db_url)
        _metadata.create_all(self.engine)

    @contextmanager
    def _connect(self, operation: str) -> Iterator[Connection]:
        try:
            with self.engine.connect() as conn:
                yield conn
        except _UNAVAILABLE_ERRORS as exc:
            logger.warning("Session store unavailable during %s: %s", operation, exc.__class__.__name__)
            raise StoreUnavailable(f"session store unavailable during {operation}") from exc

    def _hash(self, token: str) -> str:
        return hash_session_token(self._secret_key, token)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(
        self,
        user_id: int,
        token: str,
        origin_address: str | None,
        user_agent: str | None,
        expires_at: datetime,
    ) -> int:
        """Persist a new session row and return its id."""
        with self._connect("create") as conn:
            result = conn.execute(
                _sessions.insert().values(
                    user_id=user_id,
                    token_hash=self._hash(token),
                    ip_address=origin_address,
                    user_agent=(user_agent or "")[:512] or None,
                    expires_at=expires_at.timestamp(),
                    created_at=_utcnow().isoformat(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def revoke(self, user_id: int, token: str) -> int:
        """Delete the session(s) matching both user_id and token. Returns rows removed.

        Zero rows is not an error: logging out twice, or logging out a session
        that already expired and was purged, is a no-op.
        """
        with self._connect("revoke") as conn:
            result = conn.execute(
                _sessions.delete().where(
                    and_(_sessions.c.user_id == user_id, _sessions.c.token_hash == self._hash(token))
                )
            )
            conn.commit()
        return result.rowcount

    def revoke_all(self, user_id: int) -> int:
        """Delete every session for user_id. Used on deletion, disabling, and password reset."""
        with self._connect("revoke_all") as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def revoke_others(self, user_id: int, keep_token: str) -> int:
        """Delete every session for user_id except the one behind keep_token.

        Used when a user changes their own password: other devices are signed
        out, the device making the change stays signed in.
        """
        with self._connect("revoke_others") as conn:
            result = conn.execute(
                _sessions.delete().where(
                    and_(_sessions.c.user_id == user_id, _sessions.c.token_hash != self._hash(keep_token))
                )
            )
            conn.commit()
        return result.rowcount

    def purge_expired(self, now: datetime | None = None) -> int:
        """Delete sessions whose expiry has passed. Returns rows removed."""
        cutoff = (now or _utcnow()).timestamp()
        with self._connect("purge_expired") as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= cutoff))
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_live(self, user_id: int, token: str, now: datetime | None = None) -> bool:
        """True if a matching session exists and has not expired."""
        cutoff = (now or _utcnow()).timestamp()
        with self._connect("is_live") as conn:
            row = conn.execute(
                select(_sessions.c.id)
                .where(
                    and_(
                        _sessions.c.user_id == user_id,
                        _sessions.c.token_hash == self._hash(token),
                        _sessions.c.expires_at > cutoff,
                    )
                )
                .limit(1)
            ).fetchone()
        return row is not None

    def count_live(self, user_id: int, now: datetime | None = None) -> int:
        cutoff = (now or _utcnow()).timestamp()
        with self._connect("count_live") as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_sessions)
                .where(and_(_sessions.c.user_id == user_id, _sessions.c.expires_at > cutoff))
            ).scalar()
        return result or 0

    def list_for_user(self, user_id: int) -> list[Session]:
        """Return all stored sessions for user_id, newest first, expired ones included."""
        with self._connect("list_for_user") as conn:
            rows = conn.execute(
                _sessions.select().where(_sessions.c.user_id == user_id).order_by(_sessions.c.id.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        expires_at=datetime.fromtimestamp(row.expires_at, tz=timezone.utc),
        created_at=row.created_at,
    )
