"""
auth/passwords.py -- Password hashing and constant-time credential checks.

Passwords: bcrypt, used directly rather than through passlib. passlib's
wrap-bug detection builds a >72-byte password which bcrypt 4.x rejects
outright; direct usage has no compatibility shim to break.

The _DUMMY_HASH constant enables timing equalization in authenticate_user()
so response time does not reveal whether an email is registered [C1].

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import bcrypt

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

# bcrypt input limit. Longer passwords are rejected, never truncated.
MAX_PASSWORD_BYTES = 72


def password_too_long(plain: str) -> bool:
    return len(plain.encode("utf-8")) > MAX_PASSWORD_BYTES


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only looks at the first MAX_PASSWORD_BYTES bytes, and bcrypt 5
    raises ValueError for anything longer. Request models reject such
    passwords up front (see password_too_long()), so this never truncates.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Corrupt or non-bcrypt hash in the row, or an over-long login attempt.
        return False


# Computed once at import so the first login attempt is not measurably slower
# than later ones.
_DUMMY_HASH: str = hash_password("barcomp_timing_dummy")


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Check an email/password pair with timing equalization [C1].

    bcrypt always runs, whether or not the email exists:
    - Unknown email: bcrypt runs against _DUMMY_HASH (same cost as a real check)
    - Wrong password: bcrypt runs against the real hash

    Inactive and disabled accounts fail exactly like a wrong password. Returns
    the User on success, None on any failure.
    """
    user = store.get_by_email(email.strip().lower())
    if user is None or not user.hashed_password:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    if not user.is_active:
        return None
    return user
