"""
auth/models.py -- Domain dataclasses and enums for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and routes
do the work; these types only own the shape of users, sessions, and claims.

Role casing: the stored form, the signed form, and the compared form are all
the lower-case Role value. Anything arriving from outside (env, request body,
a legacy row written as "SUPER_ADMIN") goes through normalize_role() first.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


class UserStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    DISABLED = "disabled"


class TokenLifetime(str, Enum):
    """Which of the two supported token lifetimes to issue.

    SHORT is the default login; EXTENDED is selected by "remember me".
    The number of seconds behind each value comes from Settings.
    """

    SHORT = "short"
    EXTENDED = "extended"


def normalize_role(value: str | Role) -> Role:
    """Return the canonical Role for value, ignoring case and surrounding whitespace.

    Raises ValueError for anything that is not a known role.
    """
    if isinstance(value, Role):
        return value
    if not isinstance(value, str):
        raise ValueError(f"Role must be a string, got {type(value).__name__}")
    return Role(value.strip().lower())


def normalize_status(value: str | UserStatus) -> UserStatus:
    if isinstance(value, UserStatus):
        return value
    return UserStatus(str(value).strip().lower())


@dataclass
class User:
    """A person who can log in to the CMS.

    hashed_password is a bcrypt hash and is never serialized into a response.
    username is optional for accounts created by the bootstrap CLI, but when
    present it is unique, as is email.
    """

    email: str
    full_name: str
    role: Role = Role.USER
    status: UserStatus = UserStatus.ACTIVE
    id: int | None = None
    username: str | None = None
    hashed_password: str | None = None
    avatar: str | None = None
    email_verified: bool = False
    last_login_at: str | None = None
    last_login_ip: str | None = None
    login_count: int = 0
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE


@dataclass
class Session:
    """One live login (one device/browser) belonging to a user.

    token_hash is HMAC-SHA256(SECRET_KEY, token). The raw token only ever
    lives in the client's cookie or Authorization header.
    """

    user_id: int
    token_hash: str
    expires_at: datetime
    id: int | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: str | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.expires_at <= now


@dataclass(frozen=True)
class TokenClaims:
    """The verified contents of a session token."""

    user_id: int
    role: Role
    email: str
    issued_at: datetime
    expires_at: datetime

    def identity(self) -> Identity:
        return Identity(user_id=self.user_id, role=self.role, email=self.email)


@dataclass(frozen=True)
class Identity:
    """What the auth gate hands to downstream handlers once a request is verified."""

    user_id: int
    role: Role
    email: str
