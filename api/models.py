"""
API request and response models for Barcomp REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire format is camelCase (fullName, rememberMe, lastLoginAt) to match the
admin front end. Requests also accept snake_case field names.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import Role, User, UserStatus, normalize_role, normalize_status
from auth.passwords import MAX_PASSWORD_BYTES, password_too_long

_EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
_USERNAME_PATTERN = r"^[A-Za-z0-9_.-]{3,50}$"


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _RequestModel(_ApiModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    @field_validator("email", mode="after", check_fields=False)
    @classmethod
    def lower_email(cls, value: Optional[str]) -> Optional[str]:
        return value.lower() if value else value

    @field_validator("role", mode="before", check_fields=False)
    @classmethod
    def canonical_role(cls, value):
        """Accept any casing ("SUPER_ADMIN", "Super_Admin") and store the canonical form."""
        return normalize_role(value) if value is not None else None

    @field_validator("status", mode="before", check_fields=False)
    @classmethod
    def canonical_status(cls, value):
        return normalize_status(value) if value is not None else None


class _PasswordWriteModel(_RequestModel):
    """Request bodies that set a password. bcrypt cannot hash more than 72 bytes."""

    @field_validator("password", "new_password", mode="after", check_fields=False)
    @classmethod
    def fits_bcrypt(cls, value: Optional[str]) -> Optional[str]:
        if value and password_too_long(value):
            raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded.")
        return value


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------


class LoginRequest(_RequestModel):
    """Request body for POST /api/v1/auth/login."""

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=128)
    remember_me: bool = False


class RegisterRequest(_PasswordWriteModel):
    """Request body for POST /api/v1/auth/register. Always creates a `user`-role account."""

    email: str = Field(pattern=_EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=8, max_length=128)
    full_name: str = Field(min_length=1, max_length=255)
    username: Optional[str] = Field(default=None, pattern=_USERNAME_PATTERN)


# ---------------------------------------------------------------------------
# Auth -- responses
# ---------------------------------------------------------------------------


class UserSummary(_ApiModel):
    """The user object returned by login and /me."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: int
    email: str
    full_name: str
    username: Optional[str] = None
    avatar: Optional[str] = None
    role: Role

    @classmethod
    def from_user(cls, user: User) -> "UserSummary":
        return cls(
            id=user.id,
            email=user.email,
            full_name=user.full_name,
            username=user.username,
            avatar=user.avatar,
            role=user.role,
        )


class LoginResponse(_ApiModel):
    token: str
    user: UserSummary


class MeResponse(_ApiModel):
    authenticated: bool
    user: Optional[UserSummary] = None


class MessageResponse(_ApiModel):
    success: bool = True
    message: str


# ---------------------------------------------------------------------------
# Self-service profile
# ---------------------------------------------------------------------------


class ProfileUpdate(_PasswordWriteModel):
    """Request body for PUT /api/v1/auth/profile.

    Role and status are not editable here. newPassword requires
    currentPassword.
    """

    full_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[str] = Field(default=None, pattern=_EMAIL_PATTERN, max_length=255)
    avatar: Optional[str] = Field(default=None, max_length=500)
    current_password: Optional[str] = Field(default=None, max_length=128)
    new_password: Optional[str] = Field(default=None, min_length=8, max_length=128)


class ProfileResponse(_ApiModel):
    success: bool = True
    message: str
    user: UserSummary


# ---------------------------------------------------------------------------
# User administration
# ---------------------------------------------------------------------------


class UserCreate(_PasswordWriteModel):
    """Request body for POST /api/v1/admin/users."""

    email: str = Field(pattern=_EMAIL_PATTERN, max_length=255)
    username: str = Field(pattern=_USERNAME_PATTERN)
    password: str = Field(min_length=8, max_length=128)
    full_name: str = Field(min_length=1, max_length=255)
    avatar: Optional[str] = Field(default=None, max_length=500)
    role: Role = Role.USER
    status: UserStatus = UserStatus.ACTIVE


class UserUpdate(_PasswordWriteModel):
    """Request body for PUT /api/v1/admin/users/{id}. Every field is optional."""

    email: Optional[str] = Field(default=None, pattern=_EMAIL_PATTERN, max_length=255)
    username: Optional[str] = Field(default=None, pattern=_USERNAME_PATTERN)
    password: Optional[str] = Field(default=None, min_length=8, max_length=128)
    full_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    avatar: Optional[str] = Field(default=None, max_length=500)
    role: Optional[Role] = None
    status: Optional[UserStatus] = None
    email_verified: Optional[bool] = None


class SessionRow(_ApiModel):
    id: int
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: str
    expires_at: str


class UserDetail(_ApiModel):
    """Full user record as seen by a super admin. Never includes the password hash."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: int
    email: str
    username: Optional[str]
    full_name: str
    avatar: Optional[str]
    role: Role
    status: UserStatus
    email_verified: bool
    last_login_at: Optional[str]
    last_login_ip: Optional[str]
    login_count: int
    created_at: str
    updated_at: str
    live_sessions: Optional[int] = None
    sessions: Optional[list[SessionRow]] = None

    @classmethod
    def from_user(cls, user: User, **extra) -> "UserDetail":
        return cls(
            id=user.id,
            email=user.email,
            username=user.username,
            full_name=user.full_name,
            avatar=user.avatar,
            role=user.role,
            status=user.status,
            email_verified=user.email_verified,
            last_login_at=user.last_login_at,
            last_login_ip=user.last_login_ip,
            login_count=user.login_count,
            created_at=user.created_at or "",
            updated_at=user.updated_at or "",
            **extra,
        )


class Pagination(_ApiModel):
    page: int
    limit: int
    total: int
    total_pages: int


class UserListResponse(_ApiModel):
    users: list[UserDetail]
    pagination: Pagination


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
