"""
auth/policy.py -- Role policy for the admin surface and user administration.

The admin area is a single-tier gate: only super_admin gets in. There is no
role lattice -- admin does not inherit anything from super_admin, and user
gets nothing. If finer-grained rules are ever needed, permits() is the one
place to turn into a rank comparison or a per-resource allow-set.

All functions here are pure: no I/O, no request objects, no clock.
"""

from __future__ import annotations

from auth.models import Role, UserStatus, normalize_role, normalize_status

ADMIN_SURFACE_ROLE = Role.SUPER_ADMIN


def _coerce(role) -> Role | None:
    if role is None:
        return None
    try:
        return normalize_role(role)
    except ValueError:
        return None


def permits(role: Role | str | None, required_role: Role | str | None) -> bool:
    """Return True if `role` may access a resource that requires `required_role`.

    - No requirement: everyone, including anonymous, is permitted.
    - Anonymous (role None) or an unrecognised role string: denied.
    - Otherwise the normalised roles must match exactly.
    """
    if required_role is None:
        return True
    actual = _coerce(role)
    required = _coerce(required_role)
    if actual is None or required is None:
        return False
    return actual == required


def _under(path: str, prefix: str) -> bool:
    prefix = prefix.rstrip("/") or "/"
    return path == prefix or path.startswith(prefix + "/")


def required_role_for(path: str, protected_prefixes: list[str]) -> Role | None:
    """Return the role a path requires: ADMIN_SURFACE_ROLE under a protected prefix, else None."""
    if any(_under(path, prefix) for prefix in protected_prefixes):
        return ADMIN_SURFACE_ROLE
    return None


def is_public(path: str, public_paths: list[str]) -> bool:
    """True if path is, or sits below, one of the allow-listed paths."""
    return any(_under(path, public) for public in public_paths)


def is_self_demotion(actor_id: int, target_id: int, new_role: Role | str | None) -> bool:
    """True if a super admin is trying to move their own account off super_admin."""
    if actor_id != target_id or new_role is None:
        return False
    return _coerce(new_role) != ADMIN_SURFACE_ROLE


def is_self_deletion(actor_id: int, target_id: int) -> bool:
    return actor_id == target_id


def is_self_deactivation(actor_id: int, target_id: int, new_status: UserStatus | str | None) -> bool:
    """True if an admin is trying to move their own account off active status."""
    if actor_id != target_id or new_status is None:
        return False
    try:
        return normalize_status(new_status) != UserStatus.ACTIVE
    except ValueError:
        return True
