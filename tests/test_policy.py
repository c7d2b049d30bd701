"""Unit tests for auth/policy.py.

The admin surface admits super_admin and nothing else: admin is not a
lesser super_admin, and anonymous callers never pass a real requirement.
"""

import pytest

from auth.models import Role, UserStatus
from auth.policy import (
    ADMIN_SURFACE_ROLE,
    is_public,
    is_self_deactivation,
    is_self_deletion,
    is_self_demotion,
    permits,
    required_role_for,
)

PREFIXES = ["/admin"]
PUBLIC = ["/admin/login", "/admin/logout"]


class TestPermits:
    def test_super_admin_permitted(self) -> None:
        assert permits(Role.SUPER_ADMIN, ADMIN_SURFACE_ROLE) is True

    @pytest.mark.parametrize("role", [Role.ADMIN, Role.USER, None, "", "root"])
    def test_everyone_else_denied(self, role) -> None:
        assert permits(role, ADMIN_SURFACE_ROLE) is False

    def test_no_requirement_admits_anonymous(self) -> None:
        assert permits(None, None) is True

    def test_role_strings_compared_case_insensitively(self) -> None:
        assert permits("SUPER_ADMIN", "super_admin") is True


class TestPathRules:
    @pytest.mark.parametrize("path", ["/admin", "/admin/", "/admin/users", "/admin/users/3/edit"])
    def test_admin_paths_require_super_admin(self, path: str) -> None:
        assert required_role_for(path, PREFIXES) == Role.SUPER_ADMIN

    @pytest.mark.parametrize("path", ["/", "/about", "/administrator", "/api/v1/admin/users"])
    def test_other_paths_have_no_requirement(self, path: str) -> None:
        assert required_role_for(path, PREFIXES) is None

    def test_login_and_logout_are_public(self) -> None:
        assert is_public("/admin/login", PUBLIC) is True
        assert is_public("/admin/logout", PUBLIC) is True
        assert is_public("/admin/users", PUBLIC) is False

    def test_public_match_is_segment_based(self) -> None:
        assert is_public("/admin/login-history", PUBLIC) is False


class TestSelfGuards:
    def test_self_demotion(self) -> None:
        assert is_self_demotion(1, 1, Role.ADMIN) is True
        assert is_self_demotion(1, 1, "user") is True

    def test_keeping_own_role_is_not_demotion(self) -> None:
        assert is_self_demotion(1, 1, "SUPER_ADMIN") is False
        assert is_self_demotion(1, 1, None) is False

    def test_demoting_someone_else_allowed(self) -> None:
        assert is_self_demotion(1, 2, Role.USER) is False

    def test_self_deletion(self) -> None:
        assert is_self_deletion(5, 5) is True
        assert is_self_deletion(5, 6) is False

    def test_self_deactivation(self) -> None:
        assert is_self_deactivation(1, 1, UserStatus.DISABLED) is True
        assert is_self_deactivation(1, 1, "inactive") is True
        assert is_self_deactivation(1, 1, UserStatus.ACTIVE) is False
        assert is_self_deactivation(1, 2, UserStatus.DISABLED) is False
