"""Tests for role normalization and permissions."""

import pytest

from ballotvault.core.auth.roles import (
    ACCOUNT_ADMIN_PERMISSIONS,
    ROLE_PERMISSIONS,
    Permission,
    Role,
    RoleModel,
    check_role_tables,
    is_recognized_role,
    normalize_role,
)


@pytest.fixture
def roles():
    return RoleModel()


class TestNormalization:

    @pytest.mark.parametrize("spelling", [
        "SuperAdmin", "super_admin", "SUPER ADMIN", "super-admin", "Super.Admin",
        "superadministrator", Role.SUPER_ADMIN,
    ])
    def test_super_admin_spellings(self, spelling):
        assert normalize_role(spelling) is Role.SUPER_ADMIN

    @pytest.mark.parametrize("spelling,expected", [
        ("voter_manager", Role.VOTER_MANAGER),
        ("Nominee Manager", Role.NOMINEE_MANAGER),
        ("ELECTION_MANAGER", Role.ELECTION_MANAGER),
        ("auditviewer", Role.AUDIT_VIEWER),
        ("ReportViewer", Role.REPORT_VIEWER),
    ])
    def test_known_spellings(self, spelling, expected):
        assert normalize_role(spelling) is expected

    @pytest.mark.parametrize("value", [None, "", "   ", "admin", "root", 42, "ⓢⓤⓟⓔⓡ"])
    def test_unknown_input_fails_closed(self, value):
        """Test anything unrecognized maps to the lowest role without raising."""
        assert normalize_role(value) is Role.REPORT_VIEWER

    def test_recognition(self):
        assert is_recognized_role("voter manager")
        assert not is_recognized_role("admin")
        assert RoleModel.parse("admin") is None
        assert RoleModel.parse("auditor") is Role.AUDIT_VIEWER


class TestPermissions:

    def test_super_admin_holds_every_permission(self, roles):
        assert roles.permissions_of(Role.SUPER_ADMIN) == frozenset(Permission)

    @pytest.mark.parametrize("role", [r for r in Role if r is not Role.SUPER_ADMIN])
    def test_only_super_admin_administers_accounts(self, roles, role):
        assert not (roles.permissions_of(role) & ACCOUNT_ADMIN_PERMISSIONS)

    def test_role_table(self, roles):
        assert roles.has_permission("VoterManager", Permission.ADD_VOTER)
        assert not roles.has_permission("VoterManager", Permission.ADD_NOMINEE)
        assert roles.has_permission(Role.NOMINEE_MANAGER, Permission.EDIT_NOMINEE)
        assert roles.has_permission(Role.ELECTION_MANAGER, Permission.ACTIVATE_ELECTION)
        assert roles.has_permission(Role.AUDIT_VIEWER, Permission.VIEW_AUDIT_LOG)
        assert roles.permissions_of(Role.REPORT_VIEWER) == {
            Permission.VIEW_RESULTS, Permission.VIEW_ELECTION,
        }

    def test_unknown_role_gets_lowest_permissions(self, roles):
        assert roles.permissions_of("admin") == roles.permissions_of(Role.REPORT_VIEWER)

    def test_role_tables_are_complete(self):
        check_role_tables()

    def test_incomplete_role_table_rejected(self):
        partial = {role: perms for role, perms in ROLE_PERMISSIONS.items() if role is not Role.AUDIT_VIEWER}

        with pytest.raises(ValueError, match="AuditViewer"):
            check_role_tables(permissions=partial)


class TestOrdering:

    def test_all_roles_highest_first(self, roles):
        ordered = roles.all_roles()
        assert ordered[0] is Role.SUPER_ADMIN
        assert ordered[-1] is Role.REPORT_VIEWER
        assert len(ordered) == len(Role)

    def test_rank_is_strict(self, roles):
        ranks = [roles.rank(r) for r in roles.all_roles()]
        assert ranks == sorted(ranks, reverse=True)
        assert roles.rank(Role.REPORT_VIEWER) == 0

    def test_is_highest(self, roles):
        assert roles.is_highest("super admin")
        assert not roles.is_highest(Role.ELECTION_MANAGER)

    def test_describe(self, roles):
        assert roles.describe(Role.REPORT_VIEWER).startswith("Report Viewer")
