"""
Role-Based Access Control
=========================

Closed role and permission enumerations for election administrators.

Roles form a strict privilege order. Only SUPER_ADMIN holds the
account-administration permissions; free-form role strings are normalized
here and anything unrecognized falls to the lowest role.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Dict, FrozenSet, List, Mapping, Optional, Union


class Permission(str, Enum):
    """Every permission known to the election application."""
    # Voters
    ADD_VOTER = "add_voter"
    DELETE_VOTER = "delete_voter"
    VIEW_VOTER = "view_voter"
    EDIT_VOTER = "edit_voter"

    # Nominees
    ADD_NOMINEE = "add_nominee"
    DELETE_NOMINEE = "delete_nominee"
    VIEW_NOMINEE = "view_nominee"
    EDIT_NOMINEE = "edit_nominee"

    # Election lifecycle
    CONFIGURE_ELECTION = "configure_election"
    ACTIVATE_ELECTION = "activate_election"
    VIEW_ELECTION = "view_election"

    # Reporting
    VIEW_RESULTS = "view_results"
    VIEW_AUDIT_LOG = "view_audit_log"

    # Account administration
    ADD_ACCOUNT = "add_account"
    DELETE_ACCOUNT = "delete_account"
    MANAGE_ROLES = "manage_roles"
    RESET_PASSWORDS = "reset_passwords"
    VIEW_ACCOUNTS = "view_accounts"


ACCOUNT_ADMIN_PERMISSIONS: FrozenSet[Permission] = frozenset({
    Permission.ADD_ACCOUNT,
    Permission.DELETE_ACCOUNT,
    Permission.MANAGE_ROLES,
    Permission.RESET_PASSWORDS,
    Permission.VIEW_ACCOUNTS,
})


class Role(str, Enum):
    """Canonical administrator roles, highest privilege first."""
    SUPER_ADMIN = "SuperAdmin"
    ELECTION_MANAGER = "ElectionManager"
    VOTER_MANAGER = "VoterManager"
    NOMINEE_MANAGER = "NomineeManager"
    AUDIT_VIEWER = "AuditViewer"
    REPORT_VIEWER = "ReportViewer"


_PRIVILEGE_ORDER: tuple[Role, ...] = (
    Role.SUPER_ADMIN,
    Role.ELECTION_MANAGER,
    Role.VOTER_MANAGER,
    Role.NOMINEE_MANAGER,
    Role.AUDIT_VIEWER,
    Role.REPORT_VIEWER,
)

HIGHEST_ROLE: Role = _PRIVILEGE_ORDER[0]
LOWEST_ROLE: Role = _PRIVILEGE_ORDER[-1]


ROLE_PERMISSIONS: Dict[Role, FrozenSet[Permission]] = {
    Role.SUPER_ADMIN: frozenset(Permission),

    Role.ELECTION_MANAGER: frozenset({
        Permission.CONFIGURE_ELECTION,
        Permission.ACTIVATE_ELECTION,
        Permission.VIEW_ELECTION,
        Permission.VIEW_VOTER,
        Permission.VIEW_NOMINEE,
    }),

    Role.VOTER_MANAGER: frozenset({
        Permission.ADD_VOTER,
        Permission.DELETE_VOTER,
        Permission.VIEW_VOTER,
        Permission.EDIT_VOTER,
    }),

    Role.NOMINEE_MANAGER: frozenset({
        Permission.ADD_NOMINEE,
        Permission.DELETE_NOMINEE,
        Permission.VIEW_NOMINEE,
        Permission.EDIT_NOMINEE,
    }),

    Role.AUDIT_VIEWER: frozenset({
        Permission.VIEW_AUDIT_LOG,
    }),

    Role.REPORT_VIEWER: frozenset({
        Permission.VIEW_RESULTS,
        Permission.VIEW_ELECTION,
    }),
}

ROLE_DESCRIPTIONS: Dict[Role, str] = {
    Role.SUPER_ADMIN: "SuperAdmin - Full system control, can add and manage administrators",
    Role.ELECTION_MANAGER: "Election Manager - Configure and manage the election process",
    Role.VOTER_MANAGER: "Voter Manager - Manage voter registration and deletion",
    Role.NOMINEE_MANAGER: "Nominee Manager - Manage election nominees",
    Role.AUDIT_VIEWER: "Audit Viewer - Monitor system actions and logs",
    Role.REPORT_VIEWER: "Report Viewer - View election results only",
}

# Spellings compared after lower-casing and removing spaces, "_", "-" and "."
_ROLE_ALIASES: Dict[str, Role] = {
    "superadmin": Role.SUPER_ADMIN,
    "superadministrator": Role.SUPER_ADMIN,
    "electionmanager": Role.ELECTION_MANAGER,
    "electionadmin": Role.ELECTION_MANAGER,
    "votermanager": Role.VOTER_MANAGER,
    "voteradmin": Role.VOTER_MANAGER,
    "nomineemanager": Role.NOMINEE_MANAGER,
    "candidatemanager": Role.NOMINEE_MANAGER,
    "auditviewer": Role.AUDIT_VIEWER,
    "auditor": Role.AUDIT_VIEWER,
    "reportviewer": Role.REPORT_VIEWER,
    "viewer": Role.REPORT_VIEWER,
}

_SEPARATORS = re.compile(r"[\s_\-.]+")

def check_role_tables(
    permissions: Mapping[Role, FrozenSet[Permission]] = ROLE_PERMISSIONS,
    descriptions: Mapping[Role, str] = ROLE_DESCRIPTIONS,
) -> None:
    """Raise ValueError unless every role has a permission set and a description."""
    roles = set(Role)
    for table, label in ((permissions, "permission"), (descriptions, "description")):
        missing = roles - set(table)
        if missing:
            names = ", ".join(sorted(r.value for r in missing))
            raise ValueError(f"Roles without a {label} entry: {names}")


check_role_tables()


def normalize_role(role: Union[Role, str, None]) -> Role:
    """
    Map any role spelling to a canonical role.

    ``"super_admin"``, ``"SuperAdmin"`` and ``"Super Admin"`` all give
    SUPER_ADMIN. Empty, None, or unrecognized input gives the lowest role.
    Never raises.
    """
    if isinstance(role, Role):
        return role
    if not isinstance(role, str):
        return LOWEST_ROLE

    key = _SEPARATORS.sub("", role).lower()
    return _ROLE_ALIASES.get(key, LOWEST_ROLE)


def is_recognized_role(role: Union[Role, str, None]) -> bool:
    """Whether ``role`` names a canonical role rather than falling through to the default."""
    if isinstance(role, Role):
        return True
    if not isinstance(role, str):
        return False
    return _SEPARATORS.sub("", role).lower() in _ROLE_ALIASES


class RoleModel:
    """
    Pure role → permission lookups.

    Usage:
        roles = RoleModel()
        role = roles.normalize("voter_manager")
        if roles.has_permission(role, Permission.ADD_VOTER):
            ...
    """

    __slots__ = ()

    @staticmethod
    def normalize(role: Union[Role, str, None]) -> Role:
        return normalize_role(role)

    @staticmethod
    def permissions_of(role: Union[Role, str, None]) -> FrozenSet[Permission]:
        return ROLE_PERMISSIONS[normalize_role(role)]

    @staticmethod
    def has_permission(role: Union[Role, str, None], permission: Permission) -> bool:
        return permission in ROLE_PERMISSIONS[normalize_role(role)]

    @staticmethod
    def all_roles() -> List[Role]:
        """All canonical roles, highest privilege first."""
        return list(_PRIVILEGE_ORDER)

    @staticmethod
    def rank(role: Union[Role, str, None]) -> int:
        """Privilege rank; 0 is the lowest role."""
        return len(_PRIVILEGE_ORDER) - 1 - _PRIVILEGE_ORDER.index(normalize_role(role))

    @staticmethod
    def is_highest(role: Union[Role, str, None]) -> bool:
        return normalize_role(role) is HIGHEST_ROLE

    @staticmethod
    def describe(role: Union[Role, str, None]) -> str:
        return ROLE_DESCRIPTIONS[normalize_role(role)]

    @staticmethod
    def parse(role: Union[Role, str, None]) -> Optional[Role]:
        """Like ``normalize`` but None for unrecognized input instead of the default."""
        if not is_recognized_role(role):
            return None
        return normalize_role(role)
