"""
Authentication Service
======================

Login state machine, password changes, permission-checked account
administration and the bootstrap of the default super account.

Lockout states are derived from stored fields on every attempt:

    UNLOCKED + correct password  → counter reset, LOGIN_SUCCESS
    UNLOCKED + wrong password    → counter + 1, LOGIN_FAILED; at the
                                   threshold the account locks (ACCOUNT_LOCKED)
    LOCKED, lock still in force  → rejected unchecked, LOGIN_BLOCKED
    LOCKED, lock expired         → unlocked (ACCOUNT_UNLOCKED), then
                                   evaluated as UNLOCKED

Login failures never say which part of the credentials was wrong; the only
distinguishable outcomes are LOCKED and STORAGE_UNAVAILABLE.
"""

from __future__ import annotations

import logging
import secrets
import string
from datetime import timedelta
from typing import Final, Optional, Union

from ballotvault.core.auth.credential_store import Account, CredentialStore
from ballotvault.core.auth.password_hashing import PasswordHasher
from ballotvault.core.auth.roles import Permission, Role, RoleModel, is_recognized_role
from ballotvault.core.auth.session_control import SessionManager
from ballotvault.core.results import AuthResult, ErrorKind, Result, STORAGE_FAILURE_MESSAGE
from ballotvault.db import Clock, StorageUnavailableError, utcnow
from ballotvault.security.audit import AuditAction, AuditLog, AuditRecord
from ballotvault.security.constants import (
    DEFAULT_AUDIT_LIMIT,
    DEFAULT_SUPER_ACCOUNT_ID,
    DEFAULT_SUPER_ACCOUNT_NAME,
    LOCKOUT_DURATION_SECONDS,
    MAX_LOGIN_ATTEMPTS,
    SYSTEM_ACTOR,
)


UNKNOWN_ACTOR: Final[str] = "unknown"
GENERATED_PASSWORD_LENGTH: Final[int] = 16
DENIED_MESSAGE: Final[str] = "Permission denied"

_log = logging.getLogger("ballotvault.auth")


def generate_strong_password(length: int = GENERATED_PASSWORD_LENGTH) -> str:
    """Random password that satisfies the strength rules."""
    alphabet = string.ascii_letters + string.digits
    while True:
        candidate = "".join(secrets.choice(alphabet) for _ in range(length))
        if (any(c.isupper() for c in candidate)
                and any(c.islower() for c in candidate)
                and any(c.isdigit() for c in candidate)):
            return candidate


class AuthenticationService:
    """
    Authentication and account administration over a CredentialStore.

    Usage:
        auth = AuthenticationService(store, audit, sessions)

        result = auth.authenticate("a1", "Abc12345", ip="10.0.0.5")
        if result.success and result.needs_reset:
            # prompt for a new password
            ...

        auth.add_account_as_super("superadmin", "a2", "Bob", "Xyz12345", Role.AUDIT_VIEWER)
    """

    __slots__ = (
        "_store", "_audit", "_sessions", "_clock", "_roles",
        "_max_attempts", "_lockout", "_dummy_salt", "_dummy_digest",
    )

    def __init__(
        self,
        store: CredentialStore,
        audit: AuditLog,
        sessions: Optional[SessionManager] = None,
        clock: Clock = utcnow,
        max_login_attempts: int = MAX_LOGIN_ATTEMPTS,
        lockout_duration_seconds: int = LOCKOUT_DURATION_SECONDS,
        roles: Optional[RoleModel] = None,
    ) -> None:
        """
        Args:
            store: Account storage
            audit: Audit log for every security event
            sessions: Session manager whose sessions are revoked when an
                account is deactivated or reset by an administrator
            clock: Source of the current UTC instant
            max_login_attempts: Failures that lock an account (default: 5)
            lockout_duration_seconds: Lock length (default: 15 min)
        """
        if max_login_attempts < 1:
            raise ValueError("max_login_attempts must be at least 1")

        self._store = store
        self._audit = audit
        self._sessions = sessions
        self._clock = clock
        self._roles = roles or RoleModel()
        self._max_attempts = max_login_attempts
        self._lockout = timedelta(seconds=lockout_duration_seconds)

        # Unknown accounts are checked against this so that they cost as
        # much as a wrong password for a real one
        self._dummy_salt = self.hasher.generate_salt()
        self._dummy_digest = self.hasher.hash(generate_strong_password(), self._dummy_salt)

    @property
    def hasher(self) -> PasswordHasher:
        return self._store.hasher

    @property
    def store(self) -> CredentialStore:
        return self._store

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def authenticate(
        self,
        account_id: Optional[str],
        password: Optional[str],
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuthResult:
        """
        Check credentials and advance the lockout state machine.

        Every outcome writes one login-attempt record and at least one
        audit entry. Never raises.
        """
        actor = account_id or UNKNOWN_ACTOR

        if not account_id or not password:
            self.hasher.verify(password or " ", self._dummy_digest, self._dummy_salt)
            return self._reject(actor, "Missing account id or password", ip, user_agent)

        lookup = self._store.get(account_id)
        if lookup.error is ErrorKind.STORAGE_UNAVAILABLE:
            return self._unavailable(actor, ip, user_agent)
        if not lookup:
            self.hasher.verify(password, self._dummy_digest, self._dummy_salt)
            return self._reject(actor, "Unknown or inactive account", ip, user_agent)

        account: Account = lookup.value
        now = self._clock()

        if account.locked_until is not None:
            if account.is_locked(now):
                self._audit.record(
                    actor, AuditAction.LOGIN_BLOCKED,
                    f"Login attempt while locked until {account.locked_until.isoformat()}",
                    ip, user_agent,
                )
                self._audit.record_login_attempt(actor, ip, False)
                return AuthResult.locked()

            unlocked = self._store.unlock(
                account_id,
                audit=AuditRecord(SYSTEM_ACTOR, AuditAction.ACCOUNT_UNLOCKED,
                                  f"Lock on {account_id} expired", ip, user_agent),
            )
            if unlocked.error is ErrorKind.STORAGE_UNAVAILABLE:
                return self._unavailable(actor, ip, user_agent)
            if not unlocked:
                return self._reject(actor, "Account vanished during unlock", ip, user_agent)
            account = unlocked.value

        scheme = self.hasher.match(password, account.password_digest, account.salt)

        if scheme is None:
            return self._record_wrong_password(account, now, ip, user_agent)

        outcome = self._store.record_successful_login(
            account_id,
            now,
            audit=AuditRecord(account_id, AuditAction.LOGIN_SUCCESS,
                              f"Login as {account.role.value}", ip, user_agent),
        )
        if outcome.error is ErrorKind.STORAGE_UNAVAILABLE:
            return self._unavailable(actor, ip, user_agent)
        if not outcome:
            return self._reject(actor, "Account vanished during login", ip, user_agent)

        self._audit.record_login_attempt(account_id, ip, True)
        _log.info("Login succeeded for %s", account_id)
        return AuthResult.accepted(
            needs_reset=outcome.value,
            legacy_digest=self.hasher.needs_rehash(scheme),
        )

    def _record_wrong_password(self, account: Account, now, ip, user_agent) -> AuthResult:
        account_id = account.account_id
        outcome = self._store.record_failed_login(account_id, self._max_attempts, now + self._lockout)
        if outcome.error is ErrorKind.STORAGE_UNAVAILABLE:
            return self._unavailable(account_id, ip, user_agent)
        if not outcome:
            return self._reject(account_id, "Account vanished during login", ip, user_agent)

        attempts, locked = outcome.value
        self._audit.record(
            account_id, AuditAction.LOGIN_FAILED,
            f"Wrong password (attempt {attempts} of {self._max_attempts})",
            ip, user_agent,
        )
        if locked:
            self._audit.record(
                account_id, AuditAction.ACCOUNT_LOCKED,
                f"Locked for {int(self._lockout.total_seconds())} seconds after {attempts} failures",
                ip, user_agent,
            )
            _log.warning("Account %s locked after %d failed logins", account_id, attempts)

        self._audit.record_login_attempt(account_id, ip, False)
        return AuthResult.rejected()

    def _reject(self, actor: str, details: str, ip, user_agent) -> AuthResult:
        self._audit.record(actor, AuditAction.LOGIN_FAILED, details, ip, user_agent)
        self._audit.record_login_attempt(actor, ip, False)
        return AuthResult.rejected()

    def _unavailable(self, actor: str, ip, user_agent) -> AuthResult:
        _log.error("Login for %s refused: credential storage unavailable", actor)
        self._audit.record(actor, AuditAction.AUTH_STORAGE_UNAVAILABLE,
                           "Credential storage unavailable", ip, user_agent)
        self._audit.record_login_attempt(actor, ip, False)
        return AuthResult.unavailable()

    # ------------------------------------------------------------------
    # Own password
    # ------------------------------------------------------------------

    def change_own_password(
        self,
        account_id: str,
        old_password: str,
        new_password: str,
        ip: Optional[str] = None,
    ) -> Result:
        """
        Change a password after checking the current one (any scheme).

        The new password is hashed with the current scheme and a fresh salt,
        and the mandatory-change flag is cleared.
        """
        lookup = self._store.get(account_id)
        if not lookup:
            return lookup

        account: Account = lookup.value
        if account.is_locked(self._clock()):
            return Result.failure(ErrorKind.LOCKED, "Account temporarily locked")

        if not self.hasher.verify(old_password, account.password_digest, account.salt):
            self._audit.record(account_id, AuditAction.PASSWORD_CHANGE_FAILED,
                               "Current password did not match", ip)
            return Result.failure(ErrorKind.INVALID_CREDENTIALS, "Current password is incorrect")

        if old_password == new_password:
            return Result.failure(ErrorKind.INVALID_INPUT, "New password must differ from the current one")

        return self._store.update_password(
            account_id, new_password, force_reset=False,
            audit=AuditRecord(account_id, AuditAction.PASSWORD_CHANGED, "Password changed by owner", ip),
        )

    def force_reset_password(
        self,
        account_id: str,
        new_password: str,
        ip: Optional[str] = None,
    ) -> Result:
        """
        Set a password without checking the old one (forgot-password flow).

        The account must change it again on its next login. Existing
        sessions are revoked.
        """
        result = self._store.update_password(
            account_id, new_password, force_reset=True,
            audit=AuditRecord(account_id, AuditAction.PASSWORD_RESET, "Password reset via forgot password", ip),
        )
        if result:
            self._revoke_sessions(account_id)
        return result

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def _authorize(
        self,
        acting_id: str,
        permission: Permission,
        denial: AuditAction,
        details: str,
    ) -> Union[Account, Result]:
        """The acting account if it is active and holds ``permission``; else a failure Result."""
        lookup = self._store.get(acting_id) if acting_id else Result.failure(ErrorKind.NOT_FOUND)
        if lookup.error is ErrorKind.STORAGE_UNAVAILABLE:
            return lookup

        if not lookup or not self._roles.has_permission(lookup.value.role, permission):
            self._audit.record(acting_id or UNKNOWN_ACTOR, denial, details)
            _log.warning("%s denied %s", acting_id or UNKNOWN_ACTOR, permission.value)
            return Result.failure(ErrorKind.UNAUTHORIZED, DENIED_MESSAGE)

        return lookup.value

    def _deny(self, acting_id: str, denial: AuditAction, details: str, message: str) -> Result:
        self._audit.record(acting_id, denial, details)
        return Result.failure(ErrorKind.UNAUTHORIZED, message)

    def _revoke_sessions(self, account_id: str) -> None:
        if self._sessions is None:
            return
        try:
            removed = self._sessions.invalidate_all_for(account_id)
        except StorageUnavailableError as e:
            _log.error("Could not revoke sessions of %s: %s", account_id, e)
            return
        if removed:
            self._audit.record(SYSTEM_ACTOR, AuditAction.SESSIONS_REVOKED,
                               f"Revoked {removed} session(s) of {account_id}")

    def add_account_as_super(
        self,
        acting_id: str,
        account_id: str,
        display_name: str,
        password: str,
        role: Union[Role, str, None],
    ) -> Result:
        """
        Create an account. Requires ADD_ACCOUNT.

        Returns:
            Result with the new Account; UNAUTHORIZED, INVALID_INPUT or CONFLICT
        """
        actor = self._authorize(acting_id, Permission.ADD_ACCOUNT,
                                AuditAction.UNAUTHORIZED_ADMIN_ADD, f"Tried to add {account_id}")
        if isinstance(actor, Result):
            return actor

        target_role = self._roles.normalize(role)
        if not is_recognized_role(role):
            _log.warning("Unrecognized role %r for %s stored as %s", role, account_id, target_role.value)

        return self._store.create(
            account_id, display_name, password, target_role,
            audit=AuditRecord(acting_id, AuditAction.ADMIN_CREATED,
                              f"Created {account_id} with role {target_role.value}"),
        )

    def delete_account_as_super(self, acting_id: str, account_id: str) -> Result:
        """
        Deactivate an account and revoke its sessions. Requires DELETE_ACCOUNT.

        Super accounts and the acting account itself cannot be deleted.
        """
        actor = self._authorize(acting_id, Permission.DELETE_ACCOUNT,
                                AuditAction.UNAUTHORIZED_ADMIN_DELETE, f"Tried to delete {account_id}")
        if isinstance(actor, Result):
            return actor

        if account_id == acting_id:
            return self._deny(acting_id, AuditAction.UNAUTHORIZED_ADMIN_DELETE,
                              "Tried to delete own account", "Cannot delete your own account")

        target = self._store.get(account_id)
        if not target:
            return target
        if self._roles.is_highest(target.value.role):
            return self._deny(acting_id, AuditAction.UNAUTHORIZED_ADMIN_DELETE,
                              f"Tried to delete super account {account_id}",
                              "Super accounts cannot be deleted")

        result = self._store.deactivate(
            account_id,
            audit=AuditRecord(acting_id, AuditAction.ADMIN_DEACTIVATED, f"Deactivated {account_id}"),
        )
        if result:
            self._revoke_sessions(account_id)
        return result

    def reassign_role_as_super(
        self,
        acting_id: str,
        account_id: str,
        new_role: Union[Role, str, None],
    ) -> Result:
        """
        Change an account's role. Requires MANAGE_ROLES.

        The role of a super account (including the acting one) cannot be
        changed. Promoting an account to SUPER_ADMIN is allowed. An
        unrecognized role is refused with INVALID_INPUT rather than
        demoting the account to the lowest role.
        """
        actor = self._authorize(acting_id, Permission.MANAGE_ROLES,
                                AuditAction.UNAUTHORIZED_ROLE_CHANGE,
                                f"Tried to change role of {account_id}")
        if isinstance(actor, Result):
            return actor

        role = self._roles.parse(new_role)
        if role is None:
            _log.warning("Unrecognized role %r refused for %s", new_role, account_id)
            return Result.failure(ErrorKind.INVALID_INPUT, "Unrecognized role")

        target = self._store.get(account_id)
        if not target:
            return target
        if self._roles.is_highest(target.value.role):
            return self._deny(acting_id, AuditAction.UNAUTHORIZED_ROLE_CHANGE,
                              f"Tried to change role of super account {account_id}",
                              "The role of a super account cannot be changed")

        old_role = target.value.role
        return self._store.update_role(
            account_id, role,
            audit=AuditRecord(acting_id, AuditAction.ROLE_REASSIGNED,
                              f"{account_id}: {old_role.value} -> {role.value}"),
        )

    def reset_password_as_super(self, acting_id: str, account_id: str, new_password: str) -> Result:
        """
        Set another account's password and force a change on its next
        login. Requires RESET_PASSWORDS.

        Another super account's password cannot be reset this way.
        """
        actor = self._authorize(acting_id, Permission.RESET_PASSWORDS,
                                AuditAction.UNAUTHORIZED_PASSWORD_CHANGE,
                                f"Tried to reset password of {account_id}")
        if isinstance(actor, Result):
            return actor

        target = self._store.get(account_id)
        if not target:
            return target
        if account_id != acting_id and self._roles.is_highest(target.value.role):
            return self._deny(acting_id, AuditAction.UNAUTHORIZED_PASSWORD_CHANGE,
                              f"Tried to reset password of super account {account_id}",
                              "Another super account's password cannot be reset")

        result = self._store.update_password(
            account_id, new_password, force_reset=True,
            audit=AuditRecord(acting_id, AuditAction.PASSWORD_RESET_BY_SUPER,
                              f"Reset password of {account_id}"),
        )
        if result:
            self._revoke_sessions(account_id)
        return result

    # ------------------------------------------------------------------
    # Read views
    # ------------------------------------------------------------------

    def list_accounts(self, acting_id: str, include_inactive: bool = False) -> Result:
        """Account summaries (no digests or salts). Requires VIEW_ACCOUNTS."""
        actor = self._authorize(acting_id, Permission.VIEW_ACCOUNTS,
                                AuditAction.UNAUTHORIZED_VIEW_ADMINS, "Tried to list accounts")
        if isinstance(actor, Result):
            return actor

        try:
            accounts = self._store.list_all() if include_inactive else self._store.list_active()
        except StorageUnavailableError as e:
            _log.error("Could not list accounts: %s", e)
            return Result.failure(ErrorKind.STORAGE_UNAVAILABLE, STORAGE_FAILURE_MESSAGE)
        return Result.success(accounts)

    def audit_trail(
        self,
        acting_id: str,
        limit: int = DEFAULT_AUDIT_LIMIT,
        account_id: Optional[str] = None,
    ) -> Result:
        """
        Audit entries written by ``account_id`` (default: the acting account),
        most recent first.

        An account may always read its own trail; reading another's requires
        VIEW_AUDIT_LOG.
        """
        target = account_id or acting_id

        if target == acting_id:
            lookup = self._store.get(acting_id) if acting_id else Result.failure(ErrorKind.NOT_FOUND)
            if lookup.error is ErrorKind.STORAGE_UNAVAILABLE:
                return lookup
            if not lookup:
                return self._deny(acting_id or UNKNOWN_ACTOR, AuditAction.UNAUTHORIZED_VIEW_AUDIT,
                                  "Tried to read audit trail", DENIED_MESSAGE)
        else:
            actor = self._authorize(acting_id, Permission.VIEW_AUDIT_LOG,
                                    AuditAction.UNAUTHORIZED_VIEW_AUDIT,
                                    f"Tried to read audit trail of {target}")
            if isinstance(actor, Result):
                return actor

        try:
            return Result.success(self._audit.trail_for(target, limit))
        except StorageUnavailableError as e:
            _log.error("Could not read audit trail: %s", e)
            return Result.failure(ErrorKind.STORAGE_UNAVAILABLE, STORAGE_FAILURE_MESSAGE)

    def recent_audit(self, acting_id: str, limit: int = DEFAULT_AUDIT_LIMIT) -> Result:
        """Most recent audit entries across all actors. Requires VIEW_AUDIT_LOG."""
        actor = self._authorize(acting_id, Permission.VIEW_AUDIT_LOG,
                                AuditAction.UNAUTHORIZED_VIEW_AUDIT, "Tried to read recent audit entries")
        if isinstance(actor, Result):
            return actor

        try:
            return Result.success(self._audit.recent(limit))
        except StorageUnavailableError as e:
            _log.error("Could not read audit log: %s", e)
            return Result.failure(ErrorKind.STORAGE_UNAVAILABLE, STORAGE_FAILURE_MESSAGE)

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    def bootstrap_default_super_account(self) -> Result:
        """
        Guarantee an active super account.

        When there is none, creates ``superadmin`` (or a suffixed id if that
        id is held by an active non-super account) with a generated password
        that must be changed on first login.

        Returns:
            Result whose value is ``None`` when nothing was needed, otherwise
            ``{"account_id": ..., "password": ...}``. The password is not
            recoverable afterwards.
        """
        try:
            if self._store.count_active(Role.SUPER_ADMIN) > 0:
                return Result.success(None, "Super account already present")

            account_id = DEFAULT_SUPER_ACCOUNT_ID
            suffix = 1
            while self._store.exists(account_id):
                suffix += 1
                account_id = f"{DEFAULT_SUPER_ACCOUNT_ID}{suffix}"
        except StorageUnavailableError as e:
            _log.error("Bootstrap could not read accounts: %s", e)
            return Result.failure(ErrorKind.STORAGE_UNAVAILABLE, STORAGE_FAILURE_MESSAGE)

        password = generate_strong_password()
        result = self._store.create(
            account_id, DEFAULT_SUPER_ACCOUNT_NAME, password, Role.SUPER_ADMIN,
            needs_password_reset=True,
            audit=AuditRecord(SYSTEM_ACTOR, AuditAction.SYSTEM_INIT,
                              f"Created default super account {account_id}"),
        )
        if not result:
            return result

        _log.warning("Default super account %s created; password must be changed at first login", account_id)
        return Result.success({"account_id": account_id, "password": password},
                              "Default super account created")
