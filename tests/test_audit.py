"""Tests for the hash-chained audit log and login-attempt records."""

import pytest

from ballotvault.security.audit import (
    GENESIS_HASH,
    AuditAction,
    AuditLog,
    AuditRecord,
    compute_entry_hash,
)


@pytest.fixture
def audit(database, clock):
    return AuditLog(database, clock=clock)


class TestWrites:

    def test_record_and_read_back(self, audit, clock):
        assert audit.record("a1", AuditAction.LOGIN_SUCCESS, "Login", "10.0.0.5", "pytest")

        entry = audit.trail_for("a1")[0]
        assert entry.actor_id == "a1"
        assert entry.action == "LOGIN_SUCCESS"
        assert entry.ip_address == "10.0.0.5"
        assert entry.user_agent == "pytest"
        assert entry.timestamp == clock()
        assert entry.previous_hash == GENESIS_HASH

    def test_entries_are_chained(self, audit):
        audit.record("a1", AuditAction.LOGIN_FAILED)
        audit.record("a1", AuditAction.LOGIN_SUCCESS)

        newest, oldest = audit.trail_for("a1")
        assert newest.previous_hash == oldest.entry_hash
        assert newest.entry_hash == compute_entry_hash(
            newest.actor_id, newest.action, newest.details,
            newest.ip_address, newest.user_agent,
            newest.timestamp.isoformat(timespec="microseconds"), newest.previous_hash,
        )

    def test_unknown_action_is_not_written(self, audit):
        assert audit.record("a1", "MADE_UP") is False
        assert audit.recent() == []

    def test_append_rolls_back_with_caller(self, audit, database):
        with pytest.raises(RuntimeError):
            with database.transaction() as conn:
                audit.append(conn, AuditRecord("a1", AuditAction.ADMIN_CREATED))
                raise RuntimeError("abort")

        assert audit.recent() == []

    def test_denial_actions(self):
        assert AuditAction.UNAUTHORIZED_ADMIN_ADD.is_denial
        assert not AuditAction.LOGIN_FAILED.is_denial


class TestReads:

    def test_trail_is_per_actor_newest_first(self, audit):
        audit.record("a1", AuditAction.LOGIN_FAILED, "first")
        audit.record("a2", AuditAction.LOGIN_SUCCESS)
        audit.record("a1", AuditAction.LOGIN_SUCCESS, "second")

        assert [e.details for e in audit.trail_for("a1")] == ["second", "first"]
        assert [e.actor_id for e in audit.recent()] == ["a1", "a2", "a1"]

    @pytest.mark.parametrize("limit,expected", [(2, 2), (0, 0), (-3, 0), (10_000, 5)])
    def test_limits_are_clamped(self, audit, limit, expected):
        for _ in range(5):
            audit.record("a1", AuditAction.LOGIN_FAILED)
        assert len(audit.recent(limit)) == expected

    def test_to_dict_omits_hashes(self, audit):
        audit.record("a1", AuditAction.LOGOUT)
        data = audit.recent()[0].to_dict()

        assert data["action"] == "LOGOUT"
        assert "entry_hash" not in data


class TestLoginAttempts:

    def test_counts(self, audit, clock):
        audit.record_login_attempt("a1", "10.0.0.5", False)
        audit.record_login_attempt("a1", "10.0.0.5", False)
        clock.advance(hours=1)
        since = clock()
        audit.record_login_attempt("a1", "10.0.0.5", True)
        audit.record_login_attempt("a2", None, False)

        assert audit.count_login_attempts("a1") == 3
        assert audit.count_login_attempts("a1", success=False) == 2
        assert audit.count_login_attempts("a1", success=True) == 1
        assert audit.count_login_attempts("a1", since=since) == 1

    def test_attempts_newest_first(self, audit):
        audit.record_login_attempt("a1", "10.0.0.5", False)
        audit.record_login_attempt("a1", "10.0.0.6", True)

        attempts = audit.login_attempts_for("a1")
        assert [a.success for a in attempts] == [True, False]
        assert attempts[0].ip_address == "10.0.0.6"


class TestIntegrity:

    def test_untouched_chain_verifies(self, audit):
        for action in (AuditAction.LOGIN_FAILED, AuditAction.LOGIN_SUCCESS, AuditAction.LOGOUT):
            audit.record("a1", action)

        assert audit.verify_integrity() == (True, 3)

    def test_empty_log_verifies(self, audit):
        assert audit.verify_integrity() == (True, 0)

    def test_edited_entry_is_detected(self, audit, database):
        for _ in range(3):
            audit.record("a1", AuditAction.LOGIN_FAILED)

        with database.transaction() as conn:
            conn.execute("UPDATE audit_logs SET details = 'nothing happened' WHERE entry_id = 2")

        valid, checked = audit.verify_integrity()
        assert not valid
        assert checked == 1

    def test_deleted_entry_is_detected(self, audit, database):
        for _ in range(3):
            audit.record("a1", AuditAction.LOGIN_FAILED)

        with database.transaction() as conn:
            conn.execute("DELETE FROM audit_logs WHERE entry_id = 2")

        assert audit.verify_integrity()[0] is False


class TestRetention:

    def test_prune_keeps_chain_verifiable(self, audit, clock):
        audit.record("a1", AuditAction.LOGIN_FAILED, "old")
        audit.record_login_attempt("a1", None, False)
        clock.advance(days=400)
        audit.record("a1", AuditAction.LOGIN_SUCCESS, "recent")
        audit.record_login_attempt("a1", None, True)

        removed = audit.prune_older_than(365)

        assert removed == 1
        assert [e.details for e in audit.trail_for("a1")] == ["recent"]
        assert audit.count_login_attempts("a1") == 1
        assert audit.recent(1)[0].action == AuditAction.AUDIT_PRUNED.value
        assert audit.verify_integrity() == (True, 2)

    def test_nothing_to_prune(self, audit):
        audit.record("a1", AuditAction.LOGIN_FAILED)

        assert audit.prune_older_than(30) == 0
        assert len(audit.recent()) == 1

    def test_negative_days_rejected(self, audit):
        with pytest.raises(ValueError):
            audit.prune_older_than(-1)
