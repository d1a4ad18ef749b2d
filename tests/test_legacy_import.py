"""Tests for importing the legacy colon-delimited credential files."""

import base64
import hashlib
import threading

import pytest

from ballotvault.core.auth.roles import Role
from ballotvault.core.results import ErrorKind
from ballotvault.migration import (
    LegacyCredentialRecord,
    is_legacy_digest,
    parse_legacy_credentials,
    parse_salt_lines,
    read_legacy_source,
)
from ballotvault.security.audit import AuditAction


LEGACY_SALT = "c2FsdHNhbHRzYWx0"


def legacy_digest_of(password, salt=LEGACY_SALT):
    return base64.b64encode(hashlib.sha256(salt.encode() + password.encode()).digest()).decode()


@pytest.fixture
def legacy_files(tmp_path):
    credentials = tmp_path / "database_admins.txt"
    salts = tmp_path / "database_admin_salts.txt"
    credentials.write_text(
        "\n".join([
            f"old1:Old Admin:{legacy_digest_of('OldPass1')}:SuperAdmin",
            "old2:Plain Admin:plaintext:voter_manager",
            "old3:Ghost Admin:__UNREGISTERED__:Auditor",
            "",
            "broken line without fields",
            "old4:Null Admin:null:something_unknown",
        ]) + "\n",
        encoding="utf-8",
    )
    salts.write_text(f"old1:{LEGACY_SALT}\n", encoding="utf-8")
    return credentials, salts


class TestParsing:

    def test_parse_credentials(self):
        records = parse_legacy_credentials([
            "a1:Alice:secret:VoterManager\n",
            "\n",
            "bad:line\n",
            "a2: Bob :x:ReportViewer:extra\n",
        ])

        assert [r.account_id for r in records] == ["a1", "a2"]
        assert records[1].display_name == "Bob"
        assert records[1].role == "ReportViewer"

    def test_parse_salts(self):
        salts = parse_salt_lines(["a1:abc==\n", "nosalt\n", "a2:\n", "a3:x:y\n"])
        assert salts == {"a1": "abc==", "a3": "x:y"}

    @pytest.mark.parametrize("value,expected", [
        (legacy_digest_of("x"), True),
        ("plaintext", False),
        ("", False),
        ("null", False),
        ("__UNREGISTERED__", False),
        (base64.b64encode(b"short").decode(), False),
        (None, False),
    ])
    def test_digest_detection(self, value, expected):
        assert is_legacy_digest(value) is expected

    def test_preserved_digest_needs_salt(self):
        digest = legacy_digest_of("x")
        assert LegacyCredentialRecord("a1", "Alice", digest, "", LEGACY_SALT).has_preserved_digest
        assert not LegacyCredentialRecord("a1", "Alice", digest, "").has_preserved_digest

    def test_secret_not_in_repr(self):
        record = LegacyCredentialRecord("a1", "Alice", "hunter2", "", "salty")
        assert "hunter2" not in repr(record)
        assert "salty" not in repr(record)

    def test_read_source_attaches_salts(self, legacy_files):
        credentials, salts = legacy_files
        records = {r.account_id: r for r in read_legacy_source(credentials, salts)}

        assert set(records) == {"old1", "old2", "old3", "old4"}
        assert records["old1"].salt == LEGACY_SALT
        assert records["old2"].salt is None


class TestImport:

    def test_import_files(self, services, legacy_files, tmp_path):
        credentials, salts = legacy_files

        imported = services.importer.import_legacy_files(credentials, salts, backup_dir=tmp_path / "bk")

        assert imported == 4
        store = services.store
        assert store.get("old1").value.role is Role.SUPER_ADMIN
        assert store.get("old2").value.role is Role.VOTER_MANAGER
        assert store.get("old3").value.role is Role.AUDIT_VIEWER
        assert store.get("old4").value.role is Role.REPORT_VIEWER

    def test_preserved_digest_keeps_old_password(self, services, legacy_files, tmp_path):
        credentials, salts = legacy_files
        services.importer.import_legacy_files(credentials, salts, backup_dir=tmp_path / "bk")

        result = services.auth.authenticate("old1", "OldPass1")

        assert result.success
        assert result.legacy_digest
        assert not result.needs_reset

    def test_other_records_get_temporary_password(self, services, legacy_files, tmp_path):
        credentials, salts = legacy_files
        services.importer.import_legacy_files(credentials, salts, backup_dir=tmp_path / "bk")

        for account_id in ("old2", "old3", "old4"):
            result = services.auth.authenticate(account_id, "Reset123!")
            assert result.success and result.needs_reset
        assert not services.auth.authenticate("old2", "plaintext").success

    def test_missing_salt_file_falls_back_to_temporary(self, services, legacy_files, tmp_path):
        credentials, _ = legacy_files
        services.importer.import_legacy_files(credentials, tmp_path / "missing.txt", backup_dir=tmp_path / "bk")

        assert services.auth.authenticate("old1", "Reset123!").needs_reset

    def test_rerun_is_idempotent(self, services, legacy_files, tmp_path):
        credentials, salts = legacy_files
        services.importer.import_legacy_files(credentials, salts, backup_dir=tmp_path / "bk")

        summary = services.importer.run(read_legacy_source(credentials, salts))

        assert summary.imported == 0
        assert summary.skipped == 4
        assert services.store.count_active() == 4

    def test_rerun_does_not_revive_deactivated_accounts(self, services, legacy_files, tmp_path):
        """Test an account deleted after import stays deleted when the import runs again."""
        credentials, salts = legacy_files
        services.importer.import_legacy_files(credentials, salts, backup_dir=tmp_path / "bk")
        assert services.store.deactivate("old1")
        assert services.store.deactivate("old2")

        summary = services.importer.run(read_legacy_source(credentials, salts))

        assert summary.imported == 0
        assert summary.skipped == 4
        assert not services.store.exists("old1")
        assert not services.store.exists("old2")
        assert not services.auth.authenticate("old1", "OldPass1").success

    def test_store_refuses_reactivation_when_asked(self, services):
        store = services.store
        store.create("old9", "Old Nine", "Abc12345", Role.REPORT_VIEWER)
        store.deactivate("old9")

        result = store.create("old9", "Old Nine", "Reset123!", Role.REPORT_VIEWER, reactivate=False)

        assert result.error is ErrorKind.CONFLICT
        assert not store.exists("old9")
        assert store.get("old9", include_inactive=True).ok

    def test_backups_written_first(self, services, legacy_files, tmp_path):
        credentials, salts = legacy_files
        backup_dir = tmp_path / "bk"

        services.importer.import_legacy_files(credentials, salts, backup_dir=backup_dir)

        backups = sorted(p.name for p in backup_dir.iterdir())
        assert len(backups) == 2
        assert backups[0].startswith("database_admin_salts.txt.backup.")
        assert backups[1].startswith("database_admins.txt.backup.")
        assert (backup_dir / backups[1]).read_text(encoding="utf-8") == credentials.read_text(encoding="utf-8")

    def test_missing_credentials_file(self, services, tmp_path):
        with pytest.raises(FileNotFoundError):
            services.importer.import_legacy_files(tmp_path / "nope.txt")

    def test_audit_entries(self, services, legacy_files, tmp_path):
        credentials, salts = legacy_files
        services.importer.import_legacy_files(credentials, salts, backup_dir=tmp_path / "bk")

        actions = [e.action for e in services.audit.trail_for("system")]
        assert actions[0] == AuditAction.MIGRATION_COMPLETED.value
        assert actions.count(AuditAction.ADMIN_MIGRATED.value) == 4

    def test_invalid_records_are_counted(self, services):
        summary = services.importer.run([
            LegacyCredentialRecord("bad id", "Spaced Id", "plaintext", "ReportViewer"),
            LegacyCredentialRecord("ok1", "Fine", "plaintext", "ReportViewer"),
        ])

        assert summary.failed == 1
        assert summary.imported == 1

    def test_stop_event_interrupts(self, services):
        stop = threading.Event()
        stop.set()

        summary = services.importer.run(
            [LegacyCredentialRecord("ok1", "Fine", "plaintext", "ReportViewer")], stop,
        )

        assert summary.interrupted
        assert summary.imported == 0
        assert not services.store.exists("ok1")
        assert "interrupted" in summary.describe()
