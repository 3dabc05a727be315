"""
Tests for migration.orchestrator.

Covers:
- Path detection from the version marker
- Pre-validation: missing tables, version mismatch without mutation, warnings
- Script application: skip on false pre-check, abort on failure, partial commit
- Post-validation warnings
- Full catalogs on a complete and on a minimal database
"""

import psycopg
import pytest

from odoo_backup_migrator.exceptions import (
    PreValidationError,
    ScriptExecutionError,
    VersionMismatchError,
)
from odoo_backup_migrator.migration.models import (
    MigrationPath,
    MigrationScript,
    config_parameter_equals,
)
from odoo_backup_migrator.migration.orchestrator import (
    MigrationOrchestrator,
    OrchestratorState,
    ScriptStatus,
    _predicate,
    detect_migration_path,
)
from odoo_backup_migrator.migration.registry import get_migration_path


@pytest.fixture
def path_16():
    return get_migration_path("16-to-17")


@pytest.fixture
def path_17():
    return get_migration_path("17-to-18")


def _custom_path(*scripts):
    return MigrationPath(
        id="16-to-17",
        source_version="16.0",
        target_version="17.0",
        scripts=tuple(scripts),
        required_tables=("res_users",),
    )


# ============================================================================
# detect_migration_path
# ============================================================================


class TestDetectMigrationPath:
    @pytest.mark.parametrize(
        ("marker", "expected"),
        [("16.0", "16-to-17"), ("16.3", "16-to-17"), ("17.0", "17-to-18")],
    )
    def test_from_marker(self, fake_conn, marker, expected):
        conn = fake_conn(params={"database.version": marker})
        assert detect_migration_path(conn).id == expected

    def test_unrecognized_marker(self, fake_conn):
        assert detect_migration_path(fake_conn(params={"database.version": "15.0"})) is None

    def test_missing_marker(self, fake_conn):
        assert detect_migration_path(fake_conn()) is None

    def test_missing_parameter_table(self, fake_conn):
        assert detect_migration_path(fake_conn(tables={"res_users"})) is None

    def test_database_error(self, fake_conn):
        assert detect_migration_path(fake_conn(fail_on=["pg_tables"])) is None


# ============================================================================
# Pre-validation
# ============================================================================


class TestPreValidation:
    def test_missing_tables_all_listed(self, fake_conn, path_16):
        conn = fake_conn(tables={"ir_module_module", "ir_config_parameter"})
        orchestrator = MigrationOrchestrator(conn, path_16)

        with pytest.raises(PreValidationError) as exc_info:
            orchestrator.run()

        assert exc_info.value.missing_tables == ["res_users", "res_partner", "res_company"]
        assert orchestrator.state is OrchestratorState.FAILED
        assert conn.statements == []

    def test_version_mismatch_mutates_nothing(self, fake_conn, path_16):
        params = {"database.version": "17.0", "web.base.url": "http://odoo"}
        conn = fake_conn(params=params)
        orchestrator = MigrationOrchestrator(conn, path_16)

        with pytest.raises(VersionMismatchError) as exc_info:
            orchestrator.run()

        message = str(exc_info.value)
        assert "database is 17.0 but migration expects Odoo 16.0" in message
        assert "Please select the correct migration path" in message
        assert exc_info.value.recoverable is False
        assert conn.statements == []
        assert conn.params == params
        assert orchestrator.script_results == []

    def test_missing_marker_is_a_warning(self, fake_conn, path_16):
        orchestrator = MigrationOrchestrator(fake_conn(), path_16)

        orchestrator.pre_validate()

        assert orchestrator.warnings == ["No version marker found in database"]

    def test_pending_modules_warning(self, fake_conn, path_16):
        conn = fake_conn(params={"database.version": "16.0"}, pending_modules=3)
        orchestrator = MigrationOrchestrator(conn, path_16)

        orchestrator.pre_validate()

        assert len(orchestrator.warnings) == 1
        assert orchestrator.warnings[0].startswith("3 modules have pending state changes")


# ============================================================================
# Script application
# ============================================================================


class TestScriptApplication:
    def test_full_catalog_16_to_17(self, fake_conn, path_16):
        conn = fake_conn(params={"database.version": "16.0"})

        outcome = MigrationOrchestrator(conn, path_16).run()

        assert len(outcome.applied) == 15
        assert outcome.applied == [s.id for s in path_16.ordered_scripts()]
        assert conn.params["database.version"] == "17.0"
        assert outcome.warnings == []
        assert (outcome.source_version, outcome.target_version) == ("16.0", "17.0")

    def test_full_catalog_17_to_18(self, fake_conn, path_17):
        conn = fake_conn(params={"database.version": "17.0"})

        outcome = MigrationOrchestrator(conn, path_17).run()

        assert len(outcome.applied) == 17
        assert conn.params["database.version"] == "18.0"

    def test_minimal_database(self, fake_conn, path_16, minimal_tables):
        conn = fake_conn(tables=minimal_tables, columns=set())
        orchestrator = MigrationOrchestrator(conn, path_16)

        outcome = orchestrator.run()

        statuses = {r.id: r.status for r in outcome.script_results}
        assert len(statuses) == 15
        assert statuses["version-001-mark-17"] is ScriptStatus.APPLIED
        assert statuses["mail-001-message-structure"] is ScriptStatus.SKIPPED
        assert statuses["account-001-move-name"] is ScriptStatus.SKIPPED
        assert len(outcome.applied) == 8
        assert conn.params["database.version"] == "17.0"
        assert orchestrator.state is OrchestratorState.SUCCEEDED

    def test_skipped_script_warns_and_mutates_nothing(self, fake_conn, path_16):
        conn = fake_conn(tables=fake_conn().tables - {"mail_message"})

        outcome = MigrationOrchestrator(conn, path_16).run()

        assert "mail-001-message-structure" not in outcome.applied
        assert "Skipped: mail-001-message-structure (pre-check false)" in outcome.warnings
        assert not any("mail_message" in s for s in conn.statements)

    def test_failure_aborts_and_keeps_earlier_commits(self, fake_conn, path_16):
        conn = fake_conn(
            params={"database.version": "16.0"}, fail_on=["ADD COLUMN trust VARCHAR"]
        )
        orchestrator = MigrationOrchestrator(conn, path_16)

        with pytest.raises(ScriptExecutionError) as exc_info:
            orchestrator.run()

        assert exc_info.value.script_id == "partner-001-trust-field"
        assert orchestrator.state is OrchestratorState.FAILED
        assert orchestrator.applied == [
            "pre-001-backup-check",
            "mod-001-module-dependencies",
            "mod-002-module-state",
        ]
        assert orchestrator.script_results[-1].status is ScriptStatus.FAILED
        assert "forced failure" in orchestrator.script_results[-1].error
        # Earlier scripts stay committed, nothing after the failure ran
        assert len(conn.statements) == 3
        assert conn.params["database.version"] == "16.0"

    def test_false_post_check_rolls_back(self, fake_conn):
        path = _custom_path(
            MigrationScript(
                id="set-flag",
                name="Set flag",
                description="",
                order=1,
                sql="UPDATE ir_config_parameter SET value = 'on' WHERE key = 'flag'",
                post_check=config_parameter_equals("other", "expected"),
            )
        )
        conn = fake_conn()
        orchestrator = MigrationOrchestrator(conn, path)

        with pytest.raises(ScriptExecutionError, match="Post-check failed for script: set-flag"):
            orchestrator.run()

        assert "flag" not in conn.params
        assert conn.statements == []

    def test_on_script_callback(self, fake_conn, path_16):
        calls = []
        orchestrator = MigrationOrchestrator(
            fake_conn(), path_16, on_script=lambda r, i, t: calls.append((r.id, i, t))
        )

        orchestrator.run()

        assert len(calls) == 15
        assert calls[0] == ("pre-001-backup-check", 1, 15)
        assert calls[-1] == ("post-002-clear-caches", 15, 15)

    def test_predicate_treats_missing_values_as_true(self):
        assert _predicate(None, "result") is True
        assert _predicate({"result": None}, "result") is True
        assert _predicate({"other": False}, "result") is True
        assert _predicate({"result": False}, "result") is False
        assert _predicate({"valid": True}, "valid") is True

    def test_database_error_becomes_failed_result(self, fake_conn):
        script = MigrationScript(
            id="boom", name="Boom", description="", order=1, sql="ALTER TABLE broken"
        )
        conn = fake_conn(fail_on=["ALTER TABLE broken"])

        result = MigrationOrchestrator(conn, _custom_path(script)).execute_script(script)

        assert result.status is ScriptStatus.FAILED
        assert result.to_dict()["status"] == "failed"


# ============================================================================
# Post-validation
# ============================================================================


class TestPostValidation:
    def test_marker_mismatch_warning(self, fake_conn):
        script = MigrationScript(id="noop", name="Noop", description="", order=1, sql="SELECT 1")
        conn = fake_conn(params={"database.version": "16.0"})

        outcome = MigrationOrchestrator(conn, _custom_path(script)).run()

        assert "Version marker is 16.0, expected 17.0" in outcome.warnings

    def test_orphaned_users_warning(self, fake_conn, path_16):
        conn = fake_conn(params={"database.version": "16.0"}, orphaned_users=3)

        outcome = MigrationOrchestrator(conn, path_16).run()

        assert "3 users have orphaned partner references" in outcome.warnings

    def test_integrity_check_errors_are_ignored(self, fake_conn, path_16):
        conn = fake_conn(params={"database.version": "16.0"}, fail_on=["LEFT JOIN res_partner"])

        outcome = MigrationOrchestrator(conn, path_16).run()

        assert not any("orphaned" in w for w in outcome.warnings)

    def test_unreadable_marker_warning(self, fake_conn, path_16, monkeypatch):
        from odoo_backup_migrator.migration import orchestrator as module

        orchestrator = MigrationOrchestrator(fake_conn(), path_16)

        def broken(conn):
            raise psycopg.errors.UndefinedTable("gone")

        monkeypatch.setattr(module, "read_version_marker", broken)
        orchestrator.post_validate()

        assert any(w.startswith("Could not verify version marker") for w in orchestrator.warnings)
