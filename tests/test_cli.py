"""
Tests for the Typer CLI (odoo_backup_migrator.cli).

The pipeline itself is replaced by monkeypatching cli.run_migration, so these
tests cover option handling, output modes and exit codes only.
"""

import json

import pytest
from typer.testing import CliRunner

from odoo_backup_migrator import cli
from odoo_backup_migrator.cli import app, exit_code_for
from odoo_backup_migrator.database.embedded import OrphanCleanupResult
from odoo_backup_migrator.pipeline.models import MigrationError, MigrationResult
from odoo_backup_migrator.utils.console import output_mode


@pytest.fixture
def cli_runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def reset_output_mode(monkeypatch):
    """Restore the global output mode and keep the root logger untouched."""
    original_format = output_mode.format
    original_quiet = output_mode.quiet
    output_mode._json_buffer.clear()
    monkeypatch.setattr(cli, "setup_logging", lambda verbose=False, quiet_logs=False: None)

    yield

    output_mode.format = original_format
    output_mode.quiet = original_quiet
    output_mode._json_buffer.clear()


@pytest.fixture
def fake_run(monkeypatch):
    """Replace the pipeline; returns the list of configs it was called with."""
    calls = []
    outcome = {"result": None}

    def run(config, channel=None, cancel_token=None):
        calls.append(config)
        channel.emit("complete", 100, "Migration complete")
        result = outcome["result"] or MigrationResult(
            success=True,
            input_path=config.input_path,
            output_path=config.output_path,
            source_version="16.0",
            target_version="17.0",
            migration_path="16-to-17",
            migrations_applied=["pre-001-backup-check"],
            duration_ms=1234,
        )
        return result

    monkeypatch.setattr(cli, "run_migration", run)
    run.calls = calls
    run.outcome = outcome
    return run


def _failed(phase, error_type="MigratorError"):
    return MigrationResult(
        success=False,
        errors=[MigrationError(phase=phase, message=f"{phase} broke", error_type=error_type)],
    )


# ============================================================================
# Top-level options
# ============================================================================


class TestTopLevel:
    def test_version(self, cli_runner):
        result = cli_runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert "odoo-backup-migrator version" in result.stdout

    def test_no_command_prints_hint(self, cli_runner):
        result = cli_runner.invoke(app, [])

        assert result.exit_code == 0
        assert "migrate" in result.stdout
        assert "cleanup" in result.stdout


# ============================================================================
# paths
# ============================================================================


class TestPathsCommand:
    def test_text(self, cli_runner):
        result = cli_runner.invoke(app, ["paths"])

        assert result.exit_code == 0
        assert "16-to-17" in result.stdout
        assert "17-to-18" in result.stdout

    def test_json(self, cli_runner):
        result = cli_runner.invoke(app, ["paths", "--format", "json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert [p["id"] for p in data["paths"]] == ["16-to-17", "17-to-18"]
        assert [p["script_count"] for p in data["paths"]] == [15, 17]

    def test_invalid_format(self, cli_runner):
        result = cli_runner.invoke(app, ["paths", "--format", "xml"])

        assert result.exit_code == 1


# ============================================================================
# inspect
# ============================================================================


class TestInspectCommand:
    def test_valid_archive(self, cli_runner, make_backup_zip):
        archive = make_backup_zip(filestore={"ab/1": b"x"})

        result = cli_runner.invoke(app, ["inspect", str(archive), "--format", "json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["valid"] is True
        assert data["suggested_path"] == "16-to-17"
        assert data["manifest"]["db_name"] == "acme"

    def test_valid_archive_text(self, cli_runner, make_backup_zip):
        result = cli_runner.invoke(app, ["inspect", str(make_backup_zip())])

        assert result.exit_code == 0
        assert "16-to-17" in result.stdout

    def test_unsupported_version(self, cli_runner, make_backup_zip):
        archive = make_backup_zip(manifest={"db_name": "acme", "version": "15.0"})

        result = cli_runner.invoke(app, ["inspect", str(archive), "--format", "json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["suggested_path"] is None
        assert data["warnings"] == ["No migration path starts from version 15.0"]

    def test_missing_dump(self, cli_runner, make_backup_zip):
        archive = make_backup_zip(dump=None)

        result = cli_runner.invoke(app, ["inspect", str(archive), "--format", "json"])

        assert result.exit_code == 2
        data = json.loads(result.stdout)
        assert data["valid"] is False
        assert data["problems"] == ["Missing required file: dump.sql"]

    def test_manifest_without_version(self, cli_runner, make_backup_zip):
        archive = make_backup_zip(manifest={"db_name": "acme"})

        result = cli_runner.invoke(app, ["inspect", str(archive), "--format", "json"])

        assert result.exit_code == 2
        data = json.loads(result.stdout)
        assert data["valid"] is False
        assert data["status"] == "error"

    def test_missing_file(self, cli_runner, tmp_path):
        result = cli_runner.invoke(app, ["inspect", str(tmp_path / "nope.zip")])

        assert result.exit_code == 2


# ============================================================================
# migrate
# ============================================================================


class TestMigrateCommand:
    def test_success(self, cli_runner, make_backup_zip, tmp_path, fake_run):
        archive = make_backup_zip()
        output = tmp_path / "out.zip"

        result = cli_runner.invoke(app, ["migrate", "-i", str(archive), "-o", str(output)])

        assert result.exit_code == 0
        config = fake_run.calls[0]
        assert config.input_path == archive
        assert config.output_path == output
        assert config.embedded is False
        assert config.migration_path is None

    def test_options_reach_config(self, cli_runner, make_backup_zip, tmp_path, fake_run):
        archive = make_backup_zip()

        result = cli_runner.invoke(
            app,
            [
                "migrate",
                "-i", str(archive),
                "-o", str(tmp_path / "out.zip"),
                "--pg-host", "db.internal",
                "--pg-port", "6543",
                "--pg-user", "odoo",
                "--pg-password", "s3cret",
                "--path", "16-to-17",
                "--keep-temp",
                "--embedded",
                "--temp-dir", str(tmp_path / "scratch"),
            ],
        )

        assert result.exit_code == 0
        config = fake_run.calls[0]
        assert config.postgres.host == "db.internal"
        assert config.postgres.port == 6543
        assert config.postgres.user == "odoo"
        assert config.postgres.password == "s3cret"
        assert config.migration_path == "16-to-17"
        assert config.keep_temp is True
        assert config.embedded is True
        assert config.temp_dir == tmp_path / "scratch"

    def test_config_file(self, cli_runner, make_backup_zip, tmp_path, fake_run):
        config_file = tmp_path / "migrator.yaml"
        config_file.write_text("postgres:\n  host: from-file\n  port: 5433\n", encoding="utf-8")

        result = cli_runner.invoke(
            app,
            [
                "migrate",
                "-i", str(make_backup_zip()),
                "-o", str(tmp_path / "out.zip"),
                "-c", str(config_file),
                "--pg-port", "5444",
            ],
        )

        assert result.exit_code == 0
        postgres = fake_run.calls[0].postgres
        assert postgres.host == "from-file"
        assert postgres.port == 5444

    def test_missing_config_file(self, cli_runner, make_backup_zip, tmp_path, fake_run):
        result = cli_runner.invoke(
            app,
            [
                "migrate",
                "-i", str(make_backup_zip()),
                "-o", str(tmp_path / "out.zip"),
                "-c", str(tmp_path / "missing.yaml"),
            ],
        )

        assert result.exit_code == 1
        assert fake_run.calls == []

    def test_output_must_be_zip(self, cli_runner, make_backup_zip, tmp_path, fake_run):
        result = cli_runner.invoke(
            app,
            ["migrate", "-i", str(make_backup_zip()), "-o", str(tmp_path / "out.tar"), "-f", "json"],
        )

        assert result.exit_code == 1
        assert fake_run.calls == []
        data = json.loads(result.stdout)
        assert data["status"] == "error"
        assert ".zip" in data["error"]

    def test_unknown_path(self, cli_runner, make_backup_zip, tmp_path, fake_run):
        result = cli_runner.invoke(
            app,
            ["migrate", "-i", str(make_backup_zip()), "-o", str(tmp_path / "o.zip"), "--path", "15-to-16"],
        )

        assert result.exit_code == 1
        assert fake_run.calls == []

    def test_invalid_format(self, cli_runner, make_backup_zip, tmp_path, fake_run):
        result = cli_runner.invoke(
            app,
            ["migrate", "-i", str(make_backup_zip()), "-o", str(tmp_path / "o.zip"), "-f", "yaml"],
        )

        assert result.exit_code == 1
        assert fake_run.calls == []

    def test_json_output(self, cli_runner, make_backup_zip, tmp_path, fake_run):
        result = cli_runner.invoke(
            app,
            ["migrate", "-i", str(make_backup_zip()), "-o", str(tmp_path / "o.zip"), "--format", "json"],
        )

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["status"] == "success"
        assert data["result"]["success"] is True
        assert data["result"]["target_version"] == "17.0"
        assert data["result"]["migrations_applied"] == ["pre-001-backup-check"]
        assert "\x1b[" not in result.stdout

    def test_quiet_summary_line(self, cli_runner, make_backup_zip, tmp_path, fake_run):
        output = tmp_path / "o.zip"

        result = cli_runner.invoke(
            app, ["migrate", "-i", str(make_backup_zip()), "-o", str(output), "--quiet"]
        )

        assert result.exit_code == 0
        assert result.stdout.strip() == f"success\t{output}\t16.0\t17.0\t1\t1234"

    @pytest.mark.parametrize(
        ("phase", "expected"),
        [("extraction", 2), ("database", 3), ("migration", 4), ("export", 5)],
    )
    def test_failed_phase_exit_codes(
        self, cli_runner, make_backup_zip, tmp_path, fake_run, phase, expected
    ):
        fake_run.outcome["result"] = _failed(phase)

        result = cli_runner.invoke(
            app, ["migrate", "-i", str(make_backup_zip()), "-o", str(tmp_path / "o.zip")]
        )

        assert result.exit_code == expected

    def test_archive_without_dump_exits_extraction_error(
        self, cli_runner, make_backup_zip, tmp_path
    ):
        archive = make_backup_zip(dump=None)
        work = tmp_path / "work"
        work.mkdir()

        result = cli_runner.invoke(
            app,
            [
                "migrate",
                "-i", str(archive),
                "-o", str(tmp_path / "o.zip"),
                "--temp-dir", str(work),
                "--format", "json",
            ],
        )

        assert result.exception is None or isinstance(result.exception, SystemExit)
        assert result.exit_code == 2
        data = json.loads(result.stdout)
        error = data["result"]["errors"][0]
        assert error["phase"] == "extraction"
        assert error["error_type"] == "InvalidArchiveError"
        assert "dump.sql" in error["message"]
        assert list(work.iterdir()) == []

    def test_failure_json(self, cli_runner, make_backup_zip, tmp_path, fake_run):
        fake_run.outcome["result"] = _failed("database", "DumpLoadError")

        result = cli_runner.invoke(
            app,
            ["migrate", "-i", str(make_backup_zip()), "-o", str(tmp_path / "o.zip"), "-f", "json"],
        )

        assert result.exit_code == 3
        data = json.loads(result.stdout)
        assert data["status"] == "error"
        assert data["error"] == "database phase failed: database broke"
        assert data["result"]["errors"][0]["error_type"] == "DumpLoadError"


# ============================================================================
# cleanup
# ============================================================================


class TestCleanupCommand:
    def test_reports_counts(self, cli_runner, tmp_path, monkeypatch):
        seen = {}

        def fake_cleanup(temp_root=None, max_age_seconds=None):
            seen["args"] = (temp_root, max_age_seconds)
            return OrphanCleanupResult(
                scanned=[tmp_path / "odoo_pg_1"],
                signalled_pids=[4242],
                removed=[tmp_path / "odoo_pg_1"],
            )

        monkeypatch.setattr(cli, "cleanup_orphaned_instances", fake_cleanup)

        result = cli_runner.invoke(
            app,
            ["cleanup", "--temp-root", str(tmp_path), "--max-age", "60", "--format", "json"],
        )

        assert result.exit_code == 0
        assert seen["args"] == (tmp_path, 60)
        data = json.loads(result.stdout)
        assert data["signalled_pids"] == [4242]
        assert data["removed"] == [str(tmp_path / "odoo_pg_1")]

    def test_empty_temp_root(self, cli_runner, tmp_path):
        result = cli_runner.invoke(app, ["cleanup", "--temp-root", str(tmp_path)])

        assert result.exit_code == 0
        assert "No embedded PostgreSQL data directories found" in result.stdout


# ============================================================================
# exit_code_for
# ============================================================================


class TestExitCodeFor:
    def test_success(self):
        assert exit_code_for(MigrationResult(success=True)) == 0

    def test_cancelled(self):
        assert exit_code_for(_failed("migration", "MigrationCancelledError")) == 6

    def test_unknown_phase_defaults_to_migration(self):
        assert exit_code_for(_failed("somewhere")) == 4

    def test_no_errors(self):
        assert exit_code_for(MigrationResult(success=False)) == 4
