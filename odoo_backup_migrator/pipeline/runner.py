"""
Migration pipeline coordinator.

Sequences the four phases of one run and guarantees teardown:

    extraction  (0-25%)   unpack archive into a scratch directory
    database    (25-50%)  bring up a database and load the dump
    migration   (50-85%)  detect/select a path and apply its scripts
    export      (85-100%) dump the database, update manifest, repack

migrate() never raises past its own boundary: any failure becomes a
phase-tagged MigrationError in the returned MigrationResult. Teardown
(drop database, stop and erase the embedded server, erase the scratch
directory) runs exactly once in a ``finally`` block, and its own problems
are downgraded to warnings so they never mask the original error.

This is the in-process API used by the CLI; it is blocking and
single-threaded.

Example:
    >>> config = build_migration_config("backup-16.zip", "backup-17.zip")
    >>> result = migrate(config)
    >>> result.success, result.target_version
    (True, '17.0')
    >>> len(result.migrations_applied)
    15
"""

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from ..archive.handler import (
    ExtractionContext,
    cleanup_scratch_directory,
    create_scratch_directory,
    extract_backup,
    pack_backup,
    update_manifest,
)
from ..archive.layout import get_exported_dump_path, get_report_path
from ..config.constants import (
    PROGRESS_DATABASE,
    PROGRESS_EXPORT,
    PROGRESS_EXTRACTION,
    PROGRESS_MIGRATION,
)
from ..config.schema import MigrationConfig, PostgresSettings
from ..database.embedded import EmbeddedPostgres, cleanup_orphaned_instances
from ..database.operations import (
    DatabaseHandle,
    collect_statistics,
    connect,
    create_database,
    drop_database,
    export_dump,
    get_database_size,
    load_dump,
)
from ..exceptions import MigrationCancelledError, MigrationPathNotDetectedError, MigratorError
from ..migration.models import MigrationPath
from ..migration.orchestrator import (
    MigrationOrchestrator,
    ScriptResult,
    ScriptStatus,
    detect_migration_path,
)
from ..migration.registry import get_migration_path
from ..report.formatters import format_bytes
from ..report.generator import write_text_report
from ..utils.logging import log_with_context
from ..utils.time import elapsed_ms
from .events import CancellationToken, ProgressChannel
from .models import MigrationError, MigrationReport, MigrationResult

logger = logging.getLogger(__name__)

_STATUS_VERBS = {
    ScriptStatus.APPLIED: "Applied",
    ScriptStatus.SKIPPED: "Skipped",
    ScriptStatus.FAILED: "Failed",
}


def migrate(
    config: MigrationConfig,
    channel: ProgressChannel | None = None,
    cancel_token: CancellationToken | None = None,
) -> MigrationResult:
    """
    Run a complete backup migration.

    Args:
        config: Resolved migration configuration. ``config.on_progress``,
            when set, is subscribed to the progress channel.
        channel: Progress channel to emit on (a private one is created if None)
        cancel_token: Checked before each phase starts

    Returns:
        MigrationResult (success flag, versions, applied scripts, errors,
        warnings, duration, report data)
    """
    return MigrationPipeline(config, channel=channel, cancel_token=cancel_token).run()


class MigrationPipeline:
    """
    State of one pipeline run.

    Holds every resource the run acquires (scratch directory, embedded
    server, temporary database) so teardown can release exactly what exists.
    Use migrate() unless the intermediate state is needed.
    """

    def __init__(
        self,
        config: MigrationConfig,
        channel: ProgressChannel | None = None,
        cancel_token: CancellationToken | None = None,
    ):
        self.config = config
        self.channel = channel or ProgressChannel()
        self.cancel_token = cancel_token
        if config.on_progress is not None:
            self.channel.subscribe(config.on_progress)

        self.report = MigrationReport()
        self.result = MigrationResult(
            input_path=config.input_path,
            output_path=config.output_path,
            report=self.report,
        )

        self.scratch_dir: Path | None = None
        self.context: ExtractionContext | None = None
        self.embedded: EmbeddedPostgres | None = None
        self.settings: PostgresSettings | None = None
        self.handle: DatabaseHandle | None = None
        self.path: MigrationPath | None = None

        self.phase = "extraction"
        self.progress = 0
        self._torn_down = False

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------

    def run(self) -> MigrationResult:
        started = time.perf_counter()
        logger.info(
            "Starting migration pipeline",
            extra={
                "context": {
                    "input": str(self.config.input_path),
                    "output": str(self.config.output_path),
                    "embedded": self.config.embedded,
                    "migration_path": self.config.migration_path,
                }
            },
        )

        try:
            self._run_phase("extraction", self.run_extraction)
            self._run_phase("database", self.setup_database)
            self._run_phase("migration", self.run_migration)
            self._run_phase("export", self.run_export)
            self.result.success = True
        except Exception as e:
            self._record_failure(e)
        finally:
            self.teardown()

        self.result.duration_ms = elapsed_ms(started)

        if self.result.success:
            self._write_report()
            self._emit("complete", 100, "Migration complete")
            logger.info(
                "Migration pipeline completed",
                extra={
                    "context": {
                        "duration_ms": self.result.duration_ms,
                        "scripts_applied": len(self.result.migrations_applied),
                        "warnings": len(self.result.warnings),
                    }
                },
            )

        return self.result

    def _run_phase(self, phase: str, step) -> None:
        """Check cancellation, then run one phase and record its duration."""
        self.phase = phase
        if self.cancel_token is not None and self.cancel_token.cancelled:
            reason = f": {self.cancel_token.reason}" if self.cancel_token.reason else ""
            raise MigrationCancelledError(f"Migration cancelled before {phase}{reason}", phase=phase)

        with self._timed(phase):
            step()

    @contextmanager
    def _timed(self, phase: str) -> Iterator[None]:
        started = time.perf_counter()
        try:
            yield
        finally:
            duration_ms = elapsed_ms(started)
            self.report.phase_timings.set(phase, duration_ms)
            log_with_context(
                logger,
                logging.INFO,
                "Phase finished",
                context={"phase": phase, "duration_ms": duration_ms},
                run_id=self.scratch_dir.name if self.scratch_dir else None,
            )

    def _emit(self, phase: str, progress: int, message: str) -> None:
        self.progress = progress
        self.channel.emit(phase, progress, message)

    def _record_failure(self, error: Exception) -> None:
        record = MigrationError.from_exception(error, self.phase)
        self.result.errors.append(record)
        logger.error(
            f"Migration failed in {record.phase} phase: {record.message}",
            exc_info=not isinstance(error, MigratorError),
            extra={"context": {"phase": record.phase, "error_type": record.error_type}},
        )
        self._emit(record.phase, self.progress, f"Migration failed: {record.message}")

    # ------------------------------------------------------------------
    # Phase 1: extraction
    # ------------------------------------------------------------------

    def run_extraction(self) -> None:
        start, end = PROGRESS_EXTRACTION
        self._emit("extraction", start, "Creating working directory...")
        self.scratch_dir = create_scratch_directory(self.config.temp_dir)

        input_path = self.config.input_path
        if input_path.is_file():
            self.report.input_size = input_path.stat().st_size
            logger.info(
                "Input archive",
                extra={
                    "context": {
                        "path": str(input_path),
                        "size": format_bytes(self.report.input_size),
                    }
                },
            )

        self._emit("extraction", start + 5, "Extracting backup archive...")
        self.context = extract_backup(input_path, self.scratch_dir)
        self.result.source_version = self.context.source_version

        self._emit("extraction", end, f"Extracted backup (version {self.context.source_version})")

    # ------------------------------------------------------------------
    # Phase 2: database setup
    # ------------------------------------------------------------------

    def setup_database(self) -> None:
        start, end = PROGRESS_DATABASE
        self._emit("database", start, "Setting up database...")

        if self.config.embedded:
            cleanup_orphaned_instances()
            self.embedded = EmbeddedPostgres(bin_dir=self.config.postgres.bin_dir)
            self._emit("database", start + 2, "Initializing embedded PostgreSQL...")
            self.embedded.init()
            self._emit("database", start + 5, "Starting embedded PostgreSQL...")
            self.embedded.start()
            self.settings = self.embedded.postgres_settings()
        else:
            self.settings = self.config.postgres

        self._emit("database", start + 8, "Creating temporary database...")
        self.handle = create_database(self.settings)
        self.report.database_name = self.handle.name

        self._emit("database", start + 12, "Loading SQL dump...")
        load_result = load_dump(self.context.dump_path, self.handle)
        self.report.import_error_count = load_result.error_count
        self.report.import_warnings = list(load_result.error_sample)

        self._emit("database", end, f"Database ready ({load_result.table_count} tables)")

    # ------------------------------------------------------------------
    # Phase 3: migration
    # ------------------------------------------------------------------

    def run_migration(self) -> None:
        start, end = PROGRESS_MIGRATION
        self._emit("migration", start, "Detecting migration path...")

        with connect(self.settings, self.handle.name) as conn:
            self.report.database_size_before = get_database_size(conn, self.handle.name)
            logger.info(
                "Database size before migration",
                extra={"context": {"size": self.report.database_size_before}},
            )

            self.path = self._select_path(conn)
            self.result.target_version = self.path.target_version
            self.result.migration_path = self.path.id

            self._emit(
                "migration",
                start + 2,
                f"Migrating {self.path.source_version} -> {self.path.target_version}...",
            )

            def on_script(script_result: ScriptResult, index: int, total: int) -> None:
                progress = start + round((end - start) * index / total) if total else end
                verb = _STATUS_VERBS[script_result.status]
                self._emit("migration", min(progress, end), f"{verb} {script_result.id}")

            orchestrator = MigrationOrchestrator(conn, self.path, on_script=on_script)
            try:
                orchestrator.run()
            finally:
                self.report.script_results = list(orchestrator.script_results)
                self.result.migrations_applied = list(orchestrator.applied)
                self.result.warnings.extend(orchestrator.warnings)

            self.report.statistics = collect_statistics(conn)
            self.report.database_size_after = get_database_size(conn, self.handle.name)
            logger.info(
                "Database size after migration",
                extra={"context": {"size": self.report.database_size_after}},
            )

        self._emit("migration", end, f"Applied {len(self.result.migrations_applied)} scripts")

    def _select_path(self, conn) -> MigrationPath:
        if self.config.migration_path:
            path = get_migration_path(self.config.migration_path)
            logger.info(f"Using selected migration path: {path.id}")
        else:
            path = detect_migration_path(conn)
            if path is None:
                raise MigrationPathNotDetectedError(
                    "Could not detect database version. Please select a migration path."
                )

        declared = self.context.source_version
        if declared and not path.matches_version(declared):
            logger.warning(
                f"Manifest version {declared} does not match migration path {path.id}"
            )
        return path

    # ------------------------------------------------------------------
    # Phase 4: export
    # ------------------------------------------------------------------

    def run_export(self) -> None:
        start, end = PROGRESS_EXPORT
        self._emit("export", start, "Exporting migrated database...")

        exported = export_dump(self.handle, get_exported_dump_path(self.scratch_dir))
        self.context.dump_path = exported

        self._emit("export", start + 5, "Updating manifest...")
        self.context.manifest = update_manifest(
            self.context.manifest_path, {"version": self.path.target_version}
        )

        self._emit("export", start + 10, "Creating output archive...")
        output = pack_backup(self.context, self.config.output_path)
        self.report.output_size = output.stat().st_size
        logger.info(
            "Output archive",
            extra={
                "context": {"path": str(output), "size": format_bytes(self.report.output_size)}
            },
        )

        self._emit("export", end, "Export complete")

    # ------------------------------------------------------------------
    # Teardown and report
    # ------------------------------------------------------------------

    def teardown(self) -> None:
        """Release every acquired resource. Runs once; never raises."""
        if self._torn_down:
            return
        self._torn_down = True
        logger.info("Cleaning up migration resources")

        if self.handle is not None:
            self._teardown_step("drop temporary database", drop_database, self.handle)

        if self.embedded is not None:
            self._teardown_step("stop embedded PostgreSQL", self.embedded.cleanup)

        if self.scratch_dir is not None:
            if self.config.keep_temp:
                logger.info(
                    "Keeping temporary files",
                    extra={"context": {"scratch_dir": str(self.scratch_dir)}},
                )
            else:
                self._teardown_step(
                    "remove scratch directory", cleanup_scratch_directory, self.scratch_dir
                )

    def _teardown_step(self, description: str, func, *args) -> None:
        try:
            func(*args)
        except Exception as e:
            logger.warning(f"Cleanup failed ({description}): {e}", exc_info=True)
            self.result.warnings.append(f"Cleanup failed ({description}): {e}")

    def _write_report(self) -> None:
        report_path = get_report_path(self.config.output_path)
        try:
            self.result.report_path = write_text_report(self.result, report_path)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to write report: {e}")
            self.result.warnings.append(f"Failed to write report: {e}")
