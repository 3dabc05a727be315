"""
Migration orchestrator: validates a database and applies a path's scripts.

State machine:
    NOT_STARTED -> PRE_VALIDATING -> APPLYING -> POST_VALIDATING -> SUCCEEDED
    any state -> FAILED (on the first fatal error)

Pre-validation (read-only, so a rejected database is never mutated):
    - every required table of the path must exist (all missing ones reported)
    - the version marker, if present, must start with the path's source prefix
    - modules with pending install/upgrade/removal only produce a warning

Application:
    Scripts run in ascending order, one transaction each:
    pre-check false -> rolled back and recorded as skipped;
    main SQL error or post-check false -> rolled back, path aborted.
    Scripts committed before a failure stay committed.

Post-validation (never fatal):
    - version marker should equal the path's target version
    - referential integrity spot checks; findings become warnings

Example:
    >>> with connect(settings, handle.name) as conn:
    ...     path = detect_migration_path(conn)
    ...     outcome = MigrationOrchestrator(conn, path).run()
    >>> outcome.applied[:2]
    ['pre-001-backup-check', 'mod-001-module-dependencies']
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import psycopg
from psycopg.rows import dict_row

from ..database.operations import count_pending_modules, read_version_marker, table_exists
from ..exceptions import PreValidationError, ScriptExecutionError, VersionMismatchError
from ..utils.time import elapsed_ms
from .models import MigrationPath, MigrationScript
from .registry import path_for_version

logger = logging.getLogger(__name__)


class OrchestratorState(Enum):
    NOT_STARTED = "not_started"
    PRE_VALIDATING = "pre_validating"
    APPLYING = "applying"
    POST_VALIDATING = "post_validating"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ScriptStatus(str, Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ScriptResult:
    """Outcome of one script."""

    id: str
    name: str
    description: str
    status: ScriptStatus
    duration_ms: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "status": self.status.value,
            "duration_ms": self.duration_ms,
            "error": self.error,
        }


@dataclass
class MigrationOutcome:
    """Result of a successful MigrationOrchestrator.run()."""

    path_id: str
    source_version: str
    target_version: str
    applied: list[str] = field(default_factory=list)
    script_results: list[ScriptResult] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    duration_ms: int = 0


# Orphaned references checked after migration: (description, query returning a count)
INTEGRITY_CHECKS: tuple[tuple[str, str], ...] = (
    (
        "users have orphaned partner references",
        """
        SELECT COUNT(*) FROM res_users u
        LEFT JOIN res_partner p ON u.partner_id = p.id
        WHERE u.partner_id IS NOT NULL AND p.id IS NULL
        """,
    ),
    (
        "companies have orphaned partner references",
        """
        SELECT COUNT(*) FROM res_company c
        LEFT JOIN res_partner p ON c.partner_id = p.id
        WHERE c.partner_id IS NOT NULL AND p.id IS NULL
        """,
    ),
)

ScriptCallback = Callable[[ScriptResult, int, int], None]


def detect_migration_path(conn: psycopg.Connection) -> MigrationPath | None:
    """
    Choose a path from the database's version marker.

    Returns None when the marker is missing, unreadable or has an
    unrecognized prefix; the caller must then require an explicit path.
    """
    try:
        marker = read_version_marker(conn)
    except psycopg.Error as e:
        logger.debug(f"Could not read version marker: {e}")
        return None

    path = path_for_version(marker)
    if path is not None:
        logger.info(
            "Auto-detected migration path",
            extra={"context": {"path": path.id, "version": marker}},
        )
    return path


class MigrationOrchestrator:
    """
    Runs one migration path against an open connection.

    The connection should be in autocommit mode so each script's
    ``conn.transaction()`` is a real BEGIN/COMMIT.

    Script results, applied ids and warnings are kept on the instance, so a
    caller can still report them after run() raised.

    Args:
        conn: Connection to the temporary database
        path: Migration path to apply
        on_script: Called after each script with (result, index, total)
    """

    def __init__(
        self,
        conn: psycopg.Connection,
        path: MigrationPath,
        on_script: ScriptCallback | None = None,
    ):
        self.conn = conn
        self.path = path
        self.on_script = on_script
        self.state = OrchestratorState.NOT_STARTED
        self.applied: list[str] = []
        self.script_results: list[ScriptResult] = []
        self.warnings: list[str] = []

    def run(self) -> MigrationOutcome:
        """
        Validate, apply every script, and validate again.

        Raises:
            PreValidationError: Required tables missing
            VersionMismatchError: Marker belongs to another version (no mutation)
            ScriptExecutionError: A script failed or its post-check was false
        """
        started = time.perf_counter()
        logger.info(
            "Starting migration",
            extra={
                "context": {
                    "path": self.path.id,
                    "source": self.path.source_version,
                    "target": self.path.target_version,
                }
            },
        )

        try:
            self.state = OrchestratorState.PRE_VALIDATING
            self.pre_validate()

            self.state = OrchestratorState.APPLYING
            self.apply_scripts()

            self.state = OrchestratorState.POST_VALIDATING
            self.post_validate()
        except Exception:
            self.state = OrchestratorState.FAILED
            raise

        self.state = OrchestratorState.SUCCEEDED
        outcome = MigrationOutcome(
            path_id=self.path.id,
            source_version=self.path.source_version,
            target_version=self.path.target_version,
            applied=list(self.applied),
            script_results=list(self.script_results),
            warnings=list(self.warnings),
            duration_ms=elapsed_ms(started),
        )
        logger.info(
            "Migration completed successfully",
            extra={
                "context": {
                    "scripts_applied": len(outcome.applied),
                    "warnings": len(outcome.warnings),
                }
            },
        )
        return outcome

    # ------------------------------------------------------------------
    # Pre-validation
    # ------------------------------------------------------------------

    def pre_validate(self) -> None:
        logger.debug("Validating pre-migration state")

        missing = [t for t in self.path.required_tables if not table_exists(self.conn, t)]
        if missing:
            raise PreValidationError(
                f"Required tables missing: {', '.join(missing)}", missing_tables=missing
            )

        marker = read_version_marker(self.conn)
        if marker is None:
            self.warnings.append("No version marker found in database")
        else:
            logger.info("Current database version", extra={"context": {"version": marker}})
            if not self.path.matches_version(marker):
                raise VersionMismatchError(
                    f"Database version mismatch: database is {marker} but migration "
                    f"expects Odoo {self.path.source_version}. "
                    "Please select the correct migration path."
                )

        try:
            with self.conn.transaction():
                pending = count_pending_modules(self.conn)
        except psycopg.Error as e:
            logger.debug(f"Could not check module states: {e}")
            return
        if pending > 0:
            self.warnings.append(
                f"{pending} modules have pending state changes. "
                "Run Odoo to complete module operations before migration."
            )

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------

    def apply_scripts(self) -> None:
        scripts = self.path.ordered_scripts()
        total = len(scripts)
        logger.info(f"Found {total} migration scripts")

        for index, script in enumerate(scripts, start=1):
            result = self.execute_script(script)
            self.script_results.append(result)

            if result.status is ScriptStatus.APPLIED:
                self.applied.append(script.id)
            elif result.status is ScriptStatus.SKIPPED:
                self.warnings.append(f"Skipped: {script.id} (pre-check false)")

            if self.on_script is not None:
                self.on_script(result, index, total)

            if result.status is ScriptStatus.FAILED:
                logger.error(
                    "Migration script failed, aborting",
                    extra={"context": {"script_id": script.id}},
                )
                raise ScriptExecutionError(
                    f"Script {script.id} failed: {result.error}",
                    script_id=script.id,
                    details=script.name,
                )

    def execute_script(self, script: MigrationScript) -> ScriptResult:
        """
        Run one script in its own transaction.

        Returns a FAILED result instead of raising for database errors and
        false post-checks; the transaction is rolled back in both cases.
        """
        logger.info(
            "Executing migration script",
            extra={"context": {"id": script.id, "name": script.name}},
        )
        started = time.perf_counter()
        skipped = False

        def _result(status: ScriptStatus, error: str | None = None) -> ScriptResult:
            return ScriptResult(
                id=script.id,
                name=script.name,
                description=script.description,
                status=status,
                duration_ms=elapsed_ms(started),
                error=error,
            )

        try:
            with self.conn.transaction() as tx:
                with self.conn.cursor(row_factory=dict_row) as cur:
                    if script.pre_check:
                        cur.execute(script.pre_check)
                        if not _predicate(cur.fetchone(), "result"):
                            skipped = True
                            raise psycopg.Rollback(tx)

                    cur.execute(script.sql)

                    if script.post_check:
                        cur.execute(script.post_check)
                        if not _predicate(cur.fetchone(), "valid"):
                            raise ScriptExecutionError(
                                f"Post-check failed for script: {script.id}",
                                script_id=script.id,
                            )
        except ScriptExecutionError as e:
            logger.error(str(e))
            return _result(ScriptStatus.FAILED, str(e))
        except psycopg.Error as e:
            logger.error(
                "Migration script failed",
                extra={"context": {"id": script.id, "error": str(e)}},
            )
            return _result(ScriptStatus.FAILED, str(e).strip())

        if skipped:
            logger.info(
                "Pre-check returned false, skipping script",
                extra={"context": {"id": script.id}},
            )
            return _result(ScriptStatus.SKIPPED)

        result = _result(ScriptStatus.APPLIED)
        logger.debug(
            "Migration script completed",
            extra={"context": {"id": script.id, "duration_ms": result.duration_ms}},
        )
        return result

    # ------------------------------------------------------------------
    # Post-validation
    # ------------------------------------------------------------------

    def post_validate(self) -> None:
        logger.debug("Validating post-migration state")

        try:
            with self.conn.transaction():
                marker = read_version_marker(self.conn)
        except psycopg.Error as e:
            self.warnings.append(f"Could not verify version marker: {e}")
        else:
            if marker != self.path.target_version:
                self.warnings.append(
                    f"Version marker is {marker}, expected {self.path.target_version}"
                )
            else:
                logger.info(
                    "Version marker updated successfully",
                    extra={"context": {"version": marker}},
                )

        for description, query in INTEGRITY_CHECKS:
            try:
                with self.conn.transaction():
                    row = self.conn.execute(query).fetchone()
            except psycopg.Error as e:
                logger.debug(f"Could not run integrity check ({description}): {e}")
                continue
            orphans = int(row[0]) if row else 0
            if orphans > 0:
                self.warnings.append(f"{orphans} {description}")


def _predicate(row: dict[str, Any] | None, column: str) -> bool:
    """Truth value of a check row; a missing row or NULL counts as true."""
    if row is None:
        return True
    value = row.get(column)
    return True if value is None else bool(value)
