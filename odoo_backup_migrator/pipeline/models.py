"""
Result types returned by the migration pipeline.

MigrationResult is the pipeline's only output: migrate() never raises past
its own boundary, so every failure ends up in MigrationResult.errors as a
phase-tagged MigrationError record.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..database.operations import DatabaseStatistics
from ..exceptions import MigratorError
from ..migration.orchestrator import ScriptResult


@dataclass
class MigrationError:
    """
    Structured error record.

    Attributes:
        phase: Phase that failed ("extraction", "database", "migration", "export")
        message: Human-readable error message
        recoverable: True when re-running unchanged may succeed
        details: Optional extra text (captured tool output, script id)
        error_type: Exception class name
    """

    phase: str
    message: str
    recoverable: bool = False
    details: str | None = None
    error_type: str | None = None

    @classmethod
    def from_exception(cls, error: BaseException, phase: str) -> "MigrationError":
        """Build a record from any exception, preferring the error's own phase."""
        if isinstance(error, MigratorError):
            return cls(
                phase=error.phase or phase,
                message=str(error),
                recoverable=error.recoverable,
                details=error.details,
                error_type=type(error).__name__,
            )
        return cls(
            phase=phase,
            message=str(error) or type(error).__name__,
            recoverable=False,
            error_type=type(error).__name__,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase,
            "message": self.message,
            "recoverable": self.recoverable,
            "details": self.details,
            "error_type": self.error_type,
        }


@dataclass
class PhaseTimings:
    """Wall-clock duration of each phase in milliseconds (0 if it never ran)."""

    extraction_ms: int = 0
    database_ms: int = 0
    migration_ms: int = 0
    export_ms: int = 0

    def set(self, phase: str, duration_ms: int) -> None:
        setattr(self, f"{phase}_ms", duration_ms)

    def to_dict(self) -> dict[str, int]:
        return {
            "extraction": self.extraction_ms,
            "database": self.database_ms,
            "migration": self.migration_ms,
            "export": self.export_ms,
        }


@dataclass
class MigrationReport:
    """
    Detailed data collected during a run, used for the text report.

    Populated incrementally, so a failed run still carries whatever was
    gathered before the failure.
    """

    phase_timings: PhaseTimings = field(default_factory=PhaseTimings)
    script_results: list[ScriptResult] = field(default_factory=list)
    statistics: DatabaseStatistics | None = None
    import_warnings: list[str] = field(default_factory=list)
    import_error_count: int = 0
    database_size_before: str | None = None
    database_size_after: str | None = None
    input_size: int | None = None
    output_size: int | None = None
    database_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase_timings": self.phase_timings.to_dict(),
            "script_results": [r.to_dict() for r in self.script_results],
            "statistics": self.statistics.to_dict() if self.statistics else None,
            "import_warnings": list(self.import_warnings),
            "import_error_count": self.import_error_count,
            "database_size_before": self.database_size_before,
            "database_size_after": self.database_size_after,
            "input_size": self.input_size,
            "output_size": self.output_size,
            "database_name": self.database_name,
        }


@dataclass
class MigrationResult:
    """
    Outcome of one pipeline run.

    Attributes:
        success: True when every phase completed
        input_path: Archive that was migrated
        output_path: Archive that was (or would have been) written
        source_version: Version declared by the input manifest
        target_version: Target version of the applied path
        migration_path: Identifier of the applied path
        migrations_applied: Identifiers of applied scripts, in order
        errors: Structured errors (at most one fatal error per run)
        warnings: Free-text warnings, including teardown problems
        duration_ms: Total wall-clock duration
        report: Data gathered during the run (partial on failure)
        report_path: Text report written next to the output (success only)
    """

    success: bool = False
    input_path: Path | None = None
    output_path: Path | None = None
    source_version: str | None = None
    target_version: str | None = None
    migration_path: str | None = None
    migrations_applied: list[str] = field(default_factory=list)
    errors: list[MigrationError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    duration_ms: int = 0
    report: MigrationReport | None = None
    report_path: Path | None = None

    @property
    def failed_phase(self) -> str | None:
        return self.errors[0].phase if self.errors else None

    def to_dict(self) -> dict[str, Any]:
        """JSON-serializable form (used by the CLI's --format json)."""
        return {
            "success": self.success,
            "input_path": str(self.input_path) if self.input_path else None,
            "output_path": str(self.output_path) if self.output_path else None,
            "source_version": self.source_version,
            "target_version": self.target_version,
            "migration_path": self.migration_path,
            "migrations_applied": list(self.migrations_applied),
            "errors": [e.to_dict() for e in self.errors],
            "warnings": list(self.warnings),
            "duration_ms": self.duration_ms,
            "report": self.report.to_dict() if self.report else None,
            "report_path": str(self.report_path) if self.report_path else None,
        }
