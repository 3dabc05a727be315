"""
Custom exceptions for the Odoo Backup Migrator.

This module provides a hierarchy of exceptions that enable type-safe error
handling throughout the migration engine. All exceptions inherit from the base
MigratorError for consistent catching.

Every exception class carries two class-level attributes the pipeline
coordinator uses to build structured error records:

- phase: Pipeline phase the error belongs to ("extraction", "database",
  "migration", "export") or None when the error is not phase-bound
- recoverable: True when re-running the same migration unchanged may succeed

Exception Hierarchy:
    MigratorError (base)
    ├── ConfigurationError
    │   ├── ConfigFileNotFoundError
    │   ├── ConfigValidationError
    │   └── UnknownMigrationPathError
    ├── ToolExecutionError
    ├── ExtractionError
    │   ├── InvalidArchiveError
    │   └── ManifestError
    ├── DatabaseSetupError
    │   ├── PostgresBinaryNotFoundError
    │   ├── InitializationError
    │   ├── StartupError
    │   ├── ReadinessTimeoutError
    │   ├── InstanceStateError
    │   ├── DatabaseCreateError
    │   ├── DumpLoadError
    │   └── ImportVerificationError
    ├── MigrationPhaseError
    │   ├── MigrationPathNotDetectedError
    │   ├── PreValidationError
    │   ├── VersionMismatchError
    │   └── ScriptExecutionError
    ├── ExportError
    └── MigrationCancelledError

Usage:
    from odoo_backup_migrator.exceptions import InvalidArchiveError

    try:
        context = extract_backup(archive_path, scratch_dir)
    except InvalidArchiveError as e:
        logger.error(f"Backup archive rejected: {e}")
        sys.exit(2)
"""


class MigratorError(Exception):
    """
    Base exception for all Odoo Backup Migrator errors.

    All custom exceptions in this application should inherit from this class.
    This enables catching all application-specific errors with a single except clause.

    Attributes:
        message: Human-readable description, same as str(error)
        details: Optional extra text (captured tool output, failing SQL, ...)

    Example:
        try:
            result_context = extract_backup(path, scratch)
        except MigratorError as e:
            logger.error(f"Migration error in phase {e.phase}: {e}")
    """

    phase: str | None = None
    recoverable: bool = False

    def __init__(self, message: str, details: str | None = None):
        super().__init__(message)
        self.message = message
        self.details = details


# ============================================================================
# Configuration Errors
# ============================================================================


class ConfigurationError(MigratorError):
    """
    Base class for configuration-related errors.

    Raised when configuration loading, parsing, or validation fails.
    Should be caught and result in exit code 1 (configuration error).
    """

    pass


class ConfigFileNotFoundError(ConfigurationError):
    """
    Configuration file does not exist at the specified path.

    Example:
        raise ConfigFileNotFoundError("/path/to/migrator.yaml")
    """

    pass


class ConfigValidationError(ConfigurationError):
    """
    Configuration is invalid (schema validation failed).

    Should include details about which field(s) failed validation.

    Example:
        raise ConfigValidationError("postgres.port: Input should be less than 65536")
    """

    pass


class UnknownMigrationPathError(ConfigurationError):
    """
    A migration path identifier is not present in the script catalog.

    Example:
        raise UnknownMigrationPathError("Unknown migration path '15-to-16'")
    """

    pass


# ============================================================================
# External Tool Errors
# ============================================================================


class ToolExecutionError(MigratorError):
    """
    An external PostgreSQL binary could not be spawned or did not finish in time.

    Callers translate this into the phase-specific error of the operation
    they were performing (e.g. ExportError for pg_dump).

    Example:
        raise ToolExecutionError("Failed to spawn pg_dump: No such file or directory")
    """

    pass


# ============================================================================
# Extraction Errors
# ============================================================================


class ExtractionError(MigratorError):
    """
    Base class for errors raised while unpacking a backup archive.
    """

    phase = "extraction"


class InvalidArchiveError(ExtractionError):
    """
    Backup archive is unreadable or lacks required members.

    Attributes:
        missing: Every required member that could not be found

    Example:
        raise InvalidArchiveError(
            "Invalid backup archive: Missing required file: dump.sql",
            missing=["dump.sql"],
        )
    """

    def __init__(
        self,
        message: str,
        missing: list[str] | None = None,
        details: str | None = None,
    ):
        super().__init__(message, details=details)
        self.missing = list(missing or [])


class ManifestError(ExtractionError):
    """
    manifest.json is not valid JSON or lacks the version field.

    Example:
        raise ManifestError("manifest.json missing version field")
    """

    pass


# ============================================================================
# Database Setup Errors
# ============================================================================


class DatabaseSetupError(MigratorError):
    """
    Base class for errors bringing up the ephemeral database or loading the dump.
    """

    phase = "database"


class PostgresBinaryNotFoundError(DatabaseSetupError):
    """
    A required PostgreSQL binary (initdb, pg_ctl, psql, pg_dump) was not found.

    Example:
        raise PostgresBinaryNotFoundError("PostgreSQL binary not found: /opt/pg/bin/initdb")
    """

    pass


class InitializationError(DatabaseSetupError):
    """
    initdb failed to create the data directory of an embedded instance.

    The captured tool output is stored in ``details``.
    """

    pass


class StartupError(DatabaseSetupError):
    """
    pg_ctl start reported failure.

    The tail of the server's own log file is stored in ``details``.
    """

    pass


class ReadinessTimeoutError(DatabaseSetupError):
    """
    The server was started but never accepted TCP connections within the timeout.

    Marked recoverable: a slow host may succeed on a second attempt.
    """

    recoverable = True


class InstanceStateError(DatabaseSetupError):
    """
    A lifecycle operation was called in a state that does not allow it.

    Example:
        raise InstanceStateError("Embedded PostgreSQL was stopped and cannot be restarted")
    """

    pass


class DatabaseCreateError(DatabaseSetupError):
    """
    CREATE DATABASE failed on the administrative connection.

    Marked recoverable: failures here are almost always connection problems
    and nothing has been mutated yet.
    """

    recoverable = True


class DumpLoadError(DatabaseSetupError):
    """
    psql could not be run against the dump or exited with a fatal code.
    """

    pass


class ImportVerificationError(DatabaseSetupError):
    """
    The dump was loaded but essential tables are missing afterwards.

    Attributes:
        missing_tables: Every essential table that could not be found
    """

    def __init__(
        self,
        message: str,
        missing_tables: list[str] | None = None,
        details: str | None = None,
    ):
        super().__init__(message, details=details)
        self.missing_tables = list(missing_tables or [])


# ============================================================================
# Migration Errors
# ============================================================================


class MigrationPhaseError(MigratorError):
    """
    Base class for errors raised while validating or applying migration scripts.
    """

    phase = "migration"


class MigrationPathNotDetectedError(MigrationPhaseError):
    """
    No migration path was selected and none could be detected from the database.

    Example:
        raise MigrationPathNotDetectedError(
            "Could not detect database version. Please specify migration path."
        )
    """

    pass


class PreValidationError(MigrationPhaseError):
    """
    Mandatory tables for the selected path are missing.

    Attributes:
        missing_tables: Every mandatory table that could not be found
    """

    def __init__(
        self,
        message: str,
        missing_tables: list[str] | None = None,
        details: str | None = None,
    ):
        super().__init__(message, details=details)
        self.missing_tables = list(missing_tables or [])


class VersionMismatchError(MigrationPhaseError):
    """
    The database version marker does not match the selected path's source version.

    Raised before any script runs, so the database is never mutated.

    Example:
        raise VersionMismatchError(
            "Database version mismatch: database is 17.0 but migration expects Odoo 16.0"
        )
    """

    pass


class ScriptExecutionError(MigrationPhaseError):
    """
    A migration script failed or its post-check returned false.

    Aborts the remainder of the path.

    Attributes:
        script_id: Identifier of the failing script
    """

    def __init__(self, message: str, script_id: str, details: str | None = None):
        super().__init__(message, details=details)
        self.script_id = script_id


# ============================================================================
# Export Errors
# ============================================================================


class ExportError(MigratorError):
    """
    The migrated database could not be dumped or repackaged.

    The captured pg_dump error stream is stored in ``details``.
    """

    phase = "export"


# ============================================================================
# Cancellation
# ============================================================================


class MigrationCancelledError(MigratorError):
    """
    A cancellation request stopped the pipeline at a phase boundary.

    The phase that was about to start is passed explicitly.

    Example:
        raise MigrationCancelledError("Migration cancelled before export", phase="export")
    """

    recoverable = True

    def __init__(self, message: str, phase: str | None = None):
        super().__init__(message)
        self.phase = phase
