"""
Database operations bridge for the Odoo Backup Migrator.

Administrative commands run over psycopg connections; bulk transfer runs
the PostgreSQL client tools (psql, pg_dump) built by database.commands.

Operations:
    create_database: CREATE DATABASE with a generated unique name
    load_dump / verify_import: replay dump.sql and check essential tables
    export_dump: pg_dump the migrated database
    drop_database: terminate sessions and DROP DATABASE (never raises)
    collect_statistics: post-migration counts, each degrading to 0 on failure

Query helpers (table_exists, column_exists, list_tables, read_version_marker,
count_pending_modules, get_database_size) take an open connection and are
shared with the migration orchestrator.

Connections are opened in autocommit mode; code that needs a transaction
opens one explicitly with ``conn.transaction()``.
"""

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path

import psycopg
from psycopg import sql

from ..config.constants import (
    DATABASE_NAME_PREFIX,
    ESSENTIAL_TABLES,
    IMPORT_ERROR_SAMPLE_SIZE,
    PENDING_MODULE_STATES,
    VERSION_MARKER_KEY,
)
from ..config.schema import PostgresSettings
from ..exceptions import (
    DatabaseCreateError,
    DumpLoadError,
    ExportError,
    ImportVerificationError,
    ToolExecutionError,
)
from ..report.formatters import format_bytes
from ..utils.naming import unique_name
from .commands import pg_dump_command, psql_load_command, run_tool

logger = logging.getLogger(__name__)

# psql exit codes accepted after a load: 0 = ok, 3 = script error (verified separately)
ACCEPTED_PSQL_EXIT_CODES = frozenset({0, 3})

# Markers of raised error lines in psql stderr (English and Swedish locales)
ERROR_LINE_MARKERS = ("ERROR:", "FEL:")

CONNECT_TIMEOUT_SECONDS = 10


# ============================================================================
# Types
# ============================================================================


@dataclass(frozen=True)
class DatabaseHandle:
    """
    A temporary database created for one pipeline run.

    Attributes:
        name: Database name (odoo_migration_{epoch_ms}_{hex8})
        settings: Server the database lives on
        created: False for handles that must not be dropped
    """

    name: str
    settings: PostgresSettings
    created: bool = True


@dataclass
class LoadResult:
    """Outcome of load_dump()."""

    exit_code: int
    error_count: int = 0
    error_sample: list[str] = field(default_factory=list)
    table_count: int = 0


@dataclass
class DatabaseStatistics:
    """Post-migration counts of well-known tables."""

    table_count: int = 0
    module_count: int = 0
    installed_module_count: int = 0
    partner_count: int = 0
    user_count: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


# ============================================================================
# Connections and administrative commands
# ============================================================================


def generate_database_name() -> str:
    """Unique, unquoted-identifier-safe temporary database name."""
    return unique_name(DATABASE_NAME_PREFIX, "_")


def connect(
    settings: PostgresSettings,
    database: str | None = None,
    autocommit: bool = True,
) -> psycopg.Connection:
    """
    Open a psycopg connection.

    Args:
        settings: Server parameters
        database: Database name, defaults to settings.admin_database
        autocommit: Autocommit mode (default True)
    """
    return psycopg.connect(
        **settings.conninfo(database),
        autocommit=autocommit,
        connect_timeout=CONNECT_TIMEOUT_SECONDS,
    )


def create_database(settings: PostgresSettings) -> DatabaseHandle:
    """
    Create a uniquely named temporary database.

    Raises:
        DatabaseCreateError: If the admin connection or CREATE DATABASE fails
    """
    name = generate_database_name()
    logger.info("Creating temporary database", extra={"context": {"db_name": name}})

    try:
        with connect(settings) as conn:
            conn.execute(sql.SQL("CREATE DATABASE {}").format(sql.Identifier(name)))
    except psycopg.Error as e:
        logger.error("Failed to create database", extra={"context": {"error": str(e)}})
        raise DatabaseCreateError(f"Failed to create database {name}: {e}") from e

    logger.debug("Database created successfully")
    return DatabaseHandle(name=name, settings=settings)


def drop_database(handle: DatabaseHandle) -> None:
    """
    Terminate every session on the database and drop it.

    Runs during teardown, so failures are logged and never raised.
    """
    if not handle.created:
        logger.debug("Database was not created, skipping drop")
        return

    logger.info("Dropping temporary database", extra={"context": {"db_name": handle.name}})
    try:
        with connect(handle.settings) as conn:
            conn.execute(
                """
                SELECT pg_terminate_backend(pg_stat_activity.pid)
                FROM pg_stat_activity
                WHERE pg_stat_activity.datname = %s
                  AND pid <> pg_backend_pid()
                """,
                (handle.name,),
            )
            conn.execute(
                sql.SQL("DROP DATABASE IF EXISTS {}").format(sql.Identifier(handle.name))
            )
        logger.debug("Database dropped successfully")
    except (psycopg.Error, OSError) as e:
        logger.warning(
            "Failed to drop temp database",
            extra={"context": {"db_name": handle.name, "error": str(e)}},
        )


# ============================================================================
# Bulk load / export
# ============================================================================


def extract_error_lines(stderr: str) -> list[str]:
    """Lines of psql stderr that report a raised SQL error."""
    return [
        line.strip()
        for line in stderr.splitlines()
        if any(marker in line for marker in ERROR_LINE_MARKERS)
    ]


def load_dump(dump_path: Path | str, handle: DatabaseHandle) -> LoadResult:
    """
    Replay a plain SQL dump into the database with psql.

    Raised SQL errors inside the dump are not fatal (producer dumps often
    contain duplicate constraint errors); they are counted, sampled and
    logged. Import completeness is decided by verify_import(), not by the
    psql exit code.

    Raises:
        DumpLoadError: Dump missing, psql not runnable, or fatal exit code
        ImportVerificationError: Essential tables missing after the load
    """
    dump_path = Path(dump_path)
    logger.info(
        "Loading SQL dump into database",
        extra={"context": {"dump_path": str(dump_path), "database": handle.name}},
    )

    if not dump_path.is_file():
        raise DumpLoadError(f"Dump file not found: {dump_path}")

    logger.debug(f"Dump file size: {format_bytes(dump_path.stat().st_size)}")

    command = psql_load_command(handle.settings, handle.name, dump_path)
    logger.info("Using psql binary", extra={"context": {"path": command.executable}})

    try:
        tool_result = run_tool(command)
    except ToolExecutionError as e:
        raise DumpLoadError(str(e)) from e

    error_lines = extract_error_lines(tool_result.stderr)
    if error_lines:
        logger.warning(
            f"SQL import had {len(error_lines)} errors (may be harmless duplicates)",
            extra={"context": {"sample": error_lines[:IMPORT_ERROR_SAMPLE_SIZE]}},
        )

    if tool_result.exit_code not in ACCEPTED_PSQL_EXIT_CODES:
        logger.error(
            "psql failed", extra={"context": {"exit_code": tool_result.exit_code}}
        )
        raise DumpLoadError(
            f"psql exited with code {tool_result.exit_code}",
            details=tool_result.output,
        )

    logger.info(
        "SQL dump import finished", extra={"context": {"exit_code": tool_result.exit_code}}
    )

    table_count = verify_import(handle)
    return LoadResult(
        exit_code=tool_result.exit_code,
        error_count=len(error_lines),
        error_sample=error_lines[:IMPORT_ERROR_SAMPLE_SIZE],
        table_count=table_count,
    )


def verify_import(handle: DatabaseHandle) -> int:
    """
    Check that every essential table exists after a load.

    Returns:
        Number of tables in the public schema

    Raises:
        ImportVerificationError: Listing every missing essential table
    """
    try:
        with connect(handle.settings, handle.name) as conn:
            missing = [t for t in ESSENTIAL_TABLES if not table_exists(conn, t)]
            if missing:
                raise ImportVerificationError(
                    "SQL dump import incomplete: critical tables missing: "
                    + ", ".join(missing),
                    missing_tables=missing,
                )
            table_count = count_tables(conn)
    except psycopg.Error as e:
        raise ImportVerificationError(f"Could not verify dump import: {e}") from e

    logger.info("Dump import verified", extra={"context": {"table_count": table_count}})
    return table_count


def export_dump(handle: DatabaseHandle, output_path: Path | str) -> Path:
    """
    Dump the database to a plain SQL file with pg_dump.

    Raises:
        ExportError: pg_dump not runnable or non-zero exit (stderr in details)
    """
    output_path = Path(output_path)
    logger.info(
        "Exporting database to SQL dump",
        extra={"context": {"database": handle.name, "output": str(output_path)}},
    )

    try:
        command = pg_dump_command(handle.settings, handle.name, output_path)
        logger.info("Using pg_dump binary", extra={"context": {"path": command.executable}})
        result = run_tool(command)
    except ToolExecutionError as e:
        raise ExportError(str(e)) from e

    if not result.ok:
        logger.error("pg_dump failed", extra={"context": {"exit_code": result.exit_code}})
        raise ExportError(
            f"pg_dump exited with code {result.exit_code}", details=result.output
        )

    logger.info(
        "Database exported successfully",
        extra={"context": {"size": format_bytes(output_path.stat().st_size)}},
    )
    return output_path


# ============================================================================
# Query helpers
# ============================================================================


def table_exists(conn: psycopg.Connection, table_name: str) -> bool:
    row = conn.execute(
        """
        SELECT EXISTS (
            SELECT FROM pg_tables
            WHERE schemaname = 'public' AND tablename = %s
        )
        """,
        (table_name,),
    ).fetchone()
    return bool(row and row[0])


def column_exists(conn: psycopg.Connection, table_name: str, column_name: str) -> bool:
    row = conn.execute(
        """
        SELECT EXISTS (
            SELECT FROM information_schema.columns
            WHERE table_schema = 'public'
              AND table_name = %s
              AND column_name = %s
        )
        """,
        (table_name, column_name),
    ).fetchone()
    return bool(row and row[0])


def list_tables(conn: psycopg.Connection) -> list[str]:
    """Names of all tables in the public schema, sorted."""
    rows = conn.execute(
        "SELECT tablename FROM pg_tables WHERE schemaname = 'public' ORDER BY tablename"
    ).fetchall()
    tables = [row[0] for row in rows]
    logger.debug("Tables in database", extra={"context": {"count": len(tables)}})
    return tables


def count_tables(conn: psycopg.Connection) -> int:
    row = conn.execute(
        "SELECT COUNT(*) FROM information_schema.tables WHERE table_schema = 'public'"
    ).fetchone()
    return int(row[0]) if row else 0


def read_version_marker(conn: psycopg.Connection) -> str | None:
    """
    Value of the database.version row in ir_config_parameter.

    Returns None when the table or the row is missing.
    """
    if not table_exists(conn, "ir_config_parameter"):
        return None
    row = conn.execute(
        "SELECT value FROM ir_config_parameter WHERE key = %s",
        (VERSION_MARKER_KEY,),
    ).fetchone()
    if row is None or row[0] is None:
        return None
    return str(row[0])


def count_pending_modules(conn: psycopg.Connection) -> int:
    """Modules queued for install, upgrade or removal."""
    row = conn.execute(
        "SELECT COUNT(*) FROM ir_module_module WHERE state = ANY(%s)",
        (list(PENDING_MODULE_STATES),),
    ).fetchone()
    return int(row[0]) if row else 0


def get_database_size(conn: psycopg.Connection, database: str) -> str:
    """Human-readable database size, or "unknown" on failure."""
    try:
        with conn.transaction():
            row = conn.execute(
                "SELECT pg_size_pretty(pg_database_size(%s))", (database,)
            ).fetchone()
    except psycopg.Error as e:
        logger.warning("Failed to get database size", extra={"context": {"error": str(e)}})
        return "unknown"
    return str(row[0]) if row and row[0] else "unknown"


STATISTICS_QUERIES: tuple[tuple[str, str], ...] = (
    (
        "table_count",
        "SELECT COUNT(*) FROM information_schema.tables WHERE table_schema = 'public'",
    ),
    ("module_count", "SELECT COUNT(*) FROM ir_module_module"),
    (
        "installed_module_count",
        "SELECT COUNT(*) FROM ir_module_module WHERE state = 'installed'",
    ),
    ("partner_count", "SELECT COUNT(*) FROM res_partner"),
    ("user_count", "SELECT COUNT(*) FROM res_users"),
)


def collect_statistics(conn: psycopg.Connection) -> DatabaseStatistics:
    """
    Count rows of well-known tables.

    A failing query (e.g. a missing table) leaves that statistic at 0 and
    logs a warning; the other statistics are still collected.
    """
    stats = DatabaseStatistics()
    for key, query in STATISTICS_QUERIES:
        try:
            # Savepoint keeps a failed count from aborting a surrounding transaction
            with conn.transaction():
                row = conn.execute(query).fetchone()
            setattr(stats, key, int(row[0]) if row and row[0] is not None else 0)
        except psycopg.Error as e:
            logger.warning(
                f"Failed to collect stat: {key}", extra={"context": {"error": str(e)}}
            )

    logger.info("Post-migration stats", extra={"context": stats.to_dict()})
    return stats
