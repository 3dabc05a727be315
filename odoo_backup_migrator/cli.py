"""
CLI entrypoint for the Odoo Backup Migrator.

Commands:
    migrate: Migrate a backup archive to the next Odoo version
    inspect: Validate a backup archive and show its manifest
    paths: List supported migration paths
    cleanup: Remove embedded PostgreSQL instances left by crashed runs

Output modes:
    --format text (default): Rich progress bar, tables and summary panel
    --format json: One JSON document on stdout for automation
    --quiet: Errors plus a single tab-separated summary line

Exit codes:
    0: Success
    1: Configuration error (invalid options, YAML or unknown path)
    2: Extraction error (invalid archive or manifest)
    3: Database error (server, database creation or dump import)
    4: Migration error (version mismatch, script failure)
    5: Export error (pg_dump or output archive)
    6: Cancelled

Examples:
    # Migrate against a local PostgreSQL server
    odoo-backup-migrator migrate -i backup-16.zip -o backup-17.zip

    # Use a private embedded server and force the path
    odoo-backup-migrator migrate -i backup-17.zip -o backup-18.zip --embedded --path 17-to-18

    # Machine-readable result
    odoo-backup-migrator migrate -i in.zip -o out.zip --format json

Security:
    - The PostgreSQL password can come from PGPASSWORD or a config file's
      password_env; it is redacted from every log line
"""

import signal
import threading
from contextlib import contextmanager
from pathlib import Path

import typer
from rich.traceback import install as install_rich_traceback

from odoo_backup_migrator.archive.handler import read_archive_manifest, validate_backup_zip
from odoo_backup_migrator.config.loader import build_migration_config, load_file_config
from odoo_backup_migrator.database.embedded import cleanup_orphaned_instances
from odoo_backup_migrator.exceptions import ConfigurationError, MigratorError
from odoo_backup_migrator.migration.registry import (
    available_paths,
    migration_path_info,
    path_for_version,
)
from odoo_backup_migrator.pipeline.events import CancellationToken, ProgressChannel
from odoo_backup_migrator.pipeline.models import MigrationResult
from odoo_backup_migrator.pipeline.runner import migrate as run_migration
from odoo_backup_migrator.utils.console import (
    create_progress_bar,
    error,
    info,
    output_mode,
    print_banner,
    print_final_summary,
    print_manifest,
    print_paths_table,
    print_script_table,
    success,
    warning,
)
from odoo_backup_migrator.utils.logging import get_logger, setup_logging

install_rich_traceback(show_locals=False)

logger = get_logger("odoo_backup_migrator.cli")

# Exit codes
EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 1
EXIT_EXTRACTION_ERROR = 2
EXIT_DATABASE_ERROR = 3
EXIT_MIGRATION_ERROR = 4
EXIT_EXPORT_ERROR = 5
EXIT_CANCELLED = 6

PHASE_EXIT_CODES = {
    "extraction": EXIT_EXTRACTION_ERROR,
    "database": EXIT_DATABASE_ERROR,
    "migration": EXIT_MIGRATION_ERROR,
    "export": EXIT_EXPORT_ERROR,
}

app = typer.Typer(
    name="odoo-backup-migrator",
    help="Migrate Odoo backup archives to the next major version offline",
    add_completion=False,
)


def _configure_output(format: str, quiet: bool, verbose: bool) -> None:
    if format not in ("text", "json"):
        error(f"Invalid format: {format}. Must be 'text' or 'json'")
        raise typer.Exit(EXIT_CONFIG_ERROR)
    output_mode.format = format
    output_mode.quiet = quiet
    setup_logging(verbose=verbose, quiet_logs=output_mode.is_human())


def exit_code_for(result: MigrationResult) -> int:
    """Map a migration result to the CLI exit code."""
    if result.success:
        return EXIT_SUCCESS
    if any(e.error_type == "MigrationCancelledError" for e in result.errors):
        return EXIT_CANCELLED
    return PHASE_EXIT_CODES.get(result.failed_phase, EXIT_MIGRATION_ERROR)


@app.command()
def migrate(
    input: Path = typer.Option(..., "--input", "-i", help="Backup archive to migrate"),
    output: Path = typer.Option(..., "--output", "-o", help="Migrated archive to write (.zip)"),
    config: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Optional YAML file with postgres settings and defaults",
        dir_okay=False,
    ),
    pg_host: str | None = typer.Option(None, "--pg-host", help="PostgreSQL host"),
    pg_port: int | None = typer.Option(None, "--pg-port", help="PostgreSQL port"),
    pg_user: str | None = typer.Option(None, "--pg-user", help="PostgreSQL user"),
    pg_password: str | None = typer.Option(
        None, "--pg-password", envvar="PGPASSWORD", help="PostgreSQL password", show_default=False
    ),
    admin_db: str | None = typer.Option(
        None, "--admin-db", help="Database used for CREATE/DROP DATABASE"
    ),
    pg_bin_dir: Path | None = typer.Option(
        None, "--pg-bin-dir", help="Directory containing psql, pg_dump, initdb and pg_ctl"
    ),
    embedded: bool = typer.Option(
        False, "--embedded", help="Run a private, disposable PostgreSQL server"
    ),
    path: str | None = typer.Option(
        None, "--path", help="Migration path (16-to-17 or 17-to-18); auto-detected if omitted"
    ),
    keep_temp: bool = typer.Option(
        False, "--keep-temp", help="Keep the scratch directory for debugging"
    ),
    temp_dir: Path | None = typer.Option(
        None, "--temp-dir", help="Base directory for scratch files"
    ),
    format: str = typer.Option(
        "text", "--format", "-f", help="Output format: 'text' or 'json'"
    ),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Minimal output"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """
    Migrate a backup archive to the next Odoo version.

    The archive is replayed into a temporary database, the migration scripts
    are applied, and the result is exported into a new archive with an
    updated manifest. A text report is written next to the output archive.
    The input archive is never modified.
    """
    _configure_output(format, quiet, verbose)
    print_banner(_read_version())

    try:
        file_config = load_file_config(config) if config is not None else None
        migration_config = build_migration_config(
            input,
            output,
            file_config=file_config,
            postgres_overrides={
                "host": pg_host,
                "port": pg_port,
                "user": pg_user,
                "password": pg_password,
                "admin_database": admin_db,
                "bin_dir": pg_bin_dir,
            },
            embedded=embedded or None,
            migration_path=path,
            keep_temp=keep_temp or None,
            temp_dir=temp_dir,
            verbose=verbose,
        )
    except ConfigurationError as e:
        error(f"Configuration error: {e}")
        output_mode.flush_json()
        raise typer.Exit(EXIT_CONFIG_ERROR)

    if migration_config.embedded:
        server = "embedded PostgreSQL"
    else:
        server = f"{migration_config.postgres.host}:{migration_config.postgres.port}"
    info(f"Migrating {input} -> {output} using {server}")

    token = CancellationToken()
    channel = ProgressChannel()

    with _cancel_on_interrupt(token), create_progress_bar() as progress:
        task = progress.add_task("Starting migration...", total=100)
        channel.subscribe(
            lambda update: progress.update(task, completed=update.progress, description=update.message)
        )
        result = run_migration(migration_config, channel=channel, cancel_token=token)

    if result.report is not None:
        print_script_table(result.report.script_results)
    for message in result.warnings:
        warning(message)

    if result.success:
        success(f"Migrated to Odoo {result.target_version}: {result.output_path}")
    else:
        for err in result.errors:
            error(f"{err.phase} phase failed: {err.message}")
            if verbose and err.details:
                error(err.details)

    print_final_summary(result)
    raise typer.Exit(exit_code_for(result))


@contextmanager
def _cancel_on_interrupt(token: CancellationToken):
    """
    Turn Ctrl-C into an advisory cancellation for the duration of a run.

    The running phase completes; the pipeline stops before the next one.
    Only installed from the main thread, where signal handlers are allowed.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def handler(signum, frame) -> None:
        token.cancel("interrupted by user")
        warning("Cancellation requested, stopping after the current phase...")

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


@app.command()
def inspect(
    archive: Path = typer.Argument(..., help="Backup archive to inspect"),
    format: str = typer.Option("text", "--format", "-f", help="Output format: 'text' or 'json'"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """
    Validate a backup archive and show its manifest.

    Exit codes: 0 if the archive is usable, 2 otherwise.
    """
    _configure_output(format, False, verbose)

    problems = validate_backup_zip(archive)
    if problems:
        output_mode.add_json("valid", False)
        output_mode.add_json("problems", problems)
        for problem in problems:
            error(problem)
        output_mode.flush_json()
        raise typer.Exit(EXIT_EXTRACTION_ERROR)

    try:
        manifest = read_archive_manifest(archive)
    except MigratorError as e:
        output_mode.add_json("valid", False)
        error(str(e))
        output_mode.flush_json()
        raise typer.Exit(EXIT_EXTRACTION_ERROR)

    output_mode.add_json("valid", True)
    print_manifest(manifest)

    suggested = path_for_version(str(manifest.get("version")))
    output_mode.add_json("suggested_path", suggested.id if suggested else None)
    if suggested is not None:
        success(f"Valid backup archive; suggested migration path: {suggested.id}")
    else:
        warning(f"No migration path starts from version {manifest.get('version')}")

    output_mode.flush_json()
    raise typer.Exit(EXIT_SUCCESS)


@app.command()
def paths(
    format: str = typer.Option("text", "--format", "-f", help="Output format: 'text' or 'json'"),
):
    """List supported migration paths and their script counts."""
    _configure_output(format, False, False)
    print_paths_table([migration_path_info(path_id) for path_id in available_paths()])
    output_mode.flush_json()
    raise typer.Exit(EXIT_SUCCESS)


@app.command()
def cleanup(
    temp_root: Path | None = typer.Option(
        None, "--temp-root", help="Directory to scan (system temp directory by default)"
    ),
    max_age: int = typer.Option(
        3600, "--max-age", help="Remove data directories older than this many seconds"
    ),
    format: str = typer.Option("text", "--format", "-f", help="Output format: 'text' or 'json'"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Terminate and remove embedded PostgreSQL instances left by crashed runs."""
    _configure_output(format, False, verbose)

    result = cleanup_orphaned_instances(temp_root=temp_root, max_age_seconds=max_age)

    output_mode.add_json("scanned", [str(p) for p in result.scanned])
    output_mode.add_json("signalled_pids", result.signalled_pids)
    output_mode.add_json("removed", [str(p) for p in result.removed])
    if not result.scanned:
        info("No embedded PostgreSQL data directories found")
    success(
        f"Scanned {len(result.scanned)} directories, signalled {len(result.signalled_pids)} "
        f"processes, removed {len(result.removed)} directories"
    )
    output_mode.flush_json()
    raise typer.Exit(EXIT_SUCCESS)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", help="Show version and exit"),
):
    """
    Odoo Backup Migrator - upgrade Odoo backup archives offline.

    Use 'odoo-backup-migrator COMMAND --help' for command documentation.
    """
    if version:
        from rich.console import Console

        Console().print(f"[bold cyan]odoo-backup-migrator[/bold cyan] version {_read_version()}")
        raise typer.Exit(EXIT_SUCCESS)

    if ctx.invoked_subcommand is None:
        from rich.console import Console

        console = Console()
        console.print("[yellow]Use --help to see available commands[/yellow]")
        console.print()
        console.print("Commands:")
        console.print("  migrate  Migrate a backup archive to the next Odoo version")
        console.print("  inspect  Validate a backup archive and show its manifest")
        console.print("  paths    List supported migration paths")
        console.print("  cleanup  Remove leftover embedded PostgreSQL instances")


def _read_version() -> str:
    """Package version from installed metadata."""
    from importlib.metadata import PackageNotFoundError, version

    try:
        return version("odoo-backup-migrator")
    except PackageNotFoundError:
        logger.debug("Package metadata not found, reporting development version")
        return "0.1.0"


if __name__ == "__main__":
    app()
