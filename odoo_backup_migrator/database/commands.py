"""
Typed command builders for the external PostgreSQL client tools.

Every interaction with initdb, pg_ctl, psql and pg_dump goes through a
ToolCommand built here and executed by run_tool(), which returns a
ToolResult (exit code, captured output, duration) instead of a raw process.
Interpreting the exit code is left to the caller: psql, for instance,
treats exit code 3 (script errors) as non-fatal.

Binary resolution:
    find_pg_binary() uses an explicit bin directory when one is given
    (embedded mode), otherwise probes conventional installation
    locations and finally falls back to the bare name so the PATH of the
    invoking environment decides.

Example:
    >>> command = pg_dump_command(settings, "odoo_migration_1762072245123_3f9c2a1b", out)
    >>> result = run_tool(command)
    >>> result.ok
    True

Security:
    Passwords are passed through PGPASSWORD in the child environment, never
    on the command line. ToolCommand.env is excluded from repr().
"""

import glob
import logging
import os
import re
import shutil
import subprocess
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path

from ..config.constants import (
    PG_BIN_ENV_VAR,
    PG_CTL_START_TIMEOUT_SECONDS,
    PG_CTL_STOP_TIMEOUT_SECONDS,
)
from ..config.schema import PostgresSettings
from ..exceptions import PostgresBinaryNotFoundError, ToolExecutionError
from ..utils.time import elapsed_ms

logger = logging.getLogger(__name__)

# Extra seconds granted to a pg_ctl process beyond its own -t wait
_PG_CTL_GRACE_SECONDS = 15


# ============================================================================
# Command and result types
# ============================================================================


@dataclass(frozen=True)
class ToolCommand:
    """
    One invocation of an external PostgreSQL binary.

    Attributes:
        tool: Logical tool name ("initdb", "pg_ctl", "psql", "pg_dump")
        executable: Resolved binary path (or bare name resolved via PATH)
        args: Arguments after the executable
        env: Variables added to the inherited environment
        capture_output: Capture stdout/stderr. When False all standard
            streams are detached, which pg_ctl start requires so the
            server it forks does not hold our pipes open.
        timeout: Seconds before the process is abandoned (None = unbounded)
    """

    tool: str
    executable: str
    args: tuple[str, ...]
    env: dict[str, str] = field(default_factory=dict, repr=False)
    capture_output: bool = True
    timeout: float | None = None

    def argv(self) -> list[str]:
        return [self.executable, *self.args]

    def describe(self) -> str:
        """Command line for logs (contains no secrets)."""
        return " ".join(self.argv())


@dataclass(frozen=True)
class ToolResult:
    """Outcome of a finished ToolCommand."""

    tool: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        """Most useful captured text for error messages (stderr, else stdout)."""
        return (self.stderr or self.stdout).strip()


def run_tool(command: ToolCommand) -> ToolResult:
    """
    Run a ToolCommand to completion.

    A non-zero exit code is NOT an error at this level; it is reported in
    the returned ToolResult.

    Raises:
        ToolExecutionError: If the binary cannot be spawned or the timeout elapses
    """
    logger.debug(f"Running {command.tool}: {command.describe()}")
    env = {**os.environ, **command.env}
    started = time.perf_counter()

    if command.capture_output:
        streams = {"stdout": subprocess.PIPE, "stderr": subprocess.PIPE}
    else:
        streams = {"stdout": subprocess.DEVNULL, "stderr": subprocess.DEVNULL}

    try:
        completed = subprocess.run(
            command.argv(),
            env=env,
            stdin=subprocess.DEVNULL,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=command.timeout,
            check=False,
            **streams,
        )
    except FileNotFoundError as e:
        raise ToolExecutionError(
            f"Failed to spawn {command.tool} ({command.executable}): {e}"
        ) from e
    except subprocess.TimeoutExpired as e:
        raise ToolExecutionError(
            f"{command.tool} did not finish within {command.timeout} seconds"
        ) from e
    except OSError as e:
        raise ToolExecutionError(
            f"Failed to spawn {command.tool} ({command.executable}): {e}"
        ) from e

    result = ToolResult(
        tool=command.tool,
        exit_code=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
        duration_ms=elapsed_ms(started),
    )
    logger.debug(
        f"{command.tool} exited",
        extra={"context": {"exit_code": result.exit_code, "duration_ms": result.duration_ms}},
    )
    return result


# ============================================================================
# Binary resolution
# ============================================================================


def _executable_name(name: str) -> str:
    return f"{name}.exe" if sys.platform == "win32" else name


def _version_key(path: str) -> int:
    """Major version of a .../<version>/bin or .../pgsql-<version>/bin directory."""
    match = re.search(r"(\d+)$", Path(path).parent.name)
    return int(match.group(1)) if match else 0


def conventional_bin_dirs() -> list[Path]:
    """
    Conventional PostgreSQL installation bin directories, newest version first.

    Windows: Program Files/PostgreSQL/<version>/bin
    Linux (Debian/Ubuntu, RHEL): /usr/lib/postgresql/<version>/bin, /usr/pgsql-<version>/bin
    macOS: Homebrew and Postgres.app locations
    """
    candidates: list[str] = []

    if sys.platform == "win32":
        bases = [
            os.environ.get("ProgramFiles"),
            os.environ.get("ProgramFiles(x86)"),
            r"C:\Program Files",
            r"C:\Program Files (x86)",
        ]
        for base in dict.fromkeys(b for b in bases if b):
            found = glob.glob(os.path.join(base, "PostgreSQL", "*", "bin"))
            candidates.extend(sorted(found, key=_version_key, reverse=True))
    else:
        found = glob.glob("/usr/lib/postgresql/*/bin")
        candidates.extend(sorted(found, key=_version_key, reverse=True))
        rhel = glob.glob("/usr/pgsql-*/bin")
        candidates.extend(sorted(rhel, key=_version_key, reverse=True))
        if sys.platform == "darwin":
            candidates.extend(
                [
                    "/opt/homebrew/bin",
                    "/usr/local/bin",
                    "/Applications/Postgres.app/Contents/Versions/latest/bin",
                ]
            )

    return [Path(c) for c in candidates if Path(c).is_dir()]


def find_pg_binary(name: str, bin_dir: Path | str | None = None) -> str:
    """
    Locate a PostgreSQL binary.

    Args:
        name: Binary name without extension ("psql", "pg_dump", ...)
        bin_dir: Explicit directory. When given, the binary must exist there.

    Returns:
        Absolute path, or the bare name to let PATH resolve it

    Raises:
        PostgresBinaryNotFoundError: If bin_dir is given but lacks the binary
    """
    executable = _executable_name(name)

    if bin_dir is not None:
        path = Path(bin_dir) / executable
        if path.is_file():
            return str(path)
        raise PostgresBinaryNotFoundError(f"PostgreSQL binary not found: {path}")

    for directory in conventional_bin_dirs():
        path = directory / executable
        if path.is_file():
            return str(path)

    return name


def resolve_postgres_bin_dir(explicit: Path | str | None = None) -> Path:
    """
    Find the directory holding the server binaries (initdb, pg_ctl).

    Order: explicit argument, ODOO_MIGRATOR_PG_BIN, conventional
    installation locations, the directory of initdb on PATH.

    Raises:
        PostgresBinaryNotFoundError: If no directory with initdb is found
    """
    initdb = _executable_name("initdb")

    if explicit is not None:
        directory = Path(explicit)
        if (directory / initdb).is_file():
            return directory
        raise PostgresBinaryNotFoundError(
            f"PostgreSQL binary not found: {directory / initdb}"
        )

    from_env = os.environ.get(PG_BIN_ENV_VAR)
    if from_env:
        directory = Path(from_env)
        if (directory / initdb).is_file():
            return directory
        raise PostgresBinaryNotFoundError(
            f"{PG_BIN_ENV_VAR} points to {directory}, which has no {initdb}"
        )

    for directory in conventional_bin_dirs():
        if (directory / initdb).is_file():
            return directory

    on_path = shutil.which("initdb")
    if on_path:
        return Path(on_path).parent

    raise PostgresBinaryNotFoundError(
        "Embedded PostgreSQL binaries not found. Install PostgreSQL or set "
        f"{PG_BIN_ENV_VAR} to its bin directory."
    )


# ============================================================================
# Command builders
# ============================================================================


def initdb_command(bin_dir: Path, data_dir: Path, user: str, pwfile: Path) -> ToolCommand:
    """initdb with password authentication, UTF8 encoding and no locale."""
    return ToolCommand(
        tool="initdb",
        executable=find_pg_binary("initdb", bin_dir),
        args=(
            "-D", str(data_dir),
            "-U", user,
            "-A", "password",
            "--pwfile", str(pwfile),
            "-E", "UTF8",
            "--no-locale",
        ),
    )


def pg_ctl_start_command(
    bin_dir: Path,
    data_dir: Path,
    log_file: Path,
    port: int,
    wait_seconds: int = PG_CTL_START_TIMEOUT_SECONDS,
) -> ToolCommand:
    """pg_ctl start that waits for startup; server output goes to log_file."""
    return ToolCommand(
        tool="pg_ctl",
        executable=find_pg_binary("pg_ctl", bin_dir),
        args=(
            "start",
            "-D", str(data_dir),
            "-l", str(log_file),
            "-o", f"-p {port}",
            "-w",
            "-t", str(wait_seconds),
        ),
        capture_output=False,
        timeout=wait_seconds + _PG_CTL_GRACE_SECONDS,
    )


def pg_ctl_stop_command(
    bin_dir: Path,
    data_dir: Path,
    mode: str = "fast",
    wait_seconds: int = PG_CTL_STOP_TIMEOUT_SECONDS,
) -> ToolCommand:
    """pg_ctl stop in the given shutdown mode ("smart", "fast", "immediate")."""
    return ToolCommand(
        tool="pg_ctl",
        executable=find_pg_binary("pg_ctl", bin_dir),
        args=("stop", "-D", str(data_dir), "-m", mode, "-w", "-t", str(wait_seconds)),
        capture_output=False,
        timeout=wait_seconds + _PG_CTL_GRACE_SECONDS,
    )


def _client_args(settings: PostgresSettings, database: str) -> tuple[str, ...]:
    return (
        "-h", settings.host,
        "-p", str(settings.port),
        "-U", settings.user,
        "-d", database,
    )


def psql_load_command(settings: PostgresSettings, database: str, dump_path: Path) -> ToolCommand:
    """
    psql replaying a plain dump.

    No ON_ERROR_STOP: producer dumps routinely contain harmless duplicate
    constraint errors. The caller verifies the import separately.
    """
    return ToolCommand(
        tool="psql",
        executable=find_pg_binary("psql", settings.bin_dir),
        args=(*_client_args(settings, database), "-f", str(dump_path), "-q"),
        env={"PGPASSWORD": settings.password},
    )


def pg_dump_command(settings: PostgresSettings, database: str, output_path: Path) -> ToolCommand:
    """pg_dump to a plain SQL file without ownership or privilege statements."""
    return ToolCommand(
        tool="pg_dump",
        executable=find_pg_binary("pg_dump", settings.bin_dir),
        args=(
            *_client_args(settings, database),
            "-f", str(output_path),
            "--no-owner",
            "--no-privileges",
            "--format=plain",
        ),
        env={"PGPASSWORD": settings.password},
    )
