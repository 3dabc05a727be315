"""
Embedded PostgreSQL lifecycle manager.

Owns one disposable PostgreSQL server process end to end: port allocation,
initdb, start, readiness polling, stop and data directory removal.

Lifecycle:
    UNINITIALIZED -> INITIALIZED -> RUNNING -> STOPPED -> CLEANED_UP

A stopped instance is never restarted; a fresh EmbeddedPostgres is required.

The instance trades durability for speed (fsync off, minimal WAL, enlarged
buffers). A crash only means re-running the migration from the original
archive; nothing in the data directory is ever recovered.

Orphan recovery:
    cleanup_orphaned_instances() scans the system temp directory for data
    directories left by crashed runs, signals their recorded postmaster and
    removes directories older than one hour.

Example:
    >>> with EmbeddedPostgres() as pg:
    ...     info = pg.get_connection_info()
    ...     info.port
    15432
"""

import logging
import os
import secrets
import shutil
import signal
import socket
import sys
import tempfile
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from tenacity import RetryError, Retrying, retry_if_exception_type, stop_after_delay, wait_fixed

from ..config.constants import (
    EMBEDDED_DATA_DIR_PREFIX,
    EMBEDDED_HOST,
    EMBEDDED_PORT_RANGE_END,
    EMBEDDED_PORT_RANGE_START,
    EMBEDDED_SUPERUSER,
    ORPHAN_MAX_AGE_SECONDS,
    READINESS_POLL_INTERVAL_SECONDS,
    READINESS_TIMEOUT_SECONDS,
)
from ..config.schema import PostgresSettings
from ..exceptions import (
    InitializationError,
    InstanceStateError,
    ReadinessTimeoutError,
    StartupError,
    ToolExecutionError,
)
from ..utils.naming import unique_name
from .commands import (
    initdb_command,
    pg_ctl_start_command,
    pg_ctl_stop_command,
    resolve_postgres_bin_dir,
    run_tool,
)

logger = logging.getLogger(__name__)

SERVER_LOG_FILENAME = "server.log"
POSTMASTER_PID_FILENAME = "postmaster.pid"

# Lines of server.log quoted in a StartupError
_LOG_TAIL_LINES = 40

PERFORMANCE_SETTINGS = """
# === Embedded migration database: optimized for speed ===
# Durability disabled (disposable database, crash = restart migration)
fsync = off
synchronous_commit = off
full_page_writes = off

# WAL tuning
wal_level = minimal
max_wal_senders = 0
wal_buffers = 64MB
max_wal_size = 2GB

# Memory (sized for migration workload)
shared_buffers = 256MB
work_mem = 64MB
maintenance_work_mem = 256MB
effective_cache_size = 512MB

# Checkpoint tuning
checkpoint_completion_target = 0.9

# Reduce logging noise
log_min_messages = warning
"""


class InstanceState(Enum):
    """Lifecycle states of an EmbeddedPostgres."""

    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    RUNNING = "running"
    STOPPED = "stopped"
    CLEANED_UP = "cleaned_up"


@dataclass(frozen=True)
class ConnectionInfo:
    """Connection parameters of a running embedded instance."""

    host: str
    port: int
    user: str
    password: str = field(repr=False)


def find_free_port(
    start: int = EMBEDDED_PORT_RANGE_START,
    end: int = EMBEDDED_PORT_RANGE_END,
    host: str = EMBEDDED_HOST,
) -> int:
    """
    Find a TCP port in [start, end) that can currently be bound on host.

    Each candidate is bound and released immediately, so the port can in
    theory be taken by another process before the server binds it.

    Raises:
        InitializationError: If every port in the range is taken
    """
    for port in range(start, end):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            try:
                sock.bind((host, port))
            except OSError:
                continue
            return port
    raise InitializationError(f"No free port found in range {start}-{end - 1}")


def wait_for_port(
    host: str,
    port: int,
    timeout: float = READINESS_TIMEOUT_SECONDS,
    interval: float = READINESS_POLL_INTERVAL_SECONDS,
) -> None:
    """
    Poll a TCP port until it accepts connections.

    Raises:
        ReadinessTimeoutError: If the port is still closed after timeout seconds
    """

    def _probe() -> None:
        with socket.create_connection((host, port), timeout=1.0):
            pass

    try:
        for attempt in Retrying(
            stop=stop_after_delay(timeout),
            wait=wait_fixed(interval),
            retry=retry_if_exception_type(OSError),
            reraise=False,
        ):
            with attempt:
                _probe()
    except RetryError as e:
        raise ReadinessTimeoutError(
            f"PostgreSQL did not become ready within {int(timeout * 1000)}ms "
            f"on {host}:{port}"
        ) from e


class EmbeddedPostgres:
    """
    A private, disposable PostgreSQL server.

    Args:
        bin_dir: Directory with initdb and pg_ctl. Resolved by
            resolve_postgres_bin_dir() at init() time when None.
        data_dir: Data directory. When None a unique odoo_pg_* directory in
            the system temp directory is used and deleted by cleanup().
            A caller-supplied directory is never deleted by cleanup().
        port: Listening port, 0 to pick a free one
        user: Superuser name
        password: Superuser password, freshly generated when None
    """

    def __init__(
        self,
        bin_dir: Path | str | None = None,
        data_dir: Path | str | None = None,
        port: int = 0,
        user: str = EMBEDDED_SUPERUSER,
        password: str | None = None,
    ):
        self._requested_bin_dir = Path(bin_dir) if bin_dir is not None else None
        self.bin_dir: Path | None = None
        self.auto_data_dir = data_dir is None
        self.data_dir = (
            Path(data_dir)
            if data_dir is not None
            else Path(tempfile.gettempdir()) / unique_name(EMBEDDED_DATA_DIR_PREFIX, "_")
        )
        self.port = port
        self.user = user
        self._password = password or secrets.token_urlsafe(24)
        self.state = InstanceState.UNINITIALIZED

    def __repr__(self) -> str:
        return (
            f"EmbeddedPostgres(data_dir={str(self.data_dir)!r}, port={self.port}, "
            f"state={self.state.value})"
        )

    def __enter__(self) -> "EmbeddedPostgres":
        self.init()
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    @property
    def log_file(self) -> Path:
        return self.data_dir / SERVER_LOG_FILENAME

    def is_running(self) -> bool:
        return self.state is InstanceState.RUNNING

    # ------------------------------------------------------------------
    # init
    # ------------------------------------------------------------------

    def init(self) -> None:
        """
        Allocate a port, run initdb and append the performance settings.

        Idempotent once initialized (also while running).

        Raises:
            InitializationError: initdb failed (tool output in details)
            PostgresBinaryNotFoundError: initdb could not be located
            InstanceStateError: The instance was already stopped
        """
        if self.state in (InstanceState.INITIALIZED, InstanceState.RUNNING):
            return
        if self.state is not InstanceState.UNINITIALIZED:
            raise InstanceStateError(
                f"Embedded PostgreSQL is {self.state.value} and cannot be re-initialized"
            )

        self.bin_dir = resolve_postgres_bin_dir(self._requested_bin_dir)

        if self.port == 0:
            self.port = find_free_port()
            logger.info("Auto-selected port", extra={"context": {"port": self.port}})

        # initdb requires an empty or missing directory
        if self.data_dir.exists():
            shutil.rmtree(self.data_dir, ignore_errors=True)

        logger.info(
            "Initializing PostgreSQL data directory",
            extra={"context": {"data_dir": str(self.data_dir), "port": self.port}},
        )

        # The password file must live outside the data directory
        fd, pwfile_name = tempfile.mkstemp(prefix="pgpass_")
        pwfile = Path(pwfile_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(self._password)

            command = initdb_command(self.bin_dir, self.data_dir, self.user, pwfile)
            try:
                result = run_tool(command)
            except ToolExecutionError as e:
                raise InitializationError(str(e)) from e

            if not result.ok:
                raise InitializationError(
                    f"initdb exited with code {result.exit_code}",
                    details=result.output,
                )
        finally:
            pwfile.unlink(missing_ok=True)

        self._write_performance_config()
        self.state = InstanceState.INITIALIZED
        logger.info("PostgreSQL data directory initialized")

    def _write_performance_config(self) -> None:
        conf_path = self.data_dir / "postgresql.conf"
        lines = [
            PERFORMANCE_SETTINGS,
            "# Listener",
            f"listen_addresses = '{EMBEDDED_HOST}'",
            f"port = {self.port}",
        ]
        if sys.platform != "win32":
            lines.append("unix_socket_directories = ''")
        try:
            with conf_path.open("a", encoding="utf-8") as f:
                f.write("\n".join(lines) + "\n")
        except OSError as e:
            raise InitializationError(f"Cannot write {conf_path}: {e}") from e
        logger.debug("Performance config written to postgresql.conf")

    # ------------------------------------------------------------------
    # start / stop
    # ------------------------------------------------------------------

    def start(self) -> None:
        """
        Start the server and wait until it accepts TCP connections.

        Raises:
            InstanceStateError: Not initialized, or already stopped
            StartupError: pg_ctl start failed (server log tail in details)
            ReadinessTimeoutError: The port never opened
        """
        if self.state is InstanceState.RUNNING:
            return
        if self.state is InstanceState.UNINITIALIZED:
            raise InstanceStateError("PostgreSQL not initialized. Call init() first.")
        if self.state is not InstanceState.INITIALIZED:
            raise InstanceStateError(
                "Embedded PostgreSQL was stopped and cannot be restarted"
            )

        logger.info("Starting embedded PostgreSQL", extra={"context": {"port": self.port}})

        command = pg_ctl_start_command(self.bin_dir, self.data_dir, self.log_file, self.port)
        try:
            result = run_tool(command)
        except ToolExecutionError as e:
            raise StartupError(str(e), details=self._read_log_tail()) from e

        if not result.ok:
            raise StartupError(
                f"pg_ctl start exited with code {result.exit_code}",
                details=self._read_log_tail(),
            )

        # From here on stop() must shut the server down, even if readiness fails
        self.state = InstanceState.RUNNING
        wait_for_port(EMBEDDED_HOST, self.port)
        logger.info("Embedded PostgreSQL started", extra={"context": {"port": self.port}})

    def _read_log_tail(self) -> str:
        try:
            lines = self.log_file.read_text(encoding="utf-8", errors="replace").splitlines()
        except OSError:
            return ""
        return "\n".join(lines[-_LOG_TAIL_LINES:])

    def _run_stop(self, mode: str) -> bool:
        try:
            result = run_tool(pg_ctl_stop_command(self.bin_dir, self.data_dir, mode))
        except ToolExecutionError as e:
            logger.warning(f"pg_ctl stop -m {mode} failed: {e}")
            return False
        if not result.ok:
            logger.warning(f"pg_ctl stop -m {mode} exited with code {result.exit_code}")
        return result.ok

    def stop(self) -> None:
        """
        Shut the server down: fast mode first, immediate mode as fallback.

        Never raises; failures are logged so cleanup can proceed.
        """
        if self.state is not InstanceState.RUNNING:
            return

        logger.info("Stopping embedded PostgreSQL")
        if self._run_stop("fast"):
            logger.info("Embedded PostgreSQL stopped")
        else:
            logger.warning("Failed to stop PostgreSQL gracefully, attempting immediate shutdown")
            if not self._run_stop("immediate"):
                logger.warning("Immediate shutdown also failed")
        self.state = InstanceState.STOPPED

    def cleanup(self) -> None:
        """
        Stop the server and delete an auto-generated data directory.

        Never raises. Safe to call more than once.
        """
        if self.state is InstanceState.CLEANED_UP:
            return

        self.stop()

        if self.auto_data_dir and self.data_dir.exists():
            logger.info(
                "Cleaning up data directory",
                extra={"context": {"data_dir": str(self.data_dir)}},
            )
            try:
                shutil.rmtree(self.data_dir)
            except OSError as e:
                logger.warning(
                    "Failed to clean up data directory",
                    extra={"context": {"data_dir": str(self.data_dir), "error": str(e)}},
                )
        self.state = InstanceState.CLEANED_UP

    # ------------------------------------------------------------------
    # connection parameters
    # ------------------------------------------------------------------

    def get_connection_info(self) -> ConnectionInfo:
        """
        Connection parameters of the running server.

        Raises:
            InstanceStateError: If the server is not running
        """
        if self.state is not InstanceState.RUNNING:
            raise InstanceStateError(
                f"Connection info is only available while running (state: {self.state.value})"
            )
        return ConnectionInfo(
            host=EMBEDDED_HOST, port=self.port, user=self.user, password=self._password
        )

    def postgres_settings(self, admin_database: str = "postgres") -> PostgresSettings:
        """PostgresSettings pointing the operations bridge at this instance."""
        info = self.get_connection_info()
        return PostgresSettings(
            host=info.host,
            port=info.port,
            user=info.user,
            password=info.password,
            admin_database=admin_database,
            bin_dir=self.bin_dir,
        )


# ============================================================================
# Orphan recovery
# ============================================================================


@dataclass
class OrphanCleanupResult:
    """What cleanup_orphaned_instances() found and did."""

    scanned: list[Path] = field(default_factory=list)
    signalled_pids: list[int] = field(default_factory=list)
    removed: list[Path] = field(default_factory=list)


def _read_postmaster_pid(data_dir: Path) -> int | None:
    pid_file = data_dir / POSTMASTER_PID_FILENAME
    try:
        first_line = pid_file.read_text(encoding="utf-8").splitlines()[0]
        pid = int(first_line.strip())
    except (OSError, IndexError, ValueError):
        return None
    return pid if pid > 0 else None


def cleanup_orphaned_instances(
    temp_root: Path | str | None = None,
    max_age_seconds: float = ORPHAN_MAX_AGE_SECONDS,
) -> OrphanCleanupResult:
    """
    Terminate and remove embedded instances left behind by crashed runs.

    For every odoo_pg_* directory under temp_root (system temp directory by
    default): send SIGTERM to the pid recorded in postmaster.pid, then
    force-delete the directory if it is older than max_age_seconds,
    whether or not the signal succeeded.

    Never raises; problems are logged.
    """
    root = Path(temp_root) if temp_root is not None else Path(tempfile.gettempdir())
    result = OrphanCleanupResult()

    try:
        candidates = sorted(root.glob(f"{EMBEDDED_DATA_DIR_PREFIX}_*"))
    except OSError as e:
        logger.warning(f"Orphan scan of {root} failed: {e}")
        return result

    now = time.time()
    for data_dir in candidates:
        if not data_dir.is_dir():
            continue
        result.scanned.append(data_dir)

        pid = _read_postmaster_pid(data_dir)
        if pid is not None and pid != os.getpid():
            logger.info(
                "Found orphaned PostgreSQL instance",
                extra={"context": {"pid": pid, "data_dir": str(data_dir)}},
            )
            try:
                os.kill(pid, signal.SIGTERM)
                result.signalled_pids.append(pid)
            except OSError as e:
                logger.debug(f"Could not signal pid {pid}: {e}")

        try:
            age = now - data_dir.stat().st_mtime
        except OSError:
            continue
        if age > max_age_seconds:
            shutil.rmtree(data_dir, ignore_errors=True)
            if data_dir.exists():
                logger.warning(f"Failed to remove old data directory: {data_dir}")
            else:
                result.removed.append(data_dir)
                logger.info(
                    "Cleaned up old data directory",
                    extra={"context": {"data_dir": str(data_dir)}},
                )

    return result
