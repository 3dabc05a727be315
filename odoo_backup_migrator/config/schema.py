"""
Configuration schema models for the Odoo Backup Migrator.

This module defines Pydantic models for validating migration settings, both
the optional YAML configuration file and the fully resolved configuration
handed to the pipeline coordinator.

Models:
    PostgresSettings: Connection parameters for the PostgreSQL server
    FilePostgresSettings: PostgreSQL section of the YAML file (may indirect the password)
    FileConfig: Root model of the optional YAML file
    MigrationConfig: Resolved configuration consumed by migrate()
"""

from collections.abc import Callable
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

MigrationPathId = Literal["16-to-17", "17-to-18"]


class PostgresSettings(BaseModel):
    """
    Connection parameters for a PostgreSQL server.

    In server mode these point at a long-lived server where the temporary
    database is created. In embedded mode host, port and password are replaced
    by those of the private instance; bin_dir still selects the binaries.

    Attributes:
        host: Server host name or address
        port: Server TCP port (1..65535)
        user: Role used for every connection and client tool
        password: Password of that role
        admin_database: Database used for CREATE/DROP DATABASE statements
        bin_dir: Directory containing psql, pg_dump, initdb and pg_ctl
    """

    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: str = Field(default="postgres", repr=False)
    admin_database: str = "postgres"
    bin_dir: Path | None = None

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate port is a usable TCP port."""
        if not 1 <= v <= 65535:
            raise ValueError(f"port must be between 1 and 65535 (got: {v})")
        return v

    @field_validator("host", "user", "admin_database")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        """Validate required text fields are non-empty."""
        if not v or v.isspace():
            raise ValueError("value cannot be empty")
        return v

    def conninfo(self, database: str | None = None) -> dict[str, Any]:
        """
        Build psycopg connection keyword arguments.

        Args:
            database: Database to connect to. Defaults to admin_database.

        Returns:
            Keyword arguments for psycopg.connect()
        """
        return {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "password": self.password,
            "dbname": database or self.admin_database,
        }


class FilePostgresSettings(BaseModel):
    """
    PostgreSQL section of the YAML configuration file.

    The password may be given inline or, preferably, through password_env,
    the name of an environment variable resolved at load time.
    """

    model_config = ConfigDict(extra="forbid")

    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = Field(default=None, repr=False)
    password_env: str | None = None
    admin_database: str | None = None
    bin_dir: Path | None = None

    @model_validator(mode="after")
    def validate_password_source(self) -> "FilePostgresSettings":
        """Validate at most one password source is configured."""
        if self.password is not None and self.password_env is not None:
            raise ValueError("set either password or password_env, not both")
        return self


class FileConfig(BaseModel):
    """
    Root model of the optional migrator YAML file.

    Example:
        postgres:
          host: db.internal
          user: odoo
          password_env: ODOO_PG_PASSWORD
        embedded: false
        keep_temp: false
    """

    model_config = ConfigDict(extra="forbid")

    postgres: FilePostgresSettings = Field(default_factory=FilePostgresSettings)
    embedded: bool | None = None
    keep_temp: bool | None = None
    temp_dir: Path | None = None


class MigrationConfig(BaseModel):
    """
    Resolved configuration for one migration run.

    Attributes:
        input_path: Backup archive to migrate
        output_path: Archive to write (must end in .zip, must differ from input)
        postgres: Server connection parameters
        embedded: Bring up a private PostgreSQL instance instead of using postgres
        migration_path: Explicit path selector; auto-detected when None
        keep_temp: Retain the scratch directory after the run
        temp_dir: Base directory for the scratch directory (system temp if None)
        verbose: Verbose logging requested
        on_progress: Optional callback receiving ProgressUpdate events
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    input_path: Path
    output_path: Path
    postgres: PostgresSettings = Field(default_factory=PostgresSettings)
    embedded: bool = False
    migration_path: MigrationPathId | None = None
    keep_temp: bool = False
    temp_dir: Path | None = None
    verbose: bool = False
    on_progress: Callable[[Any], None] | None = Field(default=None, exclude=True)

    @field_validator("output_path")
    @classmethod
    def validate_output_suffix(cls, v: Path) -> Path:
        """Validate the output archive has a .zip suffix."""
        if v.suffix.lower() != ".zip":
            raise ValueError(f"output_path must end in .zip (got: {v})")
        return v

    @model_validator(mode="after")
    def validate_distinct_paths(self) -> "MigrationConfig":
        """Validate the input archive is never overwritten."""
        if self.input_path.expanduser().resolve() == self.output_path.expanduser().resolve():
            raise ValueError("input_path and output_path must be different files")
        return self
