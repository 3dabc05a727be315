"""
Configuration loader for the Odoo Backup Migrator.

This module loads the optional YAML configuration file, validates it with
Pydantic models, resolves the database password from the environment, and
merges command-line overrides into a MigrationConfig.

Functions:
    load_file_config: Load and validate a migrator YAML file
    resolve_postgres_settings: Merge file values and overrides into PostgresSettings
    build_migration_config: Produce the MigrationConfig handed to migrate()
"""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from odoo_backup_migrator.exceptions import (
    ConfigFileNotFoundError,
    ConfigValidationError,
)

from .constants import PG_BIN_ENV_VAR
from .schema import FileConfig, MigrationConfig, PostgresSettings


def _format_validation_error(error: ValidationError, source: str) -> str:
    """Render a pydantic ValidationError as one `loc: msg` line per problem."""
    error_messages = []
    for item in error.errors():
        loc = ".".join(str(x) for x in item["loc"]) or "<root>"
        error_messages.append(f"  - {loc}: {item['msg']}")
    return f"Configuration validation failed in {source}:\n" + "\n".join(error_messages)


def load_file_config(config_path: str | Path) -> FileConfig:
    """
    Load a migrator YAML file.

    Args:
        config_path: Path to the YAML file (relative or absolute)

    Returns:
        Validated FileConfig. An empty file yields all defaults.

    Raises:
        ConfigFileNotFoundError: If the file doesn't exist
        ConfigValidationError: If YAML is invalid or validation fails

    Security:
        - Uses yaml.safe_load() to prevent code injection
        - Passwords should be referenced through postgres.password_env
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigFileNotFoundError(f"Configuration file not found: {config_path}")

    try:
        with config_path.open(encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigValidationError(f"Invalid YAML syntax in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigValidationError(
            f"Failed to read configuration file {config_path}: {e}"
        ) from e

    if raw_config is None:
        return FileConfig()

    if not isinstance(raw_config, dict):
        raise ConfigValidationError(
            f"Configuration file must contain a mapping at top level: {config_path}"
        )

    try:
        return FileConfig.model_validate(raw_config)
    except ValidationError as e:
        raise ConfigValidationError(_format_validation_error(e, str(config_path))) from e


def resolve_postgres_settings(
    file_config: FileConfig | None = None,
    overrides: dict[str, Any] | None = None,
) -> PostgresSettings:
    """
    Merge file values, environment and explicit overrides into PostgresSettings.

    Precedence (highest first): overrides, file values, environment
    (ODOO_MIGRATOR_PG_BIN for bin_dir), model defaults. Overrides whose value
    is None are ignored.

    Raises:
        ConfigValidationError: If password_env names an unset variable or the
            merged values fail validation

    Security:
        - NEVER logs the resolved password
    """
    values: dict[str, Any] = {}

    env_bin_dir = os.environ.get(PG_BIN_ENV_VAR)
    if env_bin_dir:
        values["bin_dir"] = env_bin_dir

    if file_config is not None:
        file_pg = file_config.postgres
        for field in ("host", "port", "user", "password", "admin_database", "bin_dir"):
            value = getattr(file_pg, field)
            if value is not None:
                values[field] = value

        if file_pg.password_env is not None:
            password = os.environ.get(file_pg.password_env)
            if password is None:
                raise ConfigValidationError(
                    f"Environment variable {file_pg.password_env} "
                    "(postgres.password_env) is not set"
                )
            values["password"] = password

    for key, value in (overrides or {}).items():
        if value is not None:
            values[key] = value

    try:
        return PostgresSettings.model_validate(values)
    except ValidationError as e:
        raise ConfigValidationError(_format_validation_error(e, "postgres settings")) from e


def build_migration_config(
    input_path: str | Path,
    output_path: str | Path,
    file_config: FileConfig | None = None,
    postgres_overrides: dict[str, Any] | None = None,
    **options: Any,
) -> MigrationConfig:
    """
    Build the MigrationConfig for one run.

    Args:
        input_path: Backup archive to migrate
        output_path: Archive to produce
        file_config: Optional values loaded by load_file_config()
        postgres_overrides: Explicit connection values (e.g. from CLI flags)
        **options: MigrationConfig fields (embedded, migration_path, keep_temp,
            temp_dir, verbose, on_progress). None values fall back to the file
            config and then to defaults.

    Raises:
        ConfigValidationError: If the merged configuration is invalid

    Example:
        >>> config = build_migration_config(
        ...     "backup-16.zip", "backup-17.zip", migration_path="16-to-17"
        ... )
        >>> config.migration_path
        '16-to-17'
    """
    postgres = resolve_postgres_settings(file_config, postgres_overrides)

    values: dict[str, Any] = {
        "input_path": input_path,
        "output_path": output_path,
        "postgres": postgres,
    }

    if file_config is not None:
        for field in ("embedded", "keep_temp", "temp_dir"):
            value = getattr(file_config, field)
            if value is not None:
                values[field] = value

    for key, value in options.items():
        if value is not None:
            values[key] = value

    try:
        return MigrationConfig.model_validate(values)
    except ValidationError as e:
        raise ConfigValidationError(_format_validation_error(e, "migration settings")) from e
