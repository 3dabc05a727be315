"""
Configuration constants for the Odoo Backup Migrator.

This module contains global constants used across the application
to avoid tight coupling between modules.
"""

# Archive members every backup must carry (flat or one level nested)
REQUIRED_ARCHIVE_FILES = ("dump.sql", "manifest.json")
DUMP_FILENAME = "dump.sql"
MANIFEST_FILENAME = "manifest.json"
FILESTORE_DIRNAME = "filestore"

# Name prefixes for generated scratch directories and temporary databases
SCRATCH_DIR_PREFIX = "odoo-migration"
DATABASE_NAME_PREFIX = "odoo_migration"
EMBEDDED_DATA_DIR_PREFIX = "odoo_pg"

# Embedded PostgreSQL port search range (inclusive start, exclusive end)
EMBEDDED_PORT_RANGE_START = 15432
EMBEDDED_PORT_RANGE_END = 25432
EMBEDDED_HOST = "127.0.0.1"
EMBEDDED_SUPERUSER = "postgres"

# Server readiness polling
READINESS_TIMEOUT_SECONDS = 10.0
READINESS_POLL_INTERVAL_SECONDS = 0.2

# pg_ctl wait bounds
PG_CTL_START_TIMEOUT_SECONDS = 30
PG_CTL_STOP_TIMEOUT_SECONDS = 15

# Orphaned embedded data directories older than this are force-deleted
ORPHAN_MAX_AGE_SECONDS = 3600

# Environment variable naming the PostgreSQL binary directory
PG_BIN_ENV_VAR = "ODOO_MIGRATOR_PG_BIN"

# Tables whose presence proves a dump loaded far enough to migrate
ESSENTIAL_TABLES = ("ir_module_module", "ir_config_parameter", "res_users")

# Key of the version marker row inside ir_config_parameter
VERSION_MARKER_KEY = "database.version"

# Module states that indicate unfinished module operations
PENDING_MODULE_STATES = ("to upgrade", "to install", "to remove")

# Maximum number of raised error lines kept from a dump load
IMPORT_ERROR_SAMPLE_SIZE = 5

# Progress checkpoints (percent) bounding each pipeline phase
PROGRESS_EXTRACTION = (0, 25)
PROGRESS_DATABASE = (25, 50)
PROGRESS_MIGRATION = (50, 85)
PROGRESS_EXPORT = (85, 100)

# Suffix appended to the output archive stem for the text report
REPORT_SUFFIX = "-report.txt"
