"""
Data models for the migration script catalog.

Scripts and paths are pure, immutable data. Executing them is the job of
migration.orchestrator.

Predicates:
    pre_check: SQL returning one row with a boolean ``result`` column.
        False skips the script (no mutation). A missing row means "run".
    post_check: SQL returning one row with a boolean ``valid`` column.
        False fails the script and aborts the path.

The helpers at the bottom build the SQL fragments the catalogs share, so
every guard against optional tables and columns is written the same way.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class MigrationScript:
    """
    One ordered, idempotent transformation step.

    Attributes:
        id: Unique identifier within its path (e.g. "partner-001-trust-field")
        name: Human-readable name
        description: What the step changes
        order: Ordering key; ties run in declaration order
        sql: Statement(s) to execute, may contain several statements
        pre_check: Optional skip predicate (column ``result``)
        post_check: Optional validation predicate (column ``valid``)
    """

    id: str
    name: str
    description: str
    order: int
    sql: str
    pre_check: str | None = None
    post_check: str | None = None


@dataclass(frozen=True)
class MigrationPath:
    """
    A supported upgrade between two consecutive Odoo versions.

    Attributes:
        id: Path identifier ("16-to-17")
        source_version: Declared source version ("16.0")
        target_version: Version marker value after migration ("17.0")
        scripts: Catalog in declaration order
        required_tables: Tables that must exist before any script runs
    """

    id: str
    source_version: str
    target_version: str
    scripts: tuple[MigrationScript, ...]
    required_tables: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        ids = [s.id for s in self.scripts]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"Duplicate script ids in {self.id}: {duplicates}")

    @property
    def source_prefix(self) -> str:
        """Major-version prefix a version marker must start with ("16.")."""
        return self.source_version.split(".")[0] + "."

    @property
    def script_count(self) -> int:
        return len(self.scripts)

    def ordered_scripts(self) -> list[MigrationScript]:
        """Scripts sorted ascending by order; sorted() is stable so ties keep declaration order."""
        return sorted(self.scripts, key=lambda s: s.order)

    def get_script(self, script_id: str) -> MigrationScript | None:
        for script in self.scripts:
            if script.id == script_id:
                return script
        return None

    def matches_version(self, version: str | None) -> bool:
        return bool(version) and version.startswith(self.source_prefix)

    def info(self) -> dict[str, str | int]:
        return {
            "id": self.id,
            "source_version": self.source_version,
            "target_version": self.target_version,
            "script_count": self.script_count,
        }


# ============================================================================
# SQL fragment helpers
# ============================================================================


def table_exists_check(table: str) -> str:
    """Pre-check: run only if the table exists."""
    return (
        "SELECT EXISTS (SELECT FROM pg_tables "
        f"WHERE schemaname = 'public' AND tablename = '{table}') AS result"
    )


def column_exists_check(table: str, column: str) -> str:
    """Pre-check: run only if the column exists."""
    return (
        "SELECT EXISTS (SELECT FROM information_schema.columns "
        f"WHERE table_schema = 'public' AND table_name = '{table}' "
        f"AND column_name = '{column}') AS result"
    )


def column_missing_condition(table: str, column: str) -> str:
    """PL/pgSQL condition that is true when the column does not exist yet."""
    return (
        "NOT EXISTS (SELECT FROM information_schema.columns "
        f"WHERE table_schema = 'public' AND table_name = '{table}' "
        f"AND column_name = '{column}')"
    )


def required_tables_check(tables: tuple[str, ...]) -> str:
    """DO block raising if any of the tables is missing, listing all of them."""
    table_array = ", ".join(f"'{t}'" for t in tables)
    return f"""
      DO $$
      DECLARE
        missing_tables text[];
        critical_tables text[] := ARRAY[{table_array}];
        tbl text;
      BEGIN
        FOREACH tbl IN ARRAY critical_tables
        LOOP
          IF NOT EXISTS (
            SELECT FROM pg_tables
            WHERE schemaname = 'public' AND tablename = tbl
          ) THEN
            missing_tables := array_append(missing_tables, tbl);
          END IF;
        END LOOP;

        IF array_length(missing_tables, 1) > 0 THEN
          RAISE EXCEPTION 'Missing critical tables: %', missing_tables;
        END IF;
      END $$;
    """


def set_config_parameter(key: str, value_sql: str) -> str:
    """
    Upsert an ir_config_parameter row.

    Written as UPDATE + conditional INSERT of (key, value) only, so it works
    whether or not the table has a unique constraint on key or audit columns.

    Args:
        key: Parameter key
        value_sql: SQL expression for the value (quote literals yourself)
    """
    return f"""
      UPDATE ir_config_parameter SET value = {value_sql} WHERE key = '{key}';
      INSERT INTO ir_config_parameter (key, value)
      SELECT '{key}', {value_sql}
      WHERE NOT EXISTS (SELECT 1 FROM ir_config_parameter WHERE key = '{key}');
    """


def config_parameter_equals(key: str, value: str) -> str:
    """Post-check: the parameter row exists and holds value."""
    return (
        "SELECT COALESCE(bool_or(value = "
        f"'{value}'), false) AS valid FROM ir_config_parameter WHERE key = '{key}'"
    )
