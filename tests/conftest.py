"""
Shared fixtures for the Odoo Backup Migrator test suite.

Provides:
- make_backup_zip: factory building backup archives (flat or nested layout)
- FakeConnection / fake_conn: an in-memory stand-in for a psycopg connection
  that understands the handful of queries the migrator issues, so the
  orchestrator and pipeline can be tested without a PostgreSQL server
"""

import json
import re
import zipfile
from contextlib import contextmanager
from pathlib import Path

import psycopg
import pytest

# ============================================================================
# Backup archives
# ============================================================================

DEFAULT_DUMP = "-- PostgreSQL database dump\nCREATE TABLE res_users (id integer);\n"


@pytest.fixture
def make_backup_zip(tmp_path):
    """
    Build a backup archive.

    Args (of the returned factory):
        name: Archive file name inside tmp_path
        manifest: Manifest dict (None to omit manifest.json)
        dump: Dump text (None to omit dump.sql)
        filestore: Mapping of relative path -> bytes (None to omit filestore/)
        nested: Put everything under a single wrapper folder
    """

    def factory(
        name="backup.zip",
        manifest=None,
        dump=DEFAULT_DUMP,
        filestore=None,
        nested=False,
        include_manifest=True,
    ) -> Path:
        if manifest is None:
            manifest = {"db_name": "acme", "version": "16.0", "timestamp": "2025-01-01T00:00:00Z"}
        prefix = "backup/" if nested else ""
        archive = tmp_path / name
        with zipfile.ZipFile(archive, "w") as zf:
            if dump is not None:
                zf.writestr(f"{prefix}dump.sql", dump)
            if include_manifest:
                zf.writestr(f"{prefix}manifest.json", json.dumps(manifest))
            if filestore is not None:
                zf.writestr(f"{prefix}filestore/", b"")
                for rel, content in filestore.items():
                    zf.writestr(f"{prefix}filestore/{rel}", content)
        return archive

    return factory


# ============================================================================
# Fake psycopg connection
# ============================================================================

ODOO_TABLES = {
    "ir_module_module",
    "ir_module_module_dependency",
    "ir_module_category",
    "ir_config_parameter",
    "ir_model_fields",
    "ir_attachment",
    "ir_asset",
    "ir_ui_view",
    "res_users",
    "res_users_apikeys",
    "res_users_log",
    "res_partner",
    "res_company",
    "account_move",
    "account_tax",
    "account_journal",
    "mail_message",
}

ODOO_COLUMNS = {
    ("ir_module_module_dependency", "name"),
    ("account_move", "payment_state"),
}

MINIMAL_TABLES = {
    "ir_module_module",
    "res_users",
    "res_partner",
    "res_company",
    "ir_config_parameter",
}

_TABLE_LITERAL = re.compile(r"tablename = '(\w+)'")
_COLUMN_LITERAL = re.compile(r"table_name = '(\w+)' AND column_name = '(\w+)'")
_PARAM_EQUALS = re.compile(
    r"value = '([^']*)'\), false\) AS valid FROM ir_config_parameter WHERE key = '([^']*)'"
)
_PARAM_UPDATE = re.compile(r"UPDATE ir_config_parameter SET value = '([^']*)' WHERE key = '([^']*)'")
_COUNT_TABLE = re.compile(r"^SELECT COUNT\(\*\) FROM (\w+)$")


class FakeCursor:
    def __init__(self, conn, dict_rows=False):
        self.conn = conn
        self.dict_rows = dict_rows
        self._rows: list[dict] = []

    def __enter__(self):
        return self

    def __exit__(self, *args):
        return None

    def execute(self, query, params=None):
        self._rows = self.conn._run(str(query), params)
        return self

    def fetchone(self):
        if not self._rows:
            return None
        row = self._rows[0]
        return dict(row) if self.dict_rows else tuple(row.values())

    def fetchall(self):
        if self.dict_rows:
            return [dict(r) for r in self._rows]
        return [tuple(r.values()) for r in self._rows]


class FakeConnection:
    """
    In-memory database used in place of a psycopg connection.

    Attributes:
        tables: Existing table names
        columns: Existing (table, column) pairs beyond those implied by tables
        params: ir_config_parameter contents
        pending_modules: Result of the pending module-state count
        row_counts: COUNT(*) result per table
        orphaned_users: Result of the orphaned partner reference check
        fail_on: SQL fragments that raise psycopg.Error when executed
        statements: Committed non-query statements, in order
    """

    def __init__(
        self,
        tables=None,
        columns=None,
        params=None,
        pending_modules=0,
        row_counts=None,
        orphaned_users=0,
        fail_on=None,
    ):
        self.tables = set(ODOO_TABLES if tables is None else tables)
        self.columns = set(ODOO_COLUMNS if columns is None else columns)
        self.params = dict(params or {})
        self.pending_modules = pending_modules
        self.row_counts = dict(row_counts or {})
        self.orphaned_users = orphaned_users
        self.fail_on = list(fail_on or [])
        self.statements: list[str] = []
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    def close(self):
        self.closed = True

    @contextmanager
    def transaction(self):
        tx = object()
        saved_params = dict(self.params)
        saved_statements = len(self.statements)
        try:
            yield tx
        except psycopg.Rollback as e:
            self._restore(saved_params, saved_statements)
            if e.transaction not in (None, tx):
                raise
        except BaseException:
            self._restore(saved_params, saved_statements)
            raise

    def _restore(self, params, statement_count):
        self.params = params
        del self.statements[statement_count:]

    def cursor(self, row_factory=None):
        return FakeCursor(self, dict_rows=row_factory is not None)

    def execute(self, query, params=None):
        return FakeCursor(self).execute(query, params)

    # ------------------------------------------------------------------

    def _run(self, query: str, params) -> list[dict]:
        for fragment in self.fail_on:
            if fragment in query:
                raise psycopg.errors.RaiseException(f"forced failure on: {fragment}")

        normalized = " ".join(query.split())

        if "pg_size_pretty" in normalized:
            return [{"pg_size_pretty": "8192 kB"}]

        if normalized.startswith("SELECT EXISTS") and "pg_tables" in normalized:
            if params:
                return [{"exists": params[0] in self.tables}]
            table = _TABLE_LITERAL.search(normalized).group(1)
            return [{"result": table in self.tables}]

        if normalized.startswith("SELECT EXISTS") and "information_schema.columns" in normalized:
            if params:
                return [{"exists": (params[0], params[1]) in self.columns}]
            table, column = _COLUMN_LITERAL.search(normalized).groups()
            return [{"result": (table, column) in self.columns}]

        if normalized.startswith("SELECT value FROM ir_config_parameter"):
            self._require("ir_config_parameter")
            value = self.params.get(params[0])
            return [] if value is None else [{"value": value}]

        if "state = ANY" in normalized:
            self._require("ir_module_module")
            return [{"count": self.pending_modules}]

        match = _PARAM_EQUALS.search(normalized)
        if match:
            expected, key = match.groups()
            return [{"valid": self.params.get(key) == expected}]

        if normalized == "SELECT true AS valid":
            return [{"valid": True}]

        if "FROM res_users u LEFT JOIN res_partner" in normalized:
            self._require("res_users", "res_partner")
            return [{"count": self.orphaned_users}]

        if "FROM res_company c LEFT JOIN res_partner" in normalized:
            self._require("res_company", "res_partner")
            return [{"count": 0}]

        if "information_schema.tables" in normalized and "COUNT" in normalized:
            return [{"count": len(self.tables)}]

        if "FROM ir_module_module WHERE state = 'installed'" in normalized:
            self._require("ir_module_module")
            return [{"count": self.row_counts.get("installed_modules", 0)}]

        match = _COUNT_TABLE.match(normalized)
        if match:
            table = match.group(1)
            self._require(table)
            return [{"count": self.row_counts.get(table, 0)}]

        # Anything else is a mutating statement
        for value, key in _PARAM_UPDATE.findall(normalized):
            self.params[key] = value
        self.statements.append(normalized)
        return []

    def _require(self, *tables):
        for table in tables:
            if table not in self.tables:
                raise psycopg.errors.UndefinedTable(f'relation "{table}" does not exist')


@pytest.fixture
def fake_conn():
    """Factory for FakeConnection instances."""
    return FakeConnection


@pytest.fixture
def minimal_tables():
    return set(MINIMAL_TABLES)
