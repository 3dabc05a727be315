"""
Registry of supported migration paths.

Maps path identifiers to their catalogs and offers the lookups the
orchestrator, pipeline and CLI need.

Example:
    >>> available_paths()
    ['16-to-17', '17-to-18']
    >>> path_for_version("17.2").id
    '17-to-18'
    >>> migration_progress(["pre-001-backup-check"], "16-to-17")
    {'completed': 1, 'total': 15, 'percentage': 7}
"""

from ..exceptions import UnknownMigrationPathError
from . import odoo_16_to_17, odoo_17_to_18
from .models import MigrationPath

MIGRATION_PATHS: dict[str, MigrationPath] = {
    odoo_16_to_17.PATH.id: odoo_16_to_17.PATH,
    odoo_17_to_18.PATH.id: odoo_17_to_18.PATH,
}


def available_paths() -> list[str]:
    """Identifiers of every supported path, in catalog order."""
    return list(MIGRATION_PATHS)


def get_migration_path(path_id: str) -> MigrationPath:
    """
    Look up a path by identifier.

    Raises:
        UnknownMigrationPathError: If the identifier is not in the catalog
    """
    try:
        return MIGRATION_PATHS[path_id]
    except KeyError:
        raise UnknownMigrationPathError(
            f"Unknown migration path '{path_id}'. "
            f"Available paths: {', '.join(available_paths())}"
        ) from None


def path_for_version(version: str | None) -> MigrationPath | None:
    """
    Path whose source major version matches a version marker.

    "16.0" and "16.3" map to 16-to-17, "17.x" to 17-to-18. Returns None for
    a missing or unrecognized version.
    """
    if not version:
        return None
    for path in MIGRATION_PATHS.values():
        if path.matches_version(version):
            return path
    return None


def migration_path_info(path_id: str) -> dict[str, str | int]:
    """Source, target and script count of a path."""
    return get_migration_path(path_id).info()


def migration_progress(applied_ids: list[str], path_id: str) -> dict[str, int]:
    """
    Completion of a path given the identifiers applied so far.

    Returns:
        {"completed": n, "total": m, "percentage": 0-100, halves round up}
    """
    total = get_migration_path(path_id).script_count
    completed = len(applied_ids)
    percentage = int(completed * 100 / total + 0.5) if total > 0 else 0
    return {"completed": completed, "total": total, "percentage": percentage}
