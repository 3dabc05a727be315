"""
Backup archive layout and path conventions for the Odoo Backup Migrator.

A backup archive is a zip container with this structure:

    dump.sql            plain-text PostgreSQL dump (required)
    manifest.json       {db_name, version, modules?, timestamp?} (required)
    filestore/          attachment tree (optional, expected)

Producers are inconsistent about wrapping the three members in one folder,
so every lookup here accepts the flat layout and exactly one level of
nesting (``backup/dump.sql``). Deeper nesting is rejected.

Example:
    >>> find_member(["mydb/dump.sql", "mydb/manifest.json"], "dump.sql")
    'mydb/dump.sql'
    >>> get_report_path(Path("/out/backup-17.zip"))
    PosixPath('/out/backup-17-report.txt')
"""

from pathlib import Path

from ..config.constants import (
    DUMP_FILENAME,
    FILESTORE_DIRNAME,
    MANIFEST_FILENAME,
    REPORT_SUFFIX,
)


def find_member(names: list[str], filename: str) -> str | None:
    """
    Find a required archive member at root level or one folder deep.

    Args:
        names: Entry names of the zip container
        filename: Bare member name (e.g. "dump.sql")

    Returns:
        Matching entry name, root-level entries preferred, or None
    """
    if filename in names:
        return filename
    for name in names:
        parts = name.split("/")
        if len(parts) == 2 and parts[1] == filename:
            return name
    return None


def has_filestore_entries(names: list[str]) -> bool:
    """Return True if any entry lives under a root or once-nested filestore/ folder."""
    prefix = f"{FILESTORE_DIRNAME}/"
    for name in names:
        if name.startswith(prefix):
            return True
        parts = name.split("/")
        if len(parts) >= 3 and parts[1] == FILESTORE_DIRNAME:
            return True
    return False


def locate_backup_root(extracted_dir: Path) -> Path | None:
    """
    Find the directory holding dump.sql inside an extracted archive.

    Probes the extraction directory itself first, then each immediate
    subdirectory in sorted order.

    Returns:
        Directory containing dump.sql, or None if neither layout matches
    """
    if (extracted_dir / DUMP_FILENAME).is_file():
        return extracted_dir
    for entry in sorted(extracted_dir.iterdir()):
        if entry.is_dir() and (entry / DUMP_FILENAME).is_file():
            return entry
    return None


def get_dump_path(backup_root: Path) -> Path:
    return backup_root / DUMP_FILENAME


def get_manifest_path(backup_root: Path) -> Path:
    return backup_root / MANIFEST_FILENAME


def get_filestore_path(backup_root: Path) -> Path:
    return backup_root / FILESTORE_DIRNAME


def get_exported_dump_path(scratch_dir: Path) -> Path:
    """Path where the migrated database is dumped before repackaging."""
    return scratch_dir / f"migrated_{DUMP_FILENAME}"


def get_report_path(output_path: Path) -> Path:
    """
    Path of the text report written alongside the output archive.

    Example:
        >>> get_report_path(Path("migrated.zip"))
        PosixPath('migrated-report.txt')
    """
    return output_path.with_name(f"{output_path.stem}{REPORT_SUFFIX}")
