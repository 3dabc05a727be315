"""
Backup archive extraction and repackaging for the Odoo Backup Migrator.

This module owns every filesystem operation on backup archives:

- create_scratch_directory(): unique, empty working directory per run
- validate_backup_zip(): non-raising structural probe of an archive
- extract_backup(): unpack an archive and locate dump/manifest/filestore
- update_manifest(): merge new values into manifest.json
- pack_backup(): build the output archive from a (mutated) extraction
- cleanup_scratch_directory(): best-effort removal of the working directory

Extraction never touches a database, so an archive rejected here guarantees
no database instance was ever created for the run.

Example:
    >>> scratch = create_scratch_directory()
    >>> context = extract_backup(Path("backup-16.zip"), scratch)
    >>> context.source_version
    '16.0'
    >>> update_manifest(context.manifest_path, {"version": "17.0"})
    >>> pack_backup(context, Path("backup-17.zip"))
    >>> cleanup_scratch_directory(scratch)
"""

import json
import logging
import shutil
import tempfile
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..config.constants import (
    DUMP_FILENAME,
    FILESTORE_DIRNAME,
    MANIFEST_FILENAME,
    REQUIRED_ARCHIVE_FILES,
    SCRATCH_DIR_PREFIX,
)
from ..exceptions import ExportError, InvalidArchiveError, ManifestError
from ..report.formatters import format_bytes
from ..utils.naming import unique_name
from ..utils.time import utc_timestamp
from .layout import (
    find_member,
    get_dump_path,
    get_filestore_path,
    get_manifest_path,
    has_filestore_entries,
    locate_backup_root,
)

logger = logging.getLogger(__name__)


@dataclass
class ExtractionContext:
    """
    Working state of one extracted backup.

    Attributes:
        scratch_dir: Directory the archive was unpacked into
        dump_path: SQL dump to load (replaced by the exported dump before packing)
        manifest_path: manifest.json inside the extraction
        filestore_path: filestore/ inside the extraction (may not exist)
        manifest: Parsed manifest contents
    """

    scratch_dir: Path
    dump_path: Path
    manifest_path: Path
    filestore_path: Path
    manifest: dict[str, Any] = field(default_factory=dict)

    @property
    def source_version(self) -> str:
        return str(self.manifest.get("version", ""))

    @property
    def db_name(self) -> str | None:
        return self.manifest.get("db_name")


def create_scratch_directory(base_dir: Path | str | None = None) -> Path:
    """
    Create a uniquely named, empty working directory.

    Args:
        base_dir: Parent directory. Defaults to the system temp directory.

    Returns:
        Path of the created directory (odoo-migration-{epoch_ms}-{hex8})

    Raises:
        OSError: If the base directory is missing or not writable
    """
    base = Path(base_dir) if base_dir is not None else Path(tempfile.gettempdir())
    scratch_dir = base / unique_name(SCRATCH_DIR_PREFIX, "-")
    # exist_ok=False: a collision must never reuse another run's directory
    scratch_dir.mkdir(parents=False, exist_ok=False)
    logger.debug(f"Created scratch directory: {scratch_dir}")
    return scratch_dir


def validate_backup_zip(archive_path: Path | str) -> list[str]:
    """
    Check an archive for the required backup structure without raising.

    Args:
        archive_path: Path to the zip container

    Returns:
        List of problems; empty when the archive is usable. A missing
        filestore only produces a log warning.

    Example:
        >>> validate_backup_zip("no-dump.zip")
        ['Missing required file: dump.sql']
    """
    archive_path = Path(archive_path)
    errors: list[str] = []

    if not archive_path.is_file():
        errors.append(f"Input file does not exist: {archive_path}")
        return errors

    try:
        with zipfile.ZipFile(archive_path) as zf:
            names = zf.namelist()
    except (zipfile.BadZipFile, OSError) as e:
        errors.append(f"Failed to read ZIP file: {e}")
        return errors

    logger.debug(
        "ZIP entries found",
        extra={"context": {"archive": str(archive_path), "count": len(names)}},
    )

    for required in REQUIRED_ARCHIVE_FILES:
        if find_member(names, required) is None:
            errors.append(f"Missing required file: {required}")

    if not has_filestore_entries(names):
        logger.warning(f"Directory not found (may be empty): {FILESTORE_DIRNAME}")

    return errors


def _missing_members(errors: list[str]) -> list[str]:
    prefix = "Missing required file: "
    return [e[len(prefix):] for e in errors if e.startswith(prefix)]


def read_manifest(manifest_path: Path) -> dict[str, Any]:
    """
    Parse manifest.json and check it declares a version.

    Raises:
        ManifestError: If the file is not a JSON object or lacks "version"
    """
    try:
        manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ManifestError(f"manifest.json is not valid JSON: {e}") from e
    except OSError as e:
        raise ManifestError(f"Cannot read manifest.json: {e}") from e
    return _check_manifest(manifest)


def _check_manifest(manifest: Any) -> dict[str, Any]:
    if not isinstance(manifest, dict):
        raise ManifestError("manifest.json must contain a JSON object")
    if not manifest.get("version"):
        raise ManifestError("manifest.json missing version field")
    return manifest


def read_archive_manifest(archive_path: Path | str) -> dict[str, Any]:
    """
    Read manifest.json straight from an archive without extracting it.

    Raises:
        InvalidArchiveError: Archive unreadable or manifest.json absent
        ManifestError: Manifest malformed or without a version
    """
    archive_path = Path(archive_path)
    try:
        with zipfile.ZipFile(archive_path) as zf:
            member = find_member(zf.namelist(), MANIFEST_FILENAME)
            if member is None:
                raise InvalidArchiveError(
                    f"Missing required file: {MANIFEST_FILENAME}", missing=[MANIFEST_FILENAME]
                )
            raw = zf.read(member)
    except (zipfile.BadZipFile, OSError) as e:
        raise InvalidArchiveError(f"Failed to read ZIP file: {e}") from e

    try:
        manifest = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ManifestError(f"manifest.json is not valid JSON: {e}") from e
    return _check_manifest(manifest)


def extract_backup(archive_path: Path | str, scratch_dir: Path | str) -> ExtractionContext:
    """
    Unpack a backup archive and locate its members.

    Args:
        archive_path: Backup zip to read (never modified)
        scratch_dir: Empty directory created by create_scratch_directory()

    Returns:
        ExtractionContext with resolved paths and parsed manifest

    Raises:
        InvalidArchiveError: Unreadable archive or missing required members
            (every missing member is listed in .missing)
        ManifestError: manifest.json is malformed or lacks a version
    """
    archive_path = Path(archive_path)
    scratch_dir = Path(scratch_dir)
    logger.info(
        "Starting extraction",
        extra={"context": {"archive": str(archive_path), "scratch_dir": str(scratch_dir)}},
    )

    errors = validate_backup_zip(archive_path)
    if errors:
        raise InvalidArchiveError(
            f"Invalid backup archive: {', '.join(errors)}",
            missing=_missing_members(errors),
        )

    try:
        with zipfile.ZipFile(archive_path) as zf:
            zf.extractall(scratch_dir)
    except (zipfile.BadZipFile, OSError) as e:
        raise InvalidArchiveError(f"Failed to extract {archive_path}: {e}") from e

    backup_root = locate_backup_root(scratch_dir)
    if backup_root is None:
        raise InvalidArchiveError(
            f"{DUMP_FILENAME} not found in extracted contents", missing=[DUMP_FILENAME]
        )

    manifest_path = get_manifest_path(backup_root)
    if not manifest_path.is_file():
        raise InvalidArchiveError(
            f"{MANIFEST_FILENAME} not found next to {DUMP_FILENAME}",
            missing=[MANIFEST_FILENAME],
        )

    if backup_root != scratch_dir:
        logger.debug(f"Found nested backup layout under {backup_root.name}/")

    context = ExtractionContext(
        scratch_dir=scratch_dir,
        dump_path=get_dump_path(backup_root),
        manifest_path=manifest_path,
        filestore_path=get_filestore_path(backup_root),
        manifest=read_manifest(manifest_path),
    )

    logger.info(
        "Extraction complete",
        extra={
            "context": {
                "dump_path": str(context.dump_path),
                "version": context.source_version,
                "db_name": context.db_name,
            }
        },
    )
    return context


def update_manifest(manifest_path: Path | str, patch: dict[str, Any]) -> dict[str, Any]:
    """
    Merge a partial update into manifest.json and rewrite it.

    Keys absent from the patch (db_name, modules, ...) are preserved. The
    timestamp is refreshed unless the patch sets one explicitly.

    Returns:
        The manifest as written

    Raises:
        ManifestError: If the existing manifest cannot be parsed
        OSError: If the file cannot be written
    """
    manifest_path = Path(manifest_path)
    logger.info("Updating manifest", extra={"context": {"updates": patch}})

    manifest = read_manifest(manifest_path)
    updated = {**manifest, **patch}
    if "timestamp" not in patch:
        updated["timestamp"] = utc_timestamp()

    try:
        with manifest_path.open("w", encoding="utf-8") as f:
            json.dump(updated, f, indent=2, ensure_ascii=False)
            f.write("\n")
    except OSError as e:
        logger.error(f"Failed to write manifest: {manifest_path}", exc_info=True)
        raise OSError(f"Cannot write manifest '{manifest_path}': {e}") from e

    return updated


def pack_backup(context: ExtractionContext, output_path: Path | str) -> Path:
    """
    Build the output archive from an extraction context.

    The archive always uses the flat layout: dump.sql, manifest.json and
    filestore/ at the root. A missing filestore becomes an empty
    ``filestore/`` entry and a warning.

    Returns:
        Path of the written archive

    Raises:
        ExportError: If the archive cannot be written
    """
    output_path = Path(output_path)
    logger.info("Creating output archive", extra={"context": {"output": str(output_path)}})

    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(
            output_path, "w", compression=zipfile.ZIP_DEFLATED, strict_timestamps=False
        ) as zf:
            zf.write(context.dump_path, DUMP_FILENAME)
            zf.write(context.manifest_path, MANIFEST_FILENAME)

            if context.filestore_path.is_dir():
                _add_tree(zf, context.filestore_path, FILESTORE_DIRNAME)
            else:
                logger.warning("Filestore directory not found, writing empty filestore/")
                zf.writestr(f"{FILESTORE_DIRNAME}/", b"")
    except OSError as e:
        raise ExportError(f"Failed to write output archive {output_path}: {e}") from e

    logger.info(
        "Output archive created",
        extra={
            "context": {
                "path": str(output_path),
                "size": format_bytes(output_path.stat().st_size),
            }
        },
    )
    return output_path


def _add_tree(zf: zipfile.ZipFile, root: Path, arc_root: str) -> None:
    """Add a directory tree, keeping empty directories as explicit entries."""
    zf.writestr(f"{arc_root}/", b"")
    for path in sorted(root.rglob("*")):
        arcname = f"{arc_root}/{path.relative_to(root).as_posix()}"
        if path.is_dir():
            zf.writestr(f"{arcname}/", b"")
        else:
            zf.write(path, arcname)


def cleanup_scratch_directory(scratch_dir: Path | str) -> None:
    """
    Remove a scratch directory recursively.

    Best effort: failures are logged, never raised.
    """
    scratch_dir = Path(scratch_dir)
    logger.info(f"Cleaning up scratch directory: {scratch_dir}")
    try:
        if scratch_dir.exists():
            shutil.rmtree(scratch_dir)
            logger.debug("Scratch directory removed")
    except OSError as e:
        logger.warning(
            "Failed to clean up scratch directory",
            extra={"context": {"scratch_dir": str(scratch_dir), "error": str(e)}},
        )
