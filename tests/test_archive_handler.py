"""
Tests for archive.handler and archive.layout modules.

Covers:
- Layout helpers (member lookup at root and one level deep, report path)
- Structural validation without extraction
- Extraction of flat and nested archives
- Manifest update preserving unknown keys
- Packing into the flat output layout
- Scratch directory lifecycle
"""

import json
import re
import zipfile
from pathlib import Path

import pytest
from freezegun import freeze_time

from odoo_backup_migrator.archive.handler import (
    cleanup_scratch_directory,
    create_scratch_directory,
    extract_backup,
    pack_backup,
    read_archive_manifest,
    update_manifest,
    validate_backup_zip,
)
from odoo_backup_migrator.archive.layout import (
    find_member,
    get_exported_dump_path,
    get_report_path,
    has_filestore_entries,
)
from odoo_backup_migrator.exceptions import ExportError, InvalidArchiveError, ManifestError


@pytest.fixture
def scratch(tmp_path):
    path = tmp_path / "scratch"
    path.mkdir()
    return path


# ============================================================================
# Layout helpers
# ============================================================================


class TestLayout:
    def test_find_member_prefers_root(self):
        names = ["wrap/dump.sql", "dump.sql"]
        assert find_member(names, "dump.sql") == "dump.sql"

    def test_find_member_one_level_deep(self):
        assert find_member(["mydb/dump.sql"], "dump.sql") == "mydb/dump.sql"

    def test_find_member_rejects_deeper_nesting(self):
        assert find_member(["a/b/dump.sql"], "dump.sql") is None

    def test_has_filestore_entries(self):
        assert has_filestore_entries(["filestore/ab/123"])
        assert has_filestore_entries(["wrap/filestore/ab/123"])
        assert not has_filestore_entries(["dump.sql", "manifest.json"])

    def test_report_path_sits_next_to_output(self, tmp_path):
        output = tmp_path / "backup-17.zip"
        assert get_report_path(output) == tmp_path / "backup-17-report.txt"

    def test_exported_dump_path(self, tmp_path):
        assert get_exported_dump_path(tmp_path).parent == tmp_path


# ============================================================================
# validate_backup_zip / read_archive_manifest
# ============================================================================


class TestValidateBackupZip:
    def test_valid_archive(self, make_backup_zip):
        assert validate_backup_zip(make_backup_zip(filestore={"ab/1": b"x"})) == []

    def test_missing_file(self, tmp_path):
        errors = validate_backup_zip(tmp_path / "nope.zip")
        assert errors and "does not exist" in errors[0]

    def test_not_a_zip(self, tmp_path):
        path = tmp_path / "fake.zip"
        path.write_text("not a zip", encoding="utf-8")

        errors = validate_backup_zip(path)

        assert errors and "Failed to read ZIP file" in errors[0]

    def test_lists_every_missing_member(self, make_backup_zip):
        archive = make_backup_zip(dump=None, include_manifest=False)

        errors = validate_backup_zip(archive)

        assert errors == [
            "Missing required file: dump.sql",
            "Missing required file: manifest.json",
        ]

    def test_missing_filestore_is_only_a_warning(self, make_backup_zip, caplog):
        assert validate_backup_zip(make_backup_zip()) == []
        assert any("filestore" in r.getMessage() for r in caplog.records)


class TestReadArchiveManifest:
    def test_reads_nested_manifest(self, make_backup_zip):
        archive = make_backup_zip(nested=True)
        assert read_archive_manifest(archive)["version"] == "16.0"

    def test_missing_manifest(self, make_backup_zip):
        with pytest.raises(InvalidArchiveError) as exc_info:
            read_archive_manifest(make_backup_zip(include_manifest=False))
        assert exc_info.value.missing == ["manifest.json"]

    def test_manifest_without_version(self, make_backup_zip):
        with pytest.raises(ManifestError, match="version"):
            read_archive_manifest(make_backup_zip(manifest={"db_name": "acme"}))


# ============================================================================
# extract_backup
# ============================================================================


class TestExtractBackup:
    def test_flat_layout(self, make_backup_zip, scratch):
        archive = make_backup_zip(filestore={"ab/123": b"attachment"})

        context = extract_backup(archive, scratch)

        assert context.source_version == "16.0"
        assert context.db_name == "acme"
        assert context.dump_path == scratch / "dump.sql"
        assert context.filestore_path.is_dir()

    def test_nested_layout(self, make_backup_zip, scratch):
        archive = make_backup_zip(nested=True, filestore={"ab/123": b"x"})

        context = extract_backup(archive, scratch)

        assert context.dump_path == scratch / "backup" / "dump.sql"
        assert context.manifest_path == scratch / "backup" / "manifest.json"
        assert context.filestore_path == scratch / "backup" / "filestore"

    def test_missing_dump_lists_member(self, make_backup_zip, scratch):
        with pytest.raises(InvalidArchiveError) as exc_info:
            extract_backup(make_backup_zip(dump=None), scratch)

        assert exc_info.value.missing == ["dump.sql"]
        assert exc_info.value.phase == "extraction"
        # Nothing extracted for a rejected archive
        assert list(scratch.iterdir()) == []

    def test_missing_both_members(self, make_backup_zip, scratch):
        with pytest.raises(InvalidArchiveError) as exc_info:
            extract_backup(make_backup_zip(dump=None, include_manifest=False), scratch)

        assert exc_info.value.missing == ["dump.sql", "manifest.json"]

    def test_manifest_without_version(self, make_backup_zip, scratch):
        with pytest.raises(ManifestError, match="missing version field"):
            extract_backup(make_backup_zip(manifest={"db_name": "acme"}), scratch)

    def test_manifest_not_json(self, tmp_path, scratch):
        archive = tmp_path / "broken.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("dump.sql", "-- dump")
            zf.writestr("manifest.json", "{not json")

        with pytest.raises(ManifestError, match="not valid JSON"):
            extract_backup(archive, scratch)


# ============================================================================
# update_manifest
# ============================================================================


class TestUpdateManifest:
    @freeze_time("2025-11-02 08:30:45")
    def test_merges_and_refreshes_timestamp(self, make_backup_zip, scratch):
        manifest = {
            "db_name": "acme",
            "version": "16.0",
            "modules": ["base", "sale"],
            "timestamp": "2024-01-01T00:00:00Z",
        }
        context = extract_backup(make_backup_zip(manifest=manifest), scratch)

        written = update_manifest(context.manifest_path, {"version": "17.0"})

        on_disk = json.loads(context.manifest_path.read_text(encoding="utf-8"))
        assert on_disk == written
        assert on_disk["version"] == "17.0"
        assert on_disk["db_name"] == "acme"
        assert on_disk["modules"] == ["base", "sale"]
        assert on_disk["timestamp"] == "2025-11-02T08:30:45Z"

    def test_explicit_timestamp_is_kept(self, make_backup_zip, scratch):
        context = extract_backup(make_backup_zip(), scratch)

        written = update_manifest(context.manifest_path, {"timestamp": "fixed"})

        assert written["timestamp"] == "fixed"


# ============================================================================
# pack_backup
# ============================================================================


def _read_zip(path: Path) -> dict[str, bytes]:
    with zipfile.ZipFile(path) as zf:
        return {name: zf.read(name) for name in zf.namelist()}


class TestPackBackup:
    def test_round_trip_preserves_contents(self, make_backup_zip, scratch, tmp_path):
        filestore = {"ab/123": b"\x00\x01binary", "cd/456": b"text attachment"}
        archive = make_backup_zip(nested=True, filestore=filestore)
        context = extract_backup(archive, scratch)

        output = pack_backup(context, tmp_path / "out" / "migrated.zip")

        original = _read_zip(archive)
        packed = _read_zip(output)
        assert packed["dump.sql"] == original["backup/dump.sql"]
        assert packed["manifest.json"] == original["backup/manifest.json"]
        for rel, content in filestore.items():
            assert packed[f"filestore/{rel}"] == content

    def test_output_is_flat(self, make_backup_zip, scratch, tmp_path):
        context = extract_backup(make_backup_zip(nested=True, filestore={"a/1": b"x"}), scratch)

        names = _read_zip(pack_backup(context, tmp_path / "out.zip")).keys()

        assert {"dump.sql", "manifest.json", "filestore/"} <= set(names)
        assert not any(n.startswith("backup/") for n in names)

    def test_empty_filestore_directories_are_kept(self, make_backup_zip, scratch, tmp_path):
        context = extract_backup(make_backup_zip(filestore={}), scratch)
        (context.filestore_path / "empty").mkdir()

        names = _read_zip(pack_backup(context, tmp_path / "out.zip")).keys()

        assert "filestore/empty/" in names

    def test_missing_filestore_writes_placeholder(self, make_backup_zip, scratch, tmp_path):
        context = extract_backup(make_backup_zip(), scratch)
        assert not context.filestore_path.exists()

        names = _read_zip(pack_backup(context, tmp_path / "out.zip")).keys()

        assert "filestore/" in names

    def test_uses_replaced_dump(self, make_backup_zip, scratch, tmp_path):
        context = extract_backup(make_backup_zip(), scratch)
        exported = get_exported_dump_path(scratch)
        exported.write_text("-- migrated dump\n", encoding="utf-8")
        context.dump_path = exported

        packed = _read_zip(pack_backup(context, tmp_path / "out.zip"))

        assert packed["dump.sql"] == b"-- migrated dump\n"

    def test_unwritable_output_raises_export_error(self, make_backup_zip, scratch, tmp_path):
        context = extract_backup(make_backup_zip(), scratch)
        blocker = tmp_path / "blocker"
        blocker.write_text("file, not a directory", encoding="utf-8")

        with pytest.raises(ExportError) as exc_info:
            pack_backup(context, blocker / "out.zip")

        assert exc_info.value.phase == "export"


# ============================================================================
# Scratch directory lifecycle
# ============================================================================


class TestScratchDirectory:
    def test_created_with_unique_name(self, tmp_path):
        first = create_scratch_directory(tmp_path)
        second = create_scratch_directory(tmp_path)

        assert first != second
        assert first.is_dir() and second.is_dir()
        assert re.fullmatch(r"odoo-migration-\d+-[0-9a-f]{8}", first.name)

    def test_missing_base_raises(self, tmp_path):
        with pytest.raises(OSError):
            create_scratch_directory(tmp_path / "absent")

    def test_cleanup_removes_tree(self, tmp_path):
        scratch_dir = create_scratch_directory(tmp_path)
        (scratch_dir / "nested").mkdir()
        (scratch_dir / "nested" / "file").write_text("x", encoding="utf-8")

        cleanup_scratch_directory(scratch_dir)

        assert not scratch_dir.exists()

    def test_cleanup_missing_directory_is_silent(self, tmp_path):
        cleanup_scratch_directory(tmp_path / "never-created")
