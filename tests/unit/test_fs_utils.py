"""Unit tests for filesystem utilities."""

import stat
from unittest.mock import patch

import pytest

from spvforge.fs_utils import atomic_write_text, safe_rmtree


class TestAtomicWriteText:
    """Test cases for atomic_write_text()."""

    def test_writes_new_file(self, tmp_path):
        path = atomic_write_text(tmp_path / "complete.json", '{"ok": true}')
        assert path.read_text(encoding="utf-8") == '{"ok": true}'

    def test_replaces_existing_file(self, tmp_path):
        path = tmp_path / "manifest.json"
        path.write_text("old", encoding="utf-8")
        atomic_write_text(path, "new")
        assert path.read_text(encoding="utf-8") == "new"
        assert [p.name for p in tmp_path.iterdir()] == ["manifest.json"]

    def test_failed_replace_keeps_old_content(self, tmp_path):
        path = tmp_path / "manifest.json"
        path.write_text("old", encoding="utf-8")
        with patch("spvforge.fs_utils.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                atomic_write_text(path, "new")
        assert path.read_text(encoding="utf-8") == "old"
        assert [p.name for p in tmp_path.iterdir()] == ["manifest.json"]

    def test_missing_directory(self, tmp_path):
        with pytest.raises(OSError):
            atomic_write_text(tmp_path / "missing" / "manifest.json", "x")


class TestSafeRmtree:
    """Test cases for safe_rmtree()."""

    def test_removes_tree(self, tmp_path):
        tree = tmp_path / "driver-crate"
        (tree / "target" / "release").mkdir(parents=True)
        (tree / "target" / "release" / "spirv-builder-cli").write_bytes(b"x")
        safe_rmtree(tree)
        assert not tree.exists()

    def test_missing_path_is_noop(self, tmp_path):
        safe_rmtree(tmp_path / "missing")

    def test_read_only_files(self, tmp_path):
        tree = tmp_path / "source"
        tree.mkdir()
        read_only = tree / "Cargo.lock"
        read_only.write_text("x", encoding="utf-8")
        read_only.chmod(stat.S_IREAD)
        safe_rmtree(tree)
        assert not tree.exists()
