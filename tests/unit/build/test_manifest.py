"""Unit tests for the shader manifest writer."""

import json
from pathlib import Path

import pytest

from spvforge.build.compile_driver import ShaderOutput
from spvforge.build.manifest import ManifestWriter, ShaderManifest
from spvforge.errors import OutputWriteError


def outputs(*pairs):
    return [ShaderOutput(entry, source, Path("/out") / Path(source).name) for entry, source in pairs]


class TestShaderManifest:
    """Test cases for ShaderManifest."""

    def test_keeps_order(self):
        manifest = ShaderManifest.from_outputs(
            outputs(("main_vs", "shaders/shader.spv"), ("main_fs", "shaders/shader.spv"))
        )
        assert len(manifest) == 2
        assert json.loads(manifest.to_json()) == [
            {"entry_point": "main_vs", "source_path": "shaders/shader.spv"},
            {"entry_point": "main_fs", "source_path": "shaders/shader.spv"},
        ]

    def test_empty(self):
        assert ShaderManifest.from_outputs([]).to_json() == "[]"


class TestManifestWriter:
    """Test cases for ManifestWriter."""

    def test_write_and_read(self, tmp_path):
        entries = outputs(("main_vs", "shaders/main_vs.spv"), ("main_fs", "shaders/main_fs.spv"))
        path = ManifestWriter().write(tmp_path / "shaders", entries)

        assert path == tmp_path / "shaders" / "manifest.json"
        assert ManifestWriter.read(path) == [
            ("main_vs", "shaders/main_vs.spv"),
            ("main_fs", "shaders/main_fs.spv"),
        ]

    def test_custom_file_name(self, tmp_path):
        path = ManifestWriter("shaders.json").write(tmp_path, outputs(("main", "shader.spv")))
        assert path.name == "shaders.json"

    def test_overwrites_previous_manifest(self, tmp_path):
        writer = ManifestWriter()
        writer.write(tmp_path, outputs(("old", "old.spv"), ("older", "old.spv")))
        path = writer.write(tmp_path, outputs(("new", "new.spv")))

        assert ManifestWriter.read(path) == [("new", "new.spv")]
        assert [p.name for p in tmp_path.iterdir()] == ["manifest.json"]

    def test_unwritable_directory(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("", encoding="utf-8")
        with pytest.raises(OutputWriteError):
            ManifestWriter().write(blocker / "shaders", outputs(("main", "shader.spv")))
