"""Unit tests for build configuration resolution."""

from pathlib import Path

import pytest

from spvforge.config.build_config import (
    DEFAULT_MANIFEST_FILE,
    DEFAULT_TARGET,
    MetadataLevel,
    SourceKind,
    SourceLocator,
    resolve_configuration,
)
from spvforge.errors import ConfigurationError


class TestResolveConfiguration:
    """Test cases for resolve_configuration()."""

    def test_defaults(self, tmp_path):
        config = resolve_configuration(cwd=tmp_path)

        assert config.package_dir == tmp_path
        assert config.output_dir == tmp_path
        assert config.backend_source is None
        assert config.toolchain_channel is None
        assert config.target == DEFAULT_TARGET
        assert config.metadata_level == MetadataLevel.NONE
        assert config.manifest_file == DEFAULT_MANIFEST_FILE
        assert config.features == ()
        assert not config.multimodule
        assert not config.layout.scalar_block_layout
        assert not config.force_rebuild
        assert not config.auto_install

    def test_flags_override_metadata(self, tmp_path):
        config = resolve_configuration(
            flags={"shader_target": "spirv-unknown-spv1.5", "debug": False},
            metadata={"shader_target": "spirv-unknown-vulkan1.1", "debug": True, "multimodule": True},
            base_dir=tmp_path,
            cwd=tmp_path,
        )
        assert config.target == "spirv-unknown-spv1.5"
        assert config.debug is False
        assert config.multimodule is True

    def test_none_flags_are_unset(self, tmp_path):
        config = resolve_configuration(
            flags={"multimodule": None, "output_dir": None},
            metadata={"multimodule": True, "output_dir": "shaders"},
            base_dir=tmp_path / "crate",
            cwd=tmp_path,
        )
        assert config.multimodule is True
        assert config.output_dir == tmp_path / "crate" / "shaders"

    def test_flag_paths_relative_to_cwd(self, tmp_path):
        config = resolve_configuration(
            flags={"shader_crate": "crate", "output_dir": "out"},
            base_dir=tmp_path / "elsewhere",
            cwd=tmp_path,
        )
        assert config.package_dir == tmp_path / "crate"
        assert config.output_dir == tmp_path / "out"

    def test_absolute_paths_kept(self, tmp_path):
        config = resolve_configuration(flags={"output_dir": str(tmp_path / "abs")}, cwd=Path("/"))
        assert config.output_dir == tmp_path / "abs"

    def test_package_dir_defaults_to_base_dir(self, tmp_path):
        config = resolve_configuration(base_dir=tmp_path / "crate", cwd=tmp_path)
        assert config.package_dir == tmp_path / "crate"

    def test_registry_source(self, tmp_path):
        config = resolve_configuration(flags={"spirv_builder_version": "0.9.0"}, cwd=tmp_path)
        assert config.backend_source == SourceLocator.registry("0.9.0")

    def test_git_source(self, tmp_path):
        config = resolve_configuration(
            flags={
                "spirv_builder_source": "https://github.com/Rust-GPU/rust-gpu",
                "spirv_builder_version": "82a0f69",
            },
            cwd=tmp_path,
        )
        assert config.backend_source.kind == SourceKind.GIT
        assert config.backend_source.location == "https://github.com/Rust-GPU/rust-gpu"
        assert config.backend_source.revision == "82a0f69"

    def test_floating_git_source(self, tmp_path):
        config = resolve_configuration(
            flags={"spirv_builder_source": "https://github.com/Rust-GPU/rust-gpu"}, cwd=tmp_path
        )
        assert config.backend_source == SourceLocator.git("https://github.com/Rust-GPU/rust-gpu")
        assert str(config.backend_source) == "https://github.com/Rust-GPU/rust-gpu+HEAD"

    def test_lists_become_tuples(self, tmp_path):
        config = resolve_configuration(
            flags={"features": ["a", "b"], "capability": ["Int8"], "extension": ["SPV_KHR_shader_clock"]},
            cwd=tmp_path,
        )
        assert config.features == ("a", "b")
        assert config.capabilities == ("Int8",)
        assert config.extensions == ("SPV_KHR_shader_clock",)

    def test_layout_flags(self, tmp_path):
        config = resolve_configuration(
            flags={"relax_block_layout": True}, metadata={"preserve_bindings": True}, cwd=tmp_path
        )
        assert config.layout.relax_block_layout
        assert config.layout.preserve_bindings
        assert not config.layout.skip_block_layout

    def test_install_options(self, tmp_path):
        config = resolve_configuration(
            flags={
                "rust_toolchain": "nightly-2024-04-24",
                "force_spirv_cli_rebuild": True,
                "auto_install_rust_toolchain": True,
            },
            cwd=tmp_path,
        )
        assert config.toolchain_channel == "nightly-2024-04-24"
        assert config.force_rebuild
        assert config.auto_install

    @pytest.mark.parametrize("level", ["none", "name-variables", "full"])
    def test_metadata_levels(self, tmp_path, level):
        config = resolve_configuration(flags={"spirv_metadata": level}, cwd=tmp_path)
        assert config.metadata_level.value == level

    def test_invalid_metadata_level(self, tmp_path):
        with pytest.raises(ConfigurationError, match="name-variables"):
            resolve_configuration(flags={"spirv_metadata": "everything"}, cwd=tmp_path)

    def test_unknown_option(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Unknown option 'output_directory'"):
            resolve_configuration(metadata={"output_directory": "x"}, cwd=tmp_path)

    def test_wrong_type(self, tmp_path):
        with pytest.raises(ConfigurationError, match="must be a bool"):
            resolve_configuration(metadata={"multimodule": "yes"}, cwd=tmp_path)

    @pytest.mark.parametrize("name", ["", "sub/manifest.json", "../manifest.json"])
    def test_manifest_file_must_be_plain_name(self, tmp_path, name):
        with pytest.raises(ConfigurationError, match="plain file name"):
            resolve_configuration(flags={"manifest_file": name}, cwd=tmp_path)

    def test_configuration_is_immutable(self, tmp_path):
        config = resolve_configuration(cwd=tmp_path)
        with pytest.raises(AttributeError):
            config.debug = True
