"""Unit tests for the generated driver crate."""

import pytest

from spvforge.config.build_config import SourceLocator
from spvforge.packages.driver_crate import (
    FEATURE_0_10,
    FEATURE_PRE_CLI,
    dependency_source,
    materialize,
    select_builder_feature,
)
from spvforge.packages.spirv_source import ResolvedSource

CHANNEL = "nightly-2024-04-24"


@pytest.mark.parametrize(
    "channel,feature",
    [
        ("nightly-2023-05-27", FEATURE_PRE_CLI),
        ("nightly-2024-04-23", FEATURE_PRE_CLI),
        ("nightly-2024-04-24", FEATURE_0_10),
        ("nightly-2025-06-23", FEATURE_0_10),
        ("nightly", FEATURE_0_10),
    ],
)
def test_select_builder_feature(channel, feature):
    assert select_builder_feature(channel) == feature


class TestDependencySource:
    """Test cases for dependency_source()."""

    def test_registry_is_pinned_exactly(self):
        resolved = ResolvedSource(SourceLocator.registry("0.9.0"), "0.9.0")
        assert dependency_source(resolved) == 'version = "=0.9.0"'

    def test_git_uses_resolved_revision(self):
        locator = SourceLocator.git("https://github.com/Rust-GPU/rust-gpu", "main")
        resolved = ResolvedSource(locator, "82a0f69008414f51d59184763146caa6850ac588")
        assert dependency_source(resolved) == (
            'git = "https://github.com/Rust-GPU/rust-gpu", '
            + 'rev = "82a0f69008414f51d59184763146caa6850ac588"'
        )

    def test_path_points_at_sibling_builder(self, tmp_path):
        crates = tmp_path / "rust-gpu" / "crates"
        (crates / "spirv-std").mkdir(parents=True)
        (crates / "spirv-builder").mkdir()
        (crates / "spirv-builder" / "Cargo.toml").write_text("[package]\n", encoding="utf-8")

        resolved = ResolvedSource(SourceLocator.path(str(crates / "spirv-std"), "0.9.0"), "0.9.0")
        assert dependency_source(resolved) == f'path = "{(crates / "spirv-builder").as_posix()}"'


class TestMaterialize:
    """Test cases for materialize()."""

    def test_writes_crate(self, tmp_path):
        resolved = ResolvedSource(SourceLocator.registry("0.9.0"), "0.9.0")
        crate_dir = materialize(tmp_path / "driver-crate", resolved, CHANNEL)

        cargo_toml = (crate_dir / "Cargo.toml").read_text(encoding="utf-8")
        assert 'name = "spirv-builder-cli"' in cargo_toml
        assert 'spirv-builder = { default-features = false, features = ["use-compiled-tools"], version = "=0.9.0" }' in cargo_toml
        assert "spirv-builder-pre-cli = []" in cargo_toml
        assert "[workspace]" in cargo_toml

        toolchain_toml = (crate_dir / "rust-toolchain.toml").read_text(encoding="utf-8")
        assert f'channel = "{CHANNEL}"' in toolchain_toml
        assert '"rust-src", "rustc-dev", "llvm-tools"' in toolchain_toml

        main_rs = (crate_dir / "src" / "main.rs").read_text(encoding="utf-8")
        assert "sidecar_path" in main_rs
        assert 'cfg(feature = "spirv-builder-0_10")' in main_rs

    def test_overwrites_existing_crate(self, tmp_path):
        first = ResolvedSource(SourceLocator.registry("0.9.0"), "0.9.0")
        second = ResolvedSource(SourceLocator.registry("0.10.0"), "0.10.0")
        crate_dir = materialize(tmp_path / "driver-crate", first, CHANNEL)
        materialize(crate_dir, second, CHANNEL)

        cargo_toml = (crate_dir / "Cargo.toml").read_text(encoding="utf-8")
        assert '"=0.10.0"' in cargo_toml
        assert '"=0.9.0"' not in cargo_toml

    def test_driver_reports_every_entry_point(self, tmp_path):
        resolved = ResolvedSource(SourceLocator.registry("0.9.0"), "0.9.0")
        main_rs = (materialize(tmp_path / "driver-crate", resolved, CHANNEL) / "src" / "main.rs").read_text(
            encoding="utf-8"
        )
        assert "path: Option<std::path::PathBuf>" in main_rs
        assert "modules.get(entry).cloned()" in main_rs
        assert "filter_map" not in main_rs
