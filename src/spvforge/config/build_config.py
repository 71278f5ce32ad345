"""
Resolved build configuration.

This module defines the immutable configuration value consumed by the
pipeline, and the pure function that layers it from three sources:

    CLI flags  >  Cargo.toml metadata  >  defaults

Example Cargo.toml metadata:
    [package.metadata.rust-gpu.build]
    output-dir = "shaders"
    multimodule = true

    [package.metadata.rust-gpu.install]
    spirv-builder-version = "0.9.0"
    auto-install-rust-toolchain = true

Usage:
    config = resolve_configuration(flags={"debug": True}, metadata=table, base_dir=crate_dir)
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from ..errors import ConfigurationError

DEFAULT_TARGET = "spirv-unknown-vulkan1.2"
DEFAULT_MANIFEST_FILE = "manifest.json"


class MetadataLevel(Enum):
    """Level of metadata embedded in the SPIR-V binary."""

    NONE = "none"
    NAME_VARIABLES = "name-variables"
    FULL = "full"

    @classmethod
    def from_string(cls, value: str) -> "MetadataLevel":
        """Convert string to MetadataLevel."""
        try:
            return cls(value)
        except ValueError:
            choices = ", ".join(level.value for level in cls)
            raise ConfigurationError(
                f"Invalid spirv-metadata level '{value}' (expected one of: {choices})"
            )


class SourceKind(Enum):
    """Where the backend source comes from."""

    REGISTRY = "registry"
    GIT = "git"
    PATH = "path"


@dataclass(frozen=True)
class SourceLocator:
    """Location of the backend (rust-gpu) source.

    Attributes:
        kind: Registry version, git repository or local path
        location: Repository URL or local path (empty for registry)
        revision: Semantic version, git revision, or None for a floating git ref
    """

    kind: SourceKind
    location: str = ""
    revision: Optional[str] = None

    @classmethod
    def registry(cls, version: str) -> "SourceLocator":
        return cls(SourceKind.REGISTRY, "", version)

    @classmethod
    def git(cls, url: str, revision: Optional[str] = None) -> "SourceLocator":
        return cls(SourceKind.GIT, url, revision)

    @classmethod
    def path(cls, path: str, version: str) -> "SourceLocator":
        return cls(SourceKind.PATH, path, version)

    def __str__(self) -> str:
        if self.kind == SourceKind.REGISTRY:
            return str(self.revision)
        return f"{self.location}+{self.revision or 'HEAD'}"


@dataclass(frozen=True)
class LayoutRelaxation:
    """SPIR-V validator layout relaxations passed through to the backend."""

    relax_struct_store: bool = False
    relax_logical_pointer: bool = False
    relax_block_layout: bool = False
    uniform_buffer_standard_layout: bool = False
    scalar_block_layout: bool = False
    skip_block_layout: bool = False
    preserve_bindings: bool = False


@dataclass(frozen=True)
class BuildConfiguration:
    """Fully resolved configuration for one pipeline invocation.

    Attributes:
        package_dir: Shader crate directory
        backend_source: Backend source, or None to derive it from the crate's spirv-std dependency
        toolchain_channel: Rust channel, or None to read it from the backend's rust-toolchain.toml
        target: SPIR-V target triple
        features: Cargo features for the shader crate
        no_default_features: Disable the shader crate's default features
        output_dir: Directory receiving .spv files and the manifest
        capabilities: SPIR-V capabilities to enable
        extensions: SPIR-V extensions to enable
        metadata_level: Metadata embedded in the binary
        multimodule: Emit one .spv file per entry point
        layout: Layout relaxation flags
        debug: Compile shaders in debug mode
        deny_warnings: Treat warnings as errors
        manifest_file: Manifest file name inside output_dir
        force_rebuild: Rebuild the backend even when cached
        auto_install: Install missing toolchains without prompting
    """

    package_dir: Path
    backend_source: Optional[SourceLocator] = None
    toolchain_channel: Optional[str] = None
    target: str = DEFAULT_TARGET
    features: Tuple[str, ...] = ()
    no_default_features: bool = False
    output_dir: Path = Path(".")
    capabilities: Tuple[str, ...] = ()
    extensions: Tuple[str, ...] = ()
    metadata_level: MetadataLevel = MetadataLevel.NONE
    multimodule: bool = False
    layout: LayoutRelaxation = field(default_factory=LayoutRelaxation)
    debug: bool = False
    deny_warnings: bool = False
    manifest_file: str = DEFAULT_MANIFEST_FILE
    force_rebuild: bool = False
    auto_install: bool = False


# Option name (snake_case) -> expected value type
OPTION_TYPES: Dict[str, type] = {
    # install table
    "shader_crate": str,
    "spirv_builder_source": str,
    "spirv_builder_version": str,
    "rust_toolchain": str,
    "force_spirv_cli_rebuild": bool,
    "auto_install_rust_toolchain": bool,
    # build table
    "output_dir": str,
    "shader_target": str,
    "features": list,
    "no_default_features": bool,
    "capability": list,
    "extension": list,
    "multimodule": bool,
    "spirv_metadata": str,
    "relax_struct_store": bool,
    "relax_logical_pointer": bool,
    "relax_block_layout": bool,
    "uniform_buffer_standard_layout": bool,
    "scalar_block_layout": bool,
    "skip_block_layout": bool,
    "preserve_bindings": bool,
    "debug": bool,
    "deny_warnings": bool,
    "manifest_file": str,
}

PATH_OPTIONS = ("shader_crate", "output_dir")

LAYOUT_OPTIONS = tuple(LayoutRelaxation.__dataclass_fields__.keys())


def _validate_options(options: Mapping[str, Any], origin: str) -> None:
    for key, value in options.items():
        if key not in OPTION_TYPES:
            raise ConfigurationError(f"Unknown option '{key}' in {origin}")
        expected = OPTION_TYPES[key]
        if expected is str and isinstance(value, Path):
            continue
        if not isinstance(value, expected):
            raise ConfigurationError(
                f"Option '{key}' in {origin} must be a {expected.__name__}, "
                + f"got {type(value).__name__}"
            )


def _build_source_locator(
    source: Optional[str], version: Optional[str]
) -> Optional[SourceLocator]:
    """Map the (source, version) option pair onto a locator.

    * version only: a registry version such as "0.9.0"
    * source and version: a git repository pinned to a revision
    * source only: a floating git reference (HEAD), resolved later
    """
    if source and version:
        return SourceLocator.git(source, version)
    if version:
        return SourceLocator.registry(version)
    if source:
        return SourceLocator.git(source, None)
    return None


def resolve_configuration(
    flags: Optional[Mapping[str, Any]] = None,
    metadata: Optional[Mapping[str, Any]] = None,
    base_dir: Optional[Path] = None,
    cwd: Optional[Path] = None,
) -> BuildConfiguration:
    """Layer flags over metadata over defaults into one BuildConfiguration.

    Options set to None are treated as unset. Relative paths coming from
    metadata are resolved against base_dir (the directory holding the
    Cargo.toml); relative paths from flags are resolved against cwd.

    Args:
        flags: Options given on the command line (snake_case keys)
        metadata: Options read from Cargo.toml metadata (snake_case keys)
        base_dir: Directory that metadata paths are relative to
        cwd: Directory that flag paths are relative to (default: current directory)

    Returns:
        Resolved, immutable BuildConfiguration

    Raises:
        ConfigurationError: On unknown options, wrong types or invalid values
    """
    cwd = Path(cwd) if cwd is not None else Path.cwd()
    flag_options = {k: v for k, v in (flags or {}).items() if v is not None}
    metadata_options = {k: v for k, v in (metadata or {}).items() if v is not None}

    _validate_options(flag_options, "command-line flags")
    _validate_options(metadata_options, "Cargo.toml metadata")

    merged: Dict[str, Any] = {}
    for key, value in metadata_options.items():
        if key in PATH_OPTIONS:
            value = (Path(base_dir) if base_dir else cwd) / value
        merged[key] = value
    for key, value in flag_options.items():
        if key in PATH_OPTIONS:
            value = cwd / value
        merged[key] = value

    package_dir = Path(merged.get("shader_crate", base_dir or cwd))
    output_dir = Path(merged.get("output_dir", cwd))
    metadata_level = MetadataLevel.from_string(merged.get("spirv_metadata", "none"))

    manifest_file = merged.get("manifest_file", DEFAULT_MANIFEST_FILE)
    if not manifest_file or Path(manifest_file).name != manifest_file:
        raise ConfigurationError(
            f"manifest-file must be a plain file name, got '{manifest_file}'"
        )

    layout = LayoutRelaxation(
        **{name: bool(merged.get(name, False)) for name in LAYOUT_OPTIONS}
    )

    return BuildConfiguration(
        package_dir=package_dir,
        backend_source=_build_source_locator(
            merged.get("spirv_builder_source"), merged.get("spirv_builder_version")
        ),
        toolchain_channel=merged.get("rust_toolchain"),
        target=merged.get("shader_target", DEFAULT_TARGET),
        features=tuple(merged.get("features", ())),
        no_default_features=bool(merged.get("no_default_features", False)),
        output_dir=output_dir,
        capabilities=tuple(merged.get("capability", ())),
        extensions=tuple(merged.get("extension", ())),
        metadata_level=metadata_level,
        multimodule=bool(merged.get("multimodule", False)),
        layout=layout,
        debug=bool(merged.get("debug", False)),
        deny_warnings=bool(merged.get("deny_warnings", False)),
        manifest_file=manifest_file,
        force_rebuild=bool(merged.get("force_spirv_cli_rebuild", False)),
        auto_install=bool(merged.get("auto_install_rust_toolchain", False)),
    )
