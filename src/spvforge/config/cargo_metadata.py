"""
Cargo.toml metadata reader.

Shader crates (and their workspaces) can carry spvforge options in the
`metadata` table that cargo itself ignores:

    [workspace.metadata.rust-gpu.build]
    output-dir = "shaders"

    [package.metadata.rust-gpu.install]
    spirv-builder-source = "https://github.com/Rust-GPU/rust-gpu"
    spirv-builder-version = "82a0f69"

Workspace options are read first and package options override them. The
`build` and `install` sub-tables are flattened into a single mapping with
snake_case keys, ready for resolve_configuration().
"""

import logging
import tomllib
from pathlib import Path
from typing import Any, Dict, Optional

from ..errors import ConfigurationError
from .build_config import PATH_OPTIONS

METADATA_KEY = "rust-gpu"
SUBTABLES = ("build", "install")


def _keys_to_snake_case(table: Dict[str, Any]) -> Dict[str, Any]:
    return {key.replace("-", "_"): value for key, value in table.items()}


def _flatten_rust_gpu_table(
    table: Dict[str, Any], origin: str, base_dir: Path
) -> Dict[str, Any]:
    options: Dict[str, Any] = {}
    for name, value in table.items():
        if name not in SUBTABLES or not isinstance(value, dict):
            raise ConfigurationError(
                f"Unexpected entry '{name}' in [{origin}] (expected build or install tables)"
            )
        # spirv-builder = { git = ..., rev = ... } is shorthand for the install source options
        nested = dict(value)
        builder = nested.pop("spirv-builder", None)
        if isinstance(builder, dict):
            if "git" in builder:
                options["spirv_builder_source"] = builder["git"]
            if "rev" in builder:
                options["spirv_builder_version"] = builder["rev"]
            elif "version" in builder:
                options["spirv_builder_version"] = builder["version"]
        options.update(_keys_to_snake_case(nested))

    # Relative paths are relative to the Cargo.toml that declares them
    for key in PATH_OPTIONS:
        value = options.get(key)
        if isinstance(value, str):
            options[key] = str(base_dir / value)
    return options


def read_cargo_toml(cargo_toml: Path) -> Dict[str, Any]:
    """Parse a Cargo.toml file.

    Raises:
        ConfigurationError: If the file is missing or is not valid TOML
    """
    if not cargo_toml.is_file():
        raise ConfigurationError(f"Cargo.toml not found: {cargo_toml}")
    try:
        with open(cargo_toml, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Failed to parse {cargo_toml}: {e}") from e


def get_metadata_table(toml: Dict[str, Any], section: str) -> Optional[Dict[str, Any]]:
    """Return the [<section>.metadata.rust-gpu] table, if present."""
    table = toml.get(section, {}).get("metadata", {}).get(METADATA_KEY)
    return table if isinstance(table, dict) else None


def load_metadata_options(
    cargo_toml: Path, workspace_toml: Optional[Path] = None
) -> Dict[str, Any]:
    """Read merged spvforge options from a crate's (and its workspace's) Cargo.toml.

    Args:
        cargo_toml: Path to the crate's Cargo.toml
        workspace_toml: Optional path to the workspace root Cargo.toml

    Returns:
        Flattened snake_case options; empty if no metadata is present
    """
    options: Dict[str, Any] = {}

    if workspace_toml is not None and workspace_toml.is_file():
        workspace = get_metadata_table(read_cargo_toml(workspace_toml), "workspace")
        if workspace:
            options.update(
                _flatten_rust_gpu_table(
                    workspace, "workspace.metadata.rust-gpu", workspace_toml.resolve().parent
                )
            )

    toml = read_cargo_toml(cargo_toml)
    for section in ("workspace", "package"):
        table = get_metadata_table(toml, section)
        if table:
            options.update(
                _flatten_rust_gpu_table(
                    table, f"{section}.metadata.rust-gpu", cargo_toml.resolve().parent
                )
            )

    logging.debug(f"Metadata options from {cargo_toml}: {options}")
    return options


def find_workspace_toml(crate_dir: Path) -> Optional[Path]:
    """Walk up from crate_dir looking for a Cargo.toml with a [workspace] table."""
    for parent in Path(crate_dir).resolve().parents:
        candidate = parent / "Cargo.toml"
        if candidate.is_file():
            try:
                if "workspace" in read_cargo_toml(candidate):
                    return candidate
            except ConfigurationError:
                continue
    return None
