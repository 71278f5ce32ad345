"""Configuration resolution for spvforge."""

from .build_config import (
    DEFAULT_MANIFEST_FILE,
    DEFAULT_TARGET,
    BuildConfiguration,
    LayoutRelaxation,
    MetadataLevel,
    SourceKind,
    SourceLocator,
    resolve_configuration,
)
from .capabilities import SPIRV_CAPABILITIES
from .cargo_metadata import find_workspace_toml, load_metadata_options, read_cargo_toml

__all__ = [
    "BuildConfiguration",
    "LayoutRelaxation",
    "MetadataLevel",
    "SourceKind",
    "SourceLocator",
    "DEFAULT_TARGET",
    "DEFAULT_MANIFEST_FILE",
    "resolve_configuration",
    "load_metadata_options",
    "find_workspace_toml",
    "read_cargo_toml",
    "SPIRV_CAPABILITIES",
]
