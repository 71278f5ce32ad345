"""Shader build pipeline for spvforge."""

from .compile_driver import CompileDriver, CompileJob, CompileOptions, ShaderOutput
from .manifest import MANIFEST_SCHEMA_VERSION, ManifestWriter, ShaderManifest
from .orchestrator import BackendPlan, BuildOrchestrator, BuildResult, InstallResult
from .watcher import ShaderCrateWatcher

__all__ = [
    "CompileDriver",
    "CompileJob",
    "CompileOptions",
    "ShaderOutput",
    "ManifestWriter",
    "ShaderManifest",
    "MANIFEST_SCHEMA_VERSION",
    "BackendPlan",
    "BuildOrchestrator",
    "BuildResult",
    "InstallResult",
    "ShaderCrateWatcher",
]
