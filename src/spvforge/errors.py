"""Error types shared across the spvforge pipeline.

Every stage raises a subclass of SpvforgeError and lets it propagate to the
top of the pipeline. The CLI is the only place that turns them into exit codes.

Hierarchy:
    SpvforgeError
    ├── ConfigurationError
    │   ├── UnresolvableSourceReference
    │   └── PlatformError
    ├── ToolchainError
    │   ├── ToolchainUnavailable
    │   ├── InstallDeclined
    │   ├── InstallFailed
    │   └── IncompatibleToolchain
    ├── CacheError
    │   └── LockTimeout
    ├── CompileError
    │   ├── PluginBuildFailed
    │   ├── CompileFailed
    │   └── MissingOutput
    └── OutputWriteError
"""

from typing import Optional


class SpvforgeError(Exception):
    """Base class for all spvforge failures."""

    pass


class ConfigurationError(SpvforgeError):
    """Raised for unresolvable or contradictory configuration inputs."""

    pass


class UnresolvableSourceReference(ConfigurationError):
    """Raised when a backend source locator cannot be pinned to a concrete revision."""

    pass


class PlatformError(ConfigurationError):
    """Raised when the host platform is not supported."""

    pass


class ToolchainError(SpvforgeError):
    """Raised when toolchain provisioning fails."""

    pass


class ToolchainUnavailable(ToolchainError):
    """Raised for unsupported or unknown toolchain channels."""

    pass


class InstallDeclined(ToolchainError):
    """Raised when the user refuses a toolchain install."""

    pass


class InstallFailed(ToolchainError):
    """Raised when fetching or installing a toolchain component fails."""

    pass


class IncompatibleToolchain(ToolchainError):
    """Raised when the backend needs a newer toolchain than the one ensured."""

    pass


class CacheError(SpvforgeError):
    """Raised for backend cache failures (contention, corrupt entries)."""

    pass


class LockTimeout(CacheError):
    """Raised when a cache entry lock cannot be acquired in time."""

    pass


class CompileError(SpvforgeError):
    """Raised when a compilation step fails.

    Attributes:
        diagnostics: Compiler output, kept verbatim
    """

    def __init__(self, message: str, diagnostics: Optional[str] = None):
        super().__init__(message)
        self.diagnostics = diagnostics or ""


class PluginBuildFailed(CompileError):
    """Raised when building the codegen backend or its driver fails."""

    pass


class CompileFailed(CompileError):
    """Raised when the shader package fails to compile."""

    pass


class MissingOutput(CompileError):
    """Raised when the compiler reports success but an expected output is absent."""

    pass


class OutputWriteError(SpvforgeError):
    """Raised when an output location cannot be written."""

    pass
