"""Backend management for spvforge.

This module handles resolving backend sources, provisioning Rust toolchains,
and building and caching the SPIR-V codegen backend and its driver.
"""

from .backend_cache import BackendPluginCache, BackendSpec, CachedBackendEntry, EntryState
from .cache import Cache, default_cache_root
from .downloader import DownloadError, ExtractionError, PackageDownloader, retry_with_backoff
from .entry_lock import EntryLock
from .fingerprint import CacheFingerprint, fingerprint
from .platform_utils import PlatformDetector
from .spirv_source import ResolvedSource, SourceResolver
from .toolchain import ToolchainHandle, ToolchainProvisioner

__all__ = [
    "BackendPluginCache",
    "BackendSpec",
    "CachedBackendEntry",
    "EntryState",
    "Cache",
    "default_cache_root",
    "PackageDownloader",
    "DownloadError",
    "ExtractionError",
    "retry_with_backoff",
    "EntryLock",
    "CacheFingerprint",
    "fingerprint",
    "PlatformDetector",
    "ResolvedSource",
    "SourceResolver",
    "ToolchainHandle",
    "ToolchainProvisioner",
]
