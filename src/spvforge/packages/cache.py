"""Cache management for spvforge.

This module provides the cache root handle. It is created once per pipeline
invocation and passed explicitly to every component that touches the cache,
so tests can point each case at its own directory.

Cache Structure:
    {cache_root}/
    ├── {platform}/                          # e.g. linux-x86_64
    │   └── {fingerprint}/                   # One backend build
    │       ├── librustc_codegen_spirv.so    # Backend plugin
    │       ├── spirv-builder-cli            # Driver binary
    │       ├── resolved-revision            # Concrete backend revision
    │       ├── complete.json                # Written last; marks the entry valid
    │       ├── lock                         # Per-entry lock file
    │       └── driver-crate/                # Generated driver sources + cargo target
    ├── sources/
    │   └── {source_dirname}/                # Backend sources fetched to read rust-toolchain.toml
    └── spvforge.log

The cache root is taken from SPVFORGE_CACHE_DIR when set, otherwise from the
OS cache directory.
"""

import hashlib
import os
import sys
from pathlib import Path
from typing import Optional

from .platform_utils import PlatformDetector

CACHE_DIR_ENV = "SPVFORGE_CACHE_DIR"


def default_cache_root() -> Path:
    """Return the cache root for this user and host.

    Returns:
        $SPVFORGE_CACHE_DIR if set, else the platform cache directory + 'spvforge'
    """
    cache_env = os.environ.get(CACHE_DIR_ENV)
    if cache_env:
        return Path(cache_env).resolve()

    if sys.platform == "win32":
        base = os.environ.get("LOCALAPPDATA")
        base_dir = Path(base) if base else Path.home() / "AppData" / "Local"
    elif sys.platform == "darwin":
        base_dir = Path.home() / "Library" / "Caches"
    else:
        xdg = os.environ.get("XDG_CACHE_HOME")
        base_dir = Path(xdg) if xdg else Path.home() / ".cache"

    return base_dir / "spvforge"


class Cache:
    """Explicit handle on a spvforge cache root."""

    def __init__(self, cache_root: Optional[Path] = None, platform_id: Optional[str] = None):
        """Initialize cache handle.

        Args:
            cache_root: Cache root directory. If None, uses default_cache_root().
            platform_id: Host platform identifier. If None, detects the host.
        """
        if cache_root is None:
            cache_root = default_cache_root()

        self.cache_root = Path(cache_root).resolve()
        self.platform_id = platform_id or PlatformDetector.host_platform_id()

    @staticmethod
    def hash_text(text: str) -> str:
        """Generate a short SHA256 hash of a string for directory naming.

        Args:
            text: The text to hash

        Returns:
            First 16 characters of SHA256 hash
        """
        return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]

    @staticmethod
    def to_dirname(text: str) -> str:
        """Return a string suitable for use as a directory name.

        Separators and punctuation become '_'; braces, quotes and whitespace
        are dropped.
        """
        for char in (os.sep, "\\", "/", ".", ":", "@", "=", "?", "#"):
            text = text.replace(char, "_")
        for char in ("{", "}", " ", "\n", '"', "'"):
            text = text.replace(char, "")
        return text

    @property
    def platform_dir(self) -> Path:
        """Directory holding backend entries for this host platform."""
        return self.cache_root / self.platform_id

    @property
    def sources_dir(self) -> Path:
        """Directory for fetched backend sources."""
        return self.cache_root / "sources"

    @property
    def log_file(self) -> Path:
        """Rotating log file for spvforge runs."""
        return self.cache_root / "spvforge.log"

    def get_entry_dir(self, fingerprint: str) -> Path:
        """Get the backend entry directory for a fingerprint.

        Args:
            fingerprint: Hex digest from the cache key generator

        Returns:
            Path to the fingerprint's entry directory
        """
        return self.platform_dir / str(fingerprint)

    def get_source_dir(self, source_id: str) -> Path:
        """Get the directory where a backend source checkout is stored.

        Args:
            source_id: Source identity string, e.g. 'https://github.com/Rust-GPU/rust-gpu+82a0f69'

        Returns:
            Path under sources_dir
        """
        dirname = self.to_dirname(source_id)
        # Keep directory names short enough for Windows path limits
        if len(dirname) > 80:
            dirname = f"{dirname[:63]}_{self.hash_text(source_id)}"
        return self.sources_dir / dirname

    def ensure_directories(self) -> None:
        """Create all cache directories if they don't exist."""
        for directory in [self.platform_dir, self.sources_dir]:
            directory.mkdir(parents=True, exist_ok=True)

    def is_source_cached(self, source_id: str) -> bool:
        """Check if a backend source checkout is present."""
        source_dir = self.get_source_dir(source_id)
        return source_dir.exists() and source_dir.is_dir()
