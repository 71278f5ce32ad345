"""Cache key generation for backend builds.

A fingerprint identifies one backend build: the same pinned source, toolchain
channel, host platform and target triple always map to the same cache entry,
and any change to one of them maps to a different entry. Inputs that only
affect shader compilation (output dir, features, capabilities) are excluded.
"""

import hashlib
import json
import os
from dataclasses import dataclass
from urllib.parse import urlparse, urlunparse

from ..config.build_config import SourceKind
from ..errors import ConfigurationError
from .spirv_source import ResolvedSource

FINGERPRINT_LENGTH = 32


@dataclass(frozen=True)
class CacheFingerprint:
    """Hex digest naming one backend cache entry."""

    digest: str

    def __str__(self) -> str:
        return self.digest


def normalize_location(kind: SourceKind, location: str) -> str:
    """Canonicalize a source location so equivalent spellings hash equally.

    Examples:
        https://GitHub.com/Rust-GPU/rust-gpu.git/ -> https://github.com/Rust-GPU/rust-gpu
        ./rust-gpu                                -> /abs/path/rust-gpu
    """
    if kind == SourceKind.REGISTRY:
        return ""
    if kind == SourceKind.PATH:
        return os.path.normcase(os.path.abspath(location))

    parsed = urlparse(location.strip())
    path = parsed.path.rstrip("/")
    if path.endswith(".git"):
        path = path[: -len(".git")]
    path = path.rstrip("/")
    return urlunparse((parsed.scheme.lower(), parsed.netloc.lower(), path, "", parsed.query, ""))


def fingerprint(
    resolved_source: ResolvedSource, channel: str, target: str, platform: str
) -> CacheFingerprint:
    """Compute the cache key for a backend build.

    Args:
        resolved_source: Backend source pinned to a concrete revision
        channel: Toolchain channel, e.g. 'nightly-2024-04-24'
        target: SPIR-V target triple
        platform: Host platform identifier, e.g. 'linux-x86_64'

    Returns:
        CacheFingerprint

    Raises:
        ConfigurationError: If the source has not been resolved
    """
    if not isinstance(resolved_source, ResolvedSource) or not resolved_source.revision:
        raise ConfigurationError(
            f"Cannot fingerprint an unresolved backend source: {resolved_source}"
        )

    key = {
        "kind": resolved_source.kind.value,
        "location": normalize_location(resolved_source.kind, resolved_source.locator.location),
        "revision": resolved_source.revision,
        "channel": channel,
        "platform": platform,
        "target": target,
    }
    canonical = json.dumps(key, sort_keys=True, separators=(",", ":"))
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]
    return CacheFingerprint(digest)
