"""Backend plugin cache.

Building the SPIR-V backend takes minutes, so each build is stored in a cache
entry named by its fingerprint and reused by every later invocation:

    {platform_dir}/{fingerprint}/
    ├── librustc_codegen_spirv.so
    ├── spirv-builder-cli
    ├── resolved-revision
    ├── complete.json      # written last, atomically
    ├── lock
    └── driver-crate/

An entry is COMPLETE only when complete.json parses and names the entry's own
fingerprint. Anything else (no marker, a torn marker, a marker for another
fingerprint) is INCOMPLETE and gets rebuilt from scratch under the entry lock.
"""

import json
import logging
import os
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

from ..command_executor import CommandExecutor
from ..config.build_config import SourceKind
from ..errors import IncompatibleToolchain, PluginBuildFailed
from ..fs_utils import atomic_write_text, safe_rmtree
from . import driver_crate
from .cache import Cache
from .entry_lock import DEFAULT_LOCK_TIMEOUT, EntryLock
from .fingerprint import CacheFingerprint
from .platform_utils import PlatformDetector
from .spirv_source import KNOWN_TOOLCHAINS, ResolvedSource
from .toolchain import ToolchainHandle, channel_date

MARKER_FILENAME = "complete.json"
LOCK_FILENAME = "lock"
REVISION_FILENAME = "resolved-revision"
DRIVER_CRATE_DIRNAME = "driver-crate"


class EntryState(Enum):
    """Lifecycle state of a backend cache entry."""

    ABSENT = "absent"
    INCOMPLETE = "incomplete"
    COMPLETE = "complete"


@dataclass(frozen=True)
class BackendSpec:
    """What to build into an entry.

    Attributes:
        source: Pinned backend source
        required_channel: Channel the backend source declares, if known
    """

    source: ResolvedSource
    required_channel: Optional[str] = None


@dataclass(frozen=True)
class CachedBackendEntry:
    """A COMPLETE backend cache entry."""

    fingerprint: CacheFingerprint
    entry_dir: Path
    backend_path: Path
    driver_path: Path
    revision: str
    channel: str


class BackendPluginCache:
    """Builds and reuses backend entries, one per fingerprint."""

    def __init__(
        self,
        cache: Cache,
        executor: Optional[CommandExecutor] = None,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
        verbose: bool = False,
    ):
        """Initialize backend plugin cache.

        Args:
            cache: Cache root handle
            executor: Command executor for cargo
            lock_timeout: Seconds to wait for a contended entry lock
            verbose: Print progress and stream compiler output
        """
        self.cache = cache
        self.executor = executor or CommandExecutor(verbose=verbose)
        self.lock_timeout = lock_timeout
        self.verbose = verbose

    def entry_dir(self, fingerprint: CacheFingerprint) -> Path:
        return self.cache.get_entry_dir(str(fingerprint))

    def state(self, fingerprint: CacheFingerprint) -> EntryState:
        """Get the lifecycle state of the entry for a fingerprint."""
        return self._inspect(fingerprint)[0]

    def _inspect(self, fingerprint: CacheFingerprint) -> Tuple[EntryState, Optional[CachedBackendEntry]]:
        entry_dir = self.entry_dir(fingerprint)
        entry = self.lookup(fingerprint)
        if entry is not None:
            return EntryState.COMPLETE, entry
        # A directory holding nothing but the lock has never started a build
        if not entry_dir.is_dir() or all(child.name == LOCK_FILENAME for child in entry_dir.iterdir()):
            return EntryState.ABSENT, None
        return EntryState.INCOMPLETE, None

    def lookup(self, fingerprint: CacheFingerprint) -> Optional[CachedBackendEntry]:
        """Read a COMPLETE entry, or return None for anything else."""
        entry_dir = self.entry_dir(fingerprint)
        marker_path = entry_dir / MARKER_FILENAME
        try:
            marker = json.loads(marker_path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None

        if not isinstance(marker, dict) or marker.get("fingerprint") != str(fingerprint):
            return None

        try:
            entry = CachedBackendEntry(
                fingerprint=fingerprint,
                entry_dir=entry_dir,
                backend_path=entry_dir / marker["backend"],
                driver_path=entry_dir / marker["driver"],
                revision=marker["revision"],
                channel=marker["channel"],
            )
        except (KeyError, TypeError):
            return None

        if not (entry.backend_path.is_file() and entry.driver_path.is_file()):
            return None
        return entry

    def ensure_backend(
        self,
        fingerprint: CacheFingerprint,
        spec: BackendSpec,
        toolchain: ToolchainHandle,
        force_rebuild: bool = False,
    ) -> CachedBackendEntry:
        """Return the COMPLETE entry for a fingerprint, building it if needed.

        Args:
            fingerprint: Cache key of the build
            spec: Backend source and its required channel
            toolchain: Ensured toolchain to build with
            force_rebuild: Rebuild even when the entry is COMPLETE

        Returns:
            CachedBackendEntry

        Raises:
            LockTimeout: If another builder holds the entry for too long
            IncompatibleToolchain: If the toolchain cannot build this backend
            PluginBuildFailed: If the backend or driver fails to build
        """
        entry_dir = self.entry_dir(fingerprint)
        entry_dir.mkdir(parents=True, exist_ok=True)

        with EntryLock(entry_dir / LOCK_FILENAME, timeout=self.lock_timeout):
            state, existing = self._inspect(fingerprint)
            if state == EntryState.COMPLETE and not force_rebuild:
                logging.info(f"Backend cache hit: {entry_dir}")
                if self.verbose:
                    print(f"Using cached backend {fingerprint} ({spec.source})")
                return existing
            if state == EntryState.INCOMPLETE:
                logging.warning(f"Backend entry {entry_dir} is incomplete, rebuilding")
            elif state == EntryState.COMPLETE:
                logging.info(f"Forced rebuild of backend entry {entry_dir}")

            self.check_compatibility(spec, toolchain)

            logging.info(f"Building backend {spec.source} with {toolchain.channel} in {entry_dir}")
            if self.verbose:
                print(f"Compiling backend {spec.source} with {toolchain.channel}...")

            self._clear_entry(entry_dir)
            backend_path, driver_path = self._build(entry_dir, spec, toolchain)

            (entry_dir / REVISION_FILENAME).write_text(spec.source.revision, encoding="utf-8")

            entry = CachedBackendEntry(
                fingerprint=fingerprint,
                entry_dir=entry_dir,
                backend_path=backend_path,
                driver_path=driver_path,
                revision=spec.source.revision,
                channel=toolchain.channel,
            )
            self._write_marker(entry, spec)
            logging.info(f"Backend entry {fingerprint} is complete")
            return entry

    @staticmethod
    def check_compatibility(spec: BackendSpec, toolchain: ToolchainHandle) -> None:
        """Reject toolchains known to be unable to build the backend.

        Raises:
            IncompatibleToolchain: If the ensured nightly is older than the
                required one, or a known version/channel pair is violated
        """
        if spec.required_channel:
            required_day = channel_date(spec.required_channel)
            ensured_day = toolchain.date
            if required_day and ensured_day and ensured_day < required_day:
                raise IncompatibleToolchain(
                    f"Backend {spec.source} requires {spec.required_channel} or newer, "
                    + f"but {toolchain.channel} was selected"
                )

        if spec.source.kind == SourceKind.REGISTRY:
            major_minor = ".".join(spec.source.revision.split(".")[:2])
            known_channel = KNOWN_TOOLCHAINS.get(major_minor)
            if known_channel and not toolchain.channel.startswith(known_channel):
                raise IncompatibleToolchain(
                    f"spirv-std {spec.source.revision} must be built with {known_channel}, "
                    + f"but {toolchain.channel} was selected"
                )

    def _clear_entry(self, entry_dir: Path) -> None:
        """Invalidate the entry, then remove everything but the lock file."""
        (entry_dir / MARKER_FILENAME).unlink(missing_ok=True)
        for child in entry_dir.iterdir():
            if child.name == LOCK_FILENAME:
                continue
            if child.is_dir() and not child.is_symlink():
                safe_rmtree(child)
            else:
                child.unlink()

    def _build(
        self, entry_dir: Path, spec: BackendSpec, toolchain: ToolchainHandle
    ) -> Tuple[Path, Path]:
        crate_dir = driver_crate.materialize(
            entry_dir / DRIVER_CRATE_DIRNAME, spec.source, toolchain.channel
        )
        feature = driver_crate.select_builder_feature(toolchain.channel)
        cmd = [
            "cargo",
            f"+{toolchain.channel}",
            "build",
            "--release",
            "--no-default-features",
            "--features",
            feature,
        ]
        env = {"CARGO_TARGET_DIR": str(crate_dir / "target")}

        try:
            result = self.executor.run(cmd, cwd=crate_dir, env=env, stream=True)
        except FileNotFoundError:
            raise PluginBuildFailed("cargo not found on PATH")

        if not result.success:
            raise PluginBuildFailed(
                f"Building the backend for {spec.source} failed (exit code {result.returncode})",
                diagnostics=result.output,
            )

        release_dir = crate_dir / "target" / "release"
        artifacts = [
            PlatformDetector.dylib_filename(driver_crate.BACKEND_STEM),
            PlatformDetector.executable_filename(driver_crate.DRIVER_NAME),
        ]
        installed = []
        for filename in artifacts:
            built = release_dir / filename
            if not built.is_file():
                listing = "\n".join(sorted(p.name for p in release_dir.iterdir())) if release_dir.is_dir() else ""
                raise PluginBuildFailed(
                    f"Backend build succeeded but {built} was not produced",
                    diagnostics=listing,
                )
            dest = entry_dir / filename
            shutil.move(str(built), str(dest))
            logging.debug(f"Installed {dest}")
            installed.append(dest)

        return installed[0], installed[1]

    @staticmethod
    def _write_marker(entry: CachedBackendEntry, spec: BackendSpec) -> None:
        marker = {
            "fingerprint": str(entry.fingerprint),
            "source": str(spec.source),
            "revision": entry.revision,
            "channel": entry.channel,
            "backend": entry.backend_path.name,
            "driver": entry.driver_path.name,
            "created_at": datetime.now(timezone.utc).isoformat(),
            "pid": os.getpid(),
        }
        atomic_write_text(entry.entry_dir / MARKER_FILENAME, json.dumps(marker, indent=2))
