"""
Build orchestration for spvforge.

This module runs the pipeline for one invocation, from a resolved
BuildConfiguration to SPIR-V files and a manifest:
- Backend source resolution (pinned to a concrete revision)
- Toolchain channel selection and cache fingerprinting
- Toolchain provisioning (rustup)
- Backend plugin build or cache hit
- Shader compilation through the backend driver
- Manifest writing

Every phase raises a SpvforgeError subclass on failure; nothing is retried or
skipped here.
"""

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from ..command_executor import CommandExecutor
from ..config.build_config import BuildConfiguration
from ..packages import (
    BackendPluginCache,
    BackendSpec,
    Cache,
    CachedBackendEntry,
    CacheFingerprint,
    PackageDownloader,
    ResolvedSource,
    SourceResolver,
    ToolchainHandle,
    ToolchainProvisioner,
    fingerprint,
)
from ..packages.entry_lock import DEFAULT_LOCK_TIMEOUT
from .compile_driver import CompileDriver, CompileOptions, ShaderOutput
from .manifest import ManifestWriter

BUILD_PHASES = 6


@dataclass(frozen=True)
class BackendPlan:
    """What the backend for a configuration is, before anything is installed."""

    source: ResolvedSource
    required_channel: str
    channel: str
    fingerprint: CacheFingerprint


@dataclass
class InstallResult:
    """Result of ensuring the backend for a configuration."""

    plan: BackendPlan
    toolchain: ToolchainHandle
    backend: CachedBackendEntry
    install_time: float


@dataclass
class BuildResult:
    """Result of a complete build operation."""

    install: InstallResult
    outputs: List[ShaderOutput]
    manifest_path: Path
    build_time: float


class BuildOrchestrator:
    """
    Orchestrates the complete shader build.

    Example usage:
        orchestrator = BuildOrchestrator(cache=Cache(), verbose=True)
        result = orchestrator.build(config)
        for output in result.outputs:
            print(f"{output.entry_point}: {output.source_path}")
    """

    def __init__(
        self,
        cache: Cache,
        executor: Optional[CommandExecutor] = None,
        downloader: Optional[PackageDownloader] = None,
        confirm: Optional[Callable[[str], bool]] = None,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
        verbose: bool = False,
    ):
        """
        Initialize build orchestrator.

        Args:
            cache: Cache root handle
            executor: Command executor shared by every phase
            downloader: Downloader for registry queries and source archives
            confirm: Callback approving toolchain installs
            lock_timeout: Seconds to wait for a contended backend entry
            verbose: Enable verbose output
        """
        self.cache = cache
        self.executor = executor or CommandExecutor(verbose=verbose)
        self.downloader = downloader
        self.confirm = confirm
        self.lock_timeout = lock_timeout
        self.verbose = verbose

    def _phase(self, number: int, total: int, message: str) -> None:
        logging.info(message)
        if self.verbose:
            print(f"[{number}/{total}] {message}")

    def source_resolver(self) -> SourceResolver:
        return SourceResolver(
            self.cache,
            executor=self.executor,
            downloader=self.downloader,
            show_progress=self.verbose,
        )

    def plan(self, config: BuildConfiguration, total: int = 2) -> BackendPlan:
        """Resolve the backend source and compute its fingerprint.

        Nothing is installed or built. Used directly by `show` commands.
        """
        resolver = self.source_resolver()

        self._phase(1, total, "Resolving backend source...")
        locator = config.backend_source or resolver.detect_from_package(config.package_dir)
        source = resolver.resolve(locator)

        self._phase(2, total, f"Determining toolchain for {source}...")
        required_channel = resolver.toolchain_channel(source)
        channel = config.toolchain_channel or required_channel

        key = fingerprint(source, channel, config.target, self.cache.platform_id)
        logging.info(f"Backend fingerprint: {key} ({source}, {channel}, {config.target})")
        return BackendPlan(
            source=source,
            required_channel=required_channel,
            channel=channel,
            fingerprint=key,
        )

    def install(self, config: BuildConfiguration, total: int = 4) -> InstallResult:
        """
        Ensure the toolchain and backend for a configuration.

        Args:
            config: Resolved configuration

        Returns:
            InstallResult with the ensured toolchain and COMPLETE backend entry
        """
        start_time = time.time()
        self.cache.ensure_directories()

        plan = self.plan(config, total)

        self._phase(3, total, f"Ensuring toolchain {plan.channel}...")
        provisioner = ToolchainProvisioner(
            executor=self.executor,
            confirm=self.confirm,
            auto_install=config.auto_install,
            verbose=self.verbose,
        )
        toolchain = provisioner.ensure(plan.channel)

        self._phase(4, total, f"Ensuring backend {plan.fingerprint}...")
        backend_cache = BackendPluginCache(
            self.cache,
            executor=self.executor,
            lock_timeout=self.lock_timeout,
            verbose=self.verbose,
        )
        backend = backend_cache.ensure_backend(
            plan.fingerprint,
            BackendSpec(source=plan.source, required_channel=plan.required_channel),
            toolchain,
            force_rebuild=config.force_rebuild,
        )

        return InstallResult(
            plan=plan,
            toolchain=toolchain,
            backend=backend,
            install_time=time.time() - start_time,
        )

    def build(self, config: BuildConfiguration) -> BuildResult:
        """
        Execute the complete build.

        Args:
            config: Resolved configuration

        Returns:
            BuildResult with the compiled entry points and manifest path
        """
        start_time = time.time()
        install = self.install(config, BUILD_PHASES)
        return self._compile(config, install, start_time)

    def rebuild(self, config: BuildConfiguration, install: InstallResult) -> BuildResult:
        """Recompile the shader crate against a backend that is already ensured.

        Skips source resolution, toolchain and backend phases, so repeated
        builds of the same crate (watch mode) only pay for the compile.
        """
        return self._compile(config, install, time.time())

    def _compile(
        self, config: BuildConfiguration, install: InstallResult, start_time: float
    ) -> BuildResult:
        self._phase(5, BUILD_PHASES, f"Compiling shader crate {config.package_dir}...")
        driver = CompileDriver(executor=self.executor, verbose=self.verbose)
        outputs = driver.compile(
            config.package_dir, install.backend, CompileOptions.from_config(config)
        )

        self._phase(6, BUILD_PHASES, "Writing manifest...")
        manifest_path = ManifestWriter(config.manifest_file).write(config.output_dir, outputs)

        build_time = time.time() - start_time
        if self.verbose:
            print(f"Built {len(outputs)} entry point(s) in {build_time:.2f}s")
        return BuildResult(
            install=install,
            outputs=outputs,
            manifest_path=manifest_path,
            build_time=build_time,
        )
