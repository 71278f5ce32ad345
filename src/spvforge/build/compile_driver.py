"""Shader compilation through the cached backend driver.

The driver binary of a backend entry compiles the shader crate and writes a
sidecar manifest naming the SPIR-V file of every entry point. That sidecar is
the only place the entry point to file correlation comes from; this module
validates it, copies the files into the output directory, and returns the
entries in declaration order.
"""

import json
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..command_executor import CommandExecutor
from ..config.build_config import (
    DEFAULT_TARGET,
    BuildConfiguration,
    LayoutRelaxation,
    MetadataLevel,
)
from ..errors import CompileFailed, ConfigurationError, MissingOutput, OutputWriteError
from ..packages.backend_cache import CachedBackendEntry
from ..packages.driver_crate import SIDECAR_FILENAME

SHADER_TARGET_SUBDIR = Path("target") / "spvforge"


@dataclass(frozen=True)
class CompileOptions:
    """Per-compile settings that do not affect the backend build."""

    output_dir: Path
    target: str = DEFAULT_TARGET
    features: Tuple[str, ...] = ()
    no_default_features: bool = False
    capabilities: Tuple[str, ...] = ()
    extensions: Tuple[str, ...] = ()
    metadata_level: MetadataLevel = MetadataLevel.NONE
    multimodule: bool = False
    layout: LayoutRelaxation = field(default_factory=LayoutRelaxation)
    debug: bool = False
    deny_warnings: bool = False

    @classmethod
    def from_config(cls, config: BuildConfiguration) -> "CompileOptions":
        return cls(
            output_dir=config.output_dir,
            target=config.target,
            features=config.features,
            no_default_features=config.no_default_features,
            capabilities=config.capabilities,
            extensions=config.extensions,
            metadata_level=config.metadata_level,
            multimodule=config.multimodule,
            layout=config.layout,
            debug=config.debug,
            deny_warnings=config.deny_warnings,
        )


@dataclass(frozen=True)
class ShaderOutput:
    """One compiled entry point.

    Attributes:
        entry_point: Entry point name as declared in the shader crate
        source_path: Path of the copied .spv file, relative to the shader crate when possible
        output_path: Absolute path of the copied .spv file
    """

    entry_point: str
    source_path: str
    output_path: Path


@dataclass
class CompileJob:
    """State of one compile call."""

    package_dir: Path
    backend_entry: CachedBackendEntry
    options: CompileOptions
    staging_dir: Path

    @property
    def sidecar_path(self) -> Path:
        return self.staging_dir / SIDECAR_FILENAME

    def driver_args(self) -> Dict[str, Any]:
        """Build the JSON argument understood by the driver binary."""
        options = self.options
        args: Dict[str, Any] = {
            "dylib_path": str(self.backend_entry.backend_path),
            "shader_crate": str(self.package_dir),
            "shader_target": options.target,
            "no_default_features": options.no_default_features,
            "features": list(options.features),
            "capabilities": list(options.capabilities),
            "extensions": list(options.extensions),
            "spirv_metadata": options.metadata_level.value,
            "multimodule": options.multimodule,
            "debug": options.debug,
            "deny_warnings": options.deny_warnings,
            "sidecar_path": str(self.sidecar_path),
        }
        for name, value in vars(options.layout).items():
            args[name] = value
        return args

    def environment(self) -> Dict[str, str]:
        # Shader builds get their own target dir so they never touch the backend entry
        return {
            "CARGO_TARGET_DIR": str(self.package_dir / SHADER_TARGET_SUBDIR),
            "RUSTUP_TOOLCHAIN": self.backend_entry.channel,
        }


def _relative_source_path(path: Path, package_dir: Path) -> str:
    try:
        return Path(os.path.relpath(path, package_dir)).as_posix()
    except ValueError:
        # Different drives on Windows
        return path.as_posix()


class CompileDriver:
    """Compiles a shader crate with a cached backend."""

    def __init__(self, executor: Optional[CommandExecutor] = None, verbose: bool = False):
        self.executor = executor or CommandExecutor(verbose=verbose)
        self.verbose = verbose

    def compile(
        self,
        package_dir: Path,
        backend_entry: CachedBackendEntry,
        options: CompileOptions,
    ) -> List[ShaderOutput]:
        """Compile the shader crate and collect its outputs.

        Args:
            package_dir: Shader crate directory
            backend_entry: COMPLETE backend cache entry
            options: Compile options

        Returns:
            One ShaderOutput per entry point, in declaration order

        Raises:
            CompileFailed: If the driver exits non-zero (diagnostics attached)
            MissingOutput: If the sidecar or any output file is missing or inconsistent
            OutputWriteError: If the output directory cannot be written
        """
        package_dir = Path(package_dir).resolve()
        if not package_dir.is_dir():
            raise ConfigurationError(f"Shader crate is not a directory: {package_dir}")

        output_dir = Path(options.output_dir).resolve()
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise OutputWriteError(f"Cannot create output directory {output_dir}: {e}") from e

        with tempfile.TemporaryDirectory(prefix="spvforge-") as staging:
            job = CompileJob(
                package_dir=package_dir,
                backend_entry=backend_entry,
                options=options,
                staging_dir=Path(staging),
            )
            self._run_driver(job)
            modules = self._read_sidecar(job)
            return self._collect_outputs(job, modules, output_dir)

    def _run_driver(self, job: CompileJob) -> None:
        arg = json.dumps(job.driver_args())
        logging.info(f"Driver argument: {arg}")
        if self.verbose:
            print(f"Compiling shader crate {job.package_dir}...")

        try:
            result = self.executor.run(
                [str(job.backend_entry.driver_path), arg],
                cwd=job.package_dir,
                env=job.environment(),
                stream=True,
            )
        except FileNotFoundError:
            raise CompileFailed(
                f"Backend driver {job.backend_entry.driver_path} is missing; "
                + "rebuild the backend with --force-spirv-cli-rebuild"
            )

        if not result.success:
            raise CompileFailed(
                f"Shader crate {job.package_dir} failed to compile (exit code {result.returncode})",
                diagnostics=result.output,
            )

    @staticmethod
    def _read_sidecar(job: CompileJob) -> List[Tuple[str, Path]]:
        if not job.sidecar_path.is_file():
            raise MissingOutput(f"Compiler did not write {SIDECAR_FILENAME}")
        try:
            records = json.loads(job.sidecar_path.read_text(encoding="utf-8"))
        except ValueError as e:
            raise MissingOutput(f"Malformed {SIDECAR_FILENAME}: {e}") from e

        if not isinstance(records, list):
            raise MissingOutput(f"Malformed {SIDECAR_FILENAME}: expected a list")

        modules = []
        unbuilt = []
        for record in records:
            if not isinstance(record, dict) or "entry" not in record or "path" not in record:
                raise MissingOutput(f"Malformed {SIDECAR_FILENAME} record: {record!r}")
            if not record["path"]:
                unbuilt.append(str(record["entry"]))
                continue
            modules.append((str(record["entry"]), Path(record["path"])))

        if unbuilt:
            raise MissingOutput(f"No SPIR-V module was produced for entry point(s): {', '.join(unbuilt)}")
        return modules

    @staticmethod
    def _collect_outputs(
        job: CompileJob, modules: List[Tuple[str, Path]], output_dir: Path
    ) -> List[ShaderOutput]:
        if not modules:
            raise MissingOutput(f"No entry points were compiled in {job.package_dir}")

        distinct_files = list(dict.fromkeys(path for _, path in modules))
        expected = len(modules) if job.options.multimodule else 1
        if len(distinct_files) != expected:
            raise MissingOutput(
                f"Expected {expected} SPIR-V file(s) for {len(modules)} entry point(s), "
                + f"got {len(distinct_files)}"
            )

        for path in distinct_files:
            if not path.is_file() or path.stat().st_size == 0:
                raise MissingOutput(f"SPIR-V output {path} is missing or empty")

        copied: Dict[Path, Path] = {}
        for path in distinct_files:
            dest = output_dir / path.name
            try:
                shutil.copyfile(path, dest)
            except OSError as e:
                raise OutputWriteError(f"Cannot write {dest}: {e}") from e
            copied[path] = dest

        outputs = []
        for entry_point, path in modules:
            dest = copied[path]
            outputs.append(
                ShaderOutput(
                    entry_point=entry_point,
                    source_path=_relative_source_path(dest, job.package_dir),
                    output_path=dest,
                )
            )
            logging.debug(f"{entry_point} -> {dest}")
        return outputs
