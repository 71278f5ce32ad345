"""
Command-line interface for spvforge.

This module provides the `spvforge` CLI tool for compiling Rust shader crates
to SPIR-V with a cached rust-gpu backend.
"""

import argparse
import logging
import sys
from dataclasses import dataclass, field
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Optional

from spvforge import __version__
from spvforge.build import BuildOrchestrator, BuildResult, ShaderCrateWatcher
from spvforge.cli_utils import CargoTomlLocator, ErrorFormatter, PathValidator, confirm_prompt
from spvforge.command_executor import CommandExecutor
from spvforge.config import (
    SPIRV_CAPABILITIES,
    BuildConfiguration,
    MetadataLevel,
    find_workspace_toml,
    load_metadata_options,
    read_cargo_toml,
    resolve_configuration,
)
from spvforge.config.cargo_metadata import get_metadata_table
from spvforge.errors import ConfigurationError, SpvforgeError
from spvforge.interrupt_utils import install_termination_handler
from spvforge.packages import Cache, SourceResolver
from spvforge.packages.entry_lock import DEFAULT_LOCK_TIMEOUT

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_log_handlers: List[logging.Handler] = []

# Flags shared by install, build and show fingerprint
INSTALL_FLAGS = (
    "shader_crate",
    "spirv_builder_source",
    "spirv_builder_version",
    "rust_toolchain",
    "force_spirv_cli_rebuild",
    "auto_install_rust_toolchain",
)

BUILD_FLAGS = (
    "output_dir",
    "shader_target",
    "features",
    "no_default_features",
    "capability",
    "extension",
    "multimodule",
    "spirv_metadata",
    "relax_struct_store",
    "relax_logical_pointer",
    "relax_block_layout",
    "uniform_buffer_standard_layout",
    "scalar_block_layout",
    "skip_block_layout",
    "preserve_bindings",
    "debug",
    "deny_warnings",
    "manifest_file",
)


@dataclass
class PipelineArgs:
    """Arguments for the install, build and toml commands."""

    flags: Dict[str, Any] = field(default_factory=dict)
    cache_dir: Optional[Path] = None
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT
    verbose: bool = False
    watch: bool = False


@dataclass
class TomlArgs:
    """Arguments for the toml command."""

    path: Path
    cache_dir: Optional[Path] = None
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT
    verbose: bool = False
    watch: bool = False


@dataclass
class ShowArgs:
    """Arguments for the show command."""

    what: str
    shader_crate: Path = field(default_factory=Path.cwd)
    flags: Dict[str, Any] = field(default_factory=dict)
    cache_dir: Optional[Path] = None
    verbose: bool = False


def setup_logging(cache: Cache, verbose: bool = False) -> None:
    """Setup logging for a CLI run.

    Warnings go to the console (everything with --verbose); a rotating log
    file in the cache root keeps the details of past runs.
    """
    logger = logging.getLogger()
    for handler in _log_handlers:
        logger.removeHandler(handler)
        handler.close()
    _log_handlers.clear()

    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    logger.addHandler(console_handler)
    _log_handlers.append(console_handler)

    try:
        cache.cache_root.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            str(cache.log_file),
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=3,
            encoding="utf-8",
        )
    except OSError as e:
        logging.warning(f"File logging disabled: {e}")
        return
    file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(file_handler)
    _log_handlers.append(file_handler)


def load_configuration(flags: Dict[str, Any], cwd: Optional[Path] = None) -> BuildConfiguration:
    """Layer command-line flags over the shader crate's Cargo.toml metadata.

    Args:
        flags: snake_case options given on the command line
        cwd: Directory flag paths are relative to (default: current directory)

    Returns:
        Resolved BuildConfiguration
    """
    cwd = Path(cwd) if cwd is not None else Path.cwd()
    shader_crate = (cwd / flags.get("shader_crate", ".")).resolve()
    PathValidator.validate_project_dir(shader_crate)

    metadata: Dict[str, Any] = {}
    cargo_toml = shader_crate / "Cargo.toml"
    if cargo_toml.is_file():
        metadata = load_metadata_options(cargo_toml, find_workspace_toml(shader_crate))

    return resolve_configuration(flags=flags, metadata=metadata, base_dir=shader_crate, cwd=cwd)


def _make_orchestrator(
    cache: Cache, lock_timeout: float, verbose: bool
) -> BuildOrchestrator:
    return BuildOrchestrator(
        cache,
        executor=CommandExecutor(verbose=verbose),
        confirm=confirm_prompt,
        lock_timeout=lock_timeout,
        verbose=verbose,
    )


def _print_build_result(result: BuildResult) -> None:
    ErrorFormatter.print_success(f"Built {len(result.outputs)} entry point(s)")
    print()
    for output in result.outputs:
        print(f"  {output.entry_point}: {output.source_path}")
    print(f"Manifest: {result.manifest_path}")
    print(f"Build time: {result.build_time:.2f}s")


def _run_build(
    config: BuildConfiguration, cache: Cache, lock_timeout: float, verbose: bool, watch: bool = False
) -> None:
    orchestrator = _make_orchestrator(cache, lock_timeout, verbose)
    if watch:
        ShaderCrateWatcher(orchestrator, config, on_build=_print_build_result).run()
        return
    _print_build_result(orchestrator.build(config))


def install_command(args: PipelineArgs) -> None:
    """Install the toolchain and backend for a shader crate.

    Examples:
        spvforge install                                  # Crate in current directory
        spvforge install --shader-crate shaders/          # Specific crate
        spvforge install --spirv-builder-version 0.9.0    # Registry backend version
        spvforge install --auto-install-rust-toolchain    # Never prompt
    """
    try:
        cache = Cache(args.cache_dir)
        setup_logging(cache, args.verbose)
        config = load_configuration(args.flags)

        orchestrator = _make_orchestrator(cache, args.lock_timeout, args.verbose)
        result = orchestrator.install(config)

        ErrorFormatter.print_success("Backend installed")
        print()
        print(f"Source:      {result.plan.source}")
        print(f"Toolchain:   {result.toolchain.channel}")
        print(f"Backend:     {result.backend.backend_path}")
        print(f"Driver:      {result.backend.driver_path}")
    except SpvforgeError as e:
        ErrorFormatter.handle_spvforge_error(e)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, verbose=args.verbose)


def build_command(args: PipelineArgs) -> None:
    """Compile a shader crate to SPIR-V and write the manifest.

    Examples:
        spvforge build                                    # Crate in current directory
        spvforge build --output-dir shaders               # Output directory
        spvforge build --multimodule                      # One .spv per entry point
        spvforge build --capability Int8 --capability Int16
        spvforge build --watch                            # Rebuild on every change
    """
    try:
        cache = Cache(args.cache_dir)
        setup_logging(cache, args.verbose)
        config = load_configuration(args.flags)
        _run_build(config, cache, args.lock_timeout, args.verbose, watch=args.watch)
    except SpvforgeError as e:
        ErrorFormatter.handle_spvforge_error(e)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, verbose=args.verbose)


def toml_command(args: TomlArgs) -> None:
    """Build using only the options in a Cargo.toml's rust-gpu metadata.

    Paths in the metadata are relative to the Cargo.toml.

    Examples:
        spvforge toml                         # ./Cargo.toml
        spvforge toml shaders/Cargo.toml
    """
    try:
        cache = Cache(args.cache_dir)
        setup_logging(cache, args.verbose)

        cargo_toml = CargoTomlLocator.locate(args.path)
        working_dir = cargo_toml.parent
        toml = read_cargo_toml(cargo_toml)

        if "workspace" in toml:
            section = "workspace"
        elif "package" in toml:
            section = "package"
        else:
            raise ConfigurationError(
                f"toml file '{cargo_toml}' must describe a workspace or a package"
            )
        if get_metadata_table(toml, section) is None:
            raise ConfigurationError(
                f"toml file '{cargo_toml}' is missing a [{section}.metadata.rust-gpu] table"
            )

        logging.info(f"Building with [{section}.metadata.rust-gpu] of {cargo_toml}")
        metadata = load_metadata_options(cargo_toml, find_workspace_toml(working_dir))
        shader_crate = Path(metadata.get("shader_crate", working_dir))
        PathValidator.validate_project_dir(shader_crate)

        config = resolve_configuration(
            metadata=metadata, base_dir=working_dir, cwd=working_dir
        )
        _run_build(config, cache, args.lock_timeout, args.verbose, watch=args.watch)
    except SpvforgeError as e:
        ErrorFormatter.handle_spvforge_error(e)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, verbose=args.verbose)


def show_command(args: ShowArgs) -> None:
    """Print information about spvforge and a shader crate.

    Output goes to stdout without decoration so it can be used in scripts.

    Examples:
        spvforge show cache-directory
        spvforge show spirv-source --shader-crate shaders/
        spvforge show fingerprint --shader-crate shaders/
        spvforge show capabilities
    """
    try:
        cache = Cache(args.cache_dir)
        setup_logging(cache, args.verbose)

        if args.what == "cache-directory":
            print(cache.cache_root)
        elif args.what == "spirv-source":
            PathValidator.validate_project_dir(args.shader_crate)
            resolver = SourceResolver(cache, executor=CommandExecutor(verbose=args.verbose))
            print(resolver.detect_from_package(args.shader_crate))
        elif args.what == "fingerprint":
            config = load_configuration(args.flags)
            orchestrator = _make_orchestrator(cache, DEFAULT_LOCK_TIMEOUT, args.verbose)
            plan = orchestrator.plan(config)
            print(plan.fingerprint)
        elif args.what == "capabilities":
            print("All available options to the `spvforge build --capability` argument:")
            for capability in SPIRV_CAPABILITIES:
                print(f"  {capability}")
    except SpvforgeError as e:
        ErrorFormatter.handle_spvforge_error(e)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, verbose=args.verbose)


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--cache-dir",
        type=Path,
        default=None,
        help="Cache root (default: $SPVFORGE_CACHE_DIR or the OS cache directory)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show verbose output",
    )


def _add_install_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--shader-crate",
        default=None,
        help="Directory containing the shader crate (default: current directory)",
    )
    parser.add_argument(
        "--spirv-builder-source",
        default=None,
        help="Git repository of the backend, e.g. https://github.com/Rust-GPU/rust-gpu",
    )
    parser.add_argument(
        "--spirv-builder-version",
        default=None,
        help="Backend version: a crates.io version, or a git revision with --spirv-builder-source",
    )
    parser.add_argument(
        "--rust-toolchain",
        default=None,
        help="Toolchain channel (default: the backend's rust-toolchain.toml)",
    )
    parser.add_argument(
        "--force-spirv-cli-rebuild",
        action="store_true",
        default=None,
        help="Rebuild the backend even if it is cached",
    )
    parser.add_argument(
        "--auto-install-rust-toolchain",
        action="store_true",
        default=None,
        help="Install missing toolchains and components without asking",
    )
    parser.add_argument(
        "--lock-timeout",
        type=float,
        default=DEFAULT_LOCK_TIMEOUT,
        help=f"Seconds to wait for another build of the same backend (default: {DEFAULT_LOCK_TIMEOUT:.0f})",
    )


def _add_build_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-o",
        "--output-dir",
        default=None,
        help="Directory for the compiled shaders and manifest (default: current directory)",
    )
    parser.add_argument(
        "--shader-target",
        default=None,
        help="SPIR-V target (default: spirv-unknown-vulkan1.2)",
    )
    parser.add_argument(
        "--features",
        action="append",
        default=None,
        help="Shader crate cargo feature (repeatable)",
    )
    parser.add_argument(
        "--no-default-features",
        action="store_true",
        default=None,
        help="Disable the shader crate's default features",
    )
    parser.add_argument(
        "--capability",
        action="append",
        default=None,
        help="Enable a SPIR-V capability (repeatable, see `spvforge show capabilities`)",
    )
    parser.add_argument(
        "--extension",
        action="append",
        default=None,
        help="Enable a SPIR-V extension (repeatable)",
    )
    parser.add_argument(
        "--multimodule",
        action="store_true",
        default=None,
        help="Compile one .spv file per entry point",
    )
    parser.add_argument(
        "--spirv-metadata",
        choices=[level.value for level in MetadataLevel],
        default=None,
        help="Metadata included in the SPIR-V binary (default: none)",
    )
    for name, help_text in (
        ("relax-struct-store", "Allow store between struct types with compatible layout"),
        ("relax-logical-pointer", "Allow pointer-typed objects in logical addressing mode"),
        ("relax-block-layout", "Enable VK_KHR_relaxed_block_layout checks"),
        ("uniform-buffer-standard-layout", "Enable VK_KHR_uniform_buffer_standard_layout checks"),
        ("scalar-block-layout", "Enable VK_EXT_scalar_block_layout checks"),
        ("skip-block-layout", "Skip uniform/storage buffer layout checks"),
        ("preserve-bindings", "Preserve unused descriptor bindings"),
        ("debug", "Compile shaders in debug mode"),
        ("deny-warnings", "Treat warnings as errors"),
    ):
        parser.add_argument(f"--{name}", action="store_true", default=None, help=help_text)
    parser.add_argument(
        "--manifest-file",
        default=None,
        help="Manifest file name inside the output directory (default: manifest.json)",
    )


def _add_watch_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-w",
        "--watch",
        action="store_true",
        help="Keep running and rebuild whenever the shader crate changes",
    )


def _collect_flags(parsed_args: argparse.Namespace, names) -> Dict[str, Any]:
    return {
        name: getattr(parsed_args, name)
        for name in names
        if getattr(parsed_args, name, None) is not None
    }


def main(argv: Optional[List[str]] = None) -> None:
    """spvforge - Rust shader crates to SPIR-V.

    Builds and caches the rust-gpu codegen backend, then compiles shader
    crates with it.
    """
    parser = argparse.ArgumentParser(
        prog="spvforge",
        description="spvforge - Compile Rust shader crates to SPIR-V",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"spvforge {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Install command
    install_parser = subparsers.add_parser(
        "install",
        help="Install the toolchain and backend for a shader crate",
    )
    _add_install_arguments(install_parser)
    _add_common_arguments(install_parser)

    # Build command
    build_parser = subparsers.add_parser(
        "build",
        help="Compile a shader crate to SPIR-V",
    )
    _add_install_arguments(build_parser)
    _add_build_arguments(build_parser)
    _add_watch_argument(build_parser)
    _add_common_arguments(build_parser)

    # Toml command
    toml_parser = subparsers.add_parser(
        "toml",
        help="Build using the [*.metadata.rust-gpu] tables of a Cargo.toml",
    )
    toml_parser.add_argument(
        "path",
        nargs="?",
        type=Path,
        default=Path("Cargo.toml"),
        help="Cargo.toml file or the directory holding it (default: ./Cargo.toml)",
    )
    toml_parser.add_argument(
        "--lock-timeout",
        type=float,
        default=DEFAULT_LOCK_TIMEOUT,
        help="Seconds to wait for another build of the same backend",
    )
    _add_watch_argument(toml_parser)
    _add_common_arguments(toml_parser)

    # Show command
    show_parser = subparsers.add_parser(
        "show",
        help="Show information about spvforge or a shader crate",
    )
    show_parser.add_argument(
        "what",
        choices=["cache-directory", "spirv-source", "fingerprint", "capabilities"],
        help="What to show",
    )
    _add_install_arguments(show_parser)
    _add_common_arguments(show_parser)

    # Parse arguments
    parsed_args = parser.parse_args(argv)

    # If no command specified, show help
    if not parsed_args.command:
        parser.print_help()
        sys.exit(0)

    install_termination_handler()

    # Execute command
    if parsed_args.command in ("install", "build"):
        names = INSTALL_FLAGS if parsed_args.command == "install" else INSTALL_FLAGS + BUILD_FLAGS
        pipeline_args = PipelineArgs(
            flags=_collect_flags(parsed_args, names),
            cache_dir=parsed_args.cache_dir,
            lock_timeout=parsed_args.lock_timeout,
            verbose=parsed_args.verbose,
            watch=getattr(parsed_args, "watch", False),
        )
        if parsed_args.command == "install":
            install_command(pipeline_args)
        else:
            build_command(pipeline_args)
    elif parsed_args.command == "toml":
        toml_args = TomlArgs(
            path=parsed_args.path,
            cache_dir=parsed_args.cache_dir,
            lock_timeout=parsed_args.lock_timeout,
            verbose=parsed_args.verbose,
            watch=parsed_args.watch,
        )
        toml_command(toml_args)
    elif parsed_args.command == "show":
        flags = _collect_flags(parsed_args, INSTALL_FLAGS)
        show_args = ShowArgs(
            what=parsed_args.what,
            shader_crate=Path(flags.get("shader_crate", ".")).resolve(),
            flags=flags,
            cache_dir=parsed_args.cache_dir,
            verbose=parsed_args.verbose,
        )
        show_command(show_args)


if __name__ == "__main__":
    main()
