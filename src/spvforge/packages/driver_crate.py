"""Generated driver crate for the SPIR-V backend.

Each backend cache entry builds a small Rust binary, `spirv-builder-cli`,
that links `spirv-builder` from the pinned backend source. Building it also
produces the `rustc_codegen_spirv` dylib as a dependency artifact. At compile
time the binary receives one JSON argument describing the shader build and
writes a sidecar manifest of `[{"entry": ..., "path": ...}]`.

Older backends (before the 0.10 builder interface) are driven through the
`spirv-builder-pre-cli` feature; newer ones through `spirv-builder-0_10`.
"""

import json
import logging
from datetime import date
from pathlib import Path

from ..config.build_config import SourceKind
from .spirv_source import ResolvedSource
from .toolchain import REQUIRED_COMPONENTS, channel_date

DRIVER_NAME = "spirv-builder-cli"
BACKEND_STEM = "rustc_codegen_spirv"
SIDECAR_FILENAME = "spirv-manifest.json"

FEATURE_PRE_CLI = "spirv-builder-pre-cli"
FEATURE_0_10 = "spirv-builder-0_10"
BUILDER_0_10_DATE = date(2024, 4, 24)

_CARGO_TOML = """[package]
name = "spirv-builder-cli"
version = "0.1.0"
edition = "2021"
publish = false

[features]
default = ["spirv-builder-0_10"]
spirv-builder-pre-cli = []
spirv-builder-0_10 = []

[dependencies]
spirv-builder = {{ default-features = false, features = ["use-compiled-tools"], {source} }}
serde = {{ version = "1", features = ["derive"] }}
serde_json = "1"
log = "0.4"
env_logger = "0.10"

[profile.release.build-override]
opt-level = 3
codegen-units = 16

[workspace]
"""

_RUST_TOOLCHAIN_TOML = """[toolchain]
channel = "{channel}"
components = [{components}]
"""

_MAIN_RS = r"""//! Builds one rust-gpu shader crate and records which entry point landed in which file.
use spirv_builder::{CompileResult, MetadataPrintout, ModuleResult, SpirvBuilder, SpirvMetadata};

#[derive(serde::Deserialize, Debug)]
struct Args {
    dylib_path: std::path::PathBuf,
    shader_crate: std::path::PathBuf,
    shader_target: String,
    no_default_features: bool,
    features: Vec<String>,
    capabilities: Vec<String>,
    extensions: Vec<String>,
    spirv_metadata: String,
    multimodule: bool,
    relax_struct_store: bool,
    relax_logical_pointer: bool,
    relax_block_layout: bool,
    uniform_buffer_standard_layout: bool,
    scalar_block_layout: bool,
    skip_block_layout: bool,
    preserve_bindings: bool,
    debug: bool,
    deny_warnings: bool,
    sidecar_path: std::path::PathBuf,
}

#[derive(serde::Serialize)]
struct ShaderModule {
    entry: String,
    // null when the compiler produced no module for the entry point
    path: Option<std::path::PathBuf>,
}

fn dylib_path_envvar() -> &'static str {
    if cfg!(windows) {
        "PATH"
    } else if cfg!(target_os = "macos") {
        "DYLD_FALLBACK_LIBRARY_PATH"
    } else {
        "LD_LIBRARY_PATH"
    }
}

fn main() {
    env_logger::builder().init();
    let raw = std::env::args().nth(1).expect("expected one JSON argument");
    let args: Args = serde_json::from_str(&raw).expect("invalid JSON argument");
    log::debug!("compiling with args: {args:#?}");

    let metadata = match args.spirv_metadata.as_str() {
        "full" => SpirvMetadata::Full,
        "name-variables" => SpirvMetadata::NameVariables,
        _ => SpirvMetadata::None,
    };

    let mut builder = SpirvBuilder::new(&args.shader_crate, &args.shader_target)
        .print_metadata(MetadataPrintout::None)
        .multimodule(args.multimodule)
        .spirv_metadata(metadata)
        .relax_struct_store(args.relax_struct_store)
        .relax_logical_pointer(args.relax_logical_pointer)
        .relax_block_layout(args.relax_block_layout)
        .uniform_buffer_standard_layout(args.uniform_buffer_standard_layout)
        .scalar_block_layout(args.scalar_block_layout)
        .skip_block_layout(args.skip_block_layout)
        .preserve_bindings(args.preserve_bindings)
        .release(!args.debug)
        .deny_warnings(args.deny_warnings);

    for capability in &args.capabilities {
        let parsed = capability
            .parse::<spirv_builder::Capability>()
            .unwrap_or_else(|_| panic!("unknown SPIR-V capability: {capability}"));
        builder = builder.capability(parsed);
    }
    for extension in &args.extensions {
        builder = builder.extension(extension.clone());
    }

    #[cfg(feature = "spirv-builder-pre-cli")]
    {
        let dir = args.dylib_path.parent().unwrap().display().to_string();
        std::env::set_var(dylib_path_envvar(), dir);
    }
    #[cfg(feature = "spirv-builder-0_10")]
    {
        builder = builder.rustc_codegen_spirv_location(&args.dylib_path);
        if args.no_default_features {
            builder = builder.shader_crate_default_features(false);
        }
        if !args.features.is_empty() {
            builder = builder.shader_crate_features(args.features.clone());
        }
    }

    let CompileResult { entry_points, module } = match builder.build() {
        Ok(result) => result,
        Err(error) => {
            eprintln!("{error}");
            std::process::exit(1);
        }
    };

    // Entry points are listed in declaration order; modules are keyed by name.
    let shaders: Vec<ShaderModule> = match module {
        ModuleResult::MultiModule(modules) => entry_points
            .iter()
            .map(|entry| {
                let path = modules.get(entry).cloned();
                if path.is_none() {
                    eprintln!("no SPIR-V module was produced for entry point {entry}");
                }
                ShaderModule { entry: entry.clone(), path }
            })
            .collect(),
        ModuleResult::SingleModule(path) => entry_points
            .into_iter()
            .map(|entry| ShaderModule { entry, path: Some(path.clone()) })
            .collect(),
    };

    let file = std::fs::File::create(&args.sidecar_path).expect("could not create sidecar manifest");
    serde_json::to_writer(file, &shaders).expect("could not write sidecar manifest");
}
"""


def select_builder_feature(channel: str) -> str:
    """Choose the driver feature matching the builder interface of the channel's era.

    Examples:
        nightly-2023-09-30 -> spirv-builder-pre-cli
        nightly-2024-04-24 -> spirv-builder-0_10
    """
    channel_day = channel_date(channel)
    if channel_day is not None and channel_day < BUILDER_0_10_DATE:
        return FEATURE_PRE_CLI
    return FEATURE_0_10


def _toml_string(value: str) -> str:
    # JSON string escapes are valid TOML basic-string escapes
    return json.dumps(value)


def _builder_crate_path(spirv_std_path: Path) -> Path:
    """Locate spirv-builder next to the spirv-std crate of a local checkout."""
    candidates = [
        spirv_std_path.parent / "spirv-builder",
        spirv_std_path / "crates" / "spirv-builder",
    ]
    for candidate in candidates:
        if (candidate / "Cargo.toml").is_file():
            return candidate
    return candidates[0]


def dependency_source(resolved: ResolvedSource) -> str:
    """Render the Cargo dependency keys pinning spirv-builder to the resolved source."""
    if resolved.kind == SourceKind.REGISTRY:
        return f"version = {_toml_string('=' + resolved.revision)}"
    if resolved.kind == SourceKind.GIT:
        return f"git = {_toml_string(resolved.locator.location)}, rev = {_toml_string(resolved.revision)}"
    builder_path = _builder_crate_path(Path(resolved.locator.location))
    return f"path = {_toml_string(builder_path.as_posix())}"


def materialize(crate_dir: Path, resolved: ResolvedSource, channel: str) -> Path:
    """Write the driver crate sources.

    Args:
        crate_dir: Directory to write into (created if missing)
        resolved: Pinned backend source
        channel: Toolchain channel the crate builds with

    Returns:
        crate_dir
    """
    crate_dir = Path(crate_dir)
    (crate_dir / "src").mkdir(parents=True, exist_ok=True)

    components = ", ".join(_toml_string(c) for c in REQUIRED_COMPONENTS)
    files = {
        "Cargo.toml": _CARGO_TOML.format(source=dependency_source(resolved)),
        "rust-toolchain.toml": _RUST_TOOLCHAIN_TOML.format(channel=channel, components=components),
        "src/main.rs": _MAIN_RS,
    }
    for filename, content in files.items():
        logging.debug(f"Writing {crate_dir / filename}")
        (crate_dir / filename).write_text(content, encoding="utf-8")

    return crate_dir
