"""
Shared fixtures for the spvforge test suite.

External tools (cargo, rustup, git, the backend driver) are replaced by a fake
CommandExecutor that answers registered command prefixes, records every call,
and can create the files the real tool would have produced.
"""

import json
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from unittest.mock import patch

import pytest

from spvforge.command_executor import CommandResult
from spvforge.packages.cache import Cache
from spvforge.packages.platform_utils import PlatformDetector


@dataclass
class FakeCall:
    args: List[str]
    cwd: Optional[Path]
    env: Dict[str, str]


class FakeExecutor:
    """Stands in for CommandExecutor."""

    def __init__(self):
        self.calls: List[FakeCall] = []
        self._handlers: List[Tuple[Tuple[str, ...], Callable]] = []
        self._lock = threading.Lock()

    def on(
        self,
        *prefix: str,
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
        action: Optional[Callable] = None,
    ) -> "FakeExecutor":
        """Answer commands starting with prefix.

        A prefix element matches an argument exactly or by file name, so
        'spirv-builder-cli' matches the absolute driver path. Later
        registrations win. action(args, cwd, env) runs first and may return a
        CommandResult to override the canned one.
        """

        def handler(args, cwd, env):
            if action is not None:
                result = action(args, cwd, env)
                if isinstance(result, CommandResult):
                    return result
            return CommandResult(args=args, returncode=returncode, stdout=stdout, stderr=stderr)

        with self._lock:
            self._handlers.append((prefix, handler))
        return self

    def on_sequence(self, *prefix: str, results: Sequence[Tuple[int, str, str]]) -> "FakeExecutor":
        """Answer successive matching calls with successive (returncode, stdout, stderr)."""
        remaining = list(results)

        def action(args, cwd, env):
            code, out, err = remaining.pop(0) if len(remaining) > 1 else remaining[0]
            return CommandResult(args=args, returncode=code, stdout=out, stderr=err)

        return self.on(*prefix, action=action)

    @staticmethod
    def _matches(prefix: Tuple[str, ...], args: List[str]) -> bool:
        if len(args) < len(prefix):
            return False
        for expected, actual in zip(prefix, args):
            if expected != actual and expected not in (Path(actual).name, Path(actual).stem):
                return False
        return True

    def run(self, cmd, cwd=None, env=None, stream=False) -> CommandResult:
        args = [str(arg) for arg in cmd]
        with self._lock:
            self.calls.append(FakeCall(args=args, cwd=cwd, env=dict(env or {})))
            handlers = list(reversed(self._handlers))
        for prefix, handler in handlers:
            if self._matches(prefix, args):
                return handler(args, cwd, env or {})
        raise AssertionError(f"Unexpected command: {args}")

    def count(self, *prefix: str) -> int:
        """Number of recorded calls starting with prefix."""
        with self._lock:
            return sum(1 for call in self.calls if self._matches(prefix, call.args))


def fake_backend_build(delay: float = 0.0) -> Callable:
    """Action for `cargo +<channel> build` that produces the backend artifacts."""

    def action(args, cwd, env):
        if delay:
            time.sleep(delay)
        release = Path(env["CARGO_TARGET_DIR"]) / "release"
        release.mkdir(parents=True, exist_ok=True)
        (release / PlatformDetector.dylib_filename("rustc_codegen_spirv")).write_bytes(b"\x7fELF backend")
        (release / PlatformDetector.executable_filename("spirv-builder-cli")).write_bytes(b"driver")

    return action


def fake_driver(entries: Sequence[str], multimodule: bool = False, write_files: bool = True) -> Callable:
    """Action for the backend driver: writes .spv files and the sidecar."""

    def action(args, cwd, env):
        options = json.loads(args[1])
        out_dir = Path(env["CARGO_TARGET_DIR"]) / "spirv-unknown-vulkan1.2" / "release" / "deps"
        out_dir.mkdir(parents=True, exist_ok=True)
        records = []
        for entry in entries:
            if multimodule:
                path = out_dir / "shader.spvs" / f"{entry}.spv"
            else:
                path = out_dir / "shader.spv"
            if write_files:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_bytes(b"\x03\x02\x23\x07" + entry.encode())
            records.append({"entry": entry, "path": str(path)})
        Path(options["sidecar_path"]).write_text(json.dumps(records), encoding="utf-8")

    return action


@pytest.fixture(autouse=True)
def no_retry_delay():
    """Make retry backoff instantaneous."""
    with patch("spvforge.packages.downloader.time") as mock_time:
        yield mock_time


@pytest.fixture
def fake_executor():
    """Fake CommandExecutor with no registered commands."""
    return FakeExecutor()


@pytest.fixture
def cache(tmp_path):
    """Cache rooted in a per-test directory."""
    return Cache(tmp_path / "cache", platform_id="linux-x86_64")


@pytest.fixture
def backend_build():
    return fake_backend_build


@pytest.fixture
def driver():
    return fake_driver


@pytest.fixture
def shader_crate(tmp_path):
    """A minimal shader crate directory."""
    crate_dir = tmp_path / "shader-crate"
    (crate_dir / "src").mkdir(parents=True)
    (crate_dir / "Cargo.toml").write_text(
        '[package]\nname = "shader"\nversion = "0.1.0"\n\n'
        + '[dependencies]\nspirv-std = "0.9.0"\n',
        encoding="utf-8",
    )
    (crate_dir / "src" / "lib.rs").write_text("#![no_std]\n", encoding="utf-8")
    return crate_dir
