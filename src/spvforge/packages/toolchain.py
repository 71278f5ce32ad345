"""Rust toolchain provisioning.

The backend is a rustc codegen plugin, so it has to be built and run with the
exact nightly it was written against, together with the components needed to
link against rustc itself:

    rustup toolchain install nightly-2024-04-24
    rustup component add --toolchain nightly-2024-04-24 rust-src rustc-dev llvm-tools

Installing a toolchain is a large download, so it asks for confirmation unless
auto-install is enabled.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Callable, List, Optional

from ..command_executor import CommandExecutor, CommandResult
from ..errors import InstallDeclined, InstallFailed, ToolchainUnavailable
from .downloader import RetryableError, retry_with_backoff

REQUIRED_COMPONENTS = ("rust-src", "rustc-dev", "llvm-tools")

_TRIPLE = r"(-[a-z0-9_]+-[a-z0-9_]+-[a-z0-9_]+(-[a-z0-9_]+)?)?"
_CHANNEL_PATTERN = re.compile(
    r"((stable|beta|nightly)(-\d{4}-\d{2}-\d{2})?|\d+\.\d+(\.\d+)?)" + _TRIPLE
)
_DATE_PATTERN = re.compile(r"^nightly-(\d{4})-(\d{2})-(\d{2})")
# Host triples start with an architecture name, never with a date
_HOST_TRIPLE = re.compile(r"[a-z][a-z0-9_]*(-[a-z0-9_]+){2,3}")

# rustup messages meaning the channel will never install, so retrying is pointless
_UNAVAILABLE_MARKERS = ("no release found", "invalid toolchain name", "not a valid toolchain")


def channel_date(channel: str) -> Optional[date]:
    """Get the date of a dated nightly channel, or None for other channels."""
    match = _DATE_PATTERN.match(channel)
    if not match:
        return None
    try:
        return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        return None


def is_valid_channel(channel: str) -> bool:
    return bool(_CHANNEL_PATTERN.fullmatch(channel))


@dataclass(frozen=True)
class ToolchainHandle:
    """An installed toolchain with its required components."""

    channel: str
    rustc_version: str

    @property
    def date(self) -> Optional[date]:
        return channel_date(self.channel)


class ToolchainProvisioner:
    """Ensures a Rust toolchain channel and its components are installed."""

    def __init__(
        self,
        executor: Optional[CommandExecutor] = None,
        confirm: Optional[Callable[[str], bool]] = None,
        auto_install: bool = False,
        attempts: int = 3,
        verbose: bool = False,
    ):
        """Initialize toolchain provisioner.

        Args:
            executor: Command executor for rustup and rustc
            confirm: Callback asking the user to approve an install; None declines
            auto_install: Install without asking
            attempts: Maximum attempts for rustup installs
            verbose: Print progress
        """
        self.executor = executor or CommandExecutor(verbose=verbose)
        self.confirm = confirm
        self.auto_install = auto_install
        self.attempts = attempts
        self.verbose = verbose

    def ensure(self, channel: str) -> ToolchainHandle:
        """Ensure the channel and REQUIRED_COMPONENTS are installed.

        Args:
            channel: Toolchain channel, e.g. 'nightly-2024-04-24'

        Returns:
            ToolchainHandle for the channel

        Raises:
            ToolchainUnavailable: Invalid channel, missing rustup, or unknown release
            InstallDeclined: The user refused an install
            InstallFailed: rustup failed to install after all retries
        """
        if not is_valid_channel(channel):
            raise ToolchainUnavailable(f"Invalid toolchain channel: '{channel}'")

        if self.is_installed(channel):
            logging.debug(f"Toolchain {channel} is already installed")
        else:
            self._require_consent(f"Install Rust {channel} with `rustup`")
            if self.verbose:
                print(f"Installing toolchain {channel}...")
            self._rustup_with_retry(
                ["rustup", "toolchain", "install", channel, "--profile", "minimal"],
                f"Install toolchain {channel}",
            )

        missing = self.missing_components(channel)
        if missing:
            self._require_consent(
                f"Install toolchain components ({', '.join(missing)}) with `rustup`"
            )
            if self.verbose:
                print(f"Installing components for {channel}: {', '.join(missing)}")
            self._rustup_with_retry(
                ["rustup", "component", "add", "--toolchain", channel, *missing],
                f"Install components for {channel}",
            )
        else:
            logging.debug(f"All required components are installed for {channel}")

        result = self._run(["rustc", f"+{channel}", "--version"])
        if not result.success:
            raise ToolchainUnavailable(
                f"Toolchain {channel} is installed but rustc does not run:\n{result.output}"
            )

        handle = ToolchainHandle(channel=channel, rustc_version=result.stdout.strip())
        logging.info(f"Using toolchain {channel} ({handle.rustc_version})")
        return handle

    def is_installed(self, channel: str) -> bool:
        """Check `rustup toolchain list` for the channel."""
        result = self._run(["rustup", "toolchain", "list"])
        if not result.success:
            raise ToolchainUnavailable(f"Could not list installed toolchains:\n{result.output}")
        for line in result.stdout.splitlines():
            # "nightly-2024-04-24-x86_64-unknown-linux-gnu (default)"
            fields = line.split()
            if not fields:
                continue
            name = fields[0]
            if name == channel:
                return True
            if name.startswith(channel + "-") and _HOST_TRIPLE.fullmatch(name[len(channel) + 1:]):
                return True
        return False

    def missing_components(self, channel: str) -> List[str]:
        """Get the required components not yet installed for the channel."""
        result = self._run(["rustup", "component", "list", "--toolchain", channel])
        if not result.success:
            raise ToolchainUnavailable(
                f"Could not list components of {channel}:\n{result.output}"
            )
        installed = [
            line.strip()
            for line in result.stdout.splitlines()
            if line.strip().endswith("(installed)")
        ]
        return [
            component
            for component in REQUIRED_COMPONENTS
            if not any(line.startswith(component) for line in installed)
        ]

    def _require_consent(self, prompt: str) -> None:
        if self.auto_install:
            return
        if self.confirm is None or not self.confirm(prompt):
            raise InstallDeclined(
                f"{prompt}: declined (pass --auto-install-rust-toolchain to install without asking)"
            )

    def _rustup_with_retry(self, cmd: List[str], description: str) -> None:
        def attempt() -> None:
            result = self._run(cmd)
            if result.success:
                return
            output = result.output
            if any(marker in output.lower() for marker in _UNAVAILABLE_MARKERS):
                raise ToolchainUnavailable(f"{description} failed:\n{output}")
            raise RetryableError(output.strip() or f"rustup exited with {result.returncode}")

        try:
            retry_with_backoff(attempt, description, attempts=self.attempts)
        except RetryableError as e:
            raise InstallFailed(f"{description} failed:\n{e}") from e

    def _run(self, cmd: List[str]) -> CommandResult:
        try:
            return self.executor.run(cmd)
        except FileNotFoundError:
            raise ToolchainUnavailable(f"{cmd[0]} not found on PATH")
