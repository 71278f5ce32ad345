"""Unit tests for Rust toolchain provisioning."""

from datetime import date
from unittest.mock import Mock

import pytest

from spvforge.errors import InstallDeclined, InstallFailed, ToolchainUnavailable
from spvforge.packages.toolchain import (
    REQUIRED_COMPONENTS,
    ToolchainProvisioner,
    channel_date,
    is_valid_channel,
)

CHANNEL = "nightly-2024-04-24"
HOST = "x86_64-unknown-linux-gnu"

INSTALLED_LIST = f"stable-{HOST} (default)\n{CHANNEL}-{HOST}\n"
ALL_COMPONENTS = (
    f"cargo-{HOST} (installed)\n"
    f"llvm-tools-{HOST} (installed)\n"
    "rust-src (installed)\n"
    f"rustc-dev-{HOST} (installed)\n"
    f"rust-std-{HOST} (installed)\n"
)
MISSING_COMPONENTS = (
    f"cargo-{HOST} (installed)\n"
    f"llvm-tools-{HOST}\n"
    "rust-src (installed)\n"
    f"rustc-dev-{HOST}\n"
)


def installed_executor(fake_executor, components=ALL_COMPONENTS):
    fake_executor.on("rustup", "toolchain", "list", stdout=INSTALLED_LIST)
    fake_executor.on("rustup", "component", "list", stdout=components)
    fake_executor.on("rustc", stdout="rustc 1.79.0-nightly (7f2fc33da 2024-04-22)\n")
    return fake_executor


class TestChannelHelpers:
    """Test cases for channel parsing helpers."""

    @pytest.mark.parametrize(
        "channel",
        ["stable", "beta", "nightly", CHANNEL, "1.79.0", "1.79", f"{CHANNEL}-{HOST}", f"stable-{HOST}"],
    )
    def test_valid_channels(self, channel):
        assert is_valid_channel(channel)

    @pytest.mark.parametrize("channel", ["", "night", "nightly-2024-04", "latest", "nightly 2024"])
    def test_invalid_channels(self, channel):
        assert not is_valid_channel(channel)

    def test_channel_date(self):
        assert channel_date(CHANNEL) == date(2024, 4, 24)
        assert channel_date(f"{CHANNEL}-{HOST}") == date(2024, 4, 24)
        assert channel_date("stable") is None
        assert channel_date("nightly-2024-13-40") is None


class TestToolchainProvisioner:
    """Test cases for ToolchainProvisioner.ensure()."""

    def test_already_installed(self, fake_executor):
        provisioner = ToolchainProvisioner(executor=installed_executor(fake_executor))
        handle = provisioner.ensure(CHANNEL)

        assert handle.channel == CHANNEL
        assert handle.rustc_version.startswith("rustc 1.79.0-nightly")
        assert handle.date == date(2024, 4, 24)
        assert fake_executor.count("rustup", "toolchain", "install") == 0
        assert fake_executor.count("rustup", "component", "add") == 0
        assert fake_executor.calls[-1].args == ["rustc", f"+{CHANNEL}", "--version"]

    def test_invalid_channel(self, fake_executor):
        with pytest.raises(ToolchainUnavailable, match="Invalid toolchain channel"):
            ToolchainProvisioner(executor=fake_executor).ensure("latest")
        assert fake_executor.calls == []

    def test_install_with_auto_install(self, fake_executor):
        installed_executor(fake_executor)
        fake_executor.on("rustup", "toolchain", "list", stdout=f"stable-{HOST} (default)\n")
        fake_executor.on("rustup", "toolchain", "install")
        confirm = Mock()

        ToolchainProvisioner(executor=fake_executor, confirm=confirm, auto_install=True).ensure(CHANNEL)

        assert fake_executor.count("rustup", "toolchain", "install", CHANNEL) == 1
        confirm.assert_not_called()

    def test_floating_nightly_installed_beside_dated_nightly(self, fake_executor):
        installed_executor(fake_executor)
        fake_executor.on(
            "rustup", "toolchain", "list", stdout=f"stable-{HOST} (default)\n{CHANNEL}-{HOST}\n"
        )
        fake_executor.on("rustup", "toolchain", "install")

        ToolchainProvisioner(executor=fake_executor, auto_install=True).ensure("nightly")

        assert fake_executor.count("rustup", "toolchain", "install", "nightly") == 1

    @pytest.mark.parametrize(
        "listing,channel,expected",
        [
            (f"{CHANNEL}-{HOST}\n", "nightly", False),
            (f"1.75.0-{HOST}\n", "1.7", False),
            (f"1.75.0-{HOST}\n", "1.75", False),
            (f"nightly-{HOST} (default)\n", "nightly", True),
            (f"{CHANNEL}-{HOST} (override)\n", CHANNEL, True),
            ("stable-aarch64-apple-darwin (default)\n", "stable", True),
            (f"{CHANNEL}-{HOST}\n", f"{CHANNEL}-{HOST}", True),
            ("no installed toolchains\n", "nightly", False),
        ],
    )
    def test_is_installed_matches_whole_name(self, fake_executor, listing, channel, expected):
        fake_executor.on("rustup", "toolchain", "list", stdout=listing)
        assert ToolchainProvisioner(executor=fake_executor).is_installed(channel) is expected

    def test_install_confirmed(self, fake_executor):
        installed_executor(fake_executor)
        fake_executor.on("rustup", "toolchain", "list", stdout="")
        fake_executor.on("rustup", "toolchain", "install")
        confirm = Mock(return_value=True)

        ToolchainProvisioner(executor=fake_executor, confirm=confirm).ensure(CHANNEL)

        confirm.assert_called_once()
        assert CHANNEL in confirm.call_args[0][0]

    def test_install_declined(self, fake_executor):
        installed_executor(fake_executor)
        fake_executor.on("rustup", "toolchain", "list", stdout="")
        confirm = Mock(return_value=False)

        with pytest.raises(InstallDeclined):
            ToolchainProvisioner(executor=fake_executor, confirm=confirm).ensure(CHANNEL)
        assert fake_executor.count("rustup", "toolchain", "install") == 0

    def test_no_confirm_callback_declines(self, fake_executor):
        installed_executor(fake_executor)
        fake_executor.on("rustup", "toolchain", "list", stdout="")
        with pytest.raises(InstallDeclined, match="--auto-install-rust-toolchain"):
            ToolchainProvisioner(executor=fake_executor).ensure(CHANNEL)

    def test_missing_components_installed(self, fake_executor):
        installed_executor(fake_executor, components=MISSING_COMPONENTS)
        fake_executor.on("rustup", "component", "add")

        ToolchainProvisioner(executor=fake_executor, auto_install=True).ensure(CHANNEL)

        add_call = [c for c in fake_executor.calls if c.args[:3] == ["rustup", "component", "add"]][0]
        assert add_call.args == ["rustup", "component", "add", "--toolchain", CHANNEL, "rustc-dev", "llvm-tools"]

    def test_missing_components(self, fake_executor):
        installed_executor(fake_executor, components=MISSING_COMPONENTS)
        provisioner = ToolchainProvisioner(executor=fake_executor)
        assert provisioner.missing_components(CHANNEL) == ["rustc-dev", "llvm-tools"]

    def test_all_required_components_recognized(self, fake_executor):
        installed_executor(fake_executor)
        assert ToolchainProvisioner(executor=fake_executor).missing_components(CHANNEL) == []
        assert set(REQUIRED_COMPONENTS) == {"rust-src", "rustc-dev", "llvm-tools"}

    def test_unknown_release(self, fake_executor):
        installed_executor(fake_executor)
        fake_executor.on("rustup", "toolchain", "list", stdout="")
        fake_executor.on(
            "rustup",
            "toolchain",
            "install",
            returncode=1,
            stderr="error: no release found for 'nightly-2099-01-01'",
        )
        with pytest.raises(ToolchainUnavailable, match="no release found"):
            ToolchainProvisioner(executor=fake_executor, auto_install=True).ensure("nightly-2099-01-01")
        assert fake_executor.count("rustup", "toolchain", "install") == 1

    def test_network_failure_retried(self, fake_executor):
        installed_executor(fake_executor)
        fake_executor.on("rustup", "toolchain", "list", stdout="")
        fake_executor.on(
            "rustup", "toolchain", "install", returncode=1, stderr="error: could not download file"
        )
        with pytest.raises(InstallFailed, match="could not download"):
            ToolchainProvisioner(executor=fake_executor, auto_install=True).ensure(CHANNEL)
        assert fake_executor.count("rustup", "toolchain", "install") == 3

    def test_network_failure_recovers(self, fake_executor):
        installed_executor(fake_executor)
        fake_executor.on("rustup", "toolchain", "list", stdout="")
        fake_executor.on_sequence(
            "rustup",
            "toolchain",
            "install",
            results=[(1, "", "error: connection reset"), (0, "", "")],
        )
        handle = ToolchainProvisioner(executor=fake_executor, auto_install=True).ensure(CHANNEL)
        assert handle.channel == CHANNEL
        assert fake_executor.count("rustup", "toolchain", "install") == 2

    def test_rustup_missing(self):
        executor = Mock()
        executor.run.side_effect = FileNotFoundError("rustup")
        with pytest.raises(ToolchainUnavailable, match="rustup not found"):
            ToolchainProvisioner(executor=executor).ensure(CHANNEL)

    def test_rustc_does_not_run(self, fake_executor):
        installed_executor(fake_executor)
        fake_executor.on("rustc", returncode=1, stderr="error: toolchain is not installed")
        with pytest.raises(ToolchainUnavailable, match="rustc does not run"):
            ToolchainProvisioner(executor=fake_executor).ensure(CHANNEL)
