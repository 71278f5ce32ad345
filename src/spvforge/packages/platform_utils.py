"""Platform Detection Utilities.

This module provides utilities for detecting the host platform, which is part
of the backend cache key and decides the native file names of the backend
artifacts.

Supported Platforms:
    - Windows: windows-x86_64, windows-aarch64
    - Linux: linux-x86_64, linux-aarch64, linux-armv7l, linux-i686
    - macOS: macos-x86_64, macos-aarch64
"""

import platform
from typing import Tuple

from ..errors import PlatformError


class PlatformDetector:
    """Detects the current platform and architecture."""

    @staticmethod
    def detect_platform() -> Tuple[str, str]:
        """Detect the host operating system and architecture.

        Returns:
            Tuple of (system, architecture)
            System: 'windows', 'linux', or 'macos'
            Architecture: 'x86_64', 'i686', 'aarch64', 'armv7l'

        Raises:
            PlatformError: If platform is not supported
        """
        system = platform.system().lower()
        machine = platform.machine().lower()

        if system == "windows":
            plat = "windows"
        elif system == "linux":
            plat = "linux"
        elif system == "darwin":
            plat = "macos"
        else:
            raise PlatformError(f"Unsupported platform: {system}")

        if machine in ("x86_64", "amd64"):
            arch = "x86_64"
        elif machine in ("i386", "i686"):
            arch = "i686"
        elif machine in ("aarch64", "arm64"):
            arch = "aarch64"
        elif machine.startswith("arm"):
            arch = "armv7l"
        else:
            raise PlatformError(f"Unsupported architecture: {machine}")

        return plat, arch

    @staticmethod
    def host_platform_id() -> str:
        """Platform identifier used in the cache layout, e.g. 'linux-x86_64'."""
        plat, arch = PlatformDetector.detect_platform()
        return f"{plat}-{arch}"

    @staticmethod
    def dylib_filename(stem: str) -> str:
        """Native shared library name for the host, e.g. 'librustc_codegen_spirv.so'."""
        plat, _ = PlatformDetector.detect_platform()
        if plat == "windows":
            return f"{stem}.dll"
        if plat == "macos":
            return f"lib{stem}.dylib"
        return f"lib{stem}.so"

    @staticmethod
    def executable_filename(stem: str) -> str:
        """Native executable name for the host."""
        plat, _ = PlatformDetector.detect_platform()
        return f"{stem}.exe" if plat == "windows" else stem
