"""CLI utility functions for spvforge.

This module provides common utilities used across CLI commands including:
- Error handling and formatting
- Path validation
- Cargo.toml lookup for the `toml` command
- Interactive confirmation for toolchain installs
"""

import sys
from pathlib import Path

from spvforge.errors import CompileError, ConfigurationError, SpvforgeError


class ErrorFormatter:
    """Formats and displays error messages with ANSI color codes."""

    # ANSI color codes
    RED = "\033[1;31m"
    GREEN = "\033[1;32m"
    YELLOW = "\033[1;33m"
    RESET = "\033[0m"

    @staticmethod
    def print_error(title: str, message: str) -> None:
        """Print formatted error message.

        Args:
            title: Error title (e.g., "Configuration error", "Build failed")
            message: Error message details
        """
        print()
        print(f"{ErrorFormatter.RED}✗ {title}{ErrorFormatter.RESET}")
        print()
        print(message)
        print()

    @staticmethod
    def print_success(message: str) -> None:
        """Print formatted success message.

        Args:
            message: Success message
        """
        print()
        print(f"{ErrorFormatter.GREEN}✓ {message}{ErrorFormatter.RESET}")

    @staticmethod
    def print_warning(message: str) -> None:
        """Print formatted warning message.

        Args:
            message: Warning message
        """
        print()
        print(f"{ErrorFormatter.YELLOW}✗ {message}{ErrorFormatter.RESET}")

    @staticmethod
    def handle_spvforge_error(error: SpvforgeError) -> None:
        """Print a pipeline error, with compiler output verbatim, and exit 1.

        Args:
            error: The error that ended the pipeline
        """
        title = f"{type(error).__name__}"
        ErrorFormatter.print_error(title, str(error))
        if isinstance(error, CompileError) and error.diagnostics:
            print(error.diagnostics)
        sys.exit(1)

    @staticmethod
    def handle_keyboard_interrupt() -> None:
        """Handle KeyboardInterrupt with standard formatting."""
        ErrorFormatter.print_warning("Build interrupted")
        sys.exit(130)  # Standard exit code for SIGINT

    @staticmethod
    def handle_unexpected_error(error: Exception, verbose: bool = False) -> None:
        """Handle unexpected errors with standard formatting.

        Args:
            error: The exception to handle
            verbose: Whether to print traceback
        """
        message = f"{type(error).__name__}: {error}"
        ErrorFormatter.print_error("Unexpected error", message)

        if verbose:
            import traceback

            print("Traceback:")
            print(traceback.format_exc())

        sys.exit(1)


class PathValidator:
    """Validates shader crate paths and directories."""

    @staticmethod
    def validate_project_dir(project_dir: Path) -> None:
        """Validate that project directory exists and is a directory.

        Args:
            project_dir: Path to validate

        Raises:
            SystemExit: If path doesn't exist or isn't a directory
        """
        if not project_dir.exists():
            print(f"{ErrorFormatter.RED}✗ Error: Path does not exist: {project_dir}{ErrorFormatter.RESET}")
            sys.exit(2)
        if not project_dir.is_dir():
            print(f"{ErrorFormatter.RED}✗ Error: Path is not a directory: {project_dir}{ErrorFormatter.RESET}")
            sys.exit(2)


class CargoTomlLocator:
    """Finds the Cargo.toml named on the command line."""

    @staticmethod
    def locate(path: Path) -> Path:
        """Accept either a Cargo.toml file or a directory containing one.

        Raises:
            ConfigurationError: If no Cargo.toml is found
        """
        path = Path(path)
        if path.is_file() and path.suffix == ".toml":
            return path.resolve()
        candidate = path / "Cargo.toml"
        if candidate.is_file():
            return candidate.resolve()
        raise ConfigurationError(f"toml file '{candidate}' is not a file")


def confirm_prompt(prompt: str) -> bool:
    """Ask a yes/no question on the terminal.

    Returns False when stdin is closed or not interactive.
    """
    if not sys.stdin or not sys.stdin.isatty():
        return False
    try:
        answer = input(f"{prompt} [y/n]: ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")
