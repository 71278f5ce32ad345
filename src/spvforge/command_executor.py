"""Command Executor.

This module runs external tools (cargo, rustup, git and the backend driver)
via subprocess.

Design:
    - Captures stdout/stderr so diagnostics can be attached to errors verbatim
    - Optionally echoes output live while capturing it (verbose builds)
    - On interrupt, kills the whole child process tree before re-raising, so
      no compiler keeps running after its owning invocation is gone
"""

import logging
import os
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import psutil

from .interrupt_utils import handle_keyboard_interrupt_properly


@dataclass
class CommandResult:
    """Result of one external command."""

    args: List[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """Combined stdout and stderr, as the user would have seen them."""
        parts = [part for part in (self.stdout, self.stderr) if part]
        return "\n".join(parts)


def kill_process_tree(pid: int, timeout: float = 3) -> int:
    """Terminate a process and all of its children.

    Children are terminated first, then stragglers are force killed.

    Args:
        pid: Root process ID
        timeout: Seconds to wait for graceful termination

    Returns:
        Number of processes signalled
    """
    try:
        root = psutil.Process(pid)
        processes = root.children(recursive=True) + [root]
    except psutil.NoSuchProcess:
        return 0

    killed = 0
    for proc in processes:
        try:
            proc.terminate()
            killed += 1
        except psutil.NoSuchProcess:
            pass

    _gone, alive = psutil.wait_procs(processes, timeout=timeout)
    for proc in alive:
        try:
            proc.kill()
            logging.warning(f"Force killed stubborn process {proc.pid}")
        except psutil.NoSuchProcess:
            pass

    return killed


class CommandExecutor:
    """Runs external commands, capturing their output."""

    def __init__(self, verbose: bool = False):
        """Initialize command executor.

        Args:
            verbose: Echo command output live while capturing it
        """
        self.verbose = verbose

    def run(
        self,
        cmd: Sequence[str],
        cwd: Optional[Path] = None,
        env: Optional[Dict[str, str]] = None,
        stream: bool = False,
    ) -> CommandResult:
        """Run a command to completion.

        Args:
            cmd: Command and arguments
            cwd: Working directory
            env: Extra environment variables, merged over os.environ
            stream: Echo output live (when verbose); stderr is merged into stdout

        Returns:
            CommandResult with captured output

        Raises:
            FileNotFoundError: If the executable does not exist
            KeyboardInterrupt: If interrupted; the process tree is killed first
        """
        args = [str(arg) for arg in cmd]
        full_env = dict(os.environ)
        if env:
            full_env.update(env)

        logging.debug(f"Running: {' '.join(args)} (cwd={cwd})")

        echo = stream and self.verbose
        process = subprocess.Popen(
            args,
            cwd=str(cwd) if cwd else None,
            env=full_env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT if echo else subprocess.PIPE,
            stdin=subprocess.DEVNULL,
            text=True,
            encoding="utf-8",
            errors="replace",
        )

        try:
            if echo:
                lines = []
                assert process.stdout is not None
                for line in process.stdout:
                    sys.stdout.write(line)
                    lines.append(line)
                process.wait()
                stdout, stderr = "".join(lines), ""
            else:
                stdout, stderr = process.communicate()
        except KeyboardInterrupt as ke:
            logging.warning(f"Interrupted, killing process tree of {args[0]} (pid {process.pid})")
            kill_process_tree(process.pid)
            process.wait()
            handle_keyboard_interrupt_properly(ke)
            raise  # Never reached, but satisfies type checker

        result = CommandResult(
            args=args,
            returncode=process.returncode,
            stdout=stdout or "",
            stderr=stderr or "",
        )
        logging.debug(f"{args[0]} exited with {result.returncode}")
        return result
