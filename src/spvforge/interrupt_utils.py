"""Utilities for handling interrupts during long-running operations.

KeyboardInterrupt must always reach the top of the pipeline so that scoped
resources (entry locks, temp files) are released. SIGTERM is turned into the
same exception so that both signals take one cleanup path.
"""

import _thread
import signal
import threading
from types import FrameType
from typing import Optional


class TerminatedError(KeyboardInterrupt):
    """Raised in the main thread when the process receives SIGTERM."""

    pass


def handle_keyboard_interrupt_properly(ke: KeyboardInterrupt) -> None:
    """Handle KeyboardInterrupt by propagating it to the main thread.

    Usage:
        try:
            # Some code that might be interrupted
            pass
        except KeyboardInterrupt as ke:
            handle_keyboard_interrupt_properly(ke)

    Args:
        ke: The KeyboardInterrupt exception to handle

    Raises:
        KeyboardInterrupt: Always re-raises the exception after handling
    """
    if threading.current_thread() is not threading.main_thread():
        _thread.interrupt_main()
    raise ke


def _raise_terminated(signum: int, frame: Optional[FrameType]) -> None:
    raise TerminatedError(f"Received signal {signum}")


def install_termination_handler() -> None:
    """Turn SIGTERM into TerminatedError in the main thread."""
    if threading.current_thread() is threading.main_thread():
        signal.signal(signal.SIGTERM, _raise_terminated)
