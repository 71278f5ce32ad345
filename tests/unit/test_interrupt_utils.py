"""Unit tests for interrupt handling."""

import signal
import sys

import pytest

from spvforge.interrupt_utils import (
    TerminatedError,
    handle_keyboard_interrupt_properly,
    install_termination_handler,
)


def test_keyboard_interrupt_is_reraised():
    error = KeyboardInterrupt()
    with pytest.raises(KeyboardInterrupt) as excinfo:
        handle_keyboard_interrupt_properly(error)
    assert excinfo.value is error


def test_terminated_error_is_keyboard_interrupt():
    assert issubclass(TerminatedError, KeyboardInterrupt)


@pytest.mark.skipif(sys.platform == "win32", reason="SIGTERM cannot be delivered to self on Windows")
def test_sigterm_raises_terminated_error():
    previous = signal.getsignal(signal.SIGTERM)
    try:
        install_termination_handler()
        with pytest.raises(TerminatedError):
            signal.raise_signal(signal.SIGTERM)
    finally:
        signal.signal(signal.SIGTERM, previous)
