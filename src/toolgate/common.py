"""Common utility functions for the project."""

import itertools
import sys
import threading
from enum import Enum
from typing import Any


class AnsiColors(str, Enum):
    """
    ANSI color codes for terminal output.
    """

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[33m"
    BLUE = "\033[94m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"
    DIM = "\033[2m"
    BRIGHT = "\033[1m"


ANSI_RESET = "\033[0m"


def colored_print(text: str, color: AnsiColors, *args: Any, **kwargs: Any) -> None:
    """
    Print text in color.

    Args:
        text: The text to print
        color: The color to use (AnsiColors enum)
        args: Additional positional arguments for print
        kwargs: Additional keyword arguments for print
    """
    print(f"{color.value}{text}{ANSI_RESET}", *args, **kwargs)  # ANSI reset at the end


def colored_write(text: str, color: AnsiColors) -> None:
    """Write *text* in color without a trailing newline and flush immediately."""
    sys.stdout.write(f"{color.value}{text}{ANSI_RESET}")
    sys.stdout.flush()


class Spinner:
    """
    Braille spinner drawn on a background thread while waiting for the first fragment.
    """

    FRAMES = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"

    def __init__(self, message: str, interval: float = 0.08):
        self.message = message
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Start drawing frames."""
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._spin, daemon=True)
        self._thread.start()

    def stop(self, final_message: str | None = None) -> None:
        """Stop drawing, erase the spinner line and optionally print *final_message*."""
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join()
        self._thread = None
        sys.stdout.write("\r" + " " * (len(self.message) + 4) + "\r")
        sys.stdout.flush()
        if final_message:
            print(final_message)

    def _spin(self) -> None:
        for frame in itertools.cycle(self.FRAMES):
            if self._stop.is_set():
                break
            sys.stdout.write(f"\r{AnsiColors.CYAN.value}{frame} {self.message}{ANSI_RESET}")
            sys.stdout.flush()
            self._stop.wait(self.interval)
