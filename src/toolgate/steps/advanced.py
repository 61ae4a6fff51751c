"""
Step 5: Advanced Integration.

An interactive shell combining everything: streamed thoughts and answers, built-in tools plus
the custom ``calculate`` tool, approval prompts, a spinner and colored output.
"""

import logging
import os
import threading
from typing import Callable

from toolgate.agent.turn_loop import (
    MaxRoundsExceededError,
    TurnCancelledError,
)
from toolgate.chat.backends import (
    BackendError,
    load_backend,
)
from toolgate.client.console import (
    StreamPrinter,
    get_user_message,
)
from toolgate.common import (
    AnsiColors,
    Spinner,
    colored_print,
)
from toolgate.core.schema import ResponseFragment
from toolgate.steps import build_turn_loop

logger = logging.getLogger(__name__)

TOOLS = ("list_directory", "read_file", "write_file", "calculate")

HELP_TEXT = """\
Available commands:
  help     - Show this help message
  exit     - Exit the program
  clear    - Clear the screen

Available tools:
  📁 list_directory - List files
  📄 read_file      - Read file contents
  💾 write_file     - Create/write files (requires approval)
  🧮 calculate      - Perform calculations

Example prompts:
  "List the files in this directory"
  "Calculate the area of a circle with radius 5"
  "Create a TODO.md file with my tasks"
"""


def run(
    backend: str | None = None, model: str | None = None, ask: Callable[[str], str] = input
) -> None:
    """Read prompts until ``exit`` or end of input."""
    colored_print("🚀 toolgate - Advanced Integration", AnsiColors.BLUE)
    colored_print("Type 'help' for commands, 'exit' to quit\n", AnsiColors.DIM)

    chat = load_backend(backend, model)
    spinner = Spinner("Thinking...")
    printer = StreamPrinter()

    def on_fragment(fragment: ResponseFragment) -> None:
        spinner.stop()
        printer(fragment)

    loop = build_turn_loop(chat, TOOLS, ask=ask, on_fragment=on_fragment)
    loop.on_reasoning = lambda _text: printer.reset_section()

    while True:
        colored_print("> ", AnsiColors.BRIGHT, end="")
        user_msg, ok = get_user_message()
        if not ok:
            break
        command = user_msg.lower()
        if not user_msg:
            continue
        if command in {"exit", "quit"}:
            break
        if command == "help":
            print(HELP_TEXT)
            continue
        if command == "clear":
            os.system("cls" if os.name == "nt" else "clear")  # nosec B605
            continue

        signal = threading.Event()
        spinner.start()
        try:
            loop.run_turn(user_msg, signal)
            print("\n")
        except KeyboardInterrupt:
            signal.set()
            colored_print("\n⏹️  Interrupted", AnsiColors.YELLOW)
        except (BackendError, MaxRoundsExceededError, TurnCancelledError) as exc:
            logger.debug("Turn failed", exc_info=True)
            colored_print(f"\n❌ Error: {exc}\n", AnsiColors.RED)
        finally:
            spinner.stop()
            printer.reset_section()

    colored_print("\n👋 Goodbye!", AnsiColors.BRIGHT)
