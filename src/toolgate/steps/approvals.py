"""
Step 4: Tool Approvals.

Runs three prompts through the turn loop.  Read-only tools run straight away; ``write_file`` and
``run_shell_command`` stop in ``awaiting_approval`` until the operator answers ``y`` (proceed
once), ``a`` (always approve this tool) or anything else (cancel).
"""

from typing import (
    Callable,
    Sequence,
    Tuple,
)

from toolgate.chat.backends import load_backend
from toolgate.common import (
    AnsiColors,
    colored_print,
)
from toolgate.steps import (
    build_turn_loop,
    workspace_root,
)

TOOLS = ("read_file", "write_file", "run_shell_command", "search_file_content")
DEMO_FILE = "toolgate_test.md"

DEMOS: Sequence[Tuple[str, str]] = (
    (
        "Demo 1: Safe Operation (No Approval)",
        "Use the search_file_content tool to find all lines mentioning 'def ' in Python files "
        "of the current directory.",
    ),
    (
        "Demo 2: Destructive Operation (Needs Approval)",
        f"Create a file called {DEMO_FILE} with content explaining what a tool-calling "
        "language model is.",
    ),
    (
        "Demo 3: Shell Command (Needs Approval)",
        "Run the ls -la command to show a detailed directory listing.",
    ),
)


def run(
    backend: str | None = None, model: str | None = None, ask: Callable[[str], str] = input
) -> None:
    """Run :data:`DEMOS` in sequence, then remove the file demo 2 may have created."""
    colored_print("🚀 toolgate - Tool Approvals Demo\n", AnsiColors.BLUE)
    chat = load_backend(backend, model)
    loop = build_turn_loop(chat, TOOLS, ask=ask)

    print("🔨 Available Tools:")
    print("- write_file: Create/update files (requires approval)")
    print("- run_shell_command: Execute shell commands (requires approval)")
    print("- read_file: Read file contents (no approval needed)")
    print("- search_file_content: Search patterns (no approval needed)\n")

    for title, prompt in DEMOS:
        colored_print(f"\n📝 {title}", AnsiColors.BRIGHT)
        print(f"👤 User: {prompt}\n")
        result = loop.run_turn(prompt)
        colored_print("\n🤖 Assistant:", AnsiColors.BRIGHT)
        print(result.text)
        print(f"({result.rounds} round(s), {len(result.tool_calls)} tool call(s))")

    print("\n\n🧹 Cleaning up...")
    demo_path = workspace_root() / DEMO_FILE
    if demo_path.exists():
        demo_path.unlink()
        print("✅ Test file deleted")
    else:
        print("ℹ️  No cleanup needed")
