"""Console front end: approval prompts, streamed output and tool status lines."""

from __future__ import annotations

import json
import logging
from typing import (
    Callable,
    List,
    Sequence,
    Tuple,
)

from toolgate.agent.scheduler import ToolCall
from toolgate.common import (
    AnsiColors,
    colored_print,
    colored_write,
)
from toolgate.core.schema import (
    ApprovalDecision,
    CompletedToolCall,
    EditConfirmationDetails,
    ExecConfirmationDetails,
    InfoConfirmationDetails,
    ResponseFragment,
    ToolCallStatus,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Input
# ---------------------------------------------------------------------------
def get_user_message() -> Tuple[str, bool]:
    """
    Get a message from the user via standard input.

    Returns:
        Tuple of (user_input, success_flag)
        The success_flag is False if input couldn't be read (e.g., Ctrl+C)
    """
    import signal  # pylint: disable=import-outside-toplevel

    # Ensure SIGINT breaks out of slow system calls such as read()
    signal.siginterrupt(signal.SIGINT, True)

    try:
        user_input = input().strip()
        return user_input, True
    except (EOFError, KeyboardInterrupt):
        return "", False


def parse_approval(answer: str) -> ApprovalDecision:
    """
    Map the operator's answer: ``y`` proceeds once, ``a`` always, anything else cancels.

    The tokens are matched exactly apart from case; only a trailing line ending is dropped.
    """
    token = answer.rstrip("\r\n").lower()
    if token == "y":
        return ApprovalDecision.PROCEED_ONCE
    if token == "a":
        return ApprovalDecision.PROCEED_ALWAYS
    return ApprovalDecision.CANCEL


# ---------------------------------------------------------------------------
# Approval channel
# ---------------------------------------------------------------------------
class ConsoleApprovalHandler:
    """
    ``on_tool_calls_update`` observer that asks the operator about every call awaiting approval.

    The prompt reads one line: ``y`` (proceed once), ``a`` (always approve this tool) or anything
    else (cancel).  *ask* defaults to :func:`input` and can be replaced for scripted runs.
    """

    PROMPT = "Your choice: "

    def __init__(self, ask: Callable[[str], str] = input, show_progress: bool = True):
        self.ask = ask
        self.show_progress = show_progress
        self._seen: dict[str, ToolCallStatus] = {}

    def __call__(self, calls: List[ToolCall]) -> None:
        for call in calls:
            if (
                call.status is ToolCallStatus.AWAITING_APPROVAL
                and call.confirmation is not None
                and not call.confirmation.resolved
            ):
                self._prompt(call)
            elif self.show_progress:
                self._progress(call)

    def _prompt(self, call: ToolCall) -> None:
        assert call.confirmation is not None
        colored_print("\n⚠️  Tool requires approval:", AnsiColors.YELLOW)
        print(f"Tool: {call.name}")
        print(f"Parameters: {json.dumps(call.request.args, indent=2, default=str)}")

        details = call.confirmation.details
        if isinstance(details, EditConfirmationDetails):
            print("\nFile changes:")
            print(details.file_diff)
        elif isinstance(details, ExecConfirmationDetails):
            print(f"\nCommand to execute: {details.command}")
        elif isinstance(details, InfoConfirmationDetails):
            print(f"\n{details.prompt}")

        print("\nApproval options:")
        print("  y - Proceed once")
        print("  a - Always approve this tool")
        print("  n - Cancel")
        try:
            answer = self.ask(self.PROMPT)
        except EOFError:
            answer = ""
        decision = parse_approval(answer)
        if decision is ApprovalDecision.PROCEED_ALWAYS:
            colored_print("✅ Future calls to this tool will be auto-approved", AnsiColors.GREEN)
        elif decision is ApprovalDecision.CANCEL:
            colored_print("❌ Tool execution cancelled", AnsiColors.RED)
        call.confirm(decision)

    def _progress(self, call: ToolCall) -> None:
        call_id = call.request.call_id
        if self._seen.get(call_id) is call.status:
            return
        self._seen[call_id] = call.status
        if call.status is ToolCallStatus.EXECUTING:
            colored_print(f"🔄 {call.name}...", AnsiColors.CYAN)


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------
def print_completed_calls(calls: Sequence[CompletedToolCall]) -> None:
    """``on_all_tool_calls_complete`` observer: one status line and output per call."""
    colored_print("\n✅ All tool calls completed!", AnsiColors.GREEN)
    for call in calls:
        print(f"  - {call.request.name}: {call.status.value}")
        if call.status is ToolCallStatus.COMPLETED and call.response.result_display:
            colored_print(f"\n🛠️ Tool Output ({call.request.name}):", AnsiColors.BLUE)
            print(call.response.result_display)
        elif call.response.error:
            colored_print(f"    {call.response.error}", AnsiColors.RED)


class StreamPrinter:
    """
    Renders fragments as they stream: thoughts dim under a thinking header, content under a
    response header.  Keeps character counts of both.
    """

    def __init__(self, show_thoughts: bool = True):
        self.show_thoughts = show_thoughts
        self.thought_chars = 0
        self.content_chars = 0
        self._mode: str | None = None

    def __call__(self, fragment: ResponseFragment) -> None:
        if not fragment.text:
            return
        if fragment.is_thought:
            self.thought_chars += len(fragment.text)
            if not self.show_thoughts:
                return
            if self._mode != "thought":
                colored_print("💭 [THINKING]", AnsiColors.MAGENTA)
                self._mode = "thought"
            colored_write(fragment.text, AnsiColors.DIM)
        else:
            self.content_chars += len(fragment.text)
            if self._mode != "content":
                if self._mode == "thought":
                    print("\n")
                colored_print("🤖 [RESPONSE]", AnsiColors.BRIGHT)
                self._mode = "content"
            print(fragment.text, end="", flush=True)

    def reset_section(self) -> None:
        """Start new headers on the next fragment (e.g. after a tool round)."""
        self._mode = None
