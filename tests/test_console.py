"""Tests for the interactive approval channel and stream rendering."""

import pytest

from toolgate.agent.scheduler import (
    ConfirmationPrompt,
    ToolCall,
)
from toolgate.client.console import (
    ConsoleApprovalHandler,
    StreamPrinter,
    parse_approval,
)
from toolgate.core.schema import (
    ApprovalDecision,
    ExecConfirmationDetails,
    ResponseFragment,
    ToolCallRequest,
    ToolCallStatus,
)


@pytest.mark.parametrize(
    "answer, expected",
    [
        ("y", ApprovalDecision.PROCEED_ONCE),
        ("Y", ApprovalDecision.PROCEED_ONCE),
        ("y\n", ApprovalDecision.PROCEED_ONCE),
        (" y", ApprovalDecision.CANCEL),
        ("a ", ApprovalDecision.CANCEL),
        ("a", ApprovalDecision.PROCEED_ALWAYS),
        ("A", ApprovalDecision.PROCEED_ALWAYS),
        ("n", ApprovalDecision.CANCEL),
        ("", ApprovalDecision.CANCEL),
        ("yes", ApprovalDecision.CANCEL),
        ("always", ApprovalDecision.CANCEL),
    ],
)
def test_parse_approval(answer: str, expected: ApprovalDecision) -> None:
    """Only the literal tokens 'y' and 'a' approve; anything else cancels."""
    assert parse_approval(answer) is expected


def _awaiting_shell_call() -> ToolCall:
    call = ToolCall(
        request=ToolCallRequest(name="run_shell_command", args={"command": "ls -la"}),
        status=ToolCallStatus.AWAITING_APPROVAL,
    )
    call.confirmation = ConfirmationPrompt(
        ExecConfirmationDetails(title="Confirm shell command", command="ls -la", root_command="ls")
    )
    return call


def test_handler_shows_command_and_confirms(capsys) -> None:
    """The prompt prints the command and records the operator's decision."""
    asked = []
    handler = ConsoleApprovalHandler(ask=lambda prompt: asked.append(prompt) or "a")
    call = _awaiting_shell_call()

    handler([call])

    out = capsys.readouterr().out
    assert "Command to execute: ls -la" in out
    assert "a - Always approve this tool" in out
    assert asked == ["Your choice: "]
    assert call.confirmation.wait(timeout=0) is ApprovalDecision.PROCEED_ALWAYS


def test_handler_does_not_prompt_twice() -> None:
    """An already answered call is not asked about again on later notifications."""
    asked = []
    handler = ConsoleApprovalHandler(ask=lambda prompt: asked.append(prompt) or "y")
    call = _awaiting_shell_call()

    handler([call])
    handler([call])

    assert len(asked) == 1


def test_handler_treats_eof_as_cancel() -> None:
    """Closed stdin declines the call."""

    def closed(_prompt: str) -> str:
        raise EOFError

    call = _awaiting_shell_call()
    ConsoleApprovalHandler(ask=closed)([call])

    assert call.confirmation.wait(timeout=0) is ApprovalDecision.CANCEL


def test_stream_printer_counts_and_headers(capsys) -> None:
    """Thoughts and content are counted separately and get their own headers."""
    printer = StreamPrinter()
    for fragment in [
        ResponseFragment(text="let me think", is_thought=True),
        ResponseFragment(text="Hello"),
        ResponseFragment(text=" world"),
        ResponseFragment(tool_call=ToolCallRequest(name="x")),
    ]:
        printer(fragment)

    out = capsys.readouterr().out
    assert printer.thought_chars == len("let me think")
    assert printer.content_chars == len("Hello world")
    assert out.count("[THINKING]") == 1
    assert out.count("[RESPONSE]") == 1
