"""
Basic sanity tests for the tool executor.

Run with:
$ pytest -q
"""

import threading

import pytest

from toolgate.agent.tool_executor import (
    ToolExecutionError,
    cancelled_response,
    execute_tool_call,
)
from toolgate.core.schema import (
    ToolCallRequest,
    ToolErrorType,
)
from toolgate.tools import (
    FunctionTool,
    ToolRegistry,
)


# This is a stub tool for testing purposes.
def _add(a: int, b: int) -> int:
    """Return the sum of two integers (used only for tests)."""

    return a + b


@pytest.fixture
def registry() -> ToolRegistry:
    """Registry holding only the ``add`` tool."""
    return ToolRegistry([FunctionTool("add", _add)])


def test_execute_tool_success(registry: ToolRegistry) -> None:
    """Executor should return the correct value when the tool is valid."""

    request = ToolCallRequest(call_id="c1", name="add", args={"a": 2, "b": 3})
    response = execute_tool_call(registry, request)

    assert response.error is None
    payload = response.response_parts[0].function_response
    assert payload is not None
    assert payload.call_id == "c1"
    assert payload.response == {"status": "success", "output": "5"}


def test_execute_tool_missing(registry: ToolRegistry) -> None:
    """Executor should report an unknown tool, and raise *ToolExecutionError* on request."""

    request = ToolCallRequest(name="not_a_tool", args={})
    response = execute_tool_call(registry, request)
    assert response.error_type is ToolErrorType.UNKNOWN_TOOL

    try:
        execute_tool_call(registry, request, raise_on_error=True)
    except ToolExecutionError as exc:
        assert "not_a_tool" in str(exc)
    else:  # pragma: no cover
        raise AssertionError("ToolExecutionError was not raised")


def test_execute_tool_bad_args(registry: ToolRegistry) -> None:
    """Executor should reject wrong arguments before running the tool."""

    # missing "b"
    response = execute_tool_call(registry, ToolCallRequest(name="add", args={"a": 2}))

    assert response.error_type is ToolErrorType.VALIDATION
    assert "Invalid parameters" in (response.error or "")
    assert response.response_parts[0].function_response.response["status"] == "error"


def test_execute_tool_raising(make_stub_tool) -> None:
    """An exception inside the tool becomes an execution error payload."""

    tool = make_stub_tool(fail=True)
    response = execute_tool_call(
        ToolRegistry([tool]), ToolCallRequest(name="stub"), threading.Event()
    )

    assert tool.calls == 1
    assert response.error_type is ToolErrorType.EXECUTION
    assert "boom" in (response.error or "")


def test_cancelled_payload_is_distinct_from_error() -> None:
    """Cancellation is reported with its own status, not as an error status."""

    response = cancelled_response(ToolCallRequest(call_id="c9", name="write_file"))

    payload = response.response_parts[0].function_response.response
    assert payload["status"] == "cancelled"
    assert response.error_type is ToolErrorType.CANCELLED
