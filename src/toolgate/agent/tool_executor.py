"""Runs tool calls against a :class:`ToolRegistry` and wraps their outcome in response parts."""

import logging
import threading
from typing import (
    Any,
    Dict,
)

from toolgate.core.schema import (
    FunctionResponse,
    Part,
    ToolCallRequest,
    ToolCallResponse,
    ToolErrorType,
)
from toolgate.tools import (
    BaseTool,
    ToolRegistry,
)

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "[Operation Cancelled] Reason: User did not allow tool call"


class ToolExecutionError(RuntimeError):
    """Raised when a requested tool cannot run or fails."""


# ---------------------------------------------------------------------------
# Response builders
# ---------------------------------------------------------------------------
def _function_response_part(request: ToolCallRequest, response: Dict[str, Any]) -> Part:
    return Part(
        function_response=FunctionResponse(
            call_id=request.call_id, name=request.name, response=response
        )
    )


def success_response(request: ToolCallRequest, output: Any, display: str = "") -> ToolCallResponse:
    """Response for a call that completed normally."""
    return ToolCallResponse(
        call_id=request.call_id,
        response_parts=[_function_response_part(request, {"status": "success", "output": output})],
        result_display=display,
    )


def error_response(
    request: ToolCallRequest, message: str, error_type: ToolErrorType
) -> ToolCallResponse:
    """Response for a call that failed validation or execution."""
    return ToolCallResponse(
        call_id=request.call_id,
        response_parts=[
            _function_response_part(
                request, {"status": "error", "error_type": error_type.value, "error": message}
            )
        ],
        result_display=message,
        error=message,
        error_type=error_type,
    )


def cancelled_response(
    request: ToolCallRequest, message: str = CANCELLED_MESSAGE
) -> ToolCallResponse:
    """Response for a call that was declined or aborted; still sent back to the backend."""
    return ToolCallResponse(
        call_id=request.call_id,
        response_parts=[
            _function_response_part(request, {"status": "cancelled", "error": message})
        ],
        result_display=message,
        error=message,
        error_type=ToolErrorType.CANCELLED,
    )


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------
def run_tool(tool: BaseTool, request: ToolCallRequest, signal: threading.Event) -> ToolCallResponse:
    """
    Invoke an already validated *request* on *tool*.

    Any exception raised by the tool is converted into an ``execution`` error response so
    sibling calls are never affected.
    """
    try:
        logger.debug("Executing tool '%s' with args=%s", request.name, request.args)
        result = tool.execute(request.args, signal)
    except Exception as exc:  # noqa: BLE001  # pylint: disable=broad-except
        logger.exception("Unhandled error in tool '%s'", request.name)
        return error_response(
            request, f"Tool '{request.name}' raised an error: {exc}", ToolErrorType.EXECUTION
        )
    return success_response(request, result.llm_content, result.return_display)


def execute_tool_call(
    registry: ToolRegistry,
    request: ToolCallRequest,
    signal: threading.Event | None = None,
    raise_on_error: bool = False,
) -> ToolCallResponse:
    """
    Look up *request.name* in *registry*, validate its arguments and invoke it.

    No confirmation is asked for: this is the direct invocation path.

    Parameters
    ----------
    registry:
        The session's tools.
    request:
        The call to run.
    signal:
        Cancellation token handed to the tool.  A fresh, unset event is used if *None*.
    raise_on_error:
        Raise :class:`ToolExecutionError` instead of returning an error response.

    Returns
    -------
    ToolCallResponse
        Response parts ready to be sent back to the chat backend.

    Raises
    ------
    ToolExecutionError
        Only when *raise_on_error* is set and the call fails.
    """
    signal = signal or threading.Event()

    tool = registry.get(request.name)
    if tool is None:
        response = error_response(
            request, f"Tool '{request.name}' is not registered.", ToolErrorType.UNKNOWN_TOOL
        )
    else:
        validation_error = tool.validate_params(request.args)
        if validation_error:
            response = error_response(request, validation_error, ToolErrorType.VALIDATION)
        else:
            response = run_tool(tool, request, signal)

    if raise_on_error and response.error:
        raise ToolExecutionError(response.error)
    return response
