"""
Schema definitions for backend <-> turn loop <-> scheduler <-> tool messages.

These data models serve as the contract between the chat backends, the turn loop, the tool
scheduler and individual tools.  We keep them separate from runtime logic so they can be imported
anywhere without side-effects.
"""

import copy
import time
from enum import Enum
from typing import (
    Annotated,
    Any,
    Dict,
    List,
    Literal,
    Optional,
    Union,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


# ---------------------------------------------------------------------------
# Turn input
# ---------------------------------------------------------------------------
class FunctionCall(BaseModel):
    """A function call as recorded in the conversation history."""

    call_id: str
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)


class FunctionResponse(BaseModel):
    """Result of one tool call, re-submitted to the backend on the next round."""

    call_id: str
    name: str
    response: Dict[str, Any] = Field(
        default_factory=dict,
        description="Always carries 'status': one of 'success', 'error', 'cancelled'",
    )


class Part(BaseModel):
    """One content part of a turn input: text or a structured tool result."""

    text: Optional[str] = None
    thought: bool = False
    function_call: Optional[FunctionCall] = None
    function_response: Optional[FunctionResponse] = None


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------
class ToolCallRequest(BaseModel):
    """
    A tool invocation requested by the model. Immutable once issued.

    ``args`` is deep-copied on creation, so the request never shares state with the backend
    payload it was built from.
    """

    model_config = ConfigDict(frozen=True)

    call_id: str
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _fill_defaults(cls, data: Any) -> Any:
        # Backends such as Gemini may omit the id: fall back to name + timestamp
        if isinstance(data, dict) and not data.get("call_id"):
            data = {**data, "call_id": f"{data.get('name', 'tool')}-{time.time_ns()}"}
        if isinstance(data, dict):
            data = {**data, "args": copy.deepcopy(data.get("args") or {})}
        return data


class ResponseFragment(BaseModel):
    """One atomic piece of a streamed reply."""

    text: Optional[str] = None
    is_thought: bool = False
    tool_call: Optional[ToolCallRequest] = None


class TokenUsage(BaseModel):
    """Token accounting reported by the backend, when available."""

    input_tokens: int = 0
    output_tokens: int = 0


class ChatReply(BaseModel):
    """A complete, non-streamed reply."""

    text: str
    model: str
    usage: TokenUsage = Field(default_factory=TokenUsage)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------
class ToolDeclaration(BaseModel):
    """Declaration of a tool as advertised to the model."""

    name: str
    description: str
    parameters: Dict[str, Any] = Field(default_factory=dict, description="JSON schema")


class ToolResult(BaseModel):
    """What a tool returns from a successful execution."""

    llm_content: Union[str, Dict[str, Any]]
    return_display: str = ""


class EditConfirmationDetails(BaseModel):
    """Confirmation details for file-mutating tools."""

    type: Literal["edit"] = "edit"
    title: str
    file_name: str
    file_diff: str


class ExecConfirmationDetails(BaseModel):
    """Confirmation details for command-executing tools."""

    type: Literal["exec"] = "exec"
    title: str
    command: str
    root_command: str


class InfoConfirmationDetails(BaseModel):
    """Confirmation details carrying a free-form description."""

    type: Literal["info"] = "info"
    title: str
    prompt: str


ConfirmationDetails = Annotated[
    Union[EditConfirmationDetails, ExecConfirmationDetails, InfoConfirmationDetails],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Tool call lifecycle
# ---------------------------------------------------------------------------
class ToolCallStatus(str, Enum):
    """States of a tool call inside the scheduler."""

    VALIDATING = "validating"
    AWAITING_APPROVAL = "awaiting_approval"
    EXECUTING = "executing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        """True for completed, cancelled and errored."""
        return self in {ToolCallStatus.COMPLETED, ToolCallStatus.CANCELLED, ToolCallStatus.ERRORED}


class ApprovalDecision(str, Enum):
    """The three answers an operator can give to a confirmation prompt."""

    PROCEED_ONCE = "proceed_once"
    PROCEED_ALWAYS = "proceed_always"
    CANCEL = "cancel"


class ToolErrorType(str, Enum):
    """Classification of per-call failures."""

    UNKNOWN_TOOL = "unknown_tool"
    VALIDATION = "validation"
    EXECUTION = "execution"
    CANCELLED = "cancelled"


class ToolCallResponse(BaseModel):
    """Outcome of one tool call, ready for re-submission."""

    call_id: str
    response_parts: List[Part] = Field(default_factory=list)
    result_display: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[ToolErrorType] = None


class CompletedToolCall(BaseModel):
    """A tool call that reached a terminal status."""

    request: ToolCallRequest
    status: ToolCallStatus
    response: ToolCallResponse
    duration_ms: Optional[float] = None


class TurnResult(BaseModel):
    """The outcome of :meth:`TurnLoop.run_turn`."""

    text: str
    thoughts: str = ""
    rounds: int
    tool_calls: List[CompletedToolCall] = Field(default_factory=list)
