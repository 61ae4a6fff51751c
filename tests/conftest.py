"""Shared fakes: a scripted chat backend and stub tools with call counters."""

import threading
from typing import (
    Any,
    Callable,
    Iterator,
    List,
    Mapping,
    Sequence,
)

import pytest
from pydantic import BaseModel

from toolgate.chat.backends import BaseChatBackend
from toolgate.core.schema import (
    ChatReply,
    InfoConfirmationDetails,
    Part,
    ResponseFragment,
    ToolCallRequest,
    ToolDeclaration,
    ToolResult,
)
from toolgate.tools import BaseTool


class StubTool(BaseTool):
    """Counts executions; optionally needs confirmation or fails."""

    description = "Stub tool used in tests"

    class Params(BaseModel):
        """Arguments of the stub tool."""

        value: str = "x"

    def __init__(self, name: str = "stub", needs_confirmation: bool = False, fail: bool = False):
        super().__init__(".")
        self.name = name  # type: ignore[misc]
        self.needs_confirmation = needs_confirmation
        self.fail = fail
        self.calls = 0
        self._lock = threading.Lock()

    def should_confirm_execute(self, args: Mapping[str, Any]) -> InfoConfirmationDetails | None:
        if not self.needs_confirmation:
            return None
        return InfoConfirmationDetails(
            title=f"Run {self.name}?", prompt=f"value={args.get('value')}"
        )

    def execute(self, args: Mapping[str, Any], signal: threading.Event) -> ToolResult:
        with self._lock:
            self.calls += 1
        if self.fail:
            raise RuntimeError("boom")
        return ToolResult(llm_content=f"ran {args.get('value', 'x')}", return_display="ok")


class FakeBackend(BaseChatBackend):
    """Replays scripted rounds of fragments and records every turn input."""

    DEFAULT_MODEL = "fake-model"

    def __init__(self, rounds: Sequence[Any], repeat_last: bool = False):
        self.rounds = list(rounds)
        self.repeat_last = repeat_last
        self.sent: List[List[Part]] = []
        self.declarations: List[List[ToolDeclaration]] = []
        super().__init__()

    def send_turn(
        self, parts: Sequence[Part], declarations: Sequence[ToolDeclaration] = ()
    ) -> Iterator[ResponseFragment]:
        index = len(self.sent)
        self.sent.append(list(parts))
        self.declarations.append(list(declarations))
        if index >= len(self.rounds):
            if not self.repeat_last:
                raise AssertionError(f"Unexpected backend round {index + 1}")
            index = len(self.rounds) - 1
        script = self.rounds[index]
        if isinstance(script, Exception):
            raise script
        yield from script

    def send_message(self, text: str) -> ChatReply:
        return ChatReply(text=f"echo: {text}", model=self.model)


def text(value: str, thought: bool = False) -> ResponseFragment:
    """Text fragment helper."""
    return ResponseFragment(text=value, is_thought=thought)


def tool_call(name: str, call_id: str | None = None, **args: Any) -> ResponseFragment:
    """Tool-call fragment helper."""
    return ResponseFragment(tool_call=ToolCallRequest(call_id=call_id, name=name, args=args))


@pytest.fixture
def make_stub_tool() -> Callable[..., StubTool]:
    """Factory for :class:`StubTool` instances."""
    return StubTool


@pytest.fixture
def make_backend() -> Callable[..., FakeBackend]:
    """Factory for :class:`FakeBackend` instances."""
    return FakeBackend


@pytest.fixture
def fragments() -> Any:
    """Fragment helpers, exposed as ``fragments.text`` and ``fragments.tool_call``."""

    class _Fragments:
        text = staticmethod(text)
        tool_call = staticmethod(tool_call)

    return _Fragments
