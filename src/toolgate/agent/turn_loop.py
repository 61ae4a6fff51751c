"""Turn loop: chat backend <-> approval-gated tool scheduler, until a round requests no tools."""

from __future__ import annotations

import logging
import threading
from typing import (
    Callable,
    List,
)

from toolgate.agent.scheduler import ToolScheduler
from toolgate.chat.backends import BaseChatBackend
from toolgate.config import settings
from toolgate.core.schema import (
    CompletedToolCall,
    Part,
    ResponseFragment,
    ToolCallRequest,
    TurnResult,
)
from toolgate.tools import ToolRegistry

logger = logging.getLogger(__name__)


class MaxRoundsExceededError(RuntimeError):
    """Raised when the backend keeps requesting tools past the configured round limit."""

    def __init__(self, max_rounds: int):
        super().__init__(f"Turn aborted: backend still requested tools after {max_rounds} rounds")
        self.max_rounds = max_rounds


class TurnCancelledError(RuntimeError):
    """Raised when the cancellation token is set between rounds."""


# ---------------------------------------------------------------------------
# Turn loop
# ---------------------------------------------------------------------------
class TurnLoop:
    """
    Drives one user prompt to a final answer.

    Each round sends the pending input plus every tool declaration to the backend and consumes the
    streamed reply.  If the reply requests tools, the whole batch goes through the scheduler and
    the flattened response parts become the next round's input; otherwise the accumulated content
    text is the answer.

    Parameters
    ----------
    backend:
        The chat session.
    registry:
        Tools declared to the backend on every round.
    scheduler:
        Executes tool batches.  Reuse one scheduler per session so "always approve" decisions
        carry over to later batches.
    max_rounds:
        Upper bound on backend rounds for one prompt (default from settings).
    on_fragment:
        Called with every fragment as it arrives, for live display.
    on_reasoning:
        Called with the text of a round that requested tools; this text is not the answer.
    """

    def __init__(
        self,
        backend: BaseChatBackend,
        registry: ToolRegistry,
        scheduler: ToolScheduler,
        max_rounds: int | None = None,
        on_fragment: Callable[[ResponseFragment], None] | None = None,
        on_reasoning: Callable[[str], None] | None = None,
    ):
        self.backend = backend
        self.registry = registry
        self.scheduler = scheduler
        self.max_rounds = settings.MAX_ROUNDS if max_rounds is None else max_rounds
        if self.max_rounds < 1:
            raise ValueError(f"max_rounds must be at least 1, got {self.max_rounds}")
        self.on_fragment = on_fragment
        self.on_reasoning = on_reasoning

    def run_turn(self, prompt: str, signal: threading.Event | None = None) -> TurnResult:
        """
        Run *prompt* to completion and return the final answer.

        If the turn fails or is interrupted, everything it added to the backend history is
        rolled back so the session stays usable for the next prompt.
        """
        mark = self.backend.checkpoint()
        try:
            return self._run_rounds(prompt, signal or threading.Event())
        except BaseException:
            self.backend.rollback(mark)
            raise

    def _run_rounds(self, prompt: str, signal: threading.Event) -> TurnResult:
        pending: List[Part] = [Part(text=prompt)]
        declarations = self.registry.get_declarations()
        completed: List[CompletedToolCall] = []
        all_thoughts: List[str] = []

        for round_no in range(1, self.max_rounds + 1):
            if signal.is_set():
                raise TurnCancelledError(f"Turn cancelled before round {round_no}")

            logger.debug("Round %d: sending %d part(s)", round_no, len(pending))
            thoughts: List[str] = []
            content: List[str] = []
            requests: List[ToolCallRequest] = []
            for fragment in self.backend.send_turn(pending, declarations):
                if self.on_fragment:
                    self.on_fragment(fragment)
                if fragment.tool_call is not None:
                    requests.append(fragment.tool_call)
                elif fragment.text:
                    (thoughts if fragment.is_thought else content).append(fragment.text)
            all_thoughts.extend(thoughts)

            if not requests:
                text = "".join(content)
                if not text:
                    logger.warning("Backend returned neither text nor tool calls")
                return TurnResult(
                    text=text,
                    thoughts="".join(all_thoughts),
                    rounds=round_no,
                    tool_calls=completed,
                )

            # Results of this batch could never be sent back
            if round_no == self.max_rounds:
                break
            if signal.is_set():
                raise TurnCancelledError(f"Turn cancelled before running round {round_no} tools")

            reasoning = "".join(thoughts) + "".join(content)
            if reasoning and self.on_reasoning:
                self.on_reasoning(reasoning)

            logger.info(
                "Round %d requested %d tool call(s): %s",
                round_no,
                len(requests),
                [request.name for request in requests],
            )
            batch = self.scheduler.schedule(requests, signal)
            completed.extend(batch)
            pending = [part for call in batch for part in call.response.response_parts]

        raise MaxRoundsExceededError(self.max_rounds)
