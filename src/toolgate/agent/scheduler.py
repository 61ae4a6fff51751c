"""
Approval-gated tool scheduler.

A batch of :class:`ToolCallRequest` objects is turned into :class:`ToolCall` lifecycle objects that
move through

    validating -> awaiting_approval | executing -> completed | cancelled | errored

Calls that need no approval run concurrently on a thread pool as soon as they are validated.
Confirmation prompts are raised one at a time, in batch order, because they share a single
interactive channel.  Observers are notified on every status transition and once more when the
whole batch is terminal.
"""

import logging
import threading
import time
from collections import defaultdict
from concurrent.futures import (
    Future,
    InvalidStateError,
    ThreadPoolExecutor,
)
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import (
    dataclass,
    field,
)
from typing import (
    Callable,
    DefaultDict,
    List,
    Optional,
    Sequence,
    Set,
)

from toolgate.agent.tool_executor import (
    cancelled_response,
    error_response,
    run_tool,
)
from toolgate.config import settings
from toolgate.core.schema import (
    ApprovalDecision,
    CompletedToolCall,
    ConfirmationDetails,
    ToolCallRequest,
    ToolCallResponse,
    ToolCallStatus,
    ToolErrorType,
)
from toolgate.tools import ToolRegistry

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.1


# ---------------------------------------------------------------------------
# Lifecycle objects
# ---------------------------------------------------------------------------
class ConfirmationPrompt:
    """
    What the operator sees before a tool runs, plus a single-shot decision channel.

    :meth:`confirm` resolves the prompt the first time it is called; later calls are ignored.
    """

    def __init__(self, details: ConfirmationDetails):
        self.details = details
        self._decision: Future = Future()

    def confirm(self, decision: ApprovalDecision | str) -> bool:
        """Record *decision*. Returns False if the prompt was already resolved."""
        decision = ApprovalDecision(decision)
        try:
            self._decision.set_result(decision)
        except InvalidStateError:
            logger.warning(
                "Ignoring decision %s: prompt already resolved as %s",
                decision.value,
                self._decision.result().value,
            )
            return False
        return True

    @property
    def resolved(self) -> bool:
        """True once a decision has been recorded."""
        return self._decision.done()

    def wait(self, timeout: float | None = None) -> ApprovalDecision | None:
        """Block until a decision is available; None on timeout."""
        try:
            return self._decision.result(timeout=timeout)
        except FuturesTimeoutError:
            return None


@dataclass
class ToolCall:
    """Tracks one request through the scheduler's state machine."""

    request: ToolCallRequest
    status: ToolCallStatus = ToolCallStatus.VALIDATING
    confirmation: Optional[ConfirmationPrompt] = None
    response: Optional[ToolCallResponse] = None
    started_at: float = field(default_factory=time.monotonic)
    finished_at: Optional[float] = None

    @property
    def name(self) -> str:
        """The tool name."""
        return self.request.name

    def confirm(self, decision: ApprovalDecision | str) -> bool:
        """Resolve the pending confirmation prompt, if there is one."""
        if self.confirmation is None:
            logger.warning("Tool call %s has no confirmation prompt", self.request.call_id)
            return False
        return self.confirmation.confirm(decision)

    def to_completed(self) -> CompletedToolCall:
        """Snapshot of a terminal call."""
        if not self.status.is_terminal or self.response is None:
            raise RuntimeError(f"Tool call {self.request.call_id} is not terminal: {self.status}")
        duration = None
        if self.finished_at is not None:
            duration = (self.finished_at - self.started_at) * 1000
        return CompletedToolCall(
            request=self.request, status=self.status, response=self.response, duration_ms=duration
        )


ToolCallsUpdateHandler = Callable[[List[ToolCall]], None]
AllToolCallsCompleteHandler = Callable[[List[CompletedToolCall]], None]


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------
class ToolScheduler:
    """
    Executes batches of tool calls, gating side-effecting ones behind operator approval.

    Parameters
    ----------
    registry:
        The session's tools.
    on_tool_calls_update:
        Called with every call of the batch on each status transition.  An interactive front
        end answers ``awaiting_approval`` calls from here via :meth:`ToolCall.confirm`.
    on_all_tool_calls_complete:
        Called once per batch, after every call reached a terminal status.
    max_workers:
        Size of the execution thread pool.

    The ``auto_approved`` set holds tool names exempted from confirmation by a "proceed always"
    decision.  It lives as long as this scheduler instance and is never persisted.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        on_tool_calls_update: ToolCallsUpdateHandler | None = None,
        on_all_tool_calls_complete: AllToolCallsCompleteHandler | None = None,
        max_workers: int | None = None,
    ):
        self.registry = registry
        self.on_tool_calls_update = on_tool_calls_update
        self.on_all_tool_calls_complete = on_all_tool_calls_complete
        self.max_workers = max_workers or settings.MAX_TOOL_WORKERS
        self.auto_approved: Set[str] = set()

        self._calls: List[ToolCall] = []
        self._state_lock = threading.Lock()
        # Re-entrant: a handler may confirm a call, which triggers another notification
        self._notify_lock = threading.RLock()
        self._resource_locks: DefaultDict[str, threading.Lock] = defaultdict(threading.Lock)

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def schedule(
        self, requests: Sequence[ToolCallRequest], signal: threading.Event | None = None
    ) -> List[CompletedToolCall]:
        """
        Run *requests* as one batch and block until every call is terminal.

        Returns one :class:`CompletedToolCall` per request, in batch order.
        """
        signal = signal or threading.Event()
        calls = [ToolCall(request=request) for request in requests]
        self._calls = calls
        if not calls:
            return []

        logger.info("Scheduling %d tool call(s): %s", len(calls), [c.name for c in calls])
        self._notify()

        awaiting: List[ToolCall] = []
        futures: List[Future] = []
        with ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="tool"
        ) as pool:
            for call in calls:
                if self._validate(call, signal):
                    awaiting.append(call)
                elif not call.status.is_terminal:
                    futures.append(self._start(call, pool, signal))

            for call in awaiting:
                decision = self._await_decision(call, signal)
                if decision is ApprovalDecision.CANCEL:
                    self._finish(call, ToolCallStatus.CANCELLED, cancelled_response(call.request))
                    continue
                if decision is ApprovalDecision.PROCEED_ALWAYS:
                    with self._state_lock:
                        self.auto_approved.add(call.name)
                    logger.info("Tool '%s' added to the auto-approve set", call.name)
                futures.append(self._start(call, pool, signal))

        # Surface failures raised on worker threads, e.g. by an observer
        for future in futures:
            future.result()

        completed = [call.to_completed() for call in calls]
        if self.on_all_tool_calls_complete:
            with self._notify_lock:
                self.on_all_tool_calls_complete(completed)
        return completed

    @property
    def tool_calls(self) -> List[ToolCall]:
        """The calls of the most recent batch."""
        return list(self._calls)

    # ------------------------------------------------------------------ #
    # State machine
    # ------------------------------------------------------------------ #
    def _validate(self, call: ToolCall, signal: threading.Event) -> bool:
        """Validate *call*. Returns True if it must wait for approval."""
        tool = self.registry.get(call.name)
        if tool is None:
            message = f"Tool '{call.name}' is not registered."
            self._finish(
                call,
                ToolCallStatus.ERRORED,
                error_response(call.request, message, ToolErrorType.UNKNOWN_TOOL),
            )
            return False

        error = tool.validate_params(call.request.args)
        if error:
            self._finish(
                call,
                ToolCallStatus.ERRORED,
                error_response(call.request, error, ToolErrorType.VALIDATION),
            )
            return False

        if signal.is_set():
            self._finish(call, ToolCallStatus.CANCELLED, cancelled_response(call.request))
            return False

        with self._state_lock:
            auto_approved = call.name in self.auto_approved
        if auto_approved:
            return False

        try:
            details = tool.should_confirm_execute(call.request.args)
        except Exception as exc:  # noqa: BLE001  # pylint: disable=broad-except
            logger.exception("Could not build confirmation details for '%s'", call.name)
            self._finish(
                call,
                ToolCallStatus.ERRORED,
                error_response(call.request, str(exc), ToolErrorType.VALIDATION),
            )
            return False
        if details is None:
            return False

        call.confirmation = ConfirmationPrompt(details)
        return True

    def _await_decision(self, call: ToolCall, signal: threading.Event) -> ApprovalDecision:
        """Expose *call*'s prompt to the observers and wait for its single decision."""
        assert call.confirmation is not None
        self._set_status(call, ToolCallStatus.AWAITING_APPROVAL)
        while True:
            decision = call.confirmation.wait(timeout=_POLL_INTERVAL)
            if decision is not None:
                logger.debug("Decision for %s: %s", call.request.call_id, decision.value)
                return decision
            if signal.is_set():
                call.confirmation.confirm(ApprovalDecision.CANCEL)

    def _start(self, call: ToolCall, pool: ThreadPoolExecutor, signal: threading.Event) -> Future:
        self._set_status(call, ToolCallStatus.EXECUTING)
        return pool.submit(self._execute, call, signal)

    def _execute(self, call: ToolCall, signal: threading.Event) -> None:
        if signal.is_set():
            self._finish(call, ToolCallStatus.CANCELLED, cancelled_response(call.request))
            return

        tool = self.registry.get(call.name)
        assert tool is not None
        try:
            key = tool.resource_key(call.request.args)
        except Exception as exc:  # noqa: BLE001  # pylint: disable=broad-except
            logger.debug("No resource key for %s: %s", call.request.call_id, exc)
            key = None
        if key is None:
            response = run_tool(tool, call.request, signal)
        else:
            with self._state_lock:
                resource_lock = self._resource_locks[key]
            with resource_lock:
                response = run_tool(tool, call.request, signal)

        if signal.is_set():
            self._finish(
                call,
                ToolCallStatus.CANCELLED,
                cancelled_response(call.request, "[Operation Cancelled] Execution aborted"),
            )
        elif response.error:
            self._finish(call, ToolCallStatus.ERRORED, response)
        else:
            self._finish(call, ToolCallStatus.COMPLETED, response)

    def _finish(self, call: ToolCall, status: ToolCallStatus, response: ToolCallResponse) -> None:
        call.response = response
        call.finished_at = time.monotonic()
        self._set_status(call, status)
        logger.info("Tool call %s (%s) -> %s", call.request.call_id, call.name, status.value)

    def _set_status(self, call: ToolCall, status: ToolCallStatus) -> None:
        with self._state_lock:
            call.status = status
        self._notify()

    def _notify(self) -> None:
        if self.on_tool_calls_update is None:
            return
        with self._notify_lock:
            self.on_tool_calls_update(list(self._calls))
