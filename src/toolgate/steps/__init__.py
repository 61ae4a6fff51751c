"""
The five codelab steps.

Each step module exposes ``run(backend=None, model=None)``; :data:`STEPS` maps the step names
accepted on the command line to those modules.
"""

import importlib
from pathlib import Path
from typing import (
    Callable,
    Dict,
    Iterable,
)

from toolgate.agent.scheduler import ToolScheduler
from toolgate.agent.turn_loop import TurnLoop
from toolgate.chat.backends import BaseChatBackend
from toolgate.client.console import (
    ConsoleApprovalHandler,
    print_completed_calls,
)
from toolgate.common import (
    AnsiColors,
    colored_write,
)
from toolgate.config import settings
from toolgate.core.schema import ResponseFragment
from toolgate.tools import create_tool_registry

STEPS: Dict[str, str] = {
    "hello": "toolgate.steps.hello_world",
    "stream": "toolgate.steps.streaming",
    "tools": "toolgate.steps.tools_demo",
    "approvals": "toolgate.steps.approvals",
    "advanced": "toolgate.steps.advanced",
}


def get_step(name: str) -> Callable[..., None]:
    """Return the ``run`` function of step *name*."""
    if name not in STEPS:
        raise ValueError(f"Unknown step '{name}'. Options: {', '.join(STEPS)}")
    return importlib.import_module(STEPS[name]).run  # type: ignore[no-any-return]


def workspace_root() -> Path:
    """Directory the file and shell tools operate in."""
    return Path(settings.TARGET_DIR).resolve()


def build_turn_loop(
    backend: BaseChatBackend,
    tool_names: Iterable[str],
    ask: Callable[[str], str] = input,
    on_fragment: Callable[[ResponseFragment], None] | None = None,
) -> TurnLoop:
    """Wire backend, tools, approval prompts and the scheduler into one :class:`TurnLoop`."""
    registry = create_tool_registry(tool_names, workspace_root())
    scheduler = ToolScheduler(
        registry,
        on_tool_calls_update=ConsoleApprovalHandler(ask=ask),
        on_all_tool_calls_complete=print_completed_calls,
    )
    return TurnLoop(
        backend,
        registry,
        scheduler,
        on_fragment=on_fragment,
        on_reasoning=lambda text: colored_write(text + "\n", AnsiColors.DIM),
    )
