"""Shell command execution. Every command needs operator approval."""

import logging
import shlex
import subprocess
import threading
import time
from typing import (
    Any,
    Mapping,
)

from pydantic import (
    BaseModel,
    Field,
)

from toolgate.config import settings
from toolgate.core.schema import (
    ExecConfirmationDetails,
    ToolResult,
)
from toolgate.tools import (
    BaseTool,
    register_tool,
)

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.1
MAX_OUTPUT_CHARS = 20_000


class CommandCancelledError(RuntimeError):
    """Raised when the cancellation token fires while a command is running."""


def root_command(command: str) -> str:
    """Return the executable name of *command* (``"ls"`` for ``"ls -la"``)."""
    try:
        tokens = shlex.split(command)
    except ValueError:
        tokens = command.split()
    return tokens[0] if tokens else ""


@register_tool("run_shell_command")
class ShellTool(BaseTool):
    """Run a command through the system shell inside the workspace root."""

    description = (
        "Execute a shell command in the workspace directory. "
        "Returns stdout, stderr and the exit code."
    )

    class Params(BaseModel):
        """Arguments of run_shell_command."""

        command: str = Field(..., min_length=1, description="Exact command to execute")
        description: str | None = Field(None, description="Short note on what the command does")

    def __init__(self, root: Any = ".", timeout: float | None = None):
        super().__init__(root)
        self.timeout = timeout if timeout is not None else settings.SHELL_TIMEOUT

    def should_confirm_execute(self, args: Mapping[str, Any]) -> ExecConfirmationDetails | None:
        command = str(args["command"])
        return ExecConfirmationDetails(
            title="Confirm shell command",
            command=command,
            root_command=root_command(command),
        )

    def execute(self, args: Mapping[str, Any], signal: threading.Event) -> ToolResult:
        command = str(args["command"])
        logger.info("Running shell command in %s: %s", self.root, command)
        with subprocess.Popen(  # pylint: disable=consider-using-with
            command,
            shell=True,
            cwd=self.root,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        ) as proc:
            deadline = time.monotonic() + self.timeout
            while True:
                try:
                    stdout, stderr = proc.communicate(timeout=_POLL_INTERVAL)
                    break
                except subprocess.TimeoutExpired:
                    if signal.is_set():
                        proc.kill()
                        proc.communicate()
                        raise CommandCancelledError(f"Command cancelled: {command}") from None
                    if time.monotonic() > deadline:
                        proc.kill()
                        proc.communicate()
                        raise TimeoutError(
                            f"Command timed out after {self.timeout:.0f}s: {command}"
                        ) from None

        output = "\n".join(
            [
                f"Command: {command}",
                f"Stdout: {_clip(stdout) or '(empty)'}",
                f"Stderr: {_clip(stderr) or '(empty)'}",
                f"Exit Code: {proc.returncode}",
            ]
        )
        display = stdout.strip() or stderr.strip() or f"(exit code {proc.returncode})"
        return ToolResult(llm_content=output, return_display=_clip(display))


def _clip(text: str) -> str:
    if len(text) <= MAX_OUTPUT_CHARS:
        return text.rstrip()
    return text[:MAX_OUTPUT_CHARS].rstrip() + "\n[output truncated]"
