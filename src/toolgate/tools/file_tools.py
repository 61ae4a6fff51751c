"""File-system tools: read, write and list, confined to the registry root."""

import difflib
import logging
import threading
from pathlib import Path
from typing import (
    Any,
    Mapping,
)

from pydantic import (
    BaseModel,
    Field,
)

from toolgate.core.schema import (
    EditConfirmationDetails,
    ToolResult,
)
from toolgate.tools import (
    BaseTool,
    register_tool,
)

logger = logging.getLogger(__name__)

MAX_READ_LINES = 2000


class PathOutsideRootError(ValueError):
    """Raised when a tool argument points outside the registry root."""


def resolve_within_root(root: Path, path_value: str) -> Path:
    """Resolve *path_value* against *root* and make sure it stays inside it."""
    if not path_value or not str(path_value).strip():
        raise PathOutsideRootError("Path must not be empty")
    raw_path = Path(str(path_value).strip()).expanduser()
    candidate = (raw_path if raw_path.is_absolute() else root / raw_path).resolve(strict=False)
    try:
        candidate.relative_to(root)
    except ValueError as exc:
        raise PathOutsideRootError(f"Path {candidate} is outside the workspace {root}") from exc
    return candidate


class _PathTool(BaseTool):
    """Shared validation for tools that take a path argument."""

    path_field = "path"

    def validate_params(self, args: Mapping[str, Any]) -> str | None:
        error = super().validate_params(args)
        if error:
            return error
        try:
            resolve_within_root(self.root, args[self.path_field])
        except PathOutsideRootError as exc:
            return str(exc)
        return None

    def _path(self, args: Mapping[str, Any]) -> Path:
        return resolve_within_root(self.root, args[self.path_field])


@register_tool("read_file")
class ReadFileTool(_PathTool):
    """Read a text file."""

    description = (
        "Read the contents of a text file in the workspace. "
        "Use 'offset' and 'limit' to page through large files."
    )

    class Params(BaseModel):
        """Arguments of read_file."""

        path: str = Field(..., description="File path, relative to the workspace root")
        offset: int = Field(0, ge=0, description="0-based line to start reading from")
        limit: int = Field(MAX_READ_LINES, gt=0, description="Maximum number of lines to read")

    def execute(self, args: Mapping[str, Any], signal: threading.Event) -> ToolResult:
        params = self.parse_params(args)
        path = self._path(args)
        if not path.is_file():
            raise FileNotFoundError(f"File not found: {params.path}")  # type: ignore[attr-defined]

        lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
        offset, limit = params.offset, params.limit  # type: ignore[attr-defined]
        selected = lines[offset : offset + limit]
        content = "\n".join(selected)
        if offset + limit < len(lines):
            shown = f"{offset + 1}-{offset + len(selected)}"
            content += f"\n\n[truncated: showing lines {shown} of {len(lines)}]"
        display = f"Read {len(selected)} line(s) from {path.relative_to(self.root)}"
        return ToolResult(llm_content=content, return_display=display)


@register_tool("write_file")
class WriteFileTool(_PathTool):
    """Create or overwrite a text file. Requires approval."""

    description = "Write content to a file in the workspace, creating it if needed."
    path_field = "file_path"

    class Params(BaseModel):
        """Arguments of write_file."""

        file_path: str = Field(..., description="File path, relative to the workspace root")
        content: str = Field(..., description="Full content to write")

    def should_confirm_execute(self, args: Mapping[str, Any]) -> EditConfirmationDetails | None:
        path = self._path(args)
        old = path.read_text(encoding="utf-8", errors="replace") if path.is_file() else ""
        rel_name = str(path.relative_to(self.root))
        diff = "".join(
            difflib.unified_diff(
                old.splitlines(keepends=True),
                str(args["content"]).splitlines(keepends=True),
                fromfile=f"{rel_name} (current)",
                tofile=f"{rel_name} (proposed)",
            )
        )
        return EditConfirmationDetails(
            title=f"Confirm write: {rel_name}",
            file_name=rel_name,
            file_diff=diff or "(no changes)",
        )

    def resource_key(self, args: Mapping[str, Any]) -> str | None:
        return str(self._path(args))

    def execute(self, args: Mapping[str, Any], signal: threading.Event) -> ToolResult:
        params = self.parse_params(args)
        path = self._path(args)
        existed = path.exists()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(params.content, encoding="utf-8")  # type: ignore[attr-defined]
        verb = "Overwrote" if existed else "Created"
        logger.info("%s %s", verb, path)
        message = f"{verb} {path.relative_to(self.root)}"
        return ToolResult(llm_content=f"Successfully wrote {path}.", return_display=message)


@register_tool("list_directory")
class ListDirectoryTool(_PathTool):
    """List the entries of a directory."""

    description = "List files and sub-directories of a directory in the workspace."

    class Params(BaseModel):
        """Arguments of list_directory."""

        path: str = Field(".", description="Directory path, relative to the workspace root")

    def execute(self, args: Mapping[str, Any], signal: threading.Event) -> ToolResult:
        path = self._path({"path": args.get("path", ".")})
        if not path.is_dir():
            raise NotADirectoryError(f"Not a directory: {path}")

        entries = sorted(path.iterdir(), key=lambda p: (not p.is_dir(), p.name.lower()))
        lines = [f"[DIR] {p.name}" if p.is_dir() else p.name for p in entries]
        listing = "\n".join(lines)
        header = f"Directory listing for {path}:"
        return ToolResult(
            llm_content=f"{header}\n{listing}" if lines else f"Directory {path} is empty.",
            return_display=listing or "(empty)",
        )

    def validate_params(self, args: Mapping[str, Any]) -> str | None:
        return super().validate_params({"path": ".", **args})
