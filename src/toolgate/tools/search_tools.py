"""Regex search over files in the workspace."""

import fnmatch
import logging
import re
import threading
from typing import (
    Any,
    List,
    Mapping,
)

from pydantic import (
    BaseModel,
    Field,
)

from toolgate.core.schema import ToolResult
from toolgate.tools import register_tool
from toolgate.tools.file_tools import _PathTool

logger = logging.getLogger(__name__)

MAX_MATCHES = 200
_SKIP_DIRS = {".git", ".venv", "node_modules", "__pycache__"}


@register_tool("search_file_content")
class SearchFileContentTool(_PathTool):
    """Grep-like search returning ``file:line: text`` matches."""

    description = (
        "Search for a regular expression in the files of a directory. "
        "Returns matching lines as 'file:line: text'."
    )

    class Params(BaseModel):
        """Arguments of search_file_content."""

        pattern: str = Field(..., description="Regular expression to search for")
        path: str = Field(".", description="Directory to search, relative to the workspace root")
        include: str | None = Field(None, description="Glob filter for file names, e.g. '*.py'")

    def validate_params(self, args: Mapping[str, Any]) -> str | None:
        error = super().validate_params({"path": ".", **args})
        if error:
            return error
        try:
            re.compile(args["pattern"])
        except re.error as exc:
            return f"Invalid regular expression {args['pattern']!r}: {exc}"
        return None

    def execute(self, args: Mapping[str, Any], signal: threading.Event) -> ToolResult:
        params = self.parse_params(args)
        base = self._path({"path": params.path})  # type: ignore[attr-defined]
        regex = re.compile(params.pattern)  # type: ignore[attr-defined]
        include = params.include  # type: ignore[attr-defined]

        matches: List[str] = []
        for file_path in sorted(base.rglob("*")):
            if signal.is_set() or len(matches) >= MAX_MATCHES:
                break
            if not file_path.is_file() or _SKIP_DIRS.intersection(file_path.parts):
                continue
            if include and not fnmatch.fnmatch(file_path.name, include):
                continue
            try:
                text = file_path.read_text(encoding="utf-8")
            except (UnicodeDecodeError, OSError):
                continue  # binary or unreadable
            rel = file_path.relative_to(self.root)
            for lineno, line in enumerate(text.splitlines(), start=1):
                if regex.search(line):
                    matches.append(f"{rel}:{lineno}: {line.strip()}")
                    if len(matches) >= MAX_MATCHES:
                        break

        logger.debug("search_file_content %r found %d match(es)", regex.pattern, len(matches))
        if not matches:
            message = f"No matches found for pattern {regex.pattern!r}."
            return ToolResult(llm_content=message, return_display=message)
        return ToolResult(
            llm_content="\n".join(matches),
            return_display=f"Found {len(matches)} match(es)",
        )
