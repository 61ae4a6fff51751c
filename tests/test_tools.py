"""Tests for the built-in tools and the tool registry."""

import threading
import time

import pytest

from toolgate.core.schema import (
    EditConfirmationDetails,
    ExecConfirmationDetails,
)
from toolgate.tools import (
    FunctionTool,
    create_tool_registry,
    register_tool,
)
from toolgate.tools.calculator import (
    CalculationError,
    calculate,
    evaluate_expression,
)
from toolgate.tools.shell_tools import (
    CommandCancelledError,
    root_command,
)


@pytest.fixture
def registry(tmp_path):
    """Every built-in tool rooted at a temporary workspace."""
    return create_tool_registry(
        [
            "read_file",
            "write_file",
            "list_directory",
            "search_file_content",
            "run_shell_command",
            "calculate",
        ],
        tmp_path,
    )


def test_declarations_expose_parameter_schemas(registry) -> None:
    """Each declaration carries a JSON schema with the required parameters."""
    decls = {d.name: d for d in registry.get_declarations()}

    assert set(decls) == set(registry.names())
    assert decls["write_file"].parameters["required"] == ["file_path", "content"]
    assert decls["calculate"].parameters["required"] == ["expression"]
    assert "Perform mathematical calculations" in decls["calculate"].description


def test_duplicate_registration_rejected() -> None:
    """Tool names in the catalogue are unique."""
    with pytest.raises(ValueError, match="already registered"):
        register_tool("calculate")


def test_write_file_confirmation_and_execution(registry, tmp_path) -> None:
    """write_file asks for approval with a diff, then writes the file."""
    tool = registry.get("write_file")
    (tmp_path / "hello.txt").write_text("old\n", encoding="utf-8")
    args = {"file_path": "hello.txt", "content": "new\n"}

    details = tool.should_confirm_execute(args)
    assert isinstance(details, EditConfirmationDetails)
    assert "-old" in details.file_diff and "+new" in details.file_diff
    assert tool.resource_key(args) == str((tmp_path / "hello.txt").resolve())

    result = tool.execute(args, threading.Event())
    assert (tmp_path / "hello.txt").read_text(encoding="utf-8") == "new\n"
    assert "Overwrote" in result.return_display


def test_paths_outside_root_are_rejected(registry) -> None:
    """File tools refuse to leave the workspace."""
    error = registry.get("read_file").validate_params({"path": "../../etc/passwd"})

    assert error is not None and "outside the workspace" in error


def test_read_file_paging(registry, tmp_path) -> None:
    """offset/limit select lines and mention truncation."""
    (tmp_path / "data.txt").write_text("\n".join(f"line {i}" for i in range(10)), encoding="utf-8")

    result = registry.get("read_file").execute(
        {"path": "data.txt", "offset": 2, "limit": 3}, threading.Event()
    )

    assert result.llm_content.startswith("line 2\nline 3\nline 4")
    assert "showing lines 3-5 of 10" in result.llm_content


def test_list_directory_puts_directories_first(registry, tmp_path) -> None:
    """Directories are listed before files."""
    (tmp_path / "b.txt").write_text("", encoding="utf-8")
    (tmp_path / "a_dir").mkdir()

    result = registry.get("list_directory").execute({}, threading.Event())

    assert result.return_display.splitlines() == ["[DIR] a_dir", "b.txt"]


def test_search_file_content(registry, tmp_path) -> None:
    """Matches are reported as file:line: text, filtered by the include glob."""
    (tmp_path / "mod.py").write_text("import os\ndef main():\n    pass\n", encoding="utf-8")
    (tmp_path / "notes.md").write_text("def not code\n", encoding="utf-8")
    tool = registry.get("search_file_content")

    result = tool.execute({"pattern": r"^def ", "include": "*.py"}, threading.Event())

    assert result.llm_content == "mod.py:2: def main():"
    assert tool.validate_params({"pattern": "("}) is not None


def test_shell_confirmation_details(registry) -> None:
    """Shell commands always need approval and expose the literal command."""
    details = registry.get("run_shell_command").should_confirm_execute({"command": "ls -la /tmp"})

    assert isinstance(details, ExecConfirmationDetails)
    assert details.command == "ls -la /tmp"
    assert details.root_command == "ls"
    assert root_command("") == ""


def test_shell_execution(registry, tmp_path) -> None:
    """stdout and exit code are reported; the command runs in the workspace."""
    (tmp_path / "marker.txt").write_text("", encoding="utf-8")

    result = registry.get("run_shell_command").execute({"command": "ls"}, threading.Event())

    assert "marker.txt" in result.llm_content
    assert "Exit Code: 0" in result.llm_content


def test_shell_cancellation(registry) -> None:
    """A set token kills the running command promptly."""
    signal = threading.Event()
    signal.set()
    started = time.monotonic()

    with pytest.raises(CommandCancelledError):
        registry.get("run_shell_command").execute({"command": "sleep 5"}, signal)

    assert time.monotonic() - started < 4


@pytest.mark.parametrize(
    "expression, expected",
    [("2 + 2", 4), ("sqrt(16)", 4.0), ("2^10", 1024), ("(1 + 2) * -3", -9), ("7 // 2", 3)],
)
def test_evaluate_expression(expression: str, expected: float) -> None:
    """Arithmetic, functions and ^ as power are supported."""
    assert evaluate_expression(expression) == expected


@pytest.mark.parametrize(
    "expression",
    [
        "__import__('os')",
        "1 / 0",
        "2 ** 100000",
        "x + 1",
        "((9 ** 1000) ** 1000) ** 1000",
        "exp(1000)",
        "10.0 ** 400",
    ],
)
def test_evaluate_expression_rejects(expression: str) -> None:
    """Anything beyond arithmetic, and results too large to compute, are refused."""
    with pytest.raises(CalculationError):
        evaluate_expression(expression)


def test_calculate_tool_output() -> None:
    """The calculate tool formats integral results without a fraction."""
    assert calculate("pi * 0 + 9 / 3") == "pi * 0 + 9 / 3 = 3"

    tool = FunctionTool("calculate", calculate)
    assert tool.validate_params({}) is not None
    assert tool.execute({"expression": "6 * 7"}, threading.Event()).llm_content == "6 * 7 = 42"
