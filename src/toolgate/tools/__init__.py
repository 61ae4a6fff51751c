"""
Tool registry for toolgate.

This module provides a decorator to register tools in a catalogue, the :class:`BaseTool` contract
every tool implements, and a per-session :class:`ToolRegistry` to look tools up by name.
Tools are either :class:`BaseTool` subclasses or plain functions that accept keyword arguments;
functions are wrapped in a :class:`FunctionTool` whose parameter schema is derived from the
signature.
"""

import importlib
import inspect
import logging
import threading
from abc import (
    ABC,
    abstractmethod,
)
from pathlib import Path
from typing import (
    Any,
    Callable,
    ClassVar,
    Dict,
    Iterable,
    List,
    Mapping,
    Type,
    Union,
    get_type_hints,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    ValidationError,
    create_model,
)

from toolgate.core.schema import (
    ConfirmationDetails,
    ToolDeclaration,
    ToolResult,
)

logger = logging.getLogger(__name__)

ToolFactory = Union[Type["BaseTool"], Callable[..., Any]]

TOOL_CATALOGUE: Dict[str, ToolFactory] = {}
"""Global catalogue of tool classes and functions, keyed by tool name."""

# Modules whose import populates the catalogue with the built-in tools
_BUILTIN_MODULES = (
    "toolgate.tools.file_tools",
    "toolgate.tools.search_tools",
    "toolgate.tools.shell_tools",
    "toolgate.tools.calculator",
)


def register_tool(name: str) -> Callable:
    """
    Register a tool class or function with the given name.

    The decorator works on :class:`BaseTool` subclasses and on plain functions:
        @register_tool("my_tool")
        def my_tool_function(arg1: str, arg2: int = 0) -> str:
            \"\"\"Describe what the tool does (sent to the model).\"\"\"
            return result

    Parameters
    ----------
    name: str
        The name of the tool.  This must be unique and is the name the model uses to call it.

    Returns
    -------
    Callable
        A decorator that adds the class or function to :data:`TOOL_CATALOGUE`.

    Raises
    ------
    ValueError
        If a tool with the same name is already registered.
    """
    if name in TOOL_CATALOGUE:
        raise ValueError(f"Tool '{name}' is already registered.")
    logger.debug("Registering tool '%s'", name)

    def wrapper(obj: ToolFactory) -> ToolFactory:
        if inspect.isclass(obj) and issubclass(obj, BaseTool):
            obj.name = name
        TOOL_CATALOGUE[name] = obj
        return obj

    return wrapper


# ---------------------------------------------------------------------------
# Tool contract
# ---------------------------------------------------------------------------
class BaseTool(ABC):
    """
    Base class for every tool.

    Subclasses declare a pydantic ``Params`` model; its JSON schema is what the model sees and
    :meth:`validate_params` checks incoming arguments against it.
    """

    name: ClassVar[str] = ""
    description: ClassVar[str] = ""
    Params: ClassVar[Type[BaseModel]]

    def __init__(self, root: Path | str = "."):
        self.root = Path(root).resolve()

    def declaration(self) -> ToolDeclaration:
        """Return the declaration advertised to the chat backend."""
        return ToolDeclaration(
            name=self.name,
            description=self.description,
            parameters=self.Params.model_json_schema(),
        )

    def parse_params(self, args: Mapping[str, Any]) -> BaseModel:
        """Validate *args* and return the populated ``Params`` instance."""
        return self.Params.model_validate(dict(args))

    def validate_params(self, args: Mapping[str, Any]) -> str | None:
        """Return a human readable error message, or *None* if *args* are valid."""
        try:
            self.parse_params(args)
        except ValidationError as exc:
            details = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'args'}: {err['msg']}"
                for err in exc.errors()
            )
            return f"Invalid parameters for '{self.name}': {details}"
        return None

    def should_confirm_execute(  # pylint: disable=unused-argument
        self, args: Mapping[str, Any]
    ) -> ConfirmationDetails | None:
        """Return confirmation details if running with *args* needs operator approval."""
        return None

    def resource_key(  # pylint: disable=unused-argument
        self, args: Mapping[str, Any]
    ) -> str | None:
        """Return the resource this call mutates, used to serialize concurrent writes."""
        return None

    @abstractmethod
    def execute(self, args: Mapping[str, Any], signal: threading.Event) -> ToolResult:
        """Run the tool. Long-running tools should poll *signal* and stop when it is set."""


class FunctionTool(BaseTool):
    """Adapter that exposes a plain function as a tool."""

    def __init__(self, name: str, fn: Callable[..., Any], root: Path | str = "."):
        super().__init__(root)
        self.fn = fn
        self.name = name  # type: ignore[misc]
        self.description = inspect.getdoc(fn) or ""  # type: ignore[misc]
        self.Params = _params_from_signature(name, fn)  # type: ignore[misc]

    def execute(self, args: Mapping[str, Any], signal: threading.Event) -> ToolResult:
        params = self.parse_params(args)
        result = self.fn(**params.model_dump())
        if isinstance(result, ToolResult):
            return result
        return ToolResult(llm_content=str(result), return_display=str(result))


def _params_from_signature(name: str, fn: Callable[..., Any]) -> Type[BaseModel]:
    """Build a pydantic model from the parameters and type hints of *fn*."""
    sig = inspect.signature(fn)
    type_hints = get_type_hints(fn)
    fields: Dict[str, Any] = {}
    for param_name, param in sig.parameters.items():
        param_type = type_hints.get(param_name, Any)
        default = ... if param.default is inspect.Parameter.empty else param.default
        fields[param_name] = (param_type, default)
    model_name = "".join(part.capitalize() for part in name.split("_")) + "Params"
    return create_model(  # type: ignore[call-overload]
        model_name, __config__=ConfigDict(extra="forbid"), **fields
    )


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
class ToolRegistry:
    """The set of tools available to one chat session."""

    def __init__(self, tools: Iterable[BaseTool] = ()):
        self._tools: Dict[str, BaseTool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: BaseTool) -> None:
        """Add *tool*; names must be unique within the registry."""
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already in the registry.")
        self._tools[tool.name] = tool

    def get(self, name: str) -> BaseTool | None:
        """Return the tool registered as *name*, if any."""
        return self._tools.get(name)

    def names(self) -> List[str]:
        """Return registered tool names in registration order."""
        return list(self._tools)

    def get_declarations(self) -> List[ToolDeclaration]:
        """Return the declarations of every registered tool."""
        return [tool.declaration() for tool in self._tools.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


def load_builtin_tools() -> None:
    """Import the modules that register the built-in tools."""
    for module in _BUILTIN_MODULES:
        importlib.import_module(module)


def instantiate_tool(name: str, root: Path | str = ".") -> BaseTool:
    """Create a tool instance from the catalogue entry *name*."""
    load_builtin_tools()
    factory = TOOL_CATALOGUE.get(name)
    if factory is None:
        raise ValueError(f"Tool '{name}' is not registered.")
    if inspect.isclass(factory) and issubclass(factory, BaseTool):
        return factory(root=root)
    return FunctionTool(name, factory, root=root)


def create_tool_registry(names: Iterable[str], root: Path | str = ".") -> ToolRegistry:
    """
    Build a :class:`ToolRegistry` holding the catalogue tools listed in *names*.

    File and shell tools operate relative to (and never outside of) *root*.
    """
    return ToolRegistry(instantiate_tool(name, root) for name in names)
