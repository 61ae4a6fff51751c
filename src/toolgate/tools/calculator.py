"""The ``calculate`` tool: arithmetic on numbers, evaluated without ``eval``."""

import ast
import math
import operator
from typing import (
    Any,
    Callable,
    Dict,
)

from toolgate.tools import register_tool

_BINARY_OPS: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

_UNARY_OPS: Dict[type, Callable[[Any], Any]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}

_FUNCTIONS: Dict[str, Callable[..., float]] = {
    "sqrt": math.sqrt,
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
    "log": math.log,
    "exp": math.exp,
    "abs": abs,
    "round": round,
}

_CONSTANTS = {"pi": math.pi, "e": math.e}

MAX_EXPONENT = 1000
MAX_RESULT_BITS = 10_000


class CalculationError(ValueError):
    """Raised for expressions the evaluator refuses or cannot compute."""


def evaluate_expression(expression: str) -> float | int:
    """
    Evaluate an arithmetic expression.

    Supports ``+ - * / // % **`` (``^`` is accepted as power), parentheses, the constants
    ``pi`` and ``e`` and a few math functions such as ``sqrt``.
    """
    try:
        tree = ast.parse(expression.replace("^", "**"), mode="eval")
    except SyntaxError as exc:
        raise CalculationError(f"Invalid expression: {expression!r}") from exc
    return _eval(tree.body)


def _check_power(base: Any, exponent: Any) -> None:
    """Refuse powers whose exponent or result would be unreasonably large."""
    if abs(exponent) > MAX_EXPONENT:
        raise CalculationError(f"Exponent too large: {exponent}")
    # Bit length of the result, estimated without computing it
    if exponent > 0 and abs(base) > 1 and exponent * math.log2(abs(base)) > MAX_RESULT_BITS:
        raise CalculationError("Result too large")


def _eval(node: ast.AST) -> Any:
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)):
        return node.value
    if isinstance(node, ast.Name) and node.id in _CONSTANTS:
        return _CONSTANTS[node.id]
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
        left, right = _eval(node.left), _eval(node.right)
        if isinstance(node.op, ast.Pow):
            _check_power(left, right)
        try:
            return _BINARY_OPS[type(node.op)](left, right)
        except ZeroDivisionError as exc:
            raise CalculationError("Division by zero") from exc
        except OverflowError as exc:
            raise CalculationError(f"Result too large: {exc}") from exc
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_eval(node.operand))
    if (
        isinstance(node, ast.Call)
        and isinstance(node.func, ast.Name)
        and node.func.id in _FUNCTIONS
        and not node.keywords
    ):
        try:
            return _FUNCTIONS[node.func.id](*[_eval(arg) for arg in node.args])
        except (TypeError, ValueError, OverflowError) as exc:
            raise CalculationError(f"{node.func.id}: {exc}") from exc
    raise CalculationError(f"Unsupported element in expression: {ast.dump(node)}")


@register_tool("calculate")
def calculate(expression: str) -> str:
    """Perform mathematical calculations, e.g. "2 + 2", "sqrt(16)" or "pi * 5^2"."""
    result = evaluate_expression(expression)
    if isinstance(result, float) and result.is_integer():
        result = int(result)
    return f"{expression} = {result}"
