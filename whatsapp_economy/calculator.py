"""Safe arithmetic evaluation for the calc command.

Expressions are parsed with ``ast`` and only whitelisted nodes are
evaluated; names resolve to a fixed table of math functions and constants.
"""

from __future__ import annotations

import ast
import math
import operator
from typing import Any, Callable

MAX_EXPRESSION_LENGTH = 200
MAX_EXPONENT = 1000

_BINARY_OPS: dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

_UNARY_OPS: dict[type, Callable[[Any], Any]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}

FUNCTIONS: dict[str, Callable[..., Any]] = {
    "sqrt": math.sqrt,
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
    "log": math.log10,
    "ln": math.log,
    "abs": abs,
    "ceil": math.ceil,
    "floor": math.floor,
    "round": round,
    "max": max,
    "min": min,
}

CONSTANTS: dict[str, float] = {
    "pi": math.pi,
    "e": math.e,
}


class CalculationError(ValueError):
    """Expression is malformed, unsupported or has no finite result."""


def evaluate(expression: str) -> int | float:
    expr = (
        expression.strip()
        .replace("^", "**")
        .replace("×", "*")
        .replace("÷", "/")
    )
    if not expr:
        raise CalculationError("Empty expression")
    if len(expr) > MAX_EXPRESSION_LENGTH:
        raise CalculationError("Expression too long")
    try:
        tree = ast.parse(expr, mode="eval")
    except SyntaxError as e:
        raise CalculationError("Invalid expression") from e

    result = _eval(tree.body)
    if isinstance(result, float) and not math.isfinite(result):
        raise CalculationError("Result is not a finite number")
    return result


def format_result(value: int | float) -> str:
    if isinstance(value, float):
        if value.is_integer() and abs(value) < 1e15:
            return str(int(value))
        return f"{value:.10g}"
    return str(value)


def _eval(node: ast.AST) -> Any:
    if isinstance(node, ast.Constant):
        if isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
            return node.value
        raise CalculationError("Only numbers are allowed")

    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
        left = _eval(node.left)
        right = _eval(node.right)
        if isinstance(node.op, ast.Pow) and abs(right) > MAX_EXPONENT:
            raise CalculationError("Exponent too large")
        try:
            value = _BINARY_OPS[type(node.op)](left, right)
        except ZeroDivisionError:
            raise CalculationError("Division by zero") from None
        except OverflowError:
            raise CalculationError("Result too large") from None
        if isinstance(value, complex):
            raise CalculationError("Result is not a real number")
        return value

    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_eval(node.operand))

    if isinstance(node, ast.Name):
        if node.id in CONSTANTS:
            return CONSTANTS[node.id]
        raise CalculationError(f"Unknown name '{node.id}'")

    if isinstance(node, ast.Call):
        if not isinstance(node.func, ast.Name) or node.func.id not in FUNCTIONS or node.keywords:
            raise CalculationError("Unsupported function")
        args = [_eval(a) for a in node.args]
        try:
            return FUNCTIONS[node.func.id](*args)
        except (ValueError, TypeError, OverflowError) as e:
            raise CalculationError(f"{node.func.id}: {e}") from None

    raise CalculationError(f"Unsupported syntax: {type(node).__name__}")
