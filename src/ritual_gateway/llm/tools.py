"""
Tool catalog -- named local functions an agent may declare and the model may call.

Agents declare tools by name; the GenerationService only executes a tool if
the current agent declares it. Handlers are async and return text that is
fed back to the model as the tool result.

Built-in tools (example payloads, not engineering contracts):
  get_weather(location)   -- canned weather for a few major cities
  calculate(expression)   -- arithmetic via a restricted AST evaluator (no eval)
  search_files(query)     -- substring search over a mock document list
"""

import ast
import logging
import math
import operator
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

MAX_EXPRESSION_LENGTH = 200
MAX_EXPONENT = 100
# Every intermediate value stays below 10 ** MAX_RESULT_DIGITS in magnitude.
MAX_RESULT_DIGITS = 300
_MAX_MAGNITUDE = 10**MAX_RESULT_DIGITS


@dataclass(frozen=True)
class ToolSpec:
    """A tool that an agent can invoke."""

    name: str
    description: str
    parameters: dict[str, Any]  # JSON Schema for the arguments object
    handler: Callable[..., Awaitable[str]] = field(compare=False)

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


class ToolCatalog:
    """Name -> ToolSpec lookup. Read-only after startup."""

    def __init__(self, tools: list[ToolSpec] | None = None):
        self._tools: dict[str, ToolSpec] = {}
        for spec in tools or []:
            self.add(spec)

    def add(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool '{spec.name}' already defined")
        self._tools[spec.name] = spec

    def get(self, name: str) -> ToolSpec | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    async def execute(self, name: str, arguments: dict[str, Any]) -> str:
        """Run a tool. Raises KeyError for unknown tools; handler errors propagate."""
        spec = self._tools[name]
        logger.debug(f"[Tools] Executing {name}({list(arguments)})")
        return await spec.handler(**arguments)


# =============================================================================
# BUILT-IN TOOLS
# =============================================================================

_WEATHER = {
    "new york": "Sunny, 72°F",
    "london": "Cloudy, 61°F",
    "tokyo": "Rainy, 68°F",
    "paris": "Partly cloudy, 65°F",
    "sydney": "Clear, 78°F",
}

_MOCK_FILES = [
    "quarterly_report_q3.pdf",
    "budget_2024.xlsx",
    "meeting_notes.docx",
    "project_proposal.pptx",
    "user_manual.pdf",
    "financial_data.csv",
]


async def get_weather(location: str) -> str:
    weather = _WEATHER.get(location.strip().lower())
    if weather is None:
        return f"Weather data not available for {location}. Please try a major city."
    return f"{location}: {weather}"


_BINARY_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}
_UNARY_OPS = {ast.UAdd: operator.pos, ast.USub: operator.neg}


def _bounded(value: float) -> float:
    if isinstance(value, complex):
        raise ValueError("result is not a real number")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError("result out of range")
    if abs(value) > _MAX_MAGNITUDE:
        raise ValueError("result too large")
    return value


def _check_power(base: float, exponent: float) -> None:
    if abs(exponent) > MAX_EXPONENT:
        raise ValueError("exponent too large")
    if base and exponent * math.log10(abs(base)) > MAX_RESULT_DIGITS:
        raise ValueError("result too large")


def _evaluate(node: ast.AST) -> float:
    if isinstance(node, ast.Expression):
        return _evaluate(node.body)
    if (
        isinstance(node, ast.Constant)
        and isinstance(node.value, (int, float))
        and not isinstance(node.value, bool)
    ):
        return _bounded(node.value)
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
        left, right = _evaluate(node.left), _evaluate(node.right)
        if isinstance(node.op, ast.Pow):
            _check_power(left, right)
        return _bounded(_BINARY_OPS[type(node.op)](left, right))
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_evaluate(node.operand))
    raise ValueError(f"unsupported expression element: {type(node).__name__}")


def safe_calculate(expression: str) -> float:
    """Evaluate an arithmetic expression. Raises ValueError on anything else.

    Powers are checked before they are computed, so nested exponentiation
    cannot produce huge integers or overflow floats.
    """
    if len(expression) > MAX_EXPRESSION_LENGTH:
        raise ValueError("expression too long")
    try:
        tree = ast.parse(expression.strip(), mode="eval")
    except SyntaxError as e:
        raise ValueError(f"invalid syntax: {e.msg}") from e
    try:
        return _evaluate(tree)
    except ArithmeticError as e:
        raise ValueError(f"arithmetic error: {e}") from e


async def calculate(expression: str) -> str:
    try:
        result = safe_calculate(expression)
        if isinstance(result, float) and result.is_integer():
            result = int(result)
        return f"{expression} = {result}"
    except ValueError:
        return (
            f"Invalid mathematical expression: {expression}. "
            f"Please use basic arithmetic."
        )


async def search_files(query: str) -> str:
    needle = query.lower()
    results = [f for f in _MOCK_FILES if needle in f.lower()]
    if not results:
        return (
            f'No files found matching "{query}". Available files include '
            f"reports, budgets, notes, and manuals."
        )
    return f'Found {len(results)} file(s) matching "{query}": {", ".join(results)}'


def _single_string_param(name: str, description: str) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {name: {"type": "string", "description": description}},
        "required": [name],
    }


def default_tool_catalog() -> ToolCatalog:
    """Catalog with the built-in tools used by the built-in agents."""
    return ToolCatalog([
        ToolSpec(
            name="get_weather",
            description="Get weather information for a given location",
            parameters=_single_string_param("location", "The location to get weather for"),
            handler=get_weather,
        ),
        ToolSpec(
            name="calculate",
            description="Perform mathematical calculations with expressions",
            parameters=_single_string_param(
                "expression", 'Arithmetic expression, e.g. "2 + 2" or "15 * 0.18"'
            ),
            handler=calculate,
        ),
        ToolSpec(
            name="search_files",
            description="Search for files by name or content",
            parameters=_single_string_param("query", "Search query for finding files"),
            handler=search_files,
        ),
    ])
