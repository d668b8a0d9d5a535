"""Side-effect-free evaluation of breakpoint conditions and expressions.

Expressions are compiled once and inspected opcode by opcode; anything that
could change program state (assignment, deletion, import, or a call into
arbitrary code) is rejected before evaluation.
"""

from __future__ import annotations

import dis
import re
import threading
import types
from typing import Any, Sequence

from cloudbind.core.exceptions import EvaluationError

_FORBIDDEN_PREFIXES = ("STORE_", "DELETE_", "IMPORT_")
_FORBIDDEN_OPS = frozenset(
    {
        "CALL",
        "CALL_FUNCTION",
        "CALL_FUNCTION_KW",
        "CALL_FUNCTION_EX",
        "CALL_METHOD",
        "CALL_KW",
        "PRECALL",
        "YIELD_VALUE",
        "SETUP_WITH",
        "BEFORE_WITH",
    }
)

_PLACEHOLDER = re.compile(r"\$(\$|\d+)")

_cache: dict[str, types.CodeType] = {}
_cache_lock = threading.Lock()


def compile_expression(expression: str) -> types.CodeType:
    """Compile ``expression`` and verify it cannot mutate state.

    Raises
    ------
    EvaluationError
        On a syntax error or a forbidden operation.
    """
    with _cache_lock:
        code = _cache.get(expression)
    if code is not None:
        return code
    try:
        code = compile(expression, "<expression>", "eval")
    except SyntaxError as exc:
        raise EvaluationError(f"Invalid expression: {exc.msg}") from None
    _check(code)
    with _cache_lock:
        _cache[expression] = code
    return code


def _check(code: types.CodeType) -> None:
    for instruction in dis.get_instructions(code):
        name = instruction.opname
        if name in _FORBIDDEN_OPS or name.startswith(_FORBIDDEN_PREFIXES):
            raise EvaluationError(
                f"Expression not allowed: {name.lower()} operations may change program state"
            )
    for const in code.co_consts:
        if isinstance(const, types.CodeType):
            _check(const)


def evaluate(expression: str, frame: types.FrameType) -> Any:
    """Evaluate ``expression`` in the scope of ``frame``."""
    code = compile_expression(expression)
    try:
        return eval(code, frame.f_globals, dict(frame.f_locals))
    except Exception as exc:
        raise EvaluationError(f"{type(exc).__name__}: {exc}") from None


def format_message(fmt: str, values: Sequence[str]) -> str:
    """Substitute ``$0``, ``$1``... in ``fmt``; ``$$`` is a literal ``$``."""

    def substitute(match: re.Match[str]) -> str:
        token = match.group(1)
        if token == "$":
            return "$"
        index = int(token)
        if index < len(values):
            return values[index]
        return match.group(0)

    return _PLACEHOLDER.sub(substitute, fmt)
