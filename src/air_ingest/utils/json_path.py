"""
Minimal path expressions for picking values out of ad-hoc JSON payloads.

Supported syntax: ``$`` root, ``.name`` members, ``['name']`` quoted members
and ``[0]`` / ``[-1]`` list indices, e.g. ``$.data[0].pm2_5`` or
``$['sensor data'].value``. A leading ``$`` is optional.
"""
import re
from typing import Any, List, Union

from .exceptions import PayloadError

_TOKEN = re.compile(
    r"""\.(?P<member>[^.\[\]]+)"""
    r"""|\[(?P<index>-?\d+)\]"""
    r"""|\[(?P<quote>['"])(?P<quoted>.*?)(?P=quote)\]"""
)

_MISSING = object()


def compile_path(expression: str) -> List[Union[str, int]]:
    expr = expression.strip()
    if expr.startswith("$"):
        expr = expr[1:]
    elif expr and not expr.startswith((".", "[")):
        expr = "." + expr

    steps: List[Union[str, int]] = []
    pos = 0
    while pos < len(expr):
        match = _TOKEN.match(expr, pos)
        if not match:
            raise PayloadError(f"Invalid path expression {expression!r} at offset {pos}")
        if match.group("member") is not None:
            steps.append(match.group("member"))
        elif match.group("index") is not None:
            steps.append(int(match.group("index")))
        else:
            steps.append(match.group("quoted"))
        pos = match.end()
    return steps


def extract(document: Any, expression: str, default: Any = None) -> Any:
    """Evaluate ``expression`` against ``document``; ``default`` when the path does not exist."""
    current = document
    for step in compile_path(expression):
        if isinstance(step, int):
            if not isinstance(current, list) or not -len(current) <= step < len(current):
                return default
            current = current[step]
        else:
            if not isinstance(current, dict):
                return default
            current = current.get(step, _MISSING)
            if current is _MISSING:
                return default
    return current
