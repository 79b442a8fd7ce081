"""Small path-expression evaluator for mapping API responses into evidence.

Supported syntax, applied to decoded JSON (dicts and lists):

    status                  top-level key
    data.items[0].name      dotted keys with bracket indices
    $.data.items[-1]        optional leading ``$`` / ``$.``
    [0].id                  index into a top-level list
    results.0.id            numeric segment indexes a list
    meta["odd.key"]         quoted bracket keys

Lookups never raise: a missing key, out-of-range index or type mismatch at
any step yields ``NOT_FOUND``.
"""

import re
from typing import Any, List, Union

Segment = Union[str, int]


class _NotFound:
    """Sentinel for a path that does not resolve."""

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NOT_FOUND"


NOT_FOUND = _NotFound()

_TOKEN_RE = re.compile(
    r"""
    \[\s*(?P<index>-?\d+)\s*\]              # [0]
    | \[\s*(?P<quote>["'])(?P<qkey>.*?)(?P=quote)\s*\]   # ["key"]
    | (?P<key>[^.\[\]]+)                    # bare key
    | (?P<dot>\.)
    """,
    re.VERBOSE,
)


class PathSyntaxError(ValueError):
    """Raised by ``parse_path`` for an expression it cannot tokenize."""
    pass


def parse_path(path: str) -> List[Segment]:
    """Split a path expression into keys (str) and list indices (int)."""
    expression = path.strip()
    if expression.startswith("$"):
        expression = expression[1:]
        if expression.startswith("."):
            expression = expression[1:]

    segments: List[Segment] = []
    position = 0
    while position < len(expression):
        match = _TOKEN_RE.match(expression, position)
        if not match:
            raise PathSyntaxError(f"Invalid path expression: {path!r}")
        position = match.end()
        if match.group("dot"):
            continue
        if match.group("index") is not None:
            segments.append(int(match.group("index")))
        elif match.group("quote"):
            segments.append(match.group("qkey"))
        else:
            segments.append(match.group("key").strip())
    return segments


def extract_value(data: Any, path: str, default: Any = NOT_FOUND) -> Any:
    """Resolve ``path`` against ``data``; return ``default`` when it does not resolve."""
    if not path or not path.strip():
        return default

    try:
        segments = parse_path(path)
    except PathSyntaxError:
        return default

    current = data
    for segment in segments:
        current = _step(current, segment)
        if current is NOT_FOUND:
            return default
    return current


def _step(node: Any, segment: Segment) -> Any:
    if isinstance(node, dict):
        if segment in node:
            return node[segment]
        if isinstance(segment, int) and str(segment) in node:
            return node[str(segment)]
        return NOT_FOUND

    if isinstance(node, list):
        if isinstance(segment, str):
            if not re.fullmatch(r"-?\d+", segment):
                return NOT_FOUND
            segment = int(segment)
        try:
            return node[segment]
        except IndexError:
            return NOT_FOUND

    return NOT_FOUND


def stringify(value: Any) -> str:
    """Render an extracted value for use in titles and descriptions."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)
