"""Reference tokens: `${<operation-id>.<field>[.<field>...]}`.

Raw parameter values are compiled once at parse time into typed Reference /
ReferenceTemplate values. Resolution later walks the compiled structure and
looks values up through an explicit table; nothing here reads attributes
reflectively.
"""

import re
from typing import Any, Callable, Iterator, List, Mapping, Sequence

from trlo.domain.models.batch import Reference, ReferenceTemplate
from trlo.domain.models.common import FieldPath, OperationId

OPERATION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
REFERENCE_PATTERN = re.compile(r"\$\{\s*([A-Za-z0-9_-]+)((?:\.[A-Za-z0-9_-]+)+)\s*\}")
TOKEN_START_PATTERN = re.compile(r"\$\{[^}]*\}?")


class FieldPathError(LookupError):
    """Raised when a field path does not exist in a payload."""


class MalformedReferenceError(ValueError):
    """Raised when a `${...}` token is not a valid reference."""

    def __init__(self, token: str):
        self.token = token
        super().__init__(f"malformed reference {token!r}; expected ${{<operation-id>.<field>}}")


def _to_reference(match: "re.Match[str]") -> Reference:
    path = tuple(match.group(2).lstrip(".").split("."))
    return Reference(operation_id=OperationId(match.group(1)), field_path=FieldPath(path))


def compile_value(value: Any) -> Any:
    """Compiles a raw parameter value, replacing reference tokens with typed values.

    A string that is exactly one token becomes a Reference (the resolved value
    keeps its type). A string with tokens embedded in text becomes a
    ReferenceTemplate. Mappings and lists are compiled recursively.
    """
    if isinstance(value, str):
        matches = list(REFERENCE_PATTERN.finditer(value))
        stray = TOKEN_START_PATTERN.search(REFERENCE_PATTERN.sub("", value))
        if stray:
            raise MalformedReferenceError(stray.group(0))
        if not matches:
            return value
        if len(matches) == 1 and matches[0].span() == (0, len(value)):
            return _to_reference(matches[0])
        parts: List[Any] = []
        cursor = 0
        for match in matches:
            if match.start() > cursor:
                parts.append(value[cursor:match.start()])
            parts.append(_to_reference(match))
            cursor = match.end()
        if cursor < len(value):
            parts.append(value[cursor:])
        return ReferenceTemplate(parts=tuple(parts))
    if isinstance(value, Mapping):
        return {str(k): compile_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [compile_value(v) for v in value]
    return value


def iter_references(value: Any) -> Iterator[Reference]:
    """Yields every Reference inside a compiled value, depth first."""
    if isinstance(value, Reference):
        yield value
    elif isinstance(value, ReferenceTemplate):
        yield from value.references
    elif isinstance(value, Mapping):
        for item in value.values():
            yield from iter_references(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_references(item)


def lookup_field(payload: Any, field_path: Sequence[str]) -> Any:
    """Returns the value at `field_path` inside a decoded payload.

    Integer segments index into lists. Raises FieldPathError when any segment
    is missing.
    """
    current = payload
    for depth, segment in enumerate(field_path):
        if isinstance(current, Mapping):
            if segment not in current:
                raise FieldPathError(".".join(field_path[:depth + 1]))
            current = current[segment]
        elif isinstance(current, (list, tuple)) and segment.isdigit():
            index = int(segment)
            if index >= len(current):
                raise FieldPathError(".".join(field_path[:depth + 1]))
            current = current[index]
        else:
            raise FieldPathError(".".join(field_path[:depth + 1]))
    return current


def substitute(value: Any, lookup: Callable[[Reference], Any]) -> Any:
    """Returns a copy of a compiled value with every Reference replaced via `lookup`."""
    if isinstance(value, Reference):
        return lookup(value)
    if isinstance(value, ReferenceTemplate):
        return "".join(
            _as_text(lookup(part)) if isinstance(part, Reference) else part
            for part in value.parts
        )
    if isinstance(value, Mapping):
        return {k: substitute(v, lookup) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [substitute(v, lookup) for v in value]
    return value


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)
