"""Reference expressions inside resource attributes.

A reference is written ``${<name>.<attribute path>}`` where ``<name>`` is the
logical name of another declared resource and the path is dot-separated
(integer segments index into lists), e.g. ``${net.id}`` or
``${vnet.subnets.0.id}``.

- A string that consists of exactly one expression resolves to the referenced
  value with its type preserved.
- Expressions embedded in a longer string are interpolated as text.
- ``$${`` escapes a literal ``${``.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

UNKNOWN = "(known after apply)"

_EXPR = re.compile(r"(?<!\$)\$\{([^}]*)\}")
_SEGMENT = re.compile(r"^[A-Za-z0-9_\-]+$")


class ReferenceSyntaxError(ValueError):
    """Raised for a malformed ``${...}`` expression."""


class AttributeNotFound(LookupError):
    """Raised when an attribute path does not exist on a resource."""


@dataclass(frozen=True, slots=True)
class Reference:
    """A parsed ``${name.path}`` expression."""

    name: str
    path: tuple[str, ...]

    @property
    def expression(self) -> str:
        return ".".join((self.name, *self.path))

    def __str__(self) -> str:
        return f"${{{self.expression}}}"

    @classmethod
    def parse(cls, expression: str) -> Reference:
        segments = expression.strip().split(".")
        if len(segments) < 2 or not all(_SEGMENT.match(s) for s in segments):
            raise ReferenceSyntaxError(
                f"Malformed reference '${{{expression}}}': expected '${{name.attribute}}'"
            )
        return cls(name=segments[0], path=tuple(segments[1:]))


def find_references(value: Any) -> list[Reference]:
    """Collect references from a (nested) attribute value, in first-seen order."""
    found: list[Reference] = []

    def _walk(v: Any) -> None:
        if isinstance(v, str):
            for match in _EXPR.finditer(v):
                ref = Reference.parse(match.group(1))
                if ref not in found:
                    found.append(ref)
        elif isinstance(v, dict):
            for item in v.values():
                _walk(item)
        elif isinstance(v, list | tuple):
            for item in v:
                _walk(item)

    _walk(value)
    return found


def lookup_path(attributes: Mapping[str, Any], path: tuple[str, ...]) -> Any:
    """Resolve a dot path in nested dicts/lists.

    Raises:
        AttributeNotFound: If a segment does not exist.
    """
    current: Any = attributes
    for segment in path:
        if isinstance(current, dict) and segment in current:
            current = current[segment]
        elif isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
            current = current[int(segment)]
        else:
            raise AttributeNotFound(".".join(path))
    return current


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


def _resolve_string(value: str, lookup: Callable[[Reference], Any]) -> Any:
    matches = list(_EXPR.finditer(value))
    if not matches:
        return value.replace("$${", "${")

    if len(matches) == 1 and matches[0].span() == (0, len(value)):
        return lookup(Reference.parse(matches[0].group(1)))

    unknown = False

    def _sub(match: re.Match[str]) -> str:
        nonlocal unknown
        resolved = lookup(Reference.parse(match.group(1)))
        if resolved == UNKNOWN:
            unknown = True
        return _as_text(resolved)

    text = _EXPR.sub(_sub, value)
    if unknown:
        return UNKNOWN
    return text.replace("$${", "${")


def resolve_references(value: Any, lookup: Callable[[Reference], Any]) -> Any:
    """Replace every reference in *value* with ``lookup(ref)``, recursively."""
    if isinstance(value, str):
        return _resolve_string(value, lookup)
    if isinstance(value, dict):
        return {k: resolve_references(v, lookup) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [resolve_references(v, lookup) for v in value]
    return value


def contains_unknown(value: Any) -> bool:
    """Return True if *value* contains the unknown marker anywhere."""
    if isinstance(value, str):
        return value == UNKNOWN
    if isinstance(value, dict):
        return any(contains_unknown(v) for v in value.values())
    if isinstance(value, list | tuple):
        return any(contains_unknown(v) for v in value)
    return False
