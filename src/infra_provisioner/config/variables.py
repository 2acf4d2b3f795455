"""Input variable substitution.

Resource attributes may use ``${var.<name>}`` to refer to a value declared in
the configuration's ``variables`` section. Substitution happens at load time,
before references between resources are resolved.
"""

from __future__ import annotations

import re
from typing import Any

_VAR = re.compile(r"(?<!\$)\$\{var\.([A-Za-z0-9_\-]+)\}")


class UndefinedVariableError(KeyError):
    """Raised when ``${var.x}`` names an undeclared variable."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"Undefined variable: var.{self.name}"


def _lookup(variables: dict[str, Any], name: str) -> Any:
    if name not in variables:
        raise UndefinedVariableError(name)
    return variables[name]


def substitute_variables(value: Any, variables: dict[str, Any]) -> Any:
    """Replace ``${var.…}`` expressions in string values, recursively.

    A string that is exactly one expression takes the variable's value with
    its type preserved; embedded expressions are interpolated as text.
    """
    if isinstance(value, str):
        full = _VAR.fullmatch(value)
        if full is not None:
            return _lookup(variables, full.group(1))
        return _VAR.sub(lambda m: str(_lookup(variables, m.group(1))), value)
    if isinstance(value, dict):
        return {k: substitute_variables(v, variables) for k, v in value.items()}
    if isinstance(value, list):
        return [substitute_variables(v, variables) for v in value]
    return value
