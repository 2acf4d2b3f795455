import pytest

from infra_provisioner.config.variables import UndefinedVariableError, substitute_variables

_VARS = {"region": "eu", "size": 3, "tags": ["a", "b"]}


def test_whole_string_keeps_type() -> None:
    assert substitute_variables("${var.size}", _VARS) == 3
    assert substitute_variables("${var.tags}", _VARS) == ["a", "b"]


def test_embedded_interpolates() -> None:
    assert substitute_variables("vm-${var.region}-${var.size}", _VARS) == "vm-eu-3"


def test_nested_structures() -> None:
    value = {"a": ["${var.region}", {"b": "${var.size}"}], "c": 1}
    assert substitute_variables(value, _VARS) == {"a": ["eu", {"b": 3}], "c": 1}


def test_resource_references_untouched() -> None:
    assert substitute_variables("${net.id}", _VARS) == "${net.id}"


def test_escaped_expression_untouched() -> None:
    assert substitute_variables("$${var.region}", _VARS) == "$${var.region}"


def test_undefined_variable() -> None:
    with pytest.raises(UndefinedVariableError) as exc_info:
        substitute_variables({"x": "${var.nope}"}, _VARS)
    assert exc_info.value.name == "nope"
    assert str(exc_info.value) == "Undefined variable: var.nope"
