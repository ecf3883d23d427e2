from __future__ import annotations

from datetime import date

import pytest

from dynamap_py import Schema, ValidationError, attribute, list_of, map_of
from dynamap_py.validation import (
    MaxNameLength,
    SchemaValidator,
    validate_index_name,
    validate_or_raise,
    validate_table_name,
)


def _schema() -> Schema:
    return Schema.define(
        hash_key="email",
        attributes={
            "email": attribute("string", required=True),
            "name": attribute("string", allow_blank=True),
            "nick": attribute("string", allow_null=True),
            "age": attribute("number", default=18),
            "active": "boolean",
            "born": "date",
            "roles": "string_set",
            "scores": "number_set",
            "settings": map_of({"theme": attribute("string", required=True), "size": "number"}),
            "tags": list_of("string"),
            "avatar": "binary",
        },
    )


def _errors(record: dict, *, partial: bool = False) -> dict[str, str]:
    _, errors = SchemaValidator().validate(record, _schema(), partial=partial)
    return {e.path: e.message for e in errors}


def test_valid_record_gets_defaults() -> None:
    out, errors = SchemaValidator().validate(
        {
            "email": "a@b.c",
            "name": "",
            "nick": None,
            "active": "true",
            "born": date(1990, 1, 1),
            "roles": ["admin"],
            "scores": {1, 2.5},
            "settings": {"theme": "dark"},
            "tags": ["x", "y"],
            "avatar": b"\x00",
        },
        _schema(),
    )

    assert errors == []
    assert out["age"] == 18


def test_required_null_and_blank() -> None:
    assert _errors({}) == {"email": "is required"}
    assert _errors({"email": None}) == {"email": "is required"}
    assert _errors({"email": ""}) == {"email": "is not allowed to be empty"}
    assert _errors({"email": "a", "age": None}) == {"age": "must not be null"}


@pytest.mark.parametrize(
    "field, value, message",
    [
        ("age", "12", "must be a number"),
        ("age", True, "must be a number"),
        ("active", "yes", "must be a boolean"),
        ("born", "not a date", "must be a date"),
        ("roles", ["a", 1], "must contain only string_set elements"),
        ("scores", "1", "must contain only number_set elements"),
        ("settings", "dark", "must be a map"),
        ("tags", "x", "must be a list"),
        ("avatar", 12, "must be binary"),
    ],
)
def test_type_shapes(field: str, value: object, message: str) -> None:
    assert _errors({"email": "a", field: value}) == {field: message}


def test_nested_paths() -> None:
    errors = _errors({"email": "a", "settings": {"size": "big"}, "tags": ["ok", 3]})

    assert errors == {
        "settings.theme": "is required",
        "settings.size": "must be a number",
        "tags[1]": "must be a string",
    }


def test_partial_validation_checks_only_present_attributes() -> None:
    assert _errors({"age": 3}, partial=True) == {}
    assert _errors({"email": None}, partial=True) == {"email": "is required"}
    assert _errors({"nick": None, "name": None}, partial=True) == {}


def test_partial_validation_checks_operands() -> None:
    assert _errors({"age": {"$add": 1}, "roles": {"$add": ["x"]}, "tags": {"$add": ["y"]}}, partial=True) == {}
    assert _errors({"roles": {"$del": "x"}}, partial=True) == {}

    assert _errors({"age": {"$add": "1"}}, partial=True) == {"age": "$add requires a number"}
    assert _errors({"name": {"$add": "x"}}, partial=True) == {"name": "$add is not supported for string attributes"}
    assert _errors({"age": {"$del": 1}}, partial=True) == {"age": "$del is not supported for number attributes"}
    assert _errors({"tags": {"$add": "y"}}, partial=True) == {"tags": "$add requires a list"}


def test_validate_or_raise_collects_every_error() -> None:
    with pytest.raises(ValidationError) as exc:
        validate_or_raise(SchemaValidator(), {"age": "x"}, _schema())

    assert {e.path for e in exc.value.errors} == {"email", "age"}
    assert "email: is required" in str(exc.value)


@pytest.mark.parametrize("name", ["users", "my-table_01", "a.b.c", "x" * MaxNameLength])
def test_valid_table_names(name: str) -> None:
    validate_table_name(name)
    validate_index_name(name)


@pytest.mark.parametrize("name", ["ab", "x" * (MaxNameLength + 1), "bad name", "users!"])
def test_invalid_table_names(name: str) -> None:
    with pytest.raises(ValidationError, match="table name"):
        validate_table_name(name)
    with pytest.raises(ValidationError, match="index name"):
        validate_index_name(name)


def test_empty_index_name_is_allowed() -> None:
    validate_index_name("")
