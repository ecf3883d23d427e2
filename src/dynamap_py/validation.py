from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Protocol

from boto3.dynamodb.types import Binary

from .errors import FieldError, ValidationError
from .model import (
    BINARY,
    BINARY_SET,
    BOOLEAN,
    DATE,
    LIST,
    MAP,
    NUMBER,
    NUMBER_SET,
    STRING_SET,
    AttributeDefinition,
    Schema,
)

MaxNameLength = 255
_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_.-]+$")

_STRING_TYPES = frozenset({"string", "uuid", "timeuuid"})


def validate_table_name(name: str) -> None:
    if len(name) < 3 or len(name) > MaxNameLength:
        raise ValidationError(f"table name length invalid: {name!r}")
    if _NAME_PATTERN.match(name) is None:
        raise ValidationError(f"table name contains invalid characters: {name!r}")


def validate_index_name(name: str) -> None:
    if not name:
        return
    if len(name) < 3 or len(name) > MaxNameLength:
        raise ValidationError(f"index name length invalid: {name!r}")
    if _NAME_PATTERN.match(name) is None:
        raise ValidationError(f"index name contains invalid characters: {name!r}")


class Validator(Protocol):
    def validate(
        self, record: Mapping[str, Any], schema: Schema, *, partial: bool = False
    ) -> tuple[dict[str, Any], list[FieldError]]: ...


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _is_binary(value: Any) -> bool:
    return isinstance(value, (bytes, bytearray, str, Binary))


def _is_date(value: Any) -> bool:
    if isinstance(value, (datetime, date)) or _is_number(value):
        return True
    if isinstance(value, str):
        try:
            datetime.fromisoformat(value)
        except ValueError:
            return False
        return True
    return False


def _set_elements(value: Any) -> list[Any]:
    if isinstance(value, (set, frozenset, list, tuple)):
        return list(value)
    return [value]


def _check_set(path: str, attr: AttributeDefinition, value: Any) -> list[FieldError]:
    check = {STRING_SET: lambda v: isinstance(v, str), NUMBER_SET: _is_number, BINARY_SET: _is_binary}[attr.type]
    if any(not check(v) for v in _set_elements(value)):
        return [FieldError(path, f"must contain only {attr.type} elements")]
    return []


def _check_value(path: str, attr: AttributeDefinition, value: Any) -> list[FieldError]:
    if value is None:
        if attr.allow_null:
            return []
        return [FieldError(path, "must not be null")]

    type_ = attr.type
    if type_ in _STRING_TYPES:
        if not isinstance(value, str):
            return [FieldError(path, "must be a string")]
        if value == "" and not attr.allow_blank:
            return [FieldError(path, "is not allowed to be empty")]
        return []
    if type_ == NUMBER:
        return [] if _is_number(value) else [FieldError(path, "must be a number")]
    if type_ == BOOLEAN:
        if isinstance(value, bool) or (isinstance(value, str) and value in {"true", "false"}):
            return []
        return [FieldError(path, "must be a boolean")]
    if type_ == DATE:
        return [] if _is_date(value) else [FieldError(path, "must be a date")]
    if type_ == BINARY:
        return [] if _is_binary(value) else [FieldError(path, "must be binary")]
    if attr.is_set:
        return _check_set(path, attr, value)
    if type_ == MAP:
        if not isinstance(value, Mapping):
            return [FieldError(path, "must be a map")]
        if attr.children is None:
            return []
        errors: list[FieldError] = []
        for name, child in attr.children.items():
            if name in value:
                errors.extend(_check_value(f"{path}.{name}", child, value[name]))
            elif child.required:
                errors.append(FieldError(f"{path}.{name}", "is required"))
        return errors
    if type_ == LIST:
        if not isinstance(value, (list, tuple)):
            return [FieldError(path, "must be a list")]
        if attr.element is None:
            return []
        errors = []
        for i, item in enumerate(value):
            errors.extend(_check_value(f"{path}[{i}]", attr.element, item))
        return errors
    return []


def _check_operand(path: str, attr: AttributeDefinition, op: str, operand: Any) -> list[FieldError]:
    if op == "$add":
        if attr.type == NUMBER:
            return [] if _is_number(operand) else [FieldError(path, "$add requires a number")]
        if attr.is_set:
            return _check_set(path, attr, operand)
        if attr.type == LIST:
            return [] if isinstance(operand, (list, tuple)) else [FieldError(path, "$add requires a list")]
        return [FieldError(path, f"$add is not supported for {attr.type} attributes")]

    if not attr.is_set:
        return [FieldError(path, f"$del is not supported for {attr.type} attributes")]
    return _check_set(path, attr, operand)


class SchemaValidator:
    """Default validator: defaults, required attributes, null/blank policy and per-type shape.

    ``partial=True`` checks only the attributes present (updates); required
    attributes may not be removed there, and ``{"$add": v}`` / ``{"$del": v}``
    operands are checked against the attribute type.
    """

    def validate(
        self, record: Mapping[str, Any], schema: Schema, *, partial: bool = False
    ) -> tuple[dict[str, Any], list[FieldError]]:
        out = dict(record)
        errors: list[FieldError] = []

        if not partial:
            for name, attr in schema.attributes.items():
                if name not in out and attr.has_default:
                    out[name] = attr.default_value()

        for name, attr in schema.attributes.items():
            if name not in out:
                if attr.required and not partial:
                    errors.append(FieldError(name, "is required"))
                continue

            value = out[name]
            if value is None and attr.required:
                errors.append(FieldError(name, "is required"))
                continue
            if partial and value is None:
                continue

            if partial and isinstance(value, Mapping) and attr.type != MAP:
                ops = [op for op in ("$add", "$del") if op in value]
                if ops:
                    errors.extend(_check_operand(name, attr, ops[0], value[ops[0]]))
                    continue

            errors.extend(_check_value(name, attr, value))

        return out, errors


def validate_or_raise(
    validator: Validator, record: Mapping[str, Any], schema: Schema, *, partial: bool = False
) -> dict[str, Any]:
    out, errors = validator.validate(record, schema, partial=partial)
    if errors:
        raise ValidationError("validation failed", errors=tuple(errors))
    return out
