"""Conversion between application records and store values.

Two layers live here. The document layer (``serialize_item``, ``build_key``,
``serialize_item_for_update``, ``deserialize_item``) applies the schema's semantic
types to plain Python values. The wire layer (``to_wire_item``, ``from_wire_item``)
marshals document values to DynamoDB AttributeValue maps with boto3's type
serializers.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

from boto3.dynamodb.types import Binary, TypeDeserializer, TypeSerializer

from .model import (
    BINARY,
    BINARY_SET,
    BOOLEAN,
    DATE,
    LIST,
    MAP,
    NUMBER_SET,
    STRING_SET,
    AttributeDefinition,
    Schema,
)


@dataclass(frozen=True)
class SetValue:
    value: Any


@dataclass(frozen=True)
class AddValue:
    value: Any


@dataclass(frozen=True)
class RemoveValue:
    value: Any


@dataclass(frozen=True)
class DeleteAttribute:
    pass


type UpdateOp = SetValue | AddValue | RemoveValue | DeleteAttribute


def serialize_date(value: Any) -> Any:
    if isinstance(value, datetime):
        dt = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day, tzinfo=UTC)
    elif isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        dt = datetime.fromtimestamp(float(value) / 1000.0, tz=UTC)
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value)
        except ValueError:
            return value
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=UTC)
    else:
        return value

    return dt.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def serialize_boolean(value: Any) -> bool:
    return bool(value) and value != "false"


def serialize_binary(value: Any) -> Any:
    if isinstance(value, str):
        return value.encode("utf-8")
    if isinstance(value, bytearray):
        return bytes(value)
    if isinstance(value, Binary):
        return value.value
    return value


def _elements(value: Any) -> list[Any]:
    if isinstance(value, (set, frozenset, list, tuple)):
        return list(value)
    return [value]


def _serialize_set(value: Any, type_: str) -> set[Any] | None:
    elements = _elements(value)
    if type_ == BINARY_SET:
        elements = [serialize_binary(v) for v in elements]
    out = set(elements)
    if not out:
        return None
    return out


def serialize_attribute(value: Any, attr: AttributeDefinition | None) -> Any:
    # Unknown attributes (dynamic keys) pass through untouched.
    if attr is None or value is None:
        return value

    type_ = attr.type
    if type_ == DATE:
        return serialize_date(value)
    if type_ == BOOLEAN:
        return serialize_boolean(value)
    if type_ == BINARY:
        return serialize_binary(value)
    if type_ in {STRING_SET, NUMBER_SET, BINARY_SET}:
        return _serialize_set(value, type_)
    return value


def _serialize_value(value: Any, attr: AttributeDefinition | None, *, return_nulls: bool) -> Any:
    if attr is None or value is None:
        return value
    if attr.type == MAP and attr.children is not None and isinstance(value, Mapping):
        return _serialize_map(value, attr.children, return_nulls=return_nulls, expected=False)
    if attr.type == LIST and attr.element is not None and isinstance(value, (list, tuple)):
        return [_serialize_value(v, attr.element, return_nulls=return_nulls) for v in value]
    if value == "" and attr.allow_blank:
        return None
    return serialize_attribute(value, attr)


def _serialize_map(
    record: Mapping[str, Any],
    attrs: Mapping[str, AttributeDefinition],
    *,
    return_nulls: bool,
    expected: bool,
) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in record.items():
        if expected and isinstance(value, Mapping) and isinstance(value.get("Exists"), bool):
            out[key] = dict(value)
            continue

        serialized = _serialize_value(value, attrs.get(key), return_nulls=return_nulls)
        if serialized is None and not return_nulls:
            continue

        out[key] = {"Value": serialized} if expected else serialized
    return out


def serialize_item(
    schema: Schema,
    item: Mapping[str, Any] | None,
    *,
    return_nulls: bool = False,
    expected: bool = False,
) -> dict[str, Any] | None:
    if not item:
        return None
    return _serialize_map(item, schema.attributes, return_nulls=return_nulls, expected=expected)


def build_key(
    schema: Schema,
    hash_or_record: Any,
    range_value: Any | None = None,
    *,
    include_index_keys: bool = True,
) -> dict[str, Any]:
    obj: dict[str, Any] = {}

    if isinstance(hash_or_record, Mapping):
        record = hash_or_record
        obj[schema.hash_key] = record.get(schema.hash_key)
        if schema.range_key is not None and record.get(schema.range_key) is not None:
            obj[schema.range_key] = record[schema.range_key]

        if include_index_keys:
            for idx in schema.global_indexes:
                if idx.hash_key in record:
                    obj[idx.hash_key] = record[idx.hash_key]
                if idx.range_key is not None and idx.range_key in record:
                    obj[idx.range_key] = record[idx.range_key]
            for idx in schema.local_indexes:
                if idx.range_key is not None and idx.range_key in record:
                    obj[idx.range_key] = record[idx.range_key]
    else:
        obj[schema.hash_key] = hash_or_record
        if schema.range_key is not None and range_value is not None:
            obj[schema.range_key] = range_value

    return serialize_item(schema, obj) or {}


def serialize_item_for_update(
    schema: Schema,
    default_action: str,
    record: Mapping[str, Any],
) -> dict[str, UpdateOp]:
    ops: dict[str, UpdateOp] = {}
    for key, value in record.items():
        if schema.is_key(key):
            continue

        attr = schema.attribute(key)
        operand = isinstance(value, Mapping) and (attr is None or attr.type != MAP)
        if value is None:
            ops[key] = DeleteAttribute()
        elif operand and "$add" in value:
            ops[key] = AddValue(serialize_attribute(value["$add"], attr))
        elif operand and "$del" in value:
            ops[key] = RemoveValue(serialize_attribute(value["$del"], attr))
        elif default_action == "ADD":
            ops[key] = AddValue(serialize_attribute(value, attr))
        else:
            serialized = _serialize_value(value, attr, return_nulls=False)
            ops[key] = DeleteAttribute() if serialized is None else SetValue(serialized)
    return ops


def _ordered(elements: list[Any]) -> list[Any]:
    try:
        return sorted(elements)
    except TypeError:
        return elements


def _deserialize_attribute(value: Any) -> Any:
    if isinstance(value, (set, frozenset)):
        return _ordered([_deserialize_attribute(v) for v in value])
    if isinstance(value, Binary):
        return value.value
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return int(value)
        return float(value)

    values = getattr(value, "values", None)
    if isinstance(values, list) and isinstance(getattr(value, "type", None), str):
        return list(values)
    return value


def _deserialize(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _deserialize(v) for key, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_deserialize(v) for v in value]
    return _deserialize_attribute(value)


def deserialize_item(item: Mapping[str, Any] | None) -> dict[str, Any] | None:
    if item is None:
        return None
    return _deserialize(item)


_type_serializer = TypeSerializer()
_type_deserializer = TypeDeserializer()


def _prepare(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, Mapping):
        return {str(k): _prepare(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_prepare(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return {_prepare(v) for v in value}
    if isinstance(value, bytearray):
        return bytes(value)
    return value


def to_wire_value(value: Any) -> dict[str, Any]:
    return _type_serializer.serialize(_prepare(value))


def to_wire_item(item: Mapping[str, Any]) -> dict[str, Any]:
    return {key: to_wire_value(value) for key, value in item.items()}


def from_wire_item(item: Mapping[str, Any] | None) -> dict[str, Any] | None:
    if item is None:
        return None
    return {key: _type_deserializer.deserialize(value) for key, value in item.items()}
