from __future__ import annotations

import uuid
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any, NamedTuple

from .errors import SchemaError

STRING = "string"
NUMBER = "number"
BOOLEAN = "boolean"
DATE = "date"
BINARY = "binary"
STRING_SET = "string_set"
NUMBER_SET = "number_set"
BINARY_SET = "binary_set"
MAP = "map"
LIST = "list"
UUID = "uuid"
TIMEUUID = "timeuuid"

WIRE_TYPES: dict[str, str] = {
    STRING: "S",
    NUMBER: "N",
    BOOLEAN: "BOOL",
    DATE: "S",
    BINARY: "B",
    STRING_SET: "SS",
    NUMBER_SET: "NS",
    BINARY_SET: "BS",
    MAP: "M",
    LIST: "L",
    UUID: "S",
    TIMEUUID: "S",
}

SET_TYPES = frozenset({STRING_SET, NUMBER_SET, BINARY_SET})
KEY_WIRE_TYPES = frozenset({"S", "N", "B"})

_TABLE_HASH = "__TABLE_HASH__"


class _Missing:
    def __repr__(self) -> str:  # pragma: no cover
        return "MISSING"


MISSING: Any = _Missing()


@dataclass(frozen=True)
class AttributeDefinition:
    type: str
    required: bool = False
    allow_null: bool = False
    allow_blank: bool = False
    default: Any = MISSING
    default_factory: Callable[[], Any] | None = None
    children: Mapping[str, AttributeDefinition] | None = None
    element: AttributeDefinition | None = None

    @property
    def wire_type(self) -> str:
        return WIRE_TYPES[self.type]

    @property
    def is_set(self) -> bool:
        return self.type in SET_TYPES

    @property
    def has_default(self) -> bool:
        return self.default is not MISSING or self.default_factory is not None

    def default_value(self) -> Any:
        if self.default_factory is not None:
            return self.default_factory()
        if self.default is MISSING:
            return None
        return self.default


def _uuid4() -> str:
    return str(uuid.uuid4())


def _uuid1() -> str:
    return str(uuid.uuid1())


def attribute(
    type_: str,
    *,
    required: bool = False,
    allow_null: bool = False,
    allow_blank: bool = False,
    default: Any = MISSING,
    default_factory: Callable[[], Any] | None = None,
) -> AttributeDefinition:
    if type_ not in WIRE_TYPES:
        raise SchemaError(f"unsupported attribute type: {type_}")
    if default is not MISSING and default_factory is not None:
        raise SchemaError("attribute: cannot set both default and default_factory")

    if type_ == UUID and default is MISSING and default_factory is None:
        default_factory = _uuid4
    if type_ == TIMEUUID and default is MISSING and default_factory is None:
        default_factory = _uuid1

    return AttributeDefinition(
        type=type_,
        required=required,
        allow_null=allow_null,
        allow_blank=allow_blank,
        default=default,
        default_factory=default_factory,
    )


def map_of(children: Mapping[str, Any], **options: Any) -> AttributeDefinition:
    resolved = {name: _coerce_definition(name, decl) for name, decl in children.items()}
    return replace(attribute(MAP, **options), children=resolved)


def list_of(element: Any, **options: Any) -> AttributeDefinition:
    return replace(attribute(LIST, **options), element=_coerce_definition("[]", element))


def _coerce_definition(name: str, decl: Any) -> AttributeDefinition:
    if isinstance(decl, AttributeDefinition):
        return decl
    if isinstance(decl, str):
        return attribute(decl)
    if isinstance(decl, Mapping):
        return map_of(decl)
    if isinstance(decl, (list, tuple)) and len(decl) == 1:
        return list_of(decl[0])
    raise SchemaError(f"invalid attribute declaration for {name}: {decl!r}")


@dataclass(frozen=True)
class Projection:
    type: str
    fields: tuple[str, ...] = ()

    @staticmethod
    def all() -> Projection:
        return Projection(type="ALL")

    @staticmethod
    def keys_only() -> Projection:
        return Projection(type="KEYS_ONLY")

    @staticmethod
    def include(*fields: str) -> Projection:
        return Projection(type="INCLUDE", fields=tuple(fields))

    def to_wire(self) -> dict[str, Any]:
        proj: dict[str, Any] = {"ProjectionType": self.type}
        if self.type == "INCLUDE" and self.fields:
            proj["NonKeyAttributes"] = list(self.fields)
        return proj


@dataclass(frozen=True)
class IndexDefinition:
    name: str
    type: str
    hash_key: str
    range_key: str | None = None
    projection: Projection = field(default_factory=Projection.all)
    read_capacity: int | None = None
    write_capacity: int | None = None


def gsi(
    name: str,
    *,
    hash_key: str,
    range_key: str | None = None,
    projection: Projection | None = None,
    read_capacity: int | None = None,
    write_capacity: int | None = None,
) -> IndexDefinition:
    return IndexDefinition(
        name=name,
        type="GSI",
        hash_key=hash_key,
        range_key=range_key,
        projection=projection or Projection.all(),
        read_capacity=read_capacity,
        write_capacity=write_capacity,
    )


def lsi(name: str, *, range_key: str, projection: Projection | None = None) -> IndexDefinition:
    return IndexDefinition(
        name=name,
        type="LSI",
        hash_key=_TABLE_HASH,
        range_key=range_key,
        projection=projection or Projection.all(),
    )


@dataclass(frozen=True)
class TimestampPolicy:
    enabled: bool = False
    created_at: str | None = "createdAt"
    updated_at: str | None = "updatedAt"


class KeyAttributes(NamedTuple):
    hash: str
    range: str | None


@dataclass(frozen=True)
class Schema:
    """Key layout, attribute types and indexes of one table.

    Built once at model-definition time. ``table_name`` may be a plain string or a
    zero-argument callable evaluated on every request.
    """

    hash_key: str
    range_key: str | None
    attributes: Mapping[str, AttributeDefinition]
    indexes: tuple[IndexDefinition, ...] = ()
    table_name: str | Callable[[], str] | None = None
    timestamps: TimestampPolicy = field(default_factory=TimestampPolicy)

    def __post_init__(self) -> None:
        attrs = self.attributes
        if not self.hash_key:
            raise SchemaError("hash_key is required")
        if self.hash_key not in attrs:
            raise SchemaError(f"hash key is not a declared attribute: {self.hash_key}")
        if self.range_key is not None:
            if self.range_key not in attrs:
                raise SchemaError(f"range key is not a declared attribute: {self.range_key}")
            if self.range_key == self.hash_key:
                raise SchemaError("range key must differ from hash key")

        for name in (self.hash_key, self.range_key):
            if name is not None and attrs[name].wire_type not in KEY_WIRE_TYPES:
                raise SchemaError(f"key attribute must be S/N/B: {name}")

        resolved: list[IndexDefinition] = []
        seen: set[str] = set()
        for idx in self.indexes:
            if idx.name in seen:
                raise SchemaError(f"duplicate index name: {idx.name}")
            seen.add(idx.name)

            if idx.type not in {"GSI", "LSI"}:
                raise SchemaError(f"unsupported index type: {idx.type}")

            if idx.type == "LSI":
                if idx.hash_key == _TABLE_HASH:
                    idx = replace(idx, hash_key=self.hash_key)
                if idx.hash_key != self.hash_key:
                    raise SchemaError(f"index {idx.name}: local index hash key must be the table hash key")
                if self.range_key is None:
                    raise SchemaError(f"index {idx.name}: local index requires a table range key")
                if idx.range_key is None:
                    raise SchemaError(f"index {idx.name}: local index requires a range key")

            if idx.hash_key not in attrs:
                raise SchemaError(f"index {idx.name}: unknown hash key attribute: {idx.hash_key}")
            if idx.range_key is not None and idx.range_key not in attrs:
                raise SchemaError(f"index {idx.name}: unknown range key attribute: {idx.range_key}")

            for name in (idx.hash_key, idx.range_key):
                if name is not None and attrs[name].wire_type not in KEY_WIRE_TYPES:
                    raise SchemaError(f"index {idx.name}: key attribute must be S/N/B: {name}")

            resolved.append(idx)

        object.__setattr__(self, "indexes", tuple(resolved))

    @classmethod
    def define(
        cls,
        *,
        hash_key: str,
        range_key: str | None = None,
        attributes: Mapping[str, Any] | None = None,
        indexes: Sequence[IndexDefinition] = (),
        table_name: str | Callable[[], str] | None = None,
        timestamps: bool = False,
        created_at: str | None = "createdAt",
        updated_at: str | None = "updatedAt",
    ) -> Schema:
        resolved = {name: _coerce_definition(name, decl) for name, decl in (attributes or {}).items()}

        policy = TimestampPolicy(enabled=timestamps, created_at=created_at, updated_at=updated_at)
        if policy.enabled:
            for name in (policy.created_at, policy.updated_at):
                if name is not None and name not in resolved:
                    resolved[name] = attribute(DATE)

        return cls(
            hash_key=hash_key,
            range_key=range_key,
            attributes=resolved,
            indexes=tuple(indexes),
            table_name=table_name,
            timestamps=policy,
        )

    def resolve_table_name(self, default: str | None = None) -> str:
        name = self.table_name
        if callable(name):
            name = name()
        if not name:
            name = default
        if not name:
            raise SchemaError("table name is required")
        return str(name)

    def attribute(self, name: str) -> AttributeDefinition | None:
        return self.attributes.get(name)

    def attribute_type(self, name: str) -> str | None:
        attr = self.attributes.get(name)
        return attr.type if attr is not None else None

    def wire_type(self, name: str) -> str | None:
        attr = self.attributes.get(name)
        return attr.wire_type if attr is not None else None

    def key_wire_type(self, name: str) -> str:
        wire = self.wire_type(name)
        if wire is None:
            raise SchemaError(f"unknown attribute: {name}")
        if wire not in KEY_WIRE_TYPES:
            raise SchemaError(f"key attribute must be S/N/B: {name} (got {wire})")
        return wire

    def key_attributes(self) -> KeyAttributes:
        return KeyAttributes(self.hash_key, self.range_key)

    def is_key(self, name: str) -> bool:
        return name == self.hash_key or (self.range_key is not None and name == self.range_key)

    def indexes_referencing(self, names: Iterable[str]) -> list[IndexDefinition]:
        wanted = set(names)
        return [
            idx
            for idx in self.indexes
            if idx.hash_key in wanted or (idx.range_key is not None and idx.range_key in wanted)
        ]

    def index(self, name: str) -> IndexDefinition:
        for idx in self.indexes:
            if idx.name == name:
                return idx
        raise SchemaError(f"unknown index: {name}")

    def keys_for(self, index_name: str | None) -> KeyAttributes:
        if index_name is None:
            return self.key_attributes()
        idx = self.index(index_name)
        return KeyAttributes(idx.hash_key, idx.range_key)

    @property
    def global_indexes(self) -> tuple[IndexDefinition, ...]:
        return tuple(idx for idx in self.indexes if idx.type == "GSI")

    @property
    def local_indexes(self) -> tuple[IndexDefinition, ...]:
        return tuple(idx for idx in self.indexes if idx.type == "LSI")
