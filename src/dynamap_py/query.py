from __future__ import annotations

import base64
import json
from collections.abc import Callable, Iterator, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .errors import ValidationError
from .expressions import ExpressionAttributes, build_condition_term, join_conditions
from .model import BINARY_SET, NUMBER_SET, STRING_SET
from .serializer import build_key, serialize_attribute, to_wire_item

if TYPE_CHECKING:
    from .table import Table

KEY_OPERATORS = frozenset({"=", "<", "<=", ">", ">=", "between", "begins_with"})
SELECT_VALUES = frozenset({"ALL_ATTRIBUTES", "ALL_PROJECTED_ATTRIBUTES", "SPECIFIC_ATTRIBUTES", "COUNT"})

_AV_TAGS = frozenset({"S", "N", "B", "BOOL", "NULL", "SS", "NS", "BS", "L", "M"})


@dataclass(frozen=True)
class Predicate:
    path: str
    op: str
    values: tuple[Any, ...] = ()


@dataclass(frozen=True)
class Page[T]:
    items: list[T]
    last_evaluated_key: dict[str, Any] | None = None
    count: int = 0
    scanned_count: int = 0
    consumed_capacity: Any = None
    index_name: str | None = None

    @property
    def next_cursor(self) -> str | None:
        if not self.last_evaluated_key:
            return None
        return encode_cursor(self.last_evaluated_key, index=self.index_name)


class Paginator[T]:
    """Finite page stream; one wire call per page, ``exhausted`` once no cursor remains."""

    def __init__(self, fetch: Callable[[dict[str, Any] | None], Page[T]], start_key: dict[str, Any] | None) -> None:
        self._fetch = fetch
        self._next_key = start_key
        self.exhausted = False

    def __iter__(self) -> Iterator[Page[T]]:
        return self

    def __next__(self) -> Page[T]:
        if self.exhausted:
            raise StopIteration
        page = self._fetch(self._next_key)
        self._next_key = page.last_evaluated_key
        if not page.last_evaluated_key:
            self.exhausted = True
        return page

    @property
    def last_evaluated_key(self) -> dict[str, Any] | None:
        return self._next_key


def merge_pages[T](pages: Sequence[Page[T]]) -> Page[T]:
    items: list[T] = []
    count = 0
    scanned = 0
    consumed: list[Any] = []
    for page in pages:
        items.extend(page.items)
        count += page.count
        scanned += page.scanned_count
        if page.consumed_capacity is not None:
            consumed.append(page.consumed_capacity)
    return Page(items=items, count=count, scanned_count=scanned, consumed_capacity=consumed or None)


class PredicateBuilder[B]:
    def __init__(self, owner: B, path: str, add: Callable[[Predicate], None], attr_type: str | None) -> None:
        self._owner = owner
        self._path = path
        self._add = add
        self._attr_type = attr_type

    def _push(self, op: str, *values: Any) -> B:
        self._add(Predicate(self._path, op, tuple(values)))
        return self._owner

    def eq(self, value: Any) -> B:
        return self._push("=", value)

    equals = eq

    def ne(self, value: Any) -> B:
        return self._push("<>", value)

    def lt(self, value: Any) -> B:
        return self._push("<", value)

    def lte(self, value: Any) -> B:
        return self._push("<=", value)

    def gt(self, value: Any) -> B:
        return self._push(">", value)

    def gte(self, value: Any) -> B:
        return self._push(">=", value)

    def between(self, low: Any, high: Any) -> B:
        return self._push("between", low, high)

    def begins_with(self, prefix: Any) -> B:
        if self._attr_type is not None and self._attr_type not in {"string", "date", "uuid", "timeuuid"}:
            raise ValidationError(f"begins_with requires a string attribute: {self._path}")
        return self._push("begins_with", prefix)

    def in_(self, values: Sequence[Any]) -> B:
        if isinstance(values, (str, bytes, bytearray, Mapping)):
            raise ValidationError("in_ requires a sequence of values")
        return self._push("in", *values)

    def exists(self) -> B:
        return self._push("exists")

    def not_exists(self) -> B:
        return self._push("not_exists")

    def contains(self, value: Any) -> B:
        return self._push("contains", value)

    def not_contains(self, value: Any) -> B:
        return self._push("not_contains", value)


class _Request[T]:
    _kind = ""

    def __init__(self, table: Table) -> None:
        self._table = table
        self._schema = table.schema
        self._predicates: list[Predicate] = []
        self._filters: list[Predicate] = []
        self._index_name: str | None = None
        self._limit: int | None = None
        self._consistent_read: bool | None = None
        self._start_key: dict[str, Any] | None = None
        self._projection: list[str] | None = None
        self._select: str | None = None
        self._return_consumed_capacity: str | None = None
        self._load_all = False

    def filter(self, path: str) -> PredicateBuilder[Any]:
        return PredicateBuilder(self, path, self._filters.append, self._schema.attribute_type(path))

    def using_index(self, name: str) -> Any:
        if name not in {idx.name for idx in self._schema.indexes}:
            raise ValidationError(f"unknown index: {name}")
        self._index_name = name
        return self

    def limit(self, n: int) -> Any:
        if n <= 0:
            raise ValidationError("limit must be > 0")
        self._limit = n
        return self

    def consistent_read(self, value: bool = True) -> Any:
        self._consistent_read = value
        return self

    def start_key(self, key: Any, range_value: Any | None = None) -> Any:
        if key is None:
            self._start_key = None
        elif isinstance(key, str):
            try:
                self._start_key = decode_cursor(key)
            except ValueError as err:
                raise ValidationError("invalid cursor") from err
        elif _is_wire_item(key):
            self._start_key = dict(key)
        else:
            self._start_key = to_wire_item(build_key(self._schema, key, range_value))
        return self

    def attributes(self, names: Sequence[str] | str) -> Any:
        self._projection = [names] if isinstance(names, str) else list(names)
        return self

    def select(self, value: str) -> Any:
        value = value.upper()
        if value not in SELECT_VALUES:
            raise ValidationError(f"unsupported select: {value}")
        self._select = value
        return self

    def return_consumed_capacity(self, value: str = "TOTAL") -> Any:
        self._return_consumed_capacity = value.upper()
        return self

    def load_all(self) -> Any:
        self._load_all = True
        return self

    def _value_of(self, pred: Predicate) -> Callable[[Any], Any]:
        attr = self._schema.attribute(pred.path)
        # prefixes and set elements are compared raw
        if pred.op == "begins_with":
            return lambda v: v
        if attr is not None and attr.type in {STRING_SET, NUMBER_SET, BINARY_SET} and pred.op not in {
            "=",
            "<>",
        }:
            return lambda v: v
        return lambda v: serialize_attribute(v, attr)

    def _term(self, attrs: ExpressionAttributes, pred: Predicate) -> str:
        return build_condition_term(attrs, pred.path, pred.op, pred.values, value_of=self._value_of(pred))

    def _base_request(self, attrs: ExpressionAttributes, filters: Sequence[Predicate]) -> dict[str, Any]:
        if self._index_name is not None and self._consistent_read:
            if self._schema.index(self._index_name).type == "GSI":
                raise ValidationError("consistent_read is not supported for GSIs")

        req: dict[str, Any] = {"TableName": self._table.table_name()}
        if self._index_name is not None:
            req["IndexName"] = self._index_name
        if self._consistent_read is not None:
            req["ConsistentRead"] = self._consistent_read
        if self._limit is not None:
            req["Limit"] = self._limit
        if self._select is not None:
            req["Select"] = self._select
        if self._return_consumed_capacity is not None:
            req["ReturnConsumedCapacity"] = self._return_consumed_capacity

        filter_expr = join_conditions([self._term(attrs, p) for p in filters])
        if filter_expr is not None:
            req["FilterExpression"] = filter_expr
        if self._projection:
            req["ProjectionExpression"] = ", ".join(attrs.path(name) for name in self._projection)
        return req

    def build_request(self) -> dict[str, Any]:
        raise NotImplementedError

    def _fetch(self, start_key: dict[str, Any] | None) -> Page[T]:
        req = self.build_request()
        if start_key:
            req["ExclusiveStartKey"] = start_key
        resp = self._table.send(self._kind, req)
        return self._table.to_page(resp, self._index_name)

    def pages(self) -> Paginator[T]:
        return Paginator(self._fetch, self._start_key)

    def all(self) -> list[T]:
        return [item for page in self.pages() for item in page.items]

    def exec(self) -> Page[T]:
        paginator = self.pages()
        if self._load_all:
            return merge_pages(list(paginator))
        return next(paginator)

    def _clone_as[R](self, cls: type[R]) -> R:
        other = cls.__new__(cls)
        other.__dict__.update(self.__dict__)
        other.__dict__["_predicates"] = list(self._predicates)
        other.__dict__["_filters"] = list(self._filters)
        return other


class Query[T](_Request[T]):
    _kind = "query"

    def __init__(self, table: Table, hash_value: Any | None = None) -> None:
        super().__init__(table)
        self._hash_value = hash_value
        self._scan_forward: bool | None = None

    def where(self, path: str) -> PredicateBuilder[Query[T]]:
        return PredicateBuilder(self, path, self._predicates.append, self._schema.attribute_type(path))

    def ascending(self) -> Query[T]:
        self._scan_forward = True
        return self

    def descending(self) -> Query[T]:
        self._scan_forward = False
        return self

    def partition(self) -> tuple[list[Predicate], list[Predicate]]:
        """Split predicates into (key condition, filter condition) for the chosen index."""

        keys = self._schema.keys_for(self._index_name)
        candidates = list(self._predicates)
        if self._hash_value is not None:
            candidates.insert(0, Predicate(keys.hash, "=", (self._hash_value,)))

        hash_pred: Predicate | None = None
        range_pred: Predicate | None = None
        demoted: list[Predicate] = []
        for pred in candidates:
            if hash_pred is None and pred.path == keys.hash and pred.op == "=":
                hash_pred = pred
            elif range_pred is None and keys.range is not None and pred.path == keys.range and pred.op in KEY_OPERATORS:
                range_pred = pred
            else:
                demoted.append(pred)

        if hash_pred is None:
            raise ValidationError(f"query requires an equality condition on hash key: {keys.hash}")

        key = [hash_pred] if range_pred is None else [hash_pred, range_pred]
        return key, demoted + self._filters

    def build_request(self) -> dict[str, Any]:
        key, filters = self.partition()
        attrs = ExpressionAttributes()
        key_expr = " AND ".join(self._term(attrs, p) for p in key)

        req = self._base_request(attrs, filters)
        req["KeyConditionExpression"] = key_expr
        if self._scan_forward is not None:
            req["ScanIndexForward"] = self._scan_forward
        return attrs.apply(req)


class Scan[T](_Request[T]):
    _kind = "scan"

    def __init__(self, table: Table) -> None:
        super().__init__(table)
        self._segment: int | None = None
        self._total_segments: int | None = None

    def where(self, path: str) -> PredicateBuilder[Scan[T]]:
        return self.filter(path)

    def segments(self, segment: int, total_segments: int) -> Scan[T]:
        if total_segments <= 0 or segment < 0 or segment >= total_segments:
            raise ValidationError("invalid segment/total_segments")
        self._segment = segment
        self._total_segments = total_segments
        return self

    def build_request(self) -> dict[str, Any]:
        attrs = ExpressionAttributes()
        req = self._base_request(attrs, self._filters)
        if self._segment is not None:
            req["Segment"] = self._segment
            req["TotalSegments"] = self._total_segments
        return attrs.apply(req)


class ParallelScan[T](Scan[T]):
    """A scan divided into ``total_segments`` independently cursorable segments."""

    def __init__(self, table: Table, total_segments: int) -> None:
        super().__init__(table)
        if total_segments <= 0:
            raise ValidationError("total_segments must be > 0")
        self.total_segments = total_segments

    def segment_scans(self) -> list[Scan[T]]:
        out: list[Scan[T]] = []
        for segment in range(self.total_segments):
            scan: Scan[T] = self._clone_as(Scan)
            out.append(scan.segments(segment, self.total_segments))
        return out

    def paginators(self) -> list[Paginator[T]]:
        return [scan.pages() for scan in self.segment_scans()]

    def load_all(self, max_workers: int | None = None) -> list[T]:  # type: ignore[override]
        if max_workers is None:
            max_workers = self.total_segments
        if max_workers <= 0:
            raise ValidationError("max_workers must be > 0")

        scans = self.segment_scans()
        results: list[list[T]] = [[] for _ in scans]
        with ThreadPoolExecutor(max_workers=max_workers) as ex:
            futures = {ex.submit(scan.all): seg for seg, scan in enumerate(scans)}
            for fut, seg in futures.items():
                results[seg] = fut.result()

        out: list[T] = []
        for seg_items in results:
            out.extend(seg_items)
        return out

    def exec(self) -> Page[T]:
        items = self.load_all()
        return Page(items=items, count=len(items))


def _is_wire_item(value: Any) -> bool:
    if not isinstance(value, Mapping) or not value:
        return False
    for av in value.values():
        if not isinstance(av, Mapping) or len(av) != 1 or next(iter(av)) not in _AV_TAGS:
            return False
    return True


def _av_to_json(av: Any) -> Any:
    if not isinstance(av, Mapping) or len(av) != 1:
        raise ValueError("attribute value must be a single-key map")
    (kind, value), *_ = av.items()

    if kind == "B":
        return {"B": base64.b64encode(bytes(value)).decode("ascii")}
    if kind == "BS":
        return {"BS": [base64.b64encode(bytes(v)).decode("ascii") for v in value]}
    if kind == "L":
        return {"L": [_av_to_json(v) for v in value]}
    if kind == "M":
        return {"M": {str(k): _av_to_json(value[k]) for k in sorted(value)}}
    if kind in _AV_TAGS:
        return {kind: value}
    raise ValueError(f"unsupported attribute value type: {kind}")


def _av_from_json(enc: Any) -> Any:
    if not isinstance(enc, Mapping) or len(enc) != 1:
        raise ValueError("attribute value must be a single-key map")
    (kind, value), *_ = enc.items()

    if kind == "B":
        return {"B": base64.b64decode(value)}
    if kind == "BS":
        return {"BS": [base64.b64decode(v) for v in value]}
    if kind == "L":
        return {"L": [_av_from_json(v) for v in value]}
    if kind == "M":
        return {"M": {str(k): _av_from_json(v) for k, v in value.items()}}
    if kind in _AV_TAGS:
        return {kind: value}
    raise ValueError(f"unsupported attribute value type: {kind}")


def encode_cursor(last_key: Mapping[str, Any], *, index: str | None = None) -> str:
    payload: dict[str, Any] = {"lastKey": {str(k): _av_to_json(last_key[k]) for k in sorted(last_key)}}
    if index is not None:
        payload["index"] = index
    data = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    return base64.urlsafe_b64encode(data).decode("ascii")


def decode_cursor(cursor: str) -> dict[str, Any]:
    raw = str(cursor or "").strip()
    if not raw:
        raise ValueError("cursor is empty")

    padding = "=" * (-len(raw) % 4)
    parsed = json.loads(base64.urlsafe_b64decode(raw + padding).decode("utf-8"))
    if not isinstance(parsed, dict) or not isinstance(parsed.get("lastKey"), dict):
        raise ValueError("cursor lastKey is invalid")
    return {str(k): _av_from_json(v) for k, v in parsed["lastKey"].items()}
