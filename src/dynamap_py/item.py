from __future__ import annotations

import base64
import json
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import Future
from datetime import date, datetime
from decimal import Decimal
from types import MethodType
from typing import TYPE_CHECKING, Any, ClassVar

from .batch import BatchGetResult, BatchWriteResult
from .errors import DynamapError
from .hooks import Middleware
from .model import Schema
from .query import ParallelScan, Query, Scan

if TYPE_CHECKING:
    from .context import Context
    from .table import Table

DEFERRABLE = frozenset(
    {
        "get",
        "create",
        "update",
        "destroy",
        "get_items",
        "write_items",
        "create_table",
        "update_table",
        "describe_table",
        "delete_table",
    }
)


class hybridmethod:
    """A method with separate model-level and instance-level implementations."""

    def __init__(self, fclass: Callable[..., Any]) -> None:
        self.fclass = fclass
        self.finstance: Callable[..., Any] | None = None
        self.__doc__ = fclass.__doc__

    def instancemethod(self, finstance: Callable[..., Any]) -> hybridmethod:
        self.finstance = finstance
        return self

    def __get__(self, obj: Any, owner: type | None = None) -> Any:
        if obj is None or self.finstance is None:
            return MethodType(self.fclass, owner)
        return MethodType(self.finstance, obj)


def _json_default(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


def _attrs_of(record: Any) -> Any:
    if isinstance(record, Item):
        return record.attrs
    return record


class Item:
    """Model facade generated by ``Context.define``.

    Class-level calls address the table (``User.get("a@b")``); instance calls act on
    the record held in ``attrs`` (``user.update()``).
    """

    table: ClassVar[Table[Any]]
    context: ClassVar[Context]
    schema: ClassVar[Schema]
    model_name: ClassVar[str] = "Item"

    def __init__(self, attrs: Mapping[str, Any] | None = None) -> None:
        self.attrs: dict[str, Any] = dict(attrs or {})

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.attrs!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Item):
            return NotImplemented
        return type(self) is type(other) and self.attrs == other.attrs

    __hash__ = None  # type: ignore[assignment]

    # record access

    @hybridmethod
    def get(cls, hash_or_record: Any, range_value: Any | None = None, **options: Any) -> Any:
        return cls.table.get(_attrs_of(hash_or_record), range_value, **options)

    @get.instancemethod
    def get(self, key: str | None = None) -> Any:
        if key is None:
            return dict(self.attrs)
        return self.attrs.get(key)

    def set(self, params: Mapping[str, Any]) -> Item:
        self.attrs.update(params)
        return self

    def save(self, **options: Any) -> Item:
        saved = type(self).table.create(self.attrs, **options)
        self.attrs = dict(_attrs_of(saved))
        return self

    def to_dict(self) -> dict[str, Any]:
        return dict(self.attrs)

    def to_json(self) -> str:
        return json.dumps(self.attrs, default=_json_default, sort_keys=True)

    # writes

    @classmethod
    def create(cls, record: Any, **options: Any) -> Any:
        if isinstance(record, Sequence) and not isinstance(record, (str, bytes)):
            record = [_attrs_of(r) for r in record]
        return cls.table.create(_attrs_of(record), **options)

    @hybridmethod
    def update(cls, record: Any, **options: Any) -> Any:
        return cls.table.update(_attrs_of(record), **options)

    @update.instancemethod
    def update(self, **options: Any) -> Item:
        updated = type(self).table.update(self.attrs, **options)
        if updated is not None:
            self.attrs = dict(_attrs_of(updated))
        return self

    @hybridmethod
    def destroy(cls, hash_or_record: Any, range_value: Any | None = None, **options: Any) -> Any:
        return cls.table.destroy(_attrs_of(hash_or_record), range_value, **options)

    @destroy.instancemethod
    def destroy(self, **options: Any) -> Any:
        return type(self).table.destroy(self.attrs, **options)

    # reads

    @classmethod
    def query(cls, hash_value: Any | None = None) -> Query[Any]:
        return cls.table.query(hash_value)

    @classmethod
    def scan(cls) -> Scan[Any]:
        return cls.table.scan()

    @classmethod
    def parallel_scan(cls, total_segments: int) -> ParallelScan[Any]:
        return cls.table.parallel_scan(total_segments)

    @classmethod
    def get_items(cls, keys: Sequence[Any], **options: Any) -> BatchGetResult:
        return cls.table.batch_get([_attrs_of(k) for k in keys], **options)

    @classmethod
    def write_items(cls, puts: Sequence[Any] = (), deletes: Sequence[Any] = ()) -> BatchWriteResult:
        return cls.table.batch_write([_attrs_of(p) for p in puts], [_attrs_of(d) for d in deletes])

    # table lifecycle

    @classmethod
    def create_table(cls, read_capacity: int | None = None, write_capacity: int | None = None, **options: Any) -> Any:
        return cls.table.create_table(read_capacity, write_capacity, **options)

    @classmethod
    def update_table(cls, read_capacity: int | None = None, write_capacity: int | None = None, **options: Any) -> Any:
        return cls.table.update_table(read_capacity, write_capacity, **options)

    @classmethod
    def describe_table(cls) -> dict[str, Any]:
        return cls.table.describe_table()

    @classmethod
    def delete_table(cls, **options: Any) -> dict[str, Any]:
        return cls.table.delete_table(**options)

    @classmethod
    def table_name(cls) -> str:
        return cls.table.table_name()

    @classmethod
    def config(cls, *, table_name: str | None = None, client: Any | None = None) -> dict[str, Any]:
        return cls.table.config(table_name=table_name, client=client)

    # hooks

    @classmethod
    def before(cls, operation: str, hook: Middleware | Callable[[Any], Any]) -> None:
        cls.table.hooks.before(operation, hook)

    @classmethod
    def after(cls, operation: str, hook: Middleware | Callable[[Any], Any]) -> None:
        cls.table.hooks.after(operation, hook)

    # deferred

    @classmethod
    def defer(
        cls,
        operation: str,
        *args: Any,
        callback: Callable[[BaseException | None, Any], None] | None = None,
        **kwargs: Any,
    ) -> Future[Any]:
        """Run a model operation on the context's worker pool.

        ``callback(error, result)`` fires once the operation finishes; the returned
        future resolves or raises the same way.
        """

        if operation not in DEFERRABLE:
            raise DynamapError(f"operation cannot be deferred: {operation}")

        future = cls.context.executor().submit(getattr(cls, operation), *args, **kwargs)
        if callback is not None:

            def done(fut: Future[Any]) -> None:
                err = fut.exception()
                callback(err, None if err is not None else fut.result())

            future.add_done_callback(done)
        return future
