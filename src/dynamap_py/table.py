from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

from botocore.exceptions import ClientError

from .aws_errors import map_client_error
from .batch import BatchEngine, BatchGetResult, BatchWriteResult, delete_request, put_request
from .config import Settings
from .errors import ValidationError
from .expressions import (
    ExpressionAttributes,
    build_condition_term,
    build_expected_conditions,
    compile_update,
    join_conditions,
    merge_update_fragment,
)
from .hooks import HookPipeline
from .lifecycle import TableLifecycle
from .model import Schema
from .query import Page, ParallelScan, Query, Scan
from .runtime import shared_dynamodb_client
from .serializer import (
    build_key,
    deserialize_item,
    from_wire_item,
    serialize_item,
    serialize_item_for_update,
    to_wire_item,
)
from .validation import SchemaValidator, Validator, validate_or_raise

logger = logging.getLogger(__name__)

UPDATE_ACTIONS = frozenset({"PUT", "ADD"})


class Table[T]:
    """Per-schema operations against one DynamoDB table.

    Writes run before hooks, validation and serialization, then one wire call, then
    after hooks. Results are plain dicts unless an ``item_factory`` wraps them.
    """

    def __init__(
        self,
        schema: Schema,
        *,
        client: Any | None = None,
        table_name: str | None = None,
        default_table_name: str | None = None,
        validator: Validator | None = None,
        hooks: HookPipeline | None = None,
        settings: Settings | None = None,
        item_factory: Callable[[dict[str, Any]], T] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.schema = schema
        self.client: Any = client or shared_dynamodb_client()
        self.hooks = hooks or HookPipeline()
        self.validator: Validator = validator or SchemaValidator()
        self.settings = settings or Settings()
        self._name_override = table_name
        self._default_table_name = default_table_name
        self.item_factory = item_factory
        self._sleep = sleep
        self._clock = clock
        self._now = now or (lambda: datetime.now(UTC))

    def table_name(self) -> str:
        if self._name_override:
            return self._name_override
        return self.schema.resolve_table_name(self._default_table_name)

    def config(self, *, table_name: str | None = None, client: Any | None = None) -> dict[str, Any]:
        if table_name is not None:
            self._name_override = table_name
        if client is not None:
            self.client = client
        return {"name": self.table_name(), "client": self.client}

    # transport

    def send(self, operation: str, request: dict[str, Any]) -> dict[str, Any]:
        logger.debug("%s table=%s", operation, request.get("TableName"))
        try:
            resp = getattr(self.client, operation)(**request)
        except ClientError as err:
            raise map_client_error(err) from err
        return dict(resp or {})

    def wrap(self, record: dict[str, Any] | None) -> T | dict[str, Any] | None:
        if record is None:
            return None
        if self.item_factory is None:
            return record
        return self.item_factory(record)

    def from_wire(self, item: Mapping[str, Any] | None) -> Any:
        return self.wrap(deserialize_item(from_wire_item(item)))

    def to_page(self, resp: Mapping[str, Any], index_name: str | None = None) -> Page[Any]:
        items = [self.from_wire(item) for item in resp.get("Items") or []]
        return Page(
            items=items,
            last_evaluated_key=resp.get("LastEvaluatedKey") or None,
            count=int(resp.get("Count", len(items))),
            scanned_count=int(resp.get("ScannedCount", 0)),
            consumed_capacity=resp.get("ConsumedCapacity"),
            index_name=index_name,
        )

    def _key(self, hash_or_record: Any, range_value: Any | None = None) -> dict[str, Any]:
        key = build_key(self.schema, hash_or_record, range_value, include_index_keys=False)
        if self.schema.hash_key not in key:
            raise ValidationError(f"missing hash key: {self.schema.hash_key}")
        if self.schema.range_key is not None and self.schema.range_key not in key:
            raise ValidationError(f"missing range key: {self.schema.range_key}")
        return key

    def _key_from(self, key: Any) -> dict[str, Any]:
        if isinstance(key, tuple):
            return self._key(*key)
        return self._key(key)

    def _timestamp(self, data: dict[str, Any], name: str | None) -> None:
        if self.schema.timestamps.enabled and name:
            data[name] = self._now()

    @staticmethod
    def _caller_fragments(
        attrs: ExpressionAttributes,
        expressions: Sequence[str | None],
        names: Mapping[str, str] | None,
        values: Mapping[str, Any] | None,
    ) -> list[str | None]:
        if not any(expressions) and not names and not values:
            return list(expressions)
        return attrs.merge_fragments(expressions, names, values)

    # item operations

    def get(
        self,
        hash_or_record: Any,
        range_value: Any | None = None,
        *,
        consistent_read: bool | None = None,
        attributes: Sequence[str] | None = None,
    ) -> Any:
        req: dict[str, Any] = {
            "TableName": self.table_name(),
            "Key": to_wire_item(self._key(hash_or_record, range_value)),
        }
        if consistent_read is not None:
            req["ConsistentRead"] = consistent_read
        if attributes:
            attrs = ExpressionAttributes()
            req["ProjectionExpression"] = ", ".join(attrs.path(name) for name in attributes)
            attrs.apply(req)

        resp = self.send("get_item", req)
        return self.from_wire(resp.get("Item") or None)

    def create(
        self,
        record: Mapping[str, Any] | Sequence[Mapping[str, Any]],
        *,
        overwrite: bool = True,
        expected: Mapping[str, Any] | None = None,
        condition_expression: str | None = None,
        expression_attribute_names: Mapping[str, str] | None = None,
        expression_attribute_values: Mapping[str, Any] | None = None,
        return_values: str | None = None,
    ) -> Any:
        if not isinstance(record, Mapping):
            return [
                self.create(
                    r,
                    overwrite=overwrite,
                    expected=expected,
                    condition_expression=condition_expression,
                    expression_attribute_names=expression_attribute_names,
                    expression_attribute_values=expression_attribute_values,
                    return_values=return_values,
                )
                for r in record
            ]

        data = self.hooks.run_before("create", dict(record))
        data = validate_or_raise(self.validator, data, self.schema)
        self._timestamp(data, self.schema.timestamps.created_at)
        self._key(data)

        item = serialize_item(self.schema, data) or {}
        req: dict[str, Any] = {"TableName": self.table_name(), "Item": to_wire_item(item)}

        attrs = ExpressionAttributes()
        terms: list[str] = []
        if expected:
            terms.extend(build_expected_conditions(attrs, serialize_item(self.schema, expected, expected=True) or {}))
        if not overwrite:
            terms.append(build_condition_term(attrs, self.schema.hash_key, "NOT_EXISTS"))
            if self.schema.range_key is not None:
                terms.append(build_condition_term(attrs, self.schema.range_key, "NOT_EXISTS"))
        (caller,) = self._caller_fragments(
            attrs, [condition_expression], expression_attribute_names, expression_attribute_values
        )
        if caller:
            terms.append(caller)

        condition = join_conditions(terms)
        if condition is not None:
            req["ConditionExpression"] = condition
        attrs.apply(req)
        if return_values:
            req["ReturnValues"] = return_values

        self.send("put_item", req)
        result = self.wrap(deserialize_item(item))
        self.hooks.run_after("create", result)
        return result

    def build_update_request(
        self,
        data: Mapping[str, Any],
        *,
        expected: Mapping[str, Any] | None = None,
        return_values: str | None = "ALL_NEW",
        update_expression: str | None = None,
        condition_expression: str | None = None,
        expression_attribute_names: Mapping[str, str] | None = None,
        expression_attribute_values: Mapping[str, Any] | None = None,
        default_action: str = "PUT",
    ) -> dict[str, Any]:
        if default_action not in UPDATE_ACTIONS:
            raise ValidationError(f"unsupported update action: {default_action}")

        key = self._key(data)
        attrs = ExpressionAttributes()
        actions = compile_update(serialize_item_for_update(self.schema, default_action, data), attrs)

        caller_update, caller_condition = self._caller_fragments(
            attrs,
            [update_expression, condition_expression],
            expression_attribute_names,
            expression_attribute_values,
        )
        if caller_update:
            merge_update_fragment(actions, caller_update, attrs.names)

        # key-only updates still go out; DynamoDB creates the item if it is missing
        update = actions.render()

        terms: list[str] = []
        if expected:
            terms.extend(build_expected_conditions(attrs, serialize_item(self.schema, expected, expected=True) or {}))
        if caller_condition:
            terms.append(caller_condition)
        condition = join_conditions(terms)

        req: dict[str, Any] = {
            "TableName": self.table_name(),
            "Key": to_wire_item(key),
        }
        if update is not None:
            req["UpdateExpression"] = update
        if condition is not None:
            req["ConditionExpression"] = condition
        if return_values:
            req["ReturnValues"] = return_values
        attrs.prune(update, condition)
        attrs.apply(req)
        return req

    def update(
        self,
        record: Mapping[str, Any],
        *,
        expected: Mapping[str, Any] | None = None,
        return_values: str | None = "ALL_NEW",
        update_expression: str | None = None,
        condition_expression: str | None = None,
        expression_attribute_names: Mapping[str, str] | None = None,
        expression_attribute_values: Mapping[str, Any] | None = None,
        default_action: str = "PUT",
    ) -> Any:
        data = self.hooks.run_before("update", dict(record))
        data = validate_or_raise(self.validator, data, self.schema, partial=True)
        self._timestamp(data, self.schema.timestamps.updated_at)

        req = self.build_update_request(
            data,
            expected=expected,
            return_values=return_values,
            update_expression=update_expression,
            condition_expression=condition_expression,
            expression_attribute_names=expression_attribute_names,
            expression_attribute_values=expression_attribute_values,
            default_action=default_action,
        )
        resp = self.send("update_item", req)
        result = self.from_wire(resp.get("Attributes") or None)
        self.hooks.run_after("update", result)
        return result

    def destroy(
        self,
        hash_or_record: Any,
        range_value: Any | None = None,
        *,
        expected: Mapping[str, Any] | None = None,
        return_values: str | None = None,
        condition_expression: str | None = None,
        expression_attribute_names: Mapping[str, str] | None = None,
        expression_attribute_values: Mapping[str, Any] | None = None,
    ) -> Any:
        key = deserialize_item(self._key(hash_or_record, range_value)) or {}
        key = self.hooks.run_before("destroy", key)

        req: dict[str, Any] = {"TableName": self.table_name(), "Key": to_wire_item(self._key(key))}
        attrs = ExpressionAttributes()
        terms: list[str] = []
        if expected:
            terms.extend(build_expected_conditions(attrs, serialize_item(self.schema, expected, expected=True) or {}))
        (caller,) = self._caller_fragments(
            attrs, [condition_expression], expression_attribute_names, expression_attribute_values
        )
        if caller:
            terms.append(caller)
        condition = join_conditions(terms)
        if condition is not None:
            req["ConditionExpression"] = condition
        attrs.apply(req)
        if return_values:
            req["ReturnValues"] = return_values

        resp = self.send("delete_item", req)
        result = self.from_wire(resp.get("Attributes") or None)
        self.hooks.run_after("destroy", result)
        return result

    # reads

    def query(self, hash_value: Any | None = None) -> Query[Any]:
        return Query(self, hash_value)

    def scan(self) -> Scan[Any]:
        return Scan(self)

    def parallel_scan(self, total_segments: int) -> ParallelScan[Any]:
        return ParallelScan(self, total_segments)

    # batch

    def batch_engine(self) -> BatchEngine:
        return BatchEngine(
            self.client,
            get_chunk_size=self.settings.get_chunk_size,
            write_chunk_size=self.settings.write_chunk_size,
            retry=self.settings.retry,
            max_workers=self.settings.batch_max_workers,
            sleep=self._sleep,
        )

    def batch_get(
        self,
        keys: Sequence[Any],
        *,
        consistent_read: bool | None = None,
        attributes: Sequence[str] | None = None,
    ) -> BatchGetResult:
        name = self.table_name()
        requests = [(name, to_wire_item(self._key_from(k))) for k in keys]

        options: dict[str, Any] = {}
        if consistent_read is not None:
            options["ConsistentRead"] = consistent_read
        if attributes:
            attrs = ExpressionAttributes()
            options["ProjectionExpression"] = ", ".join(attrs.path(a) for a in attributes)
            options["ExpressionAttributeNames"] = dict(attrs.names)

        result = self.batch_engine().get(requests, table_options={name: options})
        result.items = [self.wrap(item) for item in result.items]
        result.responses = {t: [self.wrap(item) for item in items] for t, items in result.responses.items()}
        return result

    def batch_write(
        self,
        puts: Sequence[Mapping[str, Any]] = (),
        deletes: Sequence[Any] = (),
    ) -> BatchWriteResult:
        name = self.table_name()
        requests: list[tuple[str, dict[str, Any]]] = []
        for record in puts:
            data = validate_or_raise(self.validator, record, self.schema)
            self._key(data)
            requests.append((name, put_request(to_wire_item(serialize_item(self.schema, data) or {}))))
        for key in deletes:
            requests.append((name, delete_request(to_wire_item(self._key_from(key)))))
        return self.batch_engine().write(requests)

    # lifecycle

    def lifecycle(self) -> TableLifecycle:
        return TableLifecycle(
            self.schema,
            self.client,
            table_name=self.table_name(),
            poll=self.settings.poll,
            sleep=self._sleep,
            clock=self._clock,
        )

    def create_table(
        self,
        read_capacity: int | None = None,
        write_capacity: int | None = None,
        *,
        stream_view_type: str | None = None,
        wait: bool = True,
    ) -> dict[str, Any]:
        return self.lifecycle().create_table(
            read_capacity=read_capacity,
            write_capacity=write_capacity,
            stream_view_type=stream_view_type,
            wait=wait,
        )

    def update_table(
        self,
        read_capacity: int | None = None,
        write_capacity: int | None = None,
        *,
        wait: bool = True,
    ) -> list[dict[str, Any]]:
        return self.lifecycle().update_table(read_capacity=read_capacity, write_capacity=write_capacity, wait=wait)

    def describe_table(self) -> dict[str, Any]:
        return self.lifecycle().describe_table()

    def delete_table(self, *, wait: bool = True, ignore_missing: bool = False) -> dict[str, Any]:
        return self.lifecycle().delete_table(wait=wait, ignore_missing=ignore_missing)

    def ensure_table(
        self,
        read_capacity: int | None = None,
        write_capacity: int | None = None,
        *,
        wait: bool = True,
    ) -> bool:
        return self.lifecycle().ensure_table(read_capacity=read_capacity, write_capacity=write_capacity, wait=wait)
