from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

from botocore.exceptions import ClientError

from .aws_errors import error_code, map_client_error
from .config import PollPolicy
from .errors import TableTimeoutError, ValidationError
from .model import IndexDefinition, Schema
from .validation import validate_index_name, validate_table_name

logger = logging.getLogger(__name__)

ABSENT = "ABSENT"
CREATING = "CREATING"
UPDATING = "UPDATING"
ACTIVE = "ACTIVE"
DELETING = "DELETING"

DEFAULT_INDEX_CAPACITY = 1


def _key_schema(hash_key: str, range_key: str | None) -> list[dict[str, str]]:
    key_schema = [{"AttributeName": hash_key, "KeyType": "HASH"}]
    if range_key is not None:
        key_schema.append({"AttributeName": range_key, "KeyType": "RANGE"})
    return key_schema


def _attribute_definitions(schema: Schema, names: set[str]) -> list[dict[str, str]]:
    return [{"AttributeName": name, "AttributeType": schema.key_wire_type(name)} for name in sorted(names)]


def _throughput(read: int, write: int) -> dict[str, int]:
    return {"ReadCapacityUnits": int(read), "WriteCapacityUnits": int(write)}


def _index_descriptor(idx: IndexDefinition, *, provisioned: bool) -> dict[str, Any]:
    validate_index_name(idx.name)
    desc: dict[str, Any] = {
        "IndexName": idx.name,
        "KeySchema": _key_schema(idx.hash_key, idx.range_key),
        "Projection": idx.projection.to_wire(),
    }
    if idx.type == "GSI" and provisioned:
        desc["ProvisionedThroughput"] = _throughput(
            idx.read_capacity or DEFAULT_INDEX_CAPACITY,
            idx.write_capacity or DEFAULT_INDEX_CAPACITY,
        )
    return desc


def _index_key_names(indexes: tuple[IndexDefinition, ...] | list[IndexDefinition]) -> set[str]:
    names: set[str] = set()
    for idx in indexes:
        names.add(idx.hash_key)
        if idx.range_key is not None:
            names.add(idx.range_key)
    return names


def build_create_table_request(
    schema: Schema,
    *,
    table_name: str,
    read_capacity: int | None = None,
    write_capacity: int | None = None,
    stream_view_type: str | None = None,
) -> dict[str, Any]:
    validate_table_name(table_name)
    if (read_capacity is None) != (write_capacity is None):
        raise ValidationError("read_capacity and write_capacity must be provided together")
    provisioned = read_capacity is not None

    names = {schema.hash_key} | _index_key_names(schema.indexes)
    if schema.range_key is not None:
        names.add(schema.range_key)

    req: dict[str, Any] = {
        "TableName": table_name,
        "AttributeDefinitions": _attribute_definitions(schema, names),
        "KeySchema": _key_schema(schema.hash_key, schema.range_key),
    }
    if provisioned:
        req["BillingMode"] = "PROVISIONED"
        req["ProvisionedThroughput"] = _throughput(read_capacity or 0, write_capacity or 0)
    else:
        req["BillingMode"] = "PAY_PER_REQUEST"

    if schema.local_indexes:
        req["LocalSecondaryIndexes"] = [_index_descriptor(idx, provisioned=provisioned) for idx in schema.local_indexes]
    if schema.global_indexes:
        req["GlobalSecondaryIndexes"] = [
            _index_descriptor(idx, provisioned=provisioned) for idx in schema.global_indexes
        ]
    if stream_view_type is not None:
        req["StreamSpecification"] = {"StreamEnabled": True, "StreamViewType": stream_view_type}
    return req


def build_update_table_requests(
    schema: Schema,
    description: Mapping[str, Any] | None,
    *,
    table_name: str,
    read_capacity: int | None = None,
    write_capacity: int | None = None,
) -> list[dict[str, Any]]:
    """Requests that move the live table toward the schema; empty when nothing differs.

    The store accepts one index creation per call, so every missing global index gets
    its own request. A throughput change rides on the first one.
    """

    validate_table_name(table_name)
    table = (description or {}).get("Table") or {}
    current = table.get("ProvisionedThroughput") or {}
    billing = (table.get("BillingModeSummary") or {}).get("BillingMode")

    first: dict[str, Any] = {"TableName": table_name}
    if read_capacity is not None or write_capacity is not None:
        read = read_capacity if read_capacity is not None else current.get("ReadCapacityUnits")
        write = write_capacity if write_capacity is not None else current.get("WriteCapacityUnits")
        if read is None or write is None:
            raise ValidationError("read_capacity and write_capacity are required for this table")
        if (read, write) != (current.get("ReadCapacityUnits"), current.get("WriteCapacityUnits")):
            first["ProvisionedThroughput"] = _throughput(read, write)
            if billing == "PAY_PER_REQUEST":
                first["BillingMode"] = "PROVISIONED"

    provisioned = "ProvisionedThroughput" in first or (
        billing != "PAY_PER_REQUEST" and bool(current.get("ReadCapacityUnits"))
    )

    existing = {idx.get("IndexName") for idx in table.get("GlobalSecondaryIndexes") or []}
    missing = [idx for idx in schema.global_indexes if idx.name not in existing]

    requests: list[dict[str, Any]] = []
    for i, idx in enumerate(missing):
        req = first if i == 0 else {"TableName": table_name}
        req["AttributeDefinitions"] = _attribute_definitions(schema, _index_key_names([idx]))
        req["GlobalSecondaryIndexUpdates"] = [{"Create": _index_descriptor(idx, provisioned=provisioned)}]
        requests.append(req)

    if not missing and len(first) > 1:
        requests.append(first)
    return requests


class TableLifecycle:
    """Create/update/delete a table and poll ``describe_table`` until it settles.

    A describe that raises ResourceNotFoundException reads as ABSENT; an empty
    response (or one without ``Table``) reads as not yet visible and keeps polling.
    """

    def __init__(
        self,
        schema: Schema,
        client: Any,
        *,
        table_name: str,
        poll: PollPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._schema = schema
        self._client = client
        self._table_name = table_name
        self._poll = poll or PollPolicy()
        self._sleep = sleep
        self._clock = clock

    @property
    def table_name(self) -> str:
        return self._table_name

    def describe_table(self) -> dict[str, Any]:
        logger.debug("describe_table table=%s", self._table_name)
        try:
            return dict(self._client.describe_table(TableName=self._table_name) or {})
        except ClientError as err:
            raise map_client_error(err) from err

    def status(self) -> str | None:
        try:
            resp = self._client.describe_table(TableName=self._table_name)
        except ClientError as err:
            if error_code(err) == "ResourceNotFoundException":
                return ABSENT
            raise map_client_error(err) from err

        table = (resp or {}).get("Table") or {}
        return table.get("TableStatus") or None

    def wait_for(self, target: str, *, poll: PollPolicy | None = None) -> int:
        """Poll until the table reaches ``target``; returns the number of describe calls."""

        policy = poll or self._poll
        deadline = None if policy.timeout_seconds is None else self._clock() + policy.timeout_seconds
        last: str | None = None
        attempt = 0

        while attempt < policy.max_attempts:
            attempt += 1
            last = self.status()
            logger.debug("table=%s status=%s attempt=%d", self._table_name, last, attempt)
            if last == target:
                logger.info("table %s reached %s after %d polls", self._table_name, target, attempt)
                return attempt
            if attempt >= policy.max_attempts:
                break
            if deadline is not None and self._clock() >= deadline:
                break
            self._sleep(policy.delay(attempt))

        raise TableTimeoutError(table_name=self._table_name, target=target, attempts=attempt, last_status=last)

    def wait_for_active(self, *, poll: PollPolicy | None = None) -> int:
        return self.wait_for(ACTIVE, poll=poll)

    def wait_for_deleted(self, *, poll: PollPolicy | None = None) -> int:
        return self.wait_for(ABSENT, poll=poll)

    def create_table(
        self,
        *,
        read_capacity: int | None = None,
        write_capacity: int | None = None,
        stream_view_type: str | None = None,
        wait: bool = True,
    ) -> dict[str, Any]:
        req = build_create_table_request(
            self._schema,
            table_name=self._table_name,
            read_capacity=read_capacity,
            write_capacity=write_capacity,
            stream_view_type=stream_view_type,
        )

        try:
            resp: dict[str, Any] = dict(self._client.create_table(**req) or {})
        except ClientError as err:
            raise map_client_error(err) from err
        logger.info("table %s %s", self._table_name, CREATING)

        if wait:
            self.wait_for_active()
        return resp

    def update_table(
        self,
        *,
        read_capacity: int | None = None,
        write_capacity: int | None = None,
        wait: bool = True,
    ) -> list[dict[str, Any]]:
        requests = build_update_table_requests(
            self._schema,
            self.describe_table(),
            table_name=self._table_name,
            read_capacity=read_capacity,
            write_capacity=write_capacity,
        )
        if not requests:
            logger.debug("table %s already matches schema", self._table_name)
            return []

        out: list[dict[str, Any]] = []
        for i, req in enumerate(requests):
            try:
                out.append(dict(self._client.update_table(**req) or {}))
            except ClientError as err:
                raise map_client_error(err) from err
            logger.info("table %s %s", self._table_name, UPDATING)
            # the next index creation is rejected until the table is ACTIVE again
            if wait or i < len(requests) - 1:
                self.wait_for_active()
        return out

    def delete_table(self, *, wait: bool = True, ignore_missing: bool = False) -> dict[str, Any]:
        try:
            resp = dict(self._client.delete_table(TableName=self._table_name) or {})
        except ClientError as err:
            if ignore_missing and error_code(err) == "ResourceNotFoundException":
                return {}
            raise map_client_error(err) from err

        logger.info("table %s %s", self._table_name, DELETING)
        if wait:
            self.wait_for_deleted()
        return resp

    def ensure_table(
        self,
        *,
        read_capacity: int | None = None,
        write_capacity: int | None = None,
        wait: bool = True,
    ) -> bool:
        """Create the table when it is absent; returns True when a create was issued."""

        if self.status() == ABSENT:
            self.create_table(read_capacity=read_capacity, write_capacity=write_capacity, wait=wait)
            return True
        if wait:
            self.wait_for_active()
        return False
