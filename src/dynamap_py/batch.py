from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

from botocore.exceptions import ClientError

from .aws_errors import error_code, is_retryable, map_client_error
from .config import RetryPolicy
from .errors import BatchRetryExceededError, ValidationError
from .serializer import deserialize_item, from_wire_item

logger = logging.getLogger(__name__)

type KeyRequest = tuple[str, Mapping[str, Any]]
type WriteRequest = tuple[str, Mapping[str, Any]]


@dataclass
class BatchGetResult:
    items: list[dict[str, Any]] = field(default_factory=list)
    responses: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    unprocessed_keys: list[KeyRequest] = field(default_factory=list)

    def raise_for_unprocessed(self) -> BatchGetResult:
        if self.unprocessed_keys:
            raise BatchRetryExceededError(operation="batch_get", unprocessed_count=len(self.unprocessed_keys))
        return self


@dataclass
class BatchWriteResult:
    unprocessed_items: list[WriteRequest] = field(default_factory=list)

    def raise_for_unprocessed(self) -> BatchWriteResult:
        if self.unprocessed_items:
            raise BatchRetryExceededError(operation="batch_write", unprocessed_count=len(self.unprocessed_items))
        return self


def chunked[T](items: Sequence[T], size: int) -> list[Sequence[T]]:
    if size <= 0:
        raise ValueError("size must be > 0")
    return [items[i : i + size] for i in range(0, len(items), size)]


def put_request(item: Mapping[str, Any]) -> dict[str, Any]:
    return {"PutRequest": {"Item": dict(item)}}


def delete_request(key: Mapping[str, Any]) -> dict[str, Any]:
    return {"DeleteRequest": {"Key": dict(key)}}


class BatchEngine:
    """Splits batch get/write requests into per-call chunks and retries what the store leaves unprocessed.

    Requests are ``(table_name, payload)`` pairs with wire-level payloads: a key for
    gets, a ``PutRequest``/``DeleteRequest`` entry for writes. Chunk limits count
    across tables. A chunk that still has unprocessed entries after ``retry.max_retries``
    resubmissions contributes them to the result instead of failing the call.
    """

    def __init__(
        self,
        client: Any,
        *,
        get_chunk_size: int = 100,
        write_chunk_size: int = 25,
        retry: RetryPolicy | None = None,
        max_workers: int = 1,
        sleep: Callable[[float], None] | None = time.sleep,
    ) -> None:
        if not 0 < get_chunk_size <= 100:
            raise ValidationError("get_chunk_size must be between 1 and 100")
        if not 0 < write_chunk_size <= 25:
            raise ValidationError("write_chunk_size must be between 1 and 25")
        if max_workers <= 0:
            raise ValidationError("max_workers must be > 0")

        self._client = client
        self._get_chunk_size = get_chunk_size
        self._write_chunk_size = write_chunk_size
        self._retry = retry or RetryPolicy()
        self._max_workers = max_workers
        self._sleep = sleep

    def get(
        self,
        requests: Sequence[KeyRequest],
        *,
        table_options: Mapping[str, Mapping[str, Any]] | None = None,
    ) -> BatchGetResult:
        result = BatchGetResult()
        if not requests:
            return result

        options = table_options or {}
        outcomes = self._run(chunked(list(requests), self._get_chunk_size), lambda c: self._get_chunk(c, options))
        for rows, unprocessed in outcomes:
            for table_name, row in rows:
                item = deserialize_item(from_wire_item(row)) or {}
                result.items.append(item)
                result.responses.setdefault(table_name, []).append(item)
            result.unprocessed_keys.extend(unprocessed)
        return result

    def write(self, requests: Sequence[WriteRequest]) -> BatchWriteResult:
        result = BatchWriteResult()
        if not requests:
            return result

        for entry in (req for _, req in requests):
            if not isinstance(entry, Mapping) or not ({"PutRequest", "DeleteRequest"} & set(entry)):
                raise ValidationError("batch write entries must be PutRequest or DeleteRequest")

        for unprocessed in self._run(chunked(list(requests), self._write_chunk_size), self._write_chunk):
            result.unprocessed_items.extend(unprocessed)
        return result

    def _run[R](self, chunks: list[Sequence[Any]], fn: Callable[[Sequence[Any]], R]) -> list[R]:
        if self._max_workers == 1 or len(chunks) == 1:
            return [fn(chunk) for chunk in chunks]

        with ThreadPoolExecutor(max_workers=min(self._max_workers, len(chunks))) as ex:
            return list(ex.map(fn, chunks))

    def _backoff(self, attempt: int) -> None:
        if self._sleep is not None:
            self._sleep(self._retry.delay(attempt))

    def _call(self, operation: str, request_items: dict[str, Any], attempt: int) -> dict[str, Any] | None:
        logger.debug("%s tables=%s attempt=%d", operation, sorted(request_items), attempt)
        try:
            return getattr(self._client, operation)(RequestItems=request_items)
        except ClientError as err:
            if is_retryable(err) and attempt < self._retry.max_retries:
                logger.warning("%s chunk throttled (%s); retrying", operation, error_code(err))
                return None
            raise map_client_error(err) from err

    def _get_chunk(
        self, chunk: Sequence[KeyRequest], options: Mapping[str, Mapping[str, Any]]
    ) -> tuple[list[tuple[str, dict[str, Any]]], list[KeyRequest]]:
        pending: list[KeyRequest] = list(chunk)
        rows: list[tuple[str, dict[str, Any]]] = []
        attempts = 0

        while pending:
            request_items: dict[str, Any] = {}
            for table_name, key in pending:
                entry = request_items.setdefault(table_name, dict(options.get(table_name, {}), Keys=[]))
                entry["Keys"].append(dict(key))

            resp = self._call("batch_get_item", request_items, attempts)
            if resp is not None:
                for table_name, items in (resp.get("Responses") or {}).items():
                    rows.extend((table_name, item) for item in items)
                pending = [
                    (table_name, key)
                    for table_name, spec in (resp.get("UnprocessedKeys") or {}).items()
                    for key in (spec.get("Keys") or [])
                ]
                if not pending:
                    break

            if attempts >= self._retry.max_retries:
                logger.warning("batch_get retry limit reached; %d keys unprocessed", len(pending))
                break
            attempts += 1
            self._backoff(attempts)

        return rows, pending

    def _write_chunk(self, chunk: Sequence[WriteRequest]) -> list[WriteRequest]:
        pending: list[WriteRequest] = list(chunk)
        attempts = 0

        while pending:
            request_items: dict[str, list[dict[str, Any]]] = {}
            for table_name, entry in pending:
                request_items.setdefault(table_name, []).append(dict(entry))

            resp = self._call("batch_write_item", request_items, attempts)
            if resp is not None:
                pending = [
                    (table_name, entry)
                    for table_name, entries in (resp.get("UnprocessedItems") or {}).items()
                    for entry in entries
                ]
                if not pending:
                    break

            if attempts >= self._retry.max_retries:
                logger.warning("batch_write retry limit reached; %d items unprocessed", len(pending))
                break
            attempts += 1
            self._backoff(attempts)

        return pending
