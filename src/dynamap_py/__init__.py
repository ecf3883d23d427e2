from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .config import PollPolicy, RetryPolicy, Settings
from .errors import (
    BatchRetryExceededError,
    ConditionFailedError,
    DynamapError,
    FieldError,
    HookError,
    NotFoundError,
    SchemaError,
    TableTimeoutError,
    TransportError,
    ValidationError,
)
from .hooks import HookPipeline, Middleware
from .model import (
    AttributeDefinition,
    IndexDefinition,
    Projection,
    Schema,
    attribute,
    gsi,
    list_of,
    lsi,
    map_of,
)
from .query import Page, Paginator, decode_cursor, encode_cursor
from .validation import SchemaValidator, Validator, validate_index_name, validate_table_name

if TYPE_CHECKING:
    from .batch import BatchEngine, BatchGetResult, BatchWriteResult
    from .context import Context
    from .item import Item
    from .lifecycle import TableLifecycle, build_create_table_request, build_update_table_requests
    from .runtime import AwsCallMetric, create_client_config, create_dynamodb_client, instrument_client
    from .table import Table

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"


def __getattr__(name: str) -> Any:
    if name == "Table":
        from .table import Table

        return Table
    if name == "Context":
        from .context import Context

        return Context
    if name == "Item":
        from .item import Item

        return Item
    if name in {"BatchEngine", "BatchGetResult", "BatchWriteResult"}:
        from . import batch

        return getattr(batch, name)
    if name in {"TableLifecycle", "build_create_table_request", "build_update_table_requests"}:
        from . import lifecycle

        return getattr(lifecycle, name)
    if name in {"AwsCallMetric", "create_client_config", "create_dynamodb_client", "instrument_client"}:
        from . import runtime

        return getattr(runtime, name)
    raise AttributeError(name)


__all__ = [
    "AttributeDefinition",
    "AwsCallMetric",
    "BatchEngine",
    "BatchGetResult",
    "BatchRetryExceededError",
    "BatchWriteResult",
    "ConditionFailedError",
    "Context",
    "DynamapError",
    "FieldError",
    "HookError",
    "HookPipeline",
    "IndexDefinition",
    "Item",
    "Middleware",
    "NotFoundError",
    "Page",
    "Paginator",
    "PollPolicy",
    "Projection",
    "RetryPolicy",
    "Schema",
    "SchemaError",
    "SchemaValidator",
    "Settings",
    "Table",
    "TableLifecycle",
    "TableTimeoutError",
    "TransportError",
    "ValidationError",
    "Validator",
    "__version__",
    "attribute",
    "build_create_table_request",
    "build_update_table_requests",
    "create_client_config",
    "create_dynamodb_client",
    "decode_cursor",
    "encode_cursor",
    "gsi",
    "instrument_client",
    "list_of",
    "lsi",
    "map_of",
    "validate_index_name",
    "validate_table_name",
]
