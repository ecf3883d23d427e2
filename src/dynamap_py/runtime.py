from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, cast

import boto3
from botocore.config import Config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AwsCallMetric:
    operation: str
    table_name: str | None
    seconds: float
    ok: bool


def create_client_config(
    *,
    connect_timeout: float = 2.0,
    read_timeout: float = 10.0,
    max_attempts: int = 3,
) -> Config:
    return Config(
        connect_timeout=connect_timeout,
        read_timeout=read_timeout,
        retries={"max_attempts": max_attempts, "mode": "adaptive"},
    )


class _InstrumentedClient:
    def __init__(self, client: Any, on_call: Callable[[AwsCallMetric], None]) -> None:
        self._client = client
        self._on_call = on_call

    def __getattr__(self, name: str) -> Any:
        attr = getattr(self._client, name)
        if name.startswith("_") or not callable(attr):
            return attr

        def wrapped(*args: Any, **kwargs: Any) -> Any:
            start = time.monotonic()
            table_name = kwargs.get("TableName")
            try:
                out = attr(*args, **kwargs)
            except Exception:
                self._on_call(AwsCallMetric(name, table_name, time.monotonic() - start, ok=False))
                raise

            self._on_call(AwsCallMetric(name, table_name, time.monotonic() - start, ok=True))
            return out

        return wrapped


def instrument_client(client: Any, *, on_call: Callable[[AwsCallMetric], None]) -> Any:
    """Wrap a dynamodb client so every call reports an ``AwsCallMetric``."""

    return _InstrumentedClient(client, on_call)


def create_dynamodb_client(
    *,
    region: str | None = None,
    endpoint_url: str | None = None,
    config: Config | None = None,
    session: Any | None = None,
    metrics: Callable[[AwsCallMetric], None] | None = None,
) -> Any:
    sess = session or boto3.session.Session(region_name=region)
    client = cast(Any, sess).client(
        "dynamodb",
        region_name=region,
        endpoint_url=endpoint_url,
        config=config or create_client_config(),
    )
    logger.debug("created dynamodb client region=%s endpoint=%s", region, endpoint_url)
    if metrics is not None:
        client = instrument_client(client, on_call=metrics)
    return client


_shared_clients: dict[tuple[str | None, str | None], Any] = {}
_shared_lock = threading.Lock()


def shared_dynamodb_client(environ: Mapping[str, str] = os.environ, *, session: Any | None = None) -> Any:
    """One client per (region, endpoint) read from ``AWS_REGION`` and ``DYNAMODB_ENDPOINT``."""

    region = environ.get("AWS_REGION") or environ.get("AWS_DEFAULT_REGION") or None
    endpoint = environ.get("DYNAMODB_ENDPOINT") or None
    key = (region, endpoint)
    with _shared_lock:
        existing = _shared_clients.get(key)
        if existing is None:
            existing = create_dynamodb_client(region=region, endpoint_url=endpoint, session=session)
            _shared_clients[key] = existing
        return existing


def _reset_shared_clients_for_tests() -> None:
    with _shared_lock:
        _shared_clients.clear()
