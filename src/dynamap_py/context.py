from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from .config import Settings
from .errors import DynamapError
from .item import Item
from .model import Schema
from .runtime import shared_dynamodb_client
from .table import Table
from .validation import Validator

logger = logging.getLogger(__name__)


class Context:
    """Registry of defined models sharing one client, settings and worker pool.

    ``reconfigure`` rebinds every table under the registry lock, so a model
    either sees the old client or the new one.
    """

    def __init__(
        self,
        *,
        client: Any | None = None,
        settings: Settings | None = None,
        validator: Validator | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._lock = threading.RLock()
        self._client = client
        self._settings = settings or Settings()
        self._validator = validator
        self._sleep = sleep
        self._clock = clock
        self._models: dict[str, type[Item]] = {}
        self._executor: ThreadPoolExecutor | None = None

    @property
    def settings(self) -> Settings:
        return self._settings

    def client(self) -> Any:
        with self._lock:
            if self._client is None:
                self._client = shared_dynamodb_client()
            return self._client

    def define(
        self,
        name: str,
        schema: Schema,
        *,
        table_name: str | None = None,
        validator: Validator | None = None,
    ) -> type[Item]:
        if not name:
            raise DynamapError("model name is required")

        table: Table[Item] = Table(
            schema,
            client=self.client(),
            table_name=table_name,
            default_table_name=name.lower() + "s",
            validator=validator or self._validator,
            settings=self._settings,
            sleep=self._sleep,
            clock=self._clock,
        )
        model = type(name, (Item,), {"table": table, "context": self, "schema": schema, "model_name": name})
        table.item_factory = model

        with self._lock:
            if name in self._models:
                logger.debug("redefining model %s", name)
            self._models[name] = model
        return model

    def model(self, name: str) -> type[Item] | None:
        with self._lock:
            return self._models.get(name)

    def models(self) -> dict[str, type[Item]]:
        with self._lock:
            return dict(self._models)

    def reset(self) -> None:
        with self._lock:
            self._models.clear()
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)

    def reconfigure(self, *, client: Any | None = None, settings: Settings | None = None) -> None:
        with self._lock:
            if client is not None:
                self._client = client
            if settings is not None:
                self._settings = settings
            for model in self._models.values():
                if client is not None:
                    model.table.client = client
                if settings is not None:
                    model.table.settings = settings

    def create_tables(
        self,
        *,
        read_capacity: int | None = None,
        write_capacity: int | None = None,
        wait: bool = True,
    ) -> dict[str, str]:
        """Create every defined model's missing table; maps model name to "created" or "exists"."""

        out: dict[str, str] = {}
        for name, model in sorted(self.models().items()):
            created = model.table.ensure_table(read_capacity, write_capacity, wait=wait)
            out[name] = "created" if created else "exists"
            logger.info("model %s table %s %s", name, model.table_name(), out[name])
        return out

    def executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._settings.deferred_workers, thread_name_prefix="dynamap"
                )
            return self._executor

    def close(self) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)

    def __enter__(self) -> Context:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
