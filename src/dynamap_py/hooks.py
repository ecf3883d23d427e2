from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from .errors import HookError

OPERATIONS = ("create", "update", "destroy")


@runtime_checkable
class Middleware(Protocol):
    def transform(self, data: Any) -> Any: ...


class FunctionMiddleware:
    def __init__(self, fn: Callable[[Any], Any]) -> None:
        self._fn = fn

    def transform(self, data: Any) -> Any:
        return self._fn(data)

    def __repr__(self) -> str:  # pragma: no cover
        return f"FunctionMiddleware({getattr(self._fn, '__name__', self._fn)!r})"


def as_middleware(hook: Middleware | Callable[[Any], Any]) -> Middleware:
    if isinstance(hook, Middleware):
        return hook
    if callable(hook):
        return FunctionMiddleware(hook)
    raise HookError(f"hook must be callable or define transform(): {hook!r}")


class HookPipeline:
    """Ordered before/after middleware chains per write operation.

    Before hooks each receive the previous hook's output; the first one to raise
    aborts the operation with that exception. After hooks see the final result,
    their return values are ignored and their exceptions propagate.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._before: dict[str, list[Middleware]] = {op: [] for op in OPERATIONS}
        self._after: dict[str, list[Middleware]] = {op: [] for op in OPERATIONS}

    def _chain(self, chains: dict[str, list[Middleware]], operation: str) -> list[Middleware]:
        if operation not in chains:
            raise HookError(f"unsupported hook operation: {operation}")
        return chains[operation]

    def before(self, operation: str, hook: Middleware | Callable[[Any], Any]) -> None:
        with self._lock:
            self._chain(self._before, operation).append(as_middleware(hook))

    def after(self, operation: str, hook: Middleware | Callable[[Any], Any]) -> None:
        with self._lock:
            self._chain(self._after, operation).append(as_middleware(hook))

    def run_before(self, operation: str, data: Any) -> Any:
        with self._lock:
            chain = tuple(self._chain(self._before, operation))
        for hook in chain:
            data = hook.transform(data)
        return data

    def run_after(self, operation: str, result: Any) -> None:
        with self._lock:
            chain = tuple(self._chain(self._after, operation))
        for hook in chain:
            hook.transform(result)

    def clear(self) -> None:
        with self._lock:
            for chains in (self._before, self._after):
                for chain in chains.values():
                    chain.clear()
