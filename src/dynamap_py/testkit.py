from __future__ import annotations

from collections.abc import Callable, Iterable

from .mocks import ANY, FakeDynamoDBClient, client_error


def no_sleep(_: float) -> None:
    return None


class RecordingSleep:
    """Sleep stand-in that records requested delays instead of blocking."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def fake_clock(ticks: Iterable[float]) -> Callable[[], float]:
    it = iter(ticks)
    last = 0.0

    def clock() -> float:
        nonlocal last
        last = next(it, last)
        return last

    return clock


__all__ = [
    "ANY",
    "FakeDynamoDBClient",
    "RecordingSleep",
    "client_error",
    "fake_clock",
    "no_sleep",
]
