from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from .errors import DynamapError


@dataclass(frozen=True)
class RetryPolicy:
    """Capped exponential backoff for unprocessed batch items and throttled chunks."""

    max_retries: int = 5
    base_delay: float = 0.05
    max_delay: float = 1.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise DynamapError("max_retries must be >= 0")
        if self.base_delay < 0 or self.max_delay < 0:
            raise DynamapError("retry delays must be >= 0")

    def delay(self, attempt: int) -> float:
        seconds = self.base_delay * (2.0 ** (attempt - 1))
        if seconds > self.max_delay:
            return self.max_delay
        return seconds


@dataclass(frozen=True)
class PollPolicy:
    interval: float = 1.0
    backoff_factor: float = 1.0
    max_interval: float = 20.0
    max_attempts: int = 60
    timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        if self.max_attempts <= 0:
            raise DynamapError("max_attempts must be > 0")
        if self.interval < 0 or self.max_interval < 0:
            raise DynamapError("poll intervals must be >= 0")
        if self.backoff_factor < 1.0:
            raise DynamapError("backoff_factor must be >= 1.0")

    def delay(self, attempt: int) -> float:
        seconds = self.interval * (self.backoff_factor ** (attempt - 1))
        return min(seconds, self.max_interval)


@dataclass(frozen=True)
class Settings:
    get_chunk_size: int = 100
    write_chunk_size: int = 25
    batch_max_workers: int = 1
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    poll: PollPolicy = field(default_factory=PollPolicy)
    deferred_workers: int = 4

    def __post_init__(self) -> None:
        if not 0 < self.get_chunk_size <= 100:
            raise DynamapError("get_chunk_size must be between 1 and 100")
        if not 0 < self.write_chunk_size <= 25:
            raise DynamapError("write_chunk_size must be between 1 and 25")
        if self.batch_max_workers <= 0 or self.deferred_workers <= 0:
            raise DynamapError("worker counts must be > 0")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = os.environ) -> Settings:
        def num(name: str, default: float) -> float:
            raw = (environ.get(name) or "").strip()
            if not raw:
                return default
            try:
                return float(raw)
            except ValueError as err:
                raise DynamapError(f"{name} must be a number: {raw!r}") from err

        timeout = num("DYNAMAP_POLL_TIMEOUT", 0.0)
        return cls(
            get_chunk_size=int(num("DYNAMAP_GET_CHUNK_SIZE", 100)),
            write_chunk_size=int(num("DYNAMAP_WRITE_CHUNK_SIZE", 25)),
            batch_max_workers=int(num("DYNAMAP_BATCH_MAX_WORKERS", 1)),
            retry=RetryPolicy(
                max_retries=int(num("DYNAMAP_MAX_RETRIES", 5)),
                base_delay=num("DYNAMAP_RETRY_BASE_DELAY", 0.05),
                max_delay=num("DYNAMAP_RETRY_MAX_DELAY", 1.0),
            ),
            poll=PollPolicy(
                interval=num("DYNAMAP_POLL_INTERVAL", 1.0),
                backoff_factor=num("DYNAMAP_POLL_BACKOFF", 1.0),
                max_interval=num("DYNAMAP_POLL_MAX_INTERVAL", 20.0),
                max_attempts=int(num("DYNAMAP_POLL_MAX_ATTEMPTS", 60)),
                timeout_seconds=timeout or None,
            ),
            deferred_workers=int(num("DYNAMAP_DEFERRED_WORKERS", 4)),
        )
