from __future__ import annotations

from dataclasses import dataclass


class DynamapError(Exception):
    pass


class SchemaError(DynamapError, ValueError):
    pass


@dataclass(frozen=True)
class FieldError:
    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.path}: {self.message}"


class ValidationError(DynamapError):
    def __init__(self, message: str, *, errors: tuple[FieldError, ...] = ()) -> None:
        if errors:
            message = f"{message}: " + "; ".join(str(e) for e in errors)
        super().__init__(message)
        self.errors = errors


class ConditionFailedError(DynamapError):
    pass


class NotFoundError(DynamapError):
    pass


class HookError(DynamapError):
    pass


class TableTimeoutError(DynamapError):
    def __init__(self, *, table_name: str, target: str, attempts: int, last_status: str | None) -> None:
        super().__init__(
            f"timed out waiting for table {target}: {table_name} "
            f"(attempts={attempts}, last_status={last_status or 'UNKNOWN'})"
        )
        self.table_name = table_name
        self.target = target
        self.attempts = attempts
        self.last_status = last_status


class BatchRetryExceededError(DynamapError):
    def __init__(self, *, operation: str, unprocessed_count: int) -> None:
        super().__init__(f"{operation}: retry limit exceeded (unprocessed={unprocessed_count})")
        self.operation = operation
        self.unprocessed_count = unprocessed_count


class TransportError(DynamapError):
    def __init__(self, *, code: str, message: str) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message
