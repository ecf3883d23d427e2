from __future__ import annotations

from botocore.exceptions import ClientError

from .errors import (
    ConditionFailedError,
    NotFoundError,
    TransportError,
    ValidationError,
)

RETRYABLE_CODES = frozenset(
    {
        "ProvisionedThroughputExceededException",
        "ThrottlingException",
        "RequestLimitExceeded",
        "InternalServerError",
        "ServiceUnavailable",
    }
)


def error_code(err: ClientError) -> str:
    return str(err.response.get("Error", {}).get("Code", ""))


def is_retryable(err: ClientError) -> bool:
    return error_code(err) in RETRYABLE_CODES


def map_client_error(err: ClientError) -> Exception:
    code = error_code(err)
    message = str(err.response.get("Error", {}).get("Message", ""))

    if code == "ConditionalCheckFailedException":
        return ConditionFailedError(message or "conditional check failed")
    if code == "ValidationException":
        return ValidationError(message or "validation failed")
    if code == "ResourceNotFoundException":
        return NotFoundError(message or "resource not found")

    return TransportError(code=code or "UnknownError", message=message or str(err))
