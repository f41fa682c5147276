from __future__ import annotations

from botocore.exceptions import ClientError

from .errors import (
    ConditionFailedError,
    InvalidArgumentError,
    NotFoundError,
    StoreError,
    TransactionCanceledError,
)


def _code_and_message(err: ClientError) -> tuple[str, str]:
    error = err.response.get("Error", {})
    return str(error.get("Code", "")), str(error.get("Message", ""))


def map_client_error(err: ClientError, *, missing_row: bool = False) -> Exception:
    code, message = _code_and_message(err)

    if code == "ConditionalCheckFailedException":
        # Deletes without an ETag are conditioned on the row existing.
        if missing_row:
            return NotFoundError(message or "row not found")
        return ConditionFailedError(message or "etag mismatch")
    if code == "ValidationException":
        return InvalidArgumentError(message)
    if code == "ResourceNotFoundException":
        return NotFoundError(message or "table not found")

    return StoreError(code=code or "UnknownError", message=message or str(err))


def map_transaction_error(err: ClientError) -> Exception:
    code, message = _code_and_message(err)

    if code == "TransactionCanceledException":
        reasons_raw = err.response.get("CancellationReasons") or []
        reason_codes = tuple(
            str(reason.get("Code", "Unknown"))
            for reason in reasons_raw
            if isinstance(reason, dict) and reason.get("Code")
        )

        if any(rc == "ConditionalCheckFailed" for rc in reason_codes) or "ConditionalCheckFailed" in message:
            return ConditionFailedError(message or "transaction canceled: ConditionalCheckFailed")

        return TransactionCanceledError(
            message=message or "transaction canceled",
            reason_codes=reason_codes,
        )

    return map_client_error(err)
