from __future__ import annotations

from azure.core.exceptions import (
    HttpResponseError,
    ResourceModifiedError,
    ResourceNotFoundError,
)
from azure.data.tables import TableTransactionError

from .errors import (
    ConditionFailedError,
    InvalidArgumentError,
    NotFoundError,
    StoreError,
    TransactionCanceledError,
)

_CONDITION_CODES = frozenset({"UpdateConditionNotSatisfied", "ConditionNotMet"})


def _code_and_message(err: HttpResponseError) -> tuple[str, str]:
    code = str(getattr(err, "error_code", None) or "")
    if not code and err.status_code is not None:
        code = str(err.status_code)
    return code, str(err.message or err.reason or "")


def map_http_error(err: HttpResponseError) -> Exception:
    code, message = _code_and_message(err)

    if isinstance(err, TableTransactionError):
        return map_transaction_error(err)
    if isinstance(err, ResourceNotFoundError) or err.status_code == 404:
        return NotFoundError(message or "resource not found")
    if isinstance(err, ResourceModifiedError) or err.status_code == 412 or code in _CONDITION_CODES:
        return ConditionFailedError(message or "etag mismatch")
    if err.status_code == 400:
        return InvalidArgumentError(message or "invalid request")

    return StoreError(code=code or "UnknownError", message=message or str(err))


def map_transaction_error(err: TableTransactionError) -> Exception:
    code, message = _code_and_message(err)

    if code in _CONDITION_CODES or err.status_code == 412:
        return ConditionFailedError(message or "transaction canceled: condition not met")

    index = getattr(err, "index", None)
    reason = f"{code}@{index}" if code and index is not None else code
    return TransactionCanceledError(
        message=message or "transaction canceled",
        reason_codes=(reason,) if reason else (),
    )
