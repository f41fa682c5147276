from __future__ import annotations


class TablestorePyError(Exception):
    pass


class InvalidArgumentError(TablestorePyError, ValueError):
    pass


class UnsupportedPropertyTypeError(TablestorePyError, TypeError):
    def __init__(self, *, name: str, value: object) -> None:
        super().__init__(f"unsupported property type for {name!r}: {type(value).__name__}")
        self.name = name
        self.value_type = type(value)


class ConditionFailedError(TablestorePyError):
    pass


class NotFoundError(TablestorePyError):
    pass


class TransactionCanceledError(TablestorePyError):
    def __init__(self, *, message: str, reason_codes: tuple[str, ...]) -> None:
        super().__init__(message)
        self.reason_codes = reason_codes


class StoreError(TablestorePyError):
    def __init__(self, *, code: str, message: str) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message


class BatchExecutionFailedError(TablestorePyError):
    """A batch transaction failed; earlier batches of the same call stay committed."""

    def __init__(
        self,
        *,
        batch_index: int,
        batch_count: int,
        partition_key: str,
        committed_count: int,
    ) -> None:
        super().__init__(
            f"batch {batch_index + 1}/{batch_count} for partition {partition_key!r} failed "
            f"(committed rows={committed_count})"
        )
        self.batch_index = batch_index
        self.batch_count = batch_count
        self.partition_key = partition_key
        self.committed_count = committed_count
