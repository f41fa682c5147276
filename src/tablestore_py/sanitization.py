"""Key sanitization applied to rows before they are sent to the store.

A provider rewrites partition and row keys. Rows that carry
``UnsanitizedKeyFields`` keep their original keys as properties; every other
row just has its keys overwritten.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Protocol, runtime_checkable

from .entity import TableRow
from .errors import InvalidArgumentError

# Characters the Azure Table service rejects in PartitionKey and RowKey.
AZURE_FORBIDDEN_KEY_CHARACTERS = frozenset(
    "/\\#?" + "".join(chr(c) for c in range(0x00, 0x20)) + "".join(chr(c) for c in range(0x7F, 0xA0))
)


@runtime_checkable
class SanitizationProvider(Protocol):
    def sanitize(self, raw: str) -> str: ...


class CallableSanitizationProvider:
    def __init__(self, fn: Callable[[str], str]) -> None:
        if not callable(fn):
            raise InvalidArgumentError("fn must be callable")
        self._fn = fn

    def sanitize(self, raw: str) -> str:
        return self._fn(raw)


class CharacterReplacementSanitizationProvider:
    def __init__(
        self,
        *,
        forbidden: Iterable[str] = AZURE_FORBIDDEN_KEY_CHARACTERS,
        replacement: str = "_",
    ) -> None:
        self._forbidden = frozenset(forbidden)
        if replacement in self._forbidden:
            raise InvalidArgumentError("replacement must not be a forbidden character")
        self._replacement = replacement

    def sanitize(self, raw: str) -> str:
        if raw is None:
            raise InvalidArgumentError("raw key is required")
        return "".join(self._replacement if ch in self._forbidden else ch for ch in raw)


def sanitize_row(row: TableRow, provider: SanitizationProvider) -> TableRow:
    if row is None:
        raise InvalidArgumentError("row is required")
    if provider is None:
        raise InvalidArgumentError("sanitization provider is required")

    if row.unsanitized_keys is not None:
        row.unsanitized_keys.sanitize_keys(row, provider)
    else:
        row.partition_key = provider.sanitize(row.partition_key)
        row.row_key = provider.sanitize(row.row_key)
    return row


def sanitize_rows(rows: Iterable[TableRow], provider: SanitizationProvider) -> list[TableRow]:
    if rows is None:
        raise InvalidArgumentError("rows are required")
    if provider is None:
        raise InvalidArgumentError("sanitization provider is required")
    return [sanitize_row(row, provider) for row in rows]
