from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from typing import Any, TypeVar

from .errors import InvalidArgumentError

T = TypeVar("T")

MAX_BATCH_SIZE = 100


def _partition_key_of(row: Any) -> str:
    return row.partition_key


def _chunked(items: Sequence[T], size: int) -> list[list[T]]:
    if size <= 0:
        raise ValueError("size must be > 0")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def batch(
    rows: Iterable[T],
    *,
    size: int = MAX_BATCH_SIZE,
    key: Callable[[T], Any] = _partition_key_of,
) -> list[list[T]]:
    """Group rows by partition key and slice each group into store-sized batches.

    Groups are emitted in first-seen order and rows keep their input order
    inside a group, so non-contiguous rows of one partition still share
    batches.
    """
    if rows is None:
        raise InvalidArgumentError("rows are required")
    if size <= 0 or size > MAX_BATCH_SIZE:
        raise InvalidArgumentError(f"batch size must be between 1 and {MAX_BATCH_SIZE}")

    groups: dict[Any, list[T]] = {}
    for row in rows:
        groups.setdefault(key(row), []).append(row)

    out: list[list[T]] = []
    for group in groups.values():
        out.extend(_chunked(group, size))
    return out
