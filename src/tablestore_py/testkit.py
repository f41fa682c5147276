from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import UTC, datetime, timedelta

from .mocks import ANY, FakeDynamoDBClient, InMemoryTableStoreClient, client_error


def fixed_clock(start: datetime | None = None, *, step: timedelta = timedelta(seconds=1)) -> Callable[[], datetime]:
    current = start or datetime(2024, 1, 1, tzinfo=UTC)

    def ticks() -> Iterator[datetime]:
        value = current
        while True:
            yield value
            value += step

    it = ticks()
    return lambda: next(it)


def sequential_etags(prefix: str = "etag") -> Callable[[], str]:
    counter = 0

    def new_etag() -> str:
        nonlocal counter
        counter += 1
        return f'W/"{prefix}-{counter}"'

    return new_etag


def no_sleep(_: float) -> None:
    return None


__all__ = [
    "ANY",
    "FakeDynamoDBClient",
    "InMemoryTableStoreClient",
    "client_error",
    "fixed_clock",
    "no_sleep",
    "sequential_etags",
]
