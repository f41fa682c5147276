from __future__ import annotations

from datetime import UTC, datetime, timedelta

from tablestore_py.testkit import fixed_clock, no_sleep, sequential_etags


def test_no_sleep_is_noop() -> None:
    no_sleep(0.0)
    no_sleep(1.0)


def test_fixed_clock_advances_by_step() -> None:
    start = datetime(2030, 5, 1, tzinfo=UTC)
    clock = fixed_clock(start, step=timedelta(minutes=1))

    assert [clock(), clock(), clock()] == [start, start + timedelta(minutes=1), start + timedelta(minutes=2)]


def test_sequential_etags_are_distinct() -> None:
    new_etag = sequential_etags("t")
    assert [new_etag(), new_etag()] == ['W/"t-1"', 'W/"t-2"']
