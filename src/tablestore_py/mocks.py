from __future__ import annotations

import operator
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from botocore.exceptions import ClientError

from .batching import MAX_BATCH_SIZE
from .entity import ETAG, PARTITION_KEY, ROW_KEY, TIMESTAMP, TableRow
from .errors import ConditionFailedError, InvalidArgumentError, NotFoundError
from .operations import OperationResult, TableOperation, WriteMode
from .query import FilterCondition, FilterExpression, FilterGroup, Page, RawFilter
from .validation import validate_table_name


class _AnySentinel:
    def __repr__(self) -> str:  # pragma: no cover
        return "ANY"


ANY: Any = _AnySentinel()


def _assert_match(expected: Any, actual: Any, *, path: str) -> None:
    if expected is ANY:
        return

    if isinstance(expected, dict):
        if not isinstance(actual, dict):
            raise AssertionError(f"{path}: expected dict, got {type(actual).__name__}")
        for k, v in expected.items():
            if k not in actual:
                raise AssertionError(f"{path}: missing key {k!r}")
            _assert_match(v, actual[k], path=f"{path}.{k}")
        return

    if isinstance(expected, list):
        if not isinstance(actual, list):
            raise AssertionError(f"{path}: expected list, got {type(actual).__name__}")
        if len(expected) != len(actual):
            raise AssertionError(f"{path}: expected {len(expected)} items, got {len(actual)}")
        for i, (e, a) in enumerate(zip(expected, actual, strict=True)):
            _assert_match(e, a, path=f"{path}[{i}]")
        return

    if expected != actual:
        raise AssertionError(f"{path}: expected {expected!r}, got {actual!r}")


def client_error(code: str, message: str = "", *, operation: str = "Operation", **extra: Any) -> ClientError:
    """Build a botocore ``ClientError`` the way DynamoDB reports one."""
    response: dict[str, Any] = {"Error": {"Code": code, "Message": message}}
    response.update(extra)
    return ClientError(response, operation)  # type: ignore[arg-type]


@dataclass(frozen=True)
class ExpectedCall:
    method: str
    expected: Mapping[str, Any] | Callable[[Mapping[str, Any]], None] | None = None
    response: Mapping[str, Any] | None = None
    error: Exception | None = None


class FakeDynamoDBClient:
    """Scripted stand-in for a boto3 DynamoDB client.

    Calls must arrive in the order they were expected; each one is checked
    against its expected request (a partial dict, where ``ANY`` matches
    anything, or a callable) and answered with the scripted response or
    error.
    """

    def __init__(self) -> None:
        self._expected: list[ExpectedCall] = []
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def expect(
        self,
        method: str,
        expected: Mapping[str, Any] | Callable[[Mapping[str, Any]], None] | None = None,
        *,
        response: Mapping[str, Any] | None = None,
        error: Exception | None = None,
    ) -> None:
        self._expected.append(ExpectedCall(method=method, expected=expected, response=response, error=error))

    def assert_no_pending(self) -> None:
        if self._expected:
            raise AssertionError(f"pending expected calls: {self._expected!r}")

    def _handle(self, method: str, req: dict[str, Any]) -> Mapping[str, Any]:
        self.calls.append((method, dict(req)))
        if not self._expected:
            raise AssertionError(f"unexpected call: {method}")

        call = self._expected.pop(0)
        if call.method != method:
            raise AssertionError(f"expected {call.method}, got {method}")

        if callable(call.expected):
            call.expected(req)
        elif call.expected is not None:
            _assert_match(dict(call.expected), req, path=method)

        if call.error is not None:
            raise call.error

        return dict(call.response or {})

    def put_item(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._handle("put_item", kwargs)

    def update_item(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._handle("update_item", kwargs)

    def delete_item(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._handle("delete_item", kwargs)

    def query(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._handle("query", kwargs)

    def scan(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._handle("scan", kwargs)

    def transact_write_items(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._handle("transact_write_items", kwargs)

    def create_table(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._handle("create_table", kwargs)

    def delete_table(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._handle("delete_table", kwargs)

    def describe_table(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._handle("describe_table", kwargs)


_COMPARATORS: dict[str, Callable[[Any, Any], bool]] = {
    "=": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


def _field_value(row: TableRow, name: str) -> Any:
    if name == PARTITION_KEY:
        return row.partition_key
    if name == ROW_KEY:
        return row.row_key
    if name == ETAG:
        return row.etag
    if name == TIMESTAMP:
        return row.timestamp
    return row.properties.get(name)


def matches_filter(row: TableRow, expr: FilterExpression | None) -> bool:
    if expr is None:
        return True
    if isinstance(expr, FilterGroup):
        results = (matches_filter(row, f) for f in expr.filters)
        return all(results) if expr.op == "AND" else any(results)
    if isinstance(expr, RawFilter):
        raise InvalidArgumentError("raw filters are not supported by the in-memory store")
    if not isinstance(expr, FilterCondition):
        raise InvalidArgumentError("invalid filter expression")

    compare = _COMPARATORS.get(expr.op)
    if compare is None:
        raise InvalidArgumentError(f"unsupported filter operator: {expr.op}")

    actual = _field_value(row, expr.field)
    if actual is None:
        return expr.op == "!="
    try:
        return bool(compare(actual, expr.value))
    except TypeError:
        return False


class InMemoryTableStoreClient:
    """Deterministic table store for tests.

    Rows are kept sorted by (partition key, row key). Batches are checked
    the same way a real store checks them and commit all-or-nothing.
    ``fail_batch`` makes a given batch call (1-based) raise instead.
    """

    def __init__(
        self,
        table_name: str = "memory",
        *,
        page_size: int = 1000,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        if page_size <= 0:
            raise InvalidArgumentError("page_size must be > 0")
        self._table_name = validate_table_name(table_name, backend="memory")
        self._page_size = page_size
        self._now = now or (lambda: datetime.now(UTC))
        self._rows: dict[tuple[str, str], TableRow] = {}
        self._batch_failures: dict[int, Exception] = {}
        self.exists = False
        self.batch_calls = 0
        self.calls: list[tuple[str, Any]] = []

    @property
    def table_name(self) -> str:
        return self._table_name

    @property
    def rows(self) -> list[TableRow]:
        return [self._rows[k].copy() for k in sorted(self._rows)]

    def seed(self, *rows: TableRow) -> None:
        for row in rows:
            stored = row.copy()
            stored.etag = stored.etag or self._new_etag()
            stored.timestamp = stored.timestamp or self._now()
            self._rows[stored.key] = stored

    def fail_batch(self, call_number: int, error: Exception | None = None) -> None:
        self._batch_failures[call_number] = error or ConditionFailedError(f"injected failure for batch {call_number}")

    async def execute(self, operation: TableOperation) -> OperationResult:
        self.calls.append(("execute", operation))
        return self._apply(self._rows, operation)

    async def execute_batch(self, operations: list[TableOperation]) -> list[OperationResult]:
        self.batch_calls += 1
        self.calls.append(("execute_batch", list(operations)))

        failure = self._batch_failures.get(self.batch_calls)
        if failure is not None:
            raise failure
        if not operations:
            return []
        if len(operations) > MAX_BATCH_SIZE:
            raise InvalidArgumentError(f"a batch supports at most {MAX_BATCH_SIZE} operations")
        if len({op.row.partition_key for op in operations}) != 1:
            raise InvalidArgumentError("batch operations must share one partition key")

        staged = dict(self._rows)
        results = [self._apply(staged, op) for op in operations]
        self._rows = staged
        return results

    async def execute_query_segment(
        self,
        filter: FilterExpression | None,
        continuation_token: Any | None,
        *,
        select: list[str] | None = None,
        page_size: int | None = None,
    ) -> Page[TableRow]:
        self.calls.append(("query", (filter, continuation_token)))

        keys = sorted(k for k, row in self._rows.items() if matches_filter(row, filter))
        if continuation_token is not None:
            start = tuple(continuation_token)
            keys = [k for k in keys if k > start]

        limit = page_size or self._page_size
        taken, rest = keys[:limit], keys[limit:]
        rows = [self._project(self._rows[k], select) for k in taken]
        next_cursor = list(taken[-1]) if rest else None
        return Page(items=rows, next_cursor=next_cursor)

    async def create_if_not_exists(self) -> bool:
        self.calls.append(("create_if_not_exists", None))
        if self.exists:
            return False
        self.exists = True
        return True

    async def delete_table(self) -> None:
        self.calls.append(("delete_table", None))
        self.exists = False
        self._rows.clear()

    def _apply(self, store: dict[tuple[str, str], TableRow], operation: TableOperation) -> OperationResult:
        row = operation.row
        existing = store.get(row.key)

        if operation.kind is WriteMode.DELETE:
            if existing is None:
                raise NotFoundError(f"row not found: {row.key!r}")
            if row.etag and row.etag != "*" and row.etag != existing.etag:
                raise ConditionFailedError("etag mismatch")
            del store[row.key]
            return OperationResult(kind=operation.kind, partition_key=row.partition_key, row_key=row.row_key)

        properties = dict(row.properties)
        if operation.kind is WriteMode.MERGE and existing is not None:
            properties = {**existing.properties, **properties}
        elif operation.kind not in {WriteMode.REPLACE, WriteMode.MERGE}:
            raise InvalidArgumentError(f"unsupported operation: {operation.kind}")

        stored = TableRow(
            partition_key=row.partition_key,
            row_key=row.row_key,
            properties=properties,
            etag=self._new_etag(),
            timestamp=self._now(),
        )
        store[row.key] = stored
        return OperationResult(
            kind=operation.kind,
            partition_key=row.partition_key,
            row_key=row.row_key,
            etag=stored.etag,
            timestamp=stored.timestamp,
        )

    @staticmethod
    def _project(row: TableRow, select: list[str] | None) -> TableRow:
        out = row.copy()
        if select is not None:
            out.properties = {k: v for k, v in out.properties.items() if k in select}
        return out

    @staticmethod
    def _new_etag() -> str:
        return f'W/"{uuid.uuid4().hex}"'
