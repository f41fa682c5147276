from __future__ import annotations

import uuid
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from typing import Any

import pytest
from azure.core import MatchConditions
from azure.core.exceptions import HttpResponseError, ResourceExistsError, ResourceModifiedError, ResourceNotFoundError
from azure.data.tables import EdmType, EntityProperty, UpdateMode

from tablestore_py import (
    AzureTableStoreClient,
    ConditionFailedError,
    FilterCondition,
    FilterGroup,
    InvalidArgumentError,
    NotFoundError,
    RawFilter,
    StoreError,
    TableOperation,
    TableRow,
    UnsupportedPropertyTypeError,
    partition_and_row_filter,
)
from tablestore_py.azure_tables import odata_literal, render_filter


class StubEntity(dict[str, Any]):
    def __init__(self, values: dict[str, Any], metadata: dict[str, Any]) -> None:
        super().__init__(values)
        self.metadata = metadata


async def _aiter(items: list[Any]) -> AsyncIterator[Any]:
    for item in items:
        yield item


class StubPages:
    def __init__(self, pages: list[list[Any]], tokens: list[Any]) -> None:
        self._pages = iter(pages)
        self._tokens = iter(tokens)
        self.continuation_token: Any = None

    def __aiter__(self) -> StubPages:
        return self

    async def __anext__(self) -> AsyncIterator[Any]:
        try:
            page = next(self._pages)
        except StopIteration:
            raise StopAsyncIteration from None
        self.continuation_token = next(self._tokens, None)
        return _aiter(page)


class StubPager:
    def __init__(self, pages: list[list[Any]], tokens: list[Any]) -> None:
        self._pages = pages
        self._tokens = tokens
        self.requested_tokens: list[Any] = []

    def by_page(self, continuation_token: Any = None) -> StubPages:
        self.requested_tokens.append(continuation_token)
        return StubPages(self._pages, self._tokens)


class StubTableClient:
    def __init__(self, table_name: str = "orders") -> None:
        self.table_name = table_name
        self.calls: list[tuple[str, Any]] = []
        self.error: Exception | None = None
        self.pager = StubPager([], [])
        self.closed = False

    def _record(self, name: str, payload: Any) -> None:
        self.calls.append((name, payload))
        if self.error is not None:
            raise self.error

    async def upsert_entity(self, entity: dict[str, Any], *, mode: UpdateMode) -> dict[str, Any]:
        self._record("upsert_entity", (entity, mode))
        return {"etag": 'W/"1"', "date": datetime(2024, 1, 1, tzinfo=UTC)}

    async def delete_entity(self, **kwargs: Any) -> None:
        self._record("delete_entity", kwargs)

    async def submit_transaction(self, operations: list[Any]) -> list[dict[str, Any]]:
        self._record("submit_transaction", operations)
        return [{"etag": f'W/"{i}"'} for i, _ in enumerate(operations)]

    def query_entities(self, query_filter: str, **kwargs: Any) -> StubPager:
        self.calls.append(("query_entities", (query_filter, kwargs)))
        return self.pager

    def list_entities(self, **kwargs: Any) -> StubPager:
        self.calls.append(("list_entities", kwargs))
        return self.pager

    async def create_table(self) -> None:
        self._record("create_table", None)

    async def delete_table(self) -> None:
        self._record("delete_table", None)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture()
def stub() -> StubTableClient:
    return StubTableClient()


@pytest.fixture()
def client(stub: StubTableClient) -> AzureTableStoreClient:
    return AzureTableStoreClient(stub)  # type: ignore[arg-type]


def test_odata_literals() -> None:
    gid = uuid.UUID("12345678-1234-5678-1234-567812345678")

    assert odata_literal("f", True) == "true"
    assert odata_literal("f", 5) == "5"
    assert odata_literal("f", 2**40) == "1099511627776L"
    assert odata_literal("f", 1.5) == "1.5"
    assert odata_literal("f", "O'Brien") == "'O''Brien'"
    assert odata_literal("f", datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)) == "datetime'2024-01-02T03:04:05.000000Z'"
    assert odata_literal("f", gid) == f"guid'{gid}'"
    assert odata_literal("f", b"\x01\xff") == "X'01ff'"
    with pytest.raises(UnsupportedPropertyTypeError):
        odata_literal("f", ["a"])


def test_render_filter_builds_odata() -> None:
    text, params = render_filter(partition_and_row_filter("a'b", "r"))
    assert text == "(PartitionKey eq 'a''b' and RowKey eq 'r')"
    assert params == {}

    text, _ = render_filter(FilterGroup.or_(FilterCondition.lt("n", 1), FilterCondition.gte("n", 10)))
    assert text == "(n lt 1 or n ge 10)"


def test_render_filter_raw_parameters() -> None:
    text, params = render_filter(RawFilter("Name eq @name", values={"@name": "x"}))
    assert text == "(Name eq @name)"
    assert params == {"name": "x"}

    with pytest.raises(InvalidArgumentError):
        render_filter(RawFilter("#n eq 1", names={"#n": "Name"}))


def test_constructor_validates_table_name() -> None:
    with pytest.raises(InvalidArgumentError):
        AzureTableStoreClient(StubTableClient("bad-name"))  # type: ignore[arg-type]
    with pytest.raises(InvalidArgumentError):
        AzureTableStoreClient.from_connection_string("", "orders")


@pytest.mark.asyncio
async def test_upserts_use_matching_update_mode(client: AzureTableStoreClient, stub: StubTableClient) -> None:
    row = TableRow(partition_key="p", row_key="r", properties={"small": 1, "big": 2**40})

    result = await client.execute(TableOperation.insert_or_replace(row))
    await client.execute(TableOperation.insert_or_merge(row))

    (entity, mode), (_, merge_mode) = stub.calls[0][1], stub.calls[1][1]
    assert entity == {
        "PartitionKey": "p",
        "RowKey": "r",
        "small": 1,
        "big": EntityProperty(2**40, EdmType.INT64),
    }
    assert mode is UpdateMode.REPLACE
    assert merge_mode is UpdateMode.MERGE
    assert result.etag == 'W/"1"'
    assert result.timestamp == datetime(2024, 1, 1, tzinfo=UTC)


@pytest.mark.asyncio
async def test_delete_matches_etag_when_present(client: AzureTableStoreClient, stub: StubTableClient) -> None:
    await client.execute(TableOperation.delete(TableRow(partition_key="p", row_key="r", etag='W/"7"')))
    await client.execute(TableOperation.delete(TableRow(partition_key="p", row_key="s")))

    assert stub.calls[0][1] == {
        "partition_key": "p",
        "row_key": "r",
        "etag": 'W/"7"',
        "match_condition": MatchConditions.IfNotModified,
    }
    assert stub.calls[1][1] == {"partition_key": "p", "row_key": "s"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (ResourceNotFoundError(message="missing"), NotFoundError),
        (ResourceModifiedError(message="stale"), ConditionFailedError),
        (HttpResponseError(message="boom"), StoreError),
    ],
)
async def test_errors_are_mapped(
    client: AzureTableStoreClient, stub: StubTableClient, error: Exception, expected: type[Exception]
) -> None:
    stub.error = error

    with pytest.raises(expected) as excinfo:
        await client.execute(TableOperation.insert_or_replace(TableRow(partition_key="p", row_key="r")))

    assert excinfo.value.__cause__ is error


@pytest.mark.asyncio
async def test_batch_submits_one_transaction(client: AzureTableStoreClient, stub: StubTableClient) -> None:
    results = await client.execute_batch(
        [
            TableOperation.insert_or_replace(TableRow(partition_key="p", row_key="1", properties={"v": 1})),
            TableOperation.delete(TableRow(partition_key="p", row_key="2", etag='W/"9"')),
        ]
    )

    actions = stub.calls[0][1]
    assert actions == [
        ("upsert", {"PartitionKey": "p", "RowKey": "1", "v": 1}, {"mode": UpdateMode.REPLACE}),
        (
            "delete",
            {"PartitionKey": "p", "RowKey": "2"},
            {"etag": 'W/"9"', "match_condition": MatchConditions.IfNotModified},
        ),
    ]
    assert [r.etag for r in results] == ['W/"0"', 'W/"1"']

    with pytest.raises(InvalidArgumentError):
        await client.execute_batch(
            [
                TableOperation.insert_or_replace(TableRow(partition_key="p", row_key="1")),
                TableOperation.insert_or_replace(TableRow(partition_key="q", row_key="1")),
            ]
        )


@pytest.mark.asyncio
async def test_query_segment_reads_one_page(client: AzureTableStoreClient, stub: StubTableClient) -> None:
    ts = datetime(2024, 3, 1, tzinfo=UTC)
    stub.pager = StubPager(
        [
            [
                StubEntity(
                    {"PartitionKey": "p", "RowKey": "r", "n": EntityProperty(2**40, EdmType.INT64), "s": "x"},
                    {"etag": 'W/"5"', "timestamp": ts},
                )
            ]
        ],
        [{"PartitionKey": "p", "RowKey": "s"}],
    )

    page = await client.execute_query_segment(
        FilterCondition.eq("PartitionKey", "p"), "prev", select=["s"], page_size=1
    )

    name, (text, kwargs) = stub.calls[0]
    assert name == "query_entities"
    assert text == "PartitionKey eq 'p'"
    assert kwargs == {"select": ["PartitionKey", "RowKey", "s"], "results_per_page": 1}
    assert stub.pager.requested_tokens == ["prev"]

    row = page.items[0]
    assert row.key == ("p", "r")
    assert row.properties == {"n": 2**40, "s": "x"}
    assert row.etag == 'W/"5"'
    assert row.timestamp == ts
    assert page.next_cursor == {"PartitionKey": "p", "RowKey": "s"}


@pytest.mark.asyncio
async def test_query_without_filter_lists_entities(client: AzureTableStoreClient, stub: StubTableClient) -> None:
    page = await client.execute_query_segment(None, None)

    assert stub.calls[0] == ("list_entities", {})
    assert page.items == []
    assert page.next_cursor is None


@pytest.mark.asyncio
async def test_create_if_not_exists(client: AzureTableStoreClient, stub: StubTableClient) -> None:
    assert await client.create_if_not_exists() is True

    stub.error = ResourceExistsError(message="exists")
    assert await client.create_if_not_exists() is False


@pytest.mark.asyncio
async def test_context_manager_closes_client(stub: StubTableClient) -> None:
    async with AzureTableStoreClient(stub) as client:  # type: ignore[arg-type]
        await client.delete_table()

    assert stub.closed is True
