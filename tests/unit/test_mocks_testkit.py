from __future__ import annotations

import pytest
from botocore.exceptions import ClientError

from tablestore_py import (
    FilterCondition,
    FilterGroup,
    InvalidArgumentError,
    NotFoundError,
    RawFilter,
    StoreError,
    TableOperation,
    TableRow,
)
from tablestore_py.mocks import ANY, FakeDynamoDBClient, InMemoryTableStoreClient, client_error, matches_filter


def test_fake_dynamodb_client_records_and_matches_calls() -> None:
    client = FakeDynamoDBClient()
    client.expect("put_item", {"TableName": "orders", "Item": ANY}, response={"ok": True})

    assert client.put_item(TableName="orders", Item={"PartitionKey": {"S": "p"}}) == {"ok": True}

    client.assert_no_pending()
    assert client.calls[0][0] == "put_item"


def test_fake_dynamodb_client_asserts_pending_calls() -> None:
    client = FakeDynamoDBClient()
    client.expect("query")
    with pytest.raises(AssertionError, match="pending expected calls"):
        client.assert_no_pending()


def test_fake_dynamodb_client_rejects_unexpected_calls() -> None:
    client = FakeDynamoDBClient()
    with pytest.raises(AssertionError, match="unexpected call: query"):
        client.query()


def test_fake_dynamodb_client_rejects_wrong_method_order() -> None:
    client = FakeDynamoDBClient()
    client.expect("scan")
    with pytest.raises(AssertionError, match="expected scan, got query"):
        client.query()


@pytest.mark.parametrize(
    ("expected", "req", "match"),
    [
        ({"a": 1}, {"a": 2}, "expected 1"),
        ({"a": 1}, {}, "missing key"),
        ({"a": {"b": 1}}, {"a": "nope"}, "expected dict"),
        ({"a": [1]}, {"a": "nope"}, "expected list"),
        ({"a": [1, 2]}, {"a": [1]}, "expected 2 items"),
    ],
)
def test_fake_dynamodb_client_strict_matching(expected: dict, req: dict, match: str) -> None:
    client = FakeDynamoDBClient()
    client.expect("query", expected)
    with pytest.raises(AssertionError, match=match):
        client.query(**req)


def test_client_error_builds_botocore_errors() -> None:
    err = client_error("ThrottlingException", "slow down", operation="Query", CancellationReasons=[])

    assert isinstance(err, ClientError)
    assert err.response["Error"] == {"Code": "ThrottlingException", "Message": "slow down"}
    assert err.response["CancellationReasons"] == []


def test_matches_filter_evaluates_groups() -> None:
    row = TableRow(partition_key="p", row_key="r", properties={"n": 5, "s": "x"})

    assert matches_filter(row, None)
    assert matches_filter(row, FilterGroup.and_(FilterCondition.eq("PartitionKey", "p"), FilterCondition.gt("n", 1)))
    assert matches_filter(row, FilterGroup.or_(FilterCondition.eq("s", "y"), FilterCondition.lte("n", 5)))
    assert not matches_filter(row, FilterCondition.eq("missing", 1))
    assert matches_filter(row, FilterCondition.ne("missing", 1))
    assert not matches_filter(row, FilterCondition.lt("s", 3))

    with pytest.raises(InvalidArgumentError):
        matches_filter(row, RawFilter("n > 1"))


@pytest.mark.asyncio
async def test_in_memory_client_validates_batches() -> None:
    store = InMemoryTableStoreClient()

    with pytest.raises(InvalidArgumentError):
        await store.execute_batch(
            [
                TableOperation.insert_or_replace(TableRow(partition_key="a", row_key="1")),
                TableOperation.insert_or_replace(TableRow(partition_key="b", row_key="1")),
            ]
        )
    with pytest.raises(InvalidArgumentError):
        await store.execute_batch(
            [TableOperation.insert_or_replace(TableRow(partition_key="a", row_key=str(i))) for i in range(101)]
        )
    assert store.rows == []


@pytest.mark.asyncio
async def test_in_memory_client_injects_custom_errors() -> None:
    store = InMemoryTableStoreClient()
    store.fail_batch(1, StoreError(code="ServerBusy", message="try later"))

    with pytest.raises(StoreError, match="ServerBusy"):
        await store.execute_batch([TableOperation.insert_or_replace(TableRow(partition_key="a", row_key="1"))])

    await store.execute_batch([TableOperation.insert_or_replace(TableRow(partition_key="a", row_key="1"))])
    assert [row.key for row in store.rows] == [("a", "1")]


@pytest.mark.asyncio
async def test_in_memory_client_delete_of_missing_row() -> None:
    store = InMemoryTableStoreClient()

    with pytest.raises(NotFoundError):
        await store.execute(TableOperation.delete(TableRow(partition_key="a", row_key="1")))


@pytest.mark.asyncio
async def test_in_memory_client_delete_table_clears_rows() -> None:
    store = InMemoryTableStoreClient()
    store.seed(TableRow(partition_key="a", row_key="1"))
    await store.create_if_not_exists()

    await store.delete_table()

    assert store.rows == []
    assert store.exists is False


def test_in_memory_client_rejects_bad_page_size() -> None:
    with pytest.raises(InvalidArgumentError):
        InMemoryTableStoreClient(page_size=0)
