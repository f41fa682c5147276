from __future__ import annotations

import os
import uuid
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import boto3
import pytest

from tablestore_py import DynamoDBTableStoreClient, TableStorage
from tablestore_py.schema import delete_table, ensure_table


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    here = Path(__file__).parent
    skip = pytest.mark.skip(reason="DYNAMODB_ENDPOINT is not set")
    for item in items:
        if here not in item.path.parents:
            continue
        item.add_marker(pytest.mark.integration)
        if not os.environ.get("DYNAMODB_ENDPOINT"):
            item.add_marker(skip)


@pytest.fixture()
def ddb_client() -> Any:
    return boto3.client(
        "dynamodb",
        endpoint_url=os.environ.get("DYNAMODB_ENDPOINT", "http://localhost:8000"),
        region_name=os.environ.get("AWS_REGION", "us-east-1"),
        aws_access_key_id=os.environ.get("AWS_ACCESS_KEY_ID", "dummy"),
        aws_secret_access_key=os.environ.get("AWS_SECRET_ACCESS_KEY", "dummy"),
    )


@pytest.fixture()
def table_name(ddb_client: Any) -> Iterator[str]:
    name = f"tablestore_py_{uuid.uuid4().hex[:12]}"
    ensure_table(name, client=ddb_client)
    try:
        yield name
    finally:
        delete_table(name, client=ddb_client, ignore_missing=True)


@pytest.fixture()
def table(ddb_client: Any, table_name: str) -> TableStorage:
    return TableStorage(DynamoDBTableStoreClient(table_name, client=ddb_client))
