from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

import boto3
from botocore.exceptions import ClientError

from .aws_errors import map_client_error
from .entity import PARTITION_KEY, ROW_KEY
from .errors import InvalidArgumentError, StoreError
from .validation import validate_table_name

BillingMode = str  # "PAY_PER_REQUEST" | "PROVISIONED"

_TABLE_IN_USE = "ResourceInUseException"
_TABLE_MISSING = "ResourceNotFoundException"


def build_create_table_request(
    table_name: str,
    *,
    billing_mode: BillingMode = "PAY_PER_REQUEST",
    provisioned_throughput: dict[str, int] | None = None,
) -> dict[str, Any]:
    """CreateTable arguments for the fixed PartitionKey/RowKey string schema."""
    validate_table_name(table_name, backend="dynamodb")

    mode = (billing_mode or "").strip() or "PAY_PER_REQUEST"
    if mode not in {"PAY_PER_REQUEST", "PROVISIONED"}:
        raise InvalidArgumentError(f"unsupported billing_mode: {mode}")

    req: dict[str, Any] = {
        "TableName": table_name,
        "BillingMode": mode,
        "KeySchema": [
            {"AttributeName": PARTITION_KEY, "KeyType": "HASH"},
            {"AttributeName": ROW_KEY, "KeyType": "RANGE"},
        ],
        "AttributeDefinitions": [
            {"AttributeName": name, "AttributeType": "S"} for name in (PARTITION_KEY, ROW_KEY)
        ],
    }
    if mode == "PROVISIONED":
        if provisioned_throughput is None:
            raise InvalidArgumentError("provisioned_throughput is required when billing_mode=PROVISIONED")
        req["ProvisionedThroughput"] = dict(provisioned_throughput)
    return req


def ensure_table(
    table_name: str,
    *,
    client: Any | None = None,
    billing_mode: BillingMode = "PAY_PER_REQUEST",
    provisioned_throughput: dict[str, int] | None = None,
    wait_for_active: bool = True,
    wait_timeout_seconds: float = 300.0,
    poll_interval_seconds: float = 0.25,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Create the table when it is missing; True when this call created it."""
    ddb = client if client is not None else boto3.client("dynamodb")
    req = build_create_table_request(
        table_name,
        billing_mode=billing_mode,
        provisioned_throughput=provisioned_throughput,
    )

    try:
        ddb.create_table(**req)
        created = True
    except ClientError as err:
        if _error_code(err) != _TABLE_IN_USE:
            raise map_client_error(err) from err
        created = False

    if wait_for_active:
        _poll_table(
            ddb,
            table_name,
            lambda status: status == "ACTIVE",
            description="ACTIVE",
            timeout_seconds=wait_timeout_seconds,
            interval_seconds=poll_interval_seconds,
            sleep=sleep,
        )
    return created


def delete_table(
    table_name: str,
    *,
    client: Any | None = None,
    wait_for_delete: bool = True,
    wait_timeout_seconds: float = 300.0,
    poll_interval_seconds: float = 0.25,
    ignore_missing: bool = False,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    ddb = client if client is not None else boto3.client("dynamodb")

    try:
        ddb.delete_table(TableName=table_name)
    except ClientError as err:
        if ignore_missing and _error_code(err) == _TABLE_MISSING:
            return
        raise map_client_error(err) from err

    if wait_for_delete:
        _poll_table(
            ddb,
            table_name,
            lambda status: status is None,
            description="deletion",
            timeout_seconds=wait_timeout_seconds,
            interval_seconds=poll_interval_seconds,
            sleep=sleep,
        )


def _error_code(err: ClientError) -> str:
    return str(err.response.get("Error", {}).get("Code", ""))


def _table_status(client: Any, table_name: str) -> str | None:
    # None means the table does not exist (yet, or any more).
    try:
        resp = client.describe_table(TableName=table_name)
    except ClientError as err:
        if _error_code(err) == _TABLE_MISSING:
            return None
        raise map_client_error(err) from err
    return str(resp.get("Table", {}).get("TableStatus", ""))


def _poll_table(
    client: Any,
    table_name: str,
    done: Callable[[str | None], bool],
    *,
    description: str,
    timeout_seconds: float,
    interval_seconds: float,
    sleep: Callable[[float], None],
) -> None:
    deadline = time.monotonic() + timeout_seconds
    while True:
        if done(_table_status(client, table_name)):
            return
        if time.monotonic() >= deadline:
            raise StoreError(code="Timeout", message=f"timed out waiting for table {description}: {table_name}")
        sleep(interval_seconds)
