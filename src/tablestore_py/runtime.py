from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from typing import Any, cast

import boto3
from botocore.config import Config

from .azure_tables import AzureTableStoreClient
from .batching import MAX_BATCH_SIZE
from .dynamodb import DynamoDBTableStoreClient
from .errors import InvalidArgumentError
from .table import TableStorage

logger = logging.getLogger(__name__)

BACKEND_ENV = "TABLESTORE_BACKEND"
TABLE_NAME_ENV = "TABLESTORE_TABLE_NAME"
CONNECTION_STRING_ENV = "TABLESTORE_CONNECTION_STRING"
DYNAMODB_ENDPOINT_ENV = "DYNAMODB_ENDPOINT"
REGION_ENV = "AWS_REGION"


def create_dynamodb_boto3_config(
    *,
    connect_timeout: float = 1.0,
    read_timeout: float = 3.0,
    max_attempts: int = 3,
) -> Config:
    return Config(
        connect_timeout=connect_timeout,
        read_timeout=read_timeout,
        retries={"max_attempts": max_attempts, "mode": "adaptive"},
    )


_dynamodb_clients: dict[tuple[str | None, str | None], Any] = {}


def get_dynamodb_client(
    *,
    region: str | None = None,
    endpoint_url: str | None = None,
    config: Config | None = None,
    session: Any | None = None,
) -> Any:
    key = (region, endpoint_url)
    existing = _dynamodb_clients.get(key)
    if existing is not None:
        return existing

    sess = session or boto3.session.Session(region_name=region)
    client = cast(Any, sess).client("dynamodb", region_name=region, endpoint_url=endpoint_url, config=config)

    _dynamodb_clients[key] = client
    return client


def _reset_clients_for_tests() -> None:
    _dynamodb_clients.clear()


def table_storage_from_env(
    environ: Mapping[str, str] = os.environ,
    *,
    batch_size: int = MAX_BATCH_SIZE,
) -> TableStorage:
    """Build a `TableStorage` for the backend named in the environment.

    ``TABLESTORE_BACKEND`` is ``dynamodb`` (the default) or ``azure``;
    ``TABLESTORE_TABLE_NAME`` is always required and the Azure backend
    also needs ``TABLESTORE_CONNECTION_STRING``.
    """
    backend = (environ.get(BACKEND_ENV) or "dynamodb").strip().lower()
    table_name = (environ.get(TABLE_NAME_ENV) or "").strip()
    if not table_name:
        raise InvalidArgumentError(f"{TABLE_NAME_ENV} is required")

    client: DynamoDBTableStoreClient | AzureTableStoreClient
    if backend == "dynamodb":
        ddb = get_dynamodb_client(
            region=environ.get(REGION_ENV) or None,
            endpoint_url=environ.get(DYNAMODB_ENDPOINT_ENV) or None,
            config=create_dynamodb_boto3_config(),
        )
        client = DynamoDBTableStoreClient(table_name, client=ddb)
    elif backend == "azure":
        connection_string = environ.get(CONNECTION_STRING_ENV) or ""
        if not connection_string:
            raise InvalidArgumentError(f"{CONNECTION_STRING_ENV} is required for the azure backend")
        client = AzureTableStoreClient.from_connection_string(connection_string, table_name)
    else:
        raise InvalidArgumentError(f"unsupported {BACKEND_ENV}: {backend!r}")

    logger.debug("using %s backend for table %s", backend, table_name)
    return TableStorage(client, batch_size=batch_size)
