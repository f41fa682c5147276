from __future__ import annotations

import json
import re
from importlib.resources import files
from typing import TYPE_CHECKING, Any

from .batching import MAX_BATCH_SIZE, batch
from .entity import TableRow, UnsanitizedKeyFields
from .errors import (
    BatchExecutionFailedError,
    ConditionFailedError,
    InvalidArgumentError,
    NotFoundError,
    StoreError,
    TablestorePyError,
    TransactionCanceledError,
    UnsupportedPropertyTypeError,
)
from .model import (
    AttributeConverter,
    ModelDefinition,
    ModelDefinitionError,
    SanitizedKeysEntity,
    TableEntity,
    tablestore_field,
)
from .operations import OperationResult, TableOperation, WriteMode
from .query import (
    FilterCondition,
    FilterGroup,
    Page,
    RawFilter,
    partition_and_row_filter,
    partition_filter,
    row_filter,
)
from .sanitization import (
    CallableSanitizationProvider,
    CharacterReplacementSanitizationProvider,
    SanitizationProvider,
)

if TYPE_CHECKING:
    from .azure_tables import AzureTableStoreClient
    from .client import TableStoreClient
    from .dynamodb import DynamoDBTableStoreClient
    from .runtime import (
        create_dynamodb_boto3_config,
        get_dynamodb_client,
        table_storage_from_env,
    )
    from .schema import build_create_table_request, delete_table, ensure_table
    from .table import TableStorage
    from .validation import validate_property_name, validate_table_name


def _read_repo_version() -> str:
    try:
        data = json.loads(files(__package__).joinpath("version.json").read_text(encoding="utf-8"))
    except Exception:
        return "0.0.0"

    version = data.get("version")
    return version if isinstance(version, str) and version else "0.0.0"


def _normalize_repo_version(repo_version: str) -> str:
    match = re.match(r"^(\d+\.\d+\.\d+)-rc\.?([0-9]+)$", repo_version)
    if match:
        return f"{match.group(1)}rc{match.group(2)}"
    return repo_version


__repo_version__ = _read_repo_version()
__version__ = _normalize_repo_version(__repo_version__)


def __getattr__(name: str) -> Any:
    if name == "TableStorage":
        from .table import TableStorage

        return TableStorage
    if name == "TableStoreClient":
        from .client import TableStoreClient

        return TableStoreClient
    if name == "DynamoDBTableStoreClient":
        from .dynamodb import DynamoDBTableStoreClient

        return DynamoDBTableStoreClient
    if name == "AzureTableStoreClient":
        from .azure_tables import AzureTableStoreClient

        return AzureTableStoreClient
    if name in {"build_create_table_request", "delete_table", "ensure_table"}:
        from . import schema

        return getattr(schema, name)
    if name in {"create_dynamodb_boto3_config", "get_dynamodb_client", "table_storage_from_env"}:
        from . import runtime

        return getattr(runtime, name)
    if name in {"validate_property_name", "validate_table_name"}:
        from . import validation

        return getattr(validation, name)
    raise AttributeError(name)


__all__ = [
    "AttributeConverter",
    "AzureTableStoreClient",
    "BatchExecutionFailedError",
    "batch",
    "build_create_table_request",
    "CallableSanitizationProvider",
    "CharacterReplacementSanitizationProvider",
    "ConditionFailedError",
    "create_dynamodb_boto3_config",
    "delete_table",
    "DynamoDBTableStoreClient",
    "ensure_table",
    "FilterCondition",
    "FilterGroup",
    "get_dynamodb_client",
    "InvalidArgumentError",
    "MAX_BATCH_SIZE",
    "ModelDefinition",
    "ModelDefinitionError",
    "NotFoundError",
    "OperationResult",
    "Page",
    "partition_and_row_filter",
    "partition_filter",
    "RawFilter",
    "row_filter",
    "SanitizationProvider",
    "SanitizedKeysEntity",
    "StoreError",
    "TableEntity",
    "TableOperation",
    "TableRow",
    "TableStorage",
    "TableStoreClient",
    "table_storage_from_env",
    "TablestorePyError",
    "tablestore_field",
    "TransactionCanceledError",
    "UnsanitizedKeyFields",
    "UnsupportedPropertyTypeError",
    "validate_property_name",
    "validate_table_name",
    "WriteMode",
    "__repo_version__",
    "__version__",
]
