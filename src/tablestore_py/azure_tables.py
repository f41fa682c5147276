from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from typing import Any

from azure.core import MatchConditions
from azure.core.exceptions import HttpResponseError, ResourceExistsError
from azure.data.tables import EdmType, EntityProperty, UpdateMode
from azure.data.tables.aio import TableClient

from .azure_errors import map_http_error
from .batching import MAX_BATCH_SIZE
from .entity import PARTITION_KEY, RESERVED_KEYS, ROW_KEY, TableRow, plain_datetime
from .errors import InvalidArgumentError, UnsupportedPropertyTypeError
from .operations import OperationResult, TableOperation, WriteMode
from .query import FilterCondition, FilterExpression, FilterGroup, Page, RawFilter
from .validation import validate_table_name

logger = logging.getLogger(__name__)

_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1

_ODATA_OPS = {"=": "eq", "!=": "ne", "<": "lt", "<=": "le", ">": "gt", ">=": "ge"}

_UPSERT_MODES = {WriteMode.REPLACE: UpdateMode.REPLACE, WriteMode.MERGE: UpdateMode.MERGE}


def odata_literal(field: str, value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        if _INT32_MIN <= value <= _INT32_MAX:
            return str(value)
        return f"{value}L"
    if isinstance(value, float):
        return repr(value)
    if isinstance(value, str):
        return "'" + value.replace("'", "''") + "'"
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(UTC)
        return f"datetime'{value.strftime('%Y-%m-%dT%H:%M:%S.%f')}Z'"
    if isinstance(value, uuid.UUID):
        return f"guid'{value}'"
    if isinstance(value, (bytes, bytearray)):
        return f"X'{bytes(value).hex()}'"
    raise UnsupportedPropertyTypeError(name=field, value=value)


def render_filter(expr: FilterExpression) -> tuple[str, dict[str, Any]]:
    """Render a filter tree as OData text plus query parameters.

    `RawFilter` text is used as-is; its values become `@name` parameters.
    Azure has no attribute-name placeholders, so raw filters with names are
    rejected.
    """
    parameters: dict[str, Any] = {}

    def build(node: FilterExpression) -> str:
        if isinstance(node, RawFilter):
            if node.names:
                raise InvalidArgumentError("azure filters do not support attribute name placeholders")
            for name, value in node.values.items():
                parameters[name.lstrip("@")] = value
            return f"({node.expression})"
        if isinstance(node, FilterGroup):
            parts = [build(f) for f in node.filters]
            if not parts:
                return ""
            return "(" + f" {node.op.lower()} ".join(p for p in parts if p) + ")"
        if isinstance(node, FilterCondition):
            op = _ODATA_OPS.get(node.op)
            if op is None:
                raise InvalidArgumentError(f"unsupported filter operator: {node.op}")
            return f"{node.field} {op} {odata_literal(node.field, node.value)}"
        raise InvalidArgumentError("invalid filter expression")

    return build(expr), parameters


def _to_entity_value(value: Any) -> Any:
    if isinstance(value, int) and not isinstance(value, bool) and not _INT32_MIN <= value <= _INT32_MAX:
        return EntityProperty(value, EdmType.INT64)
    return value


def _from_entity_value(value: Any) -> Any:
    if isinstance(value, EntityProperty):
        value = value.value
    if isinstance(value, datetime):
        return plain_datetime(value)
    return value


class AzureTableStoreClient:
    """Table store backed by an Azure Storage (or Cosmos DB) table."""

    def __init__(self, table_client: TableClient) -> None:
        if table_client is None:
            raise InvalidArgumentError("table_client is required")
        self._table = table_client
        self._table_name = validate_table_name(table_client.table_name, backend="azure")

    @classmethod
    def from_connection_string(cls, connection_string: str, table_name: str) -> AzureTableStoreClient:
        if not connection_string:
            raise InvalidArgumentError("connection_string is required")
        validate_table_name(table_name, backend="azure")
        return cls(TableClient.from_connection_string(connection_string, table_name=table_name))

    @property
    def table_name(self) -> str:
        return self._table_name

    async def close(self) -> None:
        await self._table.close()

    async def __aenter__(self) -> AzureTableStoreClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def execute(self, operation: TableOperation) -> OperationResult:
        row = operation.row
        try:
            if operation.kind is WriteMode.DELETE:
                await self._table.delete_entity(
                    partition_key=row.partition_key,
                    row_key=row.row_key,
                    **self._delete_condition(row),
                )
                return OperationResult(kind=operation.kind, partition_key=row.partition_key, row_key=row.row_key)

            mode = _UPSERT_MODES.get(operation.kind)
            if mode is None:
                raise InvalidArgumentError(f"unsupported operation: {operation.kind}")
            metadata = await self._table.upsert_entity(self._entity(row), mode=mode)
        except HttpResponseError as err:
            raise map_http_error(err) from err

        return self._result(operation, metadata)

    async def execute_batch(self, operations: list[TableOperation]) -> list[OperationResult]:
        if not operations:
            return []
        if len(operations) > MAX_BATCH_SIZE:
            raise InvalidArgumentError(f"a batch supports at most {MAX_BATCH_SIZE} operations")
        if len({op.row.partition_key for op in operations}) != 1:
            raise InvalidArgumentError("batch operations must share one partition key")

        actions: list[tuple[str, dict[str, Any], dict[str, Any]]] = []
        for op in operations:
            if op.kind is WriteMode.DELETE:
                key = {PARTITION_KEY: op.row.partition_key, ROW_KEY: op.row.row_key}
                actions.append(("delete", key, self._delete_condition(op.row)))
            elif op.kind in _UPSERT_MODES:
                actions.append(("upsert", self._entity(op.row), {"mode": _UPSERT_MODES[op.kind]}))
            else:
                raise InvalidArgumentError(f"unsupported operation: {op.kind}")

        try:
            metadata = await self._table.submit_transaction(actions)
        except HttpResponseError as err:
            raise map_http_error(err) from err

        return [self._result(op, meta) for op, meta in zip(operations, metadata, strict=True)]

    async def execute_query_segment(
        self,
        filter: FilterExpression | None,
        continuation_token: Any | None,
        *,
        select: list[str] | None = None,
        page_size: int | None = None,
    ) -> Page[TableRow]:
        kwargs: dict[str, Any] = {}
        if select is not None:
            kwargs["select"] = [PARTITION_KEY, ROW_KEY, *(s for s in select if s not in RESERVED_KEYS)]
        if page_size is not None:
            kwargs["results_per_page"] = page_size

        if filter is None:
            pager = self._table.list_entities(**kwargs)
        else:
            text, parameters = render_filter(filter)
            logger.debug("querying %s with filter %s", self._table_name, text)
            if parameters:
                kwargs["parameters"] = parameters
            pager = self._table.query_entities(text, **kwargs)

        pages = pager.by_page(continuation_token=continuation_token)
        rows: list[TableRow] = []
        try:
            page = await anext(pages)
            rows = [self._row(entity) async for entity in page]
        except StopAsyncIteration:
            pass
        except HttpResponseError as err:
            raise map_http_error(err) from err

        return Page(items=rows, next_cursor=pages.continuation_token)

    async def create_if_not_exists(self) -> bool:
        try:
            await self._table.create_table()
        except ResourceExistsError:
            return False
        except HttpResponseError as err:
            raise map_http_error(err) from err
        return True

    async def delete_table(self) -> None:
        try:
            await self._table.delete_table()
        except HttpResponseError as err:
            raise map_http_error(err) from err

    @staticmethod
    def _entity(row: TableRow) -> dict[str, Any]:
        entity: dict[str, Any] = {PARTITION_KEY: row.partition_key, ROW_KEY: row.row_key}
        for name, value in row.properties.items():
            entity[name] = _to_entity_value(value)
        return entity

    @staticmethod
    def _delete_condition(row: TableRow) -> dict[str, Any]:
        if row.etag and row.etag != "*":
            return {"etag": row.etag, "match_condition": MatchConditions.IfNotModified}
        return {}

    @staticmethod
    def _result(operation: TableOperation, metadata: Any) -> OperationResult:
        meta = metadata if isinstance(metadata, dict) else {}
        timestamp = meta.get("date")
        return OperationResult(
            kind=operation.kind,
            partition_key=operation.row.partition_key,
            row_key=operation.row.row_key,
            etag=meta.get("etag"),
            timestamp=timestamp if isinstance(timestamp, datetime) else None,
        )

    @staticmethod
    def _row(entity: Any) -> TableRow:
        metadata = getattr(entity, "metadata", None) or {}
        timestamp = metadata.get("timestamp")
        return TableRow(
            partition_key=str(entity.get(PARTITION_KEY, "")),
            row_key=str(entity.get(ROW_KEY, "")),
            properties={
                name: _from_entity_value(value) for name, value in entity.items() if name not in RESERVED_KEYS
            },
            etag=metadata.get("etag"),
            timestamp=plain_datetime(timestamp) if isinstance(timestamp, datetime) else None,
        )
