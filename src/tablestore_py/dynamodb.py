from __future__ import annotations

import asyncio
import logging
import math
import time
import uuid
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

import boto3
from boto3.dynamodb.types import Binary, TypeDeserializer, TypeSerializer
from botocore.exceptions import ClientError

from . import schema
from .aws_errors import map_client_error, map_transaction_error
from .batching import MAX_BATCH_SIZE
from .entity import ETAG, PARTITION_KEY, RESERVED_KEYS, ROW_KEY, TIMESTAMP, TableRow
from .errors import InvalidArgumentError, UnsupportedPropertyTypeError
from .operations import OperationResult, TableOperation, WriteMode
from .query import (
    FilterCondition,
    FilterExpression,
    FilterGroup,
    Page,
    RawFilter,
    decode_cursor,
    encode_cursor,
)
from .validation import validate_table_name

logger = logging.getLogger(__name__)

TYPE_TAG = "$edm"

_DYNAMODB_OPS = {"=": "=", "!=": "<>", "<": "<", "<=": "<=", ">": ">", ">=": ">="}
_ROW_KEY_OPS = frozenset({"=", "<", "<=", ">", ">="})

# Tagged map attribute holding the comparable string form of a datetime/UUID.
_TAGGED_VALUE = "value"


def _new_etag() -> str:
    return f'W/"{uuid.uuid4().hex}"'


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _utc_iso(value: datetime) -> str:
    # Stored datetimes are UTC ISO strings so they sort lexicographically.
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


def _has_etag(row: TableRow) -> bool:
    return bool(row.etag) and row.etag != "*"


def _references_key(expr: FilterExpression) -> bool:
    if isinstance(expr, FilterCondition):
        return expr.field in (PARTITION_KEY, ROW_KEY)
    if isinstance(expr, FilterGroup):
        return any(_references_key(f) for f in expr.filters)
    if isinstance(expr, RawFilter):
        return any(name in (PARTITION_KEY, ROW_KEY) for name in expr.names.values())
    return False


def _key_conditions(
    expr: FilterExpression | None,
) -> tuple[str | None, FilterCondition | None, FilterExpression | None]:
    """Split a key condition out of an AND filter.

    Returns ``(partition_key, row_key_condition, remaining_filter)``. A
    partition key equality plus at most one RowKey comparison become the
    key condition of a query. When the rest of the filter would still
    reference a key attribute the whole filter is returned as remaining,
    because a query filter cannot name primary key attributes.
    """

    def key_cond(node: FilterExpression, field: str, ops: frozenset[str]) -> bool:
        return (
            isinstance(node, FilterCondition)
            and node.field == field
            and node.op in ops
            and isinstance(node.value, str)
        )

    if expr is None:
        return None, None, None
    if key_cond(expr, PARTITION_KEY, frozenset({"="})):
        return expr.value, None, None  # type: ignore[union-attr]
    if not isinstance(expr, FilterGroup) or expr.op != "AND":
        return None, None, expr

    rest = list(expr.filters)
    pk_node = next((f for f in rest if key_cond(f, PARTITION_KEY, frozenset({"="}))), None)
    if pk_node is None:
        return None, None, expr
    rest.remove(pk_node)

    rk_node = next((f for f in rest if key_cond(f, ROW_KEY, _ROW_KEY_OPS)), None)
    if rk_node is not None:
        rest.remove(rk_node)

    if any(_references_key(f) for f in rest):
        return None, None, expr

    remaining: FilterExpression | None
    if not rest:
        remaining = None
    elif len(rest) == 1:
        remaining = rest[0]
    else:
        remaining = FilterGroup.and_(*rest)

    return pk_node.value, rk_node, remaining  # type: ignore[union-attr,return-value]


class DynamoDBTableStoreClient:
    """Table store backed by a DynamoDB table keyed on PartitionKey/RowKey.

    DynamoDB has no native ETag or Timestamp, so both are written as
    attributes on every write. Blocking boto3 calls run in a worker thread.
    """

    def __init__(
        self,
        table_name: str,
        *,
        client: Any | None = None,
        billing_mode: schema.BillingMode = "PAY_PER_REQUEST",
        now: Callable[[], datetime] | None = None,
        new_etag: Callable[[], str] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._table_name = validate_table_name(table_name, backend="dynamodb")
        self._client: Any = client or boto3.client("dynamodb")
        self._billing_mode = billing_mode
        self._now = now or _utcnow
        self._new_etag = new_etag or _new_etag
        self._sleep = sleep
        self._serializer = TypeSerializer()
        self._deserializer = TypeDeserializer()

    @property
    def table_name(self) -> str:
        return self._table_name

    async def execute(self, operation: TableOperation) -> OperationResult:
        return await asyncio.to_thread(self._execute, operation)

    async def execute_batch(self, operations: list[TableOperation]) -> list[OperationResult]:
        return await asyncio.to_thread(self._execute_batch, operations)

    async def execute_query_segment(
        self,
        filter: FilterExpression | None,
        continuation_token: Any | None,
        *,
        select: list[str] | None = None,
        page_size: int | None = None,
    ) -> Page[TableRow]:
        return await asyncio.to_thread(self._query_segment, filter, continuation_token, select, page_size)

    async def create_if_not_exists(self) -> bool:
        return await asyncio.to_thread(
            schema.ensure_table,
            self._table_name,
            client=self._client,
            billing_mode=self._billing_mode,
            sleep=self._sleep,
        )

    async def delete_table(self) -> None:
        await asyncio.to_thread(
            schema.delete_table,
            self._table_name,
            client=self._client,
            sleep=self._sleep,
        )

    def _execute(self, operation: TableOperation) -> OperationResult:
        row = operation.row
        etag, timestamp = self._new_etag(), self._now()

        try:
            if operation.kind is WriteMode.REPLACE:
                self._client.put_item(**self._put_request(row, etag, timestamp))
            elif operation.kind is WriteMode.MERGE:
                self._client.update_item(**self._update_request(row, etag, timestamp))
            elif operation.kind is WriteMode.DELETE:
                self._client.delete_item(**self._delete_request(row))
            else:
                raise InvalidArgumentError(f"unsupported operation: {operation.kind}")
        except ClientError as err:
            missing_row = operation.kind is WriteMode.DELETE and not _has_etag(row)
            raise map_client_error(err, missing_row=missing_row) from err

        return self._result(operation, etag, timestamp)

    def _execute_batch(self, operations: list[TableOperation]) -> list[OperationResult]:
        if not operations:
            return []
        if len(operations) > MAX_BATCH_SIZE:
            raise InvalidArgumentError(f"a batch supports at most {MAX_BATCH_SIZE} operations")
        if len({op.row.partition_key for op in operations}) != 1:
            raise InvalidArgumentError("batch operations must share one partition key")

        transact_items: list[dict[str, Any]] = []
        stamps: list[tuple[str, datetime]] = []
        for op in operations:
            etag, timestamp = self._new_etag(), self._now()
            stamps.append((etag, timestamp))
            if op.kind is WriteMode.REPLACE:
                transact_items.append({"Put": self._put_request(op.row, etag, timestamp)})
            elif op.kind is WriteMode.MERGE:
                transact_items.append({"Update": self._update_request(op.row, etag, timestamp)})
            elif op.kind is WriteMode.DELETE:
                transact_items.append({"Delete": self._delete_request(op.row)})
            else:
                raise InvalidArgumentError(f"unsupported operation: {op.kind}")

        try:
            self._client.transact_write_items(TransactItems=transact_items)
        except ClientError as err:
            raise map_transaction_error(err) from err

        return [self._result(op, etag, ts) for op, (etag, ts) in zip(operations, stamps, strict=True)]

    def _query_segment(
        self,
        filter: FilterExpression | None,
        continuation_token: Any | None,
        select: list[str] | None,
        page_size: int | None,
    ) -> Page[TableRow]:
        names: dict[str, str] = {}
        values: dict[str, Any] = {}
        req: dict[str, Any] = {"TableName": self._table_name}

        partition_key, row_key, remaining = _key_conditions(filter)
        if partition_key is not None:
            names["#pk"] = PARTITION_KEY
            values[":pk"] = {"S": partition_key}
            key_expr = "#pk = :pk"
            if row_key is not None:
                names["#rk"] = ROW_KEY
                values[":rk"] = {"S": row_key.value}
                key_expr += f" AND #rk {row_key.op} :rk"
            req["KeyConditionExpression"] = key_expr

        if remaining is not None:
            req["FilterExpression"] = self._filter_expression(remaining, names, values)
        if select is not None:
            req["ProjectionExpression"] = self._projection_expression(select, names)
        if page_size is not None:
            req["Limit"] = page_size
        if continuation_token is not None:
            try:
                req["ExclusiveStartKey"] = decode_cursor(continuation_token)
            except Exception as err:
                raise InvalidArgumentError("invalid continuation token") from err
        if names:
            req["ExpressionAttributeNames"] = names
        if values:
            req["ExpressionAttributeValues"] = values

        try:
            if partition_key is not None:
                resp = self._client.query(**req)
            else:
                logger.debug("scanning %s (no partition key in filter)", self._table_name)
                resp = self._client.scan(**req)
        except ClientError as err:
            raise map_client_error(err) from err

        rows = [self._row_from_item(item) for item in resp.get("Items", [])]
        last = resp.get("LastEvaluatedKey")
        return Page(items=rows, next_cursor=encode_cursor(last) if last else None)

    def _put_request(self, row: TableRow, etag: str, timestamp: datetime) -> dict[str, Any]:
        item = self._key(row)
        item[ETAG] = {"S": etag}
        item[TIMESTAMP] = {"S": _utc_iso(timestamp)}
        for name, value in row.properties.items():
            item[name] = self._encode_value(name, value)
        return {"TableName": self._table_name, "Item": item}

    def _update_request(self, row: TableRow, etag: str, timestamp: datetime) -> dict[str, Any]:
        names: dict[str, str] = {"#etag": ETAG, "#ts": TIMESTAMP}
        values: dict[str, Any] = {":etag": {"S": etag}, ":ts": {"S": _utc_iso(timestamp)}}
        set_parts = ["#etag = :etag", "#ts = :ts"]

        for i, (name, value) in enumerate(row.properties.items()):
            names[f"#p{i}"] = name
            values[f":p{i}"] = self._encode_value(name, value)
            set_parts.append(f"#p{i} = :p{i}")

        return {
            "TableName": self._table_name,
            "Key": self._key(row),
            "UpdateExpression": "SET " + ", ".join(set_parts),
            "ExpressionAttributeNames": names,
            "ExpressionAttributeValues": values,
        }

    def _delete_request(self, row: TableRow) -> dict[str, Any]:
        req: dict[str, Any] = {"TableName": self._table_name, "Key": self._key(row)}
        if _has_etag(row):
            req["ConditionExpression"] = "#etag = :etag"
            req["ExpressionAttributeNames"] = {"#etag": ETAG}
            req["ExpressionAttributeValues"] = {":etag": {"S": row.etag}}
        else:
            req["ConditionExpression"] = "attribute_exists(#pk)"
            req["ExpressionAttributeNames"] = {"#pk": PARTITION_KEY}
        return req

    @staticmethod
    def _key(row: TableRow) -> dict[str, Any]:
        return {PARTITION_KEY: {"S": row.partition_key}, ROW_KEY: {"S": row.row_key}}

    @staticmethod
    def _result(operation: TableOperation, etag: str, timestamp: datetime) -> OperationResult:
        if operation.kind is WriteMode.DELETE:
            return OperationResult(
                kind=operation.kind,
                partition_key=operation.row.partition_key,
                row_key=operation.row.row_key,
            )
        return OperationResult(
            kind=operation.kind,
            partition_key=operation.row.partition_key,
            row_key=operation.row.row_key,
            etag=etag,
            timestamp=timestamp,
        )

    def _encode_value(self, name: str, value: Any) -> dict[str, Any]:
        if isinstance(value, datetime):
            return {"M": {TYPE_TAG: {"S": "Edm.DateTime"}, _TAGGED_VALUE: {"S": _utc_iso(value)}}}
        if isinstance(value, uuid.UUID):
            return {"M": {TYPE_TAG: {"S": "Edm.Guid"}, _TAGGED_VALUE: {"S": str(value)}}}
        if isinstance(value, bool):
            return {"BOOL": value}
        if isinstance(value, int):
            return {"N": str(value)}
        if isinstance(value, float):
            if not math.isfinite(value):
                raise UnsupportedPropertyTypeError(name=name, value=value)
            return {"N": str(Decimal(repr(value)))}
        if isinstance(value, (str, bytes)):
            return self._serializer.serialize(value)
        raise UnsupportedPropertyTypeError(name=name, value=value)

    def _decode_value(self, av: Mapping[str, Any]) -> Any:
        tagged = av.get("M")
        if isinstance(tagged, dict) and TYPE_TAG in tagged:
            tag = tagged[TYPE_TAG].get("S")
            raw = tagged.get(_TAGGED_VALUE, {}).get("S", "")
            if tag == "Edm.DateTime":
                return datetime.fromisoformat(raw)
            if tag == "Edm.Guid":
                return uuid.UUID(raw)

        value = self._deserializer.deserialize(dict(av))
        if isinstance(value, Decimal):
            if value == value.to_integral_value() and value.as_tuple().exponent >= 0:
                return int(value)
            return float(value)
        if isinstance(value, Binary):
            return bytes(value.value)
        return value

    def _row_from_item(self, item: Mapping[str, Any]) -> TableRow:
        timestamp_raw = item.get(TIMESTAMP, {}).get("S")
        return TableRow(
            partition_key=str(item.get(PARTITION_KEY, {}).get("S", "")),
            row_key=str(item.get(ROW_KEY, {}).get("S", "")),
            properties={
                name: self._decode_value(av) for name, av in item.items() if name not in RESERVED_KEYS
            },
            etag=item.get(ETAG, {}).get("S"),
            timestamp=datetime.fromisoformat(timestamp_raw) if timestamp_raw else None,
        )

    def _filter_expression(self, expr: FilterExpression, names: dict[str, str], values: dict[str, Any]) -> str:
        counter = 0
        field_refs: dict[str, str] = {}

        def name_ref(field_name: str) -> str:
            ref = field_refs.get(field_name)
            if ref is None:
                ref = f"#f{len(field_refs)}"
                field_refs[field_name] = ref
                names[ref] = field_name
            return ref

        def value_ref(field_name: str, value: Any) -> str:
            nonlocal counter
            counter += 1
            ref = f":f{counter}"
            values[ref] = self._encode_value(field_name, value)
            return ref

        def string_ref(raw: str) -> str:
            nonlocal counter
            counter += 1
            ref = f":f{counter}"
            values[ref] = {"S": raw}
            return ref

        def build(node: FilterExpression) -> str:
            if isinstance(node, RawFilter):
                for k, v in node.names.items():
                    if k in names and names[k] != v:
                        raise InvalidArgumentError(f"expression attribute name collision: {k}")
                    names[k] = v
                for k, v in node.values.items():
                    if k in values:
                        raise InvalidArgumentError(f"expression attribute value collision: {k}")
                    values[k] = self._encode_value(k, v)
                return f"({node.expression})"

            if isinstance(node, FilterGroup):
                parts = [p for p in (build(f) for f in node.filters) if p]
                if not parts:
                    return ""
                return "(" + f" {node.op} ".join(parts) + ")"

            if not isinstance(node, FilterCondition):
                raise InvalidArgumentError("invalid filter expression")

            op = _DYNAMODB_OPS.get(node.op)
            if op is None:
                raise InvalidArgumentError(f"unsupported filter operator: {node.op}")

            # Timestamp is a plain ISO string; datetime and UUID properties are
            # compared through the string inside their tagged map.
            if isinstance(node.value, (datetime, uuid.UUID)):
                raw = _utc_iso(node.value) if isinstance(node.value, datetime) else str(node.value)
                path = name_ref(node.field)
                if node.field != TIMESTAMP:
                    names["#tv"] = _TAGGED_VALUE
                    path += ".#tv"
                return f"{path} {op} {string_ref(raw)}"

            return f"{name_ref(node.field)} {op} {value_ref(node.field, node.value)}"

        return build(expr)

    @staticmethod
    def _projection_expression(select: list[str], names: dict[str, str]) -> str:
        wanted = [PARTITION_KEY, ROW_KEY, ETAG, TIMESTAMP]
        wanted.extend(name for name in select if name not in wanted)

        refs: list[str] = []
        for i, name in enumerate(wanted):
            ref = f"#s{i}"
            names[ref] = name
            refs.append(ref)
        return ", ".join(refs)
