from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import is_dataclass
from typing import Any, TypeVar

from .batching import MAX_BATCH_SIZE, batch
from .client import TableStoreClient
from .entity import PARTITION_KEY, TableRow, row_from_mapping, row_to_mapping
from .errors import BatchExecutionFailedError, InvalidArgumentError
from .model import definition_for
from .operations import OperationResult, TableOperation, WriteMode
from .query import (
    FilterExpression,
    Page,
    partition_and_row_filter,
    partition_filter,
    row_filter,
)
from .sanitization import SanitizationProvider, sanitize_row, sanitize_rows
from .validation import validate_key

logger = logging.getLogger(__name__)

E = TypeVar("E")


def _to_row(entity: Any) -> TableRow:
    if entity is None:
        raise InvalidArgumentError("entity is required")
    if isinstance(entity, TableRow):
        return entity.copy()
    if isinstance(entity, Mapping):
        return row_from_mapping(entity)
    if is_dataclass(entity) and not isinstance(entity, type):
        return definition_for(type(entity)).to_row(entity)
    raise InvalidArgumentError(f"unsupported entity type: {type(entity).__name__}")


def _partition_key_of(entity: Any) -> str:
    if entity is None:
        raise InvalidArgumentError("entity is required")
    if isinstance(entity, TableRow):
        return entity.partition_key
    if isinstance(entity, Mapping):
        value = entity.get(PARTITION_KEY)
        return "" if value is None else str(value)
    if is_dataclass(entity) and not isinstance(entity, type):
        value = getattr(entity, definition_for(type(entity)).partition_key.python_name)
        return "" if value is None else str(value)
    raise InvalidArgumentError(f"unsupported entity type: {type(entity).__name__}")


def _default_mode(entity: Any) -> WriteMode:
    # Mappings merge into existing rows; typed records replace them.
    if isinstance(entity, Mapping):
        return WriteMode.MERGE
    return WriteMode.REPLACE


class TableStorage:
    """Partition-aware table facade over a `TableStoreClient`.

    Collection writes are grouped by partition key and sent as sequential
    transactions of at most 100 rows. A failing transaction stops the call;
    transactions that already succeeded are not rolled back.

    Queries follow continuation tokens until the store reports no more
    pages and return the fully buffered result.
    """

    def __init__(self, client: TableStoreClient, *, batch_size: int = MAX_BATCH_SIZE) -> None:
        if client is None:
            raise InvalidArgumentError("client is required")
        if batch_size <= 0 or batch_size > MAX_BATCH_SIZE:
            raise InvalidArgumentError(f"batch_size must be between 1 and {MAX_BATCH_SIZE}")

        self._client = client
        self._batch_size = batch_size

    @property
    def name(self) -> str:
        return self._client.table_name

    @property
    def client(self) -> TableStoreClient:
        return self._client

    async def create_if_not_exists(self) -> bool:
        return await self._client.create_if_not_exists()

    async def create(self) -> bool:
        return await self._client.create_if_not_exists()

    async def delete_table(self) -> None:
        await self._client.delete_table()

    def batch(self, entities: Iterable[E]) -> list[list[E]]:
        """Partition entities (rows, mappings or typed records) as a collection write would."""
        return batch(entities, size=self._batch_size, key=_partition_key_of)

    async def insert_or_replace(self, entity: Any) -> OperationResult:
        row = _to_row(entity)
        return await self._client.execute(TableOperation.insert_or_replace(row))

    async def insert_or_replace_sanitized(self, entity: Any, provider: SanitizationProvider) -> OperationResult:
        if provider is None:
            raise InvalidArgumentError("sanitization provider is required")
        row = sanitize_row(_to_row(entity), provider)
        return await self._client.execute(TableOperation.insert_or_replace(row))

    async def insert(self, entities: Iterable[Any], *, mode: WriteMode | None = None) -> list[OperationResult]:
        if entities is None:
            raise InvalidArgumentError("entities are required")
        return await self._execute_batches(self._prepare_writes(entities, mode))

    async def insert_sanitized(
        self,
        entities: Iterable[Any],
        provider: SanitizationProvider,
        *,
        mode: WriteMode | None = None,
    ) -> list[OperationResult]:
        if entities is None:
            raise InvalidArgumentError("entities are required")
        if provider is None:
            raise InvalidArgumentError("sanitization provider is required")
        operations = self._prepare_writes(entities, mode)
        sanitize_rows((op.row for op in operations), provider)
        return await self._execute_batches(operations)

    async def delete(self, entity: Any) -> OperationResult:
        row = _to_row(entity)
        return await self._client.execute(TableOperation.delete(row))

    async def delete_batch(self, entities: Iterable[Any]) -> list[OperationResult]:
        if entities is None:
            raise InvalidArgumentError("entities are required")
        return await self._execute_batches([TableOperation.delete(_to_row(entity)) for entity in entities])

    async def delete_by_partition(self, partition_key: str) -> None:
        validate_key(partition_key, field="partition_key")
        rows = await self._query_rows(partition_filter(partition_key))
        if not rows:
            return
        logger.debug("deleting %d rows from partition %r", len(rows), partition_key)
        await self._execute_batches([TableOperation.delete(row) for row in rows])

    async def delete_by_row(self, row_key: str) -> None:
        validate_key(row_key, field="row_key")
        rows = await self._query_rows(row_filter(row_key))
        # Matches may span partitions, so they are deleted one at a time.
        for row in rows:
            await self._client.execute(TableOperation.delete(row))

    async def delete_by_partition_and_row(self, partition_key: str, row_key: str) -> None:
        row = await self._lookup(partition_key, row_key)
        if row is not None:
            await self._client.execute(TableOperation.delete(row))

    async def query(
        self,
        filter: FilterExpression | None = None,
        *,
        model: type[Any] | None = None,
        select: list[str] | None = None,
        page_size: int | None = None,
    ) -> list[Any]:
        rows = await self._query_rows(filter, select=select, page_size=page_size)
        return self._present(rows, model)

    async def query_segment(
        self,
        filter: FilterExpression | None = None,
        *,
        continuation_token: Any | None = None,
        model: type[Any] | None = None,
        select: list[str] | None = None,
        page_size: int | None = None,
    ) -> Page[Any]:
        if page_size is not None and page_size <= 0:
            raise InvalidArgumentError("page_size must be > 0")
        page = await self._client.execute_query_segment(
            filter, continuation_token, select=select, page_size=page_size
        )
        return Page(items=self._present(page.items, model), next_cursor=page.next_cursor)

    async def query_by_partition(self, partition_key: str, *, model: type[Any] | None = None) -> list[Any]:
        validate_key(partition_key, field="partition_key")
        return await self.query(partition_filter(partition_key), model=model)

    async def query_by_row(self, row_key: str, *, model: type[Any] | None = None) -> list[Any]:
        """Rows with the given row key in any partition.

        Without a partition this is a full table scan.
        """
        validate_key(row_key, field="row_key")
        return await self.query(row_filter(row_key), model=model)

    async def query_by_partition_and_row(
        self,
        partition_key: str,
        row_key: str,
        *,
        model: type[Any] | None = None,
    ) -> Any | None:
        row = await self._lookup(partition_key, row_key)
        if row is None:
            return None
        return self._present([row], model)[0]

    async def query_where(
        self,
        predicate: Callable[[Any], bool],
        *,
        max_results: int | None = None,
        model: type[Any] | None = None,
    ) -> list[Any]:
        """Filter the whole table on the client.

        Every row is fetched before the predicate runs, so this is only
        suitable for small tables.
        """
        if predicate is None:
            raise InvalidArgumentError("predicate is required")
        if max_results is not None and max_results <= 0:
            raise InvalidArgumentError("max_results must be > 0")

        out: list[Any] = []
        for item in await self.query(model=model):
            if not predicate(item):
                continue
            out.append(item)
            if max_results is not None and len(out) >= max_results:
                break
        return out

    async def _lookup(self, partition_key: str, row_key: str) -> TableRow | None:
        validate_key(partition_key, field="partition_key")
        validate_key(row_key, field="row_key")
        rows = await self._query_rows(partition_and_row_filter(partition_key, row_key))
        return rows[0] if rows else None

    async def _query_rows(
        self,
        filter: FilterExpression | None,
        *,
        select: list[str] | None = None,
        page_size: int | None = None,
    ) -> list[TableRow]:
        if page_size is not None and page_size <= 0:
            raise InvalidArgumentError("page_size must be > 0")

        out: list[TableRow] = []
        token: Any | None = None
        pages = 0

        while True:
            page = await self._client.execute_query_segment(filter, token, select=select, page_size=page_size)
            pages += 1
            out.extend(page.items)
            if page.next_cursor is None:
                break
            token = page.next_cursor

        logger.debug("query on %s returned %d rows in %d pages", self.name, len(out), pages)
        return out

    @staticmethod
    def _prepare_writes(entities: Iterable[Any], mode: WriteMode | None) -> list[TableOperation]:
        if mode is not None and mode not in {WriteMode.REPLACE, WriteMode.MERGE}:
            raise InvalidArgumentError(f"unsupported write mode: {mode}")
        return [
            TableOperation(kind=mode or _default_mode(entity), row=_to_row(entity)) for entity in entities
        ]

    async def _execute_batches(self, operations: list[TableOperation]) -> list[OperationResult]:
        batches = batch(operations, size=self._batch_size, key=lambda op: op.row.partition_key)
        results: list[OperationResult] = []

        for index, chunk in enumerate(batches):
            logger.debug(
                "executing batch %d/%d on %s (partition=%r, operations=%d)",
                index + 1,
                len(batches),
                self.name,
                chunk[0].row.partition_key,
                len(chunk),
            )
            try:
                out = await self._client.execute_batch(chunk)
            except Exception as err:
                logger.warning(
                    "batch %d/%d failed after %d committed rows", index + 1, len(batches), len(results)
                )
                raise BatchExecutionFailedError(
                    batch_index=index,
                    batch_count=len(batches),
                    partition_key=chunk[0].row.partition_key,
                    committed_count=len(results),
                ) from err
            results.extend(out)

        return results

    @staticmethod
    def _present(rows: list[TableRow], model: type[Any] | None) -> list[Any]:
        if model is None:
            return [row_to_mapping(row) for row in rows]
        definition = definition_for(model)
        return [definition.from_row(row) for row in rows]
