from __future__ import annotations

from typing import Any, Protocol

from .entity import TableRow
from .operations import OperationResult, TableOperation
from .query import FilterExpression, Page


class TableStoreClient(Protocol):
    """Contract the table facade needs from a concrete store."""

    @property
    def table_name(self) -> str: ...

    async def execute(self, operation: TableOperation) -> OperationResult: ...

    async def execute_batch(self, operations: list[TableOperation]) -> list[OperationResult]: ...

    async def execute_query_segment(
        self,
        filter: FilterExpression | None,
        continuation_token: Any | None,
        *,
        select: list[str] | None = None,
        page_size: int | None = None,
    ) -> Page[TableRow]: ...

    async def create_if_not_exists(self) -> bool: ...

    async def delete_table(self) -> None: ...
