from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from .entity import TableRow


class WriteMode(StrEnum):
    REPLACE = "insert_or_replace"
    MERGE = "insert_or_merge"
    DELETE = "delete"


@dataclass(frozen=True)
class TableOperation:
    kind: WriteMode
    row: TableRow

    @staticmethod
    def insert_or_replace(row: TableRow) -> TableOperation:
        return TableOperation(kind=WriteMode.REPLACE, row=row)

    @staticmethod
    def insert_or_merge(row: TableRow) -> TableOperation:
        return TableOperation(kind=WriteMode.MERGE, row=row)

    @staticmethod
    def delete(row: TableRow) -> TableOperation:
        return TableOperation(kind=WriteMode.DELETE, row=row)


@dataclass(frozen=True)
class OperationResult:
    kind: WriteMode
    partition_key: str
    row_key: str
    etag: str | None = None
    timestamp: datetime | None = None
