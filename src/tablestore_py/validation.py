from __future__ import annotations

import re
from typing import Any, Literal, TypeAlias

from .errors import InvalidArgumentError

MaxPropertyNameLength = 255
MaxKeyLength = 1024

RESERVED_NAMES = frozenset({"PartitionKey", "RowKey", "Timestamp", "ETag"})

Backend: TypeAlias = Literal["azure", "dynamodb", "memory"]

_AZURE_TABLE_NAME = re.compile(r"^[A-Za-z][A-Za-z0-9]{2,62}$")
_DYNAMODB_TABLE_NAME = re.compile(r"^[A-Za-z0-9_.\-]{3,255}$")


def validate_table_name(name: Any, *, backend: Backend = "dynamodb") -> str:
    if not isinstance(name, str) or not name.strip():
        raise InvalidArgumentError("table_name is required")

    if backend == "azure":
        if not _AZURE_TABLE_NAME.match(name):
            raise InvalidArgumentError(f"invalid azure table name: {name!r}")
        if name.lower() == "tables":
            raise InvalidArgumentError("'tables' is a reserved table name")
    elif backend == "dynamodb":
        if not _DYNAMODB_TABLE_NAME.match(name):
            raise InvalidArgumentError(f"invalid dynamodb table name: {name!r}")

    return name


def validate_property_name(name: Any) -> str:
    if not isinstance(name, str) or not name:
        raise InvalidArgumentError("property name must be a non-empty string")
    if len(name) > MaxPropertyNameLength:
        raise InvalidArgumentError(f"property name exceeds {MaxPropertyNameLength} characters: {name[:32]}...")
    if name in RESERVED_NAMES:
        raise InvalidArgumentError(f"property name is reserved: {name}")
    return name


def validate_key(value: Any, *, field: str) -> str:
    if value is None:
        raise InvalidArgumentError(f"{field} is required")
    if not isinstance(value, str):
        raise InvalidArgumentError(f"{field} must be a string")
    if len(value) > MaxKeyLength:
        raise InvalidArgumentError(f"{field} exceeds {MaxKeyLength} characters")
    return value
