from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from .errors import InvalidArgumentError, UnsupportedPropertyTypeError
from .validation import RESERVED_NAMES, validate_property_name

if TYPE_CHECKING:
    from .sanitization import SanitizationProvider

PARTITION_KEY = "PartitionKey"
ROW_KEY = "RowKey"
TIMESTAMP = "Timestamp"
ETAG = "ETag"

RESERVED_KEYS = RESERVED_NAMES

UNSANITIZED_PARTITION_KEY = "UnsanitizedPartitionKey"
UNSANITIZED_ROW_KEY = "UnsanitizedRowKey"

SCALAR_TYPES: tuple[type, ...] = (str, bool, int, float, bytes, bytearray, datetime, uuid.UUID)


@dataclass(frozen=True)
class UnsanitizedKeyFields:
    """Property names that keep the pre-sanitization keys of a row."""

    partition_key: str = UNSANITIZED_PARTITION_KEY
    row_key: str = UNSANITIZED_ROW_KEY

    def sanitize_keys(self, row: TableRow, provider: SanitizationProvider) -> None:
        row.properties[self.partition_key] = row.partition_key
        row.properties[self.row_key] = row.row_key
        row.partition_key = provider.sanitize(row.partition_key)
        row.row_key = provider.sanitize(row.row_key)


@dataclass
class TableRow:
    partition_key: str
    row_key: str
    properties: dict[str, Any] = field(default_factory=dict)
    etag: str | None = None
    timestamp: datetime | None = None
    unsanitized_keys: UnsanitizedKeyFields | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.partition_key, self.row_key)

    def copy(self) -> TableRow:
        return TableRow(
            partition_key=self.partition_key,
            row_key=self.row_key,
            properties=dict(self.properties),
            etag=self.etag,
            timestamp=self.timestamp,
            unsanitized_keys=self.unsanitized_keys,
        )


def normalize_property_value(name: str, value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, bytearray):
        return bytes(value)
    if isinstance(value, datetime):
        return plain_datetime(value)
    if isinstance(value, SCALAR_TYPES):
        return value
    raise UnsupportedPropertyTypeError(name=name, value=value)


def plain_datetime(value: datetime) -> datetime:
    if type(value) is datetime:
        return value
    return datetime(
        value.year,
        value.month,
        value.day,
        value.hour,
        value.minute,
        value.second,
        value.microsecond,
        tzinfo=value.tzinfo,
    )


def normalize_properties(properties: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for name, value in properties.items():
        validate_property_name(name)
        normalized = normalize_property_value(name, value)
        if normalized is None:
            continue
        out[name] = normalized
    return out


def row_from_mapping(entity: Mapping[str, Any]) -> TableRow:
    """Normalise a map-form entity into a `TableRow`.

    Properties whose value is ``None`` are dropped because the stores have no
    null, so such keys are absent when the row is read back. A ``Timestamp``
    key is ignored; the store assigns it.
    """
    if entity is None:
        raise InvalidArgumentError("entity is required")
    if not isinstance(entity, Mapping):
        raise InvalidArgumentError("entity must be a mapping")

    properties = normalize_properties({k: v for k, v in entity.items() if k not in RESERVED_KEYS})

    partition_key = entity.get(PARTITION_KEY)
    row_key = entity.get(ROW_KEY)
    etag = entity.get(ETAG)
    return TableRow(
        partition_key="" if partition_key is None else str(partition_key),
        row_key="" if row_key is None else str(row_key),
        properties=properties,
        etag=None if etag is None else str(etag),
    )


def row_to_mapping(row: TableRow) -> dict[str, Any]:
    out: dict[str, Any] = dict(row.properties)
    out[PARTITION_KEY] = row.partition_key
    out[ROW_KEY] = row.row_key
    out[ETAG] = row.etag
    out[TIMESTAMP] = plain_datetime(row.timestamp) if row.timestamp is not None else None
    return out
