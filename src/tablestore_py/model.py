from __future__ import annotations

from collections.abc import Mapping
from dataclasses import MISSING, dataclass, field, fields, is_dataclass
from datetime import datetime
from decimal import Decimal
from functools import cache
from typing import Any, Generic, Protocol, TypeVar, cast, get_args, get_origin, get_type_hints, overload

from .entity import (
    ETAG,
    PARTITION_KEY,
    RESERVED_KEYS,
    ROW_KEY,
    TIMESTAMP,
    UNSANITIZED_PARTITION_KEY,
    UNSANITIZED_ROW_KEY,
    TableRow,
    UnsanitizedKeyFields,
    normalize_properties,
)
from .errors import InvalidArgumentError

ROLES = (
    "partition_key",
    "row_key",
    "etag",
    "timestamp",
    "unsanitized_partition_key",
    "unsanitized_row_key",
)

_ROLE_ATTRIBUTE_NAMES = {
    "partition_key": PARTITION_KEY,
    "row_key": ROW_KEY,
    "etag": ETAG,
    "timestamp": TIMESTAMP,
    "unsanitized_partition_key": UNSANITIZED_PARTITION_KEY,
    "unsanitized_row_key": UNSANITIZED_ROW_KEY,
}

T = TypeVar("T")


class ModelDefinitionError(ValueError):
    pass


class AttributeConverter(Protocol):
    def to_store(self, value: Any) -> Any: ...

    def from_store(self, value: Any) -> Any: ...


@dataclass(frozen=True)
class AttributeDefinition:
    python_name: str
    attribute_name: str
    role: str | None
    converter: AttributeConverter | None = None


@overload
def tablestore_field(
    *,
    name: str | None = None,
    role: str | None = None,
    converter: AttributeConverter | None = None,
    ignore: bool = False,
) -> Any: ...


@overload
def tablestore_field(
    *,
    name: str | None = None,
    role: str | None = None,
    converter: AttributeConverter | None = None,
    ignore: bool = False,
    default: Any,
) -> Any: ...


@overload
def tablestore_field(
    *,
    name: str | None = None,
    role: str | None = None,
    converter: AttributeConverter | None = None,
    ignore: bool = False,
    default_factory: Any,
) -> Any: ...


def tablestore_field(
    *,
    name: str | None = None,
    role: str | None = None,
    converter: AttributeConverter | None = None,
    ignore: bool = False,
    default: Any = MISSING,
    default_factory: Any = MISSING,
) -> Any:
    if default is not MISSING and default_factory is not MISSING:
        raise ValueError("tablestore_field: cannot set both default and default_factory")
    if role is not None and role not in ROLES:
        raise ValueError(f"tablestore_field: unknown role: {role}")

    opts: dict[str, Any] = {"converter": converter, "ignore": ignore}
    if name is not None:
        opts["name"] = name
    if role is not None:
        opts["role"] = role

    return field(default=default, default_factory=default_factory, metadata={"tablestore": opts})


def _coerce_value(value: Any, annotation: Any) -> Any:
    if value is None:
        return None

    annotation = _unwrap_optional(annotation)
    if annotation is int and isinstance(value, (Decimal, float)) and not isinstance(value, bool):
        return int(value)
    if annotation is float and isinstance(value, (Decimal, int)) and not isinstance(value, bool):
        return float(value)
    if annotation is str and not isinstance(value, str):
        return str(value)

    return value


def _unwrap_optional(annotation: Any) -> Any:
    args = get_args(annotation)
    if get_origin(annotation) is None or not args:
        return annotation
    non_none = [a for a in args if a is not type(None)]  # noqa: E721
    if len(args) == 2 and len(non_none) == 1:
        return non_none[0]
    return annotation


@dataclass(frozen=True)
class ModelDefinition(Generic[T]):
    model_type: type[T]
    partition_key: AttributeDefinition
    row_key: AttributeDefinition
    etag: AttributeDefinition | None
    timestamp: AttributeDefinition | None
    properties: Mapping[str, AttributeDefinition]
    unsanitized_keys: UnsanitizedKeyFields | None

    @classmethod
    def from_dataclass(cls, model_type: type[T]) -> ModelDefinition[T]:
        if not is_dataclass(model_type) or not isinstance(model_type, type):
            raise ModelDefinitionError("model_type must be a dataclass")

        by_role: dict[str, list[AttributeDefinition]] = {role: [] for role in ROLES}
        properties: dict[str, AttributeDefinition] = {}

        for dc_field in fields(model_type):
            opts = cast(dict[str, Any], dc_field.metadata.get("tablestore", {}))
            if bool(opts.get("ignore", False)):
                continue

            role = cast(str | None, opts.get("role"))
            default_name = _ROLE_ATTRIBUTE_NAMES[role] if role is not None else dc_field.name
            attribute_name = cast(str, opts.get("name", default_name))
            attr = AttributeDefinition(
                python_name=dc_field.name,
                attribute_name=attribute_name,
                role=role,
                converter=cast(AttributeConverter | None, opts.get("converter")),
            )

            if role in {"partition_key", "row_key", "etag", "timestamp"}:
                by_role[role].append(attr)
                continue

            if attribute_name in RESERVED_KEYS:
                raise ModelDefinitionError(
                    f"field {dc_field.name} uses reserved attribute name {attribute_name}"
                )
            if role is not None:
                by_role[role].append(attr)
            properties[dc_field.name] = attr

        for role in ("partition_key", "row_key"):
            if len(by_role[role]) != 1:
                raise ModelDefinitionError(
                    f"model must define exactly one {role} field (found {len(by_role[role])})"
                )
        for role in ("etag", "timestamp", "unsanitized_partition_key", "unsanitized_row_key"):
            if len(by_role[role]) > 1:
                raise ModelDefinitionError(f"model must define at most one {role} field")

        unsanitized_pk = by_role["unsanitized_partition_key"]
        unsanitized_rk = by_role["unsanitized_row_key"]
        if bool(unsanitized_pk) != bool(unsanitized_rk):
            raise ModelDefinitionError(
                "unsanitized_partition_key and unsanitized_row_key must be declared together"
            )

        unsanitized_keys = None
        if unsanitized_pk and unsanitized_rk:
            unsanitized_keys = UnsanitizedKeyFields(
                partition_key=unsanitized_pk[0].attribute_name,
                row_key=unsanitized_rk[0].attribute_name,
            )

        return cls(
            model_type=model_type,
            partition_key=by_role["partition_key"][0],
            row_key=by_role["row_key"][0],
            etag=by_role["etag"][0] if by_role["etag"] else None,
            timestamp=by_role["timestamp"][0] if by_role["timestamp"] else None,
            properties=properties,
            unsanitized_keys=unsanitized_keys,
        )

    def to_row(self, record: T) -> TableRow:
        if not isinstance(record, self.model_type):
            raise InvalidArgumentError(f"expected {self.model_type.__name__}, got {type(record).__name__}")

        raw: dict[str, Any] = {}
        for name, attr in self.properties.items():
            value = getattr(record, name)
            if attr.converter is not None and value is not None:
                value = attr.converter.to_store(value)
            raw[attr.attribute_name] = value

        partition_key = getattr(record, self.partition_key.python_name)
        row_key = getattr(record, self.row_key.python_name)
        etag = getattr(record, self.etag.python_name) if self.etag is not None else None
        return TableRow(
            partition_key="" if partition_key is None else str(partition_key),
            row_key="" if row_key is None else str(row_key),
            properties=normalize_properties(raw),
            etag=etag or None,
            unsanitized_keys=self.unsanitized_keys,
        )

    def from_row(self, row: TableRow) -> T:
        annotations = _type_hints(self.model_type)

        kwargs: dict[str, Any] = {
            self.partition_key.python_name: row.partition_key,
            self.row_key.python_name: row.row_key,
        }
        if self.etag is not None:
            kwargs[self.etag.python_name] = row.etag
        if self.timestamp is not None:
            kwargs[self.timestamp.python_name] = row.timestamp

        for name, attr in self.properties.items():
            if attr.attribute_name not in row.properties:
                continue
            raw = row.properties[attr.attribute_name]
            if attr.converter is not None and raw is not None:
                raw = attr.converter.from_store(raw)
            kwargs[name] = _coerce_value(raw, annotations.get(name, Any))

        try:
            return self.model_type(**kwargs)
        except TypeError as err:
            raise InvalidArgumentError(str(err)) from err


def _type_hints(model_type: type[Any]) -> dict[str, Any]:
    try:
        return get_type_hints(model_type)
    except Exception:
        return dict(getattr(model_type, "__annotations__", {}))


@cache
def definition_for(model_type: type[T]) -> ModelDefinition[T]:
    return ModelDefinition.from_dataclass(model_type)


@dataclass(kw_only=True)
class TableEntity:
    partition_key: str = tablestore_field(role="partition_key", default="")
    row_key: str = tablestore_field(role="row_key", default="")
    etag: str | None = tablestore_field(role="etag", default=None)
    timestamp: datetime | None = tablestore_field(role="timestamp", default=None)


@dataclass(kw_only=True)
class SanitizedKeysEntity(TableEntity):
    unsanitized_partition_key: str | None = tablestore_field(role="unsanitized_partition_key", default=None)
    unsanitized_row_key: str | None = tablestore_field(role="unsanitized_row_key", default=None)
