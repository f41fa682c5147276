from __future__ import annotations

import base64
import json
from dataclasses import dataclass, field
from typing import Any, Generic, Literal, TypeAlias, TypeVar

from .entity import PARTITION_KEY, ROW_KEY

T = TypeVar("T")


@dataclass(frozen=True)
class Page(Generic[T]):
    items: list[T]
    next_cursor: Any | None


LogicalOp: TypeAlias = Literal["AND", "OR"]

COMPARISON_OPS = ("=", "!=", "<", "<=", ">", ">=")


@dataclass(frozen=True)
class FilterCondition:
    field: str
    op: str
    value: Any

    @staticmethod
    def eq(field: str, value: Any) -> FilterCondition:
        return FilterCondition(field=field, op="=", value=value)

    @staticmethod
    def ne(field: str, value: Any) -> FilterCondition:
        return FilterCondition(field=field, op="!=", value=value)

    @staticmethod
    def lt(field: str, value: Any) -> FilterCondition:
        return FilterCondition(field=field, op="<", value=value)

    @staticmethod
    def lte(field: str, value: Any) -> FilterCondition:
        return FilterCondition(field=field, op="<=", value=value)

    @staticmethod
    def gt(field: str, value: Any) -> FilterCondition:
        return FilterCondition(field=field, op=">", value=value)

    @staticmethod
    def gte(field: str, value: Any) -> FilterCondition:
        return FilterCondition(field=field, op=">=", value=value)


@dataclass(frozen=True)
class FilterGroup:
    op: LogicalOp
    filters: tuple[FilterExpression, ...]

    @staticmethod
    def and_(*filters: FilterExpression) -> FilterGroup:
        return FilterGroup(op="AND", filters=tuple(filters))

    @staticmethod
    def or_(*filters: FilterExpression) -> FilterGroup:
        return FilterGroup(op="OR", filters=tuple(filters))


@dataclass(frozen=True)
class RawFilter:
    """Backend-native filter text, passed to the store untouched."""

    expression: str
    names: dict[str, str] = field(default_factory=dict)
    values: dict[str, Any] = field(default_factory=dict)


FilterExpression: TypeAlias = FilterCondition | FilterGroup | RawFilter


def partition_filter(partition_key: str) -> FilterCondition:
    return FilterCondition.eq(PARTITION_KEY, partition_key)


def row_filter(row_key: str) -> FilterCondition:
    return FilterCondition.eq(ROW_KEY, row_key)


def partition_and_row_filter(partition_key: str, row_key: str) -> FilterGroup:
    return FilterGroup.and_(partition_filter(partition_key), row_filter(row_key))


def _key_value_to_json(av: Any) -> dict[str, str]:
    if not isinstance(av, dict) or len(av) != 1:
        raise ValueError("key attribute value must be a single-key map")
    (kind, value), *_ = av.items()

    if kind in {"S", "N"}:
        if not isinstance(value, str):
            raise ValueError(f"{kind} value must be a string")
        return {kind: value}
    if kind == "B":
        if not isinstance(value, (bytes, bytearray)):
            raise ValueError("B value must be bytes")
        return {"B": base64.b64encode(bytes(value)).decode("ascii")}

    raise ValueError(f"unsupported key attribute type: {kind}")


def _key_value_from_json(enc: Any) -> dict[str, Any]:
    if not isinstance(enc, dict) or len(enc) != 1:
        raise ValueError("key attribute value must be a single-key map")
    (kind, value), *_ = enc.items()

    if not isinstance(value, str):
        raise ValueError(f"{kind} value must be a string")
    if kind in {"S", "N"}:
        return {kind: value}
    if kind == "B":
        return {"B": base64.b64decode(value)}

    raise ValueError(f"unsupported key attribute type: {kind}")


def encode_cursor(last_key: Any) -> str:
    if not last_key:
        return ""
    if not isinstance(last_key, dict):
        raise ValueError("last_key must be a map")

    payload = {str(k): _key_value_to_json(last_key[k]) for k in sorted(last_key.keys())}
    data = json.dumps({"lastKey": payload}, separators=(",", ":"), ensure_ascii=False)
    return base64.urlsafe_b64encode(data.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str) -> dict[str, Any]:
    raw = str(cursor or "").strip()
    if not raw:
        raise ValueError("cursor is empty")

    padding = "=" * (-len(raw) % 4)
    parsed = json.loads(base64.urlsafe_b64decode(raw + padding).decode("utf-8"))
    if not isinstance(parsed, dict):
        raise ValueError("cursor must decode to an object")

    last_key_raw = parsed.get("lastKey")
    if not isinstance(last_key_raw, dict) or not last_key_raw:
        raise ValueError("cursor lastKey is invalid")

    return {str(k): _key_value_from_json(last_key_raw[k]) for k in sorted(last_key_raw.keys())}
