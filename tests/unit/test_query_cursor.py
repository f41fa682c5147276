from __future__ import annotations

import base64
import json

import pytest

from tablestore_py.query import decode_cursor, encode_cursor


def test_cursor_round_trip_with_string_number_and_binary_keys() -> None:
    key = {"PartitionKey": {"S": "A"}, "RowKey": {"S": "B"}, "n": {"N": "12"}, "blob": {"B": b"hi"}}

    assert decode_cursor(encode_cursor(key)) == key


def test_cursor_is_url_safe() -> None:
    cursor = encode_cursor({"PartitionKey": {"S": "??>>??"}, "RowKey": {"S": "~~~"}})
    assert "+" not in cursor and "/" not in cursor


def test_decode_cursor_invalid_json_raises() -> None:
    with pytest.raises(ValueError):
        decode_cursor("bm90LWpzb24")  # base64url("not-json")


def test_decode_cursor_empty_raises() -> None:
    with pytest.raises(ValueError, match="cursor is empty"):
        decode_cursor("")


def test_encode_cursor_empty_returns_empty_string() -> None:
    assert encode_cursor({}) == ""


def test_encode_cursor_rejects_non_map() -> None:
    with pytest.raises(ValueError, match="last_key must be a map"):
        encode_cursor(["not-a-map"])  # type: ignore[arg-type]


@pytest.mark.parametrize(
    "av",
    [
        {"S": 1},
        {"N": 1},
        {"B": "not-bytes"},
        {"BOOL": True},
        {"S": "x", "N": "1"},
        "not-a-map",
    ],
)
def test_encode_cursor_rejects_invalid_key_values(av: object) -> None:
    with pytest.raises(ValueError):
        encode_cursor({"PartitionKey": av})


def test_decode_cursor_rejects_non_object_json() -> None:
    cursor = base64.urlsafe_b64encode(json.dumps(["nope"]).encode("utf-8")).decode("ascii")
    with pytest.raises(ValueError, match="cursor must decode to an object"):
        decode_cursor(cursor)


def test_decode_cursor_rejects_invalid_last_key_shape() -> None:
    cursor = base64.urlsafe_b64encode(json.dumps({"lastKey": 1}).encode("utf-8")).decode("ascii")
    with pytest.raises(ValueError, match="cursor lastKey is invalid"):
        decode_cursor(cursor)


@pytest.mark.parametrize("av_json", [{"S": 1}, {"B": 123}, {"M": "nope"}, "nope"])
def test_decode_cursor_rejects_invalid_key_values(av_json: object) -> None:
    payload = json.dumps({"lastKey": {"PartitionKey": av_json}}).encode("utf-8")
    cursor = base64.urlsafe_b64encode(payload).decode("ascii")
    with pytest.raises(ValueError):
        decode_cursor(cursor)
