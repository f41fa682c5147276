from __future__ import annotations

import pytest

from tablestore_py import (
    CallableSanitizationProvider,
    CharacterReplacementSanitizationProvider,
    InvalidArgumentError,
    SanitizationProvider,
    TableRow,
    UnsanitizedKeyFields,
)
from tablestore_py.sanitization import sanitize_row, sanitize_rows


def test_character_replacement_covers_forbidden_key_characters() -> None:
    provider = CharacterReplacementSanitizationProvider()
    assert provider.sanitize("a/b\\c#d?e\tf\x7fg") == "a_b_c_d_e_f_g"
    assert provider.sanitize("plain-key") == "plain-key"


def test_character_replacement_rejects_forbidden_replacement() -> None:
    with pytest.raises(InvalidArgumentError):
        CharacterReplacementSanitizationProvider(replacement="/")


def test_providers_satisfy_protocol() -> None:
    assert isinstance(CharacterReplacementSanitizationProvider(), SanitizationProvider)
    assert isinstance(CallableSanitizationProvider(str.upper), SanitizationProvider)


def test_callable_provider_requires_callable() -> None:
    with pytest.raises(InvalidArgumentError):
        CallableSanitizationProvider("upper")  # type: ignore[arg-type]


def test_sanitize_row_overwrites_keys_without_capability() -> None:
    row = TableRow(partition_key="a/b", row_key="c#d", properties={"v": 1})

    sanitize_row(row, CharacterReplacementSanitizationProvider())

    assert row.key == ("a_b", "c_d")
    assert row.properties == {"v": 1}


def test_sanitize_row_keeps_original_keys_when_capable() -> None:
    row = TableRow(partition_key="a/b", row_key="c", unsanitized_keys=UnsanitizedKeyFields())

    sanitize_row(row, CallableSanitizationProvider(lambda raw: raw.replace("/", "-")))

    assert row.key == ("a-b", "c")
    assert row.properties == {"UnsanitizedPartitionKey": "a/b", "UnsanitizedRowKey": "c"}


def test_sanitize_rows_rejects_missing_provider() -> None:
    with pytest.raises(InvalidArgumentError):
        sanitize_rows([TableRow(partition_key="p", row_key="r")], None)  # type: ignore[arg-type]
    with pytest.raises(InvalidArgumentError):
        sanitize_row(TableRow(partition_key="p", row_key="r"), None)  # type: ignore[arg-type]
