# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Tests for loader module - row <-> record conversion."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Annotated

import pytest

from tableops import (
    DatabaseType,
    DbType,
    Dialect,
    EncryptData,
    FieldDataType,
    FieldName,
    PrimaryKey,
    TableOperationError,
    TypedParameter,
    get_metadata,
)
from tableops.loader import RecordLoader


@dataclass
class Account:
    ID: Annotated[int, PrimaryKey()] = 0
    Owner: Annotated[str, FieldName("owner_name")] = ""
    Token: Annotated[str | None, EncryptData()] = None
    Key: uuid.UUID | None = None
    Balance: Annotated[float, FieldDataType(DbType.DECIMAL, DatabaseType.SQLITE)] = 0.0
    Opened: datetime | None = None
    Active: bool = False


@pytest.fixture
def loader(keyring) -> RecordLoader:
    return RecordLoader(get_metadata(Account), Dialect(DatabaseType.SQLITE), keyring)


class TestLoadRecord:
    """Tests for RecordLoader.load_record."""

    def test_values_are_coerced(self, loader):
        """Column values are converted to the annotated types."""
        key = uuid.uuid4()
        record = loader.load_record(
            {
                "ID": 7,
                "owner_name": "Ann",
                "Key": str(key),
                "Balance": "10.5",
                "Opened": "2024-05-01 10:30:00",
                "Active": 1,
            }
        )
        assert record == Account(
            ID=7,
            Owner="Ann",
            Key=key,
            Balance=10.5,
            Opened=datetime(2024, 5, 1, 10, 30),
            Active=True,
        )

    def test_columns_match_case_insensitively(self, loader):
        """Row keys are matched ignoring case."""
        record = loader.load_record({"id": 3, "OWNER_NAME": "Bob"})
        assert record.ID == 3
        assert record.Owner == "Bob"

    def test_missing_columns_keep_defaults(self, loader):
        """Fields without a column keep their default."""
        record = loader.load_record({"ID": 1})
        assert record.Owner == ""
        assert record.Token is None

    def test_encrypted_values_are_decrypted(self, loader, keyring):
        """Encrypted columns are decrypted on load."""
        record = loader.load_record({"ID": 1, "Token": keyring.encrypt("s3cret")})
        assert record.Token == "s3cret"

    def test_field_error_raises_without_handler(self, loader):
        """A failing field raises TableOperationError naming the field."""
        with pytest.raises(TableOperationError, match=r'"Account.ID = not a number"'):
            loader.load_record({"ID": "not a number"})

    def test_field_error_routed_to_handler(self, keyring):
        """With a handler the failing field is reported and loading goes on."""
        errors = []
        loader = RecordLoader(
            get_metadata(Account), Dialect(DatabaseType.SQLITE), keyring, errors.append
        )
        record = loader.load_record({"ID": "bad", "owner_name": "Ann"})
        assert record.Owner == "Ann"
        assert len(errors) == 1
        assert "field assignment" in str(errors[0])


class TestInterpretValues:
    """Tests for value interpretation before binding."""

    def test_encrypted_field(self, loader, keyring):
        """Encrypted fields bind ciphertext unless encryption is skipped."""
        token = get_metadata(Account).find_field("Token")
        assert loader.get_interpreted_value(token, "x") == keyring.encrypt("x")
        assert loader.get_interpreted_value(token, "x", skip_encryption=True) == "x"
        assert loader.get_interpreted_value(token, None) is None

    def test_data_type_override(self, loader):
        """Fields with a DB type for the dialect bind a TypedParameter."""
        balance = get_metadata(Account).find_field("Balance")
        assert loader.get_interpreted_value(balance, 1.5) == TypedParameter(1.5, DbType.DECIMAL)

    def test_data_type_other_dialect(self, keyring):
        """The override is ignored for other dialects."""
        loader = RecordLoader(get_metadata(Account), Dialect(DatabaseType.POSTGRESQL), keyring)
        balance = get_metadata(Account).find_field("Balance")
        assert loader.get_interpreted_value(balance, 1.5) == 1.5

    def test_to_parameters_in_field_order(self, loader, keyring):
        """to_parameters interprets the given fields in order."""
        metadata = get_metadata(Account)
        record = Account(ID=1, Owner="Ann", Token="t")
        fields = [metadata.find_field("Owner"), metadata.find_field("Token")]
        assert loader.to_parameters(record, fields) == ["Ann", keyring.encrypt("t")]

    def test_to_row(self, loader):
        """to_row returns raw values keyed by column name."""
        row = loader.to_row(Account(ID=1, Owner="Ann", Token="t"))
        assert row["owner_name"] == "Ann"
        assert row["Token"] == "t"
        assert list(row)[0] == "ID"
