# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Conversion between database rows and typed records.

RecordLoader is the bridge the engine uses in both directions:

- row -> record: read each column (case-insensitively), decrypt encrypted
  fields, decode GUIDs through the dialect, coerce to the annotated type
- record -> parameters: read each field, encrypt encrypted fields, wrap
  values in TypedParameter when the field declares a DB type for the
  active dialect
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .data import DataRow
from .dialect import TypedParameter
from .errors import TableOperationError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping

    from .dialect import Dialect
    from .encryption import KeyRing
    from .metadata import FieldMetadata, TableMetadata


class RecordLoader:
    """Materializes records from rows and interprets values for binding.

    Attributes:
        metadata: Table metadata of the record type.
        dialect: Dialect of the active connection.
        keyring: Key ring used for field encryption.
        error_handler: Receives per-field load errors. If None they propagate.
    """

    def __init__(
        self,
        metadata: TableMetadata,
        dialect: Dialect,
        keyring: KeyRing,
        error_handler: Callable[[Exception], None] | None = None,
    ):
        self.metadata = metadata
        self.dialect = dialect
        self.keyring = keyring
        self.error_handler = error_handler

    def load_record(
        self, row: Mapping[str, Any], fields: Iterable[FieldMetadata] | None = None
    ) -> Any:
        """Build a record from a row.

        Columns missing from the row leave the field at its default. A field
        that fails to load is reported to error_handler and the remaining
        fields are still assigned.

        Args:
            row: Column name -> value mapping.
            fields: Subset of fields to load, all fields if None.

        Raises:
            TableOperationError: If a field fails to load and there is no
                error handler.
        """
        if not isinstance(row, DataRow):
            row = DataRow(row)

        record = self.metadata.record_type()
        for field in fields if fields is not None else self.metadata.fields:
            if field.field_name not in row:
                continue
            value = row[field.field_name]
            try:
                field.set_value(record, self._read_value(field, row, value))
            except Exception as e:
                error = TableOperationError(
                    f"Exception during record load field assignment for "
                    f'"{self.metadata.record_type.__name__}.{field.name} = {value}": {e}'
                )
                error.__cause__ = e
                if self.error_handler is None:
                    raise error from e
                self.error_handler(error)
        return record

    def _read_value(self, field: FieldMetadata, row: Mapping[str, Any], value: Any) -> Any:
        if value is None:
            return None
        if field.is_encrypted and isinstance(value, str):
            value = self.keyring.decrypt(value, field.key_reference)
        elif field.is_guid:
            value = self.dialect.decode_guid(row, field.field_name)
        return field.coerce(value)

    def get_interpreted_value(
        self, field: FieldMetadata, value: Any, skip_encryption: bool = False
    ) -> Any:
        """Return the value as it must be bound for field.

        Encrypts ``str(value)`` when the field is encrypted (unless
        skip_encryption), then wraps the result in a TypedParameter when the
        field declares a DB type for the active dialect.
        """
        if not skip_encryption and field.is_encrypted and value is not None:
            value = self.keyring.encrypt(str(value), field.key_reference)

        db_type = field.db_type_for(self.dialect.database_type)
        if db_type is not None:
            return TypedParameter(value, db_type)
        return value

    def get_interpreted_property_value(self, field: FieldMetadata, record: Any) -> Any:
        """Read a field from a record and interpret it for binding."""
        return self.get_interpreted_value(field, field.get_value(record))

    def to_parameters(self, record: Any, fields: Iterable[FieldMetadata]) -> list[Any]:
        """Interpreted values of fields, in order, for positional binding."""
        return [self.get_interpreted_property_value(field, record) for field in fields]

    def to_row(self, record: Any) -> DataRow:
        """Raw (uninterpreted) field values keyed by column name."""
        return DataRow({field.field_name: field.get_value(record) for field in self.metadata.fields})


__all__ = ["RecordLoader"]
