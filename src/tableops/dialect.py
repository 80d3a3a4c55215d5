# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Per-database rules for identifiers, literals and parameters.

The engine renders one neutral set of SQL templates per record type and
asks a Dialect for everything vendor-specific: how to escape an
identifier, how booleans and GUIDs are bound, which parameter prefix the
driver expects and which isolation level is the default.

Every method is a pure function of the database type and its input.

Example:
    dialect = Dialect(DatabaseType.SQLSERVER)
    dialect.escape_identifier("Order")        # "[Order]"
    Dialect(DatabaseType.MYSQL).escape_identifier("Order")  # "`Order`"
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping


class DatabaseType(str, Enum):
    """Database vendor tags understood by the dialect layer."""

    SQLSERVER = "sqlserver"
    MYSQL = "mysql"
    ORACLE = "oracle"
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"
    ACCESS = "access"
    OTHER = "other"

    @classmethod
    def parse(cls, value: str | DatabaseType | None) -> DatabaseType:
        """Parse a tag by value or member name, case-insensitively."""
        if isinstance(value, DatabaseType):
            return value
        if not value:
            return cls.OTHER
        key = value.strip().lower()
        for member in cls:
            if key in (member.value, member.name.lower()):
                return member
        raise ValueError(f"Unknown database type: '{value}'")


class IsolationLevel(str, Enum):
    """Transaction isolation levels a dialect may default to."""

    UNSPECIFIED = "unspecified"
    READ_UNCOMMITTED = "read uncommitted"
    READ_COMMITTED = "read committed"
    REPEATABLE_READ = "repeatable read"
    SERIALIZABLE = "serializable"


def _to_guid(value: Any) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


def _to_datetime(value: Any) -> datetime:
    return value if isinstance(value, datetime) else datetime.fromisoformat(str(value))


def _to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value if isinstance(value, date) else date.fromisoformat(str(value))


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


class DbType(str, Enum):
    """Intermediate parameter types used by field data type overrides."""

    STRING = "string"
    ANSI_STRING = "ansi_string"
    INT16 = "int16"
    INT32 = "int32"
    INT64 = "int64"
    DOUBLE = "double"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATE = "date"
    DATETIME = "datetime"
    GUID = "guid"
    BINARY = "binary"

    def coerce(self, value: Any) -> Any:
        """Convert value to the Python type bound for this DB type."""
        if value is None:
            return None
        return _COERCERS[self](value)


_COERCERS = {
    DbType.STRING: str,
    DbType.ANSI_STRING: str,
    DbType.INT16: int,
    DbType.INT32: int,
    DbType.INT64: int,
    DbType.DOUBLE: float,
    DbType.DECIMAL: lambda value: Decimal(str(value)),
    DbType.BOOLEAN: bool,
    DbType.DATE: _to_date,
    DbType.DATETIME: _to_datetime,
    DbType.GUID: _to_guid,
    DbType.BINARY: _to_bytes,
}


@dataclass(frozen=True)
class TypedParameter:
    """Parameter value tagged with an explicit intermediate DB type."""

    value: Any
    db_type: DbType

    def resolve(self) -> Any:
        """Return the value coerced to its DB type."""
        return self.db_type.coerce(self.value)


# Driver/adapter class name fragments -> database type
_DRIVER_NAMES: tuple[tuple[str, DatabaseType], ...] = (
    ("sqlite", DatabaseType.SQLITE),
    ("postgres", DatabaseType.POSTGRESQL),
    ("psycopg", DatabaseType.POSTGRESQL),
    ("npgsql", DatabaseType.POSTGRESQL),
    ("mysql", DatabaseType.MYSQL),
    ("oracle", DatabaseType.ORACLE),
    ("sqlserver", DatabaseType.SQLSERVER),
    ("sqlclient", DatabaseType.SQLSERVER),
    ("mssql", DatabaseType.SQLSERVER),
    ("access", DatabaseType.ACCESS),
    ("oledb", DatabaseType.ACCESS),
)


def database_type_from_name(name: str) -> DatabaseType:
    """Resolve a driver or adapter class name to a database type.

    Unrecognized names resolve to DatabaseType.OTHER.
    """
    key = (name or "").lower()
    for fragment, database_type in _DRIVER_NAMES:
        if fragment in key:
            return database_type
    return DatabaseType.OTHER


class Dialect:
    """SQL dialect rules for one database type.

    Attributes:
        database_type: The vendor tag this dialect serves.
        integer_booleans: Bind booleans as 1/0 instead of native values.
            Defaults to True for Oracle and PostgreSQL.
    """

    def __init__(self, database_type: DatabaseType, integer_booleans: bool | None = None):
        self.database_type = DatabaseType.parse(database_type)
        if integer_booleans is None:
            integer_booleans = self.database_type in (DatabaseType.ORACLE, DatabaseType.POSTGRESQL)
        self.integer_booleans = integer_booleans

    def __repr__(self) -> str:
        return f"Dialect({self.database_type.name})"

    # -------------------------------------------------------------------------
    # Identifiers
    # -------------------------------------------------------------------------

    def escape_identifier(self, identifier: str, use_ansi_quotes: bool = False) -> str:
        """Escape an identifier for this dialect.

        Args:
            identifier: Table or field name, surrounding whitespace is trimmed.
            use_ansi_quotes: Force ANSI double quotes regardless of dialect.

        Returns:
            The escaped identifier.

        Raises:
            ValueError: If the identifier is blank.
        """
        if identifier is None or not identifier.strip():
            raise ValueError("Identifier is blank")
        identifier = identifier.strip()

        if use_ansi_quotes:
            return f'"{identifier}"'
        if self.database_type in (DatabaseType.SQLSERVER, DatabaseType.ACCESS):
            return f"[{identifier}]"
        if self.database_type == DatabaseType.MYSQL:
            return f"`{identifier}`"
        return f'"{identifier}"'

    # -------------------------------------------------------------------------
    # Literal encoding
    # -------------------------------------------------------------------------

    def encode_boolean(self, value: bool) -> bool | int:
        """Return the value a boolean is bound as."""
        if self.integer_booleans:
            return 1 if value else 0
        return bool(value)

    def encode_guid(self, value: uuid.UUID) -> uuid.UUID | str:
        """Return the value a GUID is bound as."""
        if self.database_type == DatabaseType.SQLSERVER:
            return value
        if self.database_type == DatabaseType.ACCESS:
            return f"{{{str(value).lower()}}}"
        return str(value).lower()

    def decode_guid(self, row: Mapping[str, Any], field: str) -> uuid.UUID | None:
        """Read a GUID column value from a row.

        Returns:
            The parsed UUID, or None when the column is NULL.
        """
        value = row[field]
        if value is None:
            return None
        if isinstance(value, uuid.UUID):
            return value
        if isinstance(value, bytes | bytearray):
            return uuid.UUID(bytes=bytes(value))
        return uuid.UUID(str(value).strip())

    # -------------------------------------------------------------------------
    # Parameters, transactions, expressions
    # -------------------------------------------------------------------------

    @property
    def parameter_prefix(self) -> str:
        """Parameter name prefix expected by the driver."""
        return ":" if self.database_type == DatabaseType.ORACLE else "@"

    def placeholder(self, index: int) -> str:
        """Named placeholder for the 0-based positional parameter index."""
        return f"{self.parameter_prefix}p{index}"

    def placeholders(self, count: int) -> str:
        """Comma-separated placeholder list for count parameters."""
        return ", ".join(self.placeholder(i) for i in range(count))

    @property
    def default_isolation_level(self) -> IsolationLevel:
        """Isolation level used when the caller does not choose one."""
        if self.database_type == DatabaseType.SQLSERVER:
            return IsolationLevel.READ_UNCOMMITTED
        return IsolationLevel.UNSPECIFIED

    def utc_now_expression(self) -> str:
        """SQL expression for the current UTC timestamp."""
        return _UTC_NOW.get(self.database_type, "CURRENT_TIMESTAMP")


_UTC_NOW = {
    DatabaseType.SQLSERVER: "GETUTCDATE()",
    DatabaseType.MYSQL: "UTC_TIMESTAMP()",
    DatabaseType.ORACLE: "SYS_EXTRACT_UTC(SYSTIMESTAMP)",
    DatabaseType.SQLITE: "datetime('now')",
    DatabaseType.POSTGRESQL: "(NOW() AT TIME ZONE 'UTC')",
    DatabaseType.ACCESS: "Now()",
}


__all__ = [
    "DatabaseType",
    "DbType",
    "Dialect",
    "IsolationLevel",
    "TypedParameter",
    "database_type_from_name",
]
