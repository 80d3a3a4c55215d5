# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Declarative markers describing how a record type maps to a table.

Record types are dataclasses. Per-field options are attached with
``typing.Annotated`` markers; per-table options with the ``@table(...)``
class decorator; search/sort overrides with ``@search_extension`` and
``@sort_extension`` on static methods. Markers are plain, inspectable
values: they are read once when the type's metadata is built.

Example:
    @table(
        TableName("People"),
        RootQueryRestriction("Status = {0}", "active"),
        AmendExpression("TOP 100", target_database_type=DatabaseType.SQLSERVER,
                        target_expression=TargetExpression.FIELD_LIST),
    )
    @dataclass
    class Person:
        id: Annotated[int, PrimaryKey(identity=True), FieldName("ID")] = 0
        name: str = ""
        email: Annotated[str | None, EncryptData()] = None
        order: Annotated[int, UseEscapedName()] = 0
        display: Annotated[str, NonRecordField()] = ""

        @staticmethod
        @search_extension(r"^FullName$")
        def search_full_name(record_filter: RecordFilter) -> Restriction:
            return Restriction("Name LIKE {0}", record_filter.search_parameter)
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum, Flag
from typing import TYPE_CHECKING, Any, TypeVar

from .dialect import DatabaseType, DbType
from .encryption import DEFAULT_KEY_REFERENCE

if TYPE_CHECKING:
    from .connection import DataConnection
    from .table_operations import TableOperations

T = TypeVar("T")

TABLE_MARKERS_ATTR = "__table_markers__"
SEARCH_EXTENSION_ATTR = "__search_extension__"
SORT_EXTENSION_ATTR = "__sort_extension__"


# -----------------------------------------------------------------------------
# Field markers
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class PrimaryKey:
    """Marks a field as part of the primary key.

    Attributes:
        identity: The database assigns the value (excluded from INSERT).
    """

    identity: bool = False


@dataclass(frozen=True)
class FieldName:
    """Maps a field to a column whose name differs from the attribute."""

    name: str


@dataclass(frozen=True)
class NonRecordField:
    """Excludes a field from every SQL statement."""


@dataclass(frozen=True)
class EncryptData:
    """Stores a string field encrypted under a key reference."""

    key_reference: str = DEFAULT_KEY_REFERENCE


@dataclass(frozen=True)
class FieldDataType:
    """Binds a field through an explicit intermediate DB type.

    Attributes:
        db_type: Intermediate type the value is coerced to.
        target_database_type: Only applies to this dialect; all if None.
    """

    db_type: DbType
    target_database_type: DatabaseType | None = None


@dataclass(frozen=True)
class UseEscapedName:
    """Requests dialect escaping of a field or table name.

    Attributes:
        target_database_type: Only escape for this dialect; all if None.
        use_ansi_quotes: Escape with ANSI double quotes.
    """

    target_database_type: DatabaseType | None = None
    use_ansi_quotes: bool = False


@dataclass
class ValueExpressionScope:
    """Context passed to default/update value expressions."""

    instance: Any
    table_operations: TableOperations
    connection: DataConnection


@dataclass(frozen=True)
class DefaultValueExpression:
    """Computes a field's value when a new record is created."""

    expression: Callable[[ValueExpressionScope], Any]


@dataclass(frozen=True)
class UpdateValueExpression:
    """Computes a field's value each time a record is updated."""

    expression: Callable[[ValueExpressionScope], Any]


# -----------------------------------------------------------------------------
# Table markers
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class TableName:
    """Table name, when it differs from the record type name."""

    name: str


@dataclass(frozen=True)
class TablePriority:
    """Ordering priority for bulk copy (lower copies first)."""

    priority: int


class TargetExpression(str, Enum):
    """Template position an amendment is attached to."""

    TABLE_NAME = "table_name"
    FIELD_LIST = "field_list"


class AffixPosition(str, Enum):
    """Side of the target expression the amendment text goes on."""

    PREFIX = "prefix"
    SUFFIX = "suffix"


class StatementTypes(Flag):
    """Statement kinds an amendment applies to."""

    SELECT_COUNT = 1
    SELECT_SET = 2
    SELECT_ROW = 4
    INSERT = 8
    UPDATE = 16
    DELETE = 32
    ALL = 63


@dataclass(frozen=True)
class AmendExpression:
    """Injects text before/after the table name or field list of statements.

    Attributes:
        amendment_text: Text to inject (trimmed, padded with one space).
        target_database_type: Only applies to this dialect; all if None.
        target_expression: Table name or field list position.
        statement_types: Statement kinds the amendment applies to.
        affix_position: Prefix or suffix of the target expression.
    """

    amendment_text: str
    target_database_type: DatabaseType | None = None
    target_expression: TargetExpression = TargetExpression.TABLE_NAME
    statement_types: StatementTypes = StatementTypes.SELECT_SET
    affix_position: AffixPosition = AffixPosition.PREFIX


class RootQueryRestriction:
    """Restriction ANDed into every query issued for the table.

    Attributes:
        filter_expression: Filter template with positional placeholders.
        parameters: Parameter values.
        apply_to_updates: Also restrict updates by default.
        apply_to_deletes: Also restrict deletes by default.
    """

    def __init__(
        self,
        filter_expression: str,
        *parameters: Any,
        apply_to_updates: bool = True,
        apply_to_deletes: bool = True,
    ):
        self.filter_expression = filter_expression
        self.parameters = tuple(parameters)
        self.apply_to_updates = apply_to_updates
        self.apply_to_deletes = apply_to_deletes

    def __repr__(self) -> str:
        return f"RootQueryRestriction({self.filter_expression!r}, {list(self.parameters)!r})"


class Searchable:
    """Declares additional, non-modeled columns that filters may target."""

    def __init__(self, *field_names: str):
        self.field_names = tuple(field_names)

    def __repr__(self) -> str:
        return f"Searchable{self.field_names!r}"


def table(*markers: Any) -> Callable[[type[T]], type[T]]:
    """Class decorator attaching table-level markers to a record type."""

    def decorate(cls: type[T]) -> type[T]:
        inherited = tuple(getattr(cls, TABLE_MARKERS_ATTR, ()))
        setattr(cls, TABLE_MARKERS_ATTR, inherited + tuple(markers))
        return cls

    return decorate


# -----------------------------------------------------------------------------
# Extension decorators
# -----------------------------------------------------------------------------


def _mark(attr: str, pattern: str) -> Callable[[Any], Any]:
    def decorate(fn: Any) -> Any:
        target = fn.__func__ if isinstance(fn, staticmethod | classmethod) else fn
        setattr(target, attr, pattern)
        return fn

    return decorate


def search_extension(pattern: str) -> Callable[[Any], Any]:
    """Mark a static method ``(RecordFilter) -> Restriction`` as the search
    override for fields matching the regex pattern."""
    return _mark(SEARCH_EXTENSION_ATTR, pattern)


def sort_extension(pattern: str) -> Callable[[Any], Any]:
    """Mark a static method ``(str) -> str`` as the order-by override for
    fields matching the regex pattern."""
    return _mark(SORT_EXTENSION_ATTR, pattern)


__all__ = [
    "AffixPosition",
    "AmendExpression",
    "DefaultValueExpression",
    "EncryptData",
    "FieldDataType",
    "FieldName",
    "NonRecordField",
    "PrimaryKey",
    "RootQueryRestriction",
    "Searchable",
    "StatementTypes",
    "TableName",
    "TablePriority",
    "TargetExpression",
    "UpdateValueExpression",
    "UseEscapedName",
    "ValueExpressionScope",
    "search_extension",
    "sort_extension",
    "table",
]
