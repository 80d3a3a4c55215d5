# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""tableops: reflection-driven table operations for dataclass records.

A record type is a dataclass whose fields (and markers) describe a table.
TableOperations derives SQL templates for that table once and runs CRUD,
counting, paging and searching through a DataConnection, applying field
encryption, identifier escaping and a per-table root restriction.

Example:
    ::

        from dataclasses import dataclass
        from typing import Annotated

        from tableops import DataConnection, EncryptData, PrimaryKey, TableOperations

        @dataclass
        class Person:
            ID: Annotated[int, PrimaryKey(identity=True)] = 0
            Name: str = ""
            Email: Annotated[str | None, EncryptData()] = None

        async with DataConnection("/data/app.db") as connection:
            people = TableOperations(Person, connection)
            await people.add_new_record(Person(Name="Ann", Email="ann@example.org"))
            page = await people.query_page("Name", True, 1, 20)
"""

from .config import TableOperationsConfig, config_from_env
from .connection import DataConnection
from .data import DataColumn, DataRow, DataSet, DataTable
from .dialect import DatabaseType, DbType, Dialect, IsolationLevel, TypedParameter
from .encryption import DEFAULT_KEY_REFERENCE, KeyRing, generate_key, keyring
from .errors import (
    ConfigurationError,
    InvalidExpressionError,
    OperatorNotSupportedError,
    TableOperationError,
    TableOpsError,
)
from .metadata import get_metadata, registered_tables
from .migration import SchemaMigration
from .model import (
    AffixPosition,
    AmendExpression,
    DefaultValueExpression,
    EncryptData,
    FieldDataType,
    FieldName,
    NonRecordField,
    PrimaryKey,
    RootQueryRestriction,
    Searchable,
    StatementTypes,
    TableName,
    TablePriority,
    TargetExpression,
    UpdateValueExpression,
    UseEscapedName,
    ValueExpressionScope,
    search_extension,
    sort_extension,
    table,
)
from .record_filter import RecordFilter
from .restriction import Restriction, combine_all, combine_and, combine_or
from .table_operations import TableOperations, value_list

__version__ = "0.1.0"

__all__ = [
    "AffixPosition",
    "AmendExpression",
    "ConfigurationError",
    "DEFAULT_KEY_REFERENCE",
    "DataColumn",
    "DataConnection",
    "DataRow",
    "DataSet",
    "DataTable",
    "DatabaseType",
    "DbType",
    "DefaultValueExpression",
    "Dialect",
    "EncryptData",
    "FieldDataType",
    "FieldName",
    "InvalidExpressionError",
    "IsolationLevel",
    "KeyRing",
    "NonRecordField",
    "OperatorNotSupportedError",
    "PrimaryKey",
    "RecordFilter",
    "Restriction",
    "RootQueryRestriction",
    "SchemaMigration",
    "Searchable",
    "StatementTypes",
    "TableName",
    "TableOperationError",
    "TableOperations",
    "TableOperationsConfig",
    "TableOpsError",
    "TablePriority",
    "TargetExpression",
    "TypedParameter",
    "UpdateValueExpression",
    "UseEscapedName",
    "ValueExpressionScope",
    "combine_all",
    "combine_and",
    "combine_or",
    "config_from_env",
    "generate_key",
    "get_metadata",
    "keyring",
    "registered_tables",
    "search_extension",
    "sort_extension",
    "table",
    "value_list",
]
