# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Per-record-type table metadata, derived once and cached.

get_metadata() reflects over a dataclass record type the first time it is
requested and stores an immutable TableMetadata in a process-wide
registry. The metadata holds the field mapping, the primary-key and
insert/update field lists, encryption and DB type targets, escaping
targets, the canonical SQL templates and the compiled search/sort
extension tables. Engines copy the templates and finalize them for their
connection; the registry entry itself is never mutated.

Canonical templates (positional placeholders, neutral identifiers):

    SELECT COUNT(*) FROM {table}
    SELECT {fields} FROM {table} ORDER BY {0}
    SELECT {fields} FROM {table} WHERE {0} ORDER BY {1}
    SELECT * FROM {table} WHERE pk1={0} AND pk2={1}
    INSERT INTO {table}({cols}) VALUES ({0}, {1}, ...)
    UPDATE {table} SET f1={0}, f2={1} WHERE pk1={2}
    DELETE FROM {table} WHERE pk1={0}

Identifiers that request escaping are rendered in ANSI quotes (``"Name"``)
so the engine can swap them for the dialect form. When the type declares
amendments, table names and field lists are wrapped in amendment tokens.
"""

from __future__ import annotations

import dataclasses
import inspect
import logging
import re
import threading
import types
import typing
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Annotated, Any, NamedTuple, Union, get_args, get_origin

from pydantic import ConfigDict, TypeAdapter

from .data import DataColumn
from .dialect import DatabaseType, DbType
from .errors import ConfigurationError
from .model import (
    SEARCH_EXTENSION_ATTR,
    SORT_EXTENSION_ATTR,
    TABLE_MARKERS_ATTR,
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
)
from .restriction import Restriction

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from .dialect import Dialect

logger = logging.getLogger(__name__)

TABLE_NAME_PREFIX_TOKEN = "<!TNP/>"
TABLE_NAME_SUFFIX_TOKEN = "<!TNS/>"
FIELD_LIST_PREFIX_TOKEN = "<!FLP/>"
FIELD_LIST_SUFFIX_TOKEN = "<!FLS/>"

AMENDMENT_TOKENS = (
    TABLE_NAME_PREFIX_TOKEN,
    TABLE_NAME_SUFFIX_TOKEN,
    FIELD_LIST_PREFIX_TOKEN,
    FIELD_LIST_SUFFIX_TOKEN,
)

# Statement kind -> templates an amendment for that kind touches
STATEMENT_TEMPLATES: dict[StatementTypes, tuple[str, ...]] = {
    StatementTypes.SELECT_COUNT: ("select_count",),
    StatementTypes.SELECT_SET: (
        "select_set",
        "select_set_where",
        "select_keys",
        "select_keys_where",
    ),
    StatementTypes.SELECT_ROW: ("select_row",),
    StatementTypes.INSERT: ("add_new",),
    StatementTypes.UPDATE: ("update", "update_where"),
    StatementTypes.DELETE: ("delete", "delete_where"),
}


@dataclass(frozen=True)
class SqlTemplates:
    """The SQL statement templates of a table."""

    select_count: str
    select_set: str
    select_set_where: str
    select_keys: str
    select_keys_where: str
    select_row: str
    add_new: str
    update: str
    update_where: str
    delete: str
    delete_where: str

    def map(self, fn: Callable[[str], str], names: tuple[str, ...] | None = None) -> SqlTemplates:
        """Return a copy with fn applied to the named templates (all if None)."""
        names = names or tuple(f.name for f in dataclasses.fields(self))
        return dataclasses.replace(self, **{name: fn(getattr(self, name)) for name in names})

    def replace(self, old: str, new: str, names: tuple[str, ...] | None = None) -> SqlTemplates:
        """Return a copy with old replaced by new in the named templates."""
        return self.map(lambda sql: sql.replace(old, new), names)


class ExpressionAmendment(NamedTuple):
    """One amendment expanded for a single database type."""

    database_type: DatabaseType
    target_expression: TargetExpression
    statement_types: StatementTypes
    affix_position: AffixPosition
    text: str

    @property
    def token(self) -> str:
        if self.target_expression == TargetExpression.TABLE_NAME:
            if self.affix_position == AffixPosition.PREFIX:
                return TABLE_NAME_PREFIX_TOKEN
            return TABLE_NAME_SUFFIX_TOKEN
        if self.affix_position == AffixPosition.PREFIX:
            return FIELD_LIST_PREFIX_TOKEN
        return FIELD_LIST_SUFFIX_TOKEN


class Extension(NamedTuple):
    """Field-name pattern bound to an override function."""

    pattern: re.Pattern[str]
    function: Callable[[Any], Any]


@dataclass(frozen=True)
class FieldMetadata:
    """Mapping of one record attribute to one column.

    Attributes:
        name: Attribute name on the record type.
        field_name: Column name.
        python_type: Underlying value type (Optional unwrapped).
        nullable: True if the annotation admits None.
        is_primary_key: Part of the primary key.
        is_identity: Assigned by the database on insert.
        key_reference: Encryption key reference, None if not encrypted.
        data_types: Target database type (None = all) -> DbType override.
        escape_targets: Database type -> use ANSI quotes, None if never escaped.
        default_expression: Value expression applied by new_record().
        update_expression: Value expression applied before updates.
        markers: Every Annotated marker found on the field.
    """

    name: str
    field_name: str
    annotation: Any
    python_type: type
    nullable: bool
    is_primary_key: bool = False
    is_identity: bool = False
    key_reference: str | None = None
    data_types: dict[DatabaseType | None, DbType] = field(default_factory=dict)
    escape_targets: dict[DatabaseType, bool] | None = None
    default_expression: Callable[[Any], Any] | None = None
    update_expression: Callable[[Any], Any] | None = None
    markers: tuple[Any, ...] = ()
    type_adapter: TypeAdapter | None = field(default=None, compare=False, repr=False)

    @property
    def is_encrypted(self) -> bool:
        return self.key_reference is not None

    @property
    def is_guid(self) -> bool:
        return self.python_type is uuid.UUID

    @property
    def sql_name(self) -> str:
        """Name used in canonical templates (ANSI-quoted if ever escaped)."""
        return f'"{self.field_name}"' if self.escape_targets else self.field_name

    def db_type_for(self, database_type: DatabaseType) -> DbType | None:
        """DbType override for a database type, if declared."""
        if database_type in self.data_types:
            return self.data_types[database_type]
        return self.data_types.get(None)

    def get_value(self, record: Any) -> Any:
        return getattr(record, self.name)

    def set_value(self, record: Any, value: Any) -> None:
        setattr(record, self.name, value)

    def coerce(self, value: Any) -> Any:
        """Convert a column value to the annotated type."""
        if value is None or self.type_adapter is None:
            return value
        return self.type_adapter.validate_python(value)


@dataclass(frozen=True)
class TableMetadata:
    """Immutable description of a record type's table.

    Attributes:
        record_type: The dataclass the metadata was derived from.
        table_name: Unescaped table name.
        fields: Record fields in declaration order.
        primary_key_fields: Fields identifying a row (all fields if none declared).
        add_new_fields: Fields bound by INSERT (identity keys excluded).
        update_fields: Fields bound by UPDATE SET (primary keys excluded).
        primary_key_field_list: Comma-separated key column list (neutral form).
        templates: Canonical SQL templates.
        escaped_table_name_targets: Database type -> use ANSI quotes for the table.
        expression_amendments: Amendments, dialect-specific first.
        root_query_restriction: Table-level root restriction marker.
        searchable_fields: Extra non-modeled searchable columns.
        search_extensions: Ordered (pattern, function) search overrides.
        sort_extensions: Ordered (pattern, function) sort overrides.
        schema: Column descriptors for table materialization.
        priority: Bulk copy ordering priority.
    """

    record_type: type
    table_name: str
    fields: tuple[FieldMetadata, ...]
    primary_key_fields: tuple[FieldMetadata, ...]
    add_new_fields: tuple[FieldMetadata, ...]
    update_fields: tuple[FieldMetadata, ...]
    primary_key_field_list: str
    templates: SqlTemplates
    has_primary_key_identity_field: bool = False
    has_declared_primary_key: bool = True
    escaped_table_name_targets: dict[DatabaseType, bool] | None = None
    expression_amendments: tuple[ExpressionAmendment, ...] = ()
    root_query_restriction: RootQueryRestriction | None = None
    searchable_fields: tuple[str, ...] = ()
    search_extensions: tuple[Extension, ...] = ()
    sort_extensions: tuple[Extension, ...] = ()
    schema: tuple[DataColumn, ...] = ()
    priority: int = 0
    _by_name: dict[str, FieldMetadata] = field(default_factory=dict, repr=False, compare=False)
    _by_folded_name: dict[str, FieldMetadata] = field(
        default_factory=dict, repr=False, compare=False
    )

    @property
    def primary_key_count(self) -> int:
        return len(self.primary_key_fields)

    @property
    def has_encrypted_fields(self) -> bool:
        return any(f.is_encrypted for f in self.fields)

    @property
    def has_data_type_targets(self) -> bool:
        return any(f.data_types for f in self.fields)

    @property
    def escaped_fields(self) -> tuple[FieldMetadata, ...]:
        return tuple(f for f in self.fields if f.escape_targets)

    def find_field(self, name: str | None, case_sensitive: bool = False) -> FieldMetadata | None:
        """Look up a field by column name or attribute name.

        ANSI-quoted names (``"Order"``) are accepted as well.
        """
        if not name:
            return None
        name = name.strip()
        if len(name) > 2 and name[0] == '"' and name[-1] == '"':
            name = name[1:-1]
        found = self._by_name.get(name)
        if found is not None or case_sensitive:
            return found
        return self._by_folded_name.get(name.casefold())

    def is_searchable(self, name: str, case_sensitive: bool = False) -> bool:
        """True if name is a modeled field or a declared searchable column."""
        if self.find_field(name, case_sensitive) is not None:
            return True
        if case_sensitive:
            return name in self.searchable_fields
        folded = name.casefold()
        return any(extra.casefold() == folded for extra in self.searchable_fields)

    def find_search_extension(self, field_name: str) -> Callable[[Any], Any] | None:
        """First search extension whose pattern matches the field name."""
        return _first_match(self.search_extensions, field_name)

    def find_sort_extension(self, field_name: str) -> Callable[[Any], Any] | None:
        """First sort extension whose pattern matches the field name."""
        return _first_match(self.sort_extensions, field_name)

    def iter_field_values(self, record: Any, dialect: Dialect) -> Iterator[tuple[str, Any]]:
        """Yield ``(column, value)`` pairs with SQL-encodable values.

        Booleans and GUIDs are encoded for the dialect; other values are
        passed through raw (no encryption).
        """
        for f in self.fields:
            value = f.get_value(record)
            if isinstance(value, bool):
                value = dialect.encode_boolean(value)
            elif isinstance(value, uuid.UUID):
                value = dialect.encode_guid(value)
            yield f.field_name, value


def _first_match(extensions: tuple[Extension, ...], field_name: str) -> Callable[[Any], Any] | None:
    for extension in extensions:
        if extension.pattern.search(field_name):
            return extension.function
    return None


# -----------------------------------------------------------------------------
# Registry
# -----------------------------------------------------------------------------

_registry: dict[type, TableMetadata] = {}
_registry_lock = threading.Lock()


def get_metadata(record_type: type) -> TableMetadata:
    """Return the metadata for a record type, building it on first use.

    Raises:
        ConfigurationError: If the record type is mis-annotated.
    """
    metadata = _registry.get(record_type)
    if metadata is not None:
        return metadata
    with _registry_lock:
        metadata = _registry.get(record_type)
        if metadata is None:
            metadata = build_metadata(record_type)
            _registry[record_type] = metadata
        return metadata


def registered_tables() -> list[TableMetadata]:
    """Every built table metadata, ordered by (priority, table name)."""
    with _registry_lock:
        tables = list(_registry.values())
    return sorted(tables, key=lambda m: (m.priority, m.table_name.casefold()))


# -----------------------------------------------------------------------------
# Derivation
# -----------------------------------------------------------------------------


def _split_annotation(hint: Any) -> tuple[Any, tuple[Any, ...]]:
    if get_origin(hint) is Annotated:
        args = get_args(hint)
        return args[0], tuple(args[1:])
    return hint, ()


def _underlying_type(annotation: Any) -> tuple[type, bool]:
    origin = get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        args = get_args(annotation)
        non_null = [a for a in args if a is not type(None)]
        nullable = len(non_null) < len(args)
        if len(non_null) == 1:
            inner, _ = _underlying_type(non_null[0])
            return inner, nullable
        return object, nullable
    if origin is not None:
        return origin if isinstance(origin, type) else object, False
    if annotation is Any:
        return object, True
    return (annotation if isinstance(annotation, type) else object), annotation is type(None)


def _type_adapter(annotation: Any) -> TypeAdapter | None:
    if annotation is Any:
        return None
    try:
        if annotation is str or _underlying_type(annotation)[0] is str:
            return TypeAdapter(annotation, config=ConfigDict(coerce_numbers_to_str=True))
        return TypeAdapter(annotation)
    except Exception as e:
        raise ConfigurationError(f"Unsupported field annotation {annotation!r}: {e}") from e


def _escape_targets(markers: list[UseEscapedName]) -> dict[DatabaseType, bool] | None:
    """Resolve escaping markers to ``{database type: use ANSI quotes}``.

    An untargeted marker targets every database type; in that case ANSI
    quotes are used everywhere but MySQL unless a targeted marker says
    otherwise.
    """
    if not markers:
        return None
    all_targeted = any(m.target_database_type is None for m in markers)
    if all_targeted:
        database_types = list(DatabaseType)
    else:
        database_types = list(dict.fromkeys(m.target_database_type for m in markers))

    targets: dict[DatabaseType, bool] = {}
    for database_type in database_types:
        marker = next((m for m in markers if m.target_database_type == database_type), None)
        use_ansi = (marker is not None and marker.use_ansi_quotes) or (
            all_targeted and database_type != DatabaseType.MYSQL
        )
        targets[database_type] = use_ansi
    return targets


def _expression_amendments(markers: list[AmendExpression]) -> tuple[ExpressionAmendment, ...]:
    typed: list[ExpressionAmendment] = []
    untyped: list[ExpressionAmendment] = []
    for marker in markers:
        if marker.target_database_type is None:
            database_types, bucket = list(DatabaseType), untyped
        else:
            database_types, bucket = [DatabaseType.parse(marker.target_database_type)], typed
        text = marker.amendment_text.strip()
        text = f"{text} " if marker.affix_position == AffixPosition.PREFIX else f" {text}"
        for database_type in database_types:
            bucket.append(
                ExpressionAmendment(
                    database_type,
                    marker.target_expression,
                    marker.statement_types,
                    marker.affix_position,
                    text,
                )
            )
    return tuple(typed + untyped)


def _is_restriction_type(hint: Any) -> bool:
    if hint is Restriction:
        return True
    origin = get_origin(hint)
    if origin is Union or origin is types.UnionType:
        args = [a for a in get_args(hint) if a is not type(None)]
        return args == [Restriction]
    return False


def _validate_extension(
    record_type: type, name: str, fn: Callable[..., Any], kind: str
) -> None:
    from .record_filter import RecordFilter

    where = f"{kind} extension {record_type.__name__}.{name}"
    try:
        hints = typing.get_type_hints(fn)
    except Exception as e:
        raise ConfigurationError(f"Cannot resolve annotations of {where}: {e}") from e

    params = list(inspect.signature(fn).parameters.values())
    if len(params) != 1 or params[0].kind not in (
        inspect.Parameter.POSITIONAL_ONLY,
        inspect.Parameter.POSITIONAL_OR_KEYWORD,
    ):
        raise ConfigurationError(f"{where} must accept exactly one positional parameter")

    arg_hint = hints.get(params[0].name)
    return_hint = hints.get("return")

    if kind == "search":
        if arg_hint is not RecordFilter or not _is_restriction_type(return_hint):
            raise ConfigurationError(
                f"{where} must have signature (RecordFilter) -> Restriction, "
                f"got ({arg_hint}) -> {return_hint}"
            )
    elif arg_hint is not str or return_hint is not str:
        raise ConfigurationError(
            f"{where} must have signature (str) -> str, got ({arg_hint}) -> {return_hint}"
        )


def _extensions(record_type: type) -> tuple[tuple[Extension, ...], tuple[Extension, ...]]:
    members: dict[str, Any] = {}
    for klass in reversed(record_type.__mro__):
        members.update(vars(klass))

    search: list[Extension] = []
    sort: list[Extension] = []
    for name, member in members.items():
        fn = member.__func__ if isinstance(member, staticmethod | classmethod) else member
        for attr, kind, bucket in (
            (SEARCH_EXTENSION_ATTR, "search", search),
            (SORT_EXTENSION_ATTR, "sort", sort),
        ):
            pattern = getattr(fn, attr, None)
            if pattern is None:
                continue
            if not isinstance(member, staticmethod):
                raise ConfigurationError(
                    f"{kind} extension {record_type.__name__}.{name} must be a static method"
                )
            _validate_extension(record_type, name, fn, kind)
            try:
                compiled = re.compile(pattern, re.IGNORECASE)
            except re.error as e:
                raise ConfigurationError(
                    f"Invalid field pattern {pattern!r} on {record_type.__name__}.{name}: {e}"
                ) from e
            bucket.append(Extension(compiled, fn))
    return tuple(search), tuple(sort)


def _derive_field(name: str, hint: Any) -> FieldMetadata | None:
    annotation, markers = _split_annotation(hint)
    if any(isinstance(m, NonRecordField) for m in markers):
        return None

    python_type, nullable = _underlying_type(annotation)
    field_name = name
    primary_key: PrimaryKey | None = None
    key_reference: str | None = None
    data_types: dict[DatabaseType | None, DbType] = {}
    escape_markers: list[UseEscapedName] = []
    default_expression = update_expression = None

    for marker in markers:
        if isinstance(marker, FieldName):
            field_name = marker.name
        elif isinstance(marker, PrimaryKey):
            primary_key = marker
        elif isinstance(marker, EncryptData):
            if python_type is not str:
                raise ConfigurationError(f"Encrypted field '{name}' must be a string field")
            key_reference = marker.key_reference
        elif isinstance(marker, FieldDataType):
            target = marker.target_database_type
            data_types[DatabaseType.parse(target) if target else None] = marker.db_type
        elif isinstance(marker, UseEscapedName):
            escape_markers.append(marker)
        elif isinstance(marker, DefaultValueExpression):
            default_expression = marker.expression
        elif isinstance(marker, UpdateValueExpression):
            update_expression = marker.expression

    return FieldMetadata(
        name=name,
        field_name=field_name,
        annotation=annotation,
        python_type=python_type,
        nullable=nullable,
        is_primary_key=primary_key is not None,
        is_identity=primary_key is not None and primary_key.identity,
        key_reference=key_reference,
        data_types=data_types,
        escape_targets=_escape_targets(escape_markers),
        default_expression=default_expression,
        update_expression=update_expression,
        markers=markers,
        type_adapter=_type_adapter(annotation),
    )


def build_metadata(record_type: type) -> TableMetadata:
    """Derive the table metadata of a dataclass record type.

    Use get_metadata() instead, which caches the result.

    Raises:
        ConfigurationError: If the record type is mis-annotated.
    """
    if not dataclasses.is_dataclass(record_type) or not isinstance(record_type, type):
        raise ConfigurationError(f"{record_type!r} is not a dataclass record type")

    try:
        hints = typing.get_type_hints(record_type, include_extras=True)
    except Exception as e:
        raise ConfigurationError(
            f"Cannot resolve annotations of {record_type.__name__}: {e}"
        ) from e

    fields: list[FieldMetadata] = []
    for dc_field in dataclasses.fields(record_type):
        if (
            dc_field.default is dataclasses.MISSING
            and dc_field.default_factory is dataclasses.MISSING
            and dc_field.init
        ):
            raise ConfigurationError(
                f"{record_type.__name__}.{dc_field.name} needs a default: "
                "record types must be constructible without arguments"
            )
        derived = _derive_field(dc_field.name, hints.get(dc_field.name, Any))
        if derived is not None:
            fields.append(derived)

    if not fields:
        raise ConfigurationError(f"{record_type.__name__} declares no record fields")

    by_name: dict[str, FieldMetadata] = {}
    by_folded: dict[str, FieldMetadata] = {}
    for f in fields:
        folded = f.field_name.casefold()
        if folded in by_folded:
            raise ConfigurationError(
                f"Duplicate field name '{f.field_name}' in {record_type.__name__}"
            )
        by_name[f.field_name] = f
        by_folded[folded] = f
    for f in fields:
        by_name.setdefault(f.name, f)
        by_folded.setdefault(f.name.casefold(), f)

    # Table-level markers
    table_markers = tuple(getattr(record_type, TABLE_MARKERS_ATTR, ()))
    table_name = record_type.__name__
    priority = 0
    root: RootQueryRestriction | None = None
    searchable: list[str] = []
    for marker in table_markers:
        if isinstance(marker, TableName):
            table_name = marker.name
        elif isinstance(marker, TablePriority):
            priority = marker.priority
        elif isinstance(marker, RootQueryRestriction):
            root = marker
        elif isinstance(marker, Searchable):
            searchable.extend(marker.field_names)

    escaped_table_targets = _escape_targets(
        [m for m in table_markers if isinstance(m, UseEscapedName)]
    )
    amendments = _expression_amendments(
        [m for m in table_markers if isinstance(m, AmendExpression)]
    )

    # Field partitions and template fragments
    primary_keys = [f for f in fields if f.is_primary_key]
    add_new_fields = [f for f in fields if not f.is_identity]
    update_fields = [f for f in fields if not f.is_primary_key]
    has_declared_primary_key = bool(primary_keys)

    add_new_columns = ", ".join(f.sql_name for f in add_new_fields)
    add_new_values = ", ".join(f"{{{i}}}" for i in range(len(add_new_fields)))
    update_set = ", ".join(f"{f.sql_name}={{{i}}}" for i, f in enumerate(update_fields))

    if not has_declared_primary_key:
        # Row identity falls back to every field
        primary_keys = list(fields)

    where = " AND ".join(f"{f.sql_name}={{{i}}}" for i, f in enumerate(primary_keys))
    primary_key_field_list = ", ".join(f.sql_name for f in primary_keys)
    key_fields = primary_key_field_list if has_declared_primary_key else "*"
    all_fields = "*"

    update_where_offsets = [f"{{{len(update_fields) + i}}}" for i in range(len(primary_keys))]
    update_pk_where = where.format(*update_where_offsets)

    table_sql = f'"{table_name}"' if escaped_table_targets else table_name

    if amendments:
        table_sql = f"{TABLE_NAME_PREFIX_TOKEN}{table_sql}{TABLE_NAME_SUFFIX_TOKEN}"
        all_fields = f"{FIELD_LIST_PREFIX_TOKEN}{all_fields}{FIELD_LIST_SUFFIX_TOKEN}"
        key_fields = f"{FIELD_LIST_PREFIX_TOKEN}{key_fields}{FIELD_LIST_SUFFIX_TOKEN}"
        add_new_columns = f"{FIELD_LIST_PREFIX_TOKEN}{add_new_columns}{FIELD_LIST_SUFFIX_TOKEN}"
        update_set = f"{FIELD_LIST_PREFIX_TOKEN}{update_set}{FIELD_LIST_SUFFIX_TOKEN}"

    update_sql = f"UPDATE {table_sql} SET {update_set} WHERE {update_pk_where}"
    delete_sql = f"DELETE FROM {table_sql} WHERE {where}"

    templates = SqlTemplates(
        select_count=f"SELECT COUNT(*) FROM {table_sql}",
        select_set=f"SELECT {all_fields} FROM {table_sql} ORDER BY {{0}}",
        select_set_where=f"SELECT {all_fields} FROM {table_sql} WHERE {{0}} ORDER BY {{1}}",
        select_keys=f"SELECT {key_fields} FROM {table_sql} ORDER BY {{0}}",
        select_keys_where=f"SELECT {key_fields} FROM {table_sql} WHERE {{0}} ORDER BY {{1}}",
        select_row=f"SELECT * FROM {table_sql} WHERE {where}",
        add_new=f"INSERT INTO {table_sql}({add_new_columns}) VALUES ({add_new_values})",
        update=update_sql,
        update_where=update_sql[: update_sql.index(" WHERE ") + 7],
        delete=delete_sql,
        delete_where=delete_sql[: delete_sql.index(" WHERE ") + 7],
    )

    search_extensions, sort_extensions = _extensions(record_type)

    schema = tuple(DataColumn(f.field_name, f.python_type, f.nullable) for f in fields)

    metadata = TableMetadata(
        record_type=record_type,
        table_name=table_name,
        fields=tuple(fields),
        primary_key_fields=tuple(primary_keys),
        add_new_fields=tuple(add_new_fields),
        update_fields=tuple(update_fields),
        primary_key_field_list=primary_key_field_list,
        templates=templates,
        has_primary_key_identity_field=any(f.is_identity for f in fields),
        has_declared_primary_key=has_declared_primary_key,
        escaped_table_name_targets=escaped_table_targets,
        expression_amendments=amendments,
        root_query_restriction=root,
        searchable_fields=tuple(searchable),
        search_extensions=search_extensions,
        sort_extensions=sort_extensions,
        schema=schema,
        priority=priority,
        _by_name=by_name,
        _by_folded_name=by_folded,
    )
    logger.debug(
        "Built metadata for %s: table=%s fields=%d keys=%s",
        record_type.__name__,
        table_name,
        len(fields),
        primary_key_field_list,
    )
    return metadata


__all__ = [
    "AMENDMENT_TOKENS",
    "ExpressionAmendment",
    "Extension",
    "FieldMetadata",
    "STATEMENT_TEMPLATES",
    "SqlTemplates",
    "TableMetadata",
    "build_metadata",
    "get_metadata",
    "registered_tables",
]
