# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Generic table operations engine for dataclass record types.

TableOperations binds the static metadata of a record type to an open
DataConnection. On construction it copies the canonical SQL templates and
finalizes them for the connection's dialect:

1. the neutral ``"Table"`` form is replaced with the dialect escaping
2. escaped field names are replaced the same way
3. amendments for the active dialect are injected (dialect-specific first)
4. leftover amendment tokens are removed
5. caller-supplied custom tokens are substituted

The engine then exposes CRUD, restriction-based queries, counting, paging
through a primary-key cache and local search/sort for encrypted fields.

Errors:
    Configuration errors (unknown sort/filter field, bad operator) are
    raised immediately. Execution errors are wrapped in TableOperationError
    with the SQL and parameters, then passed to exception_handler if one is
    configured (the operation returns None, [], -1 or 0) or raised.

Usage:
    async with DataConnection("/data/app.db") as connection:
        people = TableOperations(Person, connection)
        person = people.new_record()
        person.name = "Ann"
        await people.add_new_record(person)
        page = await people.query_page("Name", True, 1, 20)
"""

from __future__ import annotations

import contextlib
import logging
import re
import uuid
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from .data import DataRow, DataTable
from .errors import ConfigurationError, InvalidExpressionError, TableOperationError
from .loader import RecordLoader
from .metadata import AMENDMENT_TOKENS, STATEMENT_TEMPLATES, get_metadata
from .model import StatementTypes, TargetExpression, ValueExpressionScope
from .record_filter import RecordFilter
from .restriction import Restriction, combine_all, combine_and

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

    from .connection import DataConnection
    from .encryption import KeyRing
    from .metadata import FieldMetadata, SqlTemplates, TableMetadata

logger = logging.getLogger(__name__)

T = TypeVar("T")

_FROM_TYPE: Any = object()


def value_list(parameters: Sequence[Any] | None) -> str:
    """Render parameter values as ``0:v0, 1:v1`` for error messages."""
    if not parameters:
        return ""
    return ", ".join(
        f"{index}:{'null' if value is None else value}" for index, value in enumerate(parameters)
    )


def _is_default_value(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, uuid.UUID):
        return value.int == 0
    try:
        return value == type(value)()
    except TypeError:
        return False


class TableOperations(Generic[T]):
    """CRUD, query and paging operations for one record type on one connection.

    Not safe for concurrent use: the primary-key cache is unsynchronized.
    Use one instance per task or serialize access.

    Attributes:
        connection: Open DataConnection the engine executes against.
        metadata: Static table metadata of the record type.
        exception_handler: Receives execution errors. If None they propagate.
        apply_root_query_restriction_to_updates: Default for update_record().
        apply_root_query_restriction_to_deletes: Default for delete_records().
    """

    def __init__(
        self,
        record_type: type[T],
        connection: DataConnection,
        custom_tokens: Mapping[str, str] | Iterable[tuple[str, str]] | None = None,
        exception_handler: Callable[[Exception], None] | None = None,
        *,
        wildcard_char: str | None = None,
        use_case_sensitive_field_names: bool | None = None,
        root_query_restriction: Restriction | None = _FROM_TYPE,
        apply_root_query_restriction_to_updates: bool | None = None,
        apply_root_query_restriction_to_deletes: bool | None = None,
        keyring: KeyRing | None = None,
    ):
        """Bind the record type to a connection and finalize the SQL templates.

        Args:
            record_type: Dataclass record type.
            connection: Connection to execute against.
            custom_tokens: ``token -> text`` substitutions applied last.
            exception_handler: Receives execution errors instead of raising.
            wildcard_char: Wildcard for ``*`` in LIKE filters, from the
                connection config if None.
            use_case_sensitive_field_names: From the connection config if None.
            root_query_restriction: Restriction ANDed into every query.
                Defaults to the one declared on the record type.
            apply_root_query_restriction_to_updates: Defaults to the type marker.
            apply_root_query_restriction_to_deletes: Defaults to the type marker.
            keyring: Key ring for encrypted fields, the connection's if None.

        Raises:
            ConfigurationError: If the record type is mis-annotated.
        """
        self.metadata: TableMetadata = get_metadata(record_type)
        self.connection = connection
        self.exception_handler = exception_handler
        self.custom_tokens = dict(custom_tokens or {})

        config = connection.config
        self._wildcard_char = wildcard_char if wildcard_char is not None else config.wildcard_char
        self._use_case_sensitive_field_names = (
            use_case_sensitive_field_names
            if use_case_sensitive_field_names is not None
            else config.use_case_sensitive_field_names
        )

        marker = self.metadata.root_query_restriction
        if root_query_restriction is _FROM_TYPE:
            root_query_restriction = (
                Restriction(marker.filter_expression, *marker.parameters) if marker else None
            )
        self.root_query_restriction: Restriction | None = root_query_restriction
        self.apply_root_query_restriction_to_updates = (
            apply_root_query_restriction_to_updates
            if apply_root_query_restriction_to_updates is not None
            else (marker.apply_to_updates if marker else True)
        )
        self.apply_root_query_restriction_to_deletes = (
            apply_root_query_restriction_to_deletes
            if apply_root_query_restriction_to_deletes is not None
            else (marker.apply_to_deletes if marker else True)
        )

        self._loader = RecordLoader(
            self.metadata,
            connection.dialect,
            keyring or connection.keyring,
            self._route_field_error,
        )
        self.templates: SqlTemplates = self._finalize_templates()

        self._primary_key_cache: list[DataRow] | None = None
        self._cache_key: tuple[Any, ...] | None = None

        logger.debug(
            "TableOperations for %s on %s: %s",
            self.record_type.__name__,
            connection.database_type.name,
            self.templates.select_row,
        )

    def __repr__(self) -> str:
        return f"TableOperations({self.record_type.__name__}, {self.connection!r})"

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def record_type(self) -> type[T]:
        return self.metadata.record_type

    @property
    def table_name(self) -> str:
        """Table name, escaped for the active dialect if the model asks for it."""
        targets = self.metadata.escaped_table_name_targets
        database_type = self.connection.database_type
        if targets and database_type in targets:
            return self.connection.escape_identifier(self.metadata.table_name, targets[database_type])
        return self.metadata.table_name

    @property
    def unescaped_table_name(self) -> str:
        return self.metadata.table_name

    @property
    def has_primary_key_identity_field(self) -> bool:
        return self.metadata.has_primary_key_identity_field

    @property
    def wildcard_char(self) -> str:
        """Wildcard substituted for ``*`` in LIKE / NOT LIKE filters."""
        return self._wildcard_char

    @property
    def use_case_sensitive_field_names(self) -> bool:
        return self._use_case_sensitive_field_names

    @property
    def primary_key_cache_size(self) -> int:
        """Number of key rows in the primary-key cache (0 when invalid)."""
        return len(self._primary_key_cache) if self._primary_key_cache is not None else 0

    def clear_primary_key_cache(self) -> None:
        """Invalidate the primary-key cache used by query_page()."""
        self._primary_key_cache = None
        self._cache_key = None

    # -------------------------------------------------------------------------
    # Template finalization
    # -------------------------------------------------------------------------

    def _finalize_templates(self) -> SqlTemplates:
        metadata = self.metadata
        templates = metadata.templates

        if metadata.escaped_table_name_targets:
            ansi_table_name = f'"{metadata.table_name}"'
            if self.table_name != ansi_table_name:
                templates = templates.replace(ansi_table_name, self.table_name)

        for field in metadata.escaped_fields:
            ansi_field_name = f'"{field.field_name}"'
            escaped = self.get_escaped_field_name(field.field_name)
            if escaped != ansi_field_name:
                templates = templates.replace(ansi_field_name, escaped)

        if metadata.expression_amendments:
            database_type = self.connection.database_type
            for amendment in metadata.expression_amendments:
                if amendment.database_type != database_type:
                    continue
                for statement_type, names in STATEMENT_TEMPLATES.items():
                    if statement_type not in amendment.statement_types:
                        continue
                    if (
                        statement_type == StatementTypes.SELECT_COUNT
                        and amendment.target_expression != TargetExpression.TABLE_NAME
                    ):
                        continue
                    templates = templates.replace(amendment.token, amendment.text, names)

            for token in AMENDMENT_TOKENS:
                templates = templates.replace(token, "")

        for token, text in self.custom_tokens.items():
            templates = templates.replace(token, text)

        return templates

    # -------------------------------------------------------------------------
    # Field names
    # -------------------------------------------------------------------------

    def _find_field(self, field_name: str | None) -> FieldMetadata | None:
        return self.metadata.find_field(field_name, self._use_case_sensitive_field_names)

    def get_escaped_field_name(self, field_name: str) -> str:
        """Column name escaped for the active dialect if the model asks for it."""
        field = self._find_field(field_name)
        if field is None or not field.escape_targets:
            return field.field_name if field is not None else field_name
        database_type = self.connection.database_type
        if database_type in field.escape_targets:
            return self.connection.escape_identifier(
                field.field_name, field.escape_targets[database_type]
            )
        return field.field_name

    def update_field_names(self, filter_expression: str | None) -> str | None:
        """Rewrite ANSI-quoted field names in a filter to the dialect form.

        Filters are written with ``"Field"`` for fields that need escaping;
        this swaps in brackets, backticks or the bare name as the model
        defines for the active dialect.
        """
        if filter_expression is None:
            return None

        for field in self.metadata.escaped_fields:
            ansi_field_name = f'"{field.field_name}"'
            escaped = self.get_escaped_field_name(field.field_name)
            if self._use_case_sensitive_field_names:
                if escaped != ansi_field_name:
                    filter_expression = filter_expression.replace(ansi_field_name, escaped)
            elif escaped.casefold() != ansi_field_name.casefold():
                filter_expression = re.sub(
                    re.escape(ansi_field_name),
                    lambda _match, escaped=escaped: escaped,
                    filter_expression,
                    flags=re.IGNORECASE,
                )
        return filter_expression

    def get_field_names(self, escaped: bool = True) -> list[str]:
        """Column names of every record field."""
        return [self._field_name(field, escaped) for field in self.metadata.fields]

    def get_non_primary_field_names(self, escaped: bool = True) -> list[str]:
        """Column names of fields outside the primary key."""
        primary_keys = {field.field_name for field in self.metadata.primary_key_fields}
        return [
            self._field_name(field, escaped)
            for field in self.metadata.fields
            if field.field_name not in primary_keys
        ]

    def get_primary_key_field_names(self, escaped: bool = True) -> list[str]:
        """Column names of the primary key fields."""
        return [self._field_name(field, escaped) for field in self.metadata.primary_key_fields]

    def _field_name(self, field: FieldMetadata, escaped: bool) -> str:
        return self.get_escaped_field_name(field.field_name) if escaped else field.field_name

    def field_exists(self, field_name: str) -> bool:
        """True if field_name names a record field (column, attribute or quoted)."""
        return self._find_field(field_name) is not None

    def get_field_type(self, field_name: str) -> type | None:
        field = self._find_field(field_name)
        return field.python_type if field is not None else None

    def field_is_encrypted(self, field_name: str) -> bool:
        field = self._find_field(field_name)
        return field is not None and field.is_encrypted

    def get_field_marker(self, field_name: str, marker_type: type) -> Any:
        """First Annotated marker of marker_type on a field, None if absent."""
        field = self._find_field(field_name)
        if field is None:
            return None
        return next((m for m in field.markers if isinstance(m, marker_type)), None)

    # -------------------------------------------------------------------------
    # Values and restrictions
    # -------------------------------------------------------------------------

    def get_field_value(self, record: T | None, field_name: str) -> Any:
        if record is None:
            return None
        field = self._find_field(field_name)
        if field is not None:
            return field.get_value(record)
        return getattr(record, field_name, None)

    def get_interpreted_field_value(self, field_name: str, value: Any) -> Any:
        """Interpret a raw value for binding against a field.

        Encrypts values of encrypted fields and wraps values of fields with a
        DB type override for the active dialect. Use it for parameters of
        hand-written restrictions that target such fields.
        """
        field = self._find_field(field_name)
        if field is None:
            return value
        return self._loader.get_interpreted_value(field, value)

    def get_primary_keys(self, record: T | Mapping[str, Any]) -> list[Any]:
        """Primary key values of a record or row, in key order."""
        try:
            if isinstance(record, Mapping):
                row = record if isinstance(record, DataRow) else DataRow(record)
                return [row[field.field_name] for field in self.metadata.primary_key_fields]
            return [field.get_value(record) for field in self.metadata.primary_key_fields]
        except Exception as e:
            names = ", ".join(field.name for field in self.metadata.primary_key_fields)
            error = TableOperationError(
                f"Exception loading primary key fields for {self.record_type.__name__} "
                f'"{names}": {e}'
            )
            return self._route(error, e, [])

    def get_non_primary_field_record_restriction(self, record: T) -> Restriction:
        """AND of equality terms over every non-key field of the record.

        Useful to find a just-inserted record before its identity key is
        known. None values render as ``IS NULL``.
        """
        terms: list[str] = []
        parameters: list[Any] = []
        for field in self.metadata.update_fields:
            name = self.get_escaped_field_name(field.field_name)
            if field.get_value(record) is None:
                terms.append(f"{name} IS NULL")
                continue
            terms.append(f"{name} = {{{len(parameters)}}}")
            parameters.append(self._loader.get_interpreted_property_value(field, record))
        return Restriction(" AND ".join(terms), *parameters)

    def _primary_key_restriction(self, record: T) -> Restriction:
        fields = self.metadata.primary_key_fields
        return Restriction(
            " AND ".join(
                f"{self.get_escaped_field_name(field.field_name)}={{{i}}}"
                for i, field in enumerate(fields)
            ),
            *self._loader.to_parameters(record, fields),
        )

    def get_search_restrictions(self, *record_filters: RecordFilter | None) -> list[Restriction]:
        """Restrictions for the filters, skipping None and blank field names."""
        return [
            record_filter.generate_restriction(self)
            for record_filter in record_filters
            if record_filter is not None and (record_filter.field_name or "").strip()
        ]

    def _criteria_restriction(
        self, criteria: Sequence[Restriction | RecordFilter | None]
    ) -> Restriction | None:
        restrictions: list[Restriction | None] = []
        for criterion in criteria:
            if isinstance(criterion, RecordFilter):
                restrictions.extend(self.get_search_restrictions(criterion))
            else:
                restrictions.append(criterion)
        return combine_all(restrictions)

    def _interpreted_primary_keys(
        self, primary_keys: Sequence[Any], skip_encryption: bool = False
    ) -> list[Any]:
        fields = self.metadata.primary_key_fields
        if len(primary_keys) != len(fields):
            raise ValueError(
                f"{self.record_type.__name__} expects {len(fields)} primary key values, "
                f"got {len(primary_keys)}"
            )
        return [
            self._loader.get_interpreted_value(field, value, skip_encryption)
            for field, value in zip(fields, primary_keys, strict=True)
        ]

    # -------------------------------------------------------------------------
    # Order by
    # -------------------------------------------------------------------------

    def validate_order_by(self, order_by: str | None) -> str | None:
        """Validate an ORDER BY expression and render it for the dialect.

        Each comma-separated term is a field name with optional ASC / DESC.
        A term matching a sort extension is replaced by the extension's
        expression; otherwise it must name a record field.

        Raises:
            InvalidExpressionError: If a term names an unknown field.
        """
        if order_by is None or not order_by.strip():
            return order_by

        validated: list[str] = []
        for term in order_by.split(","):
            term = term.strip()
            if not term:
                continue

            upper = term.upper()
            if upper.endswith(" ASC"):
                field_name, direction = term[:-4].strip(), " ASC"
            elif upper.endswith(" DESC"):
                field_name, direction = term[:-5].strip(), " DESC"
            else:
                field_name, direction = term, ""

            extension = self.metadata.find_sort_extension(field_name)
            if extension is not None:
                validated.append(extension(field_name) + direction)
                continue

            if not self.field_exists(field_name):
                raise InvalidExpressionError(
                    f'"{field_name}" is not a valid field in the order by expression'
                )
            validated.append(self.get_escaped_field_name(field_name) + direction)

        return ", ".join(validated)

    def _default_order_by(self) -> str:
        return ", ".join(
            self.get_escaped_field_name(field.field_name)
            for field in self.metadata.primary_key_fields
        )

    def _sort_field(self, sort_field: str | None) -> tuple[str, FieldMetadata | None]:
        """Resolve a paging/search sort field to (order by, field if encrypted)."""
        if sort_field is None or not sort_field.strip():
            first_key = self.metadata.primary_key_fields[0]
            order_by = self.get_escaped_field_name(first_key.field_name)
            return order_by, first_key if first_key.is_encrypted else None

        # Encryption is checked on the raw name before any sort extension
        field = self._find_field(sort_field)
        encrypted = field if field is not None and field.is_encrypted else None
        return self.validate_order_by(sort_field) or self._default_order_by(), encrypted

    @staticmethod
    def _local_order_by(
        records: list[T],
        field: FieldMetadata,
        ascending: bool,
        comparison: Callable[[str], Any] = str.casefold,
    ) -> list[T]:
        def sort_key(record: T) -> tuple[int, Any]:
            value = field.get_value(record)
            if not isinstance(value, str):
                return (0, "")
            return (1, comparison(value))

        return sorted(records, key=sort_key, reverse=not ascending)

    # -------------------------------------------------------------------------
    # Error routing
    # -------------------------------------------------------------------------

    def _route(self, error: Exception, cause: BaseException | None, sentinel: Any) -> Any:
        if cause is not None:
            error.__cause__ = cause
        if self.exception_handler is None:
            raise error
        logger.warning("%s", error)
        self.exception_handler(error)
        return sentinel

    def _fail(
        self,
        operation: str,
        sql: str | None,
        parameters: Sequence[Any] | None,
        cause: Exception,
        sentinel: Any,
    ) -> Any:
        error = TableOperationError(
            f"Exception during record {operation} for {self.record_type.__name__} "
            f'"{sql or "undefined"}, {value_list(parameters)}": {cause}',
            sql,
            parameters,
        )
        return self._route(error, cause, sentinel)

    def _route_field_error(self, error: Exception) -> None:
        if self.exception_handler is None:
            raise error
        logger.warning("%s", error)
        self.exception_handler(error)

    # -------------------------------------------------------------------------
    # Record creation
    # -------------------------------------------------------------------------

    def _apply_expressions(self, record: T, attribute: str) -> None:
        scope = ValueExpressionScope(record, self, self.connection)
        for field in self.metadata.fields:
            expression = getattr(field, attribute)
            if expression is not None:
                field.set_value(record, expression(scope))

    def new_record(self) -> T | None:
        """Create a record with default value expressions applied."""
        try:
            record = self.record_type()
            self._apply_expressions(record, "default_expression")
            return record
        except Exception as e:
            return self._route(e, None, None)

    def apply_record_defaults(self, record: T) -> None:
        """Re-evaluate the default value expressions on a record."""
        try:
            self._apply_expressions(record, "default_expression")
        except Exception as e:
            self._route(e, None, None)

    def apply_record_updates(self, record: T) -> None:
        """Evaluate the update value expressions on a record."""
        try:
            self._apply_expressions(record, "update_expression")
        except Exception as e:
            self._route(e, None, None)

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def load_record_from_row(self, row: Mapping[str, Any]) -> T | None:
        """Materialize a record from a row (no database access)."""
        return self._load_from_row(row)

    def _load_from_row(
        self, row: Mapping[str, Any], fields: Iterable[FieldMetadata] | None = None
    ) -> T | None:
        try:
            return self._loader.load_record(row, fields)
        except TableOperationError:
            raise
        except Exception as e:
            error = TableOperationError(
                f"Exception during record load for {self.record_type.__name__} from data row: {e}"
            )
            return self._route(error, e, None)

    async def load_record(self, *primary_keys: Any) -> T | None:
        """Load a record by primary key values, None if no such row."""
        sql = self.templates.select_row
        parameters = self._interpreted_primary_keys(primary_keys)
        try:
            row = await self.connection.retrieve_row(sql, *parameters)
            return None if row is None else self._load_from_row(row)
        except (ConfigurationError, TableOperationError):
            raise
        except Exception as e:
            return self._fail("load", sql, primary_keys, e, None)

    async def _load_record_from_cached_keys(
        self, key_row: Mapping[str, Any], fields: Iterable[FieldMetadata] | None = None
    ) -> T | None:
        # Cached key values are already stored values: no re-encryption
        sql = self.templates.select_row
        primary_keys = self.get_primary_keys(key_row)
        try:
            parameters = self._interpreted_primary_keys(primary_keys, skip_encryption=True)
            row = await self.connection.retrieve_row(sql, *parameters)
            return None if row is None else self._load_from_row(row, fields)
        except (ConfigurationError, TableOperationError):
            raise
        except Exception as e:
            return self._fail("load from primary key cache", sql, primary_keys, e, None)

    def to_data_table(self, records: Iterable[T | None]) -> DataTable:
        """Materialize records into a DataTable shaped by the table schema."""
        table = DataTable(name=self.metadata.table_name, columns=list(self.metadata.schema))
        for record in records:
            if record is None:
                continue
            table.add_row(self._loader.to_row(record))
        return table

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def query_record(
        self, restriction: Restriction | None = None, order_by: str | None = None
    ) -> T | None:
        """First record matching the restriction, None if there is none."""
        records = await self.query_records(order_by, restriction, 1)
        return records[0] if records else None

    async def query_record_where(self, filter_expression: str | None, *parameters: Any) -> T | None:
        return await self.query_record(Restriction(filter_expression, *parameters))

    async def query_records(
        self,
        order_by: str | None = None,
        restriction: Restriction | None = None,
        limit: int = -1,
    ) -> list[T]:
        """Records matching the restriction (and the root restriction).

        Args:
            order_by: ORDER BY expression, primary key order if None.
            restriction: Filter to apply, all records if None.
            limit: Maximum number of records, unbounded if less than 1.

        Raises:
            InvalidExpressionError: If order_by names an unknown field.
        """
        order_by = self.validate_order_by(order_by)
        return await self._query_records(order_by, restriction, limit)

    async def query_records_where(self, filter_expression: str | None, *parameters: Any) -> list[T]:
        return await self.query_records(restriction=Restriction(filter_expression, *parameters))

    async def _query_records(
        self, order_by: str | None, restriction: Restriction | None, limit: int = -1
    ) -> list[T]:
        if order_by is None or not order_by.strip():
            order_by = self._default_order_by()

        restriction = combine_and(self.root_query_restriction, restriction)
        sql: str | None = None
        try:
            if restriction is None:
                sql = self.templates.select_set.format(order_by)
                parameters: list[Any] = []
            else:
                filter_expression = self.update_field_names(restriction.filter_expression)
                sql = self.templates.select_set_where.format(filter_expression, order_by)
                parameters = restriction.parameters

            records: list[T] = []
            rows = 0
            async with contextlib.aclosing(
                self.connection.execute_reader(sql, *parameters)
            ) as reader:
                async for row in reader:
                    rows += 1
                    record = self._load_from_row(row)
                    if record is not None:
                        records.append(record)
                    if 0 < limit <= rows:
                        break
            return records
        except (ConfigurationError, TableOperationError):
            raise
        except Exception as e:
            return self._fail("query", sql, restriction.parameters if restriction else None, e, [])

    async def query_record_count(self, *criteria: Restriction | RecordFilter | None) -> int:
        """Number of records matching all criteria (and the root restriction)."""
        restriction = combine_and(self.root_query_restriction, self._criteria_restriction(criteria))
        sql: str | None = None
        try:
            if restriction is None:
                sql = self.templates.select_count
                return await self.connection.execute_scalar(sql, default=0, return_type=int)
            filter_expression = self.update_field_names(restriction.filter_expression)
            sql = f"{self.templates.select_count} WHERE {filter_expression}"
            return await self.connection.execute_scalar(
                sql, *restriction.parameters, default=0, return_type=int
            )
        except Exception as e:
            return self._fail(
                "count query", sql, restriction.parameters if restriction else None, e, -1
            )

    async def query_record_count_where(self, filter_expression: str | None, *parameters: Any) -> int:
        return await self.query_record_count(Restriction(filter_expression, *parameters))

    async def query_page(
        self,
        sort_field: str | None,
        ascending: bool,
        page: int,
        page_size: int,
        *criteria: Restriction | RecordFilter | None,
    ) -> list[T]:
        """One page of records, paging through a cached primary-key list.

        The first call for a (sort field, direction, criteria) combination
        selects only the primary keys, in order, and caches them; following
        pages reuse the cache and load each record by key. Records deleted
        since the cache was built are skipped. When the sort field is
        encrypted the keys are fetched in key order, the sort field is
        decrypted and the cache is sorted locally.

        Args:
            sort_field: Field to sort on, first key field if None.
            ascending: Sort direction.
            page: 1-based page number (values below 1 read page 1).
            page_size: Records per page.
            criteria: Restrictions and/or RecordFilters, ANDed together.

        Raises:
            InvalidExpressionError: If sort_field or a filter names an unknown field.
        """
        restriction = self._criteria_restriction(criteria)
        order_by, encrypted_field = self._sort_field(sort_field)

        cache_key = (
            order_by.casefold(),
            bool(ascending),
            restriction.clone() if restriction is not None else None,
        )

        if self._primary_key_cache is None or self._cache_key != cache_key:
            query_restriction = combine_and(self.root_query_restriction, restriction)
            key_order_by = (
                self._default_order_by()
                if encrypted_field is not None
                else f"{order_by}{'' if ascending else ' DESC'}"
            )
            sql: str | None = None
            try:
                if query_restriction is None:
                    sql = self.templates.select_keys.format(key_order_by)
                    table = await self.connection.retrieve_data(sql)
                else:
                    filter_expression = self.update_field_names(query_restriction.filter_expression)
                    sql = self.templates.select_keys_where.format(filter_expression, key_order_by)
                    table = await self.connection.retrieve_data(sql, *query_restriction.parameters)

                key_rows = table.rows
                if encrypted_field is not None:
                    key_rows = await self._sort_key_rows(key_rows, encrypted_field, ascending)
            except (ConfigurationError, TableOperationError):
                raise
            except Exception as e:
                parameters = query_restriction.parameters if query_restriction else None
                return self._fail("query", sql, parameters, e, [])

            self._primary_key_cache = key_rows
            self._cache_key = cache_key

        if page_size < 1:
            return []
        start = (max(page, 1) - 1) * page_size
        records: list[T] = []
        for key_row in self._primary_key_cache[start : start + page_size]:
            record = await self._load_record_from_cached_keys(key_row)
            if record is not None:
                records.append(record)
        return records

    async def _sort_key_rows(
        self, key_rows: list[DataRow], field: FieldMetadata, ascending: bool
    ) -> list[DataRow]:
        fields = (*self.metadata.primary_key_fields, field)
        loaded: list[tuple[DataRow, Any]] = []
        for key_row in key_rows:
            record = await self._load_record_from_cached_keys(key_row, fields)
            if record is not None:
                loaded.append((key_row, record))

        order = {id(record): key_row for key_row, record in loaded}
        records = self._local_order_by([record for _, record in loaded], field, ascending)
        return [order[id(record)] for record in records]

    async def search_records(
        self,
        sort_field: str | None,
        ascending: bool,
        *record_filters: RecordFilter | None,
        comparison: Callable[[str], Any] = str.casefold,
    ) -> list[T]:
        """All records matching the filters, without the primary-key cache.

        Records sorted on an encrypted field are read unordered and sorted
        locally with comparison as the sort key. Meant for small to moderate
        result sets; page the result with get_page_of_records().

        Raises:
            InvalidExpressionError: If sort_field or a filter names an unknown field.
        """
        order_by, encrypted_field = self._sort_field(sort_field)
        restriction = combine_all(
            [record_filter.generate_restriction(self) for record_filter in record_filters if record_filter]
        )

        if encrypted_field is not None:
            records = await self._query_records(None, restriction)
            return self._local_order_by(records, encrypted_field, ascending, comparison)

        return await self._query_records(f"{order_by}{'' if ascending else ' DESC'}", restriction)

    @staticmethod
    def get_page_of_records(records: Sequence[T | None], page: int, page_size: int) -> list[T | None]:
        """Slice a 1-based page out of an already loaded record list."""
        if page_size < 1:
            return []
        start = (max(page, 1) - 1) * page_size
        return list(records[start : start + page_size])

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def _as_record(self, record_or_row: T | Mapping[str, Any]) -> T | None:
        if isinstance(record_or_row, Mapping):
            return self.load_record_from_row(record_or_row)
        return record_or_row

    async def add_new_record(self, record_or_row: T | Mapping[str, Any]) -> int:
        """Insert a record (or a row). Returns the affected row count."""
        record = self._as_record(record_or_row)
        if record is None:
            return 0

        sql = self.templates.add_new
        values: list[Any] = []
        try:
            values = self._loader.to_parameters(record, self.metadata.add_new_fields)
            affected = await self.connection.execute_non_query(sql, *values)
            if affected > 0:
                self.clear_primary_key_cache()
            return affected
        except Exception as e:
            return self._fail("insert", sql, values, e, 0)

    async def add_new_or_update_record(self, record: T) -> int:
        """Insert the record if its primary key is unset, update it otherwise."""
        if all(
            _is_default_value(field.get_value(record)) for field in self.metadata.primary_key_fields
        ):
            return await self.add_new_record(record)
        return await self.update_record(record)

    async def update_record(
        self,
        record_or_row: T | Mapping[str, Any],
        restriction: Restriction | None = None,
        apply_root_query_restriction: bool | None = None,
    ) -> int:
        """Update a record after evaluating its update value expressions.

        Without a restriction the row is found by primary key. With one,
        its parameters are bound after the SET values and its placeholders
        renumbered accordingly.

        Args:
            record_or_row: Record (or row) with the new values.
            restriction: Rows to update instead of the primary key match.
            apply_root_query_restriction: Override of
                apply_root_query_restriction_to_updates.

        Returns:
            The affected row count, 0 on a handled error.
        """
        record = self._as_record(record_or_row)
        if record is None:
            return 0

        try:
            self._apply_expressions(record, "update_expression")
        except Exception as e:
            return self._route(e, None, 0)

        apply_root = (
            apply_root_query_restriction
            if apply_root_query_restriction is not None
            else self.apply_root_query_restriction_to_updates
        )

        update_fields = self.metadata.update_fields
        sql: str | None = None
        values: list[Any] = []
        try:
            if apply_root and self.root_query_restriction is not None:
                # The root restriction narrows the key match, it never replaces it
                if restriction is None:
                    restriction = self._primary_key_restriction(record)
                restriction = combine_and(self.root_query_restriction, restriction)

            values = self._loader.to_parameters(record, update_fields)
            if restriction is None:
                sql = self.templates.update
                values.extend(self._loader.to_parameters(record, self.metadata.primary_key_fields))
            else:
                values.extend(restriction.parameters)
                filter_restriction = Restriction.from_sequence(
                    self.update_field_names(restriction.filter_expression), restriction.parameters
                )
                sql = self.templates.update_where + filter_restriction.renumbered(len(update_fields))

            affected = await self.connection.execute_non_query(sql, *values)
            if affected > 0:
                self.clear_primary_key_cache()
            return affected
        except Exception as e:
            return self._fail("update", sql, values, e, 0)

    async def update_record_where(
        self, record_or_row: T | Mapping[str, Any], filter_expression: str, *parameters: Any
    ) -> int:
        return await self.update_record(record_or_row, Restriction(filter_expression, *parameters))

    async def delete_record(self, record_or_row: T | Mapping[str, Any]) -> int:
        """Delete the row with the primary key of a record (or row)."""
        primary_keys = self.get_primary_keys(record_or_row)
        if not primary_keys:
            return 0
        return await self.delete_record_by_key(*primary_keys)

    async def delete_record_by_key(self, *primary_keys: Any) -> int:
        """Delete the row with the given primary key values."""
        sql = self.templates.delete
        parameters = self._interpreted_primary_keys(primary_keys)
        try:
            affected = await self.connection.execute_non_query(sql, *parameters)
            if affected > 0:
                self.clear_primary_key_cache()
            return affected
        except Exception as e:
            return self._fail("delete", sql, primary_keys, e, 0)

    async def delete_records(
        self, restriction: Restriction, apply_root_query_restriction: bool | None = None
    ) -> int:
        """Delete every row matching the restriction.

        Raises:
            ValueError: If restriction is None.
        """
        if restriction is None:
            raise ValueError("restriction is required")

        apply_root = (
            apply_root_query_restriction
            if apply_root_query_restriction is not None
            else self.apply_root_query_restriction_to_deletes
        )
        if apply_root:
            restriction = combine_and(self.root_query_restriction, restriction)

        sql: str | None = None
        try:
            sql = f"{self.templates.delete_where}{self.update_field_names(restriction.filter_expression)}"
            affected = await self.connection.execute_non_query(sql, *restriction.parameters)
            if affected > 0:
                self.clear_primary_key_cache()
            return affected
        except Exception as e:
            return self._fail("delete", sql, restriction.parameters, e, 0)

    async def delete_record_where(self, filter_expression: str, *parameters: Any) -> int:
        return await self.delete_records(Restriction(filter_expression, *parameters))


__all__ = ["TableOperations", "value_list"]
