# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Dialect-aware async database executor.

DataConnection binds an adapter connection to a Dialect. SQL is written
with positional placeholders (``{0}``, ``{1}``, ...) and parameters are
passed positionally; before execution the placeholders are rendered to the
adapter's named parameters ``p0..pn`` and each value is resolved:

- None binds as SQL NULL
- booleans and GUIDs are encoded by the dialect
- TypedParameter values are coerced to their declared DbType
- remaining values go through the adapter's adapt_value()

Usage:
    async with DataConnection("/data/app.db") as connection:
        count = await connection.execute_scalar(
            "SELECT COUNT(*) FROM people WHERE name = {0}", "Ann", return_type=int
        )
    # COMMIT on success, ROLLBACK on exception
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import sqlparse
from pydantic import TypeAdapter

from .adapters import DbAdapter, get_adapter
from .config import TableOperationsConfig
from .data import DataColumn, DataRow, DataSet, DataTable
from .dialect import DatabaseType, Dialect, TypedParameter, database_type_from_name
from .encryption import KeyRing
from .encryption import keyring as default_keyring

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


def split_statements(script: str) -> list[str]:
    """Split a SQL script into statements with sqlparse.

    Semicolons inside quoted text or comments do not split. Trailing
    semicolons are removed and empty statements dropped.
    """
    statements = (s.strip().rstrip(";").strip() for s in sqlparse.split(script))
    return [s for s in statements if s]


class DataConnection:
    """Single-connection database executor with dialect rules.

    The executor is not safe for overlapping commands: awaits against one
    instance must be sequential.

    Attributes:
        connection_string: Connection string the adapter was built from.
        adapter: Database adapter.
        database_type: Active database type.
        dialect: Dialect rules for database_type.
        default_timeout: Statement timeout in seconds (0 or None disables it).
        config: Settings the connection was built from.
        keyring: Key ring used by engines bound to this connection.
    """

    def __init__(
        self,
        connection_string: str = ":memory:",
        database_type: DatabaseType | str | None = None,
        default_timeout: float | None = DEFAULT_TIMEOUT,
        *,
        adapter: DbAdapter | None = None,
        integer_booleans: bool | None = None,
        keyring: KeyRing | None = None,
        config: TableOperationsConfig | None = None,
    ):
        """Initialize the executor (the connection is opened by open()).

        Args:
            connection_string: Database connection string.
            database_type: Dialect override, detected from the adapter if None.
            default_timeout: Statement timeout in seconds.
            adapter: Explicit adapter; built from connection_string if None.
            integer_booleans: Bind booleans as 1/0. If None, dialect default.
            keyring: Key ring for field encryption. If None, the shared one.
            config: Settings carried for engines bound to this connection.
        """
        self.connection_string = connection_string
        self.adapter: DbAdapter = adapter or get_adapter(connection_string)

        if database_type is not None:
            self.database_type = DatabaseType.parse(database_type)
        elif self.adapter.database_type != DatabaseType.OTHER:
            self.database_type = self.adapter.database_type
        else:
            self.database_type = database_type_from_name(type(self.adapter).__name__)

        self.dialect = Dialect(self.database_type, integer_booleans)
        self.default_timeout = default_timeout
        self.config = config or TableOperationsConfig(
            connection_string=connection_string,
            database_type=self.database_type,
            default_timeout=default_timeout or 0.0,
            integer_booleans=integer_booleans,
        )
        self.keyring = keyring or default_keyring
        self._conn: Any = None

    @classmethod
    def from_config(cls, config: TableOperationsConfig) -> DataConnection:
        """Build an executor from a TableOperationsConfig."""
        keyring = None
        if config.key_env_prefix != default_keyring.env_prefix:
            keyring = KeyRing(env_prefix=config.key_env_prefix)
        return cls(
            config.connection_string,
            config.database_type,
            config.default_timeout,
            integer_booleans=config.integer_booleans,
            keyring=keyring,
            config=config,
        )

    def __repr__(self) -> str:
        return f"DataConnection({self.connection_string!r}, {self.database_type.name})"

    # -------------------------------------------------------------------------
    # Connection management
    # -------------------------------------------------------------------------

    @property
    def conn(self) -> Any:
        """Get the open connection.

        Raises:
            RuntimeError: If the connection is not open.
        """
        if self._conn is None:
            raise RuntimeError(
                "No active connection. Use 'async with DataConnection(...)' or await open()"
            )
        return self._conn

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    async def open(self) -> DataConnection:
        """Acquire the connection from the adapter (no-op if already open)."""
        if self._conn is None:
            self._conn = await self.adapter.acquire()
            logger.debug("Opened %r", self)
        return self

    async def close(self, commit: bool = True) -> None:
        """Commit (or roll back) and release the connection."""
        if self._conn is None:
            return
        conn = self._conn
        try:
            if commit:
                await self.adapter.commit(conn)
            else:
                await self.adapter.rollback(conn)
        finally:
            self._conn = None
            await self.adapter.release(conn)
            logger.debug("Closed %r", self)

    async def __aenter__(self) -> DataConnection:
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close(commit=exc_type is None)

    async def commit(self) -> None:
        """Commit current transaction."""
        await self.adapter.commit(self.conn)

    async def rollback(self) -> None:
        """Rollback current transaction."""
        await self.adapter.rollback(self.conn)

    async def shutdown(self) -> None:
        """Release the connection and close the adapter's pool."""
        await self.close()
        await self.adapter.shutdown()

    # -------------------------------------------------------------------------
    # Dialect helpers
    # -------------------------------------------------------------------------

    def escape_identifier(self, identifier: str, use_ansi_quotes: bool = False) -> str:
        """Escape an identifier for the active dialect."""
        return self.dialect.escape_identifier(identifier, use_ansi_quotes)

    def encode_boolean(self, value: bool) -> bool | int:
        """Encode a boolean for binding."""
        return self.dialect.encode_boolean(value)

    def encode_guid(self, value: uuid.UUID) -> uuid.UUID | str:
        """Encode a GUID for binding."""
        return self.dialect.encode_guid(value)

    def utc_now(self) -> datetime:
        """Current UTC time in the form the dialect stores it.

        PostgreSQL gets an aware timestamp; other dialects a naive UTC one.
        """
        now = datetime.now(timezone.utc)
        if self.database_type == DatabaseType.POSTGRESQL:
            return now
        return now.replace(tzinfo=None)

    def parameterized_query_string(self, sql_format: str, *parameter_names: str) -> str:
        """Render positional placeholders to named parameters.

        Args:
            sql_format: SQL with ``{0}``, ``{1}``, ... placeholders.
            parameter_names: Name for each placeholder, in order.

        Returns:
            SQL text with driver placeholders.
        """
        return sql_format.format(*(self.adapter.parameter_marker(name) for name in parameter_names))

    def resolve_parameters(self, parameters: Sequence[Any]) -> dict[str, Any]:
        """Resolve positional values to a ``{"p0": ..., "p1": ...}`` mapping."""
        return {f"p{i}": self._resolve_value(value) for i, value in enumerate(parameters)}

    def _resolve_value(self, value: Any) -> Any:
        if isinstance(value, TypedParameter):
            value = value.resolve()
        if value is None:
            return None
        if isinstance(value, bool):
            return self.dialect.encode_boolean(value)
        if isinstance(value, uuid.UUID):
            value = self.dialect.encode_guid(value)
        return self.adapter.adapt_value(value)

    def _render(self, sql_format: str, parameters: Sequence[Any]) -> tuple[str, dict[str, Any]]:
        names = [f"p{i}" for i in range(len(parameters))]
        sql = self.parameterized_query_string(sql_format, *names)
        params = self.resolve_parameters(parameters)
        logger.debug("SQL: %s params: %s", sql, names)
        return sql, params

    async def _timed(self, awaitable: Any, timeout: float | None) -> Any:
        if timeout is None:
            timeout = self.default_timeout
        return await asyncio.wait_for(awaitable, timeout if timeout and timeout > 0 else None)

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def execute_non_query(
        self, sql_format: str, *parameters: Any, timeout: float | None = None
    ) -> int:
        """Execute a statement, return the affected row count."""
        sql, params = self._render(sql_format, parameters)
        return await self._timed(self.adapter.execute(self.conn, sql, params), timeout)

    async def execute_scalar(
        self,
        sql_format: str,
        *parameters: Any,
        timeout: float | None = None,
        default: Any = None,
        return_type: Any = None,
    ) -> Any:
        """Execute a query, return the first column of the first row.

        Args:
            sql_format: SQL with positional placeholders.
            parameters: Positional parameter values.
            timeout: Statement timeout, default_timeout if None.
            default: Returned when there is no row or the value is NULL.
            return_type: Type the value is converted to, if given.
        """
        sql, params = self._render(sql_format, parameters)
        cols, rows = await self._timed(self.adapter.fetch_table(self.conn, sql, params), timeout)
        value = rows[0][0] if rows and cols else None
        if value is None:
            return default
        if return_type is not None:
            return TypeAdapter(return_type).validate_python(value)
        return value

    async def execute_reader(
        self, sql_format: str, *parameters: Any, timeout: float | None = None
    ) -> AsyncIterator[DataRow]:
        """Execute a query, yield rows while the cursor is read.

        The timeout applies to each row fetch.
        """
        sql, params = self._render(sql_format, parameters)
        rows = self.adapter.iterate(self.conn, sql, params)
        try:
            while True:
                try:
                    row = await self._timed(anext(rows), timeout)
                except StopAsyncIteration:
                    break
                yield DataRow(row)
        finally:
            await rows.aclose()

    async def retrieve_row(
        self, sql_format: str, *parameters: Any, timeout: float | None = None
    ) -> DataRow | None:
        """Execute a query, return the first row or None."""
        sql, params = self._render(sql_format, parameters)
        row = await self._timed(self.adapter.fetch_one(self.conn, sql, params), timeout)
        return None if row is None else DataRow(row)

    async def retrieve_data(
        self, sql_format: str, *parameters: Any, timeout: float | None = None
    ) -> DataTable:
        """Execute a query, return all rows as a DataTable."""
        sql, params = self._render(sql_format, parameters)
        return await self._fetch_table(sql, params, timeout)

    async def retrieve_data_set(
        self, sql_format: str, *parameters: Any, timeout: float | None = None
    ) -> DataSet:
        """Execute a multi-statement query, return one DataTable per statement.

        Every statement is bound against the full parameter list.
        """
        sql, params = self._render(sql_format, parameters)
        data_set = DataSet()
        for index, statement in enumerate(split_statements(sql)):
            table = await self._fetch_table(statement, params, timeout)
            table.name = f"Table{index}" if index else "Table"
            data_set.tables.append(table)
        return data_set

    async def execute_script(self, script: str) -> None:
        """Execute multiple statements without parameters (for schema creation)."""
        await self.adapter.execute_script(self.conn, script)

    async def _fetch_table(
        self, sql: str, params: dict[str, Any], timeout: float | None
    ) -> DataTable:
        cols, rows = await self._timed(self.adapter.fetch_table(self.conn, sql, params), timeout)
        table = DataTable(columns=[DataColumn(name) for name in cols])
        for row in rows:
            table.add_row(dict(zip(cols, row, strict=True)))
        return table


__all__ = ["DEFAULT_TIMEOUT", "DataConnection", "split_statements"]
