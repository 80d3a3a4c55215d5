# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Driver contract behind DataConnection.

An adapter knows how to open connections for one database driver and how to
run already-rendered SQL on them. It does not know about records, templates
or positional ``{i}`` placeholders: DataConnection renders those to the
adapter's named parameter markers and resolves every value before calling in.

Every statement method takes the connection explicitly, so one adapter (and
its pool, if any) can serve several DataConnection instances.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from ..dialect import DatabaseType

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

Params = dict[str, Any] | None


class DbAdapter(ABC):
    """Connection factory and statement runner for one driver.

    Attributes:
        parameter_format: Named parameter marker, ``{}`` is the name.
        database_type: Dialect the driver speaks, OTHER if unknown.
    """

    parameter_format: str = ":{}"
    database_type: DatabaseType = DatabaseType.OTHER

    def parameter_marker(self, name: str) -> str:
        """Driver marker for the parameter bound under name."""
        return self.parameter_format.format(name)

    def adapt_value(self, value: Any) -> Any:
        """Last conversion of a resolved value before it reaches the driver."""
        return value

    # -------------------------------------------------------------------------
    # Connections
    # -------------------------------------------------------------------------

    @abstractmethod
    async def acquire(self) -> Any:
        """Open a connection (or take one from the pool)."""

    @abstractmethod
    async def release(self, conn: Any) -> None:
        """Close a connection (or hand it back to the pool)."""

    @abstractmethod
    async def shutdown(self) -> None:
        """Dispose of pooled resources. No-op for unpooled drivers."""

    @abstractmethod
    async def commit(self, conn: Any) -> None: ...

    @abstractmethod
    async def rollback(self, conn: Any) -> None: ...

    # -------------------------------------------------------------------------
    # Statements
    # -------------------------------------------------------------------------

    @abstractmethod
    async def execute(self, conn: Any, query: str, params: Params = None) -> int:
        """Run a statement and return the affected row count."""

    @abstractmethod
    async def fetch_one(self, conn: Any, query: str, params: Params = None) -> dict[str, Any] | None:
        """First row keyed by column name, None for an empty result."""

    @abstractmethod
    async def fetch_table(
        self, conn: Any, query: str, params: Params = None
    ) -> tuple[list[str], list[tuple[Any, ...]]]:
        """Column names and row tuples.

        The column names are reported even when no row matches, so callers
        can shape an empty DataTable.
        """

    @abstractmethod
    def iterate(self, conn: Any, query: str, params: Params = None) -> AsyncIterator[dict[str, Any]]:
        """Rows keyed by column name, read from the cursor as they are consumed."""

    @abstractmethod
    async def execute_script(self, conn: Any, script: str) -> None:
        """Run several parameterless statements, e.g. a schema script."""

    async def fetch_all(self, conn: Any, query: str, params: Params = None) -> list[dict[str, Any]]:
        """Every row keyed by column name."""
        cols, rows = await self.fetch_table(conn, query, params)
        return [dict(zip(cols, row, strict=True)) for row in rows]


__all__ = ["DbAdapter"]
