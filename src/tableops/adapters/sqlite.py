# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""aiosqlite adapter.

SQLite stores dates, decimals and GUIDs as text; adapt_value turns them
into their ISO / decimal / canonical string forms and the record loader
coerces them back to the annotated types on read.
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from datetime import date, datetime, time
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import aiosqlite

from ..dialect import DatabaseType
from .base import DbAdapter

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from .base import Params


class SqliteAdapter(DbAdapter):
    """One aiosqlite connection per acquire(), closed again on release().

    Attributes:
        db_path: Database file, or ``:memory:``.
    """

    parameter_format = ":{}"
    database_type = DatabaseType.SQLITE

    def __init__(self, db_path: str):
        self.db_path = db_path or ":memory:"

    def __repr__(self) -> str:
        return f"SqliteAdapter({self.db_path!r})"

    def adapt_value(self, value: Any) -> Any:
        if isinstance(value, datetime):
            return value.isoformat(sep=" ")
        if isinstance(value, date | time):
            return value.isoformat()
        if isinstance(value, Decimal | uuid.UUID):
            return str(value)
        return value

    async def acquire(self) -> aiosqlite.Connection:
        return await aiosqlite.connect(self.db_path)

    async def release(self, conn: aiosqlite.Connection) -> None:
        await conn.close()

    async def shutdown(self) -> None:
        return None

    async def commit(self, conn: aiosqlite.Connection) -> None:
        await conn.commit()

    async def rollback(self, conn: aiosqlite.Connection) -> None:
        await conn.rollback()

    @asynccontextmanager
    async def _cursor(
        self, conn: aiosqlite.Connection, query: str, params: Params
    ) -> AsyncIterator[tuple[aiosqlite.Cursor, list[str]]]:
        async with conn.execute(query, params or {}) as cursor:
            columns = [c[0] for c in cursor.description] if cursor.description else []
            yield cursor, columns

    async def execute(self, conn: aiosqlite.Connection, query: str, params: Params = None) -> int:
        cursor = await conn.execute(query, params or {})
        try:
            return cursor.rowcount
        finally:
            await cursor.close()

    async def fetch_one(
        self, conn: aiosqlite.Connection, query: str, params: Params = None
    ) -> dict[str, Any] | None:
        async with self._cursor(conn, query, params) as (cursor, columns):
            row = await cursor.fetchone()
            return None if row is None else dict(zip(columns, row, strict=True))

    async def fetch_table(
        self, conn: aiosqlite.Connection, query: str, params: Params = None
    ) -> tuple[list[str], list[tuple[Any, ...]]]:
        async with self._cursor(conn, query, params) as (cursor, columns):
            rows = await cursor.fetchall()
            return columns, [tuple(row) for row in rows]

    async def iterate(
        self, conn: aiosqlite.Connection, query: str, params: Params = None
    ) -> AsyncIterator[dict[str, Any]]:
        async with self._cursor(conn, query, params) as (cursor, columns):
            async for row in cursor:
                yield dict(zip(columns, row, strict=True))

    async def execute_script(self, conn: aiosqlite.Connection, script: str) -> None:
        await conn.executescript(script)


__all__ = ["SqliteAdapter"]
