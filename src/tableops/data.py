# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Tabular result containers returned by DataConnection."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


class DataRow(dict):
    """Result row keyed by column name.

    Lookups fall back to a case-insensitive match, since drivers differ in
    how they fold unquoted identifiers (PostgreSQL lowers them).
    """

    def __missing__(self, key: str) -> Any:
        if isinstance(key, str):
            folded = key.casefold()
            for name, value in self.items():
                if isinstance(name, str) and name.casefold() == folded:
                    return value
        raise KeyError(key)

    def get(self, key: str, default: Any = None) -> Any:
        try:
            return self[key]
        except KeyError:
            return default

    def __contains__(self, key: object) -> bool:
        if dict.__contains__(self, key):
            return True
        if isinstance(key, str):
            folded = key.casefold()
            return any(isinstance(n, str) and n.casefold() == folded for n in self.keys())
        return False

    @property
    def item_array(self) -> tuple[Any, ...]:
        """Column values in column order."""
        return tuple(self.values())


@dataclass(frozen=True)
class DataColumn:
    """Column descriptor: name, Python value type and nullability."""

    name: str
    data_type: type = object
    allow_null: bool = True


@dataclass
class DataTable:
    """In-memory table: ordered columns plus rows.

    Attributes:
        name: Table name, empty for ad hoc query results.
        columns: Column descriptors in result order.
        rows: Result rows.
    """

    name: str = ""
    columns: list[DataColumn] = field(default_factory=list)
    rows: list[DataRow] = field(default_factory=list)

    @property
    def column_names(self) -> list[str]:
        return [column.name for column in self.columns]

    def add_row(self, values: dict[str, Any]) -> DataRow:
        """Append a row built from a column -> value mapping."""
        row = DataRow(values)
        self.rows.append(row)
        return row

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self):
        return iter(self.rows)


@dataclass
class DataSet:
    """Ordered collection of tables from a multi-statement query."""

    tables: list[DataTable] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.tables)

    def __getitem__(self, index: int) -> DataTable:
        return self.tables[index]

    def __iter__(self):
        return iter(self.tables)


__all__ = ["DataColumn", "DataRow", "DataSet", "DataTable"]
