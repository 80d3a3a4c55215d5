# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Ordering key for schema migrations.

A migration is identified by a branch number and a date, packed into one
monotonic integer so a migration runner can sort and compare migrations
without parsing:

    version = branch * 10**12 + year * 10**8 + month * 10**6 + day * 10**4

The low four digits are left free for same-day ordering by the runner.

Example:
    SchemaMigration(1, 2025, 3, 14, "ops").version  # 1_2025_03_14_0000
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True, order=True)
class SchemaMigration:
    """Migration identity: branch, date and author.

    Instances order by version, then by author.

    Attributes:
        branch: Branch number (0-based, up to 9999).
        year: Four-digit year.
        month: Month, 1-12.
        day: Day of month, 1-31.
        author: Who wrote the migration.
    """

    version: int = field(init=False, repr=False)
    branch: int
    year: int
    month: int
    day: int
    author: str = ""

    def __post_init__(self) -> None:
        if self.branch < 0:
            raise ValueError(f"branch must be >= 0 (got {self.branch})")
        if not 0 < self.year <= 9999:
            raise ValueError(f"year must be 1-9999 (got {self.year})")
        if not 1 <= self.month <= 12:
            raise ValueError(f"month must be 1-12 (got {self.month})")
        if not 1 <= self.day <= 31:
            raise ValueError(f"day must be 1-31 (got {self.day})")
        object.__setattr__(
            self,
            "version",
            self.branch * 10**12 + self.year * 10**8 + self.month * 10**6 + self.day * 10**4,
        )


__all__ = ["SchemaMigration"]
