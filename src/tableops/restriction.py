# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Parameterized WHERE-clause fragments with AND/OR composition.

A Restriction pairs a filter template using positional placeholders
(``{0}``, ``{1}``, ...) with the parameter values bound to them. Combining
two restrictions wraps both templates in parentheses and shifts the
placeholders of the right-hand side past the parameters of the left-hand
side, so the result can be bound positionally.

Example:
    r = Restriction("Status = {0}", "active") & Restriction("Age > {0}", 18)
    r.filter_expression  # "(Status = {0}) AND (Age > {1})"
    r.parameters         # ["active", 18]
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class Restriction:
    """Filter template plus positional parameter values.

    Restrictions are treated as immutable values, except that individual
    parameter slots may be replaced in place (``restriction[0] = value``)
    for short-lived reuse of a query shape.

    Attributes:
        filter_expression: WHERE-clause template, may be None.
        parameters: Parameter values, in placeholder order.
    """

    __slots__ = ("filter_expression", "parameters")

    def __init__(self, filter_expression: str | None, *parameters: Any):
        self.filter_expression = filter_expression
        self.parameters: list[Any] = list(parameters)

    @classmethod
    def from_sequence(
        cls, filter_expression: str | None, parameters: Sequence[Any] | None
    ) -> Restriction:
        """Build a restriction from an existing parameter sequence."""
        return cls(filter_expression, *(parameters or ()))

    @property
    def is_blank(self) -> bool:
        """True when the filter template is None or whitespace."""
        return not (self.filter_expression or "").strip()

    def clone(self) -> Restriction:
        """Return a copy with its own parameter list."""
        return Restriction(self.filter_expression, *self.parameters)

    def renumbered(self, offset: int) -> str:
        """Return the filter template with every placeholder shifted by offset."""
        if not self.parameters or offset == 0:
            return self.filter_expression or ""
        targets = [f"{{{offset + i}}}" for i in range(len(self.parameters))]
        return (self.filter_expression or "").format(*targets)

    # -------------------------------------------------------------------------
    # Sequence-style parameter access
    # -------------------------------------------------------------------------

    def __getitem__(self, index: int) -> Any:
        return self.parameters[index]

    def __setitem__(self, index: int, value: Any) -> None:
        self.parameters[index] = value

    def __len__(self) -> int:
        return len(self.parameters)

    def __iter__(self) -> Iterator[Any]:
        return iter(self.parameters)

    # -------------------------------------------------------------------------
    # Equality
    # -------------------------------------------------------------------------

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Restriction):
            return NotImplemented
        return (
            self.filter_expression == other.filter_expression
            and self.parameters == other.parameters
        )

    def __hash__(self) -> int:
        return hash(self.filter_expression)

    def __repr__(self) -> str:
        return f"Restriction({self.filter_expression!r}, {self.parameters!r})"

    def __str__(self) -> str:
        values = ", ".join(f"{i}:{value}" for i, value in enumerate(self.parameters))
        return f"{self.filter_expression}, {values}" if values else str(self.filter_expression)

    # -------------------------------------------------------------------------
    # Composition
    # -------------------------------------------------------------------------

    def __and__(self, other: Restriction | None) -> Restriction | None:
        return combine_and(self, other)

    def __rand__(self, other: Restriction | None) -> Restriction | None:
        return combine_and(other, self)

    __add__ = __and__
    __radd__ = __rand__

    def __or__(self, other: Restriction | None) -> Restriction | None:
        return combine_or(self, other)

    def __ror__(self, other: Restriction | None) -> Restriction | None:
        return combine_or(other, self)


def _combine(
    left: Restriction | None, right: Restriction | None, operator: str
) -> Restriction | None:
    if left is None:
        return right
    if right is None:
        return left

    if left.is_blank:
        return None if right.is_blank else right
    if right.is_blank:
        return left

    if not left.parameters and not right.parameters:
        return Restriction(f"({left.filter_expression}) {operator} ({right.filter_expression})")

    right_filter = right.renumbered(len(left.parameters))
    return Restriction(
        f"({left.filter_expression}) {operator} ({right_filter})",
        *left.parameters,
        *right.parameters,
    )


def combine_and(left: Restriction | None, right: Restriction | None) -> Restriction | None:
    """AND two restrictions; either side may be None."""
    return _combine(left, right, "AND")


def combine_or(left: Restriction | None, right: Restriction | None) -> Restriction | None:
    """OR two restrictions; either side may be None."""
    return _combine(left, right, "OR")


def combine_all(restrictions: Sequence[Restriction | None]) -> Restriction | None:
    """AND together a sequence of restrictions, skipping None entries."""
    result: Restriction | None = None
    for restriction in restrictions:
        result = combine_and(result, restriction)
    return result


__all__ = ["Restriction", "combine_all", "combine_and", "combine_or"]
