# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""User-facing single-field search criteria.

A RecordFilter names a field of a record type, a comparison operator and
a search parameter. generate_restriction() turns it into a Restriction,
either through a search extension declared on the record type or by the
default rendering rules:

    RecordFilter(Person, "Name", "LIKE", "An*")     -> Name LIKE {0}  ["An%"]
    RecordFilter(Person, "ID", "IN", [1, 2, 3])     -> ID IN ({0},{1},{2})
    RecordFilter(Person, "Email", "IS", None)       -> Email IS NULL

Filters are meant for searches driven by a user interface. Backend code
usually builds Restriction values directly.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .errors import InvalidExpressionError, OperatorNotSupportedError
from .metadata import get_metadata
from .restriction import Restriction

if TYPE_CHECKING:
    from .metadata import FieldMetadata, TableMetadata
    from .table_operations import TableOperations

VALID_OPERATORS = (
    "=",
    "<>",
    "<",
    ">",
    "IN",
    "NOT IN",
    "LIKE",
    "NOT LIKE",
    "<=",
    ">=",
    "IS",
    "IS NOT",
)

GROUP_OPERATORS = frozenset({"IN", "NOT IN"})
LIKE_OPERATORS = frozenset({"LIKE", "NOT LIKE"})
NULL_OPERATORS = frozenset({"IS", "IS NOT"})

# Operators that still give correct answers against deterministic ciphertext
ENCRYPTED_OPERATORS = frozenset({"=", "<>", "IN", "NOT IN", "IS", "IS NOT"})

DEFAULT_WILDCARD = "%"


def _normalize_operator(value: str) -> str:
    normalized = " ".join(str(value or "").split()).upper()
    if normalized not in VALID_OPERATORS:
        raise OperatorNotSupportedError(f"{value} is not a valid operator")
    return normalized


class RecordFilter:
    """Single-field search criterion for a record type.

    Attributes:
        record_type: Record type the filter applies to.
        field_name: Column or attribute name to search.
        search_parameter: Value searched for (a sequence for IN / NOT IN).
    """

    def __init__(
        self,
        record_type: type,
        field_name: str,
        operator: str = "=",
        search_parameter: Any = None,
    ):
        self.record_type = record_type
        self.field_name = field_name
        self.operator = operator
        self.search_parameter = search_parameter

    def __repr__(self) -> str:
        return (
            f"RecordFilter({self.record_type.__name__}, {self.field_name!r}, "
            f"{self.operator!r}, {self.search_parameter!r})"
        )

    @property
    def operator(self) -> str:
        """Comparison operator, upper case.

        Raises:
            OperatorNotSupportedError: On assignment of an unknown operator.
        """
        return self._operator

    @operator.setter
    def operator(self, value: str) -> None:
        self._operator = _normalize_operator(value)

    @property
    def supports_encrypted(self) -> bool:
        """True if the operator can be evaluated against encrypted values."""
        return self._operator in ENCRYPTED_OPERATORS

    @property
    def metadata(self) -> TableMetadata:
        return get_metadata(self.record_type)

    def model_field(self, case_sensitive: bool = False) -> FieldMetadata | None:
        """The record field targeted by the filter, None for extra columns."""
        return self.metadata.find_field(self.field_name, case_sensitive)

    def generate_restriction(self, table_operations: TableOperations | None = None) -> Restriction:
        """Build the Restriction this filter stands for.

        Args:
            table_operations: Engine whose escaping, wildcard, field-name
                case sensitivity and value interpretation (encryption, typed
                parameters) apply. Without one, values are bound raw.

        Raises:
            InvalidExpressionError: If the field is not searchable.
            OperatorNotSupportedError: If the field is encrypted and the
                operator cannot be evaluated against ciphertext.
        """
        metadata = self.metadata
        field_name = (self.field_name or "").strip()

        extension = metadata.find_search_extension(field_name)
        if extension is not None:
            return extension(self)

        case_sensitive = (
            table_operations.use_case_sensitive_field_names if table_operations else False
        )
        if not metadata.is_searchable(field_name, case_sensitive):
            raise InvalidExpressionError(
                f"{field_name} is not a valid field for {self.record_type.__name__}"
            )

        model_field = metadata.find_field(field_name, case_sensitive)
        operator = self._operator

        if model_field is not None:
            if model_field.is_encrypted and table_operations is not None and not self.supports_encrypted:
                raise OperatorNotSupportedError(
                    f"Operator {operator} cannot be applied to encrypted field {model_field.field_name}"
                )
            if table_operations is not None:
                sql_field = table_operations.get_escaped_field_name(model_field.field_name)
            else:
                sql_field = model_field.sql_name
        else:
            sql_field = field_name

        def interpret(value: Any) -> Any:
            if table_operations is None or model_field is None:
                return value
            return table_operations.get_interpreted_field_value(model_field.field_name, value)

        parameter = self.search_parameter

        if operator in GROUP_OPERATORS:
            if isinstance(parameter, list | tuple | set | frozenset):
                values = list(parameter)
            else:
                values = [parameter]
            if not values:
                # Empty set: IN matches nothing, NOT IN matches everything
                return Restriction("1=0" if operator == "IN" else "1=1")
            placeholders = ",".join(f"{{{i}}}" for i in range(len(values)))
            return Restriction(
                f"{sql_field} {operator} ({placeholders})",
                *(interpret(value) for value in values),
            )

        if operator in NULL_OPERATORS and parameter is None:
            return Restriction(f"{sql_field} {operator} NULL")

        if operator in LIKE_OPERATORS and isinstance(parameter, str):
            wildcard = table_operations.wildcard_char if table_operations else DEFAULT_WILDCARD
            parameter = parameter.replace("*", wildcard)

        return Restriction(f"{sql_field} {operator} {{0}}", interpret(parameter))


__all__ = ["ENCRYPTED_OPERATORS", "RecordFilter", "VALID_OPERATORS"]
