# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Error taxonomy for table operations.

Two families of errors are raised by this package:

- Configuration errors: model defects (bad annotations, extension signature
  mismatch, invalid filter operator, unknown sort/filter field). They are
  raised unconditionally and never routed to an exception handler.
- Execution errors: failures while talking to the database or while
  materializing records. They are wrapped in TableOperationError with the
  rendered SQL and bound parameters, then either routed to the engine's
  exception handler or propagated.
"""

from __future__ import annotations

from typing import Any


class TableOpsError(Exception):
    """Base class for all tableops errors."""

    pass


class ConfigurationError(TableOpsError):
    """Raised when a record type or call is mis-configured."""

    pass


class InvalidExpressionError(ConfigurationError, ValueError):
    """Raised when a sort or filter expression names an unknown field."""

    pass


class OperatorNotSupportedError(ConfigurationError, ValueError):
    """Raised when a record filter is given an unsupported operator."""

    pass


class TableOperationError(TableOpsError):
    """Execution error enriched with the SQL text and parameters.

    Attributes:
        sql: The SQL format string that was executed (if any).
        parameters: The positional parameter values bound to the SQL.
    """

    def __init__(self, message: str, sql: str | None = None, parameters: Any = None):
        super().__init__(message)
        self.sql = sql
        self.parameters = list(parameters) if parameters is not None else []


__all__ = [
    "ConfigurationError",
    "InvalidExpressionError",
    "OperatorNotSupportedError",
    "TableOperationError",
    "TableOpsError",
]
