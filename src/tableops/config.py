# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Configuration dataclass for table operations.

TableOperationsConfig gathers the settings shared by a DataConnection and
the engines bound to it. It can be built directly or read from the
environment with config_from_env().

Usage:
    config = config_from_env()  # TABLEOPS_* environment variables
    connection = DataConnection.from_config(config)
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from .dialect import DatabaseType

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


@dataclass
class TableOperationsConfig:
    """Settings for a DataConnection and its table engines.

    Attributes:
        connection_string: Database path or DSN (see adapters.get_adapter).
        database_type: Dialect override. If None, taken from the adapter.
        default_timeout: Statement timeout in seconds.
        wildcard_char: Wildcard substituted for ``*`` in LIKE filters.
        use_case_sensitive_field_names: Match field names case-sensitively.
        integer_booleans: Bind booleans as 1/0. If None, dialect default.
        key_env_prefix: Environment variable prefix for encryption keys.
    """

    connection_string: str = ":memory:"
    """Database path or DSN."""

    database_type: DatabaseType | None = None
    """Dialect override. If None, taken from the adapter."""

    default_timeout: float = 30.0
    """Statement timeout in seconds."""

    wildcard_char: str = "%"
    """Wildcard substituted for ``*`` in LIKE filters."""

    use_case_sensitive_field_names: bool = False
    """Match field names case-sensitively."""

    integer_booleans: bool | None = None
    """Bind booleans as 1/0. If None, dialect default."""

    key_env_prefix: str = "TABLEOPS_KEY_"
    """Environment variable prefix for encryption keys."""


def _env_bool(name: str) -> bool | None:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return None
    value = value.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean (got '{value}')")


def config_from_env(prefix: str = "TABLEOPS_") -> TableOperationsConfig:
    """Build a configuration from environment variables.

    Reads <prefix>CONNECTION_STRING, <prefix>DATABASE_TYPE,
    <prefix>DEFAULT_TIMEOUT, <prefix>WILDCARD_CHAR,
    <prefix>CASE_SENSITIVE_FIELD_NAMES and <prefix>INTEGER_BOOLEANS.
    Unset variables keep the dataclass defaults.

    Raises:
        ValueError: If a variable holds an unparseable value.
    """
    config = TableOperationsConfig()

    connection_string = os.environ.get(f"{prefix}CONNECTION_STRING")
    if connection_string:
        config.connection_string = connection_string

    database_type = os.environ.get(f"{prefix}DATABASE_TYPE")
    if database_type:
        config.database_type = DatabaseType.parse(database_type)

    timeout = os.environ.get(f"{prefix}DEFAULT_TIMEOUT")
    if timeout:
        config.default_timeout = float(timeout)

    wildcard = os.environ.get(f"{prefix}WILDCARD_CHAR")
    if wildcard:
        config.wildcard_char = wildcard

    case_sensitive = _env_bool(f"{prefix}CASE_SENSITIVE_FIELD_NAMES")
    if case_sensitive is not None:
        config.use_case_sensitive_field_names = case_sensitive

    config.integer_booleans = _env_bool(f"{prefix}INTEGER_BOOLEANS")
    config.key_env_prefix = f"{prefix}KEY_"
    return config


__all__ = ["TableOperationsConfig", "config_from_env"]
