"""Functional options for building a `DatabaseConfig`.

Each option is a callable that takes a config and returns an updated copy.
Options are applied in call order, so the last write to a field wins.

>>> config = new_default_config(
...     "db.example.com:5433",
...     "app",
...     "app",
...     "secret",
...     with_max_open_connections(20),
...     with_dial_timeout(5.0),
...     with_ping_on_startup(True),
... )
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeAlias

from pydantic import SecretStr

from .config import DEFAULT_PORT, ConnectionSettings, DatabaseConfig, PoolSettings

DatabaseOption: TypeAlias = Callable[[DatabaseConfig], DatabaseConfig]


def _with_pool(config: DatabaseConfig, **changes: Any) -> DatabaseConfig:
    pool = PoolSettings.model_validate({**config.pool.model_dump(), **changes})
    return config.model_copy(update={"pool": pool})


def with_max_connection_lifetime(seconds: float) -> DatabaseOption:
    def option(config: DatabaseConfig) -> DatabaseConfig:
        return _with_pool(config, max_connection_lifetime=seconds)

    return option


def with_max_open_connections(limit: int) -> DatabaseOption:
    def option(config: DatabaseConfig) -> DatabaseConfig:
        return _with_pool(config, max_open_connections=limit)

    return option


def with_max_idle_connections(limit: int) -> DatabaseOption:
    def option(config: DatabaseConfig) -> DatabaseConfig:
        return _with_pool(config, max_idle_connections=limit)

    return option


def with_dial_timeout(seconds: float) -> DatabaseOption:
    def option(config: DatabaseConfig) -> DatabaseConfig:
        return _with_pool(config, dial_timeout=seconds)

    return option


def with_read_timeout(seconds: float) -> DatabaseOption:
    def option(config: DatabaseConfig) -> DatabaseConfig:
        return _with_pool(config, read_timeout=seconds)

    return option


def with_write_timeout(seconds: float) -> DatabaseOption:
    def option(config: DatabaseConfig) -> DatabaseConfig:
        return _with_pool(config, write_timeout=seconds)

    return option


def with_ping_on_startup(enabled: bool) -> DatabaseOption:
    def option(config: DatabaseConfig) -> DatabaseConfig:
        return config.model_copy(update={"ping_on_startup": enabled})

    return option


def apply_options(config: DatabaseConfig, *options: DatabaseOption) -> DatabaseConfig:
    """Apply options to ``config`` in order and return the resulting copy."""
    for option in options:
        config = option(config)
    return config


def _split_address(address: str) -> tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if sep and port.isdigit() and not host.endswith(":"):
        return host.strip("[]"), int(port)
    return address.strip("[]"), DEFAULT_PORT


def new_default_config(
    address: str,
    database: str,
    user: str,
    password: str,
    *options: DatabaseOption,
) -> DatabaseConfig:
    """Build a config with default pool settings, then apply ``options``.

    Parameters
    ----------
    address
        ``host`` or ``host:port``. IPv6 hosts must be bracketed when a port
        is given (``[::1]:5432``).
    database
        Database name.
    user
        Login role.
    password
        Password; an empty string means no password.
    *options
        Functional options, applied in order.

    Returns
    -------
    DatabaseConfig
        The resulting immutable config.
    """
    host, port = _split_address(address)
    connection = ConnectionSettings(
        host=host,
        port=port,
        database=database,
        user=user,
        password=SecretStr(password) if password else None,
    )
    return apply_options(DatabaseConfig(connection=connection), *options)
