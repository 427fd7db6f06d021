"""PostgreSQL read/write splitting with asyncpg.

This module provides:

- `Database`: one connection pool to one endpoint
- `Client`: a primary plus round-robin replicas
- `Result`: uniform row / outcome materialization

Usage
-----
Primary only::

    async with await Client.aconnect(config) as client:
        await client.aexecute("INSERT INTO users (name) VALUES ($1)", "alice")
        row = await (await client.aquery("SELECT * FROM users LIMIT 1")).arow()

Primary + replicas::

    config = ClientConfig.with_replica_hosts(primary_cfg, ["replica-1.db.com", "replica-2.db.com"])
    async with await Client.from_config(config) as client:
        rows = await (await client.aquery("SELECT * FROM orders")).arows()
"""

from .client import Client
from .config import ClientConfig, ConnectionSettings, DatabaseConfig, PoolSettings
from .database import Database, IsolationLevel, Statement, Transaction
from .enums import ResultKind
from .exceptions import (
    InvalidReplicaError,
    LastInsertIdUnavailableError,
    NoColumnsFoundError,
    NoMutationOutcomeError,
    PoolNotInitializedError,
    ReadSplitError,
    UnmarshalNotImplementedError,
)
from .options import (
    DatabaseOption,
    apply_options,
    new_default_config,
    with_dial_timeout,
    with_max_connection_lifetime,
    with_max_idle_connections,
    with_max_open_connections,
    with_ping_on_startup,
    with_read_timeout,
    with_write_timeout,
)
from .result import ExecOutcome, Result, Row, RowCursor

__all__ = [
    "Client",
    "ClientConfig",
    "ConnectionSettings",
    "Database",
    "DatabaseConfig",
    "DatabaseOption",
    "ExecOutcome",
    "InvalidReplicaError",
    "IsolationLevel",
    "LastInsertIdUnavailableError",
    "NoColumnsFoundError",
    "NoMutationOutcomeError",
    "PoolNotInitializedError",
    "PoolSettings",
    "ReadSplitError",
    "Result",
    "ResultKind",
    "Row",
    "RowCursor",
    "Statement",
    "Transaction",
    "UnmarshalNotImplementedError",
    "apply_options",
    "new_default_config",
    "with_dial_timeout",
    "with_max_connection_lifetime",
    "with_max_idle_connections",
    "with_max_open_connections",
    "with_ping_on_startup",
    "with_read_timeout",
    "with_write_timeout",
]
