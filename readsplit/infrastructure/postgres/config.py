"""Configuration models for readsplit databases.

- `ConnectionSettings`: where to connect and as whom
- `PoolSettings`: pool sizing, connection lifetime and network timeouts
- `DatabaseConfig`: one endpoint, composed of the two above
- `ClientConfig`: primary + replica topology for a `Client`
"""

from __future__ import annotations

from typing import Any, Self
from urllib.parse import quote_plus

from pydantic import BaseModel, ConfigDict, Field, SecretStr

DEFAULT_PORT = 5432
DEFAULT_MAX_OPEN_CONNECTIONS = 50
DEFAULT_MAX_IDLE_CONNECTIONS = 10
DEFAULT_MAX_CONNECTION_LIFETIME = 30.0
DEFAULT_DIAL_TIMEOUT = 2.0
DEFAULT_READ_TIMEOUT = 0.0
DEFAULT_WRITE_TIMEOUT = 0.0


class ConnectionSettings(BaseModel):
    """Connection parameters for a PostgreSQL endpoint."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    host: str = Field(default="localhost")
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)
    database: str = Field(default="postgres")
    user: str = Field(default="postgres")
    password: SecretStr | None = Field(default=None)

    @property
    def address(self) -> str:
        """``host:port``, with IPv6 hosts bracketed as in ``[::1]:5432``."""
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


class PoolSettings(BaseModel):
    """Pool tuning knobs. Timeouts are in seconds; 0 means unbounded."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    max_open_connections: int = Field(default=DEFAULT_MAX_OPEN_CONNECTIONS, ge=1)
    max_idle_connections: int = Field(default=DEFAULT_MAX_IDLE_CONNECTIONS, ge=0)
    max_connection_lifetime: float = Field(default=DEFAULT_MAX_CONNECTION_LIFETIME, ge=0.0)
    dial_timeout: float = Field(default=DEFAULT_DIAL_TIMEOUT, gt=0.0)
    read_timeout: float = Field(default=DEFAULT_READ_TIMEOUT, ge=0.0)
    write_timeout: float = Field(default=DEFAULT_WRITE_TIMEOUT, ge=0.0)

    @property
    def command_timeout(self) -> float | None:
        """Per-statement timeout handed to asyncpg, ``None`` when unbounded."""
        timeout = max(self.read_timeout, self.write_timeout)
        return timeout or None


class DatabaseConfig(BaseModel):
    """Configuration for a single database endpoint.

    Holds the connection parameters as a delegate (`connection`) next to the
    pool extension fields, and forwards the common connection attributes so
    callers can write ``config.host`` instead of ``config.connection.host``.

    Examples
    --------
    >>> config = DatabaseConfig(
    ...     connection=ConnectionSettings(
    ...         host="primary.db.com",
    ...         database="app",
    ...         user="app",
    ...         password=SecretStr("secret"),
    ...     ),
    ...     pool=PoolSettings(max_open_connections=20),
    ...     ping_on_startup=True,
    ... )
    >>> config.unique_id
    'postgresql://primary.db.com:5432/app'
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    connection: ConnectionSettings = Field(default_factory=ConnectionSettings)
    pool: PoolSettings = Field(default_factory=PoolSettings)
    ping_on_startup: bool = Field(default=False)

    @property
    def host(self) -> str:
        return self.connection.host

    @property
    def port(self) -> int:
        return self.connection.port

    @property
    def address(self) -> str:
        return self.connection.address

    @property
    def database(self) -> str:
        return self.connection.database

    @property
    def user(self) -> str:
        return self.connection.user

    @property
    def unique_id(self) -> str:
        """Stable identifier of the endpoint: ``scheme://address/database``."""
        return f"postgresql://{self.address}/{self.database}"

    @property
    def dsn(self) -> str:
        """Build PostgreSQL DSN from connection settings."""
        password = self.connection.password.get_secret_value() if self.connection.password else ""
        escaped_user = quote_plus(self.connection.user)
        escaped_password = quote_plus(password) if password else ""
        auth = f"{escaped_user}:{escaped_password}@" if escaped_password else f"{escaped_user}@"
        return f"postgresql://{auth}{self.address}/{self.database}"

    def to_pool_params(self) -> dict[str, Any]:
        """Convert config to asyncpg.create_pool() parameters.

        asyncpg keeps ``min_size`` connections open, which is the closest
        equivalent of an idle-connection cap, and only expires connections
        after ``max_inactive_connection_lifetime`` seconds of inactivity.

        Returns
        -------
        dict[str, Any]
            Parameters for asyncpg.create_pool().
        """
        return {
            "dsn": self.dsn,
            "min_size": min(self.pool.max_idle_connections, self.pool.max_open_connections),
            "max_size": self.pool.max_open_connections,
            "max_inactive_connection_lifetime": self.pool.max_connection_lifetime,
            "timeout": self.pool.dial_timeout,
            "command_timeout": self.pool.command_timeout,
        }

    def for_replica(self, host: str, port: int | None = None) -> Self:
        """Create a replica config by copying this config with a different host.

        Parameters
        ----------
        host
            Hostname for the replica database.
        port
            Optional port override. Defaults to same as this config.

        Returns
        -------
        Self
            A new config with the specified host (and optionally port).
        """
        new_connection = self.connection.model_copy(
            update={"host": host, "port": port if port is not None else self.connection.port}
        )
        return self.model_copy(update={"connection": new_connection})


class ClientConfig(BaseModel):
    """Primary + replica topology, for building a `Client` in one step.

    Examples
    --------
    >>> config = ClientConfig.with_replica_hosts(primary_cfg, ["replica-1.db.com", "replica-2.db.com"])
    >>> config = ClientConfig.model_validate(yaml.safe_load(f))
    >>> client = await Client.from_config(config)
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    primary: DatabaseConfig
    replicas: tuple[DatabaseConfig, ...] = Field(default_factory=tuple)

    @classmethod
    def with_replica_hosts(cls, primary: DatabaseConfig, hosts: list[str]) -> Self:
        """Create a topology whose replicas differ from the primary only by host."""
        replicas = tuple(primary.for_replica(host) for host in hosts)
        return cls(primary=primary, replicas=replicas)
