"""Shared fixtures for readsplit integration tests against PostgreSQL."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import pytest
import pytest_asyncio
from docker import from_env  # type: ignore[import-untyped]
from docker.errors import DockerException  # type: ignore[import-untyped]
from pydantic import SecretStr
from testcontainers.postgres import PostgresContainer  # type: ignore[import-untyped]

from readsplit.infrastructure.postgres import (
    Client,
    ConnectionSettings,
    Database,
    DatabaseConfig,
    PoolSettings,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator

TEST_USERS_TABLE = "test_users"


def pytest_configure(config: pytest.Config) -> None:  # noqa: ARG001
    """Point testcontainers at a local Docker socket when DOCKER_HOST is unset."""
    if not os.environ.get("DOCKER_HOST"):
        possible_sockets = [
            Path("/var/run/docker.sock"),
            Path.home() / ".docker" / "run" / "docker.sock",
        ]
        for socket_path in possible_sockets:
            if socket_path.exists():
                os.environ["DOCKER_HOST"] = f"unix://{socket_path}"
                os.environ["TESTCONTAINERS_DOCKER_SOCKET_OVERRIDE"] = str(socket_path)
                break

    # Ryuk (testcontainers cleanup daemon) has known issues on macOS/Docker Desktop
    if sys.platform == "darwin" and not os.environ.get("TESTCONTAINERS_RYUK_DISABLED"):
        os.environ["TESTCONTAINERS_RYUK_DISABLED"] = "true"


def _is_docker_available() -> bool:
    try:
        client = from_env()
        client.ping()
    except (ImportError, DockerException):
        return False
    else:
        return True


@pytest.fixture(scope="session")
def postgres_container() -> Iterator[PostgresContainer]:
    """Provide session-scoped PostgreSQL container."""
    if not _is_docker_available():
        pytest.skip("Docker daemon not accessible")

    with PostgresContainer("postgres:17-alpine", driver="asyncpg") as container:
        yield container


@pytest.fixture
def database_config(postgres_container: PostgresContainer) -> DatabaseConfig:
    return DatabaseConfig(
        connection=ConnectionSettings(
            host=postgres_container.get_container_host_ip(),
            port=int(postgres_container.get_exposed_port(5432)),
            database=postgres_container.dbname,
            user=postgres_container.username,
            password=SecretStr(postgres_container.password),
        ),
        pool=PoolSettings(max_open_connections=5, max_idle_connections=1, dial_timeout=10.0),
        ping_on_startup=True,
    )


@pytest_asyncio.fixture
async def database(database_config: DatabaseConfig) -> AsyncIterator[Database]:
    """Provide an open database with an empty test_users table."""
    async with await Database.aopen(database_config) as db:
        await _reset_test_schema(db)
        yield db


@pytest_asyncio.fixture
async def client(database_config: DatabaseConfig) -> AsyncIterator[Client]:
    """Provide a primary-only client with an empty test_users table."""
    async with await Client.aconnect(database_config) as c:
        await _reset_test_schema(c.primary)
        yield c


async def _reset_test_schema(db: Database) -> None:
    await db.aexecute(f"""
        CREATE TABLE IF NOT EXISTS {TEST_USERS_TABLE} (
            id SERIAL PRIMARY KEY,
            username VARCHAR(255) UNIQUE NOT NULL,
            email VARCHAR(255),
            age INTEGER NOT NULL CHECK (age >= 0 AND age <= 150)
        )
    """)
    await db.aexecute(f"TRUNCATE TABLE {TEST_USERS_TABLE} RESTART IDENTITY")
