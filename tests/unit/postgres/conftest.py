"""Fakes standing in for asyncpg-backed objects in unit tests."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from types import SimpleNamespace
from typing import Any

import pytest

from readsplit.infrastructure.postgres.config import DatabaseConfig


class FakeCursor:
    """In-memory cursor with the same interface as `RowCursor`."""

    def __init__(
        self,
        columns: Sequence[str],
        records: Sequence[Sequence[Any]],
        *,
        fetch_error: BaseException | None = None,
        close_error: BaseException | None = None,
    ) -> None:
        self._columns = tuple(columns)
        self._records = list(records)
        self._position = 0
        self._fetch_error = fetch_error
        self._close_error = close_error
        self.closed = False
        self.close_calls = 0
        self.completed: bool | None = None
        self.fetch_calls = 0

    @property
    def columns(self) -> tuple[str, ...]:
        return self._columns

    @property
    def remaining(self) -> int:
        return len(self._records) - self._position

    async def afetchrow(self, timeout: float | None = None) -> Sequence[Any] | None:
        self.fetch_calls += 1
        if self._fetch_error is not None:
            raise self._fetch_error
        if self._position >= len(self._records):
            return None
        record = self._records[self._position]
        self._position += 1
        return record

    async def afetch(self, n: int, timeout: float | None = None) -> list[Sequence[Any]]:
        self.fetch_calls += 1
        if self._fetch_error is not None:
            raise self._fetch_error
        batch = self._records[self._position : self._position + n]
        self._position += len(batch)
        return batch

    async def aclose(self, *, completed: bool = True) -> None:
        self.close_calls += 1
        self.closed = True
        self.completed = completed
        if self._close_error is not None:
            raise self._close_error


class FakeDatabase:
    """Records which calls reached it; stands in for `Database`."""

    def __init__(
        self,
        config: DatabaseConfig,
        *,
        fail_close: bool = False,
        close_log: list[str] | None = None,
    ) -> None:
        self.config = config
        self.close_log = close_log if close_log is not None else []
        self.unique_id = config.unique_id
        self.fail_close = fail_close
        self.closed = False
        self.calls: list[tuple[str, str]] = []

    async def aquery(self, query: str, *args: object, timeout: float | None = None) -> str:
        self.calls.append(("query", query))
        return self.unique_id

    async def aexecute(self, query: str, *args: object, timeout: float | None = None) -> str:
        self.calls.append(("execute", query))
        return self.unique_id

    async def abegin_transaction(self, timeout: float | None = None, **kwargs: Any) -> str:
        self.calls.append(("begin", ""))
        return self.unique_id

    async def aclose(self) -> None:
        self.close_log.append(self.config.host)
        if self.fail_close:
            msg = f"cannot close {self.unique_id}"
            raise ConnectionError(msg)
        self.closed = True


def _make_config(host: str, port: int = 5432, database: str = "app") -> DatabaseConfig:
    return DatabaseConfig.model_validate({"connection": {"host": host, "port": port, "database": database}})


@pytest.fixture
def make_config() -> Callable[..., DatabaseConfig]:
    """Build a `DatabaseConfig` for a host without touching the network."""
    return _make_config


@pytest.fixture
def make_cursor() -> Callable[..., FakeCursor]:
    return FakeCursor


@pytest.fixture
def close_log() -> list[str]:
    """Hosts in the order their fake databases were closed."""
    return []


@pytest.fixture
def fake_open(monkeypatch: pytest.MonkeyPatch, close_log: list[str]) -> dict[str, FakeDatabase]:
    """Replace `Database.aopen` with a fake; returns the opened fakes by host.

    Hosts starting with ``down`` fail to open with ``ConnectionRefusedError``;
    hosts starting with ``sticky`` open but fail to close.
    """
    from readsplit.infrastructure.postgres.database import Database

    opened: dict[str, FakeDatabase] = {}

    async def aopen(cls: type[Database], config: DatabaseConfig) -> FakeDatabase:
        if config.host.startswith("down"):
            msg = f"connection refused: {config.address}"
            raise ConnectionRefusedError(msg)
        fake = FakeDatabase(config, fail_close=config.host.startswith("sticky"), close_log=close_log)
        opened[config.host] = fake
        return fake

    monkeypatch.setattr(Database, "aopen", classmethod(aopen))
    return opened


class FakeDriver:
    """Stand-in for the asyncpg pool, connection, transaction and cursor of one endpoint.

    Every driver call is appended to ``events`` so tests can assert ordering.
    Errors set on the instance are raised by the matching call.
    """

    def __init__(self, columns: Sequence[str] = ("id",), records: Sequence[Sequence[Any]] = ((1,),)) -> None:
        self.columns = tuple(columns)
        self.records = list(records)
        self.events: list[str] = []
        self.prepare_error: BaseException | None = None
        self.fetch_error: BaseException | None = None
        self.rollback_error: BaseException | None = None

    # pool
    async def acquire(self, timeout: float | None = None) -> FakeDriver:
        self.events.append("acquire")
        return self

    async def release(self, conn: FakeDriver) -> None:
        self.events.append("release")

    # connection
    def is_closed(self) -> bool:
        return False

    def transaction(self, **kwargs: Any) -> FakeDriver:
        return self

    async def prepare(self, query: str, timeout: float | None = None) -> FakeDriver:
        self.events.append("prepare")
        if self.prepare_error is not None:
            raise self.prepare_error
        return self

    # transaction
    async def start(self) -> None:
        self.events.append("start")

    async def commit(self) -> None:
        self.events.append("commit")

    async def rollback(self) -> None:
        self.events.append("rollback")
        if self.rollback_error is not None:
            raise self.rollback_error

    # prepared statement and cursor
    def get_attributes(self) -> list[SimpleNamespace]:
        return [SimpleNamespace(name=name) for name in self.columns]

    async def cursor(self, *args: object, timeout: float | None = None) -> FakeDriver:
        self.events.append("cursor")
        return self

    async def fetch(self, n: int, timeout: float | None = None) -> list[Sequence[Any]]:
        if self.fetch_error is not None:
            raise self.fetch_error
        batch, self.records = self.records[:n], self.records[n:]
        return batch

    async def fetchrow(self, timeout: float | None = None) -> Sequence[Any] | None:
        batch = await self.fetch(1, timeout=timeout)
        return batch[0] if batch else None


@pytest.fixture
def driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def fake_database(driver: FakeDriver) -> Any:
    """A real `Database` whose pool is the fake driver."""
    from readsplit.infrastructure.postgres.database import Database

    return Database(_make_config("primary"), driver)  # type: ignore[arg-type]
