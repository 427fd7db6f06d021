"""A single PostgreSQL endpoint backed by an asyncpg pool.

`Database` is the unit the `Client` routes between. It also hands out
`Transaction` and `Statement` objects, which keep one pooled connection
checked out until they finish.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal, Self, TypeAlias

import asyncpg
from asyncpg import Pool, Record

from ...logger import get_logger
from .exceptions import PoolNotInitializedError
from .options import new_default_config
from .result import ExecOutcome, Result, RowCursor

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence
    from types import TracebackType

    from asyncpg.pool import PoolConnectionProxy
    from asyncpg.prepared_stmt import PreparedStatement
    from asyncpg.transaction import Transaction as AsyncpgTransaction

    from .config import DatabaseConfig
    from .options import DatabaseOption

logger = get_logger(__name__)

IsolationLevel: TypeAlias = Literal["read_uncommitted", "read_committed", "repeatable_read", "serializable"]


async def _aexecute_prepared(
    statement: PreparedStatement[Record],
    args: Sequence[object],
    timeout: float | None,
) -> ExecOutcome:
    returned = await statement.fetch(*args, timeout=timeout)
    return ExecOutcome.from_status(statement.get_statusmsg(), returned)


async def _arelease_after_error(release: Callable[[bool], Awaitable[None]], unique_id: str) -> None:
    """Roll back and release after a failed call.

    The caller re-raises the original error, so a failure here is only logged.
    """
    try:
        await release(False)
    except Exception as e:
        logger.warning(
            "Rollback failed after query error",
            unique_id=unique_id,
            error_type=type(e).__name__,
            error=str(e),
        )


class Database:
    """An opened connection pool to one database endpoint.

    Create with `Database.aopen()`; every I/O method takes an optional
    ``timeout`` in seconds and raises asyncpg's errors unchanged.

    Examples
    --------
    >>> async with await Database.aopen(config) as db:
    ...     result = await db.aexecute("INSERT INTO users (name) VALUES ($1) RETURNING id", "alice")
    ...     result.last_insert_id()
    ...     rows = await (await db.aquery("SELECT * FROM users")).arows()
    """

    __slots__ = ("_config", "_pool")

    def __init__(self, config: DatabaseConfig, pool: Pool[Record]) -> None:
        self._config = config
        self._pool: Pool[Record] | None = pool

    @classmethod
    async def aopen(cls, config: DatabaseConfig) -> Self:
        """Create the pool and, if configured, check connectivity.

        Raises
        ------
        Exception
            Whatever asyncpg raises while connecting, or while pinging when
            ``config.ping_on_startup`` is set. The pool is closed first.
        """
        pool = await asyncpg.create_pool(**config.to_pool_params())
        database = cls(config, pool)

        if config.ping_on_startup:
            try:
                await database.aping(timeout=config.pool.dial_timeout)
            except BaseException:
                await pool.close()
                raise

        logger.info(
            "Database opened",
            unique_id=config.unique_id,
            max_open_connections=config.pool.max_open_connections,
            max_idle_connections=config.pool.max_idle_connections,
        )
        return database

    @classmethod
    async def aopen_with(
        cls,
        address: str,
        database: str,
        user: str,
        password: str,
        *options: DatabaseOption,
    ) -> Self:
        """Open a database from connection parts plus functional options."""
        return await cls.aopen(new_default_config(address, database, user, password, *options))

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if exc_type is not None and exc_val is not None:
            logger.error(
                "Database context manager exiting with exception",
                unique_id=self.unique_id,
                exc_type=exc_type.__name__,
                exc_val=str(exc_val),
            )
        await self.aclose()

    def __repr__(self) -> str:
        return f"Database({self.unique_id!r})"

    @property
    def config(self) -> DatabaseConfig:
        return self._config

    @property
    def unique_id(self) -> str:
        return self._config.unique_id

    @property
    def pool(self) -> Pool[Record]:
        """Access the underlying asyncpg pool.

        Raises
        ------
        PoolNotInitializedError
            If the database has been closed.
        """
        if self._pool is None:
            msg = f"Pool for {self.unique_id} is closed"
            raise PoolNotInitializedError(msg)
        return self._pool

    async def aquery(self, query: str, *args: object, timeout: float | None = None) -> Result:
        """Execute a query that returns rows, typically a SELECT.

        The returned result keeps a pooled connection until it is read with
        `Result.arow()` / `Result.arows()` or closed with `Result.aclose()`.
        A fully read result commits; a failed read rolls back.
        """
        pool = self.pool
        conn = await pool.acquire(timeout=timeout)
        transaction = conn.transaction()

        async def arelease(completed: bool) -> None:
            try:
                if conn.is_closed():
                    return
                if completed:
                    await transaction.commit()
                else:
                    await transaction.rollback()
            finally:
                await pool.release(conn)

        try:
            await transaction.start()
        except BaseException:
            await pool.release(conn)
            raise

        try:
            statement = await conn.prepare(query, timeout=timeout)
            cursor = await RowCursor.aopen(statement, args, timeout=timeout, release=arelease)
        except BaseException:
            await _arelease_after_error(arelease, self.unique_id)
            raise

        return Result.from_cursor(self.unique_id, cursor)

    async def aexecute(self, query: str, *args: object, timeout: float | None = None) -> Result:
        """Execute a statement for its side effects.

        Rows produced by ``RETURNING`` are not materialized; the first column
        of the first one is exposed as `Result.last_insert_id()`.
        """
        async with self.pool.acquire(timeout=timeout) as conn:
            statement = await conn.prepare(query, timeout=timeout)
            outcome = await _aexecute_prepared(statement, args, timeout)
        return Result.from_outcome(self.unique_id, outcome)

    async def aprepare(self, query: str, timeout: float | None = None) -> Statement:
        """Prepare a statement on a dedicated pooled connection.

        The connection stays checked out until `Statement.aclose()`.
        """
        pool = self.pool
        conn = await pool.acquire(timeout=timeout)
        try:
            statement = await conn.prepare(query, timeout=timeout)
        except BaseException:
            await pool.release(conn)
            raise
        return Statement(self, conn, statement, owns_connection=True)

    async def abegin_transaction(
        self,
        timeout: float | None = None,
        *,
        isolation: IsolationLevel | None = None,
        readonly: bool = False,
        deferrable: bool = False,
    ) -> Transaction:
        """Start a transaction on a dedicated pooled connection.

        Parameters
        ----------
        timeout
            Timeout in seconds for acquiring the connection.
        isolation
            Transaction isolation level; server default when ``None``.
        readonly
            If True, the transaction is read-only.
        deferrable
            If True and readonly=True, allows deferrable transactions.
        """
        pool = self.pool
        conn = await pool.acquire(timeout=timeout)
        transaction = conn.transaction(isolation=isolation, readonly=readonly, deferrable=deferrable)
        try:
            await transaction.start()
        except BaseException:
            await pool.release(conn)
            raise
        return Transaction(self, conn, transaction)

    async def aping(self, timeout: float | None = None) -> None:
        """Verify a connection to the database is alive, opening one if needed."""
        async with self.pool.acquire(timeout=timeout) as conn:
            await conn.fetchval("SELECT 1", timeout=timeout)

    async def aclose(self) -> None:
        """Close the pool. Idempotent."""
        if self._pool is None:
            return
        pool, self._pool = self._pool, None
        await pool.close()
        logger.info("Database closed", unique_id=self.unique_id)

    @property
    def active_connections(self) -> int:
        """Number of connections currently checked out."""
        if self._pool is None:
            return 0
        return self._pool.get_size() - self._pool.get_idle_size()

    @property
    def idle_connections(self) -> int:
        """Number of open connections waiting in the pool."""
        if self._pool is None:
            return 0
        return self._pool.get_idle_size()


class Transaction:
    """A transaction pinned to one pooled connection.

    `acommit()` or `arollback()` ends it and returns the connection to the
    pool. As an async context manager it commits on clean exit and rolls
    back on error.
    """

    __slots__ = ("_conn", "_database", "_released", "_transaction")

    def __init__(
        self,
        database: Database,
        conn: PoolConnectionProxy[Record],
        transaction: AsyncpgTransaction,
    ) -> None:
        self._database = database
        self._conn = conn
        self._transaction = transaction
        self._released = False

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._released:
            return
        if exc_type is None:
            await self.acommit()
        else:
            await self.arollback()

    @property
    def hit(self) -> str:
        return self._database.unique_id

    async def aquery(self, query: str, *args: object, timeout: float | None = None) -> Result:
        """Execute a query that returns rows inside this transaction."""
        statement = await self._conn.prepare(query, timeout=timeout)
        cursor = await RowCursor.aopen(statement, args, timeout=timeout)
        return Result.from_cursor(self.hit, cursor)

    async def aexecute(self, query: str, *args: object, timeout: float | None = None) -> Result:
        """Execute a statement for its side effects inside this transaction."""
        statement = await self._conn.prepare(query, timeout=timeout)
        outcome = await _aexecute_prepared(statement, args, timeout)
        return Result.from_outcome(self.hit, outcome)

    async def aprepare(self, query: str, timeout: float | None = None) -> Statement:
        """Prepare a statement bound to this transaction's connection."""
        statement = await self._conn.prepare(query, timeout=timeout)
        return Statement(self._database, self._conn, statement, owns_connection=False)

    async def acommit(self) -> None:
        try:
            await self._transaction.commit()
        finally:
            await self._arelease()

    async def arollback(self) -> None:
        try:
            await self._transaction.rollback()
        finally:
            await self._arelease()

    async def _arelease(self) -> None:
        if self._released:
            return
        self._released = True
        await self._database.pool.release(self._conn)


class Statement:
    """A prepared statement for repeated execution on one connection.

    Statements from `Database.aprepare()` own their connection and release
    it on `aclose()`; statements from `Transaction.aprepare()` do not.
    """

    __slots__ = ("_closed", "_conn", "_database", "_owns_connection", "_statement")

    def __init__(
        self,
        database: Database,
        conn: PoolConnectionProxy[Record],
        statement: PreparedStatement[Record],
        *,
        owns_connection: bool,
    ) -> None:
        self._database = database
        self._conn = conn
        self._statement = statement
        self._owns_connection = owns_connection
        self._closed = False

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    @property
    def hit(self) -> str:
        return self._database.unique_id

    @property
    def query(self) -> str:
        return self._statement.get_query()

    async def aquery(self, *args: object, timeout: float | None = None) -> Result:
        """Bind ``args`` and open a cursor over the rows.

        On an owned connection the cursor runs in its own transaction, which
        commits when the result is consumed and rolls back if reading fails.
        Consume each result before the next call.
        """
        if not self._owns_connection:
            cursor = await RowCursor.aopen(self._statement, args, timeout=timeout)
            return Result.from_cursor(self.hit, cursor)

        transaction = self._conn.transaction()

        async def aend(completed: bool) -> None:
            if completed:
                await transaction.commit()
            else:
                await transaction.rollback()

        await transaction.start()
        try:
            cursor = await RowCursor.aopen(self._statement, args, timeout=timeout, release=aend)
        except BaseException:
            await _arelease_after_error(aend, self.hit)
            raise
        return Result.from_cursor(self.hit, cursor)

    async def aexecute(self, *args: object, timeout: float | None = None) -> Result:
        outcome = await _aexecute_prepared(self._statement, args, timeout)
        return Result.from_outcome(self.hit, outcome)

    async def aclose(self) -> None:
        """Release the statement's connection if it owns one. Idempotent."""
        if self._closed:
            return
        self._closed = True
        if self._owns_connection:
            await self._database.pool.release(self._conn)

