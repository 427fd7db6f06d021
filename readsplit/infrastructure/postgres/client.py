"""Read/write splitting over one primary and any number of replicas.

Routing rules
-------------
- ``aexecute`` and ``abegin_transaction`` always go to the primary.
- ``aquery`` goes to a replica picked round-robin, or to the primary while
  no replica is registered.

There is no health checking or fail-over: a query sent to an unreachable
replica fails, and retrying elsewhere is the caller's decision.

Replicas are registered at runtime with ``aregister_replica`` and are never
removed. Because the replica list only grows, a reader that computed an
index against an older snapshot still lands on a valid replica.

Usage
-----
>>> async with await Client.aconnect(primary_cfg) as client:
...     await client.aregister_replica(primary_cfg.for_replica("replica-1.db.com"))
...     await client.aregister_replica(primary_cfg.for_replica("replica-2.db.com"))
...     inserted = await client.aexecute("INSERT INTO users (name) VALUES ($1) RETURNING id", "alice")
...     users = await (await client.aquery("SELECT * FROM users")).arows()
"""

from __future__ import annotations

import itertools
import threading
from typing import TYPE_CHECKING, Self

from ...logger import get_logger
from .database import Database
from .exceptions import InvalidReplicaError

if TYPE_CHECKING:
    import types

    from .config import ClientConfig, DatabaseConfig
    from .database import IsolationLevel, Transaction
    from .result import Result

logger = get_logger(__name__)


class Client:
    """Routes writes to the primary and reads across replicas.

    Safe to share between tasks and threads. Registration swaps in a new
    replica tuple under a lock; readers only ever see a complete tuple and
    never take the lock. The round-robin counter is an ``itertools.count``,
    whose ``next()`` is atomic.

    Attributes
    ----------
    primary : Database
        The primary (read-write) database.
    replica : Database
        A replica picked round-robin, or the primary if there are none.
    """

    __slots__ = ("_counter", "_primary", "_register_lock", "_replicas")

    def __init__(self, primary: Database) -> None:
        self._primary = primary
        self._replicas: tuple[Database, ...] = ()
        self._register_lock = threading.Lock()
        self._counter = itertools.count(1)

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        if exc_type is not None and exc_val is not None:
            logger.error(
                "Client exiting with exception",
                exc_type=exc_type.__name__,
                exc_val=str(exc_val),
            )
        await self.aclose()

    @classmethod
    async def aconnect(cls, primary: DatabaseConfig) -> Self:
        """Open the primary database and return a client with no replicas.

        Raises
        ------
        Exception
            Whatever opening the primary raises, unchanged.
        """
        return cls(await Database.aopen(primary))

    @classmethod
    async def from_config(cls, config: ClientConfig) -> Self:
        """Open the primary, then register every replica in order.

        If any replica fails to open, everything opened so far is closed and
        the error propagates.
        """
        client = await cls.aconnect(config.primary)
        try:
            for replica in config.replicas:
                await client.aregister_replica(replica)
        except BaseException:
            await client.aclose()
            raise
        return client

    async def aregister_replica(self, config: DatabaseConfig | None) -> None:
        """Open a replica database and add it to the read rotation.

        Raises
        ------
        InvalidReplicaError
            If ``config`` is None.
        Exception
            Whatever opening the replica raises; the rotation is unchanged.
        """
        if config is None:
            raise InvalidReplicaError("invalid replica")

        database = await Database.aopen(config)

        with self._register_lock:
            self._replicas = (*self._replicas, database)
            replica_count = len(self._replicas)

        logger.info("Replica registered", unique_id=database.unique_id, replica_count=replica_count)

    def _select_reader(self) -> Database:
        replicas = self._replicas
        n = len(replicas)
        if n == 0:
            return self._primary
        if n == 1:
            return replicas[0]
        return replicas[next(self._counter) % n]

    async def aquery(self, query: str, *args: object, timeout: float | None = None) -> Result:
        """Execute a query that returns rows on a read database."""
        return await self._select_reader().aquery(query, *args, timeout=timeout)

    async def aexecute(self, query: str, *args: object, timeout: float | None = None) -> Result:
        """Execute a statement for its side effects on the primary."""
        return await self._primary.aexecute(query, *args, timeout=timeout)

    async def abegin_transaction(
        self,
        timeout: float | None = None,
        *,
        isolation: IsolationLevel | None = None,
        readonly: bool = False,
        deferrable: bool = False,
    ) -> Transaction:
        """Start a transaction on the primary."""
        return await self._primary.abegin_transaction(
            timeout,
            isolation=isolation,
            readonly=readonly,
            deferrable=deferrable,
        )

    @property
    def primary(self) -> Database:
        return self._primary

    @property
    def replica(self) -> Database:
        """Pick a read database with the same rotation `aquery` uses."""
        return self._select_reader()

    def get_primary(self) -> Database:
        return self._primary

    def get_replica(self) -> Database:
        return self._select_reader()

    @property
    def replicas(self) -> tuple[Database, ...]:
        """Snapshot of the registered replicas in registration order."""
        return self._replicas

    @property
    def replica_count(self) -> int:
        return len(self._replicas)

    @property
    def has_replicas(self) -> bool:
        return len(self._replicas) > 0

    async def aclose(self, *, raise_errors: bool = False) -> None:
        """Close the primary, then every replica in registration order.

        Every close is attempted even if an earlier one fails. Failures are
        logged and dropped unless ``raise_errors`` is set, in which case they
        are raised together afterwards.

        Raises
        ------
        ExceptionGroup
            Only with ``raise_errors=True``, holding every close failure.
        """
        errors: list[Exception] = []
        for database in (self._primary, *self._replicas):
            try:
                await database.aclose()
            except Exception as e:
                logger.warning("Database failed to close", unique_id=database.unique_id, error=str(e))
                errors.append(e)

        logger.info("Client closed", replica_count=len(self._replicas), failed=len(errors))

        if errors and raise_errors:
            msg = "failed to close databases"
            raise ExceptionGroup(msg, errors)
