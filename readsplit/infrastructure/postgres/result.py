"""Uniform results for reads and writes.

Every `aquery` / `aexecute` call returns a `Result`, which wraps exactly one
of:

- a `RowCursor` (row-set), materialized with `arow()` / `arows()`
- an `ExecOutcome` (mutation), read with `rows_affected()` / `last_insert_id()`

Rows come back as ``dict[str, str]``. SQL NULL becomes ``""``, so NULL and
an empty string cannot be told apart once materialized.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, NoReturn, Self, TypeAlias

from pydantic import BaseModel, ConfigDict

from ...logger import get_logger
from .enums import ResultKind
from .exceptions import (
    LastInsertIdUnavailableError,
    NoColumnsFoundError,
    NoMutationOutcomeError,
    UnmarshalNotImplementedError,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable, Sequence

    from asyncpg import Record
    from asyncpg.cursor import Cursor
    from asyncpg.prepared_stmt import PreparedStatement

logger = get_logger(__name__)

Row: TypeAlias = dict[str, str]

DEFAULT_PREFETCH = 100


def decode_value(value: object) -> str:
    """Render a driver value as text. NULL renders as an empty string."""
    if value is None:
        return ""
    if isinstance(value, bytes | bytearray | memoryview):
        return bytes(value).decode("utf-8", errors="replace")
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


def decode_row(columns: Sequence[str], record: Iterable[object]) -> Row:
    return {name: decode_value(value) for name, value in zip(columns, record, strict=True)}


class ExecOutcome(BaseModel):
    """Outcome of a statement executed for its side effects.

    Attributes
    ----------
    status : str
        Command tag reported by the server, e.g. ``"INSERT 0 1"``.
    rows_affected : int
        Row count parsed from the command tag (0 for DDL).
    last_insert_id : int | None
        Integer in the first column of the first ``RETURNING`` row, if any.
    """

    model_config = ConfigDict(frozen=True)

    status: str
    rows_affected: int = 0
    last_insert_id: int | None = None

    @classmethod
    def from_status(cls, status: str | None, returned: Sequence[Record] | Sequence[Sequence[Any]] = ()) -> Self:
        status = status or ""
        *_, count = status.split() or [""]
        rows_affected = int(count) if count.isdigit() else 0

        last_insert_id: int | None = None
        if returned and len(returned[0]) > 0:
            first = returned[0][0]
            if isinstance(first, int) and not isinstance(first, bool):
                last_insert_id = first

        return cls(status=status, rows_affected=rows_affected, last_insert_id=last_insert_id)


class RowCursor:
    """An open server-side cursor plus the callback that releases it.

    The cursor holds a pooled connection (or a transaction's connection)
    until `aclose()` runs. `aclose()` is idempotent. The release callback
    gets ``True`` when the read finished and ``False`` when it failed.
    """

    __slots__ = ("_closed", "_columns", "_cursor", "_release")

    def __init__(
        self,
        columns: Sequence[str],
        cursor: Cursor[Record],
        release: Callable[[bool], Awaitable[object]] | None = None,
    ) -> None:
        self._columns = tuple(columns)
        self._cursor = cursor
        self._release = release
        self._closed = False

    @classmethod
    async def aopen(
        cls,
        statement: PreparedStatement[Record],
        args: Sequence[object],
        *,
        timeout: float | None = None,
        release: Callable[[bool], Awaitable[object]] | None = None,
    ) -> Self:
        """Bind ``args`` to a prepared statement and open a cursor over it.

        Must run inside a transaction on the statement's connection.
        """
        columns = [attribute.name for attribute in statement.get_attributes()]
        cursor = await statement.cursor(*args, timeout=timeout)
        return cls(columns, cursor, release)

    @property
    def columns(self) -> tuple[str, ...]:
        return self._columns

    @property
    def closed(self) -> bool:
        return self._closed

    async def afetchrow(self, timeout: float | None = None) -> Record | None:
        return await self._cursor.fetchrow(timeout=timeout)

    async def afetch(self, n: int, timeout: float | None = None) -> list[Record]:
        return await self._cursor.fetch(n, timeout=timeout)

    async def aclose(self, *, completed: bool = True) -> None:
        """Release the cursor. ``completed=False`` marks a read that failed part way."""
        if self._closed:
            return
        self._closed = True
        if self._release is not None:
            await self._release(completed)


class Result:
    """Single-use wrapper around a row-set or a mutation outcome.

    A row-set result is "unconsumed" until `arow()`, `arows()` or `aclose()`
    runs; after that both materializers return empty values.

    Examples
    --------
    >>> result = await client.aquery("SELECT id, name FROM users WHERE id = $1", 7)
    >>> result.hit
    'postgresql://replica-1.db.com:5432/app'
    >>> await result.arow()
    {'id': '7', 'name': 'alice'}
    """

    __slots__ = ("_cursor", "_hit", "_kind", "_outcome")

    def __init__(
        self,
        hit: str,
        *,
        cursor: RowCursor | None = None,
        outcome: ExecOutcome | None = None,
    ) -> None:
        if (cursor is None) == (outcome is None):
            msg = "Result wraps exactly one of a cursor or an outcome"
            raise ValueError(msg)
        self._hit = hit
        self._cursor = cursor
        self._outcome = outcome
        self._kind = ResultKind.ROWS if cursor is not None else ResultKind.OUTCOME

    @classmethod
    def from_cursor(cls, hit: str, cursor: RowCursor) -> Self:
        return cls(hit, cursor=cursor)

    @classmethod
    def from_outcome(cls, hit: str, outcome: ExecOutcome) -> Self:
        return cls(hit, outcome=outcome)

    def __repr__(self) -> str:
        return f"Result(hit={self._hit!r}, kind={self._kind.value!r}, consumed={self.consumed})"

    @property
    def hit(self) -> str:
        """Identifier of the database that served this result."""
        return self._hit

    @property
    def kind(self) -> ResultKind:
        return self._kind

    @property
    def consumed(self) -> bool:
        if self._cursor is None:
            return True
        return self._cursor.closed

    def _open_cursor(self) -> RowCursor | None:
        """Return the cursor of an unconsumed row-set, ``None`` if nothing is left to read."""
        if self._cursor is None or self._cursor.closed:
            return None
        return self._cursor

    async def _adiscard(self, cursor: RowCursor) -> None:
        # the read error is already propagating; a release error must not replace it
        try:
            await cursor.aclose(completed=False)
        except Exception as e:
            logger.warning(
                "Cursor release failed after read error",
                hit=self._hit,
                error_type=type(e).__name__,
                error=str(e),
            )

    async def arow(self, timeout: float | None = None) -> Row:
        """Read the first row, then release the cursor.

        Remaining rows are discarded and the connection goes back to the pool
        straight away. If the read fails, the cursor's transaction is rolled
        back and the read error is raised unchanged.

        Returns
        -------
        Row
            The first row, or ``{}`` for mutation results, consumed results
            and empty row-sets.

        Raises
        ------
        NoColumnsFoundError
            If the row-set has no columns.
        """
        cursor = self._open_cursor()
        if cursor is None:
            return {}
        if not cursor.columns:
            await cursor.aclose()
            raise NoColumnsFoundError("no columns found")

        try:
            record = await cursor.afetchrow(timeout=timeout)
        except BaseException:
            await self._adiscard(cursor)
            raise
        await cursor.aclose()

        return {} if record is None else decode_row(cursor.columns, record)

    async def arows(self, timeout: float | None = None, *, prefetch: int = DEFAULT_PREFETCH) -> list[Row]:
        """Read every remaining row in cursor order, then release the cursor.

        Parameters
        ----------
        timeout
            Timeout in seconds for each round trip to the server.
        prefetch
            Rows fetched per round trip.

        Raises
        ------
        NoColumnsFoundError
            If the row-set has no columns.
        """
        cursor = self._open_cursor()
        if cursor is None:
            return []
        columns = cursor.columns
        if not columns:
            await cursor.aclose()
            raise NoColumnsFoundError("no columns found")

        rows: list[Row] = []
        try:
            while batch := await cursor.afetch(prefetch, timeout=timeout):
                rows.extend(decode_row(columns, record) for record in batch)
        except BaseException:
            await self._adiscard(cursor)
            raise
        await cursor.aclose()

        return rows

    async def aclose(self) -> None:
        """Release an unread cursor. No-op for mutation results."""
        if self._cursor is not None:
            await self._cursor.aclose()

    def _require_outcome(self) -> ExecOutcome:
        if self._outcome is None:
            raise NoMutationOutcomeError("result holds a row-set, not a mutation outcome")
        return self._outcome

    def rows_affected(self) -> int:
        """Number of rows changed by an INSERT, UPDATE or DELETE."""
        return self._require_outcome().rows_affected

    def last_insert_id(self) -> int:
        """Identifier generated by an INSERT.

        PostgreSQL only reports it through ``RETURNING``, e.g.
        ``INSERT INTO users (name) VALUES ($1) RETURNING id``.
        """
        last_insert_id = self._require_outcome().last_insert_id
        if last_insert_id is None:
            raise LastInsertIdUnavailableError("statement did not return a generated id")
        return last_insert_id

    def unmarshal(self, target: object) -> NoReturn:
        raise UnmarshalNotImplementedError("not implemented")
