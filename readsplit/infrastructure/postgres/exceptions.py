"""Errors raised by readsplit itself.

Driver errors (``asyncpg.PostgresError``, ``OSError``, ``TimeoutError``) are
never wrapped; they reach the caller exactly as asyncpg raised them.
"""

from __future__ import annotations


class ReadSplitError(Exception):
    """Base class for all readsplit errors."""


class InvalidReplicaError(ReadSplitError):
    """A replica was registered without a configuration."""


class NoColumnsFoundError(ReadSplitError):
    """A row-set reported zero columns."""


class UnmarshalNotImplementedError(ReadSplitError, NotImplementedError):
    """`Result.unmarshal` is reserved and not implemented."""


class NoMutationOutcomeError(ReadSplitError):
    """An outcome accessor was called on a row-set result."""


class LastInsertIdUnavailableError(ReadSplitError):
    """The statement did not report a generated identifier."""


class PoolNotInitializedError(ReadSplitError):
    """The database pool is closed or was never opened."""
