from __future__ import annotations

__all__ = [
    "BrainError",
    "StorageError",
    "InvalidOrder",
    "EmptyStore",
    "NoMatch",
    "Closed",
]


class BrainError(Exception):
    """Root of every error raised by the graph engine."""


class StorageError(BrainError):
    """The SQLite store could not be opened, read or written."""


class InvalidOrder(BrainError):
    """A tuple length (or a stored order) disagrees with the store's Markov order."""


class EmptyStore(BrainError):
    """The operation needs learned data and the store has none."""


class NoMatch(BrainError):
    """No node in the graph matches the supplied context."""


class Closed(BrainError):
    """The brain (or its store) was used after close()."""
