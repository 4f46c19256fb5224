"""
Self-learning text generator backed by an n-gram transition graph in SQLite.

    * tokenizers : split text into word, punctuation and space tokens.
    * graph      : token/node/edge store with random-walk traversal queries.
    * brain      : learn/reply orchestration plus the completion cache.
    * selection  : precision-driven choice among several generated replies.

See brain.Brain for the high-level façade and service.create_app for the HTTP boundary.
"""

from .brain import Brain
from .db import DatabaseEnvironment
from .errors import BrainError, Closed, EmptyStore, InvalidOrder, NoMatch, StorageError
from .graph import GraphStore
from .selection import CandidateSelector

__all__ = [
    "Brain",
    "BrainError",
    "CandidateSelector",
    "Closed",
    "DatabaseEnvironment",
    "EmptyStore",
    "GraphStore",
    "InvalidOrder",
    "NoMatch",
    "StorageError",
]
