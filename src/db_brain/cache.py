from __future__ import annotations

import random
import threading
from dataclasses import dataclass
from typing import List


@dataclass(frozen=True)
class CachedCompletion:
    context: str
    completion: str


class CompletionCache:
    """Append-only memory of completions accepted for a given context.

    Entries live for the lifetime of the process and never touch the graph.
    """

    def __init__(self) -> None:
        self._entries: List[CachedCompletion] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def remember(self, context: str, completion: str) -> CachedCompletion:
        entry = CachedCompletion(context.strip(), completion)
        with self._lock:
            self._entries.append(entry)
        return entry

    def entries(self) -> List[CachedCompletion]:
        with self._lock:
            return list(self._entries)

    def matches(self, text: str) -> List[CachedCompletion]:
        """Exact context matches when any exist, otherwise contexts ``text`` ends with."""
        needle = text.strip()
        if not needle:
            return []
        entries = self.entries()
        exact = [entry for entry in entries if entry.context == needle]
        if exact:
            return exact
        return [entry for entry in entries if entry.context and needle.endswith(entry.context)]

    def lookup(self, text: str, rng: random.Random | None = None) -> str | None:
        found = self.matches(text)
        if not found:
            return None
        if len(found) == 1:
            return found[0].completion
        return (rng or random).choice(found).completion


__all__ = ["CachedCompletion", "CompletionCache"]
