from __future__ import annotations

import random
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .cache import CompletionCache
from .code_markers import limit_words
from .db import DatabaseEnvironment
from .errors import Closed, EmptyStore, NoMatch
from .graph import GraphStats, GraphStore
from .selection import CandidateSelector
from .settings import BrainSettings, load_settings
from .tokenizers import build_tokenizer

from log_helpers import log_verbose

BOUNDARY = ""
CONTEXT_FANOUT = 5

Piece = Tuple[str, bool]


class Brain:
    """Learns text into the n-gram graph and generates replies by walking it."""

    def __init__(
        self,
        db_path: str | Path = ":memory:",
        order: int | None = None,
        *,
        tokenizer: str | None = None,
        settings: BrainSettings | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.settings = settings or load_settings()
        self.tokenizer = build_tokenizer(tokenizer or self.settings.tokenizer)
        self.rng = rng or random.Random(self.settings.seed)
        # A configured order is an expectation the stored order must meet.
        expected_order = order if order is not None else self.settings.order
        self.db = DatabaseEnvironment(
            db_path,
            expected_order,
            busy_timeout=self.settings.busy_timeout_seconds,
        )
        self.store = GraphStore(self.db, rng=self.rng)
        self.order = self.store.order
        self.cache = CompletionCache()
        self.selector = CandidateSelector(self.settings.default_precision)
        # Process-wide default; reply(use_cache=...) overrides it per call.
        self._cache_enabled = False
        self._closed = False
        self._end_node: int | None = None
        log_verbose(
            2,
            f"[brain] Opened {self.db.path} (order={self.order}, tokenizer={self.tokenizer.name})",
        )

    def __enter__(self) -> "Brain":
        return self

    def __exit__(self, *exc_info) -> None:
        if not self._closed:
            self.close()

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise Closed("brain has been closed")

    def close(self) -> None:
        self._ensure_open()
        self._closed = True
        self.store.close()
        log_verbose(2, f"[brain] Closed {self.db.path}")

    # ------------------------------------------------------------------ #
    # Cache controls
    # ------------------------------------------------------------------ #
    @property
    def cache_enabled(self) -> bool:
        return self._cache_enabled

    def enable_cache(self) -> None:
        self._ensure_open()
        self._cache_enabled = True

    def disable_cache(self) -> None:
        self._ensure_open()
        self._cache_enabled = False

    def remember_completion(self, context: str, completion: str) -> None:
        self._ensure_open()
        self.cache.remember(context, completion)

    # ------------------------------------------------------------------ #
    # Learning
    # ------------------------------------------------------------------ #
    @staticmethod
    def _words(tokens: Sequence[str]) -> List[Piece]:
        """Drop whitespace tokens, flagging the words that followed one."""
        words: List[Piece] = []
        pending_space = False
        for token in tokens:
            if not token.strip():
                pending_space = True
                continue
            words.append((token, pending_space and bool(words)))
            pending_space = False
        return words

    def learn(self, text: str) -> int:
        """Ingest ``text`` in one transaction; returns the number of word tokens learned."""
        self._ensure_open()
        words = self._words(self.tokenizer.split(text))
        if not words:
            return 0
        order = self.order
        with self.db.transaction():
            boundary = self.store.token_id(BOUNDARY, create_if_missing=True)
            token_ids = [boundary] * order
            spaces = [False] * order
            for word, has_space in words:
                token_ids.append(self.store.token_id(word, create_if_missing=True))
                spaces.append(has_space)
            token_ids.extend([boundary] * order)
            spaces.extend([False] * order)

            prev_node: int | None = None
            for start in range(len(token_ids) - order + 1):
                node = self.store.node_id(token_ids[start : start + order])
                self.store.observe_node(node)
                if prev_node is not None:
                    self.store.add_edge(prev_node, node, spaces[start])
                prev_node = node
        log_verbose(3, f"[brain] Learned {len(words)} token(s)")
        return len(words)

    def learn_and_remember(self, text: str, context: str | None = None) -> int:
        learned = self.learn(text)
        if context and context.strip() and text.strip():
            self.remember_completion(context, text)
        return learned

    # ------------------------------------------------------------------ #
    # Generation
    # ------------------------------------------------------------------ #
    def reply(self, text: str, *, use_cache: bool | None = None) -> str:
        """Generate one reply seeded by ``text``.

        Raises EmptyStore when nothing has ever been learned; otherwise an
        unhelpful graph yields an empty string.
        """
        self._ensure_open()
        if use_cache is None:
            use_cache = self._cache_enabled
        if use_cache:
            cached = self.cache.lookup(text, self.rng)
            if cached is not None:
                log_verbose(3, "[brain] Reply served from completion cache")
                return cached
        if self.store.is_empty():
            raise EmptyStore("the brain has not learned anything yet")
        context = self._context_ids(text)
        pieces = self._from_context(self._trailing_run(context))
        if pieces is None:
            pieces = self._from_pivot([tok for tok in context if tok is not None])
        return self._join(pieces)

    def predict(
        self,
        text: str,
        *,
        max_words: int | None = None,
        precision: float | None = None,
        use_cache: bool | None = None,
    ) -> str:
        """Precision-selected reply bounded to ``max_words`` words."""
        self._ensure_open()
        reply = self.selector.generate(lambda: self.reply(text, use_cache=use_cache), precision)
        return limit_words(reply, max_words)

    def _context_ids(self, text: str) -> List[Optional[int]]:
        """Token ids for the words of ``text``; None marks a word never learned."""
        return [self.store.token_id(word) for word, _ in self._words(self.tokenizer.split(text))]

    @staticmethod
    def _trailing_run(ids: Sequence[Optional[int]]) -> List[int]:
        """Known ids after the last unknown word."""
        run: List[int] = []
        for token_id in ids:
            if token_id is None:
                run = []
            else:
                run.append(token_id)
        return run

    def _boundary_node(self) -> int | None:
        if self._end_node is None:
            boundary = self.store.token_id(BOUNDARY)
            if boundary is not None:
                self._end_node = self.store.node_id([boundary] * self.order, create_if_missing=False)
        return self._end_node

    def _from_context(self, context: Sequence[int]) -> Optional[List[Piece]]:
        try:
            match = self.store.context_match(context)
        except NoMatch:
            return None
        if not match.edge_ids:
            return None
        edge_id = self.rng.choice(match.edge_ids[:CONTEXT_FANOUT])
        path = [edge_id]
        end_node = self._boundary_node()
        first = self.store.edge(edge_id)
        if first.next_node_id != end_node:
            path.extend(self.store.random_walk(first.next_node_id, end_node, forward=True))
        pieces = [self.store.edge_text(edge) for edge in path]
        # The leading pieces repeat context tokens already held by the matched node.
        return pieces[match.matched - 1 :]

    def _from_pivot(self, context: Sequence[int]) -> List[Piece]:
        pivots = self.store.word_tokens(context)
        self.rng.shuffle(pivots)
        node: int | None = None
        for token_id in pivots:
            node = self.store.random_node_with_token(token_id)
            if node is not None:
                break
        else:
            node = self.store.random_node_with_token(self.store.random_token())
        if node is None:
            return []
        path = self.store.random_walk(node, self._boundary_node(), forward=True)
        return [self.store.edge_text(edge) for edge in path]

    @staticmethod
    def _join(pieces: Sequence[Piece]) -> str:
        parts: List[str] = []
        for text, has_space in pieces:
            if not text:
                continue
            if has_space:
                parts.append(" ")
            parts.append(text)
        return "".join(parts).strip()

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #
    def stats(self) -> GraphStats:
        self._ensure_open()
        return self.store.stats()
