from __future__ import annotations

import random
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .db import DatabaseEnvironment
from .errors import EmptyStore, InvalidOrder, NoMatch, StorageError
from .tokenizers import is_word
from .tuples import decode_token_ids, encode_token_ids, prefix_pattern

MAX_WALK_STEPS = 15
WALK_SAMPLE_SIZE = 5
CONTEXT_EDGE_LIMIT = 20
_IN_CLAUSE_CHUNK = 500


@dataclass(frozen=True)
class Token:
    token_id: int
    text: str
    is_word: bool


@dataclass(frozen=True)
class Node:
    node_id: int
    token_ids: Tuple[int, ...]
    count: int


@dataclass(frozen=True)
class Edge:
    edge_id: int
    prev_node_id: int
    next_node_id: int
    has_space: bool
    count: int


@dataclass(frozen=True)
class ContextMatch:
    node_id: int
    matched: int
    edge_ids: Tuple[int, ...]


@dataclass(frozen=True)
class GraphStats:
    order: int
    tokens: int
    nodes: int
    edges: int


class GraphStore:
    """Token/node/edge persistence plus the traversal queries used for generation."""

    def __init__(self, db: DatabaseEnvironment, *, rng: random.Random | None = None) -> None:
        self.db = db
        self.order = db.order
        self.rng = rng or random.Random()

    def close(self) -> None:
        self.db.close()

    # ------------------------------------------------------------------ #
    # Tokens
    # ------------------------------------------------------------------ #
    def token_id(self, text: str, create_if_missing: bool = False) -> Optional[int]:
        if not create_if_missing:
            found = self.db.scalar("SELECT token_id FROM tbl_tokens WHERE token_text = ?", (text,))
            return None if found is None else int(found)
        with self.db.transaction():
            found = self.db.scalar("SELECT token_id FROM tbl_tokens WHERE token_text = ?", (text,))
            if found is not None:
                return int(found)
            return self.db.insert_with_id(
                "INSERT INTO tbl_tokens(token_text, is_word) VALUES (?, ?)",
                (text, 1 if is_word(text) else 0),
            )

    def token(self, token_id: int) -> Token | None:
        row = self.db.query_one(
            "SELECT token_id, token_text, is_word FROM tbl_tokens WHERE token_id = ?",
            (token_id,),
        )
        if row is None:
            return None
        return Token(row["token_id"], row["token_text"], bool(row["is_word"]))

    def random_token(self) -> int:
        total = self.db.scalar("SELECT COUNT(*) FROM tbl_tokens WHERE token_text != ''", default=0)
        if not total:
            raise EmptyStore("no tokens have been learned yet")
        offset = self.rng.randrange(total)
        return int(
            self.db.scalar(
                "SELECT token_id FROM tbl_tokens WHERE token_text != '' ORDER BY token_id LIMIT 1 OFFSET ?",
                (offset,),
            )
        )

    def word_tokens(self, token_ids: Sequence[int]) -> List[int]:
        """Return the ids flagged as words, deduplicated, in first-seen order."""
        unique = list(dict.fromkeys(int(tok) for tok in token_ids))
        words: set[int] = set()
        for start in range(0, len(unique), _IN_CLAUSE_CHUNK):
            chunk = unique[start : start + _IN_CLAUSE_CHUNK]
            placeholders = ", ".join("?" for _ in chunk)
            rows = self.db.query(
                f"SELECT token_id FROM tbl_tokens WHERE is_word = 1 AND token_id IN ({placeholders})",
                chunk,
            )
            words.update(row["token_id"] for row in rows)
        return [tok for tok in unique if tok in words]

    # ------------------------------------------------------------------ #
    # Nodes
    # ------------------------------------------------------------------ #
    def node_id(self, token_ids: Sequence[int], create_if_missing: bool = True) -> Optional[int]:
        if len(token_ids) != self.order:
            raise InvalidOrder(f"expected {self.order} token ids, got {len(token_ids)}")
        key = encode_token_ids(token_ids)
        if not create_if_missing:
            found = self.db.scalar("SELECT node_id FROM tbl_nodes WHERE token_ids = ?", (key,))
            return None if found is None else int(found)
        with self.db.transaction():
            found = self.db.scalar("SELECT node_id FROM tbl_nodes WHERE token_ids = ?", (key,))
            if found is not None:
                return int(found)
            return self.db.insert_with_id(
                "INSERT INTO tbl_nodes(token_ids, first_token_id, count) VALUES (?, ?, 0)",
                (key, int(token_ids[0])),
            )

    def observe_node(self, node_id: int) -> None:
        self.db.execute("UPDATE tbl_nodes SET count = count + 1 WHERE node_id = ?", (node_id,))

    def node(self, node_id: int) -> Node | None:
        row = self.db.query_one(
            "SELECT node_id, token_ids, count FROM tbl_nodes WHERE node_id = ?",
            (node_id,),
        )
        if row is None:
            return None
        return Node(row["node_id"], decode_token_ids(row["token_ids"]), row["count"])

    def random_node_with_token(self, token_id: int) -> Optional[int]:
        """Pick uniformly among the nodes whose first slot holds ``token_id``."""
        total = self.db.scalar(
            "SELECT COUNT(*) FROM tbl_nodes WHERE first_token_id = ?", (token_id,), default=0
        )
        if not total:
            return None
        offset = self.rng.randrange(total)
        found = self.db.scalar(
            "SELECT node_id FROM tbl_nodes WHERE first_token_id = ? ORDER BY node_id LIMIT 1 OFFSET ?",
            (token_id, offset),
        )
        return None if found is None else int(found)

    # ------------------------------------------------------------------ #
    # Edges
    # ------------------------------------------------------------------ #
    def add_edge(self, prev_node_id: int, next_node_id: int, has_space: bool) -> None:
        self.db.execute(
            """
            INSERT INTO tbl_edges(prev_node_id, next_node_id, has_space, count)
            VALUES (?, ?, ?, 1)
            ON CONFLICT(prev_node_id, next_node_id, has_space) DO UPDATE
            SET count = count + 1
            """,
            (prev_node_id, next_node_id, 1 if has_space else 0),
        )

    def edge(self, edge_id: int) -> Edge:
        row = self.db.query_one(
            """
            SELECT edge_id, prev_node_id, next_node_id, has_space, count
            FROM tbl_edges
            WHERE edge_id = ?
            """,
            (edge_id,),
        )
        if row is None:
            raise StorageError(f"edge {edge_id} does not exist")
        return self._row_to_edge(row)

    def find_edge(self, prev_node_id: int, next_node_id: int, has_space: bool) -> Edge | None:
        row = self.db.query_one(
            """
            SELECT edge_id, prev_node_id, next_node_id, has_space, count
            FROM tbl_edges
            WHERE prev_node_id = ? AND next_node_id = ? AND has_space = ?
            """,
            (prev_node_id, next_node_id, 1 if has_space else 0),
        )
        return None if row is None else self._row_to_edge(row)

    @staticmethod
    def _row_to_edge(row) -> Edge:
        return Edge(
            row["edge_id"],
            row["prev_node_id"],
            row["next_node_id"],
            bool(row["has_space"]),
            row["count"],
        )

    def edge_text(self, edge_id: int) -> Tuple[str, bool]:
        """Resolve an edge to its destination's first token text and its spacing flag."""
        row = self.db.query_one(
            """
            SELECT t.token_text, e.has_space
            FROM tbl_edges AS e
            JOIN tbl_nodes AS n ON n.node_id = e.next_node_id
            JOIN tbl_tokens AS t ON t.token_id = n.first_token_id
            WHERE e.edge_id = ?
            """,
            (edge_id,),
        )
        if row is None:
            raise StorageError(f"edge {edge_id} does not exist")
        return row["token_text"], bool(row["has_space"])

    # ------------------------------------------------------------------ #
    # Traversal
    # ------------------------------------------------------------------ #
    def random_walk(
        self, start_node_id: int, end_node_id: int | None = None, forward: bool = True
    ) -> List[int]:
        """Walk at most MAX_WALK_STEPS edges away from ``start_node_id``.

        Each step samples up to WALK_SAMPLE_SIZE non self-loop edges leaving
        (``forward``) or entering the current node and follows one of them
        uniformly. Dead ends and reaching ``end_node_id`` stop the walk early.
        """
        if forward:
            source, target = "prev_node_id", "next_node_id"
        else:
            source, target = "next_node_id", "prev_node_id"
        path: List[int] = []
        current = start_node_id
        for _ in range(MAX_WALK_STEPS):
            candidates = self._sample_edges(current, source, target)
            if not candidates:
                break
            if len(candidates) == 1:
                edge_id, current = candidates[0]
            else:
                edge_id, current = self.rng.choice(candidates)
            path.append(edge_id)
            if end_node_id is not None and current == end_node_id:
                break
        return path

    def _sample_edges(self, node_id: int, source: str, target: str) -> List[Tuple[int, int]]:
        where = f"{source} = ? AND {target} != ?"
        total = self.db.scalar(
            f"SELECT COUNT(*) FROM tbl_edges WHERE {where}", (node_id, node_id), default=0
        )
        if not total:
            return []
        select = f"SELECT edge_id, {target} AS target FROM tbl_edges WHERE {where} ORDER BY edge_id"
        if total <= WALK_SAMPLE_SIZE:
            rows = self.db.query(select, (node_id, node_id))
            return [(row["edge_id"], row["target"]) for row in rows]
        sampled: List[Tuple[int, int]] = []
        for offset in sorted(self.rng.sample(range(total), WALK_SAMPLE_SIZE)):
            row = self.db.query_one(f"{select} LIMIT 1 OFFSET ?", (node_id, node_id, offset))
            if row is not None:
                sampled.append((row["edge_id"], row["target"]))
        return sampled

    def context_match(self, token_ids: Sequence[int]) -> ContextMatch:
        """Locate the node best matching the trailing context and its top edges.

        The longest trailing window is tried first: an exact node lookup when
        it spans the full order, a leading-slot prefix match when shorter.
        """
        if len(token_ids) < 2:
            raise NoMatch(f"context needs at least 2 tokens, got {len(token_ids)}")
        for width in range(min(len(token_ids), self.order), 0, -1):
            node_id = self._find_node_by_prefix(token_ids[-width:])
            if node_id is None:
                continue
            rows = self.db.query(
                """
                SELECT edge_id
                FROM tbl_edges
                WHERE prev_node_id = ?
                ORDER BY count DESC, edge_id
                LIMIT ?
                """,
                (node_id, CONTEXT_EDGE_LIMIT),
            )
            return ContextMatch(node_id, width, tuple(row["edge_id"] for row in rows))
        raise NoMatch("no node matches the supplied context")

    def context_edges(self, token_ids: Sequence[int]) -> List[int]:
        return list(self.context_match(token_ids).edge_ids)

    def _find_node_by_prefix(self, token_ids: Sequence[int]) -> Optional[int]:
        if len(token_ids) == self.order:
            return self.node_id(token_ids, create_if_missing=False)
        if len(token_ids) == 1:
            found = self.db.scalar(
                "SELECT node_id FROM tbl_nodes WHERE first_token_id = ? ORDER BY count DESC, node_id LIMIT 1",
                (int(token_ids[0]),),
            )
        else:
            # GLOB (unlike LIKE) can use the unique index on token_ids.
            found = self.db.scalar(
                "SELECT node_id FROM tbl_nodes WHERE token_ids GLOB ? ORDER BY count DESC, node_id LIMIT 1",
                (prefix_pattern(token_ids),),
            )
        return None if found is None else int(found)

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #
    def is_empty(self) -> bool:
        return self.db.scalar("SELECT 1 FROM tbl_tokens WHERE token_text != '' LIMIT 1") is None

    def stats(self) -> GraphStats:
        return GraphStats(
            order=self.order,
            tokens=int(self.db.scalar("SELECT COUNT(*) FROM tbl_tokens", default=0)),
            nodes=int(self.db.scalar("SELECT COUNT(*) FROM tbl_nodes", default=0)),
            edges=int(self.db.scalar("SELECT COUNT(*) FROM tbl_edges", default=0)),
        )
