from __future__ import annotations

import random
import tempfile
import unittest
from pathlib import Path

from db_brain.db import DatabaseEnvironment
from db_brain.errors import Closed, EmptyStore, InvalidOrder, NoMatch
from db_brain.graph import MAX_WALK_STEPS, GraphStore
from db_brain.tuples import decode_token_ids, encode_token_ids, prefix_pattern


def make_store(order: int) -> GraphStore:
    return GraphStore(DatabaseEnvironment(":memory:", order), rng=random.Random(7))


class TupleKeyTests(unittest.TestCase):
    def test_keys(self) -> None:
        self.assertEqual(encode_token_ids([1, 22, 3]), "1,22,3")
        self.assertEqual(decode_token_ids("1,22,3"), (1, 22, 3))
        self.assertEqual(decode_token_ids(""), ())
        self.assertEqual(prefix_pattern([1, 2]), "1,2,*")


class TokenTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = make_store(2)

    def tearDown(self) -> None:
        if not self.store.db.closed:
            self.store.close()

    def test_token_id_is_idempotent(self) -> None:
        first = self.store.token_id("hello", create_if_missing=True)
        second = self.store.token_id("hello", create_if_missing=True)
        self.assertEqual(first, second)
        self.assertEqual(self.store.token_id("hello"), first)
        self.assertIsNone(self.store.token_id("missing"))
        self.assertEqual(self.store.stats().tokens, 1)

    def test_word_flag(self) -> None:
        comma = self.store.token_id(",", create_if_missing=True)
        word = self.store.token_id("cat", create_if_missing=True)
        self.assertFalse(self.store.token(comma).is_word)
        self.assertTrue(self.store.token(word).is_word)
        self.assertEqual(self.store.token(word).text, "cat")
        self.assertIsNone(self.store.token(word + 100))

    def test_random_token_on_empty_store(self) -> None:
        with self.assertRaises(EmptyStore):
            self.store.random_token()
        # The boundary token alone does not count as learned data.
        self.store.token_id("", create_if_missing=True)
        with self.assertRaises(EmptyStore):
            self.store.random_token()
        word = self.store.token_id("only", create_if_missing=True)
        self.assertEqual(self.store.random_token(), word)

    def test_word_tokens_filters_and_dedupes(self) -> None:
        hello = self.store.token_id("hello", create_if_missing=True)
        comma = self.store.token_id(",", create_if_missing=True)
        world = self.store.token_id("world", create_if_missing=True)
        self.assertEqual(self.store.word_tokens([hello, comma, world, hello]), [hello, world])
        self.assertEqual(self.store.word_tokens([]), [])


class NodeAndEdgeTests(unittest.TestCase):
    def test_tuple_length_must_match_order(self) -> None:
        for order in (1, 2, 3):
            with self.subTest(order=order):
                store = make_store(order)
                tok = store.token_id("x", create_if_missing=True)
                self.assertIsNotNone(store.node_id([tok] * order))
                with self.assertRaises(InvalidOrder):
                    store.node_id([tok] * (order + 1))
                with self.assertRaises(InvalidOrder):
                    store.node_id([])
                store.close()

    def test_node_id_is_idempotent(self) -> None:
        store = make_store(2)
        a = store.token_id("a", create_if_missing=True)
        b = store.token_id("b", create_if_missing=True)
        node = store.node_id([a, b])
        self.assertEqual(store.node_id([a, b]), node)
        self.assertIsNone(store.node_id([b, a], create_if_missing=False))
        self.assertEqual(store.node(node).token_ids, (a, b))
        store.close()

    def test_edge_counts_accumulate(self) -> None:
        store = make_store(1)
        a = store.node_id([store.token_id("a", create_if_missing=True)])
        b = store.node_id([store.token_id("b", create_if_missing=True)])
        for _ in range(4):
            store.add_edge(a, b, True)
        store.add_edge(a, b, False)
        self.assertEqual(store.find_edge(a, b, True).count, 4)
        self.assertEqual(store.find_edge(a, b, False).count, 1)
        self.assertIsNone(store.find_edge(b, a, True))
        self.assertEqual(store.stats().edges, 2)
        store.close()

    def test_edge_text_uses_destination_first_slot(self) -> None:
        store = make_store(2)
        a, b, c = (store.token_id(text, create_if_missing=True) for text in ("a", "b", "c"))
        first = store.node_id([a, b])
        second = store.node_id([b, c])
        store.add_edge(first, second, True)
        edge = store.find_edge(first, second, True)
        self.assertEqual(store.edge_text(edge.edge_id), ("b", True))
        store.close()


class RandomWalkTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = make_store(1)
        self.nodes = {
            text: self.store.node_id([self.store.token_id(text, create_if_missing=True)])
            for text in ("a", "b", "c")
        }

    def tearDown(self) -> None:
        self.store.close()

    def test_cycle_is_bounded(self) -> None:
        a, b = self.nodes["a"], self.nodes["b"]
        self.store.add_edge(a, b, False)
        self.store.add_edge(b, a, False)
        self.assertEqual(len(self.store.random_walk(a)), MAX_WALK_STEPS)

    def test_stops_at_end_node(self) -> None:
        a, b = self.nodes["a"], self.nodes["b"]
        self.store.add_edge(a, b, False)
        self.store.add_edge(b, a, False)
        path = self.store.random_walk(a, b)
        self.assertEqual(len(path), 1)
        self.assertEqual(self.store.edge(path[0]).next_node_id, b)

    def test_dead_end_and_self_loops(self) -> None:
        a, b = self.nodes["a"], self.nodes["b"]
        self.store.add_edge(a, a, False)
        self.assertEqual(self.store.random_walk(a), [])
        self.store.add_edge(a, b, False)
        path = self.store.random_walk(a)
        self.assertEqual(len(path), 1)
        self.assertEqual(self.store.edge(path[0]).next_node_id, b)

    def test_backward_walk(self) -> None:
        a, b = self.nodes["a"], self.nodes["b"]
        self.store.add_edge(a, b, False)
        path = self.store.random_walk(b, forward=False)
        self.assertEqual(len(path), 1)
        self.assertEqual(self.store.edge(path[0]).prev_node_id, a)

    def test_wide_fanout_is_sampled(self) -> None:
        hub = self.nodes["a"]
        targets = [
            self.store.node_id([self.store.token_id(f"t{idx}", create_if_missing=True)])
            for idx in range(8)
        ]
        for target in targets:
            self.store.add_edge(hub, target, True)
        path = self.store.random_walk(hub)
        self.assertEqual(len(path), 1)
        self.assertIn(self.store.edge(path[0]).next_node_id, targets)

    def test_random_node_with_token(self) -> None:
        a_token = self.store.token_id("a")
        self.assertEqual(self.store.random_node_with_token(a_token), self.nodes["a"])
        missing = self.store.token_id("zzz", create_if_missing=True)
        self.assertIsNone(self.store.random_node_with_token(missing))


class ContextEdgeTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = make_store(2)
        self.tok = {
            text: self.store.token_id(text, create_if_missing=True) for text in ("a", "b", "c", "d", "z")
        }
        t = self.tok
        self.ab = self.store.node_id([t["a"], t["b"]])
        self.bc = self.store.node_id([t["b"], t["c"]])
        self.bd = self.store.node_id([t["b"], t["d"]])
        self.store.add_edge(self.ab, self.bc, True)
        for _ in range(3):
            self.store.add_edge(self.ab, self.bd, True)

    def tearDown(self) -> None:
        self.store.close()

    def test_edges_ordered_by_count(self) -> None:
        edges = self.store.context_edges([self.tok["a"], self.tok["b"]])
        self.assertEqual(len(edges), 2)
        self.assertEqual(self.store.edge(edges[0]).next_node_id, self.bd)
        self.assertEqual(self.store.edge(edges[1]).next_node_id, self.bc)

    def test_longest_trailing_window_wins(self) -> None:
        match = self.store.context_match([self.tok["z"], self.tok["a"], self.tok["b"]])
        self.assertEqual(match.node_id, self.ab)
        self.assertEqual(match.matched, 2)

    def test_falls_back_to_leading_slot(self) -> None:
        match = self.store.context_match([self.tok["z"], self.tok["b"]])
        self.assertIn(match.node_id, (self.bc, self.bd))
        self.assertEqual(match.matched, 1)

    def test_no_match(self) -> None:
        with self.assertRaises(NoMatch):
            self.store.context_edges([self.tok["a"]])
        with self.assertRaises(NoMatch):
            self.store.context_edges([self.tok["a"], self.tok["z"]])

    def test_prefix_match_for_higher_orders(self) -> None:
        store = make_store(3)
        a, b, c, q = (store.token_id(text, create_if_missing=True) for text in ("a", "b", "c", "q"))
        abc = store.node_id([a, b, c])
        bcq = store.node_id([b, c, q])
        store.add_edge(abc, bcq, True)
        match = store.context_match([q, a, b])
        self.assertEqual(match.node_id, abc)
        self.assertEqual(match.matched, 2)
        self.assertEqual(len(match.edge_ids), 1)
        store.close()


class DatabaseEnvironmentTests(unittest.TestCase):
    def test_order_is_persisted(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "brain.sqlite3"
            DatabaseEnvironment(path, 2).close()
            with self.assertRaises(InvalidOrder):
                DatabaseEnvironment(path, 3)
            reopened = DatabaseEnvironment(path, None, default_order=5)
            self.assertEqual(reopened.order, 2)
            reopened.close()

    def test_rejects_non_positive_order(self) -> None:
        with self.assertRaises(ValueError):
            DatabaseEnvironment(":memory:", 0)

    def test_closed_environment(self) -> None:
        db = DatabaseEnvironment(":memory:", 1)
        db.close()
        db.close()
        self.assertTrue(db.closed)
        with self.assertRaises(Closed):
            db.query("SELECT 1")
        with self.assertRaises(Closed):
            with db.transaction():
                pass

    def test_rollback_on_error(self) -> None:
        db = DatabaseEnvironment(":memory:", 1)
        with self.assertRaises(RuntimeError):
            with db.transaction():
                db.set_metadata("pending", "1")
                raise RuntimeError("abort")
        self.assertIsNone(db.get_metadata("pending"))
        db.close()


if __name__ == "__main__":
    unittest.main()
