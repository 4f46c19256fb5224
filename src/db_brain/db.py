from __future__ import annotations

import contextlib
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Generator, Sequence

from .errors import Closed, InvalidOrder, StorageError

logger = logging.getLogger(__name__)

DEFAULT_ORDER = 2

_PRAGMAS = (
    "PRAGMA journal_mode=WAL;",
    "PRAGMA synchronous=NORMAL;",
    "PRAGMA temp_store=MEMORY;",
    "PRAGMA cache_size=10000;",
)


class DatabaseEnvironment:
    """SQLite environment for the token/node/edge graph.

    Every write goes through one connection guarded by a re-entrant lock, so the
    store has exactly one logical writer. Reads use a per-thread connection that
    only ever sees committed transactions (WAL snapshot isolation). In-memory
    databases cannot be shared between connections, so they read through the
    writer connection under the same lock.
    """

    def __init__(
        self,
        path: str | Path = ":memory:",
        order: int | None = None,
        *,
        default_order: int = DEFAULT_ORDER,
        busy_timeout: float = 5.0,
    ) -> None:
        self.path = str(path)
        self.busy_timeout = busy_timeout
        self._in_memory = self.path == ":memory:"
        self._write_lock = threading.RLock()
        self._depth = 0
        self._owner: int | None = None
        self._local = threading.local()
        self._readers: list[sqlite3.Connection] = []
        self._readers_lock = threading.Lock()
        self._closed = False
        try:
            self._conn = self._connect()
        except sqlite3.Error as exc:
            raise StorageError(f"failed to open {self.path}: {exc}") from exc
        self._apply_pragmas(self._conn)
        try:
            self._bootstrap_schema()
            self.order = self._resolve_order(order, default_order)
        except Exception:
            self.close()
            raise

    # ------------------------------------------------------------------ #
    # Connection management
    # ------------------------------------------------------------------ #
    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.path,
            isolation_level=None,
            check_same_thread=False,
            timeout=self.busy_timeout,
        )
        conn.row_factory = sqlite3.Row
        return conn

    def _apply_pragmas(self, conn: sqlite3.Connection) -> None:
        for pragma in _PRAGMAS:
            try:
                conn.execute(pragma)
            except sqlite3.Error as exc:
                logger.warning("failed to apply %s on %s: %s", pragma, self.path, exc)

    def _reader_connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            return conn
        try:
            conn = self._connect()
            conn.execute("PRAGMA query_only=ON;")
        except sqlite3.Error as exc:
            raise StorageError(f"failed to open reader on {self.path}: {exc}") from exc
        with self._readers_lock:
            self._readers.append(conn)
        self._local.conn = conn
        logger.debug("opened reader connection #%d on %s", len(self._readers), self.path)
        return conn

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise Closed(f"database {self.path} is closed")

    def close(self) -> None:
        with self._write_lock:
            if self._closed:
                return
            self._closed = True
            with self._readers_lock:
                readers, self._readers = self._readers, []
            for conn in readers:
                conn.close()
            self._conn.close()

    # ------------------------------------------------------------------ #
    # Schema management
    # ------------------------------------------------------------------ #
    def _bootstrap_schema(self) -> None:
        with self._write_lock, self._translate("bootstrap schema"):
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS tbl_metadata (
                    key   TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS tbl_tokens (
                    token_id   INTEGER PRIMARY KEY AUTOINCREMENT,
                    token_text TEXT UNIQUE NOT NULL,
                    is_word    INTEGER NOT NULL DEFAULT 0
                );

                CREATE TABLE IF NOT EXISTS tbl_nodes (
                    node_id        INTEGER PRIMARY KEY AUTOINCREMENT,
                    token_ids      TEXT UNIQUE NOT NULL,
                    first_token_id INTEGER NOT NULL,
                    count          INTEGER NOT NULL DEFAULT 0
                );
                CREATE INDEX IF NOT EXISTS idx_nodes_first
                    ON tbl_nodes(first_token_id);

                CREATE TABLE IF NOT EXISTS tbl_edges (
                    edge_id      INTEGER PRIMARY KEY AUTOINCREMENT,
                    prev_node_id INTEGER NOT NULL,
                    next_node_id INTEGER NOT NULL,
                    has_space    INTEGER NOT NULL DEFAULT 0,
                    count        INTEGER NOT NULL DEFAULT 0,
                    UNIQUE (prev_node_id, next_node_id, has_space)
                );
                CREATE INDEX IF NOT EXISTS idx_edges_prev
                    ON tbl_edges(prev_node_id, count DESC);
                CREATE INDEX IF NOT EXISTS idx_edges_next
                    ON tbl_edges(next_node_id);
                """
            )

    def _resolve_order(self, requested: int | None, default_order: int) -> int:
        stored = self.get_metadata("order")
        if stored is None:
            order = default_order if requested is None else requested
            if order < 1:
                raise ValueError(f"Markov order must be >= 1 (got {order})")
            self.set_metadata("order", str(order))
            return order
        stored_order = int(stored)
        if requested is not None and requested != stored_order:
            raise InvalidOrder(
                f"{self.path} was created with order {stored_order}, refusing to open it with order {requested}"
            )
        return stored_order

    def get_metadata(self, key: str) -> str | None:
        row = self.query_one("SELECT value FROM tbl_metadata WHERE key = ?", (key,))
        return None if row is None else row["value"]

    def set_metadata(self, key: str, value: str) -> None:
        self.execute(
            """
            INSERT INTO tbl_metadata(key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
            (key, value),
        )

    # ------------------------------------------------------------------ #
    # Basic query helpers
    # ------------------------------------------------------------------ #
    @contextlib.contextmanager
    def _translate(self, action: str) -> Generator[None, None, None]:
        try:
            yield
        except sqlite3.Error as exc:
            raise StorageError(f"failed to {action}: {exc}") from exc

    @contextlib.contextmanager
    def reader(self) -> Generator[sqlite3.Connection, None, None]:
        """Yield a connection for read-only statements.

        The thread currently holding an open write transaction reads through the
        writer connection so it observes its own uncommitted rows.
        """
        self._ensure_open()
        if self._in_memory or self._owner == threading.get_ident():
            with self._write_lock:
                self._ensure_open()
                yield self._conn
            return
        yield self._reader_connection()

    def query(self, sql: str, params: Sequence[Any] | None = None) -> list[sqlite3.Row]:
        with self.reader() as conn, self._translate("query"):
            cur = conn.execute(sql, params or [])
            rows = cur.fetchall()
            cur.close()
        return rows

    def query_one(self, sql: str, params: Sequence[Any] | None = None) -> sqlite3.Row | None:
        rows = self.query(sql, params)
        return rows[0] if rows else None

    def scalar(self, sql: str, params: Sequence[Any] | None = None, default: Any = None) -> Any:
        row = self.query_one(sql, params)
        if row is None or row[0] is None:
            return default
        return row[0]

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> int:
        """Run one write statement and return the number of affected rows."""
        with self.transaction() as conn, self._translate("write"):
            cur = conn.execute(sql, params or [])
            return cur.rowcount

    def insert_with_id(self, sql: str, params: Sequence[Any] | None = None) -> int:
        with self.transaction() as conn, self._translate("insert"):
            cur = conn.execute(sql, params or [])
            return int(cur.lastrowid)

    @contextlib.contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """Serialize writers and make the enclosed statements one atomic unit.

        Nested calls from the owning thread join the outer transaction.
        """
        self._ensure_open()
        with self._write_lock:
            self._ensure_open()
            if self._depth:
                self._depth += 1
                try:
                    yield self._conn
                finally:
                    self._depth -= 1
                return
            with self._translate("begin transaction"):
                self._conn.execute("BEGIN IMMEDIATE")
            self._depth = 1
            self._owner = threading.get_ident()
            try:
                yield self._conn
                with self._translate("commit"):
                    self._conn.execute("COMMIT")
            except Exception:
                try:
                    self._conn.execute("ROLLBACK")
                except sqlite3.Error as exc:
                    logger.warning("rollback failed on %s: %s", self.path, exc)
                raise
            finally:
                self._depth = 0
                self._owner = None
