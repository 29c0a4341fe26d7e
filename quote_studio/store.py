"""
Quote persistence.

Stores expose plain synchronous calls plus ``run_atomic`` for serializable
read-modify-write transactions; async callers hop to the default executor.
Two implementations are provided: an in-memory store (tests, ephemeral
sessions) and a SQLite store using ``BEGIN IMMEDIATE`` transactions.
"""

import json
import sqlite3
import threading
from contextlib import closing
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol, TypeVar, runtime_checkable

from .models import Quote
from .error_handler import ConflictError, NotFoundError
from .logging_conf import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class StoreTransaction(Protocol):
    """Operations available inside ``run_atomic``."""

    def get_counter(self, year: str) -> int:
        """Current counter for ``year``; 0 when absent."""
        ...

    def set_counter(self, year: str, value: int) -> None:
        ...

    def get_quote(self, quote_id: str) -> Optional[Quote]:
        ...

    def put_quote(self, quote: Quote) -> None:
        ...


@runtime_checkable
class QuoteStore(Protocol):
    """Persistence contract for quotes and per-year counters."""

    def get(self, quote_id: str) -> Quote:
        ...

    def put(self, quote_id: str, quote: Quote) -> None:
        ...

    def list_quotes(self, limit: int = 200) -> List[Quote]:
        ...

    def run_atomic(self, fn: Callable[[StoreTransaction], T]) -> T:
        ...


def _sort_recent(quotes: List[Quote], limit: int) -> List[Quote]:
    return sorted(quotes, key=lambda q: q.last_updated, reverse=True)[:limit]


class _MemoryTransaction:
    def __init__(self, counters: Dict[str, int], quotes: Dict[str, dict]):
        self._counters = counters
        self._quotes = quotes
        self.staged_counters: Dict[str, int] = {}
        self.staged_quotes: Dict[str, dict] = {}

    def get_counter(self, year: str) -> int:
        return self.staged_counters.get(year, self._counters.get(year, 0))

    def set_counter(self, year: str, value: int) -> None:
        self.staged_counters[year] = value

    def get_quote(self, quote_id: str) -> Optional[Quote]:
        doc = self.staged_quotes.get(quote_id) or self._quotes.get(quote_id)
        return Quote.model_validate(doc) if doc else None

    def put_quote(self, quote: Quote) -> None:
        self.staged_quotes[quote.id] = quote.to_document()


class InMemoryQuoteStore:
    """
    Dictionary-backed store with a store-wide transaction lock.

    ``inject_conflicts(n)`` makes the next ``n`` transactions fail at commit
    with ConflictError, discarding their staged writes.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = {}
        self._quotes: Dict[str, dict] = {}
        self._pending_conflicts = 0
        self.commits = 0
        self.conflicts = 0

    def inject_conflicts(self, count: int) -> None:
        with self._lock:
            self._pending_conflicts += count

    def get(self, quote_id: str) -> Quote:
        with self._lock:
            doc = self._quotes.get(quote_id)
        if doc is None:
            raise NotFoundError("quote", quote_id)
        return Quote.model_validate(doc)

    def put(self, quote_id: str, quote: Quote) -> None:
        with self._lock:
            self._quotes[quote_id] = quote.to_document()

    def list_quotes(self, limit: int = 200) -> List[Quote]:
        with self._lock:
            docs = list(self._quotes.values())
        return _sort_recent([Quote.model_validate(doc) for doc in docs], limit)

    def counter(self, year: str) -> int:
        with self._lock:
            return self._counters.get(year, 0)

    def run_atomic(self, fn: Callable[[StoreTransaction], T]) -> T:
        with self._lock:
            tx = _MemoryTransaction(self._counters, self._quotes)
            result = fn(tx)
            if self._pending_conflicts:
                self._pending_conflicts -= 1
                self.conflicts += 1
                raise ConflictError("quote store", "transaction lost a race")
            self._counters.update(tx.staged_counters)
            self._quotes.update(tx.staged_quotes)
            self.commits += 1
            return result


class _SQLiteTransaction:
    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    def get_counter(self, year: str) -> int:
        row = self._conn.execute("SELECT seq FROM counters WHERE year = ?", (year,)).fetchone()
        return row[0] if row else 0

    def set_counter(self, year: str, value: int) -> None:
        self._conn.execute(
            "INSERT INTO counters (year, seq) VALUES (?, ?) "
            "ON CONFLICT(year) DO UPDATE SET seq = excluded.seq",
            (year, value)
        )

    def get_quote(self, quote_id: str) -> Optional[Quote]:
        row = self._conn.execute("SELECT document FROM quotes WHERE id = ?", (quote_id,)).fetchone()
        return Quote.model_validate(json.loads(row[0])) if row else None

    def put_quote(self, quote: Quote) -> None:
        _write_quote(self._conn, quote.id, quote)


def _write_quote(conn: sqlite3.Connection, quote_id: str, quote: Quote) -> None:
    conn.execute(
        """
        INSERT OR REPLACE INTO quotes (id, quote_no, status, last_updated, document)
        VALUES (?, ?, ?, ?, ?)
        """,
        (
            quote_id,
            quote.quote_no,
            quote.status.value,
            quote.last_updated.isoformat(),
            json.dumps(quote.to_document(), ensure_ascii=False),
        )
    )


class SQLiteQuoteStore:
    """SQLite-backed store; one connection per call, safe across threads."""

    def __init__(self, path: Path, busy_timeout: float = 5.0):
        self.path = Path(path)
        self.busy_timeout = busy_timeout
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

    def _connect(self) -> sqlite3.Connection:
        # autocommit mode; transactions are opened explicitly
        return sqlite3.connect(str(self.path), timeout=self.busy_timeout, isolation_level=None)

    def _init_database(self) -> None:
        try:
            with closing(self._connect()) as conn:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS counters (
                        year TEXT PRIMARY KEY,
                        seq INTEGER NOT NULL
                    )
                """)
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS quotes (
                        id TEXT PRIMARY KEY,
                        quote_no TEXT,
                        status TEXT NOT NULL,
                        last_updated TEXT NOT NULL,
                        document TEXT NOT NULL
                    )
                """)
                conn.execute("""
                    CREATE INDEX IF NOT EXISTS idx_quotes_last_updated
                    ON quotes(last_updated DESC)
                """)
                logger.debug("Quote database initialized", path=str(self.path))
        except sqlite3.Error as e:
            logger.error("Failed to initialize quote database", path=str(self.path), error=str(e))
            raise

    def get(self, quote_id: str) -> Quote:
        with closing(self._connect()) as conn:
            row = conn.execute("SELECT document FROM quotes WHERE id = ?", (quote_id,)).fetchone()
        if row is None:
            raise NotFoundError("quote", quote_id)
        return Quote.model_validate(json.loads(row[0]))

    def put(self, quote_id: str, quote: Quote) -> None:
        with closing(self._connect()) as conn:
            _write_quote(conn, quote_id, quote)

    def list_quotes(self, limit: int = 200) -> List[Quote]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                "SELECT document FROM quotes ORDER BY last_updated DESC LIMIT ?", (limit,)
            ).fetchall()
        return [Quote.model_validate(json.loads(row[0])) for row in rows]

    def counter(self, year: str) -> int:
        with closing(self._connect()) as conn:
            return _SQLiteTransaction(conn).get_counter(year)

    def run_atomic(self, fn: Callable[[StoreTransaction], T]) -> T:
        """
        Run ``fn`` inside a write transaction.

        Raises:
            ConflictError: The database stayed locked past the busy timeout
        """
        with closing(self._connect()) as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as e:
                if "locked" in str(e) or "busy" in str(e):
                    raise ConflictError("quote store", str(e), cause=e) from e
                raise

            try:
                result = fn(_SQLiteTransaction(conn))
                conn.execute("COMMIT")
            except sqlite3.OperationalError as e:
                conn.execute("ROLLBACK")
                if "locked" in str(e) or "busy" in str(e):
                    raise ConflictError("quote store", str(e), cause=e) from e
                raise
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            return result
