from __future__ import annotations

import logging
import sqlite3
import threading
import weakref
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from .retry import RetryPolicy, is_busy_error, retry_call


logger = logging.getLogger(__name__)


SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS users (
      user_id TEXT PRIMARY KEY,
      name TEXT NOT NULL,
      cnic TEXT NOT NULL,
      paa TEXT NOT NULL DEFAULT '',
      status TEXT NOT NULL DEFAULT 'Enabled',
      role TEXT NOT NULL DEFAULT 'Bidder'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS auctions (
      auction_id TEXT PRIMARY KEY,
      auction_name TEXT NOT NULL,
      auction_type TEXT NOT NULL DEFAULT 'general',
      auction_date TEXT NOT NULL DEFAULT '',
      start_time TEXT NOT NULL DEFAULT '',
      end_time TEXT NOT NULL DEFAULT '',
      default_bid_timer INTEGER NOT NULL DEFAULT 15,
      status TEXT NOT NULL DEFAULT 'Draft',
      event_description TEXT NOT NULL DEFAULT ''
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS auction_state (
      auction_id TEXT PRIMARY KEY REFERENCES auctions(auction_id) ON DELETE CASCADE,
      status TEXT NOT NULL,
      active_lot_id TEXT,
      bid_ends_at TEXT,
      updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS lots (
      lot_id TEXT PRIMARY KEY,
      lot_name TEXT NOT NULL,
      lot_type TEXT NOT NULL DEFAULT 'general',
      base_price INTEGER NOT NULL DEFAULT 0 CHECK (base_price >= 0),
      assigned_auction TEXT REFERENCES auctions(auction_id) ON DELETE SET NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS items (
      item_no INTEGER PRIMARY KEY
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sub_items (
      item_no INTEGER NOT NULL REFERENCES items(item_no) ON DELETE CASCADE,
      sr_no INTEGER NOT NULL,
      description TEXT NOT NULL DEFAULT '',
      qty INTEGER NOT NULL DEFAULT 0,
      condition TEXT NOT NULL DEFAULT '',
      make TEXT NOT NULL DEFAULT '',
      make_no TEXT NOT NULL DEFAULT '',
      PRIMARY KEY (item_no, sr_no)
    )
    """,
    # A sub-item appears at most once here: one owning lot across the catalog.
    """
    CREATE TABLE IF NOT EXISTS lot_items (
      lot_id TEXT NOT NULL REFERENCES lots(lot_id) ON DELETE CASCADE,
      item_no INTEGER NOT NULL,
      sr_no INTEGER NOT NULL,
      PRIMARY KEY (item_no, sr_no),
      FOREIGN KEY (item_no, sr_no) REFERENCES sub_items(item_no, sr_no) ON DELETE CASCADE
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_lot_items_lot ON lot_items(lot_id)
    """,
    # A lot appears at most once here: one owning auction.
    """
    CREATE TABLE IF NOT EXISTS auction_lots (
      auction_id TEXT NOT NULL REFERENCES auctions(auction_id) ON DELETE CASCADE,
      lot_id TEXT NOT NULL UNIQUE REFERENCES lots(lot_id) ON DELETE CASCADE,
      PRIMARY KEY (auction_id, lot_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS bids (
      bid_id INTEGER PRIMARY KEY AUTOINCREMENT,
      auction_id TEXT NOT NULL REFERENCES auctions(auction_id) ON DELETE CASCADE,
      lot_id TEXT NOT NULL REFERENCES lots(lot_id) ON DELETE CASCADE,
      user_id TEXT NOT NULL REFERENCES users(user_id),
      amount INTEGER NOT NULL CHECK (amount > 0),
      created_at TEXT NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_bids_lot ON bids(auction_id, lot_id, amount DESC, created_at DESC)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_bids_user ON bids(user_id, created_at DESC)
    """,
    """
    CREATE TABLE IF NOT EXISTS lot_winners (
      auction_id TEXT NOT NULL REFERENCES auctions(auction_id) ON DELETE CASCADE,
      lot_id TEXT NOT NULL REFERENCES lots(lot_id) ON DELETE CASCADE,
      user_id TEXT NOT NULL,
      winning_amount INTEGER NOT NULL,
      decided_at TEXT NOT NULL,
      PRIMARY KEY (auction_id, lot_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS notifications (
      notification_id INTEGER PRIMARY KEY AUTOINCREMENT,
      user_id TEXT NOT NULL,
      type TEXT NOT NULL DEFAULT 'system',
      title TEXT NOT NULL DEFAULT '',
      message TEXT NOT NULL DEFAULT '',
      entity_type TEXT,
      entity_id TEXT,
      is_read INTEGER NOT NULL DEFAULT 0,
      created_at TEXT NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications(user_id, created_at DESC)
    """,
)


class _ConnectionHolder:
    """Per-thread slot; dropping it with its thread closes the connection."""

    __slots__ = ("con", "__weakref__")

    def __init__(self, con: sqlite3.Connection) -> None:
        self.con = con


def _release(conns: list, lock: threading.Lock, con: sqlite3.Connection) -> None:
    with lock:
        if con in conns:
            conns.remove(con)
    con.close()


class Storage:
    """Explicit handle on the auction database.

    Opened once at process start and closed at shutdown. Every thread gets its
    own connection; all of them are closed by ``close()``. Units of work go
    through ``transaction()``, which takes SQLite's write lock up front
    (``BEGIN IMMEDIATE``) so read-validate-write sequences are serialized.
    """

    def __init__(
        self,
        db_path: Path,
        busy_timeout_sec: float = 5.0,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        self.db_path = Path(db_path)
        self.busy_timeout_sec = busy_timeout_sec
        self.retry_policy = retry_policy or RetryPolicy()

        self._local = threading.local()
        self._all: list[sqlite3.Connection] = []
        self._all_lock = threading.Lock()

    def open(self) -> "Storage":
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        con = self.connection()
        con.execute("PRAGMA journal_mode = WAL")
        with self.transaction() as tx:
            for stmt in SCHEMA:
                tx.execute(stmt)
        logger.info("Database ready: %s", self.db_path)
        return self

    def close(self) -> None:
        with self._all_lock:
            conns = list(self._all)
            self._all.clear()
        for con in conns:
            con.close()
        self._local = threading.local()

    @property
    def open_connections(self) -> int:
        with self._all_lock:
            return len(self._all)

    def release_connection(self) -> None:
        """Close the calling thread's connection now instead of at thread exit."""
        holder = getattr(self._local, "holder", None)
        if holder is not None:
            del self._local.holder
            _release(self._all, self._all_lock, holder.con)

    def __enter__(self) -> "Storage":
        return self.open()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def connection(self) -> sqlite3.Connection:
        """Return the calling thread's connection, opening it on first use.

        The connection is closed when its thread ends, so short-lived request
        threads do not accumulate open database handles.
        """
        holder = getattr(self._local, "holder", None)
        if holder is None:
            con = sqlite3.connect(
                self.db_path,
                timeout=self.busy_timeout_sec,
                isolation_level=None,
                check_same_thread=False,
            )
            con.row_factory = sqlite3.Row
            con.execute("PRAGMA foreign_keys = ON")
            holder = _ConnectionHolder(con)
            self._local.holder = holder
            with self._all_lock:
                self._all.append(con)
            weakref.finalize(holder, _release, self._all, self._all_lock, con)
        return holder.con

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run one atomic unit of work.

        Commits when the block exits normally and rolls back on any exception.
        A transaction opened inside another one on the same thread joins it.
        """
        con = self.connection()
        if con.in_transaction:
            yield con
            return

        retry_call(lambda: con.execute("BEGIN IMMEDIATE"), self.retry_policy, should_retry=is_busy_error)
        try:
            yield con
        except BaseException:
            # SQLite may already have rolled back on its own (e.g. SQLITE_FULL).
            if con.in_transaction:
                con.execute("ROLLBACK")
            raise
        con.execute("COMMIT")
