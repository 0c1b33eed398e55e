"""SQLite persistence layer for tracked sellers and their known items."""

from __future__ import annotations

import contextlib
import logging
import sqlite3
from pathlib import Path
from typing import Iterable, Iterator, List, Optional

from .config import SQLITE_DB_PATH
from .models import MonitorKind, TrackedSeller
from .utils import format_ts, parse_ts, utcnow

logger = logging.getLogger(__name__)


class PersistenceFailed(Exception):
    """Raised when the seller store cannot be read or written."""


class SellerStore:
    """Durable record of tracked sellers, keyed by (seller_handle, kind).

    Every read and every write runs in its own transaction, so readers see
    either the old or the new state, never a mix. Known item ids are only
    ever inserted.
    """

    def __init__(self, path: str = SQLITE_DB_PATH):
        self.path = path

    def _get_connection(self) -> sqlite3.Connection:
        parent = Path(self.path).parent
        if str(parent) not in ("", "."):
            parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.path, timeout=30, isolation_level=None)
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _open(self) -> sqlite3.Connection:
        try:
            return self._get_connection()
        except (sqlite3.Error, OSError) as e:
            raise PersistenceFailed(f"Cannot open seller store {self.path}: {e}") from e

    @contextlib.contextmanager
    def _transaction(self, write: bool = True) -> Iterator[sqlite3.Connection]:
        conn = self._open()
        try:
            # reads also run in a transaction so they see one snapshot
            conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
            yield conn
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise PersistenceFailed(f"Seller store error: {e}") from e
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def init_db(self) -> None:
        """Create tables if they don't exist."""
        conn = self._open()
        try:
            # WAL lets a reader keep its snapshot while a writer commits
            conn.execute("PRAGMA journal_mode=WAL")
        except sqlite3.Error as e:
            raise PersistenceFailed(f"Seller store error: {e}") from e
        finally:
            conn.close()
        with self._transaction() as conn:
            conn.execute("""
              CREATE TABLE IF NOT EXISTS sellers (
                seller_handle    TEXT NOT NULL,
                kind             TEXT NOT NULL,
                store_identifier TEXT NOT NULL,
                last_checked_at  TEXT,
                added_at         TEXT NOT NULL,
                PRIMARY KEY (seller_handle, kind)
              )
            """)
            conn.execute("""
              CREATE TABLE IF NOT EXISTS known_items (
                seller_handle TEXT NOT NULL,
                kind          TEXT NOT NULL,
                item_id       TEXT NOT NULL,
                first_seen    TEXT NOT NULL,
                PRIMARY KEY (seller_handle, kind, item_id),
                FOREIGN KEY (seller_handle, kind)
                  REFERENCES sellers (seller_handle, kind) ON DELETE CASCADE
              )
            """)
            conn.execute("""
              CREATE TABLE IF NOT EXISTS notify_failures (
                seller_handle TEXT NOT NULL,
                kind          TEXT NOT NULL,
                item_id       TEXT NOT NULL,
                failures      INTEGER NOT NULL,
                PRIMARY KEY (seller_handle, kind, item_id),
                FOREIGN KEY (seller_handle, kind)
                  REFERENCES sellers (seller_handle, kind) ON DELETE CASCADE
              )
            """)

    # ---- reads ---------------------------------------------------------------

    def _hydrate(self, conn: sqlite3.Connection, rows) -> List[TrackedSeller]:
        sellers: List[TrackedSeller] = []
        for handle, kind, store, last_checked, added in rows:
            known = {
                r[0]
                for r in conn.execute(
                    "SELECT item_id FROM known_items WHERE seller_handle = ? AND kind = ?",
                    (handle, kind),
                )
            }
            failures = {
                r[0]: int(r[1])
                for r in conn.execute(
                    "SELECT item_id, failures FROM notify_failures WHERE seller_handle = ? AND kind = ?",
                    (handle, kind),
                )
            }
            sellers.append(
                TrackedSeller(
                    store_identifier=store,
                    seller_handle=handle,
                    kind=MonitorKind(kind),
                    known_item_ids=known,
                    last_checked_at=parse_ts(last_checked),
                    added_at=parse_ts(added) or utcnow(),
                    notify_failures=failures,
                )
            )
        return sellers

    def load_sellers(self, kind: Optional[MonitorKind] = None) -> List[TrackedSeller]:
        """Return all tracked sellers (optionally one kind), oldest first."""
        sql = "SELECT seller_handle, kind, store_identifier, last_checked_at, added_at FROM sellers"
        params: tuple = ()
        if kind is not None:
            sql += " WHERE kind = ?"
            params = (MonitorKind.parse(kind).value,)
        sql += " ORDER BY added_at, seller_handle"
        with self._transaction(write=False) as conn:
            return self._hydrate(conn, conn.execute(sql, params).fetchall())

    def get_seller(self, seller_handle: str, kind: MonitorKind) -> Optional[TrackedSeller]:
        with self._transaction(write=False) as conn:
            rows = conn.execute(
                """
                SELECT seller_handle, kind, store_identifier, last_checked_at, added_at
                FROM sellers WHERE seller_handle = ? AND kind = ?
                """,
                (seller_handle, MonitorKind.parse(kind).value),
            ).fetchall()
            found = self._hydrate(conn, rows)
        return found[0] if found else None

    # ---- writes --------------------------------------------------------------

    @staticmethod
    def _validate(sellers: Iterable[TrackedSeller]) -> List[TrackedSeller]:
        seen = set()
        out = list(sellers)
        for s in out:
            if not isinstance(s, TrackedSeller):
                raise PersistenceFailed(f"Not a TrackedSeller: {s!r}")
            if not (s.seller_handle or "").strip() or not (s.store_identifier or "").strip():
                raise PersistenceFailed(f"Seller record is missing store or handle: {s!r}")
            if not isinstance(s.kind, MonitorKind):
                raise PersistenceFailed(f"Seller {s.seller_handle} has invalid kind {s.kind!r}")
            if s.key in seen:
                raise PersistenceFailed(
                    f"Duplicate seller {s.seller_handle} for {s.kind.value} monitoring"
                )
            seen.add(s.key)
        return out

    def _insert(self, conn: sqlite3.Connection, seller: TrackedSeller) -> None:
        conn.execute(
            """
            INSERT INTO sellers (seller_handle, kind, store_identifier, last_checked_at, added_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                seller.seller_handle,
                seller.kind.value,
                seller.store_identifier,
                format_ts(seller.last_checked_at),
                format_ts(seller.added_at) or format_ts(utcnow()),
            ),
        )
        self._write_items(conn, seller)

    def _write_items(self, conn: sqlite3.Connection, seller: TrackedSeller) -> None:
        now = utcnow().isoformat()
        key = (seller.seller_handle, seller.kind.value)
        conn.executemany(
            """
            INSERT OR IGNORE INTO known_items (seller_handle, kind, item_id, first_seen)
            VALUES (?, ?, ?, ?)
            """,
            [(*key, str(iid), now) for iid in seller.known_item_ids],
        )
        conn.execute(
            "DELETE FROM notify_failures WHERE seller_handle = ? AND kind = ?", key
        )
        conn.executemany(
            """
            INSERT INTO notify_failures (seller_handle, kind, item_id, failures)
            VALUES (?, ?, ?, ?)
            """,
            [(*key, str(iid), int(n)) for iid, n in seller.notify_failures.items() if n > 0],
        )

    def save_sellers(self, sellers: Iterable[TrackedSeller]) -> None:
        """Replace the whole collection.

        The collection is validated before anything is written; on any
        failure PersistenceFailed is raised and the previous state is kept.
        """
        valid = self._validate(sellers)
        with self._transaction() as conn:
            conn.execute("DELETE FROM sellers")
            for s in valid:
                self._insert(conn, s)
        logger.debug("Saved %d seller(s)", len(valid))

    def add_seller(self, seller: TrackedSeller) -> bool:
        """Insert a new seller. Returns False if (handle, kind) already exists."""
        self._validate([seller])
        try:
            with self._transaction() as conn:
                self._insert(conn, seller)
        except PersistenceFailed as e:
            if isinstance(e.__cause__, sqlite3.IntegrityError):
                return False
            raise
        return True

    def remove_seller(self, seller_handle: str, kind: MonitorKind) -> bool:
        with self._transaction() as conn:
            cur = conn.execute(
                "DELETE FROM sellers WHERE seller_handle = ? AND kind = ?",
                (seller_handle, MonitorKind.parse(kind).value),
            )
            return cur.rowcount > 0

    def update_seller(self, seller: TrackedSeller) -> bool:
        """Write back one seller's check time and item state.

        Returns False without writing if the seller was removed meanwhile.
        """
        self._validate([seller])
        with self._transaction() as conn:
            cur = conn.execute(
                """
                UPDATE sellers
                   SET store_identifier = ?,
                       last_checked_at = ?
                 WHERE seller_handle = ? AND kind = ?
                """,
                (
                    seller.store_identifier,
                    format_ts(seller.last_checked_at),
                    seller.seller_handle,
                    seller.kind.value,
                ),
            )
            if cur.rowcount == 0:
                return False
            self._write_items(conn, seller)
        return True


__all__ = ["SellerStore", "PersistenceFailed"]
