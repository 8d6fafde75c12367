"""
SQLite-backed durable store.

Owns sales, price tiers, post records, rate-limit timestamps and the
scheduler state. Every sqlite3 failure surfaces as StoreError.
"""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Any

from ..core.exceptions import StoreError
from ..core.interfaces import (
    PostRecord,
    PriceTier,
    SaleEvent,
    SchedulerState,
    SchedulerStatus,
    TransactionCategory,
)

logger = logging.getLogger(__name__)

SCHEDULER_STATUS_KEY = "scheduler_status"
SCHEDULER_CURSOR_KEY = "last_processed_block"
SCHEDULER_ERRORS_KEY = "scheduler_consecutive_errors"
SCHEDULER_LAST_RUN_KEY = "scheduler_last_run_at"
SCHEDULER_LAST_RESULT_KEY = "scheduler_last_result"

# (min_usd, max_usd, min_eth, description) per level
DEFAULT_TIER_BANDS = [
    (0.0, 10_000.0, 0.1, "Grey border tier"),
    (10_000.0, 40_000.0, 0.5, "Blue border tier"),
    (40_000.0, 100_000.0, 1.0, "Purple border tier"),
    (100_000.0, None, 5.0, "Red border tier (premium)"),
]


def default_tiers(category: TransactionCategory) -> List[PriceTier]:
    """Built-in tier set used to seed an empty database."""
    return [
        PriceTier(
            category=category,
            level=level,
            min_usd=min_usd,
            max_usd=max_usd,
            min_eth=min_eth,
            description=f"{category.value.capitalize()} {description}",
        )
        for level, (min_usd, max_usd, min_eth, description) in enumerate(DEFAULT_TIER_BANDS, start=1)
    ]


class SalesStore:
    """Durable store for the sales pipeline."""

    def __init__(self, path: str = "ens_sales.sqlite3"):
        self.path = path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    # ---- connection ----

    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            try:
                self._conn = sqlite3.connect(self.path, check_same_thread=False)
                self._conn.row_factory = sqlite3.Row
                self._init(self._conn)
            except sqlite3.Error as e:
                self._conn = None
                raise StoreError(f"Cannot open database {self.path}: {e}") from e
            logger.info(f"Database ready at {self.path}")
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    @contextmanager
    def _op(self, write: bool = False) -> Iterator[sqlite3.Connection]:
        """Run one operation; commit on write, map sqlite errors to StoreError."""
        with self._lock:
            conn = self.conn()
            try:
                yield conn
                if write:
                    conn.commit()
            except sqlite3.Error as e:
                if write:
                    conn.rollback()
                raise StoreError(str(e)) from e

    def _init(self, conn: sqlite3.Connection) -> None:
        c = conn.cursor()
        c.execute("""CREATE TABLE IF NOT EXISTS sales (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            transaction_hash TEXT NOT NULL UNIQUE,
            block_number INTEGER NOT NULL,
            price_eth REAL NOT NULL,
            price_usd REAL,
            buyer_address TEXT NOT NULL,
            seller_address TEXT NOT NULL,
            name TEXT NOT NULL,
            contract_address TEXT,
            token_id TEXT,
            marketplace TEXT,
            block_timestamp TEXT,
            processed_at REAL NOT NULL DEFAULT (strftime('%s','now')),
            posted INTEGER NOT NULL DEFAULT 0,
            tweet_id TEXT
        )""")
        c.execute("""CREATE TABLE IF NOT EXISTS price_tiers (
            category TEXT NOT NULL,
            level INTEGER NOT NULL,
            min_usd REAL NOT NULL,
            max_usd REAL,
            min_eth REAL NOT NULL,
            description TEXT,
            PRIMARY KEY (category, level)
        )""")
        c.execute("""CREATE TABLE IF NOT EXISTS post_records (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            sale_id INTEGER,
            success INTEGER NOT NULL,
            tweet_id TEXT,
            error_message TEXT,
            content TEXT,
            posted_at REAL NOT NULL
        )""")
        # successful posts only; pruned lazily by the rate limiter
        c.execute("""CREATE TABLE IF NOT EXISTS post_timestamps (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            posted_at REAL NOT NULL
        )""")
        c.execute("CREATE INDEX IF NOT EXISTS idx_post_timestamps_posted_at ON post_timestamps(posted_at)")
        c.execute("CREATE INDEX IF NOT EXISTS idx_sales_block ON sales(block_number)")
        c.execute("""CREATE TABLE IF NOT EXISTS system_state (
            key TEXT PRIMARY KEY,
            value TEXT
        )""")
        conn.commit()

        for category in TransactionCategory:
            row = c.execute("SELECT COUNT(*) FROM price_tiers WHERE category=?", (category.value,)).fetchone()
            if row[0] == 0:
                self._write_tiers(conn, category, default_tiers(category))
        conn.commit()

    # ---- sales ----

    @staticmethod
    def _row_to_sale(row: sqlite3.Row) -> SaleEvent:
        return SaleEvent(
            id=row["id"],
            transaction_hash=row["transaction_hash"],
            block_number=row["block_number"],
            price_eth=row["price_eth"],
            price_usd=row["price_usd"],
            buyer_address=row["buyer_address"],
            seller_address=row["seller_address"],
            name=row["name"],
            contract_address=row["contract_address"] or "",
            token_id=row["token_id"] or "",
            marketplace=row["marketplace"] or "",
            block_timestamp=row["block_timestamp"],
            posted=bool(row["posted"]),
            tweet_id=row["tweet_id"],
        )

    def is_sale_known(self, transaction_hash: str) -> bool:
        with self._op() as conn:
            cur = conn.execute("SELECT 1 FROM sales WHERE transaction_hash=?", (transaction_hash,))
            return cur.fetchone() is not None

    def insert_sale(self, sale: SaleEvent) -> Optional[SaleEvent]:
        """Store a sale. Returns the stored copy, or None if the hash already exists."""
        with self._op(write=True) as conn:
            cur = conn.execute(
                """INSERT OR IGNORE INTO sales(
                    transaction_hash, block_number, price_eth, price_usd,
                    buyer_address, seller_address, name, contract_address,
                    token_id, marketplace, block_timestamp
                ) VALUES (?,?,?,?,?,?,?,?,?,?,?)""",
                (
                    sale.transaction_hash, sale.block_number, sale.price_eth, sale.price_usd,
                    sale.buyer_address, sale.seller_address, sale.name, sale.contract_address,
                    sale.token_id, sale.marketplace, sale.block_timestamp,
                ),
            )
            if cur.rowcount == 0:
                return None
            sale_id = cur.lastrowid
        return self.get_sale(sale_id)

    def get_sale(self, sale_id: int) -> Optional[SaleEvent]:
        with self._op() as conn:
            row = conn.execute("SELECT * FROM sales WHERE id=?", (sale_id,)).fetchone()
        return self._row_to_sale(row) if row else None

    def get_recent_sales(self, limit: int = 50) -> List[SaleEvent]:
        with self._op() as conn:
            rows = conn.execute(
                "SELECT * FROM sales ORDER BY block_number DESC, id DESC LIMIT ?", (limit,)
            ).fetchall()
        return [self._row_to_sale(r) for r in rows]

    def get_unposted_sales(self, limit: int = 50) -> List[SaleEvent]:
        with self._op() as conn:
            rows = conn.execute(
                "SELECT * FROM sales WHERE posted=0 ORDER BY block_number ASC, id ASC LIMIT ?", (limit,)
            ).fetchall()
        return [self._row_to_sale(r) for r in rows]

    def mark_sale_posted(self, sale_id: int, tweet_id: str) -> None:
        with self._op(write=True) as conn:
            conn.execute("UPDATE sales SET posted=1, tweet_id=? WHERE id=?", (tweet_id, sale_id))

    # ---- price tiers ----

    @staticmethod
    def _write_tiers(conn: sqlite3.Connection, category: TransactionCategory, tiers: List[PriceTier]) -> None:
        conn.execute("DELETE FROM price_tiers WHERE category=?", (category.value,))
        conn.executemany(
            "INSERT INTO price_tiers(category, level, min_usd, max_usd, min_eth, description) VALUES (?,?,?,?,?,?)",
            [(category.value, t.level, t.min_usd, t.max_usd, t.min_eth, t.description) for t in tiers],
        )

    def get_tiers(self, category: Optional[TransactionCategory] = None) -> List[PriceTier]:
        query = "SELECT * FROM price_tiers"
        params: tuple = ()
        if category is not None:
            query += " WHERE category=?"
            params = (category.value,)
        query += " ORDER BY category, level ASC"

        with self._op() as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            PriceTier(
                category=TransactionCategory(r["category"]),
                level=r["level"],
                min_usd=r["min_usd"],
                max_usd=r["max_usd"],
                min_eth=r["min_eth"],
                description=r["description"] or "",
            )
            for r in rows
        ]

    def replace_tiers(self, category: TransactionCategory, tiers: List[PriceTier]) -> None:
        """Atomically replace the tier set of one category."""
        with self._op(write=True) as conn:
            self._write_tiers(conn, category, tiers)
        logger.info(f"Updated {category.value} price tiers ({len(tiers)} bands)")

    # ---- post records ----

    def record_post(self, record: PostRecord) -> int:
        with self._op(write=True) as conn:
            cur = conn.execute(
                """INSERT INTO post_records(sale_id, success, tweet_id, error_message, content, posted_at)
                   VALUES (?,?,?,?,?,?)""",
                (record.sale_id, int(record.success), record.tweet_id,
                 record.error_message, record.content, record.posted_at),
            )
            record.id = cur.lastrowid
        return record.id

    def get_post_history(self, limit: int = 50) -> List[PostRecord]:
        with self._op() as conn:
            rows = conn.execute(
                "SELECT * FROM post_records ORDER BY posted_at DESC, id DESC LIMIT ?", (limit,)
            ).fetchall()
        return [
            PostRecord(
                id=r["id"],
                sale_id=r["sale_id"],
                success=bool(r["success"]),
                tweet_id=r["tweet_id"],
                error_message=r["error_message"],
                content=r["content"] or "",
                posted_at=r["posted_at"],
            )
            for r in rows
        ]

    def reset_posts(self) -> int:
        """Delete all post records and rate-limit timestamps."""
        with self._op(write=True) as conn:
            deleted = conn.execute("DELETE FROM post_records").rowcount
            conn.execute("DELETE FROM post_timestamps")
        logger.warning(f"Post history reset ({deleted} records deleted)")
        return deleted

    # ---- rate-limit timestamps ----

    def add_post_timestamp(self, posted_at: float) -> None:
        with self._op(write=True) as conn:
            conn.execute("INSERT INTO post_timestamps(posted_at) VALUES (?)", (posted_at,))

    def prune_post_timestamps(self, before: float) -> int:
        with self._op(write=True) as conn:
            return conn.execute("DELETE FROM post_timestamps WHERE posted_at < ?", (before,)).rowcount

    def post_timestamps_between(self, start: float, end: float) -> List[float]:
        with self._op() as conn:
            rows = conn.execute(
                "SELECT posted_at FROM post_timestamps WHERE posted_at >= ? AND posted_at <= ? ORDER BY posted_at ASC",
                (start, end),
            ).fetchall()
        return [r[0] for r in rows]

    # ---- system state ----

    def get_state(self, key: str) -> Optional[str]:
        with self._op() as conn:
            row = conn.execute("SELECT value FROM system_state WHERE key=?", (key,)).fetchone()
        return row[0] if row else None

    def set_state(self, key: str, value: str) -> None:
        with self._op(write=True) as conn:
            conn.execute("INSERT OR REPLACE INTO system_state(key, value) VALUES (?,?)", (key, value))

    def load_scheduler_state(self) -> SchedulerState:
        status = self.get_state(SCHEDULER_STATUS_KEY)
        cursor = self.get_state(SCHEDULER_CURSOR_KEY)
        errors = self.get_state(SCHEDULER_ERRORS_KEY)
        last_run = self.get_state(SCHEDULER_LAST_RUN_KEY)
        last_result = self.get_state(SCHEDULER_LAST_RESULT_KEY)

        try:
            parsed_status = SchedulerStatus(status) if status else SchedulerStatus.STOPPED
        except ValueError:
            logger.warning(f"Unknown persisted scheduler status {status!r}, treating as stopped")
            parsed_status = SchedulerStatus.STOPPED

        return SchedulerState(
            status=parsed_status,
            cursor=int(cursor) if cursor else 0,
            consecutive_errors=int(errors) if errors else 0,
            last_run_at=float(last_run) if last_run else None,
            last_result=json.loads(last_result) if last_result else None,
        )

    def save_scheduler_state(self, state: SchedulerState) -> None:
        values = {
            SCHEDULER_STATUS_KEY: state.status.value,
            SCHEDULER_CURSOR_KEY: str(state.cursor),
            SCHEDULER_ERRORS_KEY: str(state.consecutive_errors),
            SCHEDULER_LAST_RUN_KEY: "" if state.last_run_at is None else str(state.last_run_at),
            SCHEDULER_LAST_RESULT_KEY: "" if state.last_result is None else json.dumps(state.last_result),
        }
        with self._op(write=True) as conn:
            conn.executemany(
                "INSERT OR REPLACE INTO system_state(key, value) VALUES (?,?)",
                list(values.items()),
            )

    # ---- stats ----

    def get_stats(self) -> Dict[str, Any]:
        with self._op() as conn:
            total = conn.execute("SELECT COUNT(*) FROM sales").fetchone()[0]
            posted = conn.execute("SELECT COUNT(*) FROM sales WHERE posted=1").fetchone()[0]
            attempts = conn.execute("SELECT COUNT(*) FROM post_records").fetchone()[0]
            failures = conn.execute("SELECT COUNT(*) FROM post_records WHERE success=0").fetchone()[0]
        return {
            "total_sales": total,
            "posted_sales": posted,
            "unposted_sales": total - posted,
            "post_attempts": attempts,
            "failed_posts": failures,
            "last_processed_block": self.get_state(SCHEDULER_CURSOR_KEY),
        }
