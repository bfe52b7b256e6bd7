import sqlite3
import threading
from pathlib import Path
from typing import List, Tuple

from roundbid.utils.logger import get_logger

logger = get_logger("storage.sqlite")


class SQLiteAdapter:
    """
    SQLite backend for persistent storage.

    Provides:
    1. Auctions, participants and the append-only bid log.
    2. Claim events (claims and forfeits) of completed auctions.
    3. Notification acknowledgements and named counters.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._conn_local = threading.local()

        if not db_path.parent.exists():
            db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_schema()

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create connection for current thread."""
        if not hasattr(self._conn_local, "conn"):
            self._conn_local.conn = sqlite3.connect(
                self.db_path,
                timeout=30.0,
                check_same_thread=False
            )
            self._conn_local.conn.row_factory = sqlite3.Row
            self._conn_local.conn.execute("PRAGMA journal_mode=WAL;")
            self._conn_local.conn.execute("PRAGMA synchronous=NORMAL;")
        return self._conn_local.conn

    def close(self):
        """Close the current thread's connection."""
        conn = getattr(self._conn_local, "conn", None)
        if conn is not None:
            conn.close()
            del self._conn_local.conn

    def _init_schema(self):
        """Initialize database schema."""
        conn = self._get_conn()
        with conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS auctions (
                    auction_id TEXT PRIMARY KEY,
                    code TEXT UNIQUE NOT NULL,
                    name TEXT NOT NULL,
                    start_time REAL NOT NULL,
                    prize_value INTEGER NOT NULL,
                    entry_fee INTEGER NOT NULL,
                    round_length INTEGER NOT NULL,
                    total_rounds INTEGER NOT NULL,
                    cancelled_at REAL,
                    cancelled_by TEXT
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS participants (
                    auction_id TEXT NOT NULL,
                    participant_id TEXT NOT NULL,
                    display_name TEXT NOT NULL,
                    paid_at REAL,
                    payment_ref TEXT,
                    PRIMARY KEY (auction_id, participant_id)
                )
            """)

            # Append-only; the primary key is the one-bid-per-round rule
            conn.execute("""
                CREATE TABLE IF NOT EXISTS bids (
                    auction_id TEXT NOT NULL,
                    participant_id TEXT NOT NULL,
                    round_number INTEGER NOT NULL,
                    amount INTEGER NOT NULL,
                    submitted_at REAL NOT NULL,
                    seq INTEGER NOT NULL,
                    PRIMARY KEY (auction_id, participant_id, round_number)
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_bids_round ON bids(auction_id, round_number);")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS claim_events (
                    auction_id TEXT NOT NULL,
                    rank INTEGER NOT NULL,
                    kind TEXT NOT NULL,
                    at REAL NOT NULL,
                    payment_ref TEXT,
                    PRIMARY KEY (auction_id, rank)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS notifications (
                    auction_id TEXT NOT NULL,
                    rank INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    participant_id TEXT NOT NULL,
                    notified_at REAL NOT NULL,
                    PRIMARY KEY (auction_id, rank, status)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS counters (
                    name TEXT PRIMARY KEY,
                    seq INTEGER NOT NULL
                )
            """)

    # =========================================================================
    # Auctions
    # =========================================================================

    def insert_auction(self, row: Tuple):
        conn = self._get_conn()
        with conn:
            conn.execute(
                "INSERT INTO auctions (auction_id, code, name, start_time, prize_value, entry_fee, "
                "round_length, total_rounds, cancelled_at, cancelled_by) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                row
            )

    def set_cancelled(self, auction_id: str, cancelled_at: float, cancelled_by: str):
        conn = self._get_conn()
        with conn:
            conn.execute(
                "UPDATE auctions SET cancelled_at = ?, cancelled_by = ? WHERE auction_id = ?",
                (cancelled_at, cancelled_by, auction_id)
            )

    def get_all_auctions(self) -> List[sqlite3.Row]:
        conn = self._get_conn()
        cursor = conn.execute("SELECT * FROM auctions ORDER BY start_time ASC")
        return cursor.fetchall()

    # =========================================================================
    # Participants & Bids
    # =========================================================================

    def upsert_participant(self, row: Tuple):
        conn = self._get_conn()
        with conn:
            conn.execute(
                "INSERT OR REPLACE INTO participants "
                "(auction_id, participant_id, display_name, paid_at, payment_ref) VALUES (?, ?, ?, ?, ?)",
                row
            )

    def get_all_participants(self) -> List[sqlite3.Row]:
        conn = self._get_conn()
        cursor = conn.execute("SELECT * FROM participants")
        return cursor.fetchall()

    def insert_bid(self, row: Tuple) -> bool:
        """Append a bid. Returns False if the (auction, participant, round) key exists."""
        conn = self._get_conn()
        try:
            with conn:
                conn.execute(
                    "INSERT INTO bids (auction_id, participant_id, round_number, amount, submitted_at, seq) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    row
                )
        except sqlite3.IntegrityError:
            return False
        return True

    def get_all_bids(self) -> List[sqlite3.Row]:
        """All bids in ingestion order."""
        conn = self._get_conn()
        cursor = conn.execute("SELECT * FROM bids ORDER BY seq ASC")
        return cursor.fetchall()

    # =========================================================================
    # Claims & Notifications
    # =========================================================================

    def insert_claim_event(self, row: Tuple) -> bool:
        conn = self._get_conn()
        try:
            with conn:
                conn.execute(
                    "INSERT INTO claim_events (auction_id, rank, kind, at, payment_ref) VALUES (?, ?, ?, ?, ?)",
                    row
                )
        except sqlite3.IntegrityError:
            return False
        return True

    def get_all_claim_events(self) -> List[sqlite3.Row]:
        conn = self._get_conn()
        cursor = conn.execute("SELECT * FROM claim_events ORDER BY auction_id, rank")
        return cursor.fetchall()

    def insert_notification(self, row: Tuple):
        conn = self._get_conn()
        with conn:
            conn.execute(
                "INSERT OR IGNORE INTO notifications (auction_id, rank, status, participant_id, notified_at) "
                "VALUES (?, ?, ?, ?, ?)",
                row
            )

    def get_notification_keys(self) -> List[Tuple[str, int, str]]:
        conn = self._get_conn()
        cursor = conn.execute("SELECT auction_id, rank, status FROM notifications")
        return [(row['auction_id'], row['rank'], row['status']) for row in cursor]

    # =========================================================================
    # Counters
    # =========================================================================

    def next_counter(self, name: str) -> int:
        """Atomically increment and return a named counter."""
        conn = self._get_conn()
        with conn:
            conn.execute(
                "INSERT INTO counters (name, seq) VALUES (?, 1) "
                "ON CONFLICT(name) DO UPDATE SET seq = seq + 1",
                (name,)
            )
            cursor = conn.execute("SELECT seq FROM counters WHERE name = ?", (name,))
            return cursor.fetchone()['seq']
