"""
SQLite database connection and schema management.
"""

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

class Database:
    """SQLite database connection manager."""

    def __init__(self, db_path: str):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file, or ":memory:" for in-memory DB.
        """
        self.db_path = db_path
        self._connection: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._in_transaction = False
        self._connect()

    def _connect(self) -> None:
        """Establish database connection."""
        if self.db_path != ":memory:":
            # Ensure parent directory exists
            path = Path(self.db_path)
            path.parent.mkdir(parents=True, exist_ok=True)

        # Scheduler jobs run on APScheduler worker threads
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        self._connection.execute("PRAGMA foreign_keys = ON")

    @property
    def connection(self) -> sqlite3.Connection:
        """Get the database connection."""
        if self._connection is None:
            raise sqlite3.ProgrammingError("Database connection is closed")
        return self._connection

    def initialize(self) -> None:
        """Create database schema if it doesn't exist."""
        cursor = self.connection.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS stocks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                symbol TEXT NOT NULL UNIQUE,
                name TEXT NOT NULL,
                exchange TEXT NOT NULL DEFAULT 'NSE',
                is_active INTEGER NOT NULL DEFAULT 1
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS price_bars (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                stock_id INTEGER NOT NULL,
                date TEXT NOT NULL,
                open REAL NOT NULL,
                high REAL NOT NULL,
                low REAL NOT NULL,
                close REAL NOT NULL,
                volume INTEGER NOT NULL DEFAULT 0,
                FOREIGN KEY (stock_id) REFERENCES stocks(id) ON DELETE CASCADE,
                UNIQUE (stock_id, date)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS indicator_values (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                stock_id INTEGER NOT NULL,
                indicator_type TEXT NOT NULL,
                period INTEGER NOT NULL,
                value REAL NOT NULL,
                calculation_date TEXT NOT NULL,
                fast_period INTEGER,
                slow_period INTEGER,
                signal_period INTEGER,
                upper_band REAL,
                lower_band REAL,
                std_dev_multiplier REAL,
                FOREIGN KEY (stock_id) REFERENCES stocks(id) ON DELETE CASCADE,
                UNIQUE (stock_id, indicator_type, period, calculation_date)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS alerts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                stock_id INTEGER NOT NULL,
                name TEXT NOT NULL DEFAULT '',
                trigger_type TEXT NOT NULL,
                condition TEXT NOT NULL,
                threshold REAL,
                baseline_price REAL,
                baseline_timestamp TIMESTAMP,
                cooldown_minutes INTEGER,
                last_triggered TIMESTAMP,
                market_hours_only INTEGER NOT NULL DEFAULT 1,
                volume_confirmation INTEGER NOT NULL DEFAULT 0,
                is_active INTEGER NOT NULL DEFAULT 1,
                indicator_type TEXT,
                indicator_period INTEGER,
                compare_indicator_type TEXT,
                compare_indicator_period INTEGER,
                sentiment TEXT,
                secondary_indicator_type TEXT,
                secondary_indicator_period INTEGER,
                secondary_condition TEXT,
                secondary_threshold REAL,
                condition_logic TEXT NOT NULL DEFAULT 'AND',
                created_at TIMESTAMP NOT NULL,
                FOREIGN KEY (stock_id) REFERENCES stocks(id) ON DELETE CASCADE
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS alert_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                alert_id INTEGER NOT NULL,
                user_id INTEGER NOT NULL,
                stock_id INTEGER NOT NULL,
                triggered_at TIMESTAMP NOT NULL,
                trigger_value REAL,
                threshold_value REAL,
                baseline_price REAL,
                price_change REAL,
                price_change_percent REAL,
                trigger_volume INTEGER,
                market_context TEXT,
                message TEXT NOT NULL DEFAULT '',
                FOREIGN KEY (alert_id) REFERENCES alerts(id) ON DELETE CASCADE
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS notification_queue (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                alert_id INTEGER NOT NULL,
                content TEXT NOT NULL,
                notification_method_id INTEGER NOT NULL,
                priority_id INTEGER NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                attempts INTEGER NOT NULL DEFAULT 0,
                max_attempts INTEGER NOT NULL DEFAULT 3,
                scheduled_at TIMESTAMP NOT NULL,
                FOREIGN KEY (alert_id) REFERENCES alerts(id) ON DELETE CASCADE
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS user_preferences (
                user_id INTEGER PRIMARY KEY,
                email_enabled INTEGER NOT NULL DEFAULT 0,
                sms_enabled INTEGER NOT NULL DEFAULT 0,
                push_enabled INTEGER NOT NULL DEFAULT 1
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS news_mentions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                stock_id INTEGER NOT NULL,
                headline TEXT NOT NULL,
                sentiment TEXT,
                published_at TIMESTAMP NOT NULL,
                FOREIGN KEY (stock_id) REFERENCES stocks(id) ON DELETE CASCADE
            )
        """)

        # Create indexes for common queries
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_price_bars_stock_date
            ON price_bars(stock_id, date)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_indicator_values_lookup
            ON indicator_values(stock_id, indicator_type, period, calculation_date)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_alerts_active
            ON alerts(is_active, trigger_type)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_alert_history_alert
            ON alert_history(alert_id, triggered_at)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_news_stock_published
            ON news_mentions(stock_id, published_at)
        """)

        self.connection.commit()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Group repository writes into a single commit.

        Writes made inside the block are rolled back if it raises. Blocks are
        serialized across threads and nest into the outermost one.
        """
        with self._lock:
            if self._in_transaction:
                yield self.connection
                return

            self._in_transaction = True
            try:
                yield self.connection
                self.connection.commit()
            except Exception:
                self.connection.rollback()
                raise
            finally:
                self._in_transaction = False

    def commit(self) -> None:
        """Commit, unless an enclosing transaction() will commit instead."""
        if not self._in_transaction:
            self.connection.commit()

    def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            self._connection.close()
            self._connection = None
