import os
import sqlite3
from contextlib import closing
from datetime import datetime, timezone
from typing import Optional


class RelayLogger:
    """Simple SQLite-based log of relay attempts.

    Pass ``db_path=None`` (or an empty string) to get a logger that only
    keeps the row count in memory.
    """

    def __init__(self, db_path: Optional[str] = "relay.db") -> None:
        self.count = 0
        self.conn = None
        if db_path:
            parent = os.path.dirname(db_path)
            if parent:
                os.makedirs(parent, exist_ok=True)
            # The relay runs on the event loop, the serial I/O in worker threads.
            self.conn = sqlite3.connect(db_path, check_same_thread=False)
            self._create_table()

    def _create_table(self) -> None:
        with closing(self.conn.cursor()) as cur:
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS relays (
                    timestamp TEXT,
                    transport TEXT,
                    status TEXT,
                    angle INTEGER,
                    direction INTEGER,
                    speed INTEGER,
                    latency REAL,
                    error TEXT
                )
                """
            )
            self.conn.commit()

    def log(
        self,
        transport: str,
        status: str,
        angle: Optional[int] = None,
        direction: Optional[int] = None,
        speed: Optional[int] = None,
        latency: Optional[float] = None,
        error: Optional[str] = None,
    ) -> None:
        """Insert a new relay row into the database."""
        self.count += 1
        if self.conn is None:
            return
        with closing(self.conn.cursor()) as cur:
            cur.execute(
                """
                INSERT INTO relays
                    (timestamp, transport, status, angle, direction, speed, latency, error)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    datetime.now(timezone.utc).isoformat(),
                    transport,
                    status,
                    angle,
                    direction,
                    speed,
                    latency,
                    error,
                ),
            )
            self.conn.commit()

    def recent(self, limit: int = 20) -> list[dict]:
        """Return the latest ``limit`` rows, newest first."""
        if self.conn is None:
            return []
        with closing(self.conn.cursor()) as cur:
            cur.execute(
                "SELECT timestamp, transport, status, angle, direction, speed, latency, error "
                "FROM relays ORDER BY rowid DESC LIMIT ?",
                (limit,),
            )
            cols = [c[0] for c in cur.description]
            return [dict(zip(cols, row)) for row in cur.fetchall()]

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None
