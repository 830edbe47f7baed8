"""
SQLite-backed document store.

Reports are kept as JSON documents next to the two columns the retention
sweeper queries on (status and a numeric copy of lastUpdated). Blocking
sqlite3 calls run in worker threads so the event loop never stalls; each
operation opens its own connection.
"""

import asyncio
import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

from .interfaces import DirectoryStore, ReportStore, StoreError
from .models import Report, ReportStatus, Station, parse_timestamp

logger = logging.getLogger(__name__)


class SQLiteDocumentStore(ReportStore, DirectoryStore):
    """Report store and directory over a single SQLite database file."""

    def __init__(self, db_path: str, timeout_seconds: float = 10.0):
        self.db_path = Path(db_path)
        self.timeout_seconds = timeout_seconds
        if self.db_path.parent and not self.db_path.parent.exists():
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_database()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Open a connection that commits on success and always closes."""
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout_seconds)
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open database {self.db_path}: {e}") from e
        try:
            with conn:
                yield conn
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        finally:
            conn.close()

    def _initialize_database(self) -> None:
        """Create tables and indexes if they do not exist."""
        with self._connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS reports (
                    id TEXT PRIMARY KEY,
                    status TEXT NOT NULL,
                    last_updated TEXT NOT NULL,
                    last_updated_ts REAL NOT NULL,
                    document TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_reports_status_updated
                ON reports (status, last_updated_ts)
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS stations (
                    id TEXT PRIMARY KEY,
                    name TEXT,
                    ocs_email TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS subscribers (
                    email TEXT PRIMARY KEY,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    subscribed_at TEXT NOT NULL
                )
            """)

    # ------------------------------------------------------------------
    # ReportStore
    # ------------------------------------------------------------------
    async def find_reports(self, status: ReportStatus, updated_before: datetime) -> List[Report]:
        return await asyncio.to_thread(self._find_reports, status, updated_before)

    def _find_reports(self, status: ReportStatus, updated_before: datetime) -> List[Report]:
        cutoff_ts = parse_timestamp(updated_before).timestamp()
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT id, document FROM reports WHERE status = ? AND last_updated_ts <= ?",
                (status.value, cutoff_ts)
            ).fetchall()
        return [Report.from_document(row[0], json.loads(row[1])) for row in rows]

    async def delete_reports(self, report_ids: Sequence[str]) -> int:
        if not report_ids:
            return 0
        return await asyncio.to_thread(self._delete_reports, list(report_ids))

    def _delete_reports(self, report_ids: List[str]) -> int:
        # One transaction: any failure rolls the whole batch back
        with self._connection() as conn:
            cursor = conn.executemany(
                "DELETE FROM reports WHERE id = ?",
                [(report_id,) for report_id in report_ids]
            )
            removed = cursor.rowcount
        logger.debug(f"Deleted {removed} of {len(report_ids)} requested reports")
        return removed

    async def get_report(self, report_id: str) -> Optional[Report]:
        return await asyncio.to_thread(self._get_report, report_id)

    def _get_report(self, report_id: str) -> Optional[Report]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT document FROM reports WHERE id = ?", (report_id,)
            ).fetchone()
        if row is None:
            return None
        return Report.from_document(report_id, json.loads(row[0]))

    async def put_report(self, report: Report) -> None:
        await asyncio.to_thread(self._put_report, report)

    def _put_report(self, report: Report) -> None:
        with self._connection() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO reports (id, status, last_updated, last_updated_ts, document)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    report.id,
                    report.status.value,
                    report.last_updated,
                    report.last_updated_at.timestamp(),
                    json.dumps(report.to_document()),
                )
            )

    # ------------------------------------------------------------------
    # DirectoryStore
    # ------------------------------------------------------------------
    async def get_station(self, station_id: str) -> Optional[Station]:
        return await asyncio.to_thread(self._get_station, station_id)

    def _get_station(self, station_id: str) -> Optional[Station]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT id, name, ocs_email FROM stations WHERE id = ?", (station_id,)
            ).fetchone()
        if row is None:
            return None
        return Station(id=row[0], name=row[1], ocs_email=row[2])

    async def list_active_subscribers(self) -> List[str]:
        return await asyncio.to_thread(self._list_active_subscribers)

    def _list_active_subscribers(self) -> List[str]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT email FROM subscribers WHERE is_active = 1 ORDER BY subscribed_at"
            ).fetchall()
        return [row[0] for row in rows]

    # ------------------------------------------------------------------
    # Seeding helpers
    # ------------------------------------------------------------------
    def add_station(self, station: Station) -> None:
        with self._connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO stations (id, name, ocs_email) VALUES (?, ?, ?)",
                (station.id, station.name, station.ocs_email)
            )

    def add_subscriber(self, email: str, active: bool = True) -> None:
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO subscribers (email, is_active, subscribed_at) VALUES (?, ?, ?)
                ON CONFLICT(email) DO UPDATE SET is_active = excluded.is_active
                """,
                (email, 1 if active else 0, datetime.now(timezone.utc).isoformat())
            )

    def set_subscriber_active(self, email: str, active: bool) -> bool:
        """Toggle a subscriber; returns False when the address is unknown."""
        with self._connection() as conn:
            cursor = conn.execute(
                "UPDATE subscribers SET is_active = ? WHERE email = ?",
                (1 if active else 0, email)
            )
            return cursor.rowcount > 0
