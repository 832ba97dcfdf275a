"""SQLite status store.

One connection per store, used from a single event loop. Every write is
an upsert keyed by record id (or batch id), so the bounded-concurrency
orchestrator never contends on a row.
"""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator, Optional

from ..schemas.enums import BatchLifecycle, ProcessingStage, ProcessingStatus
from ..schemas.records import SourceRecord

SCHEMA = """
CREATE TABLE IF NOT EXISTS records (
    record_id TEXT PRIMARY KEY,
    display_name TEXT,
    source_url TEXT,
    industry TEXT,
    created_at TEXT,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS processing_status (
    record_id TEXT PRIMARY KEY,
    download_status TEXT DEFAULT 'pending',
    download_message TEXT,
    extraction_status TEXT DEFAULT 'pending',
    extraction_message TEXT,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS batches (
    batch_id TEXT PRIMARY KEY,
    status TEXT DEFAULT 'in_progress',
    message TEXT,
    created_at TEXT,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS batch_members (
    batch_id TEXT NOT NULL,
    record_id TEXT NOT NULL,
    display_name TEXT,
    source_url TEXT,
    industry TEXT,
    expected_shape TEXT DEFAULT 'json',
    PRIMARY KEY (batch_id, record_id)
);
"""

# Batch rows in these states still need polling
ACTIVE_BATCH_STATES = (BatchLifecycle.IN_PROGRESS.value, BatchLifecycle.CREATED.value, BatchLifecycle.CANCELING.value)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _status_columns(stage: ProcessingStage) -> tuple[str, str]:
    stage = ProcessingStage(stage)
    return f"{stage.value}_status", f"{stage.value}_message"


class StatusStore:
    """Processing status and batch bookkeeping in SQLite."""

    def __init__(self, db_path: str | Path = ":memory:", logger=None):
        """
        Args:
            db_path: SQLite file path, or ":memory:" for tests
            logger: Optional logger instance
        """
        self.db_path = str(db_path)
        self.logger = logger or logging.getLogger(__name__)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.executescript(SCHEMA)
        self.conn.commit()

    @contextmanager
    def _cursor(self) -> Generator[sqlite3.Cursor, None, None]:
        """Cursor that commits on success and rolls back on error."""
        cursor = self.conn.cursor()
        try:
            yield cursor
            self.conn.commit()
        except sqlite3.Error:
            self.conn.rollback()
            raise
        finally:
            cursor.close()

    def close(self) -> None:
        self.conn.close()

    # ------------------------------------------------------------------
    # Records and status
    # ------------------------------------------------------------------

    def upsert_record(self, source: SourceRecord) -> None:
        now = _now()
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO records (record_id, display_name, source_url, industry, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(record_id) DO UPDATE SET
                    display_name = excluded.display_name,
                    source_url = excluded.source_url,
                    industry = excluded.industry,
                    updated_at = excluded.updated_at
                """,
                (source.id, source.display_name, source.source_url, source.industry_tag, now, now),
            )

    def upsert_status(
        self,
        record_id: str,
        stage: ProcessingStage,
        status: ProcessingStatus,
        message: Optional[str] = None,
    ) -> None:
        """Set one stage's status for a record, creating the status row on first touch."""
        status_col, message_col = _status_columns(stage)
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                INSERT INTO processing_status (record_id, {status_col}, {message_col}, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(record_id) DO UPDATE SET
                    {status_col} = excluded.{status_col},
                    {message_col} = excluded.{message_col},
                    updated_at = excluded.updated_at
                """,
                (record_id, ProcessingStatus(status).value, message, _now()),
            )

    def get_status(self, record_id: str) -> Optional[dict]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM processing_status WHERE record_id = ?", (record_id,))
            row = cursor.fetchone()
        return dict(row) if row else None

    def get_all_statuses(self) -> list[dict]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT s.*, r.display_name, r.source_url, r.industry
                FROM processing_status s
                LEFT JOIN records r ON r.record_id = s.record_id
                ORDER BY s.record_id
                """
            )
            return [dict(row) for row in cursor.fetchall()]

    def reset_status(
        self,
        record_id: Optional[str] = None,
        stage: ProcessingStage = ProcessingStage.EXTRACTION,
    ) -> int:
        """
        Reset a stage back to pending for one record, or for all records.

        Returns:
            Number of status rows reset
        """
        status_col, message_col = _status_columns(stage)
        sql = f"UPDATE processing_status SET {status_col} = ?, {message_col} = NULL, updated_at = ?"
        params: list[Any] = [ProcessingStatus.PENDING.value, _now()]
        if record_id:
            sql += " WHERE record_id = ?"
            params.append(record_id)
        with self._cursor() as cursor:
            cursor.execute(sql, params)
            count = cursor.rowcount
        self.logger.info(f"Reset {stage.value if isinstance(stage, ProcessingStage) else stage} status for {record_id or 'all records'} ({count} rows)")
        return count

    def should_process(self, record_id: str, stage: ProcessingStage = ProcessingStage.EXTRACTION) -> bool:
        """
        Decide whether a record still needs work for a stage.

        Complete and skipped records are done. An in-progress record that
        belongs to an active batch is left to the batch monitor. Anything else
        (no row, pending, failed, stale in_progress) is processed.
        """
        status_col, _ = _status_columns(stage)
        with self._cursor() as cursor:
            cursor.execute(f"SELECT {status_col} AS status FROM processing_status WHERE record_id = ?", (record_id,))
            row = cursor.fetchone()
            if not row or not row["status"]:
                return True
            status = row["status"]
            if status in (ProcessingStatus.COMPLETE.value, ProcessingStatus.SKIPPED.value):
                return False
            if status == ProcessingStatus.IN_PROGRESS.value:
                placeholders = ",".join("?" for _ in ACTIVE_BATCH_STATES)
                cursor.execute(
                    f"""
                    SELECT 1 FROM batch_members m JOIN batches b ON b.batch_id = m.batch_id
                    WHERE m.record_id = ? AND b.status IN ({placeholders})
                    """,
                    (record_id, *ACTIVE_BATCH_STATES),
                )
                return cursor.fetchone() is None
        return True

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    def store_batch(self, batch_id: str, members: list[dict], created_at: Optional[str] = None) -> None:
        """
        Record a submitted batch and its members.

        Args:
            members: dicts with record_id, display_name, source_url, industry, expected_shape
        """
        now = _now()
        with self._cursor() as cursor:
            cursor.execute(
                "INSERT OR REPLACE INTO batches (batch_id, status, created_at, updated_at) VALUES (?, ?, ?, ?)",
                (batch_id, BatchLifecycle.IN_PROGRESS.value, created_at or now, now),
            )
            cursor.executemany(
                """
                INSERT OR REPLACE INTO batch_members
                    (batch_id, record_id, display_name, source_url, industry, expected_shape)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        batch_id,
                        m["record_id"],
                        m.get("display_name"),
                        m.get("source_url"),
                        m.get("industry"),
                        m.get("expected_shape", "json"),
                    )
                    for m in members
                ],
            )

    def update_batch_status(self, batch_id: str, status: str, message: Optional[str] = None) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                "UPDATE batches SET status = ?, message = ?, updated_at = ? WHERE batch_id = ?",
                (status, message, _now(), batch_id),
            )

    def get_batch(self, batch_id: str) -> Optional[dict]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM batches WHERE batch_id = ?", (batch_id,))
            row = cursor.fetchone()
        return dict(row) if row else None

    def get_batch_members(self, batch_id: str) -> list[dict]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM batch_members WHERE batch_id = ? ORDER BY record_id", (batch_id,))
            return [dict(row) for row in cursor.fetchall()]

    def get_active_batches(self) -> list[dict]:
        placeholders = ",".join("?" for _ in ACTIVE_BATCH_STATES)
        with self._cursor() as cursor:
            cursor.execute(
                f"SELECT * FROM batches WHERE status IN ({placeholders}) ORDER BY created_at",
                ACTIVE_BATCH_STATES,
            )
            return [dict(row) for row in cursor.fetchall()]
