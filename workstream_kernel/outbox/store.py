"""
Outbox Store — append-only work event log that doubles as the side-effect outbox.

Every mutation the command layer performs produces one WorkEvent.

Behavioral Contract:
- Append-only. Events are never deleted and their payload is never rewritten.
- The only later changes are the processed stamp and the retry bookkeeping.
- Pending events are returned oldest first, so dispatch preserves write order.
- Queryable by entity, by pending/due status and by exhausted retries.
"""

import sqlite3
from datetime import datetime
from typing import List, Optional

from workstream_kernel.clock import as_utc, utcnow
from workstream_kernel.errors import NotFoundError
from workstream_kernel.models.events import WorkEvent


def _ts(value: Optional[datetime]) -> Optional[str]:
    return as_utc(value).isoformat() if value else None


class OutboxStore:
    """
    Work event outbox.
    Prototype: SQLite. Production: the workstream database's outbox table.
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self) -> None:
        """Create the work_events table if it doesn't exist."""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS work_events (
                event_id INTEGER PRIMARY KEY AUTOINCREMENT,
                org_id INTEGER NOT NULL,
                entity_type TEXT NOT NULL,
                entity_id INTEGER NOT NULL,
                event_name TEXT NOT NULL,
                created_utc TEXT NOT NULL,
                processed_at TEXT,
                retry_count INTEGER NOT NULL DEFAULT 0,
                next_retry_at TEXT,
                error_message TEXT,
                parked INTEGER NOT NULL DEFAULT 0,
                event_json TEXT NOT NULL
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_work_events_entity
            ON work_events(entity_type, entity_id)
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_work_events_pending
            ON work_events(processed_at, next_retry_at)
        """)
        self._conn.commit()

    def append(self, event: WorkEvent) -> WorkEvent:
        """Append an event; returns it with the assigned event_id."""
        cursor = self._conn.execute(
            """
            INSERT INTO work_events (
                org_id, entity_type, entity_id, event_name, created_utc,
                processed_at, retry_count, next_retry_at, error_message, event_json
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.org_id,
                event.entity_type.value,
                event.entity_id,
                event.event_name.value,
                _ts(event.created_utc),
                _ts(event.processed_at),
                event.retry_count,
                _ts(event.next_retry_at),
                event.error_message,
                event.model_dump_json(),
            ),
        )
        self._conn.commit()
        return event.model_copy(update={"event_id": cursor.lastrowid})

    def _deserialize(self, row: sqlite3.Row) -> WorkEvent:
        """Rebuild a WorkEvent from the stored payload plus the mutable columns."""
        event = WorkEvent.model_validate_json(row["event_json"])
        return event.model_copy(update={
            "event_id": row["event_id"],
            "processed_at": datetime.fromisoformat(row["processed_at"]) if row["processed_at"] else None,
            "retry_count": row["retry_count"],
            "next_retry_at": datetime.fromisoformat(row["next_retry_at"]) if row["next_retry_at"] else None,
            "error_message": row["error_message"],
        })

    def get(self, event_id: int) -> Optional[WorkEvent]:
        """Get a specific event by ID."""
        row = self._conn.execute(
            "SELECT * FROM work_events WHERE event_id = ?", (event_id,)
        ).fetchone()
        return self._deserialize(row) if row else None

    def pending(self, now: Optional[datetime] = None, limit: int = 100) -> List[WorkEvent]:
        """Unprocessed events that are due now, oldest first."""
        now = now or utcnow()
        rows = self._conn.execute(
            "SELECT * FROM work_events WHERE processed_at IS NULL AND parked = 0 "
            "AND (next_retry_at IS NULL OR next_retry_at <= ?) "
            "ORDER BY event_id LIMIT ?",
            (_ts(now), limit),
        ).fetchall()
        return [self._deserialize(r) for r in rows]

    def mark_processed(self, event_id: int, processed_at: Optional[datetime] = None) -> WorkEvent:
        """Stamp an event as handled. Clears any pending retry."""
        self._conn.execute(
            "UPDATE work_events SET processed_at = ?, next_retry_at = NULL WHERE event_id = ?",
            (_ts(processed_at or utcnow()), event_id),
        )
        self._conn.commit()
        return self._require(event_id)

    def record_failure(
        self,
        event_id: int,
        error_message: str,
        next_retry_at: Optional[datetime],
    ) -> WorkEvent:
        """
        Record one failed attempt.

        ``next_retry_at=None`` leaves the event parked: it stays unprocessed
        but is no longer due, which is how exhausted events are held.
        """
        current = self._require(event_id)
        self._conn.execute(
            "UPDATE work_events SET retry_count = ?, next_retry_at = ?, error_message = ?, "
            "parked = ? WHERE event_id = ?",
            (
                current.retry_count + 1,
                _ts(next_retry_at),
                error_message,
                int(next_retry_at is None),
                event_id,
            ),
        )
        self._conn.commit()
        return self._require(event_id)

    def query_by_entity(self, entity_type: str, entity_id: int) -> List[WorkEvent]:
        """All events recorded for one entity, in write order."""
        rows = self._conn.execute(
            "SELECT * FROM work_events WHERE entity_type = ? AND entity_id = ? ORDER BY event_id",
            (str(getattr(entity_type, "value", entity_type)), entity_id),
        ).fetchall()
        return [self._deserialize(r) for r in rows]

    def exhausted(self, max_retries: int) -> List[WorkEvent]:
        """Unprocessed events that used up their retry budget."""
        rows = self._conn.execute(
            "SELECT * FROM work_events WHERE processed_at IS NULL AND retry_count >= ? "
            "ORDER BY event_id",
            (max_retries,),
        ).fetchall()
        return [self._deserialize(r) for r in rows]

    def query_recent(self, limit: int = 50) -> List[WorkEvent]:
        """The most recent events, oldest of them first."""
        rows = self._conn.execute(
            "SELECT * FROM work_events ORDER BY event_id DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [self._deserialize(r) for r in reversed(rows)]

    def count(self, pending_only: bool = False) -> int:
        """Total number of events, or of unprocessed ones."""
        sql = "SELECT COUNT(*) as cnt FROM work_events"
        if pending_only:
            sql += " WHERE processed_at IS NULL"
        return self._conn.execute(sql).fetchone()["cnt"]

    def _require(self, event_id: int) -> WorkEvent:
        event = self.get(event_id)
        if event is None:
            raise NotFoundError("work_event", event_id)
        return event

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
