"""
SQLite Run Store

Architectural Intent:
- Persistent storage for pipeline runs and their append-only stage-event log
- Fed entirely by the event bus; the coordinator never writes to it directly
- Lets `shipyard status` and the HTTP API answer for runs from earlier processes
- Uses WAL mode for concurrent read/write support

Design Decisions:
- Single database file at configurable path (default: shipyard.db)
- Auto-creates tables on first use
- Thread-safe via sqlite3's check_same_thread=False plus a write lock; event
  handlers run the blocking calls in the default executor
- Timestamps stored as ISO 8601 strings
"""

from __future__ import annotations
import asyncio
import json
import logging
import sqlite3
import threading
from typing import Optional

from shipyard.domain.events.event_base import DomainEvent
from shipyard.domain.events.pipeline_events import (
    ApprovalRequestedEvent,
    RunCancelledEvent,
    RunFailedEvent,
    RunStartedEvent,
    RunSucceededEvent,
    StageCompletedEvent,
    StageStartedEvent,
)
from shipyard.domain.ports.event_bus_port import EventBusPort

logger = logging.getLogger(__name__)


class SQLiteRunStore:
    """Persistent run history using SQLite."""

    def __init__(self, db_path: str = "shipyard.db"):
        self._db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    def connect(self) -> None:
        """Open database connection and create tables."""
        self._conn = sqlite3.connect(
            self._db_path,
            check_same_thread=False,
        )
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.row_factory = sqlite3.Row
        self._create_tables()
        logger.info("SQLite run store connected: %s", self._db_path)

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def subscribe(self, event_bus: EventBusPort) -> None:
        event_bus.subscribe_all(self.handle)

    async def handle(self, event: DomainEvent) -> None:
        await asyncio.get_running_loop().run_in_executor(None, self.record_event, event)

    def _create_tables(self) -> None:
        """Create tables if they don't exist."""
        assert self._conn is not None
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS runs (
                run_id TEXT PRIMARY KEY,
                kind TEXT NOT NULL,
                status TEXT NOT NULL,
                current_stage TEXT DEFAULT '',
                image_ref TEXT DEFAULT '',
                trigger TEXT DEFAULT '{}',
                started_at TEXT,
                ended_at TEXT,
                failure_reason TEXT,
                failure_message TEXT,
                last_successful_stage TEXT,
                approval_request_id TEXT,
                duration_seconds REAL
            );

            CREATE TABLE IF NOT EXISTS stage_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                run_id TEXT NOT NULL REFERENCES runs(run_id),
                stage TEXT NOT NULL,
                outcome TEXT NOT NULL,
                started_at TEXT NOT NULL,
                ended_at TEXT NOT NULL,
                detail TEXT DEFAULT '{}'
            );

            CREATE INDEX IF NOT EXISTS idx_stage_events_run ON stage_events(run_id);
            CREATE INDEX IF NOT EXISTS idx_runs_started ON runs(started_at);
        """)

    # -- Writes --------------------------------------------------------------

    def record_event(self, event: DomainEvent) -> None:
        """Applies one pipeline event to the stored run."""
        assert self._conn is not None
        run_id = event.aggregate_id
        with self._lock:
            if isinstance(event, RunStartedEvent):
                self._conn.execute(
                    """INSERT OR REPLACE INTO runs
                       (run_id, kind, status, image_ref, trigger, started_at)
                       VALUES (?, ?, 'RUNNING', ?, ?, ?)""",
                    (run_id, event.kind, event.image_ref,
                     json.dumps(event.trigger), event.occurred_at),
                )
            elif isinstance(event, StageStartedEvent):
                self._update(run_id, current_stage=event.stage, status="RUNNING")
            elif isinstance(event, ApprovalRequestedEvent):
                self._update(
                    run_id,
                    status="AWAITING_APPROVAL",
                    approval_request_id=event.request_id,
                    image_ref=event.image_ref or None,
                )
            elif isinstance(event, StageCompletedEvent):
                self._conn.execute(
                    """INSERT INTO stage_events
                       (run_id, stage, outcome, started_at, ended_at, detail)
                       VALUES (?, ?, ?, ?, ?, ?)""",
                    (run_id, event.stage, event.outcome, event.started_at,
                     event.ended_at, json.dumps(event.detail, default=str)),
                )
                if event.outcome == "SUCCEEDED":
                    self._update(run_id, last_successful_stage=event.stage)
            elif isinstance(event, RunSucceededEvent):
                self._update(
                    run_id,
                    status="SUCCEEDED",
                    image_ref=event.image_ref or None,
                    ended_at=event.occurred_at,
                    duration_seconds=event.duration_seconds,
                )
            elif isinstance(event, (RunFailedEvent, RunCancelledEvent)):
                self._update(
                    run_id,
                    status="FAILED" if isinstance(event, RunFailedEvent) else "CANCELLED",
                    failure_reason=event.reason,
                    failure_message=event.message,
                    ended_at=event.occurred_at,
                    duration_seconds=event.duration_seconds,
                )
            else:
                return
            self._conn.commit()

    def _update(self, run_id: str, **columns) -> None:
        assert self._conn is not None
        columns = {k: v for k, v in columns.items() if v is not None}
        assignments = ", ".join(f"{name} = ?" for name in columns)
        self._conn.execute(
            f"UPDATE runs SET {assignments} WHERE run_id = ?",
            (*columns.values(), run_id),
        )

    # -- Reads ---------------------------------------------------------------

    def get_run(self, run_id: str) -> Optional[dict]:
        """Get a stored run with its stage events, or None."""
        assert self._conn is not None
        row = self._conn.execute(
            "SELECT * FROM runs WHERE run_id = ?", (run_id,)
        ).fetchone()
        if row is None:
            return None
        run = dict(row)
        run["trigger"] = json.loads(run["trigger"] or "{}")
        run["stage_events"] = self.get_stage_events(run_id)
        return run

    def list_runs(self, limit: int = 50) -> list[dict]:
        """Get the most recent runs, newest first."""
        assert self._conn is not None
        rows = self._conn.execute(
            "SELECT * FROM runs ORDER BY started_at DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [dict(r) for r in rows]

    def get_stage_events(self, run_id: str) -> list[dict]:
        assert self._conn is not None
        rows = self._conn.execute(
            "SELECT * FROM stage_events WHERE run_id = ? ORDER BY id",
            (run_id,),
        ).fetchall()
        events = []
        for r in rows:
            event = dict(r)
            event.pop("id")
            event["detail"] = json.loads(event["detail"] or "{}")
            events.append(event)
        return events
