"""Audit trail of shift transitions, kept next to the store in the same DB."""

import json
import logging
from pathlib import Path
from typing import Optional

import aiosqlite

from .engine import TransitionResult

logger = logging.getLogger("clockout.history")


async def init_tables(db_path: Path) -> None:
    """Create the events table."""
    async with aiosqlite.connect(db_path) as db:
        await db.execute("""
            CREATE TABLE IF NOT EXISTS shift_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                event_type TEXT NOT NULL,
                source TEXT NOT NULL,
                details TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_shift_events_time ON shift_events(created_at DESC)"
        )
        await db.commit()


async def log_event(db_path: Path, event_type: str, source: str = "api", details: Optional[dict] = None):
    """Log an event to the shift_events table."""
    async with aiosqlite.connect(db_path) as db:
        await db.execute(
            """INSERT INTO shift_events (event_type, source, details)
               VALUES (?, ?, ?)""",
            (event_type, source, json.dumps(details) if details else None),
        )
        await db.commit()


async def record_transition(db_path: Path, result: TransitionResult, source: str, details: Optional[dict] = None) -> int:
    """Write one row per event in ``result``. History is best-effort."""
    written = 0
    for event in result.events:
        try:
            await log_event(db_path, event.value, source=source, details={
                "old_state": result.old_state.value if result.old_state else None,
                "new_state": result.new_state.value if result.new_state else None,
                **(details or {}),
            })
            written += 1
        except (aiosqlite.Error, OSError) as e:
            logger.warning(f"Failed to record {event.value}: {e}")
    return written


async def recent_events(db_path: Path, limit: int = 20) -> list[dict]:
    """Most recent events first."""
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            """SELECT id, event_type, source, details, created_at
               FROM shift_events ORDER BY id DESC LIMIT ?""",
            (limit,),
        )
        rows = await cursor.fetchall()

    events = []
    for row in rows:
        event = dict(row)
        event["details"] = json.loads(event["details"]) if event["details"] else None
        events.append(event)
    return events
