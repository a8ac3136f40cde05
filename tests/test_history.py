"""Tests for the shift_events audit trail."""

import pytest
import pytest_asyncio

from clockout import history
from clockout.engine import ShiftEvent, TransitionResult
from clockout.shift import ShiftState


@pytest_asyncio.fixture
async def db_path(tmp_path):
    path = tmp_path / "shift.db"
    await history.init_tables(path)
    return path


@pytest.mark.asyncio
async def test_init_tables_is_idempotent(db_path):
    await history.init_tables(db_path)
    assert await history.recent_events(db_path) == []


@pytest.mark.asyncio
async def test_log_event_and_read_back(db_path):
    await history.log_event(db_path, "started", source="cli", details={"start_time": "09:00"})

    events = await history.recent_events(db_path)

    assert len(events) == 1
    assert events[0]["event_type"] == "started"
    assert events[0]["source"] == "cli"
    assert events[0]["details"] == {"start_time": "09:00"}


@pytest.mark.asyncio
async def test_record_transition_writes_one_row_per_event(db_path):
    result = TransitionResult(
        events=[ShiftEvent.AUTO_CLEANUP, ShiftEvent.ENDED],
        old_state=ShiftState.OVERTIME,
        new_state=ShiftState.IDLE,
    )

    written = await history.record_transition(db_path, result, "scheduler")

    assert written == 2
    events = await history.recent_events(db_path)
    assert [e["event_type"] for e in events] == ["ended", "auto_cleanup"]
    assert events[0]["details"] == {"old_state": "overtime", "new_state": "idle"}


@pytest.mark.asyncio
async def test_recent_events_limit(db_path):
    for i in range(5):
        await history.log_event(db_path, f"event_{i}")

    events = await history.recent_events(db_path, limit=2)

    assert [e["event_type"] for e in events] == ["event_4", "event_3"]


@pytest.mark.asyncio
async def test_record_transition_without_table_is_best_effort(tmp_path):
    result = TransitionResult(events=[ShiftEvent.STARTED])
    assert await history.record_transition(tmp_path / "fresh.db", result, "api") == 0
