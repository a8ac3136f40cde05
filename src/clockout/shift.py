"""Shift data model, store codec, and day/time helpers.

All instants are float epoch seconds. Only the calendar day and the time of
day are read in the reference timezone.
"""

from __future__ import annotations

import logging
import math
import re
import time
from dataclasses import dataclass, replace
from datetime import datetime, time as dt_time, timedelta, timezone
from enum import Enum
from typing import Any, Callable

from zoneinfo import ZoneInfo

from .store import REMOVE, Store, StoreError

logger = logging.getLogger("clockout.shift")

REFERENCE_TZ_NAME = "Asia/Seoul"
REFERENCE_TZ = ZoneInfo(REFERENCE_TZ_NAME)

# Store keys shared by the app and the widget
WORK_END_TIME_KEY = "workEndTime"
WORK_START_TIME_KEY = "workStartTime"
WORK_DATE_KEY = "workDate"
WORK_REVISION_KEY = "workRevision"

FULL_DAY_HOURS = 8
HALF_DAY_HOURS = 4
LUNCH_BREAK_HOURS = 1
AUTO_CLEANUP_HOURS = 4
OVERTIME_REMINDER_SECONDS = 30 * 60

_SWAP_ATTEMPTS = 3

Clock = Callable[[], float]


def system_clock() -> float:
    return time.time()


class ShiftState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    OVERTIME = "overtime"


@dataclass(frozen=True)
class ShiftConfiguration:
    """What the user picked before pressing start. Never persisted."""

    selected_start_time: datetime | dt_time
    is_half_day: bool = False

    @property
    def duration_seconds(self) -> float:
        return shift_duration_seconds(self.is_half_day)


@dataclass(frozen=True)
class ShiftRecord:
    """Persisted shift. ``end_epoch_seconds <= 0`` means no shift."""

    end_epoch_seconds: float = 0.0
    start_timestamp: datetime | None = None
    work_date: str | None = None
    revision: int | None = None

    @property
    def has_shift(self) -> bool:
        return self.end_epoch_seconds > 0

    @property
    def has_residue(self) -> bool:
        """True if anything at all is left in the store."""
        return self.has_shift or self.start_timestamp is not None or self.work_date is not None

    @property
    def start_epoch_seconds(self) -> float | None:
        if self.start_timestamp is None:
            return None
        return self.start_timestamp.timestamp()

    def is_valid_for_today(self, now: float, tz: ZoneInfo = REFERENCE_TZ) -> bool:
        return (
            self.has_shift
            and self.work_date == today_string(now, tz)
            and self.end_epoch_seconds > now
        )


EMPTY_RECORD = ShiftRecord()


@dataclass(frozen=True)
class DerivedShiftView:
    state: ShiftState
    progress: float
    is_overtime: bool
    remaining_seconds: float


# ---- Day / time helpers ----

def today_string(now: float, tz: ZoneInfo = REFERENCE_TZ) -> str:
    """Calendar date of ``now`` in ``tz`` as YYYY-MM-DD."""
    return datetime.fromtimestamp(now, tz).strftime("%Y-%m-%d")


def shift_duration_seconds(is_half_day: bool) -> float:
    """Stored duration: 4h for a half day, 9h (8 worked + 1 lunch) otherwise."""
    hours = HALF_DAY_HOURS if is_half_day else FULL_DAY_HOURS + LUNCH_BREAK_HOURS
    return float(hours * 3600)


def display_hours(total_seconds: float) -> int:
    """Hours shown to the user. A stored 9h day shows as 8h."""
    total_hours = int(total_seconds / 3600)
    if total_hours == FULL_DAY_HOURS + LUNCH_BREAK_HOURS:
        return FULL_DAY_HOURS
    return total_hours


def normalize_to_today(
    selected: datetime | dt_time, now: float, tz: ZoneInfo = REFERENCE_TZ
) -> datetime:
    """Put the hour and minute of ``selected`` on today's date in ``tz``.

    Aware datetimes are converted to ``tz`` first; naive ones are read as
    wall-clock time in ``tz``. Seconds are dropped.
    """
    if isinstance(selected, datetime) and selected.tzinfo is not None:
        selected = selected.astimezone(tz)
    today = datetime.fromtimestamp(now, tz)
    return datetime(today.year, today.month, today.day, selected.hour, selected.minute, tzinfo=tz)


def roll_forward_one_day(instant: datetime) -> datetime:
    """Same wall-clock time on the next calendar day."""
    next_day = instant.date() + timedelta(days=1)
    return datetime(
        next_day.year, next_day.month, next_day.day,
        instant.hour, instant.minute, instant.second,
        tzinfo=instant.tzinfo,
    )


def format_clock_time(epoch_seconds: float, tz: ZoneInfo = REFERENCE_TZ) -> str:
    return datetime.fromtimestamp(epoch_seconds, tz).strftime("%H:%M")


def format_duration(seconds: float) -> str:
    """Format seconds as H:MM:SS (negative values are shown as their magnitude)."""
    total = int(abs(seconds))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours}:{minutes:02d}:{secs:02d}"


TIME_COLON_PATTERN = re.compile(r"^(?P<hour>\d{1,2}):(?P<minute>\d{2})$")
TIME_DIGITS_PATTERN = re.compile(r"^(?P<digits>\d{1,4})$")


def parse_time(value: str) -> dt_time:
    """Parse a 24h start time like 9, 930, 09:30 or 0930."""
    value = value.strip()
    colon_match = TIME_COLON_PATTERN.match(value)
    if colon_match:
        return _validate_time(int(colon_match.group("hour")), int(colon_match.group("minute")))

    digits_match = TIME_DIGITS_PATTERN.match(value)
    if digits_match:
        digits = digits_match.group("digits")
        if len(digits) <= 2:
            return _validate_time(int(digits), 0)
        if len(digits) == 3:
            return _validate_time(int(digits[0]), int(digits[1:]))
        return _validate_time(int(digits[:2]), int(digits[2:]))

    raise ValueError(f"Unsupported time format '{value}'. Use HH:MM, H:MM, HMM, or HHMM (24h).")


def _validate_time(hour: int, minute: int) -> dt_time:
    if not 0 <= hour <= 23:
        raise ValueError("Hour must be between 0 and 23.")
    if not 0 <= minute <= 59:
        raise ValueError("Minute must be between 0 and 59.")
    return dt_time(hour, minute)


# ---- Store codec ----

def _parse_end(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        end = float(value)
    except (TypeError, ValueError):
        logger.debug(f"Ignoring malformed {WORK_END_TIME_KEY}: {value!r}")
        return 0.0
    return end if math.isfinite(end) else 0.0


def _parse_start(value: Any) -> datetime | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        # Legacy layout stored the start as epoch seconds
        try:
            return datetime.fromtimestamp(value, timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            logger.debug(f"Ignoring malformed {WORK_START_TIME_KEY}: {value!r}")
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_date(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _parse_revision(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def read_record(store: Store) -> ShiftRecord:
    """Read the shift record. Malformed fields read as absent."""
    return ShiftRecord(
        end_epoch_seconds=_parse_end(store.get(WORK_END_TIME_KEY)),
        start_timestamp=_parse_start(store.get(WORK_START_TIME_KEY)),
        work_date=_parse_date(store.get(WORK_DATE_KEY)),
        revision=_parse_revision(store.get(WORK_REVISION_KEY)),
    )


def _swap_with_next_revision(store: Store, updates: dict[str, Any]) -> int:
    for _ in range(_SWAP_ATTEMPTS):
        raw = store.get(WORK_REVISION_KEY)
        next_revision = (_parse_revision(raw) or 0) + 1
        if store.swap_if(WORK_REVISION_KEY, raw, {**updates, WORK_REVISION_KEY: next_revision}):
            return next_revision
    raise StoreError(f"{WORK_REVISION_KEY} kept changing during write")


def write_record(store: Store, record: ShiftRecord) -> ShiftRecord:
    """Write all fields in one swap and return the record with its new revision."""
    updates: dict[str, Any] = {
        WORK_END_TIME_KEY: record.end_epoch_seconds,
        WORK_START_TIME_KEY: (
            record.start_timestamp.isoformat() if record.start_timestamp is not None else REMOVE
        ),
        WORK_DATE_KEY: record.work_date if record.work_date is not None else REMOVE,
    }
    revision = _swap_with_next_revision(store, updates)
    return replace(record, revision=revision)


_CLEARED = {
    WORK_END_TIME_KEY: 0,
    WORK_START_TIME_KEY: REMOVE,
    WORK_DATE_KEY: REMOVE,
}


def clear_record(store: Store, expected_revision: int | None = None, *, guarded: bool = False) -> bool:
    """Zero the shift record.

    Unguarded clears always win. Guarded clears only apply if the revision is
    still ``expected_revision``; they return False when another writer got
    there first.
    """
    if not guarded:
        _swap_with_next_revision(store, dict(_CLEARED))
        return True
    next_revision = (expected_revision or 0) + 1
    return store.swap_if(
        WORK_REVISION_KEY,
        expected_revision,
        {**_CLEARED, WORK_REVISION_KEY: next_revision},
    )
