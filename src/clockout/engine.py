"""Shift engine: the only regular writer of the shift record.

Pure decision logic over an injected store, clock and notifier. Every
public method takes an optional ``now`` (epoch seconds) so tests can pin
time; when omitted the injected clock is read.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from zoneinfo import ZoneInfo

from .notifier import (
    END_NOTIFICATION_ID,
    NOTIFICATION_IDS,
    OVERTIME_NOTIFICATION_ID,
    NotificationScheduler,
    NullNotifier,
)
from .shift import (
    AUTO_CLEANUP_HOURS,
    EMPTY_RECORD,
    FULL_DAY_HOURS,
    HALF_DAY_HOURS,
    OVERTIME_REMINDER_SECONDS,
    REFERENCE_TZ,
    Clock,
    DerivedShiftView,
    ShiftConfiguration,
    ShiftRecord,
    ShiftState,
    clear_record,
    display_hours,
    format_clock_time,
    normalize_to_today,
    read_record,
    roll_forward_one_day,
    system_clock,
    today_string,
    write_record,
)
from .store import Store, StoreError

logger = logging.getLogger("clockout.engine")

AUTO_CLEANUP_SECONDS = AUTO_CLEANUP_HOURS * 3600


class ShiftEvent(Enum):
    STARTED = "started"
    ROLLED_TO_TOMORROW = "rolled_to_tomorrow"
    ENDED = "ended"
    DAY_ROLLOVER = "day_rollover"
    AUTO_CLEANUP = "auto_cleanup"
    STALE_CLEARED = "stale_cleared"
    ADOPTED = "adopted"
    DATE_MISSING = "date_missing"
    CLEARED_ELSEWHERE = "cleared_elsewhere"


@dataclass
class TransitionResult:
    events: list[ShiftEvent] = field(default_factory=list)
    old_state: ShiftState | None = None
    new_state: ShiftState | None = None

    @property
    def changed(self) -> bool:
        return bool(self.events)


class ShiftEngine:
    """Owns the Idle -> Active -> Overtime -> Idle state machine.

    In-memory state is authoritative for this process. Store and notifier
    failures are logged and never undo a transition.
    """

    def __init__(
        self,
        store: Store,
        notifier: NotificationScheduler | None = None,
        clock: Clock = system_clock,
        tz: ZoneInfo = REFERENCE_TZ,
        now: float | None = None,
    ):
        self._store = store
        self._notifier: NotificationScheduler = notifier or NullNotifier()
        self._clock = clock
        self._tz = tz
        self._lock = threading.RLock()
        self._working: bool = False
        self._end_epoch_seconds: float = 0.0
        self._start_timestamp: datetime | None = None
        self._data_cleared: bool = False
        self._cleared_record: ShiftRecord | None = None
        # Revision of the last record this engine read or wrote
        self._revision: int | None = None
        self._load_result = self.load(now)

    # ---- Read-only properties ----

    @property
    def is_working(self) -> bool:
        return self._working

    @property
    def end_epoch_seconds(self) -> float:
        return self._end_epoch_seconds

    @property
    def start_timestamp(self) -> datetime | None:
        return self._start_timestamp

    @property
    def load_result(self) -> TransitionResult:
        """What the constructor-time load did."""
        return self._load_result

    @property
    def tz(self) -> ZoneInfo:
        return self._tz

    @property
    def data_cleared(self) -> bool:
        """One-shot advisory: stale data from an earlier day was wiped."""
        return self._data_cleared

    @property
    def cleared_record(self) -> ShiftRecord | None:
        """The stale record behind ``data_cleared``, if any."""
        return self._cleared_record

    def acknowledge_data_cleared(self) -> None:
        self._data_cleared = False
        self._cleared_record = None

    @property
    def notification_permission_granted(self) -> bool:
        try:
            return bool(self._notifier.is_permission_granted())
        except Exception as e:
            logger.warning(f"Permission check failed: {e}")
            return False

    async def request_notification_permission(self) -> bool:
        try:
            return bool(await self._notifier.request_permission())
        except Exception as e:
            logger.warning(f"Permission request failed: {e}")
            return False

    # ---- Transitions ----

    def load(self, now: float | None = None) -> TransitionResult:
        """Adopt the stored shift if it is still valid today, else wipe it."""
        now = self._now(now)
        try:
            record = read_record(self._store)
        except StoreError as e:
            logger.error(f"Could not read shift record, starting idle: {e}")
            record = EMPTY_RECORD

        with self._lock:
            result = TransitionResult(old_state=self.state(now))
            self._revision = record.revision
            if record.is_valid_for_today(now, self._tz):
                self._take_over(record)
                logger.info(f"Resumed shift ending at {self.formatted_end_time}")
            else:
                self._reset_memory()
                if record.has_residue:
                    logger.info(
                        f"Clearing stale shift record (date={record.work_date}, "
                        f"end={record.end_epoch_seconds:.0f})"
                    )
                    self._clear_store(record.revision, guarded=True)
                    self._cancel_notifications()
                    self._data_cleared = True
                    self._cleared_record = record
                    result.events.append(ShiftEvent.STALE_CLEARED)
            result.new_state = self.state(now)
            return result

    def start(self, config: ShiftConfiguration, now: float | None = None) -> TransitionResult:
        """Start a shift at the configured time of day.

        A start whose end would already be in the past moves to tomorrow. The
        work date stays today's date either way.
        """
        now = self._now(now)
        with self._lock:
            result = TransitionResult(old_state=self.state(now))
            duration = config.duration_seconds
            start = normalize_to_today(config.selected_start_time, now, self._tz)
            end = start.timestamp() + duration
            if end <= now:
                start = roll_forward_one_day(start)
                end = start.timestamp() + duration
                result.events.append(ShiftEvent.ROLLED_TO_TOMORROW)

            self._working = True
            self._start_timestamp = start
            self._end_epoch_seconds = end
            written = self._persist(ShiftRecord(
                end_epoch_seconds=end,
                start_timestamp=start,
                work_date=today_string(now, self._tz),
            ))
            if written is not None:
                self._revision = written.revision
            self._schedule_notifications(end)

            logger.info(f"Shift started: {self.current_work_info_summary}")
            result.events.append(ShiftEvent.STARTED)
            result.new_state = self.state(now)
            return result

    def end(self, now: float | None = None) -> TransitionResult:
        """End the shift. Does nothing when already idle."""
        now = self._now(now)
        with self._lock:
            if not self._working:
                return TransitionResult(old_state=ShiftState.IDLE, new_state=ShiftState.IDLE)
            return self._end_shift(now, [])

    def validate(self, now: float | None = None) -> TransitionResult:
        """Foreground check against the store.

        Picks up a shift another process started or replaced, drops one it
        ended, and ends shifts from another day or long past their end.
        """
        now = self._now(now)
        with self._lock:
            try:
                record = read_record(self._store)
            except StoreError as e:
                logger.error(f"Could not read shift record, skipping store checks: {e}")
                record = None

            if (
                record is not None
                and record.revision != self._revision
                and record.is_valid_for_today(now, self._tz)
            ):
                return self._adopt(record, now)

            if not self._working:
                return TransitionResult(old_state=ShiftState.IDLE, new_state=ShiftState.IDLE)

            if record is not None:
                if not record.has_shift:
                    logger.info("Shift record was cleared by another process")
                    return self._drop_shift(now, record)
                if record.work_date is None:
                    logger.info("Stored shift has no work date, ending shift")
                    return self._end_shift(now, [ShiftEvent.DATE_MISSING])
                if record.work_date != today_string(now, self._tz):
                    logger.info(f"Work date {record.work_date} is not today, ending shift")
                    return self._end_shift(now, [ShiftEvent.DAY_ROLLOVER])

            if self._end_epoch_seconds > 0 and now > self._end_epoch_seconds + AUTO_CLEANUP_SECONDS:
                logger.info(f"Overtime exceeded {AUTO_CLEANUP_HOURS}h, ending shift automatically")
                return self._end_shift(now, [ShiftEvent.AUTO_CLEANUP])

            state = self.state(now)
            return TransitionResult(old_state=state, new_state=state)

    # ---- Derived values ----

    def state(self, now: float | None = None) -> ShiftState:
        if not self._working:
            return ShiftState.IDLE
        if self._now(now) > self._end_epoch_seconds:
            return ShiftState.OVERTIME
        return ShiftState.ACTIVE

    def progress(self, now: float | None = None) -> float:
        """Elapsed share of the shift, clamped to [0, 1]."""
        if not self._working or self._start_timestamp is None:
            return 0.0
        now = self._now(now)
        end = self._end_epoch_seconds
        if now >= end:
            return 1.0
        start = self._start_timestamp.timestamp()
        total = end - start
        if total <= 0:
            return 0.0
        return max(0.0, min(1.0, (now - start) / total))

    def is_overtime(self, now: float | None = None) -> bool:
        if not self._working:
            return False
        return self._now(now) > self._end_epoch_seconds

    def remaining_seconds(self, now: float | None = None) -> float:
        """Seconds left until the end, or seconds past it while in overtime."""
        if not self._working:
            return 0.0
        return abs(self._end_epoch_seconds - self._now(now))

    def view(self, now: float | None = None) -> DerivedShiftView:
        now = self._now(now)
        return DerivedShiftView(
            state=self.state(now),
            progress=self.progress(now),
            is_overtime=self.is_overtime(now),
            remaining_seconds=self.remaining_seconds(now),
        )

    @property
    def formatted_end_time(self) -> str:
        if self._end_epoch_seconds <= 0:
            return ""
        return format_clock_time(self._end_epoch_seconds, self._tz)

    @property
    def current_work_info_summary(self) -> str:
        if not self._working or self._start_timestamp is None:
            return ""
        start = self._start_timestamp.timestamp()
        hours = display_hours(self._end_epoch_seconds - start)
        return f"{format_clock_time(start, self._tz)} ~ {self.formatted_end_time} ({hours}h)"

    def preview_end_time(self, config: ShiftConfiguration, now: float | None = None) -> str:
        """End time the current picker selection would produce, before rollover."""
        start = normalize_to_today(config.selected_start_time, self._now(now), self._tz)
        return format_clock_time(start.timestamp() + config.duration_seconds, self._tz)

    @staticmethod
    def work_hours_text(config: ShiftConfiguration) -> str:
        return f"{HALF_DAY_HOURS if config.is_half_day else FULL_DAY_HOURS}h"

    # ---- Serialization ----

    def to_export_dict(self, now: float | None = None) -> dict[str, Any]:
        """CamelCase dict for API and JSON export."""
        view = self.view(now)
        return {
            "state": view.state.value,
            "isWorking": self._working,
            "progress": view.progress,
            "isOvertime": view.is_overtime,
            "remainingSeconds": round(view.remaining_seconds),
            "startTime": self._start_timestamp.isoformat() if self._start_timestamp else None,
            "endTime": self._end_epoch_seconds,
            "formattedEndTime": self.formatted_end_time,
            "summary": self.current_work_info_summary,
            "notificationPermissionGranted": self.notification_permission_granted,
            "dataCleared": self._data_cleared,
        }

    # ---- Internal ----

    def _now(self, now: float | None) -> float:
        return self._clock() if now is None else now

    def _reset_memory(self) -> None:
        self._working = False
        self._end_epoch_seconds = 0.0
        self._start_timestamp = None

    def _take_over(self, record: ShiftRecord) -> None:
        self._working = True
        self._end_epoch_seconds = record.end_epoch_seconds
        self._start_timestamp = record.start_timestamp

    def _adopt(self, record: ShiftRecord, now: float) -> TransitionResult:
        result = TransitionResult(old_state=self.state(now), events=[ShiftEvent.ADOPTED])
        self._revision = record.revision
        self._take_over(record)
        self._schedule_notifications(record.end_epoch_seconds)
        logger.info(f"Adopted shift from the store: {self.current_work_info_summary}")
        result.new_state = self.state(now)
        return result

    def _drop_shift(self, now: float, record: ShiftRecord) -> TransitionResult:
        """Go idle without writing: someone else already cleared the store."""
        result = TransitionResult(
            old_state=self.state(now),
            events=[ShiftEvent.CLEARED_ELSEWHERE, ShiftEvent.ENDED],
        )
        self._revision = record.revision
        self._reset_memory()
        self._cancel_notifications()
        result.new_state = ShiftState.IDLE
        return result

    def _end_shift(self, now: float, reasons: list[ShiftEvent]) -> TransitionResult:
        result = TransitionResult(old_state=self.state(now), events=list(reasons))
        self._reset_memory()
        self._clear_store()
        self._cancel_notifications()
        logger.info("Shift ended")
        result.events.append(ShiftEvent.ENDED)
        result.new_state = ShiftState.IDLE
        return result

    def _persist(self, record: ShiftRecord) -> ShiftRecord | None:
        try:
            return write_record(self._store, record)
        except StoreError as e:
            logger.error(f"Failed to save shift, keeping in-memory state: {e}")
            return None

    def _clear_store(self, expected_revision: int | None = None, guarded: bool = False) -> None:
        try:
            if not clear_record(self._store, expected_revision, guarded=guarded):
                logger.info("Shift record changed since it was read, leaving it alone")
        except StoreError as e:
            logger.error(f"Failed to clear shift record: {e}")

    def _schedule_notifications(self, end: float) -> None:
        self._cancel_notifications()
        if not self.notification_permission_granted:
            logger.info("Notifications not permitted, skipping reminders")
            return
        self._dispatch(END_NOTIFICATION_ID, end, {
            "type": "workEnd",
            "title": "Time to clock out",
            "body": "Shift is over. Nice work today.",
            "endTime": end,
        })
        self._dispatch(OVERTIME_NOTIFICATION_ID, end + OVERTIME_REMINDER_SECONDS, {
            "type": "overtime",
            "title": "Still working",
            "body": "You are 30 minutes past the end of your shift.",
        })

    def _dispatch(self, notification_id: str, fire_at: float, payload: dict[str, Any]) -> None:
        try:
            self._notifier.schedule(notification_id, fire_at, payload)
        except Exception as e:
            logger.warning(f"Failed to schedule {notification_id}: {e}")

    def _cancel_notifications(self) -> None:
        try:
            self._notifier.cancel(list(NOTIFICATION_IDS))
        except Exception as e:
            logger.warning(f"Failed to cancel notifications: {e}")
