"""Widget snapshot: the read path used outside the app process.

The widget shares nothing with a running engine except the store. It applies
the same validity rules as ``ShiftEngine.load`` and may wipe stale data, but
only through a revision-guarded clear so a shift started between its read
and its write survives.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from zoneinfo import ZoneInfo

from .shift import (
    EMPTY_RECORD,
    REFERENCE_TZ,
    Clock,
    clear_record,
    format_clock_time,
    read_record,
    system_clock,
    today_string,
)
from .store import Store, StoreError

logger = logging.getLogger("clockout.widget")

REFRESH_GRACE_SECONDS = 60


class WidgetVariant(str, Enum):
    COUNTING_DOWN = "counting_down"
    JUST_ENDED = "just_ended"
    NOT_WORKING = "not_working"


@dataclass(frozen=True)
class WidgetStatus:
    end_date: float
    is_valid: bool
    revision: int | None = None


@dataclass(frozen=True)
class RefreshPolicy:
    """When the widget should read the store again. ``at=None`` means never."""

    at: float | None

    @property
    def is_never(self) -> bool:
        return self.at is None


@dataclass(frozen=True)
class WidgetSnapshot:
    status: WidgetStatus
    policy: RefreshPolicy
    variant: WidgetVariant
    remaining_seconds: float
    formatted_end_time: str

    def to_export_dict(self) -> dict:
        return {
            "endTime": self.status.end_date,
            "isValid": self.status.is_valid,
            "variant": self.variant.value,
            "remainingSeconds": round(self.remaining_seconds),
            "formattedEndTime": self.formatted_end_time,
            "nextRefreshAt": self.policy.at,
        }


class WidgetSnapshotProvider:
    def __init__(self, store: Store, clock: Clock = system_clock, tz: ZoneInfo = REFERENCE_TZ):
        self._store = store
        self._clock = clock
        self._tz = tz

    def status(self, now: float | None = None) -> WidgetStatus:
        now = self._clock() if now is None else now
        try:
            record = read_record(self._store)
        except StoreError as e:
            logger.error(f"Widget: could not read shift record: {e}")
            record = EMPTY_RECORD

        if record.is_valid_for_today(now, self._tz):
            return WidgetStatus(record.end_epoch_seconds, True, record.revision)

        if record.has_residue:
            try:
                if clear_record(self._store, record.revision, guarded=True):
                    logger.info("Widget: cleared stale shift record")
                    return WidgetStatus(record.end_epoch_seconds, False, (record.revision or 0) + 1)
                logger.info("Widget: shift record changed under us, not clearing")
            except StoreError as e:
                logger.error(f"Widget: failed to clear stale record: {e}")
        return WidgetStatus(record.end_epoch_seconds, False, record.revision)

    @staticmethod
    def next_refresh_policy(status: WidgetStatus) -> RefreshPolicy:
        if status.is_valid:
            return RefreshPolicy(at=status.end_date + REFRESH_GRACE_SECONDS)
        return RefreshPolicy(at=None)

    def variant(self, end_date: float, now: float | None = None) -> WidgetVariant:
        """Pick the display variant, evaluated at render time."""
        now = self._clock() if now is None else now
        if end_date <= 0:
            return WidgetVariant.NOT_WORKING
        if now < end_date:
            return WidgetVariant.COUNTING_DOWN
        # Only celebrate a shift that ended today
        if today_string(end_date, self._tz) == today_string(now, self._tz):
            return WidgetVariant.JUST_ENDED
        return WidgetVariant.NOT_WORKING

    def snapshot(self, now: float | None = None) -> WidgetSnapshot:
        now = self._clock() if now is None else now
        status = self.status(now)
        end = status.end_date
        return WidgetSnapshot(
            status=status,
            policy=self.next_refresh_policy(status),
            variant=self.variant(end, now),
            remaining_seconds=max(0.0, end - now) if end > 0 else 0.0,
            formatted_end_time=format_clock_time(end, self._tz) if end > 0 else "",
        )
