"""Shared test helpers: pinned instants and fake collaborators."""

from datetime import datetime

from zoneinfo import ZoneInfo

from clockout.shift import ShiftConfiguration
from clockout.store import MemoryStore, StoreError

SEOUL = ZoneInfo("Asia/Seoul")
TODAY = "2026-02-11"


def at(hour: int, minute: int = 0, second: int = 0, day: int = 11) -> float:
    """Epoch seconds for February `day`, 2026 at hour:minute:second in Seoul."""
    return datetime(2026, 2, day, hour, minute, second, tzinfo=SEOUL).timestamp()


def config(hour: int = 9, minute: int = 0, half_day: bool = False) -> ShiftConfiguration:
    return ShiftConfiguration(
        selected_start_time=datetime(2026, 2, 11, hour, minute, tzinfo=SEOUL),
        is_half_day=half_day,
    )


class FakeClock:
    def __init__(self, now: float):
        self.now = now

    def __call__(self) -> float:
        return self.now


class RecordingNotifier:
    def __init__(self, granted: bool = True, fail: bool = False):
        self.granted = granted
        self.fail = fail
        self.scheduled: dict[str, tuple[float, dict]] = {}
        self.cancelled: list[list[str]] = []

    def schedule(self, notification_id, fire_at, payload):
        if self.fail:
            raise RuntimeError("scheduler unavailable")
        self.scheduled[notification_id] = (fire_at, payload)

    def cancel(self, ids):
        ids = list(ids)
        self.cancelled.append(ids)
        for notification_id in ids:
            self.scheduled.pop(notification_id, None)

    def is_permission_granted(self):
        return self.granted

    async def request_permission(self):
        self.granted = True
        return True


class BrokenStore(MemoryStore):
    """Reads work, writes fail."""

    def set(self, key, value):
        raise StoreError("disk full")

    def remove(self, key):
        raise StoreError("disk full")

    def swap_if(self, key, expected, updates):
        raise StoreError("disk full")


class UnreadableStore(MemoryStore):
    def get(self, key):
        raise StoreError("database is locked")


class InterleavingStore(MemoryStore):
    """Runs `before_swap` once, right before the next swap_if."""

    def __init__(self, initial=None, before_swap=None):
        super().__init__(initial)
        self.before_swap = before_swap

    def swap_if(self, key, expected, updates):
        hook, self.before_swap = self.before_swap, None
        if hook is not None:
            hook()
        return super().swap_if(key, expected, updates)
