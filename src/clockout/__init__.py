"""clockout: daily work-shift timer with a widget snapshot and reminders."""

from .engine import ShiftEngine, ShiftEvent, TransitionResult
from .notifier import (
    END_NOTIFICATION_ID,
    OVERTIME_NOTIFICATION_ID,
    NotificationScheduler,
    NullNotifier,
    SchedulerNotifier,
)
from .shift import (
    DerivedShiftView,
    ShiftConfiguration,
    ShiftRecord,
    ShiftState,
    read_record,
)
from .store import MemoryStore, SqliteStore, Store, StoreError
from .widget import RefreshPolicy, WidgetSnapshot, WidgetSnapshotProvider, WidgetStatus, WidgetVariant

__all__ = [
    "END_NOTIFICATION_ID",
    "OVERTIME_NOTIFICATION_ID",
    "DerivedShiftView",
    "MemoryStore",
    "NotificationScheduler",
    "NullNotifier",
    "RefreshPolicy",
    "SchedulerNotifier",
    "ShiftConfiguration",
    "ShiftEngine",
    "ShiftEvent",
    "ShiftRecord",
    "ShiftState",
    "SqliteStore",
    "Store",
    "StoreError",
    "TransitionResult",
    "WidgetSnapshot",
    "WidgetSnapshotProvider",
    "WidgetStatus",
    "WidgetVariant",
    "read_record",
]
