"""Shift-end reminders.

The engine only talks to the ``NotificationScheduler`` protocol. The real
implementation parks one-shot APScheduler jobs under two fixed ids and hands
each due notification to a delivery callable (a webhook or the log).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Protocol

import requests
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.date import DateTrigger

logger = logging.getLogger("clockout.notifier")

END_NOTIFICATION_ID = "workEndNotification"
OVERTIME_NOTIFICATION_ID = "workOverdueNotification"
NOTIFICATION_IDS = (END_NOTIFICATION_ID, OVERTIME_NOTIFICATION_ID)

# Late reminders are still worth sending if the process was briefly asleep
MISFIRE_GRACE_SECONDS = 300


@dataclass(frozen=True)
class Notification:
    id: str
    fire_at: float
    payload: dict[str, Any] = field(default_factory=dict)


Deliver = Callable[[Notification], None]


class NotificationScheduler(Protocol):
    def schedule(self, notification_id: str, fire_at: float, payload: dict[str, Any]) -> None: ...

    def cancel(self, ids: Iterable[str]) -> None: ...

    def is_permission_granted(self) -> bool: ...

    async def request_permission(self) -> bool: ...


class NullNotifier:
    """Never granted, never schedules. Used by one-shot CLI commands."""

    def schedule(self, notification_id: str, fire_at: float, payload: dict[str, Any]) -> None:
        logger.debug(f"NullNotifier: dropping {notification_id}")

    def cancel(self, ids: Iterable[str]) -> None:
        pass

    def is_permission_granted(self) -> bool:
        return False

    async def request_permission(self) -> bool:
        return False


def log_delivery(notification: Notification) -> None:
    """Fallback delivery: write the reminder to the log."""
    title = notification.payload.get("title", notification.id)
    body = notification.payload.get("body", "")
    logger.info(f"NOTIFY [{notification.id}] {title} {body}".rstrip())


class WebhookDelivery:
    """POST each notification as JSON to a webhook (ntfy, MacroDroid, ...)."""

    def __init__(self, url: str, timeout: float = 5.0):
        self.url = url
        self.timeout = timeout

    def __call__(self, notification: Notification) -> None:
        body = {
            "type": "notification",
            "id": notification.id,
            "fire_at": notification.fire_at,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **notification.payload,
        }
        response = requests.post(self.url, json=body, timeout=self.timeout)
        response.raise_for_status()
        logger.info(f"NOTIFY: {notification.id} -> {response.status_code}")

    def ping(self) -> bool:
        """True if the webhook host answers at all."""
        try:
            requests.head(self.url, timeout=self.timeout)
            return True
        except requests.exceptions.Timeout:
            logger.warning(f"NOTIFY: Timeout pinging {self.url}")
            return False
        except requests.exceptions.RequestException as e:
            logger.warning(f"NOTIFY: Cannot reach {self.url}: {e}")
            return False


class SchedulerNotifier:
    """NotificationScheduler backed by APScheduler date jobs."""

    def __init__(
        self,
        scheduler: BaseScheduler,
        deliver: Deliver = log_delivery,
        granted: bool = False,
        ping: Callable[[], bool] | None = None,
    ):
        self.scheduler = scheduler
        self._deliver = deliver
        self._granted = granted
        self._ping = ping

    def is_permission_granted(self) -> bool:
        return self._granted

    async def request_permission(self) -> bool:
        if self._ping is None:
            self._granted = True
        else:
            self._granted = await asyncio.to_thread(self._ping)
        logger.info(f"Notification permission {'granted' if self._granted else 'denied'}")
        return self._granted

    def schedule(self, notification_id: str, fire_at: float, payload: dict[str, Any]) -> None:
        notification = Notification(id=notification_id, fire_at=fire_at, payload=dict(payload))
        self.scheduler.add_job(
            self._fire,
            trigger=DateTrigger(run_date=datetime.fromtimestamp(fire_at, timezone.utc)),
            args=[notification],
            id=notification_id,
            name=notification_id,
            replace_existing=True,
            misfire_grace_time=MISFIRE_GRACE_SECONDS,
        )
        logger.debug(f"Scheduled {notification_id} at {fire_at:.0f}")

    def cancel(self, ids: Iterable[str]) -> None:
        for notification_id in ids:
            try:
                self.scheduler.remove_job(notification_id)
            except JobLookupError:
                pass

    def pending_ids(self) -> list[str]:
        return sorted(job.id for job in self.scheduler.get_jobs())

    def _fire(self, notification: Notification) -> None:
        try:
            self._deliver(notification)
        except Exception:
            logger.exception(f"Delivery failed for {notification.id}")
