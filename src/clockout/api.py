"""
clockout API: FastAPI server for the shift timer

This server provides:
- Shift start/end/validate actions backed by ShiftEngine
- The widget snapshot, read through its own provider
- Scheduled shift-end and overtime reminders
- Transition history and recent logs
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from . import history
from .config import Settings, get_settings
from .engine import ShiftEngine, TransitionResult
from .log import logger, recent_logs, setup_logging
from .notifier import SchedulerNotifier, WebhookDelivery, log_delivery
from .shift import Clock, ShiftConfiguration, parse_time, system_clock
from .store import SqliteStore
from .widget import WidgetSnapshotProvider

VALIDATE_JOB_ID = "shift_validate"
VALIDATE_INTERVAL_SECONDS = 60


class StartShiftRequest(BaseModel):
    start_time: str = Field(..., description="Start time of day, e.g. 09:00 or 930")
    half_day: bool = Field(default=False, description="4 hour shift instead of 8 (+1h lunch)")


class PreviewResponse(BaseModel):
    end_time: str
    work_hours: str


class PermissionResponse(BaseModel):
    granted: bool


def _build_notifier(settings: Settings, scheduler: AsyncIOScheduler) -> SchedulerNotifier:
    if settings.notify_url:
        delivery = WebhookDelivery(settings.notify_url, timeout=settings.notify_timeout)
        return SchedulerNotifier(scheduler, deliver=delivery, granted=True, ping=delivery.ping)
    return SchedulerNotifier(scheduler, deliver=log_delivery, granted=False)


def _parse_config(start_time: str, half_day: bool) -> ShiftConfiguration:
    try:
        return ShiftConfiguration(selected_start_time=parse_time(start_time), is_half_day=half_day)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


async def _record(app: FastAPI, result: TransitionResult, source: str = "api", details: Optional[dict] = None):
    if result.changed:
        await history.record_transition(app.state.settings.db_path, result, source, details)


def _shift_payload(app: FastAPI, result: Optional[TransitionResult] = None) -> dict:
    payload = app.state.engine.to_export_dict()
    if result is not None:
        payload["events"] = [event.value for event in result.events]
    return payload


async def _validate_job(app: FastAPI):
    result = app.state.engine.validate()
    await _record(app, result, source="scheduler")


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    await history.init_tables(settings.db_path)
    await _record(app, app.state.engine.load_result, source="startup")

    scheduler: AsyncIOScheduler = app.state.scheduler
    scheduler.add_job(
        _validate_job,
        trigger=IntervalTrigger(seconds=VALIDATE_INTERVAL_SECONDS),
        args=[app],
        id=VALIDATE_JOB_ID,
        replace_existing=True,
    )
    scheduler.start()
    logger.info("Scheduler started")
    yield
    scheduler.shutdown(wait=False)
    logger.info("Scheduler stopped")


def create_app(settings: Optional[Settings] = None, clock: Clock = system_clock) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.verbose)

    app = FastAPI(
        title="clockout",
        description="Work shift timer with end-of-shift reminders",
        version="0.1.0",
        lifespan=lifespan,
    )
    store = SqliteStore(settings.db_path)
    scheduler = AsyncIOScheduler(timezone=settings.tz)
    engine = ShiftEngine(store, _build_notifier(settings, scheduler), clock=clock, tz=settings.tz)

    app.state.settings = settings
    app.state.scheduler = scheduler
    app.state.engine = engine
    app.state.widget = WidgetSnapshotProvider(store, clock=clock, tz=settings.tz)

    register_routes(app)
    return app


def register_routes(app: FastAPI) -> None:
    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "timestamp": datetime.now().isoformat()}

    @app.get("/")
    async def root():
        """Root endpoint with API info."""
        return {
            "name": "clockout",
            "version": app.version,
            "timezone": app.state.settings.timezone,
        }

    @app.get("/api/shift")
    async def get_shift(request: Request):
        """Current shift state and derived countdown values."""
        return _shift_payload(request.app)

    @app.post("/api/shift/start")
    async def start_shift(body: StartShiftRequest, request: Request):
        config = _parse_config(body.start_time, body.half_day)
        result = request.app.state.engine.start(config)
        await _record(request.app, result, details={"start_time": body.start_time, "half_day": body.half_day})
        return _shift_payload(request.app, result)

    @app.post("/api/shift/end")
    async def end_shift(request: Request):
        result = request.app.state.engine.end()
        await _record(request.app, result)
        return _shift_payload(request.app, result)

    @app.post("/api/shift/validate")
    async def validate_shift(request: Request):
        """Foreground event: end stale or long-overdue shifts."""
        result = request.app.state.engine.validate()
        await _record(request.app, result)
        return _shift_payload(request.app, result)

    @app.post("/api/shift/acknowledge-cleanup")
    async def acknowledge_cleanup(request: Request):
        request.app.state.engine.acknowledge_data_cleared()
        return _shift_payload(request.app)

    @app.get("/api/shift/preview", response_model=PreviewResponse)
    async def preview_shift(request: Request, start_time: str, half_day: bool = False):
        """End time a start at ``start_time`` would produce today."""
        config = _parse_config(start_time, half_day)
        engine: ShiftEngine = request.app.state.engine
        return PreviewResponse(
            end_time=engine.preview_end_time(config),
            work_hours=engine.work_hours_text(config),
        )

    @app.get("/api/widget")
    async def get_widget(request: Request):
        return request.app.state.widget.snapshot().to_export_dict()

    @app.get("/api/notifications", response_model=PermissionResponse)
    async def get_notification_permission(request: Request):
        return PermissionResponse(granted=request.app.state.engine.notification_permission_granted)

    @app.post("/api/notifications/permission", response_model=PermissionResponse)
    async def request_notification_permission(request: Request):
        granted = await request.app.state.engine.request_notification_permission()
        return PermissionResponse(granted=granted)

    @app.get("/api/events")
    async def get_events(request: Request, limit: int = 20):
        limit = max(1, min(limit, 200))
        events = await history.recent_events(request.app.state.settings.db_path, limit)
        return {"events": events, "count": len(events)}

    @app.get("/api/logs/recent")
    async def get_recent_logs(limit: int = 50):
        """Recent server logs from the circular buffer (max 100)."""
        logs = recent_logs(limit)
        return {"logs": logs, "count": len(logs)}
