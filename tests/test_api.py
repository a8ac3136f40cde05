"""HTTP tests for the clockout API."""

import pytest
from click.testing import CliRunner
from fastapi.testclient import TestClient

from clockout.api import VALIDATE_JOB_ID, create_app
from clockout.cli import cli
from clockout.config import Settings
from clockout.notifier import NOTIFICATION_IDS
from clockout.shift import WORK_DATE_KEY, ShiftRecord, write_record
from clockout.store import SqliteStore

from helpers import TODAY, FakeClock, at


@pytest.fixture
def settings(tmp_path):
    return Settings(db_path=tmp_path / "shift.db")


@pytest.fixture
def clock():
    return FakeClock(at(8))


@pytest.fixture
def client(settings, clock):
    app = create_app(settings, clock=clock)
    with TestClient(app) as test_client:
        yield test_client


class TestInfo:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_root(self, client):
        assert client.get("/").json()["timezone"] == "Asia/Seoul"


class TestShiftRoutes:
    def test_idle_by_default(self, client):
        body = client.get("/api/shift").json()
        assert body["state"] == "idle"
        assert body["isWorking"] is False
        assert body["summary"] == ""

    def test_start(self, client):
        response = client.post("/api/shift/start", json={"start_time": "09:00"})

        assert response.status_code == 200
        body = response.json()
        assert body["state"] == "active"
        assert body["summary"] == "09:00 ~ 18:00 (8h)"
        assert body["events"] == ["started"]

    def test_start_half_day(self, client):
        body = client.post("/api/shift/start", json={"start_time": "930", "half_day": True}).json()
        assert body["formattedEndTime"] == "13:30"

    def test_start_rejects_bad_time(self, client):
        response = client.post("/api/shift/start", json={"start_time": "25:00"})
        assert response.status_code == 400

    def test_start_in_past_rolls_forward(self, client, clock):
        clock.now = at(19)
        body = client.post("/api/shift/start", json={"start_time": "9"}).json()
        assert "rolled_to_tomorrow" in body["events"]
        assert body["endTime"] == at(18, day=12)

    def test_end(self, client):
        client.post("/api/shift/start", json={"start_time": "09:00"})
        body = client.post("/api/shift/end").json()
        assert body["state"] == "idle"
        assert body["events"] == ["ended"]

    def test_end_when_idle(self, client):
        assert client.post("/api/shift/end").json()["events"] == []

    def test_validate_auto_cleanup(self, client, clock):
        client.post("/api/shift/start", json={"start_time": "09:00"})
        clock.now = at(22, 0, 1)

        body = client.post("/api/shift/validate").json()

        assert body["events"] == ["auto_cleanup", "ended"]
        assert body["isWorking"] is False

    def test_overtime_state(self, client, clock):
        client.post("/api/shift/start", json={"start_time": "09:00"})
        clock.now = at(18, 30)

        body = client.get("/api/shift").json()

        assert body["state"] == "overtime"
        assert body["isOvertime"] is True
        assert body["remainingSeconds"] == 1800
        assert body["progress"] == 1.0

    def test_preview(self, client):
        body = client.get("/api/shift/preview", params={"start_time": "10:00", "half_day": True}).json()
        assert body == {"end_time": "14:00", "work_hours": "4h"}

    def test_preview_bad_time(self, client):
        assert client.get("/api/shift/preview", params={"start_time": "noon"}).status_code == 400


class TestStartupCleanup:
    def test_stale_record_cleared_on_startup(self, settings, clock):
        store = SqliteStore(settings.db_path)
        write_record(store, ShiftRecord(end_epoch_seconds=at(18, day=10), work_date="2026-02-10"))

        with TestClient(create_app(settings, clock=clock)) as client:
            body = client.get("/api/shift").json()
            assert body["dataCleared"] is True
            assert store.get(WORK_DATE_KEY) is None

            events = client.get("/api/events").json()["events"]
            assert events[0]["event_type"] == "stale_cleared"
            assert events[0]["source"] == "startup"

            body = client.post("/api/shift/acknowledge-cleanup").json()
            assert body["dataCleared"] is False


class TestWidgetRoute:
    def test_widget_reads_store(self, client):
        client.post("/api/shift/start", json={"start_time": "09:00"})
        body = client.get("/api/widget").json()
        assert body["isValid"] is True
        assert body["variant"] == "counting_down"
        assert body["formattedEndTime"] == "18:00"

    def test_widget_idle(self, client):
        body = client.get("/api/widget").json()
        assert body["variant"] == "not_working"
        assert body["nextRefreshAt"] is None

    def test_widget_sees_record_written_elsewhere(self, client, settings):
        write_record(SqliteStore(settings.db_path), ShiftRecord(end_epoch_seconds=at(13), work_date=TODAY))
        assert client.get("/api/widget").json()["endTime"] == at(13)


class TestHistoryAndLogs:
    def test_transitions_are_recorded(self, client):
        client.post("/api/shift/start", json={"start_time": "09:00"})
        client.post("/api/shift/end")

        body = client.get("/api/events", params={"limit": 10}).json()

        assert [e["event_type"] for e in body["events"]] == ["ended", "started"]
        assert body["events"][1]["details"]["start_time"] == "09:00"

    def test_noops_are_not_recorded(self, client):
        client.post("/api/shift/end")
        assert client.get("/api/events").json()["count"] == 0

    def test_recent_logs(self, client):
        client.post("/api/shift/start", json={"start_time": "09:00"})
        logs = client.get("/api/logs/recent", params={"limit": 100}).json()["logs"]
        assert any("Shift started" in entry["message"] for entry in logs)


class TestNotifications:
    def test_denied_without_webhook(self, client):
        assert client.get("/api/notifications").json() == {"granted": False}

    def test_request_permission_then_schedule(self, settings):
        # Real clock: reminder jobs in the past would be dropped as misfires
        with TestClient(create_app(settings)) as client:
            assert client.post("/api/notifications/permission").json() == {"granted": True}

            client.post("/api/shift/start", json={"start_time": "09:00"})
            notifier = client.app.state.engine._notifier
            assert set(NOTIFICATION_IDS) <= set(notifier.pending_ids())
            assert VALIDATE_JOB_ID in notifier.pending_ids()

            client.post("/api/shift/end")
            assert not set(NOTIFICATION_IDS) & set(notifier.pending_ids())


class TestSharedStore:
    """The server picks up shifts that the CLI writes to the same store."""

    @pytest.fixture
    def webhook_settings(self, tmp_path, monkeypatch):
        for name in ("CLOCKOUT_DB", "CLOCKOUT_TZ", "CLOCKOUT_NOTIFY_URL", "CLOCKOUT_VERBOSE"):
            monkeypatch.delenv(name, raising=False)
        return Settings(db_path=tmp_path / "shift.db", notify_url="http://127.0.0.1:9/notify")

    def run_cli(self, settings, *args):
        result = CliRunner().invoke(cli, ["--db", str(settings.db_path), *args], obj={})
        assert result.exit_code == 0, result.output
        return result

    def test_cli_start_schedules_server_reminders(self, webhook_settings):
        # Real clock: reminder jobs in the past would be dropped as misfires
        with TestClient(create_app(webhook_settings)) as client:
            assert client.get("/api/shift").json()["state"] == "idle"

            self.run_cli(webhook_settings, "start", "9:00")
            body = client.post("/api/shift/validate").json()

            assert body["events"] == ["adopted"]
            assert body["state"] == "active"
            assert body["summary"] == "09:00 ~ 18:00 (8h)"
            notifier = client.app.state.engine._notifier
            assert set(NOTIFICATION_IDS) <= set(notifier.pending_ids())

            events = client.get("/api/events").json()["events"]
            assert [e["event_type"] for e in events if e["source"] == "api"] == ["adopted"]

    def test_cli_end_cancels_server_reminders(self, webhook_settings):
        with TestClient(create_app(webhook_settings)) as client:
            client.post("/api/shift/start", json={"start_time": "09:00"})
            notifier = client.app.state.engine._notifier
            assert set(NOTIFICATION_IDS) <= set(notifier.pending_ids())

            self.run_cli(webhook_settings, "end")
            body = client.post("/api/shift/validate").json()

            assert body["events"] == ["cleared_elsewhere", "ended"]
            assert body["state"] == "idle"
            assert not set(NOTIFICATION_IDS) & set(notifier.pending_ids())

            event_types = [e["event_type"] for e in client.get("/api/events").json()["events"]]
            assert "day_rollover" not in event_types
            assert "cleared_elsewhere" in event_types
