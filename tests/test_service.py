"""
Tests for the command surface exposed to the UI and the console scripts.
"""

from datetime import timedelta

import pytest

from clarity.config import NO_ACTIVITY_TEXT
from clarity.errors import CommandError
from clarity.models import Summary
from clarity.service import ClarityService
from clarity.storage import Database, SummaryStore
from conftest import T0, FakeBackend, FakeClock, FakeRunner, FakeScreenSource


@pytest.fixture
def source():
    return FakeScreenSource()


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def service(settings, log, source, backend):
    clock = FakeClock()
    svc = ClarityService(settings, log, source=source, backend=backend, runner=FakeRunner(), sleep=clock.sleep)
    yield svc
    svc.shutdown(timeout=1.0)


class TestRecordingCommands:
    def test_ten_captures_are_listed_in_order(self, service):
        for _ in range(10):
            service.recorder.run_cycle()

        assert service.get_status().screenshots_count == 10
        traces = service.get_traces(limit=100)
        assert len(traces) == 10
        assert [t.timestamp for t in traces] == [T0 + timedelta(seconds=i) for i in range(10)]

    def test_start_and_stop(self, service):
        status = service.start_recording()

        assert status.is_recording is True
        assert service.summarizer.running
        with pytest.raises(CommandError, match="already in progress"):
            service.start_recording()

        status = service.stop_recording()
        assert status.is_recording is False
        assert not service.summarizer.running
        with pytest.raises(CommandError, match="not in progress"):
            service.stop_recording()

    def test_start_without_permission(self, service, source):
        source.fail = True

        with pytest.raises(CommandError, match="permission"):
            service.start_recording()
        assert service.get_status().is_recording is False

    def test_test_screenshot(self, service):
        assert service.test_screenshot().startswith("Captured: 4x4 pixels")

    def test_diagnostics(self, service):
        report = service.diagnostics()

        assert "API key is set" in report
        assert "ffmpeg found at" in report
        assert "Recording: No" in report


class TestQueries:
    def test_traces_accept_iso_strings(self, service):
        for _ in range(5):
            service.recorder.run_cycle()

        found = service.get_traces("2026-03-02T09:00:01Z", "2026-03-02T09:00:03+00:00")

        assert [t.timestamp for t in found] == [T0 + timedelta(seconds=1), T0 + timedelta(seconds=2)]

    def test_invalid_bounds(self, service):
        with pytest.raises(CommandError, match="Invalid time format"):
            service.get_traces("yesterday")
        with pytest.raises(CommandError, match="Invalid limit"):
            service.get_summaries(limit=-1)

    def test_summaries_by_range(self, service):
        service.summaries.insert_summary(Summary(T0, T0 + timedelta(seconds=45), "Coding", 5))

        assert [s.content for s in service.get_summaries(T0, T0 + timedelta(hours=1), 10)] == ["Coding"]

    def test_historical_stats_validates_days(self, service):
        with pytest.raises(CommandError):
            service.get_historical_stats(0)
        assert len(service.get_historical_stats(7)) == 7

    def test_today_statistics(self, service):
        stats = service.get_today_statistics()

        assert stats.screenshot_count == 0
        assert stats.api_statistics.total_requests == 0


class TestDailySummaryCommands:
    def test_generate_and_get(self, service):
        daily = service.generate_daily_summary("2026-03-02")

        assert daily.content == NO_ACTIVITY_TEXT["zh"]
        assert service.get_daily_summary("2026-03-02").id == daily.id
        assert service.get_daily_summary("2026-03-03") is None

    def test_invalid_date(self, service):
        with pytest.raises(CommandError, match="Invalid date format"):
            service.generate_daily_summary("03/02/2026")

    def test_remote_failure_becomes_command_error(self, service, backend):
        backend.generate_error = RuntimeError("429 Quota exceeded")
        service.summaries.insert_summary(Summary(T0, T0 + timedelta(seconds=45), "Coding", 5))

        with pytest.raises(CommandError, match="Quota exceeded"):
            service.generate_daily_summary("2026-03-02")


class TestSettingsCommands:
    def test_interval_applies_to_running_scheduler(self, service):
        assert service.set_summary_interval(120) == 120

        assert service.get_summary_interval() == 120
        assert service.summarizer.interval_seconds == 120

    def test_invalid_interval_message(self, service):
        with pytest.raises(CommandError, match="between 10 and 3600"):
            service.set_summary_interval(5)

    def test_round_trip_settings(self, service):
        service.set_api_key("new-key")
        service.set_model("gemini-2.5-flash")
        service.set_language("en")
        service.set_video_resolution("default")
        service.set_prompt("Describe the screen", "en")

        assert service.get_api_key() == "new-key"
        assert service.get_model() == "gemini-2.5-flash"
        assert service.get_language() == "en"
        assert service.get_video_resolution() == "default"
        assert service.get_prompt() == "Describe the screen"
        assert service.reset_prompt("en").startswith("Analyze this screen activity video")

    def test_invalid_resolution(self, service):
        with pytest.raises(CommandError):
            service.set_video_resolution("8k")


def test_cursor_resumes_from_last_summary(settings, log):
    SummaryStore(Database(settings.storage.db_path)).insert_summary(
        Summary(T0, T0 + timedelta(seconds=45), "Earlier session", 5)
    )

    service = ClarityService(settings, log, source=FakeScreenSource(), backend=FakeBackend(), runner=FakeRunner())

    assert service.state.cursor == T0 + timedelta(seconds=45)
    service.shutdown(timeout=1.0)


def test_subscribe_receives_capture_notifications(service):
    calls = []
    unsubscribe = service.subscribe(lambda: calls.append(1))

    service.recorder.run_cycle()
    unsubscribe()

    assert len(calls) == 1
