"""
Tests for the read-only statistics aggregator.
"""

from datetime import date, timedelta
from zoneinfo import ZoneInfo

import pytest

from clarity.models import ApiRequestLog, DailySummary, Summary
from clarity.statistics import StatisticsAggregator
from conftest import T0, seconds_after

DAY = date(2026, 3, 2)


@pytest.fixture
def aggregator(traces, summaries):
    return StatisticsAggregator(traces, summaries, ZoneInfo("UTC"))


def test_range_statistics(aggregator, add_traces, summaries):
    add_traces(seconds_after(T0, 0, 1, 2))
    add_traces([T0 + timedelta(days=1)])
    summaries.insert_summary(Summary(T0, T0 + timedelta(seconds=45), "Coding", 3))
    summaries.record_api_request(ApiRequestLog(T0, "gemini", "video", 1500, True, 10, 5, 15))
    summaries.record_api_request(ApiRequestLog(T0, "gemini", "video", 500, False, error_kind="QuotaExhausted"))

    stats = aggregator.today(DAY)

    assert stats.screenshot_count == 3
    assert stats.summary_count == 1
    assert stats.api_statistics.total_requests == 2
    assert stats.api_statistics.failed_requests == 1
    assert stats.api_statistics.avg_duration_ms == pytest.approx(1500.0)


def test_today_uses_local_calendar_day(traces, summaries, add_traces):
    aggregator = StatisticsAggregator(traces, summaries, ZoneInfo("Asia/Shanghai"))
    # 2026-03-02 17:00 UTC is already 2026-03-03 01:00 in UTC+8.
    add_traces([T0.replace(hour=17), T0.replace(hour=15)])

    assert aggregator.today(date(2026, 3, 3)).screenshot_count == 1
    assert aggregator.today(date(2026, 3, 2)).screenshot_count == 1


def test_historical_prefers_stored_daily_summary(aggregator, add_traces, summaries):
    add_traces(seconds_after(T0, 0, 1))
    summaries.insert_summary(Summary(T0, T0 + timedelta(seconds=60), "Coding", 2))
    summaries.upsert_daily_summary(DailySummary("2026-03-01", "Earlier", 40, 4, 180))

    history = aggregator.historical(3, today=DAY)

    assert [entry.date for entry in history] == ["2026-02-28", "2026-03-01", "2026-03-02"]
    assert (history[0].screenshot_count, history[0].summary_count) == (0, 0)
    assert (history[1].screenshot_count, history[1].summary_count, history[1].total_duration_seconds) == (40, 4, 180)
    assert (history[2].screenshot_count, history[2].summary_count, history[2].total_duration_seconds) == (2, 1, 60)


def test_historical_has_at_least_one_day(aggregator):
    assert len(aggregator.historical(0, today=DAY)) == 1
