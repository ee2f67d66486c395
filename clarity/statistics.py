from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo

from .models import ApiStatistics, HistoricalStats, TodayStatistics
from .storage import SummaryStore, TraceStore
from .utils import day_bounds, local_today


class StatisticsAggregator:
    """Read-only counters over traces, summaries and the API request log."""

    def __init__(self, traces: TraceStore, summaries: SummaryStore, timezone: ZoneInfo):
        self._traces = traces
        self._summaries = summaries
        self._timezone = timezone

    def range_statistics(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> TodayStatistics:
        return TodayStatistics(
            screenshot_count=self._traces.count(start, end),
            summary_count=self._summaries.count_summaries(start, end),
            api_statistics=self.api_statistics(start, end),
        )

    def api_statistics(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> ApiStatistics:
        return self._summaries.api_statistics(start, end)

    def today(self, today: Optional[date] = None) -> TodayStatistics:
        start, end = self.day_range(today or local_today(self._timezone))
        return self.range_statistics(start, end)

    def historical(self, days: int, today: Optional[date] = None) -> List[HistoricalStats]:
        days = max(1, int(days))
        end_date = today or local_today(self._timezone)
        start_date = end_date - timedelta(days=days - 1)
        stored = {
            daily.date: daily
            for daily in self._summaries.daily_summaries(start_date.isoformat(), end_date.isoformat())
        }

        result: List[HistoricalStats] = []
        current = start_date
        while current <= end_date:
            key = current.isoformat()
            daily = stored.get(key)
            if daily is not None:
                result.append(
                    HistoricalStats(
                        date=key,
                        screenshot_count=daily.screenshot_count,
                        summary_count=daily.summary_count,
                        total_duration_seconds=daily.total_duration_seconds,
                    )
                )
            else:
                start, end = self.day_range(current)
                summaries = self._summaries.query_summaries(start, end)
                result.append(
                    HistoricalStats(
                        date=key,
                        screenshot_count=self._traces.count(start, end),
                        summary_count=len(summaries),
                        total_duration_seconds=sum(summary.duration_seconds for summary in summaries),
                    )
                )
            current += timedelta(days=1)
        return result

    def day_range(self, day: date) -> Tuple[datetime, datetime]:
        return day_bounds(day, self._timezone)
