from __future__ import annotations

import functools
import time
from datetime import date, datetime
from typing import Callable, List, Optional, Union

from .capture import FrameEncoder, PyAutoGuiScreenSource, ScreenSource, probe_frame
from .config import AppSettings
from .errors import ClarityError, CommandError, EncodingFailure
from .events import EventBus
from .gemini_client import GeminiBackend, VisionBackend
from .models import DailySummary, HistoricalStats, RecordingStatus, ScreenshotTrace, Summary, TodayStatistics
from .preferences import Preferences
from .recorder import CaptureScheduler
from .state import PipelineState
from .statistics import StatisticsAggregator
from .storage import Database, SettingsStore, SummaryStore, TraceStore
from .summary import SummaryScheduler
from .utils import local_today, parse_date, parse_ts, to_utc
from .video import VideoAssembler
from .vision import RemoteVisionClient

TimeBound = Union[str, datetime, None]
DateArg = Union[str, date, None]


def command(func):
    """Surface any pipeline error to the caller as a CommandError with a readable message."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except CommandError:
            raise
        except ClarityError as exc:
            raise CommandError(str(exc)) from exc

    return wrapper


class ClarityService:
    """Wires the capture and summary pipelines and exposes their commands."""

    def __init__(
        self,
        settings: AppSettings,
        log,
        source: Optional[ScreenSource] = None,
        backend: Optional[VisionBackend] = None,
        runner=None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self._logger = log

        self.db = Database(settings.storage.db_path)
        self.traces = TraceStore(self.db)
        self.summaries = SummaryStore(self.db)
        self.preferences = Preferences(SettingsStore(self.db), settings)
        self.state = PipelineState(cursor=self.summaries.latest_summary_end())
        self.events = EventBus(log)

        self._source = source or PyAutoGuiScreenSource()
        self.encoder = FrameEncoder(
            settings.storage.recordings_dir, settings.timezone, log, quality=settings.capture.jpeg_quality
        )
        self.recorder = CaptureScheduler(
            self._source,
            self.encoder,
            self.traces,
            self.state,
            self.events,
            log,
            period_seconds=settings.capture.interval_seconds,
        )

        assembler_options = {"ffmpeg_binary": settings.summary.ffmpeg_binary}
        if runner is not None:
            assembler_options["runner"] = runner
        self.assembler = VideoAssembler(self.traces, settings.storage.videos_dir, log, **assembler_options)

        self.vision = RemoteVisionClient(
            backend or GeminiBackend(self.preferences.api_key, log),
            self.summaries,
            log,
            upload_attempts=settings.gemini.upload_attempts,
            retry_buffer_seconds=settings.gemini.retry_buffer_seconds,
            poll_interval_seconds=settings.gemini.poll_interval_seconds,
            poll_timeout_seconds=settings.gemini.poll_timeout_seconds,
            sleep=sleep,
        )
        self.summarizer = SummaryScheduler(
            self.assembler,
            self.vision,
            self.summaries,
            self.traces,
            self.state,
            self.preferences,
            self.events,
            settings.timezone,
            log,
            min_frames=settings.summary.min_frames,
            catchup_windows=settings.summary.catchup_windows,
            delete_video_after_summary=settings.summary.delete_video_after_summary,
        )
        self.statistics = StatisticsAggregator(self.traces, self.summaries, settings.timezone)

    # Recording

    @command
    def start_recording(self) -> RecordingStatus:
        if self.state.is_recording:
            raise CommandError("Recording is already in progress")
        self.recorder.start()
        self.summarizer.start(self.preferences.summary_interval())
        self.events.notify()
        return self.get_status()

    @command
    def stop_recording(self) -> RecordingStatus:
        if not self.state.is_recording:
            raise CommandError("Recording is not in progress")
        self.recorder.stop()
        self.summarizer.stop()
        self.events.notify()
        return self.get_status()

    def get_status(self) -> RecordingStatus:
        return self.recorder.status()

    def get_storage_path(self) -> str:
        return str(self.encoder.root)

    @command
    def test_screenshot(self) -> str:
        return probe_frame(self._source.grab())

    @command
    def diagnostics(self) -> str:
        lines = []
        if self.preferences.api_key():
            lines.append("Google Gemini API key is set")
        else:
            lines.append("Google Gemini API key not set")
        try:
            lines.append(f"ffmpeg found at: {self.assembler.find_ffmpeg()}")
        except EncodingFailure as exc:
            lines.append(str(exc))
        lines.append(f"Today's screenshots: {self.statistics.today().screenshot_count}")
        lines.append(f"Summary interval: {self.summarizer.interval_seconds} seconds")
        lines.append(f"Recording: {'Yes' if self.state.is_recording else 'No'}")
        lines.append(f"Storage path: {self.encoder.root}")
        report = "\n".join(lines)
        self._logger.info("Video summary diagnostics:\n%s", report)
        return report

    # Queries

    @command
    def get_traces(
        self, start_time: TimeBound = None, end_time: TimeBound = None, limit: Optional[int] = None
    ) -> List[ScreenshotTrace]:
        return self.traces.query(_time_bound(start_time), _time_bound(end_time), _limit(limit))

    @command
    def get_summaries(
        self, start_time: TimeBound = None, end_time: TimeBound = None, limit: Optional[int] = None
    ) -> List[Summary]:
        return self.summaries.query_summaries(_time_bound(start_time), _time_bound(end_time), _limit(limit))

    @command
    def get_today_statistics(self) -> TodayStatistics:
        return self.statistics.today()

    @command
    def get_historical_stats(self, days: int) -> List[HistoricalStats]:
        if not isinstance(days, int) or days < 1:
            raise CommandError(f"Invalid number of days: {days!r}")
        return self.statistics.historical(days)

    @command
    def generate_daily_summary(self, day: DateArg = None) -> DailySummary:
        return self.summarizer.generate_daily_summary(self._date_arg(day))

    @command
    def get_daily_summary(self, day: DateArg = None) -> Optional[DailySummary]:
        return self.summaries.get_daily_summary(self._date_arg(day).isoformat())

    # Settings

    def get_api_key(self) -> str:
        return self.preferences.api_key() or ""

    @command
    def set_api_key(self, api_key: str) -> None:
        self.preferences.set_api_key(api_key)
        self._logger.info("Google Gemini API key saved")

    def get_model(self) -> str:
        return self.preferences.model()

    @command
    def set_model(self, model: str) -> None:
        self.preferences.set_model(model)
        self._logger.info("AI model set to %s", self.preferences.model())

    def get_summary_interval(self) -> int:
        return self.preferences.summary_interval()

    @command
    def set_summary_interval(self, seconds: int) -> int:
        seconds = self.preferences.set_summary_interval(seconds)
        self.summarizer.set_interval(seconds)
        return seconds

    @command
    def get_prompt(self, language: Optional[str] = None) -> str:
        return self.preferences.prompt_for(language)

    @command
    def set_prompt(self, prompt: str, language: Optional[str] = None) -> None:
        self.preferences.set_prompt(prompt, language)

    @command
    def reset_prompt(self, language: Optional[str] = None) -> str:
        return self.preferences.reset_prompt(language)

    def get_language(self) -> str:
        return self.preferences.language()

    @command
    def set_language(self, language: str) -> None:
        self.preferences.set_language(language)

    def get_video_resolution(self) -> str:
        return self.preferences.video_resolution()

    @command
    def set_video_resolution(self, resolution: str) -> None:
        self.preferences.set_video_resolution(resolution)

    # Lifecycle

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        return self.events.subscribe(listener)

    def shutdown(self, timeout: float = 5.0) -> None:
        if self.state.is_recording:
            self.recorder.stop(timeout=timeout)
        self.summarizer.stop(timeout=timeout)
        self.events.close()
        self._logger.info("Service shut down")

    def _date_arg(self, day: DateArg) -> date:
        if day is None:
            return local_today(self.settings.timezone)
        if isinstance(day, datetime):
            return day.astimezone(self.settings.timezone).date()
        if isinstance(day, date):
            return day
        try:
            return parse_date(day)
        except ValueError as exc:
            raise CommandError(f"Invalid date format: {exc}") from exc


def _time_bound(value: TimeBound) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_utc(value)
    try:
        return parse_ts(value)
    except (TypeError, ValueError) as exc:
        raise CommandError(f"Invalid time format: {exc}") from exc


def _limit(value: Optional[int]) -> Optional[int]:
    if value is None:
        return None
    if not isinstance(value, int) or value < 0:
        raise CommandError(f"Invalid limit: {value!r}")
    return value
