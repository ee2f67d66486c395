from __future__ import annotations

import logging
import threading
import time
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Callable, Optional, Tuple
from zoneinfo import ZoneInfo

from .config import DAILY_PROMPTS, NO_ACTIVITY_TEXT, clamp_interval
from .errors import ClarityError, ConfigError, InsufficientFrames, StoreFailure
from .events import EventBus
from .logging_utils import ThrottledLog
from .models import DailySummary, Summary
from .preferences import Preferences
from .state import PipelineState
from .storage import SummaryStore, TraceStore
from .utils import day_bounds, format_ts, utc_now
from .video import VideoAssembler
from .vision import RemoteVisionClient, VisionState


class SummaryScheduler:
    """Periodic window summarizer.

    Every cycle looks at the window `[cursor, cursor + interval)`. Once the
    window is closed its frames are assembled into a video and summarized
    remotely; only a stored summary moves the cursor forward. A closed
    window with too few frames rides along with the next recorded frames
    instead of being dropped. A failed window is retried on the next cycle,
    never inside the same one.
    """

    def __init__(
        self,
        assembler: VideoAssembler,
        vision: RemoteVisionClient,
        summaries: SummaryStore,
        traces: TraceStore,
        state: PipelineState,
        preferences: Preferences,
        events: EventBus,
        timezone: ZoneInfo,
        log,
        min_frames: int = 5,
        catchup_windows: int = 3,
        delete_video_after_summary: bool = True,
        now: Callable[[], datetime] = utc_now,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._assembler = assembler
        self._vision = vision
        self._summaries = summaries
        self._traces = traces
        self._state = state
        self._preferences = preferences
        self._events = events
        self._timezone = timezone
        self._logger = log
        self._min_frames = max(1, min_frames)
        self._catchup_windows = max(1, catchup_windows)
        self._delete_video = delete_video_after_summary
        self._now = now
        self._monotonic = monotonic
        self._skips = ThrottledLog(log)
        self._interval = preferences.summary_interval()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def interval_seconds(self) -> int:
        return self._interval

    @property
    def running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive() and not self._stop_event.is_set()

    def set_interval(self, seconds: int) -> int:
        self._interval = clamp_interval(int(seconds))
        self._logger.info("Summary interval set to %ss", self._interval)
        return self._interval

    def start(self, interval_seconds: Optional[int] = None) -> bool:
        with self._lock:
            if self.running:
                self._logger.warning("Summary loop already running")
                return False
            if interval_seconds is not None:
                self.set_interval(interval_seconds)
            # A previous loop may still be finishing its in-flight call; it
            # keeps its own stop event and exits once that call ends.
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run_loop, args=(self._stop_event,), name="clarity-summary", daemon=True
            )
            self._thread.start()
        self._logger.info("Summary loop started: interval=%ss", self._interval)
        return True

    def stop(self, timeout: Optional[float] = None) -> None:
        with self._lock:
            self._stop_event.set()
            thread = self._thread
            self._thread = None
        if thread is not None and timeout is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
        self._logger.info("Summary loop stopped")

    def run_cycle(self, now: Optional[datetime] = None, stop_event: Optional[threading.Event] = None) -> int:
        """Summarize closed windows, up to the catch-up cap. Returns how many were stored."""
        now = now or self._now()
        stop_event = stop_event or self._stop_event
        processed = 0
        while processed < self._catchup_windows:
            if processed and stop_event.is_set():
                break
            if self._summarize_next_window(now) is None:
                break
            processed += 1
        if processed > 1:
            self._logger.info("Caught up %s summary windows in one cycle", processed)
        return processed

    def _run_loop(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self._interval):
            try:
                self.run_cycle(stop_event=stop_event)
            except Exception as exc:
                self._logger.exception("Unexpected summary cycle failure: %s", exc)

    def _summarize_next_window(self, now: datetime) -> Optional[Summary]:
        cursor = self._state.cursor
        if cursor is None:
            self._logger.debug("No summary cursor yet; nothing to summarize")
            return None

        window = self._plan_window(cursor, now)
        if window is None:
            return None
        start, end = window

        api_key = self._preferences.api_key()
        if not api_key:
            self._skips.log(
                logging.WARNING, "api-key", self._monotonic(), "Google Gemini API key not set, skipping summary"
            )
            return None

        try:
            video = self._assembler.assemble(start, end, self._min_frames, self._preferences.video_resolution())
        except InsufficientFrames as exc:
            self._logger.info("Window %s..%s not summarized: %s", format_ts(start), format_ts(end), exc)
            return None
        except ClarityError as exc:
            self._logger.error("Failed to create video for %s..%s: %s", format_ts(start), format_ts(end), exc)
            return None

        try:
            call = self._vision.summarize_video(video.path, self._preferences.active_prompt(), self._preferences.model())
        finally:
            if self._delete_video:
                self._remove_video(video.path)

        if call.state is not VisionState.DONE:
            self._logger.error(
                "Summary for %s..%s failed (%s): %s",
                format_ts(start),
                format_ts(end),
                call.reason.value if call.reason else "unknown",
                call.error,
            )
            return None

        try:
            summary = self._summaries.insert_summary(
                Summary(start_time=start, end_time=end, content=call.content or "", screenshot_count=video.frame_count)
            )
        except StoreFailure as exc:
            self._logger.error("Failed to save summary to database: %s", exc)
            return None

        if not self._state.advance_cursor(start, end):
            self._logger.warning("Summary cursor moved while summarizing %s; keeping the newer value", format_ts(start))
        self._logger.info(
            "Summary saved with id=%s for %s..%s (%s frames)",
            summary.id,
            format_ts(start),
            format_ts(end),
            summary.screenshot_count,
        )
        self._events.notify()
        return summary

    def _plan_window(self, cursor: datetime, now: datetime) -> Optional[Tuple[datetime, datetime]]:
        """Pick the closed window to summarize next.

        A closed window with too few usable frames is widened to the end of
        the window that starts at the next recorded frame, so its frames go
        out together with the next ones. A window with no usable frames at
        all is stepped over. Returns None while the window is still open or
        nothing has been recorded after a sparse window yet.
        """
        start = cursor
        end = start + timedelta(seconds=self._interval)
        while end <= now:
            usable = len(self._assembler.usable_frames(start, end))
            if usable >= self._min_frames:
                return start, end
            later = self._traces.first_at_or_after(end)
            if later is None:
                return None
            if usable == 0:
                if not self._state.advance_cursor(start, later.timestamp):
                    return None
                self._logger.info("Skipping empty gap %s..%s", format_ts(start), format_ts(later.timestamp))
                start = later.timestamp
                end = start + timedelta(seconds=self._interval)
                continue
            self._logger.info(
                "Window %s..%s has %s usable frames; extending it to the next recorded frames",
                format_ts(start),
                format_ts(end),
                usable,
            )
            end = later.timestamp + timedelta(seconds=self._interval)
        return None

    def _remove_video(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            self._logger.warning("Failed to delete video file %s: %s", path, exc)

    def generate_daily_summary(self, day: date) -> DailySummary:
        start, end = day_bounds(day, self._timezone)
        summaries = self._summaries.query_summaries(start, end)
        screenshot_count = self._traces.count(start, end)
        total_duration = sum(summary.duration_seconds for summary in summaries)
        language = self._preferences.language()

        if not summaries:
            content = NO_ACTIVITY_TEXT[language]
        else:
            if not self._preferences.api_key():
                raise ConfigError("Google Gemini API key not set")
            combined = "\n\n".join(summary.content for summary in summaries)
            call = self._vision.generate_text(DAILY_PROMPTS[language].format(summaries=combined), self._preferences.model())
            call.raise_for_failure()
            content = call.content or ""

        daily = self._summaries.upsert_daily_summary(
            DailySummary(
                date=day.isoformat(),
                content=content,
                screenshot_count=screenshot_count,
                summary_count=len(summaries),
                total_duration_seconds=total_duration,
            )
        )
        self._logger.info("Daily summary stored for %s (%s summaries)", daily.date, daily.summary_count)
        self._events.notify()
        return daily
