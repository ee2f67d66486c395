from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from .capture import FrameEncoder, ScreenSource
from .errors import CaptureFailure, EncodingFailure, StoreFailure
from .events import EventBus
from .logging_utils import ThrottledLog
from .models import RecordingStatus, ScreenshotTrace
from .state import PipelineState
from .storage import TraceStore
from .utils import to_utc, utc_now


class CaptureScheduler:
    """Fixed-cadence screenshot loop.

    Each cycle grabs one frame, encodes it and appends a trace. A failed
    cycle is logged and skipped; the next cycle is never delayed to retry it.
    """

    def __init__(
        self,
        source: ScreenSource,
        encoder: FrameEncoder,
        traces: TraceStore,
        state: PipelineState,
        events: EventBus,
        log,
        period_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._source = source
        self._encoder = encoder
        self._traces = traces
        self._state = state
        self._events = events
        self._logger = log
        self._period = period_seconds
        self._clock = clock
        self._skips = ThrottledLog(log)
        self._sequence = 0
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def start(self) -> bool:
        with self._lock:
            if self._state.is_recording:
                self._logger.warning("Capture loop already running")
                return False
            # Surfaces permission problems to the caller instead of the log.
            self._source.check()
            self._state.begin_session(utc_now())
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run_loop, args=(self._stop_event,), name="clarity-capture", daemon=True
            )
            self._thread.start()
        self._logger.info("Capture loop started: period=%.1fs root=%s", self._period, self._encoder.root)
        return True

    def stop(self, timeout: float = 5.0) -> bool:
        with self._lock:
            stopped = self._state.end_session()
            thread = self._thread
            self._thread = None
            self._stop_event.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
        if stopped:
            self._logger.info("Capture loop stopped")
        return stopped

    def status(self) -> RecordingStatus:
        snapshot = self._state.snapshot()
        return RecordingStatus(
            is_recording=snapshot.is_recording,
            screenshots_count=snapshot.screenshots_count,
            storage_path=str(self._encoder.root),
        )

    def run_cycle(self) -> Optional[ScreenshotTrace]:
        now = self._clock()
        try:
            frame = self._source.grab()
        except CaptureFailure as exc:
            self._skips.log(logging.WARNING, "capture", now, "Skipping capture: %s", exc)
            return None

        try:
            encoded = self._encoder.encode(frame, self._sequence)
        except EncodingFailure as exc:
            self._skips.log(logging.ERROR, "encode", now, "Failed to encode frame: %s", exc)
            return None

        try:
            trace = self._traces.append(
                ScreenshotTrace(
                    timestamp=to_utc(frame.captured_at),
                    file_path=encoded.path,
                    width=encoded.width,
                    height=encoded.height,
                    file_size=encoded.file_size,
                )
            )
        except StoreFailure as exc:
            # The file is kept; only its trace row is missing.
            self._skips.log(logging.ERROR, "store", now, "Failed to persist trace for %s: %s", encoded.path.name, exc)
            return None

        self._sequence += 1
        self._skips.reset()
        count = self._state.record_capture()
        self._logger.debug("Capture persisted with id=%s (count=%s)", trace.id, count)
        self._events.notify()
        return trace

    def _run_loop(self, stop_event: threading.Event) -> None:
        deadline = self._clock()
        while not stop_event.is_set():
            try:
                self.run_cycle()
            except Exception as exc:
                self._logger.exception("Unexpected capture cycle failure: %s", exc)
            deadline += self._period
            delay = deadline - self._clock()
            if delay < 0:
                # Fell behind (slow disk or encoder); drop the missed ticks.
                deadline = self._clock()
                delay = 0
            if stop_event.wait(delay):
                break
