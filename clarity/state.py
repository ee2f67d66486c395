from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class PipelineSnapshot:
    is_recording: bool
    screenshots_count: int
    session_started_at: Optional[datetime]
    cursor: Optional[datetime]


class PipelineState:
    """Process-wide recording state shared by the two schedulers.

    Every mutation happens under one lock so readers always observe a
    consistent snapshot. The cursor is the end of the last summarized window.
    """

    def __init__(self, cursor: Optional[datetime] = None):
        self._lock = threading.Lock()
        self._is_recording = False
        self._screenshots_count = 0
        self._session_started_at: Optional[datetime] = None
        self._cursor = cursor

    def begin_session(self, now: datetime) -> bool:
        with self._lock:
            if self._is_recording:
                return False
            self._is_recording = True
            self._session_started_at = now
            if self._cursor is None:
                self._cursor = now
            return True

    def end_session(self) -> bool:
        # The cursor stays put so a resumed session picks up the trailing window.
        with self._lock:
            if not self._is_recording:
                return False
            self._is_recording = False
            return True

    def record_capture(self) -> int:
        with self._lock:
            self._screenshots_count += 1
            return self._screenshots_count

    def advance_cursor(self, expected: Optional[datetime], new: datetime) -> bool:
        with self._lock:
            if self._cursor != expected:
                return False
            self._cursor = new
            return True

    @property
    def is_recording(self) -> bool:
        with self._lock:
            return self._is_recording

    @property
    def cursor(self) -> Optional[datetime]:
        with self._lock:
            return self._cursor

    def snapshot(self) -> PipelineSnapshot:
        with self._lock:
            return PipelineSnapshot(
                is_recording=self._is_recording,
                screenshots_count=self._screenshots_count,
                session_started_at=self._session_started_at,
                cursor=self._cursor,
            )
