from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional


@dataclass
class Frame:
    pixels: bytes
    width: int
    height: int
    captured_at: datetime
    mode: str = "RGBA"


@dataclass
class EncodedFrame:
    path: Path
    width: int
    height: int
    file_size: int


@dataclass
class ScreenshotTrace:
    timestamp: datetime
    file_path: Path
    width: int
    height: int
    file_size: int
    id: Optional[int] = None


@dataclass
class Summary:
    start_time: datetime
    end_time: datetime
    content: str
    screenshot_count: int
    created_at: Optional[datetime] = None
    id: Optional[int] = None

    @property
    def duration_seconds(self) -> int:
        return int((self.end_time - self.start_time).total_seconds())


@dataclass
class DailySummary:
    date: str
    content: str
    screenshot_count: int
    summary_count: int
    total_duration_seconds: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    id: Optional[int] = None


@dataclass
class ApiRequestLog:
    timestamp: datetime
    model: str
    request_kind: str
    duration_ms: int
    success: bool
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    id: Optional[int] = None


@dataclass
class ApiStatistics:
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    total_prompt_tokens: int = 0
    total_completion_tokens: int = 0
    total_tokens: int = 0
    avg_duration_ms: Optional[float] = None


@dataclass
class TodayStatistics:
    screenshot_count: int
    summary_count: int
    api_statistics: ApiStatistics = field(default_factory=ApiStatistics)


@dataclass
class HistoricalStats:
    date: str
    screenshot_count: int
    summary_count: int
    total_duration_seconds: int


@dataclass
class RecordingStatus:
    is_recording: bool
    screenshots_count: int
    storage_path: str


@dataclass
class AssembledVideo:
    path: Path
    frame_count: int
    window_start: datetime
    window_end: datetime


def to_dict(value: Any) -> dict[str, Any]:
    """Serialize a model into JSON-friendly primitives."""
    payload = asdict(value)
    for key, item in payload.items():
        if isinstance(item, datetime):
            payload[key] = item.isoformat()
        elif isinstance(item, Path):
            payload[key] = str(item)
    return payload
