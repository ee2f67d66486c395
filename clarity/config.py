from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

MIN_SUMMARY_INTERVAL_SECONDS = 10
MAX_SUMMARY_INTERVAL_SECONDS = 3600

LANGUAGES = ("zh", "en")
VIDEO_RESOLUTIONS = ("low", "default")

DEFAULT_PROMPTS = {
    "zh": (
        "分析这段屏幕活动视频，提供简洁的活动摘要。重点关注：1) 主要使用的应用/网站；"
        "2) 活动类型（工作/娱乐/学习等）；3) 是否有分心或低效行为。用中文回答，控制在100字以内。"
    ),
    "en": (
        "Analyze this screen activity video and provide a concise activity summary. Focus on: "
        "1) Main apps/websites used; 2) Activity type (work/entertainment/learning, etc.); "
        "3) Any distractions or inefficient behaviors. Respond in English, keep it under 100 words."
    ),
}

DAILY_PROMPTS = {
    "zh": "基于以下今天的所有活动摘要，生成一份综合的每日总结。包括：1) 整体效率评估；2) 主要活动和时间分布；3) 关键洞察和改进建议。\n\n今天的摘要：\n{summaries}",
    "en": (
        "Based on the following activity summaries from today, provide a comprehensive daily summary. "
        "Include: 1) Overall productivity assessment; 2) Main activities and time distribution; "
        "3) Key insights and recommendations for improvement.\n\nToday's summaries:\n{summaries}"
    ),
}

NO_ACTIVITY_TEXT = {
    "zh": "今天没有记录任何活动。",
    "en": "No activity recorded for this day.",
}


@dataclass(frozen=True)
class StorageSettings:
    data_dir: Path
    recordings_dir: Path
    videos_dir: Path
    db_path: Path


@dataclass(frozen=True)
class CaptureSettings:
    interval_seconds: float
    jpeg_quality: int


@dataclass(frozen=True)
class SummarySettings:
    interval_seconds: int
    min_frames: int
    catchup_windows: int
    delete_video_after_summary: bool
    ffmpeg_binary: str
    language: str
    video_resolution: str


@dataclass(frozen=True)
class GeminiSettings:
    api_key: str | None
    model: str
    upload_attempts: int = 3
    retry_buffer_seconds: float = 0.5
    poll_interval_seconds: float = 1.0
    poll_timeout_seconds: float = 120.0


@dataclass(frozen=True)
class LoggingSettings:
    directory: Path
    level: str = "INFO"


@dataclass(frozen=True)
class OutputSettings:
    summary_dir: Path


@dataclass(frozen=True)
class AppSettings:
    timezone: ZoneInfo
    storage: StorageSettings
    capture: CaptureSettings
    summary: SummarySettings
    gemini: GeminiSettings
    logging: LoggingSettings
    output: OutputSettings


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    dotenv_path = Path(__file__).resolve().parents[1] / ".env"
    load_dotenv(dotenv_path=dotenv_path, override=False, encoding="utf-8-sig")
    return load_settings(os.environ)


def load_settings(env) -> AppSettings:
    """Build settings from a mapping of environment variables."""
    timezone = ZoneInfo(env.get("TIMEZONE", "Asia/Shanghai"))

    data_dir = Path(env.get("CLARITY_DATA_DIR", "data")).expanduser().resolve()
    recordings_dir = Path(env.get("RECORDINGS_DIR", str(data_dir / "recordings"))).expanduser().resolve()
    storage = StorageSettings(
        data_dir=data_dir,
        recordings_dir=recordings_dir,
        videos_dir=recordings_dir / "videos",
        db_path=Path(env.get("CLARITY_DB_PATH", str(data_dir / "clarity.db"))).expanduser().resolve(),
    )

    capture = CaptureSettings(
        interval_seconds=float(env.get("CAPTURE_INTERVAL_SECONDS", "1")),
        jpeg_quality=int(env.get("JPEG_QUALITY", "85")),
    )

    summary = SummarySettings(
        interval_seconds=clamp_interval(int(env.get("SUMMARY_INTERVAL_SECONDS", "45"))),
        min_frames=max(1, int(env.get("SUMMARY_MIN_FRAMES", "5"))),
        catchup_windows=max(1, int(env.get("SUMMARY_CATCHUP_WINDOWS", "3"))),
        delete_video_after_summary=_as_bool(env.get("DELETE_VIDEO_AFTER_SUMMARY"), default=True),
        ffmpeg_binary=env.get("FFMPEG_BINARY", "ffmpeg"),
        language=_choice(env.get("LANGUAGE", "zh"), LANGUAGES, "zh"),
        video_resolution=_choice(env.get("VIDEO_RESOLUTION", "low"), VIDEO_RESOLUTIONS, "low"),
    )

    gemini = GeminiSettings(
        api_key=env.get("GEMINI_API_KEY") or None,
        model=env.get("GEMINI_MODEL", "gemini-3-flash-preview"),
        upload_attempts=max(1, int(env.get("GEMINI_UPLOAD_ATTEMPTS", "3"))),
        retry_buffer_seconds=float(env.get("GEMINI_RETRY_BUFFER_SECONDS", "0.5")),
        poll_interval_seconds=float(env.get("GEMINI_POLL_INTERVAL_SECONDS", "1")),
        poll_timeout_seconds=float(env.get("GEMINI_POLL_TIMEOUT_SECONDS", "120")),
    )

    logging_settings = LoggingSettings(
        directory=Path(env.get("LOG_DIR", "logs")).resolve(),
        level=env.get("LOG_LEVEL", "INFO").upper(),
    )

    output_settings = OutputSettings(
        summary_dir=Path(env.get("SUMMARY_OUTPUT_DIR", "output")).resolve(),
    )

    return AppSettings(
        timezone=timezone,
        storage=storage,
        capture=capture,
        summary=summary,
        gemini=gemini,
        logging=logging_settings,
        output=output_settings,
    )


def clamp_interval(seconds: int) -> int:
    return max(MIN_SUMMARY_INTERVAL_SECONDS, min(MAX_SUMMARY_INTERVAL_SECONDS, seconds))


def _choice(raw: str, allowed: tuple[str, ...], default: str) -> str:
    value = raw.strip().lower()
    return value if value in allowed else default


def _as_bool(raw: str | None, default: bool | None = None) -> bool:
    if raw is None:
        if default is None:
            return False
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}
