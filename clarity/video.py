from __future__ import annotations

import shutil
import subprocess
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Sequence

from .errors import EncodingFailure, InsufficientFrames
from .models import AssembledVideo, ScreenshotTrace
from .storage import TraceStore
from .utils import ensure_directory, timestamp_slug

RESOLUTION_PRESETS = {
    "low": (640, 360),
    "default": (1280, 720),
}

FFMPEG_FALLBACK_PATHS = ("/usr/local/bin/ffmpeg", "/opt/homebrew/bin/ffmpeg")

Runner = Callable[[Sequence[str]], subprocess.CompletedProcess]


def _run(command: Sequence[str]) -> subprocess.CompletedProcess:
    return subprocess.run(list(command), capture_output=True, text=True, check=False)


class VideoAssembler:
    """Stitch a window of screenshots into a short MP4 with ffmpeg."""

    def __init__(
        self,
        traces: TraceStore,
        output_dir: Path,
        log,
        ffmpeg_binary: str = "ffmpeg",
        fps: int = 1,
        runner: Runner = _run,
    ):
        self._traces = traces
        self._output_dir = output_dir
        self._logger = log
        self._ffmpeg_binary = ffmpeg_binary
        self._fps = fps
        self._runner = runner

    def assemble(self, start: datetime, end: datetime, min_frames: int, resolution: str = "low") -> AssembledVideo:
        traces = self._traces.query(start, end)
        frames = _on_disk(traces)
        if len(frames) < len(traces):
            self._logger.warning("%s frames in window are missing on disk", len(traces) - len(frames))
        if len(frames) < min_frames:
            raise InsufficientFrames(len(frames), min_frames)

        ffmpeg = self.find_ffmpeg()
        output_path = ensure_directory(self._output_dir) / f"summary_{timestamp_slug(start)}.mp4"
        list_path = output_path.with_suffix(".txt")
        list_path.write_text(self._concat_list(frames), encoding="utf-8")

        self._logger.info("Running ffmpeg to create video from %s images", len(frames))
        try:
            result = self._runner(self.build_command(ffmpeg, list_path, output_path, resolution))
        except OSError as exc:
            raise EncodingFailure(f"Failed to execute ffmpeg: {exc}") from exc
        finally:
            list_path.unlink(missing_ok=True)

        if result.returncode != 0:
            raise EncodingFailure(f"ffmpeg failed: {(result.stderr or '').strip()[-500:]}")

        return AssembledVideo(path=output_path, frame_count=len(frames), window_start=start, window_end=end)

    def usable_frames(self, start: datetime, end: datetime) -> List[ScreenshotTrace]:
        """Traces in `[start, end)` whose image file is still on disk."""
        return _on_disk(self._traces.query(start, end))

    def find_ffmpeg(self) -> str:
        candidates: List[str] = [self._ffmpeg_binary, *FFMPEG_FALLBACK_PATHS]
        for candidate in candidates:
            resolved = shutil.which(candidate)
            if resolved:
                return resolved
        raise EncodingFailure(f"ffmpeg not found. Please install ffmpeg to create videos. Tried paths: {candidates}")

    def build_command(self, ffmpeg: str, list_path: Path, output_path: Path, resolution: str) -> List[str]:
        width, height = RESOLUTION_PRESETS.get(resolution, RESOLUTION_PRESETS["low"])
        scale = (
            f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
            f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2"
        )
        return [
            ffmpeg,
            "-f", "concat",
            "-safe", "0",
            "-i", str(list_path),
            "-vf", scale,
            "-c:v", "libx264",
            "-preset", "fast",
            "-crf", "23",
            "-pix_fmt", "yuv420p",
            "-r", str(self._fps),
            "-y",
            str(output_path),
        ]

    def _concat_list(self, frames: List[ScreenshotTrace]) -> str:
        duration = 1.0 / self._fps
        lines = []
        for trace in frames:
            lines.append(f"file '{_escape(trace.file_path)}'")
            lines.append(f"duration {duration}")
        # The concat demuxer ignores the last duration unless the file is repeated.
        lines.append(f"file '{_escape(frames[-1].file_path)}'")
        return "\n".join(lines) + "\n"


def _on_disk(traces: List[ScreenshotTrace]) -> List[ScreenshotTrace]:
    return [trace for trace in traces if Path(trace.file_path).exists()]


def _escape(path: Path) -> str:
    return str(path).replace("'", "'\\''")
