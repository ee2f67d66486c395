from __future__ import annotations

import io
from datetime import datetime
from pathlib import Path
from typing import Protocol
from zoneinfo import ZoneInfo

from PIL import Image

from .errors import CaptureFailure, EncodingFailure
from .models import EncodedFrame, Frame
from .utils import ensure_directory, utc_now

PERMISSION_HINT = (
    "On macOS, ensure Screen Recording permission is granted in "
    "System Settings > Privacy & Security > Screen Recording"
)


class ScreenSource(Protocol):
    def check(self) -> None:
        """Raise CaptureFailure when frames cannot be captured at all."""

    def grab(self) -> Frame:
        ...


class PyAutoGuiScreenSource:
    """Primary-screen capture through pyautogui."""

    def check(self) -> None:
        self.grab()

    def grab(self) -> Frame:
        captured_at = utc_now()
        try:
            # Imported lazily: pyautogui needs a display at import time.
            import pyautogui

            pyautogui.FAILSAFE = False
            screenshot = pyautogui.screenshot()
        except Exception as exc:
            raise CaptureFailure(f"Failed to capture screen: {exc}. {PERMISSION_HINT}") from exc

        return Frame(
            pixels=screenshot.tobytes(),
            width=screenshot.width,
            height=screenshot.height,
            captured_at=captured_at,
            mode=screenshot.mode,
        )


def probe_frame(frame: Frame) -> str:
    """Describe a frame and flag blank captures, which usually mean a missing permission."""
    channels = len(frame.mode)
    pixel_count = frame.width * frame.height
    non_zero = 0
    colors: set[tuple[int, ...]] = set()
    for offset in range(0, len(frame.pixels) - channels + 1, channels):
        rgb = tuple(frame.pixels[offset:offset + 3])
        if any(rgb):
            non_zero += 1
        if len(colors) < 100:
            colors.add(rgb)

    non_zero_percent = (non_zero / pixel_count * 100.0) if pixel_count else 0.0
    if non_zero_percent < 1.0 or len(colors) < 5:
        verdict = f"WARNING: image appears mostly blank. {PERMISSION_HINT}"
    else:
        verdict = "image has content"
    return (
        f"Captured: {frame.width}x{frame.height} pixels | Non-zero: {non_zero_percent:.1f}% | "
        f"Unique colors: {len(colors)} | {verdict}"
    )


class FrameEncoder:
    def __init__(self, root: Path, timezone: ZoneInfo, log, quality: int = 85):
        self._root = root
        self._timezone = timezone
        self._logger = log
        self._quality = quality

    @property
    def root(self) -> Path:
        return self._root

    def encode(self, frame: Frame, sequence: int) -> EncodedFrame:
        try:
            image = Image.frombytes(frame.mode, (frame.width, frame.height), frame.pixels)
            if image.mode != "RGB":
                # JPEG has no alpha channel.
                image = image.convert("RGB")
            buffer = io.BytesIO()
            image.save(buffer, "JPEG", quality=self._quality)
        except (ValueError, OSError) as exc:
            raise EncodingFailure(f"Failed to encode frame: {exc}") from exc

        payload = buffer.getvalue()
        path = self._write_exclusive(self.path_for(frame.captured_at, sequence), payload)
        self._logger.debug("Encoded frame %s (%s bytes)", path.name, len(payload))
        return EncodedFrame(path=path, width=frame.width, height=frame.height, file_size=len(payload))

    def path_for(self, captured_at: datetime, sequence: int) -> Path:
        local = captured_at.astimezone(self._timezone)
        date_str = local.strftime("%Y-%m-%d")
        return self._root / date_str / f"{date_str}_{local.strftime('%H-%M-%S')}_{sequence:06d}.jpg"

    def _write_exclusive(self, path: Path, payload: bytes) -> Path:
        try:
            ensure_directory(path.parent)
        except OSError as exc:
            raise EncodingFailure(f"Failed to create directory {path.parent}: {exc}") from exc

        candidate = path
        suffix = 0
        while True:
            try:
                with candidate.open("xb") as handle:
                    handle.write(payload)
                return candidate
            except FileExistsError:
                suffix += 1
                candidate = path.with_name(f"{path.stem}-{suffix}{path.suffix}")
            except OSError as exc:
                raise EncodingFailure(f"Failed to write {candidate}: {exc}") from exc
