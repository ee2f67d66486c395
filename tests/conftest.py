"""Shared fixtures and fakes for the Clarity test suite."""

import logging
import subprocess
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from clarity.config import load_settings
from clarity.errors import CaptureFailure
from clarity.events import EventBus
from clarity.gemini_client import Generation, RemoteFile, classify_error
from clarity.models import Frame, ScreenshotTrace
from clarity.state import PipelineState
from clarity.storage import Database, SettingsStore, SummaryStore, TraceStore

T0 = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic clock whose sleep advances time instead of blocking."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeScreenSource:
    def __init__(self, width: int = 4, height: int = 4, start: datetime = T0, fail: bool = False):
        self.width = width
        self.height = height
        self.next_at = start
        self.fail = fail
        self.grabs = 0

    def check(self) -> None:
        if self.fail:
            raise CaptureFailure("Screen Recording permission denied")

    def grab(self) -> Frame:
        self.check()
        self.grabs += 1
        captured_at = self.next_at
        self.next_at = captured_at + timedelta(seconds=1)
        pixels = bytes((i * 7 + self.grabs) % 256 for i in range(self.width * self.height * 4))
        return Frame(pixels=pixels, width=self.width, height=self.height, captured_at=captured_at, mode="RGBA")


class FakeBackend:
    """Scriptable stand-in for the Gemini File and GenerateContent APIs."""

    def __init__(
        self,
        upload_failures: int = 0,
        states=("ACTIVE",),
        generation: Generation | None = None,
        generate_error: Exception | None = None,
        delete_error: Exception | None = None,
    ):
        self.upload_failures = upload_failures
        self.states = list(states)
        self.generation = generation or Generation(
            text="Editing code in VS Code", prompt_tokens=120, completion_tokens=30, total_tokens=150
        )
        self.generate_error = generate_error
        self.delete_error = delete_error
        self.uploads = 0
        self.polls = 0
        self.prompts = []
        self.deleted = []

    def upload(self, path: Path, mime_type: str) -> RemoteFile:
        self.uploads += 1
        if self.uploads <= self.upload_failures:
            raise ConnectionError("connection reset during upload")
        return RemoteFile(
            name="files/abc123", uri="https://example.invalid/files/abc123", mime_type=mime_type, state=self.states[0]
        )

    def get_file(self, name: str) -> RemoteFile:
        self.polls += 1
        state = self.states[min(self.polls, len(self.states) - 1)]
        return RemoteFile(name=name, uri="https://example.invalid/files/abc123", mime_type="video/mp4", state=state)

    def generate(self, model: str, prompt: str, file: RemoteFile | None = None) -> Generation:
        self.prompts.append((model, prompt, file))
        if self.generate_error is not None:
            raise self.generate_error
        return self.generation

    def delete(self, name: str) -> None:
        self.deleted.append(name)
        if self.delete_error is not None:
            raise self.delete_error

    def classify_error(self, exc: Exception):
        return classify_error(exc)


class FakeRunner:
    """Pretends to be ffmpeg: records the command and the concat list, writes the output file."""

    def __init__(self, returncode: int = 0, stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        self.commands = []
        self.lists = []

    def __call__(self, command):
        command = list(command)
        self.commands.append(command)
        self.lists.append(Path(command[command.index("-i") + 1]).read_text(encoding="utf-8"))
        if self.returncode == 0:
            Path(command[-1]).write_bytes(b"\x00\x00\x00\x18ftypmp42")
        return subprocess.CompletedProcess(command, self.returncode, "", self.stderr)


@pytest.fixture
def log():
    return logging.getLogger("clarity.tests")


@pytest.fixture
def fake_ffmpeg(tmp_path):
    path = tmp_path / "bin" / "ffmpeg"
    path.parent.mkdir(parents=True)
    path.write_text("#!/bin/sh\nexit 0\n", encoding="utf-8")
    path.chmod(0o755)
    return path


@pytest.fixture
def env(tmp_path, fake_ffmpeg):
    return {
        "TIMEZONE": "UTC",
        "CLARITY_DATA_DIR": str(tmp_path / "data"),
        "LOG_DIR": str(tmp_path / "logs"),
        "SUMMARY_OUTPUT_DIR": str(tmp_path / "output"),
        "GEMINI_API_KEY": "test-key",
        "FFMPEG_BINARY": str(fake_ffmpeg),
    }


@pytest.fixture
def settings(env):
    return load_settings(env)


@pytest.fixture
def db(tmp_path):
    return Database(tmp_path / "data" / "clarity.db")


@pytest.fixture
def traces(db):
    return TraceStore(db)


@pytest.fixture
def summaries(db):
    return SummaryStore(db)


@pytest.fixture
def settings_store(db):
    return SettingsStore(db)


@pytest.fixture
def state():
    return PipelineState()


@pytest.fixture
def events(log):
    return EventBus(log, coalesce_seconds=0.0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def add_traces(tmp_path, traces):
    """Write placeholder frame files and append one trace per timestamp."""

    frames_dir = tmp_path / "frames"

    def _add(timestamps):
        frames_dir.mkdir(exist_ok=True)
        stored = []
        for ts in timestamps:
            path = frames_dir / f"{ts:%Y%m%d_%H%M%S}.jpg"
            path.write_bytes(b"\xff\xd8\xff\xd9")
            stored.append(
                traces.append(ScreenshotTrace(timestamp=ts, file_path=path, width=4, height=4, file_size=4))
            )
        return stored

    return _add


def seconds_after(start: datetime, *offsets: int):
    return [start + timedelta(seconds=offset) for offset in offsets]
