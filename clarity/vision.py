"""Upload, poll and generate protocol against the remote vision service.

A `VisionCall` walks through

    CREATED -> UPLOADING -> UPLOADED -> PROCESSING -> ACTIVE -> SUMMARIZING -> DONE

and may drop into FAILED from any non-terminal state. Text-only requests go
straight from CREATED to SUMMARIZING. Whatever the outcome, the terminal
transition writes exactly one row to the API request log.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from .errors import (
    FailureReason,
    GenerationFailure,
    ProcessingTimeout,
    RemoteFailure,
    StoreFailure,
    UploadFailure,
    remote_failure_for,
)
from .gemini_client import Generation, RemoteFile, VisionBackend, retry_wait_seconds
from .models import ApiRequestLog
from .storage import SummaryStore
from .utils import utc_now

VIDEO_MIME_TYPE = "video/mp4"


class VisionState(str, Enum):
    CREATED = "CREATED"
    UPLOADING = "UPLOADING"
    UPLOADED = "UPLOADED"
    PROCESSING = "PROCESSING"
    ACTIVE = "ACTIVE"
    SUMMARIZING = "SUMMARIZING"
    DONE = "DONE"
    FAILED = "FAILED"


TRANSITIONS = {
    VisionState.CREATED: {VisionState.UPLOADING, VisionState.SUMMARIZING},
    VisionState.UPLOADING: {VisionState.UPLOADED},
    VisionState.UPLOADED: {VisionState.PROCESSING},
    VisionState.PROCESSING: {VisionState.ACTIVE},
    VisionState.ACTIVE: {VisionState.SUMMARIZING},
    VisionState.SUMMARIZING: {VisionState.DONE},
    VisionState.DONE: set(),
    VisionState.FAILED: set(),
}


@dataclass
class VisionCall:
    request_kind: str
    model: str
    state: VisionState = VisionState.CREATED
    file: Optional[RemoteFile] = None
    generation: Optional[Generation] = None
    reason: Optional[FailureReason] = None
    error: Optional[str] = None
    history: List[VisionState] = field(default_factory=lambda: [VisionState.CREATED])

    @property
    def terminal(self) -> bool:
        return self.state in (VisionState.DONE, VisionState.FAILED)

    @property
    def content(self) -> Optional[str]:
        return self.generation.text if self.generation else None

    def advance(self, new_state: VisionState) -> None:
        if new_state not in TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal vision transition {self.state.value} -> {new_state.value}")
        self._enter(new_state)

    def fail(self, reason: FailureReason, message: str) -> None:
        if self.terminal:
            raise RuntimeError(f"Vision call already finished in {self.state.value}")
        self.reason = reason
        self.error = message
        self._enter(VisionState.FAILED)

    def raise_for_failure(self) -> None:
        if self.state is VisionState.FAILED:
            raise remote_failure_for(self.reason or FailureReason.GENERATION_FAILURE, self.error or "")

    def _enter(self, new_state: VisionState) -> None:
        self.state = new_state
        self.history.append(new_state)


class RemoteVisionClient:
    def __init__(
        self,
        backend: VisionBackend,
        summaries: SummaryStore,
        log,
        upload_attempts: int = 3,
        retry_buffer_seconds: float = 0.5,
        poll_interval_seconds: float = 1.0,
        poll_timeout_seconds: float = 120.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        wall_clock: Callable[[], datetime] = utc_now,
    ):
        self._backend = backend
        self._summaries = summaries
        self._logger = log
        self._upload_attempts = max(1, upload_attempts)
        self._retry_buffer = max(0.0, retry_buffer_seconds)
        self._poll_interval = poll_interval_seconds
        self._poll_timeout = poll_timeout_seconds
        self._clock = clock
        self._sleep = sleep
        self._wall_clock = wall_clock

    def summarize_video(self, video_path: Path, prompt: str, model: str) -> VisionCall:
        call = VisionCall(request_kind="video", model=model)
        started = self._clock()
        self._logger.info("Starting video summary with Google Gemini API: %s", video_path.name)
        try:
            self._upload(call, video_path)
            self._wait_until_active(call)
            self._generate(call, prompt)
        except RemoteFailure as exc:
            call.fail(exc.reason, str(exc))
        except Exception as exc:
            call.fail(self._classify(exc), str(exc))
        finally:
            self._finish(call, started)
        return call

    def generate_text(self, prompt: str, model: str) -> VisionCall:
        call = VisionCall(request_kind="text", model=model)
        started = self._clock()
        try:
            self._generate(call, prompt)
        except RemoteFailure as exc:
            call.fail(exc.reason, str(exc))
        except Exception as exc:
            call.fail(self._classify(exc), str(exc))
        finally:
            self._finish(call, started)
        return call

    def _upload(self, call: VisionCall, video_path: Path) -> None:
        call.advance(VisionState.UPLOADING)
        last_exc: Optional[Exception] = None
        for attempt in range(self._upload_attempts):
            try:
                call.file = self._backend.upload(video_path, VIDEO_MIME_TYPE)
                call.advance(VisionState.UPLOADED)
                self._logger.info("File uploaded successfully: %s", call.file.name)
                return
            except Exception as exc:
                if self._classify(exc) is FailureReason.AUTH_FAILURE:
                    raise
                last_exc = exc
                if attempt + 1 >= self._upload_attempts:
                    break
                wait_seconds = retry_wait_seconds(exc, attempt) + self._retry_buffer
                self._logger.warning(
                    "Upload failed (attempt %s/%s): %s. Waiting %.1fs then retrying...",
                    attempt + 1,
                    self._upload_attempts,
                    exc,
                    wait_seconds,
                )
                self._sleep(wait_seconds)
        raise UploadFailure(f"Upload failed after {self._upload_attempts} attempts: {last_exc}")

    def _wait_until_active(self, call: VisionCall) -> None:
        call.advance(VisionState.PROCESSING)
        deadline = self._clock() + self._poll_timeout
        current = call.file
        while True:
            if current.state == "ACTIVE":
                call.file = current
                call.advance(VisionState.ACTIVE)
                return
            if current.state == "FAILED":
                raise GenerationFailure(f"File processing failed: {current.name}", FailureReason.PROCESSING_FAILURE)
            if self._clock() >= deadline:
                raise ProcessingTimeout(f"Wait for file ACTIVE timeout after {self._poll_timeout:.0f}s")
            self._logger.debug("File %s is %s, waiting %.1fs", current.name, current.state or "PROCESSING", self._poll_interval)
            self._sleep(self._poll_interval)
            try:
                current = self._backend.get_file(current.name)
            except Exception as exc:
                raise GenerationFailure(f"Failed to get file status: {exc}", FailureReason.PROCESSING_FAILURE) from exc

    def _generate(self, call: VisionCall, prompt: str) -> None:
        call.advance(VisionState.SUMMARIZING)
        try:
            call.generation = self._backend.generate(call.model, prompt, call.file)
        except RemoteFailure:
            raise
        except Exception as exc:
            raise GenerationFailure(f"Gemini API error: {exc}", self._classify(exc)) from exc
        call.advance(VisionState.DONE)

    def _classify(self, exc: Exception) -> FailureReason:
        if isinstance(exc, RemoteFailure):
            return exc.reason
        try:
            return self._backend.classify_error(exc)
        except Exception:
            return FailureReason.GENERATION_FAILURE

    def _finish(self, call: VisionCall, started: float) -> None:
        duration_ms = int(max(0.0, self._clock() - started) * 1000)
        generation = call.generation if call.state is VisionState.DONE else None
        entry = ApiRequestLog(
            timestamp=self._wall_clock(),
            model=call.model,
            request_kind=call.request_kind,
            duration_ms=duration_ms,
            success=call.state is VisionState.DONE,
            prompt_tokens=generation.prompt_tokens if generation else None,
            completion_tokens=generation.completion_tokens if generation else None,
            total_tokens=generation.total_tokens if generation else None,
            error_kind=call.reason.value if call.reason else None,
            error_message=call.error,
        )
        try:
            self._summaries.record_api_request(entry)
        except StoreFailure as exc:
            self._logger.error("Failed to save API request to database: %s", exc)

        if call.state is VisionState.DONE:
            self._logger.info(
                "%s request completed in %sms, tokens: prompt=%s completion=%s total=%s",
                call.request_kind,
                duration_ms,
                entry.prompt_tokens,
                entry.completion_tokens,
                entry.total_tokens,
            )
        else:
            self._logger.error("%s request failed (%s): %s", call.request_kind, entry.error_kind, call.error)

        if call.file is not None:
            try:
                self._backend.delete(call.file.name)
            except Exception as exc:
                self._logger.warning("Failed to delete remote file %s: %s", call.file.name, exc)
