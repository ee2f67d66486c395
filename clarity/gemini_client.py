from __future__ import annotations

import random
import re
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Protocol

import google.generativeai as genai
from google.api_core import exceptions as api_exceptions

from .errors import FailureReason, GenerationFailure


@dataclass
class RemoteFile:
    name: str
    uri: str
    mime_type: str
    state: str


@dataclass
class Generation:
    text: str
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None


class VisionBackend(Protocol):
    def upload(self, path: Path, mime_type: str) -> RemoteFile:
        ...

    def get_file(self, name: str) -> RemoteFile:
        ...

    def generate(self, model: str, prompt: str, file: Optional[RemoteFile] = None) -> Generation:
        ...

    def delete(self, name: str) -> None:
        ...

    def classify_error(self, exc: Exception) -> FailureReason:
        ...


class GeminiBackend:
    """Thin adapter over the google-generativeai File and GenerateContent APIs."""

    def __init__(self, api_key: Callable[[], Optional[str]], log, request_timeout: float = 600.0):
        self._api_key = api_key
        self._logger = log
        self._request_timeout = request_timeout
        self._configured_key: Optional[str] = None
        self._lock = threading.Lock()

    def _configure(self) -> None:
        key = self._api_key()
        if not key:
            raise GenerationFailure("Google Gemini API key not set", FailureReason.AUTH_FAILURE)
        with self._lock:
            if key != self._configured_key:
                genai.configure(api_key=key)
                self._configured_key = key

    def upload(self, path: Path, mime_type: str = "video/mp4") -> RemoteFile:
        self._configure()
        self._logger.info("Uploading file to Google Gemini File API: %s", path.name)
        uploaded = genai.upload_file(path=str(path), mime_type=mime_type, display_name=path.name)
        return _to_remote_file(uploaded, mime_type)

    def get_file(self, name: str) -> RemoteFile:
        self._configure()
        file_id = name if name.startswith("files/") else f"files/{name}"
        return _to_remote_file(genai.get_file(file_id))

    def generate(self, model: str, prompt: str, file: Optional[RemoteFile] = None) -> Generation:
        self._configure()
        parts: list = []
        if file is not None:
            parts.append(genai.protos.Part(file_data=genai.protos.FileData(file_uri=file.uri, mime_type=file.mime_type)))
        parts.append(prompt)

        response = genai.GenerativeModel(model).generate_content(
            parts, request_options={"timeout": self._request_timeout}
        )
        try:
            text = response.text
        except ValueError as exc:
            # Raised by the SDK when the candidate has no text part (blocked or empty).
            raise GenerationFailure(f"No text in Gemini response: {exc}", FailureReason.MALFORMED_RESPONSE) from exc
        if not text or not text.strip():
            raise GenerationFailure("Empty response from Gemini API", FailureReason.MALFORMED_RESPONSE)

        usage = getattr(response, "usage_metadata", None)
        return Generation(
            text=text.strip(),
            prompt_tokens=_token_count(usage, "prompt_token_count"),
            completion_tokens=_token_count(usage, "candidates_token_count"),
            total_tokens=_token_count(usage, "total_token_count"),
        )

    def delete(self, name: str) -> None:
        self._configure()
        genai.delete_file(name)

    def classify_error(self, exc: Exception) -> FailureReason:
        return classify_error(exc)


def classify_error(exc: Exception) -> FailureReason:
    reason = getattr(exc, "reason", None)
    if isinstance(reason, FailureReason):
        return reason

    if isinstance(exc, api_exceptions.ResourceExhausted):
        return FailureReason.QUOTA_EXHAUSTED
    if isinstance(exc, (api_exceptions.PermissionDenied, api_exceptions.Unauthenticated)):
        return FailureReason.AUTH_FAILURE

    message = str(exc)
    lowered = message.lower()
    if "429" in message or "quota exceeded" in lowered or "rate limit" in lowered:
        return FailureReason.QUOTA_EXHAUSTED
    if "401" in message or "403" in message or "api key not valid" in lowered:
        return FailureReason.AUTH_FAILURE
    if isinstance(exc, (ValueError, KeyError, TypeError)):
        return FailureReason.MALFORMED_RESPONSE
    return FailureReason.GENERATION_FAILURE


def retry_wait_seconds(exc: Exception, attempt: int, cap: float = 60.0) -> float:
    # Prefer server-suggested delay if present.
    match = re.search(r"Please retry in\s+([0-9]+(?:\.[0-9]+)?)s", str(exc))
    if match:
        try:
            return float(match.group(1))
        except ValueError:
            pass

    base = min(cap, 2.0 ** attempt)
    return base + random.uniform(0.0, 1.0)


def _to_remote_file(file, mime_type: Optional[str] = None) -> RemoteFile:
    state = getattr(file, "state", "")
    return RemoteFile(
        name=file.name,
        uri=getattr(file, "uri", ""),
        mime_type=getattr(file, "mime_type", None) or mime_type or "video/mp4",
        state=getattr(state, "name", str(state or "")),
    )


def _token_count(usage, field: str) -> Optional[int]:
    if usage is None:
        return None
    value = getattr(usage, field, None)
    return int(value) if value is not None else None
