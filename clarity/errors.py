from __future__ import annotations

from enum import Enum


class FailureReason(str, Enum):
    UPLOAD_FAILURE = "UploadFailure"
    PROCESSING_TIMEOUT = "ProcessingTimeout"
    PROCESSING_FAILURE = "ProcessingFailure"
    GENERATION_FAILURE = "GenerationFailure"
    QUOTA_EXHAUSTED = "QuotaExhausted"
    AUTH_FAILURE = "AuthFailure"
    MALFORMED_RESPONSE = "MalformedResponse"
    ENCODING_FAILURE = "EncodingFailure"


class ClarityError(RuntimeError):
    pass


class CaptureFailure(ClarityError):
    """The screen source could not deliver a frame (permission, no display)."""


class EncodingFailure(ClarityError):
    """A frame or video could not be encoded, or the encoder tool is missing."""


class InsufficientFrames(ClarityError):
    """The window does not hold enough frames yet. Not an error for the caller."""

    def __init__(self, available: int, required: int):
        super().__init__(f"Only {available} frames available, {required} required")
        self.available = available
        self.required = required


class StoreFailure(ClarityError):
    pass


class ConfigError(ClarityError):
    pass


class CommandError(ClarityError):
    pass


class RemoteFailure(ClarityError):
    reason = FailureReason.GENERATION_FAILURE

    def __init__(self, message: str, reason: FailureReason | None = None):
        super().__init__(message)
        if reason is not None:
            self.reason = reason


class UploadFailure(RemoteFailure):
    reason = FailureReason.UPLOAD_FAILURE


class ProcessingTimeout(RemoteFailure):
    reason = FailureReason.PROCESSING_TIMEOUT


class GenerationFailure(RemoteFailure):
    reason = FailureReason.GENERATION_FAILURE


def remote_failure_for(reason: FailureReason, message: str) -> RemoteFailure:
    if reason is FailureReason.UPLOAD_FAILURE:
        return UploadFailure(message)
    if reason is FailureReason.PROCESSING_TIMEOUT:
        return ProcessingTimeout(message)
    return GenerationFailure(message, reason)
