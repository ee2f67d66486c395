"""
Tests for Gemini error classification and retry delays.
"""

import pytest
from google.api_core import exceptions as api_exceptions

from clarity.errors import FailureReason, ProcessingTimeout
from clarity.gemini_client import classify_error, retry_wait_seconds


class TestClassifyError:
    @pytest.mark.parametrize(
        "exc, reason",
        [
            (api_exceptions.ResourceExhausted("quota"), FailureReason.QUOTA_EXHAUSTED),
            (api_exceptions.PermissionDenied("denied"), FailureReason.AUTH_FAILURE),
            (api_exceptions.Unauthenticated("no credentials"), FailureReason.AUTH_FAILURE),
            (RuntimeError("429 Too Many Requests"), FailureReason.QUOTA_EXHAUSTED),
            (RuntimeError("Rate limit reached"), FailureReason.QUOTA_EXHAUSTED),
            (RuntimeError("403 Forbidden"), FailureReason.AUTH_FAILURE),
            (KeyError("candidates"), FailureReason.MALFORMED_RESPONSE),
            (ConnectionError("socket closed"), FailureReason.GENERATION_FAILURE),
            (ProcessingTimeout("slow"), FailureReason.PROCESSING_TIMEOUT),
        ],
    )
    def test_reasons(self, exc, reason):
        assert classify_error(exc) is reason


class TestRetryWaitSeconds:
    def test_server_hint_wins(self):
        exc = RuntimeError("429 Quota exceeded. Please retry in 7.5s.")

        assert retry_wait_seconds(exc, attempt=0) == 7.5

    def test_exponential_backoff_with_jitter(self):
        exc = RuntimeError("upload failed")

        assert 1.0 <= retry_wait_seconds(exc, attempt=0) <= 2.0
        assert 4.0 <= retry_wait_seconds(exc, attempt=2) <= 5.0

    def test_backoff_is_capped(self):
        assert retry_wait_seconds(RuntimeError("x"), attempt=20, cap=60.0) <= 61.0
