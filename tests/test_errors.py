"""Error taxonomy and vendor error classification."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import httpx
import pytest

from fluxgate.adapters._errors import (
    classify_error,
    extract_retry_after_s,
    extract_status_code,
)
from fluxgate.errors import (
    AuthenticationError,
    ConfigurationError,
    ErrorKind,
    GatewayError,
    MalformedResponseError,
    NetworkError,
    RateLimitError,
    RequestCancelled,
    error_class_for,
)

pytestmark = pytest.mark.unit


class _Resp:
    def __init__(self, status_code: int, headers: dict[str, str] | None = None) -> None:
        self.status_code = status_code
        self.headers = headers or {}


class _SdkError(Exception):
    """Shaped like openai/anthropic ``APIStatusError``."""

    def __init__(
        self, message: str, status_code: int, headers: dict[str, str] | None = None
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response = _Resp(status_code, headers)


class _GoogleError(Exception):
    """Shaped like ``google.genai.errors.APIError`` (int ``code``, parsed ``details``)."""

    def __init__(self, code: int, details: dict[str, Any] | None = None) -> None:
        super().__init__(f"{code} error")
        self.code = code
        self.details = details


# =============================================================================
# Taxonomy
# =============================================================================


def test_every_kind_has_an_exception_class() -> None:
    for kind in ErrorKind:
        cls = error_class_for(kind)
        assert issubclass(cls, GatewayError)
        assert cls("x").kind is kind


def test_configuration_error_is_invalid_request_with_hint() -> None:
    err = ConfigurationError("bad", hint="fix it")
    assert err.kind is ErrorKind.INVALID_REQUEST
    assert err.hint == "fix it"
    assert err.to_dict()["kind"] == "InvalidRequest"


def test_cancellation_is_flagged() -> None:
    assert RequestCancelled("stop").is_cancellation
    assert not NetworkError("down").is_cancellation


# =============================================================================
# Extraction helpers
# =============================================================================


def test_status_and_retry_after_found_through_exception_chain() -> None:
    inner = _SdkError("slow down", 429, {"Retry-After": "2"})
    try:
        try:
            raise inner
        except _SdkError as e:
            raise RuntimeError("wrapped") from e
    except RuntimeError as outer:
        assert extract_status_code(outer) == 429
        assert extract_retry_after_s(outer) == 2.0


def test_retry_after_from_google_retry_info() -> None:
    details = {
        "error": {
            "details": [
                {"@type": "type.googleapis.com/google.rpc.RetryInfo", "retryDelay": "8.5s"}
            ]
        }
    }
    assert extract_retry_after_s(_GoogleError(429, details)) == 8.5


def test_google_int_code_is_a_status() -> None:
    assert extract_status_code(_GoogleError(404)) == 404


# =============================================================================
# classify_error
# =============================================================================


@pytest.mark.parametrize(
    ("status", "message", "kind", "reason"),
    [
        (401, "unauthorized", ErrorKind.AUTH_FAILURE, None),
        (403, "forbidden", ErrorKind.AUTH_FAILURE, None),
        (402, "payment required", ErrorKind.AUTH_FAILURE, None),
        (400, "Invalid API key provided", ErrorKind.AUTH_FAILURE, None),
        (
            400,
            "maximum context length is 128000 tokens",
            ErrorKind.INVALID_REQUEST,
            "context_length_exceeded",
        ),
        (400, "bad field", ErrorKind.INVALID_REQUEST, None),
        (404, "no such model", ErrorKind.INVALID_REQUEST, "model_not_found"),
        (422, "unprocessable", ErrorKind.INVALID_REQUEST, None),
        (429, "rate limited", ErrorKind.RATE_LIMITED, None),
        (503, "overloaded", ErrorKind.NETWORK_FAILURE, "server_error"),
    ],
)
def test_status_codes_map_to_kinds(
    status: int, message: str, kind: ErrorKind, reason: str | None
) -> None:
    err = classify_error(_SdkError(message, status), vendor="openai")

    assert err.kind is kind
    assert err.reason == reason
    assert err.status_code == status
    assert err.vendor == "openai"
    assert message in str(err)


def test_auth_failure_hint_names_the_env_var() -> None:
    err = classify_error(_SdkError("nope", 401), vendor="anthropic")
    assert isinstance(err, AuthenticationError)
    assert err.hint is not None and "ANTHROPIC_API_KEY" in err.hint


def test_rate_limit_is_retryable_with_delay() -> None:
    err = classify_error(_SdkError("slow", 429, {"Retry-After": "3"}), vendor="groq")
    assert isinstance(err, RateLimitError)
    assert err.retryable is True
    assert err.retry_after_s == 3.0


@pytest.mark.parametrize(
    "exc",
    [
        httpx.ReadTimeout("read timed out"),
        TimeoutError(),
        asyncio.TimeoutError(),
    ],
)
def test_timeouts_are_network_failures(exc: BaseException) -> None:
    err = classify_error(exc, vendor="openai")
    assert isinstance(err, NetworkError)
    assert err.reason == "timeout"
    assert err.retryable is True


def test_sdk_timeout_error_by_type_name() -> None:
    class APITimeoutError(Exception):
        pass

    assert classify_error(APITimeoutError("t"), vendor="openai").reason == "timeout"


def test_connection_errors_are_network_failures() -> None:
    err = classify_error(httpx.ConnectError("refused"), vendor="ollama")
    assert err.kind is ErrorKind.NETWORK_FAILURE
    assert err.reason == "connection"


def test_decode_errors_are_upstream_malformed() -> None:
    try:
        json.loads("{not json")
    except json.JSONDecodeError as e:
        err = classify_error(e, vendor="deepseek")
    assert isinstance(err, MalformedResponseError)


def test_unknown_errors_are_logged_for_reclassification(
    caplog: pytest.LogCaptureFixture,
) -> None:
    with caplog.at_level(logging.WARNING, logger="fluxgate.adapters._errors"):
        err = classify_error(ValueError("odd"), vendor="mistral")

    assert err.kind is ErrorKind.UNKNOWN
    assert "mistral" in caplog.text
    assert "ValueError" in caplog.text


def test_cancellation_is_never_converted() -> None:
    with pytest.raises(asyncio.CancelledError):
        classify_error(asyncio.CancelledError(), vendor="openai")


def test_already_classified_errors_pass_through() -> None:
    original = ConfigurationError("missing SDK")
    err = classify_error(original, vendor="gemini")
    assert err is original
    assert err.vendor == "gemini"
