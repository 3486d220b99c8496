"""Shared adapter-side error classification.

Every failure an adapter observes is mapped into one ``GatewayError`` with a
stable ``ErrorKind``, using status codes and exception types found anywhere in
the exception chain rather than brittle substring matching wherever possible.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any

import httpx

from fluxgate.config import API_KEY_ENV_VARS
from fluxgate.errors import (
    ErrorKind,
    GatewayError,
    _walk_exception_chain,
    error_class_for,
)

log = logging.getLogger(__name__)

# Statuses an external retry policy may reasonably retry.
RETRYABLE_STATUS_CODES = frozenset({408, 409, 429, 500, 502, 503, 504})
AUTH_STATUS_CODES = frozenset({401, 402, 403})

_CONTEXT_MARKERS = (
    "context length",
    "context_length",
    "maximum context",
    "too many tokens",
    "token limit",
    "prompt is too long",
)
_KEY_MARKERS = ("api key", "api_key", "apikey", "invalid key")


def extract_status_code(exc: BaseException) -> int | None:
    """Walk the exception chain to find an HTTP status code."""
    for e in _walk_exception_chain(exc):
        # google-genai APIError keeps the HTTP status in ``code``.
        for attr in ("status_code", "status", "code"):
            value = getattr(e, attr, None)
            if isinstance(value, int) and 100 <= value <= 599:
                return value
        response = getattr(e, "response", None)
        value = getattr(response, "status_code", None)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
    return None


_PROTO_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?)s$")


def _extract_retry_info_seconds(exc: BaseException) -> float | None:
    """Extract retry delay from Google API-style RetryInfo in error details.

    The Gemini SDK exposes the parsed JSON body via ``.details``, shaped like::

        {"error": {"details": [{"@type": "...RetryInfo", "retryDelay": "8s"}]}}
    """
    details: Any = getattr(exc, "details", None)
    if not isinstance(details, dict):
        return None
    error: Any = details.get("error")
    if not isinstance(error, dict):
        return None
    detail_list: Any = error.get("details")
    if not isinstance(detail_list, list):
        return None
    for entry in detail_list:
        if not isinstance(entry, dict):
            continue
        at_type = entry.get("@type", "")
        if not isinstance(at_type, str) or "RetryInfo" not in at_type:
            continue
        delay_raw = entry.get("retryDelay")
        if not isinstance(delay_raw, str):
            continue
        m = _PROTO_DURATION_RE.match(delay_raw)
        if m:
            return float(m.group(1))
    return None


def extract_retry_after_s(exc: BaseException) -> float | None:
    """Walk the exception chain to find a retry-after delay in seconds."""
    for e in _walk_exception_chain(exc):
        value = getattr(e, "retry_after", None)
        if isinstance(value, (int, float)) and value >= 0:
            return float(value)

        response = getattr(e, "response", None)
        headers: Any = getattr(response, "headers", None)
        if headers is not None and hasattr(headers, "get"):
            raw = headers.get("Retry-After")
            if isinstance(raw, str) and raw.strip():
                try:
                    seconds = float(raw)
                except ValueError:
                    seconds = -1.0
                if seconds >= 0:
                    return seconds

        retry_info = _extract_retry_info_seconds(e)
        if retry_info is not None:
            return retry_info
    return None


def _is_timeout(exc: BaseException) -> bool:
    for e in _walk_exception_chain(exc):
        if isinstance(e, (httpx.TimeoutException, TimeoutError)):
            return True
        # openai.APITimeoutError / anthropic.APITimeoutError
        if type(e).__name__.endswith("TimeoutError"):
            return True
    return False


def _is_connection_error(exc: BaseException) -> bool:
    for e in _walk_exception_chain(exc):
        if isinstance(e, (httpx.TransportError, ConnectionError)):
            return True
        # openai.APIConnectionError / anthropic.APIConnectionError
        if type(e).__name__ == "APIConnectionError":
            return True
    return False


def _is_malformed(exc: BaseException) -> bool:
    for e in _walk_exception_chain(exc):
        if isinstance(e, (json.JSONDecodeError, UnicodeDecodeError)):
            return True
        if type(e).__name__ in ("ValidationError", "APIResponseValidationError"):
            return True
    return False


def _auth_hint(vendor: str) -> str:
    env_var = API_KEY_ENV_VARS.get(vendor, "the API key")
    return f"Check credentials/permissions (try setting {env_var} or ChatConfig.api_key)."


def _classify(
    exc: BaseException, status_code: int | None, message: str
) -> tuple[ErrorKind, str | None]:
    lowered = message.lower()
    if _is_timeout(exc):
        return ErrorKind.NETWORK_FAILURE, "timeout"
    if status_code is not None:
        if status_code in AUTH_STATUS_CODES:
            return ErrorKind.AUTH_FAILURE, None
        if status_code == 429:
            return ErrorKind.RATE_LIMITED, None
        if status_code == 400:
            if any(marker in lowered for marker in _KEY_MARKERS):
                return ErrorKind.AUTH_FAILURE, None
            if any(marker in lowered for marker in _CONTEXT_MARKERS):
                return ErrorKind.INVALID_REQUEST, "context_length_exceeded"
            return ErrorKind.INVALID_REQUEST, None
        if status_code == 404:
            return ErrorKind.INVALID_REQUEST, "model_not_found"
        if status_code == 408:
            return ErrorKind.NETWORK_FAILURE, "timeout"
        if 400 <= status_code < 500:
            return ErrorKind.INVALID_REQUEST, None
        if status_code >= 500:
            return ErrorKind.NETWORK_FAILURE, "server_error"
    if _is_connection_error(exc):
        return ErrorKind.NETWORK_FAILURE, "connection"
    if _is_malformed(exc):
        return ErrorKind.UPSTREAM_MALFORMED, None
    return ErrorKind.UNKNOWN, None


def classify_error(
    exc: BaseException,
    *,
    vendor: str,
    message: str | None = None,
) -> GatewayError:
    """Map a vendor SDK exception into a classified ``GatewayError``.

    ``asyncio.CancelledError`` is re-raised, never converted. Errors that are
    already classified only get their missing vendor filled in.
    """
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    if isinstance(exc, GatewayError):
        if exc.vendor is None:
            exc.vendor = vendor
        return exc

    status_code = extract_status_code(exc)
    retry_after_s = extract_retry_after_s(exc)
    cause = str(exc)
    kind, reason = _classify(exc, status_code, cause)

    if kind is ErrorKind.UNKNOWN:
        log.warning(
            "Unclassified %s error: %s (status=%s)",
            vendor,
            type(exc).__name__,
            status_code,
        )

    retryable = retry_after_s is not None or kind is ErrorKind.NETWORK_FAILURE
    if status_code in RETRYABLE_STATUS_CODES:
        retryable = True

    hint = _auth_hint(vendor) if kind is ErrorKind.AUTH_FAILURE else None
    msg = message or f"{vendor} request failed"
    status_note = f" (status={status_code})" if status_code is not None else ""
    err_cls = error_class_for(kind)
    return err_cls(
        f"{msg}{status_note}: {cause}" if cause else f"{msg}{status_note}",
        kind=kind,
        hint=hint,
        retryable=retryable,
        status_code=status_code,
        retry_after_s=retry_after_s,
        vendor=vendor,
        reason=reason,
    )


# Raised by vendor chunk decoders when an SDK object lacks an expected shape.
DECODE_ERRORS = (AttributeError, IndexError, KeyError, TypeError, ValueError)


def malformed(vendor: str, detail: str) -> GatewayError:
    """Build an ``UpstreamMalformed`` error for undecodable stream data."""
    return error_class_for(ErrorKind.UPSTREAM_MALFORMED)(
        f"{vendor} stream could not be decoded: {detail}",
        vendor=vendor,
        retryable=False,
    )
