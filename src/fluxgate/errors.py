"""Exception hierarchy and the closed error taxonomy for fluxgate."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class ErrorKind(str, Enum):
    """Closed classification every gateway failure maps into."""

    INVALID_REQUEST = "InvalidRequest"
    AUTH_FAILURE = "AuthFailure"
    RATE_LIMITED = "RateLimited"
    NETWORK_FAILURE = "NetworkFailure"
    UPSTREAM_MALFORMED = "UpstreamMalformed"
    CANCELLED = "Cancelled"
    UNKNOWN = "Unknown"


class FluxgateError(Exception):
    """Base exception for all fluxgate errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class GatewayError(FluxgateError):
    """A classified failure.

    ``kind`` is the stable taxonomy value callers switch on. ``reason`` is a
    finer, open-ended detail (``"timeout"``, ``"model_not_found"``, ...) kept
    for display and diagnostics.
    """

    default_kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind | None = None,
        hint: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        vendor: str | None = None,
        reason: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.kind = kind if kind is not None else self.default_kind
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after_s = retry_after_s
        self.vendor = vendor
        self.reason = reason

    @property
    def is_cancellation(self) -> bool:
        """Whether this records a user-initiated cancellation."""
        return self.kind is ErrorKind.CANCELLED

    def to_dict(self) -> dict[str, object]:
        """Plain mapping for transport to UI collaborators."""
        return {
            "kind": self.kind.value,
            "message": str(self),
            "reason": self.reason,
            "retryable": bool(self.retryable),
            "status_code": self.status_code,
            "vendor": self.vendor,
            "hint": self.hint,
        }


class ConfigurationError(GatewayError):
    """Request or configuration was rejected before any network call."""

    default_kind = ErrorKind.INVALID_REQUEST


class AuthenticationError(GatewayError):
    """Credential missing, invalid, or without access."""

    default_kind = ErrorKind.AUTH_FAILURE


class RateLimitError(GatewayError):
    """Upstream rate limit exceeded (HTTP 429)."""

    default_kind = ErrorKind.RATE_LIMITED


class NetworkError(GatewayError):
    """Connection failure or timeout."""

    default_kind = ErrorKind.NETWORK_FAILURE


class MalformedResponseError(GatewayError):
    """The vendor returned data the adapter could not interpret."""

    default_kind = ErrorKind.UPSTREAM_MALFORMED


class RequestCancelled(GatewayError):
    """The caller cancelled the request. Never emitted as an error event."""

    default_kind = ErrorKind.CANCELLED


_ERROR_CLASSES: dict[ErrorKind, type[GatewayError]] = {
    ErrorKind.INVALID_REQUEST: ConfigurationError,
    ErrorKind.AUTH_FAILURE: AuthenticationError,
    ErrorKind.RATE_LIMITED: RateLimitError,
    ErrorKind.NETWORK_FAILURE: NetworkError,
    ErrorKind.UPSTREAM_MALFORMED: MalformedResponseError,
    ErrorKind.CANCELLED: RequestCancelled,
    ErrorKind.UNKNOWN: GatewayError,
}


def error_class_for(kind: ErrorKind) -> type[GatewayError]:
    """Return the exception class used for *kind*."""
    return _ERROR_CLASSES[kind]


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
