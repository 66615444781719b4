"""
Exception hierarchy for the fetch-event-source client.

Transport failures are attempt-fatal and retried by the driver. Payload
failures are local to a single message and reported without stopping the
stream.
"""

from typing import Any

_PREVIEW_LIMIT = 100


class EventSourceError(Exception):
    """
    Base exception for errors raised while decoding an event stream.

    Attributes:
        message: Human-readable error message
        code: Error code for programmatic handling
        details: Additional error details
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details

    def __str__(self) -> str:
        parts = [self.message]
        if self.code is not None:
            parts.append(f"[{self.code}]")
        return " ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r})"
        )


class FetchError(Exception):
    """
    Exception for network/transport/timeout errors.

    Raised when the request cannot be opened or the response body fails
    mid-read. The driver retries these before surfacing them.

    Attributes:
        message: Human-readable error message
        status: HTTP status code (None for network errors)
        url: The URL that was being fetched
    """

    def __init__(
        self,
        message: str,
        status: int | None = None,
        url: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.url = url

    def __str__(self) -> str:
        parts = [self.message]
        if self.status is not None:
            parts.append(f"(status={self.status})")
        if self.url:
            parts.append(f"at {self.url}")
        return " ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"status={self.status!r}, "
            f"url={self.url!r})"
        )


def _preview(data: str) -> str:
    if len(data) > _PREVIEW_LIMIT:
        return data[:_PREVIEW_LIMIT] + "..."
    return data


class PayloadDecodeError(EventSourceError):
    """
    Exception raised when a data message is not a valid patch envelope.

    The payload must be JSON of the form ``{"ops": [...]}``.
    """

    def __init__(self, reason: str, data: str) -> None:
        super().__init__(
            f"Failed to decode event payload: {reason}. Data: {_preview(data)}",
            code="PARSE_ERROR",
            details=data,
        )
        self.reason = reason


class PatchApplyError(EventSourceError):
    """
    Exception raised when the reducer rejects a list of patch operations.

    The aggregated state is left as it was before the failing message.
    """

    def __init__(self, reason: str, ops: Any = None) -> None:
        super().__init__(
            f"Failed to apply patch operations: {reason}",
            code="PATCH_ERROR",
            details=ops,
        )
        self.reason = reason


def fetch_error_from_exception(exc: BaseException, url: str | None) -> FetchError:
    """
    Wrap an attempt failure in a FetchError.

    FetchError instances pass through unchanged; anything else keeps its
    original exception as ``__cause__``.
    """
    if isinstance(exc, FetchError):
        return exc

    status = None
    response = getattr(exc, "response", None)
    if response is not None:
        status = getattr(response, "status_code", None)

    message = str(exc) or exc.__class__.__name__
    error = FetchError(f"Stream request failed: {message}", status=status, url=url)
    error.__cause__ = exc
    return error
