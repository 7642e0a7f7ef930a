"""Turn technical feed errors into short explanations for end users."""
from __future__ import annotations

from typing import Dict, Optional, Tuple

from gbfs_explorer.domain import ErrorKind, FriendlyError

# Ordered rules: (keywords, title, message, kind). First match wins.
_RULES: Tuple[Tuple[Tuple[str, ...], str, str, ErrorKind], ...] = (
    (
        ("name or service not known", "nameresolutionerror", "failed to resolve"),
        "Service Offline",
        "This mobility service appears to be temporarily offline or has moved.",
        ErrorKind.NETWORK,
    ),
    (
        ("timeout", "timed out"),
        "Connection Timeout",
        "The service is taking too long to respond. It may be experiencing high load.",
        ErrorKind.TIMEOUT,
    ),
    (
        ("connection refused", "connection reset", "max retries exceeded"),
        "Connection Failed",
        "Unable to reach this mobility service. It may be temporarily unavailable.",
        ErrorKind.NETWORK,
    ),
    (
        ("404", "not found"),
        "Service Not Found",
        "This mobility service endpoint no longer exists or has been moved.",
        ErrorKind.SERVER,
    ),
    (
        ("500", "internal server error"),
        "Service Error",
        "The mobility service is experiencing internal issues.",
        ErrorKind.SERVER,
    ),
    (
        ("403", "forbidden"),
        "Access Denied",
        "This mobility service has restricted access to its data.",
        ErrorKind.SERVER,
    ),
    (
        ("no valid feeds found",),
        "No Data Available",
        "This mobility service has no active feeds or available data.",
        ErrorKind.DATA,
    ),
    (
        ("json", "parse", "unexpected token"),
        "Invalid Data",
        "The service returned data in an unexpected format.",
        ErrorKind.DATA,
    ),
    (
        ("ssl", "certificate"),
        "Security Error",
        "There is a security certificate issue with this service.",
        ErrorKind.NETWORK,
    ),
)

_SUGGESTIONS: Dict[ErrorKind, str] = {
    ErrorKind.NETWORK: "This is usually temporary. Try refreshing in a few minutes.",
    ErrorKind.TIMEOUT: "This is usually temporary. Try refreshing in a few minutes.",
    ErrorKind.SERVER: "The service provider needs to fix this issue.",
    ErrorKind.DATA: "The service may have updated their data format.",
}


def error_suggestion(kind: ErrorKind) -> Optional[str]:
    """Return a follow-up hint for an error kind, if there is one."""
    return _SUGGESTIONS.get(kind)


def create_friendly_error(error: str | BaseException | None) -> FriendlyError:
    """Map a raw error message (or exception) to a FriendlyError."""
    if not error:
        return FriendlyError(
            title="Service Unavailable",
            message="Unable to connect to this mobility service right now.",
            kind=ErrorKind.UNKNOWN,
        )

    text = str(error).lower()
    for keywords, title, message, kind in _RULES:
        if any(keyword in text for keyword in keywords):
            return FriendlyError(title=title, message=message, kind=kind, suggestion=error_suggestion(kind))

    return FriendlyError(
        title="Service Unavailable",
        message="This mobility service is currently unavailable. Please try again later.",
        kind=ErrorKind.UNKNOWN,
    )
