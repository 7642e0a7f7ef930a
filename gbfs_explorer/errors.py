"""Exception taxonomy for upstream, feed and pipeline failures.

Every error carries an HTTP-equivalent ``status_code`` so the API layer can
render it without a per-type lookup table. Per-feed failures inside a batch
fetch are converted to strings and never raised; these classes only escape
from single-request operations (token exchange, catalog listing, proxy).
"""

from __future__ import annotations


class ExplorerError(Exception):
    """Base class for errors surfaced by the explorer service."""

    status_code: int = 500

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class AuthError(ExplorerError):
    """Refresh credential missing or the token exchange was rejected."""

    status_code = 500


class UpstreamError(ExplorerError):
    """An upstream dependency answered with a non-success status."""

    status_code = 502

    def __init__(self, message: str, *, status_code: int | None = None, excerpt: str = "") -> None:
        super().__init__(message, status_code=status_code)
        self.excerpt = excerpt


class FeedTimeoutError(ExplorerError):
    """A single upstream request exceeded its time box."""

    status_code = 408


class NetworkError(ExplorerError):
    """Connection, DNS or TLS failure before any HTTP status was received."""

    status_code = 502


class ContentTypeError(ExplorerError):
    """The upstream answered with something other than JSON."""

    status_code = 502


class ParseError(ExplorerError):
    """The upstream body could not be decoded or did not match the expected shape."""

    status_code = 502


class CityNotFoundError(ExplorerError):
    """No catalog operators are located in the requested city."""

    status_code = 404


class StaleSelectionError(ExplorerError):
    """A city run finished after a newer selection replaced it."""

    status_code = 409


class ConfigurationError(ExplorerError):
    """A required setting is missing."""

    status_code = 500


class BadRequestError(ExplorerError):
    """The caller sent an incomplete or malformed request."""

    status_code = 400
