"""Bearer-token management for the Mobility Database catalog API."""
from __future__ import annotations

import math
import time
from typing import Callable, Optional

import requests

from gbfs_explorer.errors import AuthError, UpstreamError
from utils.logging_utils import get_tagged_logger, mask_secret

logger = get_tagged_logger(__name__, tag="data_sources/credentials")

TOKEN_PATH = "/v1/tokens"
# Catalog and token failures surface as server errors, whatever the upstream status.
CATALOG_FAILURE_STATUS = 500


class TokenManager:
    """Keep one valid access token, exchanging the refresh token when needed.

    The token is considered expired `buffer_seconds` before its real expiry.
    Concurrent callers may both refresh; the exchange is idempotent and the
    last response wins. `get_token()` is the only entry point callers use.
    """

    def __init__(
        self,
        refresh_token: Optional[str],
        base_url: str,
        *,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
        buffer_seconds: int = 300,
        default_expires_in: int = 3600,
        timeout: float = 30.0,
        user_agent: str = "GBFSExplorer/1.0",
    ) -> None:
        self.refresh_token = refresh_token
        self.token_url = f"{base_url.rstrip('/')}{TOKEN_PATH}"
        self.session = session or requests.Session()
        self.buffer_seconds = buffer_seconds
        self.default_expires_in = default_expires_in
        self.timeout = timeout
        self.user_agent = user_agent
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at: Optional[float] = None

    @property
    def expires_at(self) -> Optional[float]:
        """Clock reading at which the current token expires."""
        return self._expires_at

    def is_expired(self) -> bool:
        """Return True if there is no token or it is inside the safety buffer."""
        if not self._token or self._expires_at is None:
            return True
        return self._clock() >= self._expires_at - self.buffer_seconds

    def get_token(self) -> str:
        """Return a usable access token, refreshing first if necessary."""
        if self.is_expired():
            return self.refresh()
        return self._token  # type: ignore[return-value]

    def _lifetime(self, expires_in: object) -> float:
        """Token lifetime in seconds; missing or unusable values fall back to the default."""
        if isinstance(expires_in, bool) or not isinstance(expires_in, (int, float, str)):
            return float(self.default_expires_in)
        try:
            seconds = float(expires_in)
        except ValueError:
            logger.warning("Ignoring unusable expires_in %r", expires_in)
            return float(self.default_expires_in)
        if not math.isfinite(seconds) or seconds <= 0:
            logger.warning("Ignoring unusable expires_in %r", expires_in)
            return float(self.default_expires_in)
        return seconds

    def refresh(self) -> str:
        """Exchange the refresh token for a new access token."""
        if not self.refresh_token:
            raise AuthError("MOBILITY_DATABASE_REFRESH_TOKEN not configured")

        logger.info("Refreshing catalog access token (refresh token %s)", mask_secret(self.refresh_token))
        try:
            resp = self.session.post(
                self.token_url,
                json={"refresh_token": self.refresh_token},
                headers={"Accept": "application/json", "User-Agent": self.user_agent},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as exc:
            raise UpstreamError(f"Failed to refresh access token: {exc}", status_code=CATALOG_FAILURE_STATUS) from exc

        if not resp.ok:
            raise UpstreamError(
                f"Failed to refresh access token: upstream returned {resp.status_code}",
                status_code=CATALOG_FAILURE_STATUS,
            )

        try:
            body = resp.json()
        except ValueError as exc:
            raise UpstreamError("Token endpoint returned non-JSON response", status_code=CATALOG_FAILURE_STATUS) from exc

        token = body.get("access_token") if isinstance(body, dict) else None
        if not token:
            raise AuthError("Token endpoint response did not include an access_token")

        expires_in = self._lifetime(body.get("expires_in"))
        self._token = token
        self._expires_at = self._clock() + expires_in
        logger.debug("Access token %s valid for %ss", mask_secret(token), expires_in)
        return token

    def invalidate(self) -> None:
        """Forget the current token so the next call refreshes."""
        self._token = None
        self._expires_at = None
