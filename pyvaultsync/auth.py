"""Access-token handling for the remote drive.

The user supplies a long-lived refresh token; short-lived access tokens are
fetched from the token endpoint on demand and renewed shortly before they
expire.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Generator
from typing import Callable

import httpx

from .exceptions import DriveAuthenticationError, DriveNetworkError

logger = logging.getLogger(__name__)

# Renew the access token when it expires within this many seconds
REFRESH_MARGIN = 60.0


class RefreshTokenAuth(httpx.Auth):
    """httpx auth flow that exchanges a refresh token for access tokens."""

    def __init__(
        self,
        refresh_token: str,
        token_url: str,
        client_id: str | None = None,
        client_secret: str | None = None,
        on_invalid: Callable[[], None] | None = None,
        timeout: float = 30.0,
    ):
        """Initialize the auth flow.

        Args:
            refresh_token: Stored refresh token
            token_url: Token endpoint used to obtain access tokens
            client_id: Optional OAuth client id sent with the refresh request
            client_secret: Optional OAuth client secret
            on_invalid: Called when the token endpoint rejects the refresh
                token, so the caller can forget the stored credential
            timeout: Timeout for the token request in seconds
        """
        self.refresh_token = refresh_token
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.on_invalid = on_invalid
        self.timeout = timeout
        self._access_token = ""
        self._expires_at = 0.0
        self._lock = threading.Lock()

    def auth_flow(
        self, request: httpx.Request
    ) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers["Authorization"] = f"Bearer {self.get_access_token()}"
        yield request

    def get_access_token(self) -> str:
        with self._lock:
            if not self._access_token or self._expires_at - time.time() < REFRESH_MARGIN:
                self._refresh()
            return self._access_token

    def _refresh(self) -> None:
        if not self.refresh_token:
            raise DriveAuthenticationError(
                "No refresh token configured. Run 'pyvaultsync init' first."
            )

        data = {"grant_type": "refresh_token", "refresh_token": self.refresh_token}
        if self.client_id:
            data["client_id"] = self.client_id
        if self.client_secret:
            data["client_secret"] = self.client_secret

        logger.debug("Refreshing access token via %s", self.token_url)
        try:
            response = httpx.post(self.token_url, data=data, timeout=self.timeout)
        except httpx.RequestError as e:
            raise DriveNetworkError(f"Network error while refreshing token: {e}") from e

        try:
            payload = response.json() if response.content else {}
        except ValueError:
            payload = {}

        access_token = payload.get("access_token") if response.is_success else None
        if not access_token:
            self.refresh_token = ""
            self._access_token = ""
            self._expires_at = 0.0
            if self.on_invalid is not None:
                self.on_invalid()
            raise DriveAuthenticationError(
                "Something is wrong with your refresh token, please reset it."
            )

        self._access_token = access_token
        self._expires_at = time.time() + float(payload.get("expires_in", 3600))
