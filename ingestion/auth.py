"""
OAuth client-credentials tokens for IGDB and Twitch Helix.

Tokens live in process memory only. A token is reused until it is within
the safety margin of its expiry; a 401 from the API invalidates it early.
"""

import asyncio
import time
from typing import Callable, Optional
import httpx
import logging

from core.exceptions import AuthenticationError

logger = logging.getLogger(__name__)

TWITCH_TOKEN_URL = "https://id.twitch.tv/oauth2/token"


class TokenProvider:
    """
    Cached bearer token for one set of client credentials.

    States: no token -> valid -> expiring (inside the safety margin) -> no token.
    Concurrent callers share a single refresh.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        source: str,
        client_id: Optional[str],
        client_secret: Optional[str],
        safety_margin_seconds: int = 300,
        token_url: str = TWITCH_TOKEN_URL,
        timeout: float = 10.0,
        clock: Callable[[], float] = time.time,
    ):
        self.http_client = http_client
        self.source = source
        self.client_id = client_id
        self.client_secret = client_secret
        self.safety_margin_seconds = safety_margin_seconds
        self.token_url = token_url
        self.timeout = timeout
        self._clock = clock

        self._access_token: Optional[str] = None
        self._expires_at: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def expires_at(self) -> Optional[float]:
        return self._expires_at

    def _is_valid(self) -> bool:
        if self._access_token is None or self._expires_at is None:
            return False
        return self._expires_at - self._clock() > self.safety_margin_seconds

    def invalidate(self):
        """Drop the cached token so the next call performs a fresh grant."""
        if self._access_token is not None:
            logger.info(f"Invalidating {self.source} access token")
        self._access_token = None
        self._expires_at = None

    async def get_token(self) -> str:
        if self._is_valid():
            return self._access_token

        async with self._lock:
            # Another caller may have refreshed while we waited
            if self._is_valid():
                return self._access_token
            return await self._refresh()

    async def _refresh(self) -> str:
        context = {"source": self.source, "token_url": self.token_url}

        if not self.client_id or not self.client_secret:
            raise AuthenticationError(
                f"Missing client credentials for {self.source}",
                context=context
            )

        try:
            response = await self.http_client.post(
                self.token_url,
                params={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "grant_type": "client_credentials",
                },
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise AuthenticationError(
                f"Token request failed for {self.source}",
                context=context,
                original_exception=e
            )

        if response.status_code != 200:
            raise AuthenticationError(
                f"Token grant rejected for {self.source}",
                context={**context, "status_code": response.status_code, "response_body": response.text[:200]}
            )

        try:
            payload = response.json()
            token = payload["access_token"]
            expires_in = float(payload.get("expires_in", 0))
        except (ValueError, KeyError, TypeError) as e:
            raise AuthenticationError(
                f"Malformed token response for {self.source}",
                context=context,
                original_exception=e
            )

        self._access_token = token
        self._expires_at = self._clock() + expires_in
        logger.info(f"Obtained {self.source} access token, valid for {int(expires_in)}s")
        return token
