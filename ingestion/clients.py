"""
Per-source API clients.

A SourceClient chains RateLimiter -> TokenProvider -> HttpFetcher for one
source and runs the bounded retry loop:

- RATE_LIMITED: sleep Retry-After (or a growing default) and retry, at most
  ``max_rate_limit_retries`` times, then hand the outcome to the caller
- AUTH_EXPIRED: invalidate the token and retry once; a second rejection is
  reported as TRANSIENT
- anything else is returned unchanged

Clients are built once per process with ``build_source_clients`` and passed
into drivers.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional
import httpx
import logging

from core.config import Settings, SourceLimits
from ingestion.auth import TokenProvider
from ingestion.fetcher import FetchOutcome, HttpFetcher, HttpRequest, OutcomeKind
from ingestion.rate_limiter import RateLimiter
from models.base import Source

logger = logging.getLogger(__name__)


class SourceClient:
    """Outbound gateway for a single source; counts every call it makes."""

    def __init__(
        self,
        source: Source,
        limits: SourceLimits,
        fetcher: HttpFetcher,
        rate_limiter: RateLimiter,
        token_provider: Optional[TokenProvider] = None,
        api_key: Optional[str] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.source = Source(source)
        self.limits = limits
        self.fetcher = fetcher
        self.rate_limiter = rate_limiter
        self.token_provider = token_provider
        self.api_key = api_key
        self._sleep = sleep
        self.calls_made = 0

    async def _authorize(self, request: HttpRequest) -> HttpRequest:
        if not request.needs_auth or self.token_provider is None:
            return request
        token = await self.token_provider.get_token()
        return request.with_headers({
            "Client-ID": self.token_provider.client_id or "",
            "Authorization": f"Bearer {token}",
        })

    async def call(self, request: HttpRequest) -> FetchOutcome:
        """
        Perform ``request`` with pacing, auth and bounded retries.

        Raises:
            AuthenticationError: the token grant itself failed
        """
        rate_limit_retries = 0
        auth_retried = False

        while True:
            await self.rate_limiter.wait_turn(self.source.value)
            prepared = await self._authorize(request)

            self.calls_made += 1
            outcome = await self.fetcher.fetch(prepared)

            if outcome.kind is OutcomeKind.RATE_LIMITED:
                if rate_limit_retries >= self.limits.max_rate_limit_retries:
                    logger.warning(
                        f"{self.source.value}: still rate limited after "
                        f"{rate_limit_retries} retries on {request.url}"
                    )
                    return outcome
                wait = outcome.retry_after
                if wait is None:
                    wait = self.limits.rate_limit_default_wait * (rate_limit_retries + 1)
                rate_limit_retries += 1
                logger.warning(
                    f"{self.source.value}: rate limited, waiting {wait:.0f}s "
                    f"(retry {rate_limit_retries}/{self.limits.max_rate_limit_retries})"
                )
                await self._sleep(wait)
                continue

            if outcome.kind is OutcomeKind.AUTH_EXPIRED and self.token_provider is not None:
                self.token_provider.invalidate()
                if auth_retried:
                    return FetchOutcome.transient(
                        "Authorization rejected after token refresh", status_code=401
                    )
                auth_retried = True
                continue

            return outcome

    async def get(self, url: str, params: Optional[Dict[str, Any]] = None, **kwargs) -> FetchOutcome:
        return await self.call(HttpRequest("GET", url, params=params, **kwargs))

    async def post(self, url: str, content: Optional[str] = None, **kwargs) -> FetchOutcome:
        return await self.call(HttpRequest("POST", url, content=content, **kwargs))


def build_source_clients(
    settings: Settings,
    http_client: httpx.AsyncClient,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    rate_limiter: Optional[RateLimiter] = None,
) -> Dict[Source, SourceClient]:
    """One client per source; IGDB and Twitch each get their own token provider."""
    limits = {source: settings.limits_for(source.value) for source in Source}

    if rate_limiter is None:
        rate_limiter = RateLimiter(
            {source.value: limit.request_spacing_ms for source, limit in limits.items()},
            sleep=sleep,
        )
    fetcher = HttpFetcher(http_client, timeout=settings.HTTP_TIMEOUT)

    def token_provider(source: Source, client_id, client_secret) -> TokenProvider:
        return TokenProvider(
            http_client,
            source=source.value,
            client_id=client_id,
            client_secret=client_secret,
            safety_margin_seconds=settings.TOKEN_SAFETY_MARGIN_SECONDS,
            timeout=settings.HTTP_TIMEOUT,
        )

    return {
        Source.RAWG: SourceClient(
            Source.RAWG, limits[Source.RAWG], fetcher, rate_limiter,
            api_key=settings.RAWG_API_KEY, sleep=sleep,
        ),
        Source.IGDB: SourceClient(
            Source.IGDB, limits[Source.IGDB], fetcher, rate_limiter,
            token_provider=token_provider(Source.IGDB, settings.IGDB_CLIENT_ID, settings.IGDB_CLIENT_SECRET),
            sleep=sleep,
        ),
        Source.CHEAPSHARK: SourceClient(
            Source.CHEAPSHARK, limits[Source.CHEAPSHARK], fetcher, rate_limiter, sleep=sleep,
        ),
        Source.STEAM: SourceClient(
            Source.STEAM, limits[Source.STEAM], fetcher, rate_limiter,
            api_key=settings.STEAM_API_KEY, sleep=sleep,
        ),
        Source.TWITCH: SourceClient(
            Source.TWITCH, limits[Source.TWITCH], fetcher, rate_limiter,
            token_provider=token_provider(Source.TWITCH, settings.TWITCH_CLIENT_ID, settings.TWITCH_CLIENT_SECRET),
            sleep=sleep,
        ),
    }
