"""
Single outbound HTTP call with outcome classification.

HttpFetcher never retries and never sleeps: it issues one request and
reports what happened as a FetchOutcome. Retry decisions belong to the
per-source client loop in ``ingestion.clients``.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional
import enum
import httpx
import logging

logger = logging.getLogger(__name__)


class OutcomeKind(str, enum.Enum):
    OK = "ok"
    RATE_LIMITED = "rate_limited"
    AUTH_EXPIRED = "auth_expired"
    NOT_FOUND = "not_found"
    TRANSIENT = "transient"
    FATAL = "fatal"


@dataclass
class HttpRequest:
    """Description of one outbound call."""
    method: str
    url: str
    params: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)
    content: Optional[str] = None
    timeout: Optional[float] = None
    # Client adds Client-ID and bearer token headers
    needs_auth: bool = False

    def with_headers(self, extra: Dict[str, str]) -> "HttpRequest":
        return replace(self, headers={**self.headers, **extra})


@dataclass
class FetchOutcome:
    kind: OutcomeKind
    payload: Any = None
    retry_after: Optional[float] = None
    status_code: Optional[int] = None
    message: Optional[str] = None

    @property
    def is_ok(self) -> bool:
        return self.kind is OutcomeKind.OK

    @classmethod
    def ok(cls, payload: Any, status_code: int = 200) -> "FetchOutcome":
        return cls(OutcomeKind.OK, payload=payload, status_code=status_code)

    @classmethod
    def rate_limited(cls, retry_after: Optional[float]) -> "FetchOutcome":
        return cls(OutcomeKind.RATE_LIMITED, retry_after=retry_after, status_code=429)

    @classmethod
    def auth_expired(cls) -> "FetchOutcome":
        return cls(OutcomeKind.AUTH_EXPIRED, status_code=401, message="Access token rejected")

    @classmethod
    def not_found(cls) -> "FetchOutcome":
        return cls(OutcomeKind.NOT_FOUND, status_code=404, message="Not found")

    @classmethod
    def transient(cls, message: str, status_code: Optional[int] = None) -> "FetchOutcome":
        return cls(OutcomeKind.TRANSIENT, status_code=status_code, message=message)

    @classmethod
    def fatal(cls, message: str, status_code: Optional[int] = None) -> "FetchOutcome":
        return cls(OutcomeKind.FATAL, status_code=status_code, message=message)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Retry-After in seconds; HTTP-date values are ignored."""
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


class HttpFetcher:
    """Issue one request through a shared httpx.AsyncClient and classify the response."""

    def __init__(self, http_client: httpx.AsyncClient, timeout: float = 10.0):
        self.http_client = http_client
        self.timeout = timeout

    async def fetch(self, request: HttpRequest) -> FetchOutcome:
        timeout = request.timeout or self.timeout

        try:
            response = await self.http_client.request(
                request.method,
                request.url,
                params=request.params,
                headers=request.headers,
                content=request.content,
                timeout=timeout,
            )
        except httpx.TimeoutException as e:
            logger.debug(f"Timeout after {timeout}s on {request.url}")
            return FetchOutcome.transient(f"Request timed out: {e}")
        except httpx.TransportError as e:
            return FetchOutcome.transient(f"Transport error: {type(e).__name__}: {e}")

        return self.classify(response)

    @staticmethod
    def classify(response: httpx.Response) -> FetchOutcome:
        status = response.status_code

        if status == 429:
            return FetchOutcome.rate_limited(parse_retry_after(response.headers.get("Retry-After")))
        if status == 401:
            return FetchOutcome.auth_expired()
        if status == 404:
            return FetchOutcome.not_found()
        if status == 408 or status >= 500:
            return FetchOutcome.transient(f"Server error {status}", status_code=status)
        if status >= 400:
            return FetchOutcome.fatal(
                f"Request rejected with {status}: {response.text[:200]}",
                status_code=status
            )

        try:
            payload = response.json()
        except ValueError:
            return FetchOutcome.transient(
                f"Undecodable response body ({len(response.content)} bytes)",
                status_code=status
            )
        return FetchOutcome.ok(payload, status_code=status)
