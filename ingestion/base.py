"""
Abstract base class for source drivers.

A driver knows one third-party API: how to turn a cursor into requests,
how to decide that the data set is exhausted, and how to map payloads to
normalized records. It owns no persistent state; cursors and attempts are
the CheckpointStore's, records are the UpsertSink's. A driver instance is
created per run and may keep per-run memory.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional
from pydantic import ValidationError
import logging

from core.exceptions import (
    FatalRequestError,
    NetworkError,
    NormalizationError,
    RateLimitError,
    ResourceNotFoundError,
    UnsupportedSyncError,
)
from ingestion.clients import SourceClient
from ingestion.fetcher import FetchOutcome, OutcomeKind
from ingestion.loaders.upsert_sink import UpsertSink
from models.base import Source, SyncType
from models.sync_attempt import SyncAttempt
from schemas.normalized import NormalizedRecord

logger = logging.getLogger(__name__)


@dataclass
class PageRecord:
    """A normalized record tagged with its destination."""
    collection: str
    key: Any
    record: NormalizedRecord


@dataclass
class PageResult:
    records: List[PageRecord] = field(default_factory=list)
    next_cursor: int = 0
    # No further pages: the run completes after this one
    exhausted: bool = False
    # Page passed over (e.g. RAWG 404): the in-run index moves, the durable cursor does not
    skipped: bool = False
    # Items that could not be fetched or mapped, counted as failed
    failed_items: int = 0


@dataclass
class IncrementalWindow:
    start: datetime
    end: datetime


@dataclass(frozen=True)
class HotProfile:
    """One pre-defined query executed once per hot update."""
    name: str
    params: Dict[str, Any] = field(default_factory=dict)


class SourceDriver(ABC):
    """
    Base class for all source drivers.

    Responsibilities:
    - Page fetching with a source-specific completion policy
    - Mapping raw payloads to normalized records
    - Translating fetch outcomes into retryable or fatal errors
    """

    source: Source
    # False when upstream cursors are opaque and cannot be resumed across runs
    resumable: bool = True
    supported_sync_types = frozenset({SyncType.HISTORICAL})
    # Collection used for completion statistics
    primary_collection: str = ""

    def __init__(self, client: SourceClient, sink: UpsertSink):
        self.client = client
        self.sink = sink
        self.limits = client.limits

    @property
    def name(self) -> str:
        return self.source.value

    def supports(self, sync_type: SyncType) -> bool:
        return sync_type in self.supported_sync_types

    def start_cursor(self, latest_cursor: int, previous_attempt: Optional[SyncAttempt] = None) -> int:
        """Cursor the historical loop starts from, given the durable position and the last attempt."""
        return latest_cursor if self.resumable else 0

    @abstractmethod
    async def fetch_page(self, cursor: int) -> PageResult:
        """
        Fetch and map one historical page.

        Raises:
            NetworkError: page may succeed on a later try
            FatalRequestError / ResourceNotFoundError: run cannot continue
        """
        pass

    @abstractmethod
    def map_to_normalized(self, raw: Dict[str, Any]) -> List[PageRecord]:
        """Map one primary payload item to its normalized records."""
        pass

    async def fetch_incremental_page(self, cursor: int, window: IncrementalWindow) -> PageResult:
        raise UnsupportedSyncError(
            f"{self.name} has no incremental sync",
            context={"source": self.name, "sync_type": SyncType.INCREMENTAL.value}
        )

    def hot_update_profiles(self) -> List[HotProfile]:
        return []

    async def fetch_profile(self, profile: HotProfile) -> PageResult:
        raise UnsupportedSyncError(
            f"{self.name} has no hot update",
            context={"source": self.name, "sync_type": SyncType.HOT_UPDATE.value}
        )

    async def finalize(self, sync_type: SyncType) -> List[PageRecord]:
        """Records to write after the page loop ends successfully."""
        return []

    def run_metadata(self) -> Dict[str, Any]:
        """Driver-specific values stored on the attempt row."""
        return {}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def expect_ok(self, outcome: FetchOutcome, url: str, **context) -> Any:
        """Return the payload of a successful outcome, raise for anything else."""
        if outcome.is_ok:
            return outcome.payload

        error_context = {"source": self.name, "url": url, "status_code": outcome.status_code, **context}

        if outcome.kind is OutcomeKind.FATAL:
            raise FatalRequestError(
                outcome.message or "Request rejected",
                context=error_context,
                status_code=outcome.status_code
            )
        if outcome.kind is OutcomeKind.NOT_FOUND:
            raise ResourceNotFoundError(f"Not found: {url}", context=error_context)
        if outcome.kind is OutcomeKind.RATE_LIMITED:
            raise RateLimitError(
                f"Rate limited by {self.name} after retries",
                context=error_context,
                retry_after=outcome.retry_after
            )

        # TRANSIENT, AUTH_EXPIRED without a provider
        raise NetworkError(
            outcome.message or f"{outcome.kind.value} from {self.name}",
            context=error_context
        )

    def map_items(
        self,
        items: Iterable[Dict[str, Any]],
        mapper: Optional[Callable[[Dict[str, Any]], List[PageRecord]]] = None,
    ) -> PageResult:
        """Map every item; items that fail validation are logged and counted."""
        mapper = mapper or self.map_to_normalized
        result = PageResult()
        for item in items:
            try:
                result.records.extend(mapper(item))
            except (ValidationError, NormalizationError, ValueError, TypeError, AttributeError) as e:
                result.failed_items += 1
                item_id = item.get("id", item.get("gameID", "?")) if isinstance(item, dict) else "?"
                error = e if isinstance(e, NormalizationError) else NormalizationError(
                    f"Could not map {self.name} item",
                    context={"source": self.name, "item_id": str(item_id)},
                    original_exception=e
                )
                logger.warning(str(error), extra={"error_context": error.to_dict()})
        return result
