"""
Pydantic schemas for sync results and API request/response models
"""

from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Optional, List, Dict, Any, Generic, TypeVar
from datetime import datetime
from models.base import Source, SyncType, SyncStatus, utc_now

T = TypeVar("T")


class APIResponse(BaseModel, Generic[T]):
    request_id: str
    api_latency_ms: int
    data: T


# ============================================================================
# Sync Result Schemas
# ============================================================================

class SyncSummary(BaseModel):
    """Outcome of one orchestrator run, returned by every perform_*_sync call."""
    attempt_id: int
    source: Source
    sync_type: SyncType
    status: SyncStatus
    items_processed: int = 0
    items_added: int = 0
    items_failed: int = 0
    start_cursor: int = 0
    last_cursor: int = 0
    duration_seconds: float = 0.0
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(
        use_enum_values=True,
        json_schema_extra={
            "example": {
                "attempt_id": 42,
                "source": "rawg",
                "sync_type": "historical",
                "status": "completed",
                "items_processed": 720000,
                "items_added": 718400,
                "items_failed": 12,
                "start_cursor": 1,
                "last_cursor": 18000,
                "duration_seconds": 5120.4,
                "metadata": {"calls": 18000, "stop_reason": "call_budget"}
            }
        }
    )


class SyncAttemptInfo(BaseModel):
    id: int
    source: Source
    sync_type: SyncType
    status: SyncStatus
    started_at: datetime
    ended_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    start_cursor: int = 0
    last_cursor: int = 0
    items_processed: int = 0
    items_added: int = 0
    items_failed: int = 0
    error_message: Optional[str] = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class SyncStats(BaseModel):
    """Progress and history for one source."""
    source: Source
    cursor: int = 0
    total_records: int = 0
    record_counts: Dict[str, int] = Field(default_factory=dict)
    estimated_total: Optional[int] = None
    percent_complete: Optional[float] = Field(None, ge=0, le=100)
    calls_needed: Optional[int] = None
    last_success_at: Dict[str, Optional[datetime]] = Field(default_factory=dict)
    recent_attempts: List[SyncAttemptInfo] = Field(default_factory=list)

    model_config = ConfigDict(use_enum_values=True)


class SyncTriggerResponse(BaseModel):
    """Acknowledgement for a sync started in the background."""
    source: Source
    sync_type: SyncType
    accepted: bool = True
    message: str

    model_config = ConfigDict(use_enum_values=True)


# ============================================================================
# Health Check Schemas
# ============================================================================

class SourceCursorInfo(BaseModel):
    source: Source
    sync_type: SyncType
    last_cursor: int
    last_success_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None
    total_runs: int = 0

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class HealthCheckResponse(BaseModel):
    """Health check response model"""
    status: str = Field("healthy", description="Overall system status: healthy, degraded, unhealthy")
    timestamp: datetime = Field(default_factory=utc_now)
    database_connected: bool
    cursors: List[SourceCursorInfo] = Field(default_factory=list)
    total_pairs: int = 0
    failing_pairs: int = 0

    @model_validator(mode="after")
    def determine_status(self):
        """A pair is failing when its most recent terminal run failed."""
        if not self.database_connected:
            self.status = "unhealthy"
        elif self.total_pairs == 0 or self.failing_pairs == 0:
            self.status = "healthy"
        elif self.failing_pairs < self.total_pairs:
            self.status = "degraded"
        else:
            self.status = "unhealthy"
        return self


# ============================================================================
# Error Response Schema
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response"""
    error: str
    detail: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)
