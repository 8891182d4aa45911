from sqlalchemy import Column, BigInteger, DateTime, Float, Integer, Text, Index
from models.base import (
    Base, BigIntegerPK, JSONType, Source, SyncStatus, SyncType, enum_column_type, utc_now
)


class SyncAttempt(Base):
    """
    One row per orchestrator run.

    Purpose:
    - Audit trail of every sync run
    - Resume point (last_cursor) for crashed runs
    - Last-success lookups for incremental windows and stats

    Rows are created as running and move to completed or failed exactly
    once. They are never deleted.
    """
    __tablename__ = "sync_attempts"

    id = Column(BigIntegerPK, primary_key=True, autoincrement=True)

    source = Column(enum_column_type(Source, "sync_source"), nullable=False, index=True)
    sync_type = Column(enum_column_type(SyncType, "sync_type"), nullable=False)

    status = Column(
        enum_column_type(SyncStatus, "sync_status"),
        default=SyncStatus.RUNNING,
        nullable=False,
        index=True,
    )

    # Timestamps
    started_at = Column(DateTime, nullable=False, default=utc_now, index=True)
    ended_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Float, nullable=True)

    # Cursor progress
    start_cursor = Column(BigInteger, nullable=False, default=0)
    last_cursor = Column(BigInteger, nullable=False, default=0)

    # Statistics
    items_processed = Column(Integer, nullable=False, default=0)
    items_added = Column(Integer, nullable=False, default=0)
    items_failed = Column(Integer, nullable=False, default=0)

    error_message = Column(Text, nullable=True)

    # Calls used, stop reason, opaque source cursors, ...
    run_metadata = Column("metadata", JSONType, nullable=True)

    __table_args__ = (
        Index("idx_sync_attempt_source_type_started", "source", "sync_type", "started_at"),
        Index("idx_sync_attempt_status", "status", "started_at"),
    )
