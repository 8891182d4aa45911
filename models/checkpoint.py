from sqlalchemy import Column, Integer, BigInteger, DateTime, Index
from models.base import Base, Source, SyncType, enum_column_type, utc_now


class SyncCursor(Base):
    """
    Durable resume position per (source, sync type).

    Design:
    - One row per pair
    - last_cursor is only ever raised (max of old and new value), so a
      crashed or stopped run never rewinds progress
    - The cursor's meaning is source specific: page number (RAWG,
      CheapShark), offset (IGDB), highest app id (Steam), page index (Twitch)
    """
    __tablename__ = "sync_cursors"

    id = Column(Integer, primary_key=True, autoincrement=True)

    source = Column(enum_column_type(Source, "sync_source"), nullable=False)
    sync_type = Column(enum_column_type(SyncType, "sync_type"), nullable=False)

    last_cursor = Column(BigInteger, nullable=False, default=0)

    # Statistics
    last_success_at = Column(DateTime, nullable=True)
    last_failure_at = Column(DateTime, nullable=True)
    total_runs = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index("idx_sync_cursor_source_type", "source", "sync_type", unique=True),
    )
