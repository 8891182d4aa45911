from sqlalchemy import (
    Column, BigInteger, Integer, String, Text, Boolean, Float, DateTime, Index, UniqueConstraint
)
from models.base import Base, BigIntegerPK, JSONType, utc_now


class TwitchGame(Base):
    """
    Per-game viewership aggregate.

    current_* fields are rebuilt from the streams seen during a run;
    peak_* and avg_* fields are recomputed from the viewer history.
    """
    __tablename__ = "twitch_games"

    id = Column(String(50), primary_key=True)
    name = Column(String(500), nullable=False)
    box_art_url = Column(Text, nullable=True)
    igdb_id = Column(String(50), nullable=True)

    current_viewers = Column(Integer, nullable=False, default=0)
    current_channels = Column(Integer, nullable=False, default=0)
    language_breakdown = Column(JSONType, nullable=True)
    top_streamers = Column(JSONType, nullable=True)
    top_videos = Column(JSONType, nullable=True)
    tags = Column(JSONType, nullable=True)

    peak_viewers_today = Column(Integer, nullable=True)
    peak_viewers_week = Column(Integer, nullable=True)
    peak_viewers_month = Column(Integer, nullable=True)
    peak_viewers_all_time = Column(Integer, nullable=True)
    avg_viewers_day = Column(Integer, nullable=True)
    avg_viewers_week = Column(Integer, nullable=True)
    avg_viewers_month = Column(Integer, nullable=True)

    last_updated = Column(DateTime, nullable=False, default=utc_now)
    created_at = Column(DateTime, nullable=False, default=utc_now)


class TwitchStream(Base):
    """Live stream observed for a game."""
    __tablename__ = "twitch_streams"

    id = Column(String(50), primary_key=True)
    game_id = Column(String(50), nullable=False, index=True)
    game_name = Column(String(500), nullable=True)
    user_id = Column(String(50), nullable=True)
    user_name = Column(String(255), nullable=True)
    user_display_name = Column(String(255), nullable=True)
    title = Column(Text, nullable=True)
    viewer_count = Column(Integer, nullable=False, default=0)
    started_at = Column(DateTime, nullable=True)
    language = Column(String(20), nullable=True)
    thumbnail_url = Column(Text, nullable=True)
    tags = Column(JSONType, nullable=True)
    is_mature = Column(Boolean, nullable=False, default=False)

    captured_at = Column(DateTime, nullable=False, default=utc_now)


class TwitchClip(Base):
    """Clip created from a broadcast of a game."""
    __tablename__ = "twitch_clips"

    id = Column(String(100), primary_key=True)
    game_id = Column(String(50), nullable=False, index=True)
    broadcaster_id = Column(String(50), nullable=True)
    broadcaster_name = Column(String(255), nullable=True)
    creator_id = Column(String(50), nullable=True)
    creator_name = Column(String(255), nullable=True)
    title = Column(Text, nullable=True)
    view_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=True)
    duration = Column(Float, nullable=True)
    thumbnail_url = Column(Text, nullable=True)
    embed_url = Column(Text, nullable=True)
    url = Column(Text, nullable=True)
    video_id = Column(String(50), nullable=True)
    vod_offset = Column(Integer, nullable=True)
    language = Column(String(20), nullable=True)

    captured_at = Column(DateTime, nullable=False, default=utc_now)


class TwitchViewerHistory(Base):
    """Point-in-time viewer/channel snapshot for a game."""
    __tablename__ = "twitch_viewer_history"

    id = Column(BigIntegerPK, primary_key=True, autoincrement=True)
    game_id = Column(String(50), nullable=False)
    viewers = Column(BigInteger, nullable=False)
    channels = Column(Integer, nullable=False, default=0)
    captured_at = Column(DateTime, nullable=False, default=utc_now)

    __table_args__ = (
        UniqueConstraint("game_id", "captured_at", name="uq_twitch_viewer_history_game_time"),
        Index("idx_twitch_viewer_history_game", "game_id", "captured_at"),
    )
