from sqlalchemy import (
    Column, BigInteger, Integer, String, Text, Boolean, DateTime, Index, UniqueConstraint
)
from models.base import Base, BigIntegerPK, JSONType, utc_now


class SteamApp(Base):
    """
    Store entry for a Steam app.

    Player count and review fields are only populated for apps of type
    ``game``; every other type stores them as null.
    """
    __tablename__ = "steam_apps"

    app_id = Column(Integer, primary_key=True, autoincrement=False)
    name = Column(String(500), nullable=False)
    type = Column(String(50), nullable=False, default="unknown", index=True)

    required_age = Column(Integer, nullable=True)
    is_free = Column(Boolean, nullable=True)
    short_description = Column(Text, nullable=True)
    detailed_description = Column(Text, nullable=True)
    about_the_game = Column(Text, nullable=True)
    supported_languages = Column(Text, nullable=True)

    header_image = Column(Text, nullable=True)
    capsule_image = Column(Text, nullable=True)
    background = Column(Text, nullable=True)
    website = Column(Text, nullable=True)

    developers = Column(JSONType, nullable=True)
    publishers = Column(JSONType, nullable=True)
    price_overview = Column(JSONType, nullable=True)
    platforms = Column(JSONType, nullable=True)
    metacritic = Column(JSONType, nullable=True)
    categories = Column(JSONType, nullable=True)
    genres = Column(JSONType, nullable=True)
    release_date = Column(JSONType, nullable=True)
    recommendations = Column(Integer, nullable=True)
    controller_support = Column(String(50), nullable=True)
    dlc_app_ids = Column(JSONType, nullable=True)
    dlc_count = Column(Integer, nullable=True)

    # Supplementary, games only
    current_players = Column(Integer, nullable=True)
    review_score = Column(Integer, nullable=True)
    review_score_desc = Column(String(100), nullable=True)
    total_positive = Column(Integer, nullable=True)
    total_negative = Column(Integer, nullable=True)
    total_reviews = Column(Integer, nullable=True)

    last_full_update = Column(DateTime, nullable=False, default=utc_now)
    last_quick_update = Column(DateTime, nullable=True, index=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)


class SteamPlayerHistory(Base):
    """Point-in-time player count snapshot."""
    __tablename__ = "steam_player_history"

    id = Column(BigIntegerPK, primary_key=True, autoincrement=True)
    app_id = Column(Integer, nullable=False)
    player_count = Column(BigInteger, nullable=False)
    captured_at = Column(DateTime, nullable=False, default=utc_now)

    __table_args__ = (
        UniqueConstraint("app_id", "captured_at", name="uq_steam_player_history_app_time"),
        Index("idx_steam_player_history_app", "app_id", "captured_at"),
    )
