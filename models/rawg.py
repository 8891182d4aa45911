from sqlalchemy import Column, Integer, String, Text, Float, Date, DateTime, Index
from models.base import Base, JSONType, utc_now


class RawgGame(Base):
    """Game catalogue entry from the RAWG /games listing."""
    __tablename__ = "rawg_games"

    id = Column(Integer, primary_key=True, autoincrement=False)
    slug = Column(String(255), nullable=True, index=True)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)

    released = Column(Date, nullable=True)
    release_year = Column(Integer, nullable=True, index=True)

    background_image = Column(Text, nullable=True)
    website = Column(Text, nullable=True)
    esrb_rating = Column(String(100), nullable=True)

    metacritic = Column(Integer, nullable=True)
    rating = Column(Float, nullable=True)
    ratings_count = Column(Integer, nullable=True)
    playtime = Column(Integer, nullable=True)

    # Name lists
    genres = Column(JSONType, nullable=True)
    platforms = Column(JSONType, nullable=True)
    stores = Column(JSONType, nullable=True)
    developers = Column(JSONType, nullable=True)
    publishers = Column(JSONType, nullable=True)
    tags = Column(JSONType, nullable=True)
    screenshots = Column(JSONType, nullable=True)

    last_fetched = Column(DateTime, nullable=False, default=utc_now)
    created_at = Column(DateTime, nullable=False, default=utc_now)

    __table_args__ = (
        Index("idx_rawg_games_released", "released"),
    )
