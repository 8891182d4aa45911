from sqlalchemy import Column, Integer, String, Text, Float, DateTime
from models.base import Base, JSONType, utc_now


class IgdbGame(Base):
    """Game entry from the IGDB v4 games endpoint."""
    __tablename__ = "igdb_games"

    id = Column(Integer, primary_key=True, autoincrement=False)
    name = Column(String(500), nullable=False)
    slug = Column(String(500), nullable=True, index=True)
    summary = Column(Text, nullable=True)
    storyline = Column(Text, nullable=True)

    first_release_date = Column(DateTime, nullable=True, index=True)
    release_year = Column(Integer, nullable=True)
    cover_url = Column(Text, nullable=True)

    rating = Column(Float, nullable=True)
    rating_count = Column(Integer, nullable=True)
    aggregated_rating = Column(Float, nullable=True)
    aggregated_rating_count = Column(Integer, nullable=True)

    category = Column(Integer, nullable=True)
    status = Column(Integer, nullable=True)

    genres = Column(JSONType, nullable=True)
    platforms = Column(JSONType, nullable=True)
    developers = Column(JSONType, nullable=True)
    publishers = Column(JSONType, nullable=True)
    screenshots = Column(JSONType, nullable=True)

    last_fetched = Column(DateTime, nullable=False, default=utc_now)
    created_at = Column(DateTime, nullable=False, default=utc_now)
