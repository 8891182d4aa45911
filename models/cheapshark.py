from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, Index
from models.base import Base, JSONType, utc_now


class CheapSharkStore(Base):
    """Storefront known to CheapShark."""
    __tablename__ = "cheapshark_stores"

    store_id = Column(String(20), primary_key=True)
    store_name = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=False)
    images = Column(JSONType, nullable=True)

    last_updated = Column(DateTime, nullable=False, default=utc_now)


class CheapSharkGame(Base):
    """Per-game price summary from the /games?id= lookup."""
    __tablename__ = "cheapshark_games"

    game_id = Column(String(50), primary_key=True)
    title = Column(String(500), nullable=True)
    steam_app_id = Column(String(50), nullable=True, index=True)
    thumb = Column(String(1000), nullable=True)

    cheapest = Column(Float, nullable=True)
    cheapest_deal_id = Column(String(255), nullable=True)
    historical_low = Column(Float, nullable=True)
    historical_low_date = Column(DateTime, nullable=True)

    store_ids = Column(JSONType, nullable=True)

    last_updated = Column(DateTime, nullable=False, default=utc_now)
    created_at = Column(DateTime, nullable=False, default=utc_now)


class CheapSharkDeal(Base):
    """Single store offer for a game."""
    __tablename__ = "cheapshark_deals"

    deal_id = Column(String(255), primary_key=True)
    game_id = Column(String(50), nullable=False, default="unknown", index=True)
    title = Column(String(500), nullable=False, default="Unknown")

    store_id = Column(String(20), nullable=True, index=True)
    store_name = Column(String(255), nullable=True)

    sale_price = Column(Float, nullable=True)
    normal_price = Column(Float, nullable=True)
    savings = Column(Float, nullable=True)
    is_on_sale = Column(Boolean, nullable=False, default=False)

    metacritic_score = Column(Integer, nullable=True)
    metacritic_link = Column(String(500), nullable=True)
    steam_rating_text = Column(String(100), nullable=True)
    steam_rating_percent = Column(Integer, nullable=True)
    steam_rating_count = Column(Integer, nullable=True)
    steam_app_id = Column(String(50), nullable=True)

    release_date = Column(DateTime, nullable=True)
    last_change = Column(DateTime, nullable=True)
    deal_rating = Column(Float, nullable=True)
    thumb = Column(String(1000), nullable=True)

    last_updated = Column(DateTime, nullable=False, default=utc_now)
    created_at = Column(DateTime, nullable=False, default=utc_now)

    __table_args__ = (
        Index("idx_cheapshark_deals_savings", "savings"),
    )
