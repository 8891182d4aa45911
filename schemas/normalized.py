"""
Pydantic schemas for normalized records, one per stored collection.

Records are built by the driver mapping functions and written by the
upsert sink using ``model_dump(exclude_unset=True)``: a field the mapper
never set is never written, so partial payloads cannot erase stored data.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Dict, Any
from datetime import date, datetime


class NormalizedRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# RAWG / IGDB
# ============================================================================

class RawgGameRecord(NormalizedRecord):
    id: int
    title: str = Field(..., min_length=1, max_length=500)
    slug: Optional[str] = None
    description: Optional[str] = None
    released: Optional[date] = None
    release_year: Optional[int] = None
    background_image: Optional[str] = None
    website: Optional[str] = None
    esrb_rating: Optional[str] = None
    metacritic: Optional[int] = None
    rating: Optional[float] = None
    ratings_count: Optional[int] = None
    playtime: Optional[int] = None
    genres: Optional[List[str]] = None
    platforms: Optional[List[str]] = None
    stores: Optional[List[str]] = None
    developers: Optional[List[str]] = None
    publishers: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    screenshots: Optional[List[str]] = None

    @field_validator("title")
    @classmethod
    def clean_title(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Title cannot be empty after stripping")
        return v


class IgdbGameRecord(NormalizedRecord):
    id: int
    name: str = Field(..., min_length=1, max_length=500)
    slug: Optional[str] = None
    summary: Optional[str] = None
    storyline: Optional[str] = None
    first_release_date: Optional[datetime] = None
    release_year: Optional[int] = None
    cover_url: Optional[str] = None
    rating: Optional[float] = None
    rating_count: Optional[int] = None
    aggregated_rating: Optional[float] = None
    aggregated_rating_count: Optional[int] = None
    category: Optional[int] = None
    status: Optional[int] = None
    genres: Optional[List[str]] = None
    platforms: Optional[List[str]] = None
    developers: Optional[List[str]] = None
    publishers: Optional[List[str]] = None
    screenshots: Optional[List[str]] = None


# ============================================================================
# CheapShark
# ============================================================================

class CheapSharkStoreRecord(NormalizedRecord):
    store_id: str
    store_name: str
    is_active: bool = False
    images: Optional[Dict[str, Optional[str]]] = None


class CheapSharkGameRecord(NormalizedRecord):
    game_id: str
    title: Optional[str] = None
    steam_app_id: Optional[str] = None
    thumb: Optional[str] = None
    cheapest: Optional[float] = None
    cheapest_deal_id: Optional[str] = None
    historical_low: Optional[float] = None
    historical_low_date: Optional[datetime] = None
    store_ids: Optional[List[str]] = None


class CheapSharkDealRecord(NormalizedRecord):
    deal_id: str
    game_id: Optional[str] = None
    title: Optional[str] = None
    store_id: Optional[str] = None
    store_name: Optional[str] = None
    sale_price: Optional[float] = None
    normal_price: Optional[float] = None
    savings: Optional[float] = None
    is_on_sale: Optional[bool] = None
    metacritic_score: Optional[int] = None
    metacritic_link: Optional[str] = None
    steam_rating_text: Optional[str] = None
    steam_rating_percent: Optional[int] = None
    steam_rating_count: Optional[int] = None
    steam_app_id: Optional[str] = None
    release_date: Optional[datetime] = None
    last_change: Optional[datetime] = None
    deal_rating: Optional[float] = None
    thumb: Optional[str] = None


# ============================================================================
# Steam
# ============================================================================

class SteamAppRecord(NormalizedRecord):
    app_id: int
    name: str
    type: str = "unknown"
    required_age: Optional[int] = None
    is_free: Optional[bool] = None
    short_description: Optional[str] = None
    detailed_description: Optional[str] = None
    about_the_game: Optional[str] = None
    supported_languages: Optional[str] = None
    header_image: Optional[str] = None
    capsule_image: Optional[str] = None
    background: Optional[str] = None
    website: Optional[str] = None
    developers: Optional[List[str]] = None
    publishers: Optional[List[str]] = None
    price_overview: Optional[Dict[str, Any]] = None
    platforms: Optional[Dict[str, Any]] = None
    metacritic: Optional[Dict[str, Any]] = None
    categories: Optional[List[Dict[str, Any]]] = None
    genres: Optional[List[Dict[str, Any]]] = None
    release_date: Optional[Dict[str, Any]] = None
    recommendations: Optional[int] = None
    controller_support: Optional[str] = None
    dlc_app_ids: Optional[List[int]] = None
    dlc_count: Optional[int] = None
    current_players: Optional[int] = None
    review_score: Optional[int] = None
    review_score_desc: Optional[str] = None
    total_positive: Optional[int] = None
    total_negative: Optional[int] = None
    total_reviews: Optional[int] = None
    last_quick_update: Optional[datetime] = None


class SteamPlayerCount(NormalizedRecord):
    """Player-count refresh of an already stored app."""
    app_id: int
    current_players: int = Field(..., ge=0)


class SteamPlayerSnapshot(NormalizedRecord):
    app_id: int
    player_count: int = Field(..., ge=0)
    captured_at: datetime


# ============================================================================
# Twitch
# ============================================================================

class TwitchGameRecord(NormalizedRecord):
    id: str
    name: Optional[str] = None
    box_art_url: Optional[str] = None
    igdb_id: Optional[str] = None
    current_viewers: Optional[int] = None
    current_channels: Optional[int] = None
    language_breakdown: Optional[Dict[str, Dict[str, int]]] = None
    top_streamers: Optional[List[Dict[str, Any]]] = None
    top_videos: Optional[List[Dict[str, Any]]] = None
    tags: Optional[List[str]] = None
    peak_viewers_today: Optional[int] = None
    peak_viewers_week: Optional[int] = None
    peak_viewers_month: Optional[int] = None
    peak_viewers_all_time: Optional[int] = None
    avg_viewers_day: Optional[int] = None
    avg_viewers_week: Optional[int] = None
    avg_viewers_month: Optional[int] = None


class TwitchStreamRecord(NormalizedRecord):
    id: str
    game_id: str
    game_name: Optional[str] = None
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    user_display_name: Optional[str] = None
    title: Optional[str] = None
    viewer_count: int = 0
    started_at: Optional[datetime] = None
    language: Optional[str] = None
    thumbnail_url: Optional[str] = None
    tags: Optional[List[str]] = None
    is_mature: bool = False


class TwitchClipRecord(NormalizedRecord):
    id: str
    game_id: str
    broadcaster_id: Optional[str] = None
    broadcaster_name: Optional[str] = None
    creator_id: Optional[str] = None
    creator_name: Optional[str] = None
    title: Optional[str] = None
    view_count: int = 0
    created_at: Optional[datetime] = None
    duration: Optional[float] = None
    thumbnail_url: Optional[str] = None
    embed_url: Optional[str] = None
    url: Optional[str] = None
    video_id: Optional[str] = None
    vod_offset: Optional[int] = None
    language: Optional[str] = None


class TwitchViewerSnapshot(NormalizedRecord):
    game_id: str
    viewers: int = Field(..., ge=0)
    channels: int = 0
    captured_at: datetime
