"""
Pydantic schemas for third-party API payloads.

Every field is optional: the upstream APIs omit keys freely, send numbers
as strings (CheapShark) and change shapes between endpoints. Mapping
functions in the drivers read these models and decide defaults explicitly.
"""

from pydantic import BaseModel, ConfigDict
from typing import Optional, List, Dict, Any, Union

Number = Union[int, float, str]


class RawPayload(BaseModel):
    """Lenient base: unknown keys ignored, numbers accepted where strings are expected."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


class NamedRef(RawPayload):
    id: Optional[Number] = None
    name: Optional[str] = None


# ============================================================================
# RAWG
# ============================================================================

class RawgPlatformEntry(RawPayload):
    platform: Optional[NamedRef] = None


class RawgStoreEntry(RawPayload):
    store: Optional[NamedRef] = None


class RawgScreenshot(RawPayload):
    image: Optional[str] = None


class RawgGamePayload(RawPayload):
    id: int
    name: Optional[str] = None
    slug: Optional[str] = None
    description_raw: Optional[str] = None
    released: Optional[str] = None
    background_image: Optional[str] = None
    website: Optional[str] = None
    metacritic: Optional[int] = None
    rating: Optional[float] = None
    ratings_count: Optional[int] = None
    playtime: Optional[int] = None
    esrb_rating: Optional[NamedRef] = None
    genres: Optional[List[NamedRef]] = None
    platforms: Optional[List[RawgPlatformEntry]] = None
    stores: Optional[List[RawgStoreEntry]] = None
    developers: Optional[List[NamedRef]] = None
    publishers: Optional[List[NamedRef]] = None
    tags: Optional[List[NamedRef]] = None
    short_screenshots: Optional[List[RawgScreenshot]] = None


class RawgListing(RawPayload):
    count: Optional[int] = None
    next: Optional[str] = None
    results: List[Dict[str, Any]] = []


# ============================================================================
# IGDB
# ============================================================================

class IgdbImage(RawPayload):
    url: Optional[str] = None


class IgdbCompany(RawPayload):
    company: Optional[NamedRef] = None
    developer: Optional[bool] = None
    publisher: Optional[bool] = None


class IgdbGamePayload(RawPayload):
    id: int
    name: Optional[str] = None
    slug: Optional[str] = None
    summary: Optional[str] = None
    storyline: Optional[str] = None
    first_release_date: Optional[int] = None
    cover: Optional[IgdbImage] = None
    rating: Optional[float] = None
    rating_count: Optional[int] = None
    aggregated_rating: Optional[float] = None
    aggregated_rating_count: Optional[int] = None
    category: Optional[int] = None
    status: Optional[int] = None
    genres: Optional[List[NamedRef]] = None
    platforms: Optional[List[NamedRef]] = None
    involved_companies: Optional[List[IgdbCompany]] = None
    screenshots: Optional[List[IgdbImage]] = None


# ============================================================================
# CheapShark
# ============================================================================

class CheapSharkStoreImages(RawPayload):
    banner: Optional[str] = None
    logo: Optional[str] = None
    icon: Optional[str] = None


class CheapSharkStorePayload(RawPayload):
    storeID: str
    storeName: Optional[str] = None
    isActive: Optional[Number] = None
    images: Optional[CheapSharkStoreImages] = None


class CheapSharkDealPayload(RawPayload):
    dealID: Optional[str] = None
    gameID: Optional[str] = None
    storeID: Optional[str] = None
    storeName: Optional[str] = None
    title: Optional[str] = None
    internalName: Optional[str] = None
    salePrice: Optional[str] = None
    price: Optional[str] = None
    normalPrice: Optional[str] = None
    retailPrice: Optional[str] = None
    savings: Optional[str] = None
    isOnSale: Optional[Union[bool, str]] = None
    metacriticScore: Optional[str] = None
    metacriticLink: Optional[str] = None
    steamRatingText: Optional[str] = None
    steamRatingPercent: Optional[str] = None
    steamRatingCount: Optional[str] = None
    steamAppID: Optional[str] = None
    releaseDate: Optional[str] = None
    lastChange: Optional[str] = None
    dealRating: Optional[str] = None
    thumb: Optional[str] = None


class CheapSharkGameInfo(RawPayload):
    title: Optional[str] = None
    steamAppID: Optional[str] = None
    thumb: Optional[str] = None


class CheapSharkCheapestEver(RawPayload):
    price: Optional[str] = None
    date: Optional[str] = None
    dealID: Optional[str] = None


class CheapSharkGameLookup(RawPayload):
    info: Optional[CheapSharkGameInfo] = None
    cheapestPriceEver: Optional[CheapSharkCheapestEver] = None
    deals: List[CheapSharkDealPayload] = []


class CheapSharkSearchResult(RawPayload):
    gameID: str
    steamAppID: Optional[str] = None
    cheapest: Optional[str] = None
    cheapestDealID: Optional[str] = None
    external: Optional[str] = None
    thumb: Optional[str] = None


# ============================================================================
# Steam
# ============================================================================

class SteamAppListEntry(RawPayload):
    appid: int
    name: Optional[str] = None


class SteamRecommendations(RawPayload):
    total: Optional[int] = None


class SteamAppDetails(RawPayload):
    """The ``data`` object of a store appdetails response."""
    name: Optional[str] = None
    type: Optional[str] = None
    required_age: Optional[Number] = None
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
    recommendations: Optional[SteamRecommendations] = None
    controller_support: Optional[str] = None
    dlc: Optional[List[int]] = None


class SteamReviewSummary(RawPayload):
    """The ``query_summary`` object of an appreviews response."""
    review_score: Optional[int] = None
    review_score_desc: Optional[str] = None
    total_positive: Optional[int] = None
    total_negative: Optional[int] = None
    total_reviews: Optional[int] = None


# ============================================================================
# Twitch
# ============================================================================

class TwitchGamePayload(RawPayload):
    id: str
    name: Optional[str] = None
    box_art_url: Optional[str] = None
    igdb_id: Optional[str] = None


class TwitchStreamPayload(RawPayload):
    id: str
    user_id: Optional[str] = None
    user_login: Optional[str] = None
    user_name: Optional[str] = None
    game_id: Optional[str] = None
    game_name: Optional[str] = None
    title: Optional[str] = None
    viewer_count: int = 0
    started_at: Optional[str] = None
    language: Optional[str] = None
    thumbnail_url: Optional[str] = None
    tags: Optional[List[str]] = None
    is_mature: Optional[bool] = None


class TwitchClipPayload(RawPayload):
    id: str
    broadcaster_id: Optional[str] = None
    broadcaster_name: Optional[str] = None
    creator_id: Optional[str] = None
    creator_name: Optional[str] = None
    video_id: Optional[str] = None
    title: Optional[str] = None
    view_count: int = 0
    created_at: Optional[str] = None
    duration: Optional[float] = None
    thumbnail_url: Optional[str] = None
    embed_url: Optional[str] = None
    url: Optional[str] = None
    vod_offset: Optional[int] = None
    language: Optional[str] = None


class TwitchVideoPayload(RawPayload):
    id: str
    user_name: Optional[str] = None
    title: Optional[str] = None
    url: Optional[str] = None
    view_count: int = 0
    duration: Optional[str] = None
    created_at: Optional[str] = None
