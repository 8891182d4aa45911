"""
Pydantic schemas for data validation and serialization.

Schemas:
    raw: Lenient models of third-party API payloads
    normalized: Normalized records, one per stored collection
    api: Sync summaries, statistics and API response models

Usage:
    from schemas.raw import RawgGamePayload
    from schemas.normalized import RawgGameRecord
    from schemas.api import SyncSummary, SyncStats
"""

__all__ = [
    "RawgGameRecord",
    "IgdbGameRecord",
    "CheapSharkStoreRecord",
    "CheapSharkGameRecord",
    "CheapSharkDealRecord",
    "SteamAppRecord",
    "SteamPlayerSnapshot",
    "TwitchGameRecord",
    "TwitchStreamRecord",
    "TwitchClipRecord",
    "TwitchViewerSnapshot",
    "SyncSummary",
    "SyncStats",
    "SyncAttemptInfo",
    "HealthCheckResponse",
]
