"""
SQLAlchemy ORM models for database tables.

Models:
    base: Declarative base, shared enums (Source, SyncType, SyncStatus) and column helpers
    checkpoint: Durable resume cursor per (source, sync type)
    sync_attempt: One row per sync run
    rawg, igdb, cheapshark, steam, twitch: Normalized records, one table per collection

Every module is imported here so ``Base.metadata`` sees all tables.

Usage:
    from models import Base, SyncAttempt, SyncCursor, RawgGame
    from models.base import Source, SyncType, SyncStatus
"""

from models.base import Base, Source, SyncType, SyncStatus
from models.checkpoint import SyncCursor
from models.sync_attempt import SyncAttempt
from models.rawg import RawgGame
from models.igdb import IgdbGame
from models.cheapshark import CheapSharkStore, CheapSharkGame, CheapSharkDeal
from models.steam import SteamApp, SteamPlayerHistory
from models.twitch import TwitchGame, TwitchStream, TwitchClip, TwitchViewerHistory

__all__ = [
    "Base",
    "Source",
    "SyncType",
    "SyncStatus",
    "SyncCursor",
    "SyncAttempt",
    "RawgGame",
    "IgdbGame",
    "CheapSharkStore",
    "CheapSharkGame",
    "CheapSharkDeal",
    "SteamApp",
    "SteamPlayerHistory",
    "TwitchGame",
    "TwitchStream",
    "TwitchClip",
    "TwitchViewerHistory",
]
