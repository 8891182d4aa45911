from datetime import datetime, timezone
from sqlalchemy import BigInteger, Enum, Integer, JSON
from sqlalchemy.orm import declarative_base
from sqlalchemy.dialects.postgresql import JSONB
import enum

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

# SQLite only autoincrements INTEGER PRIMARY KEY columns
BigIntegerPK = BigInteger().with_variant(Integer(), "sqlite")


def utc_now() -> datetime:
    """Naive UTC timestamp, the convention for every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def enum_values(enum_cls):
    return [member.value for member in enum_cls]


def enum_column_type(enum_cls, name: str) -> Enum:
    """Enum column storing the lowercase member values."""
    return Enum(enum_cls, name=name, values_callable=enum_values, length=32)


# ============================================================================
# ENUMS
# ============================================================================

class Source(str, enum.Enum):
    """Third-party data sources"""
    RAWG = "rawg"
    IGDB = "igdb"
    CHEAPSHARK = "cheapshark"
    STEAM = "steam"
    TWITCH = "twitch"


class SyncType(str, enum.Enum):
    """Kinds of sync run"""
    HISTORICAL = "historical"
    INCREMENTAL = "incremental"
    HOT_UPDATE = "hot_update"


class SyncStatus(str, enum.Enum):
    """Sync attempt status"""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
