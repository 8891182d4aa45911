"""
Idempotent record writes with per-collection merge policies.

Every normalized record is written by natural key: an existing row is
updated in place, a missing one is inserted. Which fields an update may
touch is decided by the collection's CollectionSpec:

- fields the record never set are left alone (``model_dump(exclude_unset=True)``)
- ``preserve_nulls``: an explicit None does not overwrite a stored value
- ``update_fields``: only these fields are rewritten on conflict
  (an empty set makes the collection insert-only)
- ``touch_field``: stamped with the write time on every insert/update

Each upsert commits on its own; a failure rolls back and raises UpsertError
so one bad record never takes the rest of a page with it.
"""

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Set, Tuple, Type
from sqlalchemy import and_, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from core.exceptions import UpsertError
from models.base import utc_now
from models.rawg import RawgGame
from models.igdb import IgdbGame
from models.cheapshark import CheapSharkStore, CheapSharkGame, CheapSharkDeal
from models.steam import SteamApp, SteamPlayerHistory
from models.twitch import TwitchGame, TwitchStream, TwitchClip, TwitchViewerHistory
from schemas.normalized import NormalizedRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CollectionSpec:
    name: str
    model: Type
    key_fields: Tuple[str, ...]
    touch_field: Optional[str] = None
    preserve_nulls: bool = True
    update_fields: Optional[FrozenSet[str]] = None

    @property
    def insert_only(self) -> bool:
        return self.update_fields is not None and not self.update_fields


@dataclass
class UpsertResult:
    record: Any
    created: bool


COLLECTIONS: Dict[str, CollectionSpec] = {
    spec.name: spec
    for spec in (
        CollectionSpec("rawg_games", RawgGame, ("id",), touch_field="last_fetched"),
        CollectionSpec("igdb_games", IgdbGame, ("id",), touch_field="last_fetched"),
        CollectionSpec(
            "cheapshark_stores", CheapSharkStore, ("store_id",),
            touch_field="last_updated", preserve_nulls=False,
        ),
        CollectionSpec("cheapshark_games", CheapSharkGame, ("game_id",), touch_field="last_updated"),
        CollectionSpec("cheapshark_deals", CheapSharkDeal, ("deal_id",), touch_field="last_updated"),
        CollectionSpec(
            "steam_apps", SteamApp, ("app_id",),
            touch_field="last_full_update", preserve_nulls=False,
        ),
        # Player-count refresh of an existing app row
        CollectionSpec(
            "steam_app_players", SteamApp, ("app_id",),
            touch_field="last_quick_update",
            update_fields=frozenset({"current_players"}),
        ),
        CollectionSpec(
            "steam_player_history", SteamPlayerHistory, ("app_id", "captured_at"),
            update_fields=frozenset(),
        ),
        CollectionSpec("twitch_games", TwitchGame, ("id",), touch_field="last_updated"),
        CollectionSpec(
            "twitch_streams", TwitchStream, ("id",),
            touch_field="captured_at",
            update_fields=frozenset({"viewer_count", "title", "thumbnail_url", "tags"}),
        ),
        CollectionSpec(
            "twitch_clips", TwitchClip, ("id",),
            touch_field="captured_at",
            update_fields=frozenset({"view_count"}),
        ),
        CollectionSpec(
            "twitch_viewer_history", TwitchViewerHistory, ("game_id", "captured_at"),
            update_fields=frozenset(),
        ),
    )
}


def get_collection(name: str) -> CollectionSpec:
    try:
        return COLLECTIONS[name]
    except KeyError:
        raise ValueError(f"Unknown collection: {name}")


class UpsertSink:
    """
    Write normalized records into their collection tables.

    Ensures:
    - The same natural key never produces two rows
    - Later writes win for the fields they carry
    - Stored values survive partial payloads
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    @staticmethod
    def _key_map(spec: CollectionSpec, natural_key: Any) -> Dict[str, Any]:
        if len(spec.key_fields) == 1:
            if isinstance(natural_key, tuple):
                natural_key = natural_key[0]
            return {spec.key_fields[0]: natural_key}
        if not isinstance(natural_key, tuple) or len(natural_key) != len(spec.key_fields):
            raise ValueError(
                f"{spec.name} needs a key of {spec.key_fields}, got {natural_key!r}"
            )
        return dict(zip(spec.key_fields, natural_key))

    def _key_clause(self, spec: CollectionSpec, key: Dict[str, Any]):
        return and_(*(getattr(spec.model, field) == value for field, value in key.items()))

    def _prepare_values(self, spec: CollectionSpec, key: Dict[str, Any], record: NormalizedRecord) -> Dict[str, Any]:
        values = record.model_dump(exclude_unset=True)
        if spec.preserve_nulls:
            values = {k: v for k, v in values.items() if v is not None}
        values.update(key)
        return values

    async def upsert(self, collection: str, natural_key: Any, record: NormalizedRecord) -> UpsertResult:
        """
        Insert or merge ``record`` under ``natural_key``.

        Returns:
            UpsertResult with the stored row and whether it was newly created

        Raises:
            UpsertError: the write failed and was rolled back
        """
        try:
            spec = get_collection(collection)
            key = self._key_map(spec, natural_key)
            values = self._prepare_values(spec, key, record)
            now = utc_now()

            result = await self.db.execute(select(spec.model).where(self._key_clause(spec, key)))
            existing = result.scalar_one_or_none()

            if existing is None:
                if spec.touch_field:
                    values[spec.touch_field] = now
                row = spec.model(**values)
                self.db.add(row)
                await self.db.commit()
                return UpsertResult(record=row, created=True)

            if not spec.insert_only:
                changes = {k: v for k, v in values.items() if k not in key}
                if spec.update_fields is not None:
                    changes = {k: v for k, v in changes.items() if k in spec.update_fields}
                if spec.touch_field:
                    changes[spec.touch_field] = now
                for field, value in changes.items():
                    setattr(existing, field, value)
                await self.db.commit()

            return UpsertResult(record=existing, created=False)

        except SQLAlchemyError as e:
            await self.db.rollback()
            raise UpsertError(
                f"Failed to upsert into {collection}",
                context={"collection": collection, "natural_key": str(natural_key)},
                original_exception=e
            )
        except (ValueError, TypeError) as e:
            await self.db.rollback()
            raise UpsertError(
                f"Invalid record for {collection}",
                context={"collection": collection, "natural_key": str(natural_key)},
                original_exception=e
            )

    # ------------------------------------------------------------------
    # Read helpers used by drivers and statistics
    # ------------------------------------------------------------------

    async def get(self, collection: str, natural_key: Any):
        spec = get_collection(collection)
        key = self._key_map(spec, natural_key)
        result = await self.db.execute(select(spec.model).where(self._key_clause(spec, key)))
        return result.scalar_one_or_none()

    async def existing_keys(self, collection: str, keys: Sequence[Any], chunk_size: int = 500) -> Set[Any]:
        """Subset of ``keys`` already stored (single-field keys only)."""
        spec = get_collection(collection)
        column = getattr(spec.model, spec.key_fields[0])
        found: Set[Any] = set()
        keys = list(keys)
        for i in range(0, len(keys), chunk_size):
            chunk = keys[i:i + chunk_size]
            result = await self.db.execute(select(column).where(column.in_(chunk)))
            found.update(result.scalars().all())
        return found

    async def query(self, collection: str, *criteria, order_by=None, limit: Optional[int] = None) -> List[Any]:
        spec = get_collection(collection)
        stmt = select(spec.model)
        if criteria:
            stmt = stmt.where(*criteria)
        if order_by is not None:
            stmt = stmt.order_by(*order_by) if isinstance(order_by, (list, tuple)) else stmt.order_by(order_by)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def count(self, collection: str, *criteria) -> int:
        spec = get_collection(collection)
        stmt = select(func.count()).select_from(spec.model)
        if criteria:
            stmt = stmt.where(*criteria)
        result = await self.db.execute(stmt)
        return int(result.scalar_one())
