"""
Item catalog with a TTL cache.

Stake values are always taken from here, never from the request body. The
whole catalog is small (a few hundred items) so it is loaded in one query and
kept for ITEM_CATALOG_CACHE_TTL seconds; an id that is missing from a fresh
snapshot triggers one reload before being reported as unknown.
"""
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from casino_settlement.core.config import settings
from casino_settlement.core.logging import get_logger
from casino_settlement.repositories.item_repository import ItemRepository
from casino_settlement.services.settlement import settlement_scope

logger = get_logger(__name__)


@dataclass(frozen=True)
class ItemSnapshot:
    """Immutable view of a catalog item at lookup time."""
    id: str
    name: str
    value: Decimal
    rarity: str
    image_url: Optional[str] = None

    def to_stake(self, quantity: int) -> dict:
        """JSON-safe stake line for the session's item snapshot column."""
        return {
            "item_id": self.id,
            "name": self.name,
            "value": str(self.value),
            "quantity": quantity,
            "rarity": self.rarity,
            "image_url": self.image_url,
        }


class ItemCatalogCache:
    """
    Process-wide item catalog cache.

    Usage:
        catalog = ItemCatalogCache(ttl_seconds=300)
        items = catalog.get_many(db, ["item-1", "item-2"])
    """

    def __init__(self, ttl_seconds: int = 300):
        self.ttl_seconds = ttl_seconds
        self._items: Dict[str, ItemSnapshot] = {}
        self._valid_until: Optional[datetime] = None
        self._lock = threading.Lock()

    def _is_valid(self) -> bool:
        return self._valid_until is not None and datetime.now() < self._valid_until

    def invalidate(self) -> None:
        with self._lock:
            self._items = {}
            self._valid_until = None

    def refresh(self, db: Session) -> Dict[str, ItemSnapshot]:
        items = {
            item.id: ItemSnapshot(
                id=item.id,
                name=item.name,
                value=Decimal(item.value),
                rarity=item.rarity,
                image_url=item.image_url,
            )
            for item in ItemRepository(db).list_all()
        }
        with self._lock:
            self._items = items
            self._valid_until = datetime.now() + timedelta(seconds=self.ttl_seconds)
        logger.debug(f"Item catalog refreshed: {len(items)} items")
        return items

    def get_or_refresh(self, db: Session) -> Dict[str, ItemSnapshot]:
        """The cached catalog, reloaded when the TTL has lapsed."""
        with self._lock:
            if self._is_valid():
                return self._items
        return self.refresh(db)

    def get_many(self, db: Session, item_ids: Iterable[str]) -> Dict[str, ItemSnapshot]:
        """Snapshots for the requested ids; unknown ids are absent."""
        wanted = set(item_ids)
        items = self.get_or_refresh(db)
        if not wanted.issubset(items):
            items = self.refresh(db)
        return {item_id: items[item_id] for item_id in wanted if item_id in items}

    def all_items(self, db: Session) -> List[ItemSnapshot]:
        return list(self.get_or_refresh(db).values())


item_catalog = ItemCatalogCache(ttl_seconds=settings.ITEM_CATALOG_CACHE_TTL)


def get_item_catalog() -> ItemCatalogCache:
    """Dependency accessor for the shared catalog cache."""
    return item_catalog


def upsert_item(
    db: Session,
    name: str,
    rarity: str,
    value: Decimal,
    image_url: Optional[str] = None,
    item_id: Optional[str] = None,
    catalog: Optional[ItemCatalogCache] = None,
) -> ItemSnapshot:
    """
    Create or update a catalog item and drop the cached catalog.

    Sessions already holding a snapshot of the item keep their captured value.
    """
    repo = ItemRepository(db)
    item = repo.find_by_id(item_id) if item_id else None
    with settlement_scope(db, "catalog", "upsert", item_id):
        if item is None:
            fields = {"name": name, "rarity": rarity.lower(), "value": value, "image_url": image_url}
            if item_id:
                fields["id"] = item_id
            item = repo.create(**fields)
        else:
            item.name = name
            item.rarity = rarity.lower()
            item.value = value
            item.image_url = image_url
    db.refresh(item)
    (catalog or item_catalog).invalidate()
    logger.info(f"Catalog item {item.id} ({item.name}) saved at ${item.value}")
    return ItemSnapshot(
        id=item.id,
        name=item.name,
        value=Decimal(item.value),
        rarity=item.rarity,
        image_url=item.image_url,
    )
