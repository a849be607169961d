"""
Item catalog repository.
"""
from typing import List, Dict, Iterable

from casino_settlement.models import Item
from casino_settlement.repositories.base import BaseRepository


class ItemRepository(BaseRepository[Item]):
    """Repository for catalog items."""

    def __init__(self, db):
        super().__init__(Item, db)

    def find_many(self, item_ids: Iterable[str]) -> Dict[str, Item]:
        """Items keyed by id; unknown ids are simply absent."""
        ids = list(set(item_ids))
        if not ids:
            return {}
        return {item.id: item for item in self.where(Item.id.in_(ids))}

    def list_all(self) -> List[Item]:
        return self.query().order_by(Item.value.desc(), Item.name).all()

    def list_by_rarity(self, rarity: str) -> List[Item]:
        return self.where(Item.rarity == rarity)
