"""
Inventory repository.

Quantities change only through conditional UPDATEs so two concurrent
settlements can never spend the same unit twice. A row is deleted as soon as
its quantity reaches 0.
"""
from typing import Optional, List, Dict

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import joinedload

from casino_settlement.models import InventoryEntry
from casino_settlement.repositories.base import BaseRepository
from casino_settlement.utils.timezone import utcnow


class InventoryRepository(BaseRepository[InventoryEntry]):
    """Repository for (user, item) -> quantity entries."""

    def __init__(self, db):
        super().__init__(InventoryEntry, db)

    def find_entry(self, user_id: str, item_id: str) -> Optional[InventoryEntry]:
        return self.where_first(
            InventoryEntry.user_id == user_id,
            InventoryEntry.item_id == item_id,
        )

    def quantity_of(self, user_id: str, item_id: str) -> int:
        entry = self.find_entry(user_id, item_id)
        return entry.quantity if entry else 0

    def quantities_for(self, user_id: str, item_ids: List[str]) -> Dict[str, int]:
        if not item_ids:
            return {}
        rows = self.where(
            InventoryEntry.user_id == user_id,
            InventoryEntry.item_id.in_(item_ids),
        )
        return {row.item_id: row.quantity for row in rows}

    def list_for_user(self, user_id: str) -> List[InventoryEntry]:
        return (
            self.query()
            .options(joinedload(InventoryEntry.item))
            .filter(InventoryEntry.user_id == user_id, InventoryEntry.quantity > 0)
            .all()
        )

    def debit(self, user_id: str, item_id: str, quantity: int) -> bool:
        """
        Remove `quantity` units. Returns False when the holder has fewer.
        """
        applied = self.update_where(
            [
                InventoryEntry.user_id == user_id,
                InventoryEntry.item_id == item_id,
                InventoryEntry.quantity >= quantity,
            ],
            {"quantity": InventoryEntry.quantity - quantity, "updated_at": utcnow()},
        ) == 1
        if applied:
            self.delete_where(
                InventoryEntry.user_id == user_id,
                InventoryEntry.item_id == item_id,
                InventoryEntry.quantity <= 0,
            )
        return applied

    def credit(self, user_id: str, item_id: str, quantity: int) -> None:
        """Add `quantity` units, creating the entry if needed."""
        if self._increment(user_id, item_id, quantity):
            return
        try:
            with self.db.begin_nested():
                self.db.add(InventoryEntry(user_id=user_id, item_id=item_id, quantity=quantity))
        except IntegrityError:
            # Lost the insert race; the row exists now
            if not self._increment(user_id, item_id, quantity):
                raise

    def _increment(self, user_id: str, item_id: str, quantity: int) -> bool:
        return self.update_where(
            [InventoryEntry.user_id == user_id, InventoryEntry.item_id == item_id],
            {"quantity": InventoryEntry.quantity + quantity, "updated_at": utcnow()},
        ) == 1
