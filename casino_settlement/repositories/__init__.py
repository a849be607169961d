"""
Repository layer for data access.

Usage:
    from casino_settlement.repositories import AccountRepository, InventoryRepository
    from casino_settlement.core.database import new_session

    db = new_session()
    accounts = AccountRepository(db)
    account = accounts.find_by_id(user_id)
    db.close()
"""

from casino_settlement.repositories.base import BaseRepository
from casino_settlement.repositories.ledger_repository import (
    AccountRepository,
    TransactionRepository,
    SettlementRecordRepository,
)
from casino_settlement.repositories.inventory_repository import InventoryRepository
from casino_settlement.repositories.item_repository import ItemRepository

__all__ = [
    "BaseRepository",
    "AccountRepository",
    "TransactionRepository",
    "SettlementRecordRepository",
    "InventoryRepository",
    "ItemRepository",
]
