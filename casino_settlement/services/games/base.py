"""
Shared plumbing for game handlers.
"""
from random import Random
from typing import Optional

from sqlalchemy.orm import Session

from casino_settlement.services.item_catalog import ItemCatalogCache, item_catalog
from casino_settlement.services.ledger_service import LedgerService


class GameService:
    """
    Base class for game handlers.

    Attributes:
        game_type: Label used for transaction rows, settlement records and metrics
        db: The database session
        ledger: Ledger service bound to the same session
        rng: Random source; None means the cryptographic default
    """

    game_type = "game"

    def __init__(
        self,
        db: Session,
        catalog: Optional[ItemCatalogCache] = None,
        rng: Optional[Random] = None,
    ):
        self.db = db
        self.catalog = catalog or item_catalog
        self.ledger = LedgerService(db, self.catalog)
        self.rng = rng
