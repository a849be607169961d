"""
Expiry sweepers.

Sessions that nobody will ever finish are forced into a terminal state here:
- coinflips waiting past the expiry window are refunded and deleted
- giveaways past their end time are settled, and completed ones purged
- case battles that never filled are expired and their entries refunded
- blackjack turns past the turn timeout are auto-stood

Each session settles in its own transaction through the owning game service,
so one failure never blocks the rest of a sweep.
"""
from typing import Dict, Optional

from sqlalchemy.orm import Session

from casino_settlement.core.config import settings
from casino_settlement.core.logging import get_logger
from casino_settlement.services.games.blackjack import BlackjackService
from casino_settlement.services.games.case_battle import CaseBattleService
from casino_settlement.services.games.coinflip import CoinflipService
from casino_settlement.services.games.giveaway import GiveawayService
from casino_settlement.services.item_catalog import ItemCatalogCache

logger = get_logger(__name__)


class SweeperService:
    """Runs the expiry sweeps against one session."""

    def __init__(self, db: Session, catalog: Optional[ItemCatalogCache] = None):
        self.db = db
        self.catalog = catalog

    def sweep_coinflips(self, window_minutes: Optional[int] = None) -> Dict:
        return CoinflipService(self.db, self.catalog).expire_stale(window_minutes)

    def sweep_giveaways(self) -> Dict:
        service = GiveawayService(self.db, self.catalog)
        result = service.complete_ended()
        result.update(service.purge_completed())
        return result

    def sweep_case_battles(self) -> Dict:
        return CaseBattleService(self.db, self.catalog).expire_stale()

    def sweep_blackjack_turns(self) -> Dict:
        return BlackjackService(self.db, self.catalog).auto_stand_expired()

    def create_auto_giveaway(self) -> Optional[Dict]:
        return GiveawayService(self.db, self.catalog).create_auto_giveaway()

    def run_all(self) -> Dict:
        """Run every sweep once; used by the maintenance endpoint and the runner."""
        results = {
            "coinflip": self.sweep_coinflips(settings.COINFLIP_EXPIRY_MINUTES),
            "giveaway": self.sweep_giveaways(),
            "case_battle": self.sweep_case_battles(),
            "blackjack": self.sweep_blackjack_turns(),
        }
        logger.debug(f"Sweep results: {results}")
        return results
