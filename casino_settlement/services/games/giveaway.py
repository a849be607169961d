"""
Item giveaways.

Lifecycle: active -> completed, then purged GIVEAWAY_PURGE_GRACE_SECONDS
after completion.

A player giveaway escrows the creator's items at creation. House ("auto")
giveaways have no creator and hold 1-3 random catalog items. When a giveaway
ends, the winner is drawn ticket-weighted over its entries; with no entries
the prize returns to the creator (house prizes simply lapse).
"""
from datetime import timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from casino_settlement.core.config import settings
from casino_settlement.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    PayloadValidationError,
    StateConflictError,
)
from casino_settlement.core.logging import get_logger
from casino_settlement.core.metrics import sweeper_refund_failures_total, sweeper_sessions_claimed_total
from casino_settlement.models import Giveaway, GiveawayEntry
from casino_settlement.repositories.base import BaseRepository
from casino_settlement.services.games.base import GameService
from casino_settlement.services.ledger_service import stake_value
from casino_settlement.services.outcomes import draw_weighted, pick_distinct, randbelow
from casino_settlement.services.settlement import claim, mark_settled, settlement_scope
from casino_settlement.utils.timezone import utcnow, isoformat, cutoff

logger = get_logger(__name__)

MIN_DURATION_MINUTES = 1
MAX_DURATION_MINUTES = 24 * 60
AUTO_GIVEAWAY_TITLE = "Auto Giveaway"
AUTO_GIVEAWAY_DESCRIPTION = "Free giveaway! Join now for a chance to win!"


class GiveawayRepository(BaseRepository[Giveaway]):
    def __init__(self, db):
        super().__init__(Giveaway, db)

    def find_active(self, limit: int = 50) -> List[Giveaway]:
        return (
            self.query()
            .filter(Giveaway.status == "active")
            .order_by(Giveaway.ends_at)
            .limit(limit)
            .all()
        )

    def find_ended(self, now) -> List[Giveaway]:
        return self.where(Giveaway.status == "active", Giveaway.ends_at < now)

    def find_purgeable(self, older_than) -> List[Giveaway]:
        return self.where(Giveaway.status == "completed", Giveaway.ended_at < older_than)


class GiveawayEntryRepository(BaseRepository[GiveawayEntry]):
    def __init__(self, db):
        super().__init__(GiveawayEntry, db)

    def for_giveaway(self, giveaway_id: str) -> List[GiveawayEntry]:
        return (
            self.query()
            .filter(GiveawayEntry.giveaway_id == giveaway_id)
            .order_by(GiveawayEntry.created_at)
            .all()
        )


class GiveawayService(GameService):
    """Create, enter, settle and purge giveaways."""

    game_type = "giveaway"

    def __init__(self, db, catalog=None, rng=None):
        super().__init__(db, catalog, rng)
        self.giveaways = GiveawayRepository(db)
        self.entries = GiveawayEntryRepository(db)

    def create_giveaway(
        self,
        user_id: str,
        items: List[dict],
        title: Optional[str] = None,
        description: Optional[str] = None,
        duration_minutes: Optional[int] = None,
    ) -> Dict:
        duration = duration_minutes or settings.GIVEAWAY_DEFAULT_DURATION_MINUTES
        if not MIN_DURATION_MINUTES <= duration <= MAX_DURATION_MINUTES:
            raise PayloadValidationError(
                f"Duration must be between {MIN_DURATION_MINUTES} and {MAX_DURATION_MINUTES} minutes"
            )

        with settlement_scope(self.db, self.game_type, "create"):
            stake = self.ledger.capture_stake(user_id, items)
            giveaway = self.giveaways.create(
                creator_id=user_id,
                title=title or "Item Giveaway",
                description=description,
                prize_items=stake.lines,
                total_value=stake.total_value,
                type="manual",
                status="active",
                ends_at=utcnow() + timedelta(minutes=duration),
            )
            self.ledger.debit_items(user_id, stake.lines)
            self.ledger.record_bet(user_id, stake.total_value, self.game_type, giveaway.id, "Giveaway prize escrow")
            result = self._giveaway_to_dict(giveaway)

        logger.info(f"Giveaway {result['id']} created by {user_id} worth ${result['total_value']}")
        return {"giveaway": result}

    def create_auto_giveaway(self) -> Optional[Dict]:
        """House giveaway with 1-3 distinct random catalog items."""
        pool = self.catalog.all_items(self.db)
        if not pool:
            logger.warning("Skipping auto giveaway: item catalog is empty")
            return None

        count = 1 + randbelow(3, self.rng)
        lines = [item.to_stake(1) for item in pick_distinct(pool, count, self.rng)]
        with settlement_scope(self.db, self.game_type, "auto_create"):
            giveaway = self.giveaways.create(
                creator_id=None,
                title=AUTO_GIVEAWAY_TITLE,
                description=AUTO_GIVEAWAY_DESCRIPTION,
                prize_items=lines,
                total_value=stake_value(lines),
                type="auto",
                status="active",
                ends_at=utcnow() + timedelta(minutes=settings.AUTO_GIVEAWAY_DURATION_MINUTES),
            )
            result = self._giveaway_to_dict(giveaway)

        logger.info(f"Auto giveaway {result['id']} created with {len(lines)} item(s)")
        return result

    def join_giveaway(self, user_id: str, giveaway_id: str) -> Dict:
        """
        Raises:
            NotFoundError: Unknown giveaway
            StateConflictError: Not active, already ended or already entered
            AuthorizationError: Joining your own open giveaway
        """
        with settlement_scope(self.db, self.game_type, "join", giveaway_id):
            giveaway = self.giveaways.find_by_id(giveaway_id)
            if giveaway is None:
                raise NotFoundError("Giveaway not found", giveaway_id=giveaway_id)
            if giveaway.status != "active":
                raise StateConflictError("Giveaway is not active", giveaway_id=giveaway_id)
            if giveaway.ends_at < utcnow():
                raise StateConflictError("Giveaway has ended", giveaway_id=giveaway_id)
            if giveaway.creator_id == user_id:
                raise AuthorizationError("You cannot join your own giveaway")
            if self.entries.exists_where(
                GiveawayEntry.giveaway_id == giveaway_id,
                GiveawayEntry.user_id == user_id,
            ):
                raise StateConflictError("Already entered this giveaway", giveaway_id=giveaway_id)
            # Unique (giveaway_id, user_id) catches a concurrent duplicate at flush
            self.entries.create(giveaway_id=giveaway_id, user_id=user_id, tickets=1)

        return {"success": True}

    def complete_ended(self) -> Dict:
        """Settle every active giveaway past its end time."""
        ended_ids = [g.id for g in self.giveaways.find_ended(utcnow())]
        completed, failed = 0, 0

        for giveaway_id in ended_ids:
            try:
                self.complete_giveaway(giveaway_id)
                completed += 1
                sweeper_sessions_claimed_total.labels(sweeper=self.game_type).inc()
            except StateConflictError:
                continue
            except Exception as e:
                failed += 1
                sweeper_refund_failures_total.labels(sweeper=self.game_type).inc()
                logger.error(f"Failed to complete giveaway {giveaway_id}: {e}")

        if completed or failed:
            logger.info(f"Giveaway sweep: {completed} completed, {failed} failed")
        return {"completed": completed, "failed": failed}

    def complete_giveaway(self, giveaway_id: str) -> Dict:
        with settlement_scope(self.db, self.game_type, "complete", giveaway_id):
            giveaway = self.giveaways.find_by_id(giveaway_id)
            if giveaway is None:
                raise NotFoundError("Giveaway not found", giveaway_id=giveaway_id)
            entries = self.entries.for_giveaway(giveaway_id)
            winner_id = None
            if entries:
                winner = draw_weighted(entries, [e.tickets for e in entries], self.rng)
                winner_id = winner.user_id

            claim(
                self.giveaways, giveaway_id, "active", "Giveaway already completed",
                status="completed",
                winner_id=winner_id,
                ended_at=utcnow(),
            )

            prize = list(giveaway.prize_items)
            value = Decimal(giveaway.total_value)
            if winner_id is not None:
                self.ledger.credit_items(winner_id, prize)
                self.ledger.record_win(winner_id, value, self.game_type, giveaway_id, f"Won giveaway: {giveaway.title}")
            elif giveaway.creator_id is not None:
                self.ledger.credit_items(giveaway.creator_id, prize)
                self.ledger.record_refund(
                    giveaway.creator_id, value, self.game_type, giveaway_id, "Giveaway ended without entries",
                )

            mark_settled(self.db, self.game_type, giveaway_id, "complete", {
                "winner_id": winner_id,
                "entries": len(entries),
            })

        logger.info(f"Giveaway {giveaway_id} completed, winner {winner_id or 'none'} of {len(entries)} entries")
        return {"giveaway_id": giveaway_id, "winner_id": winner_id, "entries": len(entries)}

    def purge_completed(self, grace_seconds: Optional[int] = None) -> Dict:
        """Delete completed giveaways past the grace period, entries first."""
        grace = settings.GIVEAWAY_PURGE_GRACE_SECONDS if grace_seconds is None else grace_seconds
        with settlement_scope(self.db, self.game_type, "purge"):
            ids = [g.id for g in self.giveaways.find_purgeable(cutoff(seconds=grace))]
            if ids:
                self.entries.delete_where(GiveawayEntry.giveaway_id.in_(ids))
                self.giveaways.delete_where(Giveaway.id.in_(ids))

        if ids:
            logger.info(f"Purged {len(ids)} completed giveaway(s)")
        return {"purged": len(ids)}

    # ========================================================================
    # Reads
    # ========================================================================

    def list_active(self, limit: int = 50) -> List[Dict]:
        return [self._giveaway_to_dict(g) for g in self.giveaways.find_active(limit)]

    def get_giveaway(self, giveaway_id: str) -> Dict:
        giveaway = self.giveaways.find_by_id(giveaway_id)
        if giveaway is None:
            raise NotFoundError("Giveaway not found", giveaway_id=giveaway_id)
        return self._giveaway_to_dict(giveaway)

    def _giveaway_to_dict(self, giveaway: Giveaway) -> Dict:
        return {
            "id": giveaway.id,
            "creator_id": giveaway.creator_id,
            "title": giveaway.title,
            "description": giveaway.description,
            "prize_items": giveaway.prize_items,
            "total_value": str(giveaway.total_value),
            "type": giveaway.type,
            "status": giveaway.status,
            "winner_id": giveaway.winner_id,
            "entries": self.entries.count(GiveawayEntry.giveaway_id == giveaway.id),
            "ends_at": isoformat(giveaway.ends_at),
            "ended_at": isoformat(giveaway.ended_at),
        }
