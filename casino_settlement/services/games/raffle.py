"""
Seasonal raffle funded by item exchanges.

Players trade items in for tickets (one per RAFFLE_TICKET_PRICE of catalog
value, rounded down) and the traded items form the prize pool. Once the end
date passes the raffle is drawn: two ticket-weighted winners, the second
drawn from the remaining holders, and the pool split greedily by value so
each winner gets as close to half as whole stake lines allow.
"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from casino_settlement.core.config import settings
from casino_settlement.core.exceptions import (
    NotFoundError,
    PayloadValidationError,
    StateConflictError,
)
from casino_settlement.core.logging import get_logger
from casino_settlement.models import Raffle, RaffleTicket
from casino_settlement.repositories.base import BaseRepository
from casino_settlement.services.games.base import GameService
from casino_settlement.services.ledger_service import stake_value
from casino_settlement.services.outcomes import draw_weighted
from casino_settlement.services.settlement import claim, mark_settled, settlement_scope
from casino_settlement.utils.timezone import utcnow, isoformat

logger = get_logger(__name__)

MIN_PARTICIPANTS = 2


class RaffleRepository(BaseRepository[Raffle]):
    def __init__(self, db):
        super().__init__(Raffle, db)

    def find_active(self) -> Optional[Raffle]:
        return (
            self.query()
            .filter(Raffle.status == "active")
            .order_by(Raffle.year.desc())
            .first()
        )

    def find_by_year(self, year: int) -> Optional[Raffle]:
        return self.where_first(Raffle.year == year)


class RaffleTicketRepository(BaseRepository[RaffleTicket]):
    def __init__(self, db):
        super().__init__(RaffleTicket, db)

    def for_raffle(self, raffle_id: str) -> List[RaffleTicket]:
        return (
            self.query()
            .filter(RaffleTicket.raffle_id == raffle_id, RaffleTicket.total_tickets > 0)
            .order_by(RaffleTicket.created_at)
            .all()
        )

    def find_holder(self, raffle_id: str, user_id: str) -> Optional[RaffleTicket]:
        return self.where_first(RaffleTicket.raffle_id == raffle_id, RaffleTicket.user_id == user_id)


def split_prize(lines: List[dict]) -> Tuple[List[dict], List[dict]]:
    """
    Split stake lines into two shares of roughly half the pool each.

    Lines are taken largest first; each goes to the lighter share unless that
    would push it past half, in which case it goes to the other share if that
    one still fits, and otherwise to whichever share is lighter.
    """
    target = stake_value(lines) / 2
    first, second = [], []
    first_total, second_total = Decimal("0"), Decimal("0")
    for line in sorted(lines, key=lambda l: Decimal(l["value"]) * l["quantity"], reverse=True):
        value = Decimal(line["value"]) * line["quantity"]
        if first_total <= second_total and first_total + value <= target:
            first.append(line)
            first_total += value
        elif second_total + value <= target:
            second.append(line)
            second_total += value
        elif first_total <= second_total:
            first.append(line)
            first_total += value
        else:
            second.append(line)
            second_total += value
    return first, second


class RaffleService(GameService):
    """Open raffles, exchange items for tickets and draw winners."""

    game_type = "raffle"

    def __init__(self, db, catalog=None, rng=None):
        super().__init__(db, catalog, rng)
        self.raffles = RaffleRepository(db)
        self.tickets = RaffleTicketRepository(db)

    def open_raffle(self, year: int, end_date: datetime) -> Dict:
        with settlement_scope(self.db, self.game_type, "open"):
            if self.raffles.find_by_year(year) is not None:
                raise StateConflictError(f"A raffle for {year} already exists")
            raffle = self.raffles.create(
                year=year,
                status="active",
                end_date=end_date,
                prize_items=[],
                total_prize_value=Decimal("0.00"),
            )
            result = self._raffle_to_dict(raffle)

        logger.info(f"Opened raffle {year} ending {end_date}")
        return result

    def exchange(self, user_id: str, items: List[dict]) -> Dict:
        """Trade items into the prize pool for tickets."""
        with settlement_scope(self.db, self.game_type, "exchange"):
            active = self.raffles.find_active()
            if active is None:
                raise NotFoundError("No active raffle")
            # Row lock serializes concurrent appends to the prize pool
            raffle = self.raffles.find_by_id_for_update(active.id)
            if raffle.end_date <= utcnow():
                raise StateConflictError("Raffle has ended", raffle_id=raffle.id)

            stake = self.ledger.capture_stake(user_id, items)
            total_value = stake.total_value
            tickets_earned = int(total_value // settings.RAFFLE_TICKET_PRICE)
            if tickets_earned == 0:
                raise PayloadValidationError(
                    f"Items must be worth at least ${settings.RAFFLE_TICKET_PRICE} to exchange"
                )

            self.ledger.debit_items(user_id, stake.lines)
            self.ledger.record_bet(
                user_id, total_value, self.game_type, raffle.id,
                f"Raffle exchange for {tickets_earned} ticket(s)",
            )

            holder = self.tickets.find_holder(raffle.id, user_id)
            if holder is None:
                self.tickets.create(
                    raffle_id=raffle.id,
                    user_id=user_id,
                    total_tickets=tickets_earned,
                    items_exchanged=stake.lines,
                )
            else:
                holder.total_tickets = holder.total_tickets + tickets_earned
                holder.items_exchanged = list(holder.items_exchanged or []) + stake.lines
                holder.updated_at = utcnow()

            raffle.prize_items = list(raffle.prize_items or []) + stake.lines
            raffle.total_prize_value = Decimal(raffle.total_prize_value) + total_value
            raffle.updated_at = utcnow()
            self.db.flush()

        logger.info(f"{user_id} exchanged ${total_value} for {tickets_earned} raffle ticket(s)")
        return {"success": True, "ticketsEarned": tickets_earned, "totalValue": str(total_value)}

    def draw(self) -> Dict:
        """Draw two winners from an ended raffle and hand out the pool."""
        with settlement_scope(self.db, self.game_type, "draw"):
            raffle = self.raffles.find_active()
            if raffle is None:
                raise NotFoundError("No active raffle found")
            if utcnow() < raffle.end_date:
                raise StateConflictError("Raffle has not ended yet", raffle_id=raffle.id)

            holders = self.tickets.for_raffle(raffle.id)
            if len(holders) < MIN_PARTICIPANTS:
                raise StateConflictError(
                    f"Need at least {MIN_PARTICIPANTS} participants",
                    raffle_id=raffle.id,
                )

            first = draw_weighted(holders, [h.total_tickets for h in holders], self.rng)
            remaining = [h for h in holders if h.user_id != first.user_id]
            second = draw_weighted(remaining, [h.total_tickets for h in remaining], self.rng)

            first_items, second_items = split_prize(list(raffle.prize_items or []))
            winners = [
                {"user_id": first.user_id, "amount": str(stake_value(first_items)), "items": first_items},
                {"user_id": second.user_id, "amount": str(stake_value(second_items)), "items": second_items},
            ]
            claim(
                self.raffles, raffle.id, "active", "Raffle already drawn",
                status="completed",
                winners=winners,
                drawn_at=utcnow(),
                updated_at=utcnow(),
            )

            for winner in winners:
                self.ledger.credit_items(winner["user_id"], winner["items"])
                self.ledger.record_win(
                    winner["user_id"], Decimal(winner["amount"]), self.game_type, raffle.id,
                    f"Won the {raffle.year} raffle",
                )
            winner_ids = {first.user_id, second.user_id}
            for holder in holders:
                if holder.user_id not in winner_ids:
                    self.ledger.record_loss(holder.user_id, self.game_type, raffle.id, f"{raffle.year} raffle")

            mark_settled(self.db, self.game_type, raffle.id, "draw", {
                "winners": [{"user_id": w["user_id"], "amount": w["amount"]} for w in winners],
            })

        logger.info(f"Raffle {raffle.year} drawn: {first.user_id}, {second.user_id}")
        return {
            "success": True,
            "winners": [{"user_id": w["user_id"], "amount": w["amount"]} for w in winners],
        }

    # ========================================================================
    # Reads
    # ========================================================================

    def get_active(self) -> Dict:
        raffle = self.raffles.find_active()
        if raffle is None:
            raise NotFoundError("No active raffle")
        return self._raffle_to_dict(raffle)

    def tickets_for(self, user_id: str) -> Dict:
        raffle = self.raffles.find_active()
        if raffle is None:
            raise NotFoundError("No active raffle")
        holder = self.tickets.find_holder(raffle.id, user_id)
        return {
            "raffle_id": raffle.id,
            "total_tickets": holder.total_tickets if holder else 0,
            "items_exchanged": holder.items_exchanged if holder else [],
        }

    def _raffle_to_dict(self, raffle: Raffle) -> Dict:
        return {
            "id": raffle.id,
            "year": raffle.year,
            "status": raffle.status,
            "end_date": isoformat(raffle.end_date),
            "prize_items": raffle.prize_items,
            "total_prize_value": str(raffle.total_prize_value),
            "participants": self.tickets.count(RaffleTicket.raffle_id == raffle.id),
            "winners": raffle.winners,
            "drawn_at": isoformat(raffle.drawn_at),
        }
