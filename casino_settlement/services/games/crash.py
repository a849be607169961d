"""
Crash rounds.

Lifecycle: waiting -> flying -> crashed.

The crash point is drawn when the round launches and stays server-side until
the round crashes. A cashout is honored only if its multiplier is at or below
the crash point; winners get floor(quantity * cashout) of every staked item.
"""
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional

from casino_settlement.core.config import settings
from casino_settlement.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    PayloadValidationError,
    StateConflictError,
)
from casino_settlement.core.logging import get_logger
from casino_settlement.models import CrashGame, CrashBet
from casino_settlement.repositories.base import BaseRepository
from casino_settlement.services.games.base import GameService
from casino_settlement.services.ledger_service import scale_stake, stake_value
from casino_settlement.services.outcomes import generate_crash_point
from casino_settlement.services.settlement import claim, mark_settled, settlement_scope
from casino_settlement.utils.timezone import utcnow, isoformat

logger = get_logger(__name__)

MIN_MULTIPLIER = Decimal("1.00")


class CrashGameRepository(BaseRepository[CrashGame]):
    def __init__(self, db):
        super().__init__(CrashGame, db)


class CrashBetRepository(BaseRepository[CrashBet]):
    def __init__(self, db):
        super().__init__(CrashBet, db)

    def for_game(self, game_id: str) -> List[CrashBet]:
        return self.query().filter(CrashBet.game_id == game_id).order_by(CrashBet.created_at).all()

    def find_for_user(self, game_id: str, user_id: str) -> Optional[CrashBet]:
        return self.where_first(CrashBet.game_id == game_id, CrashBet.user_id == user_id)


def parse_multiplier(value) -> Decimal:
    try:
        multiplier = Decimal(str(value)).quantize(Decimal("0.01"))
    except (InvalidOperation, ValueError):
        raise PayloadValidationError("Multiplier must be a number")
    if multiplier < MIN_MULTIPLIER:
        raise PayloadValidationError("Multiplier must be at least 1.00")
    return multiplier


class CrashService(GameService):
    """Open, launch, cash out of and resolve crash rounds."""

    game_type = "crash"

    def __init__(self, db, catalog=None, rng=None):
        super().__init__(db, catalog, rng)
        self.games = CrashGameRepository(db)
        self.bets = CrashBetRepository(db)

    def create_round(self) -> Dict:
        with settlement_scope(self.db, self.game_type, "create"):
            game = self.games.create(status="waiting")
            result = self._game_to_dict(game)
        return result

    def place_bet(self, user_id: str, game_id: str, items: List[dict]) -> Dict:
        with settlement_scope(self.db, self.game_type, "bet", game_id):
            game = self.games.find_by_id(game_id)
            if game is None:
                raise NotFoundError("Game not found", game_id=game_id)
            if game.status != "waiting":
                raise StateConflictError("Betting is closed for this round", game_id=game_id)
            if self.bets.find_for_user(game_id, user_id) is not None:
                raise StateConflictError("Already bet on this round", game_id=game_id)

            stake = self.ledger.capture_stake(user_id, items)
            bet = self.bets.create(
                game_id=game_id,
                user_id=user_id,
                bet_amount=stake.total_value,
                items=stake.lines,
                cashed_out=False,
            )
            self.ledger.debit_items(user_id, stake.lines)
            self.ledger.record_bet(user_id, stake.total_value, self.game_type, game_id, "Crash bet")
            result = self._bet_to_dict(bet)

        return {"bet": result}

    def launch(self, game_id: str) -> Dict:
        """Close betting and draw the (hidden) crash point."""
        with settlement_scope(self.db, self.game_type, "launch", game_id):
            if self.games.find_by_id(game_id) is None:
                raise NotFoundError("Game not found", game_id=game_id)
            crash_point = generate_crash_point(
                self.rng, settings.CRASH_HOUSE_EDGE, settings.CRASH_MAX_MULTIPLIER
            )
            claim(
                self.games, game_id, "waiting", "Round already launched",
                status="flying",
                crash_point=crash_point,
                started_at=utcnow(),
            )
            result = self._game_to_dict(self.games.find_by_id(game_id))

        logger.info(f"Crash {game_id} launched")
        return result

    def cash_out(self, user_id: str, game_id: str, multiplier) -> Dict:
        """Lock in a cashout multiplier while the round is flying."""
        cashout_at = parse_multiplier(multiplier)

        with settlement_scope(self.db, self.game_type, "cashout", game_id):
            game = self.games.find_by_id(game_id)
            if game is None:
                raise NotFoundError("Game not found", game_id=game_id)
            if game.status != "flying":
                raise StateConflictError("Round is not in flight", game_id=game_id)
            bet = self.bets.find_for_user(game_id, user_id)
            if bet is None:
                raise NotFoundError("No bet on this round", game_id=game_id)

            applied = self.bets.update_where(
                [CrashBet.id == bet.id, CrashBet.cashed_out.is_(False)],
                {"cashed_out": True, "cashout_at": cashout_at},
            )
            if applied != 1:
                raise StateConflictError("Already cashed out", game_id=game_id)

        return {"success": True, "cashoutAt": str(cashout_at)}

    def resolve(self, game_id: str, crash_point=None, is_admin: bool = False) -> Dict:
        """
        Crash the round and settle every bet.

        An explicit crash point overrides the one drawn at launch and is only
        accepted from admin callers.
        """
        if crash_point is not None and not is_admin:
            raise AuthorizationError("Only admin callers may supply a crash point")

        with settlement_scope(self.db, self.game_type, "resolve", game_id):
            game = self.games.find_by_id(game_id)
            if game is None:
                raise NotFoundError("Game not found", game_id=game_id)
            if game.status != "flying":
                raise StateConflictError("Round is not in flight", game_id=game_id)

            point = parse_multiplier(crash_point) if crash_point is not None else Decimal(game.crash_point)
            claim(
                self.games, game_id, "flying", "Round already crashed",
                status="crashed",
                crash_point=point,
                crashed_at=utcnow(),
            )

            total_paid = Decimal("0.00")
            for bet in self.bets.for_game(game_id):
                won = bool(bet.cashed_out and bet.cashout_at is not None and Decimal(bet.cashout_at) <= point)
                if won:
                    payout_items = scale_stake(bet.items, bet.cashout_at)
                    payout = stake_value(payout_items)
                    self.ledger.credit_items(bet.user_id, payout_items)
                    self.ledger.record_win(
                        bet.user_id, payout, self.game_type, game_id,
                        f"Crash win @ {Decimal(bet.cashout_at):.2f}x",
                    )
                    total_paid += payout
                else:
                    payout = Decimal("0.00")
                    self.ledger.record_loss(bet.user_id, self.game_type, game_id, f"Crash loss @ {point:.2f}x")
                bet.won = won
                bet.payout_amount = payout
                self.ledger.record_result(bet.user_id, bet.bet_amount, payout)

            mark_settled(self.db, self.game_type, game_id, "resolve", {
                "crash_point": str(point),
                "total_paid": str(total_paid),
            })

        logger.info(f"Crash {game_id} crashed at {point}x, paid ${total_paid}")
        return {"success": True, "crashPoint": str(point)}

    def get_round(self, game_id: str) -> Dict:
        game = self.games.find_by_id(game_id)
        if game is None:
            raise NotFoundError("Game not found", game_id=game_id)
        result = self._game_to_dict(game)
        result["bets"] = [self._bet_to_dict(bet) for bet in self.bets.for_game(game_id)]
        return result

    def _game_to_dict(self, game: CrashGame) -> Dict:
        revealed = game.status == "crashed"
        return {
            "id": game.id,
            "status": game.status,
            "crash_point": str(game.crash_point) if revealed and game.crash_point is not None else None,
            "created_at": isoformat(game.created_at),
            "started_at": isoformat(game.started_at),
            "crashed_at": isoformat(game.crashed_at),
        }

    def _bet_to_dict(self, bet: CrashBet) -> Dict:
        return {
            "id": bet.id,
            "game_id": bet.game_id,
            "user_id": bet.user_id,
            "bet_amount": str(bet.bet_amount),
            "items": bet.items,
            "cashed_out": bet.cashed_out,
            "cashout_at": str(bet.cashout_at) if bet.cashout_at is not None else None,
            "won": bet.won,
            "payout_amount": str(bet.payout_amount) if bet.payout_amount is not None else None,
        }
