"""
Roulette rounds.

Lifecycle: waiting -> completed. Bets are item stakes on a color; a winning
bet gets every staked item back multiplied (14x green, 2x red/black).
"""
from decimal import Decimal
from typing import Dict, List

from casino_settlement.core.exceptions import NotFoundError, PayloadValidationError, StateConflictError
from casino_settlement.core.logging import get_logger
from casino_settlement.models import RouletteGame, RouletteBet
from casino_settlement.repositories.base import BaseRepository
from casino_settlement.services.games.base import GameService
from casino_settlement.services.ledger_service import scale_stake, stake_value
from casino_settlement.services.outcomes import ROULETTE_MULTIPLIERS, spin_roulette
from casino_settlement.services.settlement import claim, hold, mark_settled, settlement_scope
from casino_settlement.utils.timezone import utcnow, isoformat

logger = get_logger(__name__)


class RouletteGameRepository(BaseRepository[RouletteGame]):
    def __init__(self, db):
        super().__init__(RouletteGame, db)

    def find_waiting(self):
        return (
            self.query()
            .filter(RouletteGame.status == "waiting")
            .order_by(RouletteGame.created_at)
            .first()
        )


class RouletteBetRepository(BaseRepository[RouletteBet]):
    def __init__(self, db):
        super().__init__(RouletteBet, db)

    def for_game(self, game_id: str) -> List[RouletteBet]:
        return self.query().filter(RouletteBet.game_id == game_id).order_by(RouletteBet.created_at).all()


class RouletteService(GameService):
    """Open rounds, take bets and spin."""

    game_type = "roulette"

    def __init__(self, db, catalog=None, rng=None):
        super().__init__(db, catalog, rng)
        self.games = RouletteGameRepository(db)
        self.bets = RouletteBetRepository(db)

    def current_round(self) -> Dict:
        """The open round, opening one if none is waiting."""
        game = self.games.find_waiting()
        if game is None:
            with settlement_scope(self.db, self.game_type, "create"):
                game = self.games.create(status="waiting")
                result = self._game_to_dict(game)
            logger.info(f"Opened roulette round {result['id']}")
            return result
        return self._game_to_dict(game)

    def place_bet(self, user_id: str, game_id: str, color: str, items: List[dict]) -> Dict:
        if color not in ROULETTE_MULTIPLIERS:
            raise PayloadValidationError("Color must be red, black or green")

        with settlement_scope(self.db, self.game_type, "bet", game_id):
            game = self.games.find_by_id(game_id)
            if game is None:
                raise NotFoundError("Game not found", game_id=game_id)
            if game.status != "waiting":
                raise StateConflictError("Betting is closed for this round", game_id=game_id)

            stake = self.ledger.capture_stake(user_id, items)
            hold(self.games, game_id, "waiting", "Betting is closed for this round")
            bet = self.bets.create(
                game_id=game_id,
                user_id=user_id,
                bet_color=color,
                bet_amount=stake.total_value,
                items=stake.lines,
            )
            self.ledger.debit_items(user_id, stake.lines)
            self.ledger.record_bet(user_id, stake.total_value, self.game_type, game_id, f"Roulette bet on {color}")
            result = self._bet_to_dict(bet)

        return {"bet": result}

    def spin(self, game_id: str) -> Dict:
        """Resolve the round and pay every winning bet."""
        with settlement_scope(self.db, self.game_type, "spin", game_id):
            game = self.games.find_by_id(game_id)
            if game is None:
                raise NotFoundError("Game not found", game_id=game_id)
            if game.status != "waiting":
                raise StateConflictError("Round already spun", game_id=game_id)

            number, color = spin_roulette(self.rng)
            claim(
                self.games, game_id, "waiting", "Round already spun",
                status="completed",
                spin_result=number,
                spin_color=color,
                completed_at=utcnow(),
            )

            multiplier = ROULETTE_MULTIPLIERS[color]
            total_paid = Decimal("0.00")
            for bet in self.bets.for_game(game_id):
                won = bet.bet_color == color
                if won:
                    payout_items = scale_stake(bet.items, multiplier)
                    payout = stake_value(payout_items)
                    self.ledger.credit_items(bet.user_id, payout_items)
                    self.ledger.record_win(bet.user_id, payout, self.game_type, game_id, f"Roulette win ({color})")
                    total_paid += payout
                else:
                    payout = Decimal("0.00")
                    self.ledger.record_loss(bet.user_id, self.game_type, game_id, f"Roulette loss ({color})")
                bet.won = won
                bet.payout_amount = payout
                self.ledger.record_result(bet.user_id, bet.bet_amount, payout)

            mark_settled(self.db, self.game_type, game_id, "spin", {
                "number": number,
                "color": color,
                "total_paid": str(total_paid),
            })

        logger.info(f"Roulette {game_id} landed {number} ({color}), paid ${total_paid}")
        return {"success": True, "result": color, "number": number}

    def get_round(self, game_id: str) -> Dict:
        game = self.games.find_by_id(game_id)
        if game is None:
            raise NotFoundError("Game not found", game_id=game_id)
        result = self._game_to_dict(game)
        result["bets"] = [self._bet_to_dict(bet) for bet in self.bets.for_game(game_id)]
        return result

    def _game_to_dict(self, game: RouletteGame) -> Dict:
        return {
            "id": game.id,
            "status": game.status,
            "spin_result": game.spin_result,
            "spin_color": game.spin_color,
            "created_at": isoformat(game.created_at),
            "completed_at": isoformat(game.completed_at),
        }

    def _bet_to_dict(self, bet: RouletteBet) -> Dict:
        return {
            "id": bet.id,
            "game_id": bet.game_id,
            "user_id": bet.user_id,
            "bet_color": bet.bet_color,
            "bet_amount": str(bet.bet_amount),
            "items": bet.items,
            "won": bet.won,
            "payout_amount": str(bet.payout_amount) if bet.payout_amount is not None else None,
        }
