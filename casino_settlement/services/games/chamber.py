"""
Chamber game (Russian roulette) against the house.

Lifecycle: playing -> cashed_out | lost.

The player stakes items and pulls the trigger on a cylinder of CHAMBER_COUNT
chambers holding one bullet. Every survived pull removes a chamber and raises
the multiplier by 0.5x. Cashing out returns floor(quantity * multiplier) of
each staked item; getting shot forfeits the stake.
"""
from typing import Dict, List

from casino_settlement.core.config import settings
from casino_settlement.core.exceptions import AuthorizationError, NotFoundError, StateConflictError
from casino_settlement.core.logging import get_logger
from casino_settlement.models import ChamberGame
from casino_settlement.repositories.base import BaseRepository
from casino_settlement.services.games.base import GameService
from casino_settlement.services.ledger_service import scale_stake, stake_value
from casino_settlement.services.outcomes import chamber_multiplier, pull_chamber
from casino_settlement.services.settlement import claim, mark_settled, settlement_scope
from casino_settlement.utils.timezone import utcnow, isoformat

logger = get_logger(__name__)


class ChamberGameRepository(BaseRepository[ChamberGame]):
    def __init__(self, db):
        super().__init__(ChamberGame, db)

    def find_active_for_user(self, user_id: str):
        return self.where_first(ChamberGame.user_id == user_id, ChamberGame.status == "playing")

    def history_for_user(self, user_id: str, limit: int = 20) -> List[ChamberGame]:
        return (
            self.query()
            .filter(ChamberGame.user_id == user_id)
            .order_by(ChamberGame.created_at.desc())
            .limit(limit)
            .all()
        )


class ChamberService(GameService):
    """Start, pull and cash out of chamber games."""

    game_type = "chamber"

    def __init__(self, db, catalog=None, rng=None):
        super().__init__(db, catalog, rng)
        self.games = ChamberGameRepository(db)

    def start_game(self, user_id: str, items: List[dict]) -> Dict:
        with settlement_scope(self.db, self.game_type, "start"):
            if self.games.find_active_for_user(user_id) is not None:
                raise StateConflictError("Finish your current game first")
            stake = self.ledger.capture_stake(user_id, items)
            game = self.games.create(
                user_id=user_id,
                items=stake.lines,
                bet_amount=stake.total_value,
                chambers_left=settings.CHAMBER_COUNT,
                rounds_survived=0,
                status="playing",
            )
            self.ledger.debit_items(user_id, stake.lines)
            self.ledger.record_bet(user_id, stake.total_value, self.game_type, game.id, "Chamber game stake")
            result = self._game_to_dict(game)

        return {"game": result}

    def pull(self, user_id: str, game_id: str) -> Dict:
        """Pull the trigger once."""
        with settlement_scope(self.db, self.game_type, "pull", game_id):
            game = self._get_own_game(user_id, game_id)
            chambers_left = game.chambers_left
            rounds = game.rounds_survived
            fired = pull_chamber(chambers_left, self.rng)

            if fired:
                values = {"status": "lost", "payout_amount": 0, "completed_at": utcnow()}
            else:
                values = {"chambers_left": chambers_left - 1, "rounds_survived": rounds + 1}
            applied = self.games.update_where(
                [
                    ChamberGame.id == game_id,
                    ChamberGame.status == "playing",
                    ChamberGame.chambers_left == chambers_left,
                ],
                values,
            )
            if applied != 1:
                raise StateConflictError("Game moved on", game_id=game_id)

            if fired:
                self.ledger.record_loss(user_id, self.game_type, game_id, f"Shot after {rounds} round(s)")
                self.ledger.record_result(user_id, game.bet_amount, 0)
                mark_settled(self.db, self.game_type, game_id, "lost", {"rounds_survived": rounds})
                rounds_after, chambers_after = rounds, chambers_left
            else:
                rounds_after, chambers_after = rounds + 1, chambers_left - 1

        multiplier = chamber_multiplier(rounds_after)
        return {
            "survived": not fired,
            "chambersLeft": chambers_after,
            "roundsSurvived": rounds_after,
            "multiplier": str(multiplier),
        }

    def cash_out(self, user_id: str, game_id: str) -> Dict:
        with settlement_scope(self.db, self.game_type, "cashout", game_id):
            game = self._get_own_game(user_id, game_id)
            if game.rounds_survived < 1:
                raise StateConflictError("Pull at least once before cashing out", game_id=game_id)

            multiplier = chamber_multiplier(game.rounds_survived)
            payout_items = scale_stake(game.items, multiplier)
            payout = stake_value(payout_items)
            claim(
                self.games, game_id, "playing", "Game already finished",
                status="cashed_out",
                payout_amount=payout,
                completed_at=utcnow(),
            )
            self.ledger.credit_items(user_id, payout_items)
            self.ledger.record_win(user_id, payout, self.game_type, game_id, f"Chamber cash out @ {multiplier}x")
            self.ledger.record_result(user_id, game.bet_amount, payout)
            mark_settled(self.db, self.game_type, game_id, "cashout", {
                "multiplier": str(multiplier),
                "payout": str(payout),
            })

        logger.info(f"Chamber game {game_id} cashed out at {multiplier}x for ${payout}")
        return {"success": True, "multiplier": str(multiplier), "payout": str(payout), "items": payout_items}

    def get_game(self, user_id: str, game_id: str) -> Dict:
        game = self.games.find_by_id(game_id)
        if game is None:
            raise NotFoundError("Game not found", game_id=game_id)
        if game.user_id != user_id:
            raise AuthorizationError("Not your game")
        return self._game_to_dict(game)

    def _get_own_game(self, user_id: str, game_id: str) -> ChamberGame:
        game = self.games.find_by_id(game_id)
        if game is None:
            raise NotFoundError("Game not found", game_id=game_id)
        if game.user_id != user_id:
            raise AuthorizationError("Not your game")
        if game.status != "playing":
            raise StateConflictError("Game already finished", game_id=game_id)
        return game

    def _game_to_dict(self, game: ChamberGame) -> Dict:
        return {
            "id": game.id,
            "user_id": game.user_id,
            "items": game.items,
            "bet_amount": str(game.bet_amount),
            "chambers_left": game.chambers_left,
            "rounds_survived": game.rounds_survived,
            "multiplier": str(chamber_multiplier(game.rounds_survived)),
            "status": game.status,
            "payout_amount": str(game.payout_amount) if game.payout_amount is not None else None,
            "created_at": isoformat(game.created_at),
            "completed_at": isoformat(game.completed_at),
        }
