"""
Coinflip: two players, one flip, winner takes both stakes.

Lifecycle: waiting -> completed | expired.

The creator's items are escrowed when the game is created, so an expired or
cancelled game refunds exactly what was taken. A joiner's stake must be
within COINFLIP_JOIN_TOLERANCE (inclusive) of the creator's.
"""
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
from casino_settlement.models import CoinflipGame
from casino_settlement.repositories.base import BaseRepository
from casino_settlement.services.games.base import GameService
from casino_settlement.services.outcomes import COIN_SIDES, flip_coin
from casino_settlement.services.settlement import claim, mark_settled, settlement_scope
from casino_settlement.utils.timezone import utcnow, isoformat, cutoff

logger = get_logger(__name__)


class CoinflipRepository(BaseRepository[CoinflipGame]):
    def __init__(self, db):
        super().__init__(CoinflipGame, db)

    def find_open(self, limit: int = 50) -> List[CoinflipGame]:
        return (
            self.query()
            .filter(CoinflipGame.status == "waiting")
            .order_by(CoinflipGame.created_at.desc())
            .limit(limit)
            .all()
        )

    def find_stale(self, older_than) -> List[CoinflipGame]:
        return self.where(CoinflipGame.status == "waiting", CoinflipGame.created_at < older_than)


def tolerance_band(bet_amount: Decimal, tolerance: Decimal) -> tuple:
    """Inclusive (min, max) joinable stake for a creator stake."""
    bet_amount = Decimal(bet_amount)
    return bet_amount * (1 - tolerance), bet_amount * (1 + tolerance)


class CoinflipService(GameService):
    """Create, join, cancel and expire coinflip games."""

    game_type = "coinflip"

    def __init__(self, db, catalog=None, rng=None):
        super().__init__(db, catalog, rng)
        self.games = CoinflipRepository(db)

    def create_game(self, user_id: str, items: List[dict], side: str) -> Dict:
        """Escrow the creator's items and open a game."""
        if side not in COIN_SIDES:
            raise PayloadValidationError("Side must be 'heads' or 'tails'")

        with settlement_scope(self.db, self.game_type, "create"):
            stake = self.ledger.capture_stake(user_id, items)
            game = self.games.create(
                creator_id=user_id,
                creator_side=side,
                creator_items=stake.lines,
                bet_amount=stake.total_value,
                status="waiting",
            )
            self.ledger.debit_items(user_id, stake.lines)
            self.ledger.record_bet(
                user_id, stake.total_value, self.game_type, game.id,
                f"Created coinflip on {side}",
            )
            result = self._game_to_dict(game)

        logger.info(f"Coinflip {result['id']} created by {user_id} for ${result['bet_amount']}")
        return {"game": result}

    def join_game(self, user_id: str, game_id: str, items: List[dict]) -> Dict:
        """
        Join a waiting game and settle it immediately.

        Raises:
            NotFoundError: Unknown game
            StateConflictError: Game is no longer waiting
            AuthorizationError: Joining your own game
            InsufficientFundsError: Joiner does not hold the staked items
            PayloadValidationError: Stake outside the tolerance band
        """
        with settlement_scope(self.db, self.game_type, "join", game_id):
            game = self.games.find_by_id(game_id)
            if game is None:
                raise NotFoundError("Game not found", game_id=game_id)
            if game.status != "waiting":
                raise StateConflictError("Game is no longer available", game_id=game_id)
            if game.creator_id == user_id:
                raise AuthorizationError("Cannot join your own game")

            stake = self.ledger.capture_stake(user_id, items)
            minimum, maximum = tolerance_band(game.bet_amount, settings.COINFLIP_JOIN_TOLERANCE)
            if not (minimum <= stake.total_value <= maximum):
                raise PayloadValidationError(
                    f"Bet must be between ${minimum:.2f} and ${maximum:.2f}",
                    min_amount=str(minimum.quantize(Decimal("0.01"))),
                    max_amount=str(maximum.quantize(Decimal("0.01"))),
                )

            result = flip_coin(self.rng)
            creator_id = game.creator_id
            winner_id = creator_id if result == game.creator_side else user_id
            loser_id = user_id if winner_id == creator_id else creator_id
            creator_stake = Decimal(game.bet_amount)
            creator_items = list(game.creator_items)

            claim(
                self.games, game_id, "waiting", "Game is no longer available",
                joiner_id=user_id,
                joiner_items=stake.lines,
                joiner_amount=stake.total_value,
                result=result,
                winner_id=winner_id,
                status="completed",
                completed_at=utcnow(),
            )

            self.ledger.debit_items(user_id, stake.lines)
            self.ledger.record_bet(user_id, stake.total_value, self.game_type, game_id, "Joined coinflip")

            total_value = creator_stake + stake.total_value
            self.ledger.credit_items(winner_id, creator_items)
            self.ledger.credit_items(winner_id, stake.lines)
            self.ledger.record_win(winner_id, total_value, self.game_type, game_id, f"Won coinflip ({result})")
            self.ledger.record_loss(loser_id, self.game_type, game_id, f"Lost coinflip ({result})")

            self.ledger.record_result(creator_id, creator_stake, total_value if winner_id == creator_id else 0)
            self.ledger.record_result(user_id, stake.total_value, total_value if winner_id == user_id else 0)

            mark_settled(self.db, self.game_type, game_id, "join", {
                "result": result,
                "winner_id": winner_id,
                "total_value": str(total_value),
            })

        logger.info(f"Coinflip {game_id} settled: {result}, winner {winner_id}, ${total_value}")
        return {"result": result, "winnerId": winner_id, "totalValue": str(total_value)}

    def cancel_game(self, user_id: str, game_id: str) -> Dict:
        """Creator withdraws a waiting game and gets the escrow back."""
        with settlement_scope(self.db, self.game_type, "cancel", game_id):
            game = self.games.find_by_id(game_id)
            if game is None:
                raise NotFoundError("Game not found", game_id=game_id)
            if game.creator_id != user_id:
                raise AuthorizationError("Only the creator can cancel this game")
            refunded = self._refund_and_delete(game, "Coinflip cancelled")

        logger.info(f"Coinflip {game_id} cancelled by creator")
        return {"success": True, "refunded": str(refunded)}

    def expire_stale(self, window_minutes: Optional[int] = None) -> Dict:
        """
        Refund and delete games that waited longer than the expiry window.

        Each game settles in its own transaction; a failure is logged and the
        game stays waiting for the next sweep.
        """
        minutes = settings.clamp_coinflip_window(window_minutes)
        stale_ids = [game.id for game in self.games.find_stale(cutoff(minutes=minutes))]
        expired, failed = 0, 0

        for game_id in stale_ids:
            try:
                with settlement_scope(self.db, self.game_type, "expire", game_id):
                    game = self.games.find_by_id(game_id)
                    if game is None:
                        continue
                    self._refund_and_delete(game, "Coinflip expired")
                expired += 1
                sweeper_sessions_claimed_total.labels(sweeper=self.game_type).inc()
            except StateConflictError:
                # Joined or swept by someone else between listing and claiming
                continue
            except Exception as e:
                failed += 1
                sweeper_refund_failures_total.labels(sweeper=self.game_type).inc()
                logger.error(f"Failed to expire coinflip {game_id}: {e}")

        if expired or failed:
            logger.info(f"Coinflip sweep: {expired} expired, {failed} failed (window {minutes}m)")
        return {"expired": expired, "failed": failed, "window_minutes": minutes}

    def _refund_and_delete(self, game: CoinflipGame, reason: str) -> Decimal:
        claim(self.games, game.id, "waiting", "Game is no longer waiting", status="expired", completed_at=utcnow())
        self.ledger.credit_items(game.creator_id, game.creator_items)
        refunded = Decimal(game.bet_amount)
        self.ledger.record_refund(game.creator_id, refunded, self.game_type, game.id, reason)
        mark_settled(self.db, self.game_type, game.id, "refund", {"refunded": str(refunded)})
        self.games.delete_instance(game)
        self.db.flush()
        return refunded

    # ========================================================================
    # Reads
    # ========================================================================

    def list_open_games(self, limit: int = 50) -> List[Dict]:
        return [self._game_to_dict(game) for game in self.games.find_open(limit)]

    def get_game(self, game_id: str) -> Dict:
        game = self.games.find_by_id(game_id)
        if game is None:
            raise NotFoundError("Game not found", game_id=game_id)
        return self._game_to_dict(game)

    def _game_to_dict(self, game: CoinflipGame) -> Dict:
        return {
            "id": game.id,
            "creator_id": game.creator_id,
            "creator_side": game.creator_side,
            "creator_items": game.creator_items,
            "bet_amount": str(game.bet_amount),
            "joiner_id": game.joiner_id,
            "joiner_items": game.joiner_items,
            "joiner_amount": str(game.joiner_amount) if game.joiner_amount is not None else None,
            "result": game.result,
            "winner_id": game.winner_id,
            "status": game.status,
            "created_at": isoformat(game.created_at),
            "completed_at": isoformat(game.completed_at),
        }
