"""
Multi-player blackjack tables played for a shared pot.

Table lifecycle: waiting -> in_progress -> completed.
Player lifecycle: waiting -> playing -> standing | bust.

Every seated player pays the table's bet_amount from their balance when they
join. Turns go in seat order; the table's current_player_id holds the acting
player's user id and turn_started_at the start of their turn. Each hit or
stand first compare-and-swaps turn_started_at, so two concurrent actions on
the same turn cannot both apply.

When every player has stood or busted the dealer draws to 17 and the table
settles:
- bust: lost
- dealer bust or score above the dealer: beats the dealer
- equal to the dealer: push, stake refunded
- otherwise: lost

The pot is every non-pushed stake. Of the players who beat the dealer, those
with the top score split it evenly. With no winner the house keeps the pot.
"""
from decimal import Decimal, ROUND_DOWN
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
from casino_settlement.models import BlackjackTable, BlackjackPlayer
from casino_settlement.repositories.base import BaseRepository
from casino_settlement.services.games.base import GameService
from casino_settlement.services.outcomes import calculate_score, draw_card
from casino_settlement.services.settlement import claim, hold, mark_settled, settlement_scope
from casino_settlement.utils.timezone import utcnow, isoformat, cutoff

logger = get_logger(__name__)

_CENT = Decimal("0.01")

TERMINAL_PLAYER_STATUSES = ("standing", "bust")


class BlackjackTableRepository(BaseRepository[BlackjackTable]):
    def __init__(self, db):
        super().__init__(BlackjackTable, db)

    def find_open(self, limit: int = 50) -> List[BlackjackTable]:
        return (
            self.query()
            .filter(BlackjackTable.status.in_(("waiting", "in_progress")))
            .order_by(BlackjackTable.created_at.desc())
            .limit(limit)
            .all()
        )

    def find_timed_out(self, older_than) -> List[BlackjackTable]:
        return self.where(
            BlackjackTable.status == "in_progress",
            BlackjackTable.turn_started_at < older_than,
        )


class BlackjackPlayerRepository(BaseRepository[BlackjackPlayer]):
    def __init__(self, db):
        super().__init__(BlackjackPlayer, db)

    def for_table(self, table_id: str) -> List[BlackjackPlayer]:
        return self.query().filter(BlackjackPlayer.table_id == table_id).order_by(BlackjackPlayer.seat).all()

    def find_seat(self, table_id: str, user_id: str) -> Optional[BlackjackPlayer]:
        return self.where_first(BlackjackPlayer.table_id == table_id, BlackjackPlayer.user_id == user_id)


def split_pot(pot: Decimal, shares: int) -> List[Decimal]:
    """Split to the cent; leftover cents go to the earliest shares."""
    base = (pot / shares).quantize(_CENT, rounding=ROUND_DOWN)
    leftover = int(((pot - base * shares) / _CENT).to_integral_value())
    return [base + (_CENT if i < leftover else 0) for i in range(shares)]


class BlackjackService(GameService):
    """Tables, turns and the dealer."""

    game_type = "blackjack"

    def __init__(self, db, catalog=None, rng=None):
        super().__init__(db, catalog, rng)
        self.tables = BlackjackTableRepository(db)
        self.players = BlackjackPlayerRepository(db)

    # ========================================================================
    # Seating
    # ========================================================================

    def create_table(self, user_id: str, bet_amount, max_players: Optional[int] = None) -> Dict:
        """Open a table; the creator takes the first seat."""
        bet_amount = Decimal(str(bet_amount)).quantize(_CENT)
        if bet_amount <= 0:
            raise PayloadValidationError("Bet amount must be positive")
        max_players = max_players or settings.BLACKJACK_MAX_PLAYERS
        if not 1 <= max_players <= settings.BLACKJACK_MAX_PLAYERS:
            raise PayloadValidationError(
                f"A table seats between 1 and {settings.BLACKJACK_MAX_PLAYERS} players"
            )

        with settlement_scope(self.db, self.game_type, "create"):
            table = self.tables.create(bet_amount=bet_amount, max_players=max_players, status="waiting")
            self._seat(table, user_id)
            result = self._table_to_dict(table)

        logger.info(f"Blackjack table {result['id']} opened by {user_id} at ${bet_amount}")
        return {"table": result}

    def join_table(self, user_id: str, table_id: str) -> Dict:
        with settlement_scope(self.db, self.game_type, "join", table_id):
            table = self._get_table(table_id)
            if table.status != "waiting":
                raise StateConflictError("Table already started", table_id=table_id)
            if self.players.find_seat(table_id, user_id) is not None:
                raise StateConflictError("Already seated at this table", table_id=table_id)
            hold(self.tables, table_id, "waiting", "Table already started")
            if self.players.count(BlackjackPlayer.table_id == table_id) >= table.max_players:
                raise StateConflictError("Table is full", table_id=table_id)
            self._seat(table, user_id)
            result = self._table_to_dict(table)

        return {"table": result}

    def _seat(self, table: BlackjackTable, user_id: str) -> BlackjackPlayer:
        seat = self.players.count(BlackjackPlayer.table_id == table.id)
        self.ledger.debit_balance(user_id, table.bet_amount)
        player = self.players.create(
            table_id=table.id,
            user_id=user_id,
            seat=seat,
            bet_amount=table.bet_amount,
            hand=[],
            score=0,
            status="waiting",
        )
        self.ledger.record_bet(user_id, table.bet_amount, self.game_type, table.id, "Blackjack buy-in")
        return player

    # ========================================================================
    # Play
    # ========================================================================

    def deal(self, user_id: str, table_id: str) -> Dict:
        """Deal two cards to every seat and the dealer; first seat acts."""
        with settlement_scope(self.db, self.game_type, "deal", table_id):
            table = self._get_table(table_id)
            if table.status != "waiting":
                raise StateConflictError("Game already started", table_id=table_id)
            if self.players.find_seat(table_id, user_id) is None:
                raise AuthorizationError("Only seated players can deal")

            dealer_hand = [draw_card(self.rng), draw_card(self.rng)]
            now = utcnow()
            claim(
                self.tables, table_id, "waiting", "Game already started",
                status="in_progress",
                started_at=now,
                dealer_hand=dealer_hand,
                dealer_score=calculate_score(dealer_hand),
                turn_started_at=now,
            )
            # Seats are read after the claim so a join that committed first is dealt in
            players = self.players.for_table(table_id)
            table.current_player_id = players[0].user_id
            for player in players:
                hand = [draw_card(self.rng), draw_card(self.rng)]
                player.hand = hand
                player.score = calculate_score(hand)
                player.status = "playing"
            self.db.flush()

        logger.info(f"Blackjack table {table_id} dealt to {len(players)} players")
        return {"success": True}

    def hit(self, user_id: str, table_id: str) -> Dict:
        with settlement_scope(self.db, self.game_type, "hit", table_id):
            table, player = self._claim_turn(user_id, table_id)

            card = draw_card(self.rng)
            hand = list(player.hand) + [card]
            score = calculate_score(hand)
            status = "bust" if score > 21 else "playing"
            player.hand = hand
            player.score = score
            player.status = status
            self.db.flush()

            if status == "bust":
                self._advance(table, player)

        return {"card": card, "score": score, "status": status}

    def stand(self, user_id: str, table_id: str) -> Dict:
        with settlement_scope(self.db, self.game_type, "stand", table_id):
            table, player = self._claim_turn(user_id, table_id)
            player.status = "standing"
            self.db.flush()
            self._advance(table, player)

        return {"success": True}

    def auto_stand_expired(self, timeout_seconds: Optional[int] = None) -> Dict:
        """Stand every player whose turn has run past the timeout."""
        timeout = timeout_seconds or settings.BLACKJACK_TURN_TIMEOUT_SECONDS
        stale = [(t.id, t.current_player_id) for t in self.tables.find_timed_out(cutoff(seconds=timeout))]
        stood, failed = 0, 0

        for table_id, user_id in stale:
            try:
                self.stand(user_id, table_id)
                stood += 1
                sweeper_sessions_claimed_total.labels(sweeper=self.game_type).inc()
            except (StateConflictError, AuthorizationError):
                # The player acted between listing and claiming
                continue
            except Exception as e:
                failed += 1
                sweeper_refund_failures_total.labels(sweeper=self.game_type).inc()
                logger.error(f"Failed to auto-stand table {table_id}: {e}")

        if stood or failed:
            logger.info(f"Blackjack auto-stand: {stood} stood, {failed} failed")
        return {"stood": stood, "failed": failed}

    def _claim_turn(self, user_id: str, table_id: str):
        table = self._get_table(table_id)
        if table.status != "in_progress":
            raise StateConflictError("Game is not in progress", table_id=table_id)
        player = self.players.find_seat(table_id, user_id)
        if player is None:
            raise NotFoundError("Player not found", table_id=table_id)
        if player.status != "playing":
            raise StateConflictError("Cannot act - player not in playing state", table_id=table_id)
        if table.current_player_id != user_id:
            raise AuthorizationError("Not your turn")

        applied = self.tables.update_where(
            [
                BlackjackTable.id == table_id,
                BlackjackTable.status == "in_progress",
                BlackjackTable.current_player_id == user_id,
                BlackjackTable.turn_started_at == table.turn_started_at,
            ],
            {"turn_started_at": utcnow()},
        )
        if applied != 1:
            raise StateConflictError("Turn already moved on", table_id=table_id)
        return table, player

    def _advance(self, table: BlackjackTable, current: BlackjackPlayer) -> None:
        """Pass the turn to the next playing seat, or finish the table."""
        players = self.players.for_table(table.id)
        after = [p for p in players if p.seat > current.seat] + [p for p in players if p.seat < current.seat]
        next_player = next((p for p in after if p.status == "playing"), None)

        if next_player is not None:
            table.current_player_id = next_player.user_id
            table.turn_started_at = utcnow()
            self.db.flush()
            return

        if all(p.status in TERMINAL_PLAYER_STATUSES for p in players):
            self._finish(table, players)

    def _finish(self, table: BlackjackTable, players: List[BlackjackPlayer]) -> None:
        dealer_hand = list(table.dealer_hand or [])
        dealer_score = calculate_score(dealer_hand)
        while dealer_score < settings.BLACKJACK_DEALER_STANDS_ON:
            dealer_hand.append(draw_card(self.rng))
            dealer_score = calculate_score(dealer_hand)

        claim(
            self.tables, table.id, "in_progress", "Table already settled",
            status="completed",
            dealer_hand=dealer_hand,
            dealer_score=dealer_score,
            current_player_id=None,
            completed_at=utcnow(),
        )

        dealer_bust = dealer_score > 21
        beaters, pushes, losers = [], [], []
        for player in players:
            if player.status == "bust":
                losers.append(player)
            elif dealer_bust or player.score > dealer_score:
                beaters.append(player)
            elif player.score == dealer_score:
                pushes.append(player)
            else:
                losers.append(player)

        pot = sum((Decimal(p.bet_amount) for p in players if p not in pushes), Decimal("0.00"))
        top_score = max((p.score for p in beaters), default=None)
        winners = [p for p in beaters if p.score == top_score]
        shares = split_pot(pot, len(winners)) if winners else []

        for player, share in zip(winners, shares):
            player.won = True
            player.payout_amount = share
            self.ledger.credit_balance(player.user_id, share)
            self.ledger.record_win(
                player.user_id, share, self.game_type, table.id,
                "Blackjack win - Split pot" if len(winners) > 1 else "Blackjack win - Winner",
            )
            self.ledger.record_result(player.user_id, player.bet_amount, share)

        for player in pushes:
            player.won = None
            player.payout_amount = player.bet_amount
            self.ledger.credit_balance(player.user_id, player.bet_amount)
            self.ledger.record_refund(player.user_id, player.bet_amount, self.game_type, table.id, "Blackjack push")
            self.ledger.record_result(player.user_id, player.bet_amount, player.bet_amount)

        # Players who beat the dealer but not the top score lose their stake to the pot
        for player in losers + [p for p in beaters if p not in winners]:
            player.won = False
            player.payout_amount = Decimal("0.00")
            self.ledger.record_loss(player.user_id, self.game_type, table.id, "Blackjack loss")
            self.ledger.record_result(player.user_id, player.bet_amount, 0)

        mark_settled(self.db, self.game_type, table.id, "complete", {
            "dealer_score": dealer_score,
            "pot": str(pot),
            "winners": [p.user_id for p in winners],
        })
        logger.info(
            f"Blackjack table {table.id} settled: dealer {dealer_score}, "
            f"{len(winners)} winner(s), pot ${pot}"
        )

    # ========================================================================
    # Reads
    # ========================================================================

    def list_tables(self, limit: int = 50) -> List[Dict]:
        return [self._table_to_dict(t) for t in self.tables.find_open(limit)]

    def get_table(self, table_id: str) -> Dict:
        return self._table_to_dict(self._get_table(table_id))

    def _get_table(self, table_id: str) -> BlackjackTable:
        table = self.tables.find_by_id(table_id)
        if table is None:
            raise NotFoundError("Table not found", table_id=table_id)
        return table

    def _table_to_dict(self, table: BlackjackTable) -> Dict:
        in_play = table.status == "in_progress"
        dealer_hand = table.dealer_hand or []
        return {
            "id": table.id,
            "bet_amount": str(table.bet_amount),
            "max_players": table.max_players,
            "status": table.status,
            # Hole card stays hidden while players act
            "dealer_hand": dealer_hand[:1] if in_play else dealer_hand,
            "dealer_score": None if in_play else table.dealer_score,
            "current_player_id": table.current_player_id,
            "turn_started_at": isoformat(table.turn_started_at),
            "players": [
                {
                    "user_id": p.user_id,
                    "seat": p.seat,
                    "hand": p.hand,
                    "score": p.score,
                    "status": p.status,
                    "won": p.won,
                    "payout_amount": str(p.payout_amount) if p.payout_amount is not None else None,
                }
                for p in self.players.for_table(table.id)
            ],
            "created_at": isoformat(table.created_at),
            "completed_at": isoformat(table.completed_at),
        }
