"""Integration tests for crash rounds.

Test Strategy:
1. Bets escrow items; one bet per player per round
2. Launch draws the crash point and keeps it hidden until the round crashes
3. Cashouts lock in once; a cashout above the crash point loses
4. Only admin callers may supply an explicit crash point

Each test follows the pattern:
- Given: A round with bets from two players
- When: CrashService launch/cash_out/resolve is called
- Then: Payouts are floor(quantity * cashout) of each staked item
"""
from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from casino_settlement.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    PayloadValidationError,
    StateConflictError,
)
from casino_settlement.services.games.crash import CrashService, parse_multiplier


@pytest.fixture
def round_with_bets(db_session: Session, two_players, knife, give_items):
    """alice stakes 2 knives, bob stakes 1 knife."""
    give_items("alice", knife, 2)
    give_items("bob", knife, 1)
    service = CrashService(db_session)
    game_id = service.create_round()["id"]
    service.place_bet("alice", game_id, [{"item_id": knife.id, "quantity": 2}])
    service.place_bet("bob", game_id, [{"item_id": knife.id, "quantity": 1}])
    return game_id


class TestCrashBets:
    """Betting window."""

    def test_bet_escrows_items(self, db_session: Session, round_with_bets, knife, quantity_of):
        game = CrashService(db_session).get_round(round_with_bets)

        assert quantity_of("alice", knife) == 0
        assert {bet["user_id"]: bet["bet_amount"] for bet in game["bets"]} == {"alice": "20.00", "bob": "10.00"}

    def test_one_bet_per_player(self, db_session: Session, round_with_bets, knife, give_items):
        give_items("alice", knife, 1)

        with pytest.raises(StateConflictError):
            CrashService(db_session).place_bet("alice", round_with_bets, [{"item_id": knife.id}])

    def test_no_bets_after_launch(self, db_session: Session, round_with_bets, knife, give_items, make_account):
        make_account("carol")
        give_items("carol", knife, 1)
        service = CrashService(db_session)
        service.launch(round_with_bets)

        with pytest.raises(StateConflictError):
            service.place_bet("carol", round_with_bets, [{"item_id": knife.id}])


class TestCrashFlight:
    """Launch, cashout and resolve."""

    def test_crash_point_hidden_until_crashed(self, db_session: Session, round_with_bets):
        service = CrashService(db_session)

        launched = service.launch(round_with_bets)
        assert launched["status"] == "flying"
        assert launched["crash_point"] is None

        result = service.resolve(round_with_bets)
        assert service.get_round(round_with_bets)["crash_point"] == result["crashPoint"]

    def test_launch_once(self, db_session: Session, round_with_bets):
        service = CrashService(db_session)
        service.launch(round_with_bets)

        with pytest.raises(StateConflictError):
            service.launch(round_with_bets)

    def test_cashout_requires_flight(self, db_session: Session, round_with_bets):
        with pytest.raises(StateConflictError):
            CrashService(db_session).cash_out("alice", round_with_bets, "2.00")

    def test_cashout_locks_once(self, db_session: Session, round_with_bets):
        service = CrashService(db_session)
        service.launch(round_with_bets)

        assert service.cash_out("alice", round_with_bets, "2.00") == {"success": True, "cashoutAt": "2.00"}
        with pytest.raises(StateConflictError):
            service.cash_out("alice", round_with_bets, "3.00")

    def test_cashout_without_bet(self, db_session: Session, round_with_bets, make_account):
        make_account("carol")
        service = CrashService(db_session)
        service.launch(round_with_bets)

        with pytest.raises(NotFoundError):
            service.cash_out("carol", round_with_bets, "2.00")

    def test_resolve_pays_cashouts_at_or_below_point(self, db_session: Session, round_with_bets, knife, quantity_of):
        """alice cashed at 2.00x (wins), bob at 5.00x (loses) on a 3.00x crash."""
        service = CrashService(db_session)
        service.launch(round_with_bets)
        service.cash_out("alice", round_with_bets, "2.00")
        service.cash_out("bob", round_with_bets, "5.00")

        result = service.resolve(round_with_bets, Decimal("3.00"), is_admin=True)

        assert result == {"success": True, "crashPoint": "3.00"}
        assert quantity_of("alice", knife) == 4
        assert quantity_of("bob", knife) == 0
        bets = {bet["user_id"]: bet for bet in service.get_round(round_with_bets)["bets"]}
        assert bets["alice"]["payout_amount"] == "40.00"
        assert bets["bob"]["won"] is False

    def test_cashout_equal_to_point_wins(self, db_session: Session, round_with_bets, knife, quantity_of):
        service = CrashService(db_session)
        service.launch(round_with_bets)
        service.cash_out("bob", round_with_bets, "1.50")

        service.resolve(round_with_bets, "1.50", is_admin=True)

        # floor(1 * 1.5) = 1 knife back
        assert quantity_of("bob", knife) == 1

    def test_no_cashout_loses(self, db_session: Session, round_with_bets, knife, quantity_of):
        service = CrashService(db_session)
        service.launch(round_with_bets)

        service.resolve(round_with_bets, "10.00", is_admin=True)

        assert quantity_of("alice", knife) == 0
        assert quantity_of("bob", knife) == 0

    def test_explicit_point_requires_admin(self, db_session: Session, round_with_bets):
        service = CrashService(db_session)
        service.launch(round_with_bets)

        with pytest.raises(AuthorizationError):
            service.resolve(round_with_bets, "50.00", is_admin=False)

    def test_resolve_once(self, db_session: Session, round_with_bets):
        service = CrashService(db_session)
        service.launch(round_with_bets)
        service.resolve(round_with_bets)

        with pytest.raises(StateConflictError):
            service.resolve(round_with_bets)


class TestMultiplierParsing:

    @pytest.mark.parametrize("value", ["0.99", "abc", "-2"])
    def test_rejects_invalid(self, value):
        with pytest.raises(PayloadValidationError):
            parse_multiplier(value)

    def test_normalises_to_cents(self):
        assert parse_multiplier("2.3") == Decimal("2.30")
        assert str(parse_multiplier(2)) == "2.00"
