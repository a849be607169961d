"""Integration tests for roulette rounds.

Test Strategy:
1. current_round opens a round only when none is waiting
2. Bets escrow items and are rejected once the round is spun
3. Spinning pays winners their items multiplied (14x green, 2x red/black)
4. A round can only be spun once
"""
import pytest
from sqlalchemy.orm import Session

from casino_settlement.core.exceptions import NotFoundError, PayloadValidationError, StateConflictError
from casino_settlement.services.games import roulette as roulette_module
from casino_settlement.services.games.roulette import RouletteService


@pytest.fixture
def land_on(monkeypatch):
    def _land(number, color):
        monkeypatch.setattr(roulette_module, "spin_roulette", lambda rng=None: (number, color))
    return _land


@pytest.fixture
def round_id(db_session: Session):
    return RouletteService(db_session).current_round()["id"]


class TestRouletteRounds:
    """Round lifecycle."""

    def test_current_round_is_reused(self, db_session: Session):
        service = RouletteService(db_session)

        first = service.current_round()
        second = service.current_round()

        assert first["id"] == second["id"]
        assert first["status"] == "waiting"

    def test_new_round_after_spin(self, db_session: Session, round_id, land_on):
        land_on(3, "red")
        service = RouletteService(db_session)
        service.spin(round_id)

        assert service.current_round()["id"] != round_id

    def test_unknown_round(self, db_session: Session):
        with pytest.raises(NotFoundError):
            RouletteService(db_session).spin("missing")


class TestRouletteBets:
    """Bets and payouts."""

    def test_bet_escrows_items(self, db_session: Session, two_players, gun, give_items, quantity_of, round_id):
        give_items("alice", gun, 2)

        result = RouletteService(db_session).place_bet("alice", round_id, "red", [{"item_id": gun.id, "quantity": 2}])

        assert result["bet"]["bet_amount"] == "10.00"
        assert quantity_of("alice", gun) == 0

    def test_rejects_unknown_color(self, db_session: Session, two_players, gun, give_items, round_id):
        give_items("alice", gun, 1)

        with pytest.raises(PayloadValidationError):
            RouletteService(db_session).place_bet("alice", round_id, "blue", [{"item_id": gun.id}])

    def test_green_pays_fourteen_times(self, db_session: Session, two_players, gun, give_items, quantity_of,
                                       round_id, land_on, transactions_of):
        land_on(0, "green")
        give_items("alice", gun, 1)
        give_items("bob", gun, 1)
        service = RouletteService(db_session)
        service.place_bet("alice", round_id, "green", [{"item_id": gun.id}])
        service.place_bet("bob", round_id, "red", [{"item_id": gun.id}])

        result = service.spin(round_id)

        assert result == {"success": True, "result": "green", "number": 0}
        assert quantity_of("alice", gun) == 14
        assert quantity_of("bob", gun) == 0
        wins = [row for row in transactions_of("alice", round_id) if row.type == "win"]
        assert wins[0].amount == 70

    def test_red_pays_double(self, db_session: Session, two_players, knife, give_items, quantity_of, round_id, land_on):
        land_on(5, "red")
        give_items("alice", knife, 3)
        service = RouletteService(db_session)
        service.place_bet("alice", round_id, "red", [{"item_id": knife.id, "quantity": 3}])

        service.spin(round_id)

        assert quantity_of("alice", knife) == 6
        bets = service.get_round(round_id)["bets"]
        assert bets[0]["won"] is True
        assert bets[0]["payout_amount"] == "60.00"

    def test_round_spins_once(self, db_session: Session, round_id, land_on):
        land_on(2, "black")
        service = RouletteService(db_session)
        service.spin(round_id)

        with pytest.raises(StateConflictError):
            service.spin(round_id)

    def test_no_bets_after_spin(self, db_session: Session, two_players, gun, give_items, quantity_of, round_id, land_on):
        land_on(2, "black")
        give_items("alice", gun, 1)
        service = RouletteService(db_session)
        service.spin(round_id)

        with pytest.raises(StateConflictError):
            service.place_bet("alice", round_id, "black", [{"item_id": gun.id}])
        assert quantity_of("alice", gun) == 1

    def test_spin_during_bet_rejects_bet(self, db_session: Session, two_players, gun, give_items, quantity_of,
                                         round_id, land_on, transactions_of, monkeypatch):
        land_on(2, "black")
        give_items("alice", gun, 1)
        bettor = RouletteService(db_session)
        capture_stake = bettor.ledger.capture_stake

        def spin_first(user_id, items):
            RouletteService(db_session).spin(round_id)
            return capture_stake(user_id, items)

        monkeypatch.setattr(bettor.ledger, "capture_stake", spin_first)

        with pytest.raises(StateConflictError):
            bettor.place_bet("alice", round_id, "black", [{"item_id": gun.id}])

        assert quantity_of("alice", gun) == 1
        assert transactions_of("alice", round_id) == []
        round_ = RouletteService(db_session).get_round(round_id)
        assert round_["status"] == "completed"
        assert round_["bets"] == []
