"""Integration tests for the chamber game.

Test Strategy:
1. Starting escrows the stake; one active game per player
2. Each survived pull removes a chamber and adds 0.5x
3. Cashing out pays floor(quantity * multiplier) of each staked item
4. Getting shot forfeits the stake and ends the game
"""
from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from casino_settlement.core.exceptions import AuthorizationError, StateConflictError
from casino_settlement.services.games import chamber as chamber_module
from casino_settlement.services.games.chamber import ChamberService


@pytest.fixture
def trigger(monkeypatch):
    """Script pull outcomes: True fires, False survives."""
    def _script(*outcomes):
        shots = iter(outcomes)
        monkeypatch.setattr(chamber_module, "pull_chamber", lambda chambers_left, rng=None: next(shots))
    return _script


@pytest.fixture
def game_id(db_session: Session, two_players, gun, give_items):
    """alice stakes 3 guns ($15)."""
    give_items("alice", gun, 3)
    return ChamberService(db_session).start_game("alice", [{"item_id": gun.id, "quantity": 3}])["game"]["id"]


class TestChamberGame:

    def test_start_escrows_stake(self, db_session: Session, game_id, gun, quantity_of):
        game = ChamberService(db_session).get_game("alice", game_id)

        assert game["status"] == "playing"
        assert game["chambers_left"] == 6
        assert game["bet_amount"] == "15.00"
        assert quantity_of("alice", gun) == 0

    def test_one_active_game(self, db_session: Session, game_id, knife, give_items):
        give_items("alice", knife, 1)

        with pytest.raises(StateConflictError):
            ChamberService(db_session).start_game("alice", [{"item_id": knife.id}])

    def test_survived_pulls_raise_multiplier(self, db_session: Session, game_id, trigger):
        trigger(False, False)
        service = ChamberService(db_session)

        service.pull("alice", game_id)
        result = service.pull("alice", game_id)

        assert result == {"survived": True, "chambersLeft": 4, "roundsSurvived": 2, "multiplier": "2.0"}

    def test_cash_out_pays_scaled_items(self, db_session: Session, game_id, gun, trigger, quantity_of):
        trigger(False)
        service = ChamberService(db_session)
        service.pull("alice", game_id)

        result = service.cash_out("alice", game_id)

        # floor(3 * 1.5) = 4 guns
        assert result["multiplier"] == "1.5"
        assert result["payout"] == "20.00"
        assert quantity_of("alice", gun) == 4
        assert service.get_game("alice", game_id)["status"] == "cashed_out"

    def test_shot_forfeits_stake(self, db_session: Session, game_id, gun, trigger, quantity_of, transactions_of):
        trigger(False, True)
        service = ChamberService(db_session)
        service.pull("alice", game_id)

        result = service.pull("alice", game_id)

        assert result["survived"] is False
        assert result["roundsSurvived"] == 1
        assert quantity_of("alice", gun) == 0
        assert service.get_game("alice", game_id)["status"] == "lost"
        assert sorted(row.type for row in transactions_of("alice", game_id)) == ["bet", "loss"]
        with pytest.raises(StateConflictError):
            service.cash_out("alice", game_id)

    def test_cash_out_needs_a_pull(self, db_session: Session, game_id):
        with pytest.raises(StateConflictError):
            ChamberService(db_session).cash_out("alice", game_id)

    def test_other_players_game(self, db_session: Session, game_id):
        service = ChamberService(db_session)

        with pytest.raises(AuthorizationError):
            service.pull("bob", game_id)
        with pytest.raises(AuthorizationError):
            service.get_game("bob", game_id)

    def test_last_chamber_fires(self, db_session: Session, game_id, gun, quantity_of):
        """Five survived pulls leave one chamber, which always fires."""
        service = ChamberService(db_session)
        game = chamber_module.ChamberGameRepository(db_session).find_by_id(game_id)
        game.chambers_left = 1
        game.rounds_survived = 5
        db_session.commit()

        result = service.pull("alice", game_id)

        assert result["survived"] is False
        assert service.get_game("alice", game_id)["payout_amount"] == "0.00"
        assert quantity_of("alice", gun) == 0

    def test_cash_out_records_profit(self, db_session: Session, game_id, trigger):
        trigger(False, False)
        service = ChamberService(db_session)
        service.pull("alice", game_id)
        service.pull("alice", game_id)

        service.cash_out("alice", game_id)
        db_session.expire_all()

        # 3 guns * 2.0 = 6 guns = $30 on a $15 stake
        assert service.ledger.get_account("alice").total_profits == Decimal("15.00")
