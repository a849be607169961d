"""Integration tests for case battles.

Test Strategy:
1. Entry cost is CASE_PRICE per case slot per round, debited on create/join
2. A battle starts only when full and only by a participant
3. Rounds draw one rarity-weighted item per case slot per participant; the
   final round settles the battle and the winner takes every unboxed item
4. Ties go to the earliest join position
5. Battles that never fill are expired with full refunds

Each test follows the pattern:
- Given: A two-item catalog and a scripted random source
- When: Players create, join, start and play rounds
- Then: Totals, winner and inventory match the scripted draws
"""
from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy.orm import Session

from casino_settlement.core.exceptions import (
    AuthorizationError,
    InsufficientFundsError,
    PayloadValidationError,
    StateConflictError,
)
from casino_settlement.models import CaseBattle
from casino_settlement.services.games.case_battle import CaseBattleService, merge_lines, pick_winner
from casino_settlement.utils.timezone import utcnow


@pytest.fixture
def catalog_items(make_item):
    """Pool order is value desc: [Godly $50 (weight 3), Common $1 (weight 40)]."""
    return SimpleNamespace(
        godly=make_item("Godly Blade", "50.00", "godly"),
        common=make_item("Common Knife", "1.00", "common"),
    )


@pytest.fixture
def full_battle(db_session: Session, two_players, catalog_items):
    """alice and bob in a 1-case, 3-round battle."""
    service = CaseBattleService(db_session)
    battle_id = service.create_battle("alice", ["starter"], rounds=3)["battle"]["id"]
    service.join_battle("bob", battle_id)
    return battle_id


class TestEntry:
    """Creating and joining battles."""

    def test_entry_cost_debited(self, db_session: Session, full_battle, balance_of):
        battle = CaseBattleService(db_session).get_battle(full_battle)

        assert battle["entry_cost"] == "15.00"
        assert balance_of("alice") == Decimal("85.00")
        assert balance_of("bob") == Decimal("85.00")
        assert [p["position"] for p in battle["participants"]] == [0, 1]

    def test_battle_full(self, db_session: Session, full_battle, make_account):
        make_account("carol", Decimal("100.00"))

        with pytest.raises(StateConflictError):
            CaseBattleService(db_session).join_battle("carol", full_battle)

    def test_cannot_join_twice(self, db_session: Session, two_players, catalog_items):
        service = CaseBattleService(db_session)
        battle_id = service.create_battle("alice", ["starter"], rounds=1)["battle"]["id"]

        with pytest.raises(StateConflictError):
            service.join_battle("alice", battle_id)

    def test_entry_needs_balance(self, db_session: Session, two_players, make_account, catalog_items):
        make_account("carol", Decimal("1.00"))

        with pytest.raises(InsufficientFundsError):
            CaseBattleService(db_session).create_battle("carol", ["starter"], rounds=1)

    @pytest.mark.parametrize("cases,rounds,max_players", [
        ([], 1, 2),
        (["a"] * 7, 1, 2),
        (["a"], 0, 2),
        (["a"], 11, 2),
        (["a"], 1, 5),
    ])
    def test_rejects_bad_battle(self, db_session: Session, two_players, cases, rounds, max_players):
        with pytest.raises(PayloadValidationError):
            CaseBattleService(db_session).create_battle("alice", cases, rounds, max_players)


class TestStart:

    def test_start_needs_full_battle(self, db_session: Session, two_players, catalog_items):
        service = CaseBattleService(db_session)
        battle_id = service.create_battle("alice", ["starter"], rounds=1)["battle"]["id"]

        with pytest.raises(StateConflictError):
            service.start_battle("alice", battle_id)

    def test_only_participants_start(self, db_session: Session, full_battle, make_account):
        make_account("carol")

        with pytest.raises(AuthorizationError):
            CaseBattleService(db_session).start_battle("carol", full_battle)

    def test_outsider_starting_started_battle_conflicts(self, db_session: Session, full_battle, make_account):
        make_account("carol")
        service = CaseBattleService(db_session)
        service.start_battle("alice", full_battle)

        with pytest.raises(StateConflictError):
            service.start_battle("carol", full_battle)

    def test_outsider_opening_round_of_waiting_battle_conflicts(self, db_session: Session, full_battle,
                                                                make_account):
        make_account("carol")

        with pytest.raises(StateConflictError):
            CaseBattleService(db_session).next_round("carol", full_battle)

    def test_start_once(self, db_session: Session, full_battle):
        service = CaseBattleService(db_session)
        service.start_battle("alice", full_battle)

        with pytest.raises(StateConflictError):
            service.start_battle("bob", full_battle)

    def test_rounds_need_active_battle(self, db_session: Session, full_battle):
        with pytest.raises(StateConflictError):
            CaseBattleService(db_session).next_round("alice", full_battle)


class TestRounds:
    """Round play and settlement."""

    def test_higher_total_wins(self, db_session: Session, full_battle, catalog_items, scripted_rng, quantity_of):
        """
        Each round alice (position 0) draws first at 0.0 (Godly) and bob at
        0.5 (Common): 150.00 vs 3.00 after three rounds.
        """
        service = CaseBattleService(db_session, rng=scripted_rng([0.0, 0.5]))
        service.start_battle("alice", full_battle)

        first = service.next_round("alice", full_battle)
        assert first["round"] == 1
        assert [(r["user_id"], r["name"]) for r in first["results"]] == [
            ("alice", "Godly Blade"),
            ("bob", "Common Knife"),
        ]
        assert "completed" not in first

        service.next_round("bob", full_battle)
        final = service.next_round("alice", full_battle)

        assert final["completed"] is True
        assert final["winner_id"] == "alice"

        battle = service.get_battle(full_battle)
        assert battle["status"] == "completed"
        totals = {p["user_id"]: p["total_value"] for p in battle["participants"]}
        assert totals == {"alice": "150.00", "bob": "3.00"}
        assert len(battle["rounds_played"]) == 3

        assert quantity_of("alice", catalog_items.godly) == 3
        assert quantity_of("alice", catalog_items.common) == 3
        assert quantity_of("bob", catalog_items.common) == 0

    def test_no_rounds_after_completion(self, db_session: Session, two_players, catalog_items, scripted_rng):
        service = CaseBattleService(db_session, rng=scripted_rng([0.5]))
        battle_id = service.create_battle("alice", ["starter"], rounds=1)["battle"]["id"]
        service.join_battle("bob", battle_id)
        service.start_battle("bob", battle_id)
        service.next_round("bob", battle_id)

        with pytest.raises(StateConflictError):
            service.next_round("alice", battle_id)

    def test_tie_goes_to_earliest_position(self, db_session: Session, two_players, catalog_items, scripted_rng):
        service = CaseBattleService(db_session, rng=scripted_rng([0.5]))
        battle_id = service.create_battle("alice", ["starter", "starter"], rounds=1)["battle"]["id"]
        service.join_battle("bob", battle_id)
        service.start_battle("bob", battle_id)

        result = service.next_round("bob", battle_id)

        assert len(result["results"]) == 4
        assert result["winner_id"] == "alice"

    def test_pick_winner(self):
        participants = [
            SimpleNamespace(position=0, total_value=Decimal("5.00"), user_id="a"),
            SimpleNamespace(position=1, total_value=Decimal("7.00"), user_id="b"),
            SimpleNamespace(position=2, total_value=Decimal("7.00"), user_id="c"),
        ]
        assert pick_winner(participants).user_id == "b"

    def test_merge_lines(self):
        merged = merge_lines([
            {"item_id": "x", "quantity": 1},
            {"item_id": "y", "quantity": 1},
            {"item_id": "x", "quantity": 2},
        ])
        assert {line["item_id"]: line["quantity"] for line in merged} == {"x": 3, "y": 1}


class TestExpiry:
    """Sweeping battles that never filled."""

    def test_stale_battle_refunded(self, db_session: Session, two_players, catalog_items, balance_of,
                                   transactions_of):
        service = CaseBattleService(db_session)
        battle_id = service.create_battle("alice", ["starter"], rounds=2)["battle"]["id"]
        battle = db_session.get(CaseBattle, battle_id)
        battle.created_at = utcnow() - timedelta(minutes=11)
        db_session.commit()

        result = service.expire_stale()

        assert result == {"expired": 1, "failed": 0}
        assert balance_of("alice") == Decimal("100.00")
        assert service.get_battle(battle_id)["status"] == "expired"
        assert sorted(row.type for row in transactions_of("alice", battle_id)) == ["bet", "refund"]

    def test_recent_battle_kept(self, db_session: Session, two_players, catalog_items):
        service = CaseBattleService(db_session)
        service.create_battle("alice", ["starter"], rounds=1)

        assert service.expire_stale() == {"expired": 0, "failed": 0}

    def test_expiry_during_join_rejects_join(self, db_session: Session, two_players, catalog_items, balance_of,
                                             transactions_of, monkeypatch):
        battle_id = CaseBattleService(db_session).create_battle("alice", ["starter"], rounds=1)["battle"]["id"]
        battle = db_session.get(CaseBattle, battle_id)
        battle.created_at = utcnow() - timedelta(minutes=11)
        db_session.commit()
        joiner = CaseBattleService(db_session)
        exists_where = joiner.participants.exists_where

        def expire_first(*criterion):
            assert CaseBattleService(db_session).expire_stale() == {"expired": 1, "failed": 0}
            return exists_where(*criterion)

        monkeypatch.setattr(joiner.participants, "exists_where", expire_first)

        with pytest.raises(StateConflictError):
            joiner.join_battle("bob", battle_id)

        assert balance_of("bob") == Decimal("100.00")
        assert transactions_of("bob", battle_id) == []
        assert balance_of("alice") == Decimal("100.00")
        view = CaseBattleService(db_session).get_battle(battle_id)
        assert view["status"] == "expired"
        assert [p["user_id"] for p in view["participants"]] == ["alice"]
