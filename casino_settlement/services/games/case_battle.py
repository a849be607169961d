"""
Case battles.

Lifecycle: waiting -> active -> completed | expired.

Each participant pays the entry cost (CASE_PRICE per case slot per round) from
their balance on joining. Once the battle is full it is started, then played
round by round: every round, each participant unboxes one rarity-weighted
catalog item per case slot. The call that plays the final round also settles
the battle. The highest accumulated value wins, ties go to the earliest join
position, and the winner receives every item unboxed in the battle.
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
from casino_settlement.models import CaseBattle, CaseBattleParticipant, CaseBattleRound
from casino_settlement.repositories.base import BaseRepository
from casino_settlement.services.games.base import GameService
from casino_settlement.services.ledger_service import stake_value
from casino_settlement.services.outcomes import RarityWeightTable
from casino_settlement.services.settlement import claim, hold, mark_settled, settlement_scope
from casino_settlement.utils.timezone import utcnow, isoformat, cutoff

logger = get_logger(__name__)

MIN_PLAYERS = 2
MAX_PLAYERS = 4
MAX_CASE_SLOTS = 6


class CaseBattleRepository(BaseRepository[CaseBattle]):
    def __init__(self, db):
        super().__init__(CaseBattle, db)

    def find_open(self, limit: int = 50) -> List[CaseBattle]:
        return (
            self.query()
            .filter(CaseBattle.status.in_(("waiting", "active")))
            .order_by(CaseBattle.created_at.desc())
            .limit(limit)
            .all()
        )

    def find_stale(self, older_than) -> List[CaseBattle]:
        return self.where(CaseBattle.status == "waiting", CaseBattle.created_at < older_than)


class ParticipantRepository(BaseRepository[CaseBattleParticipant]):
    def __init__(self, db):
        super().__init__(CaseBattleParticipant, db)

    def for_battle(self, battle_id: str) -> List[CaseBattleParticipant]:
        return (
            self.query()
            .filter(CaseBattleParticipant.battle_id == battle_id)
            .order_by(CaseBattleParticipant.position)
            .all()
        )


class RoundRepository(BaseRepository[CaseBattleRound]):
    def __init__(self, db):
        super().__init__(CaseBattleRound, db)


def pick_winner(participants: List[CaseBattleParticipant]) -> CaseBattleParticipant:
    """Highest total value; the earliest position wins a tie."""
    return min(participants, key=lambda p: (-Decimal(p.total_value), p.position))


def merge_lines(lines: List[dict]) -> List[dict]:
    """Collapse unboxed items into one stake line per item id."""
    merged: Dict[str, dict] = {}
    for line in lines:
        existing = merged.get(line["item_id"])
        if existing is None:
            merged[line["item_id"]] = {**line}
        else:
            existing["quantity"] += line["quantity"]
    return list(merged.values())


class CaseBattleService(GameService):
    """Create, fill, start and play case battles."""

    game_type = "case_battle"

    def __init__(self, db, catalog=None, rng=None):
        super().__init__(db, catalog, rng)
        self.battles = CaseBattleRepository(db)
        self.participants = ParticipantRepository(db)
        self.rounds = RoundRepository(db)

    def create_battle(self, user_id: str, cases: List[str], rounds: int, max_players: int = 2) -> Dict:
        if not cases or len(cases) > MAX_CASE_SLOTS:
            raise PayloadValidationError(f"A battle needs between 1 and {MAX_CASE_SLOTS} cases")
        if not 1 <= rounds <= settings.CASE_BATTLE_MAX_ROUNDS:
            raise PayloadValidationError(f"Rounds must be between 1 and {settings.CASE_BATTLE_MAX_ROUNDS}")
        if not MIN_PLAYERS <= max_players <= MAX_PLAYERS:
            raise PayloadValidationError(f"Battles take between {MIN_PLAYERS} and {MAX_PLAYERS} players")

        entry_cost = settings.CASE_PRICE * len(cases) * rounds
        with settlement_scope(self.db, self.game_type, "create"):
            battle = self.battles.create(
                creator_id=user_id,
                cases=list(cases),
                rounds=rounds,
                current_round=0,
                max_players=max_players,
                entry_cost=entry_cost,
                status="waiting",
            )
            self._enter(battle, user_id, position=0)
            result = self._battle_to_dict(battle)

        logger.info(f"Case battle {result['id']} created by {user_id}: {len(cases)} case(s) x {rounds} round(s)")
        return {"battle": result}

    def join_battle(self, user_id: str, battle_id: str) -> Dict:
        with settlement_scope(self.db, self.game_type, "join", battle_id):
            battle = self._get_battle(battle_id)
            if battle.status != "waiting":
                raise StateConflictError("Battle already started", battle_id=battle_id)
            if self.participants.exists_where(
                CaseBattleParticipant.battle_id == battle_id,
                CaseBattleParticipant.user_id == user_id,
            ):
                raise StateConflictError("Already in this battle", battle_id=battle_id)
            hold(self.battles, battle_id, "waiting", "Battle already started")
            participants = self.participants.for_battle(battle_id)
            if len(participants) >= battle.max_players:
                raise StateConflictError("Battle is full", battle_id=battle_id)
            self._enter(battle, user_id, position=len(participants))
            result = self._battle_to_dict(battle)

        return {"battle": result}

    def _enter(self, battle: CaseBattle, user_id: str, position: int) -> None:
        self.ledger.debit_balance(user_id, battle.entry_cost)
        self.participants.create(
            battle_id=battle.id,
            user_id=user_id,
            position=position,
            total_value=Decimal("0.00"),
            items_won=[],
        )
        self.ledger.record_bet(user_id, battle.entry_cost, self.game_type, battle.id, "Case battle entry")

    def start_battle(self, user_id: str, battle_id: str) -> Dict:
        with settlement_scope(self.db, self.game_type, "start", battle_id):
            battle = self._get_battle(battle_id)
            if battle.status != "waiting":
                raise StateConflictError("Battle already started", battle_id=battle_id)
            participants = self.participants.for_battle(battle_id)
            if user_id not in {p.user_id for p in participants}:
                raise AuthorizationError("Only participants can start the battle")
            if len(participants) < battle.max_players:
                raise StateConflictError("Battle is not full yet", battle_id=battle_id)
            claim(
                self.battles, battle_id, "waiting", "Battle already started",
                status="active",
                current_round=0,
                started_at=utcnow(),
            )

        logger.info(f"Case battle {battle_id} started")
        return {"success": True}

    def next_round(self, user_id: str, battle_id: str) -> Dict:
        """
        Play the next round; the final round also settles the battle.

        Returns:
            {"round", "results"} plus {"completed", "winner_id"} after the last round
        """
        with settlement_scope(self.db, self.game_type, "round", battle_id):
            battle = self._get_battle(battle_id)
            if battle.status != "active":
                raise StateConflictError("Battle is not active", battle_id=battle_id)
            participants = self.participants.for_battle(battle_id)
            if user_id not in {p.user_id for p in participants}:
                raise AuthorizationError("Only participants can open rounds")

            current = battle.current_round
            round_number = current + 1
            applied = self.battles.update_where(
                [
                    CaseBattle.id == battle_id,
                    CaseBattle.status == "active",
                    CaseBattle.current_round == current,
                    CaseBattle.rounds >= round_number,
                ],
                {"current_round": round_number},
            )
            if applied != 1:
                raise StateConflictError("Round already played", battle_id=battle_id)

            pool = self.catalog.all_items(self.db)
            if not pool:
                raise NotFoundError("No items available")
            table = RarityWeightTable(pool)

            results = []
            for case_index, case_name in enumerate(battle.cases):
                for participant in participants:
                    item = table.draw(self.rng)
                    line = item.to_stake(1)
                    results.append({**line, "user_id": participant.user_id, "case": case_name, "case_index": case_index})
                    participant.items_won = list(participant.items_won or []) + [line]
                    participant.total_value = Decimal(participant.total_value) + item.value

            self.rounds.create(battle_id=battle_id, round_number=round_number, results=results)

            response = {"round": round_number, "results": results}
            if round_number == battle.rounds:
                winner = self._settle(battle, participants)
                response.update({"completed": True, "winner_id": winner.user_id})

        return response

    def _settle(self, battle: CaseBattle, participants: List[CaseBattleParticipant]) -> CaseBattleParticipant:
        winner = pick_winner(participants)
        claim(
            self.battles, battle.id, "active", "Battle already settled",
            status="completed",
            winner_id=winner.user_id,
            completed_at=utcnow(),
        )

        prize = merge_lines([line for p in participants for line in (p.items_won or [])])
        prize_value = stake_value(prize)
        self.ledger.credit_items(winner.user_id, prize)
        self.ledger.record_win(winner.user_id, prize_value, self.game_type, battle.id, "Won case battle")
        for participant in participants:
            if participant.user_id == winner.user_id:
                self.ledger.record_result(participant.user_id, battle.entry_cost, prize_value)
            else:
                self.ledger.record_loss(participant.user_id, self.game_type, battle.id, "Lost case battle")
                self.ledger.record_result(participant.user_id, battle.entry_cost, 0)

        mark_settled(self.db, self.game_type, battle.id, "complete", {
            "winner_id": winner.user_id,
            "prize_value": str(prize_value),
        })
        logger.info(f"Case battle {battle.id} won by {winner.user_id} (${prize_value})")
        return winner

    def expire_stale(self, expiry_minutes: Optional[int] = None) -> Dict:
        """Expire battles that never filled and refund every entry."""
        minutes = expiry_minutes or settings.CASE_BATTLE_EXPIRY_MINUTES
        stale_ids = [b.id for b in self.battles.find_stale(cutoff(minutes=minutes))]
        expired, failed = 0, 0

        for battle_id in stale_ids:
            try:
                with settlement_scope(self.db, self.game_type, "expire", battle_id):
                    battle = self._get_battle(battle_id)
                    claim(self.battles, battle_id, "waiting", "Battle is no longer waiting",
                          status="expired", completed_at=utcnow())
                    for participant in self.participants.for_battle(battle_id):
                        self.ledger.credit_balance(participant.user_id, battle.entry_cost)
                        self.ledger.record_refund(
                            participant.user_id, battle.entry_cost, self.game_type, battle_id,
                            "Case battle expired",
                        )
                    mark_settled(self.db, self.game_type, battle_id, "refund")
                expired += 1
                sweeper_sessions_claimed_total.labels(sweeper=self.game_type).inc()
            except StateConflictError:
                continue
            except Exception as e:
                failed += 1
                sweeper_refund_failures_total.labels(sweeper=self.game_type).inc()
                logger.error(f"Failed to expire case battle {battle_id}: {e}")

        if expired or failed:
            logger.info(f"Case battle sweep: {expired} expired, {failed} failed")
        return {"expired": expired, "failed": failed}

    # ========================================================================
    # Reads
    # ========================================================================

    def list_battles(self, limit: int = 50) -> List[Dict]:
        return [self._battle_to_dict(b) for b in self.battles.find_open(limit)]

    def get_battle(self, battle_id: str) -> Dict:
        battle = self._get_battle(battle_id)
        result = self._battle_to_dict(battle)
        result["rounds_played"] = [
            {"round": r.round_number, "results": r.results} for r in battle.round_records
        ]
        return result

    def _get_battle(self, battle_id: str) -> CaseBattle:
        battle = self.battles.find_by_id(battle_id)
        if battle is None:
            raise NotFoundError("Battle not found", battle_id=battle_id)
        return battle

    def _battle_to_dict(self, battle: CaseBattle) -> Dict:
        return {
            "id": battle.id,
            "creator_id": battle.creator_id,
            "cases": battle.cases,
            "rounds": battle.rounds,
            "current_round": battle.current_round,
            "max_players": battle.max_players,
            "entry_cost": str(battle.entry_cost),
            "status": battle.status,
            "winner_id": battle.winner_id,
            "participants": [
                {
                    "user_id": p.user_id,
                    "position": p.position,
                    "total_value": str(p.total_value),
                    "items_won": p.items_won,
                }
                for p in self.participants.for_battle(battle.id)
            ],
            "created_at": isoformat(battle.created_at),
            "completed_at": isoformat(battle.completed_at),
        }
