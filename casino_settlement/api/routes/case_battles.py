"""
Case battle API routes.

Base path: /api/v1/case-battles
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, Query
from pydantic import Field
from sqlalchemy.orm import Session

from casino_settlement.api.schemas import CamelModel
from casino_settlement.core.auth import get_current_user_id
from casino_settlement.core.database import get_db
from casino_settlement.services.games import CaseBattleService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/case-battles", tags=["case-battles"])


class CreateBattleRequest(CamelModel):
    cases: List[str] = Field(..., min_length=1, description="Case slot names, one unbox per slot per round")
    rounds: int = Field(..., ge=1)
    max_players: int = Field(2, alias="maxPlayers")


class BattleRef(CamelModel):
    battle_id: str = Field(..., alias="battleId")


@router.get("")
def list_battles(
    limit: int = Query(50, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    battles = CaseBattleService(db).list_battles(limit)
    return {"battles": battles, "count": len(battles)}


@router.get("/{battle_id}")
def get_battle(battle_id: str, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return {"battle": CaseBattleService(db).get_battle(battle_id)}


@router.post("/create")
def create_battle(
    request: CreateBattleRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return CaseBattleService(db).create_battle(user_id, request.cases, request.rounds, request.max_players)


@router.post("/join")
def join_battle(request: BattleRef, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return CaseBattleService(db).join_battle(user_id, request.battle_id)


@router.post("/start")
def start_battle(request: BattleRef, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return CaseBattleService(db).start_battle(user_id, request.battle_id)


@router.post("/next-round")
def next_round(request: BattleRef, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    """
    Play the next round.

    The call that plays the final round also settles the battle and adds
    `completed` and `winner_id` to the response.
    """
    return CaseBattleService(db).next_round(user_id, request.battle_id)
