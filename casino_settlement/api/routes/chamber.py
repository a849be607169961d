"""
Chamber game (Russian roulette) API routes.

Base path: /api/v1/chamber
"""
import logging
from typing import List

from fastapi import APIRouter, Depends
from pydantic import Field
from sqlalchemy.orm import Session

from casino_settlement.api.schemas import CamelModel, GameRef, StakeItem, stake_lines
from casino_settlement.core.auth import get_current_user_id
from casino_settlement.core.database import get_db
from casino_settlement.services.games import ChamberService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chamber", tags=["chamber"])


class StartChamberRequest(CamelModel):
    items: List[StakeItem] = Field(..., min_length=1)


@router.post("/start")
def start_game(
    request: StartChamberRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return ChamberService(db).start_game(user_id, stake_lines(request.items))


@router.post("/pull")
def pull(request: GameRef, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return ChamberService(db).pull(user_id, request.game_id)


@router.post("/cashout")
def cash_out(request: GameRef, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return ChamberService(db).cash_out(user_id, request.game_id)


@router.get("/{game_id}")
def get_game(game_id: str, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return {"game": ChamberService(db).get_game(user_id, game_id)}
