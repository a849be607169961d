"""
Roulette API routes.

Base path: /api/v1/roulette

Rounds are opened on demand and spun by the game loop behind the gateway.
"""
import logging
from typing import List

from fastapi import APIRouter, Depends
from pydantic import Field
from sqlalchemy.orm import Session

from casino_settlement.api.schemas import CamelModel, GameRef, StakeItem, stake_lines
from casino_settlement.core.auth import get_api_key, get_current_user_id
from casino_settlement.core.database import get_db
from casino_settlement.services.games import RouletteService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/roulette", tags=["roulette"])


class RouletteBetRequest(CamelModel):
    game_id: str = Field(..., alias="gameId")
    color: str = Field(..., description="red, black or green")
    items: List[StakeItem] = Field(..., min_length=1)


@router.get("/current")
def current_round(api_key: str = Depends(get_api_key), db: Session = Depends(get_db)):
    """The round currently taking bets."""
    return {"game": RouletteService(db).current_round()}


@router.get("/{game_id}")
def get_round(game_id: str, api_key: str = Depends(get_api_key), db: Session = Depends(get_db)):
    return {"game": RouletteService(db).get_round(game_id)}


@router.post("/bet")
def place_bet(
    request: RouletteBetRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return RouletteService(db).place_bet(user_id, request.game_id, request.color, stake_lines(request.items))


@router.post("/spin")
def spin(request: GameRef, api_key: str = Depends(get_api_key), db: Session = Depends(get_db)):
    """Spin the round and pay winning bets (green 14x, red/black 2x)."""
    return RouletteService(db).spin(request.game_id)
