"""
Coinflip API routes.

Base path: /api/v1/coinflip
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, Query
from pydantic import Field
from sqlalchemy.orm import Session

from casino_settlement.api.schemas import CamelModel, GameRef, StakeItem, stake_lines
from casino_settlement.core.auth import get_current_user_id
from casino_settlement.core.database import get_db
from casino_settlement.services.games import CoinflipService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/coinflip", tags=["coinflip"])


class CreateCoinflipRequest(CamelModel):
    """Open a game: escrow the items and call a side."""
    items: List[StakeItem] = Field(..., min_length=1)
    side: str = Field(..., description="heads or tails")


class JoinCoinflipRequest(CamelModel):
    game_id: str = Field(..., alias="gameId")
    joiner_items: List[StakeItem] = Field(..., alias="joinerItems", min_length=1)


@router.get("")
def list_open_games(
    limit: int = Query(50, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Games still waiting for an opponent, newest first."""
    games = CoinflipService(db).list_open_games(limit)
    return {"games": games, "count": len(games)}


@router.get("/{game_id}")
def get_game(game_id: str, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return {"game": CoinflipService(db).get_game(game_id)}


@router.post("/create")
def create_game(
    request: CreateCoinflipRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return CoinflipService(db).create_game(user_id, stake_lines(request.items), request.side)


@router.post("/join")
def join_game(
    request: JoinCoinflipRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """
    Join a waiting game and flip.

    The joiner's stake must be within the join tolerance of the creator's.
    Returns the landed side and the winner's account id.
    """
    return CoinflipService(db).join_game(user_id, request.game_id, stake_lines(request.joiner_items))


@router.post("/cancel")
def cancel_game(request: GameRef, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    """Creator withdraws a waiting game; the escrow is refunded."""
    return CoinflipService(db).cancel_game(user_id, request.game_id)
