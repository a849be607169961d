"""
Crash API routes.

Base path: /api/v1/crash

Round lifecycle (create, launch, resolve) is driven by the game loop behind
the gateway; players bet and cash out. Overriding the crash point on resolve
additionally requires the admin token.
"""
import logging
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import Field
from sqlalchemy.orm import Session

from casino_settlement.api.schemas import CamelModel, GameRef, StakeItem, stake_lines
from casino_settlement.core.auth import get_api_key, get_current_user_id, is_admin_caller
from casino_settlement.core.database import get_db
from casino_settlement.services.games import CrashService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/crash", tags=["crash"])


class CrashBetRequest(CamelModel):
    game_id: str = Field(..., alias="gameId")
    items: List[StakeItem] = Field(..., min_length=1)


class CrashCashoutRequest(CamelModel):
    game_id: str = Field(..., alias="gameId")
    multiplier: Decimal = Field(..., description="Multiplier to lock in, e.g. 2.35")


class CrashResolveRequest(CamelModel):
    game_id: str = Field(..., alias="gameId")
    crash_point: Optional[Decimal] = Field(None, alias="crashPoint")


@router.post("/create")
def create_round(api_key: str = Depends(get_api_key), db: Session = Depends(get_db)):
    return {"game": CrashService(db).create_round()}


@router.get("/{game_id}")
def get_round(game_id: str, api_key: str = Depends(get_api_key), db: Session = Depends(get_db)):
    return {"game": CrashService(db).get_round(game_id)}


@router.post("/bet")
def place_bet(
    request: CrashBetRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return CrashService(db).place_bet(user_id, request.game_id, stake_lines(request.items))


@router.post("/launch")
def launch(request: GameRef, api_key: str = Depends(get_api_key), db: Session = Depends(get_db)):
    """Close betting; the crash point is drawn now and stays hidden."""
    return {"game": CrashService(db).launch(request.game_id)}


@router.post("/cashout")
def cash_out(
    request: CrashCashoutRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return CrashService(db).cash_out(user_id, request.game_id, request.multiplier)


@router.post("/resolve")
def resolve(
    request: CrashResolveRequest,
    api_key: str = Depends(get_api_key),
    is_admin: bool = Depends(is_admin_caller),
    db: Session = Depends(get_db),
):
    """Crash the round and settle every bet against the crash point."""
    return CrashService(db).resolve(request.game_id, request.crash_point, is_admin=is_admin)
