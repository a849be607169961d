"""
Giveaway API routes.

Base path: /api/v1/giveaways
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import Field
from sqlalchemy.orm import Session

from casino_settlement.api.schemas import CamelModel, StakeItem, stake_lines
from casino_settlement.core.auth import get_current_user_id
from casino_settlement.core.database import get_db
from casino_settlement.services.games import GiveawayService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/giveaways", tags=["giveaways"])


class CreateGiveawayRequest(CamelModel):
    items: List[StakeItem] = Field(..., min_length=1)
    title: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    duration_minutes: Optional[int] = Field(None, alias="durationMinutes")


class JoinGiveawayRequest(CamelModel):
    giveaway_id: str = Field(..., alias="giveawayId")


@router.get("")
def list_active(
    limit: int = Query(50, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    giveaways = GiveawayService(db).list_active(limit)
    return {"giveaways": giveaways, "count": len(giveaways)}


@router.get("/{giveaway_id}")
def get_giveaway(giveaway_id: str, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return {"giveaway": GiveawayService(db).get_giveaway(giveaway_id)}


@router.post("/create")
def create_giveaway(
    request: CreateGiveawayRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return GiveawayService(db).create_giveaway(
        user_id,
        stake_lines(request.items),
        title=request.title,
        description=request.description,
        duration_minutes=request.duration_minutes,
    )


@router.post("/join")
def join_giveaway(
    request: JoinGiveawayRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return GiveawayService(db).join_giveaway(user_id, request.giveaway_id)
