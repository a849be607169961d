"""
Raffle API routes.

Base path: /api/v1/raffle
"""
import logging
from typing import List

from fastapi import APIRouter, Depends
from pydantic import Field
from sqlalchemy.orm import Session

from casino_settlement.api.schemas import CamelModel, StakeItem, stake_lines
from casino_settlement.core.auth import get_current_user_id
from casino_settlement.core.database import get_db
from casino_settlement.services.games import RaffleService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/raffle", tags=["raffle"])


class ExchangeRequest(CamelModel):
    items: List[StakeItem] = Field(..., min_length=1)


@router.get("/active")
def get_active(user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return {"raffle": RaffleService(db).get_active()}


@router.get("/tickets")
def my_tickets(user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return RaffleService(db).tickets_for(user_id)


@router.post("/exchange")
def exchange(
    request: ExchangeRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Trade items into the prize pool; one ticket per ticket price of value."""
    return RaffleService(db).exchange(user_id, stake_lines(request.items))
