"""
Blackjack API routes.

Base path: /api/v1/blackjack
"""
import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import Field
from sqlalchemy.orm import Session

from casino_settlement.api.schemas import CamelModel
from casino_settlement.core.auth import get_current_user_id
from casino_settlement.core.database import get_db
from casino_settlement.services.games import BlackjackService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/blackjack", tags=["blackjack"])


class CreateTableRequest(CamelModel):
    bet_amount: Decimal = Field(..., alias="betAmount", gt=0, description="Balance stake per seat")
    max_players: Optional[int] = Field(None, alias="maxPlayers", ge=1)


class TableRef(CamelModel):
    table_id: str = Field(..., alias="tableId")


@router.get("")
def list_tables(
    limit: int = Query(50, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    tables = BlackjackService(db).list_tables(limit)
    return {"tables": tables, "count": len(tables)}


@router.get("/{table_id}")
def get_table(table_id: str, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    """Table state; the dealer's hole card stays hidden while hands are in play."""
    return {"table": BlackjackService(db).get_table(table_id)}


@router.post("/create")
def create_table(
    request: CreateTableRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return BlackjackService(db).create_table(user_id, request.bet_amount, request.max_players)


@router.post("/join")
def join_table(request: TableRef, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return BlackjackService(db).join_table(user_id, request.table_id)


@router.post("/deal")
def deal(request: TableRef, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return BlackjackService(db).deal(user_id, request.table_id)


@router.post("/hit")
def hit(request: TableRef, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    """Draw a card on your turn. Returns the card, new score and hand status."""
    return BlackjackService(db).hit(user_id, request.table_id)


@router.post("/stand")
def stand(request: TableRef, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return BlackjackService(db).stand(user_id, request.table_id)
