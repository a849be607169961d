"""
Account read routes for the acting player.

Base path: /api/v1/accounts
"""
import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from casino_settlement.core.auth import get_current_user_id
from casino_settlement.core.database import get_db
from casino_settlement.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/accounts", tags=["accounts"])


@router.get("/me")
def get_me(user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return {"account": LedgerService(db).account_summary(user_id)}


@router.get("/me/inventory")
def get_inventory(user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    items = LedgerService(db).inventory_for(user_id)
    return {"items": items, "count": len(items)}


@router.get("/me/transactions")
def get_transactions(
    limit: int = Query(50, ge=1, le=200),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Most recent ledger rows first."""
    transactions = LedgerService(db).transactions_for(user_id, limit)
    return {"transactions": transactions, "count": len(transactions)}
