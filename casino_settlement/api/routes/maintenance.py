"""
Maintenance routes for operators.

Base path: /api/v1/admin

Every route here requires the X-Admin-Token header:
- Trigger the expiry sweeps on demand
- Credit balance or items to an account
- Open and draw the seasonal raffle
- Inspect the sweep scheduler
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import Field
from sqlalchemy.orm import Session

from casino_settlement.api.schemas import CamelModel, StakeItem, stake_lines
from casino_settlement.core.auth import require_admin
from casino_settlement.core.database import get_db
from casino_settlement.core.scheduler import get_scheduler
from casino_settlement.services.games import RaffleService
from casino_settlement.services.ledger_service import LedgerService
from casino_settlement.services.settlement import settlement_scope
from casino_settlement.services.sweeper_service import SweeperService
from casino_settlement.utils.timezone import to_naive_utc

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


class DepositRequest(CamelModel):
    user_id: str = Field(..., alias="userId", min_length=1)
    amount: Decimal = Field(..., gt=0)
    description: Optional[str] = None


class GrantItemsRequest(CamelModel):
    user_id: str = Field(..., alias="userId", min_length=1)
    items: List[StakeItem] = Field(..., min_length=1)


class OpenRaffleRequest(CamelModel):
    year: int = Field(..., ge=2000)
    end_date: datetime = Field(..., alias="endDate", description="Naive UTC or offset-aware ISO timestamp")


# ==================== SWEEPS ====================

@router.post("/sweeps/run")
def run_all_sweeps(db: Session = Depends(get_db)):
    """Run every expiry sweep once."""
    return SweeperService(db).run_all()


@router.post("/sweeps/coinflips")
def sweep_coinflips(
    window_minutes: Optional[int] = Query(None, description="Expiry window, clamped to 1-30 minutes"),
    db: Session = Depends(get_db),
):
    return SweeperService(db).sweep_coinflips(window_minutes)


@router.post("/sweeps/giveaways")
def sweep_giveaways(db: Session = Depends(get_db)):
    return SweeperService(db).sweep_giveaways()


@router.post("/sweeps/case-battles")
def sweep_case_battles(db: Session = Depends(get_db)):
    return SweeperService(db).sweep_case_battles()


@router.post("/sweeps/blackjack")
def sweep_blackjack(db: Session = Depends(get_db)):
    return SweeperService(db).sweep_blackjack_turns()


@router.post("/giveaways/auto")
def create_auto_giveaway(db: Session = Depends(get_db)):
    return {"giveaway": SweeperService(db).create_auto_giveaway()}


# ==================== LEDGER ====================

@router.post("/deposit")
def deposit(request: DepositRequest, db: Session = Depends(get_db)):
    ledger = LedgerService(db)
    with settlement_scope(db, "ledger", "deposit"):
        ledger.deposit(request.user_id, request.amount, request.description)
    logger.info(f"Deposited ${request.amount} to {request.user_id}")
    return {"account": ledger.account_summary(request.user_id)}


@router.post("/inventory/grant")
def grant_items(request: GrantItemsRequest, db: Session = Depends(get_db)):
    ledger = LedgerService(db)
    with settlement_scope(db, "ledger", "grant"):
        stake = ledger.grant_items(request.user_id, stake_lines(request.items))
    logger.info(f"Granted {stake.item_count} item(s) worth ${stake.total_value} to {request.user_id}")
    return {"items": stake.lines, "totalValue": str(stake.total_value)}


# ==================== RAFFLE ====================

@router.post("/raffle/open")
def open_raffle(request: OpenRaffleRequest, db: Session = Depends(get_db)):
    end_date = to_naive_utc(request.end_date)
    return {"raffle": RaffleService(db).open_raffle(request.year, end_date)}


@router.post("/raffle/draw")
def draw_raffle(db: Session = Depends(get_db)):
    return RaffleService(db).draw()


# ==================== SCHEDULER ====================

@router.get("/scheduler/status")
def scheduler_status():
    scheduler = get_scheduler()
    if not scheduler or not scheduler.running:
        return {"status": "stopped", "jobs": []}
    jobs = scheduler.scheduler.get_jobs()
    return {
        "status": "running",
        "jobs": [
            {
                "id": job.id,
                "name": job.name,
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
            }
            for job in jobs
        ],
    }
