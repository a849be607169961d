"""
Settlement unit of work.

A settlement is every write one handler call makes: the status claim, stake
debits, outcome, payout credits and audit rows. `settlement_scope` runs them
in one database transaction and commits only if the block finishes; any
exception rolls everything back, so a failed settlement never leaves a debit
without its credit or a credit without its transaction row.

Terminal actions also call `mark_settled`, which inserts a SettlementRecord
keyed by (game_type, game_id, action). The unique key turns a replayed
payout into a StateConflictError at flush time instead of a double credit.
"""
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from casino_settlement.core.exceptions import SettlementError, StateConflictError
from casino_settlement.core.logging import get_logger, settlement_log_context
from casino_settlement.core.metrics import record_settlement, record_rejection
from casino_settlement.repositories.base import BaseRepository
from casino_settlement.repositories.ledger_repository import SettlementRecordRepository

logger = get_logger(__name__)


@contextmanager
def settlement_scope(
    db: Session,
    game_type: str,
    action: str,
    game_id: Optional[str] = None,
) -> Iterator[Session]:
    """
    All-or-nothing settlement block.

    Usage:
        with settlement_scope(db, "coinflip", "join", game_id):
            ...
    """
    with settlement_log_context(game_type, game_id, action):
        try:
            yield db
            db.commit()
        except SettlementError as e:
            db.rollback()
            record_rejection(game_type, action, e.error_type)
            logger.info(f"{game_type}.{action} rejected: {e.message}")
            raise
        except IntegrityError as e:
            db.rollback()
            record_rejection(game_type, action, StateConflictError.error_type)
            logger.warning(f"{game_type}.{action} hit a uniqueness conflict: {e.orig}")
            raise StateConflictError(
                "Session was modified by a concurrent request",
                game_type=game_type,
                game_id=game_id,
            ) from e
        except Exception:
            db.rollback()
            logger.exception(f"{game_type}.{action} failed; transaction rolled back")
            raise

    record_settlement(game_type, action)


def claim(repo: BaseRepository, game_id: str, from_status, message: str, **values: Any) -> None:
    """
    Conditional status transition; raises StateConflictError when another
    request got there first.
    """
    if not repo.transition(game_id, from_status, **values):
        raise StateConflictError(message, game_id=game_id)


def mark_settled(
    db: Session,
    game_type: str,
    game_id: str,
    action: str,
    result: Optional[Dict[str, Any]] = None,
) -> None:
    """Insert the idempotency record for a terminal action."""
    records = SettlementRecordRepository(db)
    if records.find(game_type, game_id, action) is not None:
        raise StateConflictError(
            f"{game_type} {game_id} already settled",
            game_type=game_type,
            game_id=game_id,
        )
    records.record(game_type, game_id, action, result)


def hold(repo: BaseRepository, game_id: str, status: str, message: str) -> None:
    """
    Write-lock a session row that must still be in `status`.

    Join and bet paths call this before their first debit. The no-op UPDATE
    takes the same row lock as the `claim` in spin, deal and expire, so a
    stake can never land on a session that has already moved on.
    """
    claim(repo, game_id, status, message, status=status)
