"""
Ledger repositories: account balances, the transaction log and the
settlement idempotency log.

Usage:
    accounts = AccountRepository(db)
    if not accounts.apply_delta(user_id, Decimal("-5.00")):
        raise InsufficientFundsError(...)
"""
from decimal import Decimal
from typing import Optional, List, Dict, Any

from sqlalchemy import desc

from casino_settlement.models import Account, Transaction, SettlementRecord
from casino_settlement.repositories.base import BaseRepository
from casino_settlement.utils.timezone import utcnow


class AccountRepository(BaseRepository[Account]):
    """Repository for player accounts."""

    def __init__(self, db):
        super().__init__(Account, db)

    def find_by_username(self, username: str) -> Optional[Account]:
        return self.where_first(Account.username == username)

    def apply_delta(self, user_id: str, delta: Decimal) -> bool:
        """
        Atomically add `delta` to the balance.

        A debit only applies when the balance covers it; returns False (and
        changes nothing) otherwise or when the account does not exist.
        """
        criterion = [Account.id == user_id]
        if delta < 0:
            criterion.append(Account.balance >= -delta)
        return self.update_where(
            criterion,
            {"balance": Account.balance + delta, "updated_at": utcnow()},
        ) == 1

    def add_stats(self, user_id: str, wagered: Decimal = Decimal("0"), profit: Decimal = Decimal("0")) -> bool:
        """Accumulate total_wagered / total_profits."""
        return self.update_where(
            [Account.id == user_id],
            {
                "total_wagered": Account.total_wagered + wagered,
                "total_profits": Account.total_profits + profit,
                "updated_at": utcnow(),
            },
        ) == 1


class TransactionRepository(BaseRepository[Transaction]):
    """Append-only transaction log."""

    def __init__(self, db):
        super().__init__(Transaction, db)

    def append(
        self,
        user_id: str,
        amount: Decimal,
        type: str,
        game_type: Optional[str] = None,
        game_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Transaction:
        return self.create(
            user_id=user_id,
            amount=amount,
            type=type,
            game_type=game_type,
            game_id=game_id,
            description=description,
        )

    def for_user(self, user_id: str, limit: int = 50) -> List[Transaction]:
        return (
            self.query()
            .filter(Transaction.user_id == user_id)
            .order_by(desc(Transaction.created_at))
            .limit(limit)
            .all()
        )

    def for_game(self, game_type: str, game_id: str) -> List[Transaction]:
        return (
            self.query()
            .filter(Transaction.game_type == game_type, Transaction.game_id == game_id)
            .order_by(Transaction.created_at)
            .all()
        )


class SettlementRecordRepository(BaseRepository[SettlementRecord]):
    """Idempotency log keyed by (game_type, game_id, action)."""

    def __init__(self, db):
        super().__init__(SettlementRecord, db)

    def find(self, game_type: str, game_id: str, action: str) -> Optional[SettlementRecord]:
        return self.where_first(
            SettlementRecord.game_type == game_type,
            SettlementRecord.game_id == game_id,
            SettlementRecord.action == action,
        )

    def record(self, game_type: str, game_id: str, action: str, result: Optional[Dict[str, Any]] = None) -> SettlementRecord:
        """Insert the record; a duplicate key raises IntegrityError at flush."""
        return self.create(game_type=game_type, game_id=game_id, action=action, result=result)
