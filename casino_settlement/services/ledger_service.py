"""
Ledger service: stake capture, payouts and audit rows.

Game handlers never touch balances or inventory directly. They go through
this service, which:
- builds stake snapshots from the catalog (values are never client-supplied)
- re-checks live inventory quantities before accepting a stake
- debits and credits through conditional updates that cannot go negative
- writes one Transaction row per balance- or inventory-affecting event
- keeps total_wagered / total_profits / level current
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session

from casino_settlement.core.config import settings
from casino_settlement.core.exceptions import (
    InsufficientFundsError,
    NotFoundError,
    PayloadValidationError,
)
from casino_settlement.core.logging import get_logger
from casino_settlement.core.metrics import record_stake, record_payout
from casino_settlement.models import Account
from casino_settlement.repositories.inventory_repository import InventoryRepository
from casino_settlement.repositories.ledger_repository import AccountRepository, TransactionRepository
from casino_settlement.services.item_catalog import ItemCatalogCache, item_catalog
from casino_settlement.services.outcomes import scale_quantity
from casino_settlement.utils.timezone import isoformat

logger = get_logger(__name__)

ZERO = Decimal("0.00")


@dataclass
class Stake:
    """Catalog-priced item stake."""
    lines: List[dict] = field(default_factory=list)

    @property
    def total_value(self) -> Decimal:
        return stake_value(self.lines)

    @property
    def item_count(self) -> int:
        return sum(line["quantity"] for line in self.lines)


def stake_value(lines: Sequence[dict]) -> Decimal:
    """Total value of a snapshot list."""
    return sum((Decimal(line["value"]) * line["quantity"] for line in lines), ZERO)


def scale_stake(lines: Sequence[dict], multiplier) -> List[dict]:
    """Copy of a snapshot with every quantity floored to quantity * multiplier."""
    scaled = []
    for line in lines:
        quantity = scale_quantity(line["quantity"], multiplier)
        if quantity > 0:
            scaled.append({**line, "quantity": quantity})
    return scaled


def level_for(total_wagered: Decimal) -> int:
    step = settings.LEVEL_WAGER_STEP
    return min(settings.MAX_LEVEL, 1 + int(Decimal(total_wagered) // step))


def _line_fields(entry) -> tuple:
    if isinstance(entry, dict):
        return entry.get("item_id") or entry.get("itemId"), entry.get("quantity", 1)
    return entry.item_id, entry.quantity


class LedgerService:
    """
    Ledger and inventory mutations for one settlement.

    Usage:
        ledger = LedgerService(db)
        stake = ledger.capture_stake(user_id, [{"item_id": "...", "quantity": 1}])
        ledger.debit_items(user_id, stake.lines)
    """

    def __init__(self, db: Session, catalog: Optional[ItemCatalogCache] = None):
        self.db = db
        self.catalog = catalog or item_catalog
        self.accounts = AccountRepository(db)
        self.inventory = InventoryRepository(db)
        self.transactions = TransactionRepository(db)

    # ========================================================================
    # Accounts
    # ========================================================================

    def get_account(self, user_id: str) -> Account:
        account = self.accounts.find_by_id(user_id)
        if account is None:
            raise NotFoundError("Account not found", user_id=user_id)
        return account

    def ensure_account(self, user_id: str, username: Optional[str] = None) -> Account:
        """Get the account, creating an empty one on first sight."""
        account = self.accounts.find_by_id(user_id)
        if account is None:
            account = self.accounts.create(id=user_id, username=username, balance=ZERO)
            logger.info(f"Created account {user_id}")
        return account

    def account_summary(self, user_id: str) -> Dict:
        account = self.get_account(user_id)
        return {
            "id": account.id,
            "username": account.username,
            "balance": str(account.balance),
            "total_wagered": str(account.total_wagered),
            "total_profits": str(account.total_profits),
            "level": account.level,
        }

    def inventory_for(self, user_id: str) -> List[Dict]:
        return [
            {
                "item_id": entry.item_id,
                "name": entry.item.name,
                "rarity": entry.item.rarity,
                "value": str(entry.item.value),
                "image_url": entry.item.image_url,
                "quantity": entry.quantity,
            }
            for entry in self.inventory.list_for_user(user_id)
        ]

    def transactions_for(self, user_id: str, limit: int = 50) -> List[Dict]:
        return [
            {
                "id": tx.id,
                "amount": str(tx.amount),
                "type": tx.type,
                "game_type": tx.game_type,
                "game_id": tx.game_id,
                "description": tx.description,
                "created_at": isoformat(tx.created_at),
            }
            for tx in self.transactions.for_user(user_id, limit)
        ]

    # ========================================================================
    # Stakes
    # ========================================================================

    def price_items(self, entries: Iterable) -> Stake:
        """
        Price requested item lines from the catalog. Duplicate ids are merged.

        Raises:
            PayloadValidationError: Empty request or non-positive quantity
            NotFoundError: Unknown item id
        """
        requested: Dict[str, int] = {}
        for entry in entries or []:
            item_id, quantity = _line_fields(entry)
            if not item_id:
                raise PayloadValidationError("Each staked item needs an item id")
            if not isinstance(quantity, int) or quantity < 1:
                raise PayloadValidationError("Item quantity must be a positive integer", item_id=item_id)
            requested[item_id] = requested.get(item_id, 0) + quantity

        if not requested:
            raise PayloadValidationError("No items staked")

        snapshots = self.catalog.get_many(self.db, requested.keys())
        missing = [item_id for item_id in requested if item_id not in snapshots]
        if missing:
            raise NotFoundError("Item not found", item_id=missing[0])

        return Stake(lines=[snapshots[item_id].to_stake(quantity) for item_id, quantity in requested.items()])

    def capture_stake(self, user_id: str, entries: Iterable) -> Stake:
        """
        Price the requested items from the catalog and verify the player
        holds them right now.

        Raises:
            PayloadValidationError: Empty stake or non-positive quantity
            NotFoundError: Unknown item id
            InsufficientFundsError: Player holds fewer units than staked
        """
        stake = self.price_items(entries)
        held = self.inventory.quantities_for(user_id, [line["item_id"] for line in stake.lines])
        for line in stake.lines:
            have = held.get(line["item_id"], 0)
            if have < line["quantity"]:
                raise InsufficientFundsError(
                    f"Insufficient quantity of {line['name']}",
                    shortfall=Decimal(line["quantity"] - have),
                    item_id=line["item_id"],
                )
        return stake

    def debit_items(self, user_id: str, lines: Sequence[dict]) -> None:
        for line in lines:
            if not self.inventory.debit(user_id, line["item_id"], line["quantity"]):
                raise InsufficientFundsError(
                    f"Insufficient quantity of {line['name']}",
                    item_id=line["item_id"],
                )

    def credit_items(self, user_id: str, lines: Sequence[dict]) -> None:
        for line in lines:
            if line["quantity"] > 0:
                self.inventory.credit(user_id, line["item_id"], line["quantity"])

    # ========================================================================
    # Balance
    # ========================================================================

    def debit_balance(self, user_id: str, amount: Decimal) -> None:
        amount = Decimal(amount)
        if amount <= 0:
            return
        if not self.accounts.apply_delta(user_id, -amount):
            account = self.get_account(user_id)
            raise InsufficientFundsError(
                "Insufficient balance",
                shortfall=amount - Decimal(account.balance),
            )

    def credit_balance(self, user_id: str, amount: Decimal) -> None:
        amount = Decimal(amount)
        if amount <= 0:
            return
        if not self.accounts.apply_delta(user_id, amount):
            raise NotFoundError("Account not found", user_id=user_id)

    def deposit(self, user_id: str, amount: Decimal, description: Optional[str] = None) -> Account:
        if Decimal(amount) <= 0:
            raise PayloadValidationError("Deposit amount must be positive")
        self.ensure_account(user_id)
        self.credit_balance(user_id, amount)
        self.record(user_id, Decimal(amount), "deposit", description=description or "Deposit")
        return self.get_account(user_id)

    def grant_items(self, user_id: str, entries: Iterable, description: Optional[str] = None) -> Stake:
        """Credit catalog items to a player (item deposit)."""
        stake = self.price_items(entries)
        self.ensure_account(user_id)
        self.db.flush()
        self.credit_items(user_id, stake.lines)
        self.record(user_id, stake.total_value, "deposit", description=description or "Item deposit")
        return stake

    # ========================================================================
    # Audit rows & stats
    # ========================================================================

    def record(
        self,
        user_id: str,
        amount: Decimal,
        type: str,
        game_type: Optional[str] = None,
        game_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> None:
        self.transactions.append(user_id, amount, type, game_type, game_id, description)

    def record_bet(self, user_id: str, amount: Decimal, game_type: str, game_id: str, description: str) -> None:
        self.record(user_id, -Decimal(amount), "bet", game_type, game_id, description)
        record_stake(game_type, amount)

    def record_win(self, user_id: str, amount: Decimal, game_type: str, game_id: str, description: str) -> None:
        self.record(user_id, Decimal(amount), "win", game_type, game_id, description)
        record_payout(game_type, amount)

    def record_loss(self, user_id: str, game_type: str, game_id: str, description: str) -> None:
        self.record(user_id, ZERO, "loss", game_type, game_id, description)

    def record_refund(self, user_id: str, amount: Decimal, game_type: str, game_id: str, description: str) -> None:
        self.record(user_id, Decimal(amount), "refund", game_type, game_id, description)

    def record_result(self, user_id: str, wagered: Decimal, payout: Decimal) -> None:
        """Accumulate wager stats for a settled participant and refresh their level."""
        wagered = Decimal(wagered)
        self.accounts.add_stats(user_id, wagered=wagered, profit=Decimal(payout) - wagered)
        account = self.accounts.find_by_id(user_id)
        if account is not None:
            level = level_for(account.total_wagered)
            if level != account.level:
                account.level = level
                self.db.flush()
