"""
Database models for the settlement service.

Money columns are Numeric(12, 2) and surface as Decimal. Stake snapshots
(`*_items` JSON columns) are lists of
    {"item_id", "name", "value", "quantity", "rarity", "image_url"}
built from the item catalog at stake time; `value` is the per-unit value as a
string so the snapshot survives JSON round-trips without float drift.
"""
import uuid

from sqlalchemy import (
    Column, String, Integer, DateTime, ForeignKey, Boolean, Text, Numeric, JSON,
    Index, UniqueConstraint, CheckConstraint,
)
from sqlalchemy.orm import relationship, declarative_base

from casino_settlement.utils.timezone import utcnow

Base = declarative_base()

Money = Numeric(12, 2)


def _uuid() -> str:
    return str(uuid.uuid4())


# =============================================================================
# LEDGER
# =============================================================================

class Account(Base):
    """Player account. Balance changes only through ledger deltas."""
    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True, default=_uuid)
    username = Column(String(100), unique=True, nullable=True)
    balance = Column(Money, nullable=False, default=0)
    total_wagered = Column(Money, nullable=False, default=0)
    total_profits = Column(Money, nullable=False, default=0)
    level = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    inventory = relationship("InventoryEntry", back_populates="account", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_accounts_balance_non_negative"),
    )


class Transaction(Base):
    """Append-only audit row for every balance- or inventory-affecting event."""
    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Money, nullable=False)  # signed
    type = Column(String(20), nullable=False)  # deposit, bet, win, loss, refund
    game_type = Column(String(30), nullable=True, index=True)
    game_id = Column(String(36), nullable=True, index=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    __table_args__ = (
        Index("ix_transactions_game", "game_type", "game_id"),
    )


class SettlementRecord(Base):
    """
    Idempotency log of terminal settlement actions.

    Inserted in the same transaction as the payout it describes; the unique
    key makes a second payout for the same (game_type, game_id, action)
    impossible to commit.
    """
    __tablename__ = "settlement_records"

    id = Column(String(36), primary_key=True, default=_uuid)
    game_type = Column(String(30), nullable=False)
    game_id = Column(String(36), nullable=False)
    action = Column(String(30), nullable=False)
    result = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("game_type", "game_id", "action", name="uq_settlement_records_key"),
    )


# =============================================================================
# ITEMS & INVENTORY
# =============================================================================

class Item(Base):
    """Catalog item (MM2 trade item)."""
    __tablename__ = "items"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False, index=True)
    rarity = Column(String(20), nullable=False, index=True)  # common .. chroma
    value = Column(Money, nullable=False, default=0)
    image_url = Column(String(500), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("value >= 0", name="ck_items_value_non_negative"),
    )


class InventoryEntry(Base):
    """(user, item) -> quantity. Deleted when quantity reaches 0."""
    __tablename__ = "inventory_entries"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    item_id = Column(String(36), ForeignKey("items.id", ondelete="CASCADE"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    account = relationship("Account", back_populates="inventory")
    item = relationship("Item")

    __table_args__ = (
        UniqueConstraint("user_id", "item_id", name="uq_inventory_user_item"),
        CheckConstraint("quantity >= 0", name="ck_inventory_quantity_non_negative"),
    )


# =============================================================================
# COINFLIP
# =============================================================================

class CoinflipGame(Base):
    """Two-player item coinflip. waiting -> completed | expired."""
    __tablename__ = "coinflip_games"

    id = Column(String(36), primary_key=True, default=_uuid)
    creator_id = Column(String(36), ForeignKey("accounts.id"), nullable=False, index=True)
    creator_side = Column(String(5), nullable=False)  # heads, tails
    creator_items = Column(JSON, nullable=False)
    bet_amount = Column(Money, nullable=False)
    joiner_id = Column(String(36), ForeignKey("accounts.id"), nullable=True)
    joiner_items = Column(JSON, nullable=True)
    joiner_amount = Column(Money, nullable=True)
    result = Column(String(10), nullable=True)  # heads, tails, refund
    winner_id = Column(String(36), nullable=True)
    status = Column(String(20), nullable=False, default="waiting", index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    completed_at = Column(DateTime, nullable=True)


# =============================================================================
# ROULETTE
# =============================================================================

class RouletteGame(Base):
    """Roulette round. waiting -> completed."""
    __tablename__ = "roulette_games"

    id = Column(String(36), primary_key=True, default=_uuid)
    status = Column(String(20), nullable=False, default="waiting", index=True)
    spin_result = Column(Integer, nullable=True)
    spin_color = Column(String(10), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    completed_at = Column(DateTime, nullable=True)

    bets = relationship("RouletteBet", back_populates="game", cascade="all, delete-orphan")


class RouletteBet(Base):
    __tablename__ = "roulette_bets"

    id = Column(String(36), primary_key=True, default=_uuid)
    game_id = Column(String(36), ForeignKey("roulette_games.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("accounts.id"), nullable=False, index=True)
    bet_color = Column(String(10), nullable=False)  # red, black, green
    bet_amount = Column(Money, nullable=False)
    items = Column(JSON, nullable=False)
    won = Column(Boolean, nullable=True)
    payout_amount = Column(Money, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    game = relationship("RouletteGame", back_populates="bets")


# =============================================================================
# CRASH
# =============================================================================

class CrashGame(Base):
    """Crash round. waiting -> flying -> crashed."""
    __tablename__ = "crash_games"

    id = Column(String(36), primary_key=True, default=_uuid)
    status = Column(String(20), nullable=False, default="waiting", index=True)
    crash_point = Column(Money, nullable=True)  # generated at launch, revealed once crashed
    created_at = Column(DateTime, nullable=False, default=utcnow)
    started_at = Column(DateTime, nullable=True)
    crashed_at = Column(DateTime, nullable=True)

    bets = relationship("CrashBet", back_populates="game", cascade="all, delete-orphan")


class CrashBet(Base):
    __tablename__ = "crash_bets"

    id = Column(String(36), primary_key=True, default=_uuid)
    game_id = Column(String(36), ForeignKey("crash_games.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("accounts.id"), nullable=False, index=True)
    bet_amount = Column(Money, nullable=False)
    items = Column(JSON, nullable=False)
    cashed_out = Column(Boolean, nullable=False, default=False)
    cashout_at = Column(Money, nullable=True)
    won = Column(Boolean, nullable=True)
    payout_amount = Column(Money, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    game = relationship("CrashGame", back_populates="bets")

    __table_args__ = (
        UniqueConstraint("game_id", "user_id", name="uq_crash_bets_game_user"),
    )


# =============================================================================
# BLACKJACK
# =============================================================================

class BlackjackTable(Base):
    """Multi-player blackjack table. waiting -> in_progress -> completed."""
    __tablename__ = "blackjack_tables"

    id = Column(String(36), primary_key=True, default=_uuid)
    bet_amount = Column(Money, nullable=False)
    max_players = Column(Integer, nullable=False, default=6)
    status = Column(String(20), nullable=False, default="waiting", index=True)
    dealer_hand = Column(JSON, nullable=True)
    dealer_score = Column(Integer, nullable=True)
    current_player_id = Column(String(36), nullable=True)
    turn_started_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    players = relationship(
        "BlackjackPlayer",
        back_populates="table",
        cascade="all, delete-orphan",
        order_by="BlackjackPlayer.seat",
    )


class BlackjackPlayer(Base):
    """Seat at a table. waiting -> playing -> standing | bust."""
    __tablename__ = "blackjack_players"

    id = Column(String(36), primary_key=True, default=_uuid)
    table_id = Column(String(36), ForeignKey("blackjack_tables.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("accounts.id"), nullable=False, index=True)
    seat = Column(Integer, nullable=False)  # join order
    bet_amount = Column(Money, nullable=False)
    hand = Column(JSON, nullable=False, default=list)
    score = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="waiting")
    won = Column(Boolean, nullable=True)  # None = push or unsettled
    payout_amount = Column(Money, nullable=True)
    joined_at = Column(DateTime, nullable=False, default=utcnow)

    table = relationship("BlackjackTable", back_populates="players")

    __table_args__ = (
        UniqueConstraint("table_id", "user_id", name="uq_blackjack_players_table_user"),
        UniqueConstraint("table_id", "seat", name="uq_blackjack_players_table_seat"),
    )


# =============================================================================
# CASE BATTLES
# =============================================================================

class CaseBattle(Base):
    """Case battle. waiting -> active -> completed | expired."""
    __tablename__ = "case_battles"

    id = Column(String(36), primary_key=True, default=_uuid)
    creator_id = Column(String(36), ForeignKey("accounts.id"), nullable=False)
    cases = Column(JSON, nullable=False)  # case slot names, one draw per slot per round
    rounds = Column(Integer, nullable=False)
    current_round = Column(Integer, nullable=False, default=0)
    max_players = Column(Integer, nullable=False, default=2)
    entry_cost = Column(Money, nullable=False)
    status = Column(String(20), nullable=False, default="waiting", index=True)
    winner_id = Column(String(36), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    participants = relationship(
        "CaseBattleParticipant",
        back_populates="battle",
        cascade="all, delete-orphan",
        order_by="CaseBattleParticipant.position",
    )
    round_records = relationship(
        "CaseBattleRound",
        back_populates="battle",
        cascade="all, delete-orphan",
        order_by="CaseBattleRound.round_number",
    )


class CaseBattleParticipant(Base):
    __tablename__ = "case_battle_participants"

    id = Column(String(36), primary_key=True, default=_uuid)
    battle_id = Column(String(36), ForeignKey("case_battles.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("accounts.id"), nullable=False)
    position = Column(Integer, nullable=False)
    total_value = Column(Money, nullable=False, default=0)
    items_won = Column(JSON, nullable=False, default=list)
    joined_at = Column(DateTime, nullable=False, default=utcnow)

    battle = relationship("CaseBattle", back_populates="participants")

    __table_args__ = (
        UniqueConstraint("battle_id", "user_id", name="uq_case_battle_participants_user"),
        UniqueConstraint("battle_id", "position", name="uq_case_battle_participants_position"),
    )


class CaseBattleRound(Base):
    __tablename__ = "case_battle_rounds"

    id = Column(String(36), primary_key=True, default=_uuid)
    battle_id = Column(String(36), ForeignKey("case_battles.id", ondelete="CASCADE"), nullable=False, index=True)
    round_number = Column(Integer, nullable=False)
    results = Column(JSON, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    battle = relationship("CaseBattle", back_populates="round_records")

    __table_args__ = (
        UniqueConstraint("battle_id", "round_number", name="uq_case_battle_rounds_number"),
    )


# =============================================================================
# CHAMBER GAME (RUSSIAN ROULETTE)
# =============================================================================

class ChamberGame(Base):
    """Single-player chamber game. playing -> cashed_out | lost."""
    __tablename__ = "chamber_games"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("accounts.id"), nullable=False, index=True)
    items = Column(JSON, nullable=False)
    bet_amount = Column(Money, nullable=False)
    chambers_left = Column(Integer, nullable=False)
    rounds_survived = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="playing", index=True)
    payout_amount = Column(Money, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    completed_at = Column(DateTime, nullable=True)


# =============================================================================
# GIVEAWAYS
# =============================================================================

class Giveaway(Base):
    """Item giveaway. active -> completed, then purged."""
    __tablename__ = "giveaways"

    id = Column(String(36), primary_key=True, default=_uuid)
    creator_id = Column(String(36), ForeignKey("accounts.id"), nullable=True)  # None for house giveaways
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    prize_items = Column(JSON, nullable=False)
    total_value = Column(Money, nullable=False)
    type = Column(String(10), nullable=False, default="manual")  # manual, auto
    status = Column(String(20), nullable=False, default="active", index=True)
    winner_id = Column(String(36), nullable=True)
    ends_at = Column(DateTime, nullable=False, index=True)
    ended_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    entries = relationship("GiveawayEntry", back_populates="giveaway", order_by="GiveawayEntry.created_at")


class GiveawayEntry(Base):
    __tablename__ = "giveaway_entries"

    id = Column(String(36), primary_key=True, default=_uuid)
    giveaway_id = Column(String(36), ForeignKey("giveaways.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("accounts.id"), nullable=False)
    tickets = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    giveaway = relationship("Giveaway", back_populates="entries")

    __table_args__ = (
        UniqueConstraint("giveaway_id", "user_id", name="uq_giveaway_entries_user"),
    )


# =============================================================================
# RAFFLE
# =============================================================================

class Raffle(Base):
    """Seasonal raffle funded by item exchanges. active -> completed."""
    __tablename__ = "raffles"

    id = Column(String(36), primary_key=True, default=_uuid)
    year = Column(Integer, nullable=False, unique=True)
    status = Column(String(20), nullable=False, default="active")
    end_date = Column(DateTime, nullable=False)
    prize_items = Column(JSON, nullable=False, default=list)
    total_prize_value = Column(Money, nullable=False, default=0)
    winners = Column(JSON, nullable=True)
    drawn_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    tickets = relationship("RaffleTicket", back_populates="raffle", cascade="all, delete-orphan")


class RaffleTicket(Base):
    __tablename__ = "raffle_tickets"

    id = Column(String(36), primary_key=True, default=_uuid)
    raffle_id = Column(String(36), ForeignKey("raffles.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("accounts.id"), nullable=False)
    total_tickets = Column(Integer, nullable=False, default=0)
    items_exchanged = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    raffle = relationship("Raffle", back_populates="tickets")

    __table_args__ = (
        UniqueConstraint("raffle_id", "user_id", name="uq_raffle_tickets_user"),
    )
