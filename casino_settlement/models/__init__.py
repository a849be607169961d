"""
Settlement service models.

Usage:
    from casino_settlement.models import Account, CoinflipGame

    game = db.query(CoinflipGame).filter(CoinflipGame.status == "waiting").first()
"""

from casino_settlement.models.models import (
    Base,
    Account,
    Transaction,
    SettlementRecord,
    Item,
    InventoryEntry,
    CoinflipGame,
    RouletteGame,
    RouletteBet,
    CrashGame,
    CrashBet,
    BlackjackTable,
    BlackjackPlayer,
    CaseBattle,
    CaseBattleParticipant,
    CaseBattleRound,
    ChamberGame,
    Giveaway,
    GiveawayEntry,
    Raffle,
    RaffleTicket,
)

__all__ = [
    "Base",
    "Account",
    "Transaction",
    "SettlementRecord",
    "Item",
    "InventoryEntry",
    "CoinflipGame",
    "RouletteGame",
    "RouletteBet",
    "CrashGame",
    "CrashBet",
    "BlackjackTable",
    "BlackjackPlayer",
    "CaseBattle",
    "CaseBattleParticipant",
    "CaseBattleRound",
    "ChamberGame",
    "Giveaway",
    "GiveawayEntry",
    "Raffle",
    "RaffleTicket",
]
