"""
Game settlement handlers.

Each handler validates a request against current state, claims the session
with a conditional status update, moves stakes through the ledger and writes
its audit rows, all inside one settlement scope.
"""

from casino_settlement.services.games.coinflip import CoinflipService
from casino_settlement.services.games.roulette import RouletteService
from casino_settlement.services.games.crash import CrashService
from casino_settlement.services.games.blackjack import BlackjackService
from casino_settlement.services.games.case_battle import CaseBattleService
from casino_settlement.services.games.chamber import ChamberService
from casino_settlement.services.games.giveaway import GiveawayService
from casino_settlement.services.games.raffle import RaffleService

__all__ = [
    "CoinflipService",
    "RouletteService",
    "CrashService",
    "BlackjackService",
    "CaseBattleService",
    "ChamberService",
    "GiveawayService",
    "RaffleService",
]
