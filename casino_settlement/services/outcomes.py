"""
Outcome generation.

Every random result the service settles on is produced here, from a
cryptographically strong source (secrets.SystemRandom). Each function takes an
optional `rng` so tests can pass a seeded random.Random; production callers
never pass one. Results supplied by clients are never accepted.

Weighted draws use a cumulative-weight table searched with bisect, so a draw
costs O(log n) regardless of how large the weights are.
"""
import bisect
import math
import secrets
from decimal import Decimal, ROUND_DOWN
from itertools import accumulate
from random import Random
from typing import Dict, List, Optional, Sequence, Tuple, TypeVar

T = TypeVar("T")

_system_random = secrets.SystemRandom()

COIN_SIDES = ("heads", "tails")

ROULETTE_SLOTS = 15
ROULETTE_MULTIPLIERS = {"green": 14, "red": 2, "black": 2}

CARD_RANKS = ("A", "2", "3", "4", "5", "6", "7", "8", "9", "10", "J", "Q", "K")
CARD_SUITS = ("hearts", "diamonds", "clubs", "spades")

RARITY_WEIGHTS: Dict[str, int] = {
    "common": 40,
    "rare": 25,
    "vintage": 15,
    "legendary": 10,
    "ancient": 6,
    "godly": 3,
    "chroma": 1,
}
DEFAULT_RARITY_WEIGHT = 10

CHAMBER_MULTIPLIER_STEP = Decimal("0.5")

_CENT = Decimal("0.01")


def _source(rng: Optional[Random]) -> Random:
    return rng if rng is not None else _system_random


# =============================================================================
# Coinflip / Roulette
# =============================================================================

def flip_coin(rng: Optional[Random] = None) -> str:
    """Heads or tails, 50/50."""
    return COIN_SIDES[_source(rng).randrange(2)]


def roulette_color(number: int) -> str:
    """0 is green, odd numbers red, even numbers black."""
    if number == 0:
        return "green"
    return "red" if number % 2 == 1 else "black"


def spin_roulette(rng: Optional[Random] = None) -> Tuple[int, str]:
    """Uniform spin over 0..14. Returns (number, color)."""
    number = _source(rng).randrange(ROULETTE_SLOTS)
    return number, roulette_color(number)


# =============================================================================
# Weighted draws
# =============================================================================

def draw_weighted(candidates: Sequence[T], weights: Sequence[float], rng: Optional[Random] = None) -> T:
    """
    Draw one candidate with probability proportional to its weight.

    Raises:
        ValueError: If there are no candidates or the weights sum to zero
    """
    if not candidates or len(candidates) != len(weights):
        raise ValueError("candidates and weights must be non-empty and the same length")
    cumulative = list(accumulate(weights))
    total = cumulative[-1]
    if total <= 0:
        raise ValueError("weights must sum to a positive value")
    point = _source(rng).random() * total
    index = bisect.bisect_right(cumulative, point)
    # random() < 1.0 keeps index in range, but float rounding can land on total
    return candidates[min(index, len(candidates) - 1)]


class RarityWeightTable:
    """
    Cumulative rarity weights over a fixed item pool.

    Built once per pool and reused for every draw against it.
    """

    def __init__(self, items: Sequence[T], weights: Optional[Dict[str, int]] = None):
        if not items:
            raise ValueError("cannot build a weight table over an empty pool")
        weights = weights or RARITY_WEIGHTS
        self.items = list(items)
        self.cumulative = list(accumulate(
            weights.get(_rarity_of(item), DEFAULT_RARITY_WEIGHT) for item in self.items
        ))
        self.total = self.cumulative[-1]

    def draw(self, rng: Optional[Random] = None) -> T:
        point = _source(rng).random() * self.total
        index = bisect.bisect_right(self.cumulative, point)
        return self.items[min(index, len(self.items) - 1)]


def _rarity_of(item) -> str:
    rarity = item.get("rarity") if isinstance(item, dict) else getattr(item, "rarity", None)
    return (rarity or "").lower()


def draw_weighted_item(items: Sequence[T], rng: Optional[Random] = None) -> T:
    """Draw one item from `items` weighted by rarity."""
    return RarityWeightTable(items).draw(rng)


def randbelow(n: int, rng: Optional[Random] = None) -> int:
    """Uniform integer in [0, n)."""
    return _source(rng).randrange(n)


def pick_distinct(items: Sequence[T], count: int, rng: Optional[Random] = None) -> List[T]:
    """Uniformly pick up to `count` distinct items."""
    return _source(rng).sample(list(items), min(count, len(items)))


# =============================================================================
# Blackjack
# =============================================================================

def draw_card(rng: Optional[Random] = None) -> Dict[str, str]:
    """Draw from an infinite deck: every card is independent and uniform."""
    source = _source(rng)
    return {"rank": source.choice(CARD_RANKS), "suit": source.choice(CARD_SUITS)}


def card_value(rank: str) -> int:
    if rank == "A":
        return 11
    if rank in ("J", "Q", "K"):
        return 10
    return int(rank)


def calculate_score(hand: Sequence[Dict[str, str]]) -> int:
    """
    Blackjack hand value.

    Aces count 11 and are reduced to 1, one at a time, only while the total
    is over 21.
    """
    score = 0
    aces = 0
    for card in hand:
        score += card_value(card["rank"])
        if card["rank"] == "A":
            aces += 1
    while score > 21 and aces:
        score -= 10
        aces -= 1
    return score


# =============================================================================
# Crash
# =============================================================================

def generate_crash_point(
    rng: Optional[Random] = None,
    house_edge: Decimal = Decimal("0.01"),
    max_multiplier: Decimal = Decimal("1000.00"),
) -> Decimal:
    """
    Crash multiplier with an expected return of (1 - house_edge).

    With probability `house_edge` the round crashes instantly at 1.00x;
    otherwise the point follows (1 - edge) / (1 - U), floored to the cent and
    clamped to [1.00, max_multiplier].
    """
    source = _source(rng)
    edge = float(house_edge)
    if source.random() < edge:
        return Decimal("1.00")
    u = source.random()
    raw = math.floor(100 * (1 - edge) / (1 - u)) / 100
    point = Decimal(str(raw)).quantize(_CENT, rounding=ROUND_DOWN)
    return max(Decimal("1.00"), min(point, max_multiplier))


# =============================================================================
# Chamber game
# =============================================================================

def pull_chamber(chambers_left: int, rng: Optional[Random] = None) -> bool:
    """
    Pull the trigger on a cylinder with `chambers_left` chambers.

    Returns True when the bullet fires. The bullet sits in one chamber, so
    the chance is 1 / chambers_left; the last chamber always fires.
    """
    if chambers_left < 1:
        raise ValueError("no chambers left")
    return _source(rng).randrange(chambers_left) == 0


def chamber_multiplier(rounds_survived: int) -> Decimal:
    return Decimal(1) + CHAMBER_MULTIPLIER_STEP * rounds_survived


def scale_quantity(quantity: int, multiplier) -> int:
    """floor(quantity * multiplier) for Decimal or int multipliers."""
    return int((Decimal(quantity) * Decimal(multiplier)).to_integral_value(rounding=ROUND_DOWN))
