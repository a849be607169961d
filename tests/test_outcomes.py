"""Unit tests for outcome generation.

Test Strategy:
1. Roulette colors follow the 0-green / odd-red / even-black layout and a long
   run of spins stays close to the 1:7:7 color ratio
2. Blackjack scoring reduces aces one at a time and is a pure function of the hand
3. Crash points respect the instant-crash branch and the [1.00, max] clamp
4. Chamber pulls and multipliers, quantity scaling and weighted draws

Each test follows the pattern:
- Given: A seeded or scripted random source
- When: An outcome function is called
- Then: The result matches the documented distribution or rule
"""
import random
from collections import Counter
from decimal import Decimal

import pytest

from casino_settlement.services.outcomes import (
    ROULETTE_SLOTS,
    RarityWeightTable,
    calculate_score,
    chamber_multiplier,
    draw_weighted,
    flip_coin,
    generate_crash_point,
    pick_distinct,
    pull_chamber,
    roulette_color,
    scale_quantity,
    spin_roulette,
)


def hand(*ranks):
    return [{"rank": rank, "suit": "spades"} for rank in ranks]


class TestRoulette:
    """Wheel layout and spin distribution."""

    def test_wheel_layout(self):
        """Should map 0 to green, odd numbers to red and even numbers to black."""
        colors = Counter(roulette_color(n) for n in range(ROULETTE_SLOTS))

        assert roulette_color(0) == "green"
        assert roulette_color(1) == "red"
        assert roulette_color(14) == "black"
        assert colors == {"green": 1, "red": 7, "black": 7}

    def test_spin_distribution_matches_layout(self):
        """Should stay within a chi-square bound of 1:7:7 over 15k spins."""
        rng = random.Random(20240601)
        spins = 15000
        counts = Counter(spin_roulette(rng)[1] for _ in range(spins))

        expected = {"green": spins / 15, "red": spins * 7 / 15, "black": spins * 7 / 15}
        chi_square = sum((counts[color] - e) ** 2 / e for color, e in expected.items())

        # 2 degrees of freedom, p = 0.001
        assert chi_square < 13.82

    def test_spin_returns_number_and_matching_color(self, rng):
        for _ in range(100):
            number, color = spin_roulette(rng)
            assert 0 <= number < ROULETTE_SLOTS
            assert color == roulette_color(number)

    def test_coin_only_lands_on_a_side(self, rng):
        assert {flip_coin(rng) for _ in range(200)} == {"heads", "tails"}


class TestBlackjackScore:
    """Hand scoring."""

    @pytest.mark.parametrize("ranks,expected", [
        (("A", "K"), 21),
        (("A", "A"), 12),
        (("A", "A", "K"), 12),
        (("A", "9", "5"), 15),
        (("K", "Q", "2"), 22),
        (("A", "A", "A", "A"), 14),
        (("7", "8"), 15),
    ])
    def test_score(self, ranks, expected):
        assert calculate_score(hand(*ranks)) == expected

    def test_aces_only_reduce_while_over_21(self):
        """An ace stays at 11 when the hand does not exceed 21."""
        assert calculate_score(hand("A", "5")) == 16
        assert calculate_score(hand("A", "5", "5")) == 21
        assert calculate_score(hand("A", "5", "6")) == 12

    def test_scoring_is_idempotent(self):
        cards = hand("A", "7", "A", "3")
        assert calculate_score(cards) == calculate_score(cards) == 12
        assert len(cards) == 4


class TestCrashPoint:
    """Crash point generation."""

    def test_instant_crash_branch(self, scripted_rng):
        """A first draw under the house edge crashes at 1.00x."""
        assert generate_crash_point(scripted_rng([0.0])) == Decimal("1.00")

    def test_midrange_point(self, scripted_rng):
        point = generate_crash_point(scripted_rng([0.5, 0.5]))
        assert Decimal("1.97") <= point <= Decimal("1.98")

    def test_clamped_to_max_multiplier(self, scripted_rng):
        point = generate_crash_point(scripted_rng([0.5, 0.99999999]))
        assert point == Decimal("1000.00")

    def test_points_stay_in_bounds(self, rng):
        for _ in range(2000):
            point = generate_crash_point(rng)
            assert Decimal("1.00") <= point <= Decimal("1000.00")
            assert point == point.quantize(Decimal("0.01"))


class TestChamber:
    """Chamber pulls and multipliers."""

    def test_last_chamber_always_fires(self, rng):
        assert all(pull_chamber(1, rng) for _ in range(20))

    def test_no_chambers_left_is_an_error(self):
        with pytest.raises(ValueError):
            pull_chamber(0)

    def test_fire_rate_on_a_full_cylinder(self):
        rng = random.Random(7)
        fired = sum(pull_chamber(6, rng) for _ in range(6000))
        assert 850 < fired < 1150

    def test_multiplier_steps_by_half(self):
        assert chamber_multiplier(0) == Decimal("1.0")
        assert chamber_multiplier(1) == Decimal("1.5")
        assert chamber_multiplier(4) == Decimal("3.0")


class TestQuantityScaling:
    """Payout quantities are floored."""

    @pytest.mark.parametrize("quantity,multiplier,expected", [
        (1, Decimal("2.00"), 2),
        (3, Decimal("1.5"), 4),
        (1, Decimal("1.99"), 1),
        (2, 14, 28),
        (5, Decimal("1.00"), 5),
    ])
    def test_scale_quantity(self, quantity, multiplier, expected):
        assert scale_quantity(quantity, multiplier) == expected


class TestWeightedDraws:
    """Cumulative-weight draws."""

    def test_draw_weighted_uses_cumulative_bounds(self, scripted_rng):
        candidates = ["a", "b", "c"]
        weights = [1, 2, 7]

        assert draw_weighted(candidates, weights, scripted_rng([0.0])) == "a"
        assert draw_weighted(candidates, weights, scripted_rng([0.15])) == "b"
        assert draw_weighted(candidates, weights, scripted_rng([0.31])) == "c"

    def test_draw_weighted_rejects_empty_or_zero_weights(self):
        with pytest.raises(ValueError):
            draw_weighted([], [])
        with pytest.raises(ValueError):
            draw_weighted(["a"], [0])

    def test_rarity_table_favours_common_items(self):
        items = [{"name": "Godly", "rarity": "godly"}, {"name": "Common", "rarity": "common"}]
        table = RarityWeightTable(items)
        rng = random.Random(3)

        draws = Counter(table.draw(rng)["name"] for _ in range(4300))

        assert table.total == 43
        assert draws["Common"] > draws["Godly"] * 5

    def test_unknown_rarity_gets_default_weight(self):
        table = RarityWeightTable([{"rarity": "mystery"}])
        assert table.total == 10

    def test_rarity_table_needs_items(self):
        with pytest.raises(ValueError):
            RarityWeightTable([])

    def test_pick_distinct_caps_at_pool_size(self, rng):
        picked = pick_distinct(["a", "b"], 3, rng)
        assert sorted(picked) == ["a", "b"]
