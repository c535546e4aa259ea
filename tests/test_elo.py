"""
tests/test_elo.py — Crucible ELO Math Tests
============================================
Pure-function tests for atelier.engine.elo and the rounding helpers in
atelier.constants.
"""

from __future__ import annotations

import pytest

from atelier.constants import ordinal, round_half_up
from atelier.engine.elo import (
    apply_vote,
    elo_deviation,
    estimate_elo_change,
    expected_score,
    get_k_factor,
)


class TestExpectedScore:
    def test_equal_ratings_are_a_coin_flip(self):
        assert expected_score(1500, 1500) == pytest.approx(0.5)

    def test_scores_are_complementary(self):
        assert expected_score(1600, 1400) + expected_score(1400, 1600) == pytest.approx(1.0)

    def test_four_hundred_points_is_ten_to_one(self):
        assert expected_score(1900, 1500) == pytest.approx(10 / 11)


class TestKFactor:
    def test_provisional_below_ten_votes(self):
        assert get_k_factor(0) == 64
        assert get_k_factor(9) == 64

    def test_established_from_ten_votes(self):
        assert get_k_factor(10) == 32
        assert get_k_factor(250) == 32


class TestEstimateEloChange:
    def test_even_match(self):
        assert estimate_elo_change(1500, 1500) == (16, -16)

    def test_favourite_gains_little(self):
        assert estimate_elo_change(1600, 1400, 32) == (8, -8)

    def test_upset_gains_a_lot(self):
        assert estimate_elo_change(1400, 1600, 32) == (24, -24)

    def test_zero_sum(self):
        for winner, loser in [(1500, 1500), (1723, 1311), (1200, 1750)]:
            gain, loss = estimate_elo_change(winner, loser)
            assert gain + loss == 0


class TestApplyVote:
    def test_new_entries_start_at_default(self):
        outcome = apply_vote(None, None)
        assert (outcome.winner_elo, outcome.loser_elo) == (1532, 1468)

    def test_established_entries_use_smaller_k(self):
        outcome = apply_vote(1500, 1500, winner_votes=10, loser_votes=10)
        assert (outcome.winner_change, outcome.loser_change) == (16, -16)

    def test_each_side_uses_its_own_k(self):
        """A provisional winner moves twice as far as an established loser."""
        outcome = apply_vote(1500, 1500, winner_votes=0, loser_votes=10)
        assert outcome.winner_change == 32
        assert outcome.loser_change == -16
        assert outcome.winner_elo == 1532
        assert outcome.loser_elo == 1484


class TestHelpers:
    def test_round_half_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(-2.5) == -2
        assert round_half_up(7.49) == 7

    def test_deviation(self):
        assert elo_deviation(1500) == 0
        assert elo_deviation(1420) == 80

    @pytest.mark.parametrize(
        "position, expected",
        [(1, "1st"), (2, "2nd"), (3, "3rd"), (4, "4th"), (11, "11th"), (12, "12th"), (22, "22nd"), (103, "103rd")],
    )
    def test_ordinal(self, position, expected):
        assert ordinal(position) == expected
