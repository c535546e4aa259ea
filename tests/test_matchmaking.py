"""
tests/test_matchmaking.py — Judging-Pair Selection Tests
=========================================================
"""

from __future__ import annotations

import random

from atelier.engine.matchmaking import (
    JudgingCandidate,
    get_candidate_b_pool,
    get_voting_phase,
    pair_key,
    randomize_sides,
    select_pair,
)


def _entry(id: int, score: int = 1500, user_id: int | None = None) -> JudgingCandidate:
    return JudgingCandidate(id=id, user_id=user_id or 100 + id, image_id=1000 + id, score=score)


def _never_voted(keys):
    return [False] * len(keys)


class TestPairKey:
    def test_order_independent(self):
        assert pair_key(7, 3) == pair_key(3, 7) == "3:7"


class TestVotingPhase:
    def test_boundaries(self):
        assert get_voting_phase(0) == "calibration"
        assert get_voting_phase(50) == "calibration"
        assert get_voting_phase(51) == "discovery"
        assert get_voting_phase(150) == "discovery"
        assert get_voting_phase(151) == "optimization"


class TestCandidateBPool:
    def test_calibration_prefers_anchors(self):
        a = _entry(1, 1500)
        entries = [a, _entry(2, 1510), _entry(3, 1600), _entry(4, 1380)]
        pool = get_candidate_b_pool(entries, a, "calibration")
        assert {e.id for e in pool} == {3, 4}

    def test_calibration_falls_back_to_everyone(self):
        a = _entry(1, 1500)
        entries = [a, _entry(2, 1510), _entry(3, 1490)]
        pool = get_candidate_b_pool(entries, a, "calibration")
        assert {e.id for e in pool} == {2, 3}

    def test_discovery_needs_close_and_uncertain(self):
        a = _entry(1, 1600)
        entries = [a, _entry(2, 1650), _entry(3, 1510), _entry(4, 1900), _entry(5, 1420)]
        pool = get_candidate_b_pool(entries, a, "discovery")
        # 1650: dev 150, diff 50 ✓ · 1510: dev 10 ✗ · 1900: diff 300 ✗ · 1420: diff 180, dev 80 ✓
        assert {e.id for e in pool} == {2, 5}

    def test_optimization_widens_to_200(self):
        a = _entry(1, 1800)
        entries = [a, _entry(2, 1650), _entry(3, 1500)]
        pool = get_candidate_b_pool(entries, a, "optimization")
        assert [e.id for e in pool] == [2]

    def test_excludes_a_itself(self):
        a = _entry(1)
        assert get_candidate_b_pool([a], a, "calibration") == []


class TestSelectPair:
    def test_fewer_than_two_entries(self):
        assert select_pair([_entry(1)], _never_voted) is None

    def test_a_is_least_judged(self):
        entries = [_entry(1, 1700), _entry(2, 1500), _entry(3, 1300)]
        a, b = select_pair(entries, _never_voted, random.Random(1))
        assert a.id == 2
        assert b.id in (1, 3)

    def test_skips_voted_pairs(self):
        entries = [_entry(1, 1500), _entry(2, 1510), _entry(3, 1490)]
        voted = {"1:2", "1:3"}

        def lookup(keys):
            return [k in voted for k in keys]

        a, b = select_pair(entries, lookup, random.Random(3))
        assert pair_key(a.id, b.id) == "2:3"

    def test_everything_voted(self):
        entries = [_entry(1), _entry(2)]
        assert select_pair(entries, lambda keys: [True] * len(keys)) is None

    def test_deterministic_with_seed(self):
        first = select_pair([_entry(i, 1500 + i) for i in range(1, 8)], _never_voted, random.Random(42))
        second = select_pair([_entry(i, 1500 + i) for i in range(1, 8)], _never_voted, random.Random(42))
        assert (first[0].id, first[1].id) == (second[0].id, second[1].id)


class TestRandomizeSides:
    def test_returns_both_entries(self):
        a, b = _entry(1), _entry(2)
        sides = randomize_sides(a, b, random.Random(0))
        assert {sides["left"].id, sides["right"].id} == {1, 2}

    def test_both_orders_occur(self):
        rng = random.Random(7)
        lefts = {randomize_sides(_entry(1), _entry(2), rng)["left"].id for _ in range(50)}
        assert lefts == {1, 2}
