"""
tests/test_standings.py — Final Standings & Prize Split Tests
==============================================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from atelier.engine.standings import (
    FinalizedEntry,
    PrizePosition,
    RankableEntry,
    best_result_per_user,
    parse_prize_positions,
    rank_entries,
)

T0 = datetime(2026, 3, 1, tzinfo=UTC)


def _rankable(entry_id: int, score: int, user_id: int | None = None, minutes: int = 0) -> RankableEntry:
    return RankableEntry(
        entry_id=entry_id,
        user_id=user_id or entry_id * 10,
        final_score=score,
        vote_count=5,
        created_at=T0 + timedelta(minutes=minutes),
    )


PODIUM = [PrizePosition(1, 50), PrizePosition(2, 30), PrizePosition(3, 20)]


class TestParsePrizePositions:
    def test_sorted_and_validated(self):
        raw = [
            {"position": 2, "percentage": 30},
            {"position": 1, "percentage": 50.5},
            {"position": "3", "percentage": 20},
            {"position": True, "percentage": 10},
            "junk",
        ]
        assert parse_prize_positions(raw) == [PrizePosition(1, 50.5), PrizePosition(2, 30)]

    def test_non_list(self):
        assert parse_prize_positions(None) == []
        assert parse_prize_positions({"position": 1}) == []


class TestRankEntries:
    def test_orders_by_score_and_pays_podium(self):
        entries = [_rankable(1, 1480), _rankable(2, 1620), _rankable(3, 1550), _rankable(4, 1400)]
        result = rank_entries(entries, PODIUM, 1000)
        assert [(e.entry_id, e.position, e.prize_amount) for e in result] == [
            (2, 1, 500),
            (3, 2, 300),
            (1, 3, 200),
            (4, 4, 0),
        ]

    def test_tie_goes_to_earlier_entry(self):
        entries = [_rankable(1, 1550, minutes=5), _rankable(2, 1550, minutes=1)]
        result = rank_entries(entries, PODIUM, 100)
        assert [e.entry_id for e in result] == [2, 1]

    def test_prizes_are_floored(self):
        result = rank_entries([_rankable(1, 1500), _rankable(2, 1400)], PODIUM, 101)
        assert result[0].prize_amount == 50
        assert result[1].prize_amount == 30

    def test_no_prize_positions(self):
        result = rank_entries([_rankable(1, 1500)], [], 500)
        assert result[0].position == 1
        assert result[0].prize_amount == 0

    def test_empty(self):
        assert rank_entries([], PODIUM, 0) == []


class TestBestResultPerUser:
    def test_keeps_best_position(self):
        finalized = [
            FinalizedEntry(entry_id=1, user_id=7, final_score=1600, vote_count=3, position=1, prize_amount=50),
            FinalizedEntry(entry_id=2, user_id=8, final_score=1550, vote_count=3, position=2, prize_amount=30),
            FinalizedEntry(entry_id=3, user_id=7, final_score=1500, vote_count=3, position=3, prize_amount=20),
        ]
        best = best_result_per_user(finalized)
        assert best[7].entry_id == 1
        assert best[8].position == 2
        assert len(best) == 2
