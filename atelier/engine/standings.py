"""
atelier.engine.standings — Final Crucible Standings & Prize Split
==================================================================

Ranks entries by final ELO (higher first; the earlier entry wins a tie)
and splits the prize pool by configured position percentages.  Amounts
are floored, so a few Buzz may stay undistributed.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PrizePosition:
    position: int
    percentage: float


@dataclass(frozen=True, slots=True)
class RankableEntry:
    entry_id: int
    user_id: int
    final_score: int
    vote_count: int
    created_at: datetime


@dataclass(frozen=True, slots=True)
class FinalizedEntry:
    entry_id: int
    user_id: int
    final_score: int
    vote_count: int
    position: int
    prize_amount: int

    def to_dict(self) -> dict[str, int]:
        return {
            "entry_id": self.entry_id,
            "user_id": self.user_id,
            "final_score": self.final_score,
            "vote_count": self.vote_count,
            "position": self.position,
            "prize_amount": self.prize_amount,
        }


def parse_prize_positions(raw: Any) -> list[PrizePosition]:
    """Keep well-formed ``{position, percentage}`` items, sorted by position."""
    if not isinstance(raw, list):
        return []

    positions = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        position = item.get("position")
        percentage = item.get("percentage")
        if isinstance(position, bool) or isinstance(percentage, bool):
            continue
        if isinstance(position, int) and isinstance(percentage, (int, float)):
            positions.append(PrizePosition(position=position, percentage=percentage))
    return sorted(positions, key=lambda p: p.position)


def rank_entries(
    entries: list[RankableEntry],
    prize_positions: list[PrizePosition],
    total_prize_pool: int,
) -> list[FinalizedEntry]:
    """Assign 1-based positions and prize amounts."""
    ordered = sorted(entries, key=lambda e: (-e.final_score, e.created_at))

    by_score: dict[int, list[int]] = defaultdict(list)
    for entry in entries:
        by_score[entry.final_score].append(entry.entry_id)
    for score, ids in by_score.items():
        if len(ids) > 1:
            logger.info(
                "%d entries tied at ELO %d (%s); earlier entry ranks higher",
                len(ids), score, ", ".join(str(i) for i in ids),
            )

    percentages = {p.position: p.percentage for p in prize_positions}
    finalized = []
    for index, entry in enumerate(ordered):
        position = index + 1
        pct = percentages.get(position)
        prize = math.floor(pct / 100 * total_prize_pool) if pct is not None else 0
        finalized.append(
            FinalizedEntry(
                entry_id=entry.entry_id,
                user_id=entry.user_id,
                final_score=entry.final_score,
                vote_count=entry.vote_count,
                position=position,
                prize_amount=prize,
            )
        )
    return finalized


def best_result_per_user(entries: list[FinalizedEntry]) -> dict[int, FinalizedEntry]:
    """One result per participant: their best-placed entry."""
    best: dict[int, FinalizedEntry] = {}
    for entry in entries:
        current = best.get(entry.user_id)
        if current is None or entry.position < current.position:
            best[entry.user_id] = entry
    return best
