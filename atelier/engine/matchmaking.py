"""
atelier.engine.matchmaking — Judging-Pair Selection
====================================================

Chooses which two crucible entries a judge sees next.

1. Image A comes from the entries closest to the starting rating (least
   judged), shuffled among those within 30 points of the minimum
   deviation.
2. Image B depends on A's *voting phase*:

   ===============  ===========  ==============================================
   phase            A deviation  B pool
   ===============  ===========  ==============================================
   calibration      0-50         anchors with deviation > 50
   discovery        50-150       within 200 ELO, deviation in [50, 300]
   optimization     > 150        within 100 ELO, widened to 200
   ===============  ===========  ==============================================

   Any empty pool falls back to every other entry.
3. Pairs the judge already voted on are skipped.

Pure functions over a list of candidates; the caller supplies the
voted-pair lookup and (optionally) a seeded :class:`random.Random`.
"""

from __future__ import annotations

import random
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from atelier.constants import ELO_DEVIATION_LOW, ELO_DEVIATION_MED
from atelier.engine.elo import elo_deviation

VotingPhase = Literal["calibration", "discovery", "optimization"]

_LOW_DEVIATION_WINDOW = 30


@dataclass
class JudgingCandidate:
    """An entry eligible for judging, with its live rating."""

    id: int
    user_id: int
    image_id: int
    score: int
    image: dict[str, Any] = field(default_factory=dict)
    user: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "image_id": self.image_id,
            "score": self.score,
            "image": self.image,
            "user": self.user,
        }


def pair_key(entry_id_1: int, entry_id_2: int) -> str:
    """Canonical ``"min:max"`` key so ``a:b`` and ``b:a`` are the same pair."""
    smaller, larger = sorted((entry_id_1, entry_id_2))
    return f"{smaller}:{larger}"


def get_voting_phase(deviation: float) -> VotingPhase:
    if deviation <= ELO_DEVIATION_LOW:
        return "calibration"
    if deviation <= ELO_DEVIATION_MED:
        return "discovery"
    return "optimization"


def get_candidate_b_pool(
    entries: Sequence[JudgingCandidate],
    image_a: JudgingCandidate,
    phase: VotingPhase,
) -> list[JudgingCandidate]:
    """Return the opponents A may face in *phase* (voted pairs not yet removed)."""
    valid = [e for e in entries if e.id != image_a.id]
    if not valid:
        return []

    if phase == "calibration":
        anchors = [e for e in valid if elo_deviation(e.score) > ELO_DEVIATION_LOW]
        return anchors or valid

    if phase == "discovery":
        uncertain = [
            e for e in valid
            if abs(image_a.score - e.score) <= 200
            and ELO_DEVIATION_LOW <= elo_deviation(e.score) <= ELO_DEVIATION_MED * 2
        ]
        return uncertain or valid

    similar = [e for e in valid if abs(image_a.score - e.score) <= 100]
    if not similar:
        similar = [e for e in valid if abs(image_a.score - e.score) <= 200]
    return similar or valid


def select_pair(
    entries: list[JudgingCandidate],
    voted: Callable[[list[str]], list[bool]],
    rng: random.Random | None = None,
) -> tuple[JudgingCandidate, JudgingCandidate] | None:
    """Pick ``(a, b)`` from *entries*, or ``None`` if every pair is used up.

    *voted* receives a list of pair keys and returns one bool per key.
    *entries* is sorted and shuffled in place.
    """
    if len(entries) < 2:
        return None
    rng = rng or random.Random()

    entries.sort(key=lambda e: elo_deviation(e.score))
    min_deviation = elo_deviation(entries[0].score)

    low_end = 0
    for i, entry in enumerate(entries):
        if elo_deviation(entry.score) <= min_deviation + _LOW_DEVIATION_WINDOW:
            low_end = i + 1
        else:
            break

    low_pool = entries[:low_end]
    rng.shuffle(low_pool)
    entries[:low_end] = low_pool

    for candidate_a in entries[:low_end]:
        phase = get_voting_phase(elo_deviation(candidate_a.score))
        pool = get_candidate_b_pool(entries, candidate_a, phase)
        if not pool:
            continue
        rng.shuffle(pool)

        statuses = voted([pair_key(candidate_a.id, b.id) for b in pool])
        for candidate_b, already_voted in zip(pool, statuses):
            if not already_voted:
                return candidate_a, candidate_b

    return None


def randomize_sides(
    a: JudgingCandidate,
    b: JudgingCandidate,
    rng: random.Random | None = None,
) -> dict[str, JudgingCandidate]:
    rng = rng or random.Random()
    if rng.random() < 0.5:
        return {"left": b, "right": a}
    return {"left": a, "right": b}
