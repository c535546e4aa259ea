"""
atelier.engine.elo — Crucible ELO Math
=======================================

Pure rating math for pairwise crucible judging.  No Redis, no DB.

Standard ELO:
  * Expected score  ``Ea = 1 / (1 + 10 ** ((Rb - Ra) / 400))``
  * New rating      ``Ra' = Ra + K * (Sa - Ea)``

Each side of a vote uses its own K-factor: provisional entries (fewer than
ten votes) move faster than established ones.  Changes round half-up.

The authoritative update runs atomically inside Redis (see
:mod:`atelier.services.elo_store`); :func:`apply_vote` mirrors that script
so it can be tested and previewed in Python.
"""

from __future__ import annotations

from dataclasses import dataclass

from atelier.constants import (
    CRUCIBLE_DEFAULT_ELO,
    K_FACTOR_ESTABLISHED,
    K_FACTOR_PROVISIONAL,
    PROVISIONAL_VOTE_THRESHOLD,
    round_half_up,
)


@dataclass(frozen=True, slots=True)
class VoteOutcome:
    """Ratings after a single vote."""

    winner_elo: int
    loser_elo: int
    winner_change: int
    loser_change: int


def expected_score(rating: float, opponent: float) -> float:
    """Probability that *rating* beats *opponent*."""
    return 1 / (1 + 10 ** ((opponent - rating) / 400))


def get_k_factor(vote_count: int) -> int:
    if vote_count < PROVISIONAL_VOTE_THRESHOLD:
        return K_FACTOR_PROVISIONAL
    return K_FACTOR_ESTABLISHED


def estimate_elo_change(
    winner_elo: float,
    loser_elo: float,
    k_factor: int = K_FACTOR_ESTABLISHED,
) -> tuple[int, int]:
    """Preview ``(winner_change, loser_change)`` for a single shared K.

    Zero-sum: the loser loses exactly what the winner gains, so rounding
    never inflates the pool.
    """
    winner_change = round_half_up(k_factor * (1 - expected_score(winner_elo, loser_elo)))
    return winner_change, -winner_change


def apply_vote(
    winner_elo: int | None,
    loser_elo: int | None,
    winner_votes: int = 0,
    loser_votes: int = 0,
) -> VoteOutcome:
    """Apply one vote with per-entry K-factors.

    Missing ratings start at the default (1500).
    """
    w = CRUCIBLE_DEFAULT_ELO if winner_elo is None else winner_elo
    l = CRUCIBLE_DEFAULT_ELO if loser_elo is None else loser_elo  # noqa: E741

    winner_change = round_half_up(get_k_factor(winner_votes) * (1 - expected_score(w, l)))
    loser_change = round_half_up(get_k_factor(loser_votes) * (0 - expected_score(l, w)))

    return VoteOutcome(
        winner_elo=w + winner_change,
        loser_elo=l + loser_change,
        winner_change=winner_change,
        loser_change=loser_change,
    )


def elo_deviation(score: float) -> float:
    """Distance from the starting rating; a proxy for how much an entry has been judged."""
    return abs(score - CRUCIBLE_DEFAULT_ELO)
