"""
tally.engine.levels — Level Ladder Math
========================================

Pure helpers over the ``levels`` ladder.  The ladder is passed in as a list
of ``(level_number, required_reward_amount)`` pairs (or ORM rows exposing
those attributes), so callers decide how it is loaded and cached.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol


class LadderRung(Protocol):
    level_number: int
    required_reward_amount: int


@dataclass(frozen=True, slots=True)
class LevelProgress:
    current_level_reward: int
    next_level_reward: int
    progress: int
    progress_percentage: float


def level_for_total(ladder: Iterable[LadderRung], total_reward: int) -> int:
    """Highest level whose requirement is ≤ *total_reward*; 1 if none."""
    qualifying = [
        rung.level_number
        for rung in ladder
        if rung.required_reward_amount <= total_reward
    ]
    return max(qualifying, default=1)


def calculate_progress(
    ladder: Iterable[LadderRung],
    total_reward: int,
    current_level: int,
) -> LevelProgress:
    """How far *total_reward* is between *current_level* and the next rung.

    At the top of the ladder progress is reported as 100%.
    """
    by_number = {rung.level_number: rung.required_reward_amount for rung in ladder}
    if current_level not in by_number:
        return LevelProgress(0, 0, 0, 0.0)

    current_req = by_number[current_level]
    next_req = by_number.get(current_level + 1)
    progress = total_reward - current_req
    if next_req is None or next_req <= current_req:
        return LevelProgress(current_req, current_req, progress, 100.0)

    pct = min(progress / (next_req - current_req) * 100, 100.0)
    return LevelProgress(current_req, next_req, progress, pct)
