"""
Withdrawal schedule shared by the borrow and sell engines.

Both strategies must fund exactly the same spending, so every engine asks
this module for the year's amount instead of computing it locally.
"""

import numpy as np
from typing import Sequence
from bbdsim.config import WithdrawalChapter, WithdrawalSchedule


def chapter_multiplier(chapters: Sequence[WithdrawalChapter], year: int, start_year: int = 0) -> float:
    """
    Cumulative spending multiplier from withdrawal chapters.

    Reductions compound: a 25% cut followed by another 25% cut leaves
    0.75 * 0.75 = 0.5625 of the base withdrawal, not 0.50.

    Args:
        chapters: Chapter definitions (any order)
        year: Simulation year (0-indexed)
        start_year: Year withdrawals begin; chapter offsets count from here

    Returns:
        Multiplier in [0, 1]
    """
    elapsed = year - start_year
    multiplier = 1.0
    for chapter in chapters:
        if elapsed >= chapter.years_after_start:
            multiplier *= (1.0 - chapter.reduction)
    return max(0.0, multiplier)


def withdrawal_for_year(schedule: WithdrawalSchedule, year: int) -> float:
    """Escalated, chapter-reduced withdrawal for simulation year `year` (0-indexed)."""
    if year < schedule.start_year or schedule.annual_amount <= 0:
        return 0.0
    years_withdrawing = year - schedule.start_year
    base = schedule.annual_amount * (1 + schedule.annual_raise) ** years_withdrawing
    return base * chapter_multiplier(schedule.chapters, year, schedule.start_year)


def withdrawal_schedule(schedule: WithdrawalSchedule, horizon: int) -> np.ndarray:
    """Withdrawal amount for each simulation year 0..horizon-1."""
    return np.array([withdrawal_for_year(schedule, year) for year in range(horizon)], dtype=float)


def cumulative_withdrawals(schedule: WithdrawalSchedule, horizon: int) -> np.ndarray:
    """Running total of withdrawals through the end of each year."""
    return np.cumsum(withdrawal_schedule(schedule, horizon))
