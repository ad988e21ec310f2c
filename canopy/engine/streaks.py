"""
canopy.engine.streaks — Engagement Streaks
===========================================

Derives consecutive-day streaks from the dates on which a member completed
at least one daily challenge (archived and live instances merged).

Rules:
  - A day counts when at least one daily instance for that date completed.
  - Today counts if completed, but an unfinished today never breaks a streak
    carried over from yesterday.  Only a fully elapsed day with no
    completion ends it.

Pure — the store supplies the completion dates.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, timedelta

__all__ = ["StreakRecord", "longest_streak", "streak_of", "streak_record"]

_ONE_DAY = timedelta(days=1)


@dataclass(frozen=True, slots=True)
class StreakRecord:
    current: int
    longest: int
    last_completed_on: date | None
    active_today: bool


def streak_of(completed_dates: Iterable[date], today: date) -> int:
    """Consecutive completed days ending today (or yesterday if today is open).

    Completions after *today* are ignored.
    """
    days = set(completed_dates)
    cursor = today if today in days else today - _ONE_DAY
    streak = 0
    while cursor in days:
        streak += 1
        cursor -= _ONE_DAY
    return streak


def longest_streak(completed_dates: Iterable[date], today: date | None = None) -> int:
    """Longest run of consecutive completed days anywhere in history."""
    days = sorted(d for d in set(completed_dates) if today is None or d <= today)
    best = run = 0
    previous: date | None = None
    for day in days:
        run = run + 1 if previous is not None and day - previous == _ONE_DAY else 1
        best = max(best, run)
        previous = day
    return best


def streak_record(completed_dates: Iterable[date], today: date) -> StreakRecord:
    days = {d for d in completed_dates if d <= today}
    return StreakRecord(
        current=streak_of(days, today),
        longest=longest_streak(days),
        last_completed_on=max(days) if days else None,
        active_today=today in days,
    )
