"""
canopy.engine.periods — Period Keys & Rollover Decisions
=========================================================

Decides which period a recurring challenge instance belongs to and
whether a stored instance must be archived and replaced.

    daily     → calendar date       "2024-01-01"
    weekly    → ISO week            "2024-W01"
    milestone → fixed constant      "milestone"

Keys are derived from wall-clock time in the configured timezone, so a
member in Nairobi rolls over at local midnight.  Pure — no database I/O.
"""

from __future__ import annotations

from datetime import date, datetime, tzinfo

from canopy.constants import MILESTONE_PERIOD_KEY, WEEKLY_KEY_FORMAT
from canopy.database.models import ChallengeKind
from canopy.engine.catalog import ChallengeTemplate

__all__ = [
    "current_period_key",
    "local_date",
    "needs_reset",
    "parse_daily_key",
    "period_key_for",
]


def local_date(now: datetime, tz: tzinfo | None = None) -> date:
    """Calendar date of *now* in *tz* (naive datetimes are taken as-is)."""
    if tz is not None and now.tzinfo is not None:
        now = now.astimezone(tz)
    return now.date()


def period_key_for(kind: ChallengeKind | str, day: date) -> str:
    """Period key of *kind* containing *day*."""
    kind = ChallengeKind(kind)
    if kind is ChallengeKind.DAILY:
        return day.isoformat()
    if kind is ChallengeKind.WEEKLY:
        iso = day.isocalendar()
        return WEEKLY_KEY_FORMAT.format(year=iso.year, week=iso.week)
    return MILESTONE_PERIOD_KEY


def current_period_key(
    template: ChallengeTemplate, now: datetime, tz: tzinfo | None = None
) -> str:
    """Period key *template* is in at *now*."""
    return period_key_for(template.kind, local_date(now, tz))


def needs_reset(
    template: ChallengeTemplate,
    stored_period_key: str,
    now: datetime,
    tz: tzinfo | None = None,
) -> bool:
    """True when a stored recurring instance belongs to another period.

    Milestones are never reset.
    """
    if template.kind is ChallengeKind.MILESTONE:
        return False
    return stored_period_key != current_period_key(template, now, tz)


def parse_daily_key(period_key: str) -> date | None:
    """Parse a daily period key back into a date; None for other kinds."""
    try:
        return datetime.strptime(period_key, "%Y-%m-%d").date()
    except ValueError:
        return None
