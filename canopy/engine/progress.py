"""
canopy.engine.progress — Saturating Progress Calculation
=========================================================

Pure calculation for the per-instance state machine::

    NotStarted (progress=0) → InProgress (0<progress<target) → Completed (progress=target)

One-directional and terminal for the period.  No database I/O here; the
progress service owns locking and persistence.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import TYPE_CHECKING

from canopy.database.models import make_instance_id
from canopy.errors import ValidationError

if TYPE_CHECKING:
    from canopy.database.models import ChallengeArchive, ChallengeInstance
    from canopy.engine.achievements import AchievementRecord

__all__ = [
    "InstanceState",
    "ProgressResult",
    "ProgressStep",
    "advance",
    "validate_delta",
]


# ---------------------------------------------------------------------------
# InstanceState — detached, immutable view of a challenge instance
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class InstanceState:
    """A per-user, per-period realisation of a template."""

    user_id: str
    template_id: str
    kind: str
    period_key: str
    progress: int
    completed: bool
    created_at: datetime
    completed_at: datetime | None = None

    @property
    def id(self) -> str:
        return make_instance_id(self.template_id, self.period_key)

    @classmethod
    def from_row(cls, row: ChallengeInstance | ChallengeArchive) -> InstanceState:
        return cls(
            user_id=row.user_id,
            template_id=row.template_id,
            kind=row.kind,
            period_key=row.period_key,
            progress=row.progress,
            completed=row.completed,
            created_at=row.created_at,
            completed_at=row.completed_at,
        )

    def with_progress(self, step: ProgressStep, now: datetime) -> InstanceState:
        return replace(
            self,
            progress=step.progress,
            completed=step.completed,
            completed_at=now if step.just_completed else self.completed_at,
        )


# ---------------------------------------------------------------------------
# ProgressStep — output of one advance() call
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ProgressStep:
    progress: int
    completed: bool
    just_completed: bool

    @property
    def changed(self) -> bool:
        return self.just_completed or not self.completed


@dataclass
class ProgressResult:
    """What ``apply_progress`` reports back to the caller.

    ``reward_pending`` is True when the completion committed but the
    points ledger could not be reached; reconciliation retries the award.
    """

    instance: InstanceState
    just_completed: bool = False
    reward_pending: bool = False
    achievement: AchievementRecord | None = None


# ---------------------------------------------------------------------------
# Calculation
# ---------------------------------------------------------------------------
def validate_delta(delta: int) -> int:
    """Reject non-integer and non-positive deltas."""
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise ValidationError(f"Progress delta must be an integer, got {delta!r}")
    if delta <= 0:
        raise ValidationError(
            f"Progress delta must be positive, got {delta}", code="invalid_delta"
        )
    return delta


def advance(progress: int, target: int, completed: bool, delta: int) -> ProgressStep:
    """Apply *delta* to *progress*, saturating at *target*.

    A completed instance is terminal: the step reports no change and
    ``just_completed=False`` regardless of *delta*.
    """
    if completed:
        return ProgressStep(progress=progress, completed=True, just_completed=False)
    new_progress = min(target, progress + delta)
    done = new_progress >= target
    return ProgressStep(progress=new_progress, completed=done, just_completed=done)
