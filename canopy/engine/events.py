"""
canopy.engine.events — ActivityEvent and ChallengeTransition
=============================================================

``ActivityEvent`` is the inbound envelope produced by collaborators
(discussions, votes, events, tree logging).  ``ChallengeTransition`` is
what post-commit subscribers receive after every committed progress change.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from canopy.engine.progress import InstanceState

__all__ = ["ActivityEvent", "ChallengeTransition"]


@dataclass(frozen=True, slots=True)
class ActivityEvent:
    """A reported unit of progress.

    Exactly one of ``template_id`` / ``activity_type`` is set; an activity
    type is mapped to templates through the configured activity map.
    """

    user_id: str
    delta: int = 1
    template_id: str | None = None
    activity_type: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        if (self.template_id is None) == (self.activity_type is None):
            raise ValueError("ActivityEvent needs exactly one of template_id / activity_type")


@dataclass(frozen=True, slots=True)
class ChallengeTransition:
    """A committed change to one challenge instance."""

    user_id: str
    instance: InstanceState
    just_completed: bool
    occurred_at: datetime
