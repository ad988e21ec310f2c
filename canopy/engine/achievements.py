"""
canopy.engine.achievements — Achievement Records
=================================================

Builds the Achievement granted when a challenge instance completes.
Pure — the reward service persists what is built here.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from canopy.database.models import Achievement
    from canopy.engine.catalog import ChallengeTemplate
    from canopy.engine.progress import InstanceState


@dataclass(frozen=True, slots=True)
class AchievementRecord:
    """An earned achievement, at most one per instance completion."""

    id: str
    user_id: str
    template_id: str
    instance_id: str
    title: str
    description: str
    icon: str
    points: int
    unlocked_at: datetime

    @classmethod
    def from_row(cls, row: Achievement) -> AchievementRecord:
        return cls(
            id=row.id,
            user_id=row.user_id,
            template_id=row.template_id,
            instance_id=row.instance_id,
            title=row.title,
            description=row.description,
            icon=row.icon,
            points=row.points,
            unlocked_at=row.unlocked_at,
        )


def build_achievement(
    template: ChallengeTemplate, instance: InstanceState, now: datetime
) -> AchievementRecord:
    """Fresh achievement for a completed *instance* of *template*."""
    return AchievementRecord(
        id=uuid.uuid4().hex,
        user_id=instance.user_id,
        template_id=template.id,
        instance_id=instance.id,
        title=template.title,
        description=template.description,
        icon=template.icon,
        points=template.point_value,
        unlocked_at=now,
    )
