"""
canopy.engine.catalog — Challenge Templates & Catalog
======================================================

Static configuration of the challenges members can work on.  Templates
are immutable; adding or removing one is a configuration change
(``challenges:`` in config.yaml), never a runtime operation.

This module is pure — no database I/O.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from canopy.constants import DEFAULT_ACHIEVEMENT_ICON
from canopy.database.models import ChallengeKind
from canopy.errors import ValidationError

logger = logging.getLogger(__name__)

__all__ = ["ChallengeCatalog", "ChallengeTemplate", "DEFAULT_TEMPLATES"]


# ---------------------------------------------------------------------------
# ChallengeTemplate
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ChallengeTemplate:
    """Definition of a recurring or one-off engagement goal."""

    id: str
    title: str
    description: str
    kind: ChallengeKind
    target: int
    point_value: int
    icon: str = DEFAULT_ACHIEVEMENT_ICON

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Challenge template id must not be empty")
        object.__setattr__(self, "kind", ChallengeKind(self.kind))
        if isinstance(self.target, bool) or self.target <= 0:
            raise ValueError(f"Template {self.id!r}: target must be a positive integer")
        if isinstance(self.point_value, bool) or self.point_value <= 0:
            raise ValueError(
                f"Template {self.id!r}: point_value must be a positive integer"
            )

    @classmethod
    def from_dict(cls, raw: dict) -> ChallengeTemplate:
        """Build a template from a config.yaml ``challenges:`` entry."""
        try:
            kind = ChallengeKind(raw["kind"])
        except ValueError as exc:
            raise ValueError(
                f"Template {raw.get('id')!r}: unknown kind {raw['kind']!r}"
            ) from exc
        return cls(
            id=str(raw["id"]),
            title=raw["title"],
            description=raw.get("description", ""),
            kind=kind,
            target=int(raw["target"]),
            point_value=int(raw["point_value"]),
            icon=raw.get("icon") or DEFAULT_ACHIEVEMENT_ICON,
        )


# ---------------------------------------------------------------------------
# Built-in catalog
# ---------------------------------------------------------------------------
DEFAULT_TEMPLATES: tuple[ChallengeTemplate, ...] = (
    ChallengeTemplate(
        id="daily-trees",
        title="Plant 3 Trees",
        description="Log three tree plantings today",
        kind=ChallengeKind.DAILY,
        target=3,
        point_value=50,
        icon="\U0001f333",  # 🌳
    ),
    ChallengeTemplate(
        id="daily-discussion",
        title="Join the Conversation",
        description="Start or reply to a discussion today",
        kind=ChallengeKind.DAILY,
        target=1,
        point_value=25,
        icon="\U0001f4ac",  # 💬
    ),
    ChallengeTemplate(
        id="daily-vote",
        title="Community Voice",
        description="Vote on five discussions today",
        kind=ChallengeKind.DAILY,
        target=5,
        point_value=15,
        icon="\U0001f5f3",  # 🗳
    ),
    ChallengeTemplate(
        id="weekly-discussions",
        title="Weekly Contributor",
        description="Take part in five discussions this week",
        kind=ChallengeKind.WEEKLY,
        target=5,
        point_value=100,
        icon="\U0001f465",  # 👥
    ),
    ChallengeTemplate(
        id="milestone-100-trees",
        title="Forest Maker",
        description="Plant 100 trees",
        kind=ChallengeKind.MILESTONE,
        target=100,
        point_value=500,
        icon="\U0001f332",  # 🌲
    ),
    ChallengeTemplate(
        id="milestone-10-discussions",
        title="Community Builder",
        description="Contribute to 10 discussions",
        kind=ChallengeKind.MILESTONE,
        target=10,
        point_value=200,
        icon="\U0001f91d",  # 🤝
    ),
)


# ---------------------------------------------------------------------------
# ChallengeCatalog
# ---------------------------------------------------------------------------
class ChallengeCatalog:
    """Ordered, immutable collection of challenge templates.

    Usage::

        catalog = ChallengeCatalog()                 # built-in templates
        catalog = ChallengeCatalog.from_config(cfg)  # config.yaml override

        for tmpl in catalog.templates_of(ChallengeKind.DAILY):
            ...
        tmpl = catalog.get("daily-trees")
    """

    def __init__(self, templates: Iterable[ChallengeTemplate] = DEFAULT_TEMPLATES) -> None:
        self._templates: tuple[ChallengeTemplate, ...] = tuple(templates)
        self._by_id: dict[str, ChallengeTemplate] = {}
        for tmpl in self._templates:
            if tmpl.id in self._by_id:
                raise ValueError(f"Duplicate challenge template id: {tmpl.id!r}")
            self._by_id[tmpl.id] = tmpl

    @classmethod
    def from_config(cls, cfg) -> ChallengeCatalog:
        """Catalog from ``cfg.challenges``, or the built-in one if unset."""
        if not cfg.challenges:
            return cls()
        catalog = cls(ChallengeTemplate.from_dict(raw) for raw in cfg.challenges)
        logger.info("Challenge catalog loaded from config: %d templates", len(catalog))
        return catalog

    def templates_of(self, kind: ChallengeKind | str) -> tuple[ChallengeTemplate, ...]:
        """Templates of *kind*, in declaration order."""
        kind = ChallengeKind(kind)
        return tuple(t for t in self._templates if t.kind == kind)

    def get(self, template_id: str) -> ChallengeTemplate:
        """Look up a template; unknown ids are a :class:`ValidationError`."""
        try:
            return self._by_id[template_id]
        except KeyError:
            raise ValidationError(
                f"Unknown challenge template: {template_id!r}", code="unknown_template"
            ) from None

    def __contains__(self, template_id: object) -> bool:
        return template_id in self._by_id

    def __iter__(self) -> Iterator[ChallengeTemplate]:
        return iter(self._templates)

    def __len__(self) -> int:
        return len(self._templates)
