"""
canopy.services.challenge_service — Challenge Query Surface
============================================================

The synchronous request/response API other collaborators (HTTP routes,
discussion and event services) call.  Owns the handles to the store,
progress engine and reward dispatcher; nothing here is a global.

Usage::

    service = ChallengeService(engine, ChallengeCatalog(), SqlPointsLedger(engine))
    service.apply_progress("user-1", "daily-trees", 1)
    service.get_daily_challenges("user-1")
    service.get_streak("user-1")
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, date, datetime, tzinfo

from sqlalchemy import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from canopy.config import CanopyConfig
from canopy.database.engine import get_session
from canopy.database.models import ChallengeKind
from canopy.engine.achievements import AchievementRecord
from canopy.engine.catalog import ChallengeCatalog, ChallengeTemplate
from canopy.engine.periods import local_date
from canopy.engine.progress import InstanceState, ProgressResult
from canopy.engine.streaks import StreakRecord, streak_record
from canopy.errors import PersistenceError
from canopy.services.challenge_store import ChallengeStore
from canopy.services.progress_service import ProgressEngine, Subscriber
from canopy.services.reward_service import PointsLedger, RewardDispatcher, list_achievements

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ChallengeView:
    """A template paired with the member's current instance of it."""

    template: ChallengeTemplate
    instance: InstanceState


class ChallengeService:
    def __init__(
        self,
        engine: Engine,
        catalog: ChallengeCatalog,
        ledger: PointsLedger,
        *,
        tz: tzinfo | None = None,
        activity_map: dict[str, tuple[str, ...]] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.engine = engine
        self.catalog = catalog
        self.ledger = ledger
        self.tz = tz
        self._clock = clock or (lambda: datetime.now(UTC))
        self.store = ChallengeStore(catalog, tz)
        self.dispatcher = RewardDispatcher(engine, ledger, clock=self._clock)
        self.progress = ProgressEngine(
            engine,
            self.store,
            self.dispatcher,
            activity_map=activity_map,
            clock=self._clock,
        )

    @classmethod
    def from_config(
        cls, engine: Engine, cfg: CanopyConfig, ledger: PointsLedger, **kwargs
    ) -> ChallengeService:
        return cls(
            engine,
            ChallengeCatalog.from_config(cfg),
            ledger,
            tz=cfg.tzinfo,
            activity_map=cfg.activity_map,
            **kwargs,
        )

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    def get_challenges(self, user_id: str, kind: ChallengeKind | str) -> list[ChallengeView]:
        """Current instances of every template of *kind*, in catalog order."""
        kind = ChallengeKind(kind)
        now = self._clock()
        try:
            with get_session(self.engine) as session:
                instances = self.store.load(session, user_id, now)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not load challenges for {user_id}: {exc}") from exc

        return [
            ChallengeView(template=tmpl, instance=inst)
            for tmpl, inst in zip(self.catalog, instances, strict=True)
            if tmpl.kind is kind
        ]

    def get_daily_challenges(self, user_id: str) -> list[ChallengeView]:
        return self.get_challenges(user_id, ChallengeKind.DAILY)

    def get_weekly_challenges(self, user_id: str) -> list[ChallengeView]:
        return self.get_challenges(user_id, ChallengeKind.WEEKLY)

    def get_milestones(self, user_id: str) -> list[ChallengeView]:
        return self.get_challenges(user_id, ChallengeKind.MILESTONE)

    def get_achievements(self, user_id: str) -> list[AchievementRecord]:
        with Session(self.engine) as session:
            return list_achievements(session, user_id)

    def get_streak(self, user_id: str, today: date | None = None) -> int:
        """Consecutive days (ending today) with a completed daily challenge."""
        return self.get_streak_record(user_id, today).current

    def get_streak_record(self, user_id: str, today: date | None = None) -> StreakRecord:
        today = today or local_date(self._clock(), self.tz)
        try:
            with Session(self.engine) as session:
                dates = self.store.completed_daily_dates(session, user_id)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not read streak history for {user_id}: {exc}") from exc
        return streak_record(dates, today)

    def get_history(
        self, user_id: str, template_id: str | None = None, limit: int = 50
    ) -> list[InstanceState]:
        """Archived (past-period) instances, most recent first."""
        if template_id is not None:
            self.catalog.get(template_id)
        try:
            with Session(self.engine) as session:
                return self.store.archive(session, user_id, template_id, limit=limit)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not read history for {user_id}: {exc}") from exc

    def get_points(self, user_id: str) -> int | None:
        """Ledger balance, or None when the ledger cannot report one."""
        balance = getattr(self.ledger, "balance", None)
        if balance is None:
            return None
        return balance(user_id)

    # -------------------------------------------------------------------
    # Progress
    # -------------------------------------------------------------------
    def apply_progress(self, user_id: str, template_id: str, delta: int) -> ProgressResult:
        return self.progress.apply_progress(user_id, template_id, delta)

    def complete_challenge(self, user_id: str, template_id: str) -> ProgressResult:
        return self.progress.complete_challenge(user_id, template_id)

    def record_activity(
        self, user_id: str, activity_type: str, delta: int = 1
    ) -> list[ProgressResult]:
        return self.progress.record_activity(user_id, activity_type, delta)

    def subscribe(self, callback: Subscriber) -> None:
        self.progress.subscribe(callback)
