"""
canopy.services.challenge_store — Live & Archived Challenge Instances
======================================================================

Durable per-user challenge state.  Every method takes an open
:class:`Session`; the caller owns the transaction boundary.

Guarantees:
  - ``load`` returns exactly one instance per catalog template, seeding
    missing ones at progress 0 for the current period.  Repeated calls with
    no intervening writes return identical instances.
  - Stale daily/weekly instances are copied into ``challenge_archive`` and
    replaced by a fresh instance for the current period.  Milestones are
    never touched.
  - All writes to a live row are conditional on the state they were computed
    from, so two writers (threads or processes) can never both win.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, tzinfo

from sqlalchemy import and_, exists, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from canopy.constants import INSTANCE_ID_SEPARATOR
from canopy.database.models import (
    Achievement,
    ChallengeArchive,
    ChallengeInstance,
    ChallengeKind,
)
from canopy.engine.catalog import ChallengeCatalog, ChallengeTemplate
from canopy.engine.periods import current_period_key, needs_reset, parse_daily_key
from canopy.engine.progress import InstanceState

logger = logging.getLogger(__name__)


class ChallengeStore:
    """Per-user challenge persistence bound to a catalog and timezone."""

    def __init__(self, catalog: ChallengeCatalog, tz: tzinfo | None = None) -> None:
        self.catalog = catalog
        self.tz = tz

    # -------------------------------------------------------------------
    # Live instances
    # -------------------------------------------------------------------
    def load(self, session: Session, user_id: str, now: datetime) -> list[InstanceState]:
        """All current instances of *user_id*, in catalog order."""
        rows = {
            row.template_id: row
            for row in session.scalars(
                select(ChallengeInstance).where(ChallengeInstance.user_id == user_id)
            )
        }
        return [
            InstanceState.from_row(self._ensure_current(session, user_id, tmpl, rows.get(tmpl.id), now))
            for tmpl in self.catalog
        ]

    def resolve(
        self,
        session: Session,
        user_id: str,
        template: ChallengeTemplate,
        now: datetime,
    ) -> InstanceState:
        """The up-to-date instance of one template (seeded / rolled over)."""
        row = session.get(ChallengeInstance, (user_id, template.id))
        return InstanceState.from_row(
            self._ensure_current(session, user_id, template, row, now)
        )

    def save(self, session: Session, state: InstanceState, expected_progress: int) -> bool:
        """Write *state* if the stored row still holds *expected_progress*.

        Returns False when another writer changed the row first (or rolled
        it into a new period); the caller re-resolves and retries.
        """
        result = session.execute(
            update(ChallengeInstance)
            .where(
                ChallengeInstance.user_id == state.user_id,
                ChallengeInstance.template_id == state.template_id,
                ChallengeInstance.period_key == state.period_key,
                ChallengeInstance.progress == expected_progress,
                ChallengeInstance.completed.is_(False),
            )
            .values(
                progress=state.progress,
                completed=state.completed,
                completed_at=state.completed_at,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _ensure_current(
        self,
        session: Session,
        user_id: str,
        template: ChallengeTemplate,
        row: ChallengeInstance | None,
        now: datetime,
    ) -> ChallengeInstance:
        if row is None:
            row = self._seed(session, user_id, template, now)
        if needs_reset(template, row.period_key, now, self.tz):
            row = self._rollover(session, row, template, now)
        return row

    def _seed(
        self,
        session: Session,
        user_id: str,
        template: ChallengeTemplate,
        now: datetime,
    ) -> ChallengeInstance:
        row = ChallengeInstance(
            user_id=user_id,
            template_id=template.id,
            kind=template.kind.value,
            period_key=current_period_key(template, now, self.tz),
            progress=0,
            completed=False,
            created_at=now,
        )
        # SAVEPOINT so a concurrent seed of the same row only costs a re-read.
        try:
            with session.begin_nested():
                session.add(row)
                session.flush()
        except IntegrityError:
            winner = session.get(ChallengeInstance, (user_id, template.id), populate_existing=True)
            if winner is None:
                raise
            return winner
        logger.debug("Seeded %s for user %s", row.id, user_id)
        return row

    def _rollover(
        self,
        session: Session,
        row: ChallengeInstance,
        template: ChallengeTemplate,
        now: datetime,
    ) -> ChallengeInstance:
        """Archive *row* and restart it in the current period.

        The live row is claimed first with an update conditional on its old
        period key; only the claimant writes the archive snapshot.
        """
        old = InstanceState.from_row(row)
        new_key = current_period_key(template, now, self.tz)
        claimed = session.execute(
            update(ChallengeInstance)
            .where(
                ChallengeInstance.user_id == old.user_id,
                ChallengeInstance.template_id == old.template_id,
                ChallengeInstance.period_key == old.period_key,
            )
            .values(
                period_key=new_key,
                progress=0,
                completed=False,
                created_at=now,
                completed_at=None,
            )
            .execution_options(synchronize_session=False)
        ).rowcount == 1

        if claimed:
            try:
                with session.begin_nested():
                    session.add(ChallengeArchive(
                        user_id=old.user_id,
                        template_id=old.template_id,
                        kind=old.kind,
                        period_key=old.period_key,
                        progress=old.progress,
                        completed=old.completed,
                        created_at=old.created_at,
                        completed_at=old.completed_at,
                        archived_at=now,
                    ))
                    session.flush()
            except IntegrityError:
                logger.warning(
                    "Archive snapshot %s for user %s already exists; keeping the original",
                    old.id, old.user_id,
                )
            logger.info(
                "Rolled over %s for user %s → %s (final progress %d/%d)",
                old.id, old.user_id, new_key, old.progress, template.target,
            )

        session.refresh(row)
        return row

    # -------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------
    def archive(
        self,
        session: Session,
        user_id: str,
        template_id: str | None = None,
        limit: int | None = None,
    ) -> list[InstanceState]:
        """Archived instances of *user_id*, most recently archived first."""
        stmt = select(ChallengeArchive).where(ChallengeArchive.user_id == user_id)
        if template_id is not None:
            stmt = stmt.where(ChallengeArchive.template_id == template_id)
        stmt = stmt.order_by(
            ChallengeArchive.archived_at.desc(), ChallengeArchive.period_key.desc()
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return [InstanceState.from_row(row) for row in session.scalars(stmt)]

    def completed_daily_dates(self, session: Session, user_id: str) -> set[date]:
        """Dates with at least one completed daily instance (archive + live)."""
        archived = session.scalars(
            select(ChallengeArchive.period_key).where(
                ChallengeArchive.user_id == user_id,
                ChallengeArchive.kind == ChallengeKind.DAILY.value,
                ChallengeArchive.completed.is_(True),
            )
        ).all()
        live = session.scalars(
            select(ChallengeInstance.period_key).where(
                ChallengeInstance.user_id == user_id,
                ChallengeInstance.kind == ChallengeKind.DAILY.value,
                ChallengeInstance.completed.is_(True),
            )
        ).all()
        dates = {parse_daily_key(key) for key in [*archived, *live]}
        dates.discard(None)
        return dates

    def completed_without_achievement(
        self, session: Session, limit: int = 100
    ) -> list[InstanceState]:
        """Completed instances (live or archived) that never got an Achievement.

        This is the reward gap left behind when the ledger was unreachable.
        """
        gaps: list[InstanceState] = []
        for model in (ChallengeInstance, ChallengeArchive):
            instance_id = model.template_id.concat(INSTANCE_ID_SEPARATOR).concat(model.period_key)
            stmt = (
                select(model)
                .where(
                    model.completed.is_(True),
                    ~exists().where(and_(
                        Achievement.user_id == model.user_id,
                        Achievement.instance_id == instance_id,
                    )),
                )
                .order_by(model.completed_at)
                .limit(limit - len(gaps))
            )
            gaps.extend(InstanceState.from_row(row) for row in session.scalars(stmt))
            if len(gaps) >= limit:
                break
        return gaps
