"""
canopy.services.reconciliation_service — Reward Reconciliation
===============================================================

Finds completed challenge instances that never got their Achievement
(the gap left when the points ledger was unreachable at completion time)
and re-dispatches them.

How it works:
    1. Select completed instances (live and archived) with no matching
       ``achievements`` row, oldest completion first.
    2. Re-dispatch each through :class:`RewardDispatcher`.  The ledger
       idempotency key is the instance id, so an award that did reach the
       ledger before is acknowledged, not repeated.
    3. Log the outcome for audit.

:class:`RewardReconciler` runs this periodically on the event loop.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime

from sqlalchemy import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from canopy.database.engine import run_db
from canopy.errors import PersistenceError, RewardDispatchError
from canopy.services.challenge_store import ChallengeStore
from canopy.services.reward_service import RewardDispatcher

logger = logging.getLogger(__name__)


def reconcile_rewards(
    engine: Engine,
    store: ChallengeStore,
    dispatcher: RewardDispatcher,
    limit: int = 100,
) -> dict:
    """Re-dispatch rewards for completed instances lacking an Achievement.

    Returns ``{"checked": N, "dispatched": M, "failed": K, "skipped": S,
    "timestamp": ...}``.  Instances whose template is no longer in the
    catalog are skipped.
    """
    try:
        with Session(engine) as session:
            gaps = store.completed_without_achievement(session, limit=limit)
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Could not scan for reward gaps: {exc}") from exc

    dispatched = failed = skipped = 0
    for instance in gaps:
        if instance.template_id not in store.catalog:
            skipped += 1
            logger.warning(
                "Reconciliation: %s for user %s has no template in the catalog — skipped",
                instance.id, instance.user_id,
            )
            continue
        template = store.catalog.get(instance.template_id)
        try:
            dispatcher.dispatch(instance, template)
        except RewardDispatchError as exc:
            failed += 1
            logger.warning(
                "Reconciliation: reward for %s (user %s) still pending: %s",
                instance.id, instance.user_id, exc,
            )
        else:
            dispatched += 1

    if gaps:
        logger.warning(
            "Reward reconciliation: %d gaps found, %d dispatched, %d failed, %d skipped",
            len(gaps), dispatched, failed, skipped,
        )
    else:
        logger.info("Reward reconciliation: no gaps")

    return {
        "checked": len(gaps),
        "dispatched": dispatched,
        "failed": failed,
        "skipped": skipped,
        "timestamp": datetime.now(UTC).isoformat(),
    }


class RewardReconciler:
    """Background task running :func:`reconcile_rewards` every *interval* seconds."""

    def __init__(
        self,
        engine: Engine,
        store: ChallengeStore,
        dispatcher: RewardDispatcher,
        *,
        interval: float = 300,
        batch_size: int = 100,
    ) -> None:
        self._engine = engine
        self._store = store
        self._dispatcher = dispatcher
        self.interval = interval
        self.batch_size = batch_size
        self._task: asyncio.Task | None = None

    async def run_once(self) -> dict:
        return await run_db(
            reconcile_rewards,
            self._engine,
            self._store,
            self._dispatcher,
            self.batch_size,
        )

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        """Start the background reconciliation task."""
        if self._task is not None:
            return

        async def _loop() -> None:
            while True:
                await asyncio.sleep(self.interval)
                try:
                    await self.run_once()
                except Exception:
                    logger.exception("Reward reconciliation error")

        self._task = loop.create_task(_loop(), name="reward-reconcile")

    def stop(self) -> None:
        """Cancel the background task."""
        if self._task:
            self._task.cancel()
            self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
