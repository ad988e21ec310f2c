"""
canopy.services.progress_service — Applying Progress to Challenges
===================================================================

The only writer of live challenge progress.

``apply_progress(user_id, template_id, delta)``:
  1. Validate the template and delta (no state touched on failure).
  2. Under the per-key lock, resolve the up-to-date instance (seeding or
     rolling it over as needed) and commit the step.
  3. Completed already → return it unchanged, ``just_completed=False``.
  4. Otherwise ``progress = min(target, progress + delta)`` and commit with
     a write conditional on the prior progress.
  5. After the lock is released, dispatch the reward on the completion
     transition.  A ledger failure of any kind is a warning: the completion stays committed and reconciliation
     retries the award.
  6. Notify post-commit subscribers.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime
from threading import Lock

from sqlalchemy import Engine
from sqlalchemy.exc import SQLAlchemyError

from canopy.constants import DEFAULT_ACTIVITY_MAP, MAX_WRITE_ATTEMPTS
from canopy.database.engine import get_session
from canopy.engine.catalog import ChallengeTemplate
from canopy.engine.events import ActivityEvent, ChallengeTransition
from canopy.engine.locks import KeyedLocks
from canopy.engine.progress import (
    InstanceState,
    ProgressResult,
    ProgressStep,
    advance,
    validate_delta,
)
from canopy.errors import PersistenceError, RewardDispatchError, ValidationError
from canopy.services.challenge_store import ChallengeStore
from canopy.services.reward_service import RewardDispatcher

logger = logging.getLogger(__name__)

Subscriber = Callable[[ChallengeTransition], None]


class ProgressEngine:
    """Applies activity-driven progress under the cap and exactly-once rules.

    Parameters
    ----------
    engine : SQLAlchemy engine holding challenge state.
    store : ChallengeStore bound to the catalog.
    dispatcher : RewardDispatcher invoked on completion transitions.
    activity_map : activity type → template ids, for ``record_activity``.
        Defaults to the built-in map restricted to the catalog; an explicit
        map naming an id outside the catalog is a ``ValueError``.
    clock : returns the current time; injectable for tests.
    """

    def __init__(
        self,
        engine: Engine,
        store: ChallengeStore,
        dispatcher: RewardDispatcher,
        *,
        activity_map: Mapping[str, Iterable[str]] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._engine = engine
        self.store = store
        self.dispatcher = dispatcher
        if activity_map is None:
            # built-in map, narrowed to the templates this catalog carries
            activity_map = {
                activity: [tid for tid in ids if tid in store.catalog]
                for activity, ids in DEFAULT_ACTIVITY_MAP.items()
            }
            activity_map = {a: ids for a, ids in activity_map.items() if ids}
        else:
            unknown = sorted({
                tid for ids in activity_map.values() for tid in ids
                if tid not in store.catalog
            })
            if unknown:
                raise ValueError(
                    f"activity_map names unknown challenge templates: {unknown}"
                )
        self.activity_map = {activity: tuple(ids) for activity, ids in activity_map.items()}
        self._clock = clock or (lambda: datetime.now(UTC))
        self._locks = KeyedLocks()
        self._subscribers: list[Subscriber] = []
        self._subscribers_lock = Lock()

    # -------------------------------------------------------------------
    # Post-commit notification hook
    # -------------------------------------------------------------------
    def subscribe(self, callback: Subscriber) -> None:
        with self._subscribers_lock:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        with self._subscribers_lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def _notify(self, transition: ChallengeTransition) -> None:
        with self._subscribers_lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(transition)
            except Exception:
                logger.exception(
                    "Progress subscriber %r failed for %s", callback, transition.instance.id
                )

    # -------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------
    def apply_progress(self, user_id: str, template_id: str, delta: int) -> ProgressResult:
        """Advance *template_id* for *user_id* by *delta* (saturating).

        Raises
        ------
        ValidationError
            Unknown template or ``delta <= 0``.
        PersistenceError
            The store could not be read or written; progress did not advance.
        """
        template = self.store.catalog.get(template_id)
        validate_delta(delta)
        return self._apply(user_id, template, delta)

    def complete_challenge(self, user_id: str, template_id: str) -> ProgressResult:
        """Advance straight to the target (``delta = target - progress``).

        The caller vouches that completion was earned.
        """
        template = self.store.catalog.get(template_id)
        return self._apply(user_id, template, None)

    def record_activity(
        self, user_id: str, activity_type: str, delta: int = 1
    ) -> list[ProgressResult]:
        """Apply *delta* to every template mapped to *activity_type*."""
        template_ids = self.activity_map.get(activity_type)
        if template_ids is None:
            raise ValidationError(
                f"Unknown activity type: {activity_type!r}", code="unknown_activity"
            )
        validate_delta(delta)
        templates = [self.store.catalog.get(tid) for tid in template_ids]
        return [self._apply(user_id, tmpl, delta) for tmpl in templates]

    def handle(self, event: ActivityEvent) -> list[ProgressResult]:
        """Entry point for collaborator-produced activity events."""
        if event.template_id is not None:
            return [self.apply_progress(event.user_id, event.template_id, event.delta)]
        return self.record_activity(event.user_id, event.activity_type, event.delta)

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------
    def _apply(
        self, user_id: str, template: ChallengeTemplate, delta: int | None
    ) -> ProgressResult:
        with self._locks.hold((user_id, template.id)):
            state, step, now = self._commit(user_id, template, delta)
            result = ProgressResult(instance=state, just_completed=step.just_completed)

        # Dispatch runs outside the key lock; the idempotency key covers retries.
        if step.just_completed:
            logger.info("Challenge completed: %s by user %s", state.id, user_id)
            self._reward(result, template)

        if step.changed:
            self._notify(ChallengeTransition(
                user_id=user_id,
                instance=state,
                just_completed=step.just_completed,
                occurred_at=now,
            ))
        return result

    def _commit(
        self, user_id: str, template: ChallengeTemplate, delta: int | None
    ) -> tuple[InstanceState, ProgressStep, datetime]:
        """Read-modify-write one instance; committed before returning."""
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            now = self._clock()
            try:
                with get_session(self._engine) as session:
                    current = self.store.resolve(session, user_id, template, now)
                    step_delta = delta if delta is not None else template.target - current.progress
                    step = advance(current.progress, template.target, current.completed, step_delta)
                    if not step.changed:
                        return current, step, now

                    updated = current.with_progress(step, now)
                    if self.store.save(session, updated, expected_progress=current.progress):
                        return updated, step, now
            except SQLAlchemyError as exc:
                raise PersistenceError(
                    f"Could not persist progress for {template.id} (user {user_id}): {exc}"
                ) from exc

            logger.warning(
                "Concurrent write on %s for user %s (attempt %d/%d) — retrying",
                template.id, user_id, attempt, MAX_WRITE_ATTEMPTS,
            )

        raise PersistenceError(
            f"Gave up on {template.id} for user {user_id} after "
            f"{MAX_WRITE_ATTEMPTS} conflicting writes"
        )

    def _reward(self, result: ProgressResult, template: ChallengeTemplate) -> None:
        try:
            result.achievement = self.dispatcher.dispatch(result.instance, template)
        except RewardDispatchError as exc:
            result.reward_pending = True
            logger.warning(
                "Reward for %s (user %s) is pending reconciliation: %s",
                result.instance.id, result.instance.user_id, exc,
            )
