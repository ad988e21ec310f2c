"""
canopy.services.reward_service — Points Ledgers & Reward Dispatch
==================================================================

Turns a challenge completion into points and an Achievement.

The completion itself is already committed when the dispatcher runs, so
the two steps here are deliberately separate commits:

  1. ``ledger.award(user_id, points, idempotency_key=instance.id)``;
     retried or duplicated calls never double-award.
  2. Insert the Achievement row, unique per ``(user_id, instance_id)``,
     so a second insert resolves to the existing record.

If either step fails the instance stays completed with no Achievement,
a gap :mod:`canopy.services.reconciliation_service` finds and re-dispatches.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable

import httpx
from sqlalchemy import Engine, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from canopy.database.engine import get_session
from canopy.database.models import Achievement, PointsLedgerEntry
from canopy.engine.achievements import AchievementRecord, build_achievement
from canopy.engine.catalog import ChallengeTemplate
from canopy.engine.progress import InstanceState
from canopy.errors import PersistenceError, RewardDispatchError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Outbound ledger interface
# ---------------------------------------------------------------------------
@runtime_checkable
class PointsLedger(Protocol):
    """External system of record for points."""

    def award(self, user_id: str, amount: int, idempotency_key: str) -> bool:
        """Credit *amount* points once per *idempotency_key*.

        Returns True on success (including an already-applied key).
        Implementations should raise :class:`RewardDispatchError` when the
        award cannot be made; the dispatcher converts any other exception
        into one.
        """
        ...


class SqlPointsLedger:
    """Ledger kept in the ``points_ledger`` table of the engine database."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def award(self, user_id: str, amount: int, idempotency_key: str) -> bool:
        try:
            with get_session(self._engine) as session:
                session.add(PointsLedgerEntry(
                    user_id=user_id,
                    amount=amount,
                    idempotency_key=idempotency_key,
                ))
        except IntegrityError:
            logger.info(
                "Ledger: key %s already applied for user %s — not re-awarding",
                idempotency_key, user_id,
            )
            return True
        except SQLAlchemyError as exc:
            raise RewardDispatchError(
                f"Points ledger write failed: {exc}",
                user_id=user_id,
                idempotency_key=idempotency_key,
            ) from exc
        logger.info("Ledger: +%d points to user %s (%s)", amount, user_id, idempotency_key)
        return True

    def balance(self, user_id: str) -> int:
        with Session(self._engine) as session:
            total = session.scalar(
                select(func.coalesce(func.sum(PointsLedgerEntry.amount), 0)).where(
                    PointsLedgerEntry.user_id == user_id
                )
            )
            return int(total or 0)


class HttpPointsLedger:
    """Ledger reached over HTTP.

    ``POST {base_url}/awards`` with the idempotency key in both the JSON
    body and the ``Idempotency-Key`` header.  2xx and 409 (key already
    applied) count as success.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(
            timeout=timeout, transport=httpx.HTTPTransport(retries=1)
        )

    def award(self, user_id: str, amount: int, idempotency_key: str) -> bool:
        try:
            resp = self._client.post(
                f"{self.base_url}/awards",
                json={
                    "user_id": user_id,
                    "amount": amount,
                    "idempotency_key": idempotency_key,
                },
                headers={"Idempotency-Key": idempotency_key},
            )
        except httpx.HTTPError as exc:
            raise RewardDispatchError(
                f"Points ledger unreachable: {exc}",
                user_id=user_id,
                idempotency_key=idempotency_key,
            ) from exc

        if resp.is_success or resp.status_code == 409:
            return True
        raise RewardDispatchError(
            f"Points ledger rejected award ({resp.status_code}): {resp.text[:200]}",
            user_id=user_id,
            idempotency_key=idempotency_key,
        )

    def balance(self, user_id: str) -> int:
        try:
            resp = self._client.get(f"{self.base_url}/balances/{user_id}")
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise RewardDispatchError(
                f"Points ledger unreachable: {exc}", user_id=user_id
            ) from exc
        return int(resp.json().get("balance", 0))

    def close(self) -> None:
        self._client.close()


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------
class RewardDispatcher:
    """Issues the points award and records the Achievement for a completion."""

    def __init__(self, engine: Engine, ledger: PointsLedger, clock=None) -> None:
        self._engine = engine
        self.ledger = ledger
        self._clock = clock or (lambda: datetime.now(UTC))

    def dispatch(
        self, instance: InstanceState, template: ChallengeTemplate
    ) -> AchievementRecord:
        """Award *template*'s points for *instance* and record the Achievement.

        Idempotent: calling it again for the same instance neither awards
        twice nor creates a second Achievement.

        Raises
        ------
        RewardDispatchError
            If the ledger failed or the Achievement could not be written.
        """
        if not instance.completed:
            raise ValueError(f"Instance {instance.id} is not completed")

        try:
            ok = self.ledger.award(
                instance.user_id, template.point_value, idempotency_key=instance.id
            )
        except RewardDispatchError:
            raise
        except Exception as exc:
            raise RewardDispatchError(
                f"Points ledger failed for {instance.id}: {exc!r}",
                user_id=instance.user_id,
                idempotency_key=instance.id,
            ) from exc
        if not ok:
            raise RewardDispatchError(
                f"Points ledger declined award for {instance.id}",
                user_id=instance.user_id,
                idempotency_key=instance.id,
            )

        record = build_achievement(template, instance, self._clock())
        try:
            with get_session(self._engine) as session:
                session.add(Achievement(
                    id=record.id,
                    user_id=record.user_id,
                    template_id=record.template_id,
                    instance_id=record.instance_id,
                    title=record.title,
                    description=record.description,
                    icon=record.icon,
                    points=record.points,
                    unlocked_at=record.unlocked_at,
                ))
        except IntegrityError as exc:
            try:
                existing = self._existing(instance)
            except SQLAlchemyError:
                existing = None
            if existing is None:
                raise RewardDispatchError(
                    f"Achievement for {instance.id} conflicted but was not found: {exc}",
                    user_id=instance.user_id,
                    idempotency_key=instance.id,
                ) from exc
            logger.info("Achievement for %s already recorded", instance.id)
            return existing
        except SQLAlchemyError as exc:
            raise RewardDispatchError(
                f"Achievement for {instance.id} could not be recorded: {exc}",
                user_id=instance.user_id,
                idempotency_key=instance.id,
            ) from exc

        logger.info(
            "Achievement unlocked: %s (+%d) for user %s",
            record.title, record.points, record.user_id,
        )
        return record

    def _existing(self, instance: InstanceState) -> AchievementRecord | None:
        with Session(self._engine) as session:
            row = session.scalar(
                select(Achievement).where(
                    Achievement.user_id == instance.user_id,
                    Achievement.instance_id == instance.id,
                )
            )
            return AchievementRecord.from_row(row) if row else None


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def list_achievements(session: Session, user_id: str) -> list[AchievementRecord]:
    """Achievements of *user_id*, most recent first."""
    try:
        rows = session.scalars(
            select(Achievement)
            .where(Achievement.user_id == user_id)
            .order_by(Achievement.unlocked_at.desc(), Achievement.id)
        ).all()
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Could not read achievements: {exc}") from exc
    return [AchievementRecord.from_row(row) for row in rows]
