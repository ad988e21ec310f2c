"""
canopy.database.models — SQLAlchemy 2.0 Data Models
====================================================

Tables:
- challenge_instances — Live per-user challenge state (one row per template)
- challenge_archive   — Immutable snapshots of rolled-over daily/weekly instances
- achievements        — Earned achievements, at most one per instance completion
- points_ledger       — Idempotent point awards (local ledger implementation)
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from canopy.constants import INSTANCE_ID_SEPARATOR


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Canopy ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class ChallengeKind(enum.StrEnum):
    """Recurrence cadence of a challenge template."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MILESTONE = "milestone"


def make_instance_id(template_id: str, period_key: str) -> str:
    """Instance id — also the reward idempotency key."""
    return f"{template_id}{INSTANCE_ID_SEPARATOR}{period_key}"


# ---------------------------------------------------------------------------
# ChallengeInstance — live state, one row per (user, template)
# ---------------------------------------------------------------------------
class ChallengeInstance(Base):
    __tablename__ = "challenge_instances"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    template_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    period_key: Mapped[str] = mapped_column(String(16), nullable=False)
    progress: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_challenge_instances_completed", "completed"),
    )

    @property
    def id(self) -> str:
        return make_instance_id(self.template_id, self.period_key)

    def __repr__(self) -> str:
        return (
            f"<ChallengeInstance user={self.user_id!r} id={self.id!r} "
            f"progress={self.progress} completed={self.completed}>"
        )


# ---------------------------------------------------------------------------
# ChallengeArchive — rolled-over daily/weekly instances (read-only)
# ---------------------------------------------------------------------------
class ChallengeArchive(Base):
    """Snapshot of a recurring instance taken when its period ended.

    Rows are written once by the rollover and never updated.  Retained for
    history and streaks until a retention policy prunes them.
    """
    __tablename__ = "challenge_archive"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    template_id: Mapped[str] = mapped_column(String(64), nullable=False)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    period_key: Mapped[str] = mapped_column(String(16), nullable=False)
    progress: Mapped[int] = mapped_column(Integer, nullable=False)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    archived_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id", "template_id", "period_key",
            name="uq_challenge_archive_user_template_period",
        ),
        Index("ix_challenge_archive_user_kind", "user_id", "kind"),
        Index("ix_challenge_archive_archived_at", "archived_at"),
    )

    @property
    def instance_id(self) -> str:
        return make_instance_id(self.template_id, self.period_key)

    def __repr__(self) -> str:
        return (
            f"<ChallengeArchive user={self.user_id!r} id={self.instance_id!r} "
            f"progress={self.progress} completed={self.completed}>"
        )


# ---------------------------------------------------------------------------
# Achievement — earned record, at most once per instance completion
# ---------------------------------------------------------------------------
class Achievement(Base):
    __tablename__ = "achievements"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    template_id: Mapped[str] = mapped_column(String(64), nullable=False)
    instance_id: Mapped[str] = mapped_column(String(96), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(String(500), default="")
    icon: Mapped[str] = mapped_column(String(16), default="")
    points: Mapped[int] = mapped_column(Integer, default=0)
    unlocked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("user_id", "instance_id", name="uq_achievements_user_instance"),
        Index("ix_achievements_user_unlocked", "user_id", "unlocked_at"),
    )

    def __repr__(self) -> str:
        return f"<Achievement id={self.id!r} user={self.user_id!r} instance={self.instance_id!r}>"


# ---------------------------------------------------------------------------
# PointsLedgerEntry — local points ledger with idempotent inserts
# ---------------------------------------------------------------------------
class PointsLedgerEntry(Base):
    __tablename__ = "points_ledger"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id", "idempotency_key", name="uq_points_ledger_user_key"
        ),
    )

    def __repr__(self) -> str:
        return f"<PointsLedgerEntry user={self.user_id!r} amount={self.amount} key={self.idempotency_key!r}>"
