"""
canopy.services.retention_service — Challenge Archive Retention
================================================================

Archive rows are kept indefinitely by default; history and streaks read
from them.  Deployments that want a horizon call :func:`prune_archive`
from their own scheduler.  Pruning shortens the history streaks can see,
so the horizon should comfortably exceed any streak worth preserving.

**Deletion is batched** so the table is never locked for long.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import Engine, delete, func, select

from canopy.database.engine import get_session
from canopy.database.models import ChallengeArchive

logger = logging.getLogger(__name__)

# How many rows to delete in each batch (avoids long-held row locks)
BATCH_SIZE = 5_000


def prune_archive(
    engine: Engine,
    retention_days: int,
    *,
    now: datetime | None = None,
) -> dict[str, int]:
    """Delete archive rows archived more than *retention_days* ago.

    Returns ``{"archive_deleted": N}``.
    """
    if retention_days <= 0:
        raise ValueError("retention_days must be positive")

    cutoff = (now or datetime.now(UTC)) - timedelta(days=retention_days)
    deleted = 0

    while True:
        with get_session(engine) as session:
            ids = session.scalars(
                select(ChallengeArchive.id)
                .where(ChallengeArchive.archived_at < cutoff)
                .limit(BATCH_SIZE)
            ).all()
            if not ids:
                break
            result = session.execute(
                delete(ChallengeArchive).where(ChallengeArchive.id.in_(ids))
            )
            deleted += result.rowcount
            logger.info(
                "Retention: deleted %d archive rows (total so far: %d)",
                result.rowcount, deleted,
            )

    logger.info(
        "Archive retention complete — %d rows removed (retention_days=%d, cutoff=%s)",
        deleted, retention_days, cutoff.isoformat(),
    )
    return {"archive_deleted": deleted}


def get_archive_stats(engine: Engine) -> dict:
    """Archive size statistics."""
    with get_session(engine) as session:
        total = session.scalar(select(func.count()).select_from(ChallengeArchive)) or 0
        oldest = session.scalar(select(func.min(ChallengeArchive.archived_at)))
        newest = session.scalar(select(func.max(ChallengeArchive.archived_at)))
    return {
        "total_archived": total,
        "oldest_archived": oldest.isoformat() if oldest else None,
        "newest_archived": newest.isoformat() if newest else None,
    }
