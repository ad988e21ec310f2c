"""
tests/test_retention.py — Archive Retention Tests
==================================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from canopy.services import retention_service
from canopy.services.retention_service import get_archive_stats, prune_archive


def _roll_days(service, clock, days: int) -> None:
    for _ in range(days):
        service.apply_progress("u1", "daily-trees", 1)
        clock.advance(days=1)
    service.get_daily_challenges("u1")


def test_prune_removes_only_old_rows(service, clock, db_engine):
    _roll_days(service, clock, 5)
    assert get_archive_stats(db_engine)["total_archived"] > 0

    now = clock.now
    # five daily-trees snapshots, archived at noon on 2024-01-02 .. 2024-01-06
    report = prune_archive(db_engine, retention_days=2, now=now)
    assert report["archive_deleted"] == 2

    history = service.get_history("u1", "daily-trees")
    assert [h.period_key for h in history] == ["2024-01-05", "2024-01-04", "2024-01-03"]


def test_prune_in_batches(service, clock, db_engine, monkeypatch):
    monkeypatch.setattr(retention_service, "BATCH_SIZE", 2)
    _roll_days(service, clock, 4)
    total = get_archive_stats(db_engine)["total_archived"]

    report = prune_archive(db_engine, retention_days=1, now=clock.now + timedelta(days=30))
    assert report["archive_deleted"] == total
    assert get_archive_stats(db_engine)["total_archived"] == 0


def test_prune_rejects_non_positive_retention(db_engine):
    with pytest.raises(ValueError):
        prune_archive(db_engine, retention_days=0)


def test_stats_on_empty_archive(db_engine):
    stats = get_archive_stats(db_engine)
    assert stats == {"total_archived": 0, "oldest_archived": None, "newest_archived": None}


def test_prune_with_nothing_to_delete(db_engine):
    report = prune_archive(db_engine, 30, now=datetime(2024, 1, 1, tzinfo=UTC))
    assert report == {"archive_deleted": 0}
