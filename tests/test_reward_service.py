"""
tests/test_reward_service.py — Reward Service Integration Tests
================================================================

Points ledgers (SQL and HTTP) and the reward dispatcher: idempotent
awards, exactly-once Achievements, and ledger failure handling.

Uses an in-memory SQLite database via the shared conftest fixtures and
``httpx.MockTransport`` for the HTTP ledger.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from unittest.mock import patch

import httpx
import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from canopy.database.models import Achievement
from canopy.engine.progress import InstanceState
from canopy.errors import RewardDispatchError
from canopy.services.challenge_service import ChallengeService
from canopy.services.reconciliation_service import reconcile_rewards
from canopy.services.reward_service import (
    HttpPointsLedger,
    PointsLedger,
    RewardDispatcher,
    SqlPointsLedger,
)

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


def _completed(template_id="daily-trees", period_key="2024-01-01", user_id="u1"):
    return InstanceState(
        user_id=user_id,
        template_id=template_id,
        kind="daily",
        period_key=period_key,
        progress=3,
        completed=True,
        created_at=NOW,
        completed_at=NOW,
    )


# ===========================================================================
# SqlPointsLedger
# ===========================================================================
class TestSqlPointsLedger:
    def test_award_and_balance(self, db_engine):
        ledger = SqlPointsLedger(db_engine)
        assert ledger.award("u1", 50, "daily-trees:2024-01-01")
        assert ledger.award("u1", 25, "daily-discussion:2024-01-01")
        assert ledger.balance("u1") == 75
        assert ledger.balance("u2") == 0

    def test_same_key_is_not_awarded_twice(self, db_engine):
        ledger = SqlPointsLedger(db_engine)
        assert ledger.award("u1", 50, "daily-trees:2024-01-01")
        assert ledger.award("u1", 50, "daily-trees:2024-01-01")
        assert ledger.balance("u1") == 50

    def test_keys_are_scoped_per_user(self, db_engine):
        ledger = SqlPointsLedger(db_engine)
        ledger.award("u1", 50, "daily-trees:2024-01-01")
        ledger.award("u2", 50, "daily-trees:2024-01-01")
        assert ledger.balance("u2") == 50

    def test_satisfies_protocol(self, db_engine):
        assert isinstance(SqlPointsLedger(db_engine), PointsLedger)


# ===========================================================================
# HttpPointsLedger
# ===========================================================================
class TestHttpPointsLedger:
    def _ledger(self, handler) -> HttpPointsLedger:
        client = httpx.Client(transport=httpx.MockTransport(handler))
        return HttpPointsLedger("https://points.example/api/", client=client)

    def test_award_posts_idempotency_key(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"ok": True})

        ledger = self._ledger(handler)
        assert ledger.award("u1", 50, "daily-trees:2024-01-01")

        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == "https://points.example/api/awards"
        assert request.headers["Idempotency-Key"] == "daily-trees:2024-01-01"
        assert json.loads(request.content) == {
            "user_id": "u1", "amount": 50, "idempotency_key": "daily-trees:2024-01-01",
        }

    def test_conflict_means_already_applied(self):
        ledger = self._ledger(lambda request: httpx.Response(409))
        assert ledger.award("u1", 50, "k")

    def test_server_error_raises(self):
        ledger = self._ledger(lambda request: httpx.Response(500, text="boom"))
        with pytest.raises(RewardDispatchError) as exc_info:
            ledger.award("u1", 50, "k")
        assert exc_info.value.idempotency_key == "k"

    def test_unreachable_raises(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(RewardDispatchError):
            self._ledger(handler).award("u1", 50, "k")

    def test_balance(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/balances/u1"
            return httpx.Response(200, json={"balance": 125})

        assert self._ledger(handler).balance("u1") == 125


# ===========================================================================
# RewardDispatcher
# ===========================================================================
class TestRewardDispatcher:
    def test_dispatch_awards_and_records(self, db_engine, catalog, ledger):
        dispatcher = RewardDispatcher(db_engine, ledger, clock=lambda: NOW)
        record = dispatcher.dispatch(_completed(), catalog.get("daily-trees"))

        assert ledger.calls == [("u1", 50, "daily-trees:2024-01-01")]
        assert record.instance_id == "daily-trees:2024-01-01"
        assert record.points == 50

    def test_dispatch_twice_is_idempotent(self, db_engine, catalog, ledger):
        dispatcher = RewardDispatcher(db_engine, ledger, clock=lambda: NOW)
        first = dispatcher.dispatch(_completed(), catalog.get("daily-trees"))
        second = dispatcher.dispatch(_completed(), catalog.get("daily-trees"))

        assert second.id == first.id
        assert ledger.balance("u1") == 50
        with Session(db_engine) as session:
            count = session.scalar(select(func.count()).select_from(Achievement))
        assert count == 1

    def test_ledger_failure_records_nothing(self, db_engine, catalog, ledger):
        ledger.fail = True
        dispatcher = RewardDispatcher(db_engine, ledger)
        with pytest.raises(RewardDispatchError):
            dispatcher.dispatch(_completed(), catalog.get("daily-trees"))
        with Session(db_engine) as session:
            assert session.scalar(select(func.count()).select_from(Achievement)) == 0

    def test_declined_award_raises(self, db_engine, catalog):
        class DecliningLedger:
            def award(self, user_id, amount, idempotency_key):
                return False

        dispatcher = RewardDispatcher(db_engine, DecliningLedger())
        with pytest.raises(RewardDispatchError):
            dispatcher.dispatch(_completed(), catalog.get("daily-trees"))

    def test_unexpected_ledger_exception_becomes_dispatch_error(self, db_engine, catalog):
        class ResettingLedger:
            def award(self, user_id, amount, idempotency_key):
                raise ConnectionError("ledger socket reset")

        dispatcher = RewardDispatcher(db_engine, ResettingLedger())
        with pytest.raises(RewardDispatchError) as excinfo:
            dispatcher.dispatch(_completed(), catalog.get("daily-trees"))

        assert excinfo.value.user_id == "u1"
        assert excinfo.value.idempotency_key == "daily-trees:2024-01-01"
        assert isinstance(excinfo.value.__cause__, ConnectionError)

    def test_unresolvable_achievement_conflict_is_dispatch_error(self, db_engine, catalog, ledger):
        dispatcher = RewardDispatcher(db_engine, ledger, clock=lambda: NOW)
        dispatcher.dispatch(_completed(), catalog.get("daily-trees"))

        with patch.object(dispatcher, "_existing", return_value=None):
            with pytest.raises(RewardDispatchError) as excinfo:
                dispatcher.dispatch(_completed(), catalog.get("daily-trees"))
        assert isinstance(excinfo.value.__cause__, IntegrityError)

    def test_incomplete_instance_rejected(self, db_engine, catalog, ledger):
        from dataclasses import replace

        dispatcher = RewardDispatcher(db_engine, ledger)
        with pytest.raises(ValueError):
            dispatcher.dispatch(
                replace(_completed(), completed=False, progress=1),
                catalog.get("daily-trees"),
            )
        assert ledger.calls == []


# ===========================================================================
# Through the service
# ===========================================================================
class TestRewardPending:
    def test_ledger_outage_keeps_completion(self, service, ledger, db_engine):
        ledger.fail = True
        result = service.apply_progress("u1", "daily-discussion", 1)

        assert result.just_completed
        assert result.instance.completed
        assert result.reward_pending
        assert result.achievement is None
        assert service.get_achievements("u1") == []

        # the completion is not re-triggered by further progress
        again = service.apply_progress("u1", "daily-discussion", 1)
        assert not again.just_completed

    def test_unexpected_ledger_exception_leaves_reward_pending(self, db_engine, catalog, clock):
        class FlakyLedger:
            def __init__(self):
                self.down = True
                self.awarded = []

            def award(self, user_id, amount, idempotency_key):
                if self.down:
                    raise ConnectionError("ledger socket reset")
                self.awarded.append(idempotency_key)
                return True

        ledger = FlakyLedger()
        service = ChallengeService(db_engine, catalog, ledger, clock=clock)
        seen = []
        service.subscribe(seen.append)

        service.apply_progress("u2", "daily-trees", 2)
        result = service.apply_progress("u2", "daily-trees", 1)

        assert result.just_completed
        assert result.reward_pending
        assert result.achievement is None
        assert [t.just_completed for t in seen] == [False, True]

        ledger.down = False
        report = reconcile_rewards(service.engine, service.store, service.dispatcher)
        assert report["dispatched"] == 1
        assert ledger.awarded == ["daily-trees:2024-01-01"]
        assert len(service.get_achievements("u2")) == 1

    def test_achievements_newest_first(self, service, clock):
        service.apply_progress("u1", "daily-discussion", 1)
        clock.advance(hours=1)
        service.apply_progress("u1", "daily-trees", 3)

        achievements = service.get_achievements("u1")
        assert [a.template_id for a in achievements] == ["daily-trees", "daily-discussion"]

    def test_points_balance(self, service):
        service.apply_progress("u1", "daily-discussion", 1)
        assert service.get_points("u1") == 25
