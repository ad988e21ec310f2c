"""
canopy.api.deps — FastAPI dependency injection
================================================
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache

from sqlalchemy import Engine

from canopy.config import CanopyConfig, load_config
from canopy.database.engine import create_db_engine
from canopy.services.challenge_service import ChallengeService
from canopy.services.reward_service import HttpPointsLedger, PointsLedger, SqlPointsLedger

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> CanopyConfig:
    return load_config(os.getenv("CANOPY_CONFIG", "config.yaml"))


@lru_cache(maxsize=1)
def get_ledger() -> PointsLedger:
    """HTTP ledger when ``POINTS_LEDGER_URL`` is set, else the local table."""
    url = os.getenv("POINTS_LEDGER_URL", "").strip()
    if url:
        logger.info("Using HTTP points ledger at %s", url)
        return HttpPointsLedger(url, timeout=get_config().ledger_timeout_seconds)
    return SqlPointsLedger(get_engine())


@lru_cache(maxsize=1)
def get_service() -> ChallengeService:
    return ChallengeService.from_config(get_engine(), get_config(), get_ledger())
