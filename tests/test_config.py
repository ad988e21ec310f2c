"""
tests/test_config.py — YAML Configuration Tests
================================================
"""

from __future__ import annotations

from zoneinfo import ZoneInfo

import pytest

from canopy.config import config_from_dict, load_config


def test_load_config(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "community_name: Canopy Test\n"
        "timezone: Africa/Nairobi\n"
        "reconcile_interval_seconds: 60\n"
        "activity_map:\n"
        "  tree_planting: [daily-trees]\n",
        encoding="utf-8",
    )
    cfg = load_config(path)
    assert cfg.community_name == "Canopy Test"
    assert cfg.tzinfo == ZoneInfo("Africa/Nairobi")
    assert cfg.reconcile_interval_seconds == 60
    assert cfg.reconcile_batch_size == 100
    assert cfg.activity_map == {"tree_planting": ("daily-trees",)}


def test_missing_file_has_hint(tmp_path):
    with pytest.raises(FileNotFoundError, match="config.yaml.example"):
        load_config(tmp_path / "nope.yaml")


def test_defaults():
    cfg = config_from_dict({"community_name": "X"})
    assert cfg.timezone == "UTC"
    assert cfg.challenges == ()
    assert cfg.activity_map is None


def test_missing_community_name():
    with pytest.raises(KeyError):
        config_from_dict({"timezone": "UTC"})


def test_unknown_timezone():
    with pytest.raises(ValueError, match="timezone"):
        config_from_dict({"community_name": "X", "timezone": "Mars/Olympus"})


def test_service_uses_configured_timezone(db_engine, ledger, clock):
    from datetime import UTC, datetime

    from canopy.services.challenge_service import ChallengeService

    cfg = config_from_dict({"community_name": "X", "timezone": "Africa/Nairobi"})
    clock.now = datetime(2024, 1, 1, 22, 30, tzinfo=UTC)
    service = ChallengeService.from_config(db_engine, cfg, ledger, clock=clock)

    trees = service.get_daily_challenges("u1")[0]
    assert trees.instance.period_key == "2024-01-02"


@pytest.mark.parametrize("value", ["daily-trees", 7, {"id": "daily-trees"}])
def test_activity_map_values_must_be_lists(value):
    with pytest.raises(ValueError, match="tree_planting"):
        config_from_dict({"community_name": "X", "activity_map": {"tree_planting": value}})


def test_activity_map_must_be_a_mapping():
    with pytest.raises(ValueError, match="mapping"):
        config_from_dict({"community_name": "X", "activity_map": ["daily-trees"]})


def test_activity_map_with_unknown_template_is_rejected(db_engine, ledger):
    from canopy.services.challenge_service import ChallengeService

    cfg = config_from_dict({
        "community_name": "X",
        "activity_map": {"tree_planting": ["daily-trees", "daily-tress"]},
    })
    with pytest.raises(ValueError, match="daily-tress"):
        ChallengeService.from_config(db_engine, cfg, ledger)


def test_default_activity_map_follows_configured_catalog(db_engine, ledger):
    from canopy.services.challenge_service import ChallengeService

    cfg = config_from_dict({
        "community_name": "X",
        "challenges": [{
            "id": "daily-trees", "title": "Plant 3 Trees", "description": "",
            "kind": "daily", "target": 3, "point_value": 50,
        }],
    })
    service = ChallengeService.from_config(db_engine, cfg, ledger)
    assert service.progress.activity_map == {"tree_planting": ("daily-trees",)}
