"""
canopy.config — YAML Configuration Loader
==========================================

Reads ``config.yaml`` for engine settings: community identity, the
timezone period keys are computed in, reconciliation cadence, ledger
timeout, and optional overrides for the challenge catalog and the
activity → challenge mapping.

Secrets and connection strings (``DATABASE_URL``, ``POINTS_LEDGER_URL``)
come from the environment / ``.env`` instead.

Usage::

    from canopy.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.community_name)    # "Canopy Dev"
    print(cfg.timezone)          # "Africa/Nairobi"
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from canopy.constants import DEFAULT_TIMEZONE


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class CanopyConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    community_name: str

    # Period keys are derived from wall-clock time in this zone.
    timezone: str = DEFAULT_TIMEZONE

    # Reward reconciliation
    reconcile_interval_seconds: int = 300
    reconcile_batch_size: int = 100

    # Outbound ledger (HTTP only)
    ledger_timeout_seconds: float = 10.0

    # Optional catalog override: list of raw template dicts.
    challenges: tuple[dict, ...] = ()

    # activity type → template ids; None keeps the built-in map
    activity_map: dict[str, tuple[str, ...]] | None = None

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> CanopyConfig:
    """Read *path* and return a :class:`CanopyConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    ValueError
        If ``timezone`` is not a known IANA zone name, or
        ``activity_map`` is not a mapping of activity type to a list of
        template ids.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return config_from_dict(raw)


def config_from_dict(raw: dict) -> CanopyConfig:
    """Build a :class:`CanopyConfig` from an already-parsed mapping."""
    timezone = raw.get("timezone") or DEFAULT_TIMEZONE
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone in config: {timezone!r}") from exc

    activity_map = None
    if raw.get("activity_map"):
        activity_map = _parse_activity_map(raw["activity_map"])

    return CanopyConfig(
        community_name=raw["community_name"],
        timezone=timezone,
        reconcile_interval_seconds=int(raw.get("reconcile_interval_seconds", 300)),
        reconcile_batch_size=int(raw.get("reconcile_batch_size", 100)),
        ledger_timeout_seconds=float(raw.get("ledger_timeout_seconds", 10.0)),
        challenges=tuple(raw.get("challenges") or ()),
        activity_map=activity_map,
    )


def _parse_activity_map(raw_map) -> dict[str, tuple[str, ...]]:
    if not isinstance(raw_map, dict):
        raise ValueError(
            f"activity_map must be a mapping, got {type(raw_map).__name__}"
        )
    activity_map: dict[str, tuple[str, ...]] = {}
    for activity, template_ids in raw_map.items():
        # a bare string would otherwise be split into characters
        if not isinstance(template_ids, (list, tuple)):
            raise ValueError(
                f"activity_map[{activity!r}] must be a list of template ids, "
                f"got {template_ids!r}"
            )
        activity_map[str(activity)] = tuple(str(tid) for tid in template_ids)
    return activity_map
