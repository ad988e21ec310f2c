"""
Canopy — Challenge & Achievement Progression Engine
=====================================================
Tracks per-member challenge progress for an environmental community
platform, grants each completed challenge's reward exactly once, rolls
daily and weekly challenges over on period boundaries, and derives
engagement streaks from completion history.

Package layout::

    canopy/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Period constants + default activity map
    ├── errors.py          # ValidationError / PersistenceError / RewardDispatchError
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # ORM models (instances, archive, achievements, ledger)
    ├── engine/
    │   ├── catalog.py     # ChallengeTemplate + ChallengeCatalog
    │   ├── periods.py     # Period keys + rollover decisions
    │   ├── progress.py    # Saturating progress calculation
    │   ├── streaks.py     # Streak derivation from completion dates
    │   ├── achievements.py # Achievement records built on completion
    │   ├── events.py      # ActivityEvent / ChallengeTransition envelopes
    │   └── locks.py       # Per-(user, template) lock registry
    ├── services/
    │   ├── challenge_store.py     # Live + archived instance persistence
    │   ├── progress_service.py    # apply_progress / complete_challenge
    │   ├── reward_service.py      # Points ledgers + reward dispatch
    │   ├── reconciliation_service.py  # Re-dispatch of missing rewards
    │   ├── retention_service.py   # Archive pruning
    │   └── challenge_service.py   # Query surface used by the API
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # Engine / config / service providers
        └── routes/        # Challenge + catalog REST endpoints
"""

__version__ = "0.1.0"
