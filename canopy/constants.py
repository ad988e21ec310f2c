"""
canopy.constants — Shared Constants
====================================

Single source of truth for period-key formats, presentation defaults and
the default activity → challenge mapping.  Import from here instead of
duplicating in engine, services, and API.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Period keys
# ---------------------------------------------------------------------------
# Milestones live in a single, never-ending period.
MILESTONE_PERIOD_KEY = "milestone"

# Weekly keys follow ISO 8601 week numbering, e.g. "2024-W01".
WEEKLY_KEY_FORMAT = "{year:04d}-W{week:02d}"

# Separator between template id and period key in instance ids.
INSTANCE_ID_SEPARATOR = ":"

DEFAULT_TIMEZONE = "UTC"

# ---------------------------------------------------------------------------
# Presentation
# ---------------------------------------------------------------------------
DEFAULT_ACHIEVEMENT_ICON = "\U0001f3c6"  # 🏆

# ---------------------------------------------------------------------------
# Activity → challenge template mapping
# ---------------------------------------------------------------------------
# Collaborators report raw activity types; each one advances every listed
# template by the reported delta.  Overridable via ``activity_map`` in
# config.yaml.
DEFAULT_ACTIVITY_MAP: dict[str, tuple[str, ...]] = {
    "tree_planting": ("daily-trees", "milestone-100-trees"),
    "discussion_created": (
        "daily-discussion",
        "weekly-discussions",
        "milestone-10-discussions",
    ),
    "comment_created": (
        "daily-discussion",
        "weekly-discussions",
        "milestone-10-discussions",
    ),
    "discussion_voted": ("daily-vote",),
}

# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------
# Attempts at a conditional progress write before giving up.  Only another
# process writing the same (user, template) row can make an attempt lose.
MAX_WRITE_ATTEMPTS = 5
