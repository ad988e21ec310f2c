"""
canopy.errors — Engine Error Types
===================================

Every error the engine reports to callers derives from :class:`CanopyError`,
which carries a stable machine-readable ``code`` and the HTTP status the API
layer maps it to.

Reaching a challenge's target, or submitting progress to an already
completed challenge, is *not* an error: both are successful no-ops.
"""

from __future__ import annotations


class CanopyError(Exception):
    code = "canopy_error"
    status_code = 500

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class ValidationError(CanopyError, ValueError):
    """Unknown template / activity type, or a non-positive delta.

    Raised before any state is touched.
    """

    code = "validation_error"
    status_code = 400


class PersistenceError(CanopyError):
    """The store could not be read or written.

    The surrounding transaction has been rolled back, so progress was not
    advanced.
    """

    code = "persistence_error"
    status_code = 503


class RewardDispatchError(CanopyError):
    """The points ledger rejected or could not be reached for an award.

    Recoverable: the challenge completion stays committed and
    reconciliation re-issues the reward later.
    """

    code = "reward_dispatch_error"
    status_code = 502

    def __init__(
        self,
        message: str,
        *,
        user_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> None:
        super().__init__(message)
        self.user_id = user_id
        self.idempotency_key = idempotency_key
