"""Exception hierarchy for the goal synchronization engine."""
from typing import Optional


class GoalSyncError(Exception):
    """Base class for all goalsync errors."""


class PersistenceError(GoalSyncError):
    """Raised by a local storage backend when it cannot read or write."""


class RemoteStoreError(GoalSyncError):
    """
    Raised by the remote store client for any failed call.

    Transport errors, timeouts, auth failures and non-2xx responses all
    end up here. ``status_code`` is set when the server answered.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class GoalNotFoundError(GoalSyncError, LookupError):
    """Raised by the goal store when a goal id does not exist on a page."""
