"""Notification hub - fans goal changes out to in-process observers."""
import logging
from typing import Callable

from goalsync.models.goal import Goal

logger = logging.getLogger(__name__)

GoalCallback = Callable[[Goal], None]


class GoalNotifier:
    """
    Delivers each changed goal to every current subscriber.

    Delivery is in subscription order, best-effort and in-memory only. A
    subscriber that raises is logged and skipped; the rest still run.
    """

    def __init__(self):
        self._subscribers: list[_Subscription] = []

    def subscribe(self, callback: GoalCallback) -> Callable[[], None]:
        """
        Register a callback.

        Returns:
            Function that removes this registration (safe to call twice)
        """
        token = _Subscription(callback)
        self._subscribers.append(token)

        def unsubscribe() -> None:
            if token in self._subscribers:
                self._subscribers.remove(token)

        return unsubscribe

    def notify(self, goal: Goal) -> None:
        for subscriber in list(self._subscribers):
            try:
                subscriber(goal.model_copy(deep=True))
            except Exception:
                logger.exception("Error in goal update subscriber %r", subscriber.callback)

    def __len__(self) -> int:
        return len(self._subscribers)


class _Subscription:
    """One registration; the same callable may be registered more than once."""

    __slots__ = ("callback",)

    def __init__(self, callback: GoalCallback):
        self.callback = callback

    def __call__(self, goal: Goal) -> None:
        self.callback(goal)
