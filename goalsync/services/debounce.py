"""Per-goal edit debouncing for callers of the sync engine.

Free-text edits (title, detail, metrics, ...) arrive a keystroke at a time.
``GoalEditDebouncer`` collects them per goal and hands the merged changes to
``GoalSyncEngine.update_goal`` once the goal has been quiet for the window.
Enumerated and boolean fields flush at once, together with anything
already pending for that goal.
"""
import asyncio
import logging
from collections.abc import Mapping
from typing import Any, Optional, Union

from pydantic import BaseModel

from goalsync.config import settings
from goalsync.models.goal import Goal, normalize_goal_fields

logger = logging.getLogger(__name__)

IMMEDIATE_FIELDS = frozenset({"priority", "status", "due_date", "action_items"})


class GoalEditDebouncer:
    """Collapse bursts of edits into one durable write per goal."""

    def __init__(self, engine, window: Optional[float] = None):
        """
        Initialize debouncer.

        Args:
            engine: GoalSyncEngine receiving the merged updates
            window: Quiet period in seconds (defaults to ``settings.debounce_seconds``)
        """
        self.engine = engine
        self.window = window if window is not None else settings.debounce_seconds
        self._pending: dict[str, dict[str, Any]] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._flushes: set[asyncio.Task] = set()

    def pending(self, goal_id: str) -> dict[str, Any]:
        """Changes waiting to be written for a goal."""
        return dict(self._pending.get(goal_id, {}))

    async def submit(self, goal_id: str, changes: Union[Mapping, BaseModel]) -> Optional[Goal]:
        """
        Queue changes for a goal.

        Returns:
            The updated goal when the changes were flushed immediately,
            otherwise None
        """
        fields = normalize_goal_fields(changes)
        if not fields:
            return None
        self._pending.setdefault(goal_id, {}).update(fields)

        if IMMEDIATE_FIELDS.intersection(fields):
            return await self.flush(goal_id)

        self._cancel_timer(goal_id)
        loop = asyncio.get_running_loop()
        self._timers[goal_id] = loop.call_later(self.window, self._fire, goal_id)
        return None

    async def flush(self, goal_id: str) -> Optional[Goal]:
        """Write a goal's pending changes now."""
        self._cancel_timer(goal_id)
        changes = self._pending.pop(goal_id, None)
        if not changes:
            return None
        logger.debug("Flushing %d debounced fields of goal %s", len(changes), goal_id)
        return await self.engine.update_goal(goal_id, changes)

    async def flush_all(self) -> None:
        for goal_id in list(self._pending):
            await self.flush(goal_id)
        if self._flushes:
            await asyncio.gather(*list(self._flushes), return_exceptions=True)

    async def aclose(self) -> None:
        await self.flush_all()

    def _fire(self, goal_id: str) -> None:
        self._timers.pop(goal_id, None)
        task = asyncio.ensure_future(self.flush(goal_id))
        self._flushes.add(task)
        task.add_done_callback(self._flush_done)

    def _flush_done(self, task: asyncio.Task) -> None:
        self._flushes.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Debounced goal update failed", exc_info=task.exception())

    def _cancel_timer(self, goal_id: str) -> None:
        timer = self._timers.pop(goal_id, None)
        if timer is not None:
            timer.cancel()
