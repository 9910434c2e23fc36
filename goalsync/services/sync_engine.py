"""Goal synchronization engine - keeps the local cache, the remote store and documents consistent.

The local cache is authoritative. Every operation writes it synchronously
before the remote store is touched; the remote store is a best-effort
mirror whose answers are folded back only when no newer local edit
happened in the meantime. When the remote store fails, the engine drops to
local-only mode and retries after a cooldown (see ``CircuitBreaker``).
"""
import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ValidationError

from goalsync.config import settings
from goalsync.errors import RemoteStoreError
from goalsync.models.document import DocumentHandle
from goalsync.models.goal import CONTENT_FIELDS, Goal, normalize_goal_fields
from goalsync.services import projection
from goalsync.services.cache import LocalGoalCache
from goalsync.services.circuit_breaker import CircuitBreaker, CircuitState
from goalsync.services.notifications import GoalCallback, GoalNotifier
from goalsync.services.remote_client import RemoteStore
from goalsync.utils.clock import Clock, SystemClock, ensure_aware

logger = logging.getLogger(__name__)

GoalData = Union[Mapping, BaseModel]

_UNAVAILABLE = object()
_NOT_FOUND = object()


class SyncMode(str, Enum):
    """Whether remote calls are currently attempted."""

    REMOTE = "remote"
    LOCAL_ONLY = "local_only"


class GoalSyncEngine:
    """Single owner of canonical goal state."""

    def __init__(
        self,
        cache: LocalGoalCache,
        remote: Optional[RemoteStore] = None,
        *,
        notifier: Optional[GoalNotifier] = None,
        clock: Optional[Clock] = None,
        breaker: Optional[CircuitBreaker] = None,
        retry_cooldown: Optional[float] = None,
    ):
        """
        Initialize engine and load the cached goals.

        Args:
            cache: Local cache written on every change
            remote: Remote store client; None runs local-only for good
            notifier: Hub for change notifications
            clock: Time source for timestamps and the retry cooldown
            breaker: Custom circuit breaker
            retry_cooldown: Seconds in local-only mode before retrying remote
        """
        self.cache = cache
        self.remote = remote
        self.clock = clock or SystemClock()
        self.notifier = notifier or GoalNotifier()
        if breaker is None:
            cooldown = retry_cooldown if retry_cooldown is not None else settings.retry_cooldown_seconds
            breaker = CircuitBreaker(recovery_timeout_seconds=cooldown, clock=self.clock.monotonic)
        self.breaker = breaker

        self._goals: list[Goal] = cache.load_all()
        # Bumped on every local write; a remote answer is only folded in if
        # the revision it was sent at is still current.
        self._revisions: dict[str, int] = {}
        # Local ids replaced by server-assigned ids
        self._aliases: dict[str, str] = {}
        self._creating: set[str] = set()
        self._tasks: set[asyncio.Task] = set()

    # ---------------- state ----------------

    @property
    def mode(self) -> SyncMode:
        if self.remote is None or self.breaker.state == CircuitState.OPEN:
            return SyncMode.LOCAL_ONLY
        return SyncMode.REMOTE

    def subscribe(self, callback: GoalCallback) -> Callable[[], None]:
        return self.notifier.subscribe(callback)

    def reload(self) -> None:
        """Re-read canonical state from the cache."""
        self._goals = self.cache.load_all()
        self._revisions.clear()
        self._aliases.clear()

    async def drain(self) -> None:
        """Wait for background migrations to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ---------------- reads ----------------

    def _resolve(self, goal_id: str) -> str:
        while goal_id in self._aliases:
            goal_id = self._aliases[goal_id]
        return goal_id

    def _find(self, goal_id: str) -> Optional[Goal]:
        goal_id = self._resolve(goal_id)
        for goal in self._goals:
            if goal.id == goal_id:
                return goal
        return None

    def _find_by_title(self, title: str, page_id: str) -> Optional[Goal]:
        wanted = str(title).lower()
        for goal in self._goals:
            if goal.page_id == page_id and goal.title.lower() == wanted:
                return goal
        return None

    def _filter(self, page_id: Optional[str], workspace_id: Optional[str]) -> list[Goal]:
        goals = self._goals
        if workspace_id:
            goals = [g for g in goals if g.workspace_id == workspace_id]
        if page_id:
            goals = [g for g in goals if g.page_id == page_id]
        return list(goals)

    def get_goal(self, goal_id: str) -> Optional[Goal]:
        """Copy of a goal by id (old local ids still resolve)."""
        goal = self._find(goal_id)
        return goal.model_copy(deep=True) if goal else None

    def get_goal_by_title(self, title: str, page_id: str) -> Optional[Goal]:
        """Copy of the goal with this title (case-insensitive) on a page."""
        goal = self._find_by_title(title, page_id)
        return goal.model_copy(deep=True) if goal else None

    def search_goals(self, query: str) -> list[Goal]:
        """Goals whose title, detail, metrics, timeline or action items contain ``query``."""
        if not query or not isinstance(query, str):
            return []
        return [g.model_copy(deep=True) for g in self._goals if g.matches(query)]

    async def list_goals(self, page_id: Optional[str] = None, workspace_id: Optional[str] = None) -> list[Goal]:
        """
        List goals, refreshing a page from the remote store when possible.

        Args:
            page_id: Optional page filter; only page-scoped lists hit the remote store
            workspace_id: Optional workspace filter

        Returns:
            Server view of the page (plus local goals not yet on the server),
            or the local view when the remote store is unavailable
        """
        local = self._filter(page_id, workspace_id)
        if not page_id or not self._remote_allowed():
            return _copies(local)

        result = await self._remote_call("list", lambda: self.remote.list_goals(page_id))
        if result is _UNAVAILABLE or result is _NOT_FOUND:
            return _copies(local)

        if not result:
            if local:
                # Nothing on the server yet: push what we have, without blocking
                logger.info("Migrating %d local-only goals of page %s", len(local), page_id)
                for goal in local:
                    goal.synced_at = None
                self._persist()
                self._spawn(self._migrate([g.id for g in local]))
            return _copies(local)

        return _copies(self._merge_page(page_id, workspace_id, result))

    def _merge_page(self, page_id: str, workspace_id: Optional[str], server_goals: list[Goal]) -> list[Goal]:
        merged = []
        server_ids = set()
        to_push = []
        for server_goal in server_goals:
            server_ids.add(server_goal.id)
            local_goal = self._find(server_goal.id)
            if local_goal is None:
                adopted = self._find_unsent_copy(server_goal, page_id, server_ids)
                if adopted is not None:
                    # Created here, but the store already holds it under its own id
                    self._rekey(adopted, server_goal.id)
                    adopted.created_at = server_goal.created_at
                    _mark_behind(adopted, server_goal.updated_at)
                    to_push.append(adopted.id)
                    merged.append(adopted)
                    continue
                server_goal.synced_at = server_goal.updated_at
                server_goal.local_edits = False
                self._goals.append(server_goal)
                self._bump(server_goal.id)
                merged.append(server_goal)
            elif local_goal.is_dirty:
                # Local edits the server has not seen win; send them on
                if local_goal.is_pending:
                    _mark_behind(local_goal, server_goal.updated_at)
                to_push.append(local_goal.id)
                merged.append(local_goal)
            else:
                self._apply_server_fields(local_goal, server_goal)
                merged.append(local_goal)

        for goal in self._filter(page_id, None):
            if goal.id not in server_ids and goal.is_pending:
                to_push.append(goal.id)
                merged.append(goal)

        self._persist()
        if to_push:
            self._spawn(self._migrate(to_push))
        if workspace_id:
            merged = [g for g in merged if g.workspace_id == workspace_id]
        return merged

    def _find_unsent_copy(self, server_goal: Goal, page_id: str, server_ids: set[str]) -> Optional[Goal]:
        wanted = server_goal.title.lower()
        for goal in self._goals:
            if (
                goal.page_id == page_id
                and goal.is_pending
                and goal.id not in server_ids
                and goal.title.lower() == wanted
            ):
                return goal
        return None

    # ---------------- writes ----------------

    async def create_goal(self, data: GoalData) -> Optional[Goal]:
        """
        Create a goal, or update the existing goal with the same title on the page.

        The goal is cached before the remote store is tried, so it survives
        any remote failure. Subscribers receive the final state.

        Returns:
            Canonical goal, or None if ``data`` could not be validated
        """
        try:
            fields = normalize_goal_fields(data)
        except (TypeError, ValueError) as e:
            logger.error("Rejected goal data %r: %s", data, e)
            return None
        page_id, title = fields.get("page_id"), fields.get("title")
        existing = None
        if page_id and title:
            existing = self._find_by_title(title, page_id)
        if existing is None and fields.get("id"):
            existing = self._find(fields["id"])
        if existing is not None:
            fields.pop("id", None)
            return await self.update_goal(existing.id, fields)

        try:
            goal = Goal.new(fields, now=self.clock.now())
        except ValidationError as e:
            logger.error("Rejected goal %r: %s", title, e)
            return None
        goal.recompute_percent_complete()
        goal.local_edits = True

        self._goals.append(goal)
        self._bump(goal.id)
        self._persist()

        if goal.page_id and self._remote_allowed():
            await self._push_create(goal.id)

        return self._publish(goal.id)

    async def update_goal(self, goal_id: str, changes: GoalData) -> Optional[Goal]:
        """
        Apply changes to a goal.

        The change is cached before any remote attempt, so a remote failure
        never loses it.

        Returns:
            Canonical goal, or None if the goal does not exist
        """
        goal = self._find(goal_id)
        if goal is None:
            logger.info("Update ignored, goal %s not found", goal_id)
            return None

        try:
            goal.update(changes, now=self.clock.now())
        except (TypeError, ValueError) as e:
            logger.error("Rejected update of goal %s: %s", goal.id, e)
            return None
        goal.local_edits = True
        self._bump(goal.id)
        self._persist()

        if goal.page_id and goal.id not in self._creating and self._remote_allowed():
            await self._push(goal.id)

        return self._publish(goal.id)

    async def delete_goal(self, goal_id: str) -> bool:
        """
        Delete a goal locally, then best-effort remotely.

        Returns:
            True if the goal existed
        """
        goal = self._find(goal_id)
        if goal is None:
            return False

        self._goals.remove(goal)
        self._revisions.pop(goal.id, None)
        self._persist()

        if goal.page_id and not goal.is_pending and self._remote_allowed():
            await self._remote_call("delete", lambda: self.remote.delete_goal(goal.page_id, goal.id))
        return True

    async def synchronize(self, goal: Goal, document: Optional[DocumentHandle] = None) -> Goal:
        """
        Store a goal and project it into a document.

        Never raises: on any fault the input goal is returned unchanged.
        """
        try:
            canonical = await self.update_goal(goal.id, goal)
            if document is not None:
                projection.write(document, canonical or goal)
            return canonical or goal
        except Exception:
            logger.exception("Error synchronizing goal %s", getattr(goal, "id", None))
            return goal

    async def open_goal(
        self,
        document: DocumentHandle,
        title: str,
        page_id: str,
        workspace_id: Optional[str] = None,
    ) -> Optional[Goal]:
        """
        Find a page's goal by title, creating it from the document on first sight.

        Returns:
            Existing goal, or a new goal seeded from the document projection
        """
        existing = self._find_by_title(title, page_id)
        if existing is not None:
            return existing.model_copy(deep=True)

        found = projection.read(document, title)
        data: dict[str, Any] = found.as_changes() if found else {"title": title}
        data.update(page_id=page_id, workspace_id=workspace_id)
        return await self.create_goal(data)

    async def refresh_from_document(self, goal_id: str, document: DocumentHandle) -> Optional[Goal]:
        """Re-extract a goal's fields from the document and apply them."""
        goal = self._find(goal_id)
        if goal is None:
            return None
        found = projection.read(document, goal.title)
        if found is None:
            return goal.model_copy(deep=True)
        return await self.update_goal(goal.id, found.as_changes())

    # ---------------- remote ----------------

    def _remote_allowed(self) -> bool:
        return self.remote is not None and self.breaker.can_execute()

    async def _remote_call(self, operation: str, call: Callable[[], Awaitable[Any]]) -> Any:
        try:
            result = await call()
        except RemoteStoreError as e:
            if e.status_code == 404:
                self.breaker.record_success()
                return _NOT_FOUND
            self._degrade(operation, e)
            return _UNAVAILABLE
        except Exception as e:
            # Any failure counts as "remote unavailable"
            self._degrade(operation, e)
            return _UNAVAILABLE
        self.breaker.record_success()
        return result

    def _degrade(self, operation: str, error: Exception) -> None:
        self.breaker.record_failure()
        logger.warning(
            "Remote %s failed, working local-only for %.0fs: %s",
            operation,
            self.breaker.cooldown_remaining(),
            error,
        )

    async def _push(self, goal_id: str) -> None:
        goal = self._find(goal_id)
        if goal is None or goal.id in self._creating:
            return
        if goal.is_pending:
            await self._push_create(goal.id)
            return

        revision = self._revisions.get(goal.id, 0)
        snapshot = goal.model_copy(deep=True)
        result = await self._remote_call(
            "update", lambda: self.remote.update_goal(snapshot.page_id, snapshot.id, snapshot)
        )
        if result is _NOT_FOUND:
            # The store lost it; recreate
            current = self._find(snapshot.id)
            if current is not None:
                current.synced_at = None
                self._persist()
                if self._remote_allowed():
                    await self._push_create(current.id)
            return
        if result is not _UNAVAILABLE:
            self._fold(snapshot.id, result, revision)

    async def _push_create(self, goal_id: str) -> None:
        goal = self._find(goal_id)
        if goal is None:
            return
        revision = self._revisions.get(goal.id, 0)
        snapshot = goal.model_copy(deep=True)
        self._creating.add(snapshot.id)
        try:
            result = await self._remote_call(
                "create", lambda: self.remote.create_goal(snapshot.page_id, snapshot)
            )
        finally:
            self._creating.discard(snapshot.id)
        if result is _UNAVAILABLE or result is _NOT_FOUND:
            return
        self._fold(snapshot.id, result, revision)

    def _fold(self, local_id: str, server_goal: Goal, revision: int) -> Optional[Goal]:
        """Fold a server answer into the cache unless a newer local edit exists."""
        goal = self._find(local_id)
        if goal is None:
            logger.info("Goal %s was deleted while syncing; removing server copy", local_id)
            if server_goal.page_id:
                self._spawn(self._remote_call(
                    "delete", lambda: self.remote.delete_goal(server_goal.page_id, server_goal.id)
                ))
            return None

        stale = self._revisions.get(goal.id, 0) != revision
        if server_goal.id != goal.id:
            self._rekey(goal, server_goal.id)
        goal.created_at = server_goal.created_at

        if stale:
            logger.debug("Ignoring stale remote answer for goal %s", goal.id)
            _mark_behind(goal, server_goal.updated_at)
            self._spawn(self._migrate([goal.id]))
        else:
            self._apply_server_fields(goal, server_goal)
        self._persist()
        return goal

    def _apply_server_fields(self, goal: Goal, server_goal: Goal) -> None:
        for name in CONTENT_FIELDS:
            if name == "source" and server_goal.source.position is None:
                # The store does not know where the goal sits in the document
                continue
            setattr(goal, name, getattr(server_goal, name))
        goal.percent_complete = server_goal.percent_complete
        goal.touch(server_goal.updated_at)
        goal.synced_at = server_goal.updated_at
        goal.local_edits = False

    def _rekey(self, goal: Goal, new_id: str) -> None:
        old_id = goal.id
        logger.debug("Goal %s is now %s on the server", old_id, new_id)
        goal.id = new_id
        self._aliases[old_id] = new_id
        self._revisions[new_id] = self._revisions.pop(old_id, 0)

    async def _migrate(self, goal_ids: list[str]) -> None:
        for goal_id in goal_ids:
            goal = self._find(goal_id)
            if goal is None or not goal.is_dirty:
                continue
            if not self._remote_allowed():
                return
            await self._push(goal.id)
            current = self._find(goal_id)
            if current is not None and not current.is_dirty:
                self.notifier.notify(current)

    # ---------------- helpers ----------------

    def _publish(self, goal_id: str) -> Optional[Goal]:
        goal = self._find(goal_id)
        if goal is None:
            # Deleted while the remote call was in flight
            return None
        self.notifier.notify(goal)
        return goal.model_copy(deep=True)

    def _bump(self, goal_id: str) -> None:
        self._revisions[goal_id] = self._revisions.get(goal_id, 0) + 1

    def _persist(self) -> None:
        self.cache.save_all(self._goals)

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background goal sync failed", exc_info=task.exception())


def _mark_behind(goal: Goal, server_updated_at: datetime) -> None:
    """Record that the server has this goal, but not its latest local edit."""
    goal.synced_at = ensure_aware(server_updated_at)
    goal.local_edits = True


def _copies(goals: list[Goal]) -> list[Goal]:
    return [goal.model_copy(deep=True) for goal in goals]
