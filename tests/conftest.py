"""Pytest configuration and fixtures."""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from goalsync.errors import GoalNotFoundError, RemoteStoreError
from goalsync.models.goal import Goal, GoalCreate, GoalUpdate, compute_percent_complete
from goalsync.services.cache import LocalGoalCache, MemoryStorage
from goalsync.services.sync_engine import GoalSyncEngine


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)
        self._monotonic = 1000.0

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._monotonic

    def advance(self, seconds: float) -> None:
        self._now += timedelta(seconds=seconds)
        self._monotonic += seconds


class FakeRemoteStore:
    """
    In-memory stand-in for the remote goal store.

    Assigns its own ids (``srv-1``, ``srv-2``...). Set ``fail`` to make every
    call raise, or ``gate`` to hold calls until the event is set. ``skew``
    shifts the store's clock relative to the client's.
    """

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.pages: dict[str, dict[str, Goal]] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail = False
        self.gate: Optional[asyncio.Event] = None
        self.entered = asyncio.Event()
        self.skew = timedelta(0)
        self._next_id = 0

    async def _enter(self, operation: str, page_id: str) -> None:
        self.calls.append((operation, page_id))
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise RemoteStoreError(f"{operation} failed: connection refused")

    def goals(self, page_id: str) -> list[Goal]:
        return list(self.pages.get(page_id, {}).values())

    def seed(self, page_id: str, **fields) -> Goal:
        """Put a goal on the server directly."""
        self._next_id += 1
        now = self.clock.now() + self.skew
        goal = Goal.model_validate({
            **fields,
            "id": f"srv-{self._next_id}",
            "page_id": page_id,
            "created_at": now,
            "updated_at": now,
        })
        self.pages.setdefault(page_id, {})[goal.id] = goal
        return goal.model_copy(deep=True)

    async def list_goals(self, page_id: str) -> list[Goal]:
        await self._enter("list", page_id)
        return [goal.model_copy(deep=True) for goal in self.goals(page_id)]

    async def create_goal(self, page_id: str, goal: Goal) -> Goal:
        await self._enter("create", page_id)
        body = GoalCreate.from_goal(goal).model_dump()
        body.pop("page_id")
        return self.seed(
            page_id,
            **body,
            percent_complete=compute_percent_complete(body["action_items"]),
        )

    async def update_goal(self, page_id: str, goal_id: str, partial) -> Goal:
        await self._enter("update", page_id)
        stored = self.pages.get(page_id, {}).get(goal_id)
        if stored is None:
            raise RemoteStoreError("not found", status_code=404)
        if isinstance(partial, Goal):
            partial = GoalUpdate.from_goal(partial)
        changes = partial.model_dump(exclude_unset=True)
        changes.pop("page_id", None)
        updated = Goal.model_validate({**stored.model_dump(), **changes})
        updated.percent_complete = compute_percent_complete(updated.action_items)
        updated.updated_at = self.clock.now() + self.skew
        self.pages[page_id][goal_id] = updated
        return updated.model_copy(deep=True)

    async def delete_goal(self, page_id: str, goal_id: str) -> dict:
        await self._enter("delete", page_id)
        removed = self.pages.get(page_id, {}).pop(goal_id, None)
        if removed is None:
            raise RemoteStoreError("not found", status_code=404)
        return {"deleted_count": 1}


class InMemoryGoalStore:
    """Goal store service double backing the API in integration tests."""

    def __init__(self):
        self.docs: dict[str, Goal] = {}
        self._next_id = 0

    async def create_goal(self, page_id: str, goal_create: GoalCreate) -> Goal:
        self._next_id += 1
        now = datetime.now(timezone.utc)
        goal = Goal.model_validate({
            **goal_create.model_dump(),
            "id": f"{self._next_id:024x}",
            "page_id": page_id,
            "percent_complete": compute_percent_complete(goal_create.action_items),
            "created_at": now,
            "updated_at": now,
        })
        self.docs[goal.id] = goal
        return goal

    async def list_goals(self, page_id: str) -> list[Goal]:
        return [goal for goal in self.docs.values() if goal.page_id == page_id]

    async def get_goal(self, page_id: str, goal_id: str) -> Goal:
        goal = self.docs.get(goal_id)
        if goal is None or goal.page_id != page_id:
            raise GoalNotFoundError("Goal not found")
        return goal

    async def update_goal(self, page_id: str, goal_id: str, goal_update: GoalUpdate) -> Goal:
        goal = await self.get_goal(page_id, goal_id)
        changes = goal_update.model_dump(exclude_unset=True)
        changes.pop("page_id", None)
        updated = Goal.model_validate({**goal.model_dump(), **changes})
        updated.percent_complete = compute_percent_complete(updated.action_items)
        updated.updated_at = datetime.now(timezone.utc)
        self.docs[goal_id] = updated
        return updated

    async def delete_goal(self, page_id: str, goal_id: str) -> dict:
        await self.get_goal(page_id, goal_id)
        del self.docs[goal_id]
        return {"deleted_count": 1}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def cache(storage):
    return LocalGoalCache(storage, key="test_goals")


@pytest.fixture
def remote(clock):
    return FakeRemoteStore(clock)


@pytest.fixture
def engine(cache, remote, clock):
    """Engine wired to the fake remote store with a 60s retry cooldown."""
    return GoalSyncEngine(cache, remote, clock=clock, retry_cooldown=60)


@pytest.fixture
def local_engine(cache, clock):
    """Engine with no remote store at all."""
    return GoalSyncEngine(cache, None, clock=clock)


@pytest.fixture
def goal_store():
    return InMemoryGoalStore()


@pytest_asyncio.fixture
async def app_client(goal_store):
    """
    HTTP client for the goal store API.

    The Mongo-backed service is swapped for an in-memory store, so no
    database is needed.
    """
    from goalsync.main import app
    from goalsync.routers.goals import get_goal_store

    app.dependency_overrides[get_goal_store] = lambda: goal_store

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as client:
        yield client

    app.dependency_overrides.clear()
