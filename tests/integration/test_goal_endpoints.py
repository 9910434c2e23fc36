"""Integration tests for goal endpoints."""
import pytest
import pytest_asyncio
from httpx import ASGITransport

from goalsync.services.cache import LocalGoalCache, MemoryStorage
from goalsync.services.remote_client import RemoteGoalClient
from goalsync.services.sync_engine import GoalSyncEngine, SyncMode


@pytest.mark.asyncio
class TestGoalCreate:
    """Tests for creating goals."""

    async def test_create_goal_success(self, app_client):
        """Test successful goal creation."""
        goal_data = {
            "title": "Launch",
            "priority": "high",
            "dueDate": "2025-03-01",
            "actionItems": [
                {"text": "Write docs", "completed": True},
                {"text": "Record demo", "completed": False},
            ],
        }
        response = await app_client.post("/pages/P1/goals", json=goal_data)

        assert response.status_code == 201
        data = response.json()
        assert data["title"] == "Launch"
        assert data["priority"] == "High"
        assert data["pageId"] == "P1"
        assert data["dueDate"] == "2025-03-01"
        assert data["percentComplete"] == 50
        assert "id" in data
        assert "createdAt" in data

    async def test_create_goal_keeps_unknown_priority(self, app_client):
        """Test an unrecognised priority is stored as sent."""
        response = await app_client.post("/pages/P1/goals", json={"title": "Launch", "priority": "urgent"})

        assert response.status_code == 201
        assert response.json()["priority"] == "urgent"

    async def test_create_goal_invalid(self, app_client):
        """Test malformed bodies are rejected."""
        response = await app_client.post("/pages/P1/goals", json={"title": "Launch", "actionItems": 3})

        assert response.status_code == 422


@pytest.mark.asyncio
class TestGoalList:
    """Tests for listing goals."""

    async def test_list_goals_empty(self, app_client):
        """Test listing a page with no goals."""
        response = await app_client.get("/pages/P1/goals")

        assert response.status_code == 200
        assert response.json() == []

    async def test_list_goals_scoped_to_page(self, app_client):
        """Test goals of other pages are not listed."""
        await app_client.post("/pages/P1/goals", json={"title": "Launch"})
        await app_client.post("/pages/P2/goals", json={"title": "Hiring"})

        response = await app_client.get("/pages/P1/goals")

        assert response.status_code == 200
        assert [goal["title"] for goal in response.json()] == ["Launch"]


@pytest.mark.asyncio
class TestGoalGet:
    """Tests for getting a single goal."""

    async def test_get_goal_success(self, app_client):
        """Test getting a goal by id."""
        created = (await app_client.post("/pages/P1/goals", json={"title": "Launch"})).json()

        response = await app_client.get(f"/pages/P1/goals/{created['id']}")

        assert response.status_code == 200
        assert response.json()["id"] == created["id"]

    async def test_get_goal_not_found(self, app_client):
        """Test getting a goal that does not exist."""
        response = await app_client.get("/pages/P1/goals/000000000000000000000000")

        assert response.status_code == 404

    async def test_get_goal_wrong_page(self, app_client):
        """Test a goal is not reachable through another page."""
        created = (await app_client.post("/pages/P1/goals", json={"title": "Launch"})).json()

        response = await app_client.get(f"/pages/P2/goals/{created['id']}")

        assert response.status_code == 404


@pytest.mark.asyncio
class TestGoalUpdate:
    """Tests for updating goals."""

    async def test_update_goal_success(self, app_client):
        """Test a partial update changes only the given fields."""
        created = (await app_client.post("/pages/P1/goals", json={"title": "Launch", "detail": "Beta"})).json()

        response = await app_client.patch(
            f"/pages/P1/goals/{created['id']}",
            json={"status": "completed", "actionItems": [{"text": "Ship", "completed": True}]},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "Completed"
        assert data["detail"] == "Beta"
        assert data["percentComplete"] == 100

    async def test_update_goal_not_found(self, app_client):
        """Test updating a goal that does not exist."""
        response = await app_client.patch("/pages/P1/goals/000000000000000000000000", json={"title": "x"})

        assert response.status_code == 404


@pytest.mark.asyncio
class TestGoalDelete:
    """Tests for deleting goals."""

    async def test_delete_goal_success(self, app_client):
        """Test deleting a goal removes it from the page."""
        created = (await app_client.post("/pages/P1/goals", json={"title": "Launch"})).json()

        response = await app_client.delete(f"/pages/P1/goals/{created['id']}")

        assert response.status_code == 200
        assert response.json() == {"deleted_count": 1}
        assert (await app_client.get("/pages/P1/goals")).json() == []

    async def test_delete_goal_not_found(self, app_client):
        """Test deleting a goal that does not exist."""
        response = await app_client.delete("/pages/P1/goals/000000000000000000000000")

        assert response.status_code == 404


@pytest_asyncio.fixture
async def synced_engine(app_client):
    """Engine talking to the goal store API through its HTTP client."""
    from goalsync.main import app

    client = RemoteGoalClient(base_url="http://test", transport=ASGITransport(app=app))
    engine = GoalSyncEngine(LocalGoalCache(MemoryStorage(), key="goals"), client)
    yield engine
    await engine.drain()
    await client.aclose()


@pytest.mark.asyncio
class TestEngineAgainstStore:
    """End-to-end: sync engine -> HTTP client -> API -> store."""

    async def test_create_update_delete(self, synced_engine, goal_store):
        """Test engine operations are mirrored in the store."""
        goal = await synced_engine.create_goal({"title": "Launch", "pageId": "P1", "priority": "High"})

        assert goal.id in goal_store.docs
        assert not goal.is_dirty
        assert synced_engine.mode is SyncMode.REMOTE

        updated = await synced_engine.update_goal(goal.id, {"status": "Blocked"})
        assert updated.status == "Blocked"
        assert goal_store.docs[goal.id].status == "Blocked"

        assert await synced_engine.delete_goal(goal.id) is True
        assert goal_store.docs == {}

    async def test_list_adopts_store_goals(self, synced_engine, app_client):
        """Test goals created through the API appear in the engine."""
        created = (await app_client.post("/pages/P1/goals", json={"title": "From API"})).json()

        listed = await synced_engine.list_goals(page_id="P1")

        assert [goal.id for goal in listed] == [created["id"]]
        assert synced_engine.get_goal_by_title("from api", "P1").id == created["id"]

    async def test_local_goals_migrated(self, synced_engine, goal_store):
        """Test goals cached before the store was reachable get pushed on list."""
        local_only = GoalSyncEngine(synced_engine.cache, None)
        await local_only.create_goal({"title": "Offline", "pageId": "P1"})
        synced_engine.reload()

        await synced_engine.list_goals(page_id="P1")
        await synced_engine.drain()

        assert [goal.title for goal in goal_store.docs.values()] == ["Offline"]
        assert [goal.id for goal in await synced_engine.list_goals()] == list(goal_store.docs)
