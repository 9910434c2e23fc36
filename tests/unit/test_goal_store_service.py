"""Tests for GoalStoreService."""
import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from bson import ObjectId


def goal_doc(**overrides):
    doc = {
        "_id": ObjectId(),
        "page_id": "P1",
        "title": "Launch",
        "detail": "Public beta",
        "priority": "High",
        "status": "In Progress",
        "action_items": [],
        "percent_complete": 0,
        "deleted": False,
        "created_at": datetime(2025, 1, 1, tzinfo=timezone.utc),
        "updated_at": datetime(2025, 1, 1, tzinfo=timezone.utc),
    }
    doc.update(overrides)
    return doc


@pytest.mark.asyncio
class TestGoalStoreServiceCreate:
    """Tests for creating goals."""

    async def test_create_goal_success(self):
        """Test successful goal creation."""
        from goalsync.services.goal_store import GoalStoreService
        from goalsync.models.goal import GoalCreate

        mock_db = MagicMock()
        mock_goals = AsyncMock()
        mock_db.__getitem__.return_value = mock_goals

        inserted_id = ObjectId()
        mock_goals.insert_one.return_value = AsyncMock(inserted_id=inserted_id)

        service = GoalStoreService(mock_db)
        goal_data = GoalCreate(
            title="Launch",
            priority="high",
            action_items=[{"text": "a", "completed": True}, {"text": "b"}],
        )

        goal = await service.create_goal(page_id="P1", goal_create=goal_data)

        assert goal.id == str(inserted_id)
        assert goal.page_id == "P1"
        assert goal.priority == "High"
        assert goal.percent_complete == 50

        inserted = mock_goals.insert_one.call_args[0][0]
        assert inserted["page_id"] == "P1"
        assert inserted["deleted"] is False


@pytest.mark.asyncio
class TestGoalStoreServiceList:
    """Tests for listing goals."""

    async def test_list_goals(self):
        """Test listing the goals of a page."""
        from goalsync.services.goal_store import GoalStoreService

        mock_db = MagicMock()
        mock_goals = MagicMock()
        mock_db.__getitem__.return_value = mock_goals

        # Mock cursor
        mock_cursor = MagicMock()
        mock_cursor.to_list = AsyncMock(return_value=[goal_doc(), goal_doc(title="Hiring")])
        mock_goals.find.return_value = mock_cursor

        service = GoalStoreService(mock_db)
        goals = await service.list_goals("P1")

        assert [goal.title for goal in goals] == ["Launch", "Hiring"]
        mock_goals.find.assert_called_once_with({"page_id": "P1", "deleted": False})


@pytest.mark.asyncio
class TestGoalStoreServiceGet:
    """Tests for getting a single goal."""

    async def test_get_goal_success(self):
        """Test getting an existing goal."""
        from goalsync.services.goal_store import GoalStoreService

        mock_db = MagicMock()
        mock_goals = AsyncMock()
        mock_db.__getitem__.return_value = mock_goals

        doc = goal_doc()
        mock_goals.find_one.return_value = doc

        service = GoalStoreService(mock_db)
        goal = await service.get_goal("P1", str(doc["_id"]))

        assert goal.id == str(doc["_id"])
        assert goal.detail == "Public beta"

    async def test_get_goal_not_found(self):
        """Test getting a goal that does not exist."""
        from goalsync.services.goal_store import GoalStoreService
        from goalsync.errors import GoalNotFoundError

        mock_db = MagicMock()
        mock_goals = AsyncMock()
        mock_db.__getitem__.return_value = mock_goals
        mock_goals.find_one.return_value = None

        service = GoalStoreService(mock_db)

        with pytest.raises(GoalNotFoundError):
            await service.get_goal("P1", str(ObjectId()))

    async def test_get_goal_invalid_id(self):
        """Test a malformed id is treated as not found."""
        from goalsync.services.goal_store import GoalStoreService
        from goalsync.errors import GoalNotFoundError

        mock_db = MagicMock()
        mock_db.__getitem__.return_value = AsyncMock()

        service = GoalStoreService(mock_db)

        with pytest.raises(GoalNotFoundError):
            await service.get_goal("P1", "goal-1700000000000-abcdefghi")


@pytest.mark.asyncio
class TestGoalStoreServiceUpdate:
    """Tests for updating goals."""

    async def test_update_goal_success(self):
        """Test a partial update sets only the given fields."""
        from goalsync.services.goal_store import GoalStoreService
        from goalsync.models.goal import GoalUpdate

        mock_db = MagicMock()
        mock_goals = AsyncMock()
        mock_db.__getitem__.return_value = mock_goals

        doc = goal_doc()
        items = [{"text": "a", "completed": True}]
        mock_goals.find_one.return_value = doc
        mock_goals.find_one_and_update.return_value = goal_doc(
            _id=doc["_id"], status="Blocked", action_items=items, percent_complete=100,
        )

        service = GoalStoreService(mock_db)
        goal = await service.update_goal(
            "P1",
            str(doc["_id"]),
            GoalUpdate(status="blocked", action_items=items, page_id="P2"),
        )

        assert goal.status == "Blocked"
        assert goal.percent_complete == 100

        update_doc = mock_goals.find_one_and_update.call_args[0][1]["$set"]
        assert update_doc["status"] == "Blocked"
        assert update_doc["percent_complete"] == 100
        assert "page_id" not in update_doc
        assert "title" not in update_doc
        assert "updated_at" in update_doc

    async def test_update_goal_not_found(self):
        """Test updating a missing goal."""
        from goalsync.services.goal_store import GoalStoreService
        from goalsync.models.goal import GoalUpdate
        from goalsync.errors import GoalNotFoundError

        mock_db = MagicMock()
        mock_goals = AsyncMock()
        mock_db.__getitem__.return_value = mock_goals
        mock_goals.find_one.return_value = None

        service = GoalStoreService(mock_db)

        with pytest.raises(GoalNotFoundError):
            await service.update_goal("P1", str(ObjectId()), GoalUpdate(title="x"))


@pytest.mark.asyncio
class TestGoalStoreServiceDelete:
    """Tests for deleting goals."""

    async def test_delete_goal_success(self):
        """Test soft delete."""
        from goalsync.services.goal_store import GoalStoreService

        mock_db = MagicMock()
        mock_goals = AsyncMock()
        mock_db.__getitem__.return_value = mock_goals

        doc = goal_doc()
        mock_goals.find_one.return_value = doc
        mock_goals.update_one.return_value = MagicMock(modified_count=1)

        service = GoalStoreService(mock_db)
        result = await service.delete_goal("P1", str(doc["_id"]))

        assert result == {"deleted_count": 1}
        update = mock_goals.update_one.call_args[0][1]["$set"]
        assert update["deleted"] is True
        assert "deleted_at" in update

    async def test_delete_goal_not_found(self):
        """Test deleting a missing goal."""
        from goalsync.services.goal_store import GoalStoreService
        from goalsync.errors import GoalNotFoundError

        mock_db = MagicMock()
        mock_goals = AsyncMock()
        mock_db.__getitem__.return_value = mock_goals
        mock_goals.find_one.return_value = None

        service = GoalStoreService(mock_db)

        with pytest.raises(GoalNotFoundError):
            await service.delete_goal("P1", str(ObjectId()))
