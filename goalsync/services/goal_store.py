"""Goal store service - MongoDB persistence behind the remote goal API."""
from datetime import datetime, timezone

from bson import ObjectId
from bson.errors import InvalidId

from goalsync.errors import GoalNotFoundError
from goalsync.models.goal import Goal, GoalCreate, GoalUpdate, compute_percent_complete


def _object_id(goal_id: str) -> ObjectId:
    try:
        return ObjectId(goal_id)
    except (InvalidId, TypeError):
        raise GoalNotFoundError("Goal not found") from None


class GoalStoreService:
    """Service for handling page-scoped goal operations."""

    def __init__(self, db):
        """Initialize service with database connection."""
        self.db = db
        self.goals = db["goals"]

    def _doc_to_goal(self, doc: dict) -> Goal:
        """
        Convert database document to Goal model.

        Documents hold snake_case fields with dates stored as ISO text;
        the Goal validators handle both.
        """
        fields = {key: value for key, value in doc.items() if key not in ("_id", "deleted", "deleted_at")}
        fields["id"] = str(doc["_id"])
        return Goal.model_validate(fields)

    async def create_goal(
        self,
        page_id: str,
        goal_create: GoalCreate,
    ) -> Goal:
        """
        Create a new goal on a page.

        Args:
            page_id: Page that owns the goal
            goal_create: Goal creation data

        Returns:
            Created goal with server-assigned id and timestamps
        """
        now = datetime.now(timezone.utc)

        goal_doc = goal_create.model_dump(mode="json")
        goal_doc.update(
            page_id=page_id,
            percent_complete=compute_percent_complete(goal_doc["action_items"]),
            deleted=False,
            created_at=now,
            updated_at=now,
        )

        result = await self.goals.insert_one(goal_doc)
        goal_doc["_id"] = result.inserted_id

        return self._doc_to_goal(goal_doc)

    async def list_goals(self, page_id: str) -> list[Goal]:
        """
        List the goals of a page.

        Args:
            page_id: Page ID

        Returns:
            List of goals, excluding deleted ones
        """
        cursor = self.goals.find({"page_id": page_id, "deleted": False})
        goal_docs = await cursor.to_list(length=None)
        return [self._doc_to_goal(doc) for doc in goal_docs]

    async def get_goal(self, page_id: str, goal_id: str) -> Goal:
        """
        Get a single goal.

        Raises:
            GoalNotFoundError: If goal not found
        """
        goal_doc = await self.goals.find_one({
            "_id": _object_id(goal_id),
            "page_id": page_id,
            "deleted": False,
        })
        if not goal_doc:
            raise GoalNotFoundError("Goal not found")
        return self._doc_to_goal(goal_doc)

    async def update_goal(
        self,
        page_id: str,
        goal_id: str,
        goal_update: GoalUpdate,
    ) -> Goal:
        """
        Apply a partial update to a goal.

        Args:
            page_id: Page ID
            goal_id: Goal ID
            goal_update: Fields to change; unset fields are left alone

        Returns:
            Updated goal

        Raises:
            GoalNotFoundError: If goal not found
        """
        query = {"_id": _object_id(goal_id), "page_id": page_id, "deleted": False}

        existing = await self.goals.find_one(query)
        if not existing:
            raise GoalNotFoundError("Goal not found")

        update_doc = goal_update.model_dump(mode="json", exclude_unset=True)
        # A goal never moves between pages through an update
        update_doc.pop("page_id", None)
        if update_doc.get("action_items") is not None:
            update_doc["percent_complete"] = compute_percent_complete(update_doc["action_items"])
        update_doc["updated_at"] = datetime.now(timezone.utc)

        updated_doc = await self.goals.find_one_and_update(
            query,
            {"$set": update_doc},
            return_document=True,
        )
        if not updated_doc:
            raise GoalNotFoundError("Goal not found")

        return self._doc_to_goal(updated_doc)

    async def delete_goal(self, page_id: str, goal_id: str) -> dict:
        """
        Soft delete a goal.

        Returns:
            Dictionary with deleted_count

        Raises:
            GoalNotFoundError: If goal not found
        """
        query = {"_id": _object_id(goal_id), "page_id": page_id, "deleted": False}

        existing = await self.goals.find_one(query)
        if not existing:
            raise GoalNotFoundError("Goal not found")

        result = await self.goals.update_one(
            query,
            {
                "$set": {
                    "deleted": True,
                    "deleted_at": datetime.now(timezone.utc),
                }
            },
        )

        return {"deleted_count": result.modified_count}
