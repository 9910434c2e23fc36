"""Goal router - page-scoped API endpoints for the goal store."""
from fastapi import APIRouter, Depends, HTTPException, status

from goalsync.database import get_database
from goalsync.errors import GoalNotFoundError
from goalsync.models.goal import Goal, GoalCreate, GoalUpdate
from goalsync.services.goal_store import GoalStoreService


router = APIRouter(prefix="/pages/{page_id}/goals", tags=["goals"])


async def get_goal_store(db=Depends(get_database)) -> GoalStoreService:
    """Dependency providing the goal store service."""
    return GoalStoreService(db)


@router.get("", response_model=list[Goal])
async def list_goals(
    page_id: str,
    store: GoalStoreService = Depends(get_goal_store),
):
    """
    List the goals of a page.

    - Excludes deleted goals
    """
    return await store.list_goals(page_id)


@router.post("", response_model=Goal, status_code=status.HTTP_201_CREATED)
async def create_goal(
    page_id: str,
    goal: GoalCreate,
    store: GoalStoreService = Depends(get_goal_store),
):
    """
    Create a goal on a page.

    - Assigns id, createdAt and updatedAt
    - Computes percentComplete from the action items
    """
    return await store.create_goal(page_id, goal)


@router.get("/{goal_id}", response_model=Goal)
async def get_goal(
    page_id: str,
    goal_id: str,
    store: GoalStoreService = Depends(get_goal_store),
):
    """
    Get a single goal.

    - Returns 404 if goal not found or deleted
    """
    try:
        return await store.get_goal(page_id, goal_id)
    except GoalNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.patch("/{goal_id}", response_model=Goal)
async def update_goal(
    page_id: str,
    goal_id: str,
    goal_update: GoalUpdate,
    store: GoalStoreService = Depends(get_goal_store),
):
    """
    Update a goal.

    - Only the provided fields change
    - Returns 404 if goal not found
    """
    try:
        return await store.update_goal(page_id, goal_id, goal_update)
    except GoalNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.delete("/{goal_id}")
async def delete_goal(
    page_id: str,
    goal_id: str,
    store: GoalStoreService = Depends(get_goal_store),
):
    """
    Soft delete a goal.

    - Marks goal as deleted, doesn't remove from database
    - Returns 404 if goal not found
    """
    try:
        return await store.delete_goal(page_id, goal_id)
    except GoalNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
