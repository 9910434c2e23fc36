"""Remote store client - page-scoped goal CRUD over HTTP."""
import logging
from collections.abc import Mapping
from typing import Any, Optional, Protocol, Union
from urllib.parse import quote

import httpx
from pydantic import BaseModel

from goalsync.config import settings
from goalsync.errors import RemoteStoreError
from goalsync.models.goal import Goal, GoalCreate, GoalUpdate

logger = logging.getLogger(__name__)


class RemoteStore(Protocol):
    """Contract the sync engine needs from the remote goal store."""

    async def list_goals(self, page_id: str) -> list[Goal]:
        ...

    async def create_goal(self, page_id: str, goal: Goal) -> Goal:
        ...

    async def update_goal(self, page_id: str, goal_id: str, partial: Union[Mapping, BaseModel]) -> Goal:
        ...

    async def delete_goal(self, page_id: str, goal_id: str) -> dict:
        ...


def _goals_path(page_id: str, goal_id: Optional[str] = None) -> str:
    path = f"/pages/{quote(page_id, safe='')}/goals"
    if goal_id is not None:
        path += f"/{quote(goal_id, safe='')}"
    return path


class RemoteGoalClient:
    """
    httpx-based client for the goal store API.

    Every failure - transport error, timeout, error status, bad body - is
    raised as ``RemoteStoreError``.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize client.

        Args:
            base_url: Store URL (defaults to ``settings.remote_base_url``)
            token: Optional bearer token sent with every request
            timeout: Request timeout in seconds
            transport: Custom httpx transport (ASGI app, mocks)
        """
        headers = {"Accept": "application/json"}
        token = token or settings.remote_token
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._client = httpx.AsyncClient(
            base_url=base_url or settings.remote_base_url,
            headers=headers,
            timeout=timeout if timeout is not None else settings.remote_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> "RemoteGoalClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
            return response.json() if response.content else None
        except httpx.HTTPStatusError as e:
            raise RemoteStoreError(
                f"{method} {path} returned {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise RemoteStoreError(f"{method} {path} failed: {e!r}") from e
        except ValueError as e:
            raise RemoteStoreError(f"{method} {path} returned an invalid body: {e}") from e

    def _to_goal(self, record: Any) -> Goal:
        try:
            return Goal.model_validate(record)
        except ValueError as e:
            raise RemoteStoreError(f"Invalid goal record from store: {e}") from e

    async def list_goals(self, page_id: str) -> list[Goal]:
        """List goal records of a page."""
        data = await self._request("GET", _goals_path(page_id))
        if not isinstance(data, list):
            raise RemoteStoreError("Goal list response is not an array")
        return [self._to_goal(record) for record in data]

    async def create_goal(self, page_id: str, goal: Goal) -> Goal:
        """
        Create a goal on a page.

        Returns:
            Stored record, carrying the server-assigned id and timestamps
        """
        body = GoalCreate.from_goal(goal).model_dump(mode="json", by_alias=True)
        body["pageId"] = page_id
        return self._to_goal(await self._request("POST", _goals_path(page_id), json=body))

    async def update_goal(self, page_id: str, goal_id: str, partial: Union[Mapping, BaseModel]) -> Goal:
        """Apply a partial update; only the provided fields are sent."""
        if isinstance(partial, Goal):
            update = GoalUpdate.from_goal(partial)
        elif isinstance(partial, GoalUpdate):
            update = partial
        else:
            update = GoalUpdate.model_validate(partial)
        body = update.model_dump(mode="json", by_alias=True, exclude_unset=True)
        return self._to_goal(await self._request("PATCH", _goals_path(page_id, goal_id), json=body))

    async def delete_goal(self, page_id: str, goal_id: str) -> dict:
        """Delete a goal; returns the store's acknowledgement."""
        return await self._request("DELETE", _goals_path(page_id, goal_id)) or {}
