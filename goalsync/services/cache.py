"""Local goal cache - durable snapshot of every goal, read synchronously."""
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Protocol, Union

from pydantic import ValidationError

from goalsync.config import settings
from goalsync.errors import PersistenceError
from goalsync.models.goal import Goal

logger = logging.getLogger(__name__)


class KeyValueStorage(Protocol):
    """String key/value storage, in the manner of browser localStorage."""

    def get_item(self, key: str) -> Optional[str]:
        ...

    def set_item(self, key: str, value: str) -> None:
        ...


class MemoryStorage:
    """Non-durable storage for tests and throwaway sessions."""

    def __init__(self, items: Optional[dict[str, str]] = None):
        self.items = dict(items or {})

    def get_item(self, key: str) -> Optional[str]:
        return self.items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self.items[key] = value


class JsonFileStorage:
    """
    Storage backed by a single JSON object file.

    Each key maps to a string value. Writes go to a temporary file in the
    same directory which then replaces the original, so a crash mid-write
    never leaves a half-written file behind.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).expanduser()

    def _read(self) -> dict:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise PersistenceError(f"Cannot read {self.path}: {e}") from e

        try:
            data = json.loads(text) if text.strip() else {}
        except ValueError as e:
            raise PersistenceError(f"Corrupt storage file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise PersistenceError(f"Corrupt storage file {self.path}: expected an object")
        return data

    def get_item(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def set_item(self, key: str, value: str) -> None:
        try:
            data = self._read()
        except PersistenceError as e:
            logger.warning("Replacing unreadable storage file: %s", e)
            data = {}
        data[key] = value

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=self.path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, ensure_ascii=False)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise PersistenceError(f"Cannot write {self.path}: {e}") from e


class LocalGoalCache:
    """
    Full-snapshot persistence of the goal list under one key.

    Never raises: unreadable storage loads as an empty list and failed saves
    are logged, leaving the caller running in memory only.
    """

    def __init__(self, storage: KeyValueStorage, key: Optional[str] = None):
        self.storage = storage
        self.key = key or settings.cache_key

    @classmethod
    def from_path(cls, path: Union[str, Path, None] = None, key: Optional[str] = None) -> "LocalGoalCache":
        """Cache stored in a JSON file (defaults to ``settings.cache_path``)."""
        return cls(JsonFileStorage(path or settings.cache_path), key=key)

    def load_all(self) -> list[Goal]:
        """
        Load every cached goal, in stored order.

        Returns:
            Goals that could be decoded; malformed records are skipped
        """
        try:
            raw = self.storage.get_item(self.key)
        except Exception as e:
            logger.error("Error loading goals from cache: %s", e)
            return []
        if not raw:
            return []

        try:
            records = json.loads(raw)
        except ValueError as e:
            logger.error("Error loading goals from cache: %s", e)
            return []
        if not isinstance(records, list):
            logger.error("Error loading goals from cache: snapshot is not a list")
            return []

        goals = []
        for index, record in enumerate(records):
            try:
                goals.append(Goal.model_validate(record))
            except ValidationError as e:
                logger.warning("Skipping malformed cached goal #%d: %s", index, e)
        return goals

    def save_all(self, goals: list[Goal]) -> bool:
        """
        Replace the whole snapshot with ``goals``.

        Returns:
            True if the snapshot was persisted
        """
        try:
            payload = json.dumps([goal.model_dump(mode="json", by_alias=True) for goal in goals])
            self.storage.set_item(self.key, payload)
        except Exception as e:
            logger.error("Error saving goals to cache: %s", e)
            return False
        return True
