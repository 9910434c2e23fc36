"""Goal model definitions."""
import logging
import math
import re
import secrets
import string
from collections.abc import Mapping
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from goalsync.utils.clock import ensure_aware, utcnow

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase

DUE_DATE_FORMATS = ("%b %d, %Y", "%B %d, %Y", "%m/%d/%Y")


class Priority(str, Enum):
    """Goal priorities, as displayed."""

    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"
    NOT_SET = "Not Set"


class Status(str, Enum):
    """Goal statuses, as displayed."""

    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    BLOCKED = "Blocked"


class SourceType(str, Enum):
    """Where in a document a goal is defined."""

    HEADING = "heading"
    TABLE = "table"
    UNKNOWN = "unknown"


def _compact(value: str) -> str:
    return re.sub(r"[^a-z0-9]", "", value.lower())


def _match_enum(enum_cls: type[Enum], value: Any) -> Optional[Enum]:
    if value is None or value == "":
        return None
    if isinstance(value, enum_cls):
        return value
    text = str(value).strip()
    lowered = text.lower()
    for member in enum_cls:
        if member.value.lower() == lowered:
            return member
    # "in_progress", "InProgress", "NOT_SET"
    compact = _compact(text)
    for member in enum_cls:
        if compact and (_compact(member.value) == compact or _compact(member.name) == compact):
            return member
    return None


def validate_priority(value: Any) -> Optional[Priority]:
    """
    Match a raw priority against the known priorities.

    Args:
        value: Raw priority, e.g. ``"high"`` or ``"Not Set"``

    Returns:
        Canonical Priority, or None when nothing matches
    """
    return _match_enum(Priority, value)


def validate_status(value: Any) -> Optional[Status]:
    """
    Match a raw status against the known statuses.

    Args:
        value: Raw status, e.g. ``"in progress"``

    Returns:
        Canonical Status, or None when nothing matches
    """
    return _match_enum(Status, value)


def _coerce_enum_value(value: Any, matcher, default: Enum) -> str:
    if value is None or value == "":
        return default.value
    member = matcher(value)
    if member is not None:
        return member.value
    # Unknown values are kept verbatim
    logger.debug("Keeping unrecognised value %r (no match in %s)", value, default.__class__.__name__)
    return str(value)


def parse_due_date(value: Any) -> Optional[date]:
    """
    Parse a due date from ISO text, display text or a date/datetime.

    Examples:
        >>> parse_due_date("2025-03-01")
        datetime.date(2025, 3, 1)
        >>> parse_due_date("Mar 1, 2025")
        datetime.date(2025, 3, 1)
        >>> parse_due_date("") is None
        True
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text:
        return None

    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    for fmt in DUE_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue

    logger.warning("Ignoring unparseable due date %r", text)
    return None


def compute_percent_complete(action_items: list) -> int:
    """Percentage of completed action items, rounded half up; 0 when empty."""
    if not action_items:
        return 0
    completed = sum(1 for item in action_items if _item_completed(item))
    return int(math.floor(completed * 100 / len(action_items) + 0.5))


def _item_completed(item: Any) -> bool:
    if isinstance(item, Mapping):
        return bool(item.get("completed"))
    return bool(getattr(item, "completed", False))


def generate_goal_id(now: Optional[datetime] = None) -> str:
    """Local goal id: ``goal-<epoch ms>-<9 random base36 chars>``."""
    now = now or utcnow()
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"goal-{int(now.timestamp() * 1000)}-{suffix}"


class CamelModel(BaseModel):
    """Base model serialising to the camelCase wire shape."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class ActionItem(CamelModel):
    """A single task in a goal's action plan."""

    text: str = ""
    completed: bool = False


class RelatedFile(CamelModel):
    """A file linked from a goal."""

    name: str = ""
    url: str = "#"


class GoalSource(CamelModel):
    """Location of a goal inside a document."""

    type: str = SourceType.UNKNOWN.value
    position: Any = None

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: Any) -> str:
        member = _match_enum(SourceType, value)
        return (member or SourceType.UNKNOWN).value


class GoalBase(CamelModel):
    """Base goal fields (everything a client may set)."""

    page_id: Optional[str] = None
    workspace_id: Optional[str] = None
    title: str = "Untitled Goal"
    detail: str = ""
    metrics: str = ""
    timeline: str = ""
    priority: str = Priority.MEDIUM.value
    status: str = Status.IN_PROGRESS.value
    due_date: Optional[date] = None
    action_items: list[ActionItem] = Field(default_factory=list)
    related_files: list[RelatedFile] = Field(default_factory=list)
    source: GoalSource = Field(default_factory=GoalSource)
    created_by: Optional[str] = None

    @field_validator("title", mode="before")
    @classmethod
    def _default_title(cls, value: Any) -> Any:
        return value or "Untitled Goal"

    @field_validator("detail", "metrics", "timeline", mode="before")
    @classmethod
    def _empty_text(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("priority", mode="before")
    @classmethod
    def _coerce_priority(cls, value: Any) -> str:
        return _coerce_enum_value(value, validate_priority, Priority.MEDIUM)

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any) -> str:
        return _coerce_enum_value(value, validate_status, Status.IN_PROGRESS)

    @field_validator("due_date", mode="before")
    @classmethod
    def _coerce_due_date(cls, value: Any) -> Optional[date]:
        return parse_due_date(value)

    @field_validator("action_items", "related_files", mode="before")
    @classmethod
    def _empty_list(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("source", mode="before")
    @classmethod
    def _default_source(cls, value: Any) -> Any:
        return GoalSource() if value is None else value


class GoalCreate(GoalBase):
    """Goal creation model."""

    @classmethod
    def from_goal(cls, goal: "Goal") -> "GoalCreate":
        """Request body for pushing a locally created goal to the store."""
        return cls.model_validate(goal.model_dump(include=set(GoalBase.model_fields)))


class GoalUpdate(CamelModel):
    """Goal update model - all fields optional."""

    page_id: Optional[str] = None
    workspace_id: Optional[str] = None
    title: Optional[str] = None
    detail: Optional[str] = None
    metrics: Optional[str] = None
    timeline: Optional[str] = None
    priority: Optional[str] = None
    status: Optional[str] = None
    due_date: Optional[date] = None
    action_items: Optional[list[ActionItem]] = None
    related_files: Optional[list[RelatedFile]] = None
    source: Optional[GoalSource] = None
    created_by: Optional[str] = None

    @field_validator("priority", mode="before")
    @classmethod
    def _coerce_priority(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        return _coerce_enum_value(value, validate_priority, Priority.MEDIUM)

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        return _coerce_enum_value(value, validate_status, Status.IN_PROGRESS)

    @field_validator("due_date", mode="before")
    @classmethod
    def _coerce_due_date(cls, value: Any) -> Optional[date]:
        return parse_due_date(value)

    @classmethod
    def from_goal(cls, goal: "Goal") -> "GoalUpdate":
        """Full-content update body; idempotent when retried."""
        return cls.model_validate(goal.model_dump(include=set(GoalBase.model_fields)))


CONTENT_FIELDS = tuple(GoalBase.model_fields)

# Keys that callers may never overwrite through update()
_PROTECTED_FIELDS = {"id", "created_at", "updated_at", "percent_complete", "synced_at", "local_edits"}


class Goal(GoalBase):
    """Full goal model with identity, timestamps and derived progress."""

    id: str = Field(default_factory=generate_goal_id)
    percent_complete: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    # Server updatedAt last seen for this goal; None until the goal has
    # been created remotely.
    synced_at: Optional[datetime] = None
    # Set by local writes, cleared once the remote store has confirmed them
    local_edits: bool = False

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if value is None or value == "":
            return generate_goal_id()
        return str(value)

    @field_validator("percent_complete", mode="before")
    @classmethod
    def _clamp_percent(cls, value: Any) -> int:
        try:
            percent = int(round(float(value or 0)))
        except (TypeError, ValueError):
            return 0
        return max(0, min(100, percent))

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _default_timestamp(cls, value: Any) -> Any:
        return utcnow() if value is None or value == "" else value

    @field_validator("created_at", "updated_at", "synced_at", mode="after")
    @classmethod
    def _aware(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware(value) if value is not None else None

    @classmethod
    def new(cls, data: Union[Mapping, BaseModel, None] = None, now: Optional[datetime] = None) -> "Goal":
        """
        Construct a goal, generating an id and timestamps when missing.

        Args:
            data: Goal fields, in camelCase or snake_case
            now: Timestamp to use for generated fields

        Returns:
            New Goal with enums coerced and progress computed
        """
        values = normalize_goal_fields(data or {})
        now = now or utcnow()
        if not values.get("id"):
            values["id"] = generate_goal_id(now)
        for name in ("created_at", "updated_at"):
            if not values.get(name):
                values[name] = now
        goal = cls.model_validate(values)
        if goal.action_items:
            goal.recompute_percent_complete()
        return goal

    def update(self, changes: Union[Mapping, BaseModel], now: Optional[datetime] = None) -> "Goal":
        """
        Merge the provided keys into this goal.

        Unknown keys and identity fields are ignored. Priority and status
        are re-validated, updatedAt never moves backwards.
        """
        fields = normalize_goal_fields(changes)
        for name in _PROTECTED_FIELDS:
            fields.pop(name, None)

        if fields:
            # Validate the merged record first so a bad value leaves the goal untouched
            merged = type(self).model_validate({**self.model_dump(), **fields})
            for name in fields:
                setattr(self, name, getattr(merged, name))
            if "action_items" in fields:
                self.recompute_percent_complete()

        self.touch(now)
        return self

    def touch(self, now: Optional[datetime] = None) -> None:
        now = ensure_aware(now or utcnow())
        if now > self.updated_at:
            self.updated_at = now

    def recompute_percent_complete(self) -> int:
        self.percent_complete = compute_percent_complete(self.action_items)
        return self.percent_complete

    @property
    def is_pending(self) -> bool:
        """True until the remote store has acknowledged this goal."""
        return self.synced_at is None

    @property
    def is_dirty(self) -> bool:
        """True when there are local edits the remote store has not seen."""
        return self.synced_at is None or self.local_edits

    def format_due_date(self) -> str:
        """Due date for display, e.g. ``Mar 1, 2025``; empty when unset."""
        if not self.due_date:
            return ""
        return f"{self.due_date:%b} {self.due_date.day}, {self.due_date.year}"

    def matches(self, query: str) -> bool:
        """Case-insensitive search over the goal's text fields."""
        if not query:
            return False
        needle = query.lower()
        haystacks = [self.title, self.detail, self.metrics, self.timeline]
        haystacks.extend(item.text for item in self.action_items)
        return any(needle in (text or "").lower() for text in haystacks)


_FIELD_NAMES: dict[str, str] = {
    **{name: name for name in Goal.model_fields},
    **{to_camel(name): name for name in Goal.model_fields},
}


def normalize_goal_fields(data: Union[Mapping, BaseModel]) -> dict[str, Any]:
    """
    Turn a camelCase/snake_case mapping or model into known Goal field names.

    Update models only contribute the fields that were explicitly set.
    Unknown keys are dropped.
    """
    if isinstance(data, GoalUpdate):
        raw = data.model_dump(exclude_unset=True)
    elif isinstance(data, BaseModel):
        raw = data.model_dump()
    else:
        raw = dict(data)

    fields = {}
    for key, value in raw.items():
        name = _FIELD_NAMES.get(key)
        if name is None:
            logger.debug("Ignoring unknown goal field %r", key)
            continue
        fields[name] = value
    return fields
