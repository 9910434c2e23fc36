"""Document projection - reads goal fields out of, and writes them back into, document content.

A goal can live in a document in two layouts:

- a table row whose first cell is the goal title, followed by
  priority / due date / status / detail columns;
- a heading equal to the goal title, followed by subsection headings
  (Detail, Success Metrics, Timeline, Priority, Due Date, Status,
  Action Plan, Related files) whose bodies hold the values.

The table layout wins when both exist.
"""
import logging
from typing import Any, Optional

from pydantic import BaseModel, Field

from goalsync.models.document import DocumentHandle, DocumentNode, NodeKind, NodePath
from goalsync.models.goal import ActionItem, Goal, GoalSource, RelatedFile, SourceType

logger = logging.getLogger(__name__)

# Column offsets from the title cell
TABLE_COLUMNS = {
    1: "priority",
    2: "due_date",
    3: "status",
    4: "detail",
}

TEXT_SECTIONS = ("detail", "metrics", "timeline")
ITEM_KINDS = {NodeKind.TASK_ITEM.value, NodeKind.LIST_ITEM.value}


class GoalProjection(BaseModel):
    """Goal fields found in a document. None means "not present"."""

    title: str
    detail: Optional[str] = None
    metrics: Optional[str] = None
    timeline: Optional[str] = None
    priority: Optional[str] = None
    status: Optional[str] = None
    due_date: Optional[str] = None
    action_items: list[ActionItem] = Field(default_factory=list)
    related_files: list[RelatedFile] = Field(default_factory=list)
    source: GoalSource = Field(default_factory=GoalSource)

    def as_changes(self) -> dict[str, Any]:
        """Fields suitable for ``Goal.new`` / ``Goal.update``."""
        changes = self.model_dump(exclude_none=True)
        if not self.action_items:
            changes.pop("action_items")
        if not self.related_files:
            changes.pop("related_files")
        return changes


def section_for(heading_text: str) -> Optional[str]:
    """Goal field a subsection heading maps to, or None if unrecognised."""
    text = heading_text.strip().lower()
    if text in ("detail", "details"):
        return "detail"
    if text.startswith("success metric"):
        return "metrics"
    return {
        "timeline": "timeline",
        "priority": "priority",
        "due date": "due_date",
        "status": "status",
        "action plan": "action_items",
        "related files": "related_files",
    }.get(text)


def _cell_text(node: DocumentNode) -> str:
    return node.text_content.strip()


def _find_table_row(document: DocumentHandle, title: str) -> Optional[tuple[NodePath, DocumentNode]]:
    for path, node in document.walk():
        if node.is_a(NodeKind.TABLE_ROW) and node.children and _cell_text(node.children[0]) == title:
            return path, node
    return None


def _iter_heading_block(document: DocumentHandle, title: str):
    """
    Yield ``(section, path, node)`` for the blocks under a goal heading.

    The first yielded item is ``(None, path, heading)`` for the title
    heading itself. Items of task/bullet lists are yielded whole; their
    inner paragraphs are not. Stops at the first unrecognised heading.
    """
    started = False
    section = None
    skip_prefix: Optional[NodePath] = None

    for path, node in document.walk():
        if skip_prefix is not None and path[: len(skip_prefix)] == skip_prefix:
            continue
        skip_prefix = None

        if node.is_a(NodeKind.HEADING):
            text = node.text_content.strip()
            if not started:
                if text == title:
                    started = True
                    yield None, path, node
                continue
            section = section_for(text)
            if section is None:
                return
            continue

        if not started or section is None:
            continue

        if node.kind in ITEM_KINDS:
            skip_prefix = path
            yield section, path, node
        elif node.is_a(NodeKind.PARAGRAPH):
            yield section, path, node


def read(document: DocumentHandle, goal_title: str) -> Optional[GoalProjection]:
    """
    Extract a goal's fields from a document.

    Args:
        document: Document to scan
        goal_title: Exact (trimmed) text of the goal's title cell or heading

    Returns:
        GoalProjection, or None when the title appears in neither layout
    """
    title = goal_title.strip()

    found = _find_table_row(document, title)
    if found is not None:
        path, row = found
        projection = GoalProjection(
            title=title,
            source=GoalSource(type=SourceType.TABLE.value, position=list(path)),
        )
        for offset, field in TABLE_COLUMNS.items():
            if offset < len(row.children):
                text = _cell_text(row.children[offset])
                if text:
                    setattr(projection, field, text)
        return projection

    projection = None
    text_parts: dict[str, list[str]] = {name: [] for name in TEXT_SECTIONS}
    for section, path, node in _iter_heading_block(document, title):
        if section is None:
            projection = GoalProjection(
                title=title,
                source=GoalSource(type=SourceType.HEADING.value, position=list(path)),
            )
            continue

        text = node.text_content.strip()
        if not text:
            continue
        if section in TEXT_SECTIONS and node.is_a(NodeKind.PARAGRAPH):
            text_parts[section].append(text)
        elif section in ("priority", "status", "due_date") and node.is_a(NodeKind.PARAGRAPH):
            setattr(projection, section, text)
        elif section == "action_items" and node.is_a(NodeKind.TASK_ITEM):
            projection.action_items.append(
                ActionItem(text=text, completed=bool(node.attrs.get("checked")))
            )
        elif section == "related_files" and node.is_a(NodeKind.LIST_ITEM):
            projection.related_files.append(
                RelatedFile(name=text, url=node.attrs.get("href") or "#")
            )

    if projection is None:
        return None
    for name, parts in text_parts.items():
        if parts:
            setattr(projection, name, "\n".join(parts))
    return projection


def _display_value(goal: Goal, field: str) -> str:
    if field == "due_date":
        return goal.format_due_date()
    return getattr(goal, field) or ""


def _table_edits(document: DocumentHandle, goal: Goal) -> Optional[list[tuple[NodePath, str]]]:
    found = _find_table_row(document, goal.title.strip())
    if found is None:
        return None
    path, row = found
    edits = []
    for offset, field in TABLE_COLUMNS.items():
        if offset >= len(row.children):
            continue
        value = _display_value(goal, field)
        if value and value != _cell_text(row.children[offset]):
            edits.append((path + (offset,), value))
    return edits


def _heading_edits(document: DocumentHandle, goal: Goal) -> Optional[list[tuple[NodePath, str]]]:
    found = False
    seen_sections = set()
    edits = []
    for section, path, node in _iter_heading_block(document, goal.title.strip()):
        if section is None:
            found = True
            continue
        if not node.is_a(NodeKind.PARAGRAPH) or section in ("action_items", "related_files"):
            continue

        value = _display_value(goal, section)
        if not value:
            continue
        current = node.text_content.strip()
        if section in seen_sections:
            # The whole value lives in the section's first paragraph
            if current:
                edits.append((path, ""))
            continue
        seen_sections.add(section)
        if value != current:
            edits.append((path, value))
    return edits if found else None


def write(document: DocumentHandle, goal: Goal) -> bool:
    """
    Write a goal's current values into its table row or heading block.

    Empty goal values never blank existing text.

    Returns:
        True if the document was changed, False if the goal has no
        location in the document yet or nothing differed
    """
    if goal.source.type == SourceType.HEADING.value:
        strategies = (_heading_edits, _table_edits)
    else:
        strategies = (_table_edits, _heading_edits)

    for strategy in strategies:
        edits = strategy(document, goal)
        if edits is None:
            continue
        if not edits:
            return False
        document.apply_text_edits(edits)
        logger.debug("Projected goal %s into document (%d edits)", goal.id, len(edits))
        return True

    logger.debug("Goal %r has no location in the document", goal.title)
    return False
