"""Abstract document tree used by the goal projection.

The rich-text engine is an external collaborator. All the projection needs
from it is a tree of nodes (kind, text, attrs, children) that can be walked
in document order, and a way to replace the text of some nodes in one
transaction. ``Document`` is an in-memory implementation of that interface.
"""
from collections.abc import Iterator, Sequence
from enum import Enum
from typing import Any, Protocol

from pydantic import BaseModel, Field

NodePath = tuple[int, ...]


class NodeKind(str, Enum):
    """Node types understood by the projection."""

    DOC = "doc"
    HEADING = "heading"
    PARAGRAPH = "paragraph"
    TABLE = "table"
    TABLE_ROW = "tableRow"
    TABLE_HEADER = "tableHeader"
    TABLE_CELL = "tableCell"
    TASK_LIST = "taskList"
    TASK_ITEM = "taskItem"
    BULLET_LIST = "bulletList"
    LIST_ITEM = "listItem"
    TEXT = "text"


# Nodes whose text is held by child blocks rather than directly
CONTAINER_KINDS = {
    NodeKind.DOC,
    NodeKind.TABLE,
    NodeKind.TABLE_ROW,
    NodeKind.TABLE_HEADER,
    NodeKind.TABLE_CELL,
    NodeKind.TASK_LIST,
    NodeKind.TASK_ITEM,
    NodeKind.BULLET_LIST,
    NodeKind.LIST_ITEM,
}


class DocumentNode(BaseModel):
    """A node in the document tree."""

    kind: str
    text: str = ""
    attrs: dict[str, Any] = Field(default_factory=dict)
    children: list["DocumentNode"] = Field(default_factory=list)

    @property
    def text_content(self) -> str:
        """Text of this node and all its descendants."""
        return self.text + "".join(child.text_content for child in self.children)

    def is_a(self, kind: NodeKind) -> bool:
        return self.kind == kind.value


class DocumentHandle(Protocol):
    """What the projection requires from a document engine."""

    def walk(self) -> Iterator[tuple[NodePath, DocumentNode]]:
        ...

    def apply_text_edits(self, edits: Sequence[tuple[NodePath, str]]) -> None:
        ...


class Document:
    """In-memory document satisfying ``DocumentHandle``."""

    def __init__(self, root: DocumentNode):
        self.root = root

    @classmethod
    def of(cls, *blocks: DocumentNode) -> "Document":
        """Build a document from top-level blocks."""
        return cls(DocumentNode(kind=NodeKind.DOC.value, children=list(blocks)))

    def walk(self) -> Iterator[tuple[NodePath, DocumentNode]]:
        """Yield ``(path, node)`` pairs in document order (pre-order)."""
        stack: list[tuple[NodePath, DocumentNode]] = [((), self.root)]
        while stack:
            path, node = stack.pop()
            yield path, node
            for index in range(len(node.children) - 1, -1, -1):
                stack.append((path + (index,), node.children[index]))

    def node_at(self, path: Sequence[int]) -> DocumentNode:
        """
        Resolve a child-index path.

        Raises:
            KeyError: If the path does not point at a node
        """
        node = self.root
        for index in path:
            if not 0 <= index < len(node.children):
                raise KeyError(f"No node at path {tuple(path)}")
            node = node.children[index]
        return node

    def apply_text_edits(self, edits: Sequence[tuple[NodePath, str]]) -> None:
        """
        Replace the text of several nodes as one transaction.

        Every path is resolved before anything changes, so an invalid path
        leaves the document untouched.
        """
        targets = [(self.node_at(path), text) for path, text in edits]
        for node, text in targets:
            _replace_text(node, text)

    def to_dict(self) -> dict[str, Any]:
        return self.root.model_dump()


def _replace_text(node: DocumentNode, text: str) -> None:
    try:
        kind = NodeKind(node.kind)
    except ValueError:
        kind = None
    if kind in CONTAINER_KINDS:
        node.text = ""
        node.children = [paragraph(text)]
    else:
        node.text = text
        node.children = []


# ---------- builders ----------


def paragraph(text: str = "") -> DocumentNode:
    return DocumentNode(kind=NodeKind.PARAGRAPH.value, text=text)


def heading(text: str, level: int = 2) -> DocumentNode:
    return DocumentNode(kind=NodeKind.HEADING.value, text=text, attrs={"level": level})


def table_cell(text: str = "", header: bool = False) -> DocumentNode:
    kind = NodeKind.TABLE_HEADER if header else NodeKind.TABLE_CELL
    return DocumentNode(kind=kind.value, children=[paragraph(text)])


def table_row(*cells: str, header: bool = False) -> DocumentNode:
    return DocumentNode(
        kind=NodeKind.TABLE_ROW.value,
        children=[table_cell(text, header=header) for text in cells],
    )


def table(*rows: DocumentNode) -> DocumentNode:
    return DocumentNode(kind=NodeKind.TABLE.value, children=list(rows))


def task_list(*items: tuple[str, bool]) -> DocumentNode:
    return DocumentNode(
        kind=NodeKind.TASK_LIST.value,
        children=[
            DocumentNode(
                kind=NodeKind.TASK_ITEM.value,
                attrs={"checked": checked},
                children=[paragraph(text)],
            )
            for text, checked in items
        ],
    )


def bullet_list(*items: str) -> DocumentNode:
    return DocumentNode(
        kind=NodeKind.BULLET_LIST.value,
        children=[
            DocumentNode(kind=NodeKind.LIST_ITEM.value, children=[paragraph(text)])
            for text in items
        ],
    )
