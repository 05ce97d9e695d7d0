"""Tree view materialized from a story timeline.

Every generated option becomes a node. Only nodes on the selection path
have children: the rounds below an unchosen option were never generated
(or were discarded by a branch switch), so those nodes are leaves.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from storyloom.branching.timeline import StoryTimeline
    from storyloom.models import ChapterOption, StoryPath


@dataclass(frozen=True)
class TreeNode:
    """One node of the materialized story tree.

    Attributes:
        path: Indices from the root; empty for the root.
        content: The chapter option, or None for the root.
        is_on_selection_path: Whether this node is part of the live story.
        children: Child nodes in display order.
        feedback: Writing-coach commentary last requested for this node.
    """

    path: StoryPath
    content: ChapterOption | None
    is_on_selection_path: bool
    children: tuple[TreeNode, ...] = ()
    feedback: str | None = None

    @property
    def depth(self) -> int:
        return len(self.path)

    @property
    def is_root(self) -> bool:
        return not self.path


def materialize(
    timeline: StoryTimeline,
    annotations: Mapping[StoryPath, str] | None = None,
) -> TreeNode:
    """Build the tree view of ``timeline``.

    Pure: the same timeline snapshot always yields an equal tree.

    Args:
        timeline: Source of truth.
        annotations: Optional feedback text keyed by node path.
    """
    notes = annotations or {}
    option_sets = timeline.all_option_sets
    selection = timeline.selection_path

    def children_of(parent: StoryPath) -> tuple[TreeNode, ...]:
        depth = len(parent)
        if depth >= len(option_sets):
            return ()
        # At the live frontier nothing is chosen yet, so nothing recurses.
        chosen = selection[depth] if depth < len(selection) else None
        nodes = []
        for index, option in enumerate(option_sets[depth]):
            path = (*parent, index)
            on_path = index == chosen
            nodes.append(
                TreeNode(
                    path=path,
                    content=option,
                    is_on_selection_path=on_path,
                    children=children_of(path) if on_path else (),
                    feedback=notes.get(path),
                )
            )
        return tuple(nodes)

    return TreeNode(path=(), content=None, is_on_selection_path=True, children=children_of(()))


def iter_nodes(root: TreeNode) -> Iterator[TreeNode]:
    """Depth-first, pre-order walk."""
    yield root
    for child in root.children:
        yield from iter_nodes(child)


def find_node(root: TreeNode, path: StoryPath) -> TreeNode | None:
    node = root
    for index in path:
        if not 0 <= index < len(node.children):
            return None
        node = node.children[index]
    return node
