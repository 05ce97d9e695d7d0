"""Branching story core: timeline, tree view, controller and node editor."""

from storyloom.branching.controller import (
    DEFAULT_SYMBOL_THEME,
    FALLBACK_SYMBOL_THEME,
    BranchController,
    StorySink,
    StoryState,
)
from storyloom.branching.editor import NodeEditor
from storyloom.branching.errors import (
    GenerationError,
    InvalidStateError,
    StaleResponseError,
    StoryError,
    StoryValidationError,
)
from storyloom.branching.status import StatusChannel
from storyloom.branching.timeline import StoryTimeline
from storyloom.branching.tree import TreeNode, find_node, iter_nodes, materialize

__all__ = [
    "DEFAULT_SYMBOL_THEME",
    "FALLBACK_SYMBOL_THEME",
    "BranchController",
    "GenerationError",
    "InvalidStateError",
    "NodeEditor",
    "StaleResponseError",
    "StatusChannel",
    "StoryError",
    "StorySink",
    "StoryState",
    "StoryTimeline",
    "StoryValidationError",
    "TreeNode",
    "find_node",
    "iter_nodes",
    "materialize",
]
