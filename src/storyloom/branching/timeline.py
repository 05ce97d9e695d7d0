"""Story timeline: the authoritative state of a branching story.

The timeline is two flat sequences rather than a linked tree:

- ``all_option_sets[i]`` holds the options offered at round ``i + 1``
- ``selection_path[i]`` is the index the reader chose within that round

The tree shown to a reader is derived from these (see ``tree.py``), which
makes branch switching a truncation instead of a graph edit.

Invariants:
    ``len(selection_path) <= len(all_option_sets) <= len(selection_path) + 1``
    and every ``selection_path[i]`` indexes into ``all_option_sets[i]``.
    The lengths differ only while the newest round awaits a pick.

A node is addressed by a ``StoryPath``: one index per round, walking the
chosen option of every earlier round. Only the last index of a path may
leave the selection path; anything else names content that was never
generated.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from storyloom.branching.errors import StoryValidationError
from storyloom.models import ChapterOption, RoundOptionSet, StoryPath


@dataclass
class StoryTimeline:
    """Generated rounds plus the reader's choices.

    Attributes:
        all_option_sets: Every round's options, oldest first.
        selection_path: The chosen index per completed round.
        version: Bumped whenever the timeline is cleared or truncated, so
            responses issued against an older timeline can be recognised.
    """

    all_option_sets: list[RoundOptionSet] = field(default_factory=list)
    selection_path: list[int] = field(default_factory=list)
    version: int = 0

    @property
    def rounds_generated(self) -> int:
        return len(self.all_option_sets)

    @property
    def rounds_completed(self) -> int:
        return len(self.selection_path)

    @property
    def awaiting_selection(self) -> bool:
        return len(self.all_option_sets) > len(self.selection_path)

    @property
    def frontier(self) -> RoundOptionSet | None:
        """The newest round's options if no pick has been made for them."""
        if self.awaiting_selection:
            return self.all_option_sets[-1]
        return None

    @property
    def story_so_far(self) -> list[ChapterOption]:
        """The chosen chapter of every completed round, in reading order."""
        return [
            self.all_option_sets[i][choice] for i, choice in enumerate(self.selection_path)
        ]

    def clear(self) -> None:
        self.all_option_sets = []
        self.selection_path = []
        self.version += 1

    def append_round(self, options: RoundOptionSet) -> None:
        """Add a freshly generated round.

        Raises:
            StoryValidationError: If the previous round still awaits a pick or
                ``options`` is empty.
        """
        if self.awaiting_selection:
            raise StoryValidationError("The previous round has not been decided yet")
        if not options:
            raise StoryValidationError("A round must offer at least one option")
        self.all_option_sets.append(list(options))

    def select(self, index: int) -> ChapterOption:
        """Commit a pick among the frontier options.

        Raises:
            StoryValidationError: If there is no undecided round or ``index``
                is out of range. Nothing is changed in that case.
        """
        frontier = self.frontier
        if frontier is None:
            raise StoryValidationError("There is no round awaiting a choice")
        if not 0 <= index < len(frontier):
            raise StoryValidationError(
                f"Option {index} does not exist; round {len(self.all_option_sets)} "
                f"offers {len(frontier)} options",
                path=(index,),
            )
        self.selection_path.append(index)
        return frontier[index]

    def validate_path(self, path: Sequence[int]) -> StoryPath:
        """Check that ``path`` addresses a generated, non-root node.

        Returns:
            The path as a tuple.

        Raises:
            StoryValidationError: If the path is empty, deeper than the
                generated rounds, out of range, or leaves the selection path
                before its last step.
        """
        path = tuple(path)
        if not path:
            raise StoryValidationError("The root of the story cannot be addressed", path=path)
        if len(path) > len(self.all_option_sets):
            raise StoryValidationError(
                f"Path {list(path)} is deeper than the {len(self.all_option_sets)} "
                "generated rounds",
                path=path,
            )
        for depth, index in enumerate(path):
            round_size = len(self.all_option_sets[depth])
            if not 0 <= index < round_size:
                raise StoryValidationError(
                    f"Path {list(path)}: round {depth + 1} has no option {index}", path=path
                )
        prefix = path[:-1]
        if list(prefix) != self.selection_path[: len(prefix)]:
            raise StoryValidationError(
                f"Path {list(path)} leaves the chosen story before its last step; "
                "content below unchosen options was never generated",
                path=path,
            )
        return path

    def option_at(self, path: Sequence[int]) -> ChapterOption:
        """Look up the option a path addresses (validated)."""
        path = self.validate_path(path)
        return self.all_option_sets[len(path) - 1][path[-1]]

    def is_on_selection_path(self, path: Sequence[int]) -> bool:
        path = tuple(path)
        return len(path) <= len(self.selection_path) and tuple(
            self.selection_path[: len(path)]
        ) == path

    def truncate(self, path: Sequence[int]) -> StoryPath:
        """Rewind to ``path``: keep its rounds, make it the selection.

        Rounds generated after the branch point are discarded.

        Raises:
            StoryValidationError: If ``path`` is not a valid node path.
        """
        path = self.validate_path(path)
        self.all_option_sets = self.all_option_sets[: len(path)]
        self.selection_path = list(path)
        self.version += 1
        return path

    def check_invariants(self) -> None:
        """Raise ``StoryValidationError`` if the timeline is inconsistent."""
        chosen, generated = len(self.selection_path), len(self.all_option_sets)
        if not chosen <= generated <= chosen + 1:
            raise StoryValidationError(
                f"{len(self.selection_path)} choices for {len(self.all_option_sets)} rounds"
            )
        for depth, index in enumerate(self.selection_path):
            if not 0 <= index < len(self.all_option_sets[depth]):
                raise StoryValidationError(f"Choice {index} out of range in round {depth + 1}")
