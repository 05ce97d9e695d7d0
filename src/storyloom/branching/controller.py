"""Branch controller: the state machine driving a branching story.

States::

    idle -> loading -> options_ready -> loading -> ... -> story_complete
                                 \\                         |
                                  +---- switch_branch <-----+

Only the controller mutates the timeline. At most one round request is in
flight at a time: ``loading`` rejects ``start``, ``select_option`` and
``switch_branch``. ``reset`` is always allowed; a response that arrives for
a timeline the reset (or a later branch switch) has replaced is detected by
the timeline version it was issued against and dropped.

Failure policy:
    - ``start``: any failure returns to ``idle`` with nothing kept, except
      that a failed portrait falls back to symbolic art with a notice.
    - ``select_option`` / ``switch_branch``: the committed choice stays and
      the story is marked complete, so the reader is never left loading.
    - ``edit_node``: see ``NodeEditor``.
"""

from __future__ import annotations

import asyncio
import uuid
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol

from storyloom.branching.editor import NodeEditor
from storyloom.branching.errors import InvalidStateError, StaleResponseError
from storyloom.branching.status import StatusChannel
from storyloom.branching.timeline import StoryTimeline
from storyloom.branching.tree import TreeNode, materialize
from storyloom.gateway.base import GenerationError
from storyloom.models import PLACEHOLDER_COVER, GalleryStory
from storyloom.observability.logging import bind_story, get_logger, unbind_story

if TYPE_CHECKING:
    from collections.abc import Sequence

    from storyloom.gateway.base import GenerationGateway
    from storyloom.models import (
        ChapterOption,
        Character,
        NarrativeControls,
        RoundOptionSet,
        StoryPath,
    )

log = get_logger(__name__)

# Theme used when a portrait cannot be drawn and the character falls back to a symbol.
FALLBACK_SYMBOL_THEME = "light and shadow"
# Theme for symbolic characters that did not pick one.
DEFAULT_SYMBOL_THEME = "The Elements"


class StoryState(StrEnum):
    IDLE = "idle"
    LOADING = "loading"
    OPTIONS_READY = "options_ready"
    STORY_COMPLETE = "story_complete"


class StorySink(Protocol):
    """Anything a finished story can be handed to (e.g. ``StoryGallery``)."""

    def save(self, story: GalleryStory) -> Any: ...


class BranchController:
    """Owns a story timeline and every transition on it.

    Args:
        gateway: Content generation backend.
    """

    def __init__(self, gateway: GenerationGateway) -> None:
        self._gateway = gateway
        self._timeline = StoryTimeline()
        self._state = StoryState.IDLE
        self._controls: NarrativeControls | None = None
        self._characters: list[Character] = []
        self._feedback: dict[StoryPath, str] = {}
        self._story_id: str | None = None
        self.status = StatusChannel()
        self._editor = NodeEditor(self._timeline, gateway, self.status)

    # -- read-only projections -------------------------------------------------

    @property
    def state(self) -> StoryState:
        return self._state

    @property
    def timeline(self) -> StoryTimeline:
        return self._timeline

    @property
    def story_id(self) -> str | None:
        """Id the story will be saved under; tags its log events."""
        return self._story_id

    @property
    def controls(self) -> NarrativeControls | None:
        return self._controls

    @property
    def characters(self) -> list[Character]:
        return list(self._characters)

    @property
    def story_so_far(self) -> list[ChapterOption]:
        return self._timeline.story_so_far

    @property
    def current_round(self) -> int:
        """The round being offered or generated (1-based)."""
        if self._state is StoryState.STORY_COMPLETE:
            return self._timeline.rounds_completed
        return self._timeline.rounds_completed + 1

    @property
    def current_options(self) -> RoundOptionSet | None:
        if self._state is StoryState.OPTIONS_READY:
            return self._timeline.frontier
        return None

    @property
    def feedback(self) -> dict[StoryPath, str]:
        return dict(self._feedback)

    def tree(self) -> TreeNode:
        """Materialize the current tree view (with feedback annotations)."""
        return materialize(self._timeline, self._feedback)

    # -- helpers ---------------------------------------------------------------

    def _require(self, operation: str, *allowed: StoryState) -> None:
        if self._state not in allowed:
            raise InvalidStateError(operation, self._state.value)

    def _require_controls(self) -> NarrativeControls:
        if self._controls is None:
            raise InvalidStateError("continue the story", self._state.value, "no story started")
        return self._controls

    def _ensure_current(self, version: int) -> None:
        if self._timeline.version != version:
            raise StaleResponseError(version, self._timeline.version)

    async def _request_round(self, previous_text: str | None) -> RoundOptionSet:
        """Ask the gateway for the next round, tagged with the timeline version."""
        controls = self._require_controls()
        version = self._timeline.version
        round_number = self._timeline.rounds_completed + 1
        log.debug("round_requested", round=round_number, version=version)

        options = await self._gateway.generate_options(
            controls, round_number, previous_text, list(self._characters)
        )
        self._ensure_current(version)
        if len(options) != controls.options_per_round:
            raise GenerationError(
                "options",
                f"Expected {controls.options_per_round} story options, got {len(options)}",
            )
        return options

    async def _extend(self, previous_text: str, operation: str) -> None:
        """Generate the next round after a committed choice.

        On failure the choice stays and the story is marked complete.
        """
        self._state = StoryState.LOADING
        version = self._timeline.version
        try:
            options = await self._request_round(previous_text)
        except StaleResponseError as e:
            log.debug("stale_response_dropped", operation=operation, error=str(e))
            return
        except GenerationError as e:
            if self._timeline.version != version:
                log.debug("stale_failure_dropped", operation=operation, error=str(e))
                return
            log.warning("round_generation_failed", operation=operation, error=str(e))
            self.status.report_error(e.message)
            self._state = StoryState.STORY_COMPLETE
            return
        except Exception:
            if self._timeline.version == version:
                log.error("round_generation_crashed", operation=operation, exc_info=True)
                self.status.report_error("Story generation failed unexpectedly")
                self._state = StoryState.STORY_COMPLETE
            raise

        self._timeline.append_round(options)
        self._state = StoryState.OPTIONS_READY
        log.info("round_ready", round=self._timeline.rounds_generated, operation=operation)

    async def _realize_cast(
        self, cast: Sequence[Character], style: str, version: int
    ) -> list[Character]:
        """Realize every character concurrently, keeping cast order.

        If one fails the others are cancelled before the error propagates.
        """
        tasks = [asyncio.create_task(self._realize_character(c, style, version)) for c in cast]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _realize_character(
        self, character: Character, style: str, version: int
    ) -> Character:
        if character.is_realized:
            return character

        if character.representation == "portrait":
            try:
                ref = await self._gateway.realize_character_portrait(character.description, style)
            except GenerationError as e:
                log.warning("portrait_fallback", character=character.name, error=str(e))
                if self._timeline.version == version:
                    self.status.notify(
                        f"Couldn't create a portrait for {character.name}, "
                        "so we made a symbolic one instead!"
                    )
                concept, ref = await self._gateway.realize_character_symbol(
                    character, FALLBACK_SYMBOL_THEME, style
                )
                return character.model_copy(
                    update={"illustration_ref": ref, "symbolic_concept": concept}
                )
            return character.model_copy(update={"illustration_ref": ref})

        theme = character.symbolic_theme or DEFAULT_SYMBOL_THEME
        concept, ref = await self._gateway.realize_character_symbol(character, theme, style)
        return character.model_copy(update={"illustration_ref": ref, "symbolic_concept": concept})

    def _abandon_start(self) -> None:
        self._timeline.clear()
        self._characters = []
        self._state = StoryState.IDLE
        self._story_id = None
        unbind_story()

    # -- transitions -----------------------------------------------------------

    async def start(
        self,
        controls: NarrativeControls,
        characters: Sequence[Character] | None = None,
    ) -> None:
        """Begin a new story: realize the cast, then generate round 1.

        Args:
            controls: Narrative controls for the run.
            characters: Cast to realize; defaults to ``controls.characters``.

        Raises:
            InvalidStateError: Unless the controller is idle.
        """
        self._require("start", StoryState.IDLE)
        cast = list(controls.characters if characters is None else characters)

        self.status.clear()
        self._timeline.clear()
        self._feedback.clear()
        self._controls = controls
        self._characters = []
        self._story_id = f"story-{uuid.uuid4().hex[:12]}"
        bind_story(self._story_id)
        self._state = StoryState.LOADING
        version = self._timeline.version
        log.info("story_started", rounds=controls.num_rounds, characters=len(cast))

        try:
            realized = await self._realize_cast(cast, controls.style, version)
            self._ensure_current(version)
            self._characters = realized
            options = await self._request_round(None)
        except StaleResponseError as e:
            log.debug("stale_response_dropped", operation="start", error=str(e))
            return
        except GenerationError as e:
            if self._timeline.version != version:
                log.debug("stale_failure_dropped", operation="start", error=str(e))
                return
            log.warning("story_start_failed", source=e.source, error=str(e))
            self._abandon_start()
            self.status.report_error(e.message)
            return
        except Exception:
            if self._timeline.version == version:
                log.error("story_start_crashed", exc_info=True)
                self._abandon_start()
                self.status.report_error("The story could not be started")
            raise

        self._timeline.append_round(options)
        self._state = StoryState.OPTIONS_READY
        log.info("round_ready", round=1, operation="start")

    async def select_option(self, index: int) -> None:
        """Pick option ``index`` of the current round and continue.

        Raises:
            InvalidStateError: Unless options are ready.
            StoryValidationError: If ``index`` is out of range.
        """
        self._require("select_option", StoryState.OPTIONS_READY)
        controls = self._require_controls()
        chosen = self._timeline.select(index)
        self.status.clear()
        log.info("option_selected", round=self._timeline.rounds_completed, index=index)

        if self._timeline.rounds_completed >= controls.num_rounds:
            self._state = StoryState.STORY_COMPLETE
            log.info("story_complete", rounds=self._timeline.rounds_completed)
            return

        await self._extend(chosen.text, "select_option")

    async def switch_branch(self, target_path: Sequence[int]) -> None:
        """Rewind the story to ``target_path`` and regrow it from there.

        Every round generated after the branch point is discarded.

        Raises:
            InvalidStateError: If idle or loading.
            StoryValidationError: If ``target_path`` does not address a node.
        """
        self._require("switch_branch", StoryState.OPTIONS_READY, StoryState.STORY_COMPLETE)
        controls = self._require_controls()
        path = self._timeline.validate_path(target_path)

        self.status.clear()
        pruned_rounds = self._timeline.rounds_generated - len(path)
        self._timeline.truncate(path)
        self._feedback = {p: text for p, text in self._feedback.items() if len(p) <= len(path)}
        log.info("branch_switched", path=list(path), pruned_rounds=pruned_rounds)

        if len(path) >= controls.num_rounds:
            self._state = StoryState.STORY_COMPLETE
            return

        leaf = self._timeline.story_so_far[-1]
        await self._extend(leaf.text, "switch_branch")

    async def edit_node(self, path: Sequence[int], new_title: str, new_body: str) -> ChapterOption:
        """Rewrite a generated chapter and redraw its illustration.

        Raises:
            InvalidStateError: If idle or loading, or the node is mid-refresh.
            StoryValidationError: If ``path`` does not address a node.
        """
        self._require("edit_node", StoryState.OPTIONS_READY, StoryState.STORY_COMPLETE)
        controls = self._require_controls()
        return await self._editor.edit(
            path,
            new_title,
            new_body,
            characters=list(self._characters),
            style=controls.style,
        )

    async def request_feedback(
        self, path: Sequence[int], draft_title: str, draft_body: str
    ) -> str | None:
        """Get writing-coach feedback on a draft edit of the node at ``path``.

        Leaves the timeline untouched. The commentary is kept as an annotation
        on the node for tree views. A gateway failure is reported on the
        status channel and yields None.

        Raises:
            InvalidStateError: If no story is active.
            StoryValidationError: If ``path`` does not address a node.
        """
        self._require(
            "request_feedback",
            StoryState.LOADING,
            StoryState.OPTIONS_READY,
            StoryState.STORY_COMPLETE,
        )
        node_path = self._timeline.validate_path(path)
        version = self._timeline.version
        try:
            feedback = await self._editor.critique(node_path, draft_title, draft_body)
        except GenerationError as e:
            log.warning("feedback_failed", path=list(node_path), error=str(e))
            self.status.report_error(e.message)
            return None

        if self._timeline.version == version:
            self._feedback[node_path] = feedback
        return feedback

    def update_roster(self, characters: Sequence[Character]) -> None:
        """Replace the active cast for the rest of the story.

        The roster is not versioned per branch: every later round, on any
        branch, uses the roster current at the time it is generated.
        """
        if self._state is StoryState.IDLE:
            raise InvalidStateError("update the cast", self._state.value)
        self._characters = list(characters)
        log.info("roster_updated", characters=len(self._characters))

    def finish(self, sink: StorySink, *, is_public: bool, author: str = "You") -> GalleryStory:
        """Hand the finished story to ``sink`` and start over.

        Raises:
            InvalidStateError: Unless the story is complete.
        """
        self._require("finish", StoryState.STORY_COMPLETE)
        controls = self._require_controls()
        chapters = [option.model_copy() for option in self._timeline.story_so_far]
        characters = [c.model_copy() for c in self._characters]

        cover = chapters[0].illustration_ref if chapters else ""
        story = GalleryStory(
            id=self._story_id or f"story-{uuid.uuid4().hex[:12]}",
            title=controls.prompt,
            author=author,
            chapters=chapters,
            characters=characters,
            controls=controls.model_copy(update={"characters": characters}),
            is_public=is_public,
            cover_illustration_ref=cover or PLACEHOLDER_COVER,
        )
        sink.save(story)
        log.info("story_finished", story_id=story.id, chapters=len(chapters), public=is_public)

        self.reset()
        where = "shared to the gallery" if is_public else "saved privately"
        self.status.notify(f"Your story has been {where}!")
        return story

    def reset(self) -> None:
        """Discard the story and return to idle. Allowed from any state."""
        self._timeline.clear()
        self._feedback.clear()
        self._characters = []
        self._controls = None
        self._state = StoryState.IDLE
        log.debug("story_reset", version=self._timeline.version)
        self._story_id = None
        unbind_story()
