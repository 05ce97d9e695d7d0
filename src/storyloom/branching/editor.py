"""In-place editing of generated chapters.

A save has two independent halves. The text change is committed at once;
the matching illustration is then redrawn as a best-effort follow-up whose
failure is reported but never undoes the text. Options are edited in place,
so the live story (derived positionally from the timeline) reflects an
edit on the chosen path immediately. A redraw that finishes after the
timeline was cleared or truncated is dropped, success or failure.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from storyloom.branching.errors import InvalidStateError
from storyloom.gateway.base import GenerationError
from storyloom.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Sequence

    from storyloom.branching.status import StatusChannel
    from storyloom.branching.timeline import StoryTimeline
    from storyloom.gateway.base import GenerationGateway
    from storyloom.models import ChapterOption, Character

log = get_logger(__name__)


class NodeEditor:
    """Apply text edits to timeline options and refresh their art.

    Only one illustration refresh may be in flight per option; a second
    edit of the same option while one is pending is rejected.
    """

    def __init__(
        self,
        timeline: StoryTimeline,
        gateway: GenerationGateway,
        status: StatusChannel,
    ) -> None:
        self._timeline = timeline
        self._gateway = gateway
        self._status = status
        self._refreshing: set[int] = set()

    def is_refreshing(self, path: Sequence[int]) -> bool:
        return id(self._timeline.option_at(path)) in self._refreshing

    async def edit(
        self,
        path: Sequence[int],
        new_title: str,
        new_body: str,
        *,
        characters: list[Character],
        style: str,
    ) -> ChapterOption:
        """Rewrite the option at ``path`` and redraw its illustration.

        Raises:
            StoryValidationError: If ``path`` does not address an option.
            InvalidStateError: If this option's illustration is already
                being redrawn.
        """
        node_path = self._timeline.validate_path(path)
        option = self._timeline.option_at(node_path)
        if id(option) in self._refreshing:
            raise InvalidStateError(
                "edit this chapter", "refreshing", f"illustration for {list(node_path)} is pending"
            )

        self._status.dismiss_error()
        option.title = new_title
        option.body = new_body
        log.info(
            "node_text_updated",
            path=list(node_path),
            live=self._timeline.is_on_selection_path(node_path),
        )

        version = self._timeline.version
        self._refreshing.add(id(option))
        try:
            ref = await self._gateway.regenerate_illustration(
                new_title, new_body, characters, style
            )
        except GenerationError as e:
            if self._timeline.version != version:
                log.debug("stale_failure_dropped", operation="edit_node", error=str(e))
                return option
            log.warning("node_illustration_failed", path=list(node_path), error=str(e))
            self._status.report_error(
                f"The text was saved, but the illustration could not be redrawn: {e.message}"
            )
            return option
        finally:
            self._refreshing.discard(id(option))

        if self._timeline.version != version:
            log.debug("stale_response_dropped", operation="edit_node", path=list(node_path))
            return option
        option.illustration_ref = ref
        log.debug("node_illustration_updated", path=list(node_path), ref=ref)
        return option

    async def critique(self, path: Sequence[int], draft_title: str, draft_body: str) -> str:
        """Ask the writing coach about a draft. Changes nothing.

        Raises:
            StoryValidationError: If ``path`` does not address an option.
            GenerationError: If the critique call fails.
        """
        option = self._timeline.option_at(path)
        return await self._gateway.critique(option.text, f"{draft_title} {draft_body}")
