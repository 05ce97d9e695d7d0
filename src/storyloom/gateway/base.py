"""Generation gateway protocol.

The branching core only ever talks to content generation through this
protocol. Every method is a coroutine and either returns a complete result
or raises ``GenerationError``; partial results are never returned.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from storyloom.models import Character, NarrativeControls, RoundOptionSet

# Illustration ref used when one picture in a round could not be drawn.
MISSING_ILLUSTRATION = "placeholder:illustration-failed"


class GenerationError(Exception):
    """Any failure of the generation backend.

    Covers network failures, provider-side content policy rejections and
    malformed responses. Always recoverable at the controller boundary.

    Attributes:
        source: Which gateway call failed (e.g. ``"options"``, ``"portrait"``).
    """

    def __init__(self, source: str, message: str) -> None:
        self.source = source
        self.message = message
        super().__init__(message)


@runtime_checkable
class GenerationGateway(Protocol):
    """Content generation as the branching core needs it."""

    async def generate_options(
        self,
        controls: NarrativeControls,
        round_number: int,
        previous_chapter_text: str | None,
        characters: list[Character],
    ) -> RoundOptionSet:
        """Draft exactly ``controls.options_per_round`` illustrated chapters.

        ``previous_chapter_text`` is None for the opening round.
        """
        ...

    async def regenerate_illustration(
        self,
        title: str,
        body: str,
        characters: list[Character],
        style: str,
    ) -> str:
        """Draw a new illustration for edited chapter text; returns its ref."""
        ...

    async def critique(self, original_text: str, edited_text: str) -> str:
        """Writing-coach commentary on an edit. No side effects."""
        ...

    async def realize_character_portrait(self, description: str, style: str) -> str:
        """Draw a portrait of a character; returns its ref."""
        ...

    async def realize_character_symbol(
        self,
        character: Character,
        theme: str,
        style: str,
    ) -> tuple[str, str]:
        """Invent a symbolic stand-in for a character and draw it.

        Returns:
            ``(concept, illustration_ref)``.
        """
        ...
