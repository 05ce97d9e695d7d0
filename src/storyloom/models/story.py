"""Pydantic models for story content.

A story is built from rounds. Each round offers a small batch of
``ChapterOption`` candidates (a ``RoundOptionSet``); the reader picks one and
the next round is generated from it. Options are addressed positionally by a
``StoryPath``: one zero-based index per round.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

StoryPath = tuple[int, ...]

Representation = Literal["portrait", "symbolic"]

DEFAULT_OPTIONS_PER_ROUND = 3


class ChapterOption(BaseModel):
    """One generated candidate for a story beat.

    Options are treated as immutable once generated. The node editor is the
    only writer: it reassigns ``title``/``body``/``illustration_ref`` on the
    same instance so every holder of a reference sees the edit.
    """

    model_config = ConfigDict(validate_assignment=True)

    title: str = Field(description="Short chapter headline")
    body: str = Field(description="Chapter paragraph")
    illustration_ref: str = Field(
        default="", description="Opaque handle to the generated illustration"
    )

    @property
    def text(self) -> str:
        """Title and body joined, as handed to the next round and to critique."""
        return f"{self.title} {self.body}"


RoundOptionSet = list[ChapterOption]


class Character(BaseModel):
    """A member of the story's cast.

    ``illustration_ref`` is unset until the character has been realized at
    story start (portrait, or symbolic concept + illustration).
    """

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str = ""
    representation: Representation = "portrait"
    symbolic_theme: str | None = None
    symbolic_concept: str | None = None
    reference_image: str | None = Field(
        default=None, description="Base64 image supplied by the user, without data URI prefix"
    )
    illustration_ref: str | None = None

    @property
    def is_realized(self) -> bool:
        return bool(self.illustration_ref)


class NarrativeControls(BaseModel):
    """Global controls for one story run."""

    prompt: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
    tone: str = ""
    genre: str = ""
    constraints: str = ""
    style: str = "Watercolor"
    num_rounds: int = Field(default=3, ge=1)
    options_per_round: int = Field(default=DEFAULT_OPTIONS_PER_ROUND, ge=1)
    characters: list[Character] = Field(default_factory=list)
