"""Pydantic models for the story gallery."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field

from storyloom.models.story import ChapterOption, Character, NarrativeControls

PLACEHOLDER_COVER = "https://via.placeholder.com/512"


def _now() -> datetime:
    return datetime.now(UTC)


class GalleryStory(BaseModel):
    """A finished story as stored in the gallery."""

    id: str = Field(min_length=1)
    title: str = Field(description="The premise the story was started from")
    author: str = "You"
    chapters: list[ChapterOption] = Field(default_factory=list)
    characters: list[Character] = Field(default_factory=list)
    controls: NarrativeControls
    likes: int = Field(default=0, ge=0)
    is_public: bool = False
    created_at: datetime = Field(default_factory=_now)
    cover_illustration_ref: str = PLACEHOLDER_COVER
