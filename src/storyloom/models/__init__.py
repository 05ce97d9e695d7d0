"""Pydantic models for story content and the gallery."""

from storyloom.models.gallery import PLACEHOLDER_COVER, GalleryStory
from storyloom.models.story import (
    DEFAULT_OPTIONS_PER_ROUND,
    ChapterOption,
    Character,
    NarrativeControls,
    Representation,
    RoundOptionSet,
    StoryPath,
)

__all__ = [
    "DEFAULT_OPTIONS_PER_ROUND",
    "PLACEHOLDER_COVER",
    "ChapterOption",
    "Character",
    "GalleryStory",
    "NarrativeControls",
    "Representation",
    "RoundOptionSet",
    "StoryPath",
]
