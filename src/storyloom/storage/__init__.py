"""Persistence for illustrations and finished stories."""

from storyloom.storage.assets import IllustrationStore
from storyloom.storage.gallery import (
    GalleryError,
    StoryGallery,
    StoryNotFoundError,
    example_stories,
    remix_controls,
)

__all__ = [
    "GalleryError",
    "IllustrationStore",
    "StoryGallery",
    "StoryNotFoundError",
    "example_stories",
    "remix_controls",
]
