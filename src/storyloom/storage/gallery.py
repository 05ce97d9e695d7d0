"""JSON-file gallery of finished stories.

The gallery is a single ``gallery.json`` list, newest first. It is written
whole on every change; stories are small and saves are user-paced.
"""

from __future__ import annotations

import os
import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path  # noqa: TC003 - used at runtime
from typing import Any, Literal

from pydantic import TypeAdapter, ValidationError

from storyloom.models import ChapterOption, Character, GalleryStory, NarrativeControls
from storyloom.observability.logging import get_logger

log = get_logger(__name__)

Visibility = Literal["public", "private", "all"]

_STORIES = TypeAdapter(list[GalleryStory])


class GalleryError(Exception):
    """Base exception for gallery failures."""


class StoryNotFoundError(GalleryError):
    """Raised when a story id is not in the gallery."""

    def __init__(self, story_id: str) -> None:
        self.story_id = story_id
        super().__init__(f"Story '{story_id}' not found in gallery")


class StoryGallery:
    """Persistent list of saved stories."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def _load(self) -> list[GalleryStory]:
        if not self.path.exists():
            return []
        try:
            return _STORIES.validate_json(self.path.read_bytes())
        except (OSError, ValidationError, ValueError) as e:
            # An unreadable gallery must not block playing; it is rebuilt on next save.
            log.error("gallery_load_failed", path=str(self.path), error=str(e))
            return []

    def _write(self, stories: list[GalleryStory]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = _STORIES.dump_json(stories, indent=2)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(payload)
            os.replace(tmp_name, self.path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def save(self, story: GalleryStory) -> list[GalleryStory]:
        """Add ``story`` at the front of the gallery."""
        stories = self._load()
        stories.insert(0, story)
        self._write(stories)
        log.info("gallery_story_saved", story_id=story.id, public=story.is_public)
        return stories

    def list(self, visibility: Visibility = "public") -> list[GalleryStory]:
        stories = self._load()
        if visibility == "all":
            return stories
        want_public = visibility == "public"
        return [s for s in stories if s.is_public == want_public]

    def get(self, story_id: str) -> GalleryStory:
        for story in self._load():
            if story.id == story_id:
                return story
        raise StoryNotFoundError(story_id)

    def like(self, story_id: str) -> GalleryStory:
        """Increment a story's like count.

        Raises:
            StoryNotFoundError: If no story has ``story_id``.
        """
        stories = self._load()
        for story in stories:
            if story.id == story_id:
                story.likes += 1
                self._write(stories)
                log.debug("gallery_story_liked", story_id=story_id, likes=story.likes)
                return story
        raise StoryNotFoundError(story_id)

    def seed_examples(self) -> bool:
        """Populate an empty gallery with the bundled example stories.

        Returns:
            True if examples were written.
        """
        if self._load():
            return False
        self._write(example_stories())
        return True


def remix_controls(story: GalleryStory) -> NarrativeControls:
    """Copy a saved story's controls so it can be replayed with new choices.

    Characters are reset to unrealized so their art is regenerated.
    """
    controls = story.controls.model_copy(deep=True)
    controls.characters = [
        c.model_copy(update={"illustration_ref": None, "symbolic_concept": None})
        for c in controls.characters
    ]
    return controls


# Stories a new gallery is seeded with.
_EXAMPLES: list[dict[str, Any]] = [
    {
        "title": "The Clockwork Dragon",
        "character": ("Leo", "A young inventor with messy hair and oil-stained fingers."),
        "controls": {"tone": "whimsical", "genre": "fantasy", "style": "Watercolor"},
        "chapters": [
            (
                "The Discovery",
                "In a dusty attic, a young inventor named Leo found a box of old gears and "
                "a tarnished brass heart. He worked for weeks, piecing together a magnificent "
                "creation: a small, clockwork dragon that whirred and clicked with life.",
            ),
            (
                "The First Flight",
                "Leo wound the key in the dragon's side. Its wings unfolded, catching the "
                "lamplight. With a soft whirr, it leaped into the air, circling his head before "
                "zipping out the open window into the moonlit city.",
            ),
        ],
        "likes": 127,
        "age_days": 3,
    },
    {
        "title": "The Last Starseed",
        "character": ("Elara", "A being of pure starlight, glowing gently with cosmic energy."),
        "controls": {
            "tone": "mysterious",
            "genre": "sci-fi",
            "constraints": "The story must be hopeful.",
            "style": "Flat Vector",
        },
        "chapters": [
            (
                "The Landing",
                "A single, shimmering seed drifted through the cosmos, landing on a barren, "
                "grey planet. From it sprouted Elara, a being made of starlight, with a mission "
                "to bring life to the void.",
            ),
            (
                "The First Bloom",
                "Elara touched the dusty ground, and where her fingers grazed, vibrant, glowing "
                "flowers bloomed. The colors spread like a wave, painting the desolate landscape "
                "with life and light.",
            ),
        ],
        "likes": 256,
        "age_days": 2,
    },
    {
        "title": "The Detective and the Missing Recipe",
        "character": (
            "Detective Montgomery",
            "A sharp detective in a trench coat, with a magnifying glass always in his pocket.",
        ),
        "controls": {"tone": "comedic", "genre": "detective", "style": "Crayon Drawing"},
        "chapters": [
            (
                "A Sweet Catastrophe",
                "The annual city bake-off was in turmoil! Famed baker Mrs. Higgins's secret "
                "recipe for her prize-winning strawberry tart had vanished. Detective "
                "Montgomery, a man who loved puzzles more than pastries, was on the case.",
            ),
            (
                "A Crumb of a Clue",
                "Detective Montgomery found a single, sugary crumb near the empty recipe box. "
                "It wasn't a strawberry crumb, but... raspberry! A rival baker was his prime "
                "suspect. The game was afoot!",
            ),
        ],
        "likes": 98,
        "age_days": 1,
    },
]


def example_stories(now: datetime | None = None) -> list[GalleryStory]:
    """The three public stories a fresh gallery starts with."""
    now = now or datetime.now(UTC)
    stories = []
    for index, example in enumerate(_EXAMPLES, 1):
        cover = f"examples/base-{index}.jpg"
        name, description = example["character"]
        character = Character(id=f"char-base-{index}", name=name, description=description)
        chapters = [
            ChapterOption(title=title, body=body, illustration_ref=cover)
            for title, body in example["chapters"]
        ]
        controls = NarrativeControls(
            prompt=example["title"],
            num_rounds=len(chapters),
            characters=[character],
            **example["controls"],
        )
        stories.append(
            GalleryStory(
                id=f"base-{index}",
                title=example["title"],
                author="storyloom",
                chapters=chapters,
                characters=[character],
                controls=controls,
                likes=example["likes"],
                is_public=True,
                created_at=now - timedelta(days=example["age_days"]),
                cover_illustration_ref=cover,
            )
        )
    return stories


def dump_story(story: GalleryStory) -> str:
    """Pretty JSON for a single story (used by ``loom read --json``)."""
    return story.model_dump_json(indent=2)
