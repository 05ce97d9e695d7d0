"""Generation gateway backed by a LangChain chat model and an image provider.

Text is drafted through the chat model (structured output for chapter
batches, plain completions for critique and symbol concepts). Pictures go
through an ``ImageProvider`` and are persisted by an ``IllustrationStore``;
the stored ref is what ends up on chapters and characters.

Chapter illustrations are never drawn from the raw chapter text. The chat
model first rewrites the chapter into an abstract, character-free scene
description, which keeps image backends from refusing the request.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from pydantic import BaseModel, Field

from storyloom.gateway.base import MISSING_ILLUSTRATION, GenerationError
from storyloom.models import ChapterOption, Character, NarrativeControls, RoundOptionSet
from storyloom.observability.logging import get_logger
from storyloom.prompts import PromptLoader, RenderedPrompt
from storyloom.providers.structured_output import (
    unwrap_structured_result,
    with_structured_output,
)

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel

    from storyloom.providers.image import ImageProvider
    from storyloom.storage.assets import IllustrationStore

log = get_logger(__name__)

_NUMBER_WORDS = {1: "one", 2: "two", 3: "three", 4: "four", 5: "five", 6: "six"}


class ChapterDraft(BaseModel):
    """One chapter as drafted by the chat model, before illustration."""

    title: str = Field(min_length=1, description="A short, bold headline (max 5 words)")
    body: str = Field(min_length=1, description="The chapter paragraph (40-60 words)")


class ChapterDraftBatch(BaseModel):
    """All options for one round."""

    options: list[ChapterDraft] = Field(description="The candidate chapters, in display order")


def _count_word(count: int) -> str:
    return _NUMBER_WORDS.get(count, str(count))


def build_character_context(characters: list[Character]) -> str:
    """Describe the cast so every round keeps them consistent."""
    if not characters:
        return ""
    descriptions = []
    for c in characters:
        if c.representation == "symbolic" and c.symbolic_concept:
            descriptions.append(
                f"{c.name} is represented symbolically as '{c.symbolic_concept}'. "
                f"Their personality is: {c.description}."
            )
        else:
            descriptions.append(f"{c.name}: {c.description}")
    return (
        f"The story features these characters: {'; '.join(descriptions)}. "
        "Ensure they are represented consistently according to their descriptions "
        "or symbolic forms."
    )


def build_guidelines(controls: NarrativeControls) -> str:
    parts = []
    if controls.tone:
        parts.append(f"The tone should be {controls.tone}")
    if controls.genre:
        parts.append(f"The genre is {controls.genre}")
    if controls.constraints:
        parts.append(f"Follow these constraints: {controls.constraints}")
    return f"Guidelines: {'. '.join(parts)}." if parts else ""


def build_task(controls: NarrativeControls, round_number: int, source_text: str) -> str:
    """Opening, continuation or ending, depending on where the round falls."""
    count = _count_word(controls.options_per_round)
    if round_number == 1:
        return (
            f"Write {count} imaginative and distinct story openings "
            f'based on this idea: "{source_text}".'
        )
    if round_number < controls.num_rounds:
        return (
            f"Continue this story with {count} distinct and engaging next chapters: "
            f'"{source_text}".'
        )
    return (
        f"Write {count} satisfying and distinct endings for this story, "
        f'resolving the plot: "{source_text}".'
    )


def _message_text(response: Any) -> str:
    content = getattr(response, "content", response)
    if isinstance(content, list):
        content = "".join(
            part.get("text", "") if isinstance(part, dict) else str(part) for part in content
        )
    return str(content).strip()


def _clean_line(text: str) -> str:
    return text.replace('"', "").strip()


class LLMGenerationGateway:
    """``GenerationGateway`` over LangChain + an image backend.

    Args:
        chat_model: Chat model for all text calls.
        image_provider: Backend that draws pictures.
        illustrations: Where drawn pictures are stored.
        provider_name: Chat provider name, used to tune structured output.
        prompts: Template loader (defaults to the bundled templates).
        max_concurrency: Upper bound on parallel illustration requests.
    """

    def __init__(
        self,
        chat_model: BaseChatModel,
        image_provider: ImageProvider,
        illustrations: IllustrationStore,
        *,
        provider_name: str | None = None,
        prompts: PromptLoader | None = None,
        max_concurrency: int = 4,
    ) -> None:
        self._chat = chat_model
        self._images = image_provider
        self._illustrations = illustrations
        self._provider_name = provider_name
        self._prompts = prompts or PromptLoader()
        self._semaphore = asyncio.Semaphore(max_concurrency)

    # -- low-level calls -----------------------------------------------------

    @staticmethod
    def _messages(prompt: RenderedPrompt, image_b64: str | None = None) -> list[BaseMessage]:
        messages: list[BaseMessage] = []
        if prompt.system:
            messages.append(SystemMessage(content=prompt.system))
        if image_b64:
            messages.append(
                HumanMessage(
                    content=[
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:image/jpeg;base64,{image_b64}"},
                        },
                        {"type": "text", "text": prompt.user},
                    ]
                )
            )
        else:
            messages.append(HumanMessage(content=prompt.user))
        return messages

    async def _complete(
        self, source: str, prompt: RenderedPrompt, image_b64: str | None = None
    ) -> str:
        try:
            response = await self._chat.ainvoke(self._messages(prompt, image_b64))
        except Exception as e:
            log.warning("text_generation_failed", source=source, error=str(e))
            raise GenerationError(source, f"Text generation failed: {e}") from e

        text = _message_text(response)
        if not text:
            raise GenerationError(source, "The model returned an empty response")
        return text

    async def _draw(self, source: str, prompt: str) -> str:
        async with self._semaphore:
            try:
                result = await self._images.generate(prompt, aspect_ratio="1:1")
            except Exception as e:
                log.warning("image_generation_failed", source=source, error=str(e))
                raise GenerationError(source, f"Image generation failed: {e}") from e
        try:
            return self._illustrations.store(result.image_data, result.content_type)
        except OSError as e:
            log.warning("illustration_store_failed", source=source, error=str(e))
            raise GenerationError(source, f"Could not save the image: {e}") from e

    async def _chapter_illustration(
        self, title: str, body: str, character_context: str, style: str
    ) -> str:
        scene = await self._complete(
            "illustration",
            self._prompts.render(
                "illustration_prompt",
                title=title,
                body=body,
                character_context=character_context,
                style=style,
            ),
        )
        return await self._draw("illustration", _clean_line(scene))

    # -- GenerationGateway ----------------------------------------------------

    async def generate_options(
        self,
        controls: NarrativeControls,
        round_number: int,
        previous_chapter_text: str | None,
        characters: list[Character],
    ) -> RoundOptionSet:
        count = controls.options_per_round
        character_context = build_character_context(characters)
        prompt = self._prompts.render(
            "chapter_options",
            guidelines=build_guidelines(controls),
            character_context=character_context,
            task=build_task(controls, round_number, previous_chapter_text or controls.prompt),
            count=count,
        )

        structured = with_structured_output(self._chat, ChapterDraftBatch, self._provider_name)
        try:
            raw = await structured.ainvoke(self._messages(prompt))
            batch = unwrap_structured_result(raw, ChapterDraftBatch)
        except Exception as e:
            log.warning("options_generation_failed", round=round_number, error=str(e))
            raise GenerationError("options", f"Story generation failed: {e}") from e

        if len(batch.options) < count:
            raise GenerationError(
                "options",
                f"Expected {count} story options but the model returned {len(batch.options)}",
            )
        drafts = batch.options[:count]

        async def illustrate(draft: ChapterDraft) -> str:
            try:
                return await self._chapter_illustration(
                    draft.title, draft.body, character_context, controls.style
                )
            except GenerationError:
                return MISSING_ILLUSTRATION

        refs = await asyncio.gather(*(illustrate(d) for d in drafts))

        log.info(
            "options_generated",
            round=round_number,
            count=len(drafts),
            missing_illustrations=sum(r == MISSING_ILLUSTRATION for r in refs),
        )
        return [
            ChapterOption(title=d.title, body=d.body, illustration_ref=ref)
            for d, ref in zip(drafts, refs, strict=True)
        ]

    async def regenerate_illustration(
        self, title: str, body: str, characters: list[Character], style: str
    ) -> str:
        return await self._chapter_illustration(
            title, body, build_character_context(characters), style
        )

    async def critique(self, original_text: str, edited_text: str) -> str:
        return await self._complete(
            "critique",
            self._prompts.render(
                "writing_feedback", original_text=original_text, edited_text=edited_text
            ),
        )

    async def realize_character_portrait(self, description: str, style: str) -> str:
        prompt = self._prompts.render("portrait_image", description=description, style=style)
        return await self._draw("portrait", prompt.user)

    async def realize_character_symbol(
        self, character: Character, theme: str, style: str
    ) -> tuple[str, str]:
        concept = _clean_line(
            await self._complete(
                "symbol",
                self._prompts.render(
                    "character_symbol", theme=theme, description=character.description
                ),
                image_b64=character.reference_image,
            )
        )
        prompt = self._prompts.render("symbol_image", concept=concept, theme=theme, style=style)
        ref = await self._draw("symbol", prompt.user)
        return concept, ref
