"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest

from storyloom.gateway.base import GenerationError
from storyloom.models import ChapterOption, Character, NarrativeControls


class ScriptedGateway:
    """Deterministic in-memory ``GenerationGateway``.

    Chapter titles encode their position (``R2-O1`` is option 1 of round 2).
    Failures and pauses are switched on per test through the attributes.
    """

    def __init__(self) -> None:
        self.fail_rounds: set[int] = set()
        self.crash_rounds: set[int] = set()
        self.short_rounds: set[int] = set()
        self.fail_portraits = False
        self.fail_symbols = False
        self.fail_illustrations = False
        self.fail_critique = False
        self.gate: asyncio.Event | None = None
        self.illustration_gate: asyncio.Event | None = None
        self.portrait_gate: asyncio.Event | None = None

        self.option_requests: list[dict[str, Any]] = []
        self.illustration_requests: list[tuple[str, str]] = []
        self.symbol_requests: list[tuple[str, str]] = []
        self.critiques: list[tuple[str, str]] = []
        self.portraits_drawn: list[str] = []

    async def generate_options(
        self,
        controls: NarrativeControls,
        round_number: int,
        previous_chapter_text: str | None,
        characters: list[Character],
    ) -> list[ChapterOption]:
        self.option_requests.append(
            {
                "round": round_number,
                "previous": previous_chapter_text,
                "characters": [c.name for c in characters],
            }
        )
        gate = self.gate
        if gate is not None:
            await gate.wait()
        if round_number in self.fail_rounds:
            raise GenerationError("options", f"round {round_number} unavailable")
        if round_number in self.crash_rounds:
            raise OSError(f"disk full while writing round {round_number}")
        count = controls.options_per_round
        if round_number in self.short_rounds:
            count -= 1
        return [
            ChapterOption(
                title=f"R{round_number}-O{i}",
                body=f"Body of round {round_number}, option {i}.",
                illustration_ref=f"ill-{round_number}-{i}",
            )
            for i in range(count)
        ]

    async def regenerate_illustration(
        self, title: str, body: str, characters: list[Character], style: str
    ) -> str:
        self.illustration_requests.append((title, body))
        gate = self.illustration_gate
        if gate is not None:
            await gate.wait()
        if self.fail_illustrations:
            raise GenerationError("illustration", "the painter is out")
        return f"redrawn-{len(self.illustration_requests)}"

    async def critique(self, original_text: str, edited_text: str) -> str:
        self.critiques.append((original_text, edited_text))
        if self.fail_critique:
            raise GenerationError("critique", "the coach is away")
        return f"Nice change: {edited_text}"

    async def realize_character_portrait(self, description: str, style: str) -> str:
        gate = self.portrait_gate
        if gate is not None:
            await gate.wait()
        if self.fail_portraits:
            raise GenerationError("portrait", "portrait refused")
        self.portraits_drawn.append(description)
        return f"portrait:{description}"

    async def realize_character_symbol(
        self, character: Character, theme: str, style: str
    ) -> tuple[str, str]:
        self.symbol_requests.append((character.name, theme))
        if self.fail_symbols:
            raise GenerationError("symbol", "no symbol either")
        return f"{theme} emblem", f"symbol:{character.name}"


@pytest.fixture
def gateway() -> ScriptedGateway:
    return ScriptedGateway()


@pytest.fixture
def controls() -> NarrativeControls:
    return NarrativeControls(prompt="A lighthouse keeper finds a map", num_rounds=3)


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent
