"""Tests for the branch controller state machine."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING
from unittest.mock import MagicMock

import pytest
import structlog

from storyloom.branching import (
    DEFAULT_SYMBOL_THEME,
    FALLBACK_SYMBOL_THEME,
    BranchController,
    InvalidStateError,
    StoryState,
    StoryValidationError,
)
from storyloom.models import PLACEHOLDER_COVER, Character, NarrativeControls
from storyloom.storage import StoryGallery

if TYPE_CHECKING:
    from pathlib import Path

    from tests.conftest import ScriptedGateway


async def _started(
    gateway: ScriptedGateway, controls: NarrativeControls, *choices: int
) -> BranchController:
    controller = BranchController(gateway)
    await controller.start(controls)
    for choice in choices:
        await controller.select_option(choice)
    return controller


def _titles(controller: BranchController) -> list[str]:
    return [option.title for option in controller.story_so_far]


class TestStart:
    @pytest.mark.asyncio
    async def test_start_generates_first_round(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        controller = BranchController(gateway)
        assert controller.state is StoryState.IDLE

        await controller.start(controls)

        assert controller.state is StoryState.OPTIONS_READY
        assert controller.current_round == 1
        assert [o.title for o in controller.current_options] == ["R1-O0", "R1-O1", "R1-O2"]
        assert gateway.option_requests[0]["previous"] is None
        assert controller.status.error is None

    @pytest.mark.asyncio
    async def test_start_failure_returns_to_idle(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        gateway.fail_rounds = {1}
        controller = BranchController(gateway)

        await controller.start(controls)

        assert controller.state is StoryState.IDLE
        assert controller.timeline.all_option_sets == []
        assert controller.characters == []
        assert controller.status.error == "round 1 unavailable"

    @pytest.mark.asyncio
    async def test_wrong_option_count_is_a_failure(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        gateway.short_rounds = {1}
        controller = BranchController(gateway)

        await controller.start(controls)

        assert controller.state is StoryState.IDLE
        assert "Expected 3 story options, got 2" in controller.status.error

    @pytest.mark.asyncio
    async def test_unexpected_error_returns_to_idle(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        gateway.crash_rounds = {1}
        controller = BranchController(gateway)

        with pytest.raises(OSError, match="disk full"):
            await controller.start(controls)

        assert controller.state is StoryState.IDLE
        assert controller.timeline.all_option_sets == []
        assert controller.status.error == "The story could not be started"

    @pytest.mark.asyncio
    async def test_start_only_from_idle(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        controller = await _started(gateway, controls)

        with pytest.raises(InvalidStateError, match="Cannot start"):
            await controller.start(controls)
        assert len(gateway.option_requests) == 1

    @pytest.mark.asyncio
    async def test_options_per_round_is_respected(self, gateway: ScriptedGateway) -> None:
        controls = NarrativeControls(prompt="Two paths", num_rounds=3, options_per_round=2)
        controller = await _started(gateway, controls, 1, 0)

        assert all(len(options) == 2 for options in controller.timeline.all_option_sets)


class TestCharacters:
    @pytest.mark.asyncio
    async def test_portraits_are_realized_in_order(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        cast = [
            Character(id="c1", name="Ada", description="a tinkerer"),
            Character(id="c2", name="Bo", description="a sailor"),
        ]
        controller = BranchController(gateway)

        await controller.start(controls, cast)

        assert [c.illustration_ref for c in controller.characters] == [
            "portrait:a tinkerer",
            "portrait:a sailor",
        ]
        assert gateway.option_requests[0]["characters"] == ["Ada", "Bo"]
        # The caller's objects are not mutated.
        assert cast[0].illustration_ref is None

    @pytest.mark.asyncio
    async def test_portrait_failure_falls_back_to_symbol(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        gateway.fail_portraits = True
        controller = BranchController(gateway)

        await controller.start(controls, [Character(id="c1", name="Ada", description="x")])

        ada = controller.characters[0]
        assert ada.illustration_ref == "symbol:Ada"
        assert ada.symbolic_concept == f"{FALLBACK_SYMBOL_THEME} emblem"
        assert gateway.symbol_requests == [("Ada", FALLBACK_SYMBOL_THEME)]
        assert controller.status.notices == [
            "Couldn't create a portrait for Ada, so we made a symbolic one instead!"
        ]
        assert controller.state is StoryState.OPTIONS_READY

    @pytest.mark.asyncio
    async def test_symbolic_character_uses_its_theme(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        cast = [
            Character(id="c1", name="Fox", representation="symbolic", symbolic_theme="Seasons"),
            Character(id="c2", name="Owl", representation="symbolic"),
        ]
        controller = BranchController(gateway)

        await controller.start(controls, cast)

        assert gateway.symbol_requests == [("Fox", "Seasons"), ("Owl", DEFAULT_SYMBOL_THEME)]
        assert [c.symbolic_concept for c in controller.characters] == [
            "Seasons emblem",
            f"{DEFAULT_SYMBOL_THEME} emblem",
        ]

    @pytest.mark.asyncio
    async def test_realized_characters_are_kept(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        ready = Character(id="c1", name="Ada", illustration_ref="portrait:existing")
        controller = BranchController(gateway)

        await controller.start(controls, [ready])

        assert controller.characters[0].illustration_ref == "portrait:existing"

    @pytest.mark.asyncio
    async def test_failed_fallback_fails_start(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        gateway.fail_portraits = True
        gateway.fail_symbols = True
        controller = BranchController(gateway)

        await controller.start(controls, [Character(id="c1", name="Ada")])

        assert controller.state is StoryState.IDLE
        assert controller.status.error == "no symbol either"
        assert gateway.option_requests == []

    @pytest.mark.asyncio
    async def test_failed_character_cancels_the_rest(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        gateway.portrait_gate = asyncio.Event()
        gateway.fail_symbols = True
        cast = [
            Character(id="c1", name="Ada", description="a tinkerer"),
            Character(id="c2", name="Owl", description="wise", representation="symbolic"),
        ]
        controller = BranchController(gateway)

        await controller.start(controls, cast)
        gateway.portrait_gate.set()
        await asyncio.sleep(0)

        assert controller.state is StoryState.IDLE
        assert controller.status.error == "no symbol either"
        assert controller.status.notices == []
        assert gateway.portraits_drawn == []

    @pytest.mark.asyncio
    async def test_roster_update_applies_to_later_rounds(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        controller = await _started(gateway, controls)

        controller.update_roster([Character(id="c9", name="Zed", illustration_ref="z")])
        await controller.select_option(0)

        assert gateway.option_requests[-1]["characters"] == ["Zed"]

    def test_roster_update_needs_a_story(self, gateway: ScriptedGateway) -> None:
        with pytest.raises(InvalidStateError):
            BranchController(gateway).update_roster([])


class TestSelect:
    @pytest.mark.asyncio
    async def test_full_story(self, gateway: ScriptedGateway, controls: NarrativeControls) -> None:
        controller = await _started(gateway, controls, 0, 1)
        assert controller.current_round == 3

        await controller.select_option(2)

        assert controller.state is StoryState.STORY_COMPLETE
        assert _titles(controller) == ["R1-O0", "R2-O1", "R3-O2"]
        assert controller.current_options is None
        assert [r["round"] for r in gateway.option_requests] == [1, 2, 3]
        controller.timeline.check_invariants()

    @pytest.mark.asyncio
    async def test_next_round_continues_from_choice(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        controller = await _started(gateway, controls, 1)

        assert gateway.option_requests[1]["previous"] == controller.story_so_far[0].text
        assert gateway.option_requests[1]["previous"].startswith("R1-O1 ")

    @pytest.mark.asyncio
    async def test_earlier_rounds_are_untouched(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        controller = await _started(gateway, controls)
        first_round = controller.timeline.all_option_sets[0]

        await controller.select_option(1)

        assert controller.timeline.all_option_sets[0] is first_round
        assert controller.timeline.selection_path == [1]

    @pytest.mark.asyncio
    async def test_out_of_range_index_is_rejected(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        controller = await _started(gateway, controls)

        with pytest.raises(StoryValidationError):
            await controller.select_option(3)
        assert controller.state is StoryState.OPTIONS_READY
        assert controller.timeline.selection_path == []

    @pytest.mark.asyncio
    async def test_failure_keeps_choice_and_completes(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        gateway.fail_rounds = {2}
        controller = await _started(gateway, controls)

        await controller.select_option(1)

        assert controller.state is StoryState.STORY_COMPLETE
        assert _titles(controller) == ["R1-O1"]
        assert controller.status.error == "round 2 unavailable"
        controller.timeline.check_invariants()

    @pytest.mark.asyncio
    async def test_unexpected_failure_completes_story(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        controller = await _started(gateway, controls)
        gateway.crash_rounds = {2}

        with pytest.raises(OSError):
            await controller.select_option(1)

        assert controller.state is StoryState.STORY_COMPLETE
        assert controller.timeline.selection_path == [1]
        assert controller.status.error == "Story generation failed unexpectedly"

    @pytest.mark.asyncio
    async def test_select_needs_options(self, gateway: ScriptedGateway) -> None:
        with pytest.raises(InvalidStateError, match="select_option"):
            await BranchController(gateway).select_option(0)

    @pytest.mark.asyncio
    async def test_single_round_story(self, gateway: ScriptedGateway) -> None:
        controller = await _started(gateway, NarrativeControls(prompt="Short", num_rounds=1), 0)

        assert controller.state is StoryState.STORY_COMPLETE
        assert len(gateway.option_requests) == 1


class TestSwitchBranch:
    @pytest.mark.asyncio
    async def test_switch_regrows_from_branch_point(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        controller = await _started(gateway, controls, 0, 1)
        old_third_round = controller.timeline.all_option_sets[2]

        await controller.switch_branch((0, 2))

        assert controller.state is StoryState.OPTIONS_READY
        assert controller.timeline.selection_path == [0, 2]
        assert controller.timeline.rounds_generated == 3
        assert controller.timeline.all_option_sets[2] is not old_third_round
        assert gateway.option_requests[-1]["previous"].startswith("R2-O2 ")
        assert _titles(controller) == ["R1-O0", "R2-O2"]
        controller.timeline.check_invariants()

    @pytest.mark.asyncio
    async def test_switch_from_completed_story(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        controller = await _started(gateway, controls, 0, 0, 0)
        assert controller.state is StoryState.STORY_COMPLETE

        await controller.switch_branch((2,))

        assert controller.state is StoryState.OPTIONS_READY
        assert controller.timeline.selection_path == [2]
        assert controller.timeline.rounds_generated == 2

    @pytest.mark.asyncio
    async def test_switch_to_last_round_completes(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        controller = await _started(gateway, controls, 0, 0, 0)
        requests = len(gateway.option_requests)

        await controller.switch_branch((0, 0, 1))

        assert controller.state is StoryState.STORY_COMPLETE
        assert _titles(controller) == ["R1-O0", "R2-O0", "R3-O1"]
        assert len(gateway.option_requests) == requests

    @pytest.mark.asyncio
    async def test_switch_to_frontier_option_acts_like_select(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        controller = await _started(gateway, controls, 0)

        await controller.switch_branch((0, 2))

        assert controller.timeline.selection_path == [0, 2]
        assert controller.current_round == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", [(5,), (), (1, 0), (0, 0, 0, 0)])
    async def test_invalid_path_is_rejected(
        self,
        gateway: ScriptedGateway,
        controls: NarrativeControls,
        path: tuple[int, ...],
    ) -> None:
        controller = await _started(gateway, controls, 0)
        before = (list(controller.timeline.selection_path), controller.timeline.version)

        with pytest.raises(StoryValidationError):
            await controller.switch_branch(path)

        assert (controller.timeline.selection_path, controller.timeline.version) == before
        assert controller.state is StoryState.OPTIONS_READY

    @pytest.mark.asyncio
    async def test_switch_failure_completes_story(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        controller = await _started(gateway, controls, 0, 0)
        gateway.fail_rounds = {3}

        await controller.switch_branch((0, 1))

        assert controller.state is StoryState.STORY_COMPLETE
        assert controller.timeline.selection_path == [0, 1]
        assert controller.timeline.rounds_generated == 2
        assert controller.status.error == "round 3 unavailable"

    @pytest.mark.asyncio
    async def test_switch_drops_feedback_below_branch_point(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        controller = await _started(gateway, controls, 0, 0)
        await controller.request_feedback((0,), "A", "a")
        await controller.request_feedback((0, 0), "B", "b")
        await controller.request_feedback((0, 0, 1), "C", "c")

        await controller.switch_branch((0, 0))

        assert set(controller.feedback) == {(0,), (0, 0)}

    @pytest.mark.asyncio
    async def test_switch_rejected_when_idle(self, gateway: ScriptedGateway) -> None:
        with pytest.raises(InvalidStateError):
            await BranchController(gateway).switch_branch((0,))


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_loading_rejects_other_transitions(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        controller = await _started(gateway, controls)
        gateway.gate = asyncio.Event()
        task = asyncio.create_task(controller.select_option(0))
        await asyncio.sleep(0)

        assert controller.state is StoryState.LOADING
        with pytest.raises(InvalidStateError):
            await controller.select_option(1)
        with pytest.raises(InvalidStateError):
            await controller.switch_branch((1,))
        with pytest.raises(InvalidStateError):
            await controller.edit_node((0,), "t", "b")

        gateway.gate.set()
        await task
        assert controller.state is StoryState.OPTIONS_READY

    @pytest.mark.asyncio
    async def test_response_after_reset_is_dropped(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        controller = await _started(gateway, controls)
        gateway.gate = asyncio.Event()
        task = asyncio.create_task(controller.select_option(0))
        await asyncio.sleep(0)

        controller.reset()
        gateway.gate.set()
        await task

        assert controller.state is StoryState.IDLE
        assert controller.timeline.all_option_sets == []
        assert controller.status.error is None

    @pytest.mark.asyncio
    async def test_stale_response_does_not_touch_new_story(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        controller = await _started(gateway, controls)
        old_gate = asyncio.Event()
        gateway.gate = old_gate
        stale = asyncio.create_task(controller.select_option(0))
        await asyncio.sleep(0)

        controller.reset()
        gateway.gate = None
        await controller.start(NarrativeControls(prompt="Another story", num_rounds=2))
        old_gate.set()
        await stale

        assert controller.state is StoryState.OPTIONS_READY
        assert controller.timeline.rounds_generated == 1
        assert controller.timeline.selection_path == []
        assert controller.controls.prompt == "Another story"

    @pytest.mark.asyncio
    async def test_stale_failure_is_not_reported(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        controller = await _started(gateway, controls)
        gateway.fail_rounds = {2}
        gateway.gate = asyncio.Event()
        task = asyncio.create_task(controller.select_option(0))
        await asyncio.sleep(0)

        controller.reset()
        gateway.gate.set()
        await task

        assert controller.state is StoryState.IDLE
        assert controller.status.error is None

    @pytest.mark.asyncio
    async def test_stale_portrait_fallback_is_not_announced(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        gate = asyncio.Event()
        gateway.portrait_gate = gate
        gateway.fail_portraits = True
        controller = BranchController(gateway)
        stale = asyncio.create_task(controller.start(controls, [Character(id="c1", name="Ada")]))
        await asyncio.sleep(0)

        controller.reset()
        await controller.start(NarrativeControls(prompt="Another story", num_rounds=2))
        gate.set()
        await stale

        assert controller.state is StoryState.OPTIONS_READY
        assert controller.status.notices == []
        assert controller.characters == []

    @pytest.mark.asyncio
    async def test_stale_edit_failure_is_not_reported(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        controller = await _started(gateway, controls)
        gate = asyncio.Event()
        gateway.illustration_gate = gate
        gateway.fail_illustrations = True
        edit = asyncio.create_task(controller.edit_node((0,), "Renamed", "New words."))
        await asyncio.sleep(0)

        controller.reset()
        gateway.illustration_gate = None
        await controller.start(NarrativeControls(prompt="Another story", num_rounds=2))
        gate.set()
        await edit

        assert controller.state is StoryState.OPTIONS_READY
        assert controller.status.error is None

    @pytest.mark.asyncio
    async def test_stale_edit_art_is_not_applied(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        controller = await _started(gateway, controls, 0)
        gate = asyncio.Event()
        gateway.illustration_gate = gate
        edit = asyncio.create_task(controller.edit_node((0, 2), "Renamed", "New words."))
        await asyncio.sleep(0)

        await controller.switch_branch((1,))
        gate.set()
        option = await edit

        assert option.title == "Renamed"
        assert option.illustration_ref == "ill-2-2"
        assert controller.status.error is None


class TestEditAndFeedback:
    @pytest.mark.asyncio
    async def test_edit_on_selection_path_changes_story(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        controller = await _started(gateway, controls, 1)

        await controller.edit_node((1,), "The Storm", "Waves crash over the rocks.")

        chapter = controller.story_so_far[0]
        assert chapter.title == "The Storm"
        assert chapter.body == "Waves crash over the rocks."
        assert chapter.illustration_ref == "redrawn-1"
        assert controller.tree().children[1].content.title == "The Storm"

    @pytest.mark.asyncio
    async def test_edit_keeps_structure(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        controller = await _started(gateway, controls, 1)
        timeline = controller.timeline
        before = (list(timeline.selection_path), timeline.rounds_generated, timeline.version)

        await controller.edit_node((0,), "Other", "Unchosen but edited.")

        assert (timeline.selection_path, timeline.rounds_generated, timeline.version) == before
        assert timeline.all_option_sets[0][0].title == "Other"
        assert _titles(controller) == ["R1-O1"]

    @pytest.mark.asyncio
    async def test_edit_in_idle_is_rejected(self, gateway: ScriptedGateway) -> None:
        with pytest.raises(InvalidStateError):
            await BranchController(gateway).edit_node((0,), "t", "b")

    @pytest.mark.asyncio
    async def test_feedback_is_annotated_on_tree(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        controller = await _started(gateway, controls, 0)

        feedback = await controller.request_feedback((0,), "New", "draft")

        assert feedback == "Nice change: New draft"
        assert controller.tree().children[0].feedback == feedback
        assert controller.story_so_far[0].title == "R1-O0"

    @pytest.mark.asyncio
    async def test_feedback_failure_is_reported(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        gateway.fail_critique = True
        controller = await _started(gateway, controls)

        assert await controller.request_feedback((0,), "t", "b") is None
        assert controller.status.error == "the coach is away"
        assert controller.feedback == {}


class TestFinishAndReset:
    @pytest.mark.asyncio
    async def test_finish_saves_and_resets(
        self, gateway: ScriptedGateway, controls: NarrativeControls, tmp_path: Path
    ) -> None:
        controller = await _started(gateway, controls, 0, 1, 2)
        gallery = StoryGallery(tmp_path / "gallery.json")

        story = controller.finish(gallery, is_public=True)

        assert story.title == controls.prompt
        assert [c.title for c in story.chapters] == ["R1-O0", "R2-O1", "R3-O2"]
        assert story.cover_illustration_ref == "ill-1-0"
        assert story.is_public
        assert gallery.get(story.id) == story
        assert controller.state is StoryState.IDLE
        assert controller.timeline.all_option_sets == []
        assert controller.status.notices == ["Your story has been shared to the gallery!"]

    @pytest.mark.asyncio
    async def test_private_finish(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        controller = await _started(gateway, controls, 0, 0, 0)
        sink = MagicMock()

        story = controller.finish(sink, is_public=False, author="Mina")

        sink.save.assert_called_once_with(story)
        assert story.author == "Mina"
        assert not story.is_public
        assert controller.status.notices == ["Your story has been saved privately!"]

    @pytest.mark.asyncio
    async def test_saved_story_is_detached_from_later_edits(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        controller = await _started(gateway, controls, 0, 0, 0)
        first = controller.story_so_far[0]

        story = controller.finish(MagicMock(), is_public=False)
        first.title = "Changed later"

        assert story.chapters[0].title == "R1-O0"

    @pytest.mark.asyncio
    async def test_cover_falls_back_to_placeholder(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        controller = await _started(gateway, controls, 0, 0, 0)
        controller.story_so_far[0].illustration_ref = ""

        story = controller.finish(MagicMock(), is_public=False)

        assert story.cover_illustration_ref == PLACEHOLDER_COVER

    @pytest.mark.asyncio
    async def test_finish_requires_complete_story(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        controller = await _started(gateway, controls, 0)

        with pytest.raises(InvalidStateError, match="finish"):
            controller.finish(MagicMock(), is_public=True)
        assert controller.state is StoryState.OPTIONS_READY

    @pytest.mark.asyncio
    async def test_reset_from_any_state(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        controller = await _started(gateway, controls, 0)
        version = controller.timeline.version

        controller.reset()

        assert controller.state is StoryState.IDLE
        assert controller.controls is None
        assert controller.timeline.version == version + 1
        await controller.start(controls)
        assert controller.state is StoryState.OPTIONS_READY

    @pytest.mark.asyncio
    async def test_story_id_tags_events_until_saved(
        self, gateway: ScriptedGateway, controls: NarrativeControls
    ) -> None:
        controller = await _started(gateway, controls, 0, 0)
        story_id = controller.story_id

        assert story_id is not None
        assert structlog.contextvars.get_contextvars()["story"] == story_id
        await controller.select_option(1)
        story = controller.finish(MagicMock(), is_public=False)

        assert story.id == story_id
        assert controller.story_id is None
        assert "story" not in structlog.contextvars.get_contextvars()
