"""Tests for the guided Friday/Saturday flows."""

import pytest

from conversation.models import TimeSlot
from planner.guided import (
    ARRIVAL_FRIDAY,
    BIG_SATURDAY,
    SKIP_TOKEN,
    GuidedOption,
    advance,
    build_options,
    flow_for_weekday,
    match_token,
    prompt_current,
    start_flow,
)
from planner.selector import DayInfo

FRIDAY = DayInfo.for_index(0, 3)
SATURDAY = DayInfo.for_index(1, 3)


class TestFlowLookup:
    def test_by_weekday(self):
        assert flow_for_weekday("Friday") is ARRIVAL_FRIDAY
        assert flow_for_weekday("saturday") is BIG_SATURDAY
        assert flow_for_weekday("monday") is None
        assert flow_for_weekday(None) is None

    def test_disabled_weekday(self):
        assert flow_for_weekday("friday", enabled=["saturday"]) is None
        assert flow_for_weekday("friday", enabled=["Friday"]) is ARRIVAL_FRIDAY


class TestBuildOptions:
    def test_catalog_hits(self, catalog):
        options = build_options(ARRIVAL_FRIDAY.steps[0], catalog)
        assert [(o.token, o.service_id) for o in options] == [("1", "601"), ("2", "602"), (SKIP_TOKEN, None)]
        assert options[0].price_usd == 40

    def test_saturday_daytime(self, catalog):
        options = build_options(BIG_SATURDAY.steps[0], catalog)
        assert [o.service_id for o in options[:3]] == ["501", "502", "503"]

    def test_literal_fallback_without_catalog(self):
        options = build_options(ARRIVAL_FRIDAY.steps[1], [])
        assert options[0].service_id is None
        assert options[0].service_name == "Steakhouse dinner"

    def test_excluded_items_fall_back(self, catalog):
        options = build_options(ARRIVAL_FRIDAY.steps[2], catalog, exclude_ids={"401", "402"})
        strip = options[0]
        assert strip.service_id is None
        assert strip.service_name == "Gentlemen's club night"


class TestMatchToken:
    @pytest.fixture
    def options(self):
        return [
            GuidedOption("1", "Lake day on a boat", "501", "Lake Travis Party Boat"),
            GuidedOption("2", "Golf", "502", "Grey Rock Golf Outing"),
            GuidedOption(SKIP_TOKEN, "Skip this one"),
        ]

    @pytest.mark.parametrize(
        "text,token",
        [
            ("2", "2"),
            ("option 2", "2"),
            ("Let's do 1", "1"),
            ("golf", "2"),
            ("Grey Rock Golf Outing", "2"),
            ("none", SKIP_TOKEN),
            ("skip", SKIP_TOKEN),
        ],
    )
    def test_accepts(self, options, text, token):
        assert match_token(text, options).token == token

    @pytest.mark.parametrize("text", ["tacos", "", "4", "golf and the boat"])
    def test_rejects(self, options, text):
        assert match_token(text, options) is None


class TestAdvance:
    def test_unknown_input_leaves_state(self, catalog):
        state = start_flow(BIG_SATURDAY)
        turn = advance(state, "tacos", catalog, SATURDAY)

        assert not turn.accepted
        assert turn.reply.startswith("Sorry, I need one of: 1, 2, 3, skip.")
        assert state.step_index == 0
        assert state.choices == {}
        assert turn.interactive["step"] == "morning"

    def test_accepts_and_moves_on(self, catalog):
        state = start_flow(BIG_SATURDAY)
        turn = advance(state, "2", catalog, SATURDAY)

        assert turn.accepted
        assert turn.reply.startswith("Locked in: Golf.")
        assert state.step_index == 1
        assert state.choices["morning"]["serviceId"] == "502"
        assert turn.interactive["step"] == "dinner"
        assert turn.interactive["dayIndex"] == 1

    def test_completion_builds_plan_and_skips(self, catalog):
        state = start_flow(BIG_SATURDAY)
        advance(state, "1", catalog, SATURDAY)
        turn = advance(state, "skip", catalog, SATURDAY)
        assert turn.reply.startswith("Skipped.")
        turn = advance(state, "2", catalog, SATURDAY)

        assert state.is_complete
        plan = turn.plan
        assert [(s.service_id, s.time_slot) for s in plan.selected_services] == [
            ("501", TimeSlot.AFTERNOON),
            ("302", TimeSlot.NIGHT),
        ]
        assert plan.day_theme == "The big day"
        assert plan.day_number == 2
        assert plan.selected_services[0].reason == "Your morning pick: Lake day on a boat"

    def test_literal_options_without_catalog(self):
        state = start_flow(ARRIVAL_FRIDAY)
        for answer in ("1", "3", "skip"):
            turn = advance(state, answer, [], FRIDAY)

        names = [(s.service_id, s.service_name, s.time_slot) for s in turn.plan.selected_services]
        assert names == [
            (None, "Party bus airport pickup", TimeSlot.AFTERNOON),
            (None, "Texas BBQ", TimeSlot.EVENING),
        ]

    def test_unknown_flow_completes(self, catalog):
        state = start_flow(BIG_SATURDAY)
        state.flow = "mystery"
        turn = advance(state, "1", catalog, SATURDAY)
        assert state.is_complete
        assert not turn.accepted


class TestPromptCurrent:
    def test_renders_step_and_payload(self, catalog):
        turn = prompt_current(start_flow(ARRIVAL_FRIDAY), catalog, 0, heading="Day 1 (Friday, September 5): Arrival night")

        lines = turn.reply.splitlines()
        assert lines[0] == "Day 1 (Friday, September 5): Arrival night"
        assert "  1. Party bus pickup (Party Bus Airport Pickup) ~$40" in lines
        assert "  skip. Skip this one" in lines
        assert lines[-1] == "Reply with the number of your pick."
        payload = turn.interactive
        assert payload["type"] == "guided_cards"
        assert payload["step"] == "pickup"
        assert payload["options"][1]["serviceId"] == "602"
        assert not turn.accepted
