"""Tests for edit directives: parsing, the local interpreter and the engine."""

import pytest

from conversation.models import DayPlan, ServiceSelection, TimeSlot
from observability import metrics
from planner.edits import (
    AddActivity,
    AdjustTime,
    EditDirective,
    EditEngine,
    EditInterpreter,
    RemoveActivity,
    Reorder,
    ReplaceActivity,
    SetConstraint,
    SubstituteService,
    apply_directive,
    heuristic_directive,
    parse_directive,
)
from planner.selector import DayInfo, DedupContext, ServiceSelector

DAY = DayInfo.for_index(1, 3)


@pytest.fixture
def plan():
    return DayPlan(
        selected_services=[
            ServiceSelection("s1", "Steakhouse", TimeSlot.EVENING, category="restaurant"),
            ServiceSelection("c1", "Comedy Club", TimeSlot.NIGHT, category="night_club"),
        ],
        day_theme="Saturday",
    )


def _apply(plan, catalog, *ops):
    return apply_directive(plan, EditDirective(ops=list(ops)), catalog, DAY)


def _summary(plan):
    return [(s.service_id, s.time_slot) for s in plan.selected_services]


class TestRemove:
    def test_name_substring_removes_only_match(self, plan, catalog):
        result = _apply(plan, catalog, RemoveActivity(target_name="comedy"))
        assert [s.service_name for s in result.selected_services] == ["Steakhouse"]

    def test_all_targets_must_match(self, plan, catalog):
        result = _apply(plan, catalog, RemoveActivity(target_name="comedy", target_time="evening"))
        assert len(result.selected_services) == 2

    def test_no_targets_removes_nothing(self, plan, catalog):
        assert len(_apply(plan, catalog, RemoveActivity()).selected_services) == 2

    def test_category_target(self, plan, catalog):
        result = _apply(plan, catalog, RemoveActivity(target_category="restaurant"))
        assert _summary(result) == [("c1", TimeSlot.NIGHT)]

    def test_original_plan_untouched(self, plan, catalog):
        _apply(plan, catalog, RemoveActivity(target_name="comedy"))
        assert len(plan.selected_services) == 2


class TestSubstitute:
    def test_keeps_time_slot(self, plan, catalog):
        op = SubstituteService(target_time="night", keywords=["strip"], category_hint="strip_club")
        result = _apply(plan, catalog, op)
        assert _summary(result) == [("s1", TimeSlot.EVENING), ("402", TimeSlot.NIGHT)]
        assert result.selected_services[1].reason == "Swapped for Comedy Club"

    def test_falls_back_to_last_nightlife_entry(self, plan, catalog):
        result = _apply(plan, catalog, SubstituteService(new_service_id="201"))
        assert _summary(result) == [("s1", TimeSlot.EVENING), ("201", TimeSlot.NIGHT)]

    def test_explicit_new_time(self, plan, catalog):
        result = _apply(plan, catalog, SubstituteService(target_name="steak", new_service_id="102", new_time="afternoon"))
        assert _summary(result)[0] == ("102", TimeSlot.AFTERNOON)

    def test_unresolvable_item_is_a_no_op(self, plan, catalog):
        result = _apply(plan, catalog, SubstituteService(target_name="comedy", keywords=["zeppelin"]))
        assert _summary(result) == _summary(plan)


class TestReplaceAndAdd:
    def test_replace_matched_entry(self, plan, catalog):
        result = _apply(plan, catalog, ReplaceActivity(target_name="steak", new_service_id="102"))
        assert _summary(result) == [("102", TimeSlot.EVENING), ("c1", TimeSlot.NIGHT)]

    def test_replace_clears_slot_without_item_match(self, plan, catalog):
        result = _apply(plan, catalog, ReplaceActivity(target_time="night", new_service_name="Neon Dance Hall"))
        assert _summary(result) == [("s1", TimeSlot.EVENING), ("302", TimeSlot.NIGHT)]

    def test_add_never_removes_and_suppresses_duplicates(self, plan, catalog):
        op = AddActivity(new_service_id="101", target_time="evening")
        result = _apply(plan, catalog, op, op)
        assert _summary(result) == [("s1", TimeSlot.EVENING), ("c1", TimeSlot.NIGHT), ("101", TimeSlot.EVENING)]
        assert result.selected_services[2].price_usd == 95

    def test_add_by_keywords_respects_exclusions(self, plan, catalog):
        directive = EditDirective(ops=[AddActivity(keywords=["golf"], category_hint="daytime", new_time="afternoon")])
        result = apply_directive(plan, directive, catalog, DAY, exclude_ids={"504"})
        assert ("502", TimeSlot.AFTERNOON) in _summary(result)

    def test_add_nightlife_goes_to_night(self, plan, catalog):
        result = _apply(plan, catalog, AddActivity(keywords=["bar", "crawl"], category_hint="bar"))
        assert ("201", TimeSlot.NIGHT) in _summary(result)


class TestTimeAndOrder:
    def test_adjust_time(self, plan, catalog):
        result = _apply(plan, catalog, AdjustTime(target_name="comedy", new_time="late_night"))
        assert _summary(result)[1] == ("c1", TimeSlot.LATE_NIGHT)

    def test_adjust_time_missing_entry_is_a_no_op(self, plan, catalog):
        result = _apply(plan, catalog, AdjustTime(target_name="karaoke", new_time="morning"))
        assert _summary(result) == _summary(plan)

    def test_reorder_puts_unlisted_slots_last(self, plan, catalog):
        plan.selected_services.append(ServiceSelection("a1", "Golf", TimeSlot.AFTERNOON))
        plan.selected_services.append(ServiceSelection("m1", "Brunch", TimeSlot.MORNING))
        result = _apply(plan, catalog, Reorder(sequence=["night", "evening"]))
        assert [s.service_id for s in result.selected_services] == ["c1", "s1", "a1", "m1"]

    def test_set_constraint_adds_note(self, plan, catalog):
        result = _apply(plan, catalog, SetConstraint(constraints={"budget": "low"}))
        assert result.logistics_notes == "Constraint: budget=low"


class TestParsing:
    def test_malformed_ops_skipped(self):
        directive = parse_directive(
            {
                "ops": [
                    {"op": "remove_activity", "target_name": "comedy"},
                    {"op": "teleport"},
                    {"op": "adjust_time", "target_name": "steak", "new_time": "Late Night"},
                ],
                "confidence": "2",
            }
        )
        assert [type(op) for op in directive.ops] == [RemoveActivity, AdjustTime]
        assert directive.ops[1].new_time == TimeSlot.LATE_NIGHT
        assert directive.confidence == 1.0

    def test_not_a_dict(self):
        assert parse_directive(None).ops == []

    @pytest.mark.parametrize("ops", [5, "remove the comedy club", {"op": "remove_activity"}])
    def test_ops_not_a_list(self, ops):
        directive = parse_directive({"ops": ops, "confidence": 0.5})
        assert directive.ops == []
        assert directive.confidence == 0.5

    def test_non_object_ops_skipped(self):
        directive = parse_directive({"ops": [3, None, "x", {"op": "remove_activity", "target_name": "comedy"}]})
        assert [type(op) for op in directive.ops] == [RemoveActivity]

    @pytest.mark.parametrize("confidence", [float("nan"), float("inf"), "high"])
    def test_bad_confidence_is_zero(self, confidence):
        assert parse_directive({"ops": [], "confidence": confidence}).confidence == 0.0

    def test_to_dict_drops_empty_fields(self):
        data = EditDirective(ops=[RemoveActivity(target_name="comedy")], confidence=0.8).to_dict()
        assert data["ops"][0]["op"] == "remove_activity"
        assert "new_time" not in data["ops"][0]


class TestHeuristic:
    def test_named_item(self, catalog):
        directive = heuristic_directive("can we add the Lake Travis Party Boat", catalog, DAY)
        op = directive.ops[0]
        assert isinstance(op, AddActivity)
        assert op.new_service_id == "501"
        assert op.target_time == TimeSlot.LATE_NIGHT

    def test_category_and_nightlife_slot(self, catalog):
        directive = heuristic_directive("throw in a strip club", catalog, DAY)
        op = directive.ops[0]
        assert op.category_hint == "strip_club"
        assert op.new_service_id is None
        assert op.target_time == TimeSlot.NIGHT

    def test_nothing_recognized(self, catalog):
        assert heuristic_directive("make it more fun", catalog, DAY) is None


class TestEditEngine:
    @pytest.mark.asyncio
    async def test_local_interpreter_when_rewrite_fails(self, plan, catalog, tool_provider, failing_provider):
        interpreter = EditInterpreter(
            provider=tool_provider(
                "propose_plan_edits", {"ops": [{"op": "remove_activity", "target_name": "comedy"}], "confidence": 0.9}
            )
        )
        engine = EditEngine(interpreter, selector=ServiceSelector(provider=failing_provider))
        outcome = await engine.edit_day("drop the comedy club", plan, catalog, {}, DAY, DedupContext())

        assert outcome.applied
        assert outcome.used_fallback
        assert [s.service_name for s in outcome.plan.selected_services] == ["Steakhouse"]
        assert metrics.count("fallback.rewrite") == 1

    @pytest.mark.asyncio
    async def test_rewrite_result_is_enriched_and_deduped(self, plan, catalog, tool_provider):
        interpreter = EditInterpreter(
            provider=tool_provider("propose_plan_edits", {"ops": [{"op": "add_activity", "keywords": ["boat"]}], "confidence": 0.7})
        )
        selector = ServiceSelector(
            provider=tool_provider(
                "select_services",
                {
                    "selectedServices": [
                        {"serviceId": "501", "serviceName": "Boat", "timeSlot": "afternoon", "reason": "asked"},
                        {"serviceId": "101", "serviceName": "Steak", "timeSlot": "evening", "reason": "kept"},
                    ],
                    "alternativeOptions": [],
                    "dayTheme": "",
                    "logisticsNotes": "",
                },
            )
        )
        dedup = DedupContext(used_services=[{"id": "101", "name": "Bob's"}])
        outcome = await EditEngine(interpreter, selector).edit_day("add a boat", plan, catalog, {}, DAY, dedup)

        assert not outcome.used_fallback
        assert _summary(outcome.plan) == [("501", TimeSlot.AFTERNOON)]
        assert outcome.plan.selected_services[0].price_usd == 110
        assert outcome.plan.day_theme == "Saturday"

    @pytest.mark.asyncio
    async def test_interpreter_no_ops_uses_heuristic(self, plan, catalog, tool_provider):
        interpreter = EditInterpreter(provider=tool_provider("propose_plan_edits", {"ops": [], "confidence": 0}))
        directive = await interpreter.interpret("add a strip club", plan, catalog, DAY)
        assert directive.ops[0].category_hint == "strip_club"
        assert metrics.count("fallback.edit_interpreter") == 1

    @pytest.mark.asyncio
    async def test_nothing_understood(self, plan, catalog, failing_provider):
        engine = EditEngine(EditInterpreter(provider=failing_provider), selector=None)
        outcome = await engine.edit_day("make it more fun", plan, catalog, {}, DAY, DedupContext())
        assert not outcome.applied
        assert outcome.plan is plan

    @pytest.mark.asyncio
    async def test_malformed_interpreter_output_uses_heuristic(self, plan, catalog, tool_provider, failing_provider):
        interpreter = EditInterpreter(provider=tool_provider("propose_plan_edits", {"ops": 5, "summary": "x"}))
        engine = EditEngine(interpreter, selector=ServiceSelector(provider=failing_provider))

        outcome = await engine.edit_day("add a strip club", plan, catalog, {}, DAY, DedupContext())

        assert outcome.applied
        assert outcome.directive.ops[0].category_hint == "strip_club"
        assert outcome.plan.service_ids() & {"401", "402"}
        assert metrics.count("fallback.edit_interpreter") == 1

    @pytest.mark.asyncio
    async def test_rewrite_duplicates_collapsed(self, plan, catalog, tool_provider):
        interpreter = EditInterpreter(
            provider=tool_provider("propose_plan_edits", {"ops": [{"op": "add_activity", "keywords": ["boat"]}], "confidence": 0.7})
        )
        selector = ServiceSelector(
            provider=tool_provider(
                "select_services",
                {
                    "selectedServices": [
                        {"serviceId": "501", "serviceName": "Boat", "timeSlot": "afternoon"},
                        {"serviceId": "501", "serviceName": "Boat again", "timeSlot": "afternoon"},
                        {"serviceId": "302", "serviceName": "Neon", "timeSlot": "night"},
                    ],
                },
            )
        )
        outcome = await EditEngine(interpreter, selector).edit_day("add a boat", plan, catalog, {}, DAY, DedupContext())

        assert not outcome.used_fallback
        assert _summary(outcome.plan) == [("501", TimeSlot.AFTERNOON), ("302", TimeSlot.NIGHT)]
