"""Tests for snapshot export/import."""

from conversation.models import (
    Awaiting,
    Conversation,
    DayPlan,
    GuidedState,
    Phase,
    ServiceSelection,
    TimeSlot,
)
from conversation.snapshot import coerce_used_services, export_snapshot, import_snapshot


def _mid_guided(conversation, catalog):
    conversation.phase = Phase.GUIDED_FIRST_DAY
    conversation.available_services = catalog
    conversation.awaiting = Awaiting.GROUP_SIZE
    planning = conversation.day_by_day
    planning.total_days = 3
    planning.guided[0] = GuidedState(
        flow="arrival_friday",
        step_index=1,
        choices={"pickup": {"token": "1", "title": "Party bus pickup", "serviceId": "601"}},
    )
    steak = next(i for i in catalog if i.id == "101")
    planning.store_completed(
        2, DayPlan(selected_services=[ServiceSelection.from_catalog(steak, TimeSlot.EVENING)], day_theme="Farewell")
    )
    planning.drafts[1] = DayPlan(day_theme="Draft")
    conversation.standby.nudges_sent = 1
    return conversation


class TestRoundTrip:
    def test_export_import_export_is_stable(self, planning_conversation, catalog):
        conversation = _mid_guided(planning_conversation, catalog)
        exported = export_snapshot(conversation)

        restored = Conversation(id=conversation.id)
        assert import_snapshot(restored, exported)

        assert export_snapshot(restored) == exported
        assert restored.phase == Phase.GUIDED_FIRST_DAY
        assert restored.day_by_day.guided[0].step_index == 1
        assert restored.day_by_day.used_service_ids == {"101"}
        assert restored.day_by_day.completed(1) is None
        assert restored.awaiting == Awaiting.GROUP_SIZE

    def test_export_is_json_shaped(self, planning_conversation, catalog):
        snapshot = export_snapshot(_mid_guided(planning_conversation, catalog))
        assert snapshot["phase"] == "guided_first_day"
        assert snapshot["guidedFirstDay"]["flow"] == "arrival_friday"
        assert snapshot["selectedServices"][2][0]["serviceId"] == "101"
        assert snapshot["dayByDayPlanning"]["guided"]["0"]["stepIndex"] == 1
        assert snapshot["dayByDayPlanning"]["usedServices"] == ["101"]

    def test_import_does_not_alias_input(self, planning_conversation):
        exported = export_snapshot(planning_conversation)
        restored = Conversation(id="conv-1")
        import_snapshot(restored, exported)
        restored.facts["groupSize"].value = 99
        assert exported["facts"]["groupSize"]["value"] == 8


class TestTolerantImport:
    def test_not_a_dict(self):
        assert not import_snapshot(Conversation(id="c1"), ["nope"])

    def test_unknown_phase_and_awaiting_ignored(self):
        conversation = Conversation(id="c1")
        assert import_snapshot(conversation, {"phase": "warp_speed", "awaiting": "???"})
        assert conversation.phase == Phase.GATHERING
        assert conversation.awaiting == Awaiting.NONE

    def test_used_services_as_object(self):
        conversation = Conversation(id="c1")
        import_snapshot(
            conversation,
            {
                "dayByDayPlanning": {
                    "totalDays": 1,
                    "usedServices": {"a": "101", "b": 201},
                    "completedDays": [
                        {
                            "selectedServices": [
                                {"serviceId": "101", "serviceName": "Steak", "timeSlot": "evening"},
                                {"serviceId": "201", "serviceName": "Crawl", "timeSlot": "night"},
                            ]
                        }
                    ],
                }
            },
        )
        assert conversation.day_by_day.used_service_ids == {"101", "201"}

    def test_used_services_without_completed_days_are_dropped(self):
        conversation = Conversation(id="c1")
        import_snapshot(conversation, {"dayByDayPlanning": {"completedDays": [], "usedServices": ["101", "401"]}})
        assert conversation.day_by_day.used_service_ids == set()

    def test_used_services_rebuilt_from_completed_days(self):
        conversation = Conversation(id="c1")
        import_snapshot(
            conversation,
            {
                "dayByDayPlanning": {
                    "totalDays": 2,
                    "usedServices": ["999"],
                    "completedDays": [
                        {"selectedServices": [{"serviceId": "501", "serviceName": "Boat", "timeSlot": "afternoon"}]},
                        None,
                    ],
                }
            },
        )
        assert conversation.day_by_day.used_service_ids == {"501"}

    def test_legacy_selected_services(self):
        conversation = Conversation(id="c1")
        import_snapshot(
            conversation,
            {
                "dayByDayPlanning": {"totalDays": 2, "currentDay": 1},
                "selectedServices": [[{"serviceId": "302", "serviceName": "Neon", "timeSlot": "night"}], None],
            },
        )
        day = conversation.day_by_day.completed(0)
        assert day.day_number == 1
        assert day.selected_services[0].time_slot == TimeSlot.NIGHT
        assert conversation.day_by_day.current_day == 1

    def test_bad_fact_entries_skipped(self):
        conversation = Conversation(id="c1")
        import_snapshot(conversation, {"facts": {"groupSize": "eight", "destination": {"value": "Austin", "status": "set"}}})
        assert conversation.facts["groupSize"].value is None
        assert conversation.facts["destination"].value == "Austin"


def test_coerce_used_services_shapes():
    assert coerce_used_services(None) == set()
    assert coerce_used_services(["1", 2, None, ""]) == {"1", "2"}
    assert coerce_used_services({"x": "3"}) == {"3"}
    assert coerce_used_services({"4"}) == {"4"}
    assert coerce_used_services("5") == set()


class TestNumericFieldsImport:
    def test_non_numeric_counters_default(self):
        conversation = Conversation(id="c1")
        assert import_snapshot(
            conversation,
            {
                "dayByDayPlanning": {"currentDay": "two", "totalDays": "3", "guided": {"0": {"flow": "big_saturday", "stepIndex": "x"}}},
                "standby": {"nudgesSent": None, "lastTemplate": "first"},
            },
        )
        assert conversation.day_by_day.current_day == 0
        assert conversation.day_by_day.total_days == 3
        assert conversation.day_by_day.guided[0].step_index == 0
        assert conversation.standby.last_template is None

    def test_non_finite_values_default(self):
        conversation = Conversation(id="c1")
        import_snapshot(
            conversation,
            {
                "facts": {"groupSize": {"value": 8, "status": "set", "confidence": float("nan")}},
                "dayByDayPlanning": {"currentDay": float("inf"), "totalDays": 2},
            },
        )
        assert conversation.day_by_day.current_day == 0
        assert conversation.facts["groupSize"].confidence == 0.0
