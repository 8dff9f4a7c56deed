"""Tests for the fact ledger merge rule and read-side queries."""

import itertools

import pytest

from conversation.ledger import (
    accepts_update,
    essentials_confirmed,
    flatten_preferences,
    helpfuls_addressed,
    merge_fact_updates,
    missing_essentials,
    serialize_for_prompt,
    set_fact,
)
from conversation.models import Fact, FactPriority, FactStatus, default_ledger


class TestMergeRule:
    def test_higher_status_accepted(self):
        facts = default_ledger()
        changed = merge_fact_updates(facts, {"destination": {"value": "Austin", "status": "suggested"}})
        assert changed == ["destination"]
        assert facts["destination"].value == "Austin"
        assert facts["destination"].status == FactStatus.SUGGESTED

    def test_lower_status_rejected(self):
        facts = default_ledger()
        set_fact(facts, "groupSize", 8)
        changed = merge_fact_updates(facts, {"groupSize": {"value": 12, "status": "assumed"}})
        assert changed == []
        assert facts["groupSize"].value == 8
        assert facts["groupSize"].status == FactStatus.SET

    def test_equal_status_overwrites(self):
        facts = default_ledger()
        set_fact(facts, "groupSize", 8)
        merge_fact_updates(facts, {"groupSize": {"value": 10, "status": "set"}})
        assert facts["groupSize"].value == 10

    def test_corrected_beats_set_and_blocks_dev_writes(self):
        facts = default_ledger()
        set_fact(facts, "budget", "low")
        merge_fact_updates(facts, {"budget": {"value": "high", "status": "corrected"}})
        set_fact(facts, "budget", "medium")
        assert facts["budget"].value == "high"
        assert facts["budget"].status == FactStatus.CORRECTED

    @pytest.mark.parametrize("first,second", list(itertools.product(list(FactStatus), repeat=2)))
    def test_status_never_decreases(self, first, second):
        facts = default_ledger()
        merge_fact_updates(facts, {"wildnessLevel": {"value": 2, "status": first.value}})
        before = facts["wildnessLevel"].status
        merge_fact_updates(facts, {"wildnessLevel": {"value": 4, "status": second.value}})
        assert facts["wildnessLevel"].status.rank >= before.rank

    def test_optional_unknown_jumps_to_set(self):
        fact = Fact(priority=FactPriority.OPTIONAL)
        assert accepts_update(fact, FactStatus.SET)
        fact.status = FactStatus.ASSUMED
        assert not accepts_update(fact, FactStatus.SUGGESTED)

    def test_unknown_keys_and_bad_updates_ignored(self):
        facts = default_ledger()
        changed = merge_fact_updates(facts, {"favoriteColor": {"value": "red", "status": "set"}, "budget": "high"})
        assert changed == []
        assert "favoriteColor" not in facts
        assert merge_fact_updates(facts, ["not", "a", "dict"]) == []

    def test_missing_status_keeps_current(self):
        facts = default_ledger()
        set_fact(facts, "relationship", "college friends")
        merge_fact_updates(facts, {"relationship": {"value": "coworkers"}})
        assert facts["relationship"].status == FactStatus.SET
        assert facts["relationship"].value == "coworkers"

    def test_value_coercion(self):
        facts = default_ledger()
        merge_fact_updates(
            facts,
            {
                "groupSize": {"value": "12", "status": "set"},
                "wildnessLevel": {"value": 9, "status": "set"},
                "interestedActivities": {"value": "golf, boat and steak", "status": "set"},
            },
        )
        assert facts["groupSize"].value == 12
        assert facts["wildnessLevel"].value == 5
        assert facts["interestedActivities"].value == ["golf", "boat", "steak"]

    def test_confidence_clamped(self):
        facts = default_ledger()
        merge_fact_updates(facts, {"budget": {"value": "high", "status": "set", "confidence": 3}})
        assert facts["budget"].confidence == 1.0

    def test_non_finite_confidence_ignored(self):
        facts = default_ledger()
        before = facts["budget"].confidence
        merge_fact_updates(facts, {"budget": {"value": "high", "status": "set", "confidence": float("nan")}})
        assert facts["budget"].value == "high"
        assert facts["budget"].confidence == before


class TestInvalidValues:
    @pytest.mark.parametrize("value", ["inf", "-inf", "nan", float("inf"), "seven", True])
    def test_bad_counts_rejected(self, value):
        facts = default_ledger()
        assert merge_fact_updates(facts, {"groupSize": {"value": value, "status": "set"}}) == []
        assert facts["groupSize"].value is None
        assert facts["groupSize"].status == FactStatus.UNKNOWN

    def test_bad_wildness_rejected(self):
        facts = default_ledger()
        set_fact(facts, "wildnessLevel", 3)
        assert not set_fact(facts, "wildnessLevel", "Infinity")
        assert facts["wildnessLevel"].value == 3

    def test_other_updates_in_batch_still_applied(self):
        facts = default_ledger()
        changed = merge_fact_updates(
            facts,
            {
                "destination": {"value": "Austin", "status": "set"},
                "groupSize": {"value": "inf", "status": "set"},
                "startDate": {"value": "2025-09-05", "status": "set"},
            },
        )
        assert changed == ["destination", "startDate"]
        assert facts["startDate"].status == FactStatus.SET
        assert facts["groupSize"].status == FactStatus.UNKNOWN

    def test_set_fact_reports_refusal(self):
        facts = default_ledger()
        assert set_fact(facts, "groupSize", 8)
        assert not set_fact(facts, "groupSize", "nan")
        assert facts["groupSize"].value == 8


class TestQueries:
    def test_missing_essentials_in_order(self):
        facts = default_ledger()
        set_fact(facts, "destination", "Austin")
        assert missing_essentials(facts) == ["groupSize", "startDate", "endDate"]

    def test_assumed_destination_counts_for_supported_city(self):
        facts = default_ledger()
        merge_fact_updates(facts, {"destination": {"value": "austin", "status": "assumed"}})
        for key, value in (("groupSize", 6), ("startDate", "2025-09-05"), ("endDate", "2025-09-07")):
            set_fact(facts, key, value)
        assert essentials_confirmed(facts, supported_city="Austin")
        assert not essentials_confirmed(facts)

    def test_assumed_group_size_does_not_count(self):
        facts = default_ledger()
        for key, value in (("destination", "Austin"), ("startDate", "2025-09-05"), ("endDate", "2025-09-07")):
            set_fact(facts, key, value)
        merge_fact_updates(facts, {"groupSize": {"value": 8, "status": "assumed"}})
        assert missing_essentials(facts, "Austin") == ["groupSize"]

    def test_helpfuls_addressed(self):
        facts = default_ledger()
        assert not helpfuls_addressed(facts)
        for key in ("wildnessLevel", "relationship", "interestedActivities", "ageRange", "budget"):
            merge_fact_updates(facts, {key: {"value": None, "status": "assumed"}})
        assert helpfuls_addressed(facts)

    def test_flatten_preferences(self):
        facts = default_ledger()
        set_fact(facts, "startDate", "2025-09-05")
        set_fact(facts, "endDate", "2025-09-07")
        set_fact(facts, "interestedActivities", ["golf", "strip club"])
        prefs = flatten_preferences(facts)
        assert prefs["duration"] == 3
        assert prefs["wildnessLevel"] == 3
        assert prefs["specialRequests"] == "golf, strip club"

    def test_serialize_for_prompt_marks_unknowns(self):
        facts = default_ledger()
        set_fact(facts, "groupSize", 8)
        text = serialize_for_prompt(facts)
        assert "- groupSize: 8 (set, essential)" in text
        assert "- destination: ? (unknown, essential)" in text
