"""Tests for planning and standby intent decisions."""

import pytest

from conversation.intents import (
    PlanningAction,
    StandbyClassifier,
    classify_planning_intent,
    extract_option_intent,
    heuristic_standby_intent,
    is_options_question,
)
from conversation.models import IntentType
from observability import metrics

GENERAL = IntentType.GENERAL_QUESTION


class TestClassifyPlanningIntent:
    @pytest.mark.parametrize(
        "text,reducer_intent,target,action,expected_day",
        [
            ("what strip club options are there", GENERAL, 0, PlanningAction.OPTIONS, 0),
            ("swap the dinner for hibachi", GENERAL, 0, PlanningAction.EDIT, 0),
            ("day 1 looks good, next day", GENERAL, 1, PlanningAction.APPROVE, 0),
            ("looks good to me, show me day 3", GENERAL, 2, PlanningAction.APPROVE, 0),
            ("show me day 3", GENERAL, 2, PlanningAction.NAVIGATE, 2),
            ("move on", GENERAL, 0, PlanningAction.APPROVE, 0),
            ("can we do something else for dinner", IntentType.SUBSTITUTION, 0, PlanningAction.EDIT, 0),
            ("saturday", GENERAL, 1, PlanningAction.NAVIGATE, 1),
            ("what time is dinner", GENERAL, 0, PlanningAction.QUESTION, 0),
            ("what time is dinner", IntentType.SHOW_DAY, 0, PlanningAction.NAVIGATE, 0),
        ],
    )
    def test_precedence(self, text, reducer_intent, target, action, expected_day):
        intent = classify_planning_intent(text, reducer_intent, current_day=0, target_day=target)
        assert intent.action == action
        assert intent.target_day == expected_day

    def test_approval_words_in_a_question_do_not_approve(self):
        intent = classify_planning_intent("the boat sounds good?", GENERAL, 0, 0)
        assert intent.action == PlanningAction.QUESTION

    def test_reducer_approval_advances(self):
        intent = classify_planning_intent("alright", IntentType.APPROVAL_NEXT, 0, 0)
        assert intent.action == PlanningAction.APPROVE


class TestOptionIntent:
    def test_is_options_question(self):
        assert is_options_question("What other restaurant options do you have")
        assert is_options_question("what kind of daytime stuff is there")
        assert not is_options_question("looks good")

    def test_extract_category_and_keywords(self):
        category, keywords = extract_option_intent("what strip club options are there")
        assert category == "strip_club"
        assert keywords == ["strip", "club"]

    def test_extract_alias(self):
        category, _ = extract_option_intent("any nightclubs worth it?")
        assert category == "night_club"


class TestStandby:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("thanks!", IntentType.APPROVAL_NEXT),
            ("remove the golf on day 2", IntentType.EDIT_ITINERARY),
            ("what time is checkout", IntentType.GENERAL_QUESTION),
        ],
    )
    def test_heuristic(self, text, expected):
        assert heuristic_standby_intent(text) == expected

    @pytest.mark.asyncio
    async def test_llm_edit_subtype_maps_to_edit(self, tool_provider):
        classifier = StandbyClassifier(provider=tool_provider("classify_intent", {"intent_type": "substitution"}))
        assert await classifier.classify("different dinner please") == IntentType.EDIT_ITINERARY

    @pytest.mark.asyncio
    async def test_llm_answer_used(self, tool_provider):
        classifier = StandbyClassifier(provider=tool_provider("classify_intent", {"intent_type": "general_question"}))
        assert await classifier.classify("thanks") == IntentType.GENERAL_QUESTION

    @pytest.mark.asyncio
    async def test_failure_uses_heuristic(self, failing_provider):
        classifier = StandbyClassifier(provider=failing_provider)
        assert await classifier.classify("thanks!") == IntentType.APPROVAL_NEXT
        assert metrics.count("fallback.standby_classifier") == 1
