"""Turn-level intent decisions during planning and standby.

Approval and navigation can co-occur ("day 1 sounds good, next day"). The
precedence, first match wins:

1. an options question ("what strip club options are there") -> options
2. an explicit edit verb ("swap", "remove", "add") -> edit
3. a strong approval phrase, unless the message is a question -> approve,
   even when a day is mentioned
4. an edit intent from the reducer -> edit
5. a navigation verb ("show me", "go to", "switch to") naming another day -> navigate
6. a soft advance phrase ("next day", "move on") or reducer approval -> approve
7. a reference to a different day, or reducer show_day -> navigate
8. anything else -> question
"""

import re
from dataclasses import dataclass
from enum import StrEnum

import structlog

from llm.base import LLMError, ToolDefinition
from llm.structured import call_tool
from observability import record_fallback
from planner.catalog import CATEGORY_ALIASES, SERVICE_CATEGORIES, normalize, normalize_category

from .models import IntentType

logger = structlog.get_logger()

APPROVAL_RE = re.compile(
    r"\b(yes|yep|yeah|yup|sure|ok|okay|cool|perfect|great|works|approved?|"
    r"sounds good|looks good|good to me|love it|lock it in|let'?s go|go ahead|ship it)\b",
    re.IGNORECASE,
)
ADVANCE_RE = re.compile(r"\b(next day|next one|move on|on to the next|continue|keep going)\b", re.IGNORECASE)
NAVIGATE_RE = re.compile(
    r"\b(go to|go back to|back to|show( me)?|switch( to)?|work on|plan|open|jump to|take me to)\b",
    re.IGNORECASE,
)
EDIT_RE = re.compile(
    r"\b(swap|replace|instead|remove|drop|delete|cancel|add|change|move .+ to (the )?(morning|afternoon|evening|night|late night)|switch .+ (for|with)|"
    r"get rid of)\b",
    re.IGNORECASE,
)
OPTIONS_RE = re.compile(
    r"\b(what|which|any|other|more|show me|list)\b.*\b(options?|choices|alternatives|places|spots|recommendations?)\b"
    r"|\bwhat (kind of|sort of|types? of)\b",
    re.IGNORECASE,
)


class PlanningAction(StrEnum):
    APPROVE = "approve"
    NAVIGATE = "navigate"
    EDIT = "edit"
    OPTIONS = "options"
    QUESTION = "question"


@dataclass
class PlanningIntent:
    action: PlanningAction
    target_day: int


def is_options_question(text: str) -> bool:
    return bool(OPTIONS_RE.search(text or ""))


def has_approval_words(text: str) -> bool:
    return bool(APPROVAL_RE.search(text or ""))


def classify_planning_intent(
    text: str,
    reducer_intent: IntentType,
    current_day: int,
    target_day: int,
) -> PlanningIntent:
    text = text or ""

    def decide(action: PlanningAction, day: int = target_day) -> PlanningIntent:
        logger.debug("intent.classified", action=action.value, target_day=day)
        return PlanningIntent(action=action, target_day=day)

    if is_options_question(text):
        return decide(PlanningAction.OPTIONS)
    if EDIT_RE.search(text):
        return decide(PlanningAction.EDIT)
    asking = text.rstrip().endswith("?")
    if has_approval_words(text) and not asking:
        return decide(PlanningAction.APPROVE, current_day)
    if reducer_intent.is_edit:
        return decide(PlanningAction.EDIT)
    if NAVIGATE_RE.search(text) and target_day != current_day:
        return decide(PlanningAction.NAVIGATE)
    if not asking and (ADVANCE_RE.search(text) or reducer_intent == IntentType.APPROVAL_NEXT):
        return decide(PlanningAction.APPROVE, current_day)
    if target_day != current_day or reducer_intent == IntentType.SHOW_DAY:
        return decide(PlanningAction.NAVIGATE)
    return decide(PlanningAction.QUESTION)


def extract_option_intent(text: str) -> tuple[str | None, list[str]]:
    """(category hint, keywords) for an options question."""
    words = normalize(text)
    category = None
    for label in SERVICE_CATEGORIES:
        if normalize(label) in words:
            category = normalize_category(label)
            break
    if category is None:
        for alias, mapped in CATEGORY_ALIASES.items():
            if re.search(rf"\b{alias}s?\b", words):
                category = mapped
                break
    stop = {"what", "which", "any", "other", "more", "options", "option", "are", "there", "the", "for",
            "show", "list", "choices", "some", "have", "you", "got", "kind", "of", "types", "type"}
    keywords = [w for w in words.split() if len(w) >= 3 and w not in stop]
    return category, keywords[:5]


STANDBY_TOOL = ToolDefinition(
    name="classify_intent",
    description="Classify a message sent after the itinerary is finished.",
    input_schema={
        "type": "object",
        "properties": {
            "intent_type": {
                "type": "string",
                "enum": [
                    IntentType.EDIT_ITINERARY.value,
                    IntentType.GENERAL_QUESTION.value,
                    IntentType.APPROVAL_NEXT.value,
                ],
            },
        },
        "required": ["intent_type"],
    },
)

_STANDBY_SYSTEM = """The user's trip itinerary is fully planned. Decide whether the message asks to change
the itinerary (edit_itinerary), asks a question (general_question), or is just an
acknowledgement like thanks/ok (approval_next)."""


def heuristic_standby_intent(text: str) -> IntentType:
    if EDIT_RE.search(text or ""):
        return IntentType.EDIT_ITINERARY
    if has_approval_words(text) or re.search(r"\b(thanks|thank you|thx)\b", text or "", re.IGNORECASE):
        return IntentType.APPROVAL_NEXT
    return IntentType.GENERAL_QUESTION


class StandbyClassifier:
    def __init__(self, provider=None):
        self._provider = provider

    def _get_provider(self):
        if self._provider:
            return self._provider
        from llm.factory import create_cheap_provider

        self._provider = create_cheap_provider()
        return self._provider

    async def classify(self, text: str) -> IntentType:
        try:
            raw = await call_tool(self._get_provider(), STANDBY_TOOL, text, system=_STANDBY_SYSTEM, max_tokens=100)
            intent = IntentType(str(raw.get("intent_type", "")).strip().lower())
            if intent in (IntentType.EDIT_ITINERARY, IntentType.GENERAL_QUESTION, IntentType.APPROVAL_NEXT):
                return intent
            if intent.is_edit:
                return IntentType.EDIT_ITINERARY
            return IntentType.GENERAL_QUESTION
        except (LLMError, ValueError) as e:
            record_fallback("standby_classifier", error=str(e))
            return heuristic_standby_intent(text)
