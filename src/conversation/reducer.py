"""Reducer: one utterance plus the ledger in, fact updates plus intent and reply out.

The LLM does the extraction under the ``reduce_state`` tool contract. A
deterministic pre-pass handles terse numeric answers while the conversation
is waiting on the group size, and any collaborator failure degrades to a
fixed blocking-question result that leaves the ledger untouched.
"""

import json
import re

import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator

from llm.base import LLMError, ToolDefinition
from llm.structured import call_tool
from observability import record_fallback

from .dates import parse_user_date
from .ledger import merge_fact_updates, missing_essentials, serialize_for_prompt
from .models import FACT_PRIORITIES, Awaiting, Conversation, FactStatus, IntentType

logger = structlog.get_logger()

GROUP_SIZE_MAX = 300

_UNITS = {
    "zero": 0, "one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6,
    "seven": 7, "eight": 8, "nine": 9, "ten": 10, "eleven": 11, "twelve": 12,
    "thirteen": 13, "fourteen": 14, "fifteen": 15, "sixteen": 16,
    "seventeen": 17, "eighteen": 18, "nineteen": 19,
}
_TENS = {
    "twenty": 20, "thirty": 30, "forty": 40, "fifty": 50,
    "sixty": 60, "seventy": 70, "eighty": 80, "ninety": 90,
}
_MULTIPLIERS = {"hundred": 100, "dozen": 12}
_FILLER = {
    "we", "re", "are", "about", "around", "roughly", "maybe", "like", "probably",
    "people", "persons", "guys", "dudes", "ppl", "heads", "of", "us", "total",
    "in", "its", "it", "s", "approx", "approximately", "just", "there", "will",
    "be", "ll", "so", "um", "uh", "i", "think", "count", "group",
}


def _words_to_number(words: list[str]) -> int | None:
    if not words:
        return None
    total = 0
    seen_number = False
    for i, word in enumerate(words):
        if word == "and" and seen_number:
            continue
        if word == "a" and i + 1 < len(words) and words[i + 1] in _MULTIPLIERS:
            total += 1
            seen_number = True
        elif word in _UNITS:
            total += _UNITS[word]
            seen_number = True
        elif word in _TENS:
            total += _TENS[word]
            seen_number = True
        elif word in _MULTIPLIERS:
            total = max(total, 1) * _MULTIPLIERS[word]
            seen_number = True
        else:
            return None
    return total if seen_number else None


def capture_group_size(utterance: str | None) -> int | None:
    """Parse a terse group-size reply ("7", "seven", "twenty five of us", "a dozen").

    Returns None unless the whole reply is one number (digits or words)
    between 1 and 300, ignoring filler words.
    """
    if not utterance:
        return None
    tokens = re.findall(r"[a-z]+|\d+", utterance.lower().replace("-", " "))
    rest = [t for t in tokens if t not in _FILLER]
    if not rest:
        return None
    if len(rest) == 1 and rest[0].isdigit():
        value = int(rest[0])
    elif any(t.isdigit() for t in rest):
        return None
    else:
        value = _words_to_number(rest)
    if value is None or not 1 <= value <= GROUP_SIZE_MAX:
        return None
    return value


class ReduceResult(BaseModel):
    """Reduce call response. Every field is always present."""

    facts: dict[str, dict] = Field(default_factory=dict)
    assumptions: list[str] = Field(default_factory=list)
    blocking_questions: list[str] = Field(default_factory=list)
    safe_transition: bool = False
    reply: str = ""
    intent_type: IntentType = IntentType.GENERAL_QUESTION
    target_day_index: int | None = None
    substitution_details: dict | None = None
    source: str = "llm"

    @field_validator("facts", mode="before")
    @classmethod
    def _only_dict_updates(cls, v):
        if not isinstance(v, dict):
            return {}
        return {k: u for k, u in v.items() if isinstance(u, dict)}

    @field_validator("intent_type", mode="before")
    @classmethod
    def _known_intent(cls, v):
        try:
            return IntentType(str(v).strip().lower())
        except ValueError:
            return IntentType.GENERAL_QUESTION

    @field_validator("target_day_index", mode="before")
    @classmethod
    def _int_or_none(cls, v):
        if v in (None, ""):
            return None
        try:
            return int(v)
        except (TypeError, ValueError, OverflowError):
            return None

    @field_validator("assumptions", "blocking_questions", mode="before")
    @classmethod
    def _string_list(cls, v):
        if isinstance(v, str):
            return [v] if v else []
        return [str(x) for x in v or []]

    @classmethod
    def fallback(cls) -> "ReduceResult":
        return cls(
            blocking_questions=["I need more information to help plan your trip"],
            safe_transition=False,
            reply="Tell me more about what you're looking for: where you're headed, how many people, and your dates.",
            intent_type=IntentType.GENERAL_QUESTION,
            source="fallback",
        )


_FACT_UPDATE_SCHEMA = {
    "type": "object",
    "properties": {
        "value": {},
        "status": {"type": "string", "enum": [s.value for s in FactStatus]},
        "confidence": {"type": "number", "minimum": 0, "maximum": 1},
        "provenance": {"type": "string"},
    },
    "required": ["value", "status"],
}

REDUCE_TOOL = ToolDefinition(
    name="reduce_state",
    description="Report fact updates, intent and the reply for this user turn.",
    input_schema={
        "type": "object",
        "properties": {
            "facts": {
                "type": "object",
                "properties": {key: _FACT_UPDATE_SCHEMA for key in FACT_PRIORITIES},
                "additionalProperties": False,
            },
            "assumptions": {"type": "array", "items": {"type": "string"}},
            "blocking_questions": {"type": "array", "items": {"type": "string"}},
            "safe_transition": {"type": "boolean"},
            "reply": {"type": "string"},
            "intent_type": {"type": "string", "enum": [i.value for i in IntentType]},
            "target_day_index": {"type": ["integer", "null"]},
            "substitution_details": {"type": ["object", "null"]},
        },
        "required": [
            "facts",
            "assumptions",
            "blocking_questions",
            "safe_transition",
            "reply",
            "intent_type",
            "target_day_index",
        ],
    },
)

_REDUCE_SYSTEM = """You maintain the fact ledger for a group-trip planning chat.

For each user turn, report only facts that changed:
- status "set" when the user stated it, "corrected" when they changed a previous answer,
  "assumed" for your own reasonable default, "suggested" for something you proposed.
- Dates as YYYY-MM-DD when you can resolve them, otherwise the user's words.
- groupSize is an integer. wildnessLevel is 1 (chill) to 5 (wild).
Set safe_transition true only when destination, group size and dates are all known and the
user is ready to start planning. Classify the turn with intent_type; target_day_index is the
0-based trip day the user refers to, or null. Keep the reply short and ask at most one question."""

_REDUCE_PROMPT = """Current ledger:
{ledger}

Recent messages:
{messages}
{planning}
User: {utterance}"""

_GROUP_SIZE_QUESTION = re.compile(
    r"how many (people|guys|of you|are (coming|going|in))|group size|head ?count|size of (your|the) group",
    re.IGNORECASE,
)

ESSENTIAL_QUESTIONS = {
    "destination": "Where are you headed?",
    "groupSize": "How many people are in your group?",
    "startDate": "What date do you arrive?",
    "endDate": "And what date do you head home?",
}


def next_question(conversation: Conversation, supported_city: str | None = None) -> str | None:
    missing = missing_essentials(conversation.facts, supported_city)
    return ESSENTIAL_QUESTIONS[missing[0]] if missing else None


def _normalize_date_facts(result: ReduceResult) -> None:
    for key in ("startDate", "endDate"):
        update = result.facts.get(key)
        if not update or update.get("value") in (None, ""):
            continue
        parsed = parse_user_date(update["value"])
        if parsed:
            update["value"] = parsed
        else:
            logger.info("reducer.unparseable_date", key=key, value=update["value"])
            del result.facts[key]
            result.blocking_questions.append("Which exact dates are you thinking?")


def asks_for_group_size(result: ReduceResult) -> bool:
    text = " ".join([result.reply, *result.blocking_questions])
    return bool(_GROUP_SIZE_QUESTION.search(text))


class Reducer:
    """Runs the numeric pre-pass or the ``reduce_state`` call."""

    def __init__(self, provider=None, recent_messages: int = 6, max_tokens: int = 1500):
        self._provider = provider
        self.recent_messages = recent_messages
        self.max_tokens = max_tokens

    def _get_provider(self):
        if self._provider:
            return self._provider
        from llm.factory import create_llm_provider

        self._provider = create_llm_provider()
        return self._provider

    def _prompt(self, conversation: Conversation, utterance: str, planning_context: dict | None) -> str:
        messages = "\n".join(
            f"{m.role}: {m.content}" for m in conversation.recent_messages(self.recent_messages)
        )
        planning = ""
        if planning_context:
            planning = "\nPlanning context:\n" + json.dumps(planning_context, default=str, indent=2) + "\n"
        return _REDUCE_PROMPT.format(
            ledger=serialize_for_prompt(conversation.facts),
            messages=messages or "(none)",
            planning=planning,
            utterance=utterance,
        )

    async def reduce(
        self,
        conversation: Conversation,
        utterance: str,
        planning_context: dict | None = None,
    ) -> ReduceResult:
        if conversation.awaiting == Awaiting.GROUP_SIZE:
            size = capture_group_size(utterance)
            if size is not None:
                logger.info("reducer.group_size_captured", size=size)
                return ReduceResult(
                    facts={
                        "groupSize": {
                            "value": size,
                            "status": FactStatus.SET.value,
                            "confidence": 0.95,
                            "provenance": "numeric_capture",
                        }
                    },
                    reply=f"Got it, {size} people.",
                    source="numeric_capture",
                )

        try:
            raw = await call_tool(
                self._get_provider(),
                REDUCE_TOOL,
                self._prompt(conversation, utterance, planning_context),
                system=_REDUCE_SYSTEM,
                max_tokens=self.max_tokens,
            )
            result = ReduceResult.model_validate(raw)
        except (LLMError, ValidationError) as e:
            record_fallback("reducer", conversation_id=conversation.id, error=str(e))
            return ReduceResult.fallback()

        _normalize_date_facts(result)
        return result


def apply_reduction(conversation: Conversation, result: ReduceResult) -> list[str]:
    """Merge the result's fact updates and update the awaiting sub-state."""
    if result.source == "fallback":
        return []
    changed = merge_fact_updates(conversation.facts, result.facts)
    group_size = conversation.facts["groupSize"]
    if result.source == "numeric_capture" or group_size.status in (FactStatus.SET, FactStatus.CORRECTED):
        conversation.awaiting = Awaiting.NONE
    elif asks_for_group_size(result):
        conversation.awaiting = Awaiting.GROUP_SIZE
    return changed
