"""Reply text for plans, options, standby nudges and free-form questions."""

import json

import structlog

from conversation.models import DayByDayPlanning, DayPlan, StandbyState
from llm.base import LLMError
from llm.structured import complete_text
from observability import record_fallback

from .catalog import CatalogItem
from .edits import EditOutcome

logger = structlog.get_logger()

STANDBY_TEMPLATES_SINGLE = [
    "Your day is fully planned. Want to tweak anything, or ask about a spot on the list?",
    "Everything's booked in the plan. Tell me if you want to swap, add or drop something.",
    "That day is locked. Ask me anything about it, or name a change and I'll make it.",
]

STANDBY_TEMPLATES_MULTI = [
    "All {days} days are scheduled. Want to revisit a day? Just say which one.",
    "The full {days}-day itinerary is set. Ask about any stop, or tell me what to change.",
    "Every day is planned. Say something like 'swap dinner on day 2' and I'll update it.",
    "You're all set for {days} days. Need prices, timing, or a change? Just ask.",
]

_QUESTION_SYSTEM = """You are a friendly group-trip concierge. Answer the user's question using the trip
facts and itinerary provided. Be concise (under 120 words). If the answer is not in the
context, say so and offer to add or look something up. Do not invent prices."""

_QUESTION_PROMPT = """Trip facts:
{facts}

Itinerary so far:
{itinerary}

Question: {question}"""


def _price_label(price_usd, price_cad) -> str:
    if price_usd is not None:
        return f" (~${price_usd:,.0f})"
    if price_cad is not None:
        return f" (~CA${price_cad:,.0f})"
    return ""


def format_day_plan(
    plan: DayPlan,
    label: str,
    is_last_day: bool = False,
    heading: str | None = None,
    ask_approval: bool = True,
) -> str:
    lines = []
    if heading:
        lines.append(heading)
    title = f"{label}: {plan.day_theme}" if plan.day_theme else label
    lines.append(title)
    if not plan.selected_services:
        lines.append("- Nothing booked yet. Tell me what you'd like to do.")
    for s in plan.selected_services:
        slot = s.time_slot.value.replace("_", " ").title()
        line = f"- {slot}: {s.service_name}{_price_label(s.price_usd, s.price_cad)}"
        if s.reason:
            line += f". {s.reason}"
        lines.append(line)
    if plan.logistics_notes:
        lines.append(f"Notes: {plan.logistics_notes}")
    if ask_approval and is_last_day:
        lines.append("This is the last day. Say 'looks good' to wrap up the itinerary, or tell me what to change.")
    elif ask_approval:
        lines.append("Look good? Say 'looks good' to lock it in, or tell me what to change.")
    return "\n".join(lines)


def itinerary_summary(planning: DayByDayPlanning) -> list[dict]:
    """Per-day array for transport responses: completed days plus the working day."""
    days = []
    for index in range(planning.total_days):
        plan = planning.completed(index)
        status = "approved"
        if plan is None and index == planning.current_day and planning.current_day_plan is not None:
            plan, status = planning.current_day_plan, "draft"
        if plan is None:
            continue
        days.append(
            {
                **plan.to_dict(),
                "dayIndex": index,
                "dayNumber": index + 1,
                "status": status,
            }
        )
    return days


def itinerary_text(planning: DayByDayPlanning) -> str:
    lines = []
    for day in itinerary_summary(planning):
        names = ", ".join(
            f"{s['timeSlot']}: {s['serviceName']}" for s in day["selectedServices"]
        )
        lines.append(f"Day {day['dayNumber']} ({day['status']}): {names or 'empty'}")
    return "\n".join(lines) or "(nothing planned yet)"


def next_standby_message(standby: StandbyState, total_days: int) -> str:
    """Rotate through templates, never repeating the previous one."""
    templates = STANDBY_TEMPLATES_MULTI if total_days > 1 else STANDBY_TEMPLATES_SINGLE
    if standby.last_template is None:
        index = 0
    else:
        index = (standby.last_template + 1) % len(templates)
    standby.last_template = index
    standby.nudges_sent += 1
    return templates[index].format(days=total_days)


def format_options(items: list[CatalogItem], label: str) -> str:
    if not items:
        return f"I couldn't find any {label} options in the catalog for this trip. Want me to suggest something else?"
    lines = [f"Here are the top {label} options:"]
    for i, item in enumerate(items, 1):
        line = f"{i}. {item.display_name}{_price_label(item.price_usd, item.price_cad)}"
        if item.description:
            line += f": {item.description[:120]}"
        lines.append(line)
    lines.append("Want me to add one of these? Just name it and the day.")
    return "\n".join(lines)


def edit_confirmation(outcome: EditOutcome, label: str) -> str:
    if outcome.directive is None:
        return (
            f"I couldn't tell what to change on {label}. "
            "Try naming the spot or the time, like 'swap the nightclub for a bar'."
        )
    return f"Done, I've updated {label}."


class Presenter:
    """Free-text replies that need the LLM, each with a canned fallback."""

    def __init__(self, provider=None, max_tokens: int = 600):
        self._provider = provider
        self.max_tokens = max_tokens

    def _get_provider(self):
        if self._provider:
            return self._provider
        from llm.factory import create_cheap_provider

        self._provider = create_cheap_provider()
        return self._provider

    async def answer_question(self, question: str, prefs: dict, planning: DayByDayPlanning) -> str:
        prompt = _QUESTION_PROMPT.format(
            facts=json.dumps(prefs, default=str, indent=2),
            itinerary=itinerary_text(planning),
            question=question,
        )
        try:
            return await complete_text(
                self._get_provider(), prompt, system=_QUESTION_SYSTEM, max_tokens=self.max_tokens
            )
        except LLMError as e:
            record_fallback("presenter", error=str(e))
            return (
                "I can't look that up right now. Could you rephrase, "
                "or tell me what you'd like to change in the plan?"
            )
