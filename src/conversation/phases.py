"""Phase State Machine: GATHERING -> GUIDED_FIRST_DAY -> PLANNING -> STANDBY.

Transitions only move forward; only a reset goes back to GATHERING.
"""

import structlog

from planner.guided import FlowSpec, flow_for_weekday

from .dates import calculate_duration, weekday_of
from .ledger import essentials_confirmed, helpfuls_addressed
from .models import Conversation, Fact, Phase

logger = structlog.get_logger()

_ORDER = {
    Phase.GATHERING: 0,
    Phase.GUIDED_FIRST_DAY: 1,
    Phase.PLANNING: 2,
    Phase.STANDBY: 3,
}


def gathering_exit_allowed(
    facts: dict[str, Fact], safe_transition: bool, supported_city: str | None = None
) -> bool:
    """Essentials confirmed AND (reducer says safe OR every helpful fact addressed)."""
    if not essentials_confirmed(facts, supported_city):
        return False
    return safe_transition or helpfuls_addressed(facts)


def guided_flow_for_day(
    conversation: Conversation, day_index: int, guided_weekdays: list[str] | None = None
) -> FlowSpec | None:
    start = conversation.facts["startDate"].value
    return flow_for_weekday(weekday_of(start, day_index), guided_weekdays)


def trip_length(conversation: Conversation) -> int:
    return calculate_duration(
        conversation.facts["startDate"].value, conversation.facts["endDate"].value
    )


def phase_after_gathering(
    conversation: Conversation,
    safe_transition: bool,
    supported_city: str | None = None,
    guided_weekdays: list[str] | None = None,
) -> Phase:
    if not gathering_exit_allowed(conversation.facts, safe_transition, supported_city):
        return Phase.GATHERING
    if guided_flow_for_day(conversation, 0, guided_weekdays) is not None:
        return Phase.GUIDED_FIRST_DAY
    return Phase.PLANNING


def transition(conversation: Conversation, target: Phase) -> bool:
    """Move forward to ``target``; refuses regressions. Returns whether the phase changed."""
    current = conversation.phase
    if target == current:
        return False
    if _ORDER[target] < _ORDER[current]:
        logger.warning("phase.regression_refused", current=current.value, target=target.value)
        return False
    conversation.phase = target
    logger.info("phase.changed", conversation_id=conversation.id, old=current.value, new=target.value)
    return True


def force_phase(conversation: Conversation, target: Phase) -> None:
    """Unconditional phase set, for developer commands only."""
    logger.info("phase.forced", conversation_id=conversation.id, old=conversation.phase.value, new=target.value)
    conversation.phase = target
