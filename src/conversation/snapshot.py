"""Session Snapshot: the whole conversation as a JSON-safe dict, and back.

Import is tolerant. Missing keys keep their defaults, unknown enum values
are ignored, and ``usedServices`` may arrive as a list, an object whose
values are ids, or a set.
"""

import copy

import structlog

from planner.catalog import parse_items

from .models import (
    FACT_PRIORITIES,
    Awaiting,
    Conversation,
    DayByDayPlanning,
    DayPlan,
    Fact,
    GuidedState,
    Message,
    Phase,
    StandbyState,
    coerce_int,
)

logger = structlog.get_logger()

SNAPSHOT_VERSION = 2


def export_snapshot(conversation: Conversation) -> dict:
    planning = conversation.day_by_day
    guided_first = planning.guided.get(0)
    return {
        "version": SNAPSHOT_VERSION,
        "conversationId": conversation.id,
        "phase": conversation.phase.value,
        "facts": {key: fact.to_dict() for key, fact in conversation.facts.items()},
        "availableServices": [item.to_dict() for item in conversation.available_services],
        "selectedServices": [
            [s.to_dict() for s in day.selected_services] if day else None
            for day in planning.completed_days
        ],
        "dayByDayPlanning": planning.to_dict(),
        "guidedFirstDay": guided_first.to_dict() if guided_first else None,
        "awaiting": conversation.awaiting.value,
        "standby": conversation.standby.to_dict(),
        "messages": [m.to_dict() for m in conversation.messages],
        "createdAt": conversation.created_at,
    }


def coerce_used_services(raw) -> set[str]:
    """Accept a list/tuple, a dict (its values), or a set."""
    if raw is None:
        return set()
    if isinstance(raw, dict):
        values = raw.values()
    elif isinstance(raw, (list, tuple, set, frozenset)):
        values = raw
    else:
        return set()
    return {str(v) for v in values if v not in (None, "")}


def _int_keyed(raw, parse) -> dict:
    result = {}
    if not isinstance(raw, dict):
        return result
    for key, value in raw.items():
        try:
            index = int(key)
        except (TypeError, ValueError):
            continue
        if isinstance(value, dict):
            result[index] = parse(value)
    return result


def _import_planning(data: dict, legacy_selected) -> DayByDayPlanning:
    planning = DayByDayPlanning()
    planning.total_days = max(0, coerce_int(data.get("totalDays")))
    planning.current_day = max(0, coerce_int(data.get("currentDay")))
    planning.is_complete = bool(data.get("isComplete"))

    completed = data.get("completedDays")
    if isinstance(completed, list):
        planning.completed_days = [DayPlan.from_dict(d) if isinstance(d, dict) else None for d in completed]
    elif isinstance(legacy_selected, list):
        # Snapshots that predate completedDays only carried the per-day selections
        planning.completed_days = [
            DayPlan.from_dict({"selectedServices": day, "dayNumber": i + 1}) if isinstance(day, list) else None
            for i, day in enumerate(legacy_selected)
        ]

    current = data.get("currentDayPlan")
    planning.current_day_plan = DayPlan.from_dict(current) if isinstance(current, dict) else None
    planning.guided = _int_keyed(data.get("guided"), GuidedState.from_dict)
    planning.drafts = _int_keyed(data.get("drafts"), DayPlan.from_dict)

    declared = coerce_used_services(data.get("usedServices"))
    rebuilt = planning.rebuild_used_services()
    if declared != rebuilt:
        logger.info("snapshot.used_services_rebuilt", declared=len(declared), rebuilt=len(rebuilt))
    return planning


def import_snapshot(conversation: Conversation, snapshot) -> bool:
    """Load ``snapshot`` into ``conversation`` in place. Returns False if it was unusable."""
    if not isinstance(snapshot, dict):
        logger.warning("snapshot.ignored", reason="not an object")
        return False
    snapshot = copy.deepcopy(snapshot)

    try:
        conversation.phase = Phase(snapshot.get("phase", conversation.phase))
    except ValueError:
        logger.warning("snapshot.unknown_phase", phase=snapshot.get("phase"))

    facts = snapshot.get("facts")
    if isinstance(facts, dict):
        for key, priority in FACT_PRIORITIES.items():
            if isinstance(facts.get(key), dict):
                conversation.facts[key] = Fact.from_dict(facts[key], priority)

    if isinstance(snapshot.get("availableServices"), list):
        conversation.available_services = parse_items(snapshot["availableServices"])

    planning_data = snapshot.get("dayByDayPlanning")
    if isinstance(planning_data, dict):
        conversation.day_by_day = _import_planning(planning_data, snapshot.get("selectedServices"))

    guided_first = snapshot.get("guidedFirstDay")
    if isinstance(guided_first, dict) and 0 not in conversation.day_by_day.guided:
        conversation.day_by_day.guided[0] = GuidedState.from_dict(guided_first)

    try:
        conversation.awaiting = Awaiting(snapshot.get("awaiting") or Awaiting.NONE)
    except ValueError:
        conversation.awaiting = Awaiting.NONE

    standby = snapshot.get("standby")
    if isinstance(standby, dict):
        conversation.standby = StandbyState(
            nudges_sent=coerce_int(standby.get("nudgesSent")),
            last_template=coerce_int(standby.get("lastTemplate"), None),
        )

    messages = snapshot.get("messages")
    if isinstance(messages, list):
        conversation.messages = [
            Message(role=m["role"], content=m["content"], timestamp=m.get("timestamp") or "")
            for m in messages
            if isinstance(m, dict) and "role" in m and "content" in m
        ]

    if snapshot.get("createdAt"):
        conversation.created_at = snapshot["createdAt"]
    return True
