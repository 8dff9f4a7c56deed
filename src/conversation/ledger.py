"""Fact Ledger: the merge rule and read-side queries over trip facts."""

import math
import re

import structlog

from .dates import calculate_duration
from .models import (
    ESSENTIAL_FACTS,
    HELPFUL_FACTS,
    Fact,
    FactPriority,
    FactStatus,
    default_ledger,
)

logger = structlog.get_logger()

__all__ = [
    "default_ledger",
    "merge_fact_updates",
    "accepts_update",
    "set_fact",
    "essentials_confirmed",
    "helpfuls_addressed",
    "missing_essentials",
    "flatten_preferences",
    "serialize_for_prompt",
]

CONFIRMED_STATUSES = (FactStatus.SET, FactStatus.CORRECTED)


def accepts_update(current: Fact, new_status: FactStatus) -> bool:
    """Status may only move to an equal-or-higher rank.

    OPTIONAL facts may additionally go UNKNOWN -> SET in one step.
    """
    if new_status.rank >= current.status.rank:
        return True
    return (
        current.priority == FactPriority.OPTIONAL
        and current.status == FactStatus.UNKNOWN
        and new_status == FactStatus.SET
    )


def _finite_int(value) -> int:
    if isinstance(value, bool):
        raise ValueError(f"not a number: {value!r}")
    number = float(str(value).strip())
    if not math.isfinite(number):
        raise ValueError(f"not a finite number: {value!r}")
    return int(number)


def _coerce_value(key: str, value):
    """Normalize a fact value. Raises ValueError for a non-finite or non-numeric count."""
    if value is None:
        return None
    if key == "groupSize":
        return _finite_int(value)
    if key == "wildnessLevel":
        return max(1, min(5, _finite_int(value)))
    if key == "interestedActivities":
        if isinstance(value, str):
            return [part.strip() for part in re.split(r"[,;/]| and ", value) if part.strip()]
        if isinstance(value, (list, tuple)):
            return [str(v) for v in value if v not in (None, "")]
    return value


def _confidence(raw) -> float | None:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value):
        return None
    return max(0.0, min(1.0, value))


def merge_fact_updates(facts: dict[str, Fact], updates) -> list[str]:
    """Apply partial fact updates under the merge rule.

    Every update is validated before any fact is touched, so an update with
    a bad value is dropped on its own and never leaves the ledger
    half-applied.

    Args:
        facts: Ledger to mutate in place
        updates: ``{key: {value, status, confidence, provenance}}``; unknown
            keys and non-dict entries are ignored

    Returns:
        Keys that changed
    """
    if not isinstance(updates, dict):
        return []

    pending = []
    for key, update in updates.items():
        current = facts.get(key)
        if current is None or not isinstance(update, dict):
            continue
        new_status = FactStatus.coerce(update.get("status"), current.status)
        if not accepts_update(current, new_status):
            logger.debug(
                "ledger.update_rejected",
                key=key,
                current=current.status.value,
                proposed=new_status.value,
            )
            continue
        has_value = "value" in update
        try:
            value = _coerce_value(key, update["value"]) if has_value else None
        except ValueError as e:
            logger.warning("ledger.invalid_value", key=key, error=str(e))
            continue
        pending.append((key, current, new_status, has_value, value, update))

    changed = []
    for key, current, new_status, has_value, value, update in pending:
        if has_value:
            current.value = value
        current.status = new_status
        confidence = _confidence(update.get("confidence"))
        if confidence is not None:
            current.confidence = confidence
        if update.get("provenance"):
            current.provenance = str(update["provenance"])
        changed.append(key)

    if changed:
        logger.info("ledger.merged", keys=changed)
    return changed


def set_fact(facts: dict[str, Fact], key: str, value, provenance: str = "dev") -> bool:
    """Deterministic write at SET status (dev commands, numeric capture, guided flows).

    Returns False when the merge rule or value validation refused the write.
    """
    return key in merge_fact_updates(
        facts,
        {key: {"value": value, "status": FactStatus.SET, "confidence": 0.99, "provenance": provenance}},
    )


def _is_confirmed(key: str, fact: Fact, supported_city: str | None) -> bool:
    if fact.value in (None, "", []):
        return False
    if fact.status in CONFIRMED_STATUSES:
        return True
    return (
        key == "destination"
        and fact.status == FactStatus.ASSUMED
        and supported_city is not None
        and str(fact.value).strip().lower() == supported_city.strip().lower()
    )


def missing_essentials(facts: dict[str, Fact], supported_city: str | None = None) -> list[str]:
    return [key for key in ESSENTIAL_FACTS if not _is_confirmed(key, facts[key], supported_city)]


def essentials_confirmed(facts: dict[str, Fact], supported_city: str | None = None) -> bool:
    return not missing_essentials(facts, supported_city)


def helpfuls_addressed(facts: dict[str, Fact]) -> bool:
    return all(facts[key].status != FactStatus.UNKNOWN for key in HELPFUL_FACTS)


def flatten_preferences(facts: dict[str, Fact]) -> dict:
    """Plain preference dict consumed by the planner and prompts."""
    value = {key: fact.value for key, fact in facts.items()}
    interests = value.get("interestedActivities") or []
    return {
        "destination": value.get("destination"),
        "groupSize": value.get("groupSize"),
        "startDate": value.get("startDate"),
        "endDate": value.get("endDate"),
        "duration": calculate_duration(value.get("startDate"), value.get("endDate")),
        "wildnessLevel": value.get("wildnessLevel") or 3,
        "budget": value.get("budget"),
        "interestedActivities": list(interests),
        "specialRequests": ", ".join(str(i) for i in interests),
        "relationship": value.get("relationship"),
        "ageRange": value.get("ageRange"),
    }


def serialize_for_prompt(facts: dict[str, Fact]) -> str:
    lines = []
    for key, fact in facts.items():
        shown = "?" if fact.value in (None, "", []) else fact.value
        lines.append(f"- {key}: {shown} ({fact.status.value}, {fact.priority.value})")
    return "\n".join(lines)
