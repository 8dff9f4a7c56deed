"""Data models for the conversation aggregate and its itinerary state.

Wire keys (``to_dict``/``from_dict``) are camelCase so a snapshot produced
here can be handed to a browser client and posted back unchanged.
"""

import copy
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from planner.catalog import CatalogItem


class FactStatus(StrEnum):
    UNKNOWN = "unknown"
    SUGGESTED = "suggested"
    ASSUMED = "assumed"
    SET = "set"
    CORRECTED = "corrected"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @classmethod
    def coerce(cls, value, default: "FactStatus | None" = None) -> "FactStatus | None":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return default


_STATUS_RANK = {
    FactStatus.UNKNOWN: 0,
    FactStatus.SUGGESTED: 1,
    FactStatus.ASSUMED: 2,
    FactStatus.SET: 3,
    FactStatus.CORRECTED: 4,
}


class FactPriority(StrEnum):
    ESSENTIAL = "essential"
    HELPFUL = "helpful"
    OPTIONAL = "optional"


class Phase(StrEnum):
    GATHERING = "gathering"
    GUIDED_FIRST_DAY = "guided_first_day"
    PLANNING = "planning"
    STANDBY = "standby"


class TimeSlot(StrEnum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    NIGHT = "night"
    LATE_NIGHT = "late_night"

    @classmethod
    def coerce(cls, value, default: "TimeSlot | None" = None) -> "TimeSlot | None":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower().replace(" ", "_").replace("-", "_"))
            except ValueError:
                pass
        return default


class IntentType(StrEnum):
    EDIT_ITINERARY = "edit_itinerary"
    GENERAL_QUESTION = "general_question"
    APPROVAL_NEXT = "approval_next"
    SHOW_DAY = "show_day"
    SUBSTITUTION = "substitution"
    ADDITION = "addition"
    REMOVAL = "removal"

    @property
    def is_edit(self) -> bool:
        return self in (
            IntentType.EDIT_ITINERARY,
            IntentType.SUBSTITUTION,
            IntentType.ADDITION,
            IntentType.REMOVAL,
        )


class Awaiting(StrEnum):
    NONE = "none"
    GROUP_SIZE = "group_size"


@dataclass
class Fact:
    value: Any = None
    status: FactStatus = FactStatus.UNKNOWN
    confidence: float = 0.0
    provenance: str | None = None
    priority: FactPriority = FactPriority.HELPFUL

    def to_dict(self) -> dict:
        return {
            "value": copy.deepcopy(self.value),
            "status": self.status.value,
            "confidence": self.confidence,
            "provenance": self.provenance,
            "priority": self.priority.value,
        }

    @classmethod
    def from_dict(cls, data: dict, priority: FactPriority) -> "Fact":
        return cls(
            value=copy.deepcopy(data.get("value")),
            status=FactStatus.coerce(data.get("status"), FactStatus.UNKNOWN),
            confidence=coerce_float(data.get("confidence")),
            provenance=data.get("provenance"),
            priority=priority,
        )


ESSENTIAL_FACTS = ("destination", "groupSize", "startDate", "endDate")
HELPFUL_FACTS = (
    "wildnessLevel",
    "relationship",
    "interestedActivities",
    "ageRange",
    "budget",
)
FACT_PRIORITIES: dict[str, FactPriority] = {
    **{key: FactPriority.ESSENTIAL for key in ESSENTIAL_FACTS},
    **{key: FactPriority.HELPFUL for key in HELPFUL_FACTS},
}


def default_ledger() -> dict[str, Fact]:
    """Fresh ledger with every known key UNKNOWN."""
    ledger = {}
    for key, priority in FACT_PRIORITIES.items():
        value = [] if key == "interestedActivities" else None
        ledger[key] = Fact(value=value, priority=priority)
    return ledger


def _pick(data: dict, *keys, default=None):
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def coerce_int(value, default: int | None = 0) -> int | None:
    """Int from a snapshot field, or ``default`` when it isn't a finite number."""
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default


def coerce_float(value, default: float = 0.0) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


@dataclass
class ServiceSelection:
    """One catalog item bound to a time slot, with a pricing snapshot."""

    service_id: str | None
    service_name: str
    time_slot: TimeSlot
    reason: str = ""
    estimated_duration: str = ""
    group_suitability: str = ""
    category: str | None = None
    price_cad: float | None = None
    price_usd: float | None = None
    duration_hours: float | None = None
    image_url: str | None = None

    def to_dict(self) -> dict:
        return {
            "serviceId": self.service_id,
            "serviceName": self.service_name,
            "timeSlot": self.time_slot.value,
            "reason": self.reason,
            "estimatedDuration": self.estimated_duration,
            "groupSuitability": self.group_suitability,
            "category": self.category,
            "priceCad": self.price_cad,
            "priceUsd": self.price_usd,
            "durationHours": self.duration_hours,
            "imageUrl": self.image_url,
        }

    @classmethod
    def from_dict(cls, data: dict, default_slot: TimeSlot = TimeSlot.EVENING) -> "ServiceSelection":
        service_id = _pick(data, "serviceId", "service_id", "id")
        return cls(
            service_id=str(service_id) if service_id is not None else None,
            service_name=str(_pick(data, "serviceName", "service_name", "name", default="")),
            time_slot=TimeSlot.coerce(_pick(data, "timeSlot", "time_slot"), default_slot),
            reason=str(_pick(data, "reason", default="")),
            estimated_duration=str(_pick(data, "estimatedDuration", "estimated_duration", default="")),
            group_suitability=str(_pick(data, "groupSuitability", "group_suitability", default="")),
            category=_pick(data, "category"),
            price_cad=_pick(data, "priceCad", "price_cad"),
            price_usd=_pick(data, "priceUsd", "price_usd"),
            duration_hours=_pick(data, "durationHours", "duration_hours"),
            image_url=_pick(data, "imageUrl", "image_url"),
        )

    @classmethod
    def from_catalog(
        cls, item: CatalogItem, time_slot: TimeSlot, reason: str = ""
    ) -> "ServiceSelection":
        selection = cls(service_id=item.id, service_name=item.display_name, time_slot=time_slot, reason=reason)
        selection.apply_catalog(item)
        return selection

    def apply_catalog(self, item: CatalogItem) -> None:
        """Copy pricing and duration from the catalog; identity fields stay."""
        self.category = item.category
        self.price_cad = item.price_cad
        self.price_usd = item.price_usd
        self.duration_hours = item.duration_hours
        self.image_url = item.image_url
        if item.duration_hours and not self.estimated_duration:
            self.estimated_duration = f"{item.duration_hours:g} hours"


@dataclass
class DayPlan:
    selected_services: list[ServiceSelection] = field(default_factory=list)
    day_theme: str = ""
    logistics_notes: str = ""
    alternative_options: list[dict] = field(default_factory=list)
    day_number: int | None = None

    def service_ids(self) -> set[str]:
        return {s.service_id for s in self.selected_services if s.service_id}

    def copy(self) -> "DayPlan":
        return copy.deepcopy(self)

    def to_dict(self) -> dict:
        return {
            "dayNumber": self.day_number,
            "selectedServices": [s.to_dict() for s in self.selected_services],
            "dayTheme": self.day_theme,
            "logisticsNotes": self.logistics_notes,
            "alternativeOptions": copy.deepcopy(self.alternative_options),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DayPlan":
        services = [
            ServiceSelection.from_dict(s)
            for s in data.get("selectedServices") or []
            if isinstance(s, dict)
        ]
        return cls(
            selected_services=services,
            day_theme=data.get("dayTheme") or "",
            logistics_notes=data.get("logisticsNotes") or "",
            alternative_options=list(data.get("alternativeOptions") or []),
            day_number=coerce_int(data.get("dayNumber"), None),
        )


@dataclass
class GuidedState:
    """Progress through one guided weekday flow for one day index."""

    flow: str
    step_index: int = 0
    choices: dict[str, dict] = field(default_factory=dict)
    is_complete: bool = False

    def to_dict(self) -> dict:
        return {
            "flow": self.flow,
            "stepIndex": self.step_index,
            "choices": copy.deepcopy(self.choices),
            "isComplete": self.is_complete,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GuidedState":
        return cls(
            flow=data.get("flow", ""),
            step_index=coerce_int(data.get("stepIndex")),
            choices=dict(data.get("choices") or {}),
            is_complete=bool(data.get("isComplete")),
        )


@dataclass
class DayByDayPlanning:
    current_day: int = 0
    total_days: int = 0
    completed_days: list[DayPlan | None] = field(default_factory=list)
    used_service_ids: set[str] = field(default_factory=set)
    current_day_plan: DayPlan | None = None
    guided: dict[int, GuidedState] = field(default_factory=dict)
    drafts: dict[int, DayPlan] = field(default_factory=dict)
    is_complete: bool = False

    def rebuild_used_services(self) -> set[str]:
        """Recompute used ids from every completed day."""
        used = set()
        for day in self.completed_days:
            if day is not None:
                used |= day.service_ids()
        self.used_service_ids = used
        return used

    def store_completed(self, index: int, plan: DayPlan) -> None:
        while len(self.completed_days) <= index:
            self.completed_days.append(None)
        plan.day_number = index + 1
        self.completed_days[index] = plan
        self.rebuild_used_services()

    def completed(self, index: int) -> DayPlan | None:
        if 0 <= index < len(self.completed_days):
            return self.completed_days[index]
        return None

    def plan_for(self, index: int) -> DayPlan | None:
        """The editable plan for a day: the working draft for the current day, else the stored one."""
        if index == self.current_day and self.current_day_plan is not None:
            return self.current_day_plan
        return self.completed(index)

    def to_dict(self) -> dict:
        return {
            "currentDay": self.current_day,
            "totalDays": self.total_days,
            "completedDays": [d.to_dict() if d else None for d in self.completed_days],
            "usedServices": sorted(self.used_service_ids),
            "currentDayPlan": self.current_day_plan.to_dict() if self.current_day_plan else None,
            "guided": {str(k): v.to_dict() for k, v in self.guided.items()},
            "drafts": {str(k): v.to_dict() for k, v in self.drafts.items()},
            "isComplete": self.is_complete,
        }


@dataclass
class StandbyState:
    nudges_sent: int = 0
    last_template: int | None = None

    def to_dict(self) -> dict:
        return {"nudgesSent": self.nudges_sent, "lastTemplate": self.last_template}


@dataclass
class Message:
    role: str
    content: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict:
        return {"role": self.role, "content": self.content, "timestamp": self.timestamp}


WELCOME_MESSAGE = (
    "Hey! I'm your trip concierge. Tell me where you're headed, how many people "
    "are coming, and your dates, and I'll build the plan day by day."
)


@dataclass
class Conversation:
    """Aggregate root: everything a turn can read or write."""

    id: str
    phase: Phase = Phase.GATHERING
    facts: dict[str, Fact] = field(default_factory=default_ledger)
    messages: list[Message] = field(default_factory=list)
    available_services: list[CatalogItem] = field(default_factory=list)
    day_by_day: DayByDayPlanning = field(default_factory=DayByDayPlanning)
    awaiting: Awaiting = Awaiting.NONE
    standby: StandbyState = field(default_factory=StandbyState)
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def add_message(self, role: str, content: str) -> None:
        self.messages.append(Message(role=role, content=content))

    def recent_messages(self, limit: int) -> list[Message]:
        return self.messages[-limit:] if limit > 0 else []

    def catalog_item(self, service_id: str | None) -> CatalogItem | None:
        if not service_id:
            return None
        for item in self.available_services:
            if item.id == service_id:
                return item
        return None


def new_conversation(conversation_id: str) -> Conversation:
    conversation = Conversation(id=conversation_id)
    conversation.add_message("assistant", WELCOME_MESSAGE)
    return conversation
