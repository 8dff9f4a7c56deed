"""Selection collaborator: the LLM picks catalog items for one day.

The request is (catalog, flattened preferences, day descriptor, dedup
context) and the response is validated into ``SelectionResult``. Identity
and time slot are the only things taken from the response; pricing comes
from the catalog during enrichment.
"""

import json
from dataclasses import dataclass, field

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from conversation.models import DayByDayPlanning, DayPlan, ServiceSelection, TimeSlot
from llm.base import LLMError, ToolDefinition
from llm.structured import call_tool

from .catalog import CatalogItem

logger = structlog.get_logger()

FIRST_DAY_SLOTS = [TimeSlot.AFTERNOON, TimeSlot.EVENING, TimeSlot.NIGHT]
LAST_DAY_SLOTS = [TimeSlot.MORNING, TimeSlot.AFTERNOON]
MIDDLE_DAY_SLOTS = [TimeSlot.AFTERNOON, TimeSlot.EVENING, TimeSlot.NIGHT, TimeSlot.LATE_NIGHT]


class SelectionError(Exception):
    """Selection collaborator failed or returned an unusable plan."""


def time_slots_for_day(day_number: int, total_days: int) -> list[TimeSlot]:
    """Arrival day starts in the afternoon; departure day ends after lunch."""
    if day_number == 1:
        return list(FIRST_DAY_SLOTS)
    if day_number == total_days:
        return list(LAST_DAY_SLOTS)
    return list(MIDDLE_DAY_SLOTS)


@dataclass
class DayInfo:
    day_number: int
    total_days: int
    time_slots: list[TimeSlot]
    is_first_day: bool
    is_last_day: bool

    @classmethod
    def for_index(cls, index: int, total_days: int) -> "DayInfo":
        total_days = max(1, total_days)
        number = index + 1
        return cls(
            day_number=number,
            total_days=total_days,
            time_slots=time_slots_for_day(number, total_days),
            is_first_day=number == 1,
            is_last_day=number == total_days,
        )

    @property
    def index(self) -> int:
        return self.day_number - 1

    def to_dict(self) -> dict:
        return {
            "dayNumber": self.day_number,
            "totalDays": self.total_days,
            "timeSlots": [s.value for s in self.time_slots],
            "isFirstDay": self.is_first_day,
            "isLastDay": self.is_last_day,
        }


@dataclass
class DedupContext:
    """Services already booked on other days, to keep out of this one."""

    used_services: list[dict] = field(default_factory=list)  # {id, name, category}
    allow_repeats: bool = False
    user_explicit_request: str | None = None

    @property
    def used_ids(self) -> set[str]:
        return {str(s["id"]) for s in self.used_services if s.get("id")}

    @classmethod
    def from_planning(
        cls,
        planning: DayByDayPlanning,
        catalog: list[CatalogItem],
        exclude_day: int | None = None,
        allow_repeats: bool = False,
        user_explicit_request: str | None = None,
    ) -> "DedupContext":
        """Build from completed days, optionally ignoring the day being rewritten."""
        by_id = {item.id: item for item in catalog}
        used = []
        seen = set()
        for index, day in enumerate(planning.completed_days):
            if day is None or index == exclude_day:
                continue
            for selection in day.selected_services:
                if not selection.service_id or selection.service_id in seen:
                    continue
                seen.add(selection.service_id)
                item = by_id.get(selection.service_id)
                used.append(
                    {
                        "id": selection.service_id,
                        "name": item.display_name if item else selection.service_name,
                        "category": item.category if item else selection.category,
                    }
                )
        return cls(
            used_services=used,
            allow_repeats=allow_repeats,
            user_explicit_request=user_explicit_request,
        )

    def instructions(self) -> str:
        if not self.used_services:
            return "No services have been booked on other days yet."
        lines = [f"- {s['name']} (id {s['id']}, {s.get('category') or 'uncategorized'})" for s in self.used_services]
        if self.allow_repeats:
            header = "Already booked on other days (repeats are allowed, prefer variety):"
        else:
            header = "Already booked on other days. Do NOT select these again:"
        text = header + "\n" + "\n".join(lines)
        if self.user_explicit_request:
            text += f"\nThe user explicitly asked for: {self.user_explicit_request}"
        return text


class SelectedService(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    service_id: str
    service_name: str = ""
    time_slot: str = ""
    reason: str = ""
    estimated_duration: str = ""
    group_suitability: str = ""

    @field_validator("service_id", mode="before")
    @classmethod
    def _stringify(cls, v):
        return str(v) if v is not None else v


class SelectionResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    selected_services: list[SelectedService]
    alternative_options: list[dict] = Field(default_factory=list)
    day_theme: str = ""
    logistics_notes: str = ""

    def to_day_plan(self, day: DayInfo) -> DayPlan:
        """Convert, clamping unknown or off-day time slots to the day's last slot."""
        selections = []
        for entry in self.selected_services:
            slot = TimeSlot.coerce(entry.time_slot)
            if slot not in day.time_slots:
                slot = day.time_slots[-1]
            selections.append(
                ServiceSelection(
                    service_id=entry.service_id,
                    service_name=entry.service_name,
                    time_slot=slot,
                    reason=entry.reason,
                    estimated_duration=entry.estimated_duration,
                    group_suitability=entry.group_suitability,
                )
            )
        return DayPlan(
            selected_services=selections,
            day_theme=self.day_theme,
            logistics_notes=self.logistics_notes,
            alternative_options=self.alternative_options,
            day_number=day.day_number,
        )


_SELECTION_SCHEMA = {
    "type": "object",
    "properties": {
        "selectedServices": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "serviceId": {"type": "string"},
                    "serviceName": {"type": "string"},
                    "timeSlot": {"type": "string", "enum": [s.value for s in TimeSlot]},
                    "reason": {"type": "string"},
                    "estimatedDuration": {"type": "string"},
                    "groupSuitability": {"type": "string"},
                },
                "required": ["serviceId", "serviceName", "timeSlot", "reason"],
            },
        },
        "alternativeOptions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "serviceId": {"type": "string"},
                    "serviceName": {"type": "string"},
                    "reason": {"type": "string"},
                },
            },
        },
        "dayTheme": {"type": "string"},
        "logisticsNotes": {"type": "string"},
    },
    "required": ["selectedServices", "alternativeOptions", "dayTheme", "logisticsNotes"],
}

SELECT_TOOL = ToolDefinition(
    name="select_services",
    description="Return the services chosen for this day of the itinerary.",
    input_schema=_SELECTION_SCHEMA,
)

_SELECT_SYSTEM = """You plan one day of a group trip from a fixed catalog of bookable services.

Rules:
- Only use serviceId values that appear in the catalog below.
- Use only the time slots listed for this day.
- One main activity per slot; keep the pace realistic for the group size.
- Respect the deduplication list.
- Call select_services exactly once."""

_SELECT_PROMPT = """Day: {day}

Preferences:
{prefs}

{dedup}

Catalog (id | name | category | USD | hours):
{catalog}"""

_REWRITE_PROMPT = """Rewrite this day of the itinerary, applying the requested changes and keeping everything else.

Day: {day}

Current plan:
{current}

Requested changes (structured):
{directive}

Original request: {request}

Preferences:
{prefs}

{dedup}

Catalog (id | name | category | USD | hours):
{catalog}"""


def _catalog_lines(catalog: list[CatalogItem], exclude_ids: set[str], limit: int) -> str:
    lines = []
    for item in catalog:
        if item.id in exclude_ids:
            continue
        price = f"{item.price_usd:g}" if item.price_usd is not None else "-"
        hours = f"{item.duration_hours:g}" if item.duration_hours else "-"
        lines.append(f"{item.id} | {item.display_name} | {item.category} | {price} | {hours}")
        if len(lines) >= limit:
            break
    return "\n".join(lines) or "(empty)"


class ServiceSelector:
    """Asks the LLM to pick (or rewrite) a day's services."""

    def __init__(self, provider=None, max_tokens: int = 3000, max_catalog_items: int = 80):
        self._provider = provider
        self.max_tokens = max_tokens
        self.max_catalog_items = max_catalog_items

    def _get_provider(self):
        if self._provider:
            return self._provider
        from llm.factory import create_llm_provider

        self._provider = create_llm_provider()
        return self._provider

    async def _call(self, prompt: str, day: DayInfo) -> SelectionResult:
        try:
            raw = await call_tool(
                self._get_provider(),
                SELECT_TOOL,
                prompt,
                system=_SELECT_SYSTEM,
                max_tokens=self.max_tokens,
            )
            result = SelectionResult.model_validate(raw)
        except (LLMError, ValidationError) as e:
            raise SelectionError(f"Selection for day {day.day_number} failed: {e}") from e
        if not result.selected_services:
            raise SelectionError(f"Selection for day {day.day_number} was empty")
        return result

    async def select_day(
        self,
        catalog: list[CatalogItem],
        prefs: dict,
        day: DayInfo,
        dedup: DedupContext,
    ) -> SelectionResult:
        exclude = set() if dedup.allow_repeats else dedup.used_ids
        prompt = _SELECT_PROMPT.format(
            day=json.dumps(day.to_dict()),
            prefs=json.dumps(prefs, default=str, indent=2),
            dedup=dedup.instructions(),
            catalog=_catalog_lines(catalog, exclude, self.max_catalog_items),
        )
        return await self._call(prompt, day)

    async def rewrite_day(
        self,
        catalog: list[CatalogItem],
        prefs: dict,
        day: DayInfo,
        dedup: DedupContext,
        current_plan: DayPlan,
        directive: dict,
        request: str = "",
    ) -> SelectionResult:
        exclude = set() if dedup.allow_repeats else dedup.used_ids
        prompt = _REWRITE_PROMPT.format(
            day=json.dumps(day.to_dict()),
            current=json.dumps(current_plan.to_dict(), indent=2),
            directive=json.dumps(directive, indent=2),
            request=request,
            prefs=json.dumps(prefs, default=str, indent=2),
            dedup=dedup.instructions(),
            catalog=_catalog_lines(catalog, exclude - current_plan.service_ids(), self.max_catalog_items),
        )
        return await self._call(prompt, day)
