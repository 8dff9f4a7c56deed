"""Edit-Directive Engine.

Stage 1 turns a free-form change request into an ``EditDirective`` (LLM
``propose_plan_edits`` call, else a catalog-substring heuristic). Stage 2
asks the selector to rewrite the day under that directive and, if the
rewrite fails, applies the directive with the local interpreter below.
"""

import json
import math
from dataclasses import dataclass
from typing import Annotated, Literal, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from conversation.models import DayPlan, ServiceSelection, TimeSlot
from llm.base import LLMError, ToolDefinition
from llm.structured import call_tool
from observability import record_fallback

from .catalog import (
    CATEGORY_ALIASES,
    CatalogItem,
    best_match,
    category_matches,
    find_by_id,
    find_by_name,
    normalize,
)
from .day_planner import drop_used, enrich_plan
from .selector import DayInfo, DedupContext, SelectionError, ServiceSelector

logger = structlog.get_logger()

NIGHTLIFE_HINTS = ("club", "bar", "strip", "gentlemen", "lounge", "night", "late")


def _coerce_slot(v):
    if v in (None, ""):
        return None
    return TimeSlot.coerce(v)


class _OperationBase(BaseModel):
    model_config = ConfigDict(extra="ignore")

    target_service_id: str | None = None
    target_name: str | None = None
    target_category: str | None = None
    target_time: TimeSlot | None = None
    keywords: list[str] = Field(default_factory=list)
    category_hint: str | None = None
    new_time: TimeSlot | None = None
    new_service_name: str | None = None
    new_service_id: str | None = None
    notes: str | None = None

    @field_validator("target_time", "new_time", mode="before")
    @classmethod
    def _slot(cls, v):
        return _coerce_slot(v)

    @field_validator("target_service_id", "new_service_id", mode="before")
    @classmethod
    def _id(cls, v):
        return str(v) if v not in (None, "") else None

    @field_validator("keywords", mode="before")
    @classmethod
    def _keywords(cls, v):
        if isinstance(v, str):
            return [v]
        return [str(k) for k in v or [] if k]

    def has_targets(self) -> bool:
        return any((self.target_service_id, self.target_name, self.target_category, self.target_time))

    def search_terms(self) -> list[str]:
        terms = list(self.keywords)
        if self.new_service_name:
            terms.append(self.new_service_name)
        return terms


class AddActivity(_OperationBase):
    op: Literal["add_activity"] = "add_activity"


class ReplaceActivity(_OperationBase):
    op: Literal["replace_activity"] = "replace_activity"


class RemoveActivity(_OperationBase):
    op: Literal["remove_activity"] = "remove_activity"


class SubstituteService(_OperationBase):
    op: Literal["substitute_service"] = "substitute_service"


class Reorder(_OperationBase):
    op: Literal["reorder"] = "reorder"
    sequence: list[TimeSlot] = Field(default_factory=list)

    @field_validator("sequence", mode="before")
    @classmethod
    def _sequence(cls, v):
        slots = [_coerce_slot(s) for s in v or []]
        return [s for s in slots if s is not None]


class AdjustTime(_OperationBase):
    op: Literal["adjust_time"] = "adjust_time"


class SetConstraint(_OperationBase):
    op: Literal["set_constraint"] = "set_constraint"
    constraints: dict = Field(default_factory=dict)


Operation = Annotated[
    Union[
        AddActivity,
        ReplaceActivity,
        RemoveActivity,
        SubstituteService,
        Reorder,
        AdjustTime,
        SetConstraint,
    ],
    Field(discriminator="op"),
]

OPERATION_KINDS = [
    "add_activity",
    "replace_activity",
    "remove_activity",
    "substitute_service",
    "reorder",
    "adjust_time",
    "set_constraint",
]

_operation_adapter = TypeAdapter(Operation)


class EditDirective(BaseModel):
    ops: list[Operation] = Field(default_factory=list)
    confidence: float = 0.0

    def to_dict(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)


def parse_directive(raw) -> EditDirective:
    """Validate model output op by op; malformed ops are skipped, not fatal."""
    if not isinstance(raw, dict):
        return EditDirective()
    entries = raw.get("ops")
    if not isinstance(entries, list):
        if entries is not None:
            logger.warning("edits.ops_not_a_list", ops_type=type(entries).__name__)
        entries = []
    ops = []
    for entry in entries:
        if not isinstance(entry, dict):
            logger.warning("edits.op_skipped", op=entry, error="not an object")
            continue
        try:
            ops.append(_operation_adapter.validate_python(entry))
        except ValidationError as e:
            logger.warning("edits.op_skipped", op=entry, error=str(e).splitlines()[0])
    try:
        confidence = float(raw.get("confidence") or 0.0)
    except (TypeError, ValueError):
        confidence = 0.0
    if not math.isfinite(confidence):
        confidence = 0.0
    return EditDirective(ops=ops, confidence=max(0.0, min(1.0, confidence)))


# -- Local interpreter ------------------------------------------------------


def _has_nightlife_hint(text: str) -> bool:
    words = normalize(text)
    return any(hint in words for hint in NIGHTLIFE_HINTS)


def pick_time_slot(op: _OperationBase, day: DayInfo) -> TimeSlot:
    """Explicit slot if the day has it; night for nightlife requests; else the day's last slot."""
    for forced in (op.new_time, op.target_time):
        if forced is not None and forced in day.time_slots:
            return forced
    hint_text = " ".join([*op.keywords, op.category_hint or "", op.new_service_name or ""])
    if _has_nightlife_hint(hint_text) and TimeSlot.NIGHT in day.time_slots:
        return TimeSlot.NIGHT
    return day.time_slots[-1]


def resolve_incoming(
    op: _OperationBase,
    catalog: list[CatalogItem],
    exclude_ids: set[str] | frozenset = frozenset(),
) -> CatalogItem | None:
    """Catalog item an op brings in: by id, then exact name, then keyword+category score.

    Explicit ids and names bypass ``exclude_ids``; scored matches respect it.
    """
    item = find_by_id(catalog, op.new_service_id)
    if item:
        return item
    item = find_by_name(catalog, op.new_service_name)
    if item:
        return item
    terms = op.search_terms()
    if not terms and not op.category_hint:
        return None
    return best_match(catalog, terms, op.category_hint, exclude_ids=exclude_ids)


def _name_matches(selection: ServiceSelection, needle: str | None) -> bool:
    target = normalize(needle)
    return bool(target) and target in normalize(selection.service_name)


def _category_target_matches(selection: ServiceSelection, hint: str | None) -> bool:
    if not hint:
        return False
    if category_matches(selection.category, hint):
        return True
    return _name_matches(selection, hint)


def _is_nightlife(selection: ServiceSelection) -> bool:
    return selection.time_slot in (TimeSlot.NIGHT, TimeSlot.LATE_NIGHT) or _has_nightlife_hint(
        f"{selection.service_name} {selection.category or ''}"
    )


def matches_all_targets(selection: ServiceSelection, op: _OperationBase) -> bool:
    """Every provided targeting field must match; an op with no targets matches nothing."""
    checks = []
    if op.target_service_id:
        checks.append(selection.service_id == op.target_service_id)
    if op.target_name:
        checks.append(_name_matches(selection, op.target_name))
    if op.target_category:
        checks.append(_category_target_matches(selection, op.target_category))
    if op.target_time:
        checks.append(selection.time_slot == op.target_time)
    return bool(checks) and all(checks)


def locate_entry(entries: list[ServiceSelection], op: _OperationBase, nightlife_fallback: bool) -> int | None:
    """Index of the entry an op refers to: id, name, category, time slot, then last nightlife entry."""
    if op.target_service_id:
        for i, s in enumerate(entries):
            if s.service_id == op.target_service_id:
                return i
    if op.target_name:
        for i, s in enumerate(entries):
            if _name_matches(s, op.target_name):
                return i
    if op.target_category:
        for i, s in enumerate(entries):
            if _category_target_matches(s, op.target_category):
                return i
    if op.target_time:
        for i, s in enumerate(entries):
            if s.time_slot == op.target_time:
                return i
    if nightlife_fallback:
        for i in range(len(entries) - 1, -1, -1):
            if _is_nightlife(entries[i]):
                return i
    return None


def _locate_item_level(entries: list[ServiceSelection], op: _OperationBase) -> int | None:
    """Like ``locate_entry`` but without the time-slot or nightlife fallbacks."""
    stripped = op.model_copy(update={"target_time": None})
    return locate_entry(entries, stripped, nightlife_fallback=False)


def push_selection(entries: list[ServiceSelection], selection: ServiceSelection, index: int | None = None) -> bool:
    """Insert unless the same catalog id already sits in the same slot."""
    if selection.service_id and any(
        s.service_id == selection.service_id and s.time_slot == selection.time_slot for s in entries
    ):
        return False
    if index is None or index >= len(entries):
        entries.append(selection)
    else:
        entries.insert(index, selection)
    return True


def _dedupe(entries: list[ServiceSelection]) -> list[ServiceSelection]:
    seen = set()
    result = []
    for s in entries:
        key = (s.service_id, s.time_slot)
        if s.service_id and key in seen:
            continue
        seen.add(key)
        result.append(s)
    return result


def _apply_op(
    plan: DayPlan,
    op,
    catalog: list[CatalogItem],
    day: DayInfo,
    exclude_ids: set[str],
) -> None:
    entries = plan.selected_services

    if isinstance(op, RemoveActivity):
        before = len(entries)
        plan.selected_services = [s for s in entries if not matches_all_targets(s, op)]
        logger.debug("edits.remove", removed=before - len(plan.selected_services))

    elif isinstance(op, AddActivity):
        item = resolve_incoming(op, catalog, exclude_ids)
        if item is None:
            logger.info("edits.add_unresolved", keywords=op.keywords, hint=op.category_hint)
            return
        push_selection(entries, ServiceSelection.from_catalog(item, pick_time_slot(op, day), reason=op.notes or "Added on request"))

    elif isinstance(op, SubstituteService):
        item = resolve_incoming(op, catalog, exclude_ids)
        if item is None:
            logger.info("edits.substitute_unresolved", keywords=op.keywords)
            return
        idx = locate_entry(entries, op, nightlife_fallback=True)
        if idx is None:
            push_selection(entries, ServiceSelection.from_catalog(item, pick_time_slot(op, day), reason=op.notes or "Added on request"))
            return
        previous = entries.pop(idx)
        slot = op.new_time or previous.time_slot
        push_selection(entries, ServiceSelection.from_catalog(item, slot, reason=op.notes or f"Swapped for {previous.service_name}"), idx)

    elif isinstance(op, ReplaceActivity):
        item = resolve_incoming(op, catalog, exclude_ids)
        if item is None:
            logger.info("edits.replace_unresolved", keywords=op.keywords)
            return
        idx = _locate_item_level(entries, op)
        if idx is not None:
            previous = entries.pop(idx)
            slot = op.new_time or previous.time_slot
        elif op.target_time is not None:
            positions = [i for i, s in enumerate(entries) if s.time_slot == op.target_time]
            idx = positions[0] if positions else None
            plan.selected_services = entries = [s for s in entries if s.time_slot != op.target_time]
            slot = op.new_time or op.target_time
        else:
            slot = pick_time_slot(op, day)
        push_selection(entries, ServiceSelection.from_catalog(item, slot, reason=op.notes or "Replacement"), idx)

    elif isinstance(op, AdjustTime):
        if op.new_time is None:
            return
        idx = _locate_item_level(entries, op)
        if idx is not None:
            entries[idx].time_slot = op.new_time

    elif isinstance(op, Reorder):
        if not op.sequence:
            return
        position = {slot: i for i, slot in enumerate(op.sequence)}
        # sorted() is stable, so slots missing from the sequence keep their relative order
        plan.selected_services = sorted(entries, key=lambda s: position.get(s.time_slot, len(position)))

    elif isinstance(op, SetConstraint):
        if op.constraints or op.notes:
            detail = ", ".join(f"{k}={v}" for k, v in op.constraints.items()) or op.notes
            note = f"Constraint: {detail}"
            plan.logistics_notes = f"{plan.logistics_notes}\n{note}".strip()


def apply_directive(
    plan: DayPlan,
    directive: EditDirective,
    catalog: list[CatalogItem],
    day: DayInfo,
    exclude_ids: set[str] | frozenset = frozenset(),
) -> DayPlan:
    """Apply every op in order to a copy of ``plan``."""
    result = plan.copy()
    for op in directive.ops:
        _apply_op(result, op, catalog, day, set(exclude_ids))
        result.selected_services = _dedupe(result.selected_services)
    result.day_number = day.day_number
    return result


# -- Stage 1: interpretation ------------------------------------------------


def heuristic_directive(request: str, catalog: list[CatalogItem], day: DayInfo) -> EditDirective | None:
    """Single ``add_activity`` built from catalog names/categories found in the request."""
    text = f" {normalize(request)} "
    hits: list[str] = []
    named: CatalogItem | None = None
    category_hint = None

    for item in catalog:
        for candidate in (item.name, item.itinerary_name, item.category):
            phrase = normalize(candidate)
            if len(phrase) >= 4 and f" {phrase} " in text:
                if phrase not in hits:
                    hits.append(phrase)
                if candidate != item.category and named is None:
                    named = item
                elif candidate == item.category and category_hint is None:
                    category_hint = item.category

    for alias, category in CATEGORY_ALIASES.items():
        if len(alias) >= 4 and f" {alias} " in text:
            if alias not in hits:
                hits.append(alias)
            category_hint = category_hint or category

    if not hits:
        return None

    if _has_nightlife_hint(request) and TimeSlot.NIGHT in day.time_slots:
        slot = TimeSlot.NIGHT
    else:
        slot = day.time_slots[-1]

    op = AddActivity(
        keywords=hits[:3],
        category_hint=category_hint or (named.category if named else None),
        new_service_id=named.id if named else None,
        target_time=slot,
        notes="Added on request",
    )
    logger.info("edits.heuristic_directive", keywords=op.keywords, slot=slot.value)
    return EditDirective(ops=[op], confidence=0.55)


_OP_SCHEMA = {
    "type": "object",
    "properties": {
        "op": {"type": "string", "enum": OPERATION_KINDS},
        "target_service_id": {"type": "string"},
        "target_name": {"type": "string", "description": "Substring of the existing entry's name"},
        "target_category": {"type": "string"},
        "target_time": {"type": "string", "enum": [s.value for s in TimeSlot]},
        "keywords": {"type": "array", "items": {"type": "string"}},
        "category_hint": {"type": "string"},
        "new_time": {"type": "string", "enum": [s.value for s in TimeSlot]},
        "new_service_name": {"type": "string"},
        "new_service_id": {"type": "string"},
        "sequence": {"type": "array", "items": {"type": "string", "enum": [s.value for s in TimeSlot]}},
        "constraints": {"type": "object"},
        "notes": {"type": "string"},
    },
    "required": ["op"],
}

EDIT_TOOL = ToolDefinition(
    name="propose_plan_edits",
    description="Describe the requested itinerary change as an ordered list of typed operations.",
    input_schema={
        "type": "object",
        "properties": {
            "ops": {"type": "array", "items": _OP_SCHEMA},
            "confidence": {"type": "number", "minimum": 0, "maximum": 1},
        },
        "required": ["ops", "confidence"],
    },
)

_EDIT_SYSTEM = """You translate a user's change request for one itinerary day into structured operations.

Operations: add_activity, replace_activity, remove_activity, substitute_service, reorder, adjust_time, set_constraint.
Target existing entries by target_service_id, target_name (substring), target_category or target_time.
Describe incoming services with new_service_id when it is in the catalog, otherwise keywords and category_hint.
Only include fields you are sure about. Call propose_plan_edits exactly once."""

_EDIT_PROMPT = """Request: {request}

Day: {day}

Current plan:
{plan}

Catalog (id | name | category):
{catalog}"""


class EditInterpreter:
    """Stage 1: request text to ``EditDirective``."""

    def __init__(self, provider=None, max_tokens: int = 1500, max_catalog_items: int = 80):
        self._provider = provider
        self.max_tokens = max_tokens
        self.max_catalog_items = max_catalog_items

    def _get_provider(self):
        if self._provider:
            return self._provider
        from llm.factory import create_llm_provider

        self._provider = create_llm_provider()
        return self._provider

    async def interpret(
        self,
        request: str,
        plan: DayPlan,
        catalog: list[CatalogItem],
        day: DayInfo,
    ) -> EditDirective | None:
        catalog_text = "\n".join(
            f"{i.id} | {i.display_name} | {i.category}" for i in catalog[: self.max_catalog_items]
        )
        prompt = _EDIT_PROMPT.format(
            request=request,
            day=json.dumps(day.to_dict()),
            plan=json.dumps(plan.to_dict(), indent=2),
            catalog=catalog_text or "(empty)",
        )
        try:
            raw = await call_tool(
                self._get_provider(), EDIT_TOOL, prompt, system=_EDIT_SYSTEM, max_tokens=self.max_tokens
            )
            directive = parse_directive(raw)
            if directive.ops:
                return directive
            record_fallback("edit_interpreter", reason="no_ops")
        except (LLMError, ValidationError, TypeError, ValueError) as e:
            record_fallback("edit_interpreter", error=str(e))
        return heuristic_directive(request, catalog, day)


@dataclass
class EditOutcome:
    plan: DayPlan
    directive: EditDirective | None
    used_fallback: bool = False

    @property
    def applied(self) -> bool:
        return self.directive is not None


class EditEngine:
    """Interpret, then rewrite through the selector, else apply locally."""

    def __init__(self, interpreter: EditInterpreter, selector: ServiceSelector | None = None):
        self.interpreter = interpreter
        self.selector = selector

    async def edit_day(
        self,
        request: str,
        plan: DayPlan,
        catalog: list[CatalogItem],
        prefs: dict,
        day: DayInfo,
        dedup: DedupContext,
    ) -> EditOutcome:
        directive = await self.interpreter.interpret(request, plan, catalog, day)
        if directive is None:
            logger.info("edits.no_directive", day=day.day_number)
            return EditOutcome(plan=plan, directive=None)

        if self.selector is not None:
            try:
                result = await self.selector.rewrite_day(
                    catalog, prefs, day, dedup, plan, directive.to_dict(), request=request
                )
                rewritten = enrich_plan(result.to_day_plan(day), catalog, drop_unknown=True)
                rewritten = drop_used(rewritten, dedup)
                rewritten.selected_services = _dedupe(rewritten.selected_services)
                if not rewritten.selected_services:
                    raise SelectionError("Rewrite produced an empty day")
                if not rewritten.day_theme:
                    rewritten.day_theme = plan.day_theme
                return EditOutcome(plan=rewritten, directive=directive)
            except SelectionError as e:
                record_fallback("rewrite", day=day.day_number, error=str(e))

        exclude = set() if dedup.allow_repeats else dedup.used_ids
        applied = apply_directive(plan, directive, catalog, day, exclude_ids=exclude)
        return EditOutcome(plan=applied, directive=directive, used_fallback=True)
