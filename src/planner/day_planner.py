"""Day Planner: selection with cross-day dedup, catalog enrichment, local fallback."""

import re

import structlog

from conversation.models import DayPlan, ServiceSelection, TimeSlot
from observability import record_fallback

from .catalog import CatalogItem, category_matches, rank_items
from .selector import DayInfo, DedupContext, SelectionError, ServiceSelector

logger = structlog.get_logger()


def enrich_plan(plan: DayPlan, catalog: list[CatalogItem], drop_unknown: bool = False) -> DayPlan:
    """Copy price, duration, image and category from the catalog onto each selection.

    Selections whose id is not in the catalog keep their stored snapshot,
    or are dropped when ``drop_unknown`` is set (fresh model output).
    """
    by_id = {item.id: item for item in catalog}
    kept = []
    for selection in plan.selected_services:
        item = by_id.get(selection.service_id) if selection.service_id else None
        if item is not None:
            selection.apply_catalog(item)
            if not selection.service_name:
                selection.service_name = item.display_name
        elif drop_unknown:
            logger.warning(
                "planner.unknown_service_dropped",
                service_id=selection.service_id,
                service_name=selection.service_name,
            )
            continue
        kept.append(selection)
    plan.selected_services = kept
    return plan


def preference_keywords(prefs: dict) -> list[str]:
    words = []
    for interest in prefs.get("interestedActivities") or []:
        words.extend(w for w in re.split(r"[^a-zA-Z0-9]+", str(interest).lower()) if len(w) >= 3)
    return words


def wants_strip_club(prefs: dict) -> bool:
    text = " ".join(str(i) for i in prefs.get("interestedActivities") or []).lower()
    return "strip" in text or "gentlemen" in text


_SLOT_ORDER = {slot: i for i, slot in enumerate(TimeSlot)}


def _pick_slot(preferred: TimeSlot, day: DayInfo, taken: set[TimeSlot]) -> TimeSlot:
    """Preferred slot if free, else the nearest free slot of the day (earlier wins ties)."""
    free = [slot for slot in day.time_slots if slot not in taken]
    if not free:
        return day.time_slots[-1]
    return min(free, key=lambda s: (abs(_SLOT_ORDER[s] - _SLOT_ORDER[preferred]), _SLOT_ORDER[s]))


def _best_in_category(
    catalog: list[CatalogItem],
    category: str,
    keywords: list[str],
    exclude_ids: set[str],
) -> CatalogItem | None:
    pool = [item for item in catalog if category_matches(item.category, category)]
    ranked = rank_items(pool, keywords, category, exclude_ids)
    return ranked[0][1] if ranked else None


def fallback_selection(
    catalog: list[CatalogItem],
    prefs: dict,
    day: DayInfo,
    dedup: DedupContext,
) -> DayPlan:
    """Deterministic plan: one restaurant, the requested nightlife, one daytime activity.

    Each bucket takes its best unused item by keyword relevance then price.
    Nightlife is skipped on a departure day that has no evening slots.
    """
    exclude = set() if dedup.allow_repeats else set(dedup.used_ids)
    keywords = preference_keywords(prefs)
    has_night = any(s in day.time_slots for s in (TimeSlot.NIGHT, TimeSlot.LATE_NIGHT))

    buckets: list[tuple[list[str], TimeSlot, str]] = [
        (["restaurant"], TimeSlot.EVENING, "Group dinner"),
    ]
    if has_night:
        if wants_strip_club(prefs):
            buckets.append((["strip_club"], TimeSlot.NIGHT, "Requested nightlife"))
        buckets.append((["night_club", "bar"], TimeSlot.LATE_NIGHT, "Keep the night going"))
    buckets.append((["daytime"], TimeSlot.AFTERNOON, "Daytime activity"))

    taken: set[TimeSlot] = set()
    selections = []
    for categories, preferred_slot, reason in buckets:
        item = None
        for category in categories:
            item = _best_in_category(catalog, category, keywords, exclude)
            if item:
                break
        if item is None:
            continue
        slot = _pick_slot(preferred_slot, day, taken)
        taken.add(slot)
        exclude.add(item.id)
        selections.append(ServiceSelection.from_catalog(item, slot, reason=reason))

    selections.sort(key=lambda s: _SLOT_ORDER[s.time_slot])
    logger.info("planner.fallback_selection", day=day.day_number, services=len(selections))
    return DayPlan(
        selected_services=selections,
        day_theme=f"Day {day.day_number} essentials",
        logistics_notes="Picked from the top-rated options; ask me to swap anything.",
        day_number=day.day_number,
    )


class DayPlanner:
    """Plans one day through the selection collaborator, with a local fallback."""

    def __init__(self, selector: ServiceSelector | None = None):
        self.selector = selector

    async def plan_day(
        self,
        catalog: list[CatalogItem],
        prefs: dict,
        day: DayInfo,
        dedup: DedupContext,
        use_llm: bool = True,
    ) -> DayPlan:
        plan = None
        if use_llm and self.selector is not None and catalog:
            try:
                result = await self.selector.select_day(catalog, prefs, day, dedup)
                plan = enrich_plan(result.to_day_plan(day), catalog, drop_unknown=True)
                plan = drop_used(plan, dedup)
                if not plan.selected_services:
                    raise SelectionError("No usable selections after enrichment")
            except SelectionError as e:
                record_fallback("selector", day=day.day_number, error=str(e))
                plan = None

        if plan is None:
            plan = fallback_selection(catalog, prefs, day, dedup)
        plan.day_number = day.day_number
        return plan


def drop_used(plan: DayPlan, dedup: DedupContext) -> DayPlan:
    """Remove selections already booked on another day, unless repeats are allowed."""
    if dedup.allow_repeats:
        return plan
    used = dedup.used_ids
    kept = [s for s in plan.selected_services if s.service_id not in used]
    if len(kept) != len(plan.selected_services):
        logger.info(
            "planner.duplicates_dropped",
            dropped=len(plan.selected_services) - len(kept),
            day=plan.day_number,
        )
    plan.selected_services = kept
    return plan
