"""Guided Day Sub-Flows: fixed-choice questions for designated weekdays.

Each flow is an ordered list of steps. A step offers a fixed set of option
tokens built from catalog lookups, falling back to literal options when the
catalog has no match, and only accepts one of those tokens. The final step
produces a day plan straight from the recorded choices.
"""

from dataclasses import dataclass, field

import structlog

from conversation.models import DayPlan, GuidedState, ServiceSelection, TimeSlot

from .catalog import CatalogItem, category_matches, find_by_id, normalize, rank_items
from .selector import DayInfo

logger = structlog.get_logger()

SKIP_TOKEN = "skip"
_SKIP_WORDS = {"skip", "none", "pass", "no thanks", "nothing", "neither"}


@dataclass(frozen=True)
class OptionSpec:
    token: str
    title: str
    patterns: tuple[str, ...] = ()
    category: str | None = None
    fallback_label: str = ""


@dataclass(frozen=True)
class StepSpec:
    name: str
    prompt: str
    time_slot: TimeSlot
    options: tuple[OptionSpec, ...]


@dataclass(frozen=True)
class FlowSpec:
    name: str
    weekday: str
    theme: str
    steps: tuple[StepSpec, ...]

    def step(self, index: int) -> StepSpec | None:
        return self.steps[index] if 0 <= index < len(self.steps) else None


_SKIP_OPTION = OptionSpec(token=SKIP_TOKEN, title="Skip this one")

_NIGHT_STEP = StepSpec(
    name="night",
    prompt="How do you want to close out the night?",
    time_slot=TimeSlot.NIGHT,
    options=(
        OptionSpec("1", "Strip club", ("strip", "gentlemen"), "strip_club", "Gentlemen's club night"),
        OptionSpec("2", "Nightclub", ("club", "dance"), "night_club", "Nightclub with table service"),
        OptionSpec("3", "Bar crawl", ("bar", "crawl", "pub"), "bar", "Downtown bar crawl"),
        _SKIP_OPTION,
    ),
)

ARRIVAL_FRIDAY = FlowSpec(
    name="arrival_friday",
    weekday="friday",
    theme="Arrival night",
    steps=(
        StepSpec(
            name="pickup",
            prompt="Everyone's landing Friday. How should the crew get from the airport?",
            time_slot=TimeSlot.AFTERNOON,
            options=(
                OptionSpec("1", "Party bus pickup", ("party bus",), "transportation", "Party bus airport pickup"),
                OptionSpec("2", "Limo or Sprinter pickup", ("limo", "sprinter"), "transportation", "Sprinter van pickup"),
                _SKIP_OPTION,
            ),
        ),
        StepSpec(
            name="dinner",
            prompt="Friday dinner. What's the vibe?",
            time_slot=TimeSlot.EVENING,
            options=(
                OptionSpec("1", "Steakhouse", ("steak",), "restaurant", "Steakhouse dinner"),
                OptionSpec("2", "Hibachi", ("hibachi", "teppanyaki"), "restaurant", "Hibachi dinner"),
                OptionSpec("3", "BBQ", ("bbq", "barbecue", "smokehouse"), "restaurant", "Texas BBQ"),
                _SKIP_OPTION,
            ),
        ),
        _NIGHT_STEP,
    ),
)

BIG_SATURDAY = FlowSpec(
    name="big_saturday",
    weekday="saturday",
    theme="The big day",
    steps=(
        StepSpec(
            name="morning",
            prompt="Saturday is the big one. Pick the daytime activity:",
            time_slot=TimeSlot.AFTERNOON,
            options=(
                OptionSpec("1", "Lake day on a boat", ("boat", "lake", "yacht"), "daytime", "Lake boat rental"),
                OptionSpec("2", "Golf", ("golf outing", "golf course", "golf"), "daytime", "Tee time for the group"),
                OptionSpec("3", "Shooting range", ("shooting", "gun", "range", "hunting"), "daytime", "Shooting range session"),
                _SKIP_OPTION,
            ),
        ),
        StepSpec(
            name="dinner",
            prompt="Saturday dinner. Pick one:",
            time_slot=TimeSlot.EVENING,
            options=(
                OptionSpec("1", "Steakhouse", ("steak",), "restaurant", "Steakhouse dinner"),
                OptionSpec("2", "Brazilian steakhouse", ("brazil", "churrasc", "fogo"), "restaurant", "Brazilian steakhouse"),
                OptionSpec("3", "Hibachi", ("hibachi", "teppanyaki"), "restaurant", "Hibachi dinner"),
                _SKIP_OPTION,
            ),
        ),
        _NIGHT_STEP,
    ),
)

GUIDED_FLOWS: dict[str, FlowSpec] = {
    flow.weekday: flow for flow in (ARRIVAL_FRIDAY, BIG_SATURDAY)
}
_FLOWS_BY_NAME = {flow.name: flow for flow in GUIDED_FLOWS.values()}


def flow_for_weekday(weekday: str | None, enabled: list[str] | None = None) -> FlowSpec | None:
    if not weekday:
        return None
    weekday = weekday.lower()
    if enabled is not None and weekday not in {w.lower() for w in enabled}:
        return None
    return GUIDED_FLOWS.get(weekday)


def flow_by_name(name: str) -> FlowSpec | None:
    return _FLOWS_BY_NAME.get(name)


def start_flow(flow: FlowSpec) -> GuidedState:
    return GuidedState(flow=flow.name)


@dataclass
class GuidedOption:
    token: str
    title: str
    service_id: str | None = None
    service_name: str = ""
    price_usd: float | None = None

    def to_dict(self) -> dict:
        return {
            "token": self.token,
            "title": self.title,
            "serviceId": self.service_id,
            "serviceName": self.service_name,
            "priceUsd": self.price_usd,
        }


def match_option_item(
    spec: OptionSpec,
    catalog: list[CatalogItem],
    exclude_ids: set[str] | frozenset = frozenset(),
) -> CatalogItem | None:
    """Catalog item for an option: within its category, a name/description pattern must hit."""
    pool = [i for i in catalog if category_matches(i.category, spec.category)] if spec.category else catalog
    if not spec.patterns:
        ranked = rank_items(pool, [], None, exclude_ids)
        return ranked[0][1] if ranked else None
    ranked = rank_items(pool, list(spec.patterns), None, exclude_ids)
    if ranked and ranked[0][0] >= 0.5:
        return ranked[0][1]
    return None


def build_options(
    step: StepSpec,
    catalog: list[CatalogItem],
    exclude_ids: set[str] | frozenset = frozenset(),
) -> list[GuidedOption]:
    options = []
    for spec in step.options:
        if spec.token == SKIP_TOKEN:
            options.append(GuidedOption(token=spec.token, title=spec.title))
            continue
        item = match_option_item(spec, catalog, exclude_ids)
        if item is not None:
            options.append(
                GuidedOption(
                    token=spec.token,
                    title=spec.title,
                    service_id=item.id,
                    service_name=item.display_name,
                    price_usd=item.price_usd,
                )
            )
        else:
            options.append(
                GuidedOption(token=spec.token, title=spec.title, service_name=spec.fallback_label or spec.title)
            )
    return options


def match_token(user_input: str, options: list[GuidedOption]) -> GuidedOption | None:
    """Accept an option token, or an option's exact title or service name."""
    text = normalize(user_input)
    for prefix in ("option ", "choice ", "number ", "go with ", "let s do "):
        if text.startswith(prefix):
            text = text[len(prefix):].strip()
    if not text:
        return None
    for option in options:
        if text == option.token:
            return option
    for option in options:
        if text in (normalize(option.title), normalize(option.service_name)):
            return option
    if text in _SKIP_WORDS:
        return next((o for o in options if o.token == SKIP_TOKEN), None)
    return None


def render_step(step: StepSpec, options: list[GuidedOption], heading: str | None = None) -> str:
    lines = [heading] if heading else []
    lines.append(step.prompt)
    for option in options:
        if option.token == SKIP_TOKEN:
            lines.append(f"  {option.token}. {option.title}")
            continue
        label = option.title
        if option.service_name and normalize(option.service_name) != normalize(option.title):
            label += f" ({option.service_name})"
        if option.price_usd is not None:
            label += f" ~${option.price_usd:,.0f}"
        lines.append(f"  {option.token}. {label}")
    lines.append("Reply with the number of your pick.")
    return "\n".join(lines)


def interactive_payload(day_index: int, step: StepSpec, options: list[GuidedOption]) -> dict:
    return {
        "type": "guided_cards",
        "dayIndex": day_index,
        "step": step.name,
        "prompt": step.prompt,
        "options": [o.to_dict() for o in options],
    }


@dataclass
class GuidedTurn:
    reply: str
    state: GuidedState
    accepted: bool
    plan: DayPlan | None = None
    interactive: dict | None = None
    chosen: GuidedOption | None = field(default=None)


def prompt_current(
    state: GuidedState,
    catalog: list[CatalogItem],
    day_index: int,
    heading: str | None = None,
    exclude_ids: set[str] | frozenset = frozenset(),
) -> GuidedTurn:
    """Present the current step without consuming input."""
    flow = flow_by_name(state.flow)
    step = flow.step(state.step_index) if flow else None
    if step is None:
        return GuidedTurn(reply=heading or "", state=state, accepted=False)
    options = build_options(step, catalog, exclude_ids)
    return GuidedTurn(
        reply=render_step(step, options, heading),
        state=state,
        accepted=False,
        interactive=interactive_payload(day_index, step, options),
    )


def build_guided_plan(flow: FlowSpec, state: GuidedState, catalog: list[CatalogItem], day: DayInfo) -> DayPlan:
    """Deterministic plan from the recorded choices; skipped steps add nothing."""
    selections = []
    taken: set[TimeSlot] = set()
    for step in flow.steps:
        choice = state.choices.get(step.name)
        if not choice or choice.get("token") == SKIP_TOKEN:
            continue
        slot = step.time_slot
        if slot not in day.time_slots or slot in taken:
            slot = next((s for s in day.time_slots if s not in taken), day.time_slots[-1])
        taken.add(slot)
        item = find_by_id(catalog, choice.get("serviceId"))
        reason = f"Your {step.name} pick: {choice.get('title')}"
        if item is not None:
            selections.append(ServiceSelection.from_catalog(item, slot, reason=reason))
        else:
            selections.append(
                ServiceSelection(
                    service_id=choice.get("serviceId"),
                    service_name=choice.get("serviceName") or choice.get("title") or step.name,
                    time_slot=slot,
                    reason=reason,
                    price_usd=choice.get("priceUsd"),
                )
            )
    order = {slot: i for i, slot in enumerate(TimeSlot)}
    selections.sort(key=lambda s: order[s.time_slot])
    return DayPlan(
        selected_services=selections,
        day_theme=flow.theme,
        logistics_notes="Built from your picks.",
        day_number=day.day_number,
    )


def advance(
    state: GuidedState,
    user_input: str,
    catalog: list[CatalogItem],
    day: DayInfo,
    exclude_ids: set[str] | frozenset = frozenset(),
) -> GuidedTurn:
    """Consume one answer. Unknown input repeats the step and leaves state untouched."""
    flow = flow_by_name(state.flow)
    step = flow.step(state.step_index) if flow else None
    if flow is None or step is None:
        logger.warning("guided.invalid_state", flow=state.flow, step=state.step_index)
        state.is_complete = True
        return GuidedTurn(reply="", state=state, accepted=False)

    options = build_options(step, catalog, exclude_ids)
    chosen = match_token(user_input, options)
    if chosen is None:
        tokens = ", ".join(o.token for o in options)
        return GuidedTurn(
            reply=render_step(step, options, heading=f"Sorry, I need one of: {tokens}."),
            state=state,
            accepted=False,
            interactive=interactive_payload(day.index, step, options),
        )

    state.choices[step.name] = chosen.to_dict()
    state.step_index += 1
    logger.info("guided.step_accepted", flow=flow.name, step=step.name, token=chosen.token)

    next_step = flow.step(state.step_index)
    if next_step is None:
        state.is_complete = True
        plan = build_guided_plan(flow, state, catalog, day)
        return GuidedTurn(reply="", state=state, accepted=True, plan=plan, chosen=chosen)

    next_options = build_options(next_step, catalog, exclude_ids)
    heading = f"Locked in: {chosen.title}." if chosen.token != SKIP_TOKEN else "Skipped."
    return GuidedTurn(
        reply=render_step(next_step, next_options, heading=heading),
        state=state,
        accepted=True,
        interactive=interactive_payload(day.index, next_step, next_options),
        chosen=chosen,
    )
