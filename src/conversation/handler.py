"""Turn handler: one user message in, one ``TurnResult`` out.

Every turn runs get-or-create, optional snapshot import, the dev command
intercept, phase dispatch, then persistence. Phase handlers may fail in any
way; the turn still returns a reply and a snapshot.
"""

from dataclasses import dataclass, field

import structlog

from planner.catalog import CatalogClient, load_destination_catalog, top_by_intent
from planner.day_planner import DayPlanner, enrich_plan
from planner.edits import EditEngine
from planner.guided import advance, prompt_current, start_flow
from planner.presenter import (
    Presenter,
    edit_confirmation,
    format_day_plan,
    format_options,
    itinerary_summary,
    itinerary_text,
    next_standby_message,
)
from planner.selector import DayInfo, DedupContext

from .dates import day_label, resolve_target_day_index
from .devcommands import DevCommands
from .intents import (
    PlanningAction,
    StandbyClassifier,
    classify_planning_intent,
    extract_option_intent,
    is_options_question,
)
from .ledger import flatten_preferences
from .models import Conversation, DayByDayPlanning, DayPlan, IntentType, Phase
from .phases import force_phase, guided_flow_for_day, phase_after_gathering, transition, trip_length
from .reducer import Reducer, apply_reduction, next_question
from .snapshot import export_snapshot, import_snapshot
from .store import ConversationStore

logger = structlog.get_logger()

CLARIFY_TEXT = "Sorry, I lost track there. Could you say that again, maybe with a bit more detail?"
DEV_FAILED_TEXT = "That dev command failed. Type /help for usage."
EMPTY_TEXT = "I didn't catch anything there. What would you like to do?"
READY_TEXT = "That's everything I need. Let's build the trip day by day."


@dataclass
class HandlerSettings:
    supported_city: str = "Austin"
    guided_weekdays: list[str] = field(default_factory=lambda: ["friday", "saturday"])
    catalog_concurrency: int = 4


@dataclass
class TurnResult:
    response: str
    phase: Phase
    facts: dict
    assumptions: list[str]
    itinerary: list[dict]
    snapshot: dict
    interactive: dict | None = None

    def to_dict(self) -> dict:
        return {
            "response": self.response,
            "phase": self.phase.value,
            "facts": self.facts,
            "assumptions": self.assumptions,
            "itinerary": self.itinerary,
            "snapshot": self.snapshot,
            "interactive": self.interactive,
        }


@dataclass
class _Reply:
    text: str
    interactive: dict | None = None
    assumptions: list[str] = field(default_factory=list)


class TurnHandler:
    def __init__(
        self,
        store: ConversationStore,
        catalog_client: CatalogClient,
        reducer: Reducer,
        planner: DayPlanner,
        edit_engine: EditEngine,
        presenter: Presenter,
        standby_classifier: StandbyClassifier,
        settings: HandlerSettings | None = None,
    ):
        self.store = store
        self.catalog_client = catalog_client
        self.reducer = reducer
        self.planner = planner
        self.edit_engine = edit_engine
        self.presenter = presenter
        self.standby_classifier = standby_classifier
        self.settings = settings or HandlerSettings()
        self.dev = DevCommands(self._dev_enter_planning)

    async def handle_message(
        self, conversation_id: str, user_message: str, snapshot: dict | None = None
    ) -> TurnResult:
        conversation = self.store.get_or_create(conversation_id)
        if snapshot is not None:
            try:
                import_snapshot(conversation, snapshot)
            except Exception as e:
                logger.warning("handler.snapshot_import_failed", conversation_id=conversation_id, error=str(e))

        text = (user_message or "").strip()
        log = logger.bind(conversation_id=conversation_id, phase=conversation.phase.value)
        log.info("handler.turn_started", length=len(text))

        if text.startswith("/"):
            try:
                result = await self.dev.run(conversation, text)
            except Exception:
                log.exception("handler.dev_command_failed")
                reply = _Reply(DEV_FAILED_TEXT)
            else:
                if result.reset:
                    conversation = self.store.reset(conversation_id)
                elif result.replace_with is not None:
                    conversation = result.replace_with
                reply = _Reply(result.reply)
        elif not text:
            reply = _Reply(EMPTY_TEXT)
        else:
            try:
                reply = await self._dispatch(conversation, text)
            except Exception:
                log.exception("handler.turn_failed")
                reply = _Reply(CLARIFY_TEXT)

        if text:
            conversation.add_message("user", text)
        conversation.add_message("assistant", reply.text)
        self.store.save(conversation)
        log.info("handler.turn_finished", new_phase=conversation.phase.value)

        return TurnResult(
            response=reply.text,
            phase=conversation.phase,
            facts={key: fact.to_dict() for key, fact in conversation.facts.items()},
            assumptions=reply.assumptions,
            itinerary=itinerary_summary(conversation.day_by_day),
            snapshot=export_snapshot(conversation),
            interactive=reply.interactive,
        )

    async def _dispatch(self, conversation: Conversation, text: str) -> _Reply:
        if conversation.phase == Phase.GATHERING:
            return await self._handle_gathering(conversation, text)
        if conversation.phase == Phase.GUIDED_FIRST_DAY:
            return await self._handle_guided_first_day(conversation, text)
        if conversation.phase == Phase.PLANNING:
            return await self._handle_planning(conversation, text)
        return await self._handle_standby(conversation, text)

    # -- helpers -----------------------------------------------------------

    def _label(self, conversation: Conversation, index: int) -> str:
        return day_label(conversation.facts["startDate"].value, index)

    def _present(self, conversation: Conversation, index: int, plan: DayPlan, heading: str | None = None) -> str:
        planning = conversation.day_by_day
        return format_day_plan(
            plan,
            self._label(conversation, index),
            is_last_day=index == planning.total_days - 1,
            heading=heading,
        )

    def _target_day(self, conversation: Conversation, text: str, fallback: int, reducer_index=None) -> int:
        return resolve_target_day_index(
            text,
            conversation.facts["startDate"].value,
            conversation.day_by_day.total_days,
            fallback,
            reducer_index,
        )

    async def _load_catalog(self, conversation: Conversation) -> None:
        prefs = flatten_preferences(conversation.facts)
        city = prefs["destination"] or self.settings.supported_city
        conversation.available_services = await load_destination_catalog(
            self.catalog_client,
            city,
            prefs["interestedActivities"],
            concurrency=self.settings.catalog_concurrency,
        )

    async def _plan_day(self, conversation: Conversation, index: int, use_llm: bool = True) -> DayPlan:
        planning = conversation.day_by_day
        day = DayInfo.for_index(index, planning.total_days)
        dedup = DedupContext.from_planning(planning, conversation.available_services, exclude_day=index)
        plan = await self.planner.plan_day(
            conversation.available_services,
            flatten_preferences(conversation.facts),
            day,
            dedup,
            use_llm=use_llm,
        )
        planning.current_day = index
        planning.current_day_plan = plan
        return plan

    async def _enter_planning(
        self,
        conversation: Conversation,
        lead: str | None = None,
        use_llm: bool = True,
        allow_guided: bool = True,
    ) -> _Reply:
        """Load the catalog, reset day-by-day state and open day 1 (guided or planned)."""
        await self._load_catalog(conversation)
        planning = DayByDayPlanning(total_days=trip_length(conversation))
        conversation.day_by_day = planning
        label = self._label(conversation, 0)

        flow = guided_flow_for_day(conversation, 0, self.settings.guided_weekdays) if allow_guided else None
        if flow is not None:
            planning.guided[0] = start_flow(flow)
            transition(conversation, Phase.GUIDED_FIRST_DAY)
            heading = "\n\n".join(h for h in (lead, f"{label}: {flow.theme}") if h)
            turn = prompt_current(planning.guided[0], conversation.available_services, 0, heading=heading)
            return _Reply(turn.reply, interactive=turn.interactive)

        transition(conversation, Phase.PLANNING)
        plan = await self._plan_day(conversation, 0, use_llm=use_llm)
        return _Reply(self._present(conversation, 0, plan, heading=lead))

    async def _dev_enter_planning(self, conversation: Conversation) -> str:
        force_phase(conversation, Phase.PLANNING)
        reply = await self._enter_planning(conversation, use_llm=False, allow_guided=False)
        return reply.text

    async def _open_day(self, conversation: Conversation, index: int, lead: str | None = None) -> _Reply:
        """Make ``index`` the current day: draft, stored plan, guided flow or a fresh plan."""
        planning = conversation.day_by_day
        planning.current_day = index
        planning.current_day_plan = None
        label = self._label(conversation, index)

        draft = planning.drafts.pop(index, None)
        if draft is not None:
            planning.current_day_plan = draft
            return _Reply(self._present(conversation, index, draft, heading=lead))

        completed = planning.completed(index)
        if completed is not None:
            return _Reply(self._present(conversation, index, completed, heading=lead))

        state = planning.guided.get(index)
        if state is None:
            flow = guided_flow_for_day(conversation, index, self.settings.guided_weekdays)
            if flow is not None:
                state = planning.guided[index] = start_flow(flow)
        if state is not None and not state.is_complete:
            heading = "\n\n".join(h for h in (lead, label) if h)
            turn = prompt_current(
                state,
                conversation.available_services,
                index,
                heading=heading,
                exclude_ids=planning.used_service_ids,
            )
            return _Reply(turn.reply, interactive=turn.interactive)

        plan = await self._plan_day(conversation, index)
        return _Reply(self._present(conversation, index, plan, heading=lead))

    # -- phases ------------------------------------------------------------

    async def _handle_gathering(self, conversation: Conversation, text: str) -> _Reply:
        result = await self.reducer.reduce(conversation, text)
        changed = apply_reduction(conversation, result)
        logger.info("handler.facts_merged", conversation_id=conversation.id, changed=changed, source=result.source)

        target = phase_after_gathering(
            conversation,
            result.safe_transition,
            self.settings.supported_city,
            self.settings.guided_weekdays,
        )
        if target != Phase.GATHERING:
            reply = await self._enter_planning(conversation, lead=READY_TEXT)
            reply.assumptions = result.assumptions
            return reply

        text_out = result.reply
        if not text_out and result.blocking_questions:
            text_out = result.blocking_questions[0]
        if not text_out:
            text_out = next_question(conversation, self.settings.supported_city) or "Anything else I should know?"
        return _Reply(text_out, assumptions=result.assumptions)

    async def _handle_guided_first_day(self, conversation: Conversation, text: str) -> _Reply:
        planning = conversation.day_by_day
        if planning.total_days == 0:
            return await self._enter_planning(conversation)
        if planning.guided.get(planning.current_day) is None:
            transition(conversation, Phase.PLANNING)
            return await self._handle_planning(conversation, text)
        return await self._handle_guided(conversation, text, planning.current_day)

    async def _handle_guided(self, conversation: Conversation, text: str, index: int) -> _Reply:
        planning = conversation.day_by_day
        state = planning.guided[index]
        day = DayInfo.for_index(index, planning.total_days)
        turn = advance(state, text, conversation.available_services, day, exclude_ids=planning.used_service_ids)
        if not state.is_complete:
            return _Reply(turn.reply, interactive=turn.interactive)

        del planning.guided[index]
        if conversation.phase == Phase.GUIDED_FIRST_DAY:
            transition(conversation, Phase.PLANNING)
        if turn.plan is None:
            plan = await self._plan_day(conversation, index)
        else:
            plan = turn.plan
            planning.current_day = index
            planning.current_day_plan = plan
        heading = "Here's the day from your picks."
        return _Reply(self._present(conversation, index, plan, heading=heading))

    def _planning_context(self, conversation: Conversation) -> dict | None:
        planning = conversation.day_by_day
        if planning.current_day_plan is None:
            return None
        return {
            "currentDayIndex": planning.current_day,
            "totalDays": planning.total_days,
            "currentDayPlan": planning.current_day_plan.to_dict(),
        }

    async def _handle_planning(self, conversation: Conversation, text: str) -> _Reply:
        planning = conversation.day_by_day
        if planning.total_days == 0:
            return await self._enter_planning(conversation)

        state = planning.guided.get(planning.current_day)
        if state is not None and not state.is_complete:
            return await self._handle_guided(conversation, text, planning.current_day)

        result = await self.reducer.reduce(conversation, text, planning_context=self._planning_context(conversation))
        apply_reduction(conversation, result)
        target = self._target_day(conversation, text, planning.current_day, result.target_day_index)
        intent = classify_planning_intent(text, result.intent_type, planning.current_day, target)
        logger.info(
            "handler.planning_intent",
            conversation_id=conversation.id,
            action=intent.action.value,
            current_day=planning.current_day,
            target_day=intent.target_day,
        )

        if intent.action == PlanningAction.OPTIONS:
            reply = self._answer_options(conversation, text)
        elif intent.action == PlanningAction.APPROVE:
            reply = await self._approve_current(conversation)
        elif intent.action == PlanningAction.NAVIGATE:
            reply = await self._navigate(conversation, intent.target_day)
        elif intent.action == PlanningAction.EDIT:
            reply = await self._edit_day(conversation, text, intent.target_day)
        else:
            answer = await self.presenter.answer_question(text, flatten_preferences(conversation.facts), planning)
            reply = _Reply(answer)
        reply.assumptions = result.assumptions
        return reply

    def _answer_options(self, conversation: Conversation, text: str) -> _Reply:
        category, keywords = extract_option_intent(text)
        items = top_by_intent(conversation.available_services, category, keywords)
        label = category.replace("_", " ") if category else "activity"
        return _Reply(format_options(items, label))

    async def _approve_current(self, conversation: Conversation) -> _Reply:
        planning = conversation.day_by_day
        index = planning.current_day
        plan = planning.plan_for(index)
        if plan is None:
            plan = await self._plan_day(conversation, index)
            return _Reply(self._present(conversation, index, plan))

        approved = enrich_plan(plan.copy(), conversation.available_services)
        planning.store_completed(index, approved)
        planning.drafts.pop(index, None)
        planning.current_day_plan = None
        label = self._label(conversation, index)
        logger.info("handler.day_approved", conversation_id=conversation.id, day=index + 1)

        remaining = [i for i in range(planning.total_days) if planning.completed(i) is None]
        if not remaining:
            planning.is_complete = True
            transition(conversation, Phase.STANDBY)
            return _Reply(
                f"{label} is locked in, and that's the whole trip!\n\n"
                f"{itinerary_text(planning)}\n\n"
                "Ask me anything about it, or tell me what to change."
            )
        next_index = next((i for i in remaining if i > index), remaining[0])
        return await self._open_day(conversation, next_index, lead=f"{label} is locked in.")

    async def _navigate(self, conversation: Conversation, target: int) -> _Reply:
        planning = conversation.day_by_day
        current = planning.current_day
        if target == current and planning.plan_for(current) is not None:
            return _Reply(self._present(conversation, current, planning.plan_for(current)))
        if planning.current_day_plan is not None and planning.completed(current) is None:
            planning.drafts[current] = planning.current_day_plan
        logger.info("handler.navigate", conversation_id=conversation.id, from_day=current, to_day=target)
        return await self._open_day(conversation, target)

    async def _edit_day(self, conversation: Conversation, text: str, target: int) -> _Reply:
        planning = conversation.day_by_day
        label = self._label(conversation, target)
        plan = planning.plan_for(target) or planning.drafts.get(target)
        if plan is None:
            if conversation.phase == Phase.STANDBY:
                return _Reply(f"I don't have anything on {label} to change.")
            return await self._navigate(conversation, target)

        day = DayInfo.for_index(target, planning.total_days)
        dedup = DedupContext.from_planning(
            planning, conversation.available_services, exclude_day=target, user_explicit_request=text
        )
        outcome = await self.edit_engine.edit_day(
            text, plan, conversation.available_services, flatten_preferences(conversation.facts), day, dedup
        )
        confirmation = edit_confirmation(outcome, label)
        if not outcome.applied:
            return _Reply(confirmation)

        edited = outcome.plan
        edited.day_number = target + 1
        if planning.completed(target) is not None:
            planning.store_completed(target, edited)
        elif target == planning.current_day:
            planning.current_day_plan = edited
        else:
            planning.drafts[target] = edited
        planning.rebuild_used_services()
        logger.info(
            "handler.day_edited",
            conversation_id=conversation.id,
            day=target + 1,
            used_fallback=outcome.used_fallback,
        )

        body = format_day_plan(
            edited,
            label,
            is_last_day=target == planning.total_days - 1,
            ask_approval=conversation.phase == Phase.PLANNING and planning.completed(target) is None,
        )
        return _Reply(f"{confirmation}\n\n{body}")

    async def _handle_standby(self, conversation: Conversation, text: str) -> _Reply:
        planning = conversation.day_by_day
        if is_options_question(text):
            return self._answer_options(conversation, text)

        intent = await self.standby_classifier.classify(text)
        logger.info("handler.standby_intent", conversation_id=conversation.id, intent=intent.value)
        if intent == IntentType.EDIT_ITINERARY:
            return await self._edit_day(conversation, text, self._target_day(conversation, text, 0))
        if intent == IntentType.APPROVAL_NEXT:
            return _Reply(next_standby_message(conversation.standby, planning.total_days))
        answer = await self.presenter.answer_question(text, flatten_preferences(conversation.facts), planning)
        return _Reply(answer)
