"""Developer shortcuts: ``/seed``, ``/phase``, ``/facts``, ``/snapshot``, ``/reset``.

None of these call the language model. ``/seed`` jumps straight into
planning, and day 1 is built by the deterministic local selection.
"""

import json
import re
import shlex
from dataclasses import dataclass
from typing import Awaitable, Callable

import structlog

from .ledger import set_fact
from .models import FACT_PRIORITIES, Conversation, Phase, new_conversation
from .phases import force_phase
from .snapshot import export_snapshot, import_snapshot

logger = structlog.get_logger()

HELP_TEXT = """Dev commands:
  /seed <json> | /seed Austin 7 2025-09-05..2025-09-07 wild=5 budget=flexible interests="golf,strip club"
  /phase gathering|guided_first_day|planning|standby
  /facts {"groupSize": 8, "budget": "high"}
  /snapshot save|load|print NAME
  /reset"""

_KEY_ALIASES = {
    "wild": "wildnessLevel",
    "wildness": "wildnessLevel",
    "budget": "budget",
    "rel": "relationship",
    "relationship": "relationship",
    "age": "ageRange",
    "ages": "ageRange",
    "interests": "interestedActivities",
    "activities": "interestedActivities",
    "dest": "destination",
    "city": "destination",
    "size": "groupSize",
    "group": "groupSize",
    "start": "startDate",
    "end": "endDate",
}
_RANGE_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})\.\.(\d{4}-\d{2}-\d{2})$")

# Callback used by /seed and /phase planning to enter planning (catalog + day 1)
EnterPlanning = Callable[[Conversation], Awaitable[str]]


@dataclass
class DevCommandResult:
    reply: str
    reset: bool = False
    replace_with: Conversation | None = None


def parse_seed(args: str) -> dict:
    """JSON object or the compact ``City N START..END key=value`` form."""
    args = args.strip()
    if args.startswith(("{", "[")):
        data = json.loads(args)
        if not isinstance(data, dict):
            raise ValueError("seed JSON must be an object")
        return {_KEY_ALIASES.get(k, k): v for k, v in data.items()}

    facts: dict = {}
    city_words = []
    for token in shlex.split(args):
        if "=" in token:
            key, value = token.split("=", 1)
            key = _KEY_ALIASES.get(key.lower(), key)
            if key == "interestedActivities":
                facts[key] = [v.strip() for v in value.split(",") if v.strip()]
            else:
                facts[key] = value
            continue
        match = _RANGE_RE.match(token)
        if match:
            facts["startDate"], facts["endDate"] = match.group(1), match.group(2)
        elif token.isdigit():
            facts["groupSize"] = int(token)
        elif re.match(r"^\d{4}-\d{2}-\d{2}$", token):
            facts["endDate" if "startDate" in facts else "startDate"] = token
        else:
            city_words.append(token)
    if city_words:
        facts["destination"] = " ".join(city_words)
    return facts


class DevCommands:
    """Runs dev commands against a conversation.

    Named snapshots live on the instance, so they survive across turns for
    the life of the process.
    """

    def __init__(self, enter_planning: EnterPlanning):
        self.enter_planning = enter_planning
        self.saved: dict[str, dict] = {}

    async def run(self, conversation: Conversation, text: str) -> DevCommandResult:
        command, _, args = text.strip()[1:].partition(" ")
        command = command.lower()
        logger.info("dev.command", command=command, conversation_id=conversation.id)
        try:
            if command == "seed":
                return await self._seed(conversation, args)
            if command == "phase":
                return await self._phase(conversation, args)
            if command == "facts":
                return self._facts(conversation, args)
            if command == "snapshot":
                return self._snapshot(conversation, args)
            if command == "reset":
                return DevCommandResult(reply="Conversation reset. Where are we headed?", reset=True)
        except (ValueError, json.JSONDecodeError) as e:
            return DevCommandResult(reply=f"Couldn't run /{command}: {e}\n\n{HELP_TEXT}")
        return DevCommandResult(reply=HELP_TEXT)

    async def _seed(self, conversation: Conversation, args: str) -> DevCommandResult:
        facts = parse_seed(args)
        unknown = [k for k in facts if k not in FACT_PRIORITIES]
        if unknown:
            raise ValueError(f"unknown fact keys: {', '.join(unknown)}")
        skipped = [key for key, value in facts.items() if not set_fact(conversation.facts, key, value)]
        reply = await self.enter_planning(conversation)
        seeded = ", ".join(f"{k}={v}" for k, v in facts.items() if k not in skipped)
        if skipped:
            seeded += f" (skipped {', '.join(skipped)})"
        return DevCommandResult(reply=f"Seeded {seeded}.\n\n{reply}")

    async def _phase(self, conversation: Conversation, args: str) -> DevCommandResult:
        name = args.strip().lower()
        try:
            phase = Phase(name)
        except ValueError:
            raise ValueError(f"unknown phase '{name}'")
        if phase == Phase.PLANNING and conversation.day_by_day.total_days == 0:
            reply = await self.enter_planning(conversation)
            return DevCommandResult(reply=f"Phase forced to planning.\n\n{reply}")
        force_phase(conversation, phase)
        return DevCommandResult(reply=f"Phase forced to {phase.value}.")

    def _facts(self, conversation: Conversation, args: str) -> DevCommandResult:
        if not args.strip():
            dump = {k: f.to_dict() for k, f in conversation.facts.items()}
            return DevCommandResult(reply=json.dumps(dump, indent=2, default=str))
        data = json.loads(args)
        if not isinstance(data, dict):
            raise ValueError("facts must be a JSON object")
        applied, skipped = [], []
        for key, value in data.items():
            key = _KEY_ALIASES.get(key, key)
            if key not in FACT_PRIORITIES:
                continue
            if set_fact(conversation.facts, key, value):
                applied.append(key)
            else:
                skipped.append(key)
        reply = f"Facts set: {', '.join(applied) or 'none'}."
        if skipped:
            reply += f" Skipped: {', '.join(skipped)}."
        return DevCommandResult(reply=reply)

    def _snapshot(self, conversation: Conversation, args: str) -> DevCommandResult:
        parts = args.split()
        action = parts[0].lower() if parts else "print"
        name = parts[1] if len(parts) > 1 else "default"
        if action == "save":
            self.saved[name] = export_snapshot(conversation)
            return DevCommandResult(reply=f"Snapshot '{name}' saved.")
        if action == "load":
            snapshot = self.saved.get(name)
            if snapshot is None:
                return DevCommandResult(reply=f"No snapshot named '{name}'.")
            fresh = new_conversation(conversation.id)
            import_snapshot(fresh, snapshot)
            return DevCommandResult(
                reply=f"Snapshot '{name}' loaded (phase {fresh.phase.value}).", replace_with=fresh
            )
        if action == "print":
            snapshot = self.saved.get(name) if len(parts) > 1 else export_snapshot(conversation)
            if snapshot is None:
                return DevCommandResult(reply=f"No snapshot named '{name}'.")
            return DevCommandResult(reply=json.dumps(snapshot, indent=2, default=str))
        raise ValueError(f"unknown snapshot action '{action}'")
