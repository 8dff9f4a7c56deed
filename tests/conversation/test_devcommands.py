"""Tests for developer slash commands."""

import json
from unittest.mock import AsyncMock

import pytest

from conversation.devcommands import HELP_TEXT, DevCommands, parse_seed
from conversation.models import FactStatus, Phase, new_conversation


@pytest.fixture
def enter_planning():
    return AsyncMock(return_value="Day 1 is ready.")


@pytest.fixture
def dev(enter_planning):
    return DevCommands(enter_planning)


class TestParseSeed:
    def test_compact_form(self):
        facts = parse_seed('Austin 7 2025-09-05..2025-09-07 wild=5 budget=flexible interests="golf,strip club"')
        assert facts == {
            "destination": "Austin",
            "groupSize": 7,
            "startDate": "2025-09-05",
            "endDate": "2025-09-07",
            "wildnessLevel": "5",
            "budget": "flexible",
            "interestedActivities": ["golf", "strip club"],
        }

    def test_separate_dates_and_multiword_city(self):
        facts = parse_seed("New Orleans 2025-10-10 2025-10-12 12")
        assert facts["destination"] == "New Orleans"
        assert facts["startDate"] == "2025-10-10"
        assert facts["endDate"] == "2025-10-12"
        assert facts["groupSize"] == 12

    def test_json_form_with_aliases(self):
        facts = parse_seed('{"city": "Austin", "size": 9, "startDate": "2025-09-05"}')
        assert facts == {"destination": "Austin", "groupSize": 9, "startDate": "2025-09-05"}

    def test_json_must_be_object(self):
        with pytest.raises(ValueError):
            parse_seed("[1, 2]")


class TestDevCommands:
    @pytest.mark.asyncio
    async def test_seed_sets_facts_and_enters_planning(self, dev, enter_planning):
        conversation = new_conversation("c1")
        result = await dev.run(conversation, "/seed Austin 7 2025-09-05..2025-09-07")

        assert conversation.facts["groupSize"].value == 7
        assert conversation.facts["groupSize"].status == FactStatus.SET
        assert conversation.facts["destination"].value == "Austin"
        enter_planning.assert_awaited_once_with(conversation)
        assert result.reply.startswith("Seeded ")
        assert "destination=Austin" in result.reply
        assert result.reply.endswith("Day 1 is ready.")

    @pytest.mark.asyncio
    async def test_seed_unknown_key_reports_error(self, dev, enter_planning):
        result = await dev.run(new_conversation("c1"), '/seed {"favoriteColor": "red"}')
        assert result.reply.startswith("Couldn't run /seed: unknown fact keys: favoriteColor")
        enter_planning.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_seed_skips_invalid_values(self, dev, enter_planning):
        conversation = new_conversation("c1")
        result = await dev.run(conversation, '/seed {"city": "Austin", "size": "inf", "startDate": "2025-09-05"}')

        assert result.reply.startswith("Seeded destination=Austin, startDate=2025-09-05 (skipped groupSize).")
        assert conversation.facts["groupSize"].status == FactStatus.UNKNOWN
        enter_planning.assert_awaited_once_with(conversation)

    @pytest.mark.asyncio
    async def test_seed_json_array_rejected(self, dev, enter_planning):
        result = await dev.run(new_conversation("c1"), "/seed [1, 2]")
        assert result.reply.startswith("Couldn't run /seed: seed JSON must be an object")
        enter_planning.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_seed_bad_json(self, dev):
        result = await dev.run(new_conversation("c1"), "/seed {not json")
        assert "Couldn't run /seed" in result.reply

    @pytest.mark.asyncio
    async def test_phase_forces_without_checks(self, dev):
        conversation = new_conversation("c1")
        result = await dev.run(conversation, "/phase standby")
        assert conversation.phase == Phase.STANDBY
        assert result.reply == "Phase forced to standby."

    @pytest.mark.asyncio
    async def test_phase_planning_without_plan_enters_planning(self, dev, enter_planning):
        conversation = new_conversation("c1")
        result = await dev.run(conversation, "/phase planning")
        enter_planning.assert_awaited_once()
        assert result.reply.endswith("Day 1 is ready.")

    @pytest.mark.asyncio
    async def test_unknown_phase(self, dev):
        result = await dev.run(new_conversation("c1"), "/phase lunch")
        assert "unknown phase 'lunch'" in result.reply

    @pytest.mark.asyncio
    async def test_facts_set_and_dump(self, dev):
        conversation = new_conversation("c1")
        result = await dev.run(conversation, '/facts {"groupSize": 8, "wild": 4, "shoeSize": 11}')
        assert result.reply == "Facts set: groupSize, wildnessLevel."
        assert conversation.facts["wildnessLevel"].value == 4

        dump = await dev.run(conversation, "/facts")
        assert json.loads(dump.reply)["groupSize"]["value"] == 8

    @pytest.mark.asyncio
    async def test_snapshot_save_and_load(self, dev):
        conversation = new_conversation("c1")
        conversation.phase = Phase.PLANNING
        await dev.run(conversation, "/snapshot save before")
        conversation.phase = Phase.STANDBY

        result = await dev.run(conversation, "/snapshot load before")
        assert result.replace_with is not None
        assert result.replace_with.phase == Phase.PLANNING
        assert result.replace_with.id == "c1"
        assert conversation.phase == Phase.STANDBY

    @pytest.mark.asyncio
    async def test_snapshot_missing_and_print(self, dev):
        conversation = new_conversation("c1")
        missing = await dev.run(conversation, "/snapshot load nope")
        assert missing.reply == "No snapshot named 'nope'."
        printed = await dev.run(conversation, "/snapshot")
        assert json.loads(printed.reply)["conversationId"] == "c1"

    @pytest.mark.asyncio
    async def test_reset_and_help(self, dev):
        conversation = new_conversation("c1")
        assert (await dev.run(conversation, "/reset")).reset
        assert (await dev.run(conversation, "/dance")).reply == HELP_TEXT
