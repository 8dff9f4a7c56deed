"""Shared test fixtures for the trip concierge."""

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from conversation.handler import HandlerSettings, TurnHandler  # noqa: E402
from conversation.intents import StandbyClassifier  # noqa: E402
from conversation.ledger import set_fact  # noqa: E402
from conversation.models import new_conversation  # noqa: E402
from conversation.reducer import Reducer  # noqa: E402
from conversation.store import ConversationStore, InMemoryStorage  # noqa: E402
from llm.base import GenerateResponse, LLMError, ToolCall  # noqa: E402
from observability import metrics  # noqa: E402
from planner.catalog import StaticCatalog  # noqa: E402
from planner.day_planner import DayPlanner  # noqa: E402
from planner.edits import EditEngine, EditInterpreter  # noqa: E402
from planner.presenter import Presenter  # noqa: E402
from planner.selector import ServiceSelector  # noqa: E402

CATALOG_FILE = Path(__file__).parent.parent / "data" / "austin_catalog.yaml"


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def static_catalog():
    return StaticCatalog.from_file(CATALOG_FILE)


@pytest.fixture
def catalog(static_catalog):
    """The sample Austin catalog as a list of CatalogItem."""
    return list(static_catalog.items)


@pytest.fixture
def failing_provider():
    """Provider whose every call fails, forcing local fallbacks."""
    provider = MagicMock()
    provider.generate.side_effect = LLMError("offline")
    provider.generate_with_tools.side_effect = LLMError("offline")
    return provider


def tool_response(name: str, arguments: dict) -> GenerateResponse:
    return GenerateResponse(
        content=None,
        tool_calls=[ToolCall(id="call_1", name=name, arguments=arguments)],
        finish_reason="tool_calls",
    )


@pytest.fixture
def tool_provider():
    """Factory: provider that answers every tool call with ``arguments``."""

    def _make(name: str, arguments: dict):
        provider = MagicMock()
        provider.generate_with_tools.return_value = tool_response(name, arguments)
        return provider

    return _make


@pytest.fixture
def planning_conversation():
    """Conversation with every essential fact SET for a 3-day Austin trip (Fri-Sun)."""
    conversation = new_conversation("conv-1")
    set_fact(conversation.facts, "destination", "Austin")
    set_fact(conversation.facts, "groupSize", 8)
    set_fact(conversation.facts, "startDate", "2025-09-05")
    set_fact(conversation.facts, "endDate", "2025-09-07")
    return conversation


@pytest.fixture
def make_handler(static_catalog, failing_provider):
    """Factory for a TurnHandler wired to the sample catalog and an offline provider."""

    def _make(provider=None, storage=None, **settings):
        provider = provider or failing_provider
        selector = ServiceSelector(provider=provider)
        return TurnHandler(
            store=ConversationStore(storage or InMemoryStorage()),
            catalog_client=static_catalog,
            reducer=Reducer(provider=provider),
            planner=DayPlanner(selector),
            edit_engine=EditEngine(EditInterpreter(provider=provider), selector=selector),
            presenter=Presenter(provider=provider),
            standby_classifier=StandbyClassifier(provider=provider),
            settings=HandlerSettings(**settings),
        )

    return _make
