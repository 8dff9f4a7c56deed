"""Shared CLI utilities: component wiring from config."""

import structlog
from rich.console import Console

from cli.config_models import ConciergeConfig

console = Console()
logger = structlog.get_logger()


def build_catalog_client(config: ConciergeConfig):
    from planner.catalog import HttpCatalogClient, StaticCatalog

    cat = config.catalog
    if cat.uses_http:
        return HttpCatalogClient(
            cat.base_url,
            api_key=cat.api_key,
            timeout=cat.timeout,
            max_results=cat.max_results,
        )
    return StaticCatalog.from_file(cat.fixture)


def build_storage(config: ConciergeConfig):
    from conversation.store import InMemoryStorage, SQLiteStorage

    if config.storage.backend == "sqlite":
        return SQLiteStorage(config.storage.sqlite_path)
    return InMemoryStorage()


def get_components(config: ConciergeConfig, provider=None, cheap_provider=None) -> dict:
    """Initialize every collaborator of the turn handler from config.

    LLM providers are created lazily by each collaborator unless passed in,
    so commands that never reach the model work without an API key.
    """
    from conversation.handler import HandlerSettings, TurnHandler
    from conversation.intents import StandbyClassifier
    from conversation.reducer import Reducer
    from conversation.store import ConversationStore
    from planner.day_planner import DayPlanner
    from planner.edits import EditEngine, EditInterpreter
    from planner.presenter import Presenter
    from planner.selector import ServiceSelector

    llm = config.llm
    if provider is None and (llm.api_key or llm.provider != "auto" or llm.model):
        from llm.base import LLMError
        from llm.factory import create_cheap_provider, create_llm_provider

        try:
            provider = create_llm_provider(provider=llm.provider, api_key=llm.api_key, model=llm.model)
            cheap_provider = cheap_provider or create_cheap_provider(
                provider=llm.provider, api_key=llm.api_key, model=llm.cheap_model
            )
        except LLMError as e:
            # Collaborators fall back to deterministic behaviour without a provider
            console.print(f"[yellow]LLM unavailable, using local fallbacks:[/] {e}")
            logger.warning("components.llm_unavailable", provider=llm.provider, error=str(e))
            provider = None
    cheap_provider = cheap_provider or provider

    selector = ServiceSelector(
        provider=provider,
        max_tokens=llm.max_tokens,
        max_catalog_items=config.planner.max_catalog_items,
    )
    store = ConversationStore(build_storage(config))
    handler = TurnHandler(
        store=store,
        catalog_client=build_catalog_client(config),
        reducer=Reducer(
            provider=provider,
            recent_messages=config.planner.recent_messages,
            max_tokens=llm.reducer_max_tokens,
        ),
        planner=DayPlanner(selector),
        edit_engine=EditEngine(EditInterpreter(provider=provider), selector=selector),
        presenter=Presenter(provider=cheap_provider),
        standby_classifier=StandbyClassifier(provider=cheap_provider),
        settings=HandlerSettings(
            supported_city=config.planner.supported_city,
            guided_weekdays=list(config.planner.guided_weekdays),
            catalog_concurrency=config.catalog.concurrency,
        ),
    )
    logger.debug("components.ready", storage=config.storage.backend, http_catalog=config.catalog.uses_http)
    return {"config": config, "store": store, "handler": handler}
