"""Dependency injection for FastAPI routes."""

from functools import lru_cache

import structlog

from cli.config import load_config_model
from cli.utils import get_components
from conversation.handler import TurnHandler

logger = structlog.get_logger()


@lru_cache
def get_config():
    """Load shared config from ./config.yaml or ~/.concierge/config.yaml."""
    return load_config_model()


@lru_cache
def get_handler() -> TurnHandler:
    """Process-wide turn handler; conversations live in its store."""
    components = get_components(get_config())
    logger.info("web.handler_ready", storage=get_config().storage.backend)
    return components["handler"]
