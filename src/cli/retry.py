"""Retry decorators with exponential backoff for catalog and LLM calls."""

import logging

import structlog
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config_models import RetryConfig

logger = structlog.stdlib.get_logger(__name__)


def _backoff(max_attempts: int, min_wait: float, max_wait: float, exceptions: tuple):
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(exceptions),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


def http_retry(
    max_attempts: int = 3,
    min_wait: float = 2.0,
    max_wait: float = 10.0,
    exceptions: tuple = (Exception,),
):
    """Retry decorator for catalog HTTP requests.

    Works on sync and async callables alike.
    """
    return _backoff(max_attempts, min_wait, max_wait, exceptions)


def llm_retry(
    max_attempts: int = 3,
    min_wait: float = 2.0,
    max_wait: float = 30.0,
    exceptions: tuple = (Exception,),
):
    """Retry decorator for LLM API calls.

    Uses longer max_wait for rate limiting scenarios.
    """
    return _backoff(max_attempts, min_wait, max_wait, exceptions)


def retry_from_config(config: RetryConfig, retry_type: str = "http", exceptions: tuple = (Exception,)):
    """Build an ``http`` or ``llm`` retry decorator from the retry config section."""
    if retry_type == "llm":
        return llm_retry(config.max_attempts, config.min_wait, config.llm_max_wait, exceptions)
    return http_retry(config.max_attempts, config.min_wait, config.max_wait, exceptions)
