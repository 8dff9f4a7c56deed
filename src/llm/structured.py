"""Async helpers for calling a provider under a fixed structured-output contract.

Providers are synchronous SDK wrappers; these helpers run them in a worker
thread so the turn handler stays a coroutine, retry rate limits, and time
every call into the metrics collector.
"""

import asyncio

import structlog

from cli.retry import llm_retry
from observability import metrics

from .base import LLMProvider, LLMRateLimitError, StructuredOutputError, ToolDefinition

logger = structlog.get_logger()


async def call_tool(
    provider: LLMProvider,
    tool: ToolDefinition,
    prompt: str,
    system: str | None = None,
    max_tokens: int = 2000,
) -> dict:
    """Force a single tool call and return its arguments.

    Raises:
        LLMError: provider failure, or the model skipped the tool
    """

    @llm_retry(max_attempts=2, min_wait=1.0, exceptions=(LLMRateLimitError,))
    def _call() -> dict:
        response = provider.generate_with_tools(
            messages=[{"role": "user", "content": prompt}],
            tools=[tool],
            system=system,
            max_tokens=max_tokens,
            tool_choice="required",
        )
        return response.arguments_for(tool.name)

    with metrics.timer(f"llm.{tool.name}"):
        arguments = await asyncio.to_thread(_call)
    logger.debug("llm.tool_call", tool=tool.name, keys=sorted(arguments))
    return arguments


async def complete_text(
    provider: LLMProvider,
    prompt: str,
    system: str | None = None,
    max_tokens: int = 800,
) -> str:
    """Plain text completion; empty output counts as a failure."""

    @llm_retry(max_attempts=2, min_wait=1.0, exceptions=(LLMRateLimitError,))
    def _call() -> str:
        return provider.generate(
            messages=[{"role": "user", "content": prompt}],
            system=system,
            max_tokens=max_tokens,
        )

    with metrics.timer("llm.text"):
        text = await asyncio.to_thread(_call)
    text = (text or "").strip()
    if not text:
        raise StructuredOutputError("Empty completion")
    return text
