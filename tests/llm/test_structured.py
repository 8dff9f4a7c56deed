"""Tests for the async structured-call helpers."""

from unittest.mock import MagicMock

import pytest

from llm.base import GenerateResponse, LLMError, LLMRateLimitError, StructuredOutputError, ToolCall, ToolDefinition
from llm.structured import call_tool, complete_text
from observability import metrics

REDUCE_TOOL = ToolDefinition(name="reduce_state", description="Reduce", input_schema={"type": "object"})


class TestCallTool:
    @pytest.mark.asyncio
    async def test_returns_arguments_and_forces_tool(self, tool_provider):
        provider = tool_provider("reduce_state", {"facts": {}})

        result = await call_tool(provider, REDUCE_TOOL, "hello", system="sys", max_tokens=300)

        assert result == {"facts": {}}
        kwargs = provider.generate_with_tools.call_args.kwargs
        assert kwargs["messages"] == [{"role": "user", "content": "hello"}]
        assert kwargs["tools"] == [REDUCE_TOOL]
        assert kwargs["system"] == "sys"
        assert kwargs["max_tokens"] == 300
        assert kwargs["tool_choice"] == "required"
        assert metrics.summary()["timers"]["llm.reduce_state"]["count"] == 1

    @pytest.mark.asyncio
    async def test_wrong_tool_is_structured_error(self, tool_provider):
        provider = tool_provider("select_services", {})
        with pytest.raises(StructuredOutputError):
            await call_tool(provider, REDUCE_TOOL, "hello")
        provider.generate_with_tools.assert_called_once()

    @pytest.mark.asyncio
    async def test_provider_error_not_retried(self, failing_provider):
        with pytest.raises(LLMError):
            await call_tool(failing_provider, REDUCE_TOOL, "hello")
        assert failing_provider.generate_with_tools.call_count == 1

    @pytest.mark.asyncio
    async def test_rate_limit_retried_once(self):
        provider = MagicMock()
        provider.generate_with_tools.side_effect = [
            LLMRateLimitError("slow down"),
            GenerateResponse(content=None, tool_calls=[ToolCall(id="c1", name="reduce_state", arguments={"ok": True})]),
        ]
        assert await call_tool(provider, REDUCE_TOOL, "hello") == {"ok": True}
        assert provider.generate_with_tools.call_count == 2


class TestCompleteText:
    @pytest.mark.asyncio
    async def test_strips_output(self):
        provider = MagicMock()
        provider.generate.return_value = "  Sure thing.\n"
        assert await complete_text(provider, "hi", system="sys") == "Sure thing."
        assert provider.generate.call_args.kwargs["system"] == "sys"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("output", ["", "   ", None])
    async def test_empty_output_is_an_error(self, output):
        provider = MagicMock()
        provider.generate.return_value = output
        with pytest.raises(StructuredOutputError):
            await complete_text(provider, "hi")
