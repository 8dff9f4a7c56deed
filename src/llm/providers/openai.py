"""OpenAI LLM provider."""

import json

from ..base import (
    GenerateResponse,
    LLMAuthError,
    LLMError,
    LLMProvider,
    LLMRateLimitError,
    StructuredOutputError,
    ToolCall,
    ToolDefinition,
)


def _handle_openai_error(e: Exception):
    from openai import APIError, AuthenticationError, RateLimitError

    if isinstance(e, AuthenticationError):
        raise LLMAuthError(f"OpenAI auth failed: {e}") from e
    if isinstance(e, RateLimitError):
        raise LLMRateLimitError(f"OpenAI rate limit: {e}") from e
    if isinstance(e, APIError):
        raise LLMError(f"OpenAI API error: {e}") from e
    raise LLMError(f"OpenAI error: {e}") from e


class OpenAIProvider(LLMProvider):
    """OpenAI GPT provider."""

    provider_name = "openai"

    def __init__(self, api_key: str | None = None, model: str | None = None, client=None):
        self.model = model or "gpt-4o"

        if client:
            self.client = client
            return

        try:
            from openai import OpenAI
        except ImportError:
            raise LLMError("openai package not installed. Run: pip install openai")

        try:
            self.client = OpenAI(api_key=api_key)
        except Exception as e:
            raise LLMAuthError(f"OpenAI client setup failed: {e}") from e

    def _with_system(self, messages: list[dict], system: str | None) -> list[dict]:
        full_messages = []
        if system:
            full_messages.append({"role": "system", "content": system})
        full_messages.extend(messages)
        return full_messages

    def generate(
        self, messages: list[dict], system: str | None = None, max_tokens: int = 2000
    ) -> str:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                max_tokens=max_tokens,
                messages=self._with_system(messages, system),
            )
            return response.choices[0].message.content
        except Exception as e:
            _handle_openai_error(e)

    def generate_with_tools(
        self,
        messages: list[dict],
        tools: list[ToolDefinition],
        system: str | None = None,
        max_tokens: int = 2000,
        tool_choice: str = "auto",
    ) -> GenerateResponse:
        tool_defs = [
            {
                "type": "function",
                "function": {
                    "name": t.name,
                    "description": t.description,
                    "parameters": t.input_schema,
                },
            }
            for t in tools
        ]
        if tool_choice == "required" and len(tools) == 1:
            tc = {"type": "function", "function": {"name": tools[0].name}}
        else:
            tc = tool_choice if tool_choice in ("auto", "required", "none") else "auto"

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                max_tokens=max_tokens,
                messages=self._with_system(messages, system),
                tools=tool_defs,
                tool_choice=tc,
            )
        except Exception as e:
            _handle_openai_error(e)

        choice = response.choices[0]
        message = choice.message

        tool_calls = []
        for tc_obj in message.tool_calls or []:
            try:
                arguments = json.loads(tc_obj.function.arguments)
            except json.JSONDecodeError as e:
                raise StructuredOutputError(f"OpenAI returned invalid tool arguments: {e}") from e
            tool_calls.append(ToolCall(id=tc_obj.id, name=tc_obj.function.name, arguments=arguments))

        if choice.finish_reason == "tool_calls":
            finish = "tool_calls"
        elif choice.finish_reason == "length":
            finish = "max_tokens"
        else:
            finish = "stop"

        return GenerateResponse(content=message.content, tool_calls=tool_calls, finish_reason=finish)
