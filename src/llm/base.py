"""Base LLM provider abstraction."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


class LLMError(Exception):
    """Base LLM error."""


class LLMRateLimitError(LLMError):
    """Rate limit hit."""


class LLMAuthError(LLMError):
    """Authentication failure."""


class StructuredOutputError(LLMError):
    """Model answered without the requested tool call, or with unusable arguments."""


@dataclass
class ToolDefinition:
    """Tool definition for LLM tool calling.

    Collaborator contracts (reduce_state, select_services, ...) are expressed
    as a single forced tool whose input schema is the response shape.
    """

    name: str
    description: str
    input_schema: dict  # JSON Schema


@dataclass
class ToolCall:
    """A tool call requested by the LLM."""

    id: str
    name: str
    arguments: dict


@dataclass
class GenerateResponse:
    """Response from generate_with_tools."""

    content: str | None
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: str = "stop"  # "stop" | "tool_calls" | "max_tokens"

    def arguments_for(self, tool_name: str) -> dict:
        """Arguments of the first call to ``tool_name``.

        Raises:
            StructuredOutputError: no such call, or arguments are not an object
        """
        for call in self.tool_calls:
            if call.name == tool_name:
                if not isinstance(call.arguments, dict):
                    raise StructuredOutputError(f"{tool_name}: arguments are not an object")
                return call.arguments
        raise StructuredOutputError(f"Model did not call {tool_name}")


class LLMProvider(ABC):
    """Abstract LLM provider interface."""

    provider_name: str = "base"

    @abstractmethod
    def generate(
        self, messages: list[dict], system: str | None = None, max_tokens: int = 2000
    ) -> str:
        """Generate a response from messages.

        Args:
            messages: List of {"role": ..., "content": ...} dicts
            system: Optional system prompt
            max_tokens: Max response tokens

        Returns:
            Generated text
        """
        ...

    @abstractmethod
    def generate_with_tools(
        self,
        messages: list[dict],
        tools: list[ToolDefinition],
        system: str | None = None,
        max_tokens: int = 2000,
        tool_choice: str = "auto",
    ) -> GenerateResponse:
        """Generate a response with tool-calling support.

        Args:
            messages: Conversation messages
            tools: Available tool definitions
            system: Optional system prompt
            max_tokens: Max response tokens
            tool_choice: "auto" or "required"

        Returns:
            GenerateResponse with content and/or tool_calls
        """
        ...
