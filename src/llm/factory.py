"""Provider construction for the ``llm`` config section (provider, api_key, model, cheap_model)."""

import os

from .base import LLMError, LLMProvider

# provider -> (API key env var, cheap-tier model); order is the auto-detect order
_PROVIDERS = {
    "claude": ("ANTHROPIC_API_KEY", "claude-haiku-4-20250514"),
    "openai": ("OPENAI_API_KEY", "gpt-4o-mini"),
}


def resolve_provider(provider: str | None = None, api_key: str | None = None) -> str:
    """Turn "auto" into a concrete provider name.

    An explicit key decides by prefix; otherwise the first provider with an
    API key in the environment wins.
    """
    if provider and provider != "auto":
        if provider not in _PROVIDERS:
            raise LLMError(f"Unknown provider: {provider}. Use: {', '.join(_PROVIDERS)}")
        return provider
    if api_key and api_key.startswith("sk-ant-"):
        return "claude"
    if api_key and api_key.startswith("sk-"):
        return "openai"
    for name, (env_var, _) in _PROVIDERS.items():
        if os.getenv(env_var):
            return name
    raise LLMError("No LLM API key found. Set ANTHROPIC_API_KEY or OPENAI_API_KEY")


def create_llm_provider(
    provider: str | None = None,
    api_key: str | None = None,
    model: str | None = None,
    client=None,
) -> LLMProvider:
    """Planning-tier provider used by the reducer, selector and edit interpreter.

    ``client`` is a pre-built SDK client; without one the key falls back to
    the provider's environment variable.
    """
    name = resolve_provider(provider, api_key)
    if client is None and not api_key:
        api_key = os.getenv(_PROVIDERS[name][0])

    if name == "claude":
        from .providers.claude import ClaudeProvider

        return ClaudeProvider(api_key=api_key, model=model, client=client)
    from .providers.openai import OpenAIProvider

    return OpenAIProvider(api_key=api_key, model=model, client=client)


def create_cheap_provider(
    provider: str | None = None,
    api_key: str | None = None,
    model: str | None = None,
    client=None,
) -> LLMProvider:
    """Cheap-tier provider for standby classification and itinerary wording."""
    name = resolve_provider(provider, api_key)
    return create_llm_provider(name, api_key=api_key, model=model or _PROVIDERS[name][1], client=client)
