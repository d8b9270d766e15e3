from collections.abc import AsyncIterator
from typing import Protocol, runtime_checkable


@runtime_checkable
class LLMProvider(Protocol):
    async def create_message(
        self,
        model: str,
        max_tokens: int,
        temperature: float,
        messages: list[dict],
        *,
        system_prompt: str = "",
    ) -> str:
        """Non-streaming completion. Returns the assistant text."""
        ...

    def stream_message(
        self,
        model: str,
        max_tokens: int,
        temperature: float,
        messages: list[dict],
        *,
        system_prompt: str = "",
    ) -> AsyncIterator[str]:
        """Yield assistant text deltas as they arrive."""
        ...


def create_provider(provider_name: str, api_key: str) -> LLMProvider:
    """Factory: create an LLMProvider by name."""
    name = provider_name.strip().lower()
    if name == "anthropic":
        from artisan_buddy.providers.anthropic_provider import AnthropicProvider
        return AnthropicProvider(api_key)
    if name == "openai":
        from artisan_buddy.providers.openai_provider import OpenAIProvider
        return OpenAIProvider(api_key)
    raise ValueError(f"Unknown provider: {provider_name!r}. Supported: 'anthropic', 'openai'")
