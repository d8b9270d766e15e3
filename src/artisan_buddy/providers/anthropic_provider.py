from collections.abc import AsyncIterator

import anthropic
from loguru import logger
from tenacity import retry

from artisan_buddy.providers.common import default_retry_kwargs, split_system_messages

_RETRYABLE = (
    anthropic.RateLimitError,
    anthropic.APIConnectionError,
    anthropic.APITimeoutError,
)


class AnthropicProvider:
    def __init__(self, api_key: str):
        self._client = anthropic.AsyncAnthropic(api_key=api_key)

    @retry(**default_retry_kwargs(_RETRYABLE))
    async def create_message(
        self,
        model: str,
        max_tokens: int,
        temperature: float,
        messages: list[dict],
        *,
        system_prompt: str = "",
    ) -> str:
        inline_system, chat_messages = split_system_messages(messages)
        system = "\n\n".join(p for p in (system_prompt, inline_system) if p)
        logger.debug(f"API request: model={model}, max_tokens={max_tokens}, messages={len(chat_messages)}")
        kwargs: dict = dict(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=chat_messages,
        )
        if system:
            kwargs["system"] = system
        response = await self._client.messages.create(**kwargs)
        usage = response.usage
        logger.debug(
            f"API response: stop_reason={response.stop_reason}, "
            f"input_tokens={usage.input_tokens}, output_tokens={usage.output_tokens}"
        )
        return "".join(block.text for block in response.content if block.type == "text")

    async def stream_message(
        self,
        model: str,
        max_tokens: int,
        temperature: float,
        messages: list[dict],
        *,
        system_prompt: str = "",
    ) -> AsyncIterator[str]:
        inline_system, chat_messages = split_system_messages(messages)
        system = "\n\n".join(p for p in (system_prompt, inline_system) if p)
        logger.debug(f"Streaming API request: model={model}, messages={len(chat_messages)}")
        kwargs: dict = dict(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=chat_messages,
        )
        if system:
            kwargs["system"] = system
        async with self._client.messages.stream(**kwargs) as stream:
            async for event in stream:
                if event.type == "content_block_delta" and event.delta.type == "text_delta":
                    yield event.delta.text
            response = await stream.get_final_message()
        usage = response.usage
        logger.debug(
            f"Streaming API response: stop_reason={response.stop_reason}, "
            f"input_tokens={usage.input_tokens}, output_tokens={usage.output_tokens}"
        )
