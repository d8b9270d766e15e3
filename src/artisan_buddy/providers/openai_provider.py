from collections.abc import AsyncIterator

import openai
from loguru import logger
from tenacity import retry

from artisan_buddy.providers.common import default_retry_kwargs

_RETRYABLE = (
    openai.RateLimitError,
    openai.APIConnectionError,
    openai.APITimeoutError,
)


def _to_openai_messages(system_prompt: str, messages: list[dict]) -> list[dict]:
    """Flatten internal messages into OpenAI chat format."""
    out: list[dict] = []
    if system_prompt:
        out.append({"role": "system", "content": system_prompt})

    for msg in messages:
        role = msg.get("role", "user")
        content = msg.get("content", "")
        if isinstance(content, list):
            content = "\n".join(
                block.get("text", "") if isinstance(block, dict) else str(block)
                for block in content
                if not isinstance(block, dict) or block.get("type") == "text"
            )
        out.append({"role": role, "content": str(content)})
    return out


class OpenAIProvider:
    def __init__(self, api_key: str):
        self._client = openai.AsyncOpenAI(api_key=api_key)

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
        oai_messages = _to_openai_messages(system_prompt, messages)
        logger.debug(f"API request: model={model}, max_tokens={max_tokens}, messages={len(oai_messages)}")
        response = await self._client.chat.completions.create(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=oai_messages,
        )
        choice = response.choices[0]
        text = choice.message.content or ""
        logger.debug(f"API response: finish_reason={choice.finish_reason}, len={len(text)}")
        return text

    async def stream_message(
        self,
        model: str,
        max_tokens: int,
        temperature: float,
        messages: list[dict],
        *,
        system_prompt: str = "",
    ) -> AsyncIterator[str]:
        oai_messages = _to_openai_messages(system_prompt, messages)
        logger.debug(f"Streaming API request: model={model}, messages={len(oai_messages)}")
        stream = await self._client.chat.completions.create(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=oai_messages,
            stream=True,
        )
        async for chunk in stream:
            choice = chunk.choices[0] if chunk.choices else None
            if choice is None or choice.delta is None:
                continue
            if choice.delta.content:
                yield choice.delta.content
