import asyncio
import unittest
from types import SimpleNamespace

from artisan_buddy.providers.openai_provider import OpenAIProvider, _to_openai_messages


class ToOpenAIMessagesTests(unittest.TestCase):
    def test_system_prompt_becomes_system_message(self) -> None:
        result = _to_openai_messages("You are Artisan Buddy.", [])
        self.assertEqual([{"role": "system", "content": "You are Artisan Buddy."}], result)

    def test_user_string_content(self) -> None:
        result = _to_openai_messages("", [{"role": "user", "content": "hello"}])
        self.assertEqual([{"role": "user", "content": "hello"}], result)

    def test_text_blocks_are_joined(self) -> None:
        result = _to_openai_messages(
            "",
            [
                {
                    "role": "assistant",
                    "content": [
                        {"type": "text", "text": "line1"},
                        {"type": "image", "source": {}},
                        {"type": "text", "text": "line2"},
                    ],
                }
            ],
        )
        self.assertEqual([{"role": "assistant", "content": "line1\nline2"}], result)


class _FakeStream:
    def __init__(self, chunks):
        self._chunks = chunks

    def __aiter__(self):
        self._iter = iter(self._chunks)
        return self

    async def __anext__(self):
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration


class _FakeCompletions:
    def __init__(self, response=None, chunks=None):
        self._response = response
        self._chunks = chunks
        self.last_kwargs: dict | None = None

    async def create(self, **kwargs):
        self.last_kwargs = kwargs
        if kwargs.get("stream"):
            return _FakeStream(self._chunks)
        return self._response


class _FakeClient:
    def __init__(self, response=None, chunks=None):
        self.chat = SimpleNamespace(completions=_FakeCompletions(response, chunks))


class OpenAIProviderTests(unittest.TestCase):
    def _provider(self, client: _FakeClient) -> OpenAIProvider:
        provider = OpenAIProvider.__new__(OpenAIProvider)
        provider._client = client
        return provider

    def test_create_message_returns_choice_text(self) -> None:
        response = SimpleNamespace(
            choices=[SimpleNamespace(finish_reason="stop", message=SimpleNamespace(content="Namaste!"))]
        )
        client = _FakeClient(response=response)

        text = asyncio.run(
            self._provider(client).create_message(
                "gpt-4o", 100, 0.5, [{"role": "user", "content": "hi"}], system_prompt="sys"
            )
        )

        self.assertEqual("Namaste!", text)
        kwargs = client.chat.completions.last_kwargs
        self.assertEqual("gpt-4o", kwargs["model"])
        self.assertEqual("system", kwargs["messages"][0]["role"])

    def test_create_message_handles_null_content(self) -> None:
        response = SimpleNamespace(choices=[SimpleNamespace(finish_reason="length", message=SimpleNamespace(content=None))])
        text = asyncio.run(self._provider(_FakeClient(response=response)).create_message("m", 1, 0, []))
        self.assertEqual("", text)

    def test_stream_message_yields_content_deltas(self) -> None:
        chunks = [
            SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content="Hello"))]),
            SimpleNamespace(choices=[]),
            SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=None))]),
            SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=" world"))]),
        ]
        provider = self._provider(_FakeClient(chunks=chunks))

        async def collect() -> list[str]:
            return [c async for c in provider.stream_message("m", 10, 0, [{"role": "user", "content": "hi"}])]

        self.assertEqual(["Hello", " world"], asyncio.run(collect()))
