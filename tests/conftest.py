"""Shared fakes for the test suite.

``FakeTransport`` stands in for the OpenAI-compatible endpoint: each
call is recorded and answered by a handler (or popped from a queue of
scripted replies), so no test touches the network.
"""

from __future__ import annotations

import json
from typing import Callable, List, Optional, Union

import pytest  # type: ignore

from personarank.config import Settings
from personarank.errors import ProviderCallError
from personarank.rank.llm_providers import ChatTransport, Completion, CompletionClient
from personarank.store import InMemoryStore

Reply = Union[str, dict, Exception]


class FakeTransport(ChatTransport):
    def __init__(self, replies: Optional[List[Reply]] = None, handler: Optional[Callable] = None) -> None:
        self.replies = list(replies or [])
        self.handler = handler
        self.calls: List[dict] = []
        self.closed = False

    async def create(self, *, model, messages, api_key, base_url, temperature, max_tokens, json_mode):
        self.calls.append(
            {
                "model": model,
                "messages": messages,
                "api_key": api_key,
                "base_url": base_url,
                "temperature": temperature,
            }
        )
        reply = self.handler(model, messages) if self.handler else self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        text = reply if isinstance(reply, str) else json.dumps(reply)
        return Completion(text=text, model=model, input_tokens=100, output_tokens=50)

    async def aclose(self) -> None:
        self.closed = True

    @property
    def models(self) -> List[str]:
        return [call["model"] for call in self.calls]


def status_error(status: int, message: str = "boom") -> ProviderCallError:
    return ProviderCallError(message, status_code=status)


@pytest.fixture
def settings() -> Settings:
    return Settings(groq_api_key="groq-env", gemini_api_key="gemini-env", retry_delay_base=0.0)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def make_client(settings):
    def factory(replies: Optional[List[Reply]] = None, handler: Optional[Callable] = None):
        transport = FakeTransport(replies, handler)
        return CompletionClient(transport=transport, settings=settings), transport

    return factory
