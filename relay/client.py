"""
Upstream generative-text client.

The relay talks to the model in a two-party history ("user" / "model").
OpenAIChatClient translates that onto an OpenAI-compatible chat-completions
endpoint; by default Gemini's, so the same `openai` SDK serves both.

The client is built once by the service lifespan and handed to the relay.
"""

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Literal, Protocol

from openai import AsyncOpenAI

DEFAULT_MODEL    = "gemini-2.0-flash"
DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Turn:
    role: Literal["user", "model"]
    text: str


class Fragments(Protocol):
    def __aiter__(self) -> "Fragments": ...
    async def __anext__(self) -> str: ...
    async def aclose(self) -> None: ...


class GenerativeClient(Protocol):
    async def start_stream(self, history: list[Turn], message: str) -> Fragments:
        """Send `message` after `history`; return the reply as text fragments."""
        ...


_ROLE_MAP = {"user": "user", "model": "assistant"}


def to_openai_messages(history: list[Turn], message: str) -> list[dict[str, str]]:
    messages = [{"role": _ROLE_MAP[t.role], "content": t.text} for t in history]
    messages.append({"role": "user", "content": message})
    return messages


class FragmentStream:
    """
    Text fragments of one upstream reply.

    `aclose` releases the upstream response whether or not iteration has
    started, and may be called more than once.
    """

    def __init__(self, stream: AsyncIterator) -> None:
        self._stream = stream
        self._chunks = aiter(stream)
        self.closed = False

    def __aiter__(self) -> "FragmentStream":
        return self

    async def __anext__(self) -> str:
        while not self.closed:
            try:
                chunk = await anext(self._chunks)
            except StopAsyncIteration:
                await self.aclose()
                break
            if not chunk.choices:
                continue
            text = chunk.choices[0].delta.content
            if text:
                return text
        raise StopAsyncIteration

    async def aclose(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self._stream.close()
        log.debug("Upstream stream closed.")


class OpenAIChatClient:
    def __init__(self, client: AsyncOpenAI, model: str = DEFAULT_MODEL):
        self._client = client
        self.model   = model

    @classmethod
    def create(cls, api_key: str, base_url: str = DEFAULT_BASE_URL, model: str = DEFAULT_MODEL) -> "OpenAIChatClient":
        return cls(AsyncOpenAI(api_key=api_key, base_url=base_url), model=model)

    async def start_stream(self, history: list[Turn], message: str) -> FragmentStream:
        # The request itself is issued here, so connection and auth errors
        # surface before the caller starts its response.
        stream = await self._client.chat.completions.create(
            model=self.model,
            messages=to_openai_messages(history, message),
            stream=True,
        )
        return FragmentStream(stream)
