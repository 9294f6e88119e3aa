"""
Chat relay: conversation in, server-sent events out.

Per request:
    Idle → Validating → Forwarding → Streaming → Completed | Failed

    1. Validating: no upstream client means no credential: ConfigurationError.
    2. Forwarding: persona turn + acknowledgement + prior messages become the
                     upstream history; the newest message is sent as the new turn.
    3. Streaming:  each fragment is emitted as  data: {"text": "..."}
                     in arrival order, then  data: [DONE]

An error while streaming becomes one  data: {"error": "..."}  event; fragments
already sent stay sent. The whole request is bounded by `max_duration`.
"""

import asyncio
import json
import logging
import time
from collections.abc import AsyncGenerator, Sequence
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from relay.client import Fragments, GenerativeClient, Turn
from relay.prompts import ACKNOWLEDGEMENT, SYSTEM_PROMPT

DONE_EVENT    = "data: [DONE]\n\n"
GENERIC_ERROR = "Internal server error"
MAX_DURATION  = 60.0   # seconds

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    time: str | None = None   # display timestamp, not sent upstream


class ChatRequest(BaseModel):
    messages: list[ChatMessage] = Field(min_length=1)


class ConfigurationError(RuntimeError):
    """The upstream credential is missing."""


# ---------------------------------------------------------------------------
# Per-request state
# ---------------------------------------------------------------------------

class RelayState(str, Enum):
    IDLE       = "idle"
    VALIDATING = "validating"
    FORWARDING = "forwarding"
    STREAMING  = "streaming"
    COMPLETED  = "completed"
    FAILED     = "failed"


_ORDER = list(RelayState)
_TERMINAL = {RelayState.COMPLETED, RelayState.FAILED}


class ReplyAccumulator:
    """Grows the assistant reply one fragment at a time and tracks relay state."""

    def __init__(self) -> None:
        self.state = RelayState.IDLE
        self.fragments: list[str] = []
        self.started = time.perf_counter()

    def advance(self, state: RelayState) -> None:
        if self.state in _TERMINAL or _ORDER.index(state) <= _ORDER.index(self.state):
            raise RuntimeError(f"Illegal relay transition {self.state.value} → {state.value}")
        self.state = state

    def add(self, fragment: str) -> None:
        self.fragments.append(fragment)

    @property
    def text(self) -> str:
        return "".join(self.fragments)

    @property
    def elapsed(self) -> float:
        return time.perf_counter() - self.started


# ---------------------------------------------------------------------------
# SSE framing
# ---------------------------------------------------------------------------

def format_event(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def parse_event(line: str) -> dict[str, Any] | str | None:
    """
    Decode one SSE line.

    Returns the JSON payload, the string "[DONE]", or None for blank,
    non-data or undecodable lines.
    """
    if not line.startswith("data: "):
        return None
    body = line[len("data: "):].strip()
    if body == "[DONE]":
        return body
    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        return None
    return payload if isinstance(payload, dict) else None


# ---------------------------------------------------------------------------
# Relay
# ---------------------------------------------------------------------------

def build_history(messages: Sequence[ChatMessage]) -> list[Turn]:
    """Persona preamble followed by every message except the newest one."""
    history = [Turn("user", SYSTEM_PROMPT), Turn("model", ACKNOWLEDGEMENT)]
    for m in messages[:-1]:
        history.append(Turn("user" if m.role == "user" else "model", m.content))
    return history


class ChatRelay:
    def __init__(self, client: GenerativeClient | None, max_duration: float = MAX_DURATION):
        self.client       = client
        self.max_duration = max_duration

    @property
    def configured(self) -> bool:
        return self.client is not None

    async def open(
        self,
        messages: Sequence[ChatMessage],
        reply: ReplyAccumulator,
    ) -> Fragments:
        """
        Validate and start the upstream stream.

        Raises ConfigurationError without a client; any upstream error raised
        here propagates before a single event has been produced.
        """
        reply.advance(RelayState.VALIDATING)
        if self.client is None:
            reply.advance(RelayState.FAILED)
            raise ConfigurationError("API key not configured")

        reply.advance(RelayState.FORWARDING)
        try:
            return await asyncio.wait_for(
                self.client.start_stream(build_history(messages), messages[-1].content),
                timeout=self.max_duration,
            )
        except Exception:
            reply.advance(RelayState.FAILED)
            raise

    def events(self, fragments: Fragments, reply: ReplyAccumulator) -> "RelayStream":
        """SSE frames for one reply; see RelayStream."""
        return RelayStream(self._frames(fragments, reply), fragments)

    async def _frames(
        self,
        fragments: Fragments,
        reply: ReplyAccumulator,
    ) -> AsyncGenerator[str, None]:
        """Relay fragments as SSE frames until upstream ends, fails or runs out of time."""
        reply.advance(RelayState.STREAMING)
        deadline = reply.started + self.max_duration
        failed = False
        try:
            while True:
                remaining = deadline - time.perf_counter()
                if remaining <= 0:
                    raise TimeoutError(f"chat exceeded {self.max_duration:.0f}s")
                try:
                    fragment = await asyncio.wait_for(anext(fragments), timeout=remaining)
                except StopAsyncIteration:
                    break
                if not fragment:
                    continue
                reply.add(fragment)
                yield format_event({"text": fragment})
        except Exception:
            log.exception("Chat stream failed after %d fragments", len(reply.fragments))
            failed = True
        finally:
            # Also runs when the caller disconnects and the response is cancelled.
            await fragments.aclose()

        reply.advance(RelayState.FAILED if failed else RelayState.COMPLETED)
        log.info(
            "chat  fragments=%d  chars=%d  state=%s  %.2fs",
            len(reply.fragments), len(reply.text), reply.state.value, reply.elapsed,
        )
        yield format_event({"error": GENERIC_ERROR}) if failed else DONE_EVENT


class RelayStream:
    """
    Async iterator of SSE frames for one reply.

    Closing it always releases the upstream stream, including when the
    caller went away before the first frame was requested.
    """

    def __init__(self, frames: AsyncGenerator[str, None], fragments: Fragments) -> None:
        self._frames    = frames
        self._fragments = fragments

    def __aiter__(self) -> "RelayStream":
        return self

    async def __anext__(self) -> str:
        return await anext(self._frames)

    async def aclose(self) -> None:
        await self._frames.aclose()
        await self._fragments.aclose()
