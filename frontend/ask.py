"""
Console client for the assistant.

Posts the question to POST http://localhost:8000/chat and prints the reply
as it streams in.

    python frontend/ask.py "Which New York programs offer LOR?"
"""

import sys
from collections.abc import Iterable
from pathlib import Path

import requests

sys.path.insert(0, str(Path(__file__).parent.parent))

from relay.chat import ReplyAccumulator, RelayState, parse_event

API_URL = "http://localhost:8000/chat"
APOLOGY = "Sorry, I encountered an error. Please try again."


def read_stream(lines: Iterable[str], reply: ReplyAccumulator, echo=None) -> ReplyAccumulator:
    """Feed SSE lines into `reply`; stops at [DONE] or the first error event."""
    reply.advance(RelayState.STREAMING)
    for line in lines:
        event = parse_event(line)
        if event is None:
            continue
        if event == "[DONE]":
            reply.advance(RelayState.COMPLETED)
            break
        if "error" in event:
            reply.advance(RelayState.FAILED)
            break
        text = event.get("text")
        if text:
            reply.add(text)
            if echo:
                echo(text)
    return reply


def ask(question: str, url: str = API_URL) -> str:
    payload = {"messages": [{"role": "user", "content": question}]}
    reply = ReplyAccumulator()
    reply.advance(RelayState.FORWARDING)
    with requests.post(url, json=payload, stream=True, timeout=(5, 90)) as resp:
        resp.raise_for_status()
        read_stream(
            resp.iter_lines(decode_unicode=True),
            reply,
            echo=lambda t: print(t, end="", flush=True),
        )
    print()
    if reply.state is not RelayState.COMPLETED:
        print(APOLOGY)
    return reply.text


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print('usage: python frontend/ask.py "your question"')
        sys.exit(2)
    try:
        ask(" ".join(sys.argv[1:]))
    except requests.exceptions.ConnectionError:
        print("Cannot reach the API. Start it with: python app/app.py")
        sys.exit(1)
    except requests.exceptions.HTTPError as exc:
        print(f"API error: {exc}")
        sys.exit(1)
