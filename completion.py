"""
Streaming chat completions (OpenAI-compatible).

The response is a server-sent event stream: ``data: <json>`` lines, ``:``
comment lines, blank separators and a final ``data: [DONE]``. Reads arrive
in arbitrary chunks, so lines are reassembled in a buffer that persists
across reads.
"""
from __future__ import annotations
import codecs
import json
import logging
import queue
import threading
from typing import Iterable, Iterator, List, Optional, Tuple

import requests

from catalog import position_label
from errors import StreamFailure
from model import Chunk, Done, Error, StreamEvent

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"
MAX_COMPLETION_TOKENS = 4096
REQUEST_TIMEOUT = 60


class SseParser:
    """Incremental SSE parser. Feed raw bytes, get events back."""

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.full_text = ""
        self.finished = False

    def feed(self, data: bytes) -> List[StreamEvent]:
        if self.finished:
            return []
        self._buffer += self._decoder.decode(data)

        events: List[StreamEvent] = []
        while not self.finished:
            pos = self._buffer.find("\n")
            if pos < 0:
                break
            line = self._buffer[:pos].strip()
            self._buffer = self._buffer[pos + 1:]
            event = self._line(line)
            if event is not None:
                events.append(event)
        return events

    def finish(self) -> List[StreamEvent]:
        """End of stream. Flushes a trailing unterminated line, then Done."""
        if self.finished:
            return []
        tail = (self._buffer + self._decoder.decode(b"", final=True)).strip()
        self._buffer = ""
        events: List[StreamEvent] = []
        if tail:
            event = self._line(tail)
            if event is not None:
                events.append(event)
        if not self.finished:
            self.finished = True
            events.append(Done(self.full_text))
        return events

    def _line(self, line: str) -> Optional[StreamEvent]:
        if not line or line.startswith(":"):
            return None
        if not line.startswith(DATA_PREFIX):
            return None

        payload = line[len(DATA_PREFIX):].strip()
        if payload == DONE_SENTINEL:
            self.finished = True
            return Done(self.full_text)

        try:
            val = json.loads(payload)
        except ValueError:
            logger.debug("skipping undecodable SSE payload: %.80s", payload)
            return None

        content = _delta_content(val)
        if not content:
            return None
        self.full_text += content
        return Chunk(content)


def _delta_content(val) -> str:
    try:
        content = val["choices"][0]["delta"].get("content")
    except (KeyError, IndexError, TypeError, AttributeError):
        return ""
    return content if isinstance(content, str) else ""


def parse_stream(chunks: Iterable[bytes]) -> Iterator[StreamEvent]:
    parser = SseParser()
    for data in chunks:
        for event in parser.feed(data):
            yield event
        if parser.finished:
            return
    yield from parser.finish()


def _read_chunks(r: requests.Response) -> Iterator[bytes]:
    try:
        # chunk_size=None yields data as soon as it arrives
        yield from r.iter_content(chunk_size=None)
    except requests.RequestException as e:
        raise StreamFailure(f"stream read failed: {e}") from e


def stream_completion(
    endpoint: str,
    api_key: str,
    model: str,
    system_prompt: str,
    user_prompt: str,
    session: Optional[requests.Session] = None,
    timeout: int = REQUEST_TIMEOUT,
) -> Iterator[StreamEvent]:
    """
    Yields Chunk events as text arrives and exactly one terminal Done or
    Error event.
    """
    payload = {
        "model": model,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
        "max_completion_tokens": MAX_COMPLETION_TOKENS,
        "stream": True,
    }
    headers = {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {api_key}",
    }
    http = session or requests.Session()

    try:
        r = http.post(endpoint, json=payload, headers=headers, stream=True, timeout=timeout)
    except requests.RequestException as e:
        yield Error(f"request failed: {e}")
        return

    with r:
        if not r.ok:
            try:
                body = r.text
            except requests.RequestException as e:
                logger.debug("could not read error body: %s", e)
                yield Error(f"request failed ({r.status_code})")
                return
            yield Error(f"request failed ({r.status_code}): {body}")
            return
        try:
            yield from parse_stream(_read_chunks(r))
        except StreamFailure as e:
            logger.warning("completion stream broke: %s", e)
            yield Error(str(e))


# -----------------------
# Prompts
# -----------------------
SYSTEM_PROMPT = (
    "You are a high-elo League of Legends laning coach. Give concrete, "
    "matchup-specific advice: name exact items, and tie strengths and "
    "weaknesses to both the build and the play pattern. Be concise."
)


def build_matchup_prompts(my_champ: str, enemy_champ: str, position: str, win_rate: float) -> Tuple[str, str]:
    pos_text = position_label(position) or "an unknown lane"

    prompt = f"I am playing {my_champ} in {pos_text} against {enemy_champ}."
    if win_rate > 0:
        prompt += f"\nStatistically, {my_champ} has a {win_rate:.1f}% win rate against {enemy_champ}."
    prompt += (
        "\n\nBriefly cover:\n"
        "1. Starting items (first items + consumables)\n"
        "2. When I am ahead: power spikes, how to press, build path\n"
        "3. When I am behind: weak windows, how to survive, build path\n"
        "4. Core items in order\n"
        "5. Runes and summoner spells\n"
        "Keep it short and practical."
    )
    return SYSTEM_PROMPT, prompt


def run_completion(
    channel: "queue.Queue[StreamEvent]",
    endpoint: str,
    api_key: str,
    model: str,
    system_prompt: str,
    user_prompt: str,
    session: Optional[requests.Session] = None,
) -> threading.Thread:
    """Stream one completion on a worker thread, pushing events onto `channel`."""

    def work():
        for event in stream_completion(endpoint, api_key, model, system_prompt, user_prompt, session=session):
            channel.put(event)

    t = threading.Thread(target=work, name="completion", daemon=True)
    t.start()
    return t
