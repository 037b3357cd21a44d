from __future__ import annotations
import queue
from typing import Iterator, Optional, TypeVar

T = TypeVar("T")


def drain(channel: "queue.Queue[T]", limit: Optional[int] = None) -> Iterator[T]:
    """Yield whatever is queued right now, in send order, without blocking."""
    taken = 0
    while limit is None or taken < limit:
        try:
            item = channel.get_nowait()
        except queue.Empty:
            return
        taken += 1
        yield item
