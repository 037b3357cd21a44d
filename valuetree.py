"""
Shape-driven search over decoded JSON.

The stats site streams its page data as script-injected push frames
(``self.__next_f.push([1,"<id>:<json>"])``). Where a dataset sits inside
those frames changes between site releases, so instead of a fixed path we
look for a ``data`` array whose first element has the fields we need.
"""
from __future__ import annotations
import json
import logging
import re
from typing import Any, Callable, Iterator, List, Optional

logger = logging.getLogger(__name__)

Predicate = Callable[[dict], bool]

PUSH_MARKER = re.compile(r"self\.__next_f\.push\(\[")
PUSH_END = "])</script>"

DEFAULT_MAX_DEPTH = 5
MIN_FRAGMENT_LENGTH = 500


def has_fields(*names: str) -> Predicate:
    def predicate(obj: dict) -> bool:
        return all(n in obj for n in names)
    return predicate


def find_data_array(
    value: Any,
    predicate: Predicate,
    max_depth: int = DEFAULT_MAX_DEPTH,
    depth: int = 0,
) -> Optional[List[Any]]:
    """
    Depth-first search for a ``data`` field holding a non-empty list whose
    first element is an object matching `predicate`. Values nested deeper
    than `max_depth` are not inspected.
    """
    if depth > max_depth:
        return None

    if isinstance(value, dict):
        for key, child in value.items():
            if key == "data" and isinstance(child, list) and child:
                first = child[0]
                if isinstance(first, dict) and predicate(first):
                    return child
            found = find_data_array(child, predicate, max_depth, depth + 1)
            if found is not None:
                return found
    elif isinstance(value, list):
        for item in value:
            found = find_data_array(item, predicate, max_depth, depth + 1)
            if found is not None:
                return found
    return None


def extract_push_payloads(html: str, min_length: int = MIN_FRAGMENT_LENGTH) -> Iterator[Any]:
    """Yield every decodable JSON payload carried by the page's push frames."""
    for m in PUSH_MARKER.finditer(html or ""):
        rest = html[m.end():]
        close = rest.find(PUSH_END)
        if close < 0:
            continue
        fragment = rest[:close + 1]
        # short frames are flight-control noise, never datasets
        if len(fragment) < min_length:
            continue

        try:
            frame = json.loads("[" + fragment)
        except ValueError:
            continue
        if not isinstance(frame, list):
            continue

        for elem in frame:
            if not isinstance(elem, str):
                continue
            _, sep, body = elem.partition(":")
            if not sep:
                continue
            try:
                yield json.loads(body)
            except ValueError:
                continue


def parse_rsc_push_data(
    html: str,
    predicate: Predicate,
    max_depth: int = DEFAULT_MAX_DEPTH,
    min_length: int = MIN_FRAGMENT_LENGTH,
) -> Optional[List[Any]]:
    for payload in extract_push_payloads(html, min_length):
        found = find_data_array(payload, predicate, max_depth)
        if found is not None:
            return found
    return None
