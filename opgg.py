from __future__ import annotations
import json
import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import requests

from catalog import canonical_position, position_slug
from errors import RemoteFailure
from model import CounterCache, CounterDisplay, CounterEntry, HarvestDone, HarvestProgress
from settings import load_settings
from valuetree import has_fields, parse_rsc_push_data

logger = logging.getLogger(__name__)

OPGG_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
OPGG_BASE = "https://www.op.gg"
CHAMPION_LIST_URL = f"{OPGG_BASE}/zh-cn/lol/champions?position=all&region=global"

DEFAULT_CONCURRENCY = 10
PAGE_TIMEOUT = 8
RETRY_DELAY = 0.5

ProgressCallback = Callable[[int, int, str], None]

CHAMPION_ROW = has_fields("key", "name", "positionName")
COUNTER_ROW = has_fields("win_rate", "champion")


@dataclass(frozen=True)
class ChampPosEntry:
    key: str
    name: str
    position: str

    @property
    def label(self) -> str:
        return f"{self.name}({self.position})"


def counter_key(slug: str, position: str) -> str:
    return f"{slug}:{position}" if position else slug


def opgg_session() -> requests.Session:
    s = requests.Session()
    s.headers.update({"User-Agent": OPGG_UA})
    return s


def default_data_path() -> Path:
    return load_settings().cache_path()


# -----------------------
# Local store
# -----------------------
def load_local_data(path: Optional[Path] = None) -> CounterCache:
    path = Path(path) if path else default_data_path()
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return CounterCache()
    except (OSError, ValueError) as e:
        logger.warning("could not read %s, starting empty: %s", path, e)
        return CounterCache()
    return CounterCache.from_dict(raw)


def save_local_data(cache: CounterCache, path: Optional[Path] = None) -> bool:
    path = Path(path) if path else default_data_path()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(cache.to_dict(), ensure_ascii=False), encoding="utf-8")
    except OSError as e:
        logger.warning("could not persist counter cache to %s: %s", path, e)
        return False
    return True


# -----------------------
# Scraping
# -----------------------
def fetch_champion_position_list(session: requests.Session) -> Tuple[List[ChampPosEntry], Dict[str, str]]:
    try:
        r = session.get(CHAMPION_LIST_URL, timeout=PAGE_TIMEOUT)
        r.raise_for_status()
    except requests.RequestException as e:
        raise RemoteFailure(f"champion list: {e}") from e

    rows = parse_rsc_push_data(r.text, CHAMPION_ROW) or []

    entries: List[ChampPosEntry] = []
    names: Dict[str, str] = {}
    for item in rows:
        if not isinstance(item, dict):
            continue
        key = str(item.get("key") or "")
        name = str(item.get("name") or "")
        pos = str(item.get("positionName") or "")
        if key and name and pos:
            entries.append(ChampPosEntry(key=key, name=name, position=pos))
            names.setdefault(key, name)
    return entries, names


def counters_url(slug: str, position: str) -> str:
    pos = position_slug(position)
    if pos:
        return f"{OPGG_BASE}/champions/{slug}/counters/{pos}?region=global&tier=emerald_plus"
    return f"{OPGG_BASE}/champions/{slug}/counters?region=global&tier=emerald_plus"


def _get_page(session: requests.Session, url: str, attempts: int = 2) -> str:
    for attempt in range(attempts):
        try:
            r = session.get(url, timeout=PAGE_TIMEOUT)
            r.raise_for_status()
            return r.text
        except requests.RequestException as e:
            if attempt == attempts - 1:
                raise RemoteFailure(f"{url}: {e}") from e
            logger.debug("retrying %s after: %s", url, e)
            time.sleep(RETRY_DELAY)
    return ""


def parse_counter_rows(rows: List[dict]) -> List[CounterEntry]:
    out = []
    for r in rows:
        if not isinstance(r, dict):
            continue
        champ = r.get("champion")
        key = str(champ.get("key") or "") if isinstance(champ, dict) else ""
        try:
            win_rate = float(r.get("win_rate") or 0.0)
        except (TypeError, ValueError):
            win_rate = 0.0
        try:
            games = int(r.get("play") or 0)
        except (TypeError, ValueError):
            games = 0
        out.append(CounterEntry(key=key, win_rate=win_rate, games=games))
    return out


def fetch_counters(session: requests.Session, slug: str, position: str) -> List[CounterEntry]:
    """Counters for one champion/position; empty when the page has no dataset."""
    html = _get_page(session, counters_url(slug, position))
    rows = parse_rsc_push_data(html, COUNTER_ROW)
    if rows is None:
        logger.debug("no counter dataset for %s", counter_key(slug, position))
        return []
    return parse_counter_rows(rows)


def fetch_all_counters(
    progress: Optional[ProgressCallback] = None,
    session: Optional[requests.Session] = None,
    concurrency: int = DEFAULT_CONCURRENCY,
    store_path: Optional[Path] = None,
    previous: Optional[CounterCache] = None,
    fetch: Callable[[requests.Session, str, str], List[CounterEntry]] = fetch_counters,
) -> CounterCache:
    """
    Full harvest: champion list, then one counters page per champion and
    position with at most `concurrency` pages in flight. Raises
    RemoteFailure when the champion list cannot be fetched.

    The result replaces the stored cache. Keys from `previous` are carried
    over only when it is passed in.
    """
    session = session or opgg_session()

    entries, names = fetch_champion_position_list(session)
    if not entries:
        raise RemoteFailure("champion list is empty")

    total = len(entries)
    counters: Dict[str, List[CounterEntry]] = {}
    done = 0
    lock = threading.Lock()

    def work(entry: ChampPosEntry) -> None:
        nonlocal done
        try:
            data = fetch(session, entry.key, entry.position)
        except RemoteFailure as e:
            logger.info("counters for %s failed: %s", entry.label, e)
            data = []
        with lock:
            if data:
                counters[counter_key(entry.key, entry.position)] = data
            done += 1
            d = done
        if progress:
            progress(d, total, entry.label)

    logger.info("harvesting %d champion/position pages", total)
    with ThreadPoolExecutor(max_workers=max(1, concurrency), thread_name_prefix="opgg") as pool:
        for fut in [pool.submit(work, e) for e in entries]:
            fut.result()

    if previous is not None:
        for k, v in previous.counters.items():
            counters.setdefault(k, v)
        names = {**previous.champions, **names}

    cache = CounterCache(champions=names, counters=counters, updated_at=time.time(), total_entries=total)
    save_local_data(cache, store_path)
    logger.info("harvest finished: %d/%d keys populated", len(counters), total)

    if progress:
        progress(total, total, "done")
    return cache


# -----------------------
# Read path
# -----------------------
def get_counters_for_champion(cache: CounterCache, slug: str, lcu_position: str) -> List[CounterDisplay]:
    if not slug:
        return []

    rows = cache.counters.get(counter_key(slug, canonical_position(lcu_position)))
    if rows is None:
        # any position for this champion
        for k, v in cache.counters.items():
            if k == slug or k.startswith(f"{slug}:"):
                rows = v
                break
    if rows is None:
        return []

    return [
        CounterDisplay(name=cache.champions.get(c.key, c.key), key=c.key, win_rate=c.win_rate, games=c.games)
        for c in rows
    ]


def spawn_harvest(
    channel: "queue.Queue",
    store_path: Optional[Path] = None,
    previous: Optional[CounterCache] = None,
) -> threading.Thread:
    """
    Run fetch_all_counters on a worker thread, reporting HarvestProgress
    messages and one final HarvestDone on `channel`. Callers must not start
    a second harvest while one is running.
    """

    def progress(done: int, total: int, label: str) -> None:
        channel.put(HarvestProgress(done, total, label))

    def work():
        try:
            cache = fetch_all_counters(progress, store_path=store_path, previous=previous)
        except RemoteFailure as e:
            logger.warning("harvest failed: %s", e)
            channel.put(HarvestDone(error=str(e)))
            return
        channel.put(HarvestDone(cache=cache))

    t = threading.Thread(target=work, name="opgg-harvest", daemon=True)
    t.start()
    return t
