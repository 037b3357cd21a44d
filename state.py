from __future__ import annotations
import time
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from model import (
    CounterCache,
    CounterDisplay,
    Chunk,
    Done,
    EnemyRef,
    Error,
    HarvestDone,
    HarvestProgress,
    HistoryResult,
    MatchEntry,
    MatchSnapshot,
    PlayerRef,
    StreamEvent,
)
from opgg import get_counters_for_champion

COUNTER_SORT_COLUMNS = ("name", "win_rate", "games")


def sort_counter_rows(rows: List[CounterDisplay], column: str = "win_rate", descending: bool = True) -> List[CounterDisplay]:
    if column == "name":
        return sorted(rows, key=lambda r: r.name, reverse=descending)
    if column == "games":
        return sorted(rows, key=lambda r: r.games, reverse=descending)
    return sorted(rows, key=lambda r: r.win_rate, reverse=descending)


class AppState:
    """
    Everything the UI shows, updated only from the UI thread by applying
    messages drained from the background channels.
    """

    def __init__(self, counter_cache: Optional[CounterCache] = None):
        # match
        self.connected = False
        self.error = ""
        self.enemies: List[EnemyRef] = []
        self.teammates: List[PlayerRef] = []
        self.my_position = ""
        self.lane_opponent_id: Optional[int] = None
        self.locale_tag = "unknown"
        self.credential = None
        self.last_update_time = ""

        # catalog (arrives once)
        self.slug_to_id: Dict[str, int] = {}
        self.name_to_id: Dict[str, int] = {}
        self.champion_names: Dict[int, str] = {}
        self.icons: Dict[int, Tuple[bytes, int, int]] = {}

        # counters
        self.counter_cache = counter_cache or CounterCache()
        self.counter_slug = ""
        self.counter_name = ""
        self.counter_data: List[CounterDisplay] = []
        self.counter_error = ""
        self.counter_position = ""
        self.counter_sort_col = "win_rate"
        self.counter_sort_desc = True
        self.updating = False
        self.progress_text = ""

        # AI
        self.ai_text = ""
        self.ai_title = ""
        self.ai_loading = False
        self.ai_cache_key = ""
        self.ai_cache: Dict[str, str] = {}

        # match history
        self.history: List[MatchEntry] = []
        self.history_name = ""
        self.history_loading = False
        self.history_cache: Dict[str, List[MatchEntry]] = {}

    # -----------------------
    # Poller snapshots
    # -----------------------
    def apply_snapshot(self, snap: MatchSnapshot) -> None:
        self.connected = snap.connected
        # empty lists mean "nothing new"; keep what we have
        if snap.enemies:
            self.enemies = list(snap.enemies)
        if snap.teammates:
            self.teammates = list(snap.teammates)
        self.error = snap.error
        if snap.my_position:
            self.my_position = snap.my_position
        self.lane_opponent_id = snap.lane_opponent_id
        self.locale_tag = snap.locale_tag
        if snap.credential is not None:
            self.credential = snap.credential
        self.last_update_time = datetime.now().strftime("%H:%M:%S")

        delta = snap.champion_catalog
        if delta is not None:
            self.slug_to_id = dict(delta.slug_to_id)
            self.name_to_id = dict(delta.name_to_id)
            self.champion_names = dict(delta.id_to_name)
            for cid, icon in delta.icons.items():
                self.icons.setdefault(cid, icon)

    def lane_enemy(self) -> Optional[EnemyRef]:
        for e in self.enemies:
            if e.champion_id == self.lane_opponent_id:
                return e
        return None

    # -----------------------
    # Counter data
    # -----------------------
    def begin_harvest(self) -> bool:
        """False when a harvest is already running."""
        if self.updating:
            return False
        self.updating = True
        self.progress_text = "Fetching champion list..."
        return True

    def apply_harvest_message(self, msg) -> None:
        if isinstance(msg, HarvestProgress):
            self.progress_text = f"Updating: {msg.done}/{msg.total} - {msg.label}"
        elif isinstance(msg, HarvestDone):
            self.updating = False
            if msg.cache is None:
                self.progress_text = f"Update failed: {msg.error}"
                return
            self.counter_cache = msg.cache
            self.progress_text = ""
            if self.counter_slug:
                self.load_counter_data(self.counter_slug, self.counter_name, self.counter_position or self.my_position)

    def load_counter_data(self, slug: str, name: str, position: str) -> None:
        self.counter_slug = slug
        self.counter_name = name
        self.counter_position = position
        rows = get_counters_for_champion(self.counter_cache, slug, position)
        self.counter_data = sort_counter_rows(rows, self.counter_sort_col, self.counter_sort_desc)
        self.counter_error = "" if self.counter_data else "No counter data yet, run a full update"

    def set_counter_position(self, position: str) -> None:
        """Re-query the shown champion for another lane."""
        if self.counter_slug:
            self.load_counter_data(self.counter_slug, self.counter_name, position)

    def set_counter_sort(self, column: str) -> None:
        """Same column flips the order; a new column starts descending."""
        if column not in COUNTER_SORT_COLUMNS:
            return
        if column == self.counter_sort_col:
            self.counter_sort_desc = not self.counter_sort_desc
        else:
            self.counter_sort_col = column
            self.counter_sort_desc = True
        self.counter_data = sort_counter_rows(self.counter_data, self.counter_sort_col, self.counter_sort_desc)

    def data_time_text(self) -> str:
        cache = self.counter_cache
        if cache.updated_at <= 0:
            return "No local data, run a full update"
        stamp = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(cache.updated_at))
        return f"Data: {len(cache.counters)}/{cache.total_entries} | Updated: {stamp}"

    # -----------------------
    # AI stream
    # -----------------------
    def begin_analysis(self, cache_key: str, title: str = "AI analysis") -> bool:
        """
        Returns False when the answer is already cached (and shown);
        True when the caller should start a request.
        """
        cached = self.ai_cache.get(cache_key)
        if cached is not None:
            self.ai_title = f"{title} (cached)"
            self.ai_text = cached
            return False
        self.ai_loading = True
        self.ai_title = title
        self.ai_text = ""
        self.ai_cache_key = cache_key
        return True

    def apply_stream_event(self, event: StreamEvent) -> None:
        if isinstance(event, Chunk):
            self.ai_text += event.text
        elif isinstance(event, Done):
            self.ai_loading = False
            if self.ai_cache_key:
                self.ai_cache[self.ai_cache_key] = event.full_text
        elif isinstance(event, Error):
            self.ai_loading = False
            self.ai_text += f"\n\nError: {event.message}"

    # -----------------------
    # Match history
    # -----------------------
    def apply_history(self, result: HistoryResult) -> None:
        self.history_loading = False
        self.history_name = result.name
        if result.error:
            self.history = []
            self.history_name += f"\nError: {result.error}\n{result.url}"
        elif result.entries:
            self.history = list(result.entries)
            self.history_cache[result.cache_key] = self.history
        else:
            self.history = []
            self.history_name += f"\nNo games found\n{result.url}"


def ai_cache_key(my_champ: str, enemy_champ: str, position: str, model: str) -> str:
    return f"{my_champ}|{enemy_champ}|{position}|{model}"
