from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union


@dataclass(frozen=True)
class EnemyRef:
    champion_id: int
    display_name: str
    slug: str
    position: str


@dataclass(frozen=True)
class PlayerRef:
    """One of the ten players in the lobby (allies and enemies alike)."""
    summoner_name: str
    tag_line: str
    puuid: str
    account_id: int
    champion_id: int
    champion_name: str
    position: str
    rank_tier: str
    rank_division: str
    rank_lp: int
    is_ally: bool

    @property
    def riot_id(self) -> str:
        return f"{self.summoner_name}#{self.tag_line}" if self.tag_line else self.summoner_name


@dataclass(frozen=True)
class CatalogDelta:
    icons: Dict[int, Tuple[bytes, int, int]]  # champion id -> (rgba, w, h)
    slug_to_id: Dict[str, int]
    name_to_id: Dict[str, int]
    id_to_name: Dict[int, str]


@dataclass(frozen=True)
class MatchSnapshot:
    connected: bool
    error: str = ""
    enemies: Tuple[EnemyRef, ...] = ()
    teammates: Tuple[PlayerRef, ...] = ()
    my_position: str = ""
    lane_opponent_id: Optional[int] = None
    locale_tag: str = "unknown"
    champion_catalog: Optional[CatalogDelta] = None
    credential: Optional[Any] = None  # lcu.LcuAuth


@dataclass
class CounterEntry:
    key: str
    win_rate: float
    games: int

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, "win_rate": self.win_rate, "games": self.games}

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "CounterEntry":
        return cls(
            key=str(raw.get("key", "")),
            win_rate=float(raw.get("win_rate", 0.0) or 0.0),
            games=int(raw.get("games", 0) or 0),
        )


@dataclass
class CounterCache:
    champions: Dict[str, str] = field(default_factory=dict)  # key -> display name
    counters: Dict[str, List[CounterEntry]] = field(default_factory=dict)  # "slug:POS" -> rows
    updated_at: float = 0.0
    total_entries: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "champions": dict(self.champions),
            "counters": {k: [c.to_dict() for c in v] for k, v in self.counters.items()},
            "updated_at": self.updated_at,
            "total_entries": self.total_entries,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "CounterCache":
        if not isinstance(raw, dict):
            return cls()
        counters = {}
        for k, rows in (raw.get("counters") or {}).items():
            if isinstance(rows, list):
                counters[str(k)] = [CounterEntry.from_dict(r) for r in rows if isinstance(r, dict)]
        return cls(
            champions={str(k): str(v) for k, v in (raw.get("champions") or {}).items()},
            counters=counters,
            updated_at=float(raw.get("updated_at", 0.0) or 0.0),
            total_entries=int(raw.get("total_entries", 0) or 0),
        )


@dataclass
class CounterDisplay:
    name: str
    key: str
    win_rate: float
    games: int


@dataclass
class MatchEntry:
    champion_id: int
    win: bool
    kills: int
    deaths: int
    assists: int
    game_duration_secs: int
    timestamp_ms: int
    queue_id: int
    game_type: str

    @property
    def kda_str(self) -> str:
        return f"{self.kills}/{self.deaths}/{self.assists}"

    @property
    def duration_min(self) -> int:
        return max(1, self.game_duration_secs // 60)


# -----------------------
# Completion stream events
# -----------------------
@dataclass(frozen=True)
class Chunk:
    text: str


@dataclass(frozen=True)
class Done:
    full_text: str


@dataclass(frozen=True)
class Error:
    message: str


StreamEvent = Union[Chunk, Done, Error]


# -----------------------
# Harvest messages
# -----------------------
@dataclass(frozen=True)
class HarvestProgress:
    done: int
    total: int
    label: str


@dataclass(frozen=True)
class HarvestDone:
    cache: Optional[CounterCache] = None
    error: str = ""


@dataclass(frozen=True)
class HistoryResult:
    cache_key: str
    name: str
    url: str
    entries: Tuple[MatchEntry, ...] = ()
    error: str = ""
