from __future__ import annotations
import logging
import queue
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

import catalog
import lcu
from catalog import ChampionSummary
from enrichment import EnrichmentPool, EnrichmentRequest, PollerCache, build_player_list
from errors import LanesightError, truncate_message
from lcu import LcuAuth
from model import CatalogDelta, EnemyRef, MatchSnapshot

logger = logging.getLogger(__name__)

UNAVAILABLE_BACKOFF = 2.0
ACTIVE_INTERVAL = 0.9
IDLE_BACKOFF = 1.2
ERROR_LIMIT = 140

UNKNOWN_CHAMPION = "Unknown"


@dataclass
class Roster:
    """Both teams from one session payload, normalized across payload shapes."""
    enemies: List[EnemyRef]
    players: List[EnrichmentRequest]
    my_position: str


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def lane_opponent(enemies: List[EnemyRef], my_position: str) -> Optional[int]:
    mine = catalog.canonical_position(my_position)
    if not mine:
        return None
    for e in enemies:
        if catalog.canonical_position(e.position) == mine:
            return e.champion_id
    return None


class SessionPoller:
    """
    Polls the local client and pushes one MatchSnapshot per cycle onto
    `channel`. Runs until `stop` is set; with no stop event it runs for the
    life of the process.
    """

    def __init__(
        self,
        channel: "queue.Queue[MatchSnapshot]",
        lockfile_dir: str = "",
        stop: Optional[threading.Event] = None,
        session: Optional[requests.Session] = None,
        find_lockfile: Callable[[str], Any] = lcu.find_lockfile,
        on_snapshot: Optional[Callable[[], None]] = None,
    ):
        self.channel = channel
        self.lockfile_dir = lockfile_dir
        self.stop = stop or threading.Event()
        self.session = session or lcu.lcu_client()
        self.find_lockfile = find_lockfile
        self.on_snapshot = on_snapshot

        self.cache = PollerCache()
        self.champions: Dict[int, ChampionSummary] = {}
        self.locale_tag = "unknown"
        self._pending_catalog: Optional[CatalogDelta] = None
        self._catalog_built = False

    # -----------------------
    # Loop
    # -----------------------
    def run(self) -> None:
        logger.info("session poller started")
        while not self.stop.is_set():
            try:
                delay = self.run_once()
            except Exception as e:
                logger.exception("poll cycle failed")
                self._emit(MatchSnapshot(
                    connected=False,
                    error=truncate_message(f"poll failed: {e!r}", ERROR_LIMIT),
                    locale_tag=self.locale_tag,
                ))
                delay = UNAVAILABLE_BACKOFF
            self.stop.wait(delay)
        logger.info("session poller stopped")

    def start(self) -> threading.Thread:
        t = threading.Thread(target=self.run, name="session-poller", daemon=True)
        t.start()
        return t

    def run_once(self) -> float:
        """One poll cycle. Emits exactly one snapshot and returns the delay before the next."""
        path = self.find_lockfile(self.lockfile_dir)
        if not path:
            self._emit(MatchSnapshot(
                connected=False,
                error="lockfile not found (set LOL_LOCKFILE_DIR)",
                locale_tag=self.locale_tag,
            ))
            return UNAVAILABLE_BACKOFF

        try:
            auth = lcu.read_lockfile(path)
        except LanesightError as e:
            self._emit(MatchSnapshot(connected=False, error=truncate_message(e, ERROR_LIMIT), locale_tag=self.locale_tag))
            return UNAVAILABLE_BACKOFF

        self._ensure_catalog(auth)
        self._ensure_my_summoner_id(auth)

        try:
            sess = lcu.get_champ_select_session(self.session, auth)
        except LanesightError as e:
            return self._handle_not_in_champ_select(auth, str(e))
        if not isinstance(sess, dict):
            return self._handle_not_in_champ_select(auth, f"unexpected session body: {type(sess).__name__}")

        roster = self.champ_select_roster(sess)
        self._emit_roster(auth, roster)
        return ACTIVE_INTERVAL

    # -----------------------
    # Cycle steps
    # -----------------------
    def _ensure_catalog(self, auth: LcuAuth) -> None:
        if not self.champions:
            self.champions, self.locale_tag = catalog.load_champion_catalog(self.session, auth)
            if self.champions:
                logger.info("champion catalog loaded: %d champions (%s)", len(self.champions), self.locale_tag)

        if self.champions and not self._catalog_built:
            icons = catalog.load_icons(self.session, auth, list(self.champions))
            self._pending_catalog = catalog.build_catalog_delta(self.champions, icons)
            self._catalog_built = True

    def _ensure_my_summoner_id(self, auth: LcuAuth) -> None:
        if self.cache.my_summoner_id:
            return
        try:
            me = lcu.get_current_summoner(self.session, auth)
        except LanesightError as e:
            logger.debug("current summoner unavailable: %s", e)
            return
        if isinstance(me, dict):
            self.cache.my_summoner_id = _int(me.get("summonerId"))

    def _handle_not_in_champ_select(self, auth: LcuAuth, reason: str) -> float:
        if self.cache.my_summoner_id > 0:
            try:
                flow = lcu.get_gameflow_session(self.session, auth)
            except LanesightError as e:
                logger.debug("gameflow unavailable: %s", e)
                flow = None
            if isinstance(flow, dict) and flow.get("phase") in lcu.ACTIVE_GAME_PHASES:
                roster = self.in_game_roster(flow)
                self._emit_roster(auth, roster)
                return ACTIVE_INTERVAL

        self._emit(MatchSnapshot(
            connected=True,
            error=f"not in champ select: {truncate_message(reason, ERROR_LIMIT)}",
            locale_tag=self.locale_tag,
            champion_catalog=self._take_catalog(),
            credential=auth,
        ))
        return IDLE_BACKOFF

    def _emit_roster(self, auth: LcuAuth, roster: Roster) -> None:
        pool = EnrichmentPool(self.session, auth, champion_name=self.champion_name)
        players = build_player_list(self.cache, pool, roster.players, self.champion_name)
        self._emit(MatchSnapshot(
            connected=True,
            enemies=tuple(roster.enemies),
            teammates=tuple(players),
            my_position=roster.my_position,
            lane_opponent_id=lane_opponent(roster.enemies, roster.my_position),
            locale_tag=self.locale_tag,
            champion_catalog=self._take_catalog(),
            credential=auth,
        ))

    def _take_catalog(self) -> Optional[CatalogDelta]:
        delta, self._pending_catalog = self._pending_catalog, None
        return delta

    def _emit(self, snapshot: MatchSnapshot) -> None:
        self.channel.put(snapshot)
        if self.on_snapshot:
            self.on_snapshot()

    # -----------------------
    # Roster shapes
    # -----------------------
    def champion_name(self, champion_id: int) -> str:
        champ = self.champions.get(champion_id)
        return champ.name if champ else ""

    def _enemy(self, entry: Dict[str, Any], position_field: str) -> EnemyRef:
        cid = _int(entry.get("championId"))
        champ = self.champions.get(cid)
        return EnemyRef(
            champion_id=cid,
            display_name=champ.name if champ else UNKNOWN_CHAMPION,
            slug=champ.slug if champ else "",
            position=str(entry.get(position_field) or ""),
        )

    @staticmethod
    def _requests(
        teams: List[Tuple[List[Dict[str, Any]], bool]],
        position_field: str,
        name_field: Optional[str] = None,
    ) -> List[EnrichmentRequest]:
        out = []
        for team, is_ally in teams:
            for p in team:
                sid = _int(p.get("summonerId"))
                if sid <= 0:
                    continue
                out.append(EnrichmentRequest(
                    summoner_id=sid,
                    champion_id=_int(p.get("championId")),
                    position=str(p.get(position_field) or ""),
                    is_ally=is_ally,
                    known_name=str(p.get(name_field) or "") if name_field else "",
                ))
        return out

    def champ_select_roster(self, sess: Dict[str, Any]) -> Roster:
        my_team = list(sess.get("myTeam") or [])
        their_team = list(sess.get("theirTeam") or [])
        local_cell = sess.get("localPlayerCellId")

        my_position = ""
        if local_cell is not None:
            for p in my_team:
                if p.get("cellId") == local_cell:
                    my_position = str(p.get("assignedPosition") or "")
                    break

        return Roster(
            enemies=[self._enemy(p, "assignedPosition") for p in their_team],
            players=self._requests([(my_team, True), (their_team, False)], "assignedPosition"),
            my_position=my_position,
        )

    def in_game_roster(self, flow: Dict[str, Any]) -> Roster:
        game_data = flow.get("gameData") or {}
        team_one = list(game_data.get("teamOne") or [])
        team_two = list(game_data.get("teamTwo") or [])

        me = self.cache.my_summoner_id
        my_in_one = any(_int(p.get("summonerId")) == me for p in team_one)
        my_team, their_team = (team_one, team_two) if my_in_one else (team_two, team_one)

        my_position = ""
        for p in my_team:
            if _int(p.get("summonerId")) == me:
                my_position = str(p.get("selectedPosition") or "")
                break

        return Roster(
            enemies=[self._enemy(p, "selectedPosition") for p in their_team],
            players=self._requests([(my_team, True), (their_team, False)], "selectedPosition", "summonerName"),
            my_position=my_position,
        )


def spawn_session_poller(
    channel: "queue.Queue[MatchSnapshot]",
    lockfile_dir: str = "",
    stop: Optional[threading.Event] = None,
) -> Tuple[SessionPoller, threading.Thread]:
    poller = SessionPoller(channel, lockfile_dir=lockfile_dir, stop=stop)
    return poller, poller.start()
