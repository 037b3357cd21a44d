from __future__ import annotations
import logging
import queue
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote

import requests

from errors import NotFound, RemoteFailure
from model import HistoryResult, MatchEntry
from opgg import OPGG_UA

logger = logging.getLogger(__name__)

OPGG_API = "https://lol-api-summoner.op.gg"
OPGG_WEB = "https://www.op.gg/zh-cn/lol/summoners"

# LCU /riotclient/region-locale "region" -> op.gg region slug
REGION_TO_OPGG = {
    "EUW": "euw",
    "EUNE": "eune",
    "NA": "na",
    "BR": "br",
    "LAN": "lan",
    "LAS": "las",
    "OCE": "oce",
    "KR": "kr",
    "JP": "jp",
    "TR": "tr",
    "RU": "ru",
    "ME": "me",
    "SG": "sg",
    "PH": "ph",
    "TH": "th",
    "TW": "tw",
    "VN": "vn",
}

QUEUE_NAMES = {
    420: "Ranked Solo/Duo",
    440: "Ranked Flex",
    400: "Normal",
    430: "Normal",
    450: "ARAM",
    900: "URF",
    1010: "URF",
    1700: "Arena",
}

RANK_TIERS = (
    "IRON", "BRONZE", "SILVER", "GOLD", "PLATINUM", "EMERALD",
    "DIAMOND", "MASTER", "GRANDMASTER", "CHALLENGER",
)


def region_from_locale(region_locale_payload: Optional[Dict[str, Any]], default: str = "") -> str:
    """
    LCU /riotclient/region-locale returns something like:
      { "region": "EUW", "locale": "en_GB", ... }
    """
    region = str((region_locale_payload or {}).get("region") or "").upper()
    return REGION_TO_OPGG.get(region, default)


def queue_name(queue_id: int) -> str:
    return QUEUE_NAMES.get(queue_id, "Other")


def rank_label(tier: str, division: str = "", lp: int = 0) -> str:
    t = (tier or "").upper()
    if t not in RANK_TIERS:
        return "Unranked"
    if t in {"MASTER", "GRANDMASTER", "CHALLENGER"} or not division:
        return f"{t.title()} {lp} LP"
    return f"{t.title()} {division} {lp} LP"


def _encode(text: str) -> str:
    return quote(text, safe="-_.~")


def match_history_url(region: str, game_name: str, tag_line: str) -> str:
    return f"{OPGG_WEB}/{region}/{_encode(f'{game_name}-{tag_line}')}"


def _api_get(session: requests.Session, url: str, timeout: int) -> Any:
    try:
        r = session.get(url, headers={"User-Agent": OPGG_UA}, timeout=timeout)
    except requests.RequestException as e:
        raise RemoteFailure(str(e)) from e

    if not r.ok:
        raise RemoteFailure(f"op.gg API {r.status_code} for {url} -> {r.text[:200]}")
    try:
        return r.json()
    except ValueError as e:
        raise RemoteFailure(f"invalid JSON from {url}: {e}") from e


def lookup_summoner_id(session: requests.Session, region: str, game_name: str, tag_line: str) -> str:
    riot_id = _encode(f"{game_name}#{tag_line}")
    url = f"{OPGG_API}/api/v3/{region}/summoners?riot_id={riot_id}&hl=zh_CN"
    payload = _api_get(session, url, timeout=8)

    rows = payload.get("data") if isinstance(payload, dict) else None
    if isinstance(rows, list) and rows and isinstance(rows[0], dict):
        sid = rows[0].get("summoner_id")
        if sid:
            return str(sid)
    raise NotFound(f"summoner not found: {game_name}#{tag_line}")


def _timestamp_ms(created_at: str) -> int:
    try:
        return int(datetime.fromisoformat(created_at.replace("Z", "+00:00")).timestamp() * 1000)
    except (AttributeError, ValueError):
        return 0


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def parse_games(games: List[Dict[str, Any]], game_name: str) -> List[MatchEntry]:
    target = (game_name or "").lower()
    entries: List[MatchEntry] = []
    for game in games:
        if not isinstance(game, dict):
            continue
        me = None
        for p in game.get("participants") or []:
            summoner = p.get("summoner") or {}
            if str(summoner.get("game_name") or "").lower() == target:
                me = p
                break
        if me is None:
            continue

        stats = me.get("stats") or {}
        entries.append(MatchEntry(
            champion_id=_int(me.get("champion_id")),
            win=stats.get("result") == "WIN",
            kills=_int(stats.get("kill")),
            deaths=_int(stats.get("death")),
            assists=_int(stats.get("assist")),
            game_duration_secs=_int(game.get("game_length_second")),
            timestamp_ms=_timestamp_ms(str(game.get("created_at") or "")),
            queue_id=_int(game.get("queue_id")),
            game_type=str(game.get("game_type") or ""),
        ))
    return entries


def fetch_match_history(
    session: requests.Session,
    region: str,
    game_name: str,
    tag_line: str,
    limit: int = 20,
) -> List[MatchEntry]:
    summoner_id = lookup_summoner_id(session, region, game_name, tag_line)
    url = (
        f"{OPGG_API}/api/{region}/summoners/{summoner_id}/games"
        f"?limit={limit}&game_type=total&hl=zh_CN&ended_at="
    )
    payload = _api_get(session, url, timeout=10)
    games = payload.get("data") if isinstance(payload, dict) else None
    entries = parse_games(games if isinstance(games, list) else [], game_name)
    logger.info("match history for %s#%s: %d games", game_name, tag_line, len(entries))
    return entries


def spawn_match_history(
    channel: "queue.Queue",
    region: str,
    game_name: str,
    tag_line: str,
    display_name: str = "",
    session: Optional[requests.Session] = None,
    resolve_region: Optional[Callable[[], str]] = None,
) -> threading.Thread:
    """
    Look up recent games on a worker thread and put one HistoryResult on
    `channel`. `resolve_region`, when given, runs on the worker and its
    non-empty answer replaces `region`.
    """
    cache_key = f"{game_name}#{tag_line}"

    def work():
        nonlocal region
        if resolve_region is not None:
            region = resolve_region() or region
        url = match_history_url(region, game_name, tag_line)
        try:
            entries = fetch_match_history(session or requests.Session(), region, game_name, tag_line)
        except (NotFound, RemoteFailure) as e:
            channel.put(HistoryResult(cache_key, display_name or cache_key, url, error=str(e)))
            return
        channel.put(HistoryResult(cache_key, display_name or cache_key, url, entries=tuple(entries)))

    t = threading.Thread(target=work, name="match-history", daemon=True)
    t.start()
    return t
