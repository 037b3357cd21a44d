from __future__ import annotations
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import requests

import lcu
from errors import LanesightError, MalformedInput
from lcu import LcuAuth
from model import PlayerRef

logger = logging.getLogger(__name__)

SOLO_QUEUE = "RANKED_SOLO_5x5"


@dataclass(frozen=True)
class EnrichmentRequest:
    summoner_id: int
    champion_id: int
    position: str
    is_ally: bool
    known_name: str = ""  # in-game rosters carry the name already


@dataclass(frozen=True)
class CachedIdentity:
    """What survives between poll cycles for one summoner id."""
    summoner_name: str
    tag_line: str
    puuid: str
    account_id: int
    rank_tier: str
    rank_division: str
    rank_lp: int


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def solo_queue_rank(ranked_payload: Dict[str, Any]) -> Tuple[str, str, int]:
    """(tier, division, lp) for solo queue, empty when unranked or missing."""
    if not isinstance(ranked_payload, dict):
        return "", "", 0
    queue_map = ranked_payload.get("queueMap") or {}
    solo = queue_map.get(SOLO_QUEUE) if isinstance(queue_map, dict) else None
    if not isinstance(solo, dict):
        return "", "", 0
    return str(solo.get("tier") or ""), str(solo.get("division") or ""), _int(solo.get("leaguePoints"))


def resolve_player(
    session: requests.Session,
    auth: LcuAuth,
    request: EnrichmentRequest,
    champion_name: str = "",
) -> PlayerRef:
    """
    Profile lookup, then rank lookup by puuid. A failed profile gives a
    placeholder name; a failed rank gives empty rank fields.
    """
    sid = request.summoner_id
    try:
        profile = lcu.get_summoner(session, auth, sid)
        if not isinstance(profile, dict):
            raise MalformedInput(f"summoner {sid}: profile is {type(profile).__name__}")
        name = request.known_name or str(profile.get("gameName") or profile.get("displayName") or "")
        tag_line = str(profile.get("tagLine") or "")
        puuid = str(profile.get("puuid") or "")
        account_id = _int(profile.get("accountId"))
    except LanesightError as e:
        logger.debug("summoner %s profile lookup failed: %s", sid, e)
        name = request.known_name or f"Player{sid}"
        tag_line, puuid, account_id = "", "", 0

    tier, division, lp = "", "", 0
    if puuid:
        try:
            tier, division, lp = solo_queue_rank(lcu.get_ranked_stats(session, auth, puuid))
        except LanesightError as e:
            logger.debug("summoner %s rank lookup failed: %s", sid, e)

    return PlayerRef(
        summoner_name=name,
        tag_line=tag_line,
        puuid=puuid,
        account_id=account_id,
        champion_id=request.champion_id,
        champion_name=champion_name,
        position=request.position,
        rank_tier=tier,
        rank_division=division,
        rank_lp=lp,
        is_ally=request.is_ally,
    )


class EnrichmentPool:
    """
    Resolves a batch of unknown summoners concurrently. One thread per
    request (a roster is at most ten players); results come back through
    the join, failures come back as missing entries.
    """

    def __init__(
        self,
        session: requests.Session,
        auth: LcuAuth,
        champion_name: Optional[Callable[[int], str]] = None,
        resolver: Callable[..., PlayerRef] = resolve_player,
    ):
        self.session = session
        self.auth = auth
        self.champion_name = champion_name or (lambda _cid: "")
        self.resolver = resolver

    def _resolve_one(self, request: EnrichmentRequest) -> Optional[PlayerRef]:
        try:
            return self.resolver(self.session, self.auth, request, self.champion_name(request.champion_id))
        except Exception:
            logger.exception("enrichment of summoner %s failed", request.summoner_id)
            return None

    def resolve(self, requests_: Sequence[EnrichmentRequest]) -> Dict[int, PlayerRef]:
        if not requests_:
            return {}

        out: Dict[int, PlayerRef] = {}
        with ThreadPoolExecutor(max_workers=len(requests_), thread_name_prefix="enrich") as pool:
            futures = [(req.summoner_id, pool.submit(self._resolve_one, req)) for req in requests_]
            for sid, fut in futures:
                player = fut.result()
                if player is not None:
                    out[sid] = player
        return out


class PollerCache:
    """
    Process-lifetime state owned by one poller: the identity/rank cache and
    the local summoner id. Only the poll loop thread touches it.
    """

    def __init__(self):
        self.identities: Dict[int, CachedIdentity] = {}
        self.my_summoner_id: int = 0

    def __contains__(self, summoner_id: int) -> bool:
        return summoner_id in self.identities

    def __len__(self) -> int:
        return len(self.identities)

    def remember(self, summoner_id: int, player: PlayerRef) -> None:
        self.identities[summoner_id] = CachedIdentity(
            summoner_name=player.summoner_name,
            tag_line=player.tag_line,
            puuid=player.puuid,
            account_id=player.account_id,
            rank_tier=player.rank_tier,
            rank_division=player.rank_division,
            rank_lp=player.rank_lp,
        )

    def merge(self, resolved: Dict[int, PlayerRef]) -> None:
        for sid, player in resolved.items():
            self.remember(sid, player)

    def lookup(self, request: EnrichmentRequest, champion_name: str = "") -> Optional[PlayerRef]:
        cached = self.identities.get(request.summoner_id)
        if cached is None:
            return None
        return PlayerRef(
            summoner_name=request.known_name or cached.summoner_name,
            tag_line=cached.tag_line,
            puuid=cached.puuid,
            account_id=cached.account_id,
            champion_id=request.champion_id,
            champion_name=champion_name,
            position=request.position,
            rank_tier=cached.rank_tier,
            rank_division=cached.rank_division,
            rank_lp=cached.rank_lp,
            is_ally=request.is_ally,
        )


def build_player_list(
    cache: PollerCache,
    pool: EnrichmentPool,
    requests_: List[EnrichmentRequest],
    champion_name: Callable[[int], str],
) -> List[PlayerRef]:
    """Cached players first, in roster order, then freshly resolved ones."""
    players: List[PlayerRef] = []
    misses: List[EnrichmentRequest] = []
    for req in requests_:
        hit = cache.lookup(req, champion_name(req.champion_id))
        if hit is not None:
            players.append(hit)
        else:
            misses.append(req)

    if misses:
        resolved = pool.resolve(misses)
        cache.merge(resolved)
        players.extend(resolved[req.summoner_id] for req in misses if req.summoner_id in resolved)
    return players
