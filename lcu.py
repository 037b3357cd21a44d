from __future__ import annotations
import base64
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Dict, Any, List, Sequence, Tuple

import psutil
import requests
import urllib3

from errors import MalformedInput, RemoteFailure, Unavailable

urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)  # self-signed cert in LCU

logger = logging.getLogger(__name__)

LCU_USER = "riot"
LCU_TIMEOUT = 3

PROCESS_NAMES = {"LeagueClientUx.exe", "LeagueClient.exe", "LeagueClientUx", "LeagueClient"}

WELL_KNOWN_LOCKFILES = (
    r"C:\Riot Games\League of Legends\lockfile",
    r"C:\Program Files\Riot Games\League of Legends\lockfile",
    r"C:\Program Files (x86)\Riot Games\League of Legends\lockfile",
    r"D:\Riot Games\League of Legends\lockfile",
    r"D:\League of Legends\lockfile",
    r"D:\Riot Games\LeagueClient\lockfile",
)

ACTIVE_GAME_PHASES = {"InProgress", "GameStart", "Reconnect", "WaitingForStats"}


@dataclass(frozen=True)
class LcuAuth:
    port: int
    password: str
    protocol: str = "https"

    @property
    def base_url(self) -> str:
        return f"{self.protocol}://127.0.0.1:{self.port}"

    @property
    def basic_auth_header(self) -> str:
        token = base64.b64encode(f"{LCU_USER}:{self.password}".encode("utf-8")).decode("utf-8")
        return f"Basic {token}"


# -----------------------
# Lockfile discovery
# -----------------------
def _find_league_process() -> Optional[psutil.Process]:
    for p in psutil.process_iter(["name", "exe"]):
        try:
            if p.info["name"] in PROCESS_NAMES:
                return p
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    return None


def _lockfile_path_from_process(proc: psutil.Process) -> Optional[Path]:
    """
    The lockfile sits in the install root, which is the exe's directory or
    one of its parents (the Ux process lives a few folders down).
    """
    try:
        exe_path = proc.exe()
    except (psutil.NoSuchProcess, psutil.AccessDenied, OSError):
        return None
    if not exe_path:
        return None

    cur = Path(exe_path).parent
    for _ in range(6):
        candidate = cur / "lockfile"
        if candidate.exists():
            return candidate
        if cur.parent == cur:
            break
        cur = cur.parent
    return None


def lockfile_candidates(config_dir: str = "") -> List[Path]:
    candidates: List[Path] = []

    if config_dir:
        candidates.append(Path(config_dir) / "lockfile")

    env_dir = os.environ.get("LOL_LOCKFILE_DIR", "")
    if env_dir:
        candidates.append(Path(env_dir) / "lockfile")

    proc = _find_league_process()
    if proc:
        from_proc = _lockfile_path_from_process(proc)
        if from_proc:
            candidates.append(from_proc)

    candidates.extend(Path(p) for p in WELL_KNOWN_LOCKFILES)

    for var in ("LOCALAPPDATA", "PROGRAMDATA"):
        base = os.environ.get(var, "")
        if base:
            candidates.append(Path(base) / "Riot Games" / "Riot Client" / "Config" / "lockfile")
    return candidates


def find_lockfile(config_dir: str = "") -> Optional[Path]:
    for candidate in lockfile_candidates(config_dir):
        if candidate.exists():
            return candidate
    return None


def parse_lockfile(raw: str) -> LcuAuth:
    """
    lockfile format (colon-separated):
      processName:pid:port:password:protocol
    """
    parts = (raw or "").strip().split(":")
    if len(parts) != 5:
        raise MalformedInput(f"lockfile has {len(parts)} fields, expected 5: {raw!r}")
    try:
        port = int(parts[2])
    except ValueError:
        raise MalformedInput(f"lockfile port is not a number: {parts[2]!r}") from None
    if not 0 <= port <= 0xFFFF:
        raise MalformedInput(f"lockfile port out of range: {port}")
    return LcuAuth(port=port, password=parts[3])


def read_lockfile(path: Path) -> LcuAuth:
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise MalformedInput(f"lockfile {path} is not text: {e}") from e
    except OSError as e:
        raise Unavailable(f"could not read lockfile {path}: {e}") from e
    return parse_lockfile(raw)


# -----------------------
# HTTP
# -----------------------
def lcu_client() -> requests.Session:
    """Session for 127.0.0.1 only: no cert verification, no proxies."""
    session = requests.Session()
    session.verify = False
    session.trust_env = False
    return session


def _lcu_request(
    session: requests.Session,
    auth: LcuAuth,
    path: str,
    params: Optional[Sequence[Tuple[str, str]]] = None,
) -> requests.Response:
    url = auth.base_url + path
    headers = {"Authorization": auth.basic_auth_header}
    try:
        r = session.get(url, headers=headers, params=params, timeout=LCU_TIMEOUT)
    except requests.RequestException as e:
        raise RemoteFailure(str(e)) from e
    if not r.ok:
        raise RemoteFailure(f"HTTP {r.status_code} for {path}")
    return r


def lcu_get(
    session: requests.Session,
    auth: LcuAuth,
    path: str,
    params: Optional[Sequence[Tuple[str, str]]] = None,
) -> Any:
    r = _lcu_request(session, auth, path, params)
    try:
        return r.json()
    except ValueError as e:
        raise RemoteFailure(f"invalid JSON from {path}: {e}") from e


def lcu_get_object(session: requests.Session, auth: LcuAuth, path: str) -> Dict[str, Any]:
    body = lcu_get(session, auth, path)
    if not isinstance(body, dict):
        raise MalformedInput(f"expected an object from {path}, got {type(body).__name__}")
    return body


def lcu_get_bytes(session: requests.Session, auth: LcuAuth, path: str) -> bytes:
    return _lcu_request(session, auth, path).content


# -----------------------
# Endpoints
# -----------------------
def get_champion_summary(session: requests.Session, auth: LcuAuth, locale: Optional[str] = None) -> Any:
    params = [("locale", locale)] if locale else None
    return lcu_get(session, auth, "/lol-game-data/assets/v1/champion-summary.json", params)


def get_champion_icon(session: requests.Session, auth: LcuAuth, champion_id: int) -> bytes:
    return lcu_get_bytes(session, auth, f"/lol-game-data/assets/v1/champion-icons/{champion_id}.png")


def get_current_summoner(session: requests.Session, auth: LcuAuth) -> Dict[str, Any]:
    return lcu_get_object(session, auth, "/lol-summoner/v1/current-summoner")


def get_summoner(session: requests.Session, auth: LcuAuth, summoner_id: int) -> Dict[str, Any]:
    return lcu_get_object(session, auth, f"/lol-summoner/v1/summoners/{summoner_id}")


def get_ranked_stats(session: requests.Session, auth: LcuAuth, puuid: str) -> Dict[str, Any]:
    return lcu_get(session, auth, f"/lol-ranked/v1/ranked-stats/{puuid}")


def get_champ_select_session(session: requests.Session, auth: LcuAuth) -> Dict[str, Any]:
    return lcu_get_object(session, auth, "/lol-champ-select/v1/session")


def get_gameflow_session(session: requests.Session, auth: LcuAuth) -> Dict[str, Any]:
    return lcu_get_object(session, auth, "/lol-gameflow/v1/session")


def get_region_locale(session: requests.Session, auth: LcuAuth) -> Optional[Dict[str, Any]]:
    try:
        return lcu_get(session, auth, "/riotclient/region-locale")
    except RemoteFailure as e:
        logger.debug("region-locale unavailable: %s", e)
        return None
