from __future__ import annotations
import io
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Tuple

import requests
from PIL import Image

import lcu
from errors import LanesightError
from lcu import LcuAuth
from model import CatalogDelta

logger = logging.getLogger(__name__)

PRIMARY_LOCALE = "zh_CN"
SECONDARY_LOCALE = "zh_TW"

# LCU assignedPosition -> op.gg positionName
_POSITION_ALIASES = {
    "TOP": "TOP",
    "JUNGLE": "JUNGLE",
    "MIDDLE": "MID",
    "MID": "MID",
    "BOTTOM": "ADC",
    "ADC": "ADC",
    "UTILITY": "SUPPORT",
    "SUPPORT": "SUPPORT",
}

_POSITION_LABELS = {
    "TOP": "Top",
    "JUNGLE": "Jungle",
    "MID": "Mid",
    "ADC": "Bot",
    "SUPPORT": "Support",
}


@dataclass(frozen=True)
class ChampionSummary:
    id: int
    name: str = ""
    alias: str = ""

    @property
    def slug(self) -> str:
        return to_slug(self.alias, self.name)


# -----------------------
# Naming helpers
# -----------------------
def to_slug(alias: str, name: str) -> str:
    s = alias if alias else name
    return (s or "").strip().lower().replace(" ", "-")


def looks_like_chinese(text: str) -> bool:
    return any("\u4e00" <= ch <= "\u9fff" for ch in text or "")


def canonical_position(raw: str) -> str:
    """
    Map a client position (TOP/JUNGLE/MIDDLE/BOTTOM/UTILITY) to the stats
    site's name (TOP/JUNGLE/MID/ADC/SUPPORT). Already-canonical values map to
    themselves; anything else maps to "".
    """
    return _POSITION_ALIASES.get((raw or "").strip().upper(), "")


def position_slug(position: str) -> str:
    return canonical_position(position).lower()


def position_label(position: str) -> str:
    return _POSITION_LABELS.get(canonical_position(position), "")


# -----------------------
# Champion summary
# -----------------------
def parse_champion_summary(payload: Any) -> Dict[int, ChampionSummary]:
    out: Dict[int, ChampionSummary] = {}
    if not isinstance(payload, list):
        return out
    for item in payload:
        if not isinstance(item, dict):
            continue
        try:
            cid = int(item["id"])
        except (KeyError, TypeError, ValueError):
            continue
        out[cid] = ChampionSummary(id=cid, name=str(item.get("name") or ""), alias=str(item.get("alias") or ""))
    return out


def _sample_name(champs: Dict[int, ChampionSummary]) -> str:
    # id -1 is the "None" placeholder and is never localized
    for cid, champ in champs.items():
        if cid > 0 and champ.name:
            return champ.name
    return ""


def _fetch_summary(session: requests.Session, auth: LcuAuth, locale: Optional[str]) -> Dict[int, ChampionSummary]:
    try:
        return parse_champion_summary(lcu.get_champion_summary(session, auth, locale))
    except LanesightError as e:
        logger.info("champion summary (%s) failed: %s", locale or "default", e)
        return {}


def load_champion_catalog(session: requests.Session, auth: LcuAuth) -> Tuple[Dict[int, ChampionSummary], str]:
    """
    Returns (champions by id, locale tag). Tries zh_CN, then zh_TW for
    traditional-Chinese clients, then the client's own default.
    Tag is one of zh_CN / zh_TW / non_zh / client_default / unknown.
    """
    locale_tag = "unknown"

    champs = _fetch_summary(session, auth, PRIMARY_LOCALE)
    if champs:
        locale_tag = PRIMARY_LOCALE if looks_like_chinese(_sample_name(champs)) else "non_zh"

    if locale_tag == "non_zh":
        champs = _fetch_summary(session, auth, SECONDARY_LOCALE)
        if champs and looks_like_chinese(_sample_name(champs)):
            locale_tag = SECONDARY_LOCALE

    if not champs:
        champs = _fetch_summary(session, auth, None)
        if champs:
            locale_tag = "client_default"

    return champs, locale_tag


# -----------------------
# Icons
# -----------------------
def decode_icon(raw: bytes) -> Tuple[bytes, int, int]:
    with Image.open(io.BytesIO(raw)) as img:
        rgba = img.convert("RGBA")
        w, h = rgba.size
        return rgba.tobytes(), w, h


def _fetch_icon(session: requests.Session, auth: LcuAuth, champion_id: int) -> Optional[Tuple[bytes, int, int]]:
    try:
        return decode_icon(lcu.get_champion_icon(session, auth, champion_id))
    except (LanesightError, OSError, ValueError) as e:
        logger.debug("icon %s dropped: %s", champion_id, e)
        return None


def load_icons(
    session: requests.Session,
    auth: LcuAuth,
    champion_ids: Iterable[int],
) -> Dict[int, Tuple[bytes, int, int]]:
    """One fetch+decode per id, all at once. Failed icons are left out."""
    ids = [cid for cid in champion_ids if cid > 0]
    if not ids:
        return {}

    icons: Dict[int, Tuple[bytes, int, int]] = {}
    with ThreadPoolExecutor(max_workers=len(ids), thread_name_prefix="icon") as pool:
        results = pool.map(lambda cid: (cid, _fetch_icon(session, auth, cid)), ids)
        for cid, icon in results:
            if icon is not None:
                icons[cid] = icon

    logger.info("loaded %d/%d champion icons", len(icons), len(ids))
    return icons


def build_catalog_delta(
    champs: Dict[int, ChampionSummary],
    icons: Dict[int, Tuple[bytes, int, int]],
) -> CatalogDelta:
    slug_to_id: Dict[str, int] = {}
    name_to_id: Dict[str, int] = {}
    id_to_name: Dict[int, str] = {}
    for cid, champ in champs.items():
        if cid <= 0:
            continue
        slug_to_id[champ.slug] = cid
        name_to_id[champ.name] = cid
        id_to_name[cid] = champ.name
    return CatalogDelta(icons=dict(icons), slug_to_id=slug_to_id, name_to_id=name_to_id, id_to_name=id_to_name)
