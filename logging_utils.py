from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def resolve_log_file() -> Path:
    override_dir = os.getenv("LANESIGHT_LOG_DIR")
    if override_dir:
        return Path(override_dir) / "lanesight.log"

    appdata = os.getenv("APPDATA")
    if appdata:
        return Path(appdata) / "Lanesight" / "logs" / "lanesight.log"

    return Path(__file__).resolve().parent / "logs" / "lanesight.log"


def configure_logging(
    level: int = logging.INFO,
    preferred_log_file: Optional[Path] = None,
    fallback_log_file: Optional[Path] = None,
) -> Path:
    """
    Attach a rotating file handler and a console handler to the root logger.
    Modules log through logging.getLogger(__name__) and inherit both.
    Returns the log file actually in use.
    """
    preferred = preferred_log_file or resolve_log_file()
    fallback = fallback_log_file or Path(__file__).resolve().parent / "logs" / "lanesight.log"

    root = logging.getLogger()
    if getattr(root, "_lanesight_configured", False):
        return getattr(root, "_lanesight_log_file", preferred)

    root.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)

    effective = preferred
    try:
        preferred.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(preferred, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    except OSError:
        fallback.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(fallback, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
        effective = fallback

    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    # requests/urllib3 are chatty at INFO on every poll
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    root._lanesight_configured = True  # type: ignore[attr-defined]
    root._lanesight_log_file = effective  # type: ignore[attr-defined]
    return effective
