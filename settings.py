from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
import os

from dotenv import load_dotenv

APP_NAME = "Lanesight"

DEFAULT_MODEL = "gpt-5.2-chat-latest"
DEFAULT_API_URL = "https://api.openai.com/v1/chat/completions"
DEFAULT_REGION = "jp"


def appdata_dir() -> Path:
    appdata = os.environ.get("APPDATA")
    if not appdata:
        # Fallback: local
        return Path(".")
    return Path(appdata) / APP_NAME


def appdata_env_path() -> Path:
    return appdata_dir() / ".env"


@dataclass
class AppSettings:
    openai_api_key: str = ""
    openai_model: str = DEFAULT_MODEL
    openai_api_url: str = DEFAULT_API_URL
    lockfile_dir: str = ""
    region: str = DEFAULT_REGION
    data_dir: str = ""

    def cache_path(self) -> Path:
        base = Path(self.data_dir) if self.data_dir else appdata_dir()
        return base / "opgg_data.json"


def load_settings() -> AppSettings:
    # 1) Load AppData env first (installed app)
    env_path = appdata_env_path()
    if env_path.exists():
        load_dotenv(env_path, override=True)
    else:
        # 2) Fall back to local .env (dev mode)
        load_dotenv(".env", override=True)

    return AppSettings(
        openai_api_key=os.getenv("OPENAI_API_KEY", "").strip(),
        openai_model=os.getenv("OPENAI_MODEL", "").strip() or DEFAULT_MODEL,
        openai_api_url=os.getenv("OPENAI_API_URL", "").strip() or DEFAULT_API_URL,
        lockfile_dir=os.getenv("LOL_LOCKFILE_DIR", "").strip(),
        region=os.getenv("OPGG_REGION", "").strip().lower() or DEFAULT_REGION,
        data_dir=os.getenv("LANESIGHT_DATA_DIR", "").strip(),
    )


def save_api_key_to_appdata(key: str) -> Path:
    """
    Writes/updates OPENAI_API_KEY inside %APPDATA%\\Lanesight\\.env,
    keeping the other values in the file.
    """
    key = (key or "").strip()
    env_path = appdata_env_path()
    env_path.parent.mkdir(parents=True, exist_ok=True)

    existing = {}
    if env_path.exists():
        for line in env_path.read_text(encoding="utf-8").splitlines():
            if "=" in line and not line.strip().startswith("#"):
                k, v = line.split("=", 1)
                existing[k.strip()] = v.strip()

    existing["OPENAI_API_KEY"] = key
    existing.setdefault("OPENAI_MODEL", DEFAULT_MODEL)

    text = "\n".join([f"{k}={v}" for k, v in existing.items()]) + "\n"
    env_path.write_text(text, encoding="utf-8")
    return env_path
