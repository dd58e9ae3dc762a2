# Process-wide settings for sitewatch, read from the environment (.env supported)

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

VERSION = "0.1.0"


@dataclass(frozen=True)
class Settings:
    db_path: Path
    raw_dir: Path
    log_dir: Path
    log_level: str
    user_agent: str
    fetch_concurrency: int
    event_ttl_days: int


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings(
        db_path=Path(os.getenv("SITEWATCH_DB_PATH", "artifacts/sitewatch/events.db")),
        raw_dir=Path(os.getenv("SITEWATCH_RAW_DIR", "artifacts/sitewatch/raw")),
        log_dir=Path(os.getenv("SITEWATCH_LOG_DIR", "logs")),
        log_level=os.getenv("SITEWATCH_LOG_LEVEL", "INFO").upper(),
        user_agent=os.getenv("SITEWATCH_USER_AGENT", f"sitewatch/{VERSION}"),
        fetch_concurrency=max(1, _env_int("SITEWATCH_FETCH_CONCURRENCY", 5)),
        event_ttl_days=max(0, _env_int("SITEWATCH_EVENT_TTL_DAYS", 0)),
    )
