from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
import os

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    project_root: Path
    data_dir: Path
    sqlite_path: Path
    page_size: int
    stats_window_days: int
    push_interval_seconds: float
    log_level: str


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    project_root = Path(__file__).resolve().parents[1]
    load_dotenv(project_root / ".env")

    data_dir = project_root / "data" / "inbox"
    sqlite_override = os.getenv("INBOX_DB_PATH", "").strip()

    settings = Settings(
        project_root=project_root,
        data_dir=data_dir,
        sqlite_path=Path(sqlite_override) if sqlite_override else data_dir / "message_store.sqlite",
        page_size=max(1, _env_int("PAGE_SIZE", 10)),
        stats_window_days=max(1, _env_int("STATS_WINDOW_DAYS", 7)),
        push_interval_seconds=max(0.1, _env_float("PUSH_INTERVAL_SECONDS", 5.0)),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip() or "INFO",
    )
    ensure_directories(settings)
    return settings


def ensure_directories(settings: Settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
