import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        cursor_secret: str,
        page_limit: int,
        page_limit_max: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.cursor_secret = cursor_secret
        self.page_limit = page_limit
        self.page_limit_max = page_limit_max
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    # Fixed offset ("+09:00") or an IANA zone name ("Asia/Seoul").
    timezone = os.getenv("LEDGER_TIMEZONE", "+09:00")
    cursor_secret = os.getenv(
        "LEDGER_CURSOR_SECRET",
        "5d1c0f7e9a0b4c3e8f2a6b7c1d9e4f30a8b2c6d0e4f8a1b5c9d3e7f1a2b6c0d4",
    )
    page_limit = int(os.getenv("LEDGER_PAGE_LIMIT", "20"))
    page_limit_max = int(os.getenv("LEDGER_PAGE_LIMIT_MAX", "100"))
    log_level = os.getenv("LEDGER_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        cursor_secret=cursor_secret,
        page_limit=page_limit,
        page_limit_max=page_limit_max,
        log_level=log_level,
    )
