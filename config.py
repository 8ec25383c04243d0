import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        log_level: str,
        cors_origins: list[str],
        top_vendors_limit: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.log_level = log_level
        self.cors_origins = cors_origins
        self.top_vendors_limit = top_vendors_limit


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("EXPENSO_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "expenso.db"
    database_url = os.getenv("EXPENSO_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("EXPENSO_TIMEZONE", "Europe/Berlin")
    log_level = os.getenv("EXPENSO_LOG_LEVEL", "INFO").upper()
    cors_raw = os.getenv("EXPENSO_CORS_ORIGINS", "http://localhost:3000")
    cors_origins = [origin.strip() for origin in cors_raw.split(",") if origin.strip()]
    top_vendors_limit = int(os.getenv("EXPENSO_TOP_VENDORS", "5"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        log_level=log_level,
        cors_origins=cors_origins,
        top_vendors_limit=top_vendors_limit,
    )
