import os
from functools import lru_cache
from typing import Optional

IN_MEMORY_URL = "sqlite+pysqlite:///:memory:"


class Settings:
    def __init__(
        self,
        database_url: Optional[str],
        timezone: str,
        log_level: str,
        allow_reset: bool,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.log_level = log_level
        self.allow_reset = allow_reset

    def resolve_database_url(self, database_path: Optional[str] = None) -> str:
        if database_path:
            return f"sqlite+pysqlite:///{database_path}"
        return self.database_url or IN_MEMORY_URL


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "y", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("BUDGET_DATABASE_URL") or None
    timezone = os.getenv("BUDGET_TIMEZONE", "Europe/Berlin")
    log_level = os.getenv("BUDGET_LOG_LEVEL", "INFO").upper()
    allow_reset = _env_flag("BUDGET_ALLOW_RESET", "1")
    return Settings(
        database_url=database_url,
        timezone=timezone,
        log_level=log_level,
        allow_reset=allow_reset,
    )
