import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        session_secret: str,
        session_max_age_hours: int,
        dashboard_months: int,
        scheduler_enabled: bool,
        scheduler_catch_up_limit: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.session_secret = session_secret
        self.session_max_age_hours = session_max_age_hours
        self.dashboard_months = dashboard_months
        self.scheduler_enabled = scheduler_enabled
        self.scheduler_catch_up_limit = scheduler_catch_up_limit


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "America/Sao_Paulo")
    session_secret = os.getenv(
        "LEDGER_SESSION_SECRET",
        "5d0c2f8e4b1a7c93e6f04d2b8a1c7e95f3b06a2d4c8e1f7a9b3d5c0e2f4a6b8c",
    )
    session_max_age_hours = int(os.getenv("LEDGER_SESSION_MAX_AGE_HOURS", "12"))
    dashboard_months = int(os.getenv("LEDGER_DASHBOARD_MONTHS", "6"))
    scheduler_enabled = _env_flag("LEDGER_SCHEDULER_ENABLED", True)
    scheduler_catch_up_limit = int(
        os.getenv("LEDGER_SCHEDULER_CATCH_UP_LIMIT", "366")
    )
    return Settings(
        database_url=database_url,
        timezone=timezone,
        session_secret=session_secret,
        session_max_age_hours=session_max_age_hours,
        dashboard_months=dashboard_months,
        scheduler_enabled=scheduler_enabled,
        scheduler_catch_up_limit=scheduler_catch_up_limit,
    )
