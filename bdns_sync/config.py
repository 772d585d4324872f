"""
Runtime configuration loaded from the environment (and a local .env file).
"""

import os
from dataclasses import dataclass
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()

DEFAULT_API_BASE = "https://www.infosubvenciones.es/bdnstrans"


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


@dataclass(frozen=True)
class SyncSettings:
    """
    Settings for one orchestrator instance.

    Usage:
        settings = SyncSettings.from_env()
        orchestrator = SyncOrchestrator.from_settings(settings)
    """
    db_path: str = "data/bdns.db"
    api_base: str = DEFAULT_API_BASE
    page_size: int = 100
    request_timeout: float = 30.0
    request_delay: float = 0.5
    change_detection: str = "hash"
    stale_run_hours: float = 24.0
    record_workers: int = 1
    progress_every_pages: int = 1
    log_dir: str = "logs"
    log_level: str = "INFO"

    @property
    def stale_after(self) -> timedelta:
        return timedelta(hours=self.stale_run_hours)

    @classmethod
    def from_env(cls) -> "SyncSettings":
        return cls(
            db_path=os.getenv("BDNS_DB_PATH", cls.db_path),
            api_base=os.getenv("BDNS_API_BASE", DEFAULT_API_BASE),
            page_size=_env_int("BDNS_PAGE_SIZE", cls.page_size),
            request_timeout=_env_float("BDNS_REQUEST_TIMEOUT", cls.request_timeout),
            request_delay=_env_float("BDNS_REQUEST_DELAY", cls.request_delay),
            change_detection=os.getenv("BDNS_CHANGE_DETECTION", cls.change_detection),
            stale_run_hours=_env_float("BDNS_STALE_RUN_HOURS", cls.stale_run_hours),
            record_workers=_env_int("BDNS_RECORD_WORKERS", cls.record_workers),
            progress_every_pages=_env_int(
                "BDNS_PROGRESS_EVERY_PAGES", cls.progress_every_pages
            ),
            log_dir=os.getenv("LOG_DIR", cls.log_dir),
            log_level=os.getenv("LOG_LEVEL", cls.log_level),
        )
