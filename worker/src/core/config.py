"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class ConfigError(RuntimeError):
    """Raised when a configured value cannot be honoured."""


@dataclass(frozen=True)
class Settings:
    data_dir: str = "."
    profile_dir: str = "./chrome_data"
    headless: bool = False
    run_timeout_minutes: int = 120
    max_scrolls: int = 30
    stuck_limit: int = 3
    action_timeout_ms: int = 30000
    event_queue_size: int = 1000
    max_concurrent_jobs: int = 2
    callback_url: str = ""
    worker_port: int = 8080


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("%s=%r is not an integer; using default %s", name, raw, default)
        return default


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    data_dir = os.getenv("CRAWL_DATA_DIR", ".")
    profile_dir = os.getenv("CRAWL_PROFILE_DIR", "./chrome_data")
    headless = _get_bool("CRAWL_HEADLESS", False)
    run_timeout_minutes = _get_int("CRAWL_TIMEOUT_MINUTES", 120)
    max_scrolls = _get_int("CRAWL_MAX_SCROLLS", 30)
    stuck_limit = _get_int("CRAWL_STUCK_LIMIT", 3)
    action_timeout_ms = _get_int("CRAWL_ACTION_TIMEOUT_MS", 30000)
    event_queue_size = _get_int("CRAWL_EVENT_QUEUE_SIZE", 1000)
    max_concurrent_jobs = _get_int("CRAWL_MAX_JOBS", 2)
    callback_url = os.getenv("CRAWL_CALLBACK_URL", "")
    worker_port = _get_int("PORT", _get_int("WORKER_PORT", 8080))

    if run_timeout_minutes <= 0:
        raise ConfigError("CRAWL_TIMEOUT_MINUTES must be positive")
    if max_scrolls <= 0 or stuck_limit <= 0:
        raise ConfigError("CRAWL_MAX_SCROLLS and CRAWL_STUCK_LIMIT must be positive")
    if not callback_url:
        logger.warning("CRAWL_CALLBACK_URL is not configured; crawl result callbacks will be skipped.")

    return Settings(
        data_dir=data_dir,
        profile_dir=profile_dir,
        headless=headless,
        run_timeout_minutes=run_timeout_minutes,
        max_scrolls=max_scrolls,
        stuck_limit=stuck_limit,
        action_timeout_ms=action_timeout_ms,
        event_queue_size=max(event_queue_size, 1),
        max_concurrent_jobs=max(max_concurrent_jobs, 1),
        callback_url=callback_url,
        worker_port=worker_port,
    )
