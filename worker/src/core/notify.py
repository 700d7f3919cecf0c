"""Completion callback for finished crawl jobs."""

import logging
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from src.core.config import Settings, get_settings
from src.core.models import CrawlSummary

logger = logging.getLogger(__name__)

USER_AGENT = "LeadsCrawler/1.0"
REQUEST_TIMEOUT = 10


def _build_session() -> requests.Session:
    session = requests.Session()
    retries = Retry(
        total=3,
        backoff_factor=1,
        status_forcelist=(500, 502, 503, 504),
        allowed_methods=("POST",),
    )
    session.mount("http://", HTTPAdapter(max_retries=retries))
    session.mount("https://", HTTPAdapter(max_retries=retries))
    return session


def post_crawl_result(
    job_id: str,
    summary: Optional[CrawlSummary],
    *,
    error: Optional[str] = None,
    settings: Optional[Settings] = None,
    session: Optional[requests.Session] = None,
) -> bool:
    """POST a job outcome to ``<CRAWL_CALLBACK_URL>/crawl-result``.

    Failures are logged and reported through the return value only; the
    crawl result is already on disk at this point.
    """
    settings = settings or get_settings()
    if not settings.callback_url:
        logger.debug("CRAWL_CALLBACK_URL missing; skipping callback for job %s", job_id)
        return False

    payload = {"jobId": job_id}
    if summary is not None:
        payload.update(summary.to_dict(include_records=False))
    else:
        payload.update({"status": "failed", "message": error or "crawl failed"})

    session = session or _build_session()
    try:
        response = session.post(
            settings.callback_url.rstrip("/") + "/crawl-result",
            json=payload,
            timeout=REQUEST_TIMEOUT,
            headers={"User-Agent": USER_AGENT},
        )
        response.raise_for_status()
    except requests.RequestException as exc:
        logger.error("Failed to POST crawl result for job %s: %s", job_id, exc)
        return False
    return True
