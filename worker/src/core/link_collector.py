"""Search-and-scroll phase: harvest place links for one partition."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional
from urllib.parse import quote_plus

from src.core.models import Candidate
from src.core.pacing import Deadline, PacingPolicy
from src.vendors.browser import FEED_SELECTOR, BrowserError, DeadlineExceeded

logger = logging.getLogger(__name__)

SEARCH_URL = "https://www.google.com/maps/search/{query}"
RESULT_LINK_SELECTOR = 'a[href*="/maps/place/"]'
MAX_SCROLLS = 30
STUCK_LIMIT = 3


class PartitionError(RuntimeError):
    """Raised when the search view for a partition cannot be loaded."""


def build_query(category: str, partition_key: str) -> str:
    return f"{category} in {partition_key}".strip()


def build_search_url(query: str) -> str:
    return SEARCH_URL.format(query=quote_plus(query))


class LinkCollector:
    def __init__(
        self,
        browser,
        pacing: PacingPolicy,
        *,
        deadline: Optional[Deadline] = None,
        max_scrolls: int = MAX_SCROLLS,
        stuck_limit: int = STUCK_LIMIT,
    ) -> None:
        self.browser = browser
        self.pacing = pacing
        self.deadline = deadline or Deadline(None)
        self.max_scrolls = max_scrolls
        self.stuck_limit = stuck_limit

    def collect(self, partition_key: str, category: str) -> List[Candidate]:
        """Return the unique candidates listed for ``category`` in ``partition_key``.

        Scrolls the results feed until it stops growing for ``stuck_limit``
        cycles in a row or ``max_scrolls`` is reached. Raises PartitionError
        when the search view never shows a results feed.
        """
        url = build_search_url(build_query(category, partition_key))
        logger.info("Opening search view for partition=%s: %s", partition_key, url)
        try:
            self.browser.navigate(url)
            self.browser.wait_visible(FEED_SELECTOR)
        except BrowserError as exc:
            raise PartitionError(f"search view for {partition_key} did not load: {exc}") from exc

        nodes = []
        last_count = 0
        stuck = 0
        for cycle in range(1, self.max_scrolls + 1):
            try:
                self.browser.scroll_feed_to_bottom()
                self.deadline.sleep(self.pacing.scroll_delay())
                nodes = self.browser.query_all(RESULT_LINK_SELECTOR)
            except DeadlineExceeded:
                logger.warning("Run deadline reached while scrolling partition=%s", partition_key)
                break
            except BrowserError as exc:
                logger.debug("Scroll cycle %d failed for partition=%s: %s", cycle, partition_key, exc)

            if len(nodes) == last_count:
                stuck += 1
                if stuck >= self.stuck_limit:
                    logger.info("Feed exhausted for partition=%s after %d scrolls", partition_key, cycle)
                    break
            else:
                stuck = 0
            last_count = len(nodes)

        candidates: Dict[str, Candidate] = {}
        for node in nodes:
            link = node.attribute_value("href")
            name = node.accessible_label()
            if link and name and link not in candidates:
                candidates[link] = Candidate(link=link, name=name)

        logger.info("Partition=%s yielded %d candidates", partition_key, len(candidates))
        return list(candidates.values())
