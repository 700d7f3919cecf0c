"""Deep scrape of a single place page."""

from __future__ import annotations

import logging
import random
from typing import Dict, Optional

from src.core.models import Candidate, Record
from src.core.pacing import Deadline, PacingPolicy
from src.etl.transform import to_record
from src.vendors.browser import BrowserError

logger = logging.getLogger(__name__)

HEADING_SELECTOR = "h1"
POINTER_RANGE = 500

PHONE_SCRIPT = """(function(){
    let btn = document.querySelector("button[data-tooltip='Copy phone number']");
    if (btn) return btn.getAttribute("aria-label") || btn.innerText;
    return "";
})()"""
WEBSITE_SCRIPT = """(function(){
    let link = document.querySelector("a[data-item-id='authority']");
    return link ? link.href : "";
})()"""
ADDRESS_SCRIPT = """(function(){
    let btn = document.querySelector("button[data-item-id='address']");
    return btn ? btn.getAttribute("aria-label") || btn.innerText : "";
})()"""
RATING_SCRIPT = """(function(){
    let img = document.querySelector('div[role="img"][aria-label*="stars"]');
    return img ? img.getAttribute("aria-label") : "";
})()"""
CATEGORY_SCRIPT = """(function(){
    let btn = document.querySelector("button[jsaction*='category']");
    return btn ? btn.innerText : "";
})()"""

FIELD_SCRIPTS = (
    ("phone", PHONE_SCRIPT),
    ("website", WEBSITE_SCRIPT),
    ("address", ADDRESS_SCRIPT),
    ("rating", RATING_SCRIPT),
    ("category", CATEGORY_SCRIPT),
)


class ExtractionError(RuntimeError):
    """Raised when a candidate's place page cannot be scraped."""

    def __init__(self, candidate: Candidate, reason: str) -> None:
        super().__init__(f"Error scraping {candidate.name} ({candidate.link}): {reason}")
        self.candidate = candidate


class DetailExtractor:
    def __init__(
        self,
        browser,
        pacing: PacingPolicy,
        *,
        deadline: Optional[Deadline] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.browser = browser
        self.pacing = pacing
        self.deadline = deadline or Deadline(None)
        self.rng = rng or pacing.rng

    def extract(self, candidate: Candidate) -> Record:
        try:
            raw = self._read_page(candidate.link)
        except BrowserError as exc:
            raise ExtractionError(candidate, str(exc)) from exc
        record = to_record(candidate, raw)
        logger.debug("Extracted %s: phone=%r rating=%r", candidate.name, record.phone, record.rating_value)
        return record

    def _read_page(self, link: str) -> Dict[str, str]:
        self.browser.navigate(link)
        self.browser.wait_visible(HEADING_SELECTOR)
        self.browser.dispatch_pointer_move(self.rng.randrange(POINTER_RANGE), self.rng.randrange(POINTER_RANGE))
        self.deadline.sleep(self.pacing.settle_delay())

        raw: Dict[str, str] = {}
        for field_name, script in FIELD_SCRIPTS:
            value = self.browser.evaluate(script)
            raw[field_name] = value if isinstance(value, str) else ""
        return raw
