"""Playwright-backed browser session used by both crawl phases."""

from __future__ import annotations

import logging
import os
import random
from typing import Any, Dict, List, Optional

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from src.core.pacing import Deadline

logger = logging.getLogger(__name__)

USER_AGENTS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/114.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/113.0.0.0 Safari/537.36",
)
LAUNCH_ARGS = ("--disable-blink-features=AutomationControlled",)
WEBDRIVER_MASK_SCRIPT = "Object.defineProperty(navigator, 'webdriver', {get: () => undefined});"
FEED_SELECTOR = "div[role='feed']"

_SCROLL_FEED_SCRIPT = """() => {
    const feed = document.querySelector("div[role='feed']");
    if (feed) { feed.scrollTop = feed.scrollHeight; }
}"""
_SNAPSHOT_NODES_SCRIPT = """els => els.map(e => {
    const attrs = {};
    for (const a of e.attributes) { attrs[a.name] = a.value; }
    return attrs;
})"""


class BrowserError(RuntimeError):
    """Raised when a browser action fails (timeout, navigation error, closed page)."""


class DeadlineExceeded(BrowserError):
    """Raised for every browser action once the run deadline has passed."""


class BrowserNode:
    """Attribute snapshot of a DOM element taken at query time."""

    __slots__ = ("attributes",)

    def __init__(self, attributes: Optional[Dict[str, str]] = None) -> None:
        self.attributes = dict(attributes or {})

    def attribute_value(self, name: str) -> str:
        return self.attributes.get(name) or ""

    def accessible_label(self) -> str:
        return self.attribute_value("aria-label")

    def __repr__(self) -> str:
        return f"BrowserNode({self.attributes!r})"


class PlaywrightBrowser:
    """One persistent Chromium session, driven one action at a time.

    Every action is bounded by ``action_timeout_ms`` and by the shared run
    ``deadline``; after the deadline expires all actions raise
    ``DeadlineExceeded`` without touching the page.
    """

    def __init__(
        self,
        profile_dir: str,
        *,
        deadline: Optional[Deadline] = None,
        headless: bool = False,
        action_timeout_ms: int = 30000,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.profile_dir = profile_dir
        self.deadline = deadline or Deadline(None)
        self.headless = headless
        self.action_timeout_ms = action_timeout_ms
        self.rng = rng or random.Random()
        self._playwright = None
        self._context = None
        self._page = None

    # ---------- lifecycle ----------

    def _ensure_page(self):
        if self._page is not None:
            return self._page

        os.makedirs(self.profile_dir, exist_ok=True)
        self._playwright = sync_playwright().start()
        self._context = self._playwright.chromium.launch_persistent_context(
            self.profile_dir,
            headless=self.headless,
            args=list(LAUNCH_ARGS),
            ignore_default_args=["--enable-automation"],
            user_agent=self.rng.choice(USER_AGENTS),
            viewport={"width": 1280 + self.rng.randrange(200), "height": 800 + self.rng.randrange(100)},
            extra_http_headers={"Accept-Language": "en-US,en;q=0.9"},
        )
        self._context.add_init_script(WEBDRIVER_MASK_SCRIPT)
        self._page = self._context.pages[0] if self._context.pages else self._context.new_page()
        logger.info("Browser session started (profile=%s headless=%s)", self.profile_dir, self.headless)
        return self._page

    def close(self) -> None:
        if self._context is not None:
            try:
                self._context.close()
            except PlaywrightError as exc:
                logger.warning("Failed to close browser context cleanly: %s", exc)
            self._context = None
            self._page = None
        if self._playwright is not None:
            self._playwright.stop()
            self._playwright = None

    def __enter__(self) -> "PlaywrightBrowser":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ---------- actions ----------

    def _timeout_ms(self) -> float:
        if self.deadline.expired:
            raise DeadlineExceeded("run deadline exceeded")
        # playwright treats 0 as "no timeout"
        return max(self.deadline.clamp(self.action_timeout_ms / 1000.0) * 1000.0, 1.0)

    def _call(self, description: str, fn, *args, **kwargs) -> Any:
        try:
            return fn(*args, **kwargs)
        except PlaywrightTimeoutError as exc:
            if self.deadline.expired:
                raise DeadlineExceeded(f"run deadline exceeded during {description}") from exc
            raise BrowserError(f"timed out during {description}") from exc
        except PlaywrightError as exc:
            raise BrowserError(f"{description} failed: {exc}") from exc

    def navigate(self, url: str) -> None:
        timeout = self._timeout_ms()
        page = self._ensure_page()
        self._call(f"navigate {url}", page.goto, url, timeout=timeout)

    def wait_visible(self, selector: str) -> None:
        timeout = self._timeout_ms()
        page = self._ensure_page()
        self._call(f"wait for {selector}", page.wait_for_selector, selector, state="visible", timeout=timeout)

    def _bounded_page(self):
        timeout = self._timeout_ms()
        page = self._ensure_page()
        page.set_default_timeout(timeout)
        return page

    def evaluate(self, script: str) -> Any:
        page = self._bounded_page()
        return self._call("evaluate", page.evaluate, script)

    def query_all(self, selector: str) -> List[BrowserNode]:
        page = self._bounded_page()
        snapshots = self._call(f"query {selector}", page.eval_on_selector_all, selector, _SNAPSHOT_NODES_SCRIPT)
        return [BrowserNode(attrs) for attrs in snapshots or []]

    def dispatch_pointer_move(self, x: float, y: float) -> None:
        page = self._bounded_page()
        self._call("pointer move", page.mouse.move, x, y)

    def scroll_feed_to_bottom(self) -> None:
        page = self._bounded_page()
        self._call("scroll feed", page.evaluate, _SCROLL_FEED_SCRIPT)
