"""CLI job that crawls Google Maps listings into a CSV lead file."""

import argparse
import logging
import random
import threading
from typing import Callable, Optional

from src.core.config import ConfigError, Settings, get_settings
from src.core.models import CrawlRequest, CrawlSummary
from src.core.orchestrator import ConfigurationError, CrawlOrchestrator
from src.core.pacing import Deadline, PacingPolicy
from src.core.progress import ProgressChannel
from src.vendors.browser import PlaywrightBrowser

logger = logging.getLogger(__name__)

BrowserFactory = Callable[[Deadline], object]


def run_crawl_job(
    request: CrawlRequest,
    *,
    settings: Optional[Settings] = None,
    channel: Optional[ProgressChannel] = None,
    profile_dir: Optional[str] = None,
    browser_factory: Optional[BrowserFactory] = None,
    rng: Optional[random.Random] = None,
) -> CrawlSummary:
    """Run one crawl end to end and close ``channel`` when it stops.

    The browser session is created per call and closed before returning, so
    callers running jobs side by side must pass distinct ``profile_dir``s.
    """
    settings = settings or get_settings()
    channel = channel or ProgressChannel(settings.event_queue_size)
    rng = rng or random.Random()
    deadline = Deadline(settings.run_timeout_minutes * 60)

    if browser_factory is None:

        def browser_factory(run_deadline: Deadline) -> PlaywrightBrowser:
            return PlaywrightBrowser(
                profile_dir or settings.profile_dir,
                deadline=run_deadline,
                headless=settings.headless,
                action_timeout_ms=settings.action_timeout_ms,
                rng=rng,
            )

    try:
        if not request.partition_keys:
            raise ConfigurationError("no valid partition keys provided")

        with browser_factory(deadline) as browser:
            orchestrator = CrawlOrchestrator(
                browser,
                data_dir=settings.data_dir,
                pacing=PacingPolicy(rng),
                deadline=deadline,
                emit=channel.emit,
                max_scrolls=settings.max_scrolls,
                stuck_limit=settings.stuck_limit,
            )
            return orchestrator.run(request)
    finally:
        channel.close()


def print_events(channel: ProgressChannel) -> None:
    for event in channel:
        print(f"[{event.kind}] {event.message}", flush=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Crawl Google Maps listings into a CSV lead file")
    parser.add_argument("--file", dest="file_name", help="CSV file name, e.g. leads.csv")
    parser.add_argument(
        "--zips",
        "--partitions",
        dest="partition_keys",
        help="Comma separated partition keys, e.g. '10001, 10002'",
    )
    parser.add_argument("--category", dest="category", help="Business category, e.g. Lawyer")
    parser.add_argument("--profile-dir", dest="profile_dir", help="Persistent browser profile directory")
    return parser


def _prompt(label: str) -> str:
    return input(label).strip()


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    args = build_parser().parse_args()

    file_name = args.file_name or _prompt("Enter CSV Filename (e.g., leads.csv): ")
    partition_keys = args.partition_keys or _prompt("Enter Zip Codes (comma separated, e.g., 10001, 10002): ")
    category = args.category or _prompt("Enter Category (e.g., Lawyer): ")
    request = CrawlRequest.from_input(file_name, partition_keys, category)

    try:
        settings = get_settings()
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        raise SystemExit(2) from exc

    channel = ProgressChannel(settings.event_queue_size)
    printer = threading.Thread(target=print_events, args=(channel,), daemon=True)
    printer.start()

    try:
        summary = run_crawl_job(request, settings=settings, channel=channel, profile_dir=args.profile_dir)
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        raise SystemExit(2) from exc
    except Exception as exc:  # noqa: BLE001
        logger.error("Crawl failed: %s", exc, exc_info=True)
        raise SystemExit(1) from exc
    finally:
        printer.join()

    print(f"\nDone! {summary.new_entries} New, {summary.updates} Updated, {summary.skipped} Skipped.")


if __name__ == "__main__":
    main()
