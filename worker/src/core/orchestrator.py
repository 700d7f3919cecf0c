"""Sequence one crawl run: collect links, deep scrape, merge and persist."""

from __future__ import annotations

import csv
import enum
import logging
import os
from typing import Callable, Dict, List, Optional, Tuple

from src.core import record_store
from src.core.detail_extractor import DetailExtractor, ExtractionError
from src.core.link_collector import LinkCollector, PartitionError
from src.core.models import (
    EVENT_ERROR,
    EVENT_INFO,
    EVENT_SCRAPE,
    Candidate,
    CrawlRequest,
    CrawlSummary,
    ProgressEvent,
    Record,
)
from src.core.pacing import Deadline, PacingPolicy

logger = logging.getLogger(__name__)

Emit = Callable[[ProgressEvent], None]


class ConfigurationError(ValueError):
    """Raised before any browser work when a run cannot start."""


class CrawlState(str, enum.Enum):
    IDLE = "idle"
    LOADING_STORE = "loading_store"
    COLLECTING_LINKS = "collecting_links"
    CONSOLIDATING = "consolidating"
    DEEP_SCRAPING = "deep_scraping"
    MERGING = "merging"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


def consolidate(batches: List[List[Candidate]]) -> Dict[str, Candidate]:
    """Union candidate batches keyed by link; the first name seen for a link wins."""
    unique: Dict[str, Candidate] = {}
    for batch in batches:
        for candidate in batch:
            unique.setdefault(candidate.link, candidate)
    return unique


class CrawlOrchestrator:
    """Drive a single crawl with one browser session.

    The browser is owned by the caller. Progress is pushed through ``emit``;
    partition and candidate failures are reported there and never abort the
    run. Only a missing partition list and a failed write do.
    """

    def __init__(
        self,
        browser,
        *,
        data_dir: str = ".",
        pacing: Optional[PacingPolicy] = None,
        deadline: Optional[Deadline] = None,
        emit: Optional[Emit] = None,
        max_scrolls: int = 30,
        stuck_limit: int = 3,
    ) -> None:
        self.data_dir = data_dir
        self.pacing = pacing or PacingPolicy()
        self.deadline = deadline or Deadline(None)
        self._emit = emit or (lambda event: None)
        self.collector = LinkCollector(
            browser, self.pacing, deadline=self.deadline, max_scrolls=max_scrolls, stuck_limit=stuck_limit
        )
        self.extractor = DetailExtractor(browser, self.pacing, deadline=self.deadline)
        self.state = CrawlState.IDLE
        self.timed_out = False

    def _transition(self, state: CrawlState) -> None:
        logger.info("Crawl state %s -> %s", self.state.value, state.value)
        self.state = state

    def emit(self, kind: str, message: str, current: int = 0, total: int = 0) -> None:
        self._emit(ProgressEvent(kind=kind, message=message, current=current, total=total))

    def _check_deadline(self) -> bool:
        if self.deadline.expired and not self.timed_out:
            self.timed_out = True
            logger.warning("Run deadline reached in state %s", self.state.value)
            self.emit(EVENT_INFO, "Run time limit reached; saving results collected so far")
        return self.timed_out

    def run(self, request: CrawlRequest) -> CrawlSummary:
        if not request.partition_keys:
            self.state = CrawlState.FAILED
            raise ConfigurationError("no valid partition keys provided")

        try:
            path = os.path.join(self.data_dir, request.file_name)

            self._transition(CrawlState.LOADING_STORE)
            existing = self._load_existing(path)

            self._transition(CrawlState.COLLECTING_LINKS)
            batches = self._collect_links(request)

            self._transition(CrawlState.CONSOLIDATING)
            candidates = consolidate(batches)
            self.emit(
                EVENT_INFO,
                f"Consolidated list: {len(candidates)} unique businesses. Starting deep scrape...",
                total=len(candidates),
            )

            self._transition(CrawlState.DEEP_SCRAPING)
            records, failed = self._deep_scrape(list(candidates.values()))

            # another job may have written the file since it was loaded
            with record_store.lock_for(path):
                self._transition(CrawlState.MERGING)
                existing = self._load_existing(path)
                merged, new_entries, updates = record_store.merge(existing, records)

                self._transition(CrawlState.PERSISTING)
                record_store.persist(path, merged)
        except Exception:
            self.state = CrawlState.FAILED
            raise

        self._transition(CrawlState.DONE)
        summary = CrawlSummary(
            new_entries=new_entries,
            updates=updates,
            skipped=len(records) - new_entries - updates,
            failed=failed,
            records=list(merged.values()),
            timed_out=self.timed_out,
        )
        if self.timed_out:
            summary.message = "Scraping stopped at the run time limit; partial results saved"
        logger.info(
            "Crawl finished: %d new, %d updated, %d unchanged, %d failed, %d total",
            summary.new_entries,
            summary.updates,
            summary.skipped,
            summary.failed,
            summary.total,
        )
        return summary

    def _load_existing(self, path: str) -> record_store.RecordMap:
        try:
            return record_store.load(path)
        except (OSError, ValueError, csv.Error) as exc:
            logger.warning("Could not read %s, starting from an empty store: %s", path, exc)
            return {}

    def _collect_links(self, request: CrawlRequest) -> List[List[Candidate]]:
        batches: List[List[Candidate]] = []
        seen = set()
        total = len(request.partition_keys)
        for index, key in enumerate(request.partition_keys, start=1):
            if self._check_deadline():
                break
            self.emit(EVENT_INFO, f"Processing {key} ({index}/{total})...", current=index, total=total)
            try:
                batch = self.collector.collect(key, request.category)
            except PartitionError as exc:
                if self._check_deadline():
                    break
                logger.warning("Skipping partition %s: %s", key, exc)
                self.emit(EVENT_INFO, f"Skipping {key}: search results did not load")
                continue

            fresh = [candidate for candidate in batch if candidate.link not in seen]
            seen.update(candidate.link for candidate in fresh)
            batches.append(batch)
            self.emit(EVENT_INFO, f"{key}: found {len(fresh)} unique businesses", current=index, total=total)

            if index < total:
                self.deadline.sleep(self.pacing.partition_delay())
        return batches

    def _deep_scrape(self, candidates: List[Candidate]) -> Tuple[List[Record], int]:
        records: List[Record] = []
        failed = 0
        total = len(candidates)
        for count, candidate in enumerate(candidates, start=1):
            if self._check_deadline():
                break
            if self.pacing.is_break(count):
                self.emit(EVENT_INFO, "Taking a short break (human behavior)...")
            self.deadline.sleep(self.pacing.delay_before_action(count))

            try:
                record = self.extractor.extract(candidate)
            except ExtractionError as exc:
                if self._check_deadline():
                    break
                failed += 1
                logger.warning("%s", exc)
                self.emit(EVENT_ERROR, f"Error scraping {candidate.name} ({candidate.link})", current=count, total=total)
                continue

            records.append(record)
            self.emit(EVENT_SCRAPE, f"Scraped {candidate.name}", current=count, total=total)
        return records, failed
