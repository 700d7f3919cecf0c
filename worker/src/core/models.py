"""Core data models shared by the crawl pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Union

CSV_HEADER = ("Name", "Phone", "Website", "Rating", "Reviews", "Category", "Address", "System_Link_ID")

EVENT_INFO = "info"
EVENT_SCRAPE = "scrape"
EVENT_ERROR = "error"


@dataclass(slots=True)
class Record:
    """One fully scraped business, keyed by its maps link."""

    name: str
    phone: str = ""
    website: str = ""
    rating_value: str = ""
    review_count: str = ""
    category: str = ""
    address: str = ""
    source_link: str = ""

    def to_row(self) -> List[str]:
        return [
            self.name,
            self.phone,
            self.website,
            self.rating_value,
            self.review_count,
            self.category,
            self.address,
            self.source_link,
        ]

    @classmethod
    def from_row(cls, row: List[str]) -> "Record":
        return cls(*row[: len(CSV_HEADER)])

    def to_dict(self) -> Dict[str, str]:
        return dict(zip(CSV_HEADER, self.to_row()))


@dataclass(frozen=True, slots=True)
class Candidate:
    """A search result link that has not been deep scraped yet."""

    link: str
    name: str


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    kind: str
    message: str
    current: int = 0
    total: int = 0

    def to_dict(self) -> Dict[str, Union[str, int]]:
        return {"type": self.kind, "message": self.message, "current": self.current, "total": self.total}


@dataclass(slots=True)
class CrawlRequest:
    """Input of one crawl run: target CSV file, partition keys and category."""

    file_name: str
    partition_keys: List[str]
    category: str

    @classmethod
    def from_input(cls, file_name: str, partition_keys: Union[str, Iterable[str]], category: str) -> "CrawlRequest":
        return cls(
            file_name=normalize_file_name(file_name),
            partition_keys=parse_partition_keys(partition_keys),
            category=(category or "").strip(),
        )


@dataclass(slots=True)
class CrawlSummary:
    new_entries: int
    updates: int
    skipped: int
    failed: int
    records: List[Record] = field(default_factory=list, repr=False)
    timed_out: bool = False
    status: str = "success"
    message: str = "Scraping completed"

    @property
    def total(self) -> int:
        return len(self.records)

    def to_dict(self, include_records: bool = True) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "status": self.status,
            "message": self.message,
            "newEntries": self.new_entries,
            "updates": self.updates,
            "skipped": self.skipped,
            "failed": self.failed,
            "timedOut": self.timed_out,
            "total": self.total,
        }
        if include_records:
            payload["records"] = [record.to_dict() for record in self.records]
        return payload


def parse_partition_keys(raw: Union[str, Iterable[str], None]) -> List[str]:
    """Split a comma separated string (e.g. "10001, 10002") into clean keys, keeping order."""
    if raw is None:
        return []
    items = raw.split(",") if isinstance(raw, str) else [str(item) for item in raw]
    keys: List[str] = []
    for item in items:
        cleaned = item.strip()
        if cleaned and cleaned not in keys:
            keys.append(cleaned)
    return keys


def normalize_file_name(file_name: str, default: str = "leads.csv") -> str:
    """Reduce a caller supplied file name to a bare ``*.csv`` base name."""
    name = os.path.basename((file_name or "").strip().replace("\\", "/")) or default
    if not name.endswith(".csv"):
        name += ".csv"
    return name
