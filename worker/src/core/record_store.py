"""CSV backed store of scraped records, keyed by maps link."""

from __future__ import annotations

import csv
import io
import logging
import os
import tempfile
import threading
from typing import Dict, Iterable, List, Tuple

from src.core.models import CSV_HEADER, Record

logger = logging.getLogger(__name__)

RecordMap = Dict[str, Record]

_path_locks: Dict[str, threading.Lock] = {}
_path_locks_guard = threading.Lock()


class PersistenceError(RuntimeError):
    """Raised when the record file cannot be written."""


class CsvValidationError(ValueError):
    """Raised when an uploaded CSV does not match the fixed column layout."""


def record_key(record: Record) -> str:
    """Store key of a record: its maps link, or name and address for rows without one."""
    return record.source_link or f"{record.name}-{record.address}"


def lock_for(path: str) -> threading.Lock:
    """Process-wide lock guarding the load, merge and persist cycle of one file."""
    key = os.path.abspath(path)
    with _path_locks_guard:
        return _path_locks.setdefault(key, threading.Lock())


def _parse_rows(rows: Iterable[List[str]]) -> RecordMap:
    records: RecordMap = {}
    for index, row in enumerate(rows):
        if index == 0:
            continue
        if len(row) < len(CSV_HEADER):
            logger.debug("Skipping truncated row %d (%d fields)", index, len(row))
            continue
        record = Record.from_row(row)
        records[record_key(record)] = record
    return records


def load(path: str) -> RecordMap:
    """Read ``path`` into a ``record_key`` -> Record mapping; a missing file is an empty store."""
    if not os.path.exists(path):
        logger.info("No existing record file at %s; starting empty", path)
        return {}

    with open(path, newline="", encoding="utf-8") as fh:
        records = _parse_rows(csv.reader(fh))
    logger.info("Loaded %d records from %s", len(records), path)
    return records


def merge(existing: RecordMap, incoming: Iterable[Record]) -> Tuple[RecordMap, int, int]:
    """Merge freshly scraped records into ``existing``.

    New links are inserted. A known link is replaced only when its review
    count or phone changed; otherwise the stored record is left untouched.
    Returns the merged mapping with the new and updated counts.
    """
    merged = dict(existing)
    new_count = 0
    update_count = 0
    for record in incoming:
        key = record_key(record)
        stored = merged.get(key)
        if stored is None:
            merged[key] = record
            new_count += 1
        elif stored.review_count != record.review_count or stored.phone != record.phone:
            merged[key] = record
            update_count += 1
    return merged, new_count, update_count


def render(records: Iterable[Record]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_HEADER)
    for record in records:
        writer.writerow(record.to_row())
    return buffer.getvalue()


def persist(path: str, records: RecordMap) -> None:
    """Write the full mapping to ``path``, replacing the old file in one step."""
    directory = os.path.dirname(os.path.abspath(path))
    tmp_path = None
    try:
        os.makedirs(directory, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w", newline="", encoding="utf-8", dir=directory, suffix=".tmp", delete=False
        ) as fh:
            tmp_path = fh.name
            fh.write(render(records.values()))
        os.replace(tmp_path, path)
    except OSError as exc:
        if tmp_path and os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise PersistenceError(f"Failed to write {path}: {exc}") from exc
    logger.info("Persisted %d records to %s", len(records), path)


def validate_header(header: List[str]) -> None:
    if len(header) != len(CSV_HEADER):
        raise CsvValidationError(f"Expected {len(CSV_HEADER)} columns, but found {len(header)}")
    for index, (expected, found) in enumerate(zip(CSV_HEADER, header)):
        if found.strip() != expected:
            raise CsvValidationError(f'Column {index + 1} should be "{expected}", but found "{found.strip()}"')


def parse_upload(text: str) -> List[Record]:
    """Parse an uploaded CSV body, validating the header and de-duplicating rows by link."""
    rows = [row for row in csv.reader(io.StringIO(text)) if any(cell.strip() for cell in row)]
    if not rows:
        raise CsvValidationError("Uploaded CSV file is empty")
    validate_header(rows[0])

    seen = set()
    records: List[Record] = []
    for row in rows[1:]:
        if len(row) < len(CSV_HEADER):
            continue
        record = Record.from_row([cell.strip() for cell in row])
        key = record_key(record)
        if key in seen:
            continue
        seen.add(key)
        records.append(record)

    if not records:
        raise CsvValidationError("Uploaded CSV file contains no data rows")
    return records


def merge_upload(existing: RecordMap, uploaded: Iterable[Record]) -> Tuple[RecordMap, int, int]:
    """Insert-only merge used for uploaded files: known links are never overwritten."""
    merged = dict(existing)
    new_count = 0
    skipped = 0
    for record in uploaded:
        key = record_key(record)
        if key in merged:
            skipped += 1
            continue
        merged[key] = record
        new_count += 1
    return merged, new_count, skipped
