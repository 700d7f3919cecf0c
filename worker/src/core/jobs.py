"""In-memory registry of crawl jobs started through the HTTP boundary."""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from src.core.models import CrawlRequest, CrawlSummary, ProgressEvent

JOB_QUEUED = "queued"
JOB_RUNNING = "running"
JOB_SUCCEEDED = "succeeded"
JOB_FAILED = "failed"


@dataclass
class CrawlJob:
    id: str
    request: CrawlRequest
    status: str = JOB_QUEUED
    events: List[ProgressEvent] = field(default_factory=list)
    summary: Optional[CrawlSummary] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def finished(self) -> bool:
        return self.status in (JOB_SUCCEEDED, JOB_FAILED)

    def to_dict(self, include_records: bool = False) -> Dict[str, Any]:
        return {
            "jobId": self.id,
            "status": self.status,
            "fileName": self.request.file_name,
            "partitionKeys": list(self.request.partition_keys),
            "category": self.request.category,
            "events": len(self.events),
            "createdAt": self.created_at.isoformat(),
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            "result": self.summary.to_dict(include_records=include_records) if self.summary else None,
            "error": self.error,
        }


class JobTracker:
    """Thread-safe job table; jobs only move forward queued -> running -> succeeded/failed."""

    def __init__(self) -> None:
        self._jobs: Dict[str, CrawlJob] = {}
        self._lock = threading.Lock()

    def create(self, request: CrawlRequest) -> CrawlJob:
        job = CrawlJob(id=uuid.uuid4().hex, request=request)
        with self._lock:
            self._jobs[job.id] = job
        return job

    def get(self, job_id: str) -> Optional[CrawlJob]:
        with self._lock:
            return self._jobs.get(job_id)

    def start(self, job: CrawlJob) -> None:
        with self._lock:
            job.status = JOB_RUNNING

    def record_event(self, job: CrawlJob, event: ProgressEvent) -> None:
        with self._lock:
            job.events.append(event)

    def events_since(self, job: CrawlJob, offset: int) -> List[ProgressEvent]:
        with self._lock:
            return list(job.events[offset:])

    def succeed(self, job: CrawlJob, summary: CrawlSummary) -> None:
        with self._lock:
            job.summary = summary
            job.status = JOB_SUCCEEDED
            job.finished_at = datetime.now(timezone.utc)

    def fail(self, job: CrawlJob, error: str) -> None:
        with self._lock:
            job.error = error
            job.status = JOB_FAILED
            job.finished_at = datetime.now(timezone.utc)
