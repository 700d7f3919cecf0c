from src.core.jobs import JOB_QUEUED, JOB_RUNNING, JOB_SUCCEEDED, JobTracker
from src.core.models import CrawlRequest, CrawlSummary, ProgressEvent


def test_job_lifecycle():
    tracker = JobTracker()
    job = tracker.create(CrawlRequest.from_input("leads", "10001", "Lawyer"))

    assert tracker.get(job.id) is job
    assert job.status == JOB_QUEUED

    tracker.start(job)
    assert job.status == JOB_RUNNING
    tracker.record_event(job, ProgressEvent("info", "one"))
    tracker.record_event(job, ProgressEvent("info", "two"))
    assert [event.message for event in tracker.events_since(job, 1)] == ["two"]

    tracker.succeed(job, CrawlSummary(new_entries=1, updates=0, skipped=0, failed=0))
    assert job.finished
    payload = job.to_dict()
    assert payload["status"] == JOB_SUCCEEDED
    assert payload["events"] == 2
    assert payload["result"]["newEntries"] == 1


def test_unknown_job():
    assert JobTracker().get("nope") is None
