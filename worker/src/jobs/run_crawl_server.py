"""HTTP entrypoint that starts crawl jobs and serves the lead CSV files."""

from __future__ import annotations

import csv
import json
import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterator

from flask import Flask, Response, jsonify, request

from src.core import record_store
from src.core.config import get_settings
from src.core.jobs import CrawlJob, JobTracker
from src.core.models import CSV_HEADER, CrawlRequest, normalize_file_name
from src.core.notify import post_crawl_result
from src.core.progress import ProgressChannel
from src.jobs.run_crawl import run_crawl_job

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 50 * 1024 * 1024
STREAM_POLL_SECONDS = 0.5

# ---------- App & executor ----------
app = Flask(__name__)
app.config["MAX_CONTENT_LENGTH"] = MAX_UPLOAD_BYTES + 1024 * 1024
_executor = ThreadPoolExecutor(max_workers=get_settings().max_concurrent_jobs)
_tracker = JobTracker()

# ---------- Routes ----------


@app.get("/")
def root() -> Any:
    """Simple root to avoid 404 on GET /"""
    return "ok", 200


@app.get("/health")
def health() -> Any:
    return "OK", 200


@app.get("/healthz")
def healthcheck() -> Any:
    settings = get_settings()
    return (
        jsonify(
            {
                "status": "ok",
                "worker_port_config": settings.worker_port,
                "data_dir": settings.data_dir,
                "revision": os.getenv("K_REVISION", "unknown"),
            }
        ),
        200,
    )


@app.post("/api/scrape")
def enqueue_scrape() -> Any:
    """
    Queue a crawl job.
    Required JSON fields: category, zipCodes (or partitionKeys)
    Optional: fileName (defaults to leads.csv)
    """
    payload: Dict[str, Any] = request.get_json(silent=True) or {}

    raw_keys = payload.get("zipCodes") or payload.get("partitionKeys")
    category = str(payload.get("category") or "").strip()
    missing = [name for name, value in (("zipCodes", raw_keys), ("category", category)) if not value]
    if missing:
        return jsonify({"error": f"missing fields: {', '.join(missing)}"}), 400
    if not isinstance(raw_keys, (str, list)):
        return jsonify({"error": "zipCodes must be a string or a list"}), 400

    crawl_request = CrawlRequest.from_input(str(payload.get("fileName") or ""), raw_keys, category)
    if not crawl_request.partition_keys:
        return jsonify({"error": "no valid partition keys provided"}), 400

    job = _tracker.create(crawl_request)
    logger.info("Queueing crawl job %s: %s", job.id, crawl_request)
    _executor.submit(_run_job_safe, job)

    return jsonify({"data": {"status": "queued", "jobId": job.id}}), 202


@app.get("/api/jobs/<job_id>")
def job_status(job_id: str) -> Any:
    job = _tracker.get(job_id)
    if job is None:
        return jsonify({"error": "job not found"}), 404
    include_records = request.args.get("records", "").lower() in {"1", "true", "yes"}
    return jsonify({"data": job.to_dict(include_records=include_records)}), 200


@app.get("/api/jobs/<job_id>/events")
def job_events(job_id: str) -> Any:
    """Server-sent event stream of a job's progress; ends when the job finishes."""
    job = _tracker.get(job_id)
    if job is None:
        return jsonify({"error": "job not found"}), 404
    return Response(_stream_events(job), mimetype="text/event-stream")


@app.get("/api/csv/data")
def csv_data() -> Any:
    path = _csv_path(request.args.get("fileName", ""))
    try:
        records = record_store.load(path)
    except (OSError, ValueError, csv.Error) as exc:
        logger.exception("Failed to read %s: %s", path, exc)
        return jsonify({"error": "Failed to read CSV file", "details": str(exc)}), 500
    data = [record.to_dict() for record in records.values()]
    return jsonify({"status": "success", "data": data, "total": len(data)}), 200


@app.get("/api/csv/download")
def csv_download() -> Any:
    file_name = normalize_file_name(request.args.get("fileName", ""))
    path = _csv_path(file_name)
    if os.path.exists(path):
        with open(path, encoding="utf-8") as fh:
            body = fh.read()
    else:
        body = ",".join(CSV_HEADER) + "\n"
    return Response(
        body,
        mimetype="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{file_name}"'},
    )


@app.post("/api/csv/upload")
def csv_upload() -> Any:
    upload = request.files.get("file")
    if upload is None:
        return jsonify({"error": "No file provided"}), 400

    content = upload.read()
    if len(content) > MAX_UPLOAD_BYTES:
        return (
            jsonify(
                {
                    "error": "File too large",
                    "details": f"File size ({len(content) / 1024 / 1024:.2f}MB) exceeds the maximum limit of 50MB",
                }
            ),
            400,
        )

    try:
        uploaded = record_store.parse_upload(content.decode("utf-8-sig"))
    except UnicodeDecodeError:
        return jsonify({"error": "Uploaded CSV file must be UTF-8"}), 400
    except record_store.CsvValidationError as exc:
        return jsonify({"error": "CSV validation failed", "details": str(exc), "expectedColumns": list(CSV_HEADER)}), 400

    path = _csv_path(request.form.get("fileName", ""))
    try:
        with record_store.lock_for(path):
            existing = record_store.load(path)
            merged, new_count, skipped = record_store.merge_upload(existing, uploaded)
            record_store.persist(path, merged)
    except (OSError, ValueError, csv.Error, record_store.PersistenceError) as exc:
        logger.exception("Upload merge into %s failed: %s", path, exc)
        return jsonify({"error": "Failed to upload CSV file", "details": str(exc)}), 500

    return (
        jsonify(
            {
                "status": "success",
                "message": "CSV file uploaded and merged successfully",
                "newRecords": new_count,
                "skippedRecords": skipped,
                "totalRecords": len(merged),
            }
        ),
        200,
    )


# ---------- Internals ----------


def _csv_path(file_name: str) -> str:
    return os.path.join(get_settings().data_dir, normalize_file_name(file_name))


def _stream_events(job: CrawlJob) -> Iterator[str]:
    offset = 0
    while True:
        finished = job.finished
        events = _tracker.events_since(job, offset)
        for event in events:
            yield f"data: {json.dumps(event.to_dict())}\n\n"
        offset += len(events)
        if finished:
            yield f"event: done\ndata: {json.dumps(job.to_dict())}\n\n"
            return
        time.sleep(STREAM_POLL_SECONDS)


def _drain(job: CrawlJob, channel: ProgressChannel) -> None:
    for event in channel:
        _tracker.record_event(job, event)


def _run_job_safe(job: CrawlJob) -> None:
    settings = get_settings()
    channel = ProgressChannel(settings.event_queue_size)
    drainer = threading.Thread(target=_drain, args=(job, channel), daemon=True)
    drainer.start()
    _tracker.start(job)

    # one browser profile per job so concurrent runs never share a session
    profile_dir = os.path.join(settings.profile_dir, f"job-{job.id}")
    try:
        summary = run_crawl_job(job.request, settings=settings, channel=channel, profile_dir=profile_dir)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Crawl job %s failed: %s", job.id, exc)
        drainer.join()
        _tracker.fail(job, str(exc))
        post_crawl_result(job.id, None, error=str(exc), settings=settings)
        return

    drainer.join()
    _tracker.succeed(job, summary)
    logger.info(
        "Crawl job %s completed: %d new, %d updated, %d skipped",
        job.id,
        summary.new_entries,
        summary.updates,
        summary.skipped,
    )
    post_crawl_result(job.id, summary, settings=settings)


def main() -> None:
    port = get_settings().worker_port
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)
    app.run(host="0.0.0.0", port=port, threaded=True)


if __name__ == "__main__":
    main()
