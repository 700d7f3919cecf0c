import random

import pytest

from fakes import FakeBrowser, FakeClock, node
from src.core import orchestrator, record_store
from src.core.link_collector import build_query, build_search_url
from src.core.models import Candidate, CrawlRequest, Record
from src.core.pacing import Deadline, PacingPolicy


def _url(key, category="Lawyer"):
    return build_search_url(build_query(category, key))


def _page(phone="555-0100", rating="4.5 stars (10)"):
    return {"phone": phone, "website": "https://x.example", "address": "Address: 1 Main", "rating": rating, "category": "Lawyer"}


def _run(browser, tmp_path, keys, clock=None, deadline_seconds=None):
    clock = clock or FakeClock()
    deadline = Deadline(deadline_seconds, clock=clock, sleep=clock.sleep)
    browser.deadline = deadline
    events = []
    crawl = orchestrator.CrawlOrchestrator(
        browser,
        data_dir=str(tmp_path),
        pacing=PacingPolicy(random.Random(11)),
        deadline=deadline,
        emit=events.append,
    )
    summary = crawl.run(CrawlRequest.from_input("leads", keys, "Lawyer"))
    return crawl, summary, events


def test_consolidate_dedupes_by_link():
    merged = orchestrator.consolidate(
        [[Candidate("a", "A"), Candidate("b", "B")], [Candidate("b", "B other"), Candidate("c", "C")]]
    )
    assert list(merged) == ["a", "b", "c"]
    assert merged["b"].name == "B"


def test_link_in_two_partitions_is_scraped_once(tmp_path):
    browser = FakeBrowser(
        feeds={
            _url("10001"): [[node("l1", "A"), node("l2", "B")]],
            _url("10002"): [[node("l2", "B"), node("l3", "C")]],
        },
        pages={"l1": _page(), "l2": _page(), "l3": _page()},
    )

    crawl, summary, events = _run(browser, tmp_path, "10001, 10002")

    place_visits = [url for url in browser.navigations if url.startswith("l")]
    assert sorted(place_visits) == ["l1", "l2", "l3"]
    assert summary.new_entries == 3
    assert summary.total == 3
    assert crawl.state == orchestrator.CrawlState.DONE
    messages = [event.message for event in events]
    assert "10001: found 2 unique businesses" in messages
    assert "10002: found 1 unique businesses" in messages
    assert any(message.startswith("Consolidated list: 3 unique") for message in messages)
    assert set(record_store.load(str(tmp_path / "leads.csv"))) == {"l1", "l2", "l3"}


def test_partial_failures_are_reported_once_and_absorbed(tmp_path):
    record_store.persist(
        str(tmp_path / "leads.csv"),
        {"l2": Record(name="B", phone="555-0100", review_count="10", source_link="l2")},
    )
    browser = FakeBrowser(
        feeds={_url("10001"): [[node("l1", "A"), node("l2", "B"), node("l3", "C"), node("l4", "D")]]},
        pages={"l1": _page(), "l2": _page(), "l3": _page(phone="555-0199")},
        fail_links={"l4"},
    )

    _, summary, events = _run(browser, tmp_path, "10001")

    errors = [event for event in events if event.kind == "error"]
    assert len(errors) == 1
    assert "D" in errors[0].message and "l4" in errors[0].message
    assert summary.failed == 1
    assert summary.new_entries + summary.updates + summary.skipped == 3
    assert summary.skipped == 1
    scrapes = [event for event in events if event.kind == "scrape"]
    assert [(event.current, event.total) for event in scrapes] == [(1, 4), (2, 4), (3, 4)]


def test_failed_partition_is_skipped(tmp_path):
    browser = FakeBrowser(
        feeds={_url("10002"): [[node("l1", "A")]]},
        pages={"l1": _page()},
    )

    _, summary, events = _run(browser, tmp_path, "10001, 10002")

    assert summary.new_entries == 1
    assert any("Skipping 10001" in event.message for event in events)


def test_no_partition_keys_aborts_before_browser_work(tmp_path):
    browser = FakeBrowser()
    crawl = orchestrator.CrawlOrchestrator(browser, data_dir=str(tmp_path))

    with pytest.raises(orchestrator.ConfigurationError):
        crawl.run(CrawlRequest.from_input("leads", " , ", "Lawyer"))

    assert browser.navigations == []
    assert not (tmp_path / "leads.csv").exists()


def test_timeout_saves_partial_results_and_keeps_old_records(tmp_path):
    record_store.persist(str(tmp_path / "leads.csv"), {"old": Record(name="Old", source_link="old")})
    clock = FakeClock()
    visits = []

    def advance_after_two_places(url):
        if url.startswith("l"):
            visits.append(url)
            if len(visits) == 3:
                clock.now += 1_000_000

    links = [f"l{i}" for i in range(6)]
    browser = FakeBrowser(
        feeds={_url("10001"): [[node(link, link.upper()) for link in links]]},
        pages={link: _page() for link in links},
        on_navigate=advance_after_two_places,
    )

    crawl, summary, events = _run(browser, tmp_path, "10001", clock=clock, deadline_seconds=3600)

    assert summary.timed_out is True
    assert summary.new_entries == 2
    assert summary.failed == 0
    assert not [event for event in events if event.kind == "error"]
    assert crawl.state == orchestrator.CrawlState.DONE
    stored = record_store.load(str(tmp_path / "leads.csv"))
    assert "old" in stored
    assert len(stored) == 3


def test_long_break_every_tenth_candidate(tmp_path):
    links = [f"l{i}" for i in range(10)]
    browser = FakeBrowser(
        feeds={_url("10001"): [[node(link, link) for link in links]]},
        pages={link: _page() for link in links},
    )
    clock = FakeClock()

    _, summary, events = _run(browser, tmp_path, "10001", clock=clock)

    assert summary.new_entries == 10
    assert [event.message for event in events].count("Taking a short break (human behavior)...") == 1
    assert 8.0 in clock.slept


def test_unreadable_store_is_treated_as_empty(tmp_path):
    (tmp_path / "leads.csv").write_bytes(b"\xff\xfe\x00garbage")
    browser = FakeBrowser(feeds={_url("10001"): [[node("l1", "A")]]}, pages={"l1": _page()})

    _, summary, _ = _run(browser, tmp_path, "10001")

    assert summary.new_entries == 1


def test_persistence_failure_fails_the_run(tmp_path, monkeypatch):
    browser = FakeBrowser(feeds={_url("10001"): [[node("l1", "A")]]}, pages={"l1": _page()})

    def broken_persist(path, records):
        raise record_store.PersistenceError("disk full")

    monkeypatch.setattr(orchestrator.record_store, "persist", broken_persist)
    crawl = orchestrator.CrawlOrchestrator(
        browser,
        data_dir=str(tmp_path),
        pacing=PacingPolicy(random.Random(1)),
        deadline=Deadline(None, sleep=lambda seconds: None),
    )

    with pytest.raises(record_store.PersistenceError):
        crawl.run(CrawlRequest.from_input("leads", "10001", "Lawyer"))

    assert crawl.state == orchestrator.CrawlState.FAILED


def test_summary_to_dict(tmp_path):
    browser = FakeBrowser(feeds={_url("10001"): [[node("l1", "A")]]}, pages={"l1": _page()})

    _, summary, _ = _run(browser, tmp_path, "10001")
    payload = summary.to_dict()

    assert payload["status"] == "success"
    assert payload["newEntries"] == 1
    assert payload["total"] == 1
    assert payload["timedOut"] is False
    assert payload["records"][0]["System_Link_ID"] == "l1"
    assert "records" not in summary.to_dict(include_records=False)


def test_records_written_during_the_run_are_kept(tmp_path):
    path = str(tmp_path / "leads.csv")

    def other_writer(url):
        if url == "l1":
            record_store.persist(path, {"elsewhere": Record(name="Other", source_link="elsewhere")})

    browser = FakeBrowser(feeds={_url("10001"): [[node("l1", "A")]]}, pages={"l1": _page()}, on_navigate=other_writer)

    _, summary, _ = _run(browser, tmp_path, "10001")

    assert summary.new_entries == 1
    assert set(record_store.load(path)) == {"elsewhere", "l1"}
