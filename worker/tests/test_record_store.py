import os

import pytest

from src.core import record_store
from src.core.models import CSV_HEADER, Record


def _record(link, phone="555-0100", reviews="10", name="Acme"):
    return Record(
        name=name,
        phone=phone,
        website="https://acme.example",
        rating_value="4.5",
        review_count=reviews,
        category="Lawyer",
        address="1 Main St",
        source_link=link,
    )


def test_load_missing_file_returns_empty(tmp_path):
    assert record_store.load(str(tmp_path / "missing.csv")) == {}


def test_load_skips_truncated_rows(tmp_path):
    path = tmp_path / "leads.csv"
    path.write_text(
        ",".join(CSV_HEADER) + "\n"
        "Acme,555,https://a,4.5,10,Lawyer,1 Main St,link-a\n"
        "Broken,555,https://b\n"
        'Beta,"555, ext 2",,4.0,3,Lawyer,"2 Side St, NY",link-b\n',
        encoding="utf-8",
    )

    records = record_store.load(str(path))

    assert set(records) == {"link-a", "link-b"}
    assert records["link-b"].phone == "555, ext 2"
    assert records["link-b"].address == "2 Side St, NY"


def test_merge_counts_new_and_updated():
    existing = {"a": _record("a"), "b": _record("b")}
    incoming = [_record("a"), _record("b", reviews="11"), _record("c")]

    merged, new_count, update_count = record_store.merge(existing, incoming)

    assert new_count == 1
    assert update_count == 1
    assert merged["b"].review_count == "11"
    assert set(merged) == {"a", "b", "c"}
    assert existing["b"].review_count == "10"


def test_merge_phone_change_is_update():
    _, new_count, update_count = record_store.merge({"a": _record("a")}, [_record("a", phone="555-0199")])
    assert (new_count, update_count) == (0, 1)


def test_merge_is_idempotent():
    first, _, _ = record_store.merge({}, [_record("a")])
    second, new_count, update_count = record_store.merge(first, [_record("a")])

    assert new_count == 0
    assert update_count == 0
    assert second == first


def test_merge_keeps_records_missing_from_incoming():
    merged, _, _ = record_store.merge({"old": _record("old")}, [_record("new")])
    assert "old" in merged


def test_persist_round_trip(tmp_path):
    path = str(tmp_path / "leads.csv")
    records = {
        "a": _record("a"),
        "b": Record(name='Quote "Co", LLC', address="Line 1\nLine 2", source_link="b"),
    }

    record_store.persist(path, records)
    loaded = record_store.load(path)
    record_store.persist(path, loaded)

    assert record_store.load(path) == records
    with open(path, encoding="utf-8") as fh:
        assert fh.readline().strip() == ",".join(CSV_HEADER)


def test_persist_failure_keeps_previous_file(tmp_path, monkeypatch):
    path = str(tmp_path / "leads.csv")
    record_store.persist(path, {"a": _record("a")})

    def broken_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(record_store.os, "replace", broken_replace)

    with pytest.raises(record_store.PersistenceError):
        record_store.persist(path, {"a": _record("a"), "b": _record("b")})

    assert set(record_store.load(path)) == {"a"}
    assert os.listdir(tmp_path) == ["leads.csv"]


def test_parse_upload_validates_header():
    with pytest.raises(record_store.CsvValidationError) as excinfo:
        record_store.parse_upload("Name,Phone\nAcme,555\n")
    assert "Expected 8 columns" in str(excinfo.value)

    with pytest.raises(record_store.CsvValidationError):
        record_store.parse_upload("Name,Phone,Website,Rating,Reviews,Category,Street,System_Link_ID\n")

    with pytest.raises(record_store.CsvValidationError):
        record_store.parse_upload("")


def test_parse_upload_rejects_header_only():
    with pytest.raises(record_store.CsvValidationError) as excinfo:
        record_store.parse_upload(",".join(CSV_HEADER) + "\n")
    assert "no data rows" in str(excinfo.value)


def test_parse_upload_dedupes_by_link():
    text = record_store.render([_record("a"), _record("a", name="Dup"), _record("b")])
    records = record_store.parse_upload(text)
    assert [record.source_link for record in records] == ["a", "b"]
    assert records[0].name == "Acme"


def test_merge_upload_never_overwrites():
    existing = {"a": _record("a")}
    merged, new_count, skipped = record_store.merge_upload(existing, [_record("a", phone="999"), _record("b")])

    assert new_count == 1
    assert skipped == 1
    assert merged["a"].phone == "555-0100"


def test_rows_without_link_survive_upload_and_reload(tmp_path):
    path = str(tmp_path / "leads.csv")
    body = record_store.render(
        [
            Record(name="Acme", phone="555", address="1 Main St"),
            Record(name="Beta", phone="556", address="2 Side St"),
        ]
    )

    merged, new_count, _ = record_store.merge_upload(record_store.load(path), record_store.parse_upload(body))
    record_store.persist(path, merged)
    reloaded = record_store.load(path)

    assert new_count == 2
    assert set(reloaded) == {"Acme-1 Main St", "Beta-2 Side St"}

    merged, new_count, skipped = record_store.merge_upload(reloaded, record_store.parse_upload(body))
    assert (new_count, skipped, len(merged)) == (0, 2, 2)


def test_lock_for_is_shared_per_file(tmp_path):
    lock = record_store.lock_for(str(tmp_path / "leads.csv"))

    assert record_store.lock_for(os.path.join(str(tmp_path), ".", "leads.csv")) is lock
    assert record_store.lock_for(str(tmp_path / "other.csv")) is not lock
