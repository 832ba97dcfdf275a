"""Tests for the raw response and extracted record file stores."""

import json

from esg_pipeline.db.file_store import RawResponseStore, RecordStore


class TestRawResponseStore:
    def test_save_raw(self, raw_store, tmp_path):
        path = raw_store.save_raw("acme", "raw model text")
        assert path == tmp_path / "output" / "raw_responses" / "acme_raw_response.txt"
        assert path.read_text(encoding="utf-8") == "raw model text"

    def test_write_failure_is_not_raised(self, tmp_path):
        blocker = tmp_path / "output"
        blocker.write_text("not a directory")
        store = RawResponseStore(blocker)
        assert store.save_raw("acme", "text") is None


class TestRecordStore:
    def test_save_and_load(self, record_store, tmp_path):
        record = {"basicInformation": {"companyName": "Grün AG"}}
        path = record_store.save_extracted_record("gruen_ag", record)
        assert path == tmp_path / "output" / "extracted" / "gruen_ag_extracted.json"
        assert "Grün AG" in path.read_text(encoding="utf-8")
        assert record_store.load("gruen_ag") == record

    def test_load_missing(self, record_store):
        assert record_store.load("missing") is None

    def test_load_all_sorted_and_skips_broken_files(self, record_store):
        record_store.save_extracted_record("zeta", {"abstract": "z"})
        record_store.save_extracted_record("alpha", {"abstract": "a"})
        record_store.path_for("broken").write_text("{not json", encoding="utf-8")

        records = record_store.load_all()
        assert list(records) == ["alpha", "zeta"]
        assert records["alpha"] == {"abstract": "a"}

    def test_load_all_without_directory(self, tmp_path):
        assert RecordStore(tmp_path / "nothing").load_all() == {}

    def test_overwrite_replaces_record(self, record_store):
        record_store.save_extracted_record("acme", {"abstract": "old"})
        record_store.save_extracted_record("acme", {"abstract": "new"})
        with open(record_store.path_for("acme"), encoding="utf-8") as f:
            assert json.load(f) == {"abstract": "new"}
