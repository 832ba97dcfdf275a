"""Tests for the SQLite status store."""

from esg_pipeline.db.status_store import StatusStore
from esg_pipeline.schemas.enums import ProcessingStage, ProcessingStatus

EXTRACTION = ProcessingStage.EXTRACTION


def _member(record_id):
    return {
        "record_id": record_id,
        "display_name": record_id.title(),
        "source_url": f"https://{record_id}.de/report.pdf",
        "industry": "energy",
        "expected_shape": "json",
    }


class TestRecordsAndStatus:
    def test_upsert_record_updates_in_place(self, status_store, pdf_source):
        status_store.upsert_record(pdf_source)
        status_store.upsert_record(pdf_source.model_copy(update={"industry_tag": "construction"}))
        status_store.upsert_status("acme_bau", EXTRACTION, ProcessingStatus.PENDING)
        (row,) = status_store.get_all_statuses()
        assert row["industry"] == "construction"
        assert row["display_name"] == "Acme Bau GmbH"

    def test_stages_are_independent(self, status_store):
        status_store.upsert_status("acme", ProcessingStage.DOWNLOAD, ProcessingStatus.COMPLETE, "Downloaded")
        status_store.upsert_status("acme", EXTRACTION, ProcessingStatus.FAILED, "Parse error")
        row = status_store.get_status("acme")
        assert row["download_status"] == "complete"
        assert row["download_message"] == "Downloaded"
        assert row["extraction_status"] == "failed"
        assert row["extraction_message"] == "Parse error"

    def test_new_row_defaults_other_stage_to_pending(self, status_store):
        status_store.upsert_status("acme", EXTRACTION, ProcessingStatus.IN_PROGRESS)
        assert status_store.get_status("acme")["download_status"] == "pending"

    def test_get_status_unknown_record(self, status_store):
        assert status_store.get_status("nobody") is None

    def test_statuses_without_record_row(self, status_store):
        status_store.upsert_status("orphan", EXTRACTION, ProcessingStatus.COMPLETE)
        (row,) = status_store.get_all_statuses()
        assert row["record_id"] == "orphan"
        assert row["display_name"] is None

    def test_file_backed_store_persists(self, tmp_path):
        path = tmp_path / "db" / "status.db"
        store = StatusStore(path)
        store.upsert_status("acme", EXTRACTION, ProcessingStatus.COMPLETE)
        store.close()

        reopened = StatusStore(path)
        assert reopened.get_status("acme")["extraction_status"] == "complete"
        reopened.close()


class TestReset:
    def test_reset_one_record(self, status_store):
        status_store.upsert_status("a", EXTRACTION, ProcessingStatus.FAILED, "boom")
        status_store.upsert_status("b", EXTRACTION, ProcessingStatus.COMPLETE, "ok")
        assert status_store.reset_status("a") == 1
        assert status_store.get_status("a")["extraction_status"] == "pending"
        assert status_store.get_status("a")["extraction_message"] is None
        assert status_store.get_status("b")["extraction_status"] == "complete"

    def test_reset_all_records(self, status_store):
        for record_id in ("a", "b", "c"):
            status_store.upsert_status(record_id, EXTRACTION, ProcessingStatus.COMPLETE)
        assert status_store.reset_status() == 3
        assert {r["extraction_status"] for r in status_store.get_all_statuses()} == {"pending"}

    def test_reset_leaves_other_stage(self, status_store):
        status_store.upsert_status("a", ProcessingStage.DOWNLOAD, ProcessingStatus.COMPLETE)
        status_store.upsert_status("a", EXTRACTION, ProcessingStatus.COMPLETE)
        status_store.reset_status("a")
        assert status_store.get_status("a")["download_status"] == "complete"


class TestShouldProcess:
    def test_new_record(self, status_store):
        assert status_store.should_process("new")

    def test_terminal_states(self, status_store):
        status_store.upsert_status("done", EXTRACTION, ProcessingStatus.COMPLETE)
        status_store.upsert_status("skip", EXTRACTION, ProcessingStatus.SKIPPED)
        status_store.upsert_status("fail", EXTRACTION, ProcessingStatus.FAILED)
        assert not status_store.should_process("done")
        assert not status_store.should_process("skip")
        assert status_store.should_process("fail")

    def test_pending_and_stale_in_progress(self, status_store):
        status_store.upsert_status("pending", EXTRACTION, ProcessingStatus.PENDING)
        status_store.upsert_status("stale", EXTRACTION, ProcessingStatus.IN_PROGRESS)
        assert status_store.should_process("pending")
        assert status_store.should_process("stale")

    def test_member_of_active_batch_is_left_alone(self, status_store):
        status_store.store_batch("msgbatch_1", [_member("alpha")])
        status_store.upsert_status("alpha", EXTRACTION, ProcessingStatus.IN_PROGRESS, "Added to batch processing queue")
        assert not status_store.should_process("alpha")

        status_store.update_batch_status("msgbatch_1", "completed")
        assert status_store.should_process("alpha")

    def test_other_stage_is_checked_separately(self, status_store):
        status_store.upsert_status("a", EXTRACTION, ProcessingStatus.COMPLETE)
        assert status_store.should_process("a", ProcessingStage.DOWNLOAD)


class TestBatches:
    def test_store_and_read_back(self, status_store):
        status_store.store_batch("msgbatch_1", [_member("beta"), _member("alpha")], created_at="2025-03-01T08:00:00+00:00")
        batch = status_store.get_batch("msgbatch_1")
        assert batch["status"] == "in_progress"
        assert batch["created_at"] == "2025-03-01T08:00:00+00:00"
        members = status_store.get_batch_members("msgbatch_1")
        assert [m["record_id"] for m in members] == ["alpha", "beta"]
        assert members[0]["source_url"] == "https://alpha.de/report.pdf"

    def test_expected_shape_defaults_to_json(self, status_store):
        status_store.store_batch("msgbatch_1", [{"record_id": "alpha"}])
        assert status_store.get_batch_members("msgbatch_1")[0]["expected_shape"] == "json"

    def test_active_batches(self, status_store):
        status_store.store_batch("older", [_member("a")], created_at="2025-03-01T08:00:00+00:00")
        status_store.store_batch("newer", [_member("b")], created_at="2025-03-02T08:00:00+00:00")
        status_store.store_batch("done", [_member("c")], created_at="2025-02-01T08:00:00+00:00")
        status_store.update_batch_status("done", "completed", "Processed 1 results: complete=1")

        assert [b["batch_id"] for b in status_store.get_active_batches()] == ["older", "newer"]
        assert status_store.get_batch("done")["message"] == "Processed 1 results: complete=1"

    def test_unknown_batch(self, status_store):
        assert status_store.get_batch("missing") is None
        assert status_store.get_batch_members("missing") == []
