"""Tests for batch creation, result fan-out and the batch monitor."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from conftest import FakeAPIError, FakeBatchClient, RecordingSleep
from esg_pipeline.llm.batch_client import BatchResultItem
from esg_pipeline.pipeline.batch_coordinator import (
    CANCELED_MESSAGE,
    EXPIRED_MESSAGE,
    QUEUED_MESSAGE,
    BatchCoordinator,
    is_near_expiry,
)
from esg_pipeline.pipeline.batch_monitor import BatchMonitor, progress_percent
from esg_pipeline.pipeline.orchestrator import PARSE_FAILURE_REASON
from esg_pipeline.schemas.enums import BatchLifecycle, MemberOutcome, ProcessingStatus
from esg_pipeline.schemas.records import BatchCounts, BatchJob, SourceRecord
from esg_pipeline.utils.backoff import BackoffInvoker
from esg_pipeline.utils.errors import OVERLOAD_HINT, BatchSubmissionError

# ─── Helpers ──────────────────────────────────────────────────────────────────


@pytest.fixture
def batch_client():
    return FakeBatchClient()


@pytest.fixture
def retry_sleep():
    return RecordingSleep()


@pytest.fixture
def coordinator(batch_client, criteria_provider, status_store, raw_store, record_store, retry_sleep):
    return BatchCoordinator(
        batch_client=batch_client,
        criteria_provider=criteria_provider,
        status_store=status_store,
        raw_store=raw_store,
        record_store=record_store,
        invoker=BackoffInvoker(max_retries=2, initial_delay_ms=100, sleep=retry_sleep, jitter=lambda: 0),
        model="claude-test",
    )


def _pdf(record_id: str, industry: str = "energy") -> SourceRecord:
    return SourceRecord(
        id=record_id,
        display_name=record_id.replace("_", " ").title(),
        source_url=f"https://{record_id}.de/report.pdf",
        industry_tag=industry,
    )


def _status(status_store, record_id):
    row = status_store.get_status(record_id)
    return row["extraction_status"], row["extraction_message"]


def _overloaded():
    return FakeAPIError("Overloaded", status_code=529, error_type="overloaded_error")


class FlakyBatchClient(FakeBatchClient):
    """Fails the first `failures` submissions and status polls with an overload error."""

    def __init__(self, submit_failures: int = 0, status_failures: int = 0):
        super().__init__()
        self.submit_failures = submit_failures
        self.status_failures = status_failures
        self.submit_calls = 0

    async def submit_batch(self, requests):
        self.submit_calls += 1
        if self.submit_calls <= self.submit_failures:
            raise _overloaded()
        return await super().submit_batch(requests)

    async def get_batch_status(self, job_id):
        if self.status_failures > 0:
            self.status_failures -= 1
            raise _overloaded()
        return await super().get_batch_status(job_id)


class TestCreateBatch:
    def test_only_pdf_members_are_submitted(self, coordinator, batch_client, status_store, website_source):
        sources = [_pdf("alpha"), website_source, SourceRecord(id="blank", display_name="Blank"), _pdf("beta")]
        creation = asyncio.run(coordinator.create_batch(sources))

        assert creation.job.job_id == "msgbatch_test"
        assert creation.submitted_ids == ["alpha", "beta"]
        assert [r.external_id for r in batch_client.submitted] == ["alpha", "beta"]
        assert {r.record_id for r in creation.skipped} == {"gruen_ag", "blank"}
        assert all(r.status == ProcessingStatus.SKIPPED for r in creation.skipped)
        assert _status(status_store, "gruen_ag") == (
            "skipped",
            "Batch processing only supports PDF sources (got website)",
        )
        assert _status(status_store, "alpha") == ("in_progress", QUEUED_MESSAGE)

    def test_request_params(self, coordinator, batch_client):
        asyncio.run(coordinator.create_batch([_pdf("alpha")]))
        params = batch_client.submitted[0].to_api()["params"]
        assert params["model"] == "claude-test"
        assert params["max_tokens"] == 4000
        assert "system" in params
        assert "https://alpha.de/report.pdf" in params["messages"][0]["content"]

    def test_members_are_stored_with_expected_shape(self, coordinator, status_store):
        asyncio.run(coordinator.create_batch([_pdf("alpha"), _pdf("bau", "construction")]))
        members = {m["record_id"]: m for m in status_store.get_batch_members("msgbatch_test")}
        assert members["alpha"]["expected_shape"] == "json"
        assert members["bau"]["expected_shape"] == "xml-sustainability"
        assert [b["batch_id"] for b in status_store.get_active_batches()] == ["msgbatch_test"]

    def test_no_eligible_members(self, coordinator, batch_client, website_source):
        creation = asyncio.run(coordinator.create_batch([website_source]))
        assert creation.job is None
        assert batch_client.submitted == []
        assert len(creation.skipped) == 1

    def test_submission_failure_marks_members_failed(self, criteria_provider, status_store, raw_store, record_store):
        client = FakeBatchClient(submit_error=FakeAPIError("invalid request", status_code=400))
        coordinator = BatchCoordinator(client, criteria_provider, status_store, raw_store, record_store)
        with pytest.raises(BatchSubmissionError):
            asyncio.run(coordinator.create_batch([_pdf("alpha")]))
        status, message = _status(status_store, "alpha")
        assert status == "failed"
        assert message == "Failed to create batch: invalid request"
        assert status_store.get_active_batches() == []

    @pytest.mark.parametrize("batch_client", [FlakyBatchClient(submit_failures=1)])
    def test_overloaded_submission_is_retried(self, coordinator, batch_client, status_store, retry_sleep):
        creation = asyncio.run(coordinator.create_batch([_pdf("alpha")]))

        assert batch_client.submit_calls == 2
        assert retry_sleep.delays == [0.1]
        assert creation.job.job_id == "msgbatch_test"
        assert _status(status_store, "alpha") == ("in_progress", QUEUED_MESSAGE)
        assert [b["batch_id"] for b in status_store.get_active_batches()] == ["msgbatch_test"]

    @pytest.mark.parametrize("batch_client", [FlakyBatchClient(submit_failures=5)])
    def test_persistent_overload_fails_submission(self, coordinator, batch_client, status_store, retry_sleep, caplog):
        with caplog.at_level("WARNING"):
            with pytest.raises(BatchSubmissionError):
                asyncio.run(coordinator.create_batch([_pdf("alpha")]))

        assert batch_client.submit_calls == 3
        assert retry_sleep.delays == [0.1, 0.2]
        assert _status(status_store, "alpha") == ("failed", "Failed to create batch: Overloaded")
        assert OVERLOAD_HINT in caplog.text


class TestProcessResults:
    def _submit(self, coordinator, *sources):
        asyncio.run(coordinator.create_batch(list(sources)))

    def test_running_batch_is_left_alone(self, coordinator, batch_client, status_store):
        self._submit(coordinator, _pdf("alpha"))
        processing = asyncio.run(coordinator.process_results("msgbatch_test"))
        assert not processing.ended
        assert processing.results == []
        assert _status(status_store, "alpha")[0] == "in_progress"

    def test_member_outcomes(self, coordinator, batch_client, status_store, record_store, valid_json_response):
        self._submit(coordinator, _pdf("alpha"), _pdf("beta"), _pdf("gamma"), _pdf("delta"), _pdf("epsilon"))
        batch_client.lifecycle = BatchLifecycle.ENDED
        batch_client.results = [
            BatchResultItem("alpha", MemberOutcome.SUCCEEDED, text=valid_json_response, input_tokens=900, output_tokens=200),
            BatchResultItem("beta", MemberOutcome.ERRORED, error_type="invalid_request_error", error_message="prompt is too long"),
            BatchResultItem("gamma", MemberOutcome.EXPIRED),
            BatchResultItem("delta", MemberOutcome.CANCELED),
            BatchResultItem("epsilon", MemberOutcome.SUCCEEDED, text="No report found."),
        ]
        processing = asyncio.run(coordinator.process_results("msgbatch_test"))

        assert processing.ended
        assert processing.counts == {"complete": 1, "failed": 4}
        assert _status(status_store, "alpha")[0] == "complete"
        assert record_store.load("alpha")["carbonFootprint"]["scope1_2023"] == "1.056 t CO2e"
        assert _status(status_store, "beta") == ("failed", "Batch processing error: prompt is too long")
        assert record_store.load("beta")["extractionError"] == "Batch processing error: prompt is too long"
        assert _status(status_store, "gamma") == ("failed", EXPIRED_MESSAGE)
        assert _status(status_store, "delta") == ("failed", CANCELED_MESSAGE)
        assert _status(status_store, "epsilon") == ("failed", PARSE_FAILURE_REASON)
        assert record_store.load("epsilon")["rawResponse"] == "No report found...."
        assert coordinator.token_tracker.totals()["batch_calls"] == 2

        assert status_store.get_batch("msgbatch_test")["status"] == "completed"
        assert status_store.get_active_batches() == []

    def test_xml_members_use_xml_recovery(self, coordinator, batch_client, record_store, construction_xml_response):
        self._submit(coordinator, _pdf("bau", "construction"))
        batch_client.lifecycle = BatchLifecycle.ENDED
        batch_client.results = [BatchResultItem("bau", MemberOutcome.SUCCEEDED, text=construction_xml_response)]
        asyncio.run(coordinator.process_results("msgbatch_test"))
        saved = record_store.load("bau")
        assert saved["buildings"]["actions"] == ["# Timber frame houses", "# Green roofs"]
        assert saved["industry"] == "construction"

    @pytest.mark.parametrize("batch_client", [FlakyBatchClient(status_failures=1)])
    def test_overloaded_status_poll_is_retried(self, coordinator, batch_client, status_store, retry_sleep):
        self._submit(coordinator, _pdf("alpha"))
        batch_client.lifecycle = BatchLifecycle.ENDED
        batch_client.results = [BatchResultItem("alpha", MemberOutcome.CANCELED)]
        processing = asyncio.run(coordinator.process_results("msgbatch_test"))

        assert processing.ended
        assert retry_sleep.delays == [0.1]
        assert _status(status_store, "alpha") == ("failed", CANCELED_MESSAGE)

    def test_unknown_result_ids_are_ignored(self, coordinator, batch_client, status_store):
        self._submit(coordinator, _pdf("alpha"))
        batch_client.lifecycle = BatchLifecycle.ENDED
        batch_client.results = [BatchResultItem("stranger", MemberOutcome.CANCELED)]
        processing = asyncio.run(coordinator.process_results("msgbatch_test"))
        assert processing.results == []
        assert status_store.get_status("stranger") is None


class TestExpiry:
    def test_near_expiry_threshold(self):
        created = datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)
        job = BatchJob(job_id="b", created_at=created)
        assert not is_near_expiry(job, created + timedelta(hours=21, minutes=59))
        assert is_near_expiry(job, created + timedelta(hours=22))

    def test_ended_job_is_never_near_expiry(self):
        created = datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)
        job = BatchJob(job_id="b", created_at=created, lifecycle_state=BatchLifecycle.ENDED)
        assert not is_near_expiry(job, created + timedelta(hours=23))

    def test_progress_percent(self):
        job = BatchJob(job_id="b", counts=BatchCounts(processing=3, succeeded=5, errored=2))
        assert progress_percent(job) == 70.0
        assert progress_percent(BatchJob(job_id="empty")) == 0.0


class TestBatchMonitor:
    def test_cycle_reports_running_batches(self, coordinator, batch_client, status_store):
        asyncio.run(coordinator.create_batch([_pdf("alpha")]))
        monitor = BatchMonitor(coordinator, status_store)
        cycle = asyncio.run(monitor.check_active_batches())
        assert cycle.checked == 1
        assert [job.job_id for job in cycle.running] == ["msgbatch_test"]
        assert cycle.still_active

    def test_run_stops_when_batches_are_processed(self, coordinator, batch_client, status_store, valid_json_response):
        asyncio.run(coordinator.create_batch([_pdf("alpha")]))
        sleep = RecordingSleep()

        async def end_batch(seconds):
            await sleep(seconds)
            batch_client.lifecycle = BatchLifecycle.ENDED
            batch_client.results = [BatchResultItem("alpha", MemberOutcome.SUCCEEDED, text=valid_json_response)]

        monitor = BatchMonitor(coordinator, status_store, sleep=end_batch)
        cycles = asyncio.run(monitor.run(interval_seconds=60))

        assert len(cycles) == 2
        assert sleep.delays == [60]
        assert cycles[1].processed[0].counts == {"complete": 1}
        assert _status(status_store, "alpha")[0] == "complete"

    def test_run_respects_max_cycles(self, coordinator, status_store):
        asyncio.run(coordinator.create_batch([_pdf("alpha")]))
        sleep = RecordingSleep()
        monitor = BatchMonitor(coordinator, status_store, sleep=sleep)
        cycles = asyncio.run(monitor.run(interval_seconds=5, max_cycles=3))
        assert len(cycles) == 3
        assert sleep.delays == [5, 5]

    def test_failed_poll_is_reported(self, coordinator, batch_client, status_store):
        asyncio.run(coordinator.create_batch([_pdf("alpha")]))

        async def broken_status(job_id):
            raise FakeAPIError("connection reset")

        batch_client.get_batch_status = broken_status
        cycle = asyncio.run(BatchMonitor(coordinator, status_store).check_active_batches())
        assert len(cycle.errors) == 1
        assert "connection reset" in cycle.errors[0]
