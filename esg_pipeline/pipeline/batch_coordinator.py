"""
Batch coordinator - submits many PDF records as one upstream batch job and
turns its per-member outcomes into terminal statuses.

The coordinator never schedules itself. check_status() and
process_results() are discrete pull operations; pipeline.batch_monitor
decides how often to call them and when to warn about expiry.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from ..constants import (
    BATCH_EXPIRY_HOURS,
    BATCH_WARNING_HOURS,
    DEFAULT_MAX_TOKENS,
    DEFAULT_MODEL,
    DEFAULT_TEMPERATURE,
)
from ..db.file_store import RawResponseStore, RecordStore
from ..db.status_store import StatusStore
from ..llm.batch_client import BatchClient, BatchRequest, BatchResultItem, build_message_params
from ..llm.prompt_builder import IndustryPromptRegistry, PromptPlan, build_extraction_prompt
from ..parsers.response_recovery import recover
from ..schemas.enums import BatchLifecycle, ExpectedShape, MemberOutcome, ProcessingStage, ProcessingStatus, SourceKind
from ..schemas.records import BatchJob, ExtractionResult, SourceRecord
from ..utils.backoff import BackoffInvoker
from ..utils.criteria_loader import CriteriaProvider
from ..utils.errors import BatchSubmissionError, log_error
from ..utils.token_tracker import TokenTracker
from ..utils.url_helpers import classify_source_url
from ..validators.record_normalizer import NormalizationContext, build_fallback_record, normalize
from .orchestrator import PARSE_FAILURE_REASON, persist_result, skip_reason

QUEUED_MESSAGE = "Added to batch processing queue"
EXPIRED_MESSAGE = f"Batch request expired after {BATCH_EXPIRY_HOURS} hours"
CANCELED_MESSAGE = "Batch request was canceled"
BATCH_COMPLETED_STATUS = "completed"


@dataclass
class BatchCreation:
    """What create_batch submitted and what it skipped."""

    job: Optional[BatchJob]
    submitted_ids: List[str] = field(default_factory=list)
    skipped: List[ExtractionResult] = field(default_factory=list)


@dataclass
class BatchProcessing:
    """Outcome of one process_results call."""

    job: BatchJob
    ended: bool
    results: List[ExtractionResult] = field(default_factory=list)

    @property
    def counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for result in self.results:
            counts[result.status.value] = counts.get(result.status.value, 0) + 1
        return counts


def is_near_expiry(job: BatchJob, now: Optional[datetime] = None) -> bool:
    """True when a running job has passed the soft warning threshold."""
    return job.lifecycle_state != BatchLifecycle.ENDED and job.hours_elapsed(now) >= BATCH_WARNING_HOURS


def batch_skip_reason(source: SourceRecord, source_kind: SourceKind) -> Optional[str]:
    reason = skip_reason(source, source_kind)
    if reason:
        return reason
    if source_kind != SourceKind.PDF:
        return f"Batch processing only supports PDF sources (got {source_kind.value})"
    return None


class BatchCoordinator:
    """Creates batch jobs, polls them and fans their results out."""

    def __init__(
        self,
        batch_client: BatchClient,
        criteria_provider: CriteriaProvider,
        status_store: StatusStore,
        raw_store: RawResponseStore,
        record_store: RecordStore,
        prompt_registry: Optional[IndustryPromptRegistry] = None,
        token_tracker: Optional[TokenTracker] = None,
        invoker: Optional[BackoffInvoker] = None,
        model: str = DEFAULT_MODEL,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = DEFAULT_TEMPERATURE,
        strict: bool = False,
        logger=None,
    ):
        self.batch_client = batch_client
        self.criteria_provider = criteria_provider
        self.status_store = status_store
        self.raw_store = raw_store
        self.record_store = record_store
        self.logger = logger or logging.getLogger(__name__)
        self.prompt_registry = prompt_registry or IndustryPromptRegistry(logger=self.logger)
        self.token_tracker = token_tracker if token_tracker is not None else TokenTracker()
        self.invoker = invoker or BackoffInvoker(logger=self.logger)
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.strict = strict

    def _context(self, source: SourceRecord) -> NormalizationContext:
        return NormalizationContext(
            industry_tag=source.industry_tag,
            source_url=source.source_url,
            criteria=self.criteria_provider.get_criteria_for_industry(source.industry_tag),
            source_kind=SourceKind.PDF,
            strict=self.strict,
        )

    def _finish(self, result: ExtractionResult) -> ExtractionResult:
        return persist_result(result, self.status_store, self.record_store, self.logger)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def _partition(self, sources: Iterable[SourceRecord]) -> Tuple[List[Tuple[SourceRecord, PromptPlan]], List[ExtractionResult]]:
        eligible = []
        skipped = []
        for source in sources:
            source_kind = classify_source_url(source.source_url)
            self.status_store.upsert_record(source)
            reason = batch_skip_reason(source, source_kind)
            if reason:
                skipped.append(
                    self._finish(
                        ExtractionResult(
                            record_id=source.id,
                            status=ProcessingStatus.SKIPPED,
                            message=reason,
                            source_kind=source_kind,
                        )
                    )
                )
                continue
            criteria = self.criteria_provider.get_criteria_for_industry(source.industry_tag)
            plan = build_extraction_prompt(source, source_kind, criteria, registry=self.prompt_registry)
            eligible.append((source, plan))
        return eligible, skipped

    async def create_batch(self, sources: Iterable[SourceRecord]) -> BatchCreation:
        """
        Submit every eligible record as one batch job.

        Only PDF sources are eligible; everything else is marked SKIPPED
        before the request list is built. With no eligible records nothing
        is submitted and the returned job is None.

        Raises:
            BatchSubmissionError: the upstream rejected the submission (all
                queued members are marked FAILED first)
        """
        eligible, skipped = self._partition(sources)
        if not eligible:
            self.logger.info("No eligible PDF records for batch processing")
            return BatchCreation(job=None, skipped=skipped)

        requests = []
        for source, plan in eligible:
            requests.append(
                BatchRequest(
                    external_id=source.id,
                    params=build_message_params(
                        self.model, plan.user_prompt, plan.system_prompt, self.max_tokens, self.temperature
                    ),
                )
            )
            self.status_store.upsert_status(source.id, ProcessingStage.EXTRACTION, ProcessingStatus.IN_PROGRESS, QUEUED_MESSAGE)

        try:
            job = await self.invoker.invoke(
                lambda: self.batch_client.submit_batch(requests), description="batch submission"
            )
        except Exception as e:
            message = f"Failed to create batch: {e}"
            for source, _ in eligible:
                self.status_store.upsert_status(source.id, ProcessingStage.EXTRACTION, ProcessingStatus.FAILED, message)
            log_error("batch submission", e, logger=self.logger)
            raise BatchSubmissionError(message) from e

        self.status_store.store_batch(
            job.job_id,
            [
                {
                    "record_id": source.id,
                    "display_name": source.display_name,
                    "source_url": source.source_url,
                    "industry": source.industry_tag,
                    "expected_shape": plan.expected_shape.value,
                }
                for source, plan in eligible
            ],
            created_at=job.created_at.isoformat(),
        )
        self.logger.info(f"Created batch {job.job_id} with {len(requests)} records ({len(skipped)} skipped)")
        return BatchCreation(job=job, submitted_ids=[s.id for s, _ in eligible], skipped=skipped)

    # ------------------------------------------------------------------
    # Polling and results
    # ------------------------------------------------------------------

    async def check_status(self, job_id: str) -> BatchJob:
        job = await self.invoker.invoke(
            lambda: self.batch_client.get_batch_status(job_id), description=f"batch {job_id} status check"
        )
        self.logger.debug(
            f"Batch {job_id}: {job.lifecycle_state.value}, {job.counts.finished}/{job.counts.total} finished"
        )
        return job

    def _member_result(self, item: BatchResultItem, member: dict) -> ExtractionResult:
        source = SourceRecord(
            id=member["record_id"],
            display_name=member.get("display_name") or member["record_id"],
            source_url=member.get("source_url"),
            industry_tag=member.get("industry") or "",
        )
        context = self._context(source)
        expected_shape = ExpectedShape(member.get("expected_shape") or ExpectedShape.JSON.value)

        if item.outcome == MemberOutcome.SUCCEEDED:
            self.token_tracker.record(source.id, item.input_tokens, item.output_tokens, batch=True)
            self.raw_store.save_raw(source.id, item.text or "")
            recovered = recover(item.text, expected_shape)
            if not recovered.success:
                record = build_fallback_record(source.display_name, context, PARSE_FAILURE_REASON, item.text)
                return ExtractionResult(
                    record_id=source.id,
                    status=ProcessingStatus.FAILED,
                    message=PARSE_FAILURE_REASON,
                    record=record,
                    source_kind=SourceKind.PDF,
                    expected_shape=expected_shape,
                )
            return ExtractionResult(
                record_id=source.id,
                status=ProcessingStatus.COMPLETE,
                message=f"Extracted from batch result with {recovered.strategy_name}",
                record=normalize(recovered.data, context),
                source_kind=SourceKind.PDF,
                expected_shape=expected_shape,
                strategy_name=recovered.strategy_name,
                warnings=list(recovered.warnings),
            )

        if item.outcome == MemberOutcome.ERRORED:
            message = f"Batch processing error: {item.error_message or item.error_type or 'Unknown error'}"
        elif item.outcome == MemberOutcome.EXPIRED:
            message = EXPIRED_MESSAGE
        else:
            message = CANCELED_MESSAGE
        return ExtractionResult(
            record_id=source.id,
            status=ProcessingStatus.FAILED,
            message=message,
            record=build_fallback_record(source.display_name, context, message),
            source_kind=SourceKind.PDF,
            expected_shape=expected_shape,
        )

    async def process_results(self, job_id: str) -> BatchProcessing:
        """
        Fan out the results of an ended batch.

        Returns without touching any record while the job is still running.
        Each member gets exactly one terminal status; results for ids that
        are not members of the stored batch are ignored.
        """
        job = await self.check_status(job_id)
        if job.lifecycle_state != BatchLifecycle.ENDED:
            self.logger.info(f"Batch {job_id} is still {job.lifecycle_state.value}")
            return BatchProcessing(job=job, ended=False)

        members = {m["record_id"]: m for m in self.status_store.get_batch_members(job_id)}
        results: List[ExtractionResult] = []
        seen = set()
        async for item in self.batch_client.stream_batch_results(job_id):
            member = members.get(item.external_id)
            if member is None:
                self.logger.warning(f"Batch {job_id} returned a result for unknown record {item.external_id}")
                continue
            if item.external_id in seen:
                continue
            seen.add(item.external_id)
            results.append(self._finish(self._member_result(item, member)))

        missing = sorted(set(members) - seen)
        if missing:
            self.logger.warning(f"Batch {job_id} returned no result for: {', '.join(missing)}")

        processing = BatchProcessing(job=job, ended=True, results=results)
        summary = ", ".join(f"{k}={v}" for k, v in sorted(processing.counts.items()))
        self.status_store.update_batch_status(job_id, BATCH_COMPLETED_STATUS, f"Processed {len(results)} results: {summary}")
        self.logger.info(f"Batch {job_id} processed: {summary or 'no results'}")
        return processing
