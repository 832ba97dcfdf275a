"""
Extraction orchestrator - drives one source record from NOT_STARTED to a
terminal status.

Per record:
1. Skip when the URL is missing, the update flag is off, or the URL kind is
   unrecognized
2. For WEBSITE sources, fetch readable page content (a failed fetch fails
   the record before any model call)
3. Build the prompt (custom > industry template > standard)
4. Call the model through the BackoffInvoker
5. Save the raw text, then recover and normalize it
6. Persist COMPLETE with the record, or FAILED with a fallback record

Many records are fanned out through AsyncWorkerPool with a fixed
concurrency cap.
"""

import logging
import time
from typing import Any, Iterable, List, Optional, Protocol

from ..constants import DEFAULT_MAX_CONCURRENCY, DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE
from ..db.file_store import RawResponseStore, RecordStore
from ..db.status_store import StatusStore
from ..extractors.website_content import WebsiteContentExtractor, format_for_prompt
from ..llm.llm_client import LLMResponse
from ..llm.prompt_builder import IndustryPromptRegistry, PromptPlan, build_extraction_prompt
from ..parsers.response_recovery import recover
from ..schemas.enums import ProcessingStage, ProcessingStatus, SourceKind
from ..schemas.records import Criterion, ExtractionResult, SourceRecord
from ..utils.backoff import BackoffInvoker
from ..utils.criteria_loader import CriteriaProvider
from ..utils.errors import AUTH_HINT, ContentExtractionError, format_error_message, log_error
from ..utils.token_tracker import TokenTracker
from ..utils.url_helpers import classify_source_url
from ..utils.worker_pool import AsyncWorkerPool
from ..validators.record_normalizer import NormalizationContext, build_fallback_record, normalize

MISSING_URL_REASON = "PDF URL not available"
UPDATE_FLAG_REASON = "Skipped based on shouldUpdate flag"
PARSE_FAILURE_REASON = "Failed to parse Claude's response into valid JSON format"


def persist_result(
    result: ExtractionResult,
    status_store: StatusStore,
    record_store: RecordStore,
    logger: Any,
) -> ExtractionResult:
    """Persist a terminal result: status always, record when there is one."""
    if not result.status.is_terminal:
        raise ValueError(f"Cannot persist non-terminal status {result.status.value} for {result.record_id}")
    if result.record is not None:
        record_store.save_extracted_record(result.record_id, result.record)
    status_store.upsert_status(result.record_id, ProcessingStage.EXTRACTION, result.status, result.message)
    if result.status == ProcessingStatus.FAILED:
        logger.warning(f"[{result.record_id}] extraction failed: {result.message}")
    else:
        logger.info(f"[{result.record_id}] extraction {result.status.value}: {result.message}")
    return result


class ModelClient(Protocol):
    async def create_completion(
        self,
        user_prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = DEFAULT_TEMPERATURE,
    ) -> LLMResponse: ...


def skip_reason(source: SourceRecord, source_kind: SourceKind) -> Optional[str]:
    """Reason a record is skipped without a model call, or None to process it."""
    if not source.source_url or not source.source_url.strip():
        return MISSING_URL_REASON
    if not source.update_flag:
        return UPDATE_FLAG_REASON
    if source_kind == SourceKind.UNKNOWN:
        return f"Unrecognized source URL: {source.source_url}"
    return None


class ExtractionOrchestrator:
    """Runs the direct (non-batch) extraction path for source records."""

    def __init__(
        self,
        model_client: ModelClient,
        criteria_provider: CriteriaProvider,
        status_store: StatusStore,
        raw_store: RawResponseStore,
        record_store: RecordStore,
        website_extractor: Optional[WebsiteContentExtractor] = None,
        invoker: Optional[BackoffInvoker] = None,
        prompt_registry: Optional[IndustryPromptRegistry] = None,
        token_tracker: Optional[TokenTracker] = None,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = DEFAULT_TEMPERATURE,
        strict: bool = False,
        logger=None,
    ):
        self.model_client = model_client
        self.criteria_provider = criteria_provider
        self.status_store = status_store
        self.raw_store = raw_store
        self.record_store = record_store
        self.logger = logger or logging.getLogger(__name__)
        self.website_extractor = website_extractor or WebsiteContentExtractor(logger=self.logger)
        self.invoker = invoker or BackoffInvoker(logger=self.logger)
        self.prompt_registry = prompt_registry or IndustryPromptRegistry(logger=self.logger)
        self.token_tracker = token_tracker if token_tracker is not None else TokenTracker()
        self.max_concurrency = max_concurrency
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.strict = strict

    # ------------------------------------------------------------------
    # Terminal states
    # ------------------------------------------------------------------

    def _finish(self, result: ExtractionResult) -> ExtractionResult:
        return persist_result(result, self.status_store, self.record_store, self.logger)

    def _failed(
        self,
        source: SourceRecord,
        context: NormalizationContext,
        message: str,
        raw_text: Optional[str] = None,
        **fields,
    ) -> ExtractionResult:
        record = build_fallback_record(source.display_name, context, message, raw_text)
        return self._finish(
            ExtractionResult(
                record_id=source.id,
                status=ProcessingStatus.FAILED,
                message=message,
                record=record,
                source_kind=context.source_kind,
                **fields,
            )
        )

    # ------------------------------------------------------------------
    # One record
    # ------------------------------------------------------------------

    async def _website_text(self, source: SourceRecord) -> str:
        content = await self.website_extractor.fetch_readable_content(source.source_url)
        return format_for_prompt(content)

    async def _call_model(self, source: SourceRecord, plan: PromptPlan):
        return await self.invoker.try_invoke(
            lambda: self.model_client.create_completion(
                user_prompt=plan.user_prompt,
                system_prompt=plan.system_prompt,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            ),
            description=f"[{source.id}] extraction",
        )

    async def process_record(self, source: SourceRecord) -> ExtractionResult:
        """
        Process one source record to a terminal status.

        Never raises for upstream failures: transport, content and parse
        errors all end in a FAILED result with a persisted fallback record.
        """
        source_kind = classify_source_url(source.source_url)
        self.status_store.upsert_record(source)

        reason = skip_reason(source, source_kind)
        if reason:
            return self._finish(
                ExtractionResult(
                    record_id=source.id, status=ProcessingStatus.SKIPPED, message=reason, source_kind=source_kind
                )
            )

        criteria: List[Criterion] = self.criteria_provider.get_criteria_for_industry(source.industry_tag)
        context = NormalizationContext(
            industry_tag=source.industry_tag,
            source_url=source.source_url,
            criteria=criteria,
            source_kind=source_kind,
            strict=self.strict,
        )
        self.status_store.upsert_status(source.id, ProcessingStage.EXTRACTION, ProcessingStatus.IN_PROGRESS, "Extraction started")
        self.logger.info(f"[{source.id}] Processing {source.display_name} ({source_kind.value}): {source.source_url}")

        website_text = None
        if source_kind == SourceKind.WEBSITE:
            try:
                website_text = await self._website_text(source)
            except ContentExtractionError as e:
                return self._failed(source, context, str(e))

        plan = build_extraction_prompt(source, source_kind, criteria, website_text, self.prompt_registry)
        plan_fields = {"prompt_kind": plan.prompt_kind, "expected_shape": plan.expected_shape}

        outcome = await self._call_model(source, plan)
        if not outcome.ok:
            log_error("extraction", outcome.exception, source.id, logger=self.logger)
            message = format_error_message("extraction", outcome.exception, source.id)
            if outcome.error.is_authentication:
                message = f"{message}. {AUTH_HINT}"
            return self._failed(source, context, message, **plan_fields)

        response: LLMResponse = outcome.value
        self.token_tracker.record(source.id, response.input_tokens, response.output_tokens, cost_usd=response.cost_usd)
        self.raw_store.save_raw(source.id, response.text)

        recovered = recover(response.text, plan.expected_shape)
        if not recovered.success:
            self.logger.debug(f"[{source.id}] recovery failed: {recovered.message}")
            return self._failed(source, context, PARSE_FAILURE_REASON, response.text, **plan_fields)

        record = normalize(recovered.data, context)
        return self._finish(
            ExtractionResult(
                record_id=source.id,
                status=ProcessingStatus.COMPLETE,
                message=f"Extracted with {recovered.strategy_name} after {outcome.attempts} attempt(s)",
                record=record,
                source_kind=source_kind,
                strategy_name=recovered.strategy_name,
                warnings=list(recovered.warnings),
                **plan_fields,
            )
        )

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    async def process_all(self, sources: Iterable[SourceRecord]) -> List[ExtractionResult]:
        """
        Process records with at most max_concurrency in flight.

        Results are returned sorted by record id; completion order is not
        preserved. A record whose processing raised unexpectedly is reported
        FAILED with the exception text.
        """
        sources = list(sources)
        start = time.monotonic()
        pool = AsyncWorkerPool(max_workers=self.max_concurrency, logger=self.logger)
        outcomes = await pool.map(self.process_record, sources, desc="Extraction")

        results: List[ExtractionResult] = []
        for success, source, value in outcomes:
            if success:
                results.append(value)
                continue
            message = format_error_message("extraction", value, source.id)
            self.status_store.upsert_status(source.id, ProcessingStage.EXTRACTION, ProcessingStatus.FAILED, message)
            results.append(ExtractionResult(record_id=source.id, status=ProcessingStatus.FAILED, message=message))

        results.sort(key=lambda r: r.record_id)
        counts = summarize_results(results)
        self.logger.info(
            f"Processed {len(results)} records in {time.monotonic() - start:.1f}s: "
            + ", ".join(f"{k}={v}" for k, v in counts.items())
        )
        return results


def summarize_results(results: Iterable[ExtractionResult]) -> dict:
    """Count results per terminal status."""
    counts = {status.value: 0 for status in (ProcessingStatus.COMPLETE, ProcessingStatus.FAILED, ProcessingStatus.SKIPPED)}
    for result in results:
        key = ProcessingStatus(result.status).value
        counts[key] = counts.get(key, 0) + 1
    return counts
