"""
Message Batches client using the Anthropic SDK.

Maps the SDK's batch objects onto pipeline types:
- submit_batch        -> BatchJob (job id, lifecycle state, counts)
- get_batch_status    -> BatchJob
- stream_batch_results -> async iterator of BatchResultItem

All three raise on transport/API errors; callers classify them with
utils.errors.classify_error.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional

from anthropic import AsyncAnthropic

from ..schemas.enums import BatchLifecycle, MemberOutcome
from ..schemas.records import BatchCounts, BatchJob


@dataclass
class BatchRequest:
    """One request inside a batch submission."""

    external_id: str
    params: Dict[str, Any]

    def to_api(self) -> Dict[str, Any]:
        return {"custom_id": self.external_id, "params": self.params}


@dataclass
class BatchResultItem:
    """Outcome of one batch member as streamed from the results endpoint."""

    external_id: str
    outcome: MemberOutcome
    text: Optional[str] = None
    error_type: Optional[str] = None
    error_message: Optional[str] = None
    input_tokens: int = 0
    output_tokens: int = 0


def build_message_params(
    model: str,
    user_prompt: str,
    system_prompt: Optional[str],
    max_tokens: int,
    temperature: float,
) -> Dict[str, Any]:
    """Build Messages API params for one batch request."""
    params: Dict[str, Any] = {
        "model": model,
        "max_tokens": max_tokens,
        "messages": [{"role": "user", "content": user_prompt}],
        "temperature": temperature,
    }
    if system_prompt:
        params["system"] = system_prompt
    return params


def _to_batch_job(batch: Any, member_ids: Optional[List[str]] = None) -> BatchJob:
    counts = getattr(batch, "request_counts", None)
    created_at = getattr(batch, "created_at", None) or datetime.now(timezone.utc)
    return BatchJob(
        job_id=batch.id,
        member_ids=member_ids or [],
        lifecycle_state=BatchLifecycle(batch.processing_status),
        created_at=created_at,
        counts=BatchCounts(
            processing=getattr(counts, "processing", 0) or 0,
            succeeded=getattr(counts, "succeeded", 0) or 0,
            errored=getattr(counts, "errored", 0) or 0,
            canceled=getattr(counts, "canceled", 0) or 0,
            expired=getattr(counts, "expired", 0) or 0,
        ),
    )


def _message_text(message: Any) -> str:
    parts = []
    for block in getattr(message, "content", None) or []:
        if getattr(block, "type", None) == "text":
            parts.append(block.text)
    return "".join(parts)


def _error_details(result: Any) -> tuple[Optional[str], Optional[str]]:
    """Pull (type, message) out of an errored result's ErrorResponse."""
    error = getattr(result, "error", None)
    inner = getattr(error, "error", error)
    return getattr(inner, "type", None), getattr(inner, "message", None)


class BatchClient:
    """Async wrapper around client.messages.batches."""

    def __init__(self, api_key: Optional[str] = None, client: Optional[AsyncAnthropic] = None, logger=None):
        """
        Args:
            api_key: Anthropic API key (SDK reads ANTHROPIC_API_KEY when None)
            client: Pre-built AsyncAnthropic instance (takes precedence)
            logger: Optional logger instance
        """
        self.client = client or AsyncAnthropic(api_key=api_key)
        self.logger = logger or logging.getLogger(__name__)

    async def submit_batch(self, requests: List[BatchRequest]) -> BatchJob:
        batch = await self.client.messages.batches.create(requests=[r.to_api() for r in requests])
        self.logger.info(f"Batch {batch.id} created with {len(requests)} requests")
        return _to_batch_job(batch, [r.external_id for r in requests])

    async def get_batch_status(self, job_id: str) -> BatchJob:
        batch = await self.client.messages.batches.retrieve(job_id)
        return _to_batch_job(batch)

    async def stream_batch_results(self, job_id: str) -> AsyncIterator[BatchResultItem]:
        """Yield one BatchResultItem per member of an ended batch."""
        results = await self.client.messages.batches.results(job_id)
        async for entry in results:
            result = entry.result
            outcome = MemberOutcome(result.type)

            if outcome == MemberOutcome.SUCCEEDED:
                message = result.message
                usage = getattr(message, "usage", None)
                yield BatchResultItem(
                    external_id=entry.custom_id,
                    outcome=outcome,
                    text=_message_text(message),
                    input_tokens=getattr(usage, "input_tokens", 0) or 0,
                    output_tokens=getattr(usage, "output_tokens", 0) or 0,
                )
            elif outcome == MemberOutcome.ERRORED:
                error_type, error_message = _error_details(result)
                yield BatchResultItem(
                    external_id=entry.custom_id,
                    outcome=outcome,
                    error_type=error_type,
                    error_message=error_message,
                )
            else:
                yield BatchResultItem(external_id=entry.custom_id, outcome=outcome)
