"""Shared types: enumerations, pydantic records and internal result dataclasses."""

from .enums import (
    BatchLifecycle,
    ExpectedShape,
    MemberOutcome,
    ProcessingStage,
    ProcessingStatus,
    PromptKind,
    SourceKind,
)
from .records import (
    BatchCounts,
    BatchJob,
    Criterion,
    ExtractedRecord,
    ExtractionResult,
    ExtractionStrategyResult,
    SourceRecord,
)

__all__ = [
    "BatchCounts",
    "BatchJob",
    "BatchLifecycle",
    "Criterion",
    "ExpectedShape",
    "ExtractedRecord",
    "ExtractionResult",
    "ExtractionStrategyResult",
    "MemberOutcome",
    "ProcessingStage",
    "ProcessingStatus",
    "PromptKind",
    "SourceKind",
    "SourceRecord",
]
