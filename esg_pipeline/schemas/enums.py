"""Enumerations shared across the pipeline. Values are the persisted/wire strings."""

from enum import Enum


class SourceKind(str, Enum):
    """Classification of a source URL."""

    PDF = "pdf"
    WEBSITE = "website"
    UNKNOWN = "unknown"


class ProcessingStage(str, Enum):
    """The two independently tracked stages of a record."""

    DOWNLOAD = "download"
    EXTRACTION = "extraction"


class ProcessingStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (ProcessingStatus.COMPLETE, ProcessingStatus.FAILED, ProcessingStatus.SKIPPED)


class ExpectedShape(str, Enum):
    """Shape the recovery engine should expect from the model."""

    JSON = "json"
    XML_SUSTAINABILITY = "xml-sustainability"


class PromptKind(str, Enum):
    """Which prompt source won the custom > industry > standard priority."""

    CUSTOM = "custom"
    INDUSTRY = "industry"
    STANDARD = "standard"


class BatchLifecycle(str, Enum):
    """Upstream batch job processing status."""

    CREATED = "created"
    IN_PROGRESS = "in_progress"
    CANCELING = "canceling"
    ENDED = "ended"


class MemberOutcome(str, Enum):
    """Per-request outcome inside an ended batch job."""

    SUCCEEDED = "succeeded"
    ERRORED = "errored"
    EXPIRED = "expired"
    CANCELED = "canceled"
