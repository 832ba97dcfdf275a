"""
Record types for the extraction pipeline.

Pydantic models validate data entering the pipeline (source rows, criteria,
batch jobs) and provide the default shapes of ExtractedRecord sub-structures.
Dataclasses carry transient results that are never persisted as-is.

ExtractedRecord itself stays a plain dict: the model's JSON is open-ended
(per-criterion keys vary by industry) and the normalizer is the component
that guarantees its required keys.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .enums import BatchLifecycle, ExpectedShape, ProcessingStatus, PromptKind, SourceKind

ExtractedRecord = Dict[str, Any]


# =============================================================================
# INPUT RECORDS
# =============================================================================


class SourceRecord(BaseModel):
    """One company/report to process. Immutable for the duration of a run."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Normalized record id")
    display_name: str = Field(..., description="Company name as given in the input list")
    source_url: Optional[str] = Field(None, description="PDF or website URL")
    industry_tag: str = Field("", description="Industry identifier used for criteria lookup")
    update_flag: bool = Field(True, description="False means the record is skipped this run")
    custom_prompt: Optional[str] = Field(None, description="Explicit prompt override")


class Criterion(BaseModel):
    """One ESG topic the model must report actions for."""

    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str


# =============================================================================
# EXTRACTED RECORD SUB-STRUCTURES
# =============================================================================


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class Address(_CamelModel):
    street: str = ""
    zip_code: str = Field("", alias="zipCode")
    city: str = ""
    country: str = ""


class ContactInfo(_CamelModel):
    phone_number: str = Field("", alias="phoneNumber")
    email_address: str = Field("", alias="emailAddress")
    website: str = ""


class CompanyDetails(_CamelModel):
    legal_entity_name: str = Field("", alias="legalEntityName")
    business_description: str = Field("", alias="businessDescription")
    sector: str = ""
    address: Address = Field(default_factory=Address)
    contact_info: ContactInfo = Field(default_factory=ContactInfo, alias="contactInfo")
    founding_year: str = Field("", alias="foundingYear")
    employee_range: str = Field("", alias="employeeRange")
    revenue_range: str = Field("", alias="revenueRange")


class BasicInformation(_CamelModel):
    company_name: str = Field("", alias="companyName")
    report_year: str = Field("", alias="reportYear")
    report_title: str = Field("", alias="reportTitle")


class Highlights(_CamelModel):
    courage: str = ""
    action: str = ""
    solution: str = ""


class ClimateStandards(_CamelModel):
    iso14001: str = "No"
    iso50001: str = "No"
    emas: str = "No"
    cdp: str = "No"
    sbti: str = "No"


def default_block(model_cls: type[BaseModel], **values: Any) -> Dict[str, Any]:
    """Return a default sub-structure as a camelCase dict."""
    return model_cls(**values).model_dump(by_alias=True)


# =============================================================================
# BATCH JOBS
# =============================================================================


class BatchCounts(BaseModel):
    """Per-outcome request counts reported by the batch API."""

    processing: int = 0
    succeeded: int = 0
    errored: int = 0
    canceled: int = 0
    expired: int = 0

    @property
    def total(self) -> int:
        return self.processing + self.succeeded + self.errored + self.canceled + self.expired

    @property
    def finished(self) -> int:
        return self.succeeded + self.errored + self.canceled + self.expired


class BatchJob(BaseModel):
    """An upstream batch submission covering many source records."""

    job_id: str
    member_ids: List[str] = Field(default_factory=list)
    lifecycle_state: BatchLifecycle = BatchLifecycle.IN_PROGRESS
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    counts: BatchCounts = Field(default_factory=BatchCounts)

    def hours_elapsed(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        created = self.created_at
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        return (now - created).total_seconds() / 3600


# =============================================================================
# INTERNAL RESULTS
# =============================================================================


@dataclass
class ExtractionStrategyResult:
    """Outcome of one recovery cascade step (or of the whole cascade)."""

    success: bool
    data: Optional[Dict[str, Any]] = None
    strategy_name: str = ""
    warnings: List[str] = field(default_factory=list)
    message: Optional[str] = None
    original_text: Optional[str] = None


@dataclass
class ExtractionResult:
    """Terminal outcome of processing one SourceRecord."""

    record_id: str
    status: ProcessingStatus
    message: str = ""
    record: Optional[ExtractedRecord] = None
    source_kind: Optional[SourceKind] = None
    prompt_kind: Optional[PromptKind] = None
    expected_shape: Optional[ExpectedShape] = None
    strategy_name: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
