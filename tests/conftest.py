"""Shared fixtures for pipeline tests.

Upstream services (model API, batch API, website fetches) are replaced by
in-memory fakes; stores use a temp directory and an in-memory SQLite db.
"""

import sys
from pathlib import Path
from typing import List, Optional

import pytest

# Add project root to path so tests can import esg_pipeline without installing
sys.path.insert(0, str(Path(__file__).parent.parent))

from esg_pipeline.db.file_store import RawResponseStore, RecordStore
from esg_pipeline.db.status_store import StatusStore
from esg_pipeline.extractors.website_content import WebsiteContent
from esg_pipeline.llm.batch_client import BatchResultItem
from esg_pipeline.llm.llm_client import LLMResponse
from esg_pipeline.schemas.enums import BatchLifecycle
from esg_pipeline.schemas.records import BatchCounts, BatchJob, Criterion, SourceRecord
from esg_pipeline.utils.backoff import BackoffInvoker
from esg_pipeline.utils.criteria_loader import CriteriaProvider
from esg_pipeline.utils.errors import ContentExtractionError

# ─── Fakes ────────────────────────────────────────────────────────────────────


class FakeAPIError(Exception):
    """Exception shaped like an SDK API error (status code + JSON body)."""

    def __init__(self, message: str, status_code: Optional[int] = None, error_type: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        if error_type:
            self.body = {"type": "error", "error": {"type": error_type, "message": message}}


class FakeModelClient:
    """Returns queued responses in order; exceptions in the queue are raised."""

    def __init__(self, responses: List = None, input_tokens: int = 1200, output_tokens: int = 300):
        self.responses = list(responses or [])
        self.calls = []
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens

    async def create_completion(self, user_prompt, system_prompt=None, max_tokens=4000, temperature=0.2):
        self.calls.append({"user_prompt": user_prompt, "system_prompt": system_prompt})
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, BaseException):
            raise response
        return LLMResponse(
            text=response,
            model="fake-model",
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            cost_usd=0.0081,
        )


class FakeWebsiteExtractor:
    def __init__(self, text: str = "", error: Optional[str] = None):
        self.text = text
        self.error = error
        self.urls = []

    async def fetch_readable_content(self, url: str) -> WebsiteContent:
        self.urls.append(url)
        if self.error:
            raise ContentExtractionError(url, self.error)
        return WebsiteContent(url=url, title="Acme Sustainability", text=self.text)


class FakeBatchClient:
    """In-memory stand-in for BatchClient."""

    def __init__(self, job_id: str = "msgbatch_test", submit_error: Optional[Exception] = None):
        self.job_id = job_id
        self.submit_error = submit_error
        self.submitted = []
        self.lifecycle = BatchLifecycle.IN_PROGRESS
        self.counts = BatchCounts()
        self.results: List[BatchResultItem] = []
        self.status_calls = 0

    async def submit_batch(self, requests):
        if self.submit_error:
            raise self.submit_error
        self.submitted = list(requests)
        self.counts = BatchCounts(processing=len(requests))
        return BatchJob(
            job_id=self.job_id,
            member_ids=[r.external_id for r in requests],
            lifecycle_state=BatchLifecycle.IN_PROGRESS,
            counts=self.counts,
        )

    async def get_batch_status(self, job_id):
        self.status_calls += 1
        return BatchJob(job_id=job_id, lifecycle_state=self.lifecycle, counts=self.counts)

    async def stream_batch_results(self, job_id):
        for item in self.results:
            yield item


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


# ─── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def status_store():
    store = StatusStore(":memory:")
    yield store
    store.close()


@pytest.fixture
def raw_store(tmp_path):
    return RawResponseStore(tmp_path / "output")


@pytest.fixture
def record_store(tmp_path):
    return RecordStore(tmp_path / "output")


@pytest.fixture
def criteria_provider():
    return CriteriaProvider()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def invoker(recording_sleep):
    return BackoffInvoker(max_retries=3, initial_delay_ms=2000, sleep=recording_sleep, jitter=lambda: 0)


@pytest.fixture
def energy_criteria():
    return [
        Criterion(id="carbon_footprint", display_name="Carbon Footprint"),
        Criterion(id="energy_efficiency", display_name="Energy efficiency"),
    ]


@pytest.fixture
def pdf_source():
    return SourceRecord(
        id="acme_bau",
        display_name="Acme Bau GmbH",
        source_url="https://acme-bau.de/downloads/nachhaltigkeitsbericht-2023.pdf",
        industry_tag="energy",
    )


@pytest.fixture
def website_source():
    return SourceRecord(
        id="gruen_ag",
        display_name="Grün AG",
        source_url="https://gruen-ag.de/nachhaltigkeit",
        industry_tag="energy",
    )


@pytest.fixture
def valid_json_response():
    return (
        '{"basicInformation": {"companyName": "Acme Bau GmbH", "reportYear": "2023", '
        '"reportTitle": "Nachhaltigkeitsbericht 2023"}, '
        '"abstract": "Acme builds timber frame houses.", '
        '"carbon_footprint": {"actions": ["# Reduced scope 1 emissions by 12%"], '
        '"extracts": "Scope 1 fell from 1.200 t to 1.056 t CO2e."}, '
        '"carbonFootprint": {"scope1": "1.056 t CO2e (2023)", "scope2": "310 t CO2e (2022)"}, '
        '"climateStandards": {"iso14001": "Yes"}}'
    )


@pytest.fixture
def construction_xml_response():
    return (
        "<sustainability_analysis>\n"
        "<company>Acme Bau GmbH</company>\n"
        "<abstract>Timber frame construction company.</abstract>\n"
        "<criteria1_actions_solutions>\n- Timber frame houses\n- Green roofs\n</criteria1_actions_solutions>\n"
        "<criteria7_actions_solutions>\n- Scope 1 reduced by 12%\n</criteria7_actions_solutions>\n"
        "<co2_scope1_2023>1.056 t CO2e</co2_scope1_2023>\n"
        "<climate_standard_iso_14001>Yes</climate_standard_iso_14001>\n"
        "</sustainability_analysis>\n"
        "<highlight_courage>Switched the whole fleet to e-trucks</highlight_courage>\n"
    )
