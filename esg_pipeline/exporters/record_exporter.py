"""
Export extracted records.

Three outputs:
1. esg_records.json - every extracted record with its processing status
2. esg_records.csv - one flat row per record, seven criterion groups of up
   to five solutions each, the carbon matrix and the climate standards
3. esg_records.xlsx - the same flat rows on an "ESG Data" sheet

Criterion columns follow the industry's criteria order, so every row has
the same layout regardless of which criteria the model answered.
"""

import csv
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from openpyxl import Workbook
from openpyxl.styles import Font

from ..constants import ACTION_BULLET_PREFIX, CARBON_SCOPES, CARBON_YEARS, MAX_ACTIONS_PER_CRITERION
from ..db.file_store import RecordStore
from ..db.status_store import StatusStore
from ..schemas.records import Criterion, ExtractedRecord
from ..utils.criteria_loader import CRITERIA_PER_INDUSTRY, CriteriaProvider

CLIMATE_STANDARD_NAMES = {
    "iso14001": "ISO 14001",
    "iso50001": "ISO 50001",
    "emas": "EMAS",
    "cdp": "CDP",
    "sbti": "SBTi",
}

COMPANY_COLUMNS = [
    "record_id",
    "company_legal_entity_name",
    "company_name",
    "business_description",
    "sector",
    "industry",
    "street",
    "zip_code",
    "city",
    "country",
    "phone_number",
    "email_address",
    "website",
    "founding_year",
    "employee_range",
    "revenue_range",
    "report_url",
    "reporting_period",
    "report_title",
    "abstract",
]


def _criterion_columns() -> List[str]:
    columns = []
    for i in range(1, CRITERIA_PER_INDUSTRY + 1):
        columns.append(f"action_key_{i}")
        columns.extend(f"action_key_{i}_value_{j}" for j in range(1, MAX_ACTIONS_PER_CRITERION + 1))
    return columns


CARBON_COLUMNS = [f"carbon_{scope}_{year}" for scope in CARBON_SCOPES for year in CARBON_YEARS]
TRAILING_COLUMNS = [
    "other_achievements",
    "highlights_courage",
    "highlights_action",
    "highlights_solution",
    "climate_standards",
    "controversies",
    "extraction_error",
]
CSV_COLUMNS = COMPANY_COLUMNS + _criterion_columns() + CARBON_COLUMNS + TRAILING_COLUMNS
EXCEL_SHEET_TITLE = "ESG Data"


def strip_bullet(action: str) -> str:
    """Remove the leading "# " (or "#") marker from an action."""
    if action.startswith(ACTION_BULLET_PREFIX):
        return action[len(ACTION_BULLET_PREFIX):]
    if action.startswith("#"):
        return action[1:]
    return action


def _section(record: ExtractedRecord, key: str) -> Dict[str, Any]:
    value = record.get(key)
    return value if isinstance(value, dict) else {}


def format_climate_standards(standards: Dict[str, Any]) -> str:
    """Join the names of the standards marked "Yes"."""
    return ", ".join(name for key, name in CLIMATE_STANDARD_NAMES.items() if str(standards.get(key, "")).lower() == "yes")


def build_flat_row(
    record_id: str,
    record: ExtractedRecord,
    criteria: List[Criterion],
    source_url: Optional[str] = None,
) -> Dict[str, str]:
    """
    Flatten one normalized record into a CSV row keyed by CSV_COLUMNS.

    Args:
        record_id: Record id
        record: Normalized ExtractedRecord
        criteria: The industry's criteria, in column order
        source_url: Report URL (website column falls back to it)
    """
    details = _section(record, "companyDetails")
    address = _section(details, "address")
    contact = _section(details, "contactInfo")
    basic = _section(record, "basicInformation")
    highlights = _section(record, "highlights")
    carbon = _section(record, "carbonFootprint")

    row: Dict[str, str] = {column: "" for column in CSV_COLUMNS}
    row.update(
        {
            "record_id": record_id,
            "company_legal_entity_name": details.get("legalEntityName") or basic.get("companyName", ""),
            "company_name": basic.get("companyName", ""),
            "business_description": details.get("businessDescription", ""),
            "sector": details.get("sector", ""),
            "industry": record.get("industry", ""),
            "street": address.get("street", ""),
            "zip_code": address.get("zipCode", ""),
            "city": address.get("city", ""),
            "country": address.get("country", ""),
            "phone_number": contact.get("phoneNumber", ""),
            "email_address": contact.get("emailAddress", ""),
            "website": contact.get("website") or source_url or "",
            "founding_year": details.get("foundingYear", ""),
            "employee_range": details.get("employeeRange", ""),
            "revenue_range": details.get("revenueRange", ""),
            "report_url": source_url or "",
            "reporting_period": basic.get("reportYear", ""),
            "report_title": basic.get("reportTitle", ""),
            "abstract": record.get("abstract") or "",
        }
    )

    for i, criterion in enumerate(criteria[:CRITERIA_PER_INDUSTRY], start=1):
        row[f"action_key_{i}"] = criterion.display_name
        block = record.get(criterion.id)
        actions = block.get("actions", []) if isinstance(block, dict) else []
        for j, action in enumerate(actions[:MAX_ACTIONS_PER_CRITERION], start=1):
            row[f"action_key_{i}_value_{j}"] = strip_bullet(str(action))

    for scope in CARBON_SCOPES:
        for year in CARBON_YEARS:
            row[f"carbon_{scope}_{year}"] = str(carbon.get(f"{scope}_{year}") or "")

    row.update(
        {
            "other_achievements": record.get("otherInitiatives") or "",
            "highlights_courage": highlights.get("courage", ""),
            "highlights_action": highlights.get("action", ""),
            "highlights_solution": highlights.get("solution", ""),
            "climate_standards": format_climate_standards(_section(record, "climateStandards")),
            "controversies": record.get("controversies") or "",
            "extraction_error": record.get("extractionError", ""),
        }
    )
    return {key: "" if value is None else str(value) for key, value in row.items()}


class RecordExporter:
    """Writes JSON, CSV and Excel exports of every extracted record."""

    def __init__(
        self,
        record_store: RecordStore,
        status_store: StatusStore,
        criteria_provider: CriteriaProvider,
        output_dir: Path,
        logger=None,
    ):
        self.record_store = record_store
        self.status_store = status_store
        self.criteria_provider = criteria_provider
        self.output_dir = Path(output_dir)
        self.logger = logger or logging.getLogger(__name__)

    def _collect(self) -> List[Dict[str, Any]]:
        """Join extracted records with their status rows, sorted by record id."""
        statuses = {row["record_id"]: row for row in self.status_store.get_all_statuses()}
        entries = []
        for record_id, record in self.record_store.load_all().items():
            status = statuses.get(record_id, {})
            entries.append(
                {
                    "record_id": record_id,
                    "status": status.get("extraction_status") or "unknown",
                    "message": status.get("extraction_message") or "",
                    "source_url": status.get("source_url"),
                    "data": record,
                }
            )
        return entries

    def export_json(self, path: Optional[Path] = None) -> Path:
        path = Path(path) if path else self.output_dir / "esg_records.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        entries = self._collect()
        payload = {
            "exported_at": datetime.now(timezone.utc).isoformat(),
            "count": len(entries),
            "records": entries,
        }
        with open(path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)
        self.logger.info(f"Exported {len(entries)} records to {path}")
        return path

    def export_csv(self, path: Optional[Path] = None) -> Path:
        path = Path(path) if path else self.output_dir / "esg_records.csv"
        path.parent.mkdir(parents=True, exist_ok=True)
        entries = self._collect()
        with open(path, "w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=CSV_COLUMNS)
            writer.writeheader()
            for entry in entries:
                record = entry["data"]
                criteria = self.criteria_provider.get_criteria_for_industry(record.get("industry"))
                writer.writerow(build_flat_row(entry["record_id"], record, criteria, entry["source_url"]))
        self.logger.info(f"Exported {len(entries)} CSV rows to {path}")
        return path

    def export_excel(self, path: Optional[Path] = None) -> Path:
        """Write the flat rows to a workbook with a bold, frozen header row."""
        path = Path(path) if path else self.output_dir / "esg_records.xlsx"
        path.parent.mkdir(parents=True, exist_ok=True)
        entries = self._collect()

        wb = Workbook()
        ws = wb.active
        ws.title = EXCEL_SHEET_TITLE
        ws.append(CSV_COLUMNS)
        for cell in ws[1]:
            cell.font = Font(bold=True)
        ws.freeze_panes = "A2"

        for entry in entries:
            record = entry["data"]
            criteria = self.criteria_provider.get_criteria_for_industry(record.get("industry"))
            row = build_flat_row(entry["record_id"], record, criteria, entry["source_url"])
            ws.append([row[column] for column in CSV_COLUMNS])

        wb.save(path)
        self.logger.info(f"Exported {len(entries)} Excel rows to {path}")
        return path
