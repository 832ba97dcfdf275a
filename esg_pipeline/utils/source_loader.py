"""
Load source records (companies and report URLs) from a CSV file.

Accepted column aliases:
    name | company_name | companyName
    url | document_url | documentUrl
    industry | industryId
    company_id | companyId          (optional, derived from name)
    shouldUpdate | update           (optional, default true)
    customPrompt | custom_prompt    (optional)
"""

import csv
import re
from pathlib import Path
from typing import Optional

from ..schemas.records import SourceRecord

NAME_COLUMNS = ("name", "company_name", "companyName")
URL_COLUMNS = ("url", "document_url", "documentUrl")
INDUSTRY_COLUMNS = ("industry", "industryId")
ID_COLUMNS = ("company_id", "companyId")
UPDATE_COLUMNS = ("shouldUpdate", "update")
PROMPT_COLUMNS = ("customPrompt", "custom_prompt")

_FALSY = {"false", "0", "no", "n"}


def normalize_record_id(name: str) -> str:
    """
    Normalize a company name or id into a record id.

    Examples:
        >>> normalize_record_id("ACME Bau GmbH & Co. KG")
        'acme_bau_gmbh_co_kg'
    """
    cleaned = re.sub(r"[^\w\s-]", "", name.lower()).strip()
    return re.sub(r"[\s-]+", "_", cleaned)


def _first(row: dict, columns: tuple) -> Optional[str]:
    for column in columns:
        value = row.get(column)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def parse_update_flag(value: Optional[str]) -> bool:
    if value is None:
        return True
    return value.strip().lower() not in _FALSY


def load_source_records(file_path: str | Path, logger=None) -> list[SourceRecord]:
    """
    Load source records from CSV, deduplicated by id.

    Rows without a name are skipped. Later duplicates of an id are dropped
    with a warning.

    Returns:
        List of SourceRecord in file order
    """
    records = []
    seen_ids: set[str] = set()

    with open(file_path, newline="", encoding="utf-8-sig") as f:
        for line_num, row in enumerate(csv.DictReader(f), 2):
            name = _first(row, NAME_COLUMNS)
            if not name:
                continue

            record_id = normalize_record_id(_first(row, ID_COLUMNS) or name)
            if not record_id:
                continue

            if record_id in seen_ids:
                msg = f"Line {line_num}: Duplicate record id {record_id} for {name}, skipping"
                if logger:
                    logger.warning(msg)
                continue

            seen_ids.add(record_id)
            records.append(
                SourceRecord(
                    id=record_id,
                    display_name=name,
                    source_url=_first(row, URL_COLUMNS),
                    industry_tag=_first(row, INDUSTRY_COLUMNS) or "",
                    update_flag=parse_update_flag(_first(row, UPDATE_COLUMNS)),
                    custom_prompt=_first(row, PROMPT_COLUMNS),
                )
            )

    return records
