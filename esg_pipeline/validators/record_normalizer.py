"""
Schema normalization for recovered ESG records.

Turns whatever the recovery engine produced into a schema-complete
ExtractedRecord:
- company details, basic information, highlights and climate standards
  always present with every key
- carbon footprint migrated from the legacy "value (YYYY)" shape into the
  scope x year matrix, every cell a string
- one {actions, extracts} block per required criterion, legacy shapes
  resolved once, placeholders for anything missing
- generic criteria{N}_actions_solutions fields from the XML format renamed
  into the construction schema slots

normalize() works on a copy and is idempotent.
"""

import copy
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..constants import (
    ACTION_BULLET_PREFIX,
    CARBON_SCOPES,
    CARBON_YEARS,
    CLIMATE_STANDARD_KEYS,
    DEFAULT_CARBON_YEAR,
    MAX_ACTIONS_PER_CRITERION,
    RAW_RESPONSE_PREVIEW_CHARS,
)
from ..schemas.enums import SourceKind
from ..schemas.records import (
    BasicInformation,
    ClimateStandards,
    CompanyDetails,
    Criterion,
    ExtractedRecord,
    Highlights,
    default_block,
)
from ..utils.criteria_loader import CONSTRUCTION_CRITERIA

logger = logging.getLogger(__name__)

YEAR_SUFFIX_PATTERN = re.compile(r"\((\d{4})\)")
XML_CRITERIA_PATTERN = re.compile(r"^criteria(\d)_actions_solutions$")
LEADING_BULLET_PATTERN = re.compile(r"^\s*(?:[-*•#]+\s*|\d+[.)]\s+)+")

# Keys that describe a criterion block rather than carry an action
_NON_ACTION_KEYS = {"id", "name", "type", "description", "extracts", "summary"}
_LIST_ACTION_KEYS = ("actions", "targets", "initiatives", "solutions")
_STRING_ACTION_KEYS = ("action", "target", "actions", "targets", "initiatives", "solutions")
_EXTRACT_KEYS = ("extracts", "description", "summary", "details", "excerpt", "text", "content")


@dataclass
class NormalizationContext:
    """Per-record inputs the normalizer needs beyond the parsed data."""

    industry_tag: str
    source_url: Optional[str]
    criteria: List[Criterion] = field(default_factory=list)
    source_kind: SourceKind = SourceKind.PDF
    strict: bool = False  # also fill "extracts" on placeholders


# ============================================================================
# Action helpers
# ============================================================================


def format_action(text: str) -> str:
    """Prefix an action with the bullet marker, normalizing existing markers."""
    stripped = text.strip()
    if stripped.startswith("#"):
        stripped = stripped.lstrip("#").strip()
    return f"{ACTION_BULLET_PREFIX}{stripped}"


def split_actions_text(text: str) -> List[str]:
    """Split a free-text actions block (one action per line) into bullet strings."""
    actions = []
    for line in text.splitlines():
        cleaned = LEADING_BULLET_PATTERN.sub("", line).strip()
        if cleaned:
            actions.append(format_action(cleaned))
    return actions


def missing_criterion_block(display_name: str, strict: bool = False) -> Dict[str, Any]:
    block: Dict[str, Any] = {"actions": [f"{ACTION_BULLET_PREFIX}No specific actions found for {display_name}"]}
    if strict:
        block["extracts"] = f"No relevant information found in the report for {display_name}"
    return block


def _string_list(values: List[Any]) -> List[str]:
    items = []
    for value in values:
        if isinstance(value, dict):
            value = next((value[k] for k in ("action", "text", "content") if isinstance(value.get(k), str)), None)
        if value is not None and str(value).strip():
            items.append(str(value))
    return items


def _actions_from_dict(block: Dict[str, Any]) -> List[str]:
    for key in _LIST_ACTION_KEYS:
        value = block.get(key)
        if isinstance(value, list):
            items = _string_list(value)
            if items:
                return items
    for key in _STRING_ACTION_KEYS:
        value = block.get(key)
        if isinstance(value, str) and value.strip():
            return [value]
    content = block.get("content")
    if isinstance(content, str) and content.strip():
        return [content]
    return [v for k, v in block.items() if k not in _NON_ACTION_KEYS and isinstance(v, str) and v.strip()]


def _extracts_from_dict(block: Dict[str, Any]) -> Optional[str]:
    for key in _EXTRACT_KEYS:
        value = block.get(key)
        if isinstance(value, str) and value.strip():
            return value
        if isinstance(value, list) and value:
            return " ".join(_string_list(value))
    return None


def resolve_criterion_block(value: Any, display_name: str, strict: bool = False) -> Dict[str, Any]:
    """
    Resolve one criterion value of any known shape into {actions, extracts}.

    Known shapes, tried in order:
    - dict with an actions/targets/initiatives/solutions list
    - dict with a single action/target string
    - dict with content, or any other string values
    - plain list of actions
    - plain string, one action per line
    """
    extracts = None
    if isinstance(value, dict):
        raw_actions = _actions_from_dict(value)
        extracts = _extracts_from_dict(value)
    elif isinstance(value, list):
        raw_actions = _string_list(value)
    elif isinstance(value, str):
        raw_actions = [value]
    else:
        raw_actions = []

    actions = []
    for raw in raw_actions:
        actions.extend(split_actions_text(raw))
    actions = actions[:MAX_ACTIONS_PER_CRITERION]

    if not actions:
        block = missing_criterion_block(display_name, strict)
        if extracts:
            block["extracts"] = extracts
        return block

    block = {"actions": actions}
    if extracts is not None:
        block["extracts"] = extracts
    elif strict:
        block["extracts"] = ""
    return block


def _lookup_criterion(data: Dict[str, Any], criterion_id: str, industry: str, position: int) -> Any:
    """Find a criterion's value across the layouts models have used for it."""
    if criterion_id in data:
        return data[criterion_id]
    for container in ("esgCriteria", "criteria"):
        nested = data.get(container)
        if isinstance(nested, dict) and criterion_id in nested:
            return nested[criterion_id]
    positional = f"{industry.lower()}_{position}"
    if industry and positional in data:
        return data[positional]
    return None


# ============================================================================
# Section normalizers
# ============================================================================


def _merge_defaults(target: Dict[str, Any], defaults: Dict[str, Any]) -> Dict[str, Any]:
    for key, default in defaults.items():
        if key not in target:
            target[key] = copy.deepcopy(default)
        elif isinstance(default, dict):
            if isinstance(target[key], dict):
                _merge_defaults(target[key], default)
            else:
                # A string or list where a block belongs is dropped
                target[key] = copy.deepcopy(default)
    return target


def normalize_company_details(record: Dict[str, Any], source_url: Optional[str]) -> None:
    details = record.get("companyDetails")
    if not isinstance(details, dict):
        record["companyDetails"] = default_block(CompanyDetails)
        return

    contact = details.get("contactInfo")
    if not isinstance(contact, dict):
        details["contactInfo"] = {"website": source_url or ""}
    elif "website" not in contact:
        contact["website"] = source_url or ""
    _merge_defaults(details, default_block(CompanyDetails))


def migrate_carbon_footprint(carbon: Dict[str, Any]) -> Dict[str, Any]:
    """
    Move legacy scope1/scope2/scope3/total values into year-keyed cells.

    "12.3 t CO2e (2022)" becomes scope1_2022 = "12.3 t CO2e". Values with no
    year suffix land in the default year. An existing non-empty year-keyed
    cell is never overwritten.
    """
    for scope in CARBON_SCOPES:
        if scope not in carbon:
            continue
        value = carbon.pop(scope)
        if value is None:
            continue
        text = str(value)
        match = YEAR_SUFFIX_PATTERN.search(text)
        year = match.group(1) if match else DEFAULT_CARBON_YEAR
        cleaned = YEAR_SUFFIX_PATTERN.sub("", text).strip()
        target = f"{scope}_{year}"
        if not carbon.get(target):
            carbon[target] = cleaned
    return carbon


def normalize_carbon_footprint(record: Dict[str, Any]) -> None:
    carbon = record.get("carbonFootprint")
    if not isinstance(carbon, dict):
        carbon = {}
    migrate_carbon_footprint(carbon)

    for scope in CARBON_SCOPES:
        for year in CARBON_YEARS:
            key = f"{scope}_{year}"
            value = carbon.get(key)
            carbon[key] = "" if value is None else str(value)
    record["carbonFootprint"] = carbon


def normalize_climate_standards(record: Dict[str, Any]) -> None:
    standards = record.get("climateStandards")
    if not isinstance(standards, dict):
        record["climateStandards"] = default_block(ClimateStandards)
        return
    for key in CLIMATE_STANDARD_KEYS:
        value = standards.get(key)
        standards[key] = "No" if value in (None, "") else str(value)


def is_xml_mapped(record: Dict[str, Any]) -> bool:
    return any(XML_CRITERIA_PATTERN.match(key) for key in record)


def rename_xml_criteria(record: Dict[str, Any]) -> None:
    """Move criteria{N}_actions_solutions fields into the construction slots."""
    for key in [k for k in record if XML_CRITERIA_PATTERN.match(k)]:
        position = int(XML_CRITERIA_PATTERN.match(key).group(1))
        value = record.pop(key)
        if not 1 <= position <= len(CONSTRUCTION_CRITERIA):
            logger.debug(f"Dropping unmapped XML criteria field {key}")
            continue
        slot = CONSTRUCTION_CRITERIA[position - 1]
        text = value if isinstance(value, str) else ""
        record[slot.id] = {"actions": split_actions_text(text)[:MAX_ACTIONS_PER_CRITERION], "extracts": ""}


# ============================================================================
# Entry points
# ============================================================================


def normalize(parsed: Dict[str, Any], context: NormalizationContext) -> ExtractedRecord:
    """
    Produce a schema-complete ExtractedRecord from a recovered dict.

    Args:
        parsed: Data returned by the recovery engine
        context: Industry, source URL, required criteria and source kind

    Returns:
        New normalized dict; the input is not modified
    """
    record = copy.deepcopy(parsed) if isinstance(parsed, dict) else {}

    criteria = list(context.criteria)
    if is_xml_mapped(record):
        rename_xml_criteria(record)
        if not criteria:
            criteria = list(CONSTRUCTION_CRITERIA)

    record["industry"] = context.industry_tag
    record["sourceType"] = SourceKind(context.source_kind).value

    normalize_company_details(record, context.source_url)
    for key, model_cls in (("basicInformation", BasicInformation), ("highlights", Highlights)):
        if not isinstance(record.get(key), dict):
            record[key] = default_block(model_cls)
        else:
            _merge_defaults(record[key], default_block(model_cls))
    for text_key in ("abstract", "otherInitiatives", "controversies"):
        if record.get(text_key) is None:
            record[text_key] = ""

    normalize_carbon_footprint(record)
    normalize_climate_standards(record)

    for position, criterion in enumerate(criteria, start=1):
        value = _lookup_criterion(record, criterion.id, context.industry_tag, position)
        if value is None:
            record[criterion.id] = missing_criterion_block(criterion.display_name, context.strict)
        else:
            record[criterion.id] = resolve_criterion_block(value, criterion.display_name, context.strict)

    return record


def build_fallback_record(
    display_name: str,
    context: NormalizationContext,
    error_message: str,
    raw_text: Optional[str] = None,
) -> ExtractedRecord:
    """
    Build the record persisted for a FAILED extraction.

    Carries basic info, the error reason and the start of the raw response,
    plus explicit "could not extract" blocks for every criterion so export
    columns stay stable.
    """
    record: Dict[str, Any] = {
        "basicInformation": {
            "companyName": display_name,
            "reportYear": "Unknown",
            "reportTitle": "Unknown",
        },
        "extractionError": error_message,
    }
    for criterion in context.criteria:
        record[criterion.id] = {
            "actions": [f"{ACTION_BULLET_PREFIX}Could not extract data for {criterion.display_name}"],
            "extracts": "Error processing this criterion - extraction failed",
        }
    if raw_text:
        record["rawResponse"] = raw_text[:RAW_RESPONSE_PREVIEW_CHARS] + "..."
    return normalize(record, context)
