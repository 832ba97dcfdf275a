"""
Response recovery for free-text model output.

Converts an unreliable model response (clean JSON, JSON wrapped in prose or
markdown, malformed JSON, or the XML <sustainability_analysis> format used by
industry-specific prompts) into a structured dict.

Strategies run as an ordered cascade; the first one that yields a parseable
JSON object wins:

1. direct_parse        - whole trimmed text is a {...} object
2. code_block          - fenced ``` / ```json regions, in document order
3. balanced_json       - top-level balanced brace spans (> 50 chars)
4. regex_braces        - lazy brace regex fallback (> 50 chars)
5. cleaned_json_block  - brace blocks, largest first, after textual cleanup
6. repaired_json       - heuristic repair, then manual key/value pairs

For the XML shape, per-tag extraction runs first and the JSON cascade is
only the fallback.

All functions here are pure: no I/O, and recover() never raises.
"""

import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..constants import (
    EMPTY_TEXT_PREVIEW_CHARS,
    MIN_SUBSTANTIVE_LENGTH,
    ORIGINAL_TEXT_PREVIEW_CHARS,
    REPAIR_WARNING,
)
from ..schemas.enums import ExpectedShape
from ..schemas.records import ExtractionStrategyResult

logger = logging.getLogger(__name__)

EXHAUSTED_MESSAGE = "No valid JSON pattern found in the response after trying all strategies"
EMPTY_MESSAGE = "Empty or invalid response text"

# ============================================================================
# Patterns
# ============================================================================

CODE_BLOCK_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
REGEX_BRACES_PATTERN = re.compile(r"(\{[\s\S]*?\})(?=\s*$|\s*[^{}])")
# One level of nesting; every repetition starts at a "{"
BRACE_BLOCK_PATTERN = re.compile(r"\{[^{}]*(?:\{[^{}]*\}[^{}]*)*\}")
GREEDY_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")
MARKDOWN_FENCE_PATTERN = re.compile(r"```json|```")
TRAILING_COMMA_PATTERN = re.compile(r",\s*([}\]])")
BARE_KEY_PATTERN = re.compile(r"([{,])\s*(\w+)\s*:")
SINGLE_QUOTED_KEY_PATTERN = re.compile(r"([{,])\s*'([^'\"]*)'\s*:")
SINGLE_QUOTED_VALUE_PATTERN = re.compile(r":\s*'([^'\"]*)'(\s*[,}\]])")
KEY_VALUE_PATTERN = re.compile(r'"([^"]+)"\s*:\s*([^,}]+)')
NEWLINE_RUN_PATTERN = re.compile(r"\s*[\n\r]+\s*")
CONTROL_CHARS_PATTERN = re.compile(r"[\x00-\x19]+")
INVALID_ESCAPE_PATTERN = re.compile(r"\\([&'])")
WHITESPACE_RUN_PATTERN = re.compile(r"\s+")


# ============================================================================
# Helpers
# ============================================================================


def _load_object(text: str) -> Optional[Dict[str, Any]]:
    """Strict JSON parse that only accepts a top-level object."""
    try:
        value = json.loads(text)
    except (ValueError, RecursionError):
        return None
    return value if isinstance(value, dict) else None


def _ok(data: Dict[str, Any], strategy: str, warnings: Optional[List[str]] = None) -> ExtractionStrategyResult:
    return ExtractionStrategyResult(success=True, data=data, strategy_name=strategy, warnings=warnings or [])


def find_balanced_spans(text: str) -> List[str]:
    """
    Collect every top-level balanced {...} span in text.

    The scan counts braces only; it does not understand string literals, so a
    brace inside a string value shifts depth. A stray closing brace resets the
    scan rather than going negative.
    """
    spans = []
    depth = 0
    start = -1

    for i, char in enumerate(text):
        if char == "{":
            if depth == 0:
                start = i
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0 and start != -1:
                spans.append(text[start : i + 1])
                start = -1
            elif depth < 0:
                depth = 0
                start = -1

    return spans


def clean_json_text(json_text: str) -> str:
    """
    Apply textual cleanup to a JSON-like block.

    - strips markdown fences
    - drops escapes JSON does not allow (\\' and \\&)
    - collapses newline runs into single spaces
    - removes remaining control characters
    - removes trailing commas before } or ]
    """
    text = MARKDOWN_FENCE_PATTERN.sub("", json_text)
    text = INVALID_ESCAPE_PATTERN.sub(r"\1", text)
    text = NEWLINE_RUN_PATTERN.sub(" ", text)
    text = CONTROL_CHARS_PATTERN.sub("", text)
    text = TRAILING_COMMA_PATTERN.sub(r"\1", text)
    return text.strip()


def _coerce_value(raw: str) -> Any:
    raw = raw.strip()
    try:
        return json.loads(raw)
    except (ValueError, RecursionError):
        return raw.replace('"', "").strip()


def repair_broken_json(text: str) -> Optional[Dict[str, Any]]:
    """
    Last-resort repair of a broken JSON object.

    Takes the span from the first { to the last }, quotes bare and
    single-quoted property names, converts single-quoted values, strips stray
    markdown and trailing commas, then parses. If parsing still fails, builds
    a flat mapping from every "key": value pair found, JSON-decoding each
    value where possible and keeping it as a string otherwise.

    Unclosed objects are not closed: text with no closing brace is rejected.

    Returns:
        Repaired dict, or None when nothing usable was found
    """
    match = GREEDY_OBJECT_PATTERN.search(text)
    if not match:
        return None

    json_text = match.group(0)
    json_text = MARKDOWN_FENCE_PATTERN.sub("", json_text)
    json_text = SINGLE_QUOTED_KEY_PATTERN.sub(r'\1"\2":', json_text)
    json_text = SINGLE_QUOTED_VALUE_PATTERN.sub(r': "\1"\2', json_text)
    json_text = BARE_KEY_PATTERN.sub(r'\1"\2":', json_text)
    json_text = TRAILING_COMMA_PATTERN.sub(r"\1", json_text)
    json_text = WHITESPACE_RUN_PATTERN.sub(" ", json_text).strip()

    repaired = _load_object(json_text)
    if repaired is not None:
        return repaired

    manual: Dict[str, Any] = {}
    for key, raw_value in KEY_VALUE_PATTERN.findall(json_text):
        manual[key] = _coerce_value(raw_value)

    return manual or None


# ============================================================================
# JSON Strategies
# ============================================================================


def try_direct_parse(text: str) -> Optional[ExtractionStrategyResult]:
    trimmed = text.strip()
    if not (trimmed.startswith("{") and trimmed.endswith("}")):
        return None
    data = _load_object(trimmed)
    if data is None:
        logger.debug("Direct parsing failed")
        return None
    return _ok(data, "direct_parse")


def try_code_blocks(text: str) -> Optional[ExtractionStrategyResult]:
    for block in CODE_BLOCK_PATTERN.findall(text):
        candidate = block.strip()
        if not (candidate.startswith("{") and candidate.endswith("}")):
            continue
        data = _load_object(candidate)
        if data is not None:
            return _ok(data, "code_block")
        logger.debug("Code block parsing failed, trying next block")
    return None


def try_balanced_spans(text: str) -> Optional[ExtractionStrategyResult]:
    for span in find_balanced_spans(text):
        if len(span) <= MIN_SUBSTANTIVE_LENGTH:
            continue
        data = _load_object(span)
        if data is not None:
            return _ok(data, "balanced_json")
    return None


def try_regex_braces(text: str) -> Optional[ExtractionStrategyResult]:
    match = REGEX_BRACES_PATTERN.search(text)
    if not match:
        return None
    candidate = match.group(1)
    if len(candidate) <= MIN_SUBSTANTIVE_LENGTH:
        return None
    data = _load_object(candidate)
    if data is None:
        return None
    return _ok(data, "regex_braces")


def try_cleaned_blocks(text: str) -> Optional[ExtractionStrategyResult]:
    blocks = sorted(BRACE_BLOCK_PATTERN.findall(text), key=len, reverse=True)
    for block in blocks:
        if len(block) <= MIN_SUBSTANTIVE_LENGTH:
            # Sorted by length, nothing after this is substantial either
            break
        data = _load_object(clean_json_text(block))
        if data is not None:
            return _ok(data, "cleaned_json_block")
    return None


def try_repair(text: str) -> Optional[ExtractionStrategyResult]:
    data = repair_broken_json(text)
    if data is None:
        return None
    return _ok(data, "repaired_json", [REPAIR_WARNING])


JSON_STRATEGIES: List[Tuple[str, Callable[[str], Optional[ExtractionStrategyResult]]]] = [
    ("direct_parse", try_direct_parse),
    ("code_block", try_code_blocks),
    ("balanced_json", try_balanced_spans),
    ("regex_braces", try_regex_braces),
    ("cleaned_json_block", try_cleaned_blocks),
    ("repaired_json", try_repair),
]


# ============================================================================
# XML Tag Extraction
# ============================================================================

ENVELOPE_PATTERN = re.compile(r"<sustainability_analysis>(.*?)</sustainability_analysis>", re.DOTALL)
CARBON_REPORT_YEARS = ("2022", "2023", "2024")


def _build_xml_field_map() -> Dict[str, Tuple[str, ...]]:
    """Declarative tag -> record path table for the XML sustainability format."""
    field_map: Dict[str, Tuple[str, ...]] = {
        "company": ("basicInformation", "companyName"),
        "file_name": ("fileName",),
        "abstract": ("abstract",),
        "highlight_courage": ("highlights", "courage"),
        "highlight_action": ("highlights", "action"),
        "highlight_solution": ("highlights", "solution"),
        "climate_standard_iso_14001": ("climateStandards", "iso14001"),
        "climate_standard_iso_50001": ("climateStandards", "iso50001"),
        "climate_standard_emas": ("climateStandards", "emas"),
        "climate_standard_cdp": ("climateStandards", "cdp"),
        "climate_standard_sbti": ("climateStandards", "sbti"),
        "other": ("otherInitiatives",),
        "controversies": ("controversies",),
    }
    for n in range(1, 8):
        field_map[f"criteria{n}_actions_solutions"] = (f"criteria{n}_actions_solutions",)
    for year in CARBON_REPORT_YEARS:
        for scope in ("1", "2", "3"):
            field_map[f"co2_scope{scope}_{year}"] = ("carbonFootprint", f"scope{scope}_{year}")
        field_map[f"co2_total_{year}"] = ("carbonFootprint", f"total_{year}")
    return field_map


XML_FIELD_MAP = _build_xml_field_map()
_TAG_PATTERNS = {tag: re.compile(rf"<{tag}>(.*?)</{tag}>", re.DOTALL) for tag in XML_FIELD_MAP}


def _set_path(target: Dict[str, Any], path: Tuple[str, ...], value: Any) -> None:
    node = target
    for key in path[:-1]:
        node = node.setdefault(key, {})
    node[path[-1]] = value


def extract_xml_fields(text: str) -> Dict[str, Any]:
    """
    Map every recognized XML tag in text onto its record path.

    Each tag is extracted independently so one malformed section does not
    block the others.
    """
    data: Dict[str, Any] = {}
    for tag, path in XML_FIELD_MAP.items():
        match = _TAG_PATTERNS[tag].search(text)
        if match:
            _set_path(data, path, match.group(1).strip())
    return data


def _count_tags(text: str) -> int:
    return sum(1 for pattern in _TAG_PATTERNS.values() if pattern.search(text))


def try_xml_tags(text: str) -> Optional[ExtractionStrategyResult]:
    envelope = ENVELOPE_PATTERN.search(text)
    if envelope:
        data = extract_xml_fields(envelope.group(1))
        strategy = "xml_envelope"
        # Some responses close the envelope early and put highlights after it
        if _count_tags(envelope.group(1)) < _count_tags(text):
            data = extract_xml_fields(text)
            strategy = "xml_tags"
    else:
        data = extract_xml_fields(text)
        strategy = "xml_tags"

    if not data:
        return None

    warnings = [] if envelope else ["No <sustainability_analysis> envelope found; fields extracted per tag"]
    return _ok(data, strategy, warnings)


# ============================================================================
# Cascade
# ============================================================================


def _failure(message: str, original_text: str) -> ExtractionStrategyResult:
    return ExtractionStrategyResult(success=False, message=message, original_text=original_text)


def recover(raw_text: Any, expected_shape: ExpectedShape = ExpectedShape.JSON) -> ExtractionStrategyResult:
    """
    Recover a structured dict from raw model output.

    Args:
        raw_text: Unparsed model response
        expected_shape: JSON for standard prompts, XML_SUSTAINABILITY for
            industry templates that answer in <sustainability_analysis> tags

    Returns:
        ExtractionStrategyResult; success=False carries a message and the
        start of the original text for diagnosis
    """
    if not isinstance(raw_text, str) or not raw_text.strip():
        preview = raw_text[:EMPTY_TEXT_PREVIEW_CHARS] if isinstance(raw_text, str) else ""
        return _failure(EMPTY_MESSAGE, preview + "...")

    if ExpectedShape(expected_shape) == ExpectedShape.XML_SUSTAINABILITY:
        result = try_xml_tags(raw_text)
        if result is not None:
            return result
        logger.debug("No XML tags found, falling back to JSON strategies")

    for name, strategy in JSON_STRATEGIES:
        result = strategy(raw_text)
        if result is not None:
            logger.debug(f"Response recovered with strategy {name}")
            return result

    return _failure(EXHAUSTED_MESSAGE, raw_text[:ORIGINAL_TEXT_PREVIEW_CHARS] + "...")
