"""Prompt construction for ESG extraction.

Chooses the prompt for a source record in priority order:
1. the record's custom prompt override
2. an industry-specific template (XML answer format) when one is registered
3. the standard JSON prompt built from the industry's criteria

The choice also fixes the answer shape the recovery engine should expect.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from ..constants import MAX_ACTIONS_PER_CRITERION
from ..schemas.enums import ExpectedShape, PromptKind, SourceKind
from ..schemas.records import Criterion, SourceRecord

logger = logging.getLogger(__name__)

PROMPTS_DIR = Path(__file__).parent / "prompts"
XML_ENVELOPE_TAG = "<sustainability_analysis>"
PDF_PLACEHOLDER = "The PDF is attached."
XML_NESTING_INSTRUCTION = (
    "\n\nIMPORTANT: Make sure to properly nest all tags within "
    "<sustainability_analysis></sustainability_analysis> tags. The final output should be "
    "properly formatted XML with all data between these main tags."
)

# Industry key -> template file under prompts/
INDUSTRY_TEMPLATES: Dict[str, str] = {
    "construction": "construction-industry-prompt.txt",
}

_descriptions_cache: Optional[dict] = None


@dataclass(frozen=True)
class PromptPlan:
    """Everything needed to send one extraction request."""

    system_prompt: Optional[str]
    user_prompt: str
    expected_shape: ExpectedShape
    prompt_kind: PromptKind


# ============================================================================
# Criteria descriptions
# ============================================================================


def load_criteria_descriptions(path: Optional[Path] = None) -> dict:
    """Load and cache criterion descriptions/keywords from YAML."""
    global _descriptions_cache
    if _descriptions_cache is not None and path is None:
        return _descriptions_cache

    config_path = path or PROMPTS_DIR / "criteria_descriptions.yaml"
    if not config_path.exists():
        logger.warning(f"Criteria descriptions not found at {config_path}, prompts will list names only")
        descriptions = {}
    else:
        with open(config_path) as f:
            descriptions = yaml.safe_load(f) or {}

    if path is None:
        _descriptions_cache = descriptions
    return descriptions


def clear_cache():
    global _descriptions_cache
    _descriptions_cache = None


def format_criteria_list(criteria: List[Criterion], include_descriptions: bool = True) -> str:
    descriptions = load_criteria_descriptions() if include_descriptions else {}
    items = []
    for criterion in criteria:
        item = f"- {criterion.id}: {criterion.display_name}"
        info = descriptions.get(criterion.id.lower())
        if info:
            item += f"\n  Description: {info.get('description', '')}"
            keywords = info.get("keywords") or []
            if keywords:
                item += f"\n  Typical keywords: {', '.join(str(k) for k in keywords)}"
        items.append(item)
    return "\n\n".join(items)


def format_criteria_structure(criteria: List[Criterion], max_actions: int = MAX_ACTIONS_PER_CRITERION) -> str:
    example_actions = ", ".join(f'"# Action {i + 1}"' for i in range(max_actions))
    blocks = []
    for criterion in criteria:
        blocks.append(
            f'  "{criterion.id}": {{\n'
            f"    \"actions\": [\n      {example_actions}\n    ],\n"
            f'    "extracts": "Key supporting evidence from the document for the actions listed above."\n'
            f"  }}"
        )
    return ",\n".join(blocks)


# ============================================================================
# Standard prompts
# ============================================================================


def create_system_prompt(industry: Optional[str]) -> str:
    industry = industry or "general"
    return (
        "You are an expert ESG data extraction assistant specializing in corporate sustainability "
        f"reports for the {industry} industry.\n"
        "Your task is to analyze reports and extract structured ESG data according to specific criteria.\n"
        "Focus on extracting factual, specific information directly stated in the document.\n"
        "Format your response as a single, valid JSON object with the exact structure matching the "
        "criteria IDs. Do not include backticks, markdown formatting, or any text before or after the JSON."
    )


def create_user_prompt(
    document_url: str,
    criteria: List[Criterion],
    source_kind: SourceKind = SourceKind.PDF,
    website_content: Optional[str] = None,
    max_actions: int = MAX_ACTIONS_PER_CRITERION,
    include_descriptions: bool = True,
) -> str:
    """Build the standard JSON extraction prompt."""
    count = len(criteria)
    if source_kind == SourceKind.WEBSITE:
        intro = (
            f"Extract ESG information from the website at URL: {document_url}\n\n"
            "The website content has been extracted and is provided below:"
        )
        if website_content:
            intro += f"\n\n{website_content}"
    else:
        intro = f"Extract ESG information from the sustainability report at URL: {document_url}"

    return f"""{intro}

Extract information for EXACTLY the following {count} ESG criteria (no more, no less):
{format_criteria_list(criteria, include_descriptions)}

Your goal is to extract the following information:
01. Detailed company information: legal entity name, business description, sector, address (street, zip code, city, country), contact information (phone, email, website), founding year, employee range, revenue range
02. Company name, report year/period, and title
03. Overall sustainability abstract (max 500 characters)
04. Three highlights: highest entrepreneurial courage, most important internal sustainability action, most important customer sustainability solution (max 400 characters each)
05. Actions and solutions for each criterion
06. Carbon footprint data (scope 1, 2, 3 and totals) for available years
07. Climate standards compliance (ISO 14001, EMAS, ISO 50001, CDP, SBTi)
08. Other important sustainability initiatives
09. Any sustainability-related controversies and company responses

For each criterion, extract:
- Maximum {max_actions} concrete actions/solutions the company is taking, including any supporting numbers
- Direct text excerpts from the document that support them

Format your response as a JSON object with this structure:
{{
  "companyDetails": {{
    "legalEntityName": "Full legal name of the company",
    "businessDescription": "Description of the company's business",
    "sector": "Main sector",
    "address": {{"street": "Street address", "zipCode": "Postal/zip code", "city": "City", "country": "Country"}},
    "contactInfo": {{"phoneNumber": "Company phone number", "emailAddress": "Company email", "website": "Company website"}},
    "foundingYear": "Year the company was founded",
    "employeeRange": "Number of employees or range",
    "revenueRange": "Annual revenue or range"
  }},
  "basicInformation": {{"companyName": "Name", "reportYear": "Year", "reportTitle": "Title"}},
  "abstract": "Summary of business and sustainability strategy",
  "highlights": {{"courage": "Most courageous initiative", "action": "Most important internal action", "solution": "Most important customer solution"}},
{format_criteria_structure(criteria, max_actions)},
  "carbonFootprint": {{
    "scope1": "x.xxx t CO2e (year)",
    "scope2": "x.xxx t CO2e (year)",
    "scope3": "x.xxx t CO2e (year)",
    "total": "x.xxx t CO2e (year)"
  }},
  "climateStandards": {{"iso14001": "Yes/No", "iso50001": "Yes/No", "emas": "Yes/No", "cdp": "Yes/No", "sbti": "Yes/No"}},
  "otherInitiatives": "Other important sustainability initiatives (max 1000 chars)",
  "controversies": "Any controversies and responses (max 1000 chars)"
}}

FORMATTING REQUIREMENTS (CRITICAL):
1. Include EXACTLY the {count} criteria listed above with their exact IDs - do not add or remove any criteria
2. Include a MAXIMUM of {max_actions} actions/solutions per criterion, the TOP actions of the company in this criterion
3. Keep each action under 150 characters
4. Format each action/solution as a bullet point starting with "#"
5. Rank actions by importance (customer solutions first, then internal actions)
6. For the "extracts" field, include direct quotes from the document that support the actions

CONTENT REQUIREMENTS:
1. YOUR RESPONSE MUST INCLUDE ALL {count} CRITERIA LISTED ABOVE WITH THEIR EXACT IDs, even if there's limited or no information for some criteria
2. For criteria with no information, include an action with "# No specific actions found for [CRITERION NAME]" and note "No relevant information found in the report for [CRITERION NAME]" in extracts
3. Include ONLY information explicitly stated in the document
4. Generate the results in the document's original language (German or English) - don't translate
5. For carbon emissions, use x.xxx t CO2e format (calculate if needed)
6. When a data point does not exist in the document, say "Not stated" in the extracts field

Your response MUST be valid JSON that can be parsed with a strict JSON parser."""


# ============================================================================
# Industry templates
# ============================================================================


class IndustryPromptRegistry:
    """Industry-specific prompt templates that answer in the XML format."""

    def __init__(self, templates: Optional[Dict[str, str]] = None, prompts_dir: Path = PROMPTS_DIR, logger=None):
        self.templates = dict(INDUSTRY_TEMPLATES if templates is None else templates)
        self.prompts_dir = Path(prompts_dir)
        self.logger = logger or logging.getLogger(__name__)

    def has_template(self, industry: Optional[str]) -> bool:
        return bool(industry) and industry.strip().lower() in self.templates

    def get_template(self, industry: Optional[str], url: Optional[str] = None) -> Optional[str]:
        """
        Load the template for an industry with the document URL filled in.

        Returns:
            Prompt text, or None if the industry has no template or the file
            cannot be read
        """
        if not self.has_template(industry):
            return None

        path = self.prompts_dir / self.templates[industry.strip().lower()]
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            self.logger.error(f"Error loading industry-specific prompt for {industry}: {e}")
            return None

        if url:
            content = content.replace(PDF_PLACEHOLDER, f"The PDF URL is: {url}")
        content = content.replace(
            "</sustainability_analysis>\n<highlight_courage>",
            "</sustainability_analysis>\n\n<highlight_courage>",
        )
        return content + XML_NESTING_INSTRUCTION


# ============================================================================
# Prompt selection
# ============================================================================


def _custom_prompt_plan(source: SourceRecord, source_kind: SourceKind, website_content: Optional[str]) -> PromptPlan:
    prompt = source.custom_prompt.strip()
    if source.source_url and source.source_url not in prompt:
        prompt += f"\n\nDocument URL: {source.source_url}"
    if source_kind == SourceKind.WEBSITE and website_content:
        prompt += f"\n\n{website_content}"

    if XML_ENVELOPE_TAG in prompt:
        return PromptPlan(None, prompt, ExpectedShape.XML_SUSTAINABILITY, PromptKind.CUSTOM)
    return PromptPlan(create_system_prompt(source.industry_tag), prompt, ExpectedShape.JSON, PromptKind.CUSTOM)


def build_extraction_prompt(
    source: SourceRecord,
    source_kind: SourceKind,
    criteria: List[Criterion],
    website_content: Optional[str] = None,
    registry: Optional[IndustryPromptRegistry] = None,
) -> PromptPlan:
    """
    Choose and build the prompt for one source record.

    Args:
        source: Record being processed
        source_kind: PDF or WEBSITE
        criteria: The industry's seven criteria
        website_content: Readable page text for WEBSITE sources
        registry: Industry template registry (default templates when None)

    Returns:
        PromptPlan with the expected answer shape
    """
    if source.custom_prompt and source.custom_prompt.strip():
        return _custom_prompt_plan(source, source_kind, website_content)

    registry = registry or IndustryPromptRegistry()
    template = registry.get_template(source.industry_tag, source.source_url)
    if template:
        if source_kind == SourceKind.WEBSITE and website_content:
            template += f"\n\n{website_content}"
        return PromptPlan(None, template, ExpectedShape.XML_SUSTAINABILITY, PromptKind.INDUSTRY)

    return PromptPlan(
        system_prompt=create_system_prompt(source.industry_tag),
        user_prompt=create_user_prompt(source.source_url or "", criteria, source_kind, website_content),
        expected_shape=ExpectedShape.JSON,
        prompt_kind=PromptKind.STANDARD,
    )
