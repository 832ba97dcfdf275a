"""
Industry criteria lookup.

Each industry reports on exactly seven criteria. Industries come from
IndustryCriteriaSimple.csv (columns: Industry, Criterion 1 .. Criterion 7)
plus a built-in construction set whose ids are fixed schema slots used by
the XML sustainability format.

Lookup order for an industry tag:
1. exact key
2. case-insensitive key
3. substring (a key that contains the tag)
4. suffix after the last underscore (e.g. "11_telecommunication")
5. the default criteria set

Step 3 can match a short tag inside an unrelated longer industry name;
existing industry CSVs rely on it, so it is kept.
"""

import csv
import logging
from pathlib import Path
from typing import Dict, List, Optional

from ..schemas.records import Criterion

CRITERIA_PER_INDUSTRY = 7

DEFAULT_CRITERIA: List[Criterion] = [
    Criterion(id="carbon_footprint", display_name="Carbon Footprint"),
    Criterion(id="energy_efficiency", display_name="Energy efficiency"),
    Criterion(id="renewable_energies", display_name="Renewable energies"),
    Criterion(id="waste_management", display_name="Waste management"),
    Criterion(id="water_management", display_name="Water management"),
    Criterion(id="diversity_inclusion", display_name="Diversity and inclusion"),
    Criterion(id="social_responsibility", display_name="Social responsibility"),
]

# Order matches criteria1..criteria7 in the construction XML template
CONSTRUCTION_CRITERIA: List[Criterion] = [
    Criterion(id="buildings", display_name="Sustainable Construction"),
    Criterion(id="energy_efficiency", display_name="Energy Efficiency"),
    Criterion(id="renewable_energies", display_name="Renewable Energies"),
    Criterion(id="climate_neutral_operation", display_name="Climate-neutral Operation"),
    Criterion(id="materials", display_name="Sustainable Materials"),
    Criterion(id="occupational_safety_and_health", display_name="Occupational Safety and Health"),
    Criterion(id="carbon_footprint", display_name="Carbon Footprint"),
]

BUILTIN_INDUSTRIES: Dict[str, List[Criterion]] = {
    "construction": CONSTRUCTION_CRITERIA,
}


def load_criteria_csv(csv_path: Path) -> Dict[str, List[Criterion]]:
    """
    Parse an industry criteria CSV.

    Blank criterion cells fall back to the default name for that position.
    Rows without an Industry value are ignored.

    Returns:
        Mapping of industry key (lowercased) -> seven criteria
    """
    industries: Dict[str, List[Criterion]] = {}
    with open(csv_path, newline="", encoding="utf-8-sig") as f:
        for row in csv.DictReader(f):
            industry = (row.get("Industry") or "").strip()
            if not industry:
                continue
            key = industry.lower()
            criteria = []
            for n in range(1, CRITERIA_PER_INDUSTRY + 1):
                name = (row.get(f"Criterion {n}") or "").strip()
                criteria.append(
                    Criterion(id=f"{key}_{n}", display_name=name or DEFAULT_CRITERIA[n - 1].display_name)
                )
            industries[key] = criteria
    return industries


class CriteriaProvider:
    """Resolves an industry tag to its ordered list of seven criteria."""

    def __init__(self, csv_path: Optional[Path] = None, logger=None):
        """
        Args:
            csv_path: Optional IndustryCriteriaSimple.csv; built-ins only when absent
            logger: Optional logger instance
        """
        self.csv_path = Path(csv_path) if csv_path else None
        self.logger = logger or logging.getLogger(__name__)
        self._industries: Optional[Dict[str, List[Criterion]]] = None

    def _load(self) -> Dict[str, List[Criterion]]:
        if self._industries is not None:
            return self._industries

        industries = dict(BUILTIN_INDUSTRIES)
        if self.csv_path and self.csv_path.exists():
            loaded = load_criteria_csv(self.csv_path)
            industries.update(loaded)
            self.logger.info(f"Loaded criteria for {len(loaded)} industries from {self.csv_path}")
        elif self.csv_path:
            self.logger.warning(f"Criteria CSV not found at {self.csv_path}, using built-in criteria only")

        self._industries = industries
        return industries

    def get_all_industries(self) -> List[str]:
        return list(self._load().keys())

    def get_criteria_for_industry(self, industry_tag: Optional[str]) -> List[Criterion]:
        """
        Get the seven criteria for an industry, falling back to the default set.

        Args:
            industry_tag: Industry identifier from the source list

        Returns:
            Ordered list of seven Criterion
        """
        industries = self._load()
        tag = (industry_tag or "").strip()
        lowered = tag.lower()

        if tag and tag in industries:
            return industries[tag]

        for key, criteria in industries.items():
            if lowered and key.lower() == lowered:
                return criteria

        if lowered:
            for key, criteria in industries.items():
                if lowered in key.lower():
                    self.logger.debug(f"Partial industry match for '{tag}' in '{key}'")
                    return criteria

        if "_" in lowered:
            suffix = lowered.rsplit("_", 1)[-1]
            for key, criteria in industries.items():
                if key.lower() == suffix:
                    self.logger.debug(f"Matched industry '{tag}' by suffix '{suffix}'")
                    return criteria

        self.logger.debug(f"No criteria found for '{tag}', using default criteria")
        return list(DEFAULT_CRITERIA)
