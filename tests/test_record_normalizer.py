"""Tests for record normalization, legacy migrations and fallback records."""

import pytest

from esg_pipeline.schemas.enums import SourceKind
from esg_pipeline.schemas.records import Criterion
from esg_pipeline.validators.record_normalizer import (
    NormalizationContext,
    build_fallback_record,
    migrate_carbon_footprint,
    normalize,
    resolve_criterion_block,
    split_actions_text,
)

REPORT_URL = "https://acme-bau.de/downloads/bericht-2023.pdf"

# ─── Helpers ──────────────────────────────────────────────────────────────────


@pytest.fixture
def context(energy_criteria):
    return NormalizationContext(industry_tag="energy", source_url=REPORT_URL, criteria=energy_criteria)


class TestCompanyDetails:
    def test_absent_details_are_synthesized(self, context):
        record = normalize({}, context)
        details = record["companyDetails"]
        assert details["legalEntityName"] == ""
        assert details["address"] == {"street": "", "zipCode": "", "city": "", "country": ""}
        assert set(details["contactInfo"]) == {"phoneNumber", "emailAddress", "website"}
        assert {"foundingYear", "employeeRange", "revenueRange", "sector", "businessDescription"} <= set(details)

    def test_partial_details_get_website_backfilled(self, context):
        parsed = {"companyDetails": {"legalEntityName": "Acme Bau GmbH", "contactInfo": {"phoneNumber": "+49 30 1234"}}}
        details = normalize(parsed, context)["companyDetails"]
        assert details["legalEntityName"] == "Acme Bau GmbH"
        assert details["contactInfo"]["phoneNumber"] == "+49 30 1234"
        assert details["contactInfo"]["website"] == REPORT_URL
        assert details["contactInfo"]["emailAddress"] == ""
        assert details["address"]["city"] == ""

    def test_existing_website_is_kept(self, context):
        parsed = {"companyDetails": {"contactInfo": {"website": "https://acme-bau.de"}}}
        assert normalize(parsed, context)["companyDetails"]["contactInfo"]["website"] == "https://acme-bau.de"

    def test_string_address_is_replaced_with_block(self, context):
        parsed = {"companyDetails": {"legalEntityName": "Acme Bau GmbH", "address": "Hauptstr. 1, 10115 Berlin"}}
        details = normalize(parsed, context)["companyDetails"]
        assert details["legalEntityName"] == "Acme Bau GmbH"
        assert details["address"] == {"street": "", "zipCode": "", "city": "", "country": ""}

    def test_string_contact_info_is_replaced_with_block(self, context):
        parsed = {"companyDetails": {"contactInfo": "info@acme-bau.de"}}
        contact = normalize(parsed, context)["companyDetails"]["contactInfo"]
        assert contact == {"phoneNumber": "", "emailAddress": "", "website": REPORT_URL}


class TestCarbonFootprint:
    def test_legacy_shape_is_migrated(self, context):
        parsed = {"carbonFootprint": {"scope1": "1.056 t CO2e (2022)", "scope2": "310 t CO2e", "total": None}}
        carbon = normalize(parsed, context)["carbonFootprint"]
        assert carbon["scope1_2022"] == "1.056 t CO2e"
        assert carbon["scope2_2023"] == "310 t CO2e"
        assert carbon["total_2023"] == ""
        for legacy in ("scope1", "scope2", "scope3", "total"):
            assert legacy not in carbon

    def test_full_matrix_of_strings(self, context):
        carbon = normalize({"carbonFootprint": {"scope3_2024": 42}}, context)["carbonFootprint"]
        expected = {f"{s}_{y}" for s in ("scope1", "scope2", "scope3", "total") for y in ("2022", "2023", "2024")}
        assert expected <= set(carbon)
        assert carbon["scope3_2024"] == "42"
        assert all(isinstance(carbon[key], str) for key in expected)

    def test_year_keyed_cell_is_not_overwritten(self):
        carbon = migrate_carbon_footprint({"scope1": "5 t CO2e (2023)", "scope1_2023": "7 t CO2e"})
        assert carbon == {"scope1_2023": "7 t CO2e"}

    def test_non_dict_carbon_is_replaced(self, context):
        carbon = normalize({"carbonFootprint": "not reported"}, context)["carbonFootprint"]
        assert carbon["total_2022"] == ""


class TestCriteria:
    def test_missing_criterion_gets_placeholder(self, context):
        record = normalize({}, context)
        assert record["carbon_footprint"] == {"actions": ["# No specific actions found for Carbon Footprint"]}
        assert record["energy_efficiency"] == {"actions": ["# No specific actions found for Energy efficiency"]}

    def test_strict_placeholder_has_extracts(self, energy_criteria):
        strict = NormalizationContext("energy", REPORT_URL, energy_criteria, strict=True)
        block = normalize({}, strict)["energy_efficiency"]
        assert block["extracts"] == "No relevant information found in the report for Energy efficiency"

    def test_targets_list_shape(self, context):
        parsed = {"carbon_footprint": {"targets": ["Cut emissions 30% by 2030", "Electrify the fleet"]}}
        assert normalize(parsed, context)["carbon_footprint"]["actions"] == [
            "# Cut emissions 30% by 2030",
            "# Electrify the fleet",
        ]

    def test_free_text_shape(self, context):
        parsed = {"energy_efficiency": "- LED retrofit in all offices\n- Heat pumps in new buildings"}
        assert normalize(parsed, context)["energy_efficiency"]["actions"] == [
            "# LED retrofit in all offices",
            "# Heat pumps in new buildings",
        ]

    def test_list_of_action_dicts(self, context):
        parsed = {"energy_efficiency": [{"action": "LED retrofit"}, {"text": "Smart meters"}]}
        assert normalize(parsed, context)["energy_efficiency"]["actions"] == ["# LED retrofit", "# Smart meters"]

    def test_actions_are_capped_at_five(self, context):
        parsed = {"energy_efficiency": {"actions": [f"Action {i}" for i in range(1, 8)]}}
        actions = normalize(parsed, context)["energy_efficiency"]["actions"]
        assert actions == [f"# Action {i}" for i in range(1, 6)]

    def test_nested_criteria_container(self, context):
        parsed = {"esgCriteria": {"carbon_footprint": {"actions": ["Scope 1 down 12%"], "extracts": "p. 14"}}}
        block = normalize(parsed, context)["carbon_footprint"]
        assert block == {"actions": ["# Scope 1 down 12%"], "extracts": "p. 14"}

    def test_positional_key(self, context):
        parsed = {"energy_2": {"actions": ["# Waste heat recovery"]}}
        assert normalize(parsed, context)["energy_efficiency"]["actions"] == ["# Waste heat recovery"]

    def test_numbers_are_not_taken_for_bullets(self):
        assert split_actions_text("12.3 t CO2e saved") == ["# 12.3 t CO2e saved"]
        assert split_actions_text("1. Solar roofs\n2) Heat pumps") == ["# Solar roofs", "# Heat pumps"]

    def test_stacked_markers_are_all_stripped(self):
        assert split_actions_text("- 1) Solar roofs") == ["# Solar roofs"]
        assert split_actions_text("* # 2. Heat pumps") == ["# Heat pumps"]
        assert split_actions_text("- 12.3 t CO2e saved") == ["# 12.3 t CO2e saved"]

    def test_unknown_value_type(self):
        assert resolve_criterion_block(42, "Water") == {"actions": ["# No specific actions found for Water"]}


class TestXmlMappedRecords:
    def test_criteria_fields_are_renamed(self):
        parsed = {
            "criteria1_actions_solutions": "- Timber frame houses\n- Green roofs",
            "criteria7_actions_solutions": "Scope 1 reduced by 12%",
        }
        record = normalize(parsed, NormalizationContext("construction", REPORT_URL))
        assert record["buildings"]["actions"] == ["# Timber frame houses", "# Green roofs"]
        assert record["carbon_footprint"]["actions"] == ["# Scope 1 reduced by 12%"]
        assert record["materials"] == {"actions": ["# No specific actions found for Sustainable Materials"]}
        assert not any(key.startswith("criteria") for key in record)
        assert record["climateStandards"]["emas"] == "No"


class TestIdempotence:
    def test_normalize_twice_is_a_no_op(self, context):
        parsed = {
            "companyDetails": {"legalEntityName": "Acme Bau GmbH"},
            "carbonFootprint": {"scope1": "1.056 t CO2e (2023)"},
            "carbon_footprint": {"targets": ["Net zero by 2040"], "description": "Climate strategy p. 12"},
        }
        once = normalize(parsed, context)
        twice = normalize(once, context)
        assert once == twice

    def test_input_is_not_modified(self, context):
        parsed = {"carbonFootprint": {"scope1": "1 t (2022)"}}
        normalize(parsed, context)
        assert parsed == {"carbonFootprint": {"scope1": "1 t (2022)"}}

    def test_source_type_is_recorded(self, energy_criteria):
        ctx = NormalizationContext("energy", "https://gruen-ag.de", energy_criteria, SourceKind.WEBSITE)
        record = normalize({}, ctx)
        assert record["sourceType"] == "website"
        assert record["industry"] == "energy"


class TestFallbackRecord:
    def test_fallback_carries_error_and_raw_text(self, context):
        record = build_fallback_record("Acme Bau GmbH", context, "Parse failed", raw_text="r" * 1500)
        assert record["basicInformation"] == {
            "companyName": "Acme Bau GmbH",
            "reportYear": "Unknown",
            "reportTitle": "Unknown",
        }
        assert record["extractionError"] == "Parse failed"
        assert record["rawResponse"] == "r" * 1000 + "..."
        assert record["carbon_footprint"] == {
            "actions": ["# Could not extract data for Carbon Footprint"],
            "extracts": "Error processing this criterion - extraction failed",
        }
        assert record["carbonFootprint"]["scope1_2024"] == ""

    def test_fallback_without_raw_text(self, context):
        record = build_fallback_record("Acme", context, "Content extraction failed")
        assert "rawResponse" not in record
        assert set(c.id for c in context.criteria) <= set(record)

    def test_unknown_criterion_names(self):
        ctx = NormalizationContext("x", None, [Criterion(id="x_1", display_name="Water")])
        record = build_fallback_record("Acme", ctx, "failed")
        assert record["x_1"]["actions"] == ["# Could not extract data for Water"]
