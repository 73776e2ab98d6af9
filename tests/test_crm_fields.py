"""
Tests for translating step data into CRM fields, tags and custom-object properties.
Run from project root: python -m pytest tests/test_crm_fields.py -v
Or: python -m unittest tests.test_crm_fields -v
"""
import unittest
from datetime import date

from services.crm_fields import (
    ABANDONED_TAGS,
    build_co_applicant_properties,
    custom_fields_payload,
    format_children,
    format_rental_properties,
    map_step_to_external_fields,
    step_tags,
)

TODAY = date(2025, 6, 1)


class TestMapStepToExternalFields(unittest.TestCase):
    def test_absent_values_omitted(self):
        """Null, blank and unknown keys never produce a field."""
        mapped = map_step_to_external_fields(
            {"current_address": "", "tax_country": None, "favourite_colour": "blue", "homeowner_or_tenant": "tenant"}
        )
        self.assertEqual(mapped, {"homeowner_or_tenant": "tenant"})

    def test_value_conversions(self):
        mapped = map_step_to_external_fields(
            {
                "move_in_date": date(2020, 2, 29),
                "has_children": False,
                "monthly_mortgage_or_rent": "1,250",
                "employment_status": "employed",
                "purchase_price": 350000,
            }
        )
        self.assertEqual(mapped["move_in_date"], "2020-02-29")
        self.assertEqual(mapped["has_children"], "No")
        self.assertEqual(mapped["monthly_mortgage_or_rent"], 1250.0)
        self.assertEqual(mapped["aip_employment_status"], "employed")
        self.assertEqual(mapped["aip_purchase_price"], 350000)

    def test_non_numeric_amounts_dropped(self):
        mapped = map_step_to_external_fields(
            {"monthly_mortgage_or_rent": "about a grand", "purchase_price": "nan", "homeowner_or_tenant": "tenant"}
        )
        self.assertEqual(mapped, {"homeowner_or_tenant": "tenant"})

    def test_nested_step4_sections_flattened(self):
        mapped = map_step_to_external_fields(
            {
                "employment_status": "self_employed",
                "employment_details": {"business_name": "Tapas SL", "company_creation_date": "2017-03-15"},
                "financial_commitments": {"has_credit_or_legal_issues": True, "personal_loans": 0},
            }
        )
        self.assertEqual(mapped["business_name"], "Tapas SL")
        self.assertEqual(mapped["company_creation_date"], "2017-03-15")
        self.assertEqual(mapped["has_credit_or_legal_issues"], "Yes")
        self.assertEqual(mapped["personal_loans"], 0)

    def test_children_and_rentals_as_text(self):
        mapped = map_step_to_external_fields(
            {"children": [{"date_of_birth": "2019-07-01"}], "rental_properties": [{"property_address": "Flat 2"}]},
            today=TODAY,
        )
        self.assertEqual(mapped["children"], "Child 1:\n  Date of Birth: 2019-07-01\n  Age: 5")
        self.assertIn("Address: Flat 2", mapped["rental_properties"])

    def test_custom_fields_payload_uses_field_ids(self):
        payload = custom_fields_payload({"aip_home_status": "investment", "not_a_field": 1})
        self.assertEqual(payload, [{"id": "QFRCpj6xvfJoqcUCOfeB", "key": "aip_home_status", "field_value": "investment"}])


class TestFormatting(unittest.TestCase):
    def test_no_children(self):
        self.assertEqual(format_children([]), "No children")

    def test_rental_amounts_in_euros(self):
        text = format_rental_properties([{"property_address": "A", "current_valuation": 250000, "monthly_rent_received": 950.5}])
        self.assertIn("Current Valuation: €250,000", text)
        self.assertIn("Monthly Rent Received: €950.50", text)
        self.assertIn("Mortgage Outstanding: Not provided", text)


class TestStepTags(unittest.TestCase):
    def test_step1_lead_tags(self):
        add, remove = step_tags(1, {})
        self.assertEqual(add, ["AIP-Application-Started", "Lead-Source-Website"])
        self.assertEqual(remove, [])

    def test_step4_income_bands(self):
        add, _ = step_tags(4, {"employment_status": "director", "employment_details": {"gross_annual_salary": 120000}})
        self.assertIn("AIP-Self-Employed", add)
        self.assertIn("High-Income", add)
        add, _ = step_tags(4, {"employment_status": "employed", "employment_details": {"gross_annual_salary": 60000}})
        self.assertIn("Medium-Income", add)
        self.assertNotIn("High-Income", add)

    def test_step5_portfolio(self):
        add, _ = step_tags(5, {"has_rental_properties": True, "rental_properties": [{}, {}, {}]})
        self.assertIn("AIP-Portfolio-Owner", add)
        self.assertIn("Large-Portfolio", add)

    def test_step6_completion_clears_abandoned(self):
        add, remove = step_tags(6, {"urgency_level": "urgent", "home_status": "holiday_home", "property_type": "apartment"})
        self.assertEqual(
            add, ["AIP-Application-Completed", "High-Priority-Lead", "Property-Type-apartment", "Second-Home"]
        )
        self.assertEqual(remove, ["AIP-Step1-Only"] + ABANDONED_TAGS)


class TestCoApplicantProperties(unittest.TestCase):
    def test_properties_keyed_by_object(self):
        properties = build_co_applicant_properties(
            {
                "first_name": "Ben",
                "email": "ben@example.com",
                "relationship_to_primary": "spouse",
                "date_of_birth": date(1990, 1, 2),
                "net_monthly_income": "3200",
                "same_address_as_primary": True,
                "accountant_can_provide_info": None,
                "children": [],
            },
            "aip_co_applicants",
        )
        self.assertEqual(
            properties,
            {
                "custom_objects.aip_co_applicants.first_name": "Ben",
                "custom_objects.aip_co_applicants.email_address": "ben@example.com",
                "custom_objects.aip_co_applicants.relationship_to_main_applicant": "spouse",
                "custom_objects.aip_co_applicants.date_of_birth": "1990-01-02",
                "custom_objects.aip_co_applicants.net_monthly_income": {"currency": "default", "value": 3200.0},
                "custom_objects.aip_co_applicants.same_address_as_primary": "Yes",
            },
        )

    def test_unparseable_currency_property_left_out(self):
        properties = build_co_applicant_properties(
            {
                "first_name": "Ben",
                "gross_annual_salary": "abc",
                "net_monthly_income": "2,900",
                "company_stake_percentage": "half",
            },
            "aip_co_applicants",
        )
        self.assertEqual(
            properties,
            {
                "custom_objects.aip_co_applicants.first_name": "Ben",
                "custom_objects.aip_co_applicants.net_monthly_income": {"currency": "default", "value": 2900.0},
            },
        )


if __name__ == "__main__":
    unittest.main()
