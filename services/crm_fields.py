"""
Pure translation of step data into CRM payloads: opportunity custom fields,
contact tags per step, and co-applicant custom-object properties.

Nothing here performs I/O.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date
from typing import Any, Optional

from utils.dates import age_on, iso_date, parse_date

logger = logging.getLogger(__name__)

TEXT = "TEXT"
LARGE_TEXT = "LARGE_TEXT"
SINGLE_OPTIONS = "SINGLE_OPTIONS"
RADIO = "RADIO"
DATE = "DATE"
MONETORY = "MONETORY"
NUMERICAL = "NUMERICAL"

YES_NO_FIELDS = {"has_children", "has_co_applicants", "has_rental_properties", "has_credit_or_legal_issues"}


@dataclass(frozen=True)
class OpportunityField:
    name: str
    form_key: str
    field_key: str
    id: str
    data_type: str


def _field(name: str, form_key: str, field_id: str, data_type: str, field_key: Optional[str] = None) -> OpportunityField:
    return OpportunityField(name, form_key, field_key or form_key, field_id, data_type)


OPPORTUNITY_FIELDS = [
    _field("LinkedIn Profile URL", "linkedin_profile_url", "NObucUgOYPM5osXzBYya", TEXT),
    _field("Marital Status", "marital_status", "1zSwAHTGtruVAIw1pfBf", SINGLE_OPTIONS),
    _field("Has Co-Applicants", "has_co_applicants", "qJiZurypTfmX1zN4US74", RADIO),
    # Step 3
    _field("Current Address", "current_address", "kOKLa2e44k5kzdNDIpE0", TEXT),
    _field("Move In Date", "move_in_date", "3uhHpQj9fE7nbhcQhjCC", DATE),
    _field("Homeowner or Tenant", "homeowner_or_tenant", "TSxQ6lMr9qsUf9QvPcCo", SINGLE_OPTIONS),
    _field("Monthly Mortgage or Rent", "monthly_mortgage_or_rent", "d4qdvckB9WARtyFVIz3f", MONETORY),
    _field("Current Property Value", "current_property_value", "e3FIszY0wREPVfkeRoYC", MONETORY),
    _field("Mortgage Outstanding", "mortgage_outstanding", "I7VNwpKlKvpwaFtA53Ar", MONETORY),
    _field("Lender or Landlord Details", "lender_or_landlord_details", "HmHv5JnpHzIODBT2qEEh", LARGE_TEXT),
    _field("Tax Country", "tax_country", "X1QXjxeN1CqIWOhzGYjZ", TEXT),
    _field("Has Children", "has_children", "UEK8S1mlijCMyopqJSuh", RADIO),
    _field("Children Details", "children", "bHYLiQmgofUAl5uZKscv", LARGE_TEXT),
    # Step 4
    _field("Employment Status", "employment_status", "AsVjF2Mdqo14bYL2ZFzv", SINGLE_OPTIONS, "aip_employment_status"),
    _field("Job Title", "job_title", "CY95ZGTgPR5JVpiKDjz5", TEXT),
    _field("Employer Name", "employer_name", "jizzoVPyAu2AXC8fHdTV", TEXT),
    _field("Employer Address", "employer_address", "vJg3YJKvWuFZyGxzu3aQ", TEXT),
    _field("Gross Annual Salary", "gross_annual_salary", "nEAl2uLbdN5kWB4Kfdwh", MONETORY),
    _field("Net Monthly Income", "net_monthly_income", "MviDCO3YCXOFlwMLUUbD", MONETORY),
    _field("Employment Start Date", "employment_start_date", "iT0rcWWRccbsCMLA8umr", DATE),
    _field("Previous Employment Details", "previous_employment_details", "dvmsakMCgiPgGDbQm13T", LARGE_TEXT),
    _field("Business Name", "business_name", "4UVkzV78KzEbvZy9e93V", TEXT),
    _field("Business Address", "business_address", "tpwKcZZdJlfIf2E6ddD6", TEXT),
    _field("Business Website", "business_website", "q1jnMU2Z3pyScgrIWOwG", TEXT),
    _field("Company Creation Date", "company_creation_date", "UqgRl71hxbuYMwNE2mCc", DATE),
    _field("Total Gross Annual Income", "total_gross_annual_income", "CkCucbSZtAcolp4artfa", MONETORY),
    _field("Net Annual Income", "net_annual_income", "EvG0H5oe0G97amJrO6gI", MONETORY),
    _field("Company Stake Percentage", "company_stake_percentage", "4Xk8MrafjdHzOM6diFxK", NUMERICAL),
    _field(
        "Bonus Overtime Commission Details", "bonus_overtime_commission_details", "KiAQxdxpu4xLvuh1ETAY", LARGE_TEXT
    ),
    _field("Accountant Can Provide Info", "accountant_can_provide_info", "si2FjzxcglQAbsZHhIbF", TEXT),
    _field("Accountant Contact Details", "accountant_contact_details", "JfEbanlDeGw6Phf1tbq0", LARGE_TEXT),
    _field("Personal Loans", "personal_loans", "WqJfoUBPRtBmH8R5KmMI", MONETORY),
    _field("Credit Card Debt", "credit_card_debt", "acLdAprfOdbYWgyJV00G", MONETORY),
    _field("Car Loans Lease", "car_loans_lease", "Ud3ROaBgGKPSlteJmoVA", MONETORY),
    _field("Has Credit or Legal Issues", "has_credit_or_legal_issues", "1Ok2FAWzfzmaqgBGMwVu", RADIO),
    _field("Credit Legal Issues Details", "credit_legal_issues_details", "GyqDBErV6zCoBvV0jPJS", LARGE_TEXT),
    # Step 5
    _field("Has Rental Properties", "has_rental_properties", "coSrO4lEWvILADt0PAFI", RADIO),
    _field("Rental Properties", "rental_properties", "oKhjaltmj1Xs2WM14Gpl", LARGE_TEXT),
    _field("Other Assets", "other_assets", "AHNPu1tcPbpqZRLfeWon", LARGE_TEXT),
    # Step 6
    _field("Urgency Level", "urgency_level", "xVtecprExqen3HcutzLY", SINGLE_OPTIONS),
    _field("Purchase Price", "purchase_price", "xqZzPdoZDM4MRkL5AWfw", MONETORY, "aip_purchase_price"),
    _field("Deposit Available", "deposit_available", "thaQWEGbR9xg9bzw6Tci", MONETORY),
    _field("Property Address", "property_address", "TKGkjvLkETlDfb5U6RiH", TEXT),
    _field("Home Status", "home_status", "QFRCpj6xvfJoqcUCOfeB", SINGLE_OPTIONS, "aip_home_status"),
    _field("Property Type", "property_type", "iVEXA1BJndwAs5PZDGzQ", SINGLE_OPTIONS, "aip_property_type"),
    _field("Real Estate Agent Contact", "real_estate_agent_contact", "E8z4EqmVDVaNGPQg2B4G", LARGE_TEXT),
    _field("Lawyer Contact", "lawyer_contact", "9fBuoxcYnsrWaerWEmqL", LARGE_TEXT),
    _field("Additional Information", "additional_information", "EqWmlrtNnIotrLI2XBwE", LARGE_TEXT),
]

FIELDS_BY_FORM_KEY = {f.form_key: f for f in OPPORTUNITY_FIELDS}

# Nested step-4 sections that are flattened before mapping
NESTED_SECTIONS = ("employment_details", "financial_commitments")

DEFAULT_PIPELINE_STAGES = {
    "New Lead": "994d3aa1-37dc-4009-b668-15358a763bef",
    "Initial Research & Preparation": "685a6a0f-c7ac-45e8-b871-65c7b410cab7",
    "Fact-Find / Discovery Call Scheduled": "e28dc03e-6523-4066-a73a-ce5ffec1305b",
    "Fact-Find / Discovery Call Completed": "e504a30c-7d10-4b67-8a94-c84e18e4e3c0",
    "No form submitted": "f133fa45-d77e-4832-b263-01a79ee2770c",
    "AIP Fact Find Submitted": "9b1b59f3-a26c-4af1-be7a-780421b0f4cf",
    "Review & Internal Research": "08da9aa8-4c61-4d97-9732-610cfc0200e3",
    "Client Situation Review": "45c6bd8b-d560-45df-ad90-d2e9d846329c",
    "Proposal Preparation": "e40b721a-3596-4abc-bcd4-5690d391c869",
    "Proposal Review with Client": "d209177a-b326-42c4-b686-0b43cba8e11c",
    "Client Commitment Received": "f6392ab3-d444-4136-8d30-17daf8a27948",
    "Mortgage Application Preparation": "b3d7ec7c-467b-4da0-bb49-015aa2cb476d",
}
STAGE_NEW_LEAD = "New Lead"
STAGE_SUBMITTED = "AIP Fact Find Submitted"

LEAD_TAGS = ["AIP-Application-Started", "Lead-Source-Website"]
ABANDONED_TAGS = [f"AIP-Abandoned-Step{n}" for n in range(2, 7)]
HOME_STATUS_TAGS = {
    "main_residence": "Primary-Residence",
    "holiday_home": "Second-Home",
    "investment": "Investment-Property",
}


def _is_absent(value: Any) -> bool:
    return value is None or value == ""


def parse_amount(value: Any) -> Optional[float]:
    """Value for a monetary or numerical field; None when it is not a finite number."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else None
    try:
        number = float(str(value).replace(",", "").strip())
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _euro(value: Any) -> str:
    if value in (None, "", 0):
        return "Not provided"
    amount = parse_amount(value)
    if amount is None:
        return str(value)
    amount = float(amount)
    return f"€{amount:,.0f}" if amount.is_integer() else f"€{amount:,.2f}"


def format_children(children: list[dict[str, Any]], today: Optional[date] = None) -> str:
    if not children:
        return "No children"
    blocks = []
    for index, child in enumerate(children, start=1):
        dob = parse_date(child.get("date_of_birth"))
        age = age_on(dob, today)
        blocks.append(
            f"Child {index}:\n"
            f"  Date of Birth: {dob.isoformat() if dob else 'Not provided'}\n"
            f"  Age: {age if age is not None else 'Unknown'}"
        )
    return "\n\n".join(blocks)


def format_rental_properties(properties: list[dict[str, Any]]) -> str:
    if not properties:
        return "No rental properties"
    blocks = []
    for index, prop in enumerate(properties, start=1):
        blocks.append(
            f"Property {index}:\n"
            f"  Address: {prop.get('property_address') or 'Not provided'}\n"
            f"  Current Valuation: {_euro(prop.get('current_valuation'))}\n"
            f"  Mortgage Outstanding: {_euro(prop.get('mortgage_outstanding'))}\n"
            f"  Monthly Mortgage Payment: {_euro(prop.get('monthly_mortgage_payment'))}\n"
            f"  Monthly Rent Received: {_euro(prop.get('monthly_rent_received'))}"
        )
    return "\n\n".join(blocks)


def _convert(field: OpportunityField, value: Any, today: Optional[date]) -> Any:
    if field.data_type == DATE:
        return iso_date(value) or str(value)
    if field.data_type in (RADIO, SINGLE_OPTIONS):
        if isinstance(value, bool):
            if field.form_key in YES_NO_FIELDS:
                return "Yes" if value else "No"
            return "true" if value else "false"
        return str(value)
    if field.data_type in (MONETORY, NUMERICAL):
        return parse_amount(value)
    if field.form_key == "children" and isinstance(value, list):
        return format_children(value, today)
    if field.form_key == "rental_properties" and isinstance(value, list):
        return format_rental_properties(value)
    if isinstance(value, bool):
        return "Yes" if value else "No"
    return str(value)


def _flatten(step_data: dict[str, Any]) -> dict[str, Any]:
    flat = {}
    for key, value in step_data.items():
        if key in NESTED_SECTIONS and isinstance(value, dict):
            for inner_key, inner_value in value.items():
                flat.setdefault(inner_key, inner_value)
        else:
            flat[key] = value
    return flat


def map_step_to_external_fields(step_data: dict[str, Any], today: Optional[date] = None) -> dict[str, Any]:
    """
    Step data -> {CRM field key: value}. Keys the CRM does not know and values
    that are missing, null or blank are left out.
    """
    mapped = {}
    for key, value in _flatten(step_data or {}).items():
        field = FIELDS_BY_FORM_KEY.get(key)
        if field is None or _is_absent(value):
            continue
        converted = _convert(field, value, today)
        if converted is None:
            logger.warning("Dropping non-numeric value for CRM field %s", field.field_key)
            continue
        mapped[field.field_key] = converted
    return mapped


def custom_fields_payload(field_map: dict[str, Any]) -> list[dict[str, Any]]:
    """{field key: value} -> the opportunity customFields list."""
    by_field_key = {f.field_key: f for f in OPPORTUNITY_FIELDS}
    return [
        {"id": by_field_key[key].id, "key": key, "field_value": value}
        for key, value in field_map.items()
        if key in by_field_key
    ]


def _annual_income(data: dict[str, Any]) -> float:
    details = data.get("employment_details") or {}
    for key in ("gross_annual_salary", "total_gross_annual_income", "annual_income"):
        value = details.get(key, data.get(key))
        if value not in (None, ""):
            number = parse_amount(value)
            if number is not None:
                return float(number)
    return 0.0


def step_tags(step_number: int, data: dict[str, Any]) -> tuple[list[str], list[str]]:
    """(tags to add, tags to remove) on the contact after a step is saved."""
    data = data or {}
    add: list[str] = []
    remove: list[str] = []
    if step_number == 1:
        add.extend(LEAD_TAGS)
    elif step_number == 2:
        add.append("AIP-Step2-Completed")
        if data.get("has_co_applicants") or data.get("co_applicants"):
            add.append("Has-Co-Applicant")
        remove.append("AIP-Step1-Only")
    elif step_number == 3:
        add.append("AIP-Step3-Completed")
        if data.get("homeowner_or_tenant") == "homeowner":
            add.append("Current-Homeowner")
        elif data.get("homeowner_or_tenant") == "tenant":
            add.append("Current-Tenant")
        if data.get("has_children") or data.get("children"):
            add.append("Has-Children")
    elif step_number == 4:
        add.append("AIP-Step4-Completed")
        status = data.get("employment_status")
        if status == "employed":
            add.append("AIP-Employed")
        elif status in ("self_employed", "director"):
            add.append("AIP-Self-Employed")
        income = _annual_income(data)
        if income >= 100000:
            add.append("High-Income")
        elif income >= 50000:
            add.append("Medium-Income")
        commitments = data.get("financial_commitments") or {}
        if commitments.get("has_credit_or_legal_issues") or data.get("has_credit_or_legal_issues"):
            add.append("Credit-Issues-Declared")
    elif step_number == 5:
        add.append("AIP-Step5-Completed")
        count = len(data.get("rental_properties") or [])
        if data.get("has_rental_properties") and count > 0:
            add.append("AIP-Portfolio-Owner")
            if count >= 3:
                add.append("Large-Portfolio")
    elif step_number == 6:
        add.append("AIP-Application-Completed")
        if data.get("urgency_level") == "urgent":
            add.append("High-Priority-Lead")
        if data.get("property_type"):
            add.append(f"Property-Type-{data['property_type']}")
        home_tag = HOME_STATUS_TAGS.get(data.get("home_status"))
        if home_tag:
            add.append(home_tag)
        remove.append("AIP-Step1-Only")
        remove.extend(ABANDONED_TAGS)
    return add, remove


def abandoned_tag(step_number: int) -> str:
    return f"AIP-Abandoned-Step{step_number}"


# Co-applicant custom object

CO_APPLICANT_TEXT_FIELDS = {
    # source key: property name
    "first_name": "first_name",
    "last_name": "last_name",
    "email": "email_address",
    "mobile": "mobile",
    "nationality": "nationality",
    "marital_status": "marital_status",
    "relationship_to_primary": "relationship_to_main_applicant",
    "current_address": "current_address",
    "homeowner_or_tenant": "homeowner_or_tenant",
    "lender_or_landlord_details": "lender_or_landlord_details",
    "tax_country": "tax_country",
    "employment_status": "employment_status",
    "job_title": "job_title",
    "employer_name": "employer_name",
    "employer_address": "employer_address",
    "previous_employment_details": "previous_employment_details",
    "business_name": "business_name",
    "business_address": "business_address",
    "business_website": "business_website",
    "bonus_overtime_commission_details": "bonus_overtime_commission_details",
    "accountant_contact_details": "accountant_contact_details",
    "credit_legal_issues_details": "credit_legal_issues_details",
}
CO_APPLICANT_DATE_FIELDS = ("date_of_birth", "move_in_date", "employment_start_date", "company_creation_date")
CO_APPLICANT_CURRENCY_FIELDS = (
    "monthly_mortgage_or_rent",
    "current_property_value",
    "mortgage_outstanding",
    "gross_annual_salary",
    "net_monthly_income",
    "total_gross_annual_income",
    "net_annual_income",
    "personal_loans",
    "credit_card_debt",
    "car_loans_lease",
)
CO_APPLICANT_YES_NO_FIELDS = (
    "same_address_as_primary",
    "has_children",
    "accountant_can_provide_info",
    "has_credit_or_legal_issues",
)


def build_co_applicant_properties(
    data: dict[str, Any],
    object_key: str,
    today: Optional[date] = None,
) -> dict[str, Any]:
    """
    One co-applicant's merged identity/address/employment/commitment values ->
    custom-object properties keyed 'custom_objects.<object_key>.<field>'.
    """
    prefix = f"custom_objects.{object_key}."
    properties: dict[str, Any] = {}
    for source, name in CO_APPLICANT_TEXT_FIELDS.items():
        if not _is_absent(data.get(source)):
            properties[prefix + name] = str(data[source])
    for name in CO_APPLICANT_DATE_FIELDS:
        formatted = iso_date(data.get(name))
        if formatted:
            properties[prefix + name] = formatted
    for name in CO_APPLICANT_CURRENCY_FIELDS:
        value = data.get(name)
        amount = None if _is_absent(value) else parse_amount(value)
        if amount is not None:
            properties[prefix + name] = {"currency": "default", "value": amount}
    for name in CO_APPLICANT_YES_NO_FIELDS:
        value = data.get(name)
        if value is not None:
            properties[prefix + name] = "Yes" if value else "No"
    stake = data.get("company_stake_percentage")
    stake = None if _is_absent(stake) else parse_amount(stake)
    if stake is not None:
        properties[prefix + "company_stake_percentage"] = stake
    children = data.get("children")
    if children:
        properties[prefix + "children"] = format_children(children, today)
    return properties
