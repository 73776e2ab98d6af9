from __future__ import annotations

from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accepts camelCase (wire) or snake_case keys."""

    model_config = {"populate_by_name": True, "alias_generator": to_camel}


# Step 1: lead capture


class Step1Schema(CamelModel):
    first_name: str
    last_name: str
    email: EmailStr
    mobile: Optional[str] = None
    date_of_birth: Optional[date] = None


# Step 2: about you + co-applicant list


class CoApplicantPersonalSchema(CamelModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: EmailStr
    mobile: Optional[str] = None
    date_of_birth: Optional[date] = None
    nationality: Optional[str] = None
    marital_status: Optional[str] = None
    relationship_to_primary: Optional[str] = None


class Step2Schema(CamelModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[EmailStr] = None
    mobile: Optional[str] = None
    date_of_birth: Optional[date] = None
    nationality: Optional[str] = None
    telephone: Optional[str] = None
    linkedin_profile_url: Optional[str] = Field(None, alias="linkedinProfileUrl")
    marital_status: Optional[str] = None
    has_co_applicants: Optional[bool] = None
    co_applicants: Optional[list[CoApplicantPersonalSchema]] = None


# Step 3: home and dependents


class ChildSchema(CamelModel):
    date_of_birth: Optional[date] = None
    age: Optional[int] = Field(None, ge=0)
    same_address_as_primary: Optional[bool] = None


class HomeSchema(CamelModel):
    same_address_as_primary: Optional[bool] = None
    current_address: Optional[str] = None
    move_in_date: Optional[date] = None
    homeowner_or_tenant: Optional[Literal["homeowner", "tenant"]] = None
    monthly_mortgage_or_rent: Optional[float] = None
    monthly_payment_currency: Optional[str] = None
    current_property_value: Optional[float] = None
    property_value_currency: Optional[str] = None
    mortgage_outstanding: Optional[float] = None
    mortgage_outstanding_currency: Optional[str] = None
    lender_or_landlord_details: Optional[str] = None
    tax_country: Optional[str] = None
    same_children_as_primary: Optional[bool] = None
    has_children: Optional[bool] = None
    children: Optional[list[ChildSchema]] = None


class Step3Schema(HomeSchema):
    co_applicants: Optional[list[HomeSchema]] = None


# Step 4: employment and commitments


class EmploymentDetailsSchema(CamelModel):
    job_title: Optional[str] = None
    employer_name: Optional[str] = None
    employer_address: Optional[str] = None
    gross_annual_salary: Optional[float] = None
    net_monthly_income: Optional[float] = None
    employment_start_date: Optional[date] = None
    previous_employment_details: Optional[str] = None
    business_name: Optional[str] = None
    business_address: Optional[str] = None
    business_website: Optional[str] = None
    company_creation_date: Optional[date] = None
    total_gross_annual_income: Optional[float] = None
    net_annual_income: Optional[float] = None
    bonus_overtime_commission_details: Optional[str] = None
    company_stake_percentage: Optional[float] = Field(None, ge=0, le=100)
    accountant_can_provide_info: Optional[bool] = None
    accountant_contact_details: Optional[str] = None


class FinancialCommitmentsSchema(CamelModel):
    personal_loans: Optional[float] = None
    credit_card_debt: Optional[float] = None
    car_loans_lease: Optional[float] = None
    total_monthly_commitments: Optional[float] = None
    has_credit_or_legal_issues: Optional[bool] = None
    credit_legal_issues_details: Optional[str] = None


class EmploymentSchema(CamelModel):
    employment_status: Optional[str] = None
    employment_details: Optional[EmploymentDetailsSchema] = None
    financial_commitments: Optional[FinancialCommitmentsSchema] = None


class Step4Schema(EmploymentSchema):
    co_applicants: Optional[list[EmploymentSchema]] = None


# Step 5: portfolio


class RentalPropertySchema(CamelModel):
    property_address: Optional[str] = None
    current_valuation: Optional[float] = None
    mortgage_outstanding: Optional[float] = None
    monthly_mortgage_payment: Optional[float] = None
    monthly_rent_received: Optional[float] = None
    purchase_date: Optional[date] = None


class Step5Schema(CamelModel):
    has_rental_properties: Optional[bool] = None
    rental_properties: Optional[list[RentalPropertySchema]] = None
    other_assets: Optional[str] = None


# Step 6: the property


class Step6Schema(CamelModel):
    urgency_level: Optional[str] = None
    purchase_price: Optional[float] = None
    deposit_available: Optional[float] = None
    property_address: Optional[str] = None
    home_status: Optional[str] = None
    property_type: Optional[str] = None
    real_estate_agent_contact: Optional[str] = None
    lawyer_contact: Optional[str] = None
    additional_information: Optional[str] = None


STEP_SCHEMAS: dict[int, type[CamelModel]] = {
    1: Step1Schema,
    2: Step2Schema,
    3: Step3Schema,
    4: Step4Schema,
    5: Step5Schema,
    6: Step6Schema,
}

CO_APPLICANT_STEP_SCHEMAS: dict[int, type[CamelModel]] = {
    3: HomeSchema,
    4: EmploymentSchema,
}


class ApplicationPatch(CamelModel):
    status: Optional[Literal["draft", "completed"]] = None
    crm_contact_id: Optional[str] = None
    crm_opportunity_id: Optional[str] = None
