"""
Durable writes of per-participant step data.

Each save_* runs a short sequence of units (scalar update, collection replace).
Every unit commits on its own; a failing unit is rolled back and the rest of the
sequence is skipped, so the caller learns exactly which units landed. Owned
collections are replaced with delete-then-insert, which makes repeating a save
with the same input a no-op on the stored rows.

Input convention: a collection argument of None leaves stored rows alone; an
empty list or dict clears them.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from models import (
    ApplicationParticipant,
    EmploymentDetail,
    FinancialCommitment,
    Person,
    PersonChild,
    RentalProperty,
)
from utils.dates import age_on, parse_date
from utils.exceptions import NotFoundError

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = "EUR"

ABOUT_YOU_PERSON_FIELDS = (
    "first_name",
    "last_name",
    "date_of_birth",
    "telephone",
    "mobile",
    "nationality",
    "linkedin_profile_url",
)
ABOUT_YOU_PARTICIPANT_FIELDS = ("marital_status", "relationship_to_primary")

HOME_FIELDS = (
    "same_address_as_primary",
    "current_address",
    "move_in_date",
    "homeowner_or_tenant",
    "monthly_mortgage_or_rent",
    "monthly_payment_currency",
    "current_property_value",
    "property_value_currency",
    "mortgage_outstanding",
    "mortgage_outstanding_currency",
    "lender_or_landlord_details",
    "tax_country",
    "same_children_as_primary",
)
CURRENCY_FIELDS = ("monthly_payment_currency", "property_value_currency", "mortgage_outstanding_currency")

EMPLOYMENT_DETAIL_FIELDS = (
    "job_title",
    "employer_name",
    "employer_address",
    "gross_annual_salary",
    "net_monthly_income",
    "employment_start_date",
    "previous_employment_details",
    "business_name",
    "business_address",
    "business_website",
    "company_creation_date",
    "total_gross_annual_income",
    "net_annual_income",
    "bonus_overtime_commission_details",
    "company_stake_percentage",
    "accountant_can_provide_info",
    "accountant_contact_details",
)
FINANCIAL_COMMITMENT_FIELDS = (
    "personal_loans",
    "credit_card_debt",
    "car_loans_lease",
    "total_monthly_commitments",
    "has_credit_or_legal_issues",
    "credit_legal_issues_details",
)
RENTAL_PROPERTY_FIELDS = (
    "property_address",
    "current_valuation",
    "mortgage_outstanding",
    "monthly_mortgage_payment",
    "monthly_rent_received",
    "purchase_date",
)
DATE_FIELDS = {
    "date_of_birth",
    "move_in_date",
    "employment_start_date",
    "company_creation_date",
    "purchase_date",
}


@dataclass
class UnitResult:
    name: str
    ok: bool
    error: Optional[str] = None
    skipped: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "ok": self.ok, "error": self.error, "skipped": self.skipped}


@dataclass
class SyncReport:
    units: list[UnitResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(u.ok for u in self.units)

    @property
    def error(self) -> Optional[str]:
        for unit in self.units:
            if not unit.ok and not unit.skipped:
                return f"Failed to save {unit.name.replace('_', ' ')}: {unit.error}"
        return None

    def extend(self, other: "SyncReport") -> "SyncReport":
        self.units.extend(other.units)
        return self

    def to_dict(self) -> dict[str, Any]:
        return {"ok": self.ok, "units": [u.to_dict() for u in self.units]}


Unit = tuple[str, Callable[[], Awaitable[None]]]


async def run_units(session: AsyncSession, units: list[Unit]) -> SyncReport:
    """Run units in order, committing after each. Stops at the first storage failure."""
    report = SyncReport()
    failed = False
    for name, write in units:
        if failed:
            report.units.append(UnitResult(name=name, ok=False, error="not attempted", skipped=True))
            continue
        try:
            await write()
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error("Storage write %r failed", name, exc_info=True)
            report.units.append(UnitResult(name=name, ok=False, error=str(getattr(e, "orig", None) or e)))
            failed = True
        except Exception:
            await session.rollback()
            raise
        else:
            report.units.append(UnitResult(name=name, ok=True))
    return report


def _coerce(key: str, value: Any) -> Any:
    if key in DATE_FIELDS:
        return parse_date(value)
    if value == "":
        return None
    return value


def _pick(data: dict[str, Any], keys: tuple[str, ...]) -> dict[str, Any]:
    """Keys present in data (including explicit nulls), coerced for storage."""
    return {k: _coerce(k, data[k]) for k in keys if k in data}


def _monthly_total(values: dict[str, Any]) -> Optional[float]:
    parts = [values.get(k) for k in ("personal_loans", "credit_card_debt", "car_loans_lease")]
    parts = [float(p) for p in parts if p is not None]
    return sum(parts) if parts else None


class ParticipantDataSynchronizer:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _participant(self, participant_id: str) -> ApplicationParticipant:
        result = await self.session.execute(
            select(ApplicationParticipant).where(ApplicationParticipant.id == participant_id)
        )
        participant = result.scalar_one_or_none()
        if participant is None:
            raise NotFoundError("Participant not found")
        return participant

    async def _update_participant(self, participant_id: str, values: dict[str, Any]) -> None:
        participant = await self._participant(participant_id)
        for key, value in values.items():
            if key in CURRENCY_FIELDS and not value:
                value = DEFAULT_CURRENCY
            setattr(participant, key, value)
        await self.session.flush()

    async def save_about_you(self, participant_id: str, fields: dict[str, Any]) -> SyncReport:
        """Step 2 personal details: person columns plus participant marital status/relationship."""
        participant = await self._participant(participant_id)
        person_id = participant.person_id
        person_values = {k: v for k, v in _pick(fields, ABOUT_YOU_PERSON_FIELDS).items() if v is not None}
        participant_values = _pick(fields, ABOUT_YOU_PARTICIPANT_FIELDS)

        async def write_person():
            result = await self.session.execute(select(Person).where(Person.id == person_id))
            person = result.scalar_one()
            for key, value in person_values.items():
                setattr(person, key, value)
            await self.session.flush()

        async def write_participant():
            await self._update_participant(participant_id, participant_values)

        return await run_units(self.session, [("person", write_person), ("participant", write_participant)])

    async def save_home_and_dependents(
        self,
        participant_id: str,
        address_fields: dict[str, Any],
        dependents: Optional[list[dict[str, Any]]] = None,
    ) -> SyncReport:
        """Step 3: address scalars, then replace the person's children."""
        participant = await self._participant(participant_id)
        person_id = participant.person_id
        values = _pick(address_fields, HOME_FIELDS)

        async def write_address():
            await self._update_participant(participant_id, values)

        async def write_children():
            await self.session.execute(delete(PersonChild).where(PersonChild.person_id == person_id))
            for child in dependents or []:
                dob = parse_date(child.get("date_of_birth"))
                age = child.get("age")
                self.session.add(
                    PersonChild(
                        id=f"chd-{uuid.uuid4().hex[:12]}",
                        person_id=person_id,
                        date_of_birth=dob,
                        age=age if age is not None else age_on(dob),
                        same_address_as_primary=child.get("same_address_as_primary"),
                    )
                )
            await self.session.flush()

        units: list[Unit] = [("address", write_address)]
        if dependents is not None:
            units.append(("children", write_children))
        return await run_units(self.session, units)

    async def save_employment(
        self,
        participant_id: str,
        employment_status: Optional[str],
        employment_detail: Optional[dict[str, Any]] = None,
        financial_commitment: Optional[dict[str, Any]] = None,
    ) -> SyncReport:
        """Step 4: employment status, then the single employment and commitments snapshot rows."""
        await self._participant(participant_id)

        async def write_status():
            await self._update_participant(participant_id, {"employment_status": employment_status})

        async def write_employment_detail():
            await self.session.execute(
                delete(EmploymentDetail).where(EmploymentDetail.participant_id == participant_id)
            )
            if employment_detail:
                self.session.add(
                    EmploymentDetail(
                        id=f"emp-{uuid.uuid4().hex[:12]}",
                        participant_id=participant_id,
                        **_pick(employment_detail, EMPLOYMENT_DETAIL_FIELDS),
                    )
                )
            await self.session.flush()

        async def write_financial_commitment():
            await self._write_financial_commitment(participant_id, financial_commitment)

        units: list[Unit] = [("employment_status", write_status)]
        if employment_detail is not None:
            units.append(("employment_details", write_employment_detail))
        if financial_commitment is not None:
            units.append(("financial_commitments", write_financial_commitment))
        return await run_units(self.session, units)

    async def _write_financial_commitment(self, participant_id: str, financial_commitment: dict[str, Any]) -> None:
        await self.session.execute(
            delete(FinancialCommitment).where(FinancialCommitment.participant_id == participant_id)
        )
        if financial_commitment:
            values = _pick(financial_commitment, FINANCIAL_COMMITMENT_FIELDS)
            if values.get("total_monthly_commitments") is None:
                values["total_monthly_commitments"] = _monthly_total(values)
            values["has_credit_or_legal_issues"] = bool(values.get("has_credit_or_legal_issues"))
            self.session.add(
                FinancialCommitment(id=f"fin-{uuid.uuid4().hex[:12]}", participant_id=participant_id, **values)
            )
        await self.session.flush()

    async def save_portfolio(
        self,
        participant_id: str,
        rental_properties: Optional[list[dict[str, Any]]] = None,
        other_assets: Any = ...,
    ) -> SyncReport:
        """Step 5: replace rental properties; update other_assets when given (None clears it)."""
        await self._participant(participant_id)

        async def write_rental_properties():
            await self.session.execute(
                delete(RentalProperty).where(RentalProperty.participant_id == participant_id)
            )
            for position, prop in enumerate(rental_properties or []):
                self.session.add(
                    RentalProperty(
                        id=f"rnt-{uuid.uuid4().hex[:12]}",
                        participant_id=participant_id,
                        position=position,
                        **_pick(prop, RENTAL_PROPERTY_FIELDS),
                    )
                )
            await self.session.flush()

        async def write_other_assets():
            await self._update_participant(participant_id, {"other_assets": other_assets or None})

        units: list[Unit] = []
        if rental_properties is not None:
            units.append(("rental_properties", write_rental_properties))
        if other_assets is not ...:
            units.append(("other_assets", write_other_assets))
        return await run_units(self.session, units)
