"""
Step state machine for an application: draft (steps 1..6) -> completed.

commit_step writes participants and their data, then advances current_step.
current_step only moves forward and only after every storage unit for the
step succeeded; going back to an earlier step never deletes saved data.
After a successful write the step is pushed to the CRM; a CRM failure becomes
a warning on the result and never undoes the save.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from models import (
    Application,
    ApplicationParticipant,
    EmploymentDetail,
    FinancialCommitment,
    Person,
    PersonChild,
    RentalProperty,
)
from services.continuation import ContinuationService
from services.participant_registry import ParticipantRegistry
from services.participant_sync import (
    DEFAULT_CURRENCY,
    EMPLOYMENT_DETAIL_FIELDS,
    FINANCIAL_COMMITMENT_FIELDS,
    HOME_FIELDS,
    ParticipantDataSynchronizer,
    SyncReport,
    run_units,
)
from services.record_mapper import ExternalRecordMapper
from utils.dates import parse_date, utc_now
from utils.exceptions import AppError, ValidationError

logger = logging.getLogger(__name__)

FIRST_STEP = 1
FINAL_STEP = 6
PROGRESS_BY_STEP = {1: 20, 2: 40, 3: 60, 4: 70, 5: 85, 6: 100}
STATUS_DRAFT = "draft"
STATUS_COMPLETED = "completed"
STATUSES = (STATUS_DRAFT, STATUS_COMPLETED)
CO_APPLICANT_STEPS = (3, 4)

STEP1_FIELDS = ("first_name", "last_name", "email", "mobile", "date_of_birth")
STEP2_PERSON_FIELDS = ("date_of_birth", "nationality", "telephone", "linkedin_profile_url")
CO_APPLICANT_PERSONAL_FIELDS = (
    "first_name",
    "last_name",
    "email",
    "mobile",
    "date_of_birth",
    "nationality",
    "marital_status",
    "relationship_to_primary",
)
# Application column <- step 6 payload key
STEP6_FIELDS = {
    "urgency_level": "urgency_level",
    "purchase_price": "purchase_price",
    "deposit_available": "deposit_available",
    "property_address": "property_address",
    "home_status": "home_status",
    "property_type": "property_type",
    "real_estate_agent_contact": "real_estate_agent_contact",
    "lawyer_contact": "lawyer_contact",
    "additional_notes": "additional_information",
}
METADATA_FIELDS = ("status", "crm_contact_id", "crm_opportunity_id")


def progress_for(step: int) -> int:
    return PROGRESS_BY_STEP.get(step, 0)


@dataclass
class StepCommitResult:
    saved: bool
    application_id: str
    step: int
    current_step: int
    status: str
    report: SyncReport = field(default_factory=SyncReport)
    error: Optional[str] = None
    warning: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "saved": self.saved,
            "application_id": self.application_id,
            "step": self.step,
            "current_step": self.current_step,
            "progress_percentage": progress_for(self.current_step),
            "status": self.status,
            "error": self.error,
            "warning": self.warning,
            "units": [u.to_dict() for u in self.report.units],
        }


def _children_arg(data: dict[str, Any]) -> Optional[list[dict[str, Any]]]:
    """None leaves stored children alone; has_children=False clears them."""
    if data.get("has_children") is False:
        return []
    return data.get("children")


def _rental_arg(data: dict[str, Any]) -> Optional[list[dict[str, Any]]]:
    if data.get("has_rental_properties") is False:
        return []
    return data.get("rental_properties")


class ApplicationStateStore:
    def __init__(self, session: AsyncSession, mapper: Optional[ExternalRecordMapper] = None):
        self.session = session
        self.mapper = mapper
        self.registry = ParticipantRegistry(session)
        self.sync = ParticipantDataSynchronizer(session)
        self.continuations = ContinuationService(session, mapper)

    async def start_application(self) -> str:
        now = utc_now()
        application = Application(
            id=f"app-{uuid.uuid4().hex[:12]}",
            status=STATUS_DRAFT,
            current_step=FIRST_STEP,
            created_at=now,
            updated_at=now,
        )
        self.session.add(application)
        await self.session.commit()
        logger.info("Started application %s", application.id)
        return application.id

    async def get_application(self, application_id: str) -> Application:
        return await self.registry.get_application(application_id)

    async def update_metadata(self, application_id: str, fields: dict[str, Any]) -> Application:
        application = await self.registry.get_application(application_id)
        unknown = set(fields) - set(METADATA_FIELDS)
        if unknown:
            raise ValidationError(f"Fields cannot be patched: {', '.join(sorted(unknown))}")
        if "status" in fields and fields["status"] not in STATUSES:
            raise ValidationError(f"Unknown status: {fields['status']}")
        for key, value in fields.items():
            setattr(application, key, value)
        application.updated_at = utc_now()
        await self.session.commit()
        return application

    async def _current_state(self, application_id: str) -> tuple[int, str]:
        result = await self.session.execute(
            select(Application.current_step, Application.status).where(Application.id == application_id)
        )
        current_step, status = result.one()
        return current_step, status

    async def commit_step(
        self,
        application_id: str,
        step_number: int,
        payload: dict[str, Any],
        participant_index: Optional[int] = None,
    ) -> StepCommitResult:
        """
        Persist one step. Storage failures come back as saved=False with the
        per-unit report and leave current_step where it was; the caller keeps
        its local edits and can resubmit the same payload.
        """
        if step_number not in PROGRESS_BY_STEP:
            raise ValidationError(f"Step must be between {FIRST_STEP} and {FINAL_STEP}")
        if participant_index is not None and step_number not in CO_APPLICANT_STEPS:
            raise ValidationError("Only steps 3 and 4 can be saved for a single co-applicant")
        await self.registry.get_application(application_id)
        payload = payload or {}

        if step_number == 1:
            report = await self._save_step1(application_id, payload)
        elif step_number == 2:
            report = await self._save_step2(application_id, payload)
        elif step_number == 3:
            report = await self._save_step3(application_id, payload, participant_index)
        elif step_number == 4:
            report = await self._save_step4(application_id, payload, participant_index)
        elif step_number == 5:
            report = await self._save_step5(application_id, payload)
        else:
            report = await self._save_step6(application_id, payload)

        # A single co-applicant's section does not complete the step for the application.
        if report.ok and participant_index is None:
            advance = [("progress", lambda: self._advance(application_id, step_number))]
            report.extend(await run_units(self.session, advance))

        current_step, status = await self._current_state(application_id)
        if not report.ok:
            logger.warning("Step %s of %s not saved: %s", step_number, application_id, report.error)
            return StepCommitResult(
                saved=False,
                application_id=application_id,
                step=step_number,
                current_step=current_step,
                status=status,
                report=report,
                error=report.error,
            )

        warning = None
        if participant_index is None:
            warning = await self._push_external(application_id, step_number, payload)
        return StepCommitResult(
            saved=True,
            application_id=application_id,
            step=step_number,
            current_step=current_step,
            status=status,
            report=report,
            warning=warning,
        )

    async def _advance(self, application_id: str, step_number: int) -> None:
        application = await self.registry.get_application(application_id)
        application.current_step = max(application.current_step or FIRST_STEP, min(step_number + 1, FINAL_STEP))
        now = utc_now()
        if step_number == FINAL_STEP:
            application.status = STATUS_COMPLETED
            application.submitted_at = now
        application.updated_at = now
        await self.session.flush()

    async def _save_step1(self, application_id: str, payload: dict[str, Any]) -> SyncReport:
        person_fields = {k: payload.get(k) for k in STEP1_FIELDS}

        async def write_primary():
            await self.registry.ensure_primary(application_id, person_fields)

        return await run_units(self.session, [("primary_applicant", write_primary)])

    async def _save_step2(self, application_id: str, payload: dict[str, Any]) -> SyncReport:
        if payload.get("email"):
            person_fields = {k: payload.get(k) for k in STEP1_FIELDS + STEP2_PERSON_FIELDS}
            report = await run_units(
                self.session,
                [("primary_applicant", lambda: self.registry.ensure_primary(application_id, person_fields))],
            )
            if not report.ok:
                return report
        else:
            report = SyncReport()
        primary = await self.registry.require_primary(application_id)
        report.extend(await self.sync.save_about_you(primary.id, payload))
        if not report.ok:
            return report

        if payload.get("has_co_applicants") is False:
            co_applicants: Optional[list[dict[str, Any]]] = []
        else:
            co_applicants = payload.get("co_applicants")
        if co_applicants is None:
            return report

        reconciled: list[str] = []

        async def write_co_applicants():
            participants = await self.registry.reconcile_co_applicants(application_id, co_applicants)
            reconciled.extend(p.id for p in participants)

        report.extend(await run_units(self.session, [("co_applicants", write_co_applicants)]))
        for participant_id, entry in zip(reconciled, co_applicants):
            if not report.ok:
                break
            report.extend(await self.sync.save_about_you(participant_id, entry))
        return report

    async def _targets(
        self, application_id: str, payload: dict[str, Any], participant_index: Optional[int]
    ) -> list[tuple[str, dict[str, Any]]]:
        """(participant id, data) pairs a step 3/4 payload applies to."""
        if participant_index is not None:
            participant = await self.registry.get_co_applicant(application_id, participant_index)
            return [(participant.id, payload)]
        primary = await self.registry.require_primary(application_id)
        targets = [(primary.id, payload)]
        for index, entry in enumerate(payload.get("co_applicants") or []):
            participant = await self.registry.get_co_applicant(application_id, index)
            targets.append((participant.id, entry))
        return targets

    async def _save_step3(
        self, application_id: str, payload: dict[str, Any], participant_index: Optional[int]
    ) -> SyncReport:
        report = SyncReport()
        for participant_id, data in await self._targets(application_id, payload, participant_index):
            report.extend(await self.sync.save_home_and_dependents(participant_id, data, _children_arg(data)))
            if not report.ok:
                break
        return report

    async def _save_step4(
        self, application_id: str, payload: dict[str, Any], participant_index: Optional[int]
    ) -> SyncReport:
        report = SyncReport()
        for participant_id, data in await self._targets(application_id, payload, participant_index):
            report.extend(
                await self.sync.save_employment(
                    participant_id,
                    data.get("employment_status"),
                    data.get("employment_details"),
                    data.get("financial_commitments"),
                )
            )
            if not report.ok:
                break
        return report

    async def _save_step5(self, application_id: str, payload: dict[str, Any]) -> SyncReport:
        primary = await self.registry.require_primary(application_id)
        other_assets = payload["other_assets"] if "other_assets" in payload else ...
        return await self.sync.save_portfolio(primary.id, _rental_arg(payload), other_assets)

    async def _save_step6(self, application_id: str, payload: dict[str, Any]) -> SyncReport:
        async def write_property():
            application = await self.registry.get_application(application_id)
            for column, key in STEP6_FIELDS.items():
                if key in payload:
                    setattr(application, column, payload[key])
            await self.session.flush()

        return await run_units(self.session, [("property_details", write_property)])

    async def _push_external(self, application_id: str, step_number: int, payload: dict[str, Any]) -> Optional[str]:
        if self.mapper is None:
            return None
        application = await self.registry.get_application(application_id)
        contact_id = application.crm_contact_id
        opportunity_id = application.crm_opportunity_id
        if step_number == 1 and not contact_id:
            return await self._create_lead(application_id, payload)
        return await self.mapper.sync_step(contact_id, step_number, payload, opportunity_id)

    async def _create_lead(self, application_id: str, payload: dict[str, Any]) -> Optional[str]:
        try:
            lead = await self.mapper.create_lead(payload)
        except AppError as e:
            logger.warning("CRM lead creation for %s failed: %s", application_id, e)
            return f"Saved, but creating the CRM lead is pending: {e}"
        try:
            application = await self.registry.get_application(application_id)
            application.crm_contact_id = lead.contact_id
            application.crm_opportunity_id = lead.opportunity_id
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            logger.error("Could not store CRM ids for %s", application_id, exc_info=True)
            return "Saved, but the CRM lead could not be linked to this application"
        return None

    async def create_lead(self, application_id: str) -> dict[str, Any]:
        """Create or update the CRM lead from the stored primary applicant."""
        if self.mapper is None:
            raise ValidationError("CRM is not configured")
        participants = await self.registry.list_participants(application_id)
        if not participants or participants[0][0].order != 1:
            raise ValidationError("Submit step 1 before creating a lead")
        person = participants[0][1]
        step1 = {k: getattr(person, k) for k in STEP1_FIELDS}
        lead = await self.mapper.create_lead(step1)
        application = await self.registry.get_application(application_id)
        application.crm_contact_id = lead.contact_id
        application.crm_opportunity_id = lead.opportunity_id or application.crm_opportunity_id
        await self.session.commit()
        return lead.to_dict()

    async def complete_in_crm(self, application_id: str) -> None:
        """Re-run the CRM completion for an application already submitted."""
        if self.mapper is None:
            raise ValidationError("CRM is not configured")
        application = await self.registry.get_application(application_id)
        if application.status != STATUS_COMPLETED:
            raise ValidationError("Application has not been submitted")
        if not application.crm_contact_id:
            raise ValidationError("Application has no CRM contact")
        data = {key: getattr(application, column) for column, key in STEP6_FIELDS.items()}
        await self.mapper.complete_application(application.crm_contact_id, application.crm_opportunity_id, data)

    # Loading

    async def load_application(self, application_id: str) -> dict[str, Any]:
        """Rebuild the step1..step6 form shapes from stored rows, with defaults for anything unsaved."""
        application = await self.registry.get_application(application_id)
        participants = await self.registry.list_participants(application_id)
        primary = next(((p, person) for p, person in participants if p.order == 1), None)
        co_applicants = [(p, person) for p, person in participants if p.order >= 2]

        primary_home = await self._home_view(*primary) if primary else _empty_home()
        primary_employment = await self._employment_view(primary[0]) if primary else _empty_employment()
        co_homes = [await self._home_view(p, person) for p, person in co_applicants]
        co_employment = [await self._employment_view(p) for p, _ in co_applicants]
        rentals = await self._rental_view(primary[0]) if primary else []

        person = primary[1] if primary else None
        participant = primary[0] if primary else None
        return {
            "id": application.id,
            "status": application.status,
            "current_step": application.current_step,
            "progress_percentage": progress_for(application.current_step),
            "crm_contact_id": application.crm_contact_id,
            "crm_opportunity_id": application.crm_opportunity_id,
            "created_at": application.created_at,
            "updated_at": application.updated_at,
            "submitted_at": application.submitted_at,
            "participants": [
                {"id": p.id, "role": p.role, "order": p.order, "email": person.email}
                for p, person in participants
            ],
            "step1": {
                "first_name": person.first_name if person else None,
                "last_name": person.last_name if person else None,
                "email": person.email if person else None,
                "mobile": person.mobile if person else None,
                "date_of_birth": person.date_of_birth if person else None,
            },
            "step2": {
                "date_of_birth": person.date_of_birth if person else None,
                "nationality": person.nationality if person else None,
                "telephone": person.telephone if person else None,
                "linkedin_profile_url": person.linkedin_profile_url if person else None,
                "marital_status": participant.marital_status if participant else None,
                "has_co_applicants": bool(co_applicants),
                "co_applicants": [_personal_view(p, person) for p, person in co_applicants],
            },
            "step3": {**primary_home, "co_applicants": co_homes},
            "step4": {**primary_employment, "co_applicants": co_employment},
            "step5": {
                "has_rental_properties": bool(rentals),
                "rental_properties": rentals,
                "other_assets": participant.other_assets if participant else None,
            },
            "step6": {key: getattr(application, column) for column, key in STEP6_FIELDS.items()},
        }

    async def _home_view(self, participant: ApplicationParticipant, person: Person) -> dict[str, Any]:
        result = await self.session.execute(
            select(PersonChild).where(PersonChild.person_id == person.id).order_by(PersonChild.created_at)
        )
        children = [
            {"date_of_birth": c.date_of_birth, "age": c.age, "same_address_as_primary": c.same_address_as_primary}
            for c in result.scalars().all()
        ]
        view = {k: getattr(participant, k) for k in HOME_FIELDS}
        for key in ("monthly_payment_currency", "property_value_currency", "mortgage_outstanding_currency"):
            view[key] = view[key] or DEFAULT_CURRENCY
        view["has_children"] = bool(children)
        view["children"] = children
        return view

    async def _employment_view(self, participant: ApplicationParticipant) -> dict[str, Any]:
        detail = (
            await self.session.execute(
                select(EmploymentDetail).where(EmploymentDetail.participant_id == participant.id)
            )
        ).scalars().first()
        commitment = (
            await self.session.execute(
                select(FinancialCommitment).where(FinancialCommitment.participant_id == participant.id)
            )
        ).scalars().first()
        view = _empty_employment()
        view["employment_status"] = participant.employment_status
        if detail is not None:
            view["employment_details"] = {k: getattr(detail, k) for k in EMPLOYMENT_DETAIL_FIELDS}
        if commitment is not None:
            view["financial_commitments"] = {k: getattr(commitment, k) for k in FINANCIAL_COMMITMENT_FIELDS}
        return view

    async def _rental_view(self, participant: ApplicationParticipant) -> list[dict[str, Any]]:
        result = await self.session.execute(
            select(RentalProperty)
            .where(RentalProperty.participant_id == participant.id)
            .order_by(RentalProperty.position)
        )
        return [
            {
                "property_address": r.property_address,
                "current_valuation": r.current_valuation,
                "mortgage_outstanding": r.mortgage_outstanding,
                "monthly_mortgage_payment": r.monthly_mortgage_payment,
                "monthly_rent_received": r.monthly_rent_received,
                "purchase_date": r.purchase_date,
            }
            for r in result.scalars().all()
        ]

    # Continuation

    async def request_continuation(self, email: str) -> dict[str, Any]:
        return await self.continuations.request_continuation(email)

    async def redeem_code(self, email: str, code: str) -> str:
        return await self.continuations.redeem_code(email, code)


def _personal_view(participant: ApplicationParticipant, person: Person) -> dict[str, Any]:
    return {
        "participant_id": participant.id,
        "first_name": person.first_name,
        "last_name": person.last_name,
        "email": person.email,
        "mobile": person.mobile,
        "date_of_birth": parse_date(person.date_of_birth),
        "nationality": person.nationality,
        "marital_status": participant.marital_status,
        "relationship_to_primary": participant.relationship_to_primary,
    }


def _empty_home() -> dict[str, Any]:
    view: dict[str, Any] = {k: None for k in HOME_FIELDS}
    for key in ("monthly_payment_currency", "property_value_currency", "mortgage_outstanding_currency"):
        view[key] = DEFAULT_CURRENCY
    view["has_children"] = False
    view["children"] = []
    return view


def _empty_employment() -> dict[str, Any]:
    commitments: dict[str, Any] = {k: None for k in FINANCIAL_COMMITMENT_FIELDS}
    commitments["has_credit_or_legal_issues"] = False
    return {
        "employment_status": None,
        "employment_details": {k: None for k in EMPLOYMENT_DETAIL_FIELDS},
        "financial_commitments": commitments,
    }
