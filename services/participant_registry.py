"""
Person identity and the participant set of an application.

A Person is keyed by email (lower-cased) and shared across applications. Each
application has exactly one primary participant (order 1) and co-applicants at
orders 2..N+1 matching the client's co-applicant list.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any, Iterable, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from database import insert_for

from models import (
    ROLE_CO_APPLICANT,
    ROLE_PRIMARY,
    Application,
    ApplicationParticipant,
    EmploymentDetail,
    ExternalRecordLink,
    FinancialCommitment,
    Person,
    RentalProperty,
)
from utils.dates import parse_date
from utils.exceptions import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

PRIMARY_ORDER = 1
FIRST_CO_APPLICANT_ORDER = 2
EMAIL_USED_BY_CO_APPLICANT = "This email is already used by a co-applicant on this application"

PERSON_FIELDS = (
    "first_name",
    "last_name",
    "date_of_birth",
    "telephone",
    "mobile",
    "nationality",
    "linkedin_profile_url",
)

# Owned by the participant row; removed with it
PARTICIPANT_OWNED = (EmploymentDetail, FinancialCommitment, RentalProperty, ExternalRecordLink)


def normalize_email(email: Any) -> str:
    if not isinstance(email, str) or "@" not in email.strip():
        raise ValidationError(f"A valid email address is required (got {email!r})")
    return email.strip().lower()


def co_applicant_order(index: int) -> int:
    """Client array index -> stored participant order."""
    if index < 0:
        raise ValidationError("Co-applicant index must be zero or positive")
    return index + FIRST_CO_APPLICANT_ORDER


def _person_updates(fields: dict[str, Any]) -> dict[str, Any]:
    """Supplied, non-null person fields. Absent or null values never overwrite stored ones."""
    out = {}
    for key in PERSON_FIELDS:
        value = fields.get(key)
        if value is None or value == "":
            continue
        if key == "date_of_birth":
            value = parse_date(value)
            if value is None:
                continue
        out[key] = value
    return out


class ParticipantRegistry:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_application(self, application_id: str) -> Application:
        result = await self.session.execute(select(Application).where(Application.id == application_id))
        application = result.scalar_one_or_none()
        if not application:
            raise NotFoundError("Application not found")
        return application

    async def find_person_by_email(self, email: str) -> Optional[Person]:
        result = await self.session.execute(select(Person).where(Person.email == normalize_email(email)))
        return result.scalar_one_or_none()

    async def find_or_create_person(self, fields: dict[str, Any]) -> Person:
        """
        Upsert the Person for fields['email'], then merge-update the supplied fields.

        The insert is a no-op when the email already exists, so a concurrent
        submit of the same person ends on the same row instead of a unique
        constraint failure.
        """
        email = normalize_email(fields.get("email"))
        updates = _person_updates(fields)
        person_id = f"per-{uuid.uuid4().hex[:12]}"
        await self.session.execute(
            insert_for(self.session, Person.__table__)
            .values(id=person_id, email=email, **updates)
            .on_conflict_do_nothing(index_elements=["email"])
        )
        person = await self.find_person_by_email(email)
        if person.id == person_id:
            logger.info("Created person %s", person.id)
        else:
            for key, value in updates.items():
                setattr(person, key, value)
        await self.session.flush()
        return person

    async def ensure_primary(self, application_id: str, person_fields: dict[str, Any]) -> ApplicationParticipant:
        """Upsert the primary participant (order 1) for the application."""
        await self.get_application(application_id)
        person = await self.find_or_create_person(person_fields)
        primary = await self.get_primary(application_id)
        if primary is None:
            if await self._participant_for_person(application_id, person.id) is not None:
                raise ValidationError(EMAIL_USED_BY_CO_APPLICANT)
            await self._insert_participant(application_id, person.id, ROLE_PRIMARY, PRIMARY_ORDER)
            # Another submit may have inserted the primary first; carry on with that row.
            primary = await self.get_primary(application_id)
            if primary is None:
                raise ValidationError(EMAIL_USED_BY_CO_APPLICANT)
        if primary.person_id != person.id:
            if await self._participant_for_person(application_id, person.id) is not None:
                raise ValidationError(EMAIL_USED_BY_CO_APPLICANT)
            logger.info("Primary participant %s re-pointed to person %s", primary.id, person.id)
            primary.person_id = person.id
        await self.session.flush()
        return primary

    async def reconcile_co_applicants(
        self, application_id: str, co_applicants: Iterable[dict[str, Any]]
    ) -> list[ApplicationParticipant]:
        """
        Make the stored co-applicants match the supplied list.

        Entry i ends up at order i+2. Existing rows are matched by person (email), so a
        co-applicant keeps their step 3/4 data when someone earlier in the list is removed.
        Stored co-applicants whose person is not in the list are deleted with their owned rows.
        """
        await self.get_application(application_id)
        entries = list(co_applicants)
        primary = await self.get_primary(application_id)
        primary_person = await self._person(primary.person_id) if primary else None

        emails: set[str] = set()
        for entry in entries:
            email = normalize_email(entry.get("email"))
            if email in emails:
                raise ValidationError(f"Duplicate co-applicant email: {email}")
            if primary_person is not None and email == primary_person.email:
                raise ValidationError("A co-applicant cannot use the primary applicant's email")
            emails.add(email)

        existing = await self.list_co_applicants(application_id)
        by_person = {p.person_id: p for p in existing}

        reconciled = []
        for index, entry in enumerate(entries):
            person = await self.find_or_create_person(entry)
            participant = by_person.pop(person.id, None)
            if participant is None:
                await self._insert_participant(
                    application_id, person.id, ROLE_CO_APPLICANT, co_applicant_order(index)
                )
                participant = await self._participant_for_person(application_id, person.id)
                if participant.role != ROLE_CO_APPLICANT:
                    raise ValidationError("A co-applicant cannot use the primary applicant's email")
            participant.order = co_applicant_order(index)
            if entry.get("relationship_to_primary"):
                participant.relationship_to_primary = entry["relationship_to_primary"]
            reconciled.append(participant)

        for stale in by_person.values():
            await self._delete_participant(stale)
        await self.session.flush()
        if by_person:
            logger.info("Removed %d co-applicant(s) from application %s", len(by_person), application_id)
        return reconciled

    async def add_co_applicant(self, application_id: str, fields: dict[str, Any]) -> ApplicationParticipant:
        """Append one co-applicant after the existing ones."""
        existing = await self.list_co_applicants(application_id)
        people = [await self._person(p.person_id) for p in existing]
        entries = [{"email": person.email} for person in people]
        entries.append(fields)
        reconciled = await self.reconcile_co_applicants(application_id, entries)
        return reconciled[-1]

    async def remove_co_applicant(self, application_id: str, index: int) -> None:
        """Remove the co-applicant at a client index and close the gap in orders."""
        target = await self.get_co_applicant(application_id, index)
        removed_order = target.order
        await self._delete_participant(target)
        for participant in await self.list_co_applicants(application_id):
            if participant.order > removed_order:
                participant.order -= 1
        await self.session.flush()

    async def get_primary(self, application_id: str) -> Optional[ApplicationParticipant]:
        result = await self.session.execute(
            select(ApplicationParticipant).where(
                ApplicationParticipant.application_id == application_id,
                ApplicationParticipant.role == ROLE_PRIMARY,
            )
        )
        return result.scalar_one_or_none()

    async def require_primary(self, application_id: str) -> ApplicationParticipant:
        primary = await self.get_primary(application_id)
        if primary is None:
            raise NotFoundError("Primary applicant not found; submit step 1 first")
        return primary

    async def get_co_applicant(self, application_id: str, index: int) -> ApplicationParticipant:
        result = await self.session.execute(
            select(ApplicationParticipant).where(
                ApplicationParticipant.application_id == application_id,
                ApplicationParticipant.role == ROLE_CO_APPLICANT,
                ApplicationParticipant.order == co_applicant_order(index),
            )
        )
        participant = result.scalars().first()
        if participant is None:
            raise NotFoundError(f"Co-applicant {index + 1} not found")
        return participant

    async def list_co_applicants(self, application_id: str) -> list[ApplicationParticipant]:
        result = await self.session.execute(
            select(ApplicationParticipant)
            .where(
                ApplicationParticipant.application_id == application_id,
                ApplicationParticipant.role == ROLE_CO_APPLICANT,
            )
            .order_by(ApplicationParticipant.order)
        )
        return list(result.scalars().all())

    async def list_participants(self, application_id: str) -> list[tuple[ApplicationParticipant, Person]]:
        """All participants with their person, primary first."""
        result = await self.session.execute(
            select(ApplicationParticipant, Person)
            .join(Person, Person.id == ApplicationParticipant.person_id)
            .where(ApplicationParticipant.application_id == application_id)
            .order_by(ApplicationParticipant.order)
        )
        return [(participant, person) for participant, person in result.all()]

    async def find_applications_for_email(self, email: str, status: Optional[str] = None) -> list[Application]:
        """Applications where this email is the primary applicant, most recently updated first."""
        stmt = (
            select(Application)
            .join(ApplicationParticipant, ApplicationParticipant.application_id == Application.id)
            .join(Person, Person.id == ApplicationParticipant.person_id)
            .where(Person.email == normalize_email(email), ApplicationParticipant.role == ROLE_PRIMARY)
            .order_by(Application.updated_at.desc())
        )
        if status:
            stmt = stmt.where(Application.status == status)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def _person(self, person_id: str) -> Person:
        result = await self.session.execute(select(Person).where(Person.id == person_id))
        return result.scalar_one()

    async def _participant_for_person(self, application_id: str, person_id: str) -> Optional[ApplicationParticipant]:
        result = await self.session.execute(
            select(ApplicationParticipant).where(
                ApplicationParticipant.application_id == application_id,
                ApplicationParticipant.person_id == person_id,
            )
        )
        return result.scalar_one_or_none()

    async def _insert_participant(self, application_id: str, person_id: str, role: str, order: int) -> None:
        """Insert unless the person or the primary slot is already taken on this application."""
        await self.session.execute(
            insert_for(self.session, ApplicationParticipant.__table__)
            .values(
                id=f"par-{uuid.uuid4().hex[:12]}",
                application_id=application_id,
                person_id=person_id,
                role=role,
                participant_order=order,
            )
            .on_conflict_do_nothing()
        )

    async def _delete_participant(self, participant: ApplicationParticipant) -> None:
        # Children belong to the person, who may be on other applications; leave them.
        for model in PARTICIPANT_OWNED:
            await self.session.execute(delete(model).where(model.participant_id == participant.id))
        # Bulk delete: a row already removed by a concurrent submit is not an error
        await self.session.execute(delete(ApplicationParticipant).where(ApplicationParticipant.id == participant.id))
