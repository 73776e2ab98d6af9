"""
Creates one CRM custom-object record per co-applicant at final submission.

Data is read back from the database, never taken from the request, so the
records reflect what was durably saved. A participant that already has an
ExternalRecordLink with a record id is skipped, which makes a retry after
partial failure safe. The link row is claimed before the CRM call, so two
concurrent submissions of the batch never both create the same record.
Partial success is a normal result: every co-applicant gets its own outcome.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import insert_for
from models import (
    ApplicationParticipant,
    EmploymentDetail,
    ExternalRecordLink,
    FinancialCommitment,
    Person,
    PersonChild,
)
from services.crm_client import CRMClient
from services.crm_fields import build_co_applicant_properties
from services.participant_registry import FIRST_CO_APPLICANT_ORDER, ParticipantRegistry
from services.participant_sync import EMPLOYMENT_DETAIL_FIELDS, FINANCIAL_COMMITMENT_FIELDS, HOME_FIELDS
from utils.dates import utc_now
from utils.exceptions import AppError, ValidationError

logger = logging.getLogger(__name__)

CLAIM_TIMEOUT = timedelta(minutes=10)


@dataclass
class CoApplicantBatchResult:
    created: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    record_ids: dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def message(self) -> str:
        if not self.errors:
            return f"Created {self.created} co-applicant record(s)"
        return f"Created {self.created} records, but {len(self.errors)} failed"

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "created": self.created,
            "skipped": self.skipped,
            "errors": list(self.errors),
            "records": [
                {"participant_id": participant_id, "record_id": record_id}
                for participant_id, record_id in self.record_ids.items()
            ],
            "message": self.message,
        }


def _row_values(row: Any, keys: tuple[str, ...]) -> dict[str, Any]:
    if row is None:
        return {}
    return {k: getattr(row, k) for k in keys}


class CoApplicantRecordCreator:
    def __init__(self, session: AsyncSession, crm: CRMClient, object_key: Optional[str] = None):
        self.session = session
        self.crm = crm
        self.registry = ParticipantRegistry(session)
        self.object_key = object_key or settings.crm_co_applicant_object_key

    async def _existing_link(self, participant_id: str) -> Optional[ExternalRecordLink]:
        result = await self.session.execute(
            select(ExternalRecordLink).where(ExternalRecordLink.participant_id == participant_id)
        )
        return result.scalar_one_or_none()

    async def _one(self, model, participant_id: str):
        result = await self.session.execute(select(model).where(model.participant_id == participant_id))
        return result.scalars().first()

    async def collect(self, participant: ApplicationParticipant, person: Person) -> dict[str, Any]:
        """Merge a co-applicant's stored slices into one flat dict."""
        children_result = await self.session.execute(
            select(PersonChild).where(PersonChild.person_id == person.id).order_by(PersonChild.created_at)
        )
        data: dict[str, Any] = {
            "first_name": person.first_name,
            "last_name": person.last_name,
            "email": person.email,
            "mobile": person.mobile or person.telephone,
            "date_of_birth": person.date_of_birth,
            "nationality": person.nationality,
            "marital_status": participant.marital_status,
            "relationship_to_primary": participant.relationship_to_primary,
            "employment_status": participant.employment_status,
            **_row_values(participant, HOME_FIELDS),
        }
        children = [
            {"date_of_birth": c.date_of_birth, "same_address_as_primary": c.same_address_as_primary}
            for c in children_result.scalars().all()
        ]
        data["has_children"] = bool(children)
        data["children"] = children
        data.update(_row_values(await self._one(EmploymentDetail, participant.id), EMPLOYMENT_DETAIL_FIELDS))
        data.update(_row_values(await self._one(FinancialCommitment, participant.id), FINANCIAL_COMMITMENT_FIELDS))
        return data

    async def _claim(self, participant_id: str) -> bool:
        """
        Take the right to create this participant's record. Exactly one of two
        concurrent batches gets True; a claim left by a request that never
        finished can be taken over once it is CLAIM_TIMEOUT old.
        """
        now = utc_now()
        inserted = await self.session.execute(
            insert_for(self.session, ExternalRecordLink.__table__)
            .values(
                id=f"lnk-{uuid.uuid4().hex[:12]}",
                participant_id=participant_id,
                object_key=self.object_key,
                record_id=None,
                claimed_at=now,
                created_at=now,
            )
            .on_conflict_do_nothing(index_elements=["participant_id"])
        )
        claimed = inserted.rowcount == 1
        if not claimed:
            taken = await self.session.execute(
                update(ExternalRecordLink)
                .where(
                    ExternalRecordLink.participant_id == participant_id,
                    ExternalRecordLink.record_id.is_(None),
                    ExternalRecordLink.claimed_at < now - CLAIM_TIMEOUT,
                )
                .values(claimed_at=now)
                .execution_options(synchronize_session=False)
            )
            claimed = taken.rowcount == 1
        await self.session.commit()
        return claimed

    async def _release(self, participant_id: str) -> None:
        try:
            await self.session.execute(
                delete(ExternalRecordLink)
                .where(ExternalRecordLink.participant_id == participant_id, ExternalRecordLink.record_id.is_(None))
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            logger.error("Could not release record claim for %s", participant_id, exc_info=True)

    async def _complete_claim(self, participant_id: str, record_id: str) -> None:
        await self.session.execute(
            update(ExternalRecordLink)
            .where(ExternalRecordLink.participant_id == participant_id, ExternalRecordLink.record_id.is_(None))
            .values(record_id=record_id)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()

    async def create_co_applicant_external_records(
        self, application_id: str, owner_contact_id: str
    ) -> CoApplicantBatchResult:
        if not owner_contact_id:
            raise ValidationError("owner_contact_id is required")
        await self.registry.get_application(application_id)
        result = CoApplicantBatchResult()
        # Snapshot everything first; a rollback below expires loaded rows.
        pending = []
        for participant, person in await self.registry.list_participants(application_id):
            if participant.order < FIRST_CO_APPLICANT_ORDER:
                continue
            number = participant.order - FIRST_CO_APPLICANT_ORDER + 1
            link = await self._existing_link(participant.id)
            if link is not None and link.record_id:
                result.skipped += 1
                continue
            pending.append((participant.id, number, await self.collect(participant, person)))

        for participant_id, number, data in pending:
            try:
                claimed = await self._claim(participant_id)
            except SQLAlchemyError as e:
                await self.session.rollback()
                logger.error("Could not claim record creation for %s", participant_id, exc_info=True)
                result.errors.append(f"Co-applicant {number}: {getattr(e, 'orig', None) or e}")
                continue
            if not claimed:
                # Another submit of the same batch is creating this record.
                logger.info("Co-applicant record for %s already claimed", participant_id)
                result.skipped += 1
                continue

            properties = build_co_applicant_properties(data, self.object_key)
            try:
                record = await self.crm.create_custom_object_record(self.object_key, owner_contact_id, properties)
            except AppError as e:
                await self._release(participant_id)
                logger.warning("Co-applicant %s record creation failed: %s", number, e)
                result.errors.append(f"Co-applicant {number}: {e}")
                continue
            record_id = record.get("id")
            if not record_id:
                await self._release(participant_id)
                result.errors.append(f"Co-applicant {number}: CRM response did not include a record id")
                continue
            try:
                await self._complete_claim(participant_id, record_id)
            except SQLAlchemyError:
                await self.session.rollback()
                logger.error("Record %s created but link for %s not saved", record_id, participant_id, exc_info=True)
                result.errors.append(f"Co-applicant {number}: record {record_id} created but not recorded locally")
                continue
            result.created += 1
            result.record_ids[participant_id] = record_id
            logger.info("Created co-applicant record %s for participant %s", record_id, participant_id)
        return result
