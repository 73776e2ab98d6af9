"""
Tests for co-applicant custom-object records at final submission.
Run from project root: python -m pytest tests/test_co_applicant_records.py -v
"""
import asyncio
import json
import os
import tempfile
from datetime import timedelta

import httpx
from sqlalchemy import select

from models import ExternalRecordLink
from services.application_state import ApplicationStateStore
from services.co_applicant_records import CoApplicantRecordCreator
from services.participant_registry import ParticipantRegistry
from tests.support import DatabaseTestCase, FakeCRM, step1_payload, step4_payload
from utils.dates import utc_now
from utils.exceptions import ValidationError

RECORDS_PATH = "/objects/aip_co_applicants/records"
PREFIX = "custom_objects.aip_co_applicants."


async def _submitted_application(session):
    """Primary plus two co-applicants (Ben, Cleo) with step 4 saved for all three."""
    store = ApplicationStateStore(session)
    application_id = await store.start_application()
    await store.commit_step(application_id, 1, step1_payload())
    await store.commit_step(
        application_id,
        2,
        {
            "co_applicants": [
                {"email": "ben@example.com", "first_name": "Ben", "relationship_to_primary": "spouse"},
                {"email": "cleo@example.com", "first_name": "Cleo"},
            ]
        },
    )
    await store.commit_step(
        application_id,
        4,
        {**step4_payload(), "co_applicants": [step4_payload(salary=48000), step4_payload(salary=30000)]},
    )
    return application_id


class TestCoApplicantRecordCreator(DatabaseTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.application_id = await _submitted_application(self.session)
        self.crm = FakeCRM()
        self.rejected_emails = {"cleo@example.com"}
        self.crm.on("POST", RECORDS_PATH, self._create_record)
        self.creator = CoApplicantRecordCreator(self.session, self.crm.client())

    def _create_record(self, request):
        properties = json.loads(request.content)["properties"]
        email = properties[PREFIX + "email_address"]
        if email in self.rejected_emails:
            return httpx.Response(422, json={"message": "invalid property"})
        return httpx.Response(201, json={"record": {"id": f"rec-{email.split('@')[0]}"}})

    async def _claim_ben(self, age):
        ben = await ParticipantRegistry(self.session).get_co_applicant(self.application_id, 0)
        self.session.add(
            ExternalRecordLink(
                id="lnk-inflight",
                participant_id=ben.id,
                object_key="aip_co_applicants",
                record_id=None,
                claimed_at=utc_now() - age,
            )
        )
        await self.session.commit()
        return ben.id

    async def test_partial_failure_then_retry(self):
        """Second record rejected -> one created, one error; retry creates only the missing one."""
        result = await self.creator.create_co_applicant_external_records(self.application_id, "contact-1")
        self.assertFalse(result.success)
        self.assertEqual(result.created, 1)
        self.assertEqual(len(result.errors), 1)
        self.assertTrue(result.errors[0].startswith("Co-applicant 2: "))
        self.assertEqual(result.message, "Created 1 records, but 1 failed")

        self.rejected_emails.clear()
        retry = await self.creator.create_co_applicant_external_records(self.application_id, "contact-1")
        self.assertTrue(retry.success)
        self.assertEqual((retry.created, retry.skipped), (1, 1))
        self.assertEqual(list(retry.record_ids.values()), ["rec-cleo"])
        self.assertEqual([r["record_id"] for r in retry.to_dict()["records"]], ["rec-cleo"])
        self.assertEqual(len(self.crm.calls("POST", RECORDS_PATH)), 3)

    async def test_record_built_from_stored_data(self):
        self.rejected_emails.clear()
        await self.creator.create_co_applicant_external_records(self.application_id, "contact-1")
        first = self.crm.calls("POST", RECORDS_PATH)[0]
        self.assertEqual(first["owner"], ["contact-1"])
        properties = first["properties"]
        self.assertEqual(properties[PREFIX + "first_name"], "Ben")
        self.assertEqual(properties[PREFIX + "relationship_to_main_applicant"], "spouse")
        self.assertEqual(properties[PREFIX + "gross_annual_salary"], {"currency": "default", "value": 48000})
        self.assertEqual(properties[PREFIX + "has_credit_or_legal_issues"], "No")
        self.assertEqual(properties[PREFIX + "employment_start_date"], "2019-01-07")

    async def test_in_flight_claim_is_skipped(self):
        """A record another request is creating right now is not created a second time."""
        self.rejected_emails.clear()
        await self._claim_ben(timedelta(seconds=5))
        result = await self.creator.create_co_applicant_external_records(self.application_id, "contact-1")
        self.assertEqual((result.created, result.skipped), (1, 1))
        self.assertEqual(list(result.record_ids.values()), ["rec-cleo"])

    async def test_stale_claim_is_taken_over(self):
        self.rejected_emails.clear()
        ben_id = await self._claim_ben(timedelta(minutes=30))
        result = await self.creator.create_co_applicant_external_records(self.application_id, "contact-1")
        self.assertEqual((result.created, result.skipped), (2, 0))
        self.assertEqual(result.record_ids[ben_id], "rec-ben")

    async def test_owner_required(self):
        with self.assertRaises(ValidationError):
            await self.creator.create_co_applicant_external_records(self.application_id, "")


class TestConcurrentBatches(DatabaseTestCase):
    """Two submissions of the same batch, each on its own session and connection."""

    async def asyncSetUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.database_url = f"sqlite+aiosqlite:///{os.path.join(self._tmp.name, 'records.db')}"
        await super().asyncSetUp()
        self.application_id = await _submitted_application(self.session)
        self.crm = FakeCRM()
        self.crm.on("POST", RECORDS_PATH, self._create_record)

    async def asyncTearDown(self):
        await super().asyncTearDown()
        self._tmp.cleanup()

    async def _create_record(self, request):
        # Keep the first request inside its CRM call while the second one runs
        await asyncio.sleep(0.01)
        email = json.loads(request.content)["properties"][PREFIX + "email_address"]
        return httpx.Response(201, json={"record": {"id": f"rec-{email.split('@')[0]}"}})

    async def _run_batch(self):
        async with self.session_factory() as session:
            creator = CoApplicantRecordCreator(session, self.crm.client())
            return await creator.create_co_applicant_external_records(self.application_id, "contact-1")

    async def test_each_record_created_once(self):
        first, second = await asyncio.gather(self._run_batch(), self._run_batch())
        self.assertTrue(first.success and second.success, first.errors + second.errors)
        self.assertEqual(first.created + second.created, 2)
        self.assertEqual(first.skipped + second.skipped, 2)
        self.assertEqual(len(self.crm.calls("POST", RECORDS_PATH)), 2)
        links = (await self.session.execute(select(ExternalRecordLink))).scalars().all()
        self.assertEqual(sorted(link.record_id for link in links), ["rec-ben", "rec-cleo"])
