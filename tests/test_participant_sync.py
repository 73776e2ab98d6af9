"""
Tests for per-participant step writes: replace semantics, None vs empty, unit reports.
Run from project root: python -m pytest tests/test_participant_sync.py -v
"""
from datetime import date
from unittest import mock

from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from models import ApplicationParticipant, EmploymentDetail, FinancialCommitment, Person, PersonChild, RentalProperty
from services.application_state import ApplicationStateStore
from services.participant_registry import ParticipantRegistry
from services.participant_sync import ParticipantDataSynchronizer
from tests.support import DatabaseTestCase, step1_payload


class TestParticipantDataSynchronizer(DatabaseTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        application_id = await ApplicationStateStore(self.session).start_application()
        primary = await ParticipantRegistry(self.session).ensure_primary(application_id, step1_payload())
        self.participant_id = primary.id
        self.person_id = primary.person_id
        await self.session.commit()
        self.sync = ParticipantDataSynchronizer(self.session)

    async def _rows(self, model, **filters):
        stmt = select(model)
        for key, value in filters.items():
            stmt = stmt.where(getattr(model, key) == value)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def test_save_employment_twice_keeps_one_row(self):
        """Same step 4 saved twice -> one employment row and one commitments row, last values win."""
        for salary in (50000, 72000):
            report = await self.sync.save_employment(
                self.participant_id,
                "employed",
                {"employer_name": "Acme", "gross_annual_salary": salary},
                {"personal_loans": 100, "credit_card_debt": 20},
            )
            self.assertTrue(report.ok)
        details = await self._rows(EmploymentDetail, participant_id=self.participant_id)
        commitments = await self._rows(FinancialCommitment, participant_id=self.participant_id)
        self.assertEqual(len(details), 1)
        self.assertEqual(details[0].gross_annual_salary, 72000)
        self.assertEqual(len(commitments), 1)
        self.assertEqual(commitments[0].total_monthly_commitments, 120)
        self.assertFalse(commitments[0].has_credit_or_legal_issues)

    async def test_employment_start_date_parsed(self):
        await self.sync.save_employment(
            self.participant_id, "employed", {"employment_start_date": "2019-01-07T00:00:00Z"}
        )
        (detail,) = await self._rows(EmploymentDetail, participant_id=self.participant_id)
        self.assertEqual(detail.employment_start_date, date(2019, 1, 7))

    async def test_children_replaced(self):
        await self.sync.save_home_and_dependents(
            self.participant_id,
            {"current_address": "1 Calle Mayor"},
            [{"date_of_birth": "2015-06-01"}, {"date_of_birth": "2018-02-10"}],
        )
        await self.sync.save_home_and_dependents(
            self.participant_id, {"current_address": "1 Calle Mayor"}, [{"date_of_birth": "2020-03-03", "age": 4}]
        )
        children = await self._rows(PersonChild, person_id=self.person_id)
        self.assertEqual(len(children), 1)
        self.assertEqual(children[0].date_of_birth, date(2020, 3, 3))
        self.assertEqual(children[0].age, 4)

    async def test_none_leaves_children_and_empty_clears(self):
        await self.sync.save_home_and_dependents(self.participant_id, {}, [{"date_of_birth": "2015-06-01"}])
        report = await self.sync.save_home_and_dependents(self.participant_id, {"tax_country": "Spain"}, None)
        self.assertEqual([u.name for u in report.units], ["address"])
        self.assertEqual(len(await self._rows(PersonChild, person_id=self.person_id)), 1)

        await self.sync.save_home_and_dependents(self.participant_id, {}, [])
        self.assertEqual(await self._rows(PersonChild, person_id=self.person_id), [])

    async def test_blank_currency_defaults_to_eur(self):
        await self.sync.save_home_and_dependents(
            self.participant_id, {"monthly_mortgage_or_rent": 900, "monthly_payment_currency": ""}
        )
        (participant,) = await self._rows(ApplicationParticipant, id=self.participant_id)
        self.assertEqual(participant.monthly_payment_currency, "EUR")
        self.assertEqual(participant.monthly_mortgage_or_rent, 900)

    async def test_about_you_keeps_name_when_absent(self):
        report = await self.sync.save_about_you(
            self.participant_id, {"nationality": "Irish", "marital_status": "married", "first_name": None}
        )
        self.assertTrue(report.ok)
        (person,) = await self._rows(Person, id=self.person_id)
        self.assertEqual(person.first_name, "Ana")
        self.assertEqual(person.nationality, "Irish")
        (participant,) = await self._rows(ApplicationParticipant, id=self.participant_id)
        self.assertEqual(participant.marital_status, "married")

    async def test_portfolio_replaced_in_order(self):
        await self.sync.save_portfolio(
            self.participant_id,
            [{"property_address": "A"}, {"property_address": "B"}],
            "Shares",
        )
        await self.sync.save_portfolio(self.participant_id, [{"property_address": "C", "purchase_date": "2010-05-05"}])
        rows = await self._rows(RentalProperty, participant_id=self.participant_id)
        self.assertEqual([(r.position, r.property_address) for r in rows], [(0, "C")])
        self.assertEqual(rows[0].purchase_date, date(2010, 5, 5))
        (participant,) = await self._rows(ApplicationParticipant, id=self.participant_id)
        self.assertEqual(participant.other_assets, "Shares")

    async def test_failed_unit_reported_and_rest_skipped(self):
        """Commitments write fails -> earlier units committed, failure named in the report."""
        failure = OperationalError("INSERT INTO financial_commitments", {}, Exception("database is locked"))
        with mock.patch.object(ParticipantDataSynchronizer, "_write_financial_commitment", side_effect=failure):
            report = await self.sync.save_employment(
                self.participant_id, "employed", {"employer_name": "Acme"}, {"personal_loans": 10}
            )
        self.assertFalse(report.ok)
        self.assertEqual(
            [(u.name, u.ok) for u in report.units],
            [("employment_status", True), ("employment_details", True), ("financial_commitments", False)],
        )
        self.assertEqual(report.error, "Failed to save financial commitments: database is locked")
        self.assertEqual(len(await self._rows(EmploymentDetail, participant_id=self.participant_id)), 1)
        self.assertEqual(await self._rows(FinancialCommitment, participant_id=self.participant_id), [])
