"""
HTTP-level tests: camelCase bodies, status codes and error mapping.
Run from project root: python -m pytest tests/test_api.py -v
"""
import httpx

from api.deps import get_record_mapper
from database import get_db
from main import app
from tests.support import DatabaseTestCase


class TestApplicationsAPI(DatabaseTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()

        async def override_db():
            async with self.session_factory() as session:
                yield session
                await session.commit()

        app.dependency_overrides[get_db] = override_db
        app.dependency_overrides[get_record_mapper] = lambda: None
        self.client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")

    async def asyncTearDown(self):
        await self.client.aclose()
        app.dependency_overrides.clear()
        await super().asyncTearDown()

    async def _create(self):
        response = await self.client.post("/api/applications")
        self.assertEqual(response.status_code, 201)
        return response.json()["id"]

    async def test_create_and_save_step1(self):
        application_id = await self._create()
        response = await self.client.post(
            f"/api/applications/{application_id}/steps/1",
            json={"firstName": "Ana", "lastName": "Smith", "email": "Ana@Example.com", "dateOfBirth": "1988-04-12"},
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["saved"])
        self.assertEqual(body["currentStep"], 2)
        self.assertEqual(body["progressPercentage"], 40)

        view = (await self.client.get(f"/api/applications/{application_id}")).json()
        self.assertEqual(view["step1"]["email"], "ana@example.com")
        self.assertEqual(view["step1"]["dateOfBirth"], "1988-04-12")
        self.assertEqual(view["step3"]["monthlyPaymentCurrency"], "EUR")

    async def test_invalid_step_body_is_422(self):
        application_id = await self._create()
        response = await self.client.post(
            f"/api/applications/{application_id}/steps/1", json={"firstName": "Ana", "email": "not-an-email"}
        )
        self.assertEqual(response.status_code, 422)

    async def test_unknown_application_is_404(self):
        response = await self.client.get("/api/applications/app-missing")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {"error": "Application not found"})

    async def test_step_before_primary_is_404(self):
        application_id = await self._create()
        response = await self.client.post(f"/api/applications/{application_id}/steps/3", json={"taxCountry": "Spain"})
        self.assertEqual(response.status_code, 404)

    async def test_co_applicant_lifecycle(self):
        application_id = await self._create()
        await self.client.post(
            f"/api/applications/{application_id}/steps/1",
            json={"firstName": "Ana", "lastName": "Smith", "email": "ana@example.com"},
        )
        response = await self.client.post(
            f"/api/applications/{application_id}/co-applicants",
            json={"email": "ben@example.com", "firstName": "Ben", "relationshipToPrimary": "spouse"},
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["index"], 0)

        response = await self.client.post(
            f"/api/applications/{application_id}/co-applicants/0/steps/4",
            json={"employmentStatus": "employed", "employmentDetails": {"grossAnnualSalary": 41000}},
        )
        self.assertEqual(response.status_code, 200)

        listed = (await self.client.get(f"/api/applications/{application_id}/co-applicants")).json()
        self.assertEqual([c["email"] for c in listed], ["ben@example.com"])

        response = await self.client.delete(f"/api/applications/{application_id}/co-applicants/0")
        self.assertEqual(response.status_code, 204)
        listed = (await self.client.get(f"/api/applications/{application_id}/co-applicants")).json()
        self.assertEqual(listed, [])

    async def test_patch_metadata(self):
        application_id = await self._create()
        response = await self.client.patch(f"/api/applications/{application_id}", json={"crmContactId": "c-1"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["crmContactId"], "c-1")

    async def test_continuation_request_is_uniform(self):
        response = await self.client.post("/api/continuations/request", json={"email": "nobody@example.com"})
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["success"])

        response = await self.client.post(
            "/api/continuations/verify", json={"email": "nobody@example.com", "code": "ABC123"}
        )
        self.assertEqual(response.status_code, 400)

    async def test_health(self):
        response = await self.client.get("/health")
        self.assertEqual(response.json(), {"status": "ok"})
