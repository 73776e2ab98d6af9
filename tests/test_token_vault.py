"""
Tests for OAuth credential storage and refresh.
Run from project root: python -m pytest tests/test_token_vault.py -v

Uses a file-backed SQLite database so concurrent callers get their own connections.
"""
import asyncio
import os
import tempfile
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx
from sqlalchemy import func, select

from models import OAuthToken
from services.token_vault import TokenVault
from tests.support import DatabaseTestCase
from utils.dates import ensure_utc
from utils.exceptions import CredentialMissing, RefreshFailed

TOKEN_URL = "https://auth.test/oauth/token"
START = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestTokenVault(DatabaseTestCase):
    async def asyncSetUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.database_url = f"sqlite+aiosqlite:///{os.path.join(self._tmp.name, 'vault.db')}"
        await super().asyncSetUp()
        self.now = START
        self.token_requests = []
        self.response = httpx.Response(
            200, json={"access_token": "new-access", "refresh_token": "new-refresh", "expires_in": 86400}
        )
        self.vault = TokenVault(
            self.session_factory,
            httpx.AsyncClient(transport=httpx.MockTransport(self._token_endpoint)),
            token_url=TOKEN_URL,
            client_id="client",
            client_secret="secret",
            redirect_uri="https://app.test/callback",
            refresh_buffer_seconds=300,
            clock=lambda: self.now,
        )

    async def asyncTearDown(self):
        await self.vault.aclose()
        await super().asyncTearDown()
        self._tmp.cleanup()

    async def _token_endpoint(self, request):
        self.token_requests.append(parse_qs(request.content.decode()))
        # Let concurrent callers pile up behind the lock
        await asyncio.sleep(0.01)
        return self.response

    async def _stored(self):
        async with self.session_factory() as session:
            result = await session.execute(select(OAuthToken).where(OAuthToken.account_id == "loc-1"))
            return result.scalar_one()

    async def _store_expiring_in(self, seconds):
        await self.vault.save_initial("loc-1", "old-access", "old-refresh", 86400)
        self.now = START + timedelta(seconds=86400 - seconds)

    async def test_fresh_token_not_refreshed(self):
        await self._store_expiring_in(3600)
        self.assertEqual(await self.vault.get_valid_token("loc-1"), "old-access")
        self.assertEqual(self.token_requests, [])

    async def test_expiring_token_refreshed_once(self):
        """Expiry inside the five minute buffer -> one refresh; the next call uses the new token."""
        await self._store_expiring_in(120)
        self.assertEqual(await self.vault.get_valid_token("loc-1"), "new-access")
        self.assertEqual(await self.vault.get_valid_token("loc-1"), "new-access")
        self.assertEqual(len(self.token_requests), 1)
        self.assertEqual(self.token_requests[0]["grant_type"], ["refresh_token"])
        self.assertEqual(self.token_requests[0]["refresh_token"], ["old-refresh"])

        stored = await self._stored()
        self.assertEqual(stored.refresh_token, "new-refresh")
        self.assertEqual(ensure_utc(stored.expires_at), self.now + timedelta(seconds=86400))

    async def test_concurrent_callers_share_one_refresh(self):
        await self._store_expiring_in(60)
        tokens = await asyncio.gather(*(self.vault.get_valid_token("loc-1") for _ in range(5)))
        self.assertEqual(tokens, ["new-access"] * 5)
        self.assertEqual(len(self.token_requests), 1)

    async def test_failed_refresh_leaves_credential_untouched(self):
        await self._store_expiring_in(60)
        self.response = httpx.Response(400, json={"error": "invalid_grant"})
        with self.assertRaises(RefreshFailed):
            await self.vault.get_valid_token("loc-1")
        stored = await self._stored()
        self.assertEqual((stored.access_token, stored.refresh_token), ("old-access", "old-refresh"))

    async def test_response_without_access_token_fails(self):
        await self._store_expiring_in(60)
        self.response = httpx.Response(200, json={"token_type": "Bearer"})
        with self.assertRaises(RefreshFailed):
            await self.vault.get_valid_token("loc-1")
        self.assertEqual((await self._stored()).access_token, "old-access")

    async def test_non_rotating_provider_keeps_refresh_token(self):
        await self._store_expiring_in(60)
        self.response = httpx.Response(200, json={"access_token": "new-access", "expires_in": 3600})
        await self.vault.get_valid_token("loc-1")
        stored = await self._stored()
        self.assertEqual(stored.access_token, "new-access")
        self.assertEqual(stored.refresh_token, "old-refresh")

    async def test_refresh_with_already_rotated_token(self):
        """A refresh token that was rotated away -> current access token, no second exchange."""
        await self._store_expiring_in(60)
        await self.vault.refresh_token("loc-1", "old-refresh")
        self.assertEqual(await self.vault.refresh_token("loc-1", "old-refresh"), "new-access")
        self.assertEqual(len(self.token_requests), 1)

    async def test_missing_credential(self):
        with self.assertRaises(CredentialMissing):
            await self.vault.get_valid_token("loc-unknown")

    async def test_save_initial_upserts(self):
        await self.vault.save_initial("loc-1", "a1", "r1", 3600)
        await self.vault.save_initial("loc-1", "a2", "r2", 7200)
        async with self.session_factory() as session:
            count = (await session.execute(select(func.count()).select_from(OAuthToken))).scalar_one()
        self.assertEqual(count, 1)
        stored = await self._stored()
        self.assertEqual((stored.access_token, stored.refresh_token), ("a2", "r2"))

    async def test_authorization_code_exchange(self):
        self.response = httpx.Response(
            200,
            json={"access_token": "a", "refresh_token": "r", "expires_in": 86400, "locationId": "loc-1"},
        )
        self.assertEqual(await self.vault.exchange_authorization_code("the-code"), "loc-1")
        self.assertEqual(self.token_requests[0]["grant_type"], ["authorization_code"])
        self.assertEqual(self.token_requests[0]["code"], ["the-code"])
        self.assertEqual((await self._stored()).access_token, "a")
